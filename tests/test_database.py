import unittest

from goinst.injector import Injector
from goinst.remover import Remover


def inject(text):
    output, entry = Injector().inject_source(text, "db.go")
    return (output if output is not None else text), entry


def remove(text):
    output, entry = Remover().remove_source(text, "db.go")
    return (output if output is not None else text), entry


SQL_LIB = """package db

import (
\t"database/sql"

\t_ "github.com/go-sql-driver/mysql"
)

func Open(dsn string) (*sql.DB, error) {
\treturn sql.Open("mysql", dsn)
}
"""

SQLX_LIB = """package db

import (
\t"github.com/jmoiron/sqlx"
)

func Connect(dsn string) (*sqlx.DB, error) {
\tdb := sqlx.MustConnect("postgres", dsn)
\treturn db, db.Ping()
}
"""

GORM_LIB = """package db

import (
\t"gorm.io/driver/mysql"
\t"gorm.io/gorm"
)

func Open(dsn string) (*gorm.DB, error) {
\treturn gorm.Open(mysql.Open(dsn), &gorm.Config{})
}
"""


class SqlPolicyTests(unittest.TestCase):
    def test_open_is_substituted(self) -> None:
        out, entry = inject(SQL_LIB)
        self.assertEqual(entry.transformers, ["sql"])
        self.assertIn('return whatapsql.Open("mysql", dsn)', out)
        self.assertIn('"github.com/whatap/go-api/instrumentation/database/sql/whatapsql"', out)
        # still referenced by the result type
        self.assertIn('"database/sql"', out)
        self.assertNotIn("trace.Init", out)

    def test_round_trip(self) -> None:
        out, _ = inject(SQL_LIB)
        restored, entry = remove(out)
        self.assertEqual(restored, SQL_LIB)
        self.assertIn("sql", entry.transformers)

    def test_unused_import_is_dropped_and_restored(self) -> None:
        text = (
            "package db\n\nimport (\n\t\"database/sql\"\n\t\"fmt\"\n)\n\n"
            "func Connect() {\n\tdb, err := sql.Open(\"postgres\", \"x\")\n\tfmt.Println(db, err)\n}\n"
        )
        out, _ = inject(text)
        self.assertNotIn('"database/sql"', out)
        restored, _ = remove(out)
        self.assertIn('"database/sql"', restored)
        self.assertIn('sql.Open("postgres", "x")', restored)
        self.assertNotIn("whatap", restored)

    def test_user_alias_is_honoured(self) -> None:
        text = (
            "package db\n\nimport (\n\tstdsql \"database/sql\"\n)\n\n"
            "func Open() (*stdsql.DB, error) {\n\treturn stdsql.Open(\"mysql\", \"dsn\")\n}\n"
        )
        out, _ = inject(text)
        self.assertIn('whatapsql.Open("mysql", "dsn")', out)
        self.assertEqual(remove(out)[0], text)

    def test_other_functions_untouched(self) -> None:
        text = SQL_LIB.replace('sql.Open("mysql", dsn)', 'sql.OpenDB(connector)')
        out, entry = inject(text)
        self.assertEqual(out, text)
        self.assertEqual(entry.status, "skipped")


class SqlxAndGormTests(unittest.TestCase):
    def test_sqlx_must_connect(self) -> None:
        out, entry = inject(SQLX_LIB)
        self.assertIn('db := whatapsqlx.MustConnect("postgres", dsn)', out)
        self.assertIn("github.com/jmoiron/sqlx/whatapsqlx", out)
        self.assertEqual(remove(out)[0], SQLX_LIB)

    def test_gorm_open_only(self) -> None:
        out, entry = inject(GORM_LIB)
        self.assertEqual(entry.transformers, ["gorm"])
        self.assertIn("return whatapgorm.Open(mysql.Open(dsn), &gorm.Config{})", out)
        self.assertIn("github.com/go-gorm/gorm/whatapgorm", out)
        self.assertEqual(remove(out)[0], GORM_LIB)

    def test_jinzhu_gorm_companion(self) -> None:
        text = (
            "package db\n\nimport (\n\t\"github.com/jinzhu/gorm\"\n)\n\n"
            "func Open() (*gorm.DB, error) {\n\treturn gorm.Open(\"mysql\", \"dsn\")\n}\n"
        )
        out, entry = inject(text)
        self.assertEqual(entry.transformers, ["jinzhugorm"])
        self.assertIn("github.com/jinzhu/gorm/whatapgorm", out)
        self.assertEqual(remove(out)[0], text)


if __name__ == "__main__":
    unittest.main()
