import unittest

from goinst.errors import DuplicateTransformerError
from goinst.parser import parse_source
from goinst.registry import Registry, Transformer, detect_exact
from goinst.transformers import builtin_transformers, default_registry


def make_transformer(name, path, family=None):
    return Transformer(
        name=name,
        import_path=path,
        detect=detect_exact(path),
        inject=lambda unit, ctx: False,
        remove=lambda unit: False,
        family=family,
    )


class RegistryTests(unittest.TestCase):
    def test_names_are_unique(self) -> None:
        registry = Registry([make_transformer("sql", "database/sql")])
        with self.assertRaises(DuplicateTransformerError):
            registry.register(make_transformer("sql", "other/sql"))

    def test_builtin_names_are_unique(self) -> None:
        names = [t.name for t in builtin_transformers()]
        self.assertEqual(len(names), len(set(names)))
        self.assertEqual(len(default_registry()), len(names))

    def test_lookup_by_name(self) -> None:
        registry = default_registry()
        self.assertIn("gin", registry)
        self.assertEqual(registry.by_name("gin").import_path, "github.com/gin-gonic/gin")
        self.assertIsNone(registry.by_name("nope"))

    def test_detected_and_filtered(self) -> None:
        unit = parse_source(
            'package main\n\nimport (\n\t"database/sql"\n\n\t"github.com/gin-gonic/gin"\n)\n'
        )
        registry = default_registry()
        detected = [t.name for t in registry.detected(unit)]
        self.assertIn("gin", detected)
        self.assertIn("sql", detected)
        self.assertEqual([t.name for t in registry.filtered(unit, ["sql"])], ["sql"])
        self.assertEqual(len(registry.filtered(unit, None)), len(detected))

    def test_dedupe_keeps_first_of_family(self) -> None:
        first = make_transformer("gorm", "gorm.io/gorm", family="gorm")
        second = make_transformer("jinzhugorm", "github.com/jinzhu/gorm", family="gorm")
        other = make_transformer("sql", "database/sql")
        kept = Registry.dedupe([first, second, other])
        self.assertEqual([t.name for t in kept], ["gorm", "sql"])

    def test_for_dependency(self) -> None:
        registry = default_registry()
        self.assertEqual(registry.for_dependency("github.com/gin-gonic/gin").name, "gin")
        self.assertEqual(registry.for_dependency("github.com/labstack/echo/v4").name, "echo")
        self.assertEqual(registry.for_dependency("go.mongodb.org/mongo-driver").name, "mongo")
        self.assertIsNone(registry.for_dependency("github.com/stretchr/testify"))

    def test_companion_for_version_variant(self) -> None:
        echo = default_registry().by_name("echo")
        v4 = parse_source('package main\n\nimport "github.com/labstack/echo/v4"\n')
        v3 = parse_source('package main\n\nimport "github.com/labstack/echo"\n')
        self.assertTrue(echo.companion_for(v4).endswith("echo/v4/whatapecho"))
        self.assertTrue(echo.companion_for(v3).endswith("labstack/echo/whatapecho"))


if __name__ == "__main__":
    unittest.main()
