import unittest

from goinst import imports
from goinst.parser import parse_source
from goinst.printer import print_source


GROUPED = """package main

import (
\t"fmt"
\t"os"

\t"github.com/gin-gonic/gin"
)

func main() {
\tfmt.Println(os.Args)
\tgin.Default()
}
"""

SINGLE = """package main

import "fmt"

func main() {
\tfmt.Println("hi")
}
"""


class ImportNameTests(unittest.TestCase):
    def test_default_name_skips_major_version(self) -> None:
        self.assertEqual(imports.default_name("github.com/labstack/echo/v4"), "echo")
        self.assertEqual(imports.default_name("net/http"), "http")

    def test_default_name_follows_go_package_naming(self) -> None:
        self.assertEqual(imports.default_name("github.com/redis/go-redis/v9"), "redis")
        self.assertEqual(imports.default_name("github.com/go-redis/redis/v8"), "redis")
        self.assertEqual(imports.default_name("github.com/aerospike/aerospike-client-go/v6"), "aerospike")
        self.assertEqual(imports.default_name("github.com/aerospike/aerospike-client-go"), "aerospike")
        self.assertEqual(imports.default_name("gopkg.in/yaml.v3"), "yaml")
        self.assertEqual(imports.default_name("github.com/mattn/go-sqlite3"), "sqlite3")

    def test_is_std(self) -> None:
        self.assertTrue(imports.is_std("net/http"))
        self.assertFalse(imports.is_std("github.com/gin-gonic/gin"))

    def test_package_name_honours_alias(self) -> None:
        unit = parse_source('package main\n\nimport (\n\tg "github.com/gin-gonic/gin"\n)\n')
        self.assertEqual(imports.package_name(unit, "github.com/gin-gonic/gin"), "g")
        self.assertEqual(imports.package_name(unit, "fmt"), "")

    def test_context_name(self) -> None:
        unit = parse_source('package main\n\nimport (\n\tstdctx "context"\n)\n')
        self.assertEqual(imports.context_name(unit), "stdctx")
        self.assertEqual(imports.context_name(parse_source("package main\n")), "context")

    def test_library_path_accepts_major_version_only(self) -> None:
        self.assertTrue(imports.is_library_path("github.com/labstack/echo/v4", "github.com/labstack/echo"))
        self.assertFalse(imports.is_library_path("github.com/labstack/echo/middleware", "github.com/labstack/echo"))

    def test_is_declared(self) -> None:
        unit = parse_source("package main\n\nvar trace = 1\n\nfunc helper() {}\n")
        self.assertTrue(imports.is_declared(unit, "trace"))
        self.assertTrue(imports.is_declared(unit, "helper"))
        self.assertFalse(imports.is_declared(unit, "main"))


class ImportEditTests(unittest.TestCase):
    def test_add_std_import_into_std_run(self) -> None:
        unit = parse_source(GROUPED)
        self.assertTrue(imports.add_import(unit, "context"))
        paths = [spec.path for spec in unit.imports]
        self.assertEqual(paths[0], "context")
        self.assertLess(paths.index("context"), paths.index("github.com/gin-gonic/gin"))

    def test_add_is_noop_when_present(self) -> None:
        unit = parse_source(GROUPED)
        self.assertFalse(imports.add_import(unit, "fmt"))
        self.assertEqual(print_source(unit), GROUPED)

    def test_add_then_remove_restores_text(self) -> None:
        unit = parse_source(GROUPED)
        imports.add_import(unit, "github.com/whatap/go-api/trace")
        self.assertIn('"github.com/whatap/go-api/trace"', print_source(unit))
        self.assertTrue(imports.has_companion(unit))
        self.assertEqual(imports.strip_companions(unit), ["github.com/whatap/go-api/trace"])
        self.assertEqual(print_source(unit), GROUPED)

    def test_single_import_gets_new_group(self) -> None:
        unit = parse_source(SINGLE)
        imports.add_import(unit, "github.com/whatap/go-api/trace")
        out = print_source(unit)
        self.assertIn('import "fmt"', out)
        self.assertIn('"github.com/whatap/go-api/trace"', out)
        imports.strip_companions(unit)
        imports.cleanup(unit)
        self.assertEqual(print_source(unit), SINGLE)

    def test_remove_if_unused(self) -> None:
        unit = parse_source(GROUPED)
        self.assertFalse(imports.remove_if_unused(unit, "fmt"))
        self.assertFalse(imports.remove_if_unused(unit, "context"))

    def test_restore_if_used(self) -> None:
        unit = parse_source(GROUPED)
        imports.remove_import(unit, "os")
        self.assertTrue(imports.restore_if_used(unit, "os"))
        self.assertTrue(imports.has_import(unit, "os"))
        self.assertFalse(imports.restore_if_used(unit, "strings"))

    def test_swapped_import_keeps_single_line_form(self) -> None:
        companion_path = "github.com/whatap/go-api/instrumentation/fmt/whatapfmt"
        unit = parse_source(SINGLE)
        imports.remove_import(unit, "fmt")
        imports.add_import(unit, companion_path)
        imports.cleanup(unit)
        self.assertIn(f'\nimport "{companion_path}"\n', print_source(unit))

        imports.remove_import(unit, companion_path)
        imports.add_import(unit, "fmt")
        imports.cleanup(unit)
        self.assertEqual(print_source(unit), SINGLE)

    def test_emptied_group_keeps_grouped_form(self) -> None:
        text = 'package main\n\nimport (\n\t"fmt"\n)\n\nfunc main() {\n\tfmt.Println("hi")\n}\n'
        unit = parse_source(text)
        imports.remove_import(unit, "fmt")
        imports.add_import(unit, "fmt")
        imports.cleanup(unit)
        self.assertEqual(print_source(unit), text)

    def test_cleanup_drops_empty_declarations(self) -> None:
        unit = parse_source(SINGLE)
        imports.remove_import(unit, "fmt")
        imports.cleanup(unit)
        self.assertEqual(print_source(unit), 'package main\n\nfunc main() {\n\tfmt.Println("hi")\n}\n')

    def test_standard_library_run_restored_ahead(self) -> None:
        text = 'package main\n\nimport (\n\t"net/http"\n\n\t"github.com/gin-gonic/gin"\n)\n'
        unit = parse_source(text)
        imports.remove_import(unit, "net/http")
        self.assertIn('import (\n\t"github.com/gin-gonic/gin"\n)', print_source(unit))
        imports.add_import(unit, "net/http")
        self.assertEqual(print_source(unit), text)


if __name__ == "__main__":
    unittest.main()
