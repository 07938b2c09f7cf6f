import io
import json
import os
import tempfile
import unittest

from goinst.report import (
    DIAG_WARNING, NORMAL, QUIET, VERBOSE, Diagnostic, FileReport, Report, parse_dependency_line,
)
from goinst.transformers import default_registry


GO_MOD = """module example.com/shop

go 1.21

require (
\tgithub.com/gin-gonic/gin v1.9.1
\tgithub.com/google/uuid v1.3.0
\tgolang.org/x/sys v0.12.0 // indirect
)

require github.com/jmoiron/sqlx v1.3.5
"""


class SummaryTests(unittest.TestCase):
    def test_counts_by_status(self) -> None:
        report = Report("inject", level=QUIET)
        report.add_file(FileReport("a.go", "instrumented", transformers=["gin"]))
        report.add_file(FileReport("b.go", "skipped", reason="nothing to instrument"))
        report.add_file(FileReport("c.txt", "copied", reason="non-go file"))
        report.add_file(FileReport("d.go", "error", error="parse error: syntax error near line 3"))
        report.add_file(FileReport(
            "e.go", "removed",
            diagnostics=[Diagnostic(DIAG_WARNING, "closure pattern: httpc.Trace(...)", line=12)],
        ))
        s = report.summary
        self.assertEqual(
            (s.total, s.instrumented, s.skipped, s.copied, s.errors, s.removed, s.warnings),
            (5, 1, 1, 1, 1, 1, 1),
        )
        self.assertEqual(report.warnings[0].message, "e.go:12 - closure pattern: httpc.Trace(...)")
        self.assertIs(report.by_path("d.go"), report.files[3])

    def test_console_output(self) -> None:
        out = io.StringIO()
        report = Report("inject", level=NORMAL, out=out)
        report.add_file(FileReport("a.go", "instrumented"))
        report.add_file(FileReport("b.go", "skipped"))
        report.print_summary()
        text = out.getvalue()
        self.assertIn("INSTRUMENTED a.go", text)
        self.assertNotIn("b.go", text)
        self.assertIn("   Instrumented: 1 files", text)
        self.assertIn("   Total: 2 files", text)

    def test_verbose_lists_changes(self) -> None:
        out = io.StringIO()
        report = Report("inject", level=VERBOSE, out=out)
        report.add_file(FileReport("a.go", "instrumented", transformers=["gin"], changes=["applied: gin transformer"]))
        self.assertIn("   - applied: gin transformer", out.getvalue())


class DependencyTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = default_registry()

    def test_supported_line(self) -> None:
        dep = parse_dependency_line("github.com/gin-gonic/gin v1.9.1", self.registry)
        self.assertEqual((dep.path, dep.version, dep.supported, dep.transformer), (
            "github.com/gin-gonic/gin", "v1.9.1", True, "gin",
        ))

    def test_indirect_and_unsupported(self) -> None:
        dep = parse_dependency_line("\tgolang.org/x/sys v0.12.0 // indirect", self.registry)
        self.assertTrue(dep.indirect)
        self.assertFalse(dep.supported)

    def test_single_require_and_noise(self) -> None:
        dep = parse_dependency_line("require github.com/jmoiron/sqlx v1.3.5", self.registry)
        self.assertEqual(dep.transformer, "sqlx")
        self.assertIsNone(parse_dependency_line(")", self.registry))
        self.assertIsNone(parse_dependency_line("// comment", self.registry))
        self.assertIsNone(parse_dependency_line("lonely", self.registry))

    def test_load_go_mod(self) -> None:
        report = Report("analyze", level=QUIET)
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "go.mod")
            with open(path, "w", encoding="utf-8") as f:
                f.write(GO_MOD)
            self.assertEqual(report.load_dependencies(path, self.registry), 4)
        self.assertEqual(report.summary.supported_libraries, 2)
        self.assertEqual(report.summary.unsupported_libraries, 1)


class JsonTests(unittest.TestCase):
    def test_json_shape(self) -> None:
        report = Report("inject", level=QUIET)
        report.set_dirs("/src", "/out")
        report.add_file(FileReport("a.go", "instrumented", transformers=["gin"], changes=["applied: gin transformer"]))
        report.add_file(FileReport("b.go", "skipped"))
        obj = report.to_json_obj()
        self.assertEqual(obj["command"], "inject")
        self.assertEqual(obj["source_dir"], "/src")
        self.assertEqual(obj["summary"]["instrumented"], 1)
        self.assertEqual(obj["files"][0]["transformers"], ["gin"])
        self.assertEqual(obj["files"][1], {"path": "b.go", "status": "skipped"})

    def test_save_json(self) -> None:
        report = Report("remove", level=QUIET)
        report.add_file(FileReport("a.go", "removed"))
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "report.json")
            report.save_json(path)
            with open(path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        self.assertEqual(loaded["command"], "remove")
        self.assertEqual(loaded["summary"]["removed"], 1)
        self.assertIn("timestamp", loaded)


if __name__ == "__main__":
    unittest.main()
