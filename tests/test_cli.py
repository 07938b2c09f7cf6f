import contextlib
import io
import json
import os
import tempfile
import unittest

from goinst import __version__
from goinst.cli import main


APP = """package main

import (
\t"net/http"
)

func main() {
\thttp.HandleFunc("/", index)
\thttp.ListenAndServe(":8080", nil)
}

func index(w http.ResponseWriter, r *http.Request) {
\tw.Write([]byte("ok"))
}
"""


def write(path, text):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


def read(path):
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def run(argv):
    out = io.StringIO()
    with contextlib.redirect_stdout(out):
        code = main(argv)
    return code, out.getvalue()


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.src = os.path.join(self.tmp.name, "app")
        write(os.path.join(self.src, "main.go"), APP)
        write(os.path.join(self.src, "go.mod"), "module example.com/app\n\ngo 1.21\n")

    def test_version(self) -> None:
        code, out = run(["version"])
        self.assertEqual(code, 0)
        self.assertEqual(out.strip(), f"goinst {__version__}")

    def test_inject_and_remove(self) -> None:
        out_dir = os.path.join(self.tmp.name, "instrumented")
        clean_dir = os.path.join(self.tmp.name, "clean")
        report_path = os.path.join(self.tmp.name, "report.json")

        code, _ = run(["-q", "--report", report_path, "inject", "--src", self.src, "-o", out_dir])
        self.assertEqual(code, 0)
        instrumented = read(os.path.join(out_dir, "main.go"))
        self.assertIn("trace.Init(nil)", instrumented)
        self.assertEqual(read(os.path.join(out_dir, "go.mod")), "module example.com/app\n\ngo 1.21\n")
        with open(report_path, "r", encoding="utf-8") as f:
            report = json.load(f)
        self.assertEqual(report["command"], "inject")
        self.assertEqual(report["summary"]["instrumented"], 1)

        code, _ = run(["-q", "remove", "--src", out_dir, "-o", clean_dir])
        self.assertEqual(code, 0)
        self.assertEqual(read(os.path.join(clean_dir, "main.go")), APP)

    def test_single_file(self) -> None:
        target = os.path.join(self.tmp.name, "single", "main.go")
        code, _ = run(["-q", "inject", "--src", os.path.join(self.src, "main.go"), "-o", target])
        self.assertEqual(code, 0)
        self.assertIn("trace.Init(nil)", read(target))

    def test_verbose_lists_files(self) -> None:
        out_dir = os.path.join(self.tmp.name, "instrumented")
        code, out = run(["-v", "inject", "--src", self.src, "-o", out_dir])
        self.assertEqual(code, 0)
        self.assertIn("Source path: " + self.src, out)
        self.assertIn("INSTRUMENTED", out)
        self.assertIn("Summary", out)

    def test_same_output_is_refused(self) -> None:
        code, _ = run(["-q", "inject", "--src", self.src, "-o", self.src])
        self.assertEqual(code, 1)

    def test_missing_source(self) -> None:
        code, _ = run(["inject", "--src", os.path.join(self.tmp.name, "nope")])
        self.assertEqual(code, 1)

    def test_bad_config(self) -> None:
        config = os.path.join(self.tmp.name, "bad.yaml")
        write(config, "instrumentation:\n  preset: everything\n")
        out_dir = os.path.join(self.tmp.name, "instrumented")
        code, _ = run(["--config", config, "inject", "--src", self.src, "-o", out_dir])
        self.assertEqual(code, 1)

    def test_analyze(self) -> None:
        code, out = run(["analyze", "--src", self.src])
        self.assertEqual(code, 0)
        self.assertIn("(main) [main]: nethttp", out)


if __name__ == "__main__":
    unittest.main()
