"""
Per-file outcomes of a run, the go.mod dependency view, and the summary.

One Report is shared by every file of a batch; additions are serialized by a
lock so files may be processed in parallel.
"""

from __future__ import annotations
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TextIO
import json
import sys
import threading

from .registry import Registry

STATUS_INSTRUMENTED = "instrumented"
STATUS_SKIPPED = "skipped"
STATUS_COPIED = "copied"
STATUS_ERROR = "error"
STATUS_REMOVED = "removed"

DIAG_INFO = "info"
DIAG_WARNING = "warning"
DIAG_ERROR = "error"

QUIET, NORMAL, VERBOSE, DEBUG = range(4)

_RULE = "-" * 40


@dataclass
class Diagnostic:
    level: str
    message: str
    line: int = 0
    hint: str = ""


@dataclass
class FileReport:
    path: str
    status: str
    reason: str = ""
    transformers: List[str] = field(default_factory=list)
    changes: List[str] = field(default_factory=list)
    error: str = ""
    diagnostics: List[Diagnostic] = field(default_factory=list)

    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.level == DIAG_WARNING]


@dataclass
class Dependency:
    path: str
    version: str
    indirect: bool = False
    supported: bool = False
    transformer: str = ""


@dataclass
class Summary:
    total: int = 0
    instrumented: int = 0
    skipped: int = 0
    copied: int = 0
    errors: int = 0
    removed: int = 0
    warnings: int = 0
    supported_libraries: int = 0
    unsupported_libraries: int = 0


def _compact(value: Any) -> Any:
    """Drop empty optional fields, the way the JSON report is read by tools."""
    if isinstance(value, dict):
        return {k: _compact(v) for k, v in value.items() if v not in ("", [], None) or k in ("path", "status")}
    if isinstance(value, list):
        return [_compact(v) for v in value]
    return value


class Report:
    def __init__(self, command: str, level: int = NORMAL, out: Optional[TextIO] = None) -> None:
        self.command = command
        self.level = level
        self.out = out
        self.timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        self.source_dir = ""
        self.output_dir = ""
        self.summary = Summary()
        self.files: List[FileReport] = []
        self.dependencies: List[Dependency] = []
        self.warnings: List[Diagnostic] = []
        self._lock = threading.Lock()

    def _print(self, text: str = "") -> None:
        print(text, file=self.out if self.out is not None else sys.stdout)

    def set_dirs(self, source_dir: str, output_dir: str) -> None:
        self.source_dir = source_dir
        self.output_dir = output_dir

    # ---------------- collection ----------------

    def add_file(self, entry: FileReport) -> None:
        with self._lock:
            self.files.append(entry)
            self.summary.total += 1
            if entry.status == STATUS_INSTRUMENTED:
                self.summary.instrumented += 1
            elif entry.status == STATUS_SKIPPED:
                self.summary.skipped += 1
            elif entry.status == STATUS_COPIED:
                self.summary.copied += 1
            elif entry.status == STATUS_ERROR:
                self.summary.errors += 1
            elif entry.status == STATUS_REMOVED:
                self.summary.removed += 1
            for diag in entry.warnings():
                self.summary.warnings += 1
                self.warnings.append(Diagnostic(DIAG_WARNING, f"{entry.path}:{diag.line} - {diag.message}", hint=diag.hint))
            self._log_file(entry)

    def add_dependency(self, dep: Dependency) -> None:
        with self._lock:
            self.dependencies.append(dep)
            if dep.supported:
                self.summary.supported_libraries += 1
            elif not dep.indirect:
                self.summary.unsupported_libraries += 1

    def add_warning(self, message: str, hint: str = "") -> None:
        with self._lock:
            self.summary.warnings += 1
            self.warnings.append(Diagnostic(DIAG_WARNING, message, hint=hint))

    def by_path(self, path: str) -> Optional[FileReport]:
        with self._lock:
            for entry in self.files:
                if entry.path == path:
                    return entry
        return None

    # ---------------- console ----------------

    def _log_file(self, entry: FileReport) -> None:
        if self.level == QUIET:
            return
        if self.level >= DEBUG:
            self._print(f"[{entry.status}] {entry.path}")
            if entry.reason:
                self._print(f"   reason: {entry.reason}")
            if entry.transformers:
                self._print(f"   transformers: {', '.join(entry.transformers)}")
            for change in entry.changes:
                self._print(f"   change: {change}")
            if entry.error:
                self._print(f"   error: {entry.error}")
            return
        if entry.status == STATUS_ERROR:
            self._print(f"ERROR {entry.path}: {entry.error}")
        elif entry.status in (STATUS_INSTRUMENTED, STATUS_REMOVED):
            self._print(f"{entry.status.upper():<12} {entry.path}")
            if self.level >= VERBOSE:
                if entry.transformers:
                    self._print(f"   transformers: {', '.join(entry.transformers)}")
                for change in entry.changes:
                    self._print(f"   - {change}")
        elif self.level >= VERBOSE:
            suffix = f" ({entry.reason})" if entry.reason else ""
            self._print(f"{entry.status.upper():<12} {entry.path}{suffix}")

    def print_summary(self) -> None:
        s = self.summary
        self._print()
        self._print(_RULE)
        self._print("Summary")
        self._print(_RULE)
        if s.instrumented:
            self._print(f"   Instrumented: {s.instrumented} files")
        if s.removed:
            self._print(f"   Removed: {s.removed} files")
        if s.skipped:
            self._print(f"   Skipped: {s.skipped} files")
        if s.copied and self.level >= VERBOSE:
            self._print(f"   Copied: {s.copied} files")
        if s.warnings:
            self._print(f"   Warnings: {s.warnings}")
        if s.errors:
            self._print(f"   Errors: {s.errors} files")
        self._print(f"   Total: {s.total} files")
        self._print(_RULE)
        self._print_dependencies()
        self._print_warnings()

    def _print_dependencies(self) -> None:
        if not self.dependencies:
            return
        if self.level < VERBOSE and self.summary.supported_libraries == 0:
            return
        self._print("Dependencies (go.mod)")
        self._print(_RULE)
        for dep in self.dependencies:
            if dep.indirect and self.level < VERBOSE:
                continue
            if dep.supported:
                self._print(f"   + {dep.path} {dep.version} -> {dep.transformer}")
            elif self.level >= VERBOSE:
                indirect = " (indirect)" if dep.indirect else ""
                self._print(f"     {dep.path} {dep.version}{indirect}")
        self._print(_RULE)

    def _print_warnings(self) -> None:
        if not self.warnings or self.level < VERBOSE:
            return
        self._print("Warnings")
        self._print(_RULE)
        for warning in self.warnings:
            self._print(f"   {warning.message}")
            if warning.hint and self.level >= DEBUG:
                self._print(f"      hint: {warning.hint}")
        self._print(_RULE)

    # ---------------- JSON ----------------

    def to_json_obj(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "timestamp": self.timestamp,
                "command": self.command,
                "source_dir": self.source_dir,
                "output_dir": self.output_dir,
                "summary": asdict(self.summary),
                "dependencies": [_compact(asdict(d)) for d in self.dependencies],
                "files": [_compact(asdict(f)) for f in self.files],
            }

    def save_json(self, path: str) -> None:
        text = json.dumps(self.to_json_obj(), indent=2, sort_keys=False)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text + "\n")
        if self.level > QUIET:
            self._print(f"Report saved: {path}")

    # ---------------- go.mod ----------------

    def load_dependencies(self, go_mod_path: str, registry: Registry) -> int:
        """Record every require of a go.mod. Returns the number of dependencies found."""
        with open(go_mod_path, "r", encoding="utf-8") as handle:
            lines = handle.read().splitlines()
        count = 0
        in_require = False
        for raw in lines:
            line = raw.strip()
            if not line or line.startswith("//"):
                continue
            if line.startswith("require ("):
                in_require = True
                continue
            if line == ")":
                in_require = False
                continue
            if in_require or line.startswith("require "):
                dep = parse_dependency_line(line, registry)
                if dep is not None:
                    self.add_dependency(dep)
                    count += 1
        return count


def parse_dependency_line(line: str, registry: Registry) -> Optional[Dependency]:
    line = line.strip()
    if line.startswith("require "):
        line = line[len("require "):].strip()
    if not line or line.startswith("//") or line in ("(", ")"):
        return None
    indirect = "// indirect" in line
    parts = line.split("//", 1)[0].split()
    if len(parts) < 2:
        return None
    dep = Dependency(path=parts[0], version=parts[1], indirect=indirect)
    transformer = registry.for_dependency(dep.path)
    if transformer is not None:
        dep.supported = True
        dep.transformer = transformer.name
    return dep
