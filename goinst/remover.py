"""
Removal pipeline: the inverse of goinst.injector.

Per unit: reverse Replace rules while their companion imports are still
present, strip companion imports, drop the Init/Shutdown pair from main, run
the inverse of every policy that applies, drop error-tracing calls, optionally
clear hand-written instrumentation (--all), and finally drop a `context`
import nothing uses any more. Restored imports take the place the stripped
ones left, so their declaration keeps its original form.

Hand-written instrumentation that cannot be removed safely is left in place
and reported as a warning.
"""

from __future__ import annotations
from typing import List, Optional, Tuple
import os
import sys

from . import imports, rules
from .config import Config
from .errors import ParseError, TransformerError, UnremovableInstrumentation
from .errortrace import ErrorTracer
from .imports import TRACE_IMPORT
from .injector import DEFAULT_TRACE_ALIAS, read_source
from .ir import (
    AssignStmt, Call, DeferStmt, ExprStmt, FuncLit, Ident, KeyedElement, Node, Selector,
    SourceFile, Stmts, call_target, iter_nodes, remove_where, stmt_call, walk_statements,
)
from .parser import parse_source
from .paths import EXCLUDED_FILE, GO_FILE, PathFilter, copy_atomic, iter_tree, write_text_atomic
from .printer import print_source
from .registry import Registry, Transformer
from .report import (
    DIAG_ERROR, DIAG_INFO, DIAG_WARNING, Diagnostic, FileReport, QUIET, Report, STATUS_COPIED,
    STATUS_ERROR, STATUS_REMOVED, STATUS_SKIPPED,
)
from .transformers import default_registry
from .transformers.base import main_func

KNOWN_PACKAGES = {"trace", "logsink", "httpc", "method"}
CLOSURE_FUNCS = {
    "whatapsql": {"Wrap", "WrapWithParam", "WrapError", "WrapOpen"},
    "httpc": {"Trace", "Wrap"},
    "method": {"Trace", "Wrap"},
}
BOUND_FUNCS = {
    "trace": {"Start", "StartMethod", "GetMTrace"},
    "whatapsql": {"Start", "StartWithParam", "StartOpen", "Open", "OpenContext", "OpenDB", "Wrap", "WrapWithParam"},
    "httpc": {"Start", "Trace", "Wrap"},
    "method": {"Start", "Trace", "Wrap"},
}


def is_known_package(name: str) -> bool:
    return name in KNOWN_PACKAGES or name.startswith("whatap")


def is_init_stmt(stmt: Node, aliases) -> bool:
    target = stmt_call(stmt)
    pkg, name = call_target(target)
    return pkg in aliases and name == "Init" and len(target.args) == 1 and isinstance(target.args[0], Ident) \
        and target.args[0].name == "nil"


def is_shutdown_stmt(stmt: Node, aliases) -> bool:
    return isinstance(stmt, DeferStmt) and call_target(stmt.call)[0] in aliases \
        and call_target(stmt.call)[1] == "Shutdown"


def remove_main_init(unit: SourceFile, alias: str) -> int:
    fn = main_func(unit)
    if fn is None:
        return 0
    aliases = {alias}
    fn.body.stmts, count = remove_where(
        fn.body.stmts, lambda s: is_init_stmt(s, aliases) or is_shutdown_stmt(s, aliases)
    )
    return count


# ============================================================
# =============== HAND-WRITTEN INSTRUMENTATION ===============
# ============================================================

class ManualCleaner:
    """
    Strict (--all) removal. Standalone calls whose result is not used are
    removed; bound values, closure wrappers and struct fields are reported.
    """

    def __init__(self) -> None:
        self.findings: List[UnremovableInstrumentation] = []
        self.removed = 0

    # ---------------- removable ----------------

    def removable_call(self, node: Optional[Node]) -> bool:
        if not isinstance(node, Call):
            return False
        pkg, name = call_target(node)
        if not pkg or not is_known_package(pkg):
            return self.removable_method_call(node)
        if pkg == "trace":
            return name in ("Step", "Println", "SetMTrace", "Error")
        return pkg == "logsink"

    @staticmethod
    def removable_method_call(node: Call) -> bool:
        """`x.AddHook(whatap...(...))`."""
        if not isinstance(node.fun, Selector) or node.fun.sel != "AddHook" or not node.args:
            return False
        pkg = call_target(node.args[0])[0]
        return pkg.startswith("whatap")

    def removable_defer(self, target: Node) -> bool:
        if isinstance(target, Call) and isinstance(target.fun, FuncLit):
            body = target.fun.body
            return body is not None and bool(body.stmts) and all(self.removable(s) for s in body.stmts)
        pkg, name = call_target(target)
        if pkg == "trace":
            return name in ("End", "Shutdown")
        if pkg in ("whatapsql", "httpc", "method") and name == "End":
            return True
        return pkg.startswith("whatap")

    def removable(self, stmt: Node) -> bool:
        if isinstance(stmt, ExprStmt):
            return self.removable_call(stmt.x)
        if isinstance(stmt, DeferStmt):
            return self.removable_defer(stmt.call)
        return False

    # ---------------- unremovable ----------------

    @staticmethod
    def bound(node: Node) -> bool:
        pkg, name = call_target(node)
        if not pkg:
            return False
        if name in BOUND_FUNCS.get(pkg, ()):
            return True
        return pkg.startswith("whatap")

    def check(self, stmt: Node) -> None:
        if isinstance(stmt, AssignStmt):
            for value in stmt.rhs:
                if self.bound(value):
                    kind = "variable declaration" if stmt.op == ":=" else "variable assignment"
                    self._warn(stmt, value, f"{kind}: {_describe(value)} (manual removal required)",
                               "the returned value is used by the surrounding code")
                    return
        target = stmt_call(stmt)
        if target is None:
            return
        pkg, name = call_target(target)
        if name in CLOSURE_FUNCS.get(pkg, ()):
            self._warn(stmt, target, f"closure pattern: {pkg}.{name}(...) (contains business logic, manual removal required)",
                       "move the closure body back in place of the wrapper")
        elif pkg and is_known_package(pkg):
            self._warn(stmt, target, f"whatap call: {pkg}.{name}(...) (manual removal required)", "")

    def _warn(self, stmt: Node, value: Node, message: str, hint: str) -> None:
        line = stmt.line or value.line
        self.findings.append(UnremovableInstrumentation(line, message, hint))

    def check_struct_fields(self, unit: SourceFile) -> None:
        for node in iter_nodes(unit):
            if isinstance(node, KeyedElement) and self.bound(node.value):
                key = node.key.name if isinstance(node.key, Ident) else "unknown"
                self.findings.append(UnremovableInstrumentation(
                    node.line,
                    f"struct field assignment: {key}: {_describe(node.value)} (manual removal required)",
                ))

    # ---------------- walk ----------------

    def clean(self, unit: SourceFile) -> int:
        # deferred closures are judged before their bodies are emptied by the walk
        closures = {
            id(node) for node in iter_nodes(unit)
            if isinstance(node, DeferStmt) and isinstance(node.call, Call)
            and isinstance(node.call.fun, FuncLit) and self.removable(node)
        }

        def removable(stmt: Node) -> bool:
            return id(stmt) in closures or self.removable(stmt)

        def visitor(stmts: Stmts, owner: Node) -> Optional[Stmts]:
            for stmt in stmts:
                if not removable(stmt):
                    self.check(stmt)
            if not any(removable(s) for s in stmts):
                return None
            kept, count = remove_where(stmts, removable)
            self.removed += count
            return kept

        for fn in unit.funcs():
            if fn.body is not None:
                walk_statements(fn.body, visitor)
        self.check_struct_fields(unit)
        return self.removed


def _describe(node: Node) -> str:
    pkg, name = call_target(node)
    return f"{pkg}.{name}(...)" if pkg else "unknown"


# ============================================================
# ======================== REMOVER ===========================
# ============================================================

class Remover:
    def __init__(
        self,
        registry: Optional[Registry] = None,
        config: Optional[Config] = None,
        report: Optional[Report] = None,
        remove_all: bool = False,
    ) -> None:
        self.registry = registry if registry is not None else default_registry()
        self.config = config if config is not None else Config()
        self.report = report if report is not None else Report("remove", level=QUIET)
        self.remove_all = remove_all

    def _debug(self, message: str) -> None:
        if self.config.debug:
            sys.stderr.write(f"[goinst] debug: {message}\n")

    def to_invert(self, unit: SourceFile) -> List[Transformer]:
        """Computed before imports are stripped: detected, or carrying its companion import."""
        return [t for t in self.registry.all() if t.detect(unit) or t.has_companion(unit)]

    def remove_source(self, text: str, path: str = "") -> Tuple[Optional[str], FileReport]:
        """Returns (output, report entry); output is None for a verbatim copy."""
        entry = FileReport(path=path, status=STATUS_REMOVED)
        if not text.strip():
            entry.status, entry.reason = STATUS_SKIPPED, "empty file"
            return None, entry
        try:
            unit = parse_source(text)
        except ParseError as exc:
            entry.status, entry.reason, entry.error = STATUS_ERROR, "copied as-is", f"parse error: {exc}"
            entry.diagnostics.append(Diagnostic(DIAG_ERROR, str(exc), line=exc.line or 0))
            return None, entry
        if not imports.has_companion(unit):
            entry.status, entry.reason = STATUS_SKIPPED, "not instrumented"
            entry.diagnostics.append(Diagnostic(DIAG_INFO, "no whatap import found; file copied unchanged"))
            return None, entry

        alias = imports.package_name(unit, TRACE_IMPORT) or DEFAULT_TRACE_ALIAS
        selected = self.to_invert(unit)

        # Replace rules are recognized by their companion import
        entry.changes.extend(rules.reverse_rules(unit, self.config.custom))

        stripped = imports.strip_companions(unit)
        if stripped:
            entry.changes.append(f"removed: whatap imports ({len(stripped)})")

        if remove_main_init(unit, alias):
            entry.changes.append(f"removed: {alias}.Init/Shutdown")

        for transformer in selected:
            try:
                changed = transformer.remove(unit)
            except TransformerError as exc:
                entry.status, entry.reason, entry.error = STATUS_ERROR, "copied as-is", f"remove {transformer.name}: {exc}"
                return None, entry
            if changed:
                self._debug(f"{path}: reverted {transformer.name}")
                entry.transformers.append(transformer.name)
                entry.changes.append(f"removed: {transformer.name} instrumentation")

        traced = ErrorTracer(alias, imports.context_name(unit)).remove(unit)
        if traced:
            entry.changes.append(f"removed: error tracing ({traced})")

        if self.remove_all:
            cleaner = ManualCleaner()
            cleaned = cleaner.clean(unit)
            if cleaned:
                entry.changes.append(f"removed: manual instrumentation ({cleaned})")
            for finding in cleaner.findings:
                entry.diagnostics.append(Diagnostic(DIAG_WARNING, finding.message, line=finding.line, hint=finding.hint))
                sys.stderr.write(f"[goinst] Warning: {path}:{finding.line}: {finding.message}\n")

        imports.remove_if_unused(unit, "context")
        imports.cleanup(unit)
        return print_source(unit), entry

    def remove_file(self, src: str, dst: str) -> FileReport:
        try:
            text = read_source(src)
        except (OSError, UnicodeDecodeError) as exc:
            entry = FileReport(path=src, status=STATUS_ERROR, error=f"read file: {exc}")
            self.report.add_file(entry)
            if isinstance(exc, UnicodeDecodeError):
                copy_atomic(src, dst)
            return entry
        try:
            output, entry = self.remove_source(text, src)
        except Exception as exc:
            sys.stderr.write(f"[goinst] Failed to remove instrumentation from '{src}': {exc}\n")
            output = None
            entry = FileReport(
                path=src, status=STATUS_ERROR, reason="copied as-is",
                error=f"internal error: {type(exc).__name__}: {exc}",
            )
        entry.path = src
        if output is None:
            copy_atomic(src, dst)
        else:
            write_text_atomic(dst, output)
        self.report.add_file(entry)
        return entry

    def remove_dir(self, src_dir: str, dst_dir: str) -> Report:
        src_dir = os.path.abspath(src_dir)
        dst_dir = os.path.abspath(dst_dir)
        self.report.set_dirs(src_dir, dst_dir)
        path_filter = PathFilter(src_dir, self.config.exclude)
        for src, dst, kind in iter_tree(src_dir, dst_dir, path_filter):
            if kind == GO_FILE:
                self.remove_file(src, dst)
                continue
            reason = "excluded by pattern" if kind == EXCLUDED_FILE else "non-go file"
            copy_atomic(src, dst)
            self.report.add_file(FileReport(path=src, status=STATUS_COPIED, reason=reason))
        return self.report
