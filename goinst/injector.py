"""
Injection pipeline.

For one Program Unit, in order (each step may end the run with a verbatim copy):

 1. empty input                              -> copy
 2. parse failure                            -> copy + diagnostic
 3. companion import already present         -> copy (idempotence gate)
 4. find main
 5. no policy, no main and no custom rule    -> copy
 6. pick the trace alias (trace / whataptrace)
 7. main: prepend `trace.Init(nil)` and `defer trace.Shutdown()`
 8. each enabled, detected policy (one per family); its companion import is
    added only when it changed the unit
 9. error tracing, when enabled
10. custom rules: Inject, Replace, Hook, Transform
11. drop emptied import declarations and print

Add rules run around the whole-tree walk in inject_dir. A file whose
instrumentation fails unexpectedly is reported as an error and copied as-is;
the walk goes on.
"""

from __future__ import annotations
from typing import List, Optional, Tuple
import os
import sys

from . import imports, rules
from .config import Config
from .errors import ParseError, TransformerError
from .errortrace import ErrorTracer
from .imports import TRACE_IMPORT
from .ir import DeferStmt, ExprStmt, FuncDecl, Ident, SourceFile, call, sel
from .parser import parse_source
from .paths import EXCLUDED_FILE, GO_FILE, PathFilter, copy_atomic, iter_tree, write_text_atomic
from .printer import print_source
from .registry import InjectContext, Registry, Transformer
from .report import (
    DIAG_ERROR, FileReport, QUIET, Report, STATUS_COPIED, STATUS_ERROR, STATUS_INSTRUMENTED,
    STATUS_SKIPPED, Diagnostic,
)
from .semantic import SemanticCache
from .transformers import default_registry
from .transformers.base import main_func

DEFAULT_TRACE_ALIAS = "trace"
FALLBACK_TRACE_ALIAS = "whataptrace"


def trace_alias_for(unit: SourceFile) -> str:
    if imports.is_declared(unit, DEFAULT_TRACE_ALIAS):
        return FALLBACK_TRACE_ALIAS
    return DEFAULT_TRACE_ALIAS


def add_trace_import(unit: SourceFile, alias: str) -> bool:
    return imports.add_import(unit, TRACE_IMPORT, None if alias == DEFAULT_TRACE_ALIAS else alias)


def init_statements(alias: str) -> List:
    return [
        ExprStmt(call(sel(alias, "Init"), Ident("nil"))),
        DeferStmt(call(sel(alias, "Shutdown"))),
    ]


def insert_main_init(fn: FuncDecl, alias: str) -> None:
    fn.body.stmts = init_statements(alias) + fn.body.stmts


def read_source(path: str) -> str:
    with open(path, "rb") as f:
        data = f.read()
    return data.decode("utf-8")


class Injector:
    def __init__(
        self,
        registry: Optional[Registry] = None,
        config: Optional[Config] = None,
        report: Optional[Report] = None,
        semantic: Optional[SemanticCache] = None,
    ) -> None:
        self.registry = registry if registry is not None else default_registry()
        self.config = config if config is not None else Config()
        # without an explicit config every registered policy is enabled
        self.enabled: Optional[List[str]] = config.enabled_packages() if config is not None else None
        self.report = report if report is not None else Report("inject", level=QUIET)
        self.semantic = semantic if semantic is not None else SemanticCache(debug=self.config.debug)

    def _debug(self, message: str) -> None:
        if self.config.debug:
            sys.stderr.write(f"[goinst] debug: {message}\n")

    def has_custom_rules(self) -> bool:
        custom = self.config.custom
        return bool(custom.inject or custom.replace or custom.hook or custom.transform)

    # ---------------- policies ----------------

    def _run_transformer(self, unit: SourceFile, transformer: Transformer, ctx: InjectContext) -> bool:
        if transformer.semantic_hook is not None and ctx.directory:
            return transformer.semantic_hook(unit, ctx.directory, self.semantic)
        return transformer.inject(unit, ctx)

    def _apply_transformers(self, unit: SourceFile, ctx: InjectContext, entry: FileReport) -> None:
        selected = Registry.dedupe(self.registry.filtered(unit, self.enabled))
        for transformer in selected:
            self._debug(f"{entry.path}: running {transformer.name}")
            if not self._run_transformer(unit, transformer, ctx):
                continue
            path = transformer.companion_for(unit)
            if path:
                imports.add_import(unit, path, transformer.companion_alias)
                if transformer.companion_alias:
                    entry.changes.append(f"added import: {path} (alias: {transformer.companion_alias})")
                else:
                    entry.changes.append(f"added import: {path}")
            entry.transformers.append(transformer.name)
            entry.changes.append(f"applied: {transformer.name} transformer")

    # ---------------- one unit ----------------

    def inject_source(self, text: str, path: str = "", directory: Optional[str] = None) -> Tuple[Optional[str], FileReport]:
        """
        Returns (output, report entry). output is None when the file is to be
        copied verbatim.
        """
        entry = FileReport(path=path, status=STATUS_INSTRUMENTED)
        if not text.strip():
            entry.status, entry.reason = STATUS_SKIPPED, "empty file"
            return None, entry
        try:
            unit = parse_source(text)
        except ParseError as exc:
            entry.status, entry.reason, entry.error = STATUS_ERROR, "copied as-is", f"parse error: {exc}"
            entry.diagnostics.append(Diagnostic(DIAG_ERROR, str(exc), line=exc.line or 0))
            return None, entry

        if imports.has_companion(unit):
            entry.status, entry.reason = STATUS_SKIPPED, "already instrumented"
            return None, entry

        main = main_func(unit)
        detected = self.registry.filtered(unit, self.enabled)
        if not detected and main is None and not self.has_custom_rules():
            entry.status, entry.reason = STATUS_SKIPPED, "no target packages and no main func"
            return None, entry

        alias = trace_alias_for(unit)
        ctx = InjectContext(trace_alias=alias, directory=directory, debug=self.config.debug)

        if main is not None:
            add_trace_import(unit, alias)
            insert_main_init(main, alias)
            entry.changes.append(f"added import: {TRACE_IMPORT}")
            entry.changes.append(f"added: {alias}.Init(nil)")
            entry.changes.append(f"added: defer {alias}.Shutdown()")

        try:
            self._apply_transformers(unit, ctx, entry)
        except TransformerError as exc:
            entry.status, entry.error = STATUS_ERROR, str(exc)
            entry.reason = "copied as-is"
            return None, entry

        if self.config.error_tracking:
            added = ErrorTracer(alias, imports.context_name(unit)).inject(unit)
            if added:
                imports.add_import(unit, "context")
                add_trace_import(unit, alias)
                entry.changes.append(f"added: error tracing ({added})")

        if self.has_custom_rules():
            entry.changes.extend(rules.apply_rules(unit, self.config.custom, path, self.config.base_dir))

        if not entry.changes:
            entry.status, entry.reason = STATUS_SKIPPED, "nothing to instrument"
            return None, entry
        imports.cleanup(unit)
        return print_source(unit), entry

    # ---------------- files ----------------

    def inject_file(self, src: str, dst: str) -> FileReport:
        """Instrument src into dst; src itself is never written."""
        try:
            text = read_source(src)
        except (OSError, UnicodeDecodeError) as exc:
            entry = FileReport(path=src, status=STATUS_ERROR, error=f"read file: {exc}")
            self.report.add_file(entry)
            if isinstance(exc, UnicodeDecodeError):
                copy_atomic(src, dst)
            return entry
        try:
            output, entry = self.inject_source(text, src, os.path.dirname(os.path.abspath(src)))
        except Exception as exc:
            sys.stderr.write(f"[goinst] Failed to instrument '{src}': {exc}\n")
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

    def inject_dir(self, src_dir: str, dst_dir: str) -> Report:
        src_dir = os.path.abspath(src_dir)
        dst_dir = os.path.abspath(dst_dir)
        self.report.set_dirs(src_dir, dst_dir)
        custom = self.config.custom
        base_dir = self.config.base_dir or src_dir

        if custom.add:
            for path in rules.apply_add_rules(custom.add, dst_dir, base_dir, append=False):
                self._debug(f"add rule wrote {path}")

        path_filter = PathFilter(src_dir, self.config.exclude)
        for src, dst, kind in iter_tree(src_dir, dst_dir, path_filter):
            if kind == GO_FILE:
                self.inject_file(src, dst)
                continue
            reason = "excluded by pattern" if kind == EXCLUDED_FILE else "non-go file"
            copy_atomic(src, dst)
            self.report.add_file(FileReport(path=src, status=STATUS_COPIED, reason=reason))

        if custom.add:
            for path in rules.apply_add_rules(custom.add, dst_dir, base_dir, append=True):
                self._debug(f"append rule wrote {path}")
        return self.report
