"""
Logging policies.

fmt is a call substitution over the whole file. log, logrus and zap redirect
output to the trace log sink from `main`, right after the shutdown defer; they
do nothing in a unit without an entry point.
"""

from __future__ import annotations
from typing import Callable, List

from .. import imports
from ..ir import ExprStmt, Node, SourceFile, call, call_target, remove_where, sel, stmt_call
from ..registry import InjectContext, Transformer, detect_exact
from .base import LOGSINK_IMPORT, companion, main_func, shutdown_index
from .database import rename_policy

LOGSINK = "logsink"

FMT = rename_policy(
    "fmt",
    "fmt",
    ("Print", "Printf", "Println"),
    "whatapfmt",
    companion("fmt/whatapfmt"),
)


def _set_output(alias: str) -> ExprStmt:
    """`alias.SetOutput(logsink.GetTraceLogWriter(os.Stderr))`"""
    writer = call(sel(LOGSINK, "GetTraceLogWriter"), sel("os", "Stderr"))
    return ExprStmt(call(sel(alias, "SetOutput"), writer))


def _is_set_output(stmt: Node) -> bool:
    target = stmt_call(stmt)
    if target is None or call_target(target)[1] != "SetOutput" or len(target.args) != 1:
        return False
    pkg, name = call_target(target.args[0])
    return pkg == LOGSINK and name.startswith("GetTraceLogWriter")


def _is_hook(stmt: Node) -> bool:
    return call_target(stmt_call(stmt)) == (LOGSINK, "HookStderr")


def sink_policy(
    name: str,
    import_path: str,
    build: Callable[[str], ExprStmt],
    generated: Callable[[Node], bool],
    needs_os: bool,
) -> Transformer:
    """Insert build(alias) after `defer trace.Shutdown()` in main."""

    def inject(unit: SourceFile, ctx: InjectContext) -> bool:
        alias = imports.package_name(unit, import_path)
        fn = main_func(unit)
        if not alias or fn is None:
            return False
        index = shutdown_index(fn, ctx.trace_alias)
        if index < 0:
            return False
        fn.body.stmts.insert(index + 1, build(alias))
        if needs_os:
            imports.add_import(unit, "os")
        imports.add_import(unit, LOGSINK_IMPORT)
        return True

    def remove(unit: SourceFile) -> bool:
        fn = main_func(unit)
        if fn is None:
            return False
        fn.body.stmts, count = remove_where(fn.body.stmts, generated)
        if count and needs_os:
            imports.remove_if_unused(unit, "os")
        return count > 0

    return Transformer(
        name=name,
        import_path=import_path,
        detect=detect_exact(import_path),
        inject=inject,
        remove=remove,
    )


LOG = sink_policy("log", "log", _set_output, _is_set_output, needs_os=True)

LOGRUS = sink_policy("logrus", "github.com/sirupsen/logrus", _set_output, _is_set_output, needs_os=True)

ZAP = sink_policy(
    "zap",
    "go.uber.org/zap",
    lambda alias: ExprStmt(call(sel(LOGSINK, "HookStderr"))),
    _is_hook,
    needs_os=False,
)


def log_transformers() -> List[Transformer]:
    return [FMT, LOG, LOGRUS, ZAP]
