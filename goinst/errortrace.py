"""
Error tracing: report errors at the point a function gives up on them.

    if err != nil {                  if err != nil {
        return err          ->           trace.Error(context.Background(), err)
    }                                    return err
                                     }

Recognized shapes, in every nested statement list of every function except main:
- `if v != nil { ... return }`: before each direct return of the body;
- `if v == nil { ... } else { ... return }`: before each direct return of the else block;
- `if v == nil { ... return }` followed by more statements: right after the if.

Error-like values are recognized by name only (ERROR_NAMES); `context` is
spelled the way the file imports it. An if statement right after a call into
a companion package is skipped: the runtime already records that error.
"""

from __future__ import annotations
from typing import Iterator, List, Optional, Set

from .ir import (
    AssignStmt, Binary, Block, ExprStmt, FuncDecl, Ident, IfStmt, Node, ReturnStmt, SourceFile,
    Stmts, call, call_target, sel, stmt_call, walk_statements,
)

ERROR_NAMES = {"err", "e", "error"}

COMPANION_PACKAGES = {
    "whatapsql", "whatapsqlx", "whataphttp", "whatapredigo", "whatapgoredis", "whatapgorm",
    "whatapsarama", "whatapgin", "whatapecho", "whatapfiber", "whatapchi", "whatapmux",
    "whatapfasthttp", "whatapgrpc", "whatapkubernetes", "whatapmongo",
}


def _checked_name(cond: Optional[Node], op: str) -> str:
    """`v op nil` with an error-like v -> v, else ""."""
    if not isinstance(cond, Binary) or cond.op != op:
        return ""
    if not (isinstance(cond.y, Ident) and cond.y.name == "nil"):
        return ""
    if isinstance(cond.x, Ident) and cond.x.name in ERROR_NAMES:
        return cond.x.name
    return ""


def _chain(stmt: IfStmt) -> Iterator[IfStmt]:
    """An if statement and its else-if successors."""
    current: Optional[Node] = stmt
    while isinstance(current, IfStmt):
        yield current
        current = current.else_


def _has_return(block: Optional[Block]) -> bool:
    return block is not None and any(isinstance(s, ReturnStmt) for s in block.stmts)


class ErrorTracer:
    def __init__(self, trace_alias: str = "trace", context_alias: str = "context") -> None:
        self.trace_alias = trace_alias
        self.context_alias = context_alias
        self.companions: Set[str] = COMPANION_PACKAGES | {trace_alias}

    # ---------------- shapes ----------------

    def report_stmt(self, name: str) -> ExprStmt:
        return ExprStmt(call(sel(self.trace_alias, "Error"), call(sel(self.context_alias, "Background")), Ident(name)))

    def is_report(self, stmt: Node, name: Optional[str] = None) -> bool:
        target = stmt_call(stmt)
        if call_target(target) != (self.trace_alias, "Error") or len(target.args) != 2:
            return False
        if call_target(target.args[0]) != (self.context_alias, "Background"):
            return False
        value = target.args[1]
        if not isinstance(value, Ident) or value.name not in ERROR_NAMES:
            return False
        return name is None or value.name == name

    def is_companion_call(self, stmt: Optional[Node]) -> bool:
        if isinstance(stmt, AssignStmt) and len(stmt.rhs) == 1:
            return call_target(stmt.rhs[0])[0] in self.companions
        return call_target(stmt_call(stmt))[0] in self.companions

    # ---------------- inject ----------------

    def _before_returns(self, block: Optional[Block], name: str) -> int:
        if block is None:
            return 0
        out: List[Node] = []
        added = 0
        for stmt in block.stmts:
            if isinstance(stmt, ReturnStmt) and not (out and self.is_report(out[-1], name)):
                report = self.report_stmt(name)
                report.leading, stmt.leading = stmt.leading, []
                out.append(report)
                added += 1
            out.append(stmt)
        if added:
            block.stmts = out
        return added

    def _inject_if(self, stmt: IfStmt) -> int:
        added = 0
        for branch in _chain(stmt):
            name = _checked_name(branch.cond, "!=")
            if name:
                added += self._before_returns(branch.body, name)
            name = _checked_name(branch.cond, "==")
            if name and isinstance(branch.else_, Block):
                added += self._before_returns(branch.else_, name)
        return added

    def inject(self, unit: SourceFile) -> int:
        added = 0

        def visitor(stmts: Stmts, owner: Node) -> Optional[Stmts]:
            nonlocal added
            out: List[Node] = []
            previous: Optional[Node] = None
            changed = False
            for index, stmt in enumerate(stmts):
                out.append(stmt)
                suppressed = previous is not None and self.is_companion_call(previous)
                previous = stmt
                if not isinstance(stmt, IfStmt) or suppressed:
                    continue
                added += self._inject_if(stmt)
                name = _checked_name(stmt.cond, "==")
                if name and _has_return(stmt.body) and index < len(stmts) - 1:
                    if not self.is_report(stmts[index + 1], name):
                        out.append(self.report_stmt(name))
                        added += 1
                        changed = True
            return out if changed else None

        for fn in _traced_funcs(unit):
            walk_statements(fn.body, visitor, closures=False)
        return added

    # ---------------- remove ----------------

    def _drop_before_returns(self, block: Optional[Block], name: str) -> int:
        if block is None:
            return 0
        out: List[Node] = []
        removed = 0
        stmts = block.stmts
        for index, stmt in enumerate(stmts):
            following = stmts[index + 1] if index + 1 < len(stmts) else None
            if isinstance(following, ReturnStmt) and self.is_report(stmt, name):
                if stmt.leading and not following.leading:
                    following.leading = stmt.leading
                removed += 1
                continue
            out.append(stmt)
        if removed:
            block.stmts = out
        return removed

    def _remove_if(self, stmt: IfStmt) -> int:
        removed = 0
        for branch in _chain(stmt):
            name = _checked_name(branch.cond, "!=")
            if name:
                removed += self._drop_before_returns(branch.body, name)
            name = _checked_name(branch.cond, "==")
            if name and isinstance(branch.else_, Block):
                removed += self._drop_before_returns(branch.else_, name)
        return removed

    def remove(self, unit: SourceFile) -> int:
        removed = 0

        def visitor(stmts: Stmts, owner: Node) -> Optional[Stmts]:
            nonlocal removed
            out: List[Node] = []
            pending: List[str] = []
            changed = False
            for stmt in stmts:
                guard = out[-1] if out else None
                if isinstance(guard, IfStmt) and _has_return(guard.body):
                    name = _checked_name(guard.cond, "==")
                    if name and self.is_report(stmt, name):
                        removed += 1
                        changed = True
                        pending = list(stmt.leading)
                        continue
                if pending and not stmt.leading:
                    stmt.leading = pending
                pending = []
                out.append(stmt)
                if isinstance(stmt, IfStmt):
                    removed += self._remove_if(stmt)
            return out if changed else None

        for fn in _traced_funcs(unit):
            walk_statements(fn.body, visitor, closures=False)
        return removed


def _traced_funcs(unit: SourceFile) -> Iterator[FuncDecl]:
    for fn in unit.funcs():
        if fn.body is None or (fn.name == "main" and not fn.has_recv):
            continue
        yield fn
