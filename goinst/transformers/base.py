"""
Shapes shared by the per-library policies: call substitution, statement
insertion after a constructor, and statement removal.
"""

from __future__ import annotations
from typing import Callable, Iterable, List, Optional, Set

from ..ir import (
    AssignStmt, Call, DeferStmt, ExprStmt, FuncDecl, Ident, Node, Selector, SourceFile,
    Stmts, call, call_target, iter_nodes, remove_where, rewrite, sel, walk_statements,
)

GO_API = "github.com/whatap/go-api"
INSTRUMENTATION = GO_API + "/instrumentation/"
LOGSINK_IMPORT = GO_API + "/logsink"


def companion(path: str) -> str:
    return INSTRUMENTATION + path


# ============================================================
# =================== CALL SUBSTITUTION ======================
# ============================================================

def rename_calls(root: Node, alias: str, funcs: Iterable[str], new_pkg: str) -> int:
    """`alias.F(...)` -> `new_pkg.F(...)` for every F in funcs."""
    wanted = set(funcs)
    count = 0
    for node in iter_nodes(root):
        if not isinstance(node, Call):
            continue
        pkg, name = call_target(node)
        if pkg == alias and name in wanted:
            node.fun.x.name = new_pkg
            count += 1
    return count


# ============================================================
# ================= STATEMENT-LEVEL SHAPES ===================
# ============================================================

def constructor_var(stmt: Node, alias: str, funcs: Iterable[str]) -> Optional[str]:
    """Variable bound by `x := alias.F(...)` (or `=`), for F in funcs."""
    if not isinstance(stmt, AssignStmt) or not stmt.lhs or not stmt.rhs:
        return None
    pkg, name = call_target(stmt.rhs[0])
    if not alias or pkg != alias or name not in set(funcs):
        return None
    target = stmt.lhs[0]
    if isinstance(target, Ident) and target.name != "_":
        return target.name
    return None


def insert_after_constructors(
    unit: SourceFile,
    alias: str,
    funcs: Iterable[str],
    build: Callable[[str], List[Node]],
    present: Callable[[Node, str], bool],
) -> int:
    """
    After each constructor assignment insert build(var), unless the next
    statement already is one of ours. Returns the number of insertion points.
    """
    funcs = list(funcs)
    count = 0

    def visitor(stmts: Stmts, owner: Node) -> Optional[Stmts]:
        nonlocal count
        out: List[Node] = []
        changed = False
        for index, stmt in enumerate(stmts):
            out.append(stmt)
            var = constructor_var(stmt, alias, funcs)
            if var is None:
                continue
            following = stmts[index + 1] if index + 1 < len(stmts) else None
            if following is not None and present(following, var):
                continue
            out.extend(build(var))
            changed = True
            count += 1
        return out if changed else None

    walk_statements(unit, visitor)
    return count


def remove_statements(root: Node, predicate: Callable[[Node], bool]) -> int:
    """Drop every statement matching predicate from every nested list."""
    removed = 0

    def visitor(stmts: Stmts, owner: Node) -> Optional[Stmts]:
        nonlocal removed
        if not any(predicate(s) for s in stmts):
            return None
        kept, count = remove_where(stmts, predicate)
        removed += count
        return kept

    walk_statements(root, visitor)
    return removed


def main_func(unit: SourceFile) -> Optional[FuncDecl]:
    for decl in unit.funcs():
        if decl.name == "main" and not decl.has_recv and decl.body is not None:
            return decl
    return None


def is_defer_of(stmt: Node, pkg: str, name: str) -> bool:
    return isinstance(stmt, DeferStmt) and call_target(stmt.call) == (pkg, name)


def shutdown_index(fn: FuncDecl, trace_alias: str) -> int:
    for index, stmt in enumerate(fn.body.stmts):
        if is_defer_of(stmt, trace_alias, "Shutdown"):
            return index
    return -1


# ============================================================
# ======================= MIDDLEWARE =========================
# ============================================================

def middleware_stmt(var: str, pkg: str, invoke: bool = True) -> ExprStmt:
    """`var.Use(pkg.Middleware())`, or `var.Use(pkg.Middleware)` when invoke is False."""
    arg: Node = call(sel(pkg, "Middleware")) if invoke else sel(pkg, "Middleware")
    return ExprStmt(call(sel(var, "Use"), arg))


def is_middleware(stmt: Node, pkgs: Set[str], var: Optional[str] = None) -> bool:
    if not isinstance(stmt, ExprStmt) or not isinstance(stmt.x, Call):
        return False
    use = stmt.x
    if not isinstance(use.fun, Selector) or use.fun.sel != "Use" or len(use.args) != 1:
        return False
    if var is not None and not (isinstance(use.fun.x, Ident) and use.fun.x.name == var):
        return False
    arg = use.args[0]
    if isinstance(arg, Call):
        if arg.args:
            return False
        arg = arg.fun
    return (
        isinstance(arg, Selector)
        and isinstance(arg.x, Ident)
        and arg.x.name in pkgs
        and arg.sel == "Middleware"
    )


def wrap_last_arg(target: Call, pkg: str, func: str) -> bool:
    """`f(a, h)` -> `f(a, pkg.func(h))`; no-op when h already is a pkg call."""
    last = target.args[-1]
    if isinstance(last, Call) and call_target(last)[0] == pkg:
        return False
    target.args[-1] = call(sel(pkg, func), last)
    return True


def unwrap_calls(root: Node, pkg: str, funcs: Iterable[str]) -> int:
    """Replace every single-argument `pkg.F(x)` (F in funcs) by x, in place."""
    wanted = set(funcs)
    count = 0

    def unwrap(node: Node) -> Optional[Node]:
        nonlocal count
        if isinstance(node, Call) and len(node.args) == 1 and not node.ellipsis:
            target = call_target(node)
            if target[0] == pkg and target[1] in wanted:
                count += 1
                return node.args[0]
        return None

    rewrite(root, unwrap)
    return count
