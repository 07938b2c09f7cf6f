"""
Web framework policies: router middleware registration (gin, echo, fiber,
chi, gorilla/mux) and per-route handler wrapping (fasthttp).
"""

from __future__ import annotations
from typing import List, Tuple

from .. import imports
from ..ir import Call, Selector, SourceFile, iter_nodes
from ..registry import InjectContext, Transformer, detect_library
from .base import (
    companion, insert_after_constructors, is_middleware, middleware_stmt,
    remove_statements, unwrap_calls, wrap_last_arg,
)


def router_policy(
    name: str,
    import_path: str,
    constructors: Tuple[str, ...],
    pkg: str,
    companion_import,
    invoke: bool = True,
    variants: Tuple[str, ...] = (),
) -> Transformer:
    """
    `x := lib.New()` -> followed by `x.Use(pkg.Middleware())`; one statement
    per constructor site, never duplicated.
    """
    prefixes = (import_path,) + variants

    def alias_for(unit: SourceFile) -> str:
        for prefix in prefixes:
            alias = imports.library_name(unit, prefix)
            if alias:
                return alias
        return ""

    def inject(unit: SourceFile, ctx: InjectContext) -> bool:
        alias = alias_for(unit)
        if not alias:
            return False
        count = insert_after_constructors(
            unit,
            alias,
            constructors,
            lambda var: [middleware_stmt(var, pkg, invoke)],
            lambda stmt, var: is_middleware(stmt, {pkg}, var),
        )
        return count > 0

    def remove(unit: SourceFile) -> bool:
        return remove_statements(unit, lambda stmt: is_middleware(stmt, {pkg})) > 0

    return Transformer(
        name=name,
        import_path=import_path,
        detect=detect_library(*prefixes),
        inject=inject,
        remove=remove,
        companion_import=companion_import,
        variants=variants,
    )


def _echo_companion(unit: SourceFile) -> str:
    path = imports.path_for_prefix(unit, "github.com/labstack/echo")
    if path.startswith("github.com/labstack/echo/v4"):
        return companion("github.com/labstack/echo/v4/whatapecho")
    return companion("github.com/labstack/echo/whatapecho")


GIN = router_policy(
    "gin",
    "github.com/gin-gonic/gin",
    ("Default", "New"),
    "whatapgin",
    companion("github.com/gin-gonic/gin/whatapgin"),
)

ECHO = router_policy(
    "echo",
    "github.com/labstack/echo",
    ("New",),
    "whatapecho",
    _echo_companion,
)

FIBER = router_policy(
    "fiber",
    "github.com/gofiber/fiber",
    ("New",),
    "whatapfiber",
    companion("github.com/gofiber/fiber/v2/whatapfiber"),
)

CHI = router_policy(
    "chi",
    "github.com/go-chi/chi",
    ("NewRouter", "NewMux"),
    "whatapchi",
    companion("github.com/go-chi/chi/whatapchi"),
    invoke=False,
)

GORILLA = router_policy(
    "gorilla",
    "github.com/gorilla/mux",
    ("NewRouter",),
    "whatapmux",
    companion("github.com/gorilla/mux/whatapmux"),
)


# ============================================================
# ======================== FASTHTTP ==========================
# ============================================================

FASTHTTP_IMPORT = "github.com/valyala/fasthttp"
FASTHTTP_VERBS = {"GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "ANY"}


def _route_calls(unit: SourceFile) -> List[Call]:
    routes: List[Call] = []
    for node in iter_nodes(unit):
        if (
            isinstance(node, Call)
            and isinstance(node.fun, Selector)
            and node.fun.sel in FASTHTTP_VERBS
            and len(node.args) >= 2
            and not node.ellipsis
        ):
            routes.append(node)
    return routes


def _fasthttp_inject(unit: SourceFile, ctx: InjectContext) -> bool:
    changed = False
    for route in _route_calls(unit):
        if wrap_last_arg(route, "whatapfasthttp", "Func"):
            changed = True
    return changed


def _fasthttp_remove(unit: SourceFile) -> bool:
    changed = False
    for route in _route_calls(unit):
        if unwrap_calls(route, "whatapfasthttp", ("Func",)):
            changed = True
    return changed


FASTHTTP = Transformer(
    name="fasthttp",
    import_path=FASTHTTP_IMPORT,
    detect=detect_library(FASTHTTP_IMPORT),
    inject=_fasthttp_inject,
    remove=_fasthttp_remove,
    companion_import=companion("github.com/valyala/fasthttp/whatapfasthttp"),
)


def web_transformers() -> List[Transformer]:
    return [GIN, ECHO, FIBER, CHI, GORILLA, FASTHTTP]
