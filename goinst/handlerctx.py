"""
Handler context inference.

For a call site that needs a request-scoped context, look at the parameters of
the nearest enclosing function and derive an expression from the first
recognised carrier shape. The expression is rebuilt for every call site.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import re

from .imports import local_name
from .ir import Ident, Node, Param, Raw, Selector, SourceFile, call, sel

_SPACE = re.compile(r"\s+")

# Import path -> default local name used in carrier types.
CARRIER_PACKAGES = {
    "context": "context",
    "net/http": "http",
    "github.com/gin-gonic/gin": "gin",
    "github.com/gofiber/fiber": "fiber",
    "github.com/valyala/fasthttp": "fasthttp",
    "github.com/labstack/echo": "echo",
}


@dataclass
class CarrierNames:
    """Local package names of the carrier libraries in one unit."""
    context: str = "context"
    http: str = "http"
    gin: str = "gin"
    fiber: str = "fiber"
    fasthttp: str = "fasthttp"
    echo: str = "echo"

    @classmethod
    def for_unit(cls, unit: SourceFile) -> "CarrierNames":
        names: Dict[str, str] = {}
        for spec in unit.imports:
            for prefix, key in CARRIER_PACKAGES.items():
                if spec.path == prefix or (spec.path.startswith(prefix + "/v") and prefix != "context"):
                    names[key] = local_name(spec)
        return cls(**names)


def type_text(node: Optional[Node]) -> str:
    """Whitespace-free text of a type expression."""
    if node is None:
        return ""
    if isinstance(node, Ident):
        return node.name
    if isinstance(node, Selector):
        return type_text(node.x) + "." + node.sel
    if isinstance(node, Raw):
        return _SPACE.sub("", node.text)
    if node.origin is not None:
        return _SPACE.sub("", node.origin.text)
    return ""


def _named(params: List[Param]) -> List[Tuple[str, str]]:
    pairs: List[Tuple[str, str]] = []
    for param in params:
        text = type_text(param.type)
        for name in param.names:
            pairs.append((name, text))
    return pairs


def infer(params: List[Param], names: Optional[CarrierNames] = None) -> Optional[Node]:
    """
    Context expression for a function with these parameters, or None.

    Priority: context.Context, *http.Request (with 2+ params), *gin.Context,
    *fiber.Ctx, *fasthttp.RequestCtx, echo.Context. Blank parameters are ignored.
    """
    names = names or CarrierNames()
    pairs = _named(params)
    usable = [(n, t) for n, t in pairs if n != "_"]

    def first(type_name: str) -> Optional[str]:
        for name, text in usable:
            if text == type_name:
                return name
        return None

    found = first(f"{names.context}.Context")
    if found:
        return Ident(found)
    if len(pairs) >= 2:
        found = first(f"*{names.http}.Request")
        if found:
            return call(sel(found, "Context"))
    found = first(f"*{names.gin}.Context")
    if found:
        return call(Selector(sel(found, "Request"), "Context"))
    found = first(f"*{names.fiber}.Ctx")
    if found:
        return call(sel(found, "UserContext"))
    found = first(f"*{names.fasthttp}.RequestCtx")
    if found:
        return Ident(found)
    found = first(f"{names.echo}.Context")
    if found:
        return call(Selector(call(sel(found, "Request")), "Context"))
    return None


def placeholder() -> Node:
    """Neutral context the companion runtime accepts when none is derivable."""
    return Ident("nil")


def infer_or_placeholder(params: List[Param], names: Optional[CarrierNames] = None) -> Node:
    found = infer(params, names)
    return found if found is not None else placeholder()
