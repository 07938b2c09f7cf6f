"""
net/http policy.

Server side: `X.HandleFunc(pattern, h)` gets `whataphttp.Func(h)`.
Client side: package-level helpers and DefaultClient helpers move to their
whataphttp equivalents with a context first argument, and `http.Client{}`
literals get a tracing Transport. The context comes from the nearest
enclosing function's parameters.
"""

from __future__ import annotations
from typing import List, Optional, Tuple

from .. import imports
from ..handlerctx import CarrierNames, infer_or_placeholder, type_text
from ..ir import (
    Call, CompositeLit, FuncDecl, FuncLit, Ident, KeyedElement, Node, Param,
    Selector, SourceFile, call, call_target, iter_nodes, rewrite, sel, selector_chain,
)
from ..registry import InjectContext, Transformer
from .base import companion, wrap_last_arg

NETHTTP_IMPORT = "net/http"
GORILLA_IMPORT = "github.com/gorilla/mux"
PKG = "whataphttp"

CLIENT_FUNCS = {"Get": "HttpGet", "Post": "HttpPost", "PostForm": "HttpPostForm"}
DEFAULT_CLIENT_FUNCS = {
    "Get": "DefaultClientGet",
    "Post": "DefaultClientPost",
    "PostForm": "DefaultClientPostForm",
}
RESTORE_FUNCS = {"HttpGet": "Get", "HttpPost": "Post", "HttpPostForm": "PostForm", "HttpHead": "Head"}
RESTORE_DEFAULT_FUNCS = {
    "DefaultClientGet": "Get",
    "DefaultClientPost": "Post",
    "DefaultClientPostForm": "PostForm",
    "DefaultClientHead": "Head",
}
HANDLER_REGISTRATIONS = ("HandleFunc", "Handle")


def _client_call(node: Node, http: str) -> Optional[Tuple[str, str]]:
    """("direct"|"default", new name) for a rewritable client call."""
    if not isinstance(node, Call) or node.ellipsis:
        return None
    chain = selector_chain(node.fun)
    if len(chain) == 2 and chain[0] == http and chain[1] in CLIENT_FUNCS:
        return "direct", CLIENT_FUNCS[chain[1]]
    if len(chain) == 3 and chain[:2] == [http, "DefaultClient"] and chain[2] in DEFAULT_CLIENT_FUNCS:
        return "default", DEFAULT_CLIENT_FUNCS[chain[2]]
    return None


def _is_client_literal(node: Node, http: str) -> bool:
    return isinstance(node, CompositeLit) and type_text(node.type) == f"{http}.Client"


def _is_registration(node: Node) -> bool:
    return (
        isinstance(node, Call)
        and isinstance(node.fun, Selector)
        and node.fun.sel in HANDLER_REGISTRATIONS
        and len(node.args) >= 2
        and not node.ellipsis
    )


def _usage(unit: SourceFile, http: str) -> Tuple[bool, bool]:
    handlers = clients = False
    for node in iter_nodes(unit):
        if _is_registration(node):
            handlers = True
        elif _client_call(node, http) is not None or _is_client_literal(node, http):
            clients = True
    return handlers, clients


def detect(unit: SourceFile) -> bool:
    http = imports.package_name(unit, NETHTTP_IMPORT)
    if not http:
        return False
    handlers, clients = _usage(unit, http)
    if imports.has_import(unit, GORILLA_IMPORT):
        return clients
    return handlers or clients


def _is_transport_key(element: Node) -> bool:
    return isinstance(element, KeyedElement) and isinstance(element.key, Ident) and element.key.name == "Transport"


def _wrap_transport(lit: CompositeLit, ctx_expr: Node) -> bool:
    if any(not isinstance(el, KeyedElement) for el in lit.elements):
        return False
    for element in lit.elements:
        if _is_transport_key(element):
            if isinstance(element.value, Call) and call_target(element.value)[0] == PKG:
                return False
            element.value = call(sel(PKG, "NewRoundTrip"), ctx_expr, element.value)
            return True
    lit.elements.append(KeyedElement(Ident("Transport"), call(sel(PKG, "NewRoundTripWithEmptyTransport"), ctx_expr)))
    return True


def inject(unit: SourceFile, ctx: InjectContext) -> bool:
    http = imports.package_name(unit, NETHTTP_IMPORT)
    if not http:
        return False
    wrap_handlers = not imports.has_import(unit, GORILLA_IMPORT)
    names = CarrierNames.for_unit(unit)
    changed = False

    def visit(node: Node, params: List[Param]) -> None:
        nonlocal changed
        if isinstance(node, FuncDecl):
            params = node.params
        elif isinstance(node, FuncLit):
            params = node.params

        client = _client_call(node, http)
        if client is not None:
            _, new_name = client
            node.fun = sel(PKG, new_name)
            node.args.insert(0, infer_or_placeholder(params, names))
            changed = True
        elif wrap_handlers and _is_registration(node) and node.fun.sel == "HandleFunc":
            if wrap_last_arg(node, PKG, "Func"):
                changed = True
        elif _is_client_literal(node, http):
            if _wrap_transport(node, infer_or_placeholder(params, names)):
                changed = True

        for child in list(node.children()):
            visit(child, params)

    visit(unit, [])
    if changed:
        imports.remove_if_unused(unit, NETHTTP_IMPORT)
    return changed


def remove(unit: SourceFile) -> bool:
    http = imports.package_name(unit, NETHTTP_IMPORT) or "http"
    changed = False

    def restore(node: Node) -> Optional[Node]:
        nonlocal changed
        if isinstance(node, Call) and node.args:
            pkg, name = call_target(node)
            if pkg == PKG and name in RESTORE_FUNCS:
                node.fun = sel(http, RESTORE_FUNCS[name])
                del node.args[0]
                changed = True
            elif pkg == PKG and name in RESTORE_DEFAULT_FUNCS:
                node.fun = Selector(sel(http, "DefaultClient"), RESTORE_DEFAULT_FUNCS[name])
                del node.args[0]
                changed = True
            elif _is_registration(node):
                last = node.args[-1]
                if isinstance(last, Call) and len(last.args) == 1 and call_target(last) in ((PKG, "Func"), (PKG, "HandlerFunc")):
                    node.args[-1] = last.args[0]
                    changed = True
        elif isinstance(node, CompositeLit) and _is_client_literal(node, http):
            kept: List[Node] = []
            for element in node.elements:
                if _is_transport_key(element) and isinstance(element.value, Call):
                    target = call_target(element.value)
                    if target == (PKG, "NewRoundTripWithEmptyTransport"):
                        changed = True
                        continue
                    if target == (PKG, "NewRoundTrip") and len(element.value.args) == 2:
                        element.value = element.value.args[1]
                        changed = True
                kept.append(element)
            if len(kept) != len(node.elements):
                node.elements = kept
        return None

    rewrite(unit, restore)
    if changed:
        imports.restore_if_used(unit, NETHTTP_IMPORT)
    return changed


NETHTTP = Transformer(
    name="nethttp",
    import_path=NETHTTP_IMPORT,
    detect=detect,
    inject=inject,
    remove=remove,
    companion_import=companion("net/http/whataphttp"),
)
