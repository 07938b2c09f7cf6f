"""
Aerospike policy: every client call is wrapped in a typed closure.

    rec, err := client.Get(nil, key)
->
    rec, err := whatapas.WrapGet(context.Background(), client, key, nil, func() (*as.Record, error) {
        return client.Get(nil, key)
    })

The closure result type depends on the client version. With a directory the
semantic hook reads it from the module (`go doc`); without one, or when the
load fails, the fixed table below is used.
"""

from __future__ import annotations
from typing import Callable, Dict, Optional, Tuple
import sys

from .. import imports
from ..errors import SemanticLoadError
from ..ir import (
    AssignStmt, Call, CompositeLit, DeferStmt, ExprStmt, FuncLit, IfStmt, Ident, Node, Raw,
    ReturnStmt, Selector, SourceFile, Stmts, call, call_target, clone, func_lit, rewrite,
    sel, walk_statements,
)
from ..registry import InjectContext, Transformer, detect_prefix
from ..semantic import SemanticCache, qualify
from .base import GO_API, companion

AEROSPIKE_PREFIX = "github.com/aerospike/aerospike-client-go"
DEFAULT_AEROSPIKE = AEROSPIKE_PREFIX + "/v6"
WHATAP_SQL_IMPORT = GO_API + "/sql"
SQL_PKG = "whatapsql"
AS_PKG = "whatapas"

NEW_CLIENT_FUNCS = {"NewClient", "NewClientWithPolicy", "NewClientWithPolicyAndHost"}

ERROR_ONLY_METHODS = {
    "Put", "PutBins", "Append", "Prepend", "Add", "Touch", "Truncate", "CreateIndex", "DropIndex",
}

FALLBACK_RESULTS: Dict[str, str] = {
    "Get": "*aerospike.Record",
    "GetHeader": "*aerospike.Record",
    "Operate": "*aerospike.Record",
    "Exists": "bool",
    "Delete": "bool",
    "BatchGet": "[]*aerospike.Record",
    "BatchGetHeader": "[]*aerospike.Record",
    "BatchExists": "[]bool",
    "BatchDelete": "[]*aerospike.BatchRecord",
    "Query": "*aerospike.Recordset",
    "ScanAll": "*aerospike.Recordset",
    "ScanNode": "*aerospike.Recordset",
    "QueryAggregate": "*aerospike.Recordset",
    "Execute": "interface{}",
}

SQL_WRAPPERS = {"Wrap", "WrapError", "WrapOpen"}
AS_WRAPPERS = {"WrapPut", "WrapPutBins", "WrapGet", "WrapDelete", "WrapExists", "WrapGeneric", "WrapGenericWithKey"}

# ("error", "") for error-only methods, ("value", T) for (T, error) methods.
Shape = Tuple[str, str]
Resolver = Callable[[str], Optional[Shape]]


def aerospike_path(unit: SourceFile) -> str:
    spec = imports.library_spec(unit, AEROSPIKE_PREFIX)
    return spec.path if spec is not None else ""


def whatapas_import(unit: SourceFile) -> str:
    return companion((aerospike_path(unit) or DEFAULT_AEROSPIKE) + "/whatapas")


def fallback_resolver(alias: str) -> Resolver:
    def resolve(method: str) -> Optional[Shape]:
        if method in ERROR_ONLY_METHODS:
            return "error", ""
        result = FALLBACK_RESULTS.get(method)
        if result is None:
            return None
        return "value", result.replace("aerospike.", alias + ".")
    return resolve


def semantic_resolver(alias: str, methods: Dict) -> Resolver:
    """Known methods only; signatures from the module, the fixed table otherwise."""
    fallback = fallback_resolver(alias)

    def resolve(method: str) -> Optional[Shape]:
        if method not in ERROR_ONLY_METHODS and method not in FALLBACK_RESULTS:
            return None
        signature = methods.get(method)
        if signature is not None:
            if signature.returns_only_error():
                return "error", ""
            if signature.returns_value_and_error():
                return "value", qualify(signature.results[0], alias)
        return fallback(method)
    return resolve


# ============================================================
# ======================== WRAPPING ==========================
# ============================================================

def _string(text: str) -> Raw:
    return Raw(f'"{text}"')


def _closure(results: str, target: Call) -> FuncLit:
    return func_lit(results, [ReturnStmt([target])])


class _Wrapper:
    def __init__(self, unit: SourceFile, alias: str, resolve: Resolver) -> None:
        self.alias = alias
        self.resolve = resolve
        self.packages = {imports.local_name(spec) for spec in unit.imports}
        self.context = imports.context_name(unit)
        self.fmt = imports.package_name(unit, "fmt") or "fmt"
        self.needs_fmt = False
        self.count = 0

    def _background(self) -> Call:
        return call(sel(self.context, "Background"))

    # ---------------- client construction ----------------

    def _sprintf_host(self, host: Node, port: Node) -> Call:
        self.needs_fmt = True
        return call(sel(self.fmt, "Sprintf"), Raw('"aerospike://%v:%v"'), clone(host), clone(port))

    def _host(self, target: Call) -> Node:
        name = call_target(target)[1]
        if name == "NewClientWithPolicy" and len(target.args) >= 3:
            return self._sprintf_host(target.args[1], target.args[2])
        if name in ("NewClient", "NewClientWithPolicyAndHost") and len(target.args) >= 2:
            host = target.args[1]
            if call_target(host) == (self.alias, "NewHost") and len(host.args) >= 2:
                return self._sprintf_host(host.args[0], host.args[1])
        return _string("aerospike")

    def wrap_new_client(self, target: Call) -> Call:
        closure = _closure(f"(*{self.alias}.Client, error)", target)
        return call(sel(SQL_PKG, "WrapOpen"), self._background(), self._host(target), closure)

    # ---------------- client methods ----------------

    def _receiver(self, target: Call) -> Optional[Node]:
        if not isinstance(target.fun, Selector):
            return None
        receiver = target.fun.x
        if isinstance(receiver, Ident) and receiver.name in self.packages:
            return None
        return receiver

    def wrap_method(self, target: Call) -> Optional[Call]:
        receiver = self._receiver(target)
        if receiver is None:
            return None
        method = target.fun.sel
        shape = self.resolve(method)
        if shape is None:
            return None
        kind, result = shape
        args = target.args
        if kind == "error":
            if method == "Put" and len(args) >= 3:
                return call(
                    sel(AS_PKG, "WrapPut"), self._background(), clone(receiver), clone(args[1]), clone(args[2]),
                    _closure("error", target),
                )
            return call(
                sel(SQL_PKG, "WrapError"), self._background(), call(sel(AS_PKG, "GetDbhost"), clone(receiver)),
                _string(method), _closure("error", target),
            )
        if method == "Get" and len(args) >= 2:
            return call(
                sel(AS_PKG, "WrapGet"), self._background(), clone(receiver), clone(args[1]), self._bin_names(target),
                _closure(f"(*{self.alias}.Record, error)", target),
            )
        if method in ("Delete", "Exists") and len(args) >= 2:
            return call(
                sel(AS_PKG, "Wrap" + method), self._background(), clone(receiver), clone(args[1]),
                _closure("(bool, error)", target),
            )
        return call(
            sel(SQL_PKG, "Wrap"), self._background(), call(sel(AS_PKG, "GetDbhost"), clone(receiver)),
            _string(method), _closure(f"({result}, error)", target),
        )

    @staticmethod
    def _bin_names(target: Call) -> Node:
        names = target.args[2:]
        if not names:
            return Ident("nil")
        if target.ellipsis and len(names) == 1:
            return clone(names[0])
        return CompositeLit(Raw("[]string"), [clone(n) for n in names])

    # ---------------- statements ----------------

    def wrap(self, value: Node, assignment: bool) -> Optional[Node]:
        if not isinstance(value, Call):
            return None
        pkg, name = call_target(value)
        if assignment and pkg == self.alias and name in NEW_CLIENT_FUNCS:
            return self.wrap_new_client(value)
        if pkg in (SQL_PKG, AS_PKG):
            return None
        return self.wrap_method(value)

    def _assign(self, stmt: AssignStmt) -> None:
        for index, value in enumerate(stmt.rhs):
            wrapped = self.wrap(value, assignment=True)
            if wrapped is not None:
                stmt.rhs[index] = wrapped
                self.count += 1

    def visit(self, stmts: Stmts, owner: Node) -> Optional[Stmts]:
        for stmt in stmts:
            if isinstance(stmt, AssignStmt):
                self._assign(stmt)
            elif isinstance(stmt, IfStmt) and isinstance(stmt.init, AssignStmt):
                self._assign(stmt.init)
            elif isinstance(stmt, ExprStmt):
                wrapped = self.wrap(stmt.x, assignment=False)
                if wrapped is not None:
                    stmt.x = wrapped
                    self.count += 1
            elif isinstance(stmt, DeferStmt):
                wrapped = self.wrap(stmt.call, assignment=False)
                if wrapped is not None:
                    stmt.call = wrapped
                    self.count += 1
        return None


def instrument(unit: SourceFile, resolve_for: Callable[[str], Resolver]) -> bool:
    alias = imports.library_name(unit, AEROSPIKE_PREFIX)
    if not alias:
        return False
    wrapper = _Wrapper(unit, alias, resolve_for(alias))
    walk_statements(unit, wrapper.visit)
    if wrapper.count == 0:
        return False
    imports.add_import(unit, whatapas_import(unit))
    imports.add_import(unit, "context")
    if wrapper.needs_fmt:
        imports.add_import(unit, "fmt")
    return True


def inject(unit: SourceFile, ctx: InjectContext) -> bool:
    return instrument(unit, fallback_resolver)


def semantic_inject(unit: SourceFile, directory: str, cache: SemanticCache) -> bool:
    path = aerospike_path(unit)
    if not path:
        return False
    try:
        methods = cache.methods(directory, path)
    except SemanticLoadError as exc:
        if cache.debug:
            sys.stderr.write(f"[goinst] aerospike: semantic load failed, using fallback table: {exc}\n")
        return instrument(unit, fallback_resolver)
    return instrument(unit, lambda alias: semantic_resolver(alias, methods))


def _unwrap(node: Node) -> Optional[Node]:
    if not isinstance(node, Call) or not node.args:
        return None
    pkg, name = call_target(node)
    if not ((pkg == SQL_PKG and name in SQL_WRAPPERS) or (pkg == AS_PKG and name in AS_WRAPPERS)):
        return None
    closure = node.args[-1]
    if not isinstance(closure, FuncLit) or closure.body is None or len(closure.body.stmts) != 1:
        return None
    body = closure.body.stmts[0]
    if isinstance(body, ReturnStmt) and len(body.results) == 1 and isinstance(body.results[0], Call):
        return body.results[0]
    return None


def remove(unit: SourceFile) -> bool:
    count = 0

    def restore(node: Node) -> Optional[Node]:
        nonlocal count
        original = _unwrap(node)
        if original is not None:
            count += 1
        return original

    rewrite(unit, restore)
    if count:
        imports.remove_if_unused(unit, "fmt")
    return count > 0


AEROSPIKE = Transformer(
    name="aerospike",
    import_path=AEROSPIKE_PREFIX,
    detect=detect_prefix(AEROSPIKE_PREFIX),
    inject=inject,
    remove=remove,
    companion_import=WHATAP_SQL_IMPORT,
    companion_alias=SQL_PKG,
    semantic_hook=semantic_inject,
)
