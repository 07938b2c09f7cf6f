"""
External client policies: mongo, go-redis, redigo, grpc, kubernetes, sarama.
"""

from __future__ import annotations
from typing import List, Optional, Set

from .. import imports
from ..ir import (
    AssignStmt, Call, CompositeLit, ExprStmt, Ident, Node, Raw, Selector, SourceFile, Stmts, Unary,
    call, call_target, iter_nodes, sel, selector_chain, walk_statements,
)
from ..registry import InjectContext, Transformer, detect_exact
from .base import companion, constructor_var, remove_statements
from .database import rename_policy


MONGO = rename_policy(
    "mongo",
    "go.mongodb.org/mongo-driver/mongo",
    ("Connect", "NewClient"),
    "whatapmongo",
    companion("go.mongodb.org/mongo-driver/mongo/whatapmongo"),
    variants=("go.mongodb.org/mongo-driver/v2/mongo",),
)

REDIGO = rename_policy(
    "redigo",
    "github.com/gomodule/redigo/redis",
    ("Dial", "DialContext", "DialURL", "DialURLContext"),
    "whatapredigo",
    companion("github.com/gomodule/redigo/whatapredigo"),
)


# ============================================================
# ======================== GO-REDIS ==========================
# ============================================================

GOREDIS_V9 = "github.com/redis/go-redis"
GOREDIS_V8 = "github.com/go-redis/redis"


def _goredis_path(unit: SourceFile) -> str:
    for prefix in (GOREDIS_V9, GOREDIS_V8):
        spec = imports.library_spec(unit, prefix)
        if spec is not None:
            return spec.path
    return ""


def _goredis_companion(unit: SourceFile) -> str:
    if _goredis_path(unit).startswith(GOREDIS_V8):
        return companion("github.com/go-redis/redis/v8/whatapgoredis")
    return companion("github.com/redis/go-redis/v9/whatapgoredis")


GOREDIS = rename_policy(
    "goredis",
    GOREDIS_V9,
    ("NewClient", "NewClusterClient", "NewFailoverClient", "NewRing"),
    "whatapgoredis",
    _goredis_companion,
    variants=(GOREDIS_V8,),
    path_of=_goredis_path,
)


# ============================================================
# ========================== GRPC ============================
# ============================================================

GRPC_IMPORT = "google.golang.org/grpc"
GRPC_PKG = "whatapgrpc"
SERVER_FUNCS = {"NewServer"}
CLIENT_FUNCS = {"Dial", "DialContext", "NewClient"}
INTERCEPTOR_OPTIONS = {"UnaryInterceptor", "StreamInterceptor", "WithUnaryInterceptor", "WithStreamInterceptor"}


def _interceptor_args(grpc: str, server: bool) -> List[Node]:
    if server:
        return [
            call(sel(grpc, "UnaryInterceptor"), call(sel(GRPC_PKG, "UnaryServerInterceptor"))),
            call(sel(grpc, "StreamInterceptor"), call(sel(GRPC_PKG, "StreamServerInterceptor"))),
        ]
    return [
        call(sel(grpc, "WithUnaryInterceptor"), call(sel(GRPC_PKG, "UnaryClientInterceptor"))),
        call(sel(grpc, "WithStreamInterceptor"), call(sel(GRPC_PKG, "StreamClientInterceptor"))),
    ]


def _is_interceptor_option(node: Node) -> bool:
    if not isinstance(node, Call) or len(node.args) != 1:
        return False
    if call_target(node)[1] not in INTERCEPTOR_OPTIONS:
        return False
    return call_target(node.args[0])[0] == GRPC_PKG


def _grpc_inject(unit: SourceFile, ctx: InjectContext) -> bool:
    grpc = imports.package_name(unit, GRPC_IMPORT)
    if not grpc:
        return False
    sites = [
        n for n in iter_nodes(unit)
        if isinstance(n, Call) and call_target(n)[0] == grpc and call_target(n)[1] in SERVER_FUNCS | CLIENT_FUNCS
    ]
    changed = False
    for site in sites:
        if any(_is_interceptor_option(arg) for arg in site.args):
            continue
        extra = _interceptor_args(grpc, call_target(site)[1] in SERVER_FUNCS)
        if site.ellipsis and site.args:
            site.args[-1] = Call(Ident("append"), [site.args[-1]] + extra, False)
        else:
            site.args.extend(extra)
        changed = True
    return changed


def _grpc_remove(unit: SourceFile) -> bool:
    grpc = imports.package_name(unit, GRPC_IMPORT) or "grpc"
    changed = False
    for site in list(iter_nodes(unit)):
        if not isinstance(site, Call):
            continue
        pkg, name = call_target(site)
        if pkg != grpc or name not in SERVER_FUNCS | CLIENT_FUNCS:
            continue
        if site.ellipsis and site.args and call_target(site.args[-1]) == ("", "append"):
            spread = site.args[-1]
            kept = [arg for arg in spread.args if not _is_interceptor_option(arg)]
            if len(kept) != len(spread.args):
                site.args[-1] = kept[0] if len(kept) == 1 else Call(spread.fun, kept, False)
                changed = True
        kept = [arg for arg in site.args if not _is_interceptor_option(arg)]
        if len(kept) != len(site.args):
            site.args = kept
            changed = True
    return changed


GRPC = Transformer(
    name="grpc",
    import_path=GRPC_IMPORT,
    detect=detect_exact(GRPC_IMPORT),
    inject=_grpc_inject,
    remove=_grpc_remove,
    companion_import=companion("google.golang.org/grpc/whatapgrpc"),
)


# ============================================================
# ======================= KUBERNETES =========================
# ============================================================

K8S_IMPORT = "k8s.io/client-go/kubernetes"
K8S_REST_IMPORT = "k8s.io/client-go/rest"
K8S_PKG = "whatapkubernetes"


def _config_arg(stmt: Node, alias: str) -> Optional[str]:
    if not isinstance(stmt, AssignStmt) or not stmt.rhs:
        return None
    rhs = stmt.rhs[0]
    if call_target(rhs) not in ((alias, "NewForConfig"), (alias, "NewForConfigOrDie")):
        return None
    if rhs.args and isinstance(rhs.args[0], Ident):
        return rhs.args[0].name
    return None


def _is_wrap_stmt(stmt: Node) -> bool:
    if not isinstance(stmt, ExprStmt) or not isinstance(stmt.x, Call):
        return False
    wrap = stmt.x
    if not isinstance(wrap.fun, Selector) or wrap.fun.sel != "Wrap" or len(wrap.args) != 1:
        return False
    return call_target(wrap.args[0]) == (K8S_PKG, "WrapRoundTripper")


def _k8s_inject(unit: SourceFile, ctx: InjectContext) -> bool:
    alias = imports.package_name(unit, K8S_IMPORT)
    if not alias:
        return False
    wrapped: Set[str] = set()

    def visitor(stmts: Stmts, owner: Node) -> Optional[Stmts]:
        out: List[Node] = []
        for stmt in stmts:
            config = _config_arg(stmt, alias)
            if config is not None and config not in wrapped:
                wrapped.add(config)
                wrap = ExprStmt(call(sel(config, "Wrap"), call(sel(K8S_PKG, "WrapRoundTripper"))))
                wrap.leading, stmt.leading = stmt.leading, []
                out.append(wrap)
            out.append(stmt)
        return out if len(out) != len(stmts) else None

    walk_statements(unit, visitor)
    return bool(wrapped)


def _k8s_remove(unit: SourceFile) -> bool:
    return remove_statements(unit, _is_wrap_stmt) > 0


K8S = Transformer(
    name="k8s",
    import_path=K8S_IMPORT,
    detect=detect_exact(K8S_IMPORT),
    inject=_k8s_inject,
    remove=_k8s_remove,
    companion_import=companion("k8s.io/client-go/kubernetes/whatapkubernetes"),
    family="k8s",
)

K8S_REST = Transformer(
    name="k8srest",
    import_path=K8S_REST_IMPORT,
    detect=detect_exact(K8S_REST_IMPORT),
    inject=_k8s_inject,
    remove=_k8s_remove,
    companion_import=companion("k8s.io/client-go/kubernetes/whatapkubernetes"),
    family="k8s",
)


# ============================================================
# ========================= SARAMA ===========================
# ============================================================

SARAMA_IMPORTS = ("github.com/IBM/sarama", "github.com/Shopify/sarama")
SARAMA_PKG = "whatapsarama"
INTERCEPTOR_VAR = "whatapInterceptor"


def _sarama_alias(unit: SourceFile) -> str:
    for path in SARAMA_IMPORTS:
        alias = imports.package_name(unit, path)
        if alias:
            return alias
    return ""


def _interceptor_decl() -> AssignStmt:
    value = Unary("&", CompositeLit(sel(SARAMA_PKG, "Interceptor"), []))
    return AssignStmt([Ident(INTERCEPTOR_VAR)], ":=", [value])


def _interceptor_assign(var: str, alias: str, side: str) -> AssignStmt:
    target = Selector(sel(var, side), "Interceptors")
    value = CompositeLit(Raw(f"[]{alias}.{side}Interceptor"), [Ident(INTERCEPTOR_VAR)])
    return AssignStmt([target], "=", [value])


def _is_interceptor_decl(stmt: Node) -> bool:
    if not isinstance(stmt, AssignStmt) or len(stmt.rhs) != 1:
        return False
    value = stmt.rhs[0]
    if isinstance(value, Unary) and value.op == "&":
        value = value.x
    return isinstance(value, CompositeLit) and selector_chain(value.type) == [SARAMA_PKG, "Interceptor"]


def _is_interceptor_assign(stmt: Node) -> bool:
    if not isinstance(stmt, AssignStmt) or len(stmt.lhs) != 1 or len(stmt.rhs) != 1:
        return False
    target = stmt.lhs[0]
    if not isinstance(target, Selector) or target.sel != "Interceptors":
        return False
    value = stmt.rhs[0]
    return isinstance(value, CompositeLit) and any(
        isinstance(el, Ident) and el.name == INTERCEPTOR_VAR for el in value.elements
    )


def _sarama_inject(unit: SourceFile, ctx: InjectContext) -> bool:
    alias = _sarama_alias(unit)
    if not alias:
        return False
    count = 0

    def visitor(stmts: Stmts, owner: Node) -> Optional[Stmts]:
        nonlocal count
        out: List[Node] = []
        declared = False
        for stmt in stmts:
            out.append(stmt)
            var = constructor_var(stmt, alias, ("NewConfig",))
            if var is None:
                continue
            if not declared:
                out.append(_interceptor_decl())
                declared = True
            out.append(_interceptor_assign(var, alias, "Producer"))
            out.append(_interceptor_assign(var, alias, "Consumer"))
            count += 1
        return out if declared else None

    walk_statements(unit, visitor)
    return count > 0


def _sarama_remove(unit: SourceFile) -> bool:
    return remove_statements(unit, lambda s: _is_interceptor_decl(s) or _is_interceptor_assign(s)) > 0


SARAMA = Transformer(
    name="sarama",
    import_path=SARAMA_IMPORTS[0],
    detect=detect_exact(*SARAMA_IMPORTS),
    inject=_sarama_inject,
    remove=_sarama_remove,
    companion_import=companion("github.com/IBM/sarama/whatapsarama"),
    variants=SARAMA_IMPORTS[1:],
)


def external_transformers() -> List[Transformer]:
    return [MONGO, GOREDIS, REDIGO, GRPC, K8S, K8S_REST, SARAMA]
