"""
Database policies: the driver entry points move to their whatap wrappers.

    sql.Open(...)      -> whatapsql.Open(...)
    sqlx.Connect(...)  -> whatapsqlx.Connect(...)
    gorm.Open(...)     -> whatapgorm.Open(...)
"""

from __future__ import annotations
from typing import Callable, List, Optional, Tuple

from .. import imports
from ..ir import SourceFile
from ..registry import InjectContext, Transformer, detect_exact
from .base import companion, rename_calls


def rename_policy(
    name: str,
    import_path: str,
    funcs: Tuple[str, ...],
    pkg: str,
    companion_import,
    family: Optional[str] = None,
    variants: Tuple[str, ...] = (),
    path_of: Optional[Callable[[SourceFile], str]] = None,
) -> Transformer:
    """
    Call substitution: `alias.F(...)` -> `pkg.F(...)` for F in funcs. The
    library import is dropped when nothing else uses it and restored on removal.
    """
    paths = (import_path,) + variants

    def actual_path(unit: SourceFile) -> str:
        if path_of is not None:
            return path_of(unit)
        for path in paths:
            if imports.has_import(unit, path):
                return path
        return ""

    def inject(unit: SourceFile, ctx: InjectContext) -> bool:
        path = actual_path(unit)
        alias = imports.package_name(unit, path) if path else ""
        if not alias:
            return False
        if rename_calls(unit, alias, funcs, pkg) == 0:
            return False
        imports.remove_if_unused(unit, path)
        return True

    def remove(unit: SourceFile) -> bool:
        path = actual_path(unit) or import_path
        alias = imports.package_name(unit, path) or imports.default_name(path)
        if rename_calls(unit, pkg, funcs, alias) == 0:
            return False
        imports.restore_if_used(unit, path)
        return True

    return Transformer(
        name=name,
        import_path=import_path,
        detect=detect_exact(*paths) if path_of is None else (lambda unit: bool(path_of(unit))),
        inject=inject,
        remove=remove,
        companion_import=companion_import,
        family=family,
        variants=variants,
    )


SQL = rename_policy(
    "sql",
    "database/sql",
    ("Open",),
    "whatapsql",
    companion("database/sql/whatapsql"),
)

SQLX = rename_policy(
    "sqlx",
    "github.com/jmoiron/sqlx",
    ("Open", "Connect", "ConnectContext", "MustConnect", "MustOpen"),
    "whatapsqlx",
    companion("github.com/jmoiron/sqlx/whatapsqlx"),
)

GORM = rename_policy(
    "gorm",
    "gorm.io/gorm",
    ("Open",),
    "whatapgorm",
    companion("github.com/go-gorm/gorm/whatapgorm"),
    family="gorm",
)

JINZHU_GORM = rename_policy(
    "jinzhugorm",
    "github.com/jinzhu/gorm",
    ("Open",),
    "whatapgorm",
    companion("github.com/jinzhu/gorm/whatapgorm"),
    family="gorm",
)


def database_transformers() -> List[Transformer]:
    return [SQL, SQLX, GORM, JINZHU_GORM]
