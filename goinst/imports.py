"""
Import table queries and edits on a Program Unit.

New imports go into the first grouped import declaration at their sorted
position: standard-library paths into the standard-library run (a new leading
run when there is none), everything else into the last run. A unit without a
grouped declaration gets a new one after its last import, so removing the
added paths restores the file exactly.

Removals leave emptied declarations in place and the next add fills them, so
an import swapped for its replacement keeps its position and its single-line
or grouped form. Callers run cleanup() before printing.
"""

from __future__ import annotations
from typing import Callable, List, Optional, Tuple
import re

from .ir import FuncDecl, GenDecl, ImportDecl, ImportSpec, SourceFile, remove_where, uses_package


COMPANION_PREFIX = "github.com/whatap/go-api"
TRACE_IMPORT = "github.com/whatap/go-api/trace"

_VERSION = re.compile(r"^v\d+$")
_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*")


def is_std(path: str) -> bool:
    return "." not in path.split("/", 1)[0]


def default_name(path: str) -> str:
    """
    Package name implied by an import path: the last segment before any /vN
    suffix, without a `go-` prefix, cut at the first non-identifier character.

        github.com/redis/go-redis/v9                -> redis
        github.com/aerospike/aerospike-client-go/v6 -> aerospike
        gopkg.in/yaml.v3                           -> yaml
    """
    parts = [p for p in path.split("/") if p]
    while len(parts) > 1 and _VERSION.match(parts[-1]):
        parts.pop()
    name = parts[-1] if parts else path
    if name.startswith("go-"):
        name = name[len("go-"):]
    match = _IDENT.match(name)
    return match.group(0) if match else name


def local_name(spec: ImportSpec) -> str:
    if spec.name and spec.name not in ("_", "."):
        return spec.name
    return default_name(spec.path)


def find(unit: SourceFile, path: str) -> Optional[ImportSpec]:
    for spec in unit.imports:
        if spec.path == path:
            return spec
    return None


def has_import(unit: SourceFile, path: str) -> bool:
    return find(unit, path) is not None


def has_prefix(unit: SourceFile, prefix: str) -> bool:
    return any(spec.path.startswith(prefix) for spec in unit.imports)


def has_companion(unit: SourceFile) -> bool:
    return has_prefix(unit, COMPANION_PREFIX)


def package_name(unit: SourceFile, path: str) -> str:
    """Local name of an exactly matching import, or ""."""
    spec = find(unit, path)
    return local_name(spec) if spec is not None else ""


def context_name(unit: SourceFile) -> str:
    """Local name of the "context" import; "context" when it is not imported yet."""
    return package_name(unit, "context") or "context"


def path_for_prefix(unit: SourceFile, prefix: str) -> str:
    for spec in unit.imports:
        if spec.path.startswith(prefix):
            return spec.path
    return ""


def is_library_path(path: str, prefix: str) -> bool:
    """The library's root package, optionally with a /vN major-version suffix."""
    if not path.startswith(prefix):
        return False
    rest = path[len(prefix):]
    return rest == "" or (rest[0] == "/" and bool(_VERSION.match(rest[1:])))


def library_spec(unit: SourceFile, prefix: str) -> Optional[ImportSpec]:
    for spec in unit.imports:
        if is_library_path(spec.path, prefix):
            return spec
    return None


def library_name(unit: SourceFile, prefix: str) -> str:
    spec = library_spec(unit, prefix)
    return local_name(spec) if spec is not None else ""


def is_declared(unit: SourceFile, name: str) -> bool:
    """File-scope name clash check: imports, top-level funcs, vars, consts, types."""
    for spec in unit.imports:
        if local_name(spec) == name:
            return True
    for decl in unit.decls:
        if isinstance(decl, FuncDecl) and not decl.has_recv and decl.name == name:
            return True
        if isinstance(decl, GenDecl) and name in decl.names:
            return True
    return False


# ============================================================
# ======================== EDITS =============================
# ============================================================

def _runs(specs: List[ImportSpec]) -> List[Tuple[int, int]]:
    """Blank-line separated runs as [start, end) index pairs."""
    runs: List[Tuple[int, int]] = []
    start = 0
    for index, spec in enumerate(specs):
        if index > start and "" in spec.leading:
            runs.append((start, index))
            start = index
    runs.append((start, len(specs)))
    return runs


def _vacated(unit: SourceFile) -> Optional[ImportDecl]:
    for decl in unit.decls:
        if isinstance(decl, ImportDecl) and not decl.specs:
            return decl
    return None


def _insert_sorted(specs: List[ImportSpec], spec: ImportSpec) -> None:
    runs = _runs(specs)
    if is_std(spec.path):
        run = next((r for r in runs if any(is_std(specs[i].path) for i in range(*r))), None)
        if run is None:
            # standard library first, in a run of its own
            leading = list(specs[0].leading)
            if leading[:1] != [""]:
                specs[0].leading = [""] + leading
            specs.insert(0, spec)
            return
    else:
        run = runs[-1]
    start, end = run
    position = end
    for index in range(start, end):
        if specs[index].path > spec.path:
            position = index
            break
    if position == start and position > 0 and position < len(specs):
        spec.leading = specs[position].leading
        specs[position].leading = []
    specs.insert(position, spec)


def add_import(unit: SourceFile, path: str, name: Optional[str] = None) -> bool:
    """
    Add `path` unless already imported. Returns True when the unit changed.

    A declaration emptied by an earlier removal takes the spec and keeps its
    own form (single-line or grouped). Otherwise the spec goes into the first
    grouped declaration; a unit without one gets a new grouped declaration
    after its last import.
    """
    if has_import(unit, path):
        return False
    spec = ImportSpec(path, name)

    vacated = _vacated(unit)
    if vacated is not None:
        vacated.specs.append(spec)
        return True

    grouped = [d for d in unit.decls if isinstance(d, ImportDecl) and d.grouped]
    if not grouped:
        decl = ImportDecl([spec], grouped=True)
        decl.leading = [""]
        last = -1
        for index, existing in enumerate(unit.decls):
            if isinstance(existing, ImportDecl):
                last = index
        unit.decls.insert(last + 1, decl)
        return True

    _insert_sorted(grouped[0].specs, spec)
    return True


def cleanup(unit: SourceFile) -> None:
    """Drop the import declarations removals left empty."""
    unit.decls, _ = remove_where(
        unit.decls, lambda d: isinstance(d, ImportDecl) and not d.specs
    )


def remove_imports(unit: SourceFile, predicate: Callable[[ImportSpec], bool]) -> List[str]:
    """
    Drop every import spec matching predicate; returns the removed paths.
    Emptied declarations stay until cleanup() so a later add_import can
    take their place.
    """
    removed: List[str] = []
    for decl in unit.decls:
        if not isinstance(decl, ImportDecl):
            continue
        matched = [s.path for s in decl.specs if predicate(s)]
        if not matched:
            continue
        decl.specs, _ = remove_where(decl.specs, predicate)
        if decl.specs:
            first = decl.specs[0]
            while first.leading and first.leading[0] == "":
                first.leading = list(first.leading[1:])
        removed.extend(matched)
    return removed


def remove_import(unit: SourceFile, path: str) -> bool:
    return bool(remove_imports(unit, lambda s: s.path == path))


def remove_if_unused(unit: SourceFile, path: str) -> bool:
    """Remove a named import whose package is no longer referenced."""
    spec = find(unit, path)
    if spec is None or spec.name in ("_", "."):
        return False
    name = local_name(spec)
    if any(uses_package(decl, name) for decl in unit.decls if not isinstance(decl, ImportDecl)):
        return False
    return remove_import(unit, path)


def restore_if_used(unit: SourceFile, path: str, name: Optional[str] = None) -> bool:
    """Re-add an import dropped during injection when the code refers to it again."""
    if has_import(unit, path):
        return False
    local = name or default_name(path)
    if not any(uses_package(decl, local) for decl in unit.decls if not isinstance(decl, ImportDecl)):
        return False
    if not any(isinstance(decl, ImportDecl) for decl in unit.decls):
        decl = ImportDecl([ImportSpec(path, name)], grouped=False)
        decl.leading = [""]
        unit.decls.insert(0, decl)
        return True
    return add_import(unit, path, name)


def strip_companions(unit: SourceFile) -> List[str]:
    return remove_imports(unit, lambda s: "whatap/go-api" in s.path)
