"""
Custom rule engine: user-configured rewrites applied after the built-in
policies. Per unit the order is Inject, Replace, Hook, Transform. Add rules
touch the output tree directly and run outside the per-unit walk.

A rule that cannot be applied (unknown import, bad template, snippet that
does not parse) is skipped; the rest of the unit is still processed.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Tuple
import fnmatch
import os
import re
import sys

from . import imports
from .config import AddRule, CustomConfig, HookRule, InjectRule, ReplaceRule, TransformRule
from .errors import ParseError, TemplateError
from .ir import (
    AssignStmt, Block, Call, DeferStmt, ExprStmt, FuncLit, Ident, IfStmt, Node, Selector, SourceFile,
    Stmts, SwitchStmt, call_target, clone, iter_nodes, walk_statements,
)
from .parser import parse_statements
from .paths import write_text_atomic
from .printer import print_node


# ============================================================
# ======================== MATCHING ==========================
# ============================================================

def matches(name: str, pattern: str) -> bool:
    """
    "" and "*" match anything. A single "*" splits the pattern into a prefix
    and a suffix. Anything else is an exact match.
    """
    if pattern in ("", "*"):
        return True
    if "*" in pattern:
        prefix, suffix = pattern.split("*", 1)
        return name.startswith(prefix) and name.endswith(suffix) and len(name) >= len(prefix) + len(suffix)
    return name == pattern


def matches_unit(unit: SourceFile, package: str, file: str, path: str) -> bool:
    if package and not matches(unit.package, package):
        return False
    if file and not fnmatch.fnmatchcase(os.path.basename(path or ""), file):
        return False
    return True


def parse_snippet(code: str) -> List[Node]:
    if not code.strip():
        return []
    return parse_statements(code)


def _split_qualified(name: str) -> Tuple[str, str]:
    if "." in name:
        pkg, func = name.split(".", 1)
        return pkg, func
    return "", name


def _add_rule_imports(unit: SourceFile, paths: List[str]) -> None:
    for path in paths:
        imports.add_import(unit, path)


def _is_call_to(node: Optional[Node], alias: str, pattern: str) -> bool:
    """`alias.F(...)` with F matching pattern; a local `F(...)` when alias is ""."""
    if not isinstance(node, Call):
        return False
    if alias:
        fun = node.fun
        return (
            isinstance(fun, Selector) and isinstance(fun.x, Ident)
            and fun.x.name == alias and matches(fun.sel, pattern)
        )
    return isinstance(node.fun, Ident) and matches(node.fun.name, pattern)


def contains_call(stmt: Node, alias: str, pattern: str) -> bool:
    """The statement's own call: expression statement, first rhs, if-init or switch tag."""
    if isinstance(stmt, ExprStmt):
        return _is_call_to(stmt.x, alias, pattern)
    if isinstance(stmt, AssignStmt):
        return bool(stmt.rhs) and _is_call_to(stmt.rhs[0], alias, pattern)
    if isinstance(stmt, IfStmt) and isinstance(stmt.init, AssignStmt):
        return bool(stmt.init.rhs) and _is_call_to(stmt.init.rhs[0], alias, pattern)
    if isinstance(stmt, SwitchStmt) and stmt.tag is not None:
        return _is_call_to(stmt.tag, alias, pattern)
    return False


# ============================================================
# ========================= INJECT ===========================
# ============================================================

def apply_inject(unit: SourceFile, rule: InjectRule, path: str = "") -> int:
    """Prepend `start` and a deferred closure running `end` to every matching function."""
    if not matches_unit(unit, rule.package, rule.file, path):
        return 0
    start = parse_snippet(rule.start)
    end = parse_snippet(rule.end)
    if not start and not end:
        return 0
    count = 0
    for fn in unit.funcs():
        if fn.body is None or not matches(fn.name, rule.function):
            continue
        head: List[Node] = [clone(s) for s in start]
        if end:
            closure = FuncLit([], None, Block(clone(end)))
            head.append(DeferStmt(Call(closure)))
        fn.body.stmts = head + fn.body.stmts
        count += 1
    if count:
        _add_rule_imports(unit, rule.imports)
    return count


# ============================================================
# ========================= REPLACE ==========================
# ============================================================

def apply_replace(unit: SourceFile, rule: ReplaceRule) -> int:
    """`alias.Function(...)` -> `Q.G(...)` for every call site of the rule's package."""
    alias = imports.package_name(unit, rule.package)
    if not alias:
        return 0
    new_pkg, new_func = _split_qualified(rule.with_)
    new_pkg = new_pkg or alias
    count = 0
    for node in iter_nodes(unit):
        if isinstance(node, Call) and call_target(node) == (alias, rule.function):
            node.fun.x.name = new_pkg
            node.fun.sel = new_func
            count += 1
    if count:
        # dropped first so the first new import takes its place
        imports.remove_if_unused(unit, rule.package)
        _add_rule_imports(unit, rule.imports)
    return count


def reverse_replace(unit: SourceFile, rule: ReplaceRule) -> int:
    """Undo apply_replace: `Q.G(...)` -> `alias.Function(...)`."""
    if not rule.imports or not imports.has_import(unit, rule.imports[0]):
        return 0
    new_pkg, new_func = _split_qualified(rule.with_)
    if not new_pkg:
        return 0
    original = imports.default_name(rule.package)
    count = 0
    for node in iter_nodes(unit):
        if isinstance(node, Call) and call_target(node) == (new_pkg, new_func):
            node.fun.x.name = original
            node.fun.sel = rule.function
            count += 1
    if count:
        for path in rule.imports:
            imports.remove_if_unused(unit, path)
        imports.restore_if_used(unit, rule.package)
    return count


# ============================================================
# ========================== HOOK ============================
# ============================================================

def apply_hook(unit: SourceFile, rule: HookRule) -> int:
    """Insert `before`/`after` statements around every statement calling the function."""
    local = rule.package in ("main", unit.package)
    alias = "" if local else imports.package_name(unit, rule.package)
    if not local and not alias:
        return 0
    try:
        before = parse_snippet(rule.before)
        after = parse_snippet(rule.after)
    except ParseError as exc:
        sys.stderr.write(f"[goinst] Skipping hook rule for {rule.package}.{rule.function}: {exc}\n")
        return 0
    count = 0

    def visitor(stmts: Stmts, owner: Node) -> Optional[Stmts]:
        nonlocal count
        if not any(contains_call(s, alias, rule.function) for s in stmts):
            return None
        out: List[Node] = []
        for stmt in stmts:
            if not contains_call(stmt, alias, rule.function):
                out.append(stmt)
                continue
            inserted = [clone(s) for s in before]
            if inserted and stmt.leading:
                inserted[0].leading, stmt.leading = stmt.leading, []
            out.extend(inserted)
            out.append(stmt)
            out.extend(clone(s) for s in after)
            count += 1
        return out

    for fn in unit.funcs():
        if fn.body is not None:
            walk_statements(fn.body, visitor)
    if count:
        _add_rule_imports(unit, rule.imports)
    return count


# ============================================================
# ======================= TRANSFORM ==========================
# ============================================================

_PLACEHOLDER = re.compile(r"\{\{\s*\.([A-Za-z_]\w*)(?:\.([A-Za-z_]\w*))?\s*\}\}")
_FIELDS = ("Original", "Var", "Args", "Arg0", "Arg1", "Arg2", "FuncName", "PkgName")


def render_template(template: str, values: Dict[str, str], variables: Optional[Dict[str, Any]] = None) -> str:
    """
    Substitute `{{.Field}}` and `{{.Vars.name}}` placeholders. Unknown fields,
    unknown vars and stray braces raise TemplateError.
    """
    variables = variables or {}

    def substitute(found: "re.Match[str]") -> str:
        name, member = found.group(1), found.group(2)
        if name == "Vars":
            if member is None or member not in variables:
                raise TemplateError(f"undefined template variable: {found.group(0)}")
            return str(variables[member])
        if member is not None or name not in _FIELDS:
            raise TemplateError(f"unknown template field: {found.group(0)}")
        return values.get(name, "")

    rendered = _PLACEHOLDER.sub(substitute, template)
    if "{{" in rendered or "}}" in rendered:
        raise TemplateError("unbalanced template braces")
    return rendered


def _template_values(target: Call, var: str) -> Dict[str, str]:
    pkg, func = call_target(target)
    args = [print_node(arg) for arg in target.args]
    values = {
        "Original": print_node(target),
        "Var": var,
        "Args": ", ".join(args),
        "FuncName": func,
        "PkgName": pkg,
    }
    for index in range(3):
        values[f"Arg{index}"] = args[index] if index < len(args) else ""
    return values


def load_template(rule: TransformRule, base_dir: str) -> str:
    if rule.template_file:
        path = rule.template_file
        if not os.path.isabs(path):
            path = os.path.join(base_dir, path)
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return handle.read()
        except OSError as exc:
            raise TemplateError(f"cannot read template file {path}: {exc}") from exc
    return rule.template


def _transform_target(stmt: Node, alias: str, pattern: str) -> Tuple[Optional[Call], str]:
    if isinstance(stmt, AssignStmt) and stmt.rhs and _is_call_to(stmt.rhs[0], alias, pattern):
        lhs = stmt.lhs[0] if stmt.lhs else None
        return stmt.rhs[0], lhs.name if isinstance(lhs, Ident) else ""
    if isinstance(stmt, ExprStmt) and _is_call_to(stmt.x, alias, pattern):
        return stmt.x, ""
    return None, ""


def apply_transform(unit: SourceFile, rule: TransformRule, base_dir: str = "") -> int:
    """Replace each matching statement with the rendered template."""
    alias = imports.package_name(unit, rule.package)
    if not alias:
        return 0
    try:
        template = load_template(rule, base_dir)
    except TemplateError as exc:
        sys.stderr.write(f"[goinst] Skipping transform rule for {rule.package}.{rule.function}: {exc}\n")
        return 0
    lines = template.strip().split("\n")
    keep_original = len(lines) > 1 and "{{.Original}}" in lines[0]
    body = "\n".join(lines[1:]) if keep_original else template
    count = 0

    def replacement(stmt: Node) -> Optional[List[Node]]:
        target, var = _transform_target(stmt, alias, rule.function)
        if target is None:
            return None
        try:
            rendered = render_template(body, _template_values(target, var), rule.vars)
            produced = parse_snippet(rendered)
        except TemplateError as exc:
            sys.stderr.write(f"[goinst] Skipping transform of {rule.package}.{rule.function}: {exc}\n")
            return None
        except ParseError:
            return None
        if keep_original:
            return [stmt] + produced
        if produced and stmt.leading:
            produced[0].leading = stmt.leading
        return produced

    def visitor(stmts: Stmts, owner: Node) -> Optional[Stmts]:
        nonlocal count
        out: List[Node] = []
        changed = False
        for stmt in stmts:
            produced = replacement(stmt)
            if produced is None:
                out.append(stmt)
                continue
            out.extend(produced)
            changed = True
            count += 1
        return out if changed else None

    for fn in unit.funcs():
        if fn.body is not None:
            walk_statements(fn.body, visitor)
    if count:
        _add_rule_imports(unit, rule.imports)
    return count


# ============================================================
# ======================= PER UNIT ===========================
# ============================================================

def apply_rules(unit: SourceFile, custom: CustomConfig, path: str = "", base_dir: str = "") -> List[str]:
    """Apply every per-unit rule in order. Returns change descriptions."""
    changes: List[str] = []
    steps: List[Tuple[str, List[Any], Callable[[Any], int], Callable[[Any], str]]] = [
        ("inject", custom.inject, lambda r: apply_inject(unit, r, path), lambda r: r.function or "*"),
        ("replace", custom.replace, lambda r: apply_replace(unit, r), lambda r: f"{r.package}.{r.function} -> {r.with_}"),
        ("hook", custom.hook, lambda r: apply_hook(unit, r), lambda r: f"{r.package}.{r.function}"),
        ("transform", custom.transform, lambda r: apply_transform(unit, r, base_dir), lambda r: f"{r.package}.{r.function}"),
    ]
    for kind, rules, apply, describe in steps:
        for rule in rules:
            try:
                count = apply(rule)
            except ParseError as exc:
                sys.stderr.write(f"[goinst] Skipping {kind} rule {describe(rule)}: {exc}\n")
                continue
            if count:
                changes.append(f"custom {kind}: {describe(rule)} ({count})")
    return changes


def reverse_rules(unit: SourceFile, custom: CustomConfig) -> List[str]:
    changes: List[str] = []
    for rule in custom.replace:
        count = reverse_replace(unit, rule)
        if count:
            changes.append(f"reverted replace: {rule.with_} -> {rule.package}.{rule.function} ({count})")
    return changes


# ============================================================
# =========================== ADD ============================
# ============================================================

def add_target(rule: AddRule, out_dir: str) -> str:
    if rule.package in ("", ".", "main"):
        return os.path.join(out_dir, rule.file)
    return os.path.join(out_dir, rule.package.replace("/", os.sep), rule.file)


def add_content(rule: AddRule, base_dir: str) -> str:
    if rule.content_file:
        path = rule.content_file
        if not os.path.isabs(path):
            path = os.path.join(base_dir, path)
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read()
    return rule.content


def apply_add_rules(rules: List[AddRule], out_dir: str, base_dir: str, append: bool) -> List[str]:
    """
    Non-append rules (append=False) create or overwrite their file; append
    rules add `"\\n\\n" + content` to an existing file or create it.
    Returns the written paths. An unreadable content_file skips that rule.
    """
    written: List[str] = []
    for rule in rules:
        if rule.append != append:
            continue
        target = add_target(rule, out_dir)
        try:
            content = add_content(rule, base_dir)
            if append and os.path.exists(target):
                with open(target, "r", encoding="utf-8") as handle:
                    content = handle.read() + "\n\n" + content
            write_text_atomic(target, content)
        except OSError as exc:
            sys.stderr.write(f"[goinst] Skipping add rule for {rule.file}: {exc}\n")
            continue
        written.append(target)
    return written
