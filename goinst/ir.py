"""
Program Unit IR.

A parsed Go file is held as a tree of small dataclasses. Every node that came
from source text carries an Origin (span, shape fingerprint and child spans)
so the printer can emit untouched regions verbatim and splice edits into the
rest. Nodes built by policies have no origin and are printed gofmt-style.

Layout notes:
- SLOTS names the child fields in source order; OWN names the scalar fields
  that make up a node's shape.
- List elements (statements, import specs, declarations, literal elements)
  carry `leading` trivia ("" for a blank line, otherwise comment text) and a
  raw `trailing` comment.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union
import copy


# ============================================================
# ===================== SOURCE TEXT ==========================
# ============================================================

class SourceText:
    """Shared, immutable source buffer. Never copied by clone()."""

    def __init__(self, text: str) -> None:
        self.text = text
        self._line_starts: List[int] = [0]
        for index, char in enumerate(text):
            if char == "\n":
                self._line_starts.append(index + 1)

    def __deepcopy__(self, memo: Dict[int, Any]) -> "SourceText":
        return self

    def line_of(self, pos: int) -> int:
        """1-based line number of a character offset."""
        lo, hi = 0, len(self._line_starts) - 1
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self._line_starts[mid] <= pos:
                lo = mid
            else:
                hi = mid - 1
        return lo + 1

    def indent_at(self, pos: int) -> str:
        start = self._line_starts[self.line_of(pos) - 1]
        end = start
        while end < len(self.text) and self.text[end] in " \t":
            end += 1
        return self.text[start:end]


@dataclass
class Origin:
    source: SourceText
    start: int
    end: int
    fingerprint: Any = None
    own: Tuple[Any, ...] = ()
    slots: Dict[str, Any] = field(default_factory=dict)
    trivia: Dict[str, List[Tuple[Tuple[str, ...], str]]] = field(default_factory=dict)
    marks: Dict[str, int] = field(default_factory=dict)
    frame: Tuple[str, Tuple[str, ...]] = ("", ())
    multiline: bool = False

    @property
    def text(self) -> str:
        return self.source.text[self.start:self.end]

    @property
    def line(self) -> int:
        return self.source.line_of(self.start)


# ============================================================
# ======================== NODES =============================
# ============================================================

class Node:
    SLOTS: Tuple[str, ...] = ()
    OWN: Tuple[str, ...] = ()
    # Instance attributes; class-level values act as defaults.
    leading: List[str] = ()  # type: ignore[assignment]
    trailing: str = ""
    origin: Optional[Origin] = None
    # Containers only: comment after the opening brace and trivia before the closing one.
    head_trailing: str = ""
    tail: List[str] = ()  # type: ignore[assignment]

    @property
    def line(self) -> int:
        return self.origin.line if self.origin is not None else 0

    def own_values(self) -> Tuple[Any, ...]:
        values = []
        for name in self.OWN:
            value = getattr(self, name)
            if isinstance(value, list):
                value = tuple(value)
            values.append(value)
        return tuple(values)

    def children(self) -> Iterator["Node"]:
        for name in self.SLOTS:
            value = getattr(self, name)
            if isinstance(value, list):
                for child in value:
                    if child is not None:
                        yield child
            elif value is not None:
                yield value


@dataclass(eq=False)
class Ident(Node):
    name: str
    OWN = ("name",)


@dataclass(eq=False)
class Raw(Node):
    """Leaf text: literals, type expressions, anything not modelled further."""
    text: str
    OWN = ("text",)


@dataclass(eq=False)
class Compound(Node):
    """Any other syntax; children are kept so walks reach nested calls."""
    kind: str
    children_: List[Node] = field(default_factory=list)
    SLOTS = ("children_",)
    OWN = ("kind",)


@dataclass(eq=False)
class Selector(Node):
    x: Node
    sel: str
    SLOTS = ("x",)
    OWN = ("sel",)


@dataclass(eq=False)
class Call(Node):
    fun: Node
    args: List[Node] = field(default_factory=list)
    ellipsis: bool = False
    SLOTS = ("fun", "args")
    OWN = ("ellipsis",)


@dataclass(eq=False)
class Unary(Node):
    op: str
    x: Node
    SLOTS = ("x",)
    OWN = ("op",)


@dataclass(eq=False)
class Binary(Node):
    x: Node
    op: str
    y: Node
    SLOTS = ("x", "y")
    OWN = ("op",)


@dataclass(eq=False)
class KeyedElement(Node):
    key: Node
    value: Node
    SLOTS = ("key", "value")


@dataclass(eq=False)
class CompositeLit(Node):
    type: Optional[Node]
    elements: List[Node] = field(default_factory=list)
    SLOTS = ("type", "elements")


@dataclass(eq=False)
class Param(Node):
    names: List[str]
    type: Optional[Node]
    variadic: bool = False
    SLOTS = ("type",)
    OWN = ("names", "variadic")


@dataclass(eq=False)
class FuncLit(Node):
    params: List[Param]
    results: Optional[Node]
    body: "Block"
    SLOTS = ("params", "results", "body")


@dataclass(eq=False)
class Block(Node):
    stmts: List[Node] = field(default_factory=list)
    SLOTS = ("stmts",)


@dataclass(eq=False)
class ExprStmt(Node):
    x: Node
    SLOTS = ("x",)


@dataclass(eq=False)
class AssignStmt(Node):
    lhs: List[Node]
    op: str
    rhs: List[Node]
    SLOTS = ("lhs", "rhs")
    OWN = ("op",)


@dataclass(eq=False)
class DeferStmt(Node):
    call: Node
    SLOTS = ("call",)


@dataclass(eq=False)
class GoStmt(Node):
    call: Node
    SLOTS = ("call",)


@dataclass(eq=False)
class ReturnStmt(Node):
    results: List[Node] = field(default_factory=list)
    SLOTS = ("results",)


@dataclass(eq=False)
class IfStmt(Node):
    init: Optional[Node]
    cond: Node
    body: Block
    else_: Optional[Node] = None
    SLOTS = ("init", "cond", "body", "else_")


@dataclass(eq=False)
class ForStmt(Node):
    header: Optional[Node]
    body: Block
    SLOTS = ("header", "body")


@dataclass(eq=False)
class CaseClause(Node):
    kind: str
    values: List[Node] = field(default_factory=list)
    body: List[Node] = field(default_factory=list)
    SLOTS = ("values", "body")
    OWN = ("kind",)


@dataclass(eq=False)
class SwitchStmt(Node):
    kind: str
    init: Optional[Node] = None
    alias: Optional[Node] = None
    tag: Optional[Node] = None
    clauses: List[CaseClause] = field(default_factory=list)
    SLOTS = ("init", "alias", "tag", "clauses")
    OWN = ("kind",)


@dataclass(eq=False)
class SelectStmt(Node):
    clauses: List[CaseClause] = field(default_factory=list)
    SLOTS = ("clauses",)


@dataclass(eq=False)
class LabeledStmt(Node):
    label: str
    stmt: Optional[Node] = None
    SLOTS = ("stmt",)
    OWN = ("label",)


@dataclass(eq=False)
class GenDecl(Node):
    """var/const/type declarations, top-level or inside a function body."""
    kind: str
    names: List[str] = field(default_factory=list)
    children_: List[Node] = field(default_factory=list)
    SLOTS = ("children_",)
    OWN = ("kind", "names")


@dataclass(eq=False)
class FuncDecl(Node):
    name: str
    recv: List[Param] = field(default_factory=list)
    params: List[Param] = field(default_factory=list)
    results: Optional[Node] = None
    body: Optional[Block] = None
    SLOTS = ("recv", "params", "results", "body")
    OWN = ("name",)
    has_recv: bool = False


@dataclass(eq=False)
class ImportSpec(Node):
    path: str
    name: Optional[str] = None
    OWN = ("path", "name")


@dataclass(eq=False)
class ImportDecl(Node):
    specs: List[ImportSpec] = field(default_factory=list)
    grouped: bool = True
    SLOTS = ("specs",)
    OWN = ("grouped",)


@dataclass(eq=False)
class SourceFile(Node):
    package: str
    decls: List[Node] = field(default_factory=list)
    SLOTS = ("decls",)
    OWN = ("package",)

    @property
    def imports(self) -> List[ImportSpec]:
        specs: List[ImportSpec] = []
        for decl in self.decls:
            if isinstance(decl, ImportDecl):
                specs.extend(decl.specs)
        return specs

    def funcs(self) -> Iterator[FuncDecl]:
        for decl in self.decls:
            if isinstance(decl, FuncDecl):
                yield decl


# Trivia-bearing list slots: (class, slot name).
TRIVIA_LISTS = {
    (Block, "stmts"),
    (CaseClause, "body"),
    (ImportDecl, "specs"),
    (SourceFile, "decls"),
    (CompositeLit, "elements"),
}

Stmts = List[Node]


# ============================================================
# ===================== CONSTRUCTORS =========================
# ============================================================

def sel(x: Union[str, Node], name: str) -> Selector:
    return Selector(Ident(x) if isinstance(x, str) else x, name)


def call(fun: Union[str, Node], *args: Node, ellipsis: bool = False) -> Call:
    """call("pkg.Func", a, b) or call(node, ...)."""
    if isinstance(fun, str):
        parts = fun.split(".")
        node: Node = Ident(parts[0])
        for part in parts[1:]:
            node = Selector(node, part)
        fun = node
    return Call(fun, list(args), ellipsis)


def func_lit(results: Optional[str], stmts: Stmts) -> FuncLit:
    return FuncLit([], Raw(results) if results else None, Block(list(stmts)))


# ============================================================
# ===================== QUERY HELPERS ========================
# ============================================================

def call_target(node: Optional[Node]) -> Tuple[str, str]:
    """For `pkg.Func(...)` return ("pkg", "Func"); ("", "Func") for `Func(...)`."""
    if not isinstance(node, Call):
        return "", ""
    fun = node.fun
    if isinstance(fun, Selector) and isinstance(fun.x, Ident):
        return fun.x.name, fun.sel
    if isinstance(fun, Ident):
        return "", fun.name
    return "", ""


def selector_chain(node: Optional[Node]) -> List[str]:
    """`a.b.c` as ["a", "b", "c"]; empty when not a pure selector chain."""
    parts: List[str] = []
    while isinstance(node, Selector):
        parts.append(node.sel)
        node = node.x
    if not isinstance(node, Ident):
        return []
    parts.append(node.name)
    return list(reversed(parts))


def stmt_call(stmt: Optional[Node]) -> Optional[Call]:
    if isinstance(stmt, ExprStmt) and isinstance(stmt.x, Call):
        return stmt.x
    return None


def iter_nodes(root: Optional[Node]) -> Iterator[Node]:
    """Pre-order walk over every node."""
    if root is None:
        return
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        kids = list(node.children())
        stack.extend(reversed(kids))


def visit(root: Optional[Node], fn: Callable[[Node], bool]) -> None:
    """Pre-order walk; `fn` returns False to skip a node's children."""
    if root is None:
        return
    if fn(root) is False:
        return
    for child in list(root.children()):
        visit(child, fn)


def rewrite(root: Node, fn: Callable[[Node], Optional[Node]]) -> Node:
    """
    Post-order rewrite: `fn` may return a replacement node for any node.
    Returns the (possibly replaced) root.
    """
    for name in root.SLOTS:
        value = getattr(root, name)
        if isinstance(value, list):
            for index, child in enumerate(value):
                if child is not None:
                    value[index] = rewrite(child, fn)
        elif value is not None:
            setattr(root, name, rewrite(value, fn))
    replacement = fn(root)
    if replacement is None:
        return root
    if replacement.origin is None and root.leading:
        replacement.leading = root.leading
        replacement.trailing = root.trailing
    return replacement


def uses_package(root: Node, name: str) -> bool:
    """True when `name.X` appears anywhere below root."""
    for node in iter_nodes(root):
        if isinstance(node, Selector) and isinstance(node.x, Ident) and node.x.name == name:
            return True
        if isinstance(node, Raw) and node.text[:1] not in ("\"", "`", "'") and _mentions_qualifier(node.text, name):
            return True
    return False


def _mentions_qualifier(text: str, name: str) -> bool:
    start = 0
    needle = name + "."
    while True:
        index = text.find(needle, start)
        if index < 0:
            return False
        if index == 0 or not (text[index - 1].isalnum() or text[index - 1] in "_."):
            return True
        start = index + 1


# ============================================================
# ===================== STATEMENT WALK =======================
# ============================================================

StmtVisitor = Callable[[Stmts, Node], Optional[Stmts]]


def walk_statements(root: Node, visitor: StmtVisitor, closures: bool = True) -> None:
    """
    Visit every statement list below root (block bodies and case clause bodies),
    innermost lists first. The visitor gets (stmts, owner) and may return a
    replacement list. With closures=False, function literal bodies are not entered.
    """
    for name in root.SLOTS:
        value = getattr(root, name)
        if isinstance(value, list):
            for child in list(value):
                if child is not None and (closures or not isinstance(child, FuncLit)):
                    walk_statements(child, visitor, closures)
        elif value is not None and (closures or not isinstance(value, FuncLit)):
            walk_statements(value, visitor, closures)

    if isinstance(root, Block):
        replaced = visitor(root.stmts, root)
        if replaced is not None:
            root.stmts = replaced
    elif isinstance(root, CaseClause):
        replaced = visitor(root.body, root)
        if replaced is not None:
            root.body = replaced


def remove_where(stmts: List[Node], predicate: Callable[[Node], bool]) -> Tuple[List[Node], int]:
    """
    Drop matching elements. Leading trivia of a dropped element moves to the
    next kept element when that element has none of its own.
    """
    kept: List[Node] = []
    pending: List[str] = []
    removed = 0
    for node in stmts:
        if predicate(node):
            removed += 1
            if node.leading and not pending:
                pending = list(node.leading)
            continue
        if pending and not node.leading:
            node.leading = pending
        pending = []
        kept.append(node)
    return kept, removed


def clone(node: Any) -> Any:
    """Deep copy of a subtree; the source buffer is shared, nodes never are."""
    return copy.deepcopy(node)


def fingerprint(node: Optional[Node], memo: Optional[Dict[int, Any]] = None) -> Any:
    """
    Shape of a subtree: node kinds, scalar fields and the trivia of list
    elements. Equal fingerprints print identically.
    """
    if node is None:
        return None
    if memo is not None:
        cached = memo.get(id(node))
        if cached is not None:
            return cached
    parts: List[Any] = [type(node).__name__, node.own_values(), node.head_trailing, tuple(node.tail)]
    for name in node.SLOTS:
        value = getattr(node, name)
        if isinstance(value, list):
            parts.append(tuple(
                (fingerprint(child, memo), tuple(child.leading), child.trailing)
                for child in value
            ))
        else:
            parts.append(fingerprint(value, memo))
    result = tuple(parts)
    if memo is not None:
        memo[id(node)] = result
    return result
