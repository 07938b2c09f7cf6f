"""
Program Unit IR -> Go source.

Untouched subtrees are copied from the original text (re-indented when they
moved to a different depth). Touched nodes are spliced: their original text is
kept and only the changed child regions are replaced. Lists whose length or
trivia changed are regenerated element by element. Nodes without an origin
are generated in gofmt layout.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple

from .ir import (
    AssignStmt, Binary, Block, Call, CaseClause, CompositeLit, Compound, DeferStmt,
    ExprStmt, ForStmt, FuncDecl, FuncLit, GenDecl, GoStmt, Ident, IfStmt, ImportDecl,
    ImportSpec, KeyedElement, LabeledStmt, Node, Param, Raw, ReturnStmt, Selector,
    SelectStmt, SourceFile, SourceText, SwitchStmt, TRIVIA_LISTS, Unary, fingerprint,
)

Edit = Tuple[int, int, str]


def shift(text: str, old: str, new: str) -> str:
    """Re-indent continuation lines from `old` to `new`."""
    if old == new or "\n" not in text:
        return text
    lines = text.split("\n")
    for index in range(1, len(lines)):
        line = lines[index]
        if line.startswith(old) and line.strip():
            lines[index] = new + line[len(old):]
    return "\n".join(lines)


class Printer:
    def __init__(self) -> None:
        self._memo: Dict[int, Any] = {}

    def print(self, unit: SourceFile) -> str:
        return self.emit(unit, "")

    # ---------------- dispatch ----------------

    def unchanged(self, node: Node) -> bool:
        origin = node.origin
        return origin is not None and fingerprint(node, self._memo) == origin.fingerprint

    def emit(self, node: Optional[Node], indent: str) -> str:
        if node is None:
            return ""
        origin = node.origin
        if origin is not None:
            if self.unchanged(node):
                return shift(origin.text, origin.source.indent_at(origin.start), indent)
            spliced = self._splice(node, indent)
            if spliced is not None:
                return spliced
        return self._generate(node, indent)

    # ---------------- splicing ----------------

    @staticmethod
    def _child_indent(source: SourceText, pos: int, base: str, indent: str) -> str:
        own = source.indent_at(pos)
        if own.startswith(base):
            return indent + own[len(base):]
        return indent

    def _splice(self, node: Node, indent: str) -> Optional[str]:
        origin = node.origin
        if node.own_values() != origin.own:
            return None
        source = origin.source
        base = source.indent_at(origin.start)
        edits: List[Edit] = []
        for name in node.SLOTS:
            value = getattr(node, name)
            span = origin.slots.get(name)
            if isinstance(value, list):
                list_edits = self._list_edits(node, name, value, span or [], indent, base)
                if list_edits is None:
                    return None
                edits.extend(list_edits)
                continue
            if value is None and span is None:
                continue
            if value is None or span is None:
                return None
            if self._in_place(value, span):
                continue
            child_indent = self._child_indent(source, span[0], base, indent)
            edits.append((span[0], span[1], self.emit(value, child_indent)))
        return self._apply(source, origin.start, origin.end, edits, base, indent)

    def _in_place(self, value: Node, span: Tuple[int, int]) -> bool:
        origin = value.origin
        return (
            origin is not None
            and origin.start == span[0]
            and origin.end == span[1]
            and self.unchanged(value)
        )

    def _list_edits(
        self,
        node: Node,
        name: str,
        values: List[Node],
        spans: List[Tuple[int, int]],
        indent: str,
        base: str,
    ) -> Optional[List[Edit]]:
        origin = node.origin
        source = origin.source
        trivia_list = (type(node), name) in TRIVIA_LISTS
        same_trivia = (
            not trivia_list
            or (
                [(tuple(c.leading), c.trailing) for c in values] == origin.trivia.get(name, [])
                and (node.head_trailing, tuple(node.tail)) == origin.frame
            )
        )
        if len(values) == len(spans) and same_trivia:
            edits: List[Edit] = []
            for value, span in zip(values, spans):
                if self._in_place(value, span):
                    continue
                child_indent = self._child_indent(source, span[0], base, indent)
                edits.append((span[0], span[1], self.emit(value, child_indent)))
            return edits

        region = self._region(node)
        if region is None:
            return None
        text = self._regenerate(node, values, indent)
        return [(region[0], region[1], text)]

    @staticmethod
    def _region(node: Node) -> Optional[Tuple[int, int]]:
        origin = node.origin
        if isinstance(node, Block):
            return origin.start + 1, origin.end - 1
        if isinstance(node, SourceFile):
            return origin.marks["head"], origin.end
        if isinstance(node, ImportDecl) and not node.grouped:
            return None
        if "open" in origin.marks:
            return origin.marks["open"], origin.marks["close"]
        return None

    def _regenerate(self, node: Node, values: List[Node], indent: str) -> str:
        if isinstance(node, SourceFile):
            return self._elements(values, node.head_trailing, node.tail, "", "")
        if isinstance(node, (Block, ImportDecl)):
            return self._elements(values, node.head_trailing, node.tail, indent + "\t", indent)
        if isinstance(node, CaseClause):
            return self._elements(values, node.head_trailing, node.tail, indent + "\t", None)
        if isinstance(node, Call):
            return self._args(node, indent)
        if isinstance(node, CompositeLit):
            return self._literal_body(node, indent)
        raise ValueError(f"cannot regenerate list of {type(node).__name__}")

    def _apply(self, source: SourceText, start: int, end: int, edits: List[Edit], base: str, indent: str) -> str:
        out: List[str] = []
        cursor = start
        for edit_start, edit_end, text in sorted(edits, key=lambda e: e[0]):
            out.append(shift(source.text[cursor:edit_start], base, indent))
            out.append(text)
            cursor = edit_end
        out.append(shift(source.text[cursor:end], base, indent))
        return "".join(out)

    # ---------------- lists ----------------

    def _elements(
        self,
        values: List[Node],
        head_trailing: str,
        tail: List[str],
        inner: str,
        outer: Optional[str],
        comma: bool = False,
    ) -> str:
        out: List[str] = [head_trailing]
        for value in values:
            out.append("\n")
            for item in value.leading:
                out.append(inner + item + "\n" if item else "\n")
            out.append(inner + self.emit(value, inner) + ("," if comma else "") + value.trailing)
        for item in tail:
            out.append("\n" + (inner + item if item else ""))
        if outer is not None:
            out.append("\n" + outer)
        return "".join(out)

    def _args(self, node: Call, indent: str) -> str:
        multiline = node.origin is not None and node.origin.multiline and bool(node.args)
        inner = indent + "\t" if multiline else indent
        texts = [self.emit(arg, inner) for arg in node.args]
        if node.ellipsis and texts:
            texts[-1] += "..."
        if multiline:
            return "\n" + "".join(inner + text + ",\n" for text in texts) + indent
        return ", ".join(texts)

    def _literal_body(self, node: CompositeLit, indent: str) -> str:
        multiline = node.origin is not None and node.origin.multiline and bool(node.elements)
        if multiline:
            return self._elements(node.elements, node.head_trailing, node.tail, indent + "\t", indent, comma=True)
        return ", ".join(self.emit(el, indent) for el in node.elements)

    # ---------------- generation ----------------

    def _join(self, nodes: List[Node], indent: str) -> str:
        return ", ".join(self.emit(n, indent) for n in nodes)

    def _generate(self, node: Node, indent: str) -> str:
        if isinstance(node, Ident):
            return node.name
        if isinstance(node, Raw):
            return node.text
        if isinstance(node, Selector):
            return self.emit(node.x, indent) + "." + node.sel
        if isinstance(node, Call):
            return self.emit(node.fun, indent) + "(" + self._args(node, indent) + ")"
        if isinstance(node, Unary):
            return node.op + self.emit(node.x, indent)
        if isinstance(node, Binary):
            return f"{self.emit(node.x, indent)} {node.op} {self.emit(node.y, indent)}"
        if isinstance(node, KeyedElement):
            return f"{self.emit(node.key, indent)}: {self.emit(node.value, indent)}"
        if isinstance(node, CompositeLit):
            return self.emit(node.type, indent) + "{" + self._literal_body(node, indent) + "}"
        if isinstance(node, FuncLit):
            results = " " + self.emit(node.results, indent) if node.results is not None else ""
            return f"func({self._join(node.params, indent)}){results} {self.emit(node.body, indent)}"
        if isinstance(node, Param):
            names = ", ".join(node.names)
            type_text = ("..." if node.variadic else "") + self.emit(node.type, indent)
            return f"{names} {type_text}" if names else type_text
        if isinstance(node, Block):
            return "{" + self._elements(node.stmts, node.head_trailing, node.tail, indent + "\t", indent) + "}"
        if isinstance(node, ExprStmt):
            return self.emit(node.x, indent)
        if isinstance(node, AssignStmt):
            return f"{self._join(node.lhs, indent)} {node.op} {self._join(node.rhs, indent)}"
        if isinstance(node, DeferStmt):
            return "defer " + self.emit(node.call, indent)
        if isinstance(node, GoStmt):
            return "go " + self.emit(node.call, indent)
        if isinstance(node, ReturnStmt):
            return "return " + self._join(node.results, indent) if node.results else "return"
        if isinstance(node, IfStmt):
            init = self.emit(node.init, indent) + "; " if node.init is not None else ""
            text = f"if {init}{self.emit(node.cond, indent)} {self.emit(node.body, indent)}"
            if node.else_ is not None:
                text += " else " + self.emit(node.else_, indent)
            return text
        if isinstance(node, ForStmt):
            header = self.emit(node.header, indent) + " " if node.header is not None else ""
            return f"for {header}{self.emit(node.body, indent)}"
        if isinstance(node, SwitchStmt):
            head = "switch "
            if node.init is not None:
                head += self.emit(node.init, indent) + "; "
            if node.alias is not None:
                head += self.emit(node.alias, indent) + " := "
            if node.tag is not None:
                head += self.emit(node.tag, indent) + (".(type)" if node.kind == "type" else "") + " "
            return head + "{" + self._clauses(node.clauses, indent) + "}"
        if isinstance(node, SelectStmt):
            return "select {" + self._clauses(node.clauses, indent) + "}"
        if isinstance(node, CaseClause):
            head = "default" if node.kind == "default" else "case " + self._join(node.values, indent)
            return head + ":" + self._elements(node.body, node.head_trailing, node.tail, indent + "\t", None)
        if isinstance(node, LabeledStmt):
            return f"{node.label}:\n{indent}{self.emit(node.stmt, indent)}"
        if isinstance(node, ImportSpec):
            return (node.name + " " if node.name else "") + f'"{node.path}"'
        if isinstance(node, ImportDecl):
            if node.grouped or len(node.specs) != 1:
                return "import (" + self._elements(node.specs, node.head_trailing, node.tail, indent + "\t", indent) + ")"
            return "import " + self.emit(node.specs[0], indent)
        if isinstance(node, FuncDecl):
            recv = f"({self._join(node.recv, indent)}) " if node.has_recv else ""
            results = " " + self.emit(node.results, indent) if node.results is not None else ""
            body = " " + self.emit(node.body, indent) if node.body is not None else ""
            return f"func {recv}{node.name}({self._join(node.params, indent)}){results}{body}"
        if isinstance(node, SourceFile):
            return f"package {node.package}\n" + self._elements(node.decls, node.head_trailing, node.tail, "", "")
        if isinstance(node, (Compound, GenDecl)):
            if node.origin is not None:
                return node.origin.text
            return " ".join(self.emit(child, indent) for child in node.children_)
        raise ValueError(f"cannot print {type(node).__name__}")

    def _clauses(self, clauses: List[CaseClause], indent: str) -> str:
        return "".join("\n" + indent + self.emit(clause, indent) for clause in clauses) + "\n" + indent


def print_source(unit: SourceFile) -> str:
    """Serialize a Program Unit back to Go source."""
    return Printer().print(unit)


def print_node(node: Node) -> str:
    """Source text of a single node, at column zero."""
    return Printer().emit(node, "")
