"""
Go source -> Program Unit IR, via tree-sitter.

The builder converts the concrete syntax tree into goinst.ir nodes, records
each node's character span, attaches comments and blank lines to list
elements as trivia, and stamps every node with its shape fingerprint.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple
import re

import tree_sitter_go as tsgo
from tree_sitter import Language, Node as TSNode, Parser

from .errors import ParseError
from .ir import (
    AssignStmt, Binary, Block, Call, CaseClause, CompositeLit, Compound, DeferStmt,
    ExprStmt, ForStmt, FuncDecl, FuncLit, GenDecl, GoStmt, Ident, IfStmt, ImportDecl,
    ImportSpec, KeyedElement, LabeledStmt, Node, Origin, Param, Raw, ReturnStmt,
    Selector, SelectStmt, SourceFile, SourceText, SwitchStmt, TRIVIA_LISTS, Unary,
    fingerprint,
)


GO_LANGUAGE = Language(tsgo.language())
_parser = Parser(GO_LANGUAGE)

_IDENT_TYPES = {
    "identifier", "field_identifier", "package_identifier", "type_identifier",
    "label_name", "blank_identifier", "nil", "true", "false", "iota",
}
_LITERAL_TYPES = {
    "interpreted_string_literal", "raw_string_literal", "int_literal",
    "float_literal", "imaginary_literal", "rune_literal",
}
_DECL_KINDS = {
    "var_declaration": "var",
    "const_declaration": "const",
    "type_declaration": "type",
}
_SPEC_TYPES = {"var_spec", "const_spec", "type_spec", "type_alias"}
_CASE_TYPES = {"expression_case", "default_case", "type_case", "communication_case"}

_GAP_TOKEN = re.compile(r"//[^\n]*|/\*.*?\*/|\n", re.S)


def split_gap(gap: str) -> Tuple[str, List[str]]:
    """
    Split the text between two list elements into the trailing comment of the
    first (same line) and the leading trivia of the second.
    """
    trailing = ""
    items: List[str] = []
    first_line = True
    line_empty = True
    for match in _GAP_TOKEN.finditer(gap):
        token = match.group(0)
        if token == "\n":
            if first_line:
                first_line = False
            elif line_empty:
                items.append("")
            line_empty = True
        elif first_line:
            trailing = gap[:match.end()].lstrip(",")
        else:
            items.append(token)
            line_empty = False
    return trailing, items


class _Builder:
    def __init__(self, text: str) -> None:
        self.source = SourceText(text)
        self.data = text.encode("utf-8")
        self._offsets: Optional[List[int]] = None
        if len(self.data) != len(text):
            offsets = [0] * (len(self.data) + 1)
            byte = 0
            for index, char in enumerate(text):
                width = len(char.encode("utf-8"))
                for k in range(width):
                    offsets[byte + k] = index
                byte += width
            offsets[byte] = len(text)
            self._offsets = offsets
        self._memo: Dict[int, Any] = {}

    # ---------------- positions ----------------

    def pos(self, byte: int) -> int:
        return byte if self._offsets is None else self._offsets[byte]

    def text_of(self, ts: TSNode) -> str:
        return self.data[ts.start_byte:ts.end_byte].decode("utf-8")

    def make(self, node: Node, ts: TSNode) -> Node:
        node.origin = Origin(self.source, self.pos(ts.start_byte), self.pos(ts.end_byte))
        return node

    @staticmethod
    def named(ts: TSNode) -> List[TSNode]:
        return [c for c in ts.named_children if c.type != "comment"]

    @staticmethod
    def token(ts: TSNode, kind: str) -> Optional[TSNode]:
        for child in ts.children:
            if child.type == kind:
                return child
        return None

    # ---------------- file level ----------------

    def source_file(self, root: TSNode) -> SourceFile:
        package = ""
        head = 0
        decls: List[Node] = []
        for child in self.named(root):
            if child.type == "package_clause":
                names = self.named(child)
                package = self.text_of(names[0]) if names else ""
                head = self.pos(child.end_byte)
            elif child.type == "import_declaration":
                decls.append(self.import_decl(child))
            elif child.type in ("function_declaration", "method_declaration"):
                decls.append(self.func_decl(child))
            else:
                decls.append(self.node(child))
        if not package:
            raise ParseError("missing package clause", 1)
        unit = SourceFile(package, decls)
        unit.origin = Origin(self.source, 0, len(self.source.text))
        unit.origin.marks["head"] = head
        return unit

    def import_decl(self, ts: TSNode) -> ImportDecl:
        spec_list = None
        for child in self.named(ts):
            if child.type == "import_spec_list":
                spec_list = child
        if spec_list is None:
            specs = [self.import_spec(c) for c in self.named(ts) if c.type == "import_spec"]
            return self.make(ImportDecl(specs, grouped=False), ts)  # type: ignore[return-value]
        specs = [self.import_spec(c) for c in self.named(spec_list) if c.type == "import_spec"]
        decl = self.make(ImportDecl(specs, grouped=True), ts)
        decl.origin.marks["open"] = self.pos(spec_list.start_byte) + 1
        decl.origin.marks["close"] = self.pos(spec_list.end_byte) - 1
        return decl  # type: ignore[return-value]

    def import_spec(self, ts: TSNode) -> ImportSpec:
        path_node = ts.child_by_field_name("path")
        name_node = ts.child_by_field_name("name")
        path = self.text_of(path_node).strip('"`') if path_node is not None else ""
        name = self.text_of(name_node) if name_node is not None else None
        return self.make(ImportSpec(path, name), ts)  # type: ignore[return-value]

    def func_decl(self, ts: TSNode) -> FuncDecl:
        name_node = ts.child_by_field_name("name")
        recv_node = ts.child_by_field_name("receiver")
        params_node = ts.child_by_field_name("parameters")
        result_node = ts.child_by_field_name("result")
        body_node = ts.child_by_field_name("body")
        decl = FuncDecl(
            self.text_of(name_node) if name_node is not None else "",
            recv=self.params(recv_node) if recv_node is not None else [],
            params=self.params(params_node) if params_node is not None else [],
            results=self.node(result_node) if result_node is not None else None,
            body=self.block(body_node) if body_node is not None else None,
            has_recv=recv_node is not None,
        )
        return self.make(decl, ts)  # type: ignore[return-value]

    def params(self, ts: TSNode) -> List[Param]:
        result: List[Param] = []
        for child in self.named(ts):
            names = [self.text_of(n) for n in child.children_by_field_name("name")]
            type_node = child.child_by_field_name("type")
            param = Param(
                names,
                self.node(type_node) if type_node is not None else None,
                variadic=child.type == "variadic_parameter_declaration",
            )
            result.append(self.make(param, child))  # type: ignore[arg-type]
        return result

    # ---------------- statements ----------------

    def statements(self, nodes: List[TSNode]) -> List[Node]:
        stmts: List[Node] = []
        for child in nodes:
            if child.type == "comment":
                continue
            if child.type == "statement_list":
                stmts.extend(self.statements(child.named_children))
            elif child.type == "empty_statement":
                continue
            else:
                stmts.append(self.node(child))
        return stmts

    def block(self, ts: TSNode) -> Block:
        return self.make(Block(self.statements(ts.named_children)), ts)  # type: ignore[return-value]

    def expr_list(self, ts: Optional[TSNode]) -> List[Node]:
        if ts is None:
            return []
        if ts.type != "expression_list":
            return [self.node(ts)]
        return [self.node(c) for c in self.named(ts)]

    def case_clause(self, ts: TSNode) -> CaseClause:
        kind = ts.type.replace("_case", "")
        fields: List[TSNode] = []
        for name in ("value", "type", "communication"):
            fields.extend(ts.children_by_field_name(name))
        field_starts = {c.start_byte for c in fields}
        values: List[Node] = []
        for child in fields:
            values.extend(self.expr_list(child))
        body_nodes = [c for c in ts.named_children if c.start_byte not in field_starts]
        clause = self.make(CaseClause(kind, values, self.statements(body_nodes)), ts)
        colon = self.token(ts, ":")
        clause.origin.marks["open"] = self.pos(colon.end_byte) if colon is not None else clause.origin.end
        clause.origin.marks["close"] = clause.origin.end
        return clause  # type: ignore[return-value]

    def node(self, ts: TSNode) -> Node:
        kind = ts.type
        field = ts.child_by_field_name

        if kind == "block":
            return self.block(ts)
        if kind == "expression_statement":
            return self.make(ExprStmt(self.node(self.named(ts)[0])), ts)
        if kind in ("short_var_declaration", "assignment_statement"):
            op_node = field("operator")
            op = ":=" if kind == "short_var_declaration" else (
                self.text_of(op_node) if op_node is not None else "="
            )
            return self.make(AssignStmt(self.expr_list(field("left")), op, self.expr_list(field("right"))), ts)
        if kind == "defer_statement":
            return self.make(DeferStmt(self.node(self.named(ts)[0])), ts)
        if kind == "go_statement":
            return self.make(GoStmt(self.node(self.named(ts)[0])), ts)
        if kind == "return_statement":
            named = self.named(ts)
            return self.make(ReturnStmt(self.expr_list(named[0]) if named else []), ts)
        if kind == "if_statement":
            init = field("initializer")
            alt = field("alternative")
            return self.make(IfStmt(
                self.node(init) if init is not None else None,
                self.node(field("condition")),
                self.block(field("consequence")),
                self.node(alt) if alt is not None else None,
            ), ts)
        if kind == "for_statement":
            body = field("body")
            header = [c for c in self.named(ts) if c.start_byte != body.start_byte]
            return self.make(ForStmt(self.node(header[0]) if header else None, self.block(body)), ts)
        if kind in ("expression_switch_statement", "type_switch_statement"):
            init = field("initializer")
            alias = field("alias")
            value = field("value")
            clauses = [self.case_clause(c) for c in ts.named_children if c.type in _CASE_TYPES]
            alias_nodes = self.expr_list(alias)
            return self.make(SwitchStmt(
                "type" if kind == "type_switch_statement" else "expr",
                init=self.node(init) if init is not None else None,
                alias=alias_nodes[0] if alias_nodes else None,
                tag=self.node(value) if value is not None else None,
                clauses=clauses,
            ), ts)
        if kind == "select_statement":
            clauses = [self.case_clause(c) for c in ts.named_children if c.type in _CASE_TYPES]
            return self.make(SelectStmt(clauses), ts)
        if kind == "labeled_statement":
            label = field("label")
            rest = self.statements([c for c in ts.named_children if c.start_byte != label.start_byte])
            return self.make(LabeledStmt(self.text_of(label), rest[0] if rest else None), ts)
        if kind in _DECL_KINDS:
            names: List[str] = []
            stack = list(ts.named_children)
            while stack:
                child = stack.pop(0)
                if child.type in _SPEC_TYPES:
                    names.extend(self.text_of(n) for n in child.children_by_field_name("name"))
                else:
                    stack.extend(child.named_children)
            children = [self.node(c) for c in self.named(ts)]
            return self.make(GenDecl(_DECL_KINDS[kind], names, children), ts)
        if kind == "func_literal":
            result = field("result")
            return self.make(FuncLit(
                self.params(field("parameters")),
                self.node(result) if result is not None else None,
                self.block(field("body")),
            ), ts)
        return self.expr(ts)

    # ---------------- expressions ----------------

    def expr(self, ts: TSNode) -> Node:
        kind = ts.type
        field = ts.child_by_field_name

        if kind in _IDENT_TYPES:
            return self.make(Ident(self.text_of(ts)), ts)
        if kind in _LITERAL_TYPES:
            return self.make(Raw(self.text_of(ts)), ts)
        if kind == "selector_expression":
            return self.make(Selector(self.node(field("operand")), self.text_of(field("field"))), ts)
        if kind == "qualified_type":
            return self.make(Selector(self.node(field("package")), self.text_of(field("name"))), ts)
        if kind == "call_expression":
            return self.call(ts)
        if kind == "unary_expression":
            return self.make(Unary(self.text_of(field("operator")), self.node(field("operand"))), ts)
        if kind == "binary_expression":
            return self.make(Binary(
                self.node(field("left")), self.text_of(field("operator")), self.node(field("right")),
            ), ts)
        if kind == "composite_literal":
            type_node = field("type")
            body = field("body")
            lit = CompositeLit(self.node(type_node) if type_node is not None else None,
                               self.literal_elements(body))
            return self.literal_marks(self.make(lit, ts), body)
        if kind == "literal_value":
            return self.literal_marks(self.make(CompositeLit(None, self.literal_elements(ts)), ts), ts)
        if kind == "literal_element":
            named = self.named(ts)
            if len(named) == 1:
                return self.node(named[0])
        if kind == "keyed_element":
            named = self.named(ts)
            if len(named) == 2:
                return self.make(KeyedElement(self.node(named[0]), self.node(named[1])), ts)
        named = self.named(ts)
        if not named:
            return self.make(Raw(self.text_of(ts)), ts)
        return self.make(Compound(kind, [self.node(c) for c in named]), ts)

    def call(self, ts: TSNode) -> Node:
        args_node = ts.child_by_field_name("arguments")
        args: List[Node] = []
        ellipsis = False
        for child in args_node.children:
            if child.type == "comment" or not child.is_named:
                if child.type == "...":
                    ellipsis = True
                continue
            if child.type == "variadic_argument":
                ellipsis = True
                inner = self.named(child)
                args.append(self.node(inner[0]) if inner else self.make(Raw(self.text_of(child)), child))
            else:
                args.append(self.node(child))
        node = self.make(Call(self.node(ts.child_by_field_name("function")), args, ellipsis), ts)
        open_pos = self.pos(args_node.start_byte) + 1
        close_pos = self.pos(args_node.end_byte) - 1
        node.origin.marks["open"] = open_pos
        node.origin.marks["close"] = close_pos
        node.origin.multiline = "\n" in self.source.text[open_pos:close_pos]
        return node

    def literal_elements(self, ts: TSNode) -> List[Node]:
        return [self.node(c) for c in self.named(ts)]

    def literal_marks(self, node: Node, body: TSNode) -> Node:
        open_pos = self.pos(body.start_byte) + 1
        close_pos = self.pos(body.end_byte) - 1
        node.origin.marks["open"] = open_pos
        node.origin.marks["close"] = close_pos
        node.origin.multiline = "\n" in self.source.text[open_pos:close_pos]
        return node

    # ---------------- finishing ----------------

    def finish(self, node: Node) -> None:
        """Record child spans and trivia, then stamp fingerprints (post-order)."""
        stack: List[Tuple[Node, bool]] = [(node, False)]
        while stack:
            current, done = stack.pop()
            if not done:
                stack.append((current, True))
                stack.extend((child, False) for child in current.children())
                continue
            self._finish_one(current)

    def _finish_one(self, node: Node) -> None:
        origin = node.origin
        if origin is None:
            return
        for name in node.SLOTS:
            value = getattr(node, name)
            if isinstance(value, list):
                origin.slots[name] = [(c.origin.start, c.origin.end) for c in value]
                if (type(node), name) in TRIVIA_LISTS:
                    self._attach_trivia(node, value)
                    origin.trivia[name] = [(tuple(c.leading), c.trailing) for c in value]
            elif value is not None:
                origin.slots[name] = (value.origin.start, value.origin.end)
            else:
                origin.slots[name] = None
        origin.frame = (node.head_trailing, tuple(node.tail))
        origin.own = node.own_values()
        origin.fingerprint = fingerprint(node, self._memo)

    def _attach_trivia(self, node: Node, elements: List[Node]) -> None:
        origin = node.origin
        if isinstance(node, Block):
            open_pos, close_pos = origin.start + 1, origin.end - 1
        elif isinstance(node, SourceFile):
            open_pos, close_pos = origin.marks["head"], origin.end
        elif "open" in origin.marks:
            open_pos, close_pos = origin.marks["open"], origin.marks["close"]
        else:
            return
        text = self.source.text
        cursor = open_pos
        previous: Optional[Node] = None
        for element in elements:
            trailing, items = split_gap(text[cursor:element.origin.start])
            if previous is None:
                node.head_trailing = trailing
            else:
                previous.trailing = trailing
            element.leading = items
            cursor = element.origin.end
            previous = element
        trailing, items = split_gap(text[cursor:close_pos])
        if previous is None:
            node.head_trailing = trailing
        else:
            previous.trailing = trailing
        node.tail = items


def _first_error_line(root: TSNode) -> int:
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            return node.start_point[0] + 1
        if node.has_error:
            stack.extend(reversed(node.children))
    return root.start_point[0] + 1


def parse_source(text: str) -> SourceFile:
    """Parse one Go file. Raises ParseError on any syntax error."""
    builder = _Builder(text)
    tree = _parser.parse(builder.data)
    root = tree.root_node
    if root.has_error:
        line = _first_error_line(root)
        raise ParseError(f"syntax error near line {line}", line)
    unit = builder.source_file(root)
    builder.finish(unit)
    return unit


def parse_statements(code: str) -> List[Node]:
    """Parse a statement snippet as the body of a throwaway function."""
    unit = parse_source("package p\nfunc f() {\n" + code + "\n}\n")
    funcs = list(unit.funcs())
    if not funcs or funcs[-1].body is None:
        raise ParseError("snippet did not parse as statements")
    stmts = funcs[-1].body.stmts
    if stmts:
        stmts[0].leading = [item for item in stmts[0].leading if item]
    return stmts


def parse_expression(code: str) -> Node:
    stmts = parse_statements("_ = " + code)
    if len(stmts) != 1 or not isinstance(stmts[0], AssignStmt) or len(stmts[0].rhs) != 1:
        raise ParseError(f"not a single expression: {code}")
    return stmts[0].rhs[0]
