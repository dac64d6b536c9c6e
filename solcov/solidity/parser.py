"""Tree-sitter backed parser for Solidity source units.

The concrete syntax tree from ``tree_sitter_solidity`` is folded into the
dataclasses in :mod:`solcov.solidity.nodes`. Tree-sitter reports byte
offsets; every node produced here carries character offsets into the
original text instead, so callers can slice ``str`` sources directly.
"""

from __future__ import annotations

import bisect
import re
import threading
from typing import Any, List, Optional, Tuple

import tree_sitter_solidity
from tree_sitter import Language, Parser

from ..errors import ParseError
from .nodes import (
    Assembly,
    Assignment,
    Binary,
    Block,
    Call,
    CallOptions,
    CatchClause,
    Conditional,
    ContractDef,
    DoWhile,
    Emit,
    Expr,
    ExpressionStmt,
    For,
    FunctionDef,
    Identifier,
    If,
    Index,
    InlineArray,
    Jump,
    Literal,
    Member,
    New,
    Opaque,
    Placeholder,
    Return,
    Revert,
    SourceTree,
    Stmt,
    TupleExpr,
    Try,
    Unary,
    VarDecl,
    While,
)

_LANGUAGE = Language(tree_sitter_solidity.language())
_local = threading.local()

_CONTRACT_KINDS = {
    "contract_declaration": "contract",
    "interface_declaration": "interface",
    "library_declaration": "library",
}
_FUNCTION_KINDS = {
    "function_definition": "function",
    "modifier_definition": "modifier",
    "constructor_definition": "constructor",
}
_VISIBILITY = {"public", "external", "internal", "private"}
_MUTABILITY = {"pure", "view", "payable", "constant"}
# Grammar wrappers that add no structure of their own.
_WRAPPERS = {"expression", "statement", "call_argument", "_expression"}
_STRING_LITERALS = {"string_literal", "hex_string_literal", "unicode_string_literal", "string"}
_NAME_LIKE = {"identifier", "primitive_type", "user_defined_type", "type_name"}


class LineIndex:
    """Maps character offsets to 1-based lines and 0-based columns."""

    def __init__(self, text: str) -> None:
        self._starts = [0]
        for match in re.finditer("\n", text):
            self._starts.append(match.end())

    def position(self, offset: int) -> tuple[int, int]:
        line = bisect.bisect_right(self._starts, offset) - 1
        return line + 1, offset - self._starts[line]

    def line_of(self, offset: int) -> int:
        return self.position(offset)[0]


def _get_parser() -> Parser:
    # tree-sitter parsers are not safe to share between threads.
    parser = getattr(_local, "parser", None)
    if parser is None:
        parser = Parser(_LANGUAGE)
        _local.parser = parser
    return parser


def parse(text: str, path: str = "<source>") -> SourceTree:
    """Parse ``text`` into a SourceTree, raising ParseError on malformed input."""
    return SourceParser(text, path).parse()


class SourceParser:
    def __init__(self, text: str, path: str) -> None:
        self.text = text
        self.path = path
        self.source_bytes = text.encode("utf-8")
        self._chars: Optional[List[int]] = None
        if len(self.source_bytes) != len(text):
            self._chars = []
            for index, char in enumerate(text):
                self._chars.extend([index] * len(char.encode("utf-8")))
            self._chars.append(len(text))

    def parse(self) -> SourceTree:
        root = _get_parser().parse(self.source_bytes).root_node
        if root.has_error:
            raise self._error(root)
        tree = SourceTree(path=self.path)
        for node in self._named(root):
            if node.type in _CONTRACT_KINDS:
                tree.contracts.append(self._contract(node))
            elif node.type == "function_definition":
                tree.free_functions.append(self._function(node))
        return tree

    # ------------------------------------------------------------------
    # Helpers

    def _offset(self, byte: int) -> int:
        return byte if self._chars is None else self._chars[byte]

    def _span(self, node: Any) -> Tuple[int, int]:
        return self._offset(node.start_byte), self._offset(node.end_byte)

    def _node_text(self, node: Any) -> str:
        return self.source_bytes[node.start_byte : node.end_byte].decode("utf-8", errors="ignore")

    @staticmethod
    def _named(node: Any) -> List[Any]:
        return [child for child in node.named_children if child.type != "comment"]

    @staticmethod
    def _token(node: Any, kind: str) -> Optional[Any]:
        for child in node.children:
            if child.type == kind:
                return child
        return None

    def _unwrap(self, node: Any) -> Any:
        while node.type in _WRAPPERS:
            inner = self._named(node)
            if len(inner) != 1:
                break
            node = inner[0]
        return node

    def _error(self, root: Any) -> ParseError:
        node = _first_error(root) or root
        line, column = LineIndex(self.text).position(self._offset(node.start_byte))
        if node.is_missing:
            message = f"expected {node.type!r}"
        elif node.start_byte >= len(self.source_bytes):
            message = "unexpected end of file"
        else:
            snippet = self._node_text(node).split("\n", 1)[0][:40]
            message = f"unexpected {snippet!r}"
        return ParseError(message, unit=self.path, line=line, column=column)

    # ------------------------------------------------------------------
    # Definitions

    def _contract(self, node: Any) -> ContractDef:
        start, end = self._span(node)
        name = node.child_by_field_name("name")
        body = node.child_by_field_name("body") or self._token(node, "contract_body")
        brace = self._token(body, "{") if body is not None else None
        contract = ContractDef(
            start=start,
            end=end,
            kind=_CONTRACT_KINDS[node.type],
            name=self._node_text(name) if name is not None else "",
            abstract=self._token(node, "abstract") is not None,
            brace=self._offset(brace.start_byte) if brace is not None else start,
        )
        if body is None:
            return contract
        for member in self._named(body):
            if member.type in _FUNCTION_KINDS or member.type == "fallback_receive_definition":
                contract.functions.append(self._function(member))
        return contract

    def _function(self, node: Any) -> FunctionDef:
        start, end = self._span(node)
        if node.type == "fallback_receive_definition":
            kind = "receive" if self._token(node, "receive") is not None else "fallback"
        else:
            kind = _FUNCTION_KINDS[node.type]
        name = node.child_by_field_name("name")

        visibility: Optional[str] = None
        mutability: Optional[str] = None
        for child in node.children:
            word = self._node_text(child) if child.type in ("visibility", "state_mutability") else child.type
            if word in _VISIBILITY:
                visibility = word
            elif word in _MUTABILITY:
                mutability = word

        body = node.child_by_field_name("body") or self._token(node, "function_body")
        return FunctionDef(
            start=start,
            end=end,
            kind=kind,
            name=self._node_text(name) if name is not None else "",
            visibility=visibility,
            mutability=mutability,
            body=self._block(body) if body is not None else None,
        )

    # ------------------------------------------------------------------
    # Statements

    def _block(self, node: Any) -> Block:
        start, end = self._span(node)
        brace = self._token(node, "{")
        return Block(
            start=start,
            end=end,
            statements=[self._statement(child) for child in self._named(node)],
            unchecked=self._token(node, "unchecked") is not None,
            brace=self._offset(brace.start_byte) if brace is not None else start,
        )

    def _statement(self, node: Any) -> Stmt:
        node = self._unwrap(node)
        kind = node.type
        start, end = self._span(node)
        if kind == "block_statement":
            return self._block(node)
        if kind == "if_statement":
            return self._if(node)
        if kind == "for_statement":
            return self._for(node)
        if kind == "while_statement":
            return While(
                start=start,
                end=end,
                condition=self._field(node, "condition"),
                body=self._sub(node, "body"),
            )
        if kind == "do_while_statement":
            return DoWhile(
                start=start,
                end=end,
                body=self._sub(node, "body"),
                condition=self._field(node, "condition"),
            )
        if kind == "return_statement":
            values = self._named(node)
            return Return(start=start, end=end, value=self._expression(values[0]) if values else None)
        if kind == "emit_statement":
            return Emit(start=start, end=end, call=self._invocation(node, node.child_by_field_name("name")))
        if kind == "revert_statement":
            error = node.child_by_field_name("error")
            if error is None:
                # ``revert("reason")`` is the builtin function, not a custom error.
                return ExpressionStmt(start=start, end=end, expr=self._invocation(node, None))
            return Revert(start=start, end=end, call=self._invocation(node, error))
        if kind in ("break_statement", "continue_statement"):
            return Jump(start=start, end=end, keyword=kind.split("_", 1)[0])
        if kind == "try_statement":
            return self._try(node)
        if kind == "assembly_statement":
            return Assembly(start=start, end=end)
        if kind == "variable_declaration_statement":
            value = node.child_by_field_name("value") or _after(node, "=")
            return VarDecl(start=start, end=end, value=self._expression(value) if value is not None else None)
        if kind == "expression_statement":
            values = self._named(node)
            expr = self._expression(values[0]) if values else None
            if isinstance(expr, Identifier) and expr.name == "_":
                return Placeholder(start=start, end=end)
            return ExpressionStmt(start=start, end=end, expr=expr)
        return ExpressionStmt(start=start, end=end)

    def _sub(self, node: Any, name: str) -> Optional[Stmt]:
        child = node.child_by_field_name(name)
        return self._statement(child) if child is not None else None

    def _field(self, node: Any, name: str) -> Optional[Expr]:
        child = node.child_by_field_name(name)
        return self._expression(child) if child is not None else None

    def _if(self, node: Any) -> If:
        start, end = self._span(node)
        condition = node.child_by_field_name("condition")
        then = node.child_by_field_name("body")
        orelse = node.child_by_field_name("else")
        if then is None:
            arms = [child for child in self._named(node) if condition is None or child.id != condition.id]
            then = arms[0] if arms else None
            orelse = arms[1] if len(arms) > 1 else None
        return If(
            start=start,
            end=end,
            condition=self._expression(condition) if condition is not None else None,
            then=self._statement(then) if then is not None else None,
            orelse=self._statement(orelse) if orelse is not None else None,
        )

    def _for(self, node: Any) -> For:
        start, end = self._span(node)
        initial = node.child_by_field_name("initial")
        condition = node.child_by_field_name("condition")
        if condition is not None and condition.type == "expression_statement":
            inner = self._named(condition)
            condition = inner[0] if inner else None
        elif condition is not None and not condition.is_named:
            condition = None
        return For(
            start=start,
            end=end,
            init=self._statement(initial) if initial is not None and initial.is_named else None,
            condition=self._expression(condition) if condition is not None else None,
            update=self._field(node, "update"),
            body=self._sub(node, "body"),
        )

    def _try(self, node: Any) -> Try:
        start, end = self._span(node)
        body = node.child_by_field_name("body")
        clauses: List[CatchClause] = []
        for child in self._named(node):
            if child.type != "catch_clause":
                continue
            name = self._token(child, "identifier")
            block = child.child_by_field_name("body") or self._token(child, "block_statement")
            clause_start, clause_end = self._span(child)
            clauses.append(
                CatchClause(
                    start=clause_start,
                    end=clause_end,
                    name=self._node_text(name) if name is not None else None,
                    block=self._block(block) if block is not None else None,
                )
            )
        return Try(
            start=start,
            end=end,
            expr=self._field(node, "attempt"),
            block=self._block(body) if body is not None else None,
            clauses=clauses,
        )

    # ------------------------------------------------------------------
    # Expressions

    def _arguments(self, node: Any) -> Tuple[List[Expr], Optional[List[str]], Optional[int]]:
        """Collect the parenthesised arguments written directly under ``node``."""
        for child in node.children:
            if child.type.endswith("arguments") and child.is_named:
                node = child
                break
        args: List[Expr] = []
        names: Optional[List[str]] = None
        close: Optional[int] = None
        opened = False
        for child in node.children:
            if child.type == "(":
                opened = True
            elif child.type == ")":
                close = self._offset(child.end_byte)
            elif opened and child.is_named and child.type != "comment":
                pairs = [item for item in self._named(child) if item.type == "call_struct_argument"]
                if pairs or self._token(child, "{") is not None:
                    names = names if names is not None else []
                    for pair in pairs:
                        key = pair.child_by_field_name("name")
                        value = self._field(pair, "value")
                        names.append(self._node_text(key) if key is not None else "")
                        if value is not None:
                            args.append(value)
                    continue
                expr = self._expression(child)
                if expr is not None:
                    args.append(expr)
        return args, names, close

    def _invocation(self, node: Any, callee_node: Optional[Any]) -> Call:
        """Build the call written by an ``emit``/``revert`` statement."""
        if callee_node is None:
            keyword = node.children[0]
            start, end = self._span(keyword)
            callee: Expr = Identifier(start=start, end=end, name=self._node_text(keyword))
        else:
            callee = self._expression(callee_node) or Opaque(*self._span(callee_node))
        args, names, close = self._arguments(node)
        if close is None and isinstance(callee, Call):
            return callee
        return Call(start=callee.start, end=close or callee.end, callee=callee, args=args, names=names)

    def _expression(self, node: Optional[Any]) -> Optional[Expr]:
        if node is None:
            return None
        node = self._unwrap(node)
        kind = node.type
        start, end = self._span(node)

        if kind in _NAME_LIKE:
            return Identifier(start=start, end=end, name=self._node_text(node))
        if kind == "boolean_literal":
            return Literal(start=start, end=end, kind="bool", text=self._node_text(node))
        if kind == "number_literal":
            return Literal(start=start, end=end, kind="number", text=self._node_text(node))
        if kind in _STRING_LITERALS:
            return Literal(start=start, end=end, kind="string", text=self._node_text(node))
        if kind == "binary_expression":
            return Binary(
                start=start,
                end=end,
                op=_operator(node),
                left=self._field(node, "left"),
                right=self._field(node, "right"),
            )
        if kind == "ternary_expression":
            condition = node.child_by_field_name("condition")
            arms = [child for child in self._named(node) if condition is None or child.id != condition.id]
            return Conditional(
                start=start,
                end=end,
                condition=self._expression(condition),
                if_true=self._expression(arms[0]) if arms else None,
                if_false=self._expression(arms[1]) if len(arms) > 1 else None,
            )
        if kind in ("assignment_expression", "augmented_assignment_expression"):
            return Assignment(
                start=start,
                end=end,
                op=_operator(node, default="="),
                target=self._field(node, "left"),
                value=self._field(node, "right"),
            )
        if kind in ("unary_expression", "update_expression"):
            argument = node.child_by_field_name("argument")
            operand = self._expression(argument)
            op = _operator(node)
            prefix = True
            if kind == "update_expression" and argument is not None:
                prefix = argument.start_byte > node.start_byte
            return Unary(start=start, end=end, op=op, operand=operand, prefix=prefix)
        if kind == "call_expression":
            function = node.child_by_field_name("function")
            if function is None:
                named = self._named(node)
                function = named[0] if named else None
            args, names, _ = self._arguments(node)
            return Call(start=start, end=end, callee=self._expression(function), args=args, names=names)
        if kind in ("payable_conversion_expression", "type_cast_expression"):
            head = node.children[0]
            args, names, _ = self._arguments(node)
            head_start, head_end = self._span(head)
            callee = Identifier(start=head_start, end=head_end, name=self._node_text(head))
            return Call(start=start, end=end, callee=callee, args=args, names=names)
        if kind == "struct_expression":
            return self._call_options(node)
        if kind == "member_expression":
            prop = node.child_by_field_name("property")
            return Member(
                start=start,
                end=end,
                obj=self._field(node, "object"),
                name=self._node_text(prop) if prop is not None else "",
            )
        if kind == "array_access":
            return Index(start=start, end=end, base=self._field(node, "base"), index=self._field(node, "index"))
        if kind == "slice_access":
            return Index(
                start=start,
                end=end,
                base=self._field(node, "base"),
                index=self._field(node, "from"),
                end_index=self._field(node, "to"),
                is_slice=True,
            )
        if kind == "parenthesized_expression":
            inner = [self._expression(child) for child in self._named(node)]
            return TupleExpr(start=start, end=end, items=[item for item in inner if item is not None])
        if kind == "tuple_expression":
            return TupleExpr(start=start, end=end, items=self._tuple_items(node))
        if kind == "inline_array_expression":
            items = [self._expression(child) for child in self._named(node)]
            return InlineArray(start=start, end=end, items=[item for item in items if item is not None])
        if kind == "new_expression":
            return self._new(node)

        items = [self._expression(child) for child in self._named(node)]
        return Opaque(start=start, end=end, kind=kind, items=[item for item in items if item is not None])

    def _call_options(self, node: Any) -> CallOptions:
        start, end = self._span(node)
        names: List[str] = []
        values: List[Expr] = []
        pairs = [child for child in self._named(node) if child.type == "struct_field_assignment"]
        if pairs:
            keys = [pair.child_by_field_name("name") for pair in pairs]
            exprs = [pair.child_by_field_name("value") for pair in pairs]
        else:
            keys = node.children_by_field_name("name")
            exprs = node.children_by_field_name("value")
        for key, value in zip(keys, exprs):
            expr = self._expression(value)
            if key is None or expr is None:
                continue
            names.append(self._node_text(key))
            values.append(expr)
        return CallOptions(start=start, end=end, callee=self._field(node, "type"), names=names, values=values)

    def _tuple_items(self, node: Any) -> List[Optional[Expr]]:
        """Tuple slots in order; an empty slot between commas is None."""
        items: List[Optional[Expr]] = []
        current: Optional[Expr] = None
        separated = False
        for child in node.children[1:]:
            if child.type == ",":
                items.append(current)
                current = None
                separated = True
            elif child.type == ")":
                if separated or current is not None:
                    items.append(current)
            elif child.is_named and child.type != "comment":
                current = self._expression(child)
        return items

    def _new(self, node: Any) -> Expr:
        start, end = self._span(node)
        name = node.child_by_field_name("name")
        if name is None:
            named = self._named(node)
            name = named[0] if named else None
        type_end = self._offset(name.end_byte) if name is not None else end
        created = New(start=start, end=type_end, type_name=self._node_text(name) if name is not None else "")
        if self._token(node, "(") is None:
            return created
        args, names, _ = self._arguments(node)
        return Call(start=start, end=end, callee=created, args=args, names=names)


def _operator(node: Any, default: str = "") -> str:
    field = node.child_by_field_name("operator")
    if field is not None:
        return field.type
    for child in node.children:
        if not child.is_named and child.type not in ("(", ")"):
            return child.type
    return default


def _after(node: Any, token: str) -> Optional[Any]:
    """First named child following the anonymous ``token`` child."""
    seen = False
    for child in node.children:
        if child.type == token:
            seen = True
        elif seen and child.is_named and child.type != "comment":
            return child
    return None


def _first_error(node: Any) -> Optional[Any]:
    if node.is_error or node.is_missing:
        return node
    for child in node.children:
        if child.has_error or child.is_missing:
            found = _first_error(child)
            if found is not None:
                return found
    return None


__all__ = ["LineIndex", "SourceParser", "parse"]
