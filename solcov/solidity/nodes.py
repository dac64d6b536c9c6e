"""Syntax tree nodes produced by the Solidity parser.

Every node records ``start``/``end`` character offsets into the original
text (``end`` exclusive). Only constructs that carry executable code are
modelled in detail; declarations without code are dropped by the parser.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple


@dataclass
class Node:
    start: int
    end: int


# ----------------------------------------------------------------------
# Expressions


@dataclass
class Expr(Node):
    def children(self) -> Iterator["Expr"]:
        return iter(())


@dataclass
class Identifier(Expr):
    name: str = ""


@dataclass
class Literal(Expr):
    kind: str = "number"
    text: str = ""


@dataclass
class Binary(Expr):
    op: str = ""
    left: Optional[Expr] = None
    right: Optional[Expr] = None

    def children(self) -> Iterator[Expr]:
        yield from (child for child in (self.left, self.right) if child is not None)


@dataclass
class Conditional(Expr):
    condition: Optional[Expr] = None
    if_true: Optional[Expr] = None
    if_false: Optional[Expr] = None

    def children(self) -> Iterator[Expr]:
        yield from (
            child for child in (self.condition, self.if_true, self.if_false) if child is not None
        )


@dataclass
class Assignment(Expr):
    op: str = "="
    target: Optional[Expr] = None
    value: Optional[Expr] = None

    def children(self) -> Iterator[Expr]:
        yield from (child for child in (self.target, self.value) if child is not None)


@dataclass
class Unary(Expr):
    op: str = ""
    operand: Optional[Expr] = None
    prefix: bool = True

    def children(self) -> Iterator[Expr]:
        if self.operand is not None:
            yield self.operand


@dataclass
class Call(Expr):
    callee: Optional[Expr] = None
    args: List[Expr] = field(default_factory=list)
    names: Optional[List[str]] = None

    def children(self) -> Iterator[Expr]:
        if self.callee is not None:
            yield self.callee
        yield from self.args

    @property
    def function_name(self) -> Optional[str]:
        if isinstance(self.callee, Identifier):
            return self.callee.name
        return None


@dataclass
class CallOptions(Expr):
    callee: Optional[Expr] = None
    names: List[str] = field(default_factory=list)
    values: List[Expr] = field(default_factory=list)

    def children(self) -> Iterator[Expr]:
        if self.callee is not None:
            yield self.callee
        yield from self.values


@dataclass
class Member(Expr):
    obj: Optional[Expr] = None
    name: str = ""

    def children(self) -> Iterator[Expr]:
        if self.obj is not None:
            yield self.obj


@dataclass
class Index(Expr):
    base: Optional[Expr] = None
    index: Optional[Expr] = None
    end_index: Optional[Expr] = None
    is_slice: bool = False

    def children(self) -> Iterator[Expr]:
        yield from (
            child for child in (self.base, self.index, self.end_index) if child is not None
        )


@dataclass
class TupleExpr(Expr):
    items: List[Optional[Expr]] = field(default_factory=list)

    def children(self) -> Iterator[Expr]:
        yield from (item for item in self.items if item is not None)


@dataclass
class InlineArray(Expr):
    items: List[Expr] = field(default_factory=list)

    def children(self) -> Iterator[Expr]:
        yield from self.items


@dataclass
class New(Expr):
    type_name: str = ""


@dataclass
class Opaque(Expr):
    """Any other expression form; only its sub-expressions are kept."""

    kind: str = ""
    items: List[Expr] = field(default_factory=list)

    def children(self) -> Iterator[Expr]:
        yield from self.items


# ----------------------------------------------------------------------
# Statements


@dataclass
class Stmt(Node):
    def expressions(self) -> Iterator[Expr]:
        """Expressions evaluated directly by this statement, in source order."""
        return iter(())

    def substatements(self) -> Iterator["Stmt"]:
        return iter(())


@dataclass
class Block(Stmt):
    statements: List[Stmt] = field(default_factory=list)
    unchecked: bool = False
    brace: int = 0

    def substatements(self) -> Iterator[Stmt]:
        yield from self.statements


@dataclass
class If(Stmt):
    condition: Optional[Expr] = None
    then: Optional[Stmt] = None
    orelse: Optional[Stmt] = None

    def expressions(self) -> Iterator[Expr]:
        if self.condition is not None:
            yield self.condition

    def substatements(self) -> Iterator[Stmt]:
        yield from (child for child in (self.then, self.orelse) if child is not None)


@dataclass
class For(Stmt):
    init: Optional[Stmt] = None
    condition: Optional[Expr] = None
    update: Optional[Expr] = None
    body: Optional[Stmt] = None

    def expressions(self) -> Iterator[Expr]:
        if self.init is not None:
            yield from self.init.expressions()
        yield from (child for child in (self.condition, self.update) if child is not None)

    def substatements(self) -> Iterator[Stmt]:
        if self.body is not None:
            yield self.body


@dataclass
class While(Stmt):
    condition: Optional[Expr] = None
    body: Optional[Stmt] = None

    def expressions(self) -> Iterator[Expr]:
        if self.condition is not None:
            yield self.condition

    def substatements(self) -> Iterator[Stmt]:
        if self.body is not None:
            yield self.body


@dataclass
class DoWhile(Stmt):
    body: Optional[Stmt] = None
    condition: Optional[Expr] = None

    def expressions(self) -> Iterator[Expr]:
        if self.condition is not None:
            yield self.condition

    def substatements(self) -> Iterator[Stmt]:
        if self.body is not None:
            yield self.body


@dataclass
class Return(Stmt):
    value: Optional[Expr] = None

    def expressions(self) -> Iterator[Expr]:
        if self.value is not None:
            yield self.value


@dataclass
class Emit(Stmt):
    call: Optional[Expr] = None

    def expressions(self) -> Iterator[Expr]:
        if self.call is not None:
            yield self.call


@dataclass
class Revert(Stmt):
    call: Optional[Expr] = None

    def expressions(self) -> Iterator[Expr]:
        if self.call is not None:
            yield self.call


@dataclass
class Jump(Stmt):
    keyword: str = "break"


@dataclass
class ExpressionStmt(Stmt):
    expr: Optional[Expr] = None

    def expressions(self) -> Iterator[Expr]:
        if self.expr is not None:
            yield self.expr


@dataclass
class VarDecl(Stmt):
    value: Optional[Expr] = None

    def expressions(self) -> Iterator[Expr]:
        if self.value is not None:
            yield self.value


@dataclass
class CatchClause(Node):
    name: Optional[str] = None
    block: Optional[Block] = None


@dataclass
class Try(Stmt):
    expr: Optional[Expr] = None
    block: Optional[Block] = None
    clauses: List[CatchClause] = field(default_factory=list)

    def expressions(self) -> Iterator[Expr]:
        if self.expr is not None:
            yield self.expr

    def substatements(self) -> Iterator[Stmt]:
        if self.block is not None:
            yield self.block
        for clause in self.clauses:
            if clause.block is not None:
                yield clause.block


@dataclass
class Assembly(Stmt):
    pass


@dataclass
class Placeholder(Stmt):
    pass


# ----------------------------------------------------------------------
# Definitions


@dataclass
class FunctionDef(Node):
    kind: str = "function"
    name: str = ""
    visibility: Optional[str] = None
    mutability: Optional[str] = None
    body: Optional[Block] = None

    @property
    def display_name(self) -> str:
        if self.kind == "function":
            return self.name
        if self.kind == "modifier":
            return f"modifier {self.name}"
        return self.kind


@dataclass
class ContractDef(Node):
    kind: str = "contract"
    name: str = ""
    abstract: bool = False
    brace: int = 0
    functions: List[FunctionDef] = field(default_factory=list)


@dataclass
class SourceTree:
    path: str
    contracts: List[ContractDef] = field(default_factory=list)
    free_functions: List[FunctionDef] = field(default_factory=list)

    def functions(self) -> Iterator[Tuple[Optional[ContractDef], FunctionDef]]:
        for contract in self.contracts:
            for function in contract.functions:
                yield contract, function
        for function in self.free_functions:
            yield None, function


def is_terminator(stmt: Stmt) -> bool:
    """True for statements after which the rest of the block cannot run."""
    if isinstance(stmt, (Return, Revert)):
        return True
    if isinstance(stmt, Jump):
        return True
    if isinstance(stmt, ExpressionStmt) and isinstance(stmt.expr, Call):
        return stmt.expr.function_name == "revert"
    return False


def constant_condition(expr: Optional[Expr]) -> Optional[bool]:
    """Return the value of a literal ``true``/``false`` condition, else None."""
    while isinstance(expr, TupleExpr) and len(expr.items) == 1:
        expr = expr.items[0]
    if isinstance(expr, Literal) and expr.kind == "bool":
        return expr.text == "true"
    return None


__all__ = [
    "Assembly",
    "Assignment",
    "Binary",
    "Block",
    "Call",
    "CallOptions",
    "CatchClause",
    "Conditional",
    "ContractDef",
    "DoWhile",
    "Emit",
    "Expr",
    "ExpressionStmt",
    "For",
    "FunctionDef",
    "Identifier",
    "If",
    "Index",
    "InlineArray",
    "Jump",
    "Literal",
    "Member",
    "New",
    "Node",
    "Opaque",
    "Placeholder",
    "Return",
    "Revert",
    "SourceTree",
    "Stmt",
    "TupleExpr",
    "Try",
    "Unary",
    "VarDecl",
    "While",
    "constant_condition",
    "is_terminator",
]
