"""Tests for solcov.solidity parsing."""

from __future__ import annotations

import pytest

from solcov.errors import ParseError
from solcov.solidity import LineIndex, parse
from solcov.solidity.nodes import (
    Assembly,
    Assignment,
    Binary,
    Block,
    Call,
    CallOptions,
    Conditional,
    Emit,
    ExpressionStmt,
    For,
    If,
    Placeholder,
    Return,
    Revert,
    Try,
    TupleExpr,
    VarDecl,
    constant_condition,
    is_terminator,
)
from tests._fixtures.contracts import RICH, SAMPLE


def _body(source: str, contract: str, function: str) -> Block:
    tree = parse(source, "T.sol")
    for owner, definition in tree.functions():
        if owner is not None and owner.name == contract and definition.display_name == function:
            return definition.body
    raise AssertionError(f"{contract}.{function} not found")


def test_line_index_positions() -> None:
    index = LineIndex("ab\ncd\n\nef")
    assert index.position(0) == (1, 0)
    assert index.position(4) == (2, 1)
    assert index.position(7) == (4, 0)
    assert index.line_of(6) == 3


def test_parse_collects_contracts_functions_and_free_functions() -> None:
    tree = parse(RICH, "Rich.sol")

    kinds = {(contract.name, contract.kind, contract.abstract) for contract in tree.contracts}
    assert kinds == {
        ("IToken", "interface", False),
        ("Math", "library", False),
        ("Owned", "contract", True),
        ("Vault", "contract", False),
    }
    vault = next(contract for contract in tree.contracts if contract.name == "Vault")
    names = [function.display_name for function in vault.functions]
    assert names == ["constructor", "deposit", "probe", "_internal", "receive"]
    assert [function.name for function in tree.free_functions] == ["freeHelper"]

    interface = next(contract for contract in tree.contracts if contract.name == "IToken")
    assert interface.functions[0].body is None
    internal = vault.functions[3]
    assert internal.visibility == "internal"
    assert internal.mutability == "pure"


def test_parse_statement_kinds() -> None:
    body = _body(RICH, "Vault", "deposit")
    kinds = [type(stmt) for stmt in body.statements]
    assert kinds == [VarDecl, If, For, ExpressionStmt, VarDecl, ExpressionStmt, Emit]

    guard = body.statements[1]
    assert isinstance(guard.condition, Binary) and guard.condition.op == "||"
    assert isinstance(guard.then, Revert)
    assert guard.orelse is None

    update = body.statements[3].expr
    assert isinstance(update, Assignment) and update.op == "+="
    assert isinstance(update.value, Conditional)
    assert isinstance(update.value.condition, Binary) and update.value.condition.op == "&&"

    call = body.statements[4].value
    assert isinstance(call, Call)
    assert isinstance(call.callee, CallOptions)
    assert call.callee.names == ["value"]


def test_parse_try_assembly_and_unchecked() -> None:
    body = _body(RICH, "Vault", "probe")
    attempt, assembly = body.statements
    assert isinstance(attempt, Try)
    assert [clause.name for clause in attempt.clauses] == ["Error", None]
    assert isinstance(assembly, Assembly)

    internal = _body(RICH, "Vault", "_internal")
    block = internal.statements[0]
    assert isinstance(block, Block) and block.unchecked
    assert isinstance(block.statements[0], Return)


def test_parse_modifier_placeholder() -> None:
    body = _body(RICH, "Owned", "modifier onlyOwner")
    assert isinstance(body.statements[-1], Placeholder)


def test_parse_binary_precedence_and_ranges() -> None:
    source = "contract C { function f(uint a, uint b) public { bool r = a + b * 2 > 3 || a == b && b != 0; } }"
    decl = _body(source, "C", "f").statements[0]
    expr = decl.value
    assert isinstance(expr, Binary) and expr.op == "||"
    assert isinstance(expr.right, Binary) and expr.right.op == "&&"
    comparison = expr.left
    assert comparison.op == ">"
    assert comparison.left.op == "+"
    assert comparison.left.right.op == "*"
    assert source[expr.start : expr.end] == "a + b * 2 > 3 || a == b && b != 0"


def test_parse_tuple_declaration_and_assignment() -> None:
    source = """
contract C {
    function f() public {
        (uint a, , uint b) = g();
        (a, b) = (b, a);
    }
}
"""
    first, second = _body(source, "C", "f").statements
    assert isinstance(first, VarDecl)
    assert isinstance(second, ExpressionStmt)
    assert isinstance(second.expr, Assignment)
    assert isinstance(second.expr.target, TupleExpr)


def test_parse_rejects_unterminated_contract() -> None:
    with pytest.raises(ParseError) as excinfo:
        parse("contract C {\n  function f() public {\n", "Broken.sol")
    assert excinfo.value.unit == "Broken.sol"
    assert excinfo.value.line >= 1


def test_parse_rejects_missing_semicolon() -> None:
    with pytest.raises(ParseError):
        parse("contract C { function f() public { uint a = 1 uint b = 2; } }", "Broken.sol")


def test_terminators_and_constant_conditions() -> None:
    body = _body(SAMPLE, "Sample", "check")
    assert is_terminator(body.statements[-1])
    assert not is_terminator(body.statements[0])

    source = "contract C { function f() public { if ((true)) {} if (false) {} if (x) {} } }"
    conditions = [stmt.condition for stmt in _body(source, "C", "f").statements]
    assert [constant_condition(expr) for expr in conditions] == [True, False, None]


def test_parse_reports_character_offsets_after_multibyte_text() -> None:
    source = (
        "contract C {\n"
        '    string s = "héllo wörld";\n'
        "    // naïve comment\n"
        "    function f(uint x) public { if (x > 1) { x = 2; } }\n"
        "}\n"
    )
    tree = parse(source, "Utf8.sol")

    contract = tree.contracts[0]
    assert source[contract.brace] == "{"
    function = contract.functions[0]
    assert source[function.start : function.end].startswith("function f(")
    assert source[function.body.brace] == "{"
    guard = function.body.statements[0]
    assert isinstance(guard, If)
    assert source[guard.start : guard.end] == "if (x > 1) { x = 2; }"
    assert source[guard.condition.start : guard.condition.end] == "x > 1"


def test_parse_error_names_location_of_bad_token() -> None:
    source = "contract C {\n  function f() public {\n    uint a = ;\n  }\n}\n"
    with pytest.raises(ParseError) as excinfo:
        parse(source, "Bad.sol")

    assert excinfo.value.unit == "Bad.sol"
    assert excinfo.value.line == 3


def test_parse_revert_forms_and_named_arguments() -> None:
    source = """
contract C {
    error Low(uint have);
    function f(uint a) public {
        if (a == 0) revert("empty");
        if (a == 1) revert Low(a);
        g({x: a, y: 2});
        (uint p, , ) = h();
        (a, , p) = h();
    }
}
"""
    first, second, named, _, slots = _body(source, "C", "f").statements

    builtin = first.then
    assert isinstance(builtin, ExpressionStmt)
    assert isinstance(builtin.expr, Call) and builtin.expr.function_name == "revert"
    assert is_terminator(builtin)

    custom = second.then
    assert isinstance(custom, Revert)
    assert custom.call.function_name == "Low"
    assert custom.call.names is None
    assert len(custom.call.args) == 1

    assert named.expr.names == ["x", "y"]
    assert len(named.expr.args) == 2

    target = slots.expr.target
    assert isinstance(target, TupleExpr)
    assert [item is None for item in target.items] == [False, True, False]


def test_parse_fallback_and_receive_kinds() -> None:
    source = """
contract C {
    fallback() external payable {}
    receive() external payable {}
    constructor() payable {}
}
"""
    kinds = [(function.kind, function.mutability) for function in parse(source).contracts[0].functions]
    assert kinds == [("fallback", "payable"), ("receive", "payable"), ("constructor", "payable")]
