"""Probe injection for Solidity source units.

Each contract body receives three helper functions on the line of its
opening brace::

    function __cov_<tag>(bytes32) internal pure {}
    function __cov_<tag>_t(bytes32) internal pure returns (bool) { return true; }
    function __cov_<tag>_f(bytes32) internal pure returns (bool) { return false; }

Statement, line and function probes call the first; boolean sub-expressions
are guarded with the ``_t``/``_f`` forms so short-circuit evaluation and
evaluation order are preserved. Injected text never contains a newline,
so line numbers in the instrumented text equal the original ones.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..errors import UnsupportedConstructError
from ..identifiers import BRANCH, FUNCTION, KINDS, LINE, STATEMENT, helper_tag, probe_hash
from ..logging import get_logger
from ..models import Gap, Instrumentable, ProbeSite, SourceUnit
from ..solidity import LineIndex, parse
from ..solidity.nodes import (
    Assembly,
    Binary,
    Block,
    Call,
    Conditional,
    ContractDef,
    DoWhile,
    Expr,
    For,
    FunctionDef,
    If,
    Placeholder,
    Stmt,
    Try,
    While,
    constant_condition,
    is_terminator,
)
from .injector import InjectionPlan

_GUARDED_CALLS = {"require", "assert"}


@dataclass
class Scope:
    """A function-like definition whose probes may vanish together."""

    name: str
    contract: str
    kind: str
    elidable: bool
    keys: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {"contract": self.contract, "kind": self.kind, "elidable": self.elidable, "keys": list(self.keys)}


@dataclass
class InstrumentedUnit:
    unit: SourceUnit
    source: str
    instrumentables: List[Instrumentable] = field(default_factory=list)
    probes: List[ProbeSite] = field(default_factory=list)
    gaps: List[Gap] = field(default_factory=list)
    scopes: Dict[str, Scope] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return self.unit.path

    @property
    def included(self) -> bool:
        return self.unit.included

    def keys(self) -> List[str]:
        return [item.key for item in self.instrumentables]

    def by_key(self) -> Dict[str, Instrumentable]:
        return {item.key: item for item in self.instrumentables}

    def gap_errors(self) -> List[UnsupportedConstructError]:
        return [
            UnsupportedConstructError(
                gap.construct, unit=gap.unit, start=gap.start, end=gap.end, line=gap.line
            )
            for gap in self.gaps
        ]


class Instrumenter:
    """Parses a source unit and rewrites it with coverage probes."""

    def __init__(self, kinds: Iterable[str] = KINDS) -> None:
        self.kinds = frozenset(kinds)
        unknown = self.kinds - set(KINDS)
        if unknown:
            raise ValueError(f"Unknown instrumentable kinds: {sorted(unknown)}")
        self.logger = get_logger("instrument")

    def instrument(self, unit: SourceUnit) -> InstrumentedUnit:
        if not unit.included:
            return InstrumentedUnit(unit=unit, source=unit.text)
        if unit.tree is None:
            unit = unit.with_tree(parse(unit.text, unit.path))
        result = _UnitRewriter(unit, self.kinds).run()
        self.logger.debug(
            "Instrumented %s: %d instrumentables, %d gaps",
            unit.path,
            len(result.instrumentables),
            len(result.gaps),
        )
        return result


class _UnitRewriter:
    def __init__(self, unit: SourceUnit, kinds: frozenset[str]) -> None:
        self.unit = unit
        self.kinds = kinds
        self.lines = LineIndex(unit.text)
        self.plan = InjectionPlan(unit.path)
        self.instrumentables: List[Instrumentable] = []
        self.gaps: List[Gap] = []
        self.scopes: Dict[str, Scope] = {}
        self._counters = {kind: 0 for kind in KINDS}
        self._lines_seen: set[int] = set()
        self._tag = ""
        self._scope: Optional[Scope] = None

    def run(self) -> InstrumentedUnit:
        tree = self.unit.tree
        assert tree is not None
        for contract in tree.contracts:
            self._contract(contract)
        for function in tree.free_functions:
            self._gap("free function", function.start, function.end, "probe helpers are contract members")
        source, probes = self.plan.apply(self.unit.text)
        ordered = sorted(
            self.instrumentables,
            key=lambda item: (KINDS.index(item.kind), item.index, item.arm or 0),
        )
        return InstrumentedUnit(
            unit=self.unit,
            source=source,
            instrumentables=ordered,
            probes=probes,
            gaps=self.gaps,
            scopes=self.scopes,
        )

    # ------------------------------------------------------------------
    # Definitions

    def _contract(self, contract: ContractDef) -> None:
        self._tag = f"__cov_{helper_tag(self.unit.path, contract.name)}"
        registered = len(self.instrumentables)
        for function in contract.functions:
            if function.body is not None:
                self._function(contract, function)
        if len(self.instrumentables) > registered:
            self.plan.insert(contract.brace + 1, self._helpers())

    def _helpers(self) -> str:
        tag = self._tag
        return (
            f" function {tag}(bytes32) internal pure {{}}"
            f" function {tag}_t(bytes32) internal pure returns (bool) {{ return true; }}"
            f" function {tag}_f(bytes32) internal pure returns (bool) {{ return false; }}"
        )

    def _function(self, contract: ContractDef, function: FunctionDef) -> None:
        name = f"{contract.name}.{function.display_name or 'fallback'}"
        scope_name = name
        suffix = 2
        while scope_name in self.scopes:
            scope_name = f"{name}#{suffix}"
            suffix += 1
        elidable = (
            function.kind == "modifier"
            or function.visibility in ("internal", "private")
            or contract.abstract
            or contract.kind == "library"
        )
        self._scope = Scope(scope_name, contract.name, function.kind, elidable)
        self.scopes[scope_name] = self._scope

        body = function.body
        assert body is not None
        self._probe(
            FUNCTION,
            function.start,
            function.end,
            at=body.brace + 1,
            text=" {call};",
            name=function.display_name or "fallback",
        )
        self._statements(body.statements, dead=False)
        self._scope = None

    # ------------------------------------------------------------------
    # Statements

    def _statements(self, statements: List[Stmt], dead: bool) -> None:
        terminated = False
        for stmt in statements:
            self._statement(stmt, dead or terminated)
            if is_terminator(stmt):
                terminated = True

    def _statement(self, stmt: Stmt, dead: bool) -> None:
        if isinstance(stmt, Block):
            self._statements(stmt.statements, dead)
            return
        if isinstance(stmt, Placeholder):
            return
        if isinstance(stmt, Assembly):
            self._gap("inline assembly", stmt.start, stmt.end, "assembly blocks cannot call probe helpers")
            return

        line = self.lines.line_of(stmt.start)
        if line not in self._lines_seen:
            self._lines_seen.add(line)
            self._probe(LINE, stmt.start, stmt.end, at=stmt.start, text="{call}; ", dead=dead)
        self._probe(STATEMENT, stmt.start, stmt.end, at=stmt.start, text="{call}; ", dead=dead)

        if isinstance(stmt, If):
            self._if(stmt, dead)
            return
        if isinstance(stmt, Try):
            self._try(stmt, dead)
            return
        for expr in stmt.expressions():
            self._expression(expr, dead)
        if isinstance(stmt, (For, While, DoWhile)) and stmt.body is not None:
            self._body(stmt.body, dead)

    def _body(self, stmt: Stmt, dead: bool) -> None:
        """Instrument a loop body, wrapping single statements in braces."""
        if isinstance(stmt, Block):
            self._statements(stmt.statements, dead)
            return
        # Closers are registered before the children they enclose.
        self.plan.insert(stmt.start, "{ ")
        self.plan.insert(stmt.end, " }", closer=True)
        self._statement(stmt, dead)

    def _if(self, stmt: If, dead: bool) -> None:
        index = self._next(BRANCH)
        constant = constant_condition(stmt.condition)
        then_dead = dead or constant is False
        else_dead = dead or constant is True
        if stmt.condition is not None:
            self._expression(stmt.condition, dead)

        then = stmt.then
        orelse = stmt.orelse
        assert then is not None
        self._arm_start(index, 0, then, then_dead)
        if orelse is None:
            # Same-offset closers apply latest first: the wrap's brace precedes the else.
            self._arm(
                index, 1, stmt, else_dead, "if",
                at=then.end, text=" else { {call}; }", closer=True,
            )
        if not isinstance(then, Block):
            self.plan.insert(then.end, " }", closer=True)
        self._statement(then, then_dead)
        if orelse is not None:
            self._arm_start(index, 1, orelse, else_dead)
            if not isinstance(orelse, Block):
                self.plan.insert(orelse.end, " }", closer=True)
            self._statement(orelse, else_dead)

    def _arm_start(self, index: int, arm: int, stmt: Stmt, dead: bool) -> None:
        """Probe the start of an if-arm, opening braces around a single statement."""
        if isinstance(stmt, Block):
            self._arm(index, arm, stmt, dead, "if", at=stmt.brace + 1, text=" {call};")
            return
        self.plan.insert(stmt.start, "{ ")
        self._arm(index, arm, stmt, dead, "if", at=stmt.start, text="{call}; ")

    def _try(self, stmt: Try, dead: bool) -> None:
        index = self._next(BRANCH)
        if stmt.expr is not None:
            self._expression(stmt.expr, dead)
        blocks = [stmt.block] + [clause.block for clause in stmt.clauses]
        for arm, block in enumerate(blocks):
            assert block is not None
            self._arm(index, arm, block, dead, "try", at=block.brace + 1, text=" {call};")
            self._statements(block.statements, dead)

    # ------------------------------------------------------------------
    # Expressions

    def _expression(self, expr: Optional[Expr], dead: bool) -> None:
        if expr is None:
            return
        if isinstance(expr, Binary) and expr.op in ("||", "&&") and expr.left and expr.right:
            self._logical(expr, dead)
        elif isinstance(expr, Conditional) and expr.condition is not None:
            self._guard(expr.condition, "cond-expr", dead)
        elif isinstance(expr, Call) and expr.function_name in _GUARDED_CALLS and expr.args:
            self._guard(expr.args[0], "require", dead)
        for child in expr.children():
            self._expression(child, dead)

    def _logical(self, expr: Binary, dead: bool) -> None:
        left, right = expr.left, expr.right
        assert left is not None and right is not None
        index = self._next(BRANCH)
        if BRANCH not in self.kinds:
            return
        constant = constant_condition(left)
        if expr.op == "||":
            left_dead = dead or constant is False
            right_dead = dead or constant is True
            left_text = ") && {true}({probe}))"
        else:
            left_dead = dead or constant is True
            right_dead = dead or constant is False
            left_text = ") || {false}({probe}))"
        self.plan.insert(left.start, "((")
        self._arm(index, 0, left, left_dead, "binary-expr", at=left.end, text=left_text, closer=True)
        self._arm(index, 1, right, right_dead, "binary-expr", at=right.start, text="({true}({probe}) && (")
        self.plan.insert(right.end, "))", closer=True)

    def _guard(self, condition: Expr, variant: str, dead: bool) -> None:
        """Rewrite ``c`` as ``(((c) && _t(pass)) || _f(fail))``."""
        index = self._next(BRANCH)
        if BRANCH not in self.kinds:
            return
        constant = constant_condition(condition)
        self.plan.insert(condition.start, "(((")
        # Same-offset closers apply latest first, so the fail arm goes in first.
        self._arm(
            index, 1, condition, dead or constant is True, variant,
            at=condition.end, text=" || {false}({probe}))", closer=True,
        )
        self._arm(
            index, 0, condition, dead or constant is False, variant,
            at=condition.end, text=") && {true}({probe}))", closer=True,
        )

    # ------------------------------------------------------------------
    # Registration

    def _next(self, kind: str) -> int:
        index = self._counters[kind]
        self._counters[kind] = index + 1
        return index

    def _arm(
        self,
        index: int,
        arm: int,
        node,
        dead: bool,
        variant: str,
        *,
        at: int,
        text: str,
        closer: bool = False,
    ) -> None:
        self._register(BRANCH, index, node.start, node.end, at, text, arm=arm, variant=variant, dead=dead, closer=closer)

    def _probe(
        self,
        kind: str,
        start: int,
        end: int,
        *,
        at: int,
        text: str,
        name: Optional[str] = None,
        dead: bool = False,
    ) -> None:
        index = self._next(kind)
        self._register(kind, index, start, end, at, text, name=name, dead=dead)

    def _register(
        self,
        kind: str,
        index: int,
        start: int,
        end: int,
        at: int,
        text: str,
        *,
        arm: Optional[int] = None,
        variant: Optional[str] = None,
        name: Optional[str] = None,
        dead: bool = False,
        closer: bool = False,
    ) -> None:
        if kind not in self.kinds:
            return
        line, column = self.lines.position(start)
        end_line, end_column = self.lines.position(end)
        item = Instrumentable(
            unit=self.unit.path,
            kind=kind,
            index=index,
            start=start,
            end=end,
            line=line,
            column=column,
            end_line=end_line,
            end_column=end_column,
            arm=arm,
            variant=variant,
            name=name,
            scope=self._scope.name if self._scope else None,
            dead=dead,
        )
        probe = probe_hash(self.unit.path, item.key)
        # Templates hold literal braces, so placeholders are substituted by hand.
        rendered = (
            text.replace("{call}", f"{self._tag}({probe})")
            .replace("{true}", f"{self._tag}_t")
            .replace("{false}", f"{self._tag}_f")
            .replace("{probe}", probe)
        )
        self.plan.insert(at, rendered, closer=closer, probe=probe, key=item.key)
        self.instrumentables.append(item)
        if self._scope is not None:
            self._scope.keys.append(item.key)

    def _gap(self, construct: str, start: int, end: int, reason: str) -> None:
        self.gaps.append(
            Gap(
                unit=self.unit.path,
                construct=construct,
                start=start,
                end=end,
                line=self.lines.line_of(start),
                reason=reason,
            )
        )


__all__ = ["InstrumentedUnit", "Instrumenter", "Scope"]
