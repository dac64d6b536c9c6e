"""Tests for compiling instrumented units and verifying their probes."""

from __future__ import annotations

import pytest

from solcov.compile import (
    OPTIMIZED,
    UNOPTIMIZED,
    CompilationCoordinator,
    ReconciliationTable,
    SolcCompiler,
)
from solcov.errors import CompilationError, InstrumentationLossError, RunCancelledError
from solcov.instrument import InstrumentedUnit, Instrumenter
from solcov.models import CancellationToken, OptimizerProfile
from tests._fixtures.contracts import SAMPLE
from tests._fixtures.fake_solc import FakeSolc
from tests._fixtures.source_builder import make_unit

_SCOPED = """
contract C {
    uint256 x;
    function f() public { x = 1; }
    function g() internal { x = 2; }
    function h() public {
        return;
        x = 3;
    }
}
"""


def _instrument(path: str, text: str, *, included: bool = True) -> InstrumentedUnit:
    return Instrumenter().instrument(make_unit(path, text, included=included))


def _coordinator(solc: FakeSolc) -> CompilationCoordinator:
    return CompilationCoordinator(SolcCompiler(runner=solc))


def test_build_verifies_every_probe_live() -> None:
    unit = _instrument("Sample.sol", SAMPLE)
    build = _coordinator(FakeSolc()).build([unit], OptimizerProfile())

    verification = build.verification["Sample.sol"]
    assert sorted(verification.live) == sorted(unit.keys())
    assert verification.eliminated == []
    assert build.table.mode == UNOPTIMIZED
    assert len(build.table) == len(unit.instrumentables)
    assert [artifact.contract for artifact in build.artifacts] == ["Sample.sol:Main"]
    for item in unit.instrumentables:
        assert build.table.resolve(item.probe) == ("Sample.sol", item.key)


def test_unoptimized_table_indexes_program_counters() -> None:
    unit = _instrument("Sample.sol", SAMPLE)
    table = _coordinator(FakeSolc()).build([unit], OptimizerProfile()).table

    # The function probe is the first literal in the text, then the first line probe.
    assert table.resolve_step("Sample.sol:Main", "deployedBytecode", 0) == ("Sample.sol", "function:0")
    assert table.resolve_step("Sample.sol:Main", "bytecode", 33) == ("Sample.sol", "line:0")
    assert table.resolve_step("Sample.sol:Main", None, 34) is None
    assert table.resolve_step("Sample.sol:Main", None, 0, op="SLOAD") is None


def test_optimized_table_resolves_by_hash_only() -> None:
    unit = _instrument("Sample.sol", SAMPLE)
    profile = OptimizerProfile(enabled=True, via_ir=True)
    table = _coordinator(FakeSolc()).build([unit], profile).table
    probe = unit.by_key()["statement:0"].probe

    assert table.mode == OPTIMIZED
    assert table.to_dict()["pcs"] == []
    assert table.resolve_step("Sample.sol:Main", None, 0) is None
    assert table.resolve_step(None, None, None, op="PUSH32", value=probe) == ("Sample.sol", "statement:0")
    assert table.resolve(int(probe, 16)) == ("Sample.sol", "statement:0")


def test_table_round_trips_through_dict() -> None:
    unit = _instrument("Sample.sol", SAMPLE)
    table = _coordinator(FakeSolc()).build([unit], OptimizerProfile()).table

    restored = ReconciliationTable.from_dict(table.to_dict())

    assert restored.to_dict() == table.to_dict()
    assert restored.keys_for("Sample.sol") == tuple(unit.keys())


def test_dead_and_elided_probes_are_explained() -> None:
    unit = _instrument("C.sol", _SCOPED)
    dead = [item.probe for item in unit.instrumentables if item.dead]
    elided = [item.probe for item in unit.instrumentables if item.scope == "C.g"]
    assert dead and elided

    build = _coordinator(FakeSolc(drop=dead + elided)).build([unit], OptimizerProfile())

    verification = build.verification["C.sol"]
    assert set(verification.eliminated) == {
        item.key for item in unit.instrumentables if item.dead or item.scope == "C.g"
    }
    assert build.table.eliminated("C.sol") == frozenset(verification.eliminated)


def test_unexplained_loss_raises() -> None:
    unit = _instrument("C.sol", _SCOPED)
    lost = unit.by_key()["statement:0"]
    assert lost.scope == "C.f"

    with pytest.raises(InstrumentationLossError) as excinfo:
        _coordinator(FakeSolc(drop=[lost.probe])).build([unit], OptimizerProfile())

    assert excinfo.value.missing == ["statement:0"]
    assert excinfo.value.unit == "C.sol"


def test_partial_loss_in_elidable_scope_raises() -> None:
    unit = _instrument("C.sol", _SCOPED)
    (probe,) = [item.probe for item in unit.instrumentables if item.scope == "C.g" and item.kind == "statement"]

    with pytest.raises(InstrumentationLossError):
        _coordinator(FakeSolc(drop=[probe])).build([unit], OptimizerProfile())


def test_excluded_units_are_compiled_but_not_verified() -> None:
    unit = _instrument("Sample.sol", SAMPLE)
    skipped = _instrument("Skip.sol", "contract Skip {}\n", included=False)
    solc = FakeSolc()

    build = _coordinator(solc).build([unit, skipped], OptimizerProfile())

    assert set(build.verification) == {"Sample.sol"}
    assert "Skip.sol" not in build.table.units
    assert solc.calls[0]["sources"]["Skip.sol"]["content"] == "contract Skip {}\n"
    assert set(build.instrumentables()) == {"Sample.sol"}


def test_failure_caused_by_instrumentation() -> None:
    unit = _instrument("Sample.sol", SAMPLE)
    solc = FakeSolc(errors=["stack too deep"])

    with pytest.raises(CompilationError) as excinfo:
        _coordinator(solc).build([unit], OptimizerProfile())

    assert excinfo.value.instrumentation_caused is True
    assert "Instrumentation broke the build" in str(excinfo.value)
    assert len(solc.calls) == 2


def test_failure_present_in_original_sources() -> None:
    unit = _instrument("Sample.sol", SAMPLE)
    solc = FakeSolc(errors=["type error"], original_errors=["type error"])

    with pytest.raises(CompilationError) as excinfo:
        _coordinator(solc).build([unit], OptimizerProfile())

    assert excinfo.value.instrumentation_caused is False
    assert excinfo.value.errors == ["type error"]


def test_cancelled_build_stops_before_compiling() -> None:
    token = CancellationToken()
    token.cancel("ctrl-c")
    solc = FakeSolc()

    with pytest.raises(RunCancelledError) as excinfo:
        _coordinator(solc).build([_instrument("Sample.sol", SAMPLE)], OptimizerProfile(), token)

    assert excinfo.value.stage == "compile"
    assert solc.calls == []


def test_narrow_pushes_of_leading_zero_probes_are_found() -> None:
    unit = _instrument("contracts/S8.sol", SAMPLE)
    narrow = unit.by_key()["statement:0"].probe
    assert narrow.startswith("0x00")

    build = _coordinator(FakeSolc(shortest=True)).build([unit], OptimizerProfile())

    assert sorted(build.verification["contracts/S8.sol"].live) == sorted(unit.keys())
    # function:0 and line:0 are full-width pushes at pcs 0 and 33; statement:0 is a PUSH31.
    table = build.table
    assert table.resolve_step("contracts/S8.sol:Main", "deployedBytecode", 66) == (
        "contracts/S8.sol",
        "statement:0",
    )
    assert table.resolve_step(None, None, None, op="PUSH31", value="0x" + narrow[4:]) == (
        "contracts/S8.sol",
        "statement:0",
    )
