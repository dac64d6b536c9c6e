from __future__ import annotations

import json
import shutil
import threading
import time
from pathlib import Path
from typing import Any, Dict, List

import pytest

from solcov.compile import RunResult, SolcCompiler, build_input
from solcov.errors import CompilationError, RunCancelledError
from solcov.models import CancellationToken, OptimizerProfile


class RecordingRunner:
    def __init__(self, result: RunResult) -> None:
        self.result = result
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, args, *, input_text, timeout, cancel=None, cwd=None) -> RunResult:  # type: ignore[no-untyped-def]
        self.calls.append({"args": list(args), "input": json.loads(input_text), "timeout": timeout, "cwd": cwd})
        return self.result


def test_build_input_for_default_profile() -> None:
    payload = build_input({"B.sol": "b", "A.sol": "a"}, OptimizerProfile())

    assert list(payload["sources"]) == ["A.sol", "B.sol"]
    assert payload["sources"]["A.sol"] == {"content": "a"}
    assert payload["settings"]["optimizer"] == {"enabled": False}
    assert "viaIR" not in payload["settings"]
    assert "evm.deployedBytecode.sourceMap" in payload["settings"]["outputSelection"]["*"]["*"]


def test_build_input_forwards_optimizer_details() -> None:
    details = {"yul": True, "yulDetails": {"optimizerSteps": ""}}
    payload = build_input({"A.sol": "a"}, OptimizerProfile(enabled=True, via_ir=True, yul=True, details=details))

    assert payload["settings"]["optimizer"] == {"enabled": True, "details": details}
    assert payload["settings"]["viaIR"] is True


def test_command_includes_node_modules(tmp_path: Path) -> None:
    (tmp_path / "node_modules").mkdir()
    compiler = SolcCompiler("solc-0.8", base_path=tmp_path)

    assert compiler.command() == [
        "solc-0.8",
        "--standard-json",
        "--base-path",
        str(tmp_path),
        "--include-path",
        str(tmp_path / "node_modules"),
    ]


def test_compile_returns_output_and_passes_timeout(tmp_path: Path) -> None:
    runner = RecordingRunner(RunResult(0, json.dumps({"contracts": {}, "errors": [{"severity": "warning", "message": "w"}]})))
    compiler = SolcCompiler(timeout=5, base_path=tmp_path, runner=runner)

    output = compiler.compile({"A.sol": "contract A {}"}, OptimizerProfile())

    assert output["contracts"] == {}
    (call,) = runner.calls
    assert call["timeout"] == 5
    assert call["cwd"] == tmp_path
    assert call["input"]["sources"]["A.sol"]["content"] == "contract A {}"


def test_compile_raises_on_reported_errors() -> None:
    errors = [{"severity": "error", "message": "bad", "formattedMessage": "A.sol:1: bad"}]
    compiler = SolcCompiler(runner=RecordingRunner(RunResult(1, json.dumps({"errors": errors}))))

    with pytest.raises(CompilationError) as excinfo:
        compiler.compile({"A.sol": "x"}, OptimizerProfile())

    assert excinfo.value.errors == ["A.sol:1: bad"]
    assert excinfo.value.stage == "compile"
    assert excinfo.value.instrumentation_caused is None


@pytest.mark.parametrize(
    "result",
    [RunResult(1, "", "solc: not found"), RunResult(0, "{not json")],
)
def test_compile_rejects_unusable_output(result: RunResult) -> None:
    compiler = SolcCompiler(runner=RecordingRunner(result))

    with pytest.raises(CompilationError):
        compiler.compile({"A.sol": "x"}, OptimizerProfile())


_SLEEP = shutil.which("sleep")
requires_sleep = pytest.mark.skipif(_SLEEP is None, reason="sleep executable not available")


@requires_sleep
def test_default_runner_kills_compiler_on_timeout() -> None:
    started = time.monotonic()

    with pytest.raises(CompilationError, match="timed out after 0.5s"):
        SolcCompiler._default_runner([_SLEEP, "5"], input_text="{}", timeout=0.5)

    assert time.monotonic() - started < 4


@requires_sleep
def test_default_runner_kills_compiler_when_cancelled() -> None:
    token = CancellationToken()
    timer = threading.Timer(0.3, token.cancel, kwargs={"reason": "suite aborted"})
    timer.start()
    started = time.monotonic()
    try:
        with pytest.raises(RunCancelledError) as excinfo:
            SolcCompiler._default_runner([_SLEEP, "5"], input_text="{}", timeout=30, cancel=token)
    finally:
        timer.cancel()

    assert excinfo.value.stage == "compile"
    assert "suite aborted" in str(excinfo.value)
    assert time.monotonic() - started < 4


def test_default_runner_reports_missing_executable(tmp_path: Path) -> None:
    with pytest.raises(CompilationError, match="Unable to start compiler"):
        SolcCompiler._default_runner([str(tmp_path / "no-solc")], input_text="{}", timeout=1)
