"""Blocking, cancellable invocation of ``solc --standard-json``."""

from __future__ import annotations

import json
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from ..errors import CompilationError, RunCancelledError
from ..logging import get_logger
from ..models import CancellationToken, OptimizerProfile

_POLL_INTERVAL = 0.2

OUTPUT_SELECTION = [
    "evm.bytecode.object",
    "evm.bytecode.sourceMap",
    "evm.deployedBytecode.object",
    "evm.deployedBytecode.sourceMap",
]


@dataclass(frozen=True)
class RunResult:
    returncode: int
    stdout: str
    stderr: str = ""


def build_input(sources: Mapping[str, str], profile: OptimizerProfile) -> Dict[str, Any]:
    """Return the standard-JSON input document for ``sources``."""
    optimizer: Dict[str, Any] = {"enabled": profile.enabled}
    details = profile.details_payload()
    if profile.enabled and details:
        optimizer["details"] = details
    settings: Dict[str, Any] = {
        "optimizer": optimizer,
        "outputSelection": {"*": {"*": list(OUTPUT_SELECTION)}},
    }
    if profile.via_ir:
        settings["viaIR"] = True
    return {
        "language": "Solidity",
        "sources": {path: {"content": text} for path, text in sorted(sources.items())},
        "settings": settings,
    }


class SolcCompiler:
    """Runs the external compiler on in-memory sources."""

    def __init__(
        self,
        executable: str = "solc",
        *,
        timeout: float = 120.0,
        base_path: Optional[Path] = None,
        runner: Callable[..., RunResult] | None = None,
    ) -> None:
        self.executable = executable
        self.timeout = timeout
        self.base_path = base_path
        self._runner = runner or self._default_runner
        self.logger = get_logger("compile.solc")

    def command(self) -> list[str]:
        args = [self.executable, "--standard-json"]
        if self.base_path is not None:
            args.extend(["--base-path", str(self.base_path)])
            modules = self.base_path / "node_modules"
            if modules.is_dir():
                args.extend(["--include-path", str(modules)])
        return args

    def compile(
        self,
        sources: Mapping[str, str],
        profile: OptimizerProfile,
        cancel: Optional[CancellationToken] = None,
    ) -> Dict[str, Any]:
        payload = json.dumps(build_input(sources, profile))
        self.logger.debug("Compiling %d sources (%s mode)", len(sources), profile.mode)
        result = self._runner(
            self.command(),
            input_text=payload,
            timeout=self.timeout,
            cancel=cancel,
            cwd=self.base_path,
        )
        if not result.stdout.strip():
            message = result.stderr.strip() or f"exited with status {result.returncode}"
            raise CompilationError(f"{self.executable} produced no output: {message}")
        try:
            output = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise CompilationError(f"{self.executable} returned malformed JSON: {exc}") from exc

        errors = [
            entry.get("formattedMessage") or entry.get("message", "")
            for entry in output.get("errors", [])
            if entry.get("severity") == "error"
        ]
        if errors:
            raise CompilationError(
                f"{self.executable} reported {len(errors)} error(s): {errors[0].strip()}",
                errors=errors,
            )
        for entry in output.get("errors", []):
            if entry.get("severity") == "warning":
                self.logger.debug("%s", entry.get("message", ""))
        return output

    @staticmethod
    def _default_runner(
        args: Iterable[str],
        *,
        input_text: str,
        timeout: float,
        cancel: Optional[CancellationToken] = None,
        cwd: Optional[Path] = None,
    ) -> RunResult:
        try:
            process = subprocess.Popen(
                list(args),
                cwd=str(cwd) if cwd else None,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except OSError as exc:
            raise CompilationError(f"Unable to start compiler: {exc}") from exc

        deadline = time.monotonic() + timeout
        pending_input: Optional[str] = input_text
        while True:
            try:
                stdout, stderr = process.communicate(pending_input, timeout=_POLL_INTERVAL)
                return RunResult(process.returncode, stdout, stderr)
            except subprocess.TimeoutExpired:
                pending_input = None
            if cancel is not None and cancel.cancelled:
                process.kill()
                process.communicate()
                raise RunCancelledError(cancel.reason or "run cancelled", stage="compile")
            if time.monotonic() >= deadline:
                process.kill()
                process.communicate()
                raise CompilationError(f"Compiler timed out after {timeout:g}s")


__all__ = ["OUTPUT_SELECTION", "RunResult", "SolcCompiler", "build_input"]
