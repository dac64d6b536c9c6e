"""Error taxonomy and run diagnostics."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence


class CoverageError(RuntimeError):
    """Base class for every failure raised by the coverage engine.

    ``stage`` names the pipeline stage that failed (``scan``, ``instrument``,
    ``compile``, ``collect``, ``aggregate``) and ``unit`` the source path
    involved, when there is one.
    """

    fatal = True
    code = "coverage-error"

    def __init__(
        self,
        message: str,
        *,
        unit: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.unit = unit
        self.stage = stage

    def __str__(self) -> str:
        prefix = []
        if self.stage:
            prefix.append(self.stage)
        if self.unit:
            prefix.append(self.unit)
        if prefix:
            return f"[{': '.join(prefix)}] {self.message}"
        return self.message


class ConfigError(CoverageError):
    """Raised for configuration problems.

    Unmatched exclusion patterns are only reported as diagnostics; an
    unreadable configuration file is raised by ``load_config``.
    """

    fatal = False
    code = "config"


class ParseError(CoverageError):
    """Raised when a source unit is not well-formed Solidity."""

    code = "parse"

    def __init__(
        self,
        message: str,
        *,
        unit: Optional[str] = None,
        line: int = 0,
        column: int = 0,
    ) -> None:
        location = f"{line}:{column}: " if line else ""
        super().__init__(f"{location}{message}", unit=unit, stage="instrument")
        self.line = line
        self.column = column


class UnsupportedConstructError(CoverageError):
    """A construct the instrumenter leaves alone; coverage degrades locally."""

    fatal = False
    code = "unsupported-construct"

    def __init__(
        self,
        construct: str,
        *,
        unit: Optional[str] = None,
        start: int = 0,
        end: int = 0,
        line: int = 0,
    ) -> None:
        super().__init__(
            f"{construct} at line {line} is not instrumented",
            unit=unit,
            stage="instrument",
        )
        self.construct = construct
        self.start = start
        self.end = end
        self.line = line


class InstrumentationLossError(CoverageError):
    """Probes disappeared from compiled output without a dead-code explanation."""

    code = "instrumentation-loss"

    def __init__(self, unit: str, missing: Sequence[str]) -> None:
        preview = ", ".join(list(missing)[:8])
        more = f" (+{len(missing) - 8} more)" if len(missing) > 8 else ""
        super().__init__(
            f"{len(missing)} probe(s) missing from compiled artifacts: {preview}{more}",
            unit=unit,
            stage="compile",
        )
        self.missing = list(missing)


class AggregationError(CoverageError):
    """Two runs disagree on the instrumentable set of one source unit."""

    code = "aggregation"

    def __init__(self, message: str, *, unit: Optional[str] = None) -> None:
        super().__init__(message, unit=unit, stage="aggregate")


class CompilationError(CoverageError):
    """The external compiler failed, timed out or produced unusable output."""

    code = "compilation"

    def __init__(
        self,
        message: str,
        *,
        unit: Optional[str] = None,
        errors: Sequence[str] = (),
        instrumentation_caused: Optional[bool] = None,
    ) -> None:
        super().__init__(message, unit=unit, stage="compile")
        self.errors = list(errors)
        self.instrumentation_caused = instrumentation_caused


class RunCancelledError(CoverageError):
    """The run was aborted through its cancellation token."""

    code = "cancelled"


@dataclass(frozen=True)
class Diagnostic:
    """A recoverable problem surfaced at the end of a run."""

    severity: str
    stage: str
    code: str
    message: str
    unit: Optional[str] = None

    @classmethod
    def from_error(cls, error: CoverageError, *, severity: str = "warning") -> "Diagnostic":
        return cls(
            severity=severity,
            stage=error.stage or "run",
            code=error.code,
            message=error.message,
            unit=error.unit,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "severity": self.severity,
            "stage": self.stage,
            "code": self.code,
            "message": self.message,
            "unit": self.unit,
        }


class Diagnostics:
    """Thread-safe accumulator of recoverable errors."""

    def __init__(self) -> None:
        self._items: List[Diagnostic] = []
        self._lock = threading.Lock()

    def add(self, item: Diagnostic | CoverageError, *, severity: str = "warning") -> Diagnostic:
        diagnostic = item if isinstance(item, Diagnostic) else Diagnostic.from_error(item, severity=severity)
        with self._lock:
            self._items.append(diagnostic)
        return diagnostic

    def extend(self, items: Sequence[Diagnostic | CoverageError]) -> None:
        for item in items:
            self.add(item)

    def snapshot(self) -> List[Diagnostic]:
        with self._lock:
            return list(self._items)

    def by_code(self, code: str) -> List[Diagnostic]:
        return [item for item in self.snapshot() if item.code == code]

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


__all__ = [
    "AggregationError",
    "CompilationError",
    "ConfigError",
    "CoverageError",
    "Diagnostic",
    "Diagnostics",
    "InstrumentationLossError",
    "ParseError",
    "RunCancelledError",
    "UnsupportedConstructError",
]
