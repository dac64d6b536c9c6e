"""Core data models shared across solcov components."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple, TYPE_CHECKING

from .errors import AggregationError, RunCancelledError
from .identifiers import BRANCH, make_key, probe_hash

if TYPE_CHECKING:  # pragma: no cover - typing aid
    from .solidity.nodes import SourceTree


@dataclass(frozen=True)
class SourceUnit:
    """A single Solidity source file discovered under the project root."""

    path: str
    text: str
    hash: str
    included: bool = True
    tree: Optional["SourceTree"] = field(default=None, compare=False, repr=False)

    def with_tree(self, tree: "SourceTree") -> "SourceUnit":
        if self.tree is not None:
            raise ValueError(f"{self.path} has already been parsed")
        return replace(self, tree=tree)


@dataclass(frozen=True)
class ExclusionSet:
    """Ordered path patterns from ``skipFiles``."""

    patterns: Tuple[str, ...] = ()

    def __iter__(self) -> Iterator[str]:
        return iter(self.patterns)

    def __len__(self) -> int:
        return len(self.patterns)


@dataclass(frozen=True)
class Instrumentable:
    """A located construct that carries a coverage probe."""

    unit: str
    kind: str
    index: int
    start: int
    end: int
    line: int
    column: int
    end_line: int
    end_column: int
    arm: Optional[int] = None
    variant: Optional[str] = None
    name: Optional[str] = None
    scope: Optional[str] = None
    dead: bool = False

    @property
    def key(self) -> str:
        return make_key(self.kind, self.index, self.arm if self.kind == BRANCH else None)

    @property
    def probe(self) -> str:
        return probe_hash(self.unit, self.key)

    def location(self) -> Dict[str, Dict[str, int]]:
        return {
            "start": {"line": self.line, "column": self.column},
            "end": {"line": self.end_line, "column": self.end_column},
        }


@dataclass(frozen=True)
class Gap:
    """A construct left uninstrumented, reported by name."""

    unit: str
    construct: str
    start: int
    end: int
    line: int
    reason: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "construct": self.construct,
            "start": self.start,
            "end": self.end,
            "line": self.line,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class ProbeSite:
    """One injected probe call inside an instrumented unit.

    ``start``/``length`` are UTF-8 byte offsets of the probe's bytes32 literal
    in the instrumented text, which is what compiler source maps refer to.
    """

    probe: str
    key: str
    unit: str
    start: int
    length: int


@dataclass(frozen=True)
class CoverageEvent:
    """Runtime signal naming one probe by its payload."""

    probe: str
    contract: Optional[str] = None
    pc: Optional[int] = None


@dataclass(frozen=True)
class OptimizerProfile:
    """Compiler optimizer settings for one run; read-only once built."""

    enabled: bool = False
    via_ir: bool = False
    yul: bool = False
    stack_allocation: bool = False
    optimizer_steps: Optional[str] = None
    details: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "details", MappingProxyType(_deep_copy(self.details)))

    @property
    def mode(self) -> str:
        """``optimized`` when code may be eliminated or reordered, else ``unoptimized``."""
        if self.via_ir or (self.enabled and self.yul):
            return "optimized"
        return "unoptimized"

    def details_payload(self) -> Dict[str, Any]:
        return _deep_copy(self.details)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "viaIR": self.via_ir,
            "yul": self.yul,
            "stackAllocation": self.stack_allocation,
            "optimizerSteps": self.optimizer_steps,
            "details": self.details_payload(),
            "mode": self.mode,
        }


def _deep_copy(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {str(k): _deep_copy(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_deep_copy(v) for v in value]
    return value


class CoverageMap:
    """Hit counts for the instrumentables of one source unit.

    Counts never decrease; there is intentionally no reset.
    """

    def __init__(
        self,
        unit: str,
        keys: Iterable[str],
        counts: Optional[Mapping[str, int]] = None,
    ) -> None:
        self.unit = unit
        self._counts: Dict[str, int] = {key: 0 for key in keys}
        if counts:
            for key, value in counts.items():
                if key not in self._counts:
                    raise AggregationError(f"Unknown instrumentable key {key!r}", unit=unit)
                self.hit(key, int(value))

    @property
    def keys(self) -> frozenset[str]:
        return frozenset(self._counts)

    def hit(self, key: str, times: int = 1) -> None:
        if times < 0:
            raise ValueError("Hit counts cannot decrease")
        self._counts[key] += times

    def get(self, key: str) -> int:
        return self._counts[key]

    def __getitem__(self, key: str) -> int:
        return self._counts[key]

    def __contains__(self, key: object) -> bool:
        return key in self._counts

    def __len__(self) -> int:
        return len(self._counts)

    def items(self) -> Iterable[Tuple[str, int]]:
        return self._counts.items()

    def covered(self) -> frozenset[str]:
        return frozenset(key for key, count in self._counts.items() if count > 0)

    def merge(self, other: "CoverageMap") -> None:
        if other.unit != self.unit:
            raise AggregationError(
                f"Cannot merge coverage for {other.unit} into {self.unit}", unit=self.unit
            )
        if other.keys != self.keys:
            raise AggregationError(
                "Instrumentable sets differ between runs; re-instrument before merging",
                unit=self.unit,
            )
        for key, count in other.items():
            if count:
                self._counts[key] += count

    def copy(self) -> "CoverageMap":
        return CoverageMap(self.unit, self._counts, self._counts)

    def to_dict(self) -> Dict[str, int]:
        return dict(sorted(self._counts.items(), key=lambda item: _key_order(item[0])))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CoverageMap):
            return NotImplemented
        return self.unit == other.unit and self._counts == other._counts

    def __repr__(self) -> str:
        return f"CoverageMap({self.unit!r}, {len(self._counts)} keys, {len(self.covered())} hit)"


def _key_order(key: str) -> Tuple[str, Tuple[int, ...]]:
    kind, _, rest = key.partition(":")
    return kind, tuple(int(part) for part in rest.split(":") if part.isdigit())


class CancellationToken:
    """Shared abort signal for compile, execution and collection."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "run cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: Optional[str] = None) -> None:
        if self._event.is_set():
            raise RunCancelledError(self.reason or "run cancelled", stage=stage)


__all__ = [
    "CancellationToken",
    "CoverageEvent",
    "CoverageMap",
    "ExclusionSet",
    "Gap",
    "Instrumentable",
    "OptimizerProfile",
    "ProbeSite",
    "SourceUnit",
]
