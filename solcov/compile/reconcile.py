"""Mapping from runtime signals back to instrumentables."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..identifiers import normalise_hash
from ..models import CoverageEvent
from .evm import is_push_op

OPTIMIZED = "optimized"
UNOPTIMIZED = "unoptimized"

Resolved = Tuple[str, str]
PcKey = Tuple[str, str, int]


class ReconciliationTable:
    """Resolves probe hashes (and, unoptimized, program counters) to ``(unit, key)``.

    Built once per compilation and read-only afterwards, so collectors on
    several threads may share it.
    """

    def __init__(
        self,
        mode: str,
        units: Mapping[str, Sequence[str]],
        probes: Mapping[str, Resolved],
        *,
        eliminated: Optional[Mapping[str, Iterable[str]]] = None,
        pcs: Optional[Mapping[PcKey, str]] = None,
    ) -> None:
        if mode not in (OPTIMIZED, UNOPTIMIZED):
            raise ValueError(f"Unknown reconciliation mode: {mode}")
        self.mode = mode
        self._units = {path: tuple(keys) for path, keys in units.items()}
        self._probes = dict(probes)
        self._eliminated = {path: frozenset(keys) for path, keys in (eliminated or {}).items()}
        self._pcs = dict(pcs or {}) if mode == UNOPTIMIZED else {}

    @property
    def units(self) -> Dict[str, Tuple[str, ...]]:
        return dict(self._units)

    def keys_for(self, unit: str) -> Tuple[str, ...]:
        return self._units[unit]

    def eliminated(self, unit: str) -> frozenset[str]:
        return self._eliminated.get(unit, frozenset())

    def __len__(self) -> int:
        return len(self._probes)

    def __contains__(self, probe: object) -> bool:
        return isinstance(probe, str) and normalise_hash(probe) in self._probes

    def resolve(self, probe: str | int | bytes) -> Optional[Resolved]:
        return self._probes.get(normalise_hash(probe))

    def resolve_event(self, event: CoverageEvent) -> Optional[Resolved]:
        if self.mode == UNOPTIMIZED and event.contract is not None and event.pc is not None:
            probe = self._pcs.get((event.contract, "deployedBytecode", event.pc))
            if probe is not None:
                return self._probes.get(probe)
        return self.resolve(event.probe)

    def resolve_step(
        self,
        contract: Optional[str],
        code: Optional[str],
        pc: Optional[int],
        op: Optional[str] = None,
        value: Any = None,
    ) -> Optional[Resolved]:
        """Resolve one VM trace step; only PUSH1..PUSH32 steps can name a probe."""
        if op is not None and not is_push_op(op):
            return None
        if self.mode == UNOPTIMIZED and self._pcs and contract is not None and pc is not None:
            probe = self._pcs.get((contract, code or "deployedBytecode", int(pc)))
            return self._probes.get(probe) if probe is not None else None
        if value is None:
            return None
        return self.resolve(value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "units": {path: list(keys) for path, keys in sorted(self._units.items())},
            "probes": {probe: list(target) for probe, target in sorted(self._probes.items())},
            "eliminated": {path: sorted(keys) for path, keys in sorted(self._eliminated.items()) if keys},
            "pcs": [[contract, code, pc, probe] for (contract, code, pc), probe in sorted(self._pcs.items())],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ReconciliationTable":
        pcs: Dict[PcKey, str] = {}
        for entry in payload.get("pcs", []):
            contract, code, pc, probe = entry
            pcs[(str(contract), str(code), int(pc))] = str(probe)
        probes: Dict[str, Resolved] = {
            str(probe): (str(target[0]), str(target[1]))
            for probe, target in payload.get("probes", {}).items()
        }
        units: Dict[str, List[str]] = {
            str(path): [str(key) for key in keys] for path, keys in payload.get("units", {}).items()
        }
        return cls(
            str(payload.get("mode", OPTIMIZED)),
            units,
            probes,
            eliminated=payload.get("eliminated", {}),
            pcs=pcs,
        )


__all__ = ["OPTIMIZED", "UNOPTIMIZED", "ReconciliationTable"]
