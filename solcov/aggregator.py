"""Merging of per-run coverage maps into cumulative totals."""

from __future__ import annotations

import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .errors import AggregationError
from .identifiers import KINDS, kind_of
from .logging import get_logger
from .models import CoverageMap, Gap, Instrumentable


class _Accumulator:
    __slots__ = ("coverage", "lock")

    def __init__(self, unit: str, keys: Iterable[str]) -> None:
        self.coverage = CoverageMap(unit, keys)
        self.lock = threading.Lock()


def summarise(counts: Mapping[str, int]) -> Dict[str, Dict[str, Any]]:
    """Per-kind totals; an empty kind reports 100%."""
    summary: Dict[str, Dict[str, Any]] = {}
    for kind in KINDS:
        values = [count for key, count in counts.items() if kind_of(key) == kind]
        total = len(values)
        hit = sum(1 for count in values if count > 0)
        summary[kind] = {"total": total, "hit": hit, "pct": _pct(hit, total)}
    return summary


def _pct(hit: int, total: int) -> float:
    if total == 0:
        return 100.0
    return round(hit / total * 100, 2)


class CoverageAggregator:
    """Sums run maps per source unit.

    Each unit has its own accumulator and lock; the registry lock is only
    held while an accumulator is created, so merges of different units
    never contend.
    """

    def __init__(
        self,
        instrumentables: Mapping[str, Sequence[Instrumentable]],
        *,
        eliminated: Optional[Mapping[str, Iterable[str]]] = None,
        gaps: Optional[Mapping[str, Sequence[Gap]]] = None,
    ) -> None:
        self._keys: Dict[str, frozenset[str]] = {
            path: frozenset(item.key for item in items) for path, items in instrumentables.items()
        }
        self._instrumentables = {path: list(items) for path, items in instrumentables.items()}
        self._eliminated = {path: sorted(keys) for path, keys in (eliminated or {}).items()}
        self._gaps = {path: list(items) for path, items in (gaps or {}).items()}
        self._accumulators: Dict[str, _Accumulator] = {}
        self._registry_lock = threading.Lock()
        self._runs = 0
        self.logger = get_logger("aggregator")

    @property
    def units(self) -> List[str]:
        return sorted(self._keys)

    @property
    def runs(self) -> int:
        return self._runs

    def instrumentables(self, unit: str) -> List[Instrumentable]:
        return list(self._instrumentables.get(unit, []))

    def _accumulator(self, unit: str) -> _Accumulator:
        accumulator = self._accumulators.get(unit)
        if accumulator is not None:
            return accumulator
        with self._registry_lock:
            accumulator = self._accumulators.get(unit)
            if accumulator is None:
                accumulator = _Accumulator(unit, self._keys[unit])
                self._accumulators[unit] = accumulator
            return accumulator

    def validate(self, run_maps: Iterable[CoverageMap]) -> List[CoverageMap]:
        maps = list(run_maps)
        for coverage in maps:
            expected = self._keys.get(coverage.unit)
            if expected is None:
                raise AggregationError("Unit has no registered instrumentables", unit=coverage.unit)
            if coverage.keys != expected:
                extra = sorted(coverage.keys - expected)
                absent = sorted(expected - coverage.keys)
                raise AggregationError(
                    f"Instrumentable set differs from the build (unexpected {extra[:5]}, missing {absent[:5]})",
                    unit=coverage.unit,
                )
        return maps

    def merge(self, run_maps: Mapping[str, CoverageMap] | Iterable[CoverageMap]) -> None:
        """Add one run's counts; the whole run is validated before anything is added."""
        maps = self.validate(run_maps.values() if isinstance(run_maps, Mapping) else run_maps)
        for coverage in maps:
            accumulator = self._accumulator(coverage.unit)
            with accumulator.lock:
                accumulator.coverage.merge(coverage)
        with self._registry_lock:
            self._runs += 1
        self.logger.debug("Merged run covering %d units", len(maps))

    def merge_counts(self, counts: Mapping[str, Mapping[str, int]]) -> None:
        """Merge a ``{unit: {key: count}}`` payload carrying complete key sets."""
        maps = []
        for unit, values in counts.items():
            if unit not in self._keys:
                raise AggregationError("Unit has no registered instrumentables", unit=unit)
            try:
                maps.append(CoverageMap(unit, values.keys(), values))
            except ValueError as exc:
                raise AggregationError(str(exc), unit=unit) from exc
        self.merge(maps)

    def merge_export(self, payload: Mapping[str, Mapping[str, Any]]) -> None:
        self.merge_counts({unit: entry.get("counts", {}) for unit, entry in payload.items()})

    def snapshot(self, unit: str) -> CoverageMap:
        if unit not in self._keys:
            raise KeyError(unit)
        accumulator = self._accumulator(unit)
        with accumulator.lock:
            return accumulator.coverage.copy()

    def summary(self, unit: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        if unit is not None:
            return summarise(self.snapshot(unit).to_dict())
        merged: Dict[str, int] = {}
        for path in self.units:
            for key, count in self.snapshot(path).items():
                merged[f"{key}@{path}"] = count
        return summarise(merged)

    def export(self) -> Dict[str, Dict[str, Any]]:
        payload: Dict[str, Dict[str, Any]] = {}
        for path in self.units:
            counts = self.snapshot(path).to_dict()
            payload[path] = {
                "counts": counts,
                "summary": summarise(counts),
                "eliminated": list(self._eliminated.get(path, [])),
                "gaps": [gap.to_dict() for gap in self._gaps.get(path, [])],
            }
        return payload


__all__ = ["CoverageAggregator", "summarise"]
