"""Per-run collection of coverage events into local coverage maps."""

from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, Iterable, Mapping, Optional

from .compile.evm import is_push_op
from .compile.reconcile import ReconciliationTable
from .errors import RunCancelledError
from .logging import get_logger
from .models import CancellationToken, CoverageEvent, CoverageMap

_LOG_SIZE = 256


class EventCollector:
    """Owns the coverage maps of exactly one run; not shared between threads."""

    def __init__(
        self,
        table: ReconciliationTable,
        cancel: Optional[CancellationToken] = None,
        *,
        run_id: str = "run",
        log_size: int = _LOG_SIZE,
    ) -> None:
        self.table = table
        self.cancel = cancel or CancellationToken()
        self.run_id = run_id
        self.maps: Dict[str, CoverageMap] = {
            path: CoverageMap(path, keys) for path, keys in table.units.items()
        }
        self.recent: Deque[str] = deque(maxlen=log_size)
        self.ignored = 0
        self.recorded = 0
        self.logger = get_logger("collector")

    def record(self, probe: str | int | bytes) -> bool:
        """Count one probe hit; unknown hashes are ignored and return False."""
        return self._count(self.table.resolve(probe))

    def record_event(self, event: CoverageEvent) -> bool:
        return self._count(self.table.resolve_event(event))

    def record_step(self, step: Mapping[str, Any]) -> bool:
        op = step.get("op")
        if op is not None and not is_push_op(op):
            return False
        resolved = self.table.resolve_step(
            step.get("contract"),
            step.get("code"),
            _as_pc(step.get("pc")),
            step.get("op"),
            step.get("value"),
        )
        return self._count(resolved)

    def consume(self, records: Iterable[Mapping[str, Any]]) -> "EventCollector":
        """Feed event (``{"probe": ...}``) or trace-step records, checking for cancellation."""
        for record in records:
            if self.cancel.cancelled:
                self.logger.debug("Run %s cancelled; discarding its counts", self.run_id)
                raise RunCancelledError(self.cancel.reason or "run cancelled", stage="collect")
            if "probe" in record:
                self._count(
                    self.table.resolve_event(
                        CoverageEvent(
                            probe=str(record["probe"]),
                            contract=record.get("contract"),
                            pc=_as_pc(record.get("pc")),
                        )
                    )
                )
            else:
                self.record_step(record)
        return self

    def results(self) -> Dict[str, CoverageMap]:
        self.cancel.raise_if_cancelled("collect")
        if self.ignored:
            self.logger.debug("Run %s ignored %d unknown probe(s)", self.run_id, self.ignored)
        return self.maps

    def _count(self, resolved: Optional[tuple[str, str]]) -> bool:
        if resolved is None:
            self.ignored += 1
            return False
        unit, key = resolved
        coverage = self.maps.get(unit)
        if coverage is None or key not in coverage:
            self.ignored += 1
            return False
        coverage.hit(key)
        self.recorded += 1
        self.recent.append(f"{unit}#{key}")
        return True


def _as_pc(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            return None
    return None


__all__ = ["EventCollector"]
