"""Persistent store for aggregated coverage counts."""

from __future__ import annotations

from datetime import UTC, datetime
import hashlib
import json
from pathlib import Path
import tempfile
import threading
from typing import Dict, Iterable, Mapping, Optional

from ..aggregator import CoverageAggregator

_STORE_VERSION = 1


def key_fingerprint(keys: Iterable[str]) -> str:
    return hashlib.sha256("\n".join(sorted(keys)).encode("utf-8")).hexdigest()


class CoverageStore:
    """Keeps cumulative counts per unit so repeated runs accumulate.

    Safe to share between threads: updates, persists and clears are
    serialised, and the file is replaced atomically.
    """

    def __init__(self, path: Path | None) -> None:
        self._path = path
        self._entries: Dict[str, Dict[str, object]] = {}
        self._dirty = False
        self._lock = threading.Lock()
        if self._path is not None:
            self._load(self._path)

    @property
    def units(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)

    def counts(self, unit: str) -> Optional[Dict[str, int]]:
        with self._lock:
            entry = self._entries.get(unit)
            if not entry:
                return None
            counts = entry.get("counts")
            return dict(counts) if isinstance(counts, dict) else None

    def load_into(self, aggregator: CoverageAggregator) -> int:
        """Merge stored counts into ``aggregator`` as one run; returns units merged.

        A stored unit whose key set no longer matches raises AggregationError.
        """
        payload: Dict[str, Mapping[str, int]] = {}
        for unit in self.units:
            if unit not in aggregator.units:
                continue
            counts = self.counts(unit)
            if counts is not None:
                payload[unit] = counts
        if payload:
            aggregator.merge_counts(payload)
        return len(payload)

    def update(self, aggregator: CoverageAggregator) -> None:
        """Replace stored counts with the aggregator's cumulative totals."""
        timestamp = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        with self._lock:
            for unit, entry in aggregator.export().items():
                counts = entry["counts"]
                self._entries[unit] = {
                    "fingerprint": key_fingerprint(counts),
                    "counts": counts,
                    "updated_at": timestamp,
                }
            self._dirty = True

    def persist(self) -> None:
        with self._lock:
            if not self._dirty or self._path is None:
                return
            payload = {
                "version": _STORE_VERSION,
                "entries": self._entries,
            }
            self._path.parent.mkdir(parents=True, exist_ok=True)
            handle = tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            )
            try:
                with handle:
                    json.dump(payload, handle, indent=2, sort_keys=True)
                Path(handle.name).replace(self._path)
            except OSError:
                Path(handle.name).unlink(missing_ok=True)
                raise
            self._dirty = False

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._dirty = True

    # ------------------------------------------------------------------
    # Internal helpers

    def _load(self, path: Path) -> None:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return
        except (OSError, json.JSONDecodeError):
            return
        if not isinstance(data, dict) or data.get("version") != _STORE_VERSION:
            return
        entries = data.get("entries")
        if not isinstance(entries, dict):
            return
        valid_entries: Dict[str, Dict[str, object]] = {}
        for unit, raw in entries.items():
            if not isinstance(unit, str) or not isinstance(raw, dict):
                continue
            counts = raw.get("counts")
            if not isinstance(counts, dict) or raw.get("fingerprint") != key_fingerprint(counts):
                continue
            valid_entries[unit] = raw
        self._entries = valid_entries
        self._dirty = False


__all__ = ["CoverageStore", "key_fingerprint"]
