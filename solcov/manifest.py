"""Serialisable record of one build: instrumentables, gaps and the reconciliation table."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

from .aggregator import CoverageAggregator
from .compile.coordinator import Build
from .compile.reconcile import OPTIMIZED, ReconciliationTable
from .errors import ConfigError, Diagnostic
from .instrument import InstrumentedUnit
from .models import Gap, Instrumentable, OptimizerProfile

_MANIFEST_VERSION = 1
MANIFEST_NAME = "manifest.json"


@dataclass
class BuildManifest:
    root: str
    profile: Dict[str, Any]
    table: ReconciliationTable
    instrumentables: Dict[str, List[Instrumentable]] = field(default_factory=dict)
    gaps: Dict[str, List[Gap]] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @classmethod
    def from_build(
        cls, build: Build, root: Path | str, diagnostics: Sequence[Diagnostic] = ()
    ) -> "BuildManifest":
        return cls._from_units(build.units.values(), root, build.profile, build.table, diagnostics)

    @classmethod
    def from_units(
        cls,
        units: Sequence[InstrumentedUnit],
        root: Path | str,
        profile: OptimizerProfile,
        diagnostics: Sequence[Diagnostic] = (),
    ) -> "BuildManifest":
        """Manifest for an uncompiled build; events resolve by probe hash only."""
        included = [unit for unit in units if unit.included]
        table = ReconciliationTable(
            OPTIMIZED,
            {unit.path: unit.keys() for unit in included},
            {item.probe: (unit.path, item.key) for unit in included for item in unit.instrumentables},
        )
        return cls._from_units(units, root, profile, table, diagnostics)

    @classmethod
    def _from_units(cls, units, root, profile, table, diagnostics) -> "BuildManifest":
        included = [unit for unit in units if unit.included]
        return cls(
            root=str(root),
            profile=profile.to_dict(),
            table=table,
            instrumentables={unit.path: list(unit.instrumentables) for unit in included},
            gaps={unit.path: list(unit.gaps) for unit in included if unit.gaps},
            diagnostics=list(diagnostics),
        )

    def aggregator(self) -> CoverageAggregator:
        return CoverageAggregator(
            self.instrumentables,
            eliminated={path: self.table.eliminated(path) for path in self.instrumentables},
            gaps=self.gaps,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": _MANIFEST_VERSION,
            "root": self.root,
            "profile": self.profile,
            "table": self.table.to_dict(),
            "instrumentables": {
                path: [asdict(item) for item in items] for path, items in sorted(self.instrumentables.items())
            },
            "gaps": {path: [asdict(gap) for gap in gaps] for path, gaps in sorted(self.gaps.items())},
            "diagnostics": [item.to_dict() for item in self.diagnostics],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "BuildManifest":
        if payload.get("version") != _MANIFEST_VERSION:
            raise ConfigError(f"Unsupported manifest version: {payload.get('version')!r}")
        return cls(
            root=str(payload.get("root", "")),
            profile=dict(payload.get("profile", {})),
            table=ReconciliationTable.from_dict(payload.get("table", {})),
            instrumentables={
                path: [Instrumentable(**item) for item in items]
                for path, items in payload.get("instrumentables", {}).items()
            },
            gaps={path: [Gap(**gap) for gap in gaps] for path, gaps in payload.get("gaps", {}).items()},
            diagnostics=[Diagnostic(**item) for item in payload.get("diagnostics", [])],
        )

    def save(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        return path

    @classmethod
    def load(cls, path: Path) -> "BuildManifest":
        if path.is_dir():
            path = path / MANIFEST_NAME
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError as exc:
            raise ConfigError(f"Manifest not found: {path}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Failed to parse manifest {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigError(f"Manifest {path} must contain an object")
        return cls.from_dict(payload)


__all__ = ["BuildManifest", "MANIFEST_NAME"]
