"""Pipeline orchestration: scan, instrument, compile, collect, aggregate."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .aggregator import CoverageAggregator
from .collector import EventCollector
from .compile import Build, CompilationCoordinator, ReconciliationTable, SolcCompiler
from .config import CoverageConfig
from .errors import Diagnostic, Diagnostics, RunCancelledError
from .instrument import InstrumentedUnit, Instrumenter
from .logging import get_logger
from .manifest import MANIFEST_NAME, BuildManifest
from .models import CancellationToken, CoverageMap, SourceUnit
from .scanner import ScanResult, SourceScanner

RunMaps = Dict[str, CoverageMap]


@dataclass
class InstrumentationResult:
    scan: ScanResult
    units: List[InstrumentedUnit] = field(default_factory=list)

    @property
    def included(self) -> List[InstrumentedUnit]:
        return [unit for unit in self.units if unit.included]


class Engine:
    """Coordinates one coverage run across its stages."""

    def __init__(
        self,
        config: CoverageConfig,
        *,
        scanner: SourceScanner | None = None,
        instrumenter: Instrumenter | None = None,
        compiler: SolcCompiler | None = None,
        cancel: CancellationToken | None = None,
    ) -> None:
        self.config = config
        self.scanner = scanner or SourceScanner()
        self.instrumenter = instrumenter or Instrumenter(config.measure.enabled_kinds())
        self.compiler = compiler or SolcCompiler(
            config.solc,
            timeout=config.compiler_timeout,
            base_path=config.root,
        )
        self.coordinator = CompilationCoordinator(self.compiler)
        self.cancel = cancel or CancellationToken()
        self.diagnostics = Diagnostics()
        self.logger = get_logger("engine")

    # ------------------------------------------------------------------
    # Build side

    def instrument(self, root: Path | str | None = None) -> InstrumentationResult:
        source_root = Path(root) if root is not None else self.config.root
        self.logger.info("Scanning %s", source_root)
        scan = self.scanner.scan(source_root, self.config.exclusion_set())
        self.diagnostics.extend(scan.diagnostics)
        workers = min(self.config.worker_count(), max(len(scan.units), 1))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="solcov-instrument") as pool:
            units = list(pool.map(self._instrument_unit, scan.units))
        self.logger.info(
            "Instrumented %d of %d units",
            sum(1 for unit in units if unit.included),
            len(units),
        )
        return InstrumentationResult(scan=scan, units=units)

    def _instrument_unit(self, unit: SourceUnit) -> InstrumentedUnit:
        self.cancel.raise_if_cancelled("instrument")
        result = self.instrumenter.instrument(unit)
        for error in result.gap_errors():
            self.logger.warning("%s", error)
            self.diagnostics.add(error)
        return result

    def build(self, root: Path | str | None = None) -> Build:
        instrumented = self.instrument(root)
        return self.coordinator.build(instrumented.units, self.config.optimizer_profile(), self.cancel)

    def manifest(self, build: Build) -> BuildManifest:
        return BuildManifest.from_build(build, self.config.root, self.diagnostics.snapshot())

    def write_instrumented(self, result: InstrumentationResult, target: Path) -> BuildManifest:
        """Write the instrumented tree plus a manifest into ``target``."""
        for unit in result.units:
            destination = target / unit.path
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_text(unit.source, encoding="utf-8")
        manifest = BuildManifest.from_units(
            result.units,
            self.config.root,
            self.config.optimizer_profile(),
            self.diagnostics.snapshot(),
        )
        manifest.save(target / MANIFEST_NAME)
        return manifest

    # ------------------------------------------------------------------
    # Run side

    def collect(
        self,
        table: ReconciliationTable,
        runs: Mapping[str, Iterable[Mapping[str, Any]]],
        *,
        tokens: Optional[Mapping[str, CancellationToken]] = None,
    ) -> Dict[str, RunMaps]:
        """Collect partition runs in parallel; cancelled runs are left out."""
        tokens = tokens or {}
        if not runs:
            return {}

        def _collect(run_id: str) -> Optional[RunMaps]:
            collector = EventCollector(table, tokens.get(run_id, self.cancel), run_id=run_id)
            try:
                return collector.consume(runs[run_id]).results()
            except RunCancelledError as exc:
                self.logger.warning("Run %s discarded: %s", run_id, exc.message)
                self.diagnostics.add(Diagnostic.from_error(exc))
                return None

        results: Dict[str, RunMaps] = {}
        workers = min(self.config.worker_count(), len(runs))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="solcov-collect") as pool:
            for run_id, maps in zip(runs, pool.map(_collect, list(runs))):
                if maps is not None:
                    results[run_id] = maps
        return results

    def aggregate(self, aggregator: CoverageAggregator, results: Mapping[str, RunMaps]) -> CoverageAggregator:
        for run_id in sorted(results):
            self.logger.debug("Merging run %s", run_id)
            aggregator.merge(results[run_id])
        return aggregator

    def run(self, runs: Mapping[str, Iterable[Mapping[str, Any]]]) -> CoverageAggregator:
        build = self.build()
        manifest = self.manifest(build)
        aggregator = manifest.aggregator()
        return self.aggregate(aggregator, self.collect(build.table, runs))

    def log_exception(self, message: str, exc: Exception) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.exception("%s: %s", message, exc)
        else:
            self.logger.error("%s: %s", message, exc)


__all__ = ["Engine", "InstrumentationResult"]
