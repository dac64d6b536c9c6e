"""Compilation of instrumented units and probe verification."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from ..errors import CompilationError, InstrumentationLossError
from ..instrument import InstrumentedUnit
from ..logging import get_logger
from ..models import CancellationToken, Instrumentable, OptimizerProfile
from .evm import decompress_source_map, disassemble
from .reconcile import UNOPTIMIZED, ReconciliationTable
from .solc import SolcCompiler

CODE_KINDS = ("bytecode", "deployedBytecode")


@dataclass(frozen=True)
class Artifact:
    contract: str
    unit: str
    code: Mapping[str, str]
    source_maps: Mapping[str, str]


@dataclass
class Verification:
    """Per-unit outcome of looking for every probe in the compiled code."""

    unit: str
    live: List[str] = field(default_factory=list)
    eliminated: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)


@dataclass
class Build:
    profile: OptimizerProfile
    units: Dict[str, InstrumentedUnit]
    table: ReconciliationTable
    artifacts: List[Artifact] = field(default_factory=list)
    verification: Dict[str, Verification] = field(default_factory=dict)

    def instrumentables(self) -> Dict[str, List[Instrumentable]]:
        return {path: list(unit.instrumentables) for path, unit in self.units.items() if unit.included}


def collect_artifacts(output: Mapping[str, Any]) -> List[Artifact]:
    artifacts: List[Artifact] = []
    for path, contracts in sorted(output.get("contracts", {}).items()):
        for name, body in sorted(contracts.items()):
            evm = body.get("evm", {})
            code = {kind: evm.get(kind, {}).get("object", "") for kind in CODE_KINDS}
            maps = {kind: evm.get(kind, {}).get("sourceMap", "") for kind in CODE_KINDS}
            artifacts.append(Artifact(f"{path}:{name}", path, code, maps))
    return artifacts


class CompilationCoordinator:
    """Compiles a build and proves every probe survived or is explained."""

    def __init__(self, compiler: SolcCompiler) -> None:
        self.compiler = compiler
        self.logger = get_logger("compile")

    def build(
        self,
        units: Sequence[InstrumentedUnit],
        profile: OptimizerProfile,
        cancel: Optional[CancellationToken] = None,
    ) -> Build:
        cancel = cancel or CancellationToken()
        cancel.raise_if_cancelled("compile")
        by_path = {unit.path: unit for unit in units}
        output = self._compile(by_path, profile, cancel)
        cancel.raise_if_cancelled("compile")

        artifacts = collect_artifacts(output)
        known = {item.probe for unit in by_path.values() for item in unit.instrumentables}
        present: Set[str] = set()
        pushes: Dict[Tuple[str, str], List[Tuple[int, str]]] = {}
        for artifact in artifacts:
            for kind in CODE_KINDS:
                instructions = disassemble(artifact.code.get(kind, ""))
                pushes[(artifact.contract, kind)] = [
                    (instr.pc, instr.word)
                    for instr in instructions
                    if instr.is_push and instr.word in known
                ]
                present.update(word for _, word in pushes[(artifact.contract, kind)])

        verification = {
            path: self._verify(unit, present) for path, unit in sorted(by_path.items()) if unit.included
        }
        table = self._table(by_path, profile, verification, artifacts, pushes, output)
        self.logger.info(
            "Compiled %d units in %s mode: %d probes live, %d eliminated",
            len(by_path),
            profile.mode,
            sum(len(item.live) for item in verification.values()),
            sum(len(item.eliminated) for item in verification.values()),
        )
        return Build(
            profile=profile,
            units=by_path,
            table=table,
            artifacts=artifacts,
            verification=verification,
        )

    def _compile(
        self,
        units: Mapping[str, InstrumentedUnit],
        profile: OptimizerProfile,
        cancel: CancellationToken,
    ) -> Dict[str, Any]:
        sources = {path: unit.source for path, unit in units.items()}
        try:
            return self.compiler.compile(sources, profile, cancel)
        except CompilationError as exc:
            if not any(unit.instrumentables for unit in units.values()):
                raise
            self.logger.warning("Instrumented build failed; compiling original sources to compare")
            originals = {path: unit.unit.text for path, unit in units.items()}
            try:
                self.compiler.compile(originals, profile, cancel)
            except CompilationError:
                exc.instrumentation_caused = False
                raise exc
            raise CompilationError(
                f"Instrumentation broke the build: {exc.message}",
                unit=exc.unit,
                errors=exc.errors,
                instrumentation_caused=True,
            ) from exc

    def _verify(self, unit: InstrumentedUnit, present: Set[str]) -> Verification:
        result = Verification(unit.path)
        missing: List[Instrumentable] = []
        for item in unit.instrumentables:
            if item.probe in present:
                result.live.append(item.key)
            else:
                missing.append(item)
        if not missing:
            return result

        live_keys = set(result.live)
        vanished_scopes = {
            name for name, scope in unit.scopes.items() if not live_keys.intersection(scope.keys)
        }
        for item in missing:
            scope = unit.scopes.get(item.scope) if item.scope else None
            if item.dead or (scope is not None and scope.elidable and scope.name in vanished_scopes):
                result.eliminated.append(item.key)
            else:
                result.missing.append(item.key)
        if result.missing:
            raise InstrumentationLossError(unit.path, result.missing)
        self.logger.debug("%s: %d probes eliminated as unreachable", unit.path, len(result.eliminated))
        return result

    def _table(
        self,
        units: Mapping[str, InstrumentedUnit],
        profile: OptimizerProfile,
        verification: Mapping[str, Verification],
        artifacts: Sequence[Artifact],
        pushes: Mapping[Tuple[str, str], List[Tuple[int, str]]],
        output: Mapping[str, Any],
    ) -> ReconciliationTable:
        probes: Dict[str, Tuple[str, str]] = {}
        keys: Dict[str, List[str]] = {}
        for path, unit in units.items():
            if not unit.included:
                continue
            keys[path] = unit.keys()
            for item in unit.instrumentables:
                probes[item.probe] = (path, item.key)
        eliminated = {path: item.eliminated for path, item in verification.items()}

        pcs: Dict[Tuple[str, str, int], str] = {}
        if profile.mode == UNOPTIMIZED:
            pcs = self._pc_index(units, artifacts, pushes, output)
        return ReconciliationTable(profile.mode, keys, probes, eliminated=eliminated, pcs=pcs)

    @staticmethod
    def _pc_index(
        units: Mapping[str, InstrumentedUnit],
        artifacts: Sequence[Artifact],
        pushes: Mapping[Tuple[str, str], List[Tuple[int, str]]],
        output: Mapping[str, Any],
    ) -> Dict[Tuple[str, str, int], str]:
        """Map push program counters whose source range is a probe literal."""
        file_ids = {
            body.get("id"): path for path, body in output.get("sources", {}).items() if "id" in body
        }
        sites = {
            (site.unit, site.start, site.length): site.probe
            for unit in units.values()
            for site in unit.probes
        }
        index: Dict[Tuple[str, str, int], str] = {}
        for artifact in artifacts:
            for kind in CODE_KINDS:
                entries = decompress_source_map(artifact.source_maps.get(kind, ""))
                if not entries:
                    continue
                instructions = disassemble(artifact.code.get(kind, ""))
                wanted = {pc for pc, _ in pushes.get((artifact.contract, kind), [])}
                for position, instr in enumerate(instructions[: len(entries)]):
                    if instr.pc not in wanted:
                        continue
                    entry = entries[position]
                    probe = sites.get((file_ids.get(entry.file), entry.start, entry.length))
                    if probe is not None and probe == instr.word:
                        index[(artifact.contract, kind, instr.pc)] = probe
        return index


__all__ = ["Artifact", "Build", "CompilationCoordinator", "Verification", "collect_artifacts"]
