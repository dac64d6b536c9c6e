"""Compilation coordination and probe reconciliation."""

from .coordinator import Artifact, Build, CompilationCoordinator, Verification, collect_artifacts
from .reconcile import OPTIMIZED, UNOPTIMIZED, ReconciliationTable
from .solc import RunResult, SolcCompiler, build_input

__all__ = [
    "Artifact",
    "Build",
    "CompilationCoordinator",
    "OPTIMIZED",
    "ReconciliationTable",
    "RunResult",
    "SolcCompiler",
    "UNOPTIMIZED",
    "Verification",
    "build_input",
    "collect_artifacts",
]
