"""Source discovery and exclusion filtering."""

from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Dict, Iterator, List, Sequence

from .errors import ConfigError, Diagnostic
from .logging import get_logger
from .models import ExclusionSet, SourceUnit

_EXCLUDED_DIRS = {
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "node_modules",
    "__pycache__",
    ".coverage_artifacts",
    ".coverage_contracts",
    "artifacts",
    "cache",
    "coverage",
}

_SOURCE_SUFFIX = ".sol"


def pattern_matches(path: str, pattern: str) -> bool:
    """Return True when ``path`` (POSIX, root-relative) matches a skipFiles entry."""
    normalized = path.replace("\\", "/")
    pattern = pattern.strip().replace("\\", "/")
    if pattern.startswith("./"):
        pattern = pattern[2:]
    pattern = pattern.lstrip("/")
    if not pattern:
        return False
    if pattern.endswith("/**"):
        prefix = pattern[:-3]
        return normalized == prefix or normalized.startswith(f"{prefix}/")
    if pattern.endswith("/"):
        return normalized.startswith(pattern)
    if pattern.startswith("**/"):
        suffix = pattern[3:]
        return normalized == suffix or normalized.endswith(f"/{suffix}") or fnmatchcase(normalized, pattern)
    if any(ch in pattern for ch in "*?["):
        return fnmatchcase(normalized, pattern)
    if normalized == pattern or normalized.startswith(f"{pattern}/"):
        return True
    return normalized.endswith(f"/{pattern}")


@dataclass
class ScanResult:
    """Discovered units plus per-pattern match bookkeeping."""

    root: Path
    units: List[SourceUnit]
    pattern_hits: Dict[str, int] = field(default_factory=dict)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def included(self) -> List[SourceUnit]:
        return [unit for unit in self.units if unit.included]

    @property
    def excluded(self) -> List[SourceUnit]:
        return [unit for unit in self.units if not unit.included]

    def unit(self, path: str) -> SourceUnit:
        for unit in self.units:
            if unit.path == path:
                return unit
        raise KeyError(path)


class ExclusionFilter:
    """Classifies unit paths against an ExclusionSet."""

    def __init__(self, exclusions: ExclusionSet) -> None:
        self.exclusions = exclusions
        self._hits: Dict[str, int] = {pattern: 0 for pattern in exclusions}

    def is_excluded(self, path: str) -> bool:
        excluded = False
        for pattern in self.exclusions:
            if pattern_matches(path, pattern):
                self._hits[pattern] += 1
                excluded = True
        return excluded

    @property
    def hits(self) -> Dict[str, int]:
        return dict(self._hits)

    def unmatched(self) -> List[str]:
        return [pattern for pattern, count in self._hits.items() if count == 0]


def _iter_sources(root: Path) -> Iterator[Path]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(name for name in dirnames if name not in _EXCLUDED_DIRS)
        for filename in sorted(filenames):
            if filename.endswith(_SOURCE_SUFFIX):
                yield Path(dirpath) / filename


def _hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class SourceScanner:
    """Walks a contracts tree and classifies every Solidity file."""

    def __init__(self) -> None:
        self.logger = get_logger("scanner")

    def scan(self, root: str | Path, exclusions: ExclusionSet | Sequence[str] = ()) -> ScanResult:
        """Return every ``.sol`` file under ``root`` with its inclusion status."""
        root_path = Path(root).expanduser().resolve()
        if not root_path.exists():
            raise FileNotFoundError(f"Source path not found: {root}")
        if not root_path.is_dir():
            raise NotADirectoryError(f"Source path is not a directory: {root}")

        if not isinstance(exclusions, ExclusionSet):
            exclusions = ExclusionSet(tuple(exclusions))
        exclusion_filter = ExclusionFilter(exclusions)

        units: List[SourceUnit] = []
        for path in _iter_sources(root_path):
            rel_path = path.relative_to(root_path).as_posix()
            text = path.read_text(encoding="utf-8")
            included = not exclusion_filter.is_excluded(rel_path)
            if not included:
                self.logger.debug("Excluding %s from instrumentation", rel_path)
            units.append(
                SourceUnit(path=rel_path, text=text, hash=_hash_text(text), included=included)
            )

        diagnostics: List[Diagnostic] = []
        for pattern in exclusion_filter.unmatched():
            error = ConfigError(f"skipFiles pattern {pattern!r} did not match any file", stage="scan")
            self.logger.warning("%s", error.message)
            diagnostics.append(Diagnostic.from_error(error))

        self.logger.debug(
            "Scanned %d source files (%d excluded)",
            len(units),
            sum(1 for unit in units if not unit.included),
        )
        return ScanResult(
            root=root_path,
            units=units,
            pattern_hits=exclusion_filter.hits,
            diagnostics=diagnostics,
        )


__all__ = ["ExclusionFilter", "ScanResult", "SourceScanner", "pattern_matches"]
