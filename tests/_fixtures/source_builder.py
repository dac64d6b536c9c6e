"""Helper utilities for constructing temporary contract trees in tests."""

from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Mapping, Sequence

from solcov.models import ExclusionSet, SourceUnit
from solcov.scanner import ScanResult, SourceScanner


class SourceTreeBuilder:
    """Utility for writing Solidity files into a throwaway tree and rescanning it."""

    def __init__(self, tmp_path: Path) -> None:
        self.root = tmp_path / "contracts"
        self.root.mkdir()
        self._scanner = SourceScanner()

    def write(self, files: Mapping[str, str]) -> None:
        """Write `path -> contents` entries into the tree."""
        for relative, content in files.items():
            path = self.root / relative
            path.parent.mkdir(parents=True, exist_ok=True)
            normalised = textwrap.dedent(content).lstrip("\n")
            path.write_text(normalised, encoding="utf-8")

    def scan(self, exclusions: Sequence[str] = ()) -> ScanResult:
        """Return a fresh scan of the tree."""
        return self._scanner.scan(self.root, ExclusionSet(tuple(exclusions)))

    def unit(self, path: str) -> SourceUnit:
        return self.scan().unit(path)

    def path(self) -> Path:
        return self.root


def make_unit(path: str, text: str, *, included: bool = True) -> SourceUnit:
    normalised = textwrap.dedent(text).lstrip("\n")
    return SourceUnit(path=path, text=normalised, hash="test", included=included)


__all__ = ["SourceTreeBuilder", "make_unit"]
