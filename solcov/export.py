"""Istanbul-compatible rendering of aggregated coverage."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

from .aggregator import CoverageAggregator
from .identifiers import BRANCH, FUNCTION, LINE, STATEMENT


def to_istanbul(aggregator: CoverageAggregator, root: Path | None = None) -> Dict[str, Dict[str, Any]]:
    report: Dict[str, Dict[str, Any]] = {}
    for path in aggregator.units:
        counts = aggregator.snapshot(path)
        statement_map: Dict[str, Any] = {}
        fn_map: Dict[str, Any] = {}
        branch_map: Dict[str, Any] = {}
        s: Dict[str, int] = {}
        f: Dict[str, int] = {}
        b: Dict[str, List[int]] = {}
        lines: Dict[str, int] = {}

        for item in aggregator.instrumentables(path):
            index = str(item.index)
            count = counts.get(item.key)
            if item.kind == STATEMENT:
                statement_map[index] = item.location()
                s[index] = count
            elif item.kind == FUNCTION:
                fn_map[index] = {
                    "name": item.name or "",
                    "line": item.line,
                    "loc": item.location(),
                    "decl": item.location(),
                }
                f[index] = count
            elif item.kind == LINE:
                lines[str(item.line)] = count
            elif item.kind == BRANCH:
                entry = branch_map.setdefault(
                    index, {"line": item.line, "type": item.variant or "if", "locations": []}
                )
                entry["locations"].append(item.location())
                b.setdefault(index, []).append(count)

        file_path = str(root / path) if root is not None else path
        report[file_path] = {
            "path": file_path,
            "statementMap": statement_map,
            "fnMap": fn_map,
            "branchMap": branch_map,
            "s": s,
            "f": f,
            "b": b,
            "l": lines,
        }
    return report


def write_istanbul(aggregator: CoverageAggregator, folder: Path, root: Path | None = None) -> Path:
    folder.mkdir(parents=True, exist_ok=True)
    target = folder / "coverage.json"
    target.write_text(json.dumps(to_istanbul(aggregator, root), indent=2), encoding="utf-8")
    return target


__all__ = ["to_istanbul", "write_istanbul"]
