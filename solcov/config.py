"""Configuration loading for solcov (.solcover.js / .solcover.yml / .solcover.json)."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from .errors import ConfigError
from .models import ExclusionSet, OptimizerProfile

CONFIG_FILENAMES: Sequence[str] = (
    ".solcover.js",
    ".solcover.yml",
    ".solcover.yaml",
    ".solcover.json",
)

# Conservative optimizer details used when the Yul optimizer is switched on
# without explicit details: everything that reorders or folds code stays off.
_DEFAULT_OPTIMIZER_DETAILS: Dict[str, Any] = {
    "peephole": False,
    "inliner": False,
    "jumpdestRemover": False,
    "orderLiterals": True,
    "deduplicate": False,
    "cse": False,
    "constantOptimizer": False,
    "yul": False,
}

_KNOWN_KEYS = {
    "skipFiles",
    "configureYulOptimizer",
    "solcOptimizerDetails",
    "irMinimum",
    "measureStatementCoverage",
    "measureLineCoverage",
    "measureBranchCoverage",
    "measureFunctionCoverage",
    "solc",
    "compilerTimeout",
    "workers",
    "istanbulFolder",
    "silent",
}


@dataclass
class MeasureConfig:
    """Which instrumentable kinds are measured."""

    statements: bool = True
    lines: bool = True
    branches: bool = True
    functions: bool = True

    def enabled_kinds(self) -> List[str]:
        kinds = []
        if self.lines:
            kinds.append("line")
        if self.statements:
            kinds.append("statement")
        if self.branches:
            kinds.append("branch")
        if self.functions:
            kinds.append("function")
        return kinds


@dataclass
class CoverageConfig:
    """Represents the settings read from the project's solcover file."""

    root: Path
    skip_files: List[str] = field(default_factory=list)
    configure_yul_optimizer: bool = False
    solc_optimizer_details: Dict[str, Any] = field(default_factory=dict)
    ir_minimum: bool = False
    measure: MeasureConfig = field(default_factory=MeasureConfig)
    solc: str = "solc"
    compiler_timeout: float = 120.0
    workers: Optional[int] = None
    istanbul_folder: Optional[Path] = None
    silent: bool = False
    source: Optional[Path] = None
    unknown_keys: List[str] = field(default_factory=list)

    def exclusion_set(self) -> ExclusionSet:
        return ExclusionSet(tuple(self.skip_files))

    def optimizer_profile(self) -> OptimizerProfile:
        """Derive the read-only optimizer profile for this run."""
        if self.ir_minimum:
            details = dict(self.solc_optimizer_details) or {
                "yul": True,
                "yulDetails": {"optimizerSteps": ""},
            }
            return _profile_from_details(details, enabled=True, via_ir=True)
        if self.configure_yul_optimizer:
            details = dict(self.solc_optimizer_details) or dict(_DEFAULT_OPTIMIZER_DETAILS)
            return _profile_from_details(details, enabled=True, via_ir=False)
        return OptimizerProfile()

    def worker_count(self) -> int:
        if self.workers and self.workers > 0:
            return self.workers
        return os.cpu_count() or 1


def _profile_from_details(details: Dict[str, Any], *, enabled: bool, via_ir: bool) -> OptimizerProfile:
    yul_details = _as_dict(details.get("yulDetails"))
    return OptimizerProfile(
        enabled=enabled,
        via_ir=via_ir,
        yul=bool(_as_bool(details.get("yul"))),
        stack_allocation=bool(_as_bool(yul_details.get("stackAllocation"))),
        optimizer_steps=_as_str(yul_details.get("optimizerSteps")),
        details=details,
    )


def load_config(config_path: Path) -> CoverageConfig:
    """Load configuration from disk; a missing file yields defaults."""
    config_path = config_path.expanduser()
    config_file = _resolve_config_path(config_path)
    root = (config_path if config_path.is_dir() else config_path.parent).resolve()

    if config_file is None or not config_file.exists():
        return CoverageConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{config_file.name} must define an object at the root")

    details = data.get("solcOptimizerDetails")
    if details is not None and not isinstance(details, dict):
        raise ConfigError("solcOptimizerDetails must be an object")

    measure = MeasureConfig(
        statements=_flag(data, "measureStatementCoverage", True),
        lines=_flag(data, "measureLineCoverage", True),
        branches=_flag(data, "measureBranchCoverage", True),
        functions=_flag(data, "measureFunctionCoverage", True),
    )

    istanbul = _as_str(data.get("istanbulFolder"))
    timeout = _as_float(data.get("compilerTimeout"))

    return CoverageConfig(
        root=root,
        skip_files=_as_str_list(data.get("skipFiles")),
        configure_yul_optimizer=_flag(data, "configureYulOptimizer", False),
        solc_optimizer_details=dict(details or {}),
        ir_minimum=_flag(data, "irMinimum", False),
        measure=measure,
        solc=_as_str(data.get("solc")) or "solc",
        compiler_timeout=timeout if timeout and timeout > 0 else 120.0,
        workers=_as_int(data.get("workers")),
        istanbul_folder=root / istanbul if istanbul else None,
        silent=_flag(data, "silent", False),
        source=config_file,
        unknown_keys=sorted(key for key in data if key not in _KNOWN_KEYS),
    )


def _resolve_config_path(config_path: Path) -> Optional[Path]:
    if config_path.is_dir():
        for name in CONFIG_FILENAMES:
            candidate = config_path / name
            if candidate.exists():
                return candidate.resolve()
        return None
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}

    if path.suffix == ".json":
        try:
            loaded = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
        return loaded or {}

    if path.suffix == ".js":
        text = _extract_module_exports(text, path.name)

    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return loaded or {}


def _extract_module_exports(text: str, name: str) -> str:
    """Return the object literal assigned to ``module.exports``.

    JavaScript object literals with unquoted keys, single-quoted strings and
    trailing commas are valid YAML flow mappings once comments are removed.
    """
    cleaned = _strip_js_comments(text)
    marker = cleaned.find("module.exports")
    if marker < 0:
        raise ConfigError(f"{name} does not assign module.exports")
    start = cleaned.find("{", marker)
    if start < 0:
        raise ConfigError(f"{name} must export an object literal")

    depth = 0
    quote: Optional[str] = None
    index = start
    while index < len(cleaned):
        char = cleaned[index]
        if quote:
            if char == "\\":
                index += 2
                continue
            if char == quote:
                quote = None
        elif char in {'"', "'", "`"}:
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return cleaned[start : index + 1].replace("`", '"')
        index += 1
    raise ConfigError(f"Unterminated object literal in {name}")


def _strip_js_comments(text: str) -> str:
    out: List[str] = []
    quote: Optional[str] = None
    index = 0
    while index < len(text):
        char = text[index]
        nxt = text[index + 1] if index + 1 < len(text) else ""
        if quote:
            out.append(char)
            if char == "\\" and nxt:
                out.append(nxt)
                index += 2
                continue
            if char == quote:
                quote = None
            index += 1
            continue
        if char in {'"', "'", "`"}:
            quote = char
            out.append(char)
            index += 1
            continue
        if char == "/" and nxt == "/":
            newline = text.find("\n", index)
            index = len(text) if newline < 0 else newline
            continue
        if char == "/" and nxt == "*":
            close = text.find("*/", index + 2)
            if close < 0:
                raise ConfigError("Unterminated block comment in configuration")
            # keep line structure for error messages
            out.append("\n" * text.count("\n", index, close))
            index = close + 2
            continue
        out.append(char)
        index += 1
    return "".join(out)


def _flag(data: Dict[str, Any], key: str, default: bool) -> bool:
    value = _as_bool(data.get(key))
    return default if value is None else value


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> Optional[str]:
    return str(value) if isinstance(value, (str, int, float)) and not isinstance(value, bool) else None


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "1"}:
            return True
        if lowered in {"false", "no", "0"}:
            return False
    return None


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, Sequence):
        return [str(item) for item in value if isinstance(item, (str, int, float))]
    return []


__all__ = ["CONFIG_FILENAMES", "CoverageConfig", "MeasureConfig", "load_config"]
