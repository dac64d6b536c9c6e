"""Stable identifiers for instrumentables and their probe payloads."""

from __future__ import annotations

import hashlib
from typing import Optional

LINE = "line"
STATEMENT = "statement"
BRANCH = "branch"
FUNCTION = "function"

KINDS = (LINE, STATEMENT, BRANCH, FUNCTION)


def make_key(kind: str, index: int, arm: Optional[int] = None) -> str:
    """Return the unit-local key, e.g. ``statement:4`` or ``branch:2:1``."""
    if kind not in KINDS:
        raise ValueError(f"Unknown instrumentable kind: {kind}")
    if kind == BRANCH:
        if arm is None:
            raise ValueError("Branch keys require an arm index")
        return f"{kind}:{index}:{arm}"
    return f"{kind}:{index}"


def kind_of(key: str) -> str:
    return key.split(":", 1)[0]


def probe_hash(unit_path: str, key: str) -> str:
    """Return the bytes32 payload (``0x`` + 64 hex digits) emitted by a probe."""
    digest = hashlib.sha256(f"{unit_path}\0{key}".encode("utf-8")).hexdigest()
    return f"0x{digest}"


def helper_tag(unit_path: str, contract: str) -> str:
    """Return the suffix used to name one contract's probe helpers."""
    return hashlib.sha256(f"{unit_path}:{contract}".encode("utf-8")).hexdigest()[:10]


def normalise_hash(value: str | int | bytes) -> str:
    """Normalise a pushed value from a trace into the 32-byte ``0x``-prefixed form."""
    if isinstance(value, bytes):
        return "0x" + value.rjust(32, b"\0").hex()
    if isinstance(value, int):
        return f"0x{value:064x}"
    text = value.lower()
    if text.startswith("0x"):
        text = text[2:]
    return "0x" + text.rjust(64, "0")


__all__ = [
    "BRANCH",
    "FUNCTION",
    "KINDS",
    "LINE",
    "STATEMENT",
    "helper_tag",
    "kind_of",
    "make_key",
    "normalise_hash",
    "probe_hash",
]
