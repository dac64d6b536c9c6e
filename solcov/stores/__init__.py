"""Persistence helpers for solcov."""

from .coverage_store import CoverageStore

__all__ = ["CoverageStore"]
