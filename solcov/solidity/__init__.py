"""Solidity parsing on top of the tree-sitter grammar."""

from .nodes import ContractDef, FunctionDef, SourceTree
from .parser import LineIndex, SourceParser, parse

__all__ = [
    "ContractDef",
    "FunctionDef",
    "LineIndex",
    "SourceParser",
    "SourceTree",
    "parse",
]
