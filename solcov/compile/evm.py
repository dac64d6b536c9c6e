"""EVM bytecode disassembly and solc source-map decompression."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional

PUSH1 = 0x60
PUSH32 = 0x7F

# Unlinked library references look like ``__$<34 hex chars>$__``.
_LINK_PLACEHOLDER = re.compile(r"__\$[0-9a-fA-F]{34}\$__|__[A-Za-z0-9_.:/$-]{36}__")
_PUSH_MNEMONIC = re.compile(r"PUSH([1-9]|[12][0-9]|3[0-2])")


def is_push_op(op: Optional[str]) -> bool:
    """True for the ``PUSH1``..``PUSH32`` mnemonics reported by VM traces."""
    return op is not None and _PUSH_MNEMONIC.fullmatch(op) is not None


@dataclass(frozen=True)
class Instruction:
    pc: int
    opcode: int
    data: bytes = b""

    @property
    def is_push(self) -> bool:
        return PUSH1 <= self.opcode <= PUSH32

    @property
    def value(self) -> Optional[str]:
        if not self.data:
            return None
        return "0x" + self.data.hex()

    @property
    def word(self) -> Optional[str]:
        """Push operand left-padded to 32 bytes.

        solc pushes constants with the narrowest PUSHn that holds them, so a
        bytes32 literal with leading zero bytes arrives as PUSH31 or less.
        """
        if not self.data:
            return None
        return "0x" + self.data.rjust(32, b"\0").hex()


@dataclass(frozen=True)
class SourceRange:
    start: int
    length: int
    file: int
    jump: str = "-"
    modifier_depth: int = 0


def _clean_hex(bytecode: str) -> str:
    text = bytecode.strip()
    if text.startswith("0x") or text.startswith("0X"):
        text = text[2:]
    text = _LINK_PLACEHOLDER.sub("0" * 40, text)
    if len(text) % 2:
        text = text[:-1]
    return text


def disassemble(bytecode: str) -> List[Instruction]:
    """Split hex bytecode into instructions; truncated trailing pushes are zero-padded."""
    code = bytes.fromhex(_clean_hex(bytecode))
    instructions: List[Instruction] = []
    pc = 0
    while pc < len(code):
        opcode = code[pc]
        if PUSH1 <= opcode <= PUSH32:
            size = opcode - PUSH1 + 1
            data = code[pc + 1 : pc + 1 + size].ljust(size, b"\0")
            instructions.append(Instruction(pc, opcode, data))
            pc += 1 + size
        else:
            instructions.append(Instruction(pc, opcode))
            pc += 1
    return instructions


def decompress_source_map(source_map: str) -> List[SourceRange]:
    """Expand the compressed ``s:l:f:j:m;...`` form; empty fields repeat the previous entry."""
    entries: List[SourceRange] = []
    if not source_map:
        return entries
    start, length, file, jump, depth = 0, 0, -1, "-", 0
    for chunk in source_map.split(";"):
        fields = chunk.split(":")
        if len(fields) > 0 and fields[0]:
            start = int(fields[0])
        if len(fields) > 1 and fields[1]:
            length = int(fields[1])
        if len(fields) > 2 and fields[2]:
            file = int(fields[2])
        if len(fields) > 3 and fields[3]:
            jump = fields[3]
        if len(fields) > 4 and fields[4]:
            depth = int(fields[4])
        entries.append(SourceRange(start, length, file, jump, depth))
    return entries


__all__ = [
    "Instruction",
    "SourceRange",
    "decompress_source_map",
    "disassemble",
    "is_push_op",
]
