from __future__ import annotations

from solcov.compile.evm import PUSH32, SourceRange, decompress_source_map, disassemble, is_push_op

_WORD = "ab" * 32


def test_disassemble_splits_push_data() -> None:
    instructions = disassemble("0x6001" + "7f" + _WORD + "00")

    assert [instr.pc for instr in instructions] == [0, 2, 35]
    assert instructions[0].value == "0x01"
    assert instructions[1].opcode == PUSH32
    assert instructions[1].is_push
    assert instructions[1].value == "0x" + _WORD
    assert instructions[2].value is None


def test_disassemble_pads_truncated_push() -> None:
    (instr,) = disassemble("7fab")

    assert instr.data == b"\xab" + b"\0" * 31


def test_disassemble_zeroes_link_placeholders() -> None:
    placeholder = "__$" + "a" * 34 + "$__"
    instructions = disassemble("73" + placeholder + "00")

    assert instructions[0].data == b"\0" * 20
    assert instructions[1].pc == 21


def test_word_left_pads_narrow_pushes() -> None:
    narrow, full, plain = disassemble("7e" + "cd" * 31 + "7f" + _WORD + "00")

    assert narrow.is_push and full.is_push and not plain.is_push
    assert narrow.word == "0x00" + "cd" * 31
    assert full.word == "0x" + _WORD
    assert plain.word is None


def test_is_push_op_accepts_every_push_width() -> None:
    assert all(is_push_op(f"PUSH{width}") for width in range(1, 33))
    assert not is_push_op("PUSH0")
    assert not is_push_op("PUSH33")
    assert not is_push_op("SLOAD")
    assert not is_push_op(None)


def test_decompress_source_map_inherits_empty_fields() -> None:
    entries = decompress_source_map("1:2:0;;3::1:i;:5")

    assert entries == [
        SourceRange(1, 2, 0, "-", 0),
        SourceRange(1, 2, 0, "-", 0),
        SourceRange(3, 2, 1, "i", 0),
        SourceRange(3, 5, 1, "i", 0),
    ]
    assert decompress_source_map("") == []
