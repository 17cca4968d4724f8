"""
Codec Tests for the ReTI simulator.

Checks single-line encoding against hand-computed words for both ISA
variants, the error status of every failure class, and that decoded text
always re-assembles to an equivalent word.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import random

import pytest
from reti_sim.assembler import AsmStatus, encode
from reti_sim.disassembler import INVALID_INSTRUCTION, decode
from reti_sim.isa import OS_ISA, TI_ISA, OpType, Reg


def word(text, isa=TI_ISA):
    result = encode(text.split(), isa)
    assert result.ok, f"{text}: {result.message}"
    return result.word


# ──────────────────────────────────────────────
# TI encodings
# ──────────────────────────────────────────────

class TestTIEncoding:
    """Basic ReTI words, computed by hand from the field layout."""

    def test_load_family(self):
        assert word("LOADI ACC 5") == 0x73000005
        assert word("LOADI ACC -1") == 0x73FFFFFF
        assert word("LOAD IN1 10") == 0x4100000A
        assert word("LOADIN1 ACC 2") == 0x53000002
        assert word("LOADIN2 IN1 -1") == 0x61FFFFFF

    def test_store_family(self):
        assert word("STORE 5") == 0x80000005
        assert word("STOREIN1 3") == 0x90000003
        assert word("STOREIN2 0") == 0xA0000000
        assert word("MOVE ACC IN1") == 0xBD000000

    def test_compute_family(self):
        assert word("ADDI ACC 1") == 0x0F000001
        assert word("SUB ACC 3") == 0x2B000003
        assert word("OPLUSI IN2 0xFF") == 0x120000FF
        assert word("AND ACC 0") == 0x3B000000

    def test_jumps(self):
        assert word("JUMP 2") == 0xF8000002
        assert word("JUMP< 69") == 0xE0000045
        assert word("JUMP= -2") == 0xD0FFFFFE
        assert word("NOP") == 0xC0000000

    def test_case_insensitive(self):
        assert word("loadi acc 5") == word("LOADI ACC 5")
        assert word("Move Acc In1") == word("MOVE ACC IN1")

    def test_condition_spellings(self):
        assert word("JUMPgeq 3") == word("JUMP>= 3") == word("JUMP≥ 3")
        assert word("JUMPneq 3") == word("JUMP!= 3") == word("JUMP≠ 3")
        assert word("JUMPleq 3") == word("JUMP<= 3") == word("JUMP≤ 3")
        assert word("JUMPeq 3") == word("JUMP== 3") == word("JUMP= 3")

    def test_xor_alias(self):
        assert word("XOR ACC 4") == word("OPLUS ACC 4")
        assert word("XORI ACC 4") == word("OPLUSI ACC 4")

    def test_hex_and_binary_operands(self):
        assert word("LOADI ACC 0x10") == word("LOADI ACC 16")
        assert word("LOADI ACC 0b11") == word("LOADI ACC 3")


# ──────────────────────────────────────────────
# OS encodings
# ──────────────────────────────────────────────

class TestOSEncoding:
    """Extended ReTI words."""

    def test_register_compute(self):
        assert word("ADD ACC IN1", OS_ISA) == 0x10C80000
        assert decode(0x10C80000, OS_ISA).text == "ADD ACC IN1"

    def test_memory_and_immediate_compute(self):
        assert word("ADD ACC 5", OS_ISA) == 0x00C00005
        assert word("MULI DS 1024", OS_ISA) == 0x25C00400
        assert word("MODI ACC -1", OS_ISA) == 0x28FFFFFF

    def test_loads_and_stores(self):
        assert word("LOADI ACC -1", OS_ISA) == 0x70FFFFFF
        assert word("LOADIN SP ACC 1", OS_ISA) == 0x58C00001
        assert word("STORE ACC 7", OS_ISA) == 0x86000007
        assert word("STOREIN DS ACC -1", OS_ISA) == 0x97FFFFFF
        assert word("MOVE CS PC", OS_ISA) == 0xBC000000

    def test_interrupts(self):
        assert word("INT 2", OS_ISA) == 0xC2000002
        assert word("RTI", OS_ISA) == 0xC4000000
        assert decode(0xC2000002, OS_ISA).text == "INT 2"
        assert decode(0xC4000000, OS_ISA).text == "RTI"

    def test_os_registers_unknown_to_ti(self):
        assert encode("LOADI SP 1".split(), TI_ISA).status is AsmStatus.BAD_REGISTER
        assert encode("LOADI SP 1".split(), OS_ISA).ok

    def test_ti_only_mnemonics_rejected(self):
        assert encode("LOADIN1 ACC 1".split(), OS_ISA).status is AsmStatus.UNKNOWN_MNEMONIC
        assert encode("INT 1".split(), TI_ISA).status is AsmStatus.UNKNOWN_MNEMONIC
        assert encode("MUL ACC 1".split(), TI_ISA).status is AsmStatus.UNKNOWN_MNEMONIC


# ──────────────────────────────────────────────
# Errors
# ──────────────────────────────────────────────

class TestEncodeErrors:
    """encode() reports failures as a status, never an exception."""

    @pytest.mark.parametrize("text, status", [
        ("FOO ACC 1", AsmStatus.UNKNOWN_MNEMONIC),
        ("JUMP? 3", AsmStatus.UNKNOWN_MNEMONIC),
        ("LOADI ACC", AsmStatus.WRONG_ARITY),
        ("NOP 1", AsmStatus.WRONG_ARITY),
        ("LOADI XYZ 5", AsmStatus.BAD_REGISTER),
        ("MOVE ACC 5", AsmStatus.BAD_REGISTER),
        ("LOADI ACC abc", AsmStatus.BAD_NUMBER),
        ("JUMP 1.5", AsmStatus.BAD_NUMBER),
    ])
    def test_status(self, text, status):
        result = encode(text.split(), TI_ISA)
        assert result.status is status
        assert result.word == 0
        assert result.message

    def test_register_checked_before_number(self):
        assert encode("LOADI XYZ abc".split(), TI_ISA).status is AsmStatus.BAD_REGISTER

    def test_os_register_or_number(self):
        assert encode("ADD ACC FOO".split(), OS_ISA).status is AsmStatus.BAD_REGISTER
        assert encode("ADD ACC 1x".split(), OS_ISA).status is AsmStatus.BAD_NUMBER

    def test_empty(self):
        assert encode([], TI_ISA).status is AsmStatus.UNKNOWN_MNEMONIC

    def test_oversized_operand_truncated(self):
        result = encode("LOADI ACC 0x1000001".split(), TI_ISA)
        assert result.ok
        assert result.word == 0x73000001


# ──────────────────────────────────────────────
# Decoding
# ──────────────────────────────────────────────

class TestDecode:
    """Disassembly text and field breakdown."""

    def test_ti_texts(self):
        assert decode(0x73FFFFFF, TI_ISA).text == "LOADI ACC -1"
        assert decode(0x53000002, TI_ISA).text == "LOADIN1 ACC 2"
        assert decode(0x80000005, TI_ISA).text == "STORE 5"
        assert decode(0xBD000000, TI_ISA).text == "MOVE ACC IN1"
        assert decode(0xE0000045, TI_ISA).text == "JUMP< 69"
        assert decode(0xF8000002, TI_ISA).text == "JUMP 2"
        assert decode(0xC0000000, TI_ISA).text == "NOP"

    def test_invalid_words(self):
        assert decode(0x00000000, TI_ISA).text == INVALID_INSTRUCTION   # F = 000
        assert decode(0x1C000000, TI_ISA).text == INVALID_INSTRUCTION   # F = 111
        assert decode(0x30000000, OS_ISA).text == INVALID_INSTRUCTION   # I and R
        assert decode(0x60000000, OS_ISA).text == INVALID_INSTRUCTION   # LOAD mode 10
        assert decode(0xA0000000, OS_ISA).text == INVALID_INSTRUCTION   # STORE mode 10
        assert decode(0xC6000000, OS_ISA).text == INVALID_INSTRUCTION   # j = 11

    def test_fields(self):
        fields = decode(0x73000005, TI_ISA).fields
        assert fields[0] == ("Type", 2, "LOAD")
        assert ("D", 2, "ACC") in fields
        assert ("i", 24, "5") in fields

    def test_os_fields(self):
        fields = decode(0x10C80000, OS_ISA).fields
        assert ("F", 3, "ADD") in fields
        assert ("D", 3, "ACC") in fields
        assert ("S", 3, "IN1") in fields

    def test_unpack_structure(self):
        ins = TI_ISA.unpack(0x53000002)
        assert ins.op is OpType.LOAD
        assert ins.base is Reg.IN1
        assert ins.dest is Reg.ACC
        assert ins.signed_operand == 2


# ──────────────────────────────────────────────
# Round trip
# ──────────────────────────────────────────────

def _sources(isa):
    """Every mnemonic of a variant with a few registers and operands."""
    regs = isa.register_names
    nums = ["0", "1", "-1", "5"]
    lines = ["NOP"]
    for cond in ("", ">", "=", "≥", "<", "≠", "≤"):
        lines += [f"JUMP{cond} {n}" for n in nums]
    for name in isa.functions.values():
        for r in regs:
            lines += [f"{name}I {r} {n}" for n in nums]
            lines += [f"{name} {r} 7"]
            if isa.segmented:
                lines += [f"{name} {r} {s}" for s in regs]
    for r in regs:
        lines += [f"LOADI {r} {n}" for n in nums] + [f"LOAD {r} 3"]
        lines += [f"MOVE {s} {r}" for s in regs]
    if isa.segmented:
        for a in regs:
            for b in regs:
                lines += [f"LOADIN {a} {b} -2", f"STOREIN {a} {b} 4"]
            lines += [f"STORE {a} 9"]
        lines += ["INT 0", "INT 2", "RTI"]
    else:
        for r in regs:
            lines += [f"LOADIN1 {r} -3", f"LOADIN2 {r} 4"]
        lines += ["STORE 9", "STOREIN1 -1", "STOREIN2 2"]
    return lines


class TestRoundTrip:
    """decode() text always re-assembles to the same word."""

    @pytest.mark.parametrize("isa", [TI_ISA, OS_ISA], ids=["TI", "OS"])
    def test_assembled_words(self, isa):
        for line in _sources(isa):
            w = word(line, isa)
            text = decode(w, isa).text
            assert text != INVALID_INSTRUCTION, line
            assert word(text, isa) == w, f"{line} -> {text}"

    @pytest.mark.parametrize("isa", [TI_ISA, OS_ISA], ids=["TI", "OS"])
    def test_random_words(self, isa):
        rng = random.Random(1234)
        for _ in range(2000):
            w = rng.getrandbits(32)
            text = decode(w, isa).text
            if text == INVALID_INSTRUCTION:
                continue
            again = word(text, isa)
            assert decode(again, isa).text == text, f"{w:08X} -> {text}"
