"""
Loader Tests for the ReTI simulator.

Checks the line ↔ instruction maps, fail-fast assembly errors, the
``.retias`` hex format and the tokenizer underneath.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from reti_sim.assembler import AsmStatus
from reti_sim.config import ReTISettings, Variant
from reti_sim.isa import TI_ISA
from reti_sim.loader import NO_INSTRUCTION, build_hex_map, build_source_map, load_program
from reti_sim.parser import parse_hex_words, parse_line, parse_string


PROGRAM = """; header
LOADI ACC 1

ADDI ACC 2 ; add
STORE 0
"""


class TestTokenizer:
    """Comment stripping and whitespace splitting."""

    def test_parse_line(self):
        assert parse_line("  LOADI   ACC\t5  ; set") == ["LOADI", "ACC", "5"]
        assert parse_line("; only a comment") == []
        assert parse_line("   ") == []

    def test_custom_comment(self):
        assert parse_line("NOP # x", comment="#") == ["NOP"]

    def test_parse_string(self):
        assert parse_string(PROGRAM) == [["LOADI", "ACC", "1"], ["ADDI", "ACC", "2"], ["STORE", "0"]]

    def test_hex_words(self):
        assert parse_hex_words("73000005 0F000001") == [0x73000005, 0x0F000001]
        assert parse_hex_words("7300\n0005") == [0x73000005]
        assert parse_hex_words("7300") == [0x73000000]
        with pytest.raises(ValueError):
            parse_hex_words("7300000G")


class TestSourceMap:
    """build_source_map() and the maps it produces."""

    def test_maps(self):
        source, error = build_source_map(PROGRAM, TI_ISA, "prog.reti")
        assert error is None
        assert source.line_to_instr == [NO_INSTRUCTION, 0, NO_INSTRUCTION, 1, 2]
        assert source.instr_to_line == [1, 3, 4]
        assert source.size == 3
        assert len(source.words) == 3

    def test_map_helpers(self):
        source, _ = build_source_map(PROGRAM, TI_ISA)
        assert source.instruction_at(3) == 1
        assert source.instruction_at(2) is None
        assert source.instruction_at(99) is None
        assert source.line_of(2) == 4
        assert source.line_of(3) is None
        assert source.next_instruction_line(2) == 3
        assert source.next_instruction_line(5) is None

    def test_maps_are_inverse(self):
        source, _ = build_source_map(PROGRAM, TI_ISA)
        for instr, line in enumerate(source.instr_to_line):
            assert source.line_to_instr[line] == instr

    def test_first_error_aborts(self):
        source, error = build_source_map("LOADI ACC 1\nLOADI ACC 2\nBOGUS 1\nLOADI ACC x\n",
                                         TI_ISA, "prog.reti")
        assert source is None
        assert error.line == 2
        assert error.status is AsmStatus.UNKNOWN_MNEMONIC
        assert error.text == "BOGUS 1"
        assert str(error).startswith("prog.reti:3: ")

    def test_hex_map(self):
        source, error = build_hex_map("73000005\n0F000001\n", TI_ISA, "p.retias")
        assert error is None
        assert source.lines == ["LOADI ACC 5", "ADDI ACC 1"]
        assert source.line_to_instr == [0, 1]
        assert source.instr_to_line == [0, 1]

    def test_bad_hex(self):
        source, error = build_hex_map("zz", TI_ISA, "p.retias")
        assert source is None
        assert error.status is AsmStatus.BAD_NUMBER


class TestLoadProgram:
    """load_program() builds a fresh CPU per load."""

    def test_ti(self):
        result = load_program(PROGRAM.encode(), ReTISettings(), data=[5])
        assert result.ok
        program = result.program
        assert program.main.size == 3
        assert program.isr is None
        assert program.cpu.get_data(0) == 5

    def test_error_result(self):
        result = load_program(b"LOADI ACC\n", ReTISettings(), name="bad.reti")
        assert not result.ok
        assert result.program is None
        assert result.error.status is AsmStatus.WRONG_ARITY

    def test_retias_by_name(self):
        result = load_program(b"73000005", ReTISettings(), name="prog.RETIAS")
        assert result.ok
        assert result.program.main.words == [0x73000005]

    def test_utf8_bom(self):
        result = load_program(b"\xef\xbb\xbfLOADI ACC 1\n", ReTISettings())
        assert result.ok

    def test_isr_ignored_for_ti(self):
        result = load_program(b"NOP\n", ReTISettings(), isr_source=b"RTI\n")
        assert result.ok
        assert result.program.isr is None

    def test_os_with_isr(self):
        settings = ReTISettings(variant=Variant.OS)
        result = load_program(b"INT 0\nNOP\n", settings, isr_source=b"RTI\n", isr_name="isr.reti")
        assert result.ok
        program = result.program
        assert program.isr.words == [0xC4000000]
        assert program.isr_offset == 2
        assert program.cpu.code_size == 3

    def test_isr_error_reported_against_isr(self):
        settings = ReTISettings(variant=Variant.OS)
        result = load_program(b"NOP\n", settings, isr_source=b"NOP\nRTI 1\n", isr_name="isr.reti")
        assert not result.ok
        assert result.error.source == "isr.reti"
        assert result.error.line == 1

    def test_each_load_is_a_fresh_cpu(self):
        a = load_program(PROGRAM.encode(), ReTISettings()).program.cpu
        b = load_program(PROGRAM.encode(), ReTISettings()).program.cpu
        a.run()
        assert a is not b
        assert b.regs.pc == 0
        assert b.get_data(0) == 0
