"""
Word helper and settings tests for the ReTI simulator.

Covers literal parsing, two's-complement views, display formatting and
the settings mapping used by JSON configuration files.
"""
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from reti_sim.bits import fits, format_word, mask, parse_number, to_signed, word_to_hex
from reti_sim.config import ConfigError, Radix, ReTISettings, Variant, parse_radix, parse_variant


# ──────────────────────────────────────────────
# Bits
# ──────────────────────────────────────────────

class TestNumbers:
    """Operand literal parsing."""

    def test_decimal(self):
        assert parse_number("42") == 42
        assert parse_number("-7") == -7
        assert parse_number("+3") == 3

    def test_hex_and_binary(self):
        assert parse_number("0x1F") == 31
        assert parse_number("-0x10") == -16
        assert parse_number("0b101") == 5
        assert parse_number("0XFF") == 255

    def test_rejects_garbage(self):
        for text in ("", "abc", "0x", "--1", "1.5", "ACC", "0b102"):
            assert parse_number(text) is None, text

    def test_rejects_underscores_and_non_ascii_digits(self):
        for text in ("1_0", "0x_1F", "0b1_0", "\u0661\u0662", "4\u00b2"):
            assert parse_number(text) is None, text

    def test_signed_views(self):
        assert to_signed(0xFFFFFFFF) == -1
        assert to_signed(0x7FFFFFFF) == 0x7FFFFFFF
        assert to_signed(0xFFFFFF, 24) == -1
        assert to_signed(0x200000, 22) == -(1 << 21)
        assert mask(0) == 0
        assert mask(32) == 0xFFFFFFFF

    def test_fits(self):
        assert fits(-(1 << 23), 24)
        assert fits((1 << 24) - 1, 24)
        assert not fits(1 << 24, 24)
        assert not fits(-(1 << 23) - 1, 24)


class TestFormatting:
    """Register / memory display in each radix."""

    def test_decimal_signed_and_unsigned(self):
        assert format_word(0xFFFFFFFF) == "-1"
        assert format_word(0xFFFFFFFF, signed=False) == "4294967295"

    def test_hex_and_binary_show_full_pattern(self):
        assert format_word(-1, 16) == "0xFFFFFFFF"
        assert format_word(5, 2) == "0b" + "0" * 29 + "101"

    def test_hex_word(self):
        assert word_to_hex(0x73000005) == "73000005"


# ──────────────────────────────────────────────
# Settings
# ──────────────────────────────────────────────

class TestSettings:
    """ReTISettings and its mapping constructor."""

    def test_defaults(self):
        s = ReTISettings()
        assert s.variant is Variant.TI
        assert s.radix is Radix.DECIMAL
        assert s.comment == ";"
        assert not s.is_os

    def test_from_mapping(self):
        s = ReTISettings.from_mapping({
            "version": "Extended ReTI (OS)",
            "number_style": "Hexadecimal",
            "sram_size": "2048",
            "unknown_key": 1,
        })
        assert s.is_os
        assert s.radix is Radix.HEXADECIMAL
        assert s.sram_size == 2048

    def test_bad_values_raise(self):
        with pytest.raises(ConfigError):
            ReTISettings.from_mapping({"version": "ReTI 3000"})
        with pytest.raises(ConfigError):
            ReTISettings.from_mapping({"number_style": "octal"})
        with pytest.raises(ConfigError):
            ReTISettings.from_mapping({"data_size": 0})

    def test_short_names(self):
        assert parse_variant("os") is Variant.OS
        assert parse_variant("Basic ReTI (TI)") is Variant.TI
        assert parse_radix("hex") is Radix.HEXADECIMAL
        assert ReTISettings().with_variant("os").variant is Variant.OS
