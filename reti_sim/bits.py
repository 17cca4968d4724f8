"""
ReTI Simulator — 32-bit Word Helpers

Everything in ReTI is a 32-bit word. Registers and memory cells store the
raw unsigned pattern; the signed view is computed on demand.

  mask(n)         — low n bits set (0 <= n <= 32)
  to_signed(v, n) — two's-complement view of an n-bit field
  parse_number()  — decimal / 0x hex / 0b binary literals with optional sign
  format_word()   — display a word in the configured radix
"""

from typing import Optional

WORD_BITS = 32
WORD_MASK = 0xFFFFFFFF


def mask(length: int) -> int:
    """Return an integer with the low ``length`` bits set."""
    if not 0 <= length <= WORD_BITS:
        raise ValueError(f"bit length out of range: {length}")
    return (1 << length) - 1


def to_signed(value: int, bits: int = WORD_BITS) -> int:
    """Interpret the low ``bits`` of value as two's complement."""
    value &= mask(bits)
    if value & (1 << (bits - 1)):
        return value - (1 << bits)
    return value


def fits(value: int, bits: int) -> bool:
    """True if value is representable in ``bits`` either signed or unsigned."""
    return -(1 << (bits - 1)) <= value <= mask(bits)


_DIGITS = {2: "01", 10: "0123456789", 16: "0123456789abcdef"}


def parse_number(text: str) -> Optional[int]:
    """Parse an operand literal. Returns None if the text is not a number.

    Accepted forms: ``42``, ``-7``, ``+3``, ``0x1F``, ``-0x10``, ``0b101``.
    """
    s = text.strip().lower()
    if not s:
        return None
    sign = 1
    if s[0] in "+-":
        if s[0] == "-":
            sign = -1
        s = s[1:]
    base = 10
    if s.startswith("0x"):
        base, s = 16, s[2:]
    elif s.startswith("0b"):
        base, s = 2, s[2:]
    if not s or s.strip(_DIGITS[base]):
        return None
    return sign * int(s, base)


def format_word(value: int, radix: int = 10, signed: bool = True) -> str:
    """Format a register or memory value for display.

    Decimal shows the signed view unless ``signed`` is False; hexadecimal
    and binary always show the full 32-bit pattern.
    """
    if radix == 16:
        return f"0x{value & WORD_MASK:08X}"
    if radix == 2:
        return f"0b{value & WORD_MASK:032b}"
    if signed:
        return str(to_signed(value))
    return str(value & WORD_MASK)


def word_to_hex(word: int) -> str:
    """Eight hex digits, the unit of the ``.retias`` format."""
    return f"{word & WORD_MASK:08x}"
