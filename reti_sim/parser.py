"""
ReTI Simulator — Source Tokenizer

Source format: one instruction per line, ``;`` starts a comment, tokens
are separated by whitespace. A line with no tokens left after stripping
the comment holds no instruction.

``.retias`` files are plain hex: every 8 hex digits form one word,
whitespace is ignored and a short final chunk is right-padded with ``0``.
"""

import re
from typing import List

_WHITESPACE = re.compile(r"\s+")
_HEX_WORD = re.compile(r"[0-9a-fA-F]{8}")


def decode_source(raw: bytes) -> str:
    """Bytes → text, tolerating a UTF-8 BOM and stray invalid bytes."""
    return raw.decode('utf-8-sig', errors='replace')


def split_lines(text: str) -> List[str]:
    return text.splitlines()


def parse_line(line: str, comment: str = ';') -> List[str]:
    """Tokens of one source line (empty for blank and comment-only lines)."""
    if comment:
        line = line.split(comment, 1)[0]
    return line.split()


def parse_string(text: str, comment: str = ';') -> List[List[str]]:
    """Token lists of all instruction lines, in order."""
    result = []
    for line in split_lines(text):
        tokens = parse_line(line, comment)
        if tokens:
            result.append(tokens)
    return result


def parse_hex_words(text: str) -> List[int]:
    """Parse ``.retias`` hex text into 32-bit words.

    Raises ValueError on non-hex characters.
    """
    digits = _WHITESPACE.sub('', text)
    words = []
    for k in range(0, len(digits), 8):
        chunk = digits[k:k + 8].ljust(8, '0')
        if not _HEX_WORD.fullmatch(chunk):
            raise ValueError(f"invalid hex word '{chunk}' at digit {k}")
        words.append(int(chunk, 16))
    return words
