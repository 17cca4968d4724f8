"""
ReTI Simulator — ALU Operations

All operations take signed 32-bit operands (dest value first) and return a
result that the caller masks back to 32 bits, so overflow wraps.

DIV truncates toward zero and MOD takes the sign of the dividend, the
usual machine semantics. A zero divisor raises ``DivisionByZero``, which the
CPU turns into a runtime fault.
"""

from typing import Callable, Dict


class DivisionByZero(ArithmeticError):
    pass


def _div(a: int, b: int) -> int:
    if b == 0:
        raise DivisionByZero("division by zero")
    q = abs(a) // abs(b)
    return q if (a < 0) == (b < 0) else -q


def _mod(a: int, b: int) -> int:
    if b == 0:
        raise DivisionByZero("modulo by zero")
    return a - b * _div(a, b)


OPERATIONS: Dict[str, Callable[[int, int], int]] = {
    'ADD': lambda a, b: a + b,
    'SUB': lambda a, b: a - b,
    'MUL': lambda a, b: a * b,
    'DIV': _div,
    'MOD': _mod,
    'OPLUS': lambda a, b: a ^ b,
    'OR': lambda a, b: a | b,
    'AND': lambda a, b: a & b,
}


def compute(function: str, a: int, b: int) -> int:
    return OPERATIONS[function](a, b)
