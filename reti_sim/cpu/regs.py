"""
ReTI Simulator — Register File

Register model:
  PC   — program counter, read unsigned
  IN1  — index register 1
  IN2  — index register 2
  ACC  — accumulator, the only register jump conditions look at
  SP   — stack pointer          (OS)
  BAF  — frame base address     (OS)
  CS   — code segment base      (OS)
  DS   — data segment base      (OS)
  I    — current instruction    (OS, internal)

Every register stores the raw 32-bit pattern. Reads apply the
two's-complement view to everything except PC.
"""

from typing import Dict, Iterable

from ..bits import WORD_MASK, to_signed
from ..isa import Reg


class Registers:
    """32-bit register file for one ISA variant."""

    __slots__ = ('_regs', '_names')

    def __init__(self, registers: Iterable[Reg]):
        self._names = tuple(registers)
        self._regs = [0] * (max(Reg) + 1)

    def get(self, reg: Reg) -> int:
        """Read a register. PC is unsigned, all others signed."""
        value = self._regs[reg]
        if reg is Reg.PC:
            return value
        return to_signed(value)

    def raw(self, reg: Reg) -> int:
        """Unsigned 32-bit pattern of a register."""
        return self._regs[reg]

    def set(self, reg: Reg, value: int):
        self._regs[reg] = value & WORD_MASK

    @property
    def pc(self) -> int:
        return self._regs[Reg.PC]

    @pc.setter
    def pc(self, value: int):
        self._regs[Reg.PC] = value & WORD_MASK

    @property
    def acc(self) -> int:
        return to_signed(self._regs[Reg.ACC])

    def snapshot(self) -> Dict[str, int]:
        """Name → value for every architectural register of the variant."""
        return {reg.name: self.get(reg) for reg in self._names}

    def display(self) -> str:
        return " ".join(f"{name}={value}" for name, value in self.snapshot().items())
