"""
ReTI Simulator — Instruction Set Variants

Both variants share the same four instruction classes, selected by the two
top bits of the 32-bit word:

    31 30 | 29 ............................................ 0
    ──────┼──────────────────────────────────────────────────
     0  0 | COMPUTE   D := D <op> operand
     0  1 | LOAD      D := M(..) / immediate
     1  0 | STORE     M(..) := S,  MOVE S D
     1  1 | JUMP      PC := PC + i  if condition(ACC)

The variants differ in field widths, register sets and compute functions,
so each is described by one ``IsaSpec`` value carrying its tables and its
``pack``/``unpack`` functions. The codec and the CPU receive that value
explicitly; nothing else in the package branches on the variant.

TI word layout (24-bit operand, 2-bit register codes):

    COMPUTE  [29] M  [28:26] F  [25:24] D  [23:0] i
    LOAD     [29:28] mode  [25:24] D  [23:0] i
    STORE    [29:28] mode  [27:26] S  [25:24] D  [23:0] i
    JUMP     [29:27] c  [23:0] i

OS word layout (22-bit operand, 3-bit register codes):

    COMPUTE  [29] I  [28] R  [27:25] F  [24:22] D  [21:19] S | [21:0] i
    LOAD     [29:28] mode  [27:25] S  [24:22] D  [21:0] i
    STORE    [29:28] mode  [27:25] S  [24:22] D  [21:0] i
    JUMP     [29:27] c  [26:25] j  [21:0] i
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Callable, Dict, Optional, Tuple

from .bits import mask, to_signed
from .config import Variant

__all__ = [
    'Reg', 'OpType', 'Mode', 'JumpKind', 'Instruction', 'IsaSpec',
    'TI_ISA', 'OS_ISA', 'isa_for', 'condition_holds',
    'COND_GT', 'COND_EQ', 'COND_LT', 'COND_ALWAYS', 'COND_NEVER',
    'CONDITION_SPELLINGS', 'CONDITION_SYMBOLS',
]


class Reg(IntEnum):
    """Register codes. TI uses 0-3 only; I is the OS instruction register."""
    PC = 0
    IN1 = 1
    IN2 = 2
    ACC = 3
    SP = 4
    BAF = 5
    CS = 6
    DS = 7
    I = 8


class OpType(IntEnum):
    COMPUTE = 0
    LOAD = 1
    STORE = 2
    JUMP = 3


class Mode(Enum):
    DIRECT = 'direct'        # operand is a data address
    INDEXED = 'indexed'      # base register + signed displacement
    IMMEDIATE = 'immediate'  # operand is the signed value itself
    REGISTER = 'register'    # MOVE, OS register-register COMPUTE
    NONE = 'none'            # JUMP


class JumpKind(Enum):
    JUMP = 0
    INT = 1
    RTI = 2


# ── Jump conditions: one bit per ACC relation ──
COND_NEVER = 0b000   # NOP
COND_GT = 0b001
COND_EQ = 0b010
COND_LT = 0b100
COND_ALWAYS = 0b111

CONDITION_SYMBOLS: Dict[int, str] = {
    0b001: '>',
    0b010: '=',
    0b011: '≥',
    0b100: '<',
    0b101: '≠',
    0b110: '≤',
    0b111: '',
}

CONDITION_SPELLINGS: Dict[str, int] = {
    '': COND_ALWAYS,
    '>': COND_GT, 'gt': COND_GT,
    '=': COND_EQ, '==': COND_EQ, 'eq': COND_EQ,
    '<': COND_LT, 'lt': COND_LT,
    '>=': COND_GT | COND_EQ, '≥': COND_GT | COND_EQ, 'geq': COND_GT | COND_EQ,
    '<=': COND_LT | COND_EQ, '≤': COND_LT | COND_EQ, 'leq': COND_LT | COND_EQ,
    '!=': COND_GT | COND_LT, '≠': COND_GT | COND_LT, 'neq': COND_GT | COND_LT,
}


def condition_holds(condition: int, acc: int) -> bool:
    """Evaluate a 3-bit jump condition against the signed ACC value."""
    if acc > 0:
        return bool(condition & COND_GT)
    if acc == 0:
        return bool(condition & COND_EQ)
    return bool(condition & COND_LT)


@dataclass(frozen=True)
class Instruction:
    """Structured form of one instruction word.

    ``operand`` always holds the raw unsigned field; use ``signed_operand``
    for immediates and displacements. ``valid`` is False for encodings the
    variant leaves undefined.
    """
    op: OpType
    mode: Mode = Mode.NONE
    function: Optional[str] = None
    dest: Optional[Reg] = None
    source: Optional[Reg] = None
    base: Optional[Reg] = None
    operand: int = 0
    operand_bits: int = 24
    condition: int = 0
    jump: JumpKind = JumpKind.JUMP
    valid: bool = True

    @property
    def signed_operand(self) -> int:
        return to_signed(self.operand, self.operand_bits)

    @property
    def is_nop(self) -> bool:
        return (self.op is OpType.JUMP and self.jump is JumpKind.JUMP
                and self.condition == COND_NEVER)

    @property
    def writes_pc(self) -> bool:
        """COMPUTE / LOAD / MOVE whose destination is the PC."""
        if self.op in (OpType.COMPUTE, OpType.LOAD):
            return self.dest is Reg.PC
        return self.op is OpType.STORE and self.mode is Mode.REGISTER and self.dest is Reg.PC


@dataclass(frozen=True)
class IsaSpec:
    """Everything that differs between the TI and OS variants."""
    variant: Variant
    registers: Tuple[Reg, ...]
    register_bits: int
    operand_bits: int
    functions: Dict[int, str]
    unpack: Callable[[int], Instruction] = field(repr=False)
    pack: Callable[[Instruction], int] = field(repr=False)
    segmented: bool = False
    address_breakpoints: bool = False
    has_interrupts: bool = False
    implicit_operands: bool = False

    @property
    def function_codes(self) -> Dict[str, int]:
        return {name: code for code, name in self.functions.items()}

    @property
    def register_names(self) -> Tuple[str, ...]:
        return tuple(r.name for r in self.registers)

    def register(self, name: str) -> Optional[Reg]:
        """Look up an addressable register by (case-insensitive) name."""
        for reg in self.registers:
            if reg.name == name.upper():
                return reg
        return None

    @property
    def operand_mask(self) -> int:
        return mask(self.operand_bits)


# ══════════════════════════════════════════════
# TI variant
# ══════════════════════════════════════════════

TI_FUNCTIONS = {
    0b010: 'SUB',
    0b011: 'ADD',
    0b100: 'OPLUS',
    0b101: 'OR',
    0b110: 'AND',
}

# LOAD / STORE mode codes 1 and 2 select the index register
_TI_INDEX = {1: Reg.IN1, 2: Reg.IN2}
_TI_INDEX_CODE = {Reg.IN1: 1, Reg.IN2: 2}


def _ti_unpack(word: int) -> Instruction:
    op = OpType((word >> 30) & 0b11)
    operand = word & mask(24)
    dest = Reg((word >> 24) & 0b11)

    if op is OpType.COMPUTE:
        func = TI_FUNCTIONS.get((word >> 26) & 0b111)
        mode = Mode.DIRECT if (word >> 29) & 1 else Mode.IMMEDIATE
        return Instruction(op, mode, function=func, dest=dest, operand=operand,
                           valid=func is not None)

    sub = (word >> 28) & 0b11
    if op is OpType.LOAD:
        if sub == 0:
            return Instruction(op, Mode.DIRECT, dest=dest, operand=operand)
        if sub == 3:
            return Instruction(op, Mode.IMMEDIATE, dest=dest, operand=operand)
        return Instruction(op, Mode.INDEXED, dest=dest, base=_TI_INDEX[sub], operand=operand)

    if op is OpType.STORE:
        if sub == 0:
            return Instruction(op, Mode.DIRECT, source=Reg.ACC, operand=operand)
        if sub == 3:
            return Instruction(op, Mode.REGISTER, source=Reg((word >> 26) & 0b11),
                               dest=dest, operand=operand)
        return Instruction(op, Mode.INDEXED, source=Reg.ACC, base=_TI_INDEX[sub],
                           operand=operand)

    return Instruction(op, condition=(word >> 27) & 0b111, operand=operand)


def _ti_pack(ins: Instruction) -> int:
    word = int(ins.op) << 30
    operand = ins.operand & mask(24)

    if ins.op is OpType.COMPUTE:
        codes = {name: code for code, name in TI_FUNCTIONS.items()}
        word |= (1 if ins.mode is Mode.DIRECT else 0) << 29
        word |= codes[ins.function] << 26
        return word | int(ins.dest) << 24 | operand

    if ins.op is OpType.LOAD:
        sub = {Mode.DIRECT: 0, Mode.IMMEDIATE: 3}.get(ins.mode)
        if sub is None:
            sub = _TI_INDEX_CODE[ins.base]
        return word | sub << 28 | int(ins.dest) << 24 | operand

    if ins.op is OpType.STORE:
        if ins.mode is Mode.REGISTER:
            return word | 3 << 28 | int(ins.source) << 26 | int(ins.dest) << 24
        sub = 0 if ins.mode is Mode.DIRECT else _TI_INDEX_CODE[ins.base]
        return word | sub << 28 | operand

    if ins.condition == COND_NEVER:
        operand = 0
    return word | ins.condition << 27 | operand


TI_ISA = IsaSpec(
    variant=Variant.TI,
    registers=(Reg.PC, Reg.IN1, Reg.IN2, Reg.ACC),
    register_bits=2,
    operand_bits=24,
    functions=TI_FUNCTIONS,
    unpack=_ti_unpack,
    pack=_ti_pack,
    implicit_operands=True,
)


# ══════════════════════════════════════════════
# OS variant
# ══════════════════════════════════════════════

OS_FUNCTIONS = {
    0: 'ADD',
    1: 'SUB',
    2: 'MUL',
    3: 'DIV',
    4: 'MOD',
    5: 'OPLUS',
    6: 'OR',
    7: 'AND',
}


def _os_unpack(word: int) -> Instruction:
    op = OpType((word >> 30) & 0b11)
    operand = word & mask(22)
    reg_a = Reg((word >> 25) & 0b111)   # [27:25]
    reg_b = Reg((word >> 22) & 0b111)   # [24:22]

    def make(**kw):
        return Instruction(op, operand_bits=22, **kw)

    if op is OpType.COMPUTE:
        func = OS_FUNCTIONS[(word >> 25) & 0b111]
        immediate = (word >> 29) & 1
        register = (word >> 28) & 1
        if immediate and register:
            return make(function=func, dest=reg_b, operand=operand, valid=False)
        if register:
            return make(mode=Mode.REGISTER, function=func, dest=reg_b,
                        source=Reg((word >> 19) & 0b111))
        mode = Mode.IMMEDIATE if immediate else Mode.DIRECT
        return make(mode=mode, function=func, dest=reg_b, operand=operand)

    sub = (word >> 28) & 0b11
    if op is OpType.LOAD:
        if sub == 0:
            return make(mode=Mode.DIRECT, dest=reg_b, operand=operand)
        if sub == 1:
            return make(mode=Mode.INDEXED, base=reg_a, dest=reg_b, operand=operand)
        if sub == 3:
            return make(mode=Mode.IMMEDIATE, dest=reg_b, operand=operand)
        return make(operand=operand, valid=False)

    if op is OpType.STORE:
        if sub == 0:
            return make(mode=Mode.DIRECT, source=reg_a, operand=operand)
        if sub == 1:
            return make(mode=Mode.INDEXED, source=reg_a, base=reg_b, operand=operand)
        if sub == 3:
            return make(mode=Mode.REGISTER, source=reg_a, dest=reg_b, operand=operand)
        return make(operand=operand, valid=False)

    kind = (word >> 25) & 0b11
    condition = (word >> 27) & 0b111
    if kind == 3:
        return make(condition=condition, operand=operand, valid=False)
    return make(condition=condition, jump=JumpKind(kind), operand=operand)


def _os_pack(ins: Instruction) -> int:
    word = int(ins.op) << 30
    operand = ins.operand & mask(22)

    if ins.op is OpType.COMPUTE:
        codes = {name: code for code, name in OS_FUNCTIONS.items()}
        word |= codes[ins.function] << 25 | int(ins.dest) << 22
        if ins.mode is Mode.REGISTER:
            return word | 1 << 28 | int(ins.source) << 19
        if ins.mode is Mode.IMMEDIATE:
            word |= 1 << 29
        return word | operand

    if ins.op is OpType.LOAD:
        if ins.mode is Mode.INDEXED:
            return word | 1 << 28 | int(ins.base) << 25 | int(ins.dest) << 22 | operand
        sub = 3 if ins.mode is Mode.IMMEDIATE else 0
        return word | sub << 28 | int(ins.dest) << 22 | operand

    if ins.op is OpType.STORE:
        word |= int(ins.source) << 25
        if ins.mode is Mode.REGISTER:
            return word | 3 << 28 | int(ins.dest) << 22
        if ins.mode is Mode.INDEXED:
            return word | 1 << 28 | int(ins.base) << 22 | operand
        return word | operand

    if ins.jump is JumpKind.RTI:
        return word | JumpKind.RTI.value << 25
    if ins.jump is JumpKind.INT:
        return word | JumpKind.INT.value << 25 | operand
    if ins.condition == COND_NEVER:
        operand = 0
    return word | ins.condition << 27 | operand


OS_ISA = IsaSpec(
    variant=Variant.OS,
    registers=(Reg.PC, Reg.IN1, Reg.IN2, Reg.ACC, Reg.SP, Reg.BAF, Reg.CS, Reg.DS),
    register_bits=3,
    operand_bits=22,
    functions=OS_FUNCTIONS,
    unpack=_os_unpack,
    pack=_os_pack,
    segmented=True,
    address_breakpoints=True,
    has_interrupts=True,
)


def isa_for(variant) -> IsaSpec:
    return OS_ISA if variant is Variant.OS else TI_ISA
