"""
ReTI Simulator — Single-line Assembler (encode)

Turns one tokenized source line into one 32-bit instruction word.
ReTI has no labels or directives, so there is no second pass: every
line is independent and the loader simply calls ``encode`` per line.

Errors are returned, never raised:

    >>> encode(['LOADI', 'ACC', '5'], TI_ISA)
    AssembleResult(status=<AsmStatus.OK: 0>, word=1929379845, message='')

Each mnemonic maps to a *form*: the operand kinds it expects plus a
builder that produces a structured ``Instruction``. The ISA's ``pack``
function then lays the fields out for the selected variant.

Operand kinds:
  reg      — register name (PC, IN1, IN2, ACC; OS adds SP, BAF, CS, DS)
  num      — decimal, 0x hex or 0b binary literal with optional sign
  reg|num  — OS compute: a register selects the register-operand form
"""

import logging
from enum import IntEnum
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

from .bits import fits, parse_number
from .isa import (
    CONDITION_SPELLINGS, COND_NEVER, Instruction, IsaSpec, JumpKind, Mode,
    OpType, Reg,
)

__all__ = ['AsmStatus', 'AssembleResult', 'encode']

log = logging.getLogger(__name__)


class AsmStatus(IntEnum):
    OK = 0
    UNKNOWN_MNEMONIC = 1
    WRONG_ARITY = 2
    BAD_REGISTER = 3
    BAD_NUMBER = 4


class AssembleResult(NamedTuple):
    status: AsmStatus
    word: int
    message: str

    @property
    def ok(self) -> bool:
        return self.status is AsmStatus.OK


class _Form(NamedTuple):
    kinds: Tuple[str, ...]
    build: Callable[..., Instruction]


class _OperandError(Exception):
    def __init__(self, status: AsmStatus, message: str):
        super().__init__(message)
        self.status = status


FUNCTION_ALIASES = {'XOR': 'OPLUS', 'XORI': 'OPLUSI'}


# ──────────────────────────────────────────────
# Mnemonic → form lookup
# ──────────────────────────────────────────────

def _compute_form(name: str, isa: IsaSpec) -> Optional[_Form]:
    name = FUNCTION_ALIASES.get(name, name)
    codes = isa.function_codes
    bits = isa.operand_bits

    if name in codes:
        if isa.segmented:
            def build_memory(d, x):
                if isinstance(x, Reg):
                    return Instruction(OpType.COMPUTE, Mode.REGISTER, function=name,
                                       dest=d, source=x, operand_bits=bits)
                return Instruction(OpType.COMPUTE, Mode.DIRECT, function=name,
                                   dest=d, operand=x, operand_bits=bits)
            return _Form(('reg', 'reg|num'), build_memory)
        return _Form(('reg', 'num'), lambda d, i: Instruction(
            OpType.COMPUTE, Mode.DIRECT, function=name, dest=d, operand=i,
            operand_bits=bits))

    if name.endswith('I') and name[:-1] in codes:
        func = name[:-1]
        return _Form(('reg', 'num'), lambda d, i: Instruction(
            OpType.COMPUTE, Mode.IMMEDIATE, function=func, dest=d, operand=i,
            operand_bits=bits))
    return None


def _jump_form(name: str, isa: IsaSpec) -> Optional[_Form]:
    condition = CONDITION_SPELLINGS.get(name[len('JUMP'):].lower())
    if condition is None:
        return None
    return _Form(('num',), lambda i: Instruction(
        OpType.JUMP, condition=condition, operand=i, operand_bits=isa.operand_bits))


def _ti_form(name: str) -> Optional[_Form]:
    load = lambda mode, base=None: _Form(('reg', 'num'), lambda d, i: Instruction(
        OpType.LOAD, mode, dest=d, base=base, operand=i))
    store = lambda mode, base=None: _Form(('num',), lambda i: Instruction(
        OpType.STORE, mode, source=Reg.ACC, base=base, operand=i))
    return {
        'LOAD': load(Mode.DIRECT),
        'LOADI': load(Mode.IMMEDIATE),
        'LOADIN1': load(Mode.INDEXED, Reg.IN1),
        'LOADIN2': load(Mode.INDEXED, Reg.IN2),
        'STORE': store(Mode.DIRECT),
        'STOREIN1': store(Mode.INDEXED, Reg.IN1),
        'STOREIN2': store(Mode.INDEXED, Reg.IN2),
        'MOVE': _Form(('reg', 'reg'), lambda s, d: Instruction(
            OpType.STORE, Mode.REGISTER, source=s, dest=d)),
    }.get(name)


def _os_form(name: str) -> Optional[_Form]:
    def ins(op, mode=Mode.NONE, **kw):
        return Instruction(op, mode, operand_bits=22, **kw)

    return {
        'LOAD': _Form(('reg', 'num'), lambda d, i: ins(
            OpType.LOAD, Mode.DIRECT, dest=d, operand=i)),
        'LOADI': _Form(('reg', 'num'), lambda d, i: ins(
            OpType.LOAD, Mode.IMMEDIATE, dest=d, operand=i)),
        'LOADIN': _Form(('reg', 'reg', 'num'), lambda s, d, i: ins(
            OpType.LOAD, Mode.INDEXED, base=s, dest=d, operand=i)),
        'STORE': _Form(('reg', 'num'), lambda s, i: ins(
            OpType.STORE, Mode.DIRECT, source=s, operand=i)),
        'STOREIN': _Form(('reg', 'reg', 'num'), lambda d, s, i: ins(
            OpType.STORE, Mode.INDEXED, base=d, source=s, operand=i)),
        'MOVE': _Form(('reg', 'reg'), lambda s, d: ins(
            OpType.STORE, Mode.REGISTER, source=s, dest=d)),
        'INT': _Form(('num',), lambda i: ins(
            OpType.JUMP, jump=JumpKind.INT, operand=i)),
        'RTI': _Form((), lambda: ins(OpType.JUMP, jump=JumpKind.RTI)),
    }.get(name)


def _lookup(name: str, isa: IsaSpec) -> Optional[_Form]:
    if name == 'NOP':
        return _Form((), lambda: Instruction(OpType.JUMP, condition=COND_NEVER,
                                             operand_bits=isa.operand_bits))
    if name.startswith('JUMP'):
        return _jump_form(name, isa)
    form = _os_form(name) if isa.segmented else _ti_form(name)
    return form or _compute_form(name, isa)


# ──────────────────────────────────────────────
# Operand parsing
# ──────────────────────────────────────────────

def _operand(token: str, kind: str, isa: IsaSpec):
    if kind == 'reg' or (kind == 'reg|num' and isa.register(token) is not None):
        reg = isa.register(token)
        if reg is None:
            raise _OperandError(AsmStatus.BAD_REGISTER, f"Unknown register '{token}'")
        return reg

    value = parse_number(token)
    if value is None:
        status = AsmStatus.BAD_REGISTER if kind == 'reg|num' and token.isalpha() \
            else AsmStatus.BAD_NUMBER
        what = "register or number" if kind == 'reg|num' else "number"
        raise _OperandError(status, f"Expected {what}, got '{token}'")
    if not fits(value, isa.operand_bits):
        log.warning("operand %s does not fit in %d bits, truncated", token, isa.operand_bits)
    return value & isa.operand_mask


def encode(tokens: Sequence[str], isa: IsaSpec) -> AssembleResult:
    """Encode one tokenized instruction. Never raises.

    Checks run in order: mnemonic, operand count, registers, numbers.
    """
    if not tokens:
        return AssembleResult(AsmStatus.UNKNOWN_MNEMONIC, 0, "Empty instruction")

    name = tokens[0].upper()
    form = _lookup(name, isa)
    if form is None:
        return AssembleResult(AsmStatus.UNKNOWN_MNEMONIC, 0,
                              f"Unknown instruction '{tokens[0]}'")

    args = tokens[1:]
    if len(args) != len(form.kinds):
        return AssembleResult(
            AsmStatus.WRONG_ARITY, 0,
            f"'{tokens[0]}' expects {len(form.kinds)} operand(s), got {len(args)}")

    # Registers are validated before numbers so the reported error is stable
    order = sorted(range(len(args)), key=lambda k: form.kinds[k] != 'reg')
    values: List = [None] * len(args)
    try:
        for k in order:
            values[k] = _operand(args[k], form.kinds[k], isa)
    except _OperandError as e:
        return AssembleResult(e.status, 0, str(e))

    word = isa.pack(form.build(*values))
    return AssembleResult(AsmStatus.OK, word, "")

