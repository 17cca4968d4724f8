"""
ReTI Simulator — Disassembler (decode)

``decode(word, isa)`` produces the canonical mnemonic text for a word plus
a field-by-field explanation used by the instruction inspector:

    >>> decode(0x73FFFFFF, TI_ISA)
    Decoded(text='LOADI ACC -1', fields=[('Type', 2, 'LOAD'), ...])

The text is always re-assemblable: ``encode(text.split(), isa)`` gives
back the same word for every encoding the assembler can produce.
Undefined encodings never raise; they decode to ``INVALID_INSTRUCTION``.
"""

from typing import List, NamedTuple, Tuple

from .isa import CONDITION_SYMBOLS, Instruction, IsaSpec, JumpKind, Mode, OpType

__all__ = ['INVALID_INSTRUCTION', 'Decoded', 'decode', 'format_instruction']

INVALID_INSTRUCTION = "Invalid instruction"

Field = Tuple[str, int, str]


class Decoded(NamedTuple):
    text: str
    fields: List[Field]


def _operand_text(ins: Instruction) -> str:
    if ins.mode is Mode.DIRECT or ins.jump is JumpKind.INT:
        return str(ins.operand)
    return str(ins.signed_operand)


def format_instruction(ins: Instruction, isa: IsaSpec) -> str:
    """Render a structured instruction as assembler source text."""
    if not ins.valid:
        return INVALID_INSTRUCTION
    i = _operand_text(ins)

    if ins.op is OpType.COMPUTE:
        if ins.mode is Mode.REGISTER:
            return f"{ins.function} {ins.dest.name} {ins.source.name}"
        suffix = 'I' if ins.mode is Mode.IMMEDIATE else ''
        return f"{ins.function}{suffix} {ins.dest.name} {i}"

    if ins.op is OpType.LOAD:
        if ins.mode is Mode.IMMEDIATE:
            return f"LOADI {ins.dest.name} {i}"
        if ins.mode is Mode.DIRECT:
            return f"LOAD {ins.dest.name} {i}"
        if isa.implicit_operands:
            return f"LOADIN{int(ins.base)} {ins.dest.name} {i}"
        return f"LOADIN {ins.base.name} {ins.dest.name} {i}"

    if ins.op is OpType.STORE:
        if ins.mode is Mode.REGISTER:
            return f"MOVE {ins.source.name} {ins.dest.name}"
        if isa.implicit_operands:
            if ins.mode is Mode.DIRECT:
                return f"STORE {i}"
            return f"STOREIN{int(ins.base)} {i}"
        if ins.mode is Mode.DIRECT:
            return f"STORE {ins.source.name} {i}"
        return f"STOREIN {ins.base.name} {ins.source.name} {i}"

    if ins.jump is JumpKind.INT:
        return f"INT {i}"
    if ins.jump is JumpKind.RTI:
        return "RTI"
    if ins.is_nop:
        return "NOP"
    return f"JUMP{CONDITION_SYMBOLS[ins.condition]} {i}"


def _bits(word: int, hi: int, lo: int) -> int:
    return (word >> lo) & ((1 << (hi - lo + 1)) - 1)


def _reg_name(isa: IsaSpec, code: int) -> str:
    return isa.registers[code].name


def _explain(word: int, ins: Instruction, isa: IsaSpec) -> List[Field]:
    fields: List[Field] = [("Type", 2, ins.op.name)]
    rb = isa.register_bits
    ib = isa.operand_bits
    hi = 29

    if ins.op is OpType.COMPUTE:
        if isa.implicit_operands:
            fields.append(("M", 1, "memory" if _bits(word, 29, 29) else "immediate"))
        else:
            fields.append(("I", 1, str(_bits(word, 29, 29))))
            fields.append(("R", 1, str(_bits(word, 28, 28))))
        func_lo = 29 - 3 - (0 if isa.implicit_operands else 1)
        fields.append(("F", 3, ins.function or f"{_bits(word, func_lo + 2, func_lo):03b}"))
        fields.append(("D", rb, _reg_name(isa, _bits(word, ib + rb - 1, ib))))
        if ins.mode is Mode.REGISTER:
            fields.append(("S", rb, _reg_name(isa, _bits(word, ib - 1, ib - rb))))
            fields.append(("Unused", ib - rb, str(_bits(word, ib - rb - 1, 0))))
        else:
            fields.append(("i", ib, _operand_text(ins)))
        return fields

    if ins.op in (OpType.LOAD, OpType.STORE):
        fields.append(("Mode", 2, format_instruction(ins, isa).split()[0]))
        fields.append(("S", rb, _reg_name(isa, _bits(word, hi - 2, hi - 1 - rb))))
        fields.append(("D", rb, _reg_name(isa, _bits(word, ib + rb - 1, ib))))
        fields.append(("i", ib, _operand_text(ins)))
        return fields

    symbol = CONDITION_SYMBOLS.get(ins.condition, "NOP")
    fields.append(("Condition", 3, symbol or "always"))
    if isa.has_interrupts:
        fields.append(("J", 2, ins.jump.name))
    unused = 27 - ib - (2 if isa.has_interrupts else 0)
    fields.append(("Unused", unused, str(_bits(word, ib + unused - 1, ib))))
    fields.append(("i", ib, _operand_text(ins)))
    return fields


def decode(word: int, isa: IsaSpec) -> Decoded:
    """Decode a 32-bit word. Never raises."""
    word &= 0xFFFFFFFF
    ins = isa.unpack(word)
    if not ins.valid:
        return Decoded(INVALID_INSTRUCTION,
                       [("Type", 2, ins.op.name), ("Bits", 30, f"0x{word & 0x3FFFFFFF:08X}")])
    return Decoded(format_instruction(ins, isa), _explain(word, ins, isa))
