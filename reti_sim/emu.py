"""
ReTI Simulator — CPU Core

One emulator class serves both ISA variants; everything variant-specific
comes from the ``IsaSpec`` value it is built with.

Execution model (``step``):
  1. Check PC lies inside the loaded program (else END)
  2. Fetch the word at PC (TI: code region, OS: device selected by PC)
  3. Unpack it into a structured Instruction (undefined → ILLEGAL)
  4. Execute the class handler → registers, memory, PC
  5. Tick peripherals (OS UART)

PC update rules:
  - COMPUTE / LOAD / MOVE writing PC leave the written value alone
  - JUMP adds the signed displacement when the condition holds, else 1
  - INT i pushes PC + 1 and enters the routine from vector table entry i
  - RTI pops the return address
  - everything else adds 1

Termination reasons:
  - END:       PC outside the loaded program
  - ILLEGAL:   undefined encoding
  - ERROR:     runtime fault (memory range, read-only write, division by
               zero, missing interrupt vector, RTI outside an interrupt)
  - HALT:      ``run`` saw an instruction leave PC unchanged (JUMP 0)
  - BREAK:     ``run`` reached a PC breakpoint
  - TIMEOUT:   ``run`` step limit exceeded
  - CANCELLED: ``run`` cancellation token fired

Faults never escape ``step``; the message is kept in ``last_error``.

OS SRAM layout after boot:

    SRAM+0 .. +2         interrupt vector table      (BAF = SRAM+2)
    SRAM+3 ..            main program                (CS  = SRAM+3)
           ..            interrupt service routine
           ..            data segment                (DS)
           .. end        stack, grows down           (SP)
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from .assembler import encode
from .bits import WORD_MASK, format_word, to_signed
from .cancellation import CancellationToken, is_cancelled
from .config import ReTISettings
from .cpu import alu
from .cpu.regs import Registers
from .disassembler import decode
from .isa import (
    Instruction, IsaSpec, JumpKind, Mode, OpType, Reg, condition_holds,
)
from .mem.memory import (
    DEVICE_SHIFT, EPROM, EPROM_SIZE, OFFSET_MASK, SRAM, SRAM_BASE, UART_BASE,
    MemoryFault, OSMemoryMap, TIMemory, device_of,
)
from .periph.uart import UARTPeripheral

log = logging.getLogger(__name__)

PROCESS_START = 3        # SRAM words reserved for the interrupt vector table


class StopReason(Enum):
    END = 'END'
    ILLEGAL = 'ILLEGAL'
    ERROR = 'ERROR'
    HALT = 'HALT'
    BREAK = 'BREAK'
    TIMEOUT = 'TIMEOUT'
    CANCELLED = 'CANCELLED'


class CpuFault(Exception):
    """Runtime fault raised by an instruction handler."""


@dataclass
class ReTIState:
    """Exported machine state after (or during) a run."""
    registers: Dict[str, int]
    data: Dict[int, int]
    steps: int
    stop_reason: Optional[StopReason] = None
    error: Optional[str] = None
    uart_output: bytes = b""
    interrupt_stack: List[int] = field(default_factory=list)


def boot_program(code_length: int, data_segment_size: int) -> List[str]:
    """Source of the EPROM boot code for a program of ``code_length`` words."""
    stack_top = PROCESS_START + code_length + data_segment_size - 1
    return [
        "LOADI DS -2097152",
        "MULI DS 1024",                     # DS = 0x80000000, SRAM base
        "MOVE DS SP",
        "MOVE DS BAF",
        "MOVE DS CS",
        f"ADDI SP {stack_top}",
        f"ADDI BAF {PROCESS_START - 1}",
        f"ADDI CS {PROCESS_START}",
        f"ADDI DS {PROCESS_START + code_length}",
        "MOVE CS PC",
    ]


class ReTIEmulator:
    """ReTI CPU for either ISA variant.

    Usage:
        emu = ReTIEmulator(TI_ISA, code=[...], data=[...])
        reason = emu.run(max_steps=10_000)
        print(emu.dump_state())

    For the OS variant call ``boot()`` (``run`` does it for you) before
    single-stepping the program itself.
    """

    DEFAULT_MAX_STEPS = 1_000_000

    def __init__(self, isa: IsaSpec, code: Sequence[int] = (), data: Sequence[int] = (),
                 isr: Sequence[int] = (), settings: Optional[ReTISettings] = None):
        self.isa = isa
        self.settings = settings or ReTISettings(variant=isa.variant)
        regs = isa.registers + ((Reg.I,) if isa.has_interrupts else ())
        self.regs = Registers(regs)

        self.main_size = len(code)
        self.isr_size = len(isr) if isa.has_interrupts else 0
        self.ir = 0
        self.steps = 0
        self.last_error: Optional[str] = None
        self.stop_reason: Optional[StopReason] = None

        self._interrupt_stack: List[int] = []
        self._breakpoints: Set[int] = set()
        self.boot_rom: List[int] = []
        self.uart: Optional[UARTPeripheral] = None

        if isa.segmented:
            self.uart = UARTPeripheral()
            self.mem = OSMemoryMap(self.settings.sram_size, self.uart)
            self._layout(list(code), list(isr)[:self.isr_size], list(data))
            self.booted = False
        else:
            self.mem = TIMemory(code, self.settings.data_size)
            self.mem.load_data(list(data))
            self.booted = True

        self._dispatch = self._build_dispatch()

    # ══════════════════════════════════════════════
    # Loading (OS)
    # ══════════════════════════════════════════════

    def _layout(self, code: List[int], isr: List[int], data: List[int]):
        code_length = len(code) + len(isr)
        segment = max(self.settings.data_segment_size, len(data))
        needed = PROCESS_START + code_length + segment
        if needed > self.mem.sram.size:
            raise MemoryFault(f"program needs {needed} SRAM words, only {self.mem.sram.size} available")

        self.mem.sram.load(code, PROCESS_START)
        self.mem.sram.load(isr, PROCESS_START + len(code))
        self.mem.sram.load(data, PROCESS_START + code_length)
        if isr:
            entry = SRAM_BASE + PROCESS_START + len(code)
            self.mem.sram.load([entry] * PROCESS_START, 0)
        self.data_segment_size = segment

        self.boot_rom = []
        for line in boot_program(code_length, segment):
            result = encode(line.split(), self.isa)
            self.boot_rom.append(result.word)
        self.mem.eprom.load(self.boot_rom)
        self.mem.eprom.load([SRAM_BASE, UART_BASE], EPROM_SIZE - 2)

    def boot(self) -> Optional[StopReason]:
        """Run the boot ROM until PC enters the code segment (OS only)."""
        if self.booted:
            return None
        for _ in range(len(self.boot_rom) + 1):
            if device_of(self.regs.pc) != EPROM:
                break
            reason = self.step()
            if reason is not None:
                return reason
        self.booted = True
        self.steps = 0
        log.debug("boot complete: %s", self.regs.display())
        return None

    # ══════════════════════════════════════════════
    # Register / memory access
    # ══════════════════════════════════════════════

    def _reg(self, reg: Union[Reg, str]) -> Reg:
        if isinstance(reg, Reg):
            return reg
        found = self.isa.register(reg)
        if found is None:
            raise KeyError(f"unknown register {reg!r}")
        return found

    def get_register(self, reg: Union[Reg, str]) -> int:
        return self.regs.get(self._reg(reg))

    def set_register(self, reg: Union[Reg, str], value: int):
        self.regs.set(self._reg(reg), value)

    def data_address(self, address: int) -> int:
        """Absolute address of a data access (OS: DS-relative below 2^30)."""
        address &= WORD_MASK
        if not self.isa.segmented or address >> DEVICE_SHIFT:
            return address
        ds = self.regs.raw(Reg.DS)
        return (ds & ~OFFSET_MASK & WORD_MASK) | (((ds & OFFSET_MASK) + address) & OFFSET_MASK)

    def read_data(self, address: int) -> int:
        return self.mem.read(self.data_address(address))

    def write_data(self, address: int, value: int):
        self.mem.write(self.data_address(address), value)

    def get_data(self, address: int) -> Optional[int]:
        """Signed data word, or None when the address is out of range."""
        try:
            return to_signed(self.mem.read(self.data_address(address), notify=False))
        except MemoryFault:
            return None

    def set_data(self, address: int, value: int) -> bool:
        try:
            self.mem.write(self.data_address(address), value, notify=False)
        except MemoryFault:
            return False
        return True

    def get_code(self, address: int) -> Optional[int]:
        try:
            return self.mem.fetch(address & WORD_MASK)
        except MemoryFault:
            return None

    def get_current_instruction(self) -> Optional[int]:
        return self.get_code(self.regs.pc)

    def watch_data(self, address: int, callback: Callable[[int, int, int, bool], None]):
        """Call ``callback(addr, old, new, is_write)`` on every access to a data address."""
        self.mem.add_watchpoint(self.data_address(address), callback)

    def clear_data_watches(self):
        self.mem.clear_watchpoints()

    # ══════════════════════════════════════════════
    # Program geometry
    # ══════════════════════════════════════════════

    @property
    def code_size(self) -> int:
        return self.main_size + self.isr_size

    @property
    def code_base(self) -> int:
        """PC of instruction 0 (OS: CS)."""
        if self.isa.segmented:
            return self.regs.raw(Reg.CS)
        return 0

    @property
    def in_isr(self) -> bool:
        return bool(self._interrupt_stack)

    @property
    def interrupt_stack(self) -> Tuple[int, ...]:
        return tuple(self._interrupt_stack)

    def is_valid_pc(self, pc: Optional[int] = None) -> bool:
        """True if ``pc`` addresses an instruction of the running program."""
        if pc is None:
            pc = self.regs.pc
        if self.isa.segmented and not self.booted:
            return device_of(pc) == EPROM and pc < len(self.boot_rom)
        offset = pc - self.code_base
        if self.in_isr:
            return self.main_size <= offset < self.code_size
        return 0 <= offset < self.main_size

    # ══════════════════════════════════════════════
    # Execution
    # ══════════════════════════════════════════════

    def step(self) -> Optional[StopReason]:
        """Execute one instruction. Returns StopReason if stopped, else None."""
        pc = self.regs.pc
        if not self.is_valid_pc(pc):
            return StopReason.END

        try:
            word = self.mem.fetch(pc)
        except MemoryFault as e:
            self.last_error = str(e)
            return StopReason.ERROR

        self.ir = word
        if self.isa.has_interrupts:
            self.regs.set(Reg.I, word)

        ins = self.isa.unpack(word)
        if not ins.valid:
            self.last_error = f"invalid instruction 0x{word:08X} at PC {pc}"
            return StopReason.ILLEGAL

        try:
            self._dispatch[ins.op](ins)
        except (CpuFault, MemoryFault, alu.DivisionByZero) as e:
            self.last_error = f"{e} (PC {pc}: {decode(word, self.isa).text})"
            log.debug("fault: %s", self.last_error)
            return StopReason.ERROR

        self.steps += 1
        if self.uart is not None:
            self.uart.tick()
        return None

    def run(self, max_steps: Optional[int] = None,
            cancel: Optional[CancellationToken] = None,
            on_step: Optional[Callable[["ReTIEmulator"], None]] = None) -> StopReason:
        """Run until termination condition.

        Args:
            max_steps: Instruction limit (default DEFAULT_MAX_STEPS).
            cancel:    Token checked before every instruction.
            on_step:   Called with the emulator after every instruction.
        """
        reason = self.boot()
        if reason is not None:
            return self._stopped(reason)

        limit = max_steps or self.DEFAULT_MAX_STEPS
        for count in range(limit):
            if is_cancelled(cancel):
                return self._stopped(StopReason.CANCELLED)
            pc = self.regs.pc
            if count and pc in self._breakpoints:
                return self._stopped(StopReason.BREAK)
            reason = self.step()
            if on_step is not None:
                on_step(self)
            if reason is not None:
                return self._stopped(reason)
            if self.regs.pc == pc:
                return self._stopped(StopReason.HALT)
        return self._stopped(StopReason.TIMEOUT)

    def _stopped(self, reason: StopReason) -> StopReason:
        self.stop_reason = reason
        log.info("stopped: %s after %d steps%s", reason.value, self.steps,
                 f" ({self.last_error})" if self.last_error else "")
        return reason

    def add_breakpoint(self, pc: int):
        self._breakpoints.add(pc & WORD_MASK)

    def remove_breakpoint(self, pc: int):
        self._breakpoints.discard(pc & WORD_MASK)

    # ══════════════════════════════════════════════
    # Introspection
    # ══════════════════════════════════════════════

    def is_call_instruction(self) -> Tuple[bool, int]:
        """Classify the instruction at PC without executing it.

        Returns ``(is_call, return_pc)``. A call is a taken JUMP whose target
        is not the next instruction, an INT, or any instruction that writes
        PC directly. ``return_pc`` is PC + 1, where the call is considered
        to have returned.
        """
        pc = self.regs.pc
        return_pc = (pc + 1) & WORD_MASK
        word = self.get_code(pc)
        if word is None:
            return False, return_pc
        ins = self.isa.unpack(word)
        if not ins.valid:
            return False, return_pc

        if ins.op is OpType.JUMP:
            if ins.jump is JumpKind.INT:
                return True, return_pc
            if ins.jump is JumpKind.RTI or ins.is_nop:
                return False, return_pc
            if not condition_holds(ins.condition, self.regs.acc):
                return False, return_pc
            target = (pc + ins.signed_operand) & WORD_MASK
            return target != return_pc, return_pc
        return ins.writes_pc, return_pc

    def non_zero_data(self) -> Dict[int, int]:
        """Data address → signed value for every non-zero data word."""
        if self.isa.segmented:
            base = PROCESS_START + self.code_size
            if self.booted and device_of(self.regs.raw(Reg.DS)) == SRAM:
                base = self.regs.raw(Reg.DS) & OFFSET_MASK
            segment = self.mem.sram.words[base:base + self.data_segment_size]
            return {k: to_signed(w) for k, w in enumerate(segment) if w}
        return {k: to_signed(w) for k, w in sorted(self.mem.data.words.items())}

    def export_state(self) -> ReTIState:
        return ReTIState(
            registers=self.regs.snapshot(),
            data=self.non_zero_data(),
            steps=self.steps,
            stop_reason=self.stop_reason,
            error=self.last_error,
            uart_output=bytes(self.uart.tx_buffer) if self.uart else b"",
            interrupt_stack=list(self._interrupt_stack),
        )

    def dump_state(self, radix: Optional[int] = None) -> str:
        """Human-readable register and data dump."""
        radix = int(radix or self.settings.radix)
        lines = ["Registers:"]
        for name, value in self.regs.snapshot().items():
            lines.append(f"  {name:<4} {format_word(value, radix, signed=name != 'PC')}")
        data = self.non_zero_data()
        lines.append("Data:" if data else "Data: (all zero)")
        for addr, value in sorted(data.items()):
            lines.append(f"  [{addr}] {format_word(value, radix)}")
        if self.stop_reason is not None:
            lines.append(f"Stopped: {self.stop_reason.value}"
                         + (f" ({self.last_error})" if self.last_error else ""))
        return "\n".join(lines)

    # ══════════════════════════════════════════════
    # Instruction handlers
    # ══════════════════════════════════════════════

    def _build_dispatch(self) -> Dict[OpType, Callable[[Instruction], None]]:
        return {
            OpType.COMPUTE: self._op_compute,
            OpType.LOAD: self._op_load,
            OpType.STORE: self._op_store,
            OpType.JUMP: self._op_jump,
        }

    def _advance(self, dest: Optional[Reg]):
        if dest is not Reg.PC:
            self.regs.pc += 1

    def _indexed(self, ins: Instruction) -> int:
        return self.regs.get(ins.base) + ins.signed_operand

    def _op_compute(self, ins: Instruction):
        if ins.mode is Mode.IMMEDIATE:
            operand = ins.signed_operand
        elif ins.mode is Mode.REGISTER:
            operand = self.regs.get(ins.source)
        else:
            operand = to_signed(self.read_data(ins.operand))
        result = alu.compute(ins.function, self.regs.get(ins.dest), operand)
        self.regs.set(ins.dest, result)
        self._advance(ins.dest)

    def _op_load(self, ins: Instruction):
        if ins.mode is Mode.IMMEDIATE:
            value = ins.signed_operand
        elif ins.mode is Mode.DIRECT:
            value = self.read_data(ins.operand)
        else:
            value = self.read_data(self._indexed(ins))
        self.regs.set(ins.dest, value)
        self._advance(ins.dest)

    def _op_store(self, ins: Instruction):
        if ins.mode is Mode.REGISTER:
            self.regs.set(ins.dest, self.regs.raw(ins.source))
            self._advance(ins.dest)
            return
        if ins.mode is Mode.DIRECT:
            self.write_data(ins.operand, self.regs.raw(ins.source))
        else:
            self.write_data(self._indexed(ins), self.regs.raw(ins.source))
        self.regs.pc += 1

    def _op_jump(self, ins: Instruction):
        pc = self.regs.pc
        if ins.jump is JumpKind.INT:
            vector = ins.operand
            if vector >= PROCESS_START:
                raise CpuFault(f"interrupt vector {vector} out of range")
            target = self.mem.read(SRAM_BASE + vector, notify=False)
            if target == 0:
                raise CpuFault(f"no interrupt service routine for vector {vector}")
            self._interrupt_stack.append((pc + 1) & WORD_MASK)
            self.regs.pc = target
        elif ins.jump is JumpKind.RTI:
            if not self._interrupt_stack:
                raise CpuFault("RTI outside of an interrupt service routine")
            self.regs.pc = self._interrupt_stack.pop()
        elif condition_holds(ins.condition, self.regs.acc):
            self.regs.pc = pc + ins.signed_operand
        else:
            self.regs.pc = pc + 1
