"""
ReTI Simulator — Execution Controller

Drives a loaded program under debugger control, one source line (one
instruction) at a time:

    rt = ReTIRuntime(LocalFileAccessor(), settings)
    rt.set_breakpoint("prog.reti", 4)
    rt.start("prog.reti", stop_on_entry=True)
    rt.continue_()
    for event in rt.drain_events():
        ...

Front ends never get callbacks. Every notification (stop reasons,
breakpoint validation, UART output, termination) is appended to an event
queue that the caller drains after each request.

Stepping model:
  continue_   execute, then advance to the next breakpoint line or the next
              instruction line; repeat until a stop condition
  step        one instruction
  step_over   like step for plain instructions; for a call-like instruction
              run until PC reaches the instruction after it
  step_out    run until PC reaches the top of the return-address stack

Call-like instructions (see ReTIEmulator.is_call_instruction) push their
return PC on the return-address stack unless it is already on top or the
instruction landed exactly on the current top. The stack is a debugging
aid only; the CPU knows nothing about it.

Address translation lives here and nowhere else:

    pc = code_base + instr + (isr_offset if in_isr else 0)

where code_base is 0 for TI and CS for OS.
"""

import logging
import os
from collections import deque
from dataclasses import dataclass
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Deque, Dict, List, Optional, Protocol, Set, Tuple, Union

from .bits import format_word, parse_number
from .cancellation import CancellationToken, is_cancelled
from .config import ReTISettings
from .disassembler import decode
from .emu import ReTIEmulator, StopReason
from .loader import LoadError, LoadedProgram, SourceMap, load_program

__all__ = [
    'EventKind', 'RunState', 'RuntimeEvent', 'Breakpoint', 'RuntimeVariable',
    'StackFrame', 'DisassembledInstruction', 'FileAccessor', 'LocalFileAccessor',
    'ReTIRuntime',
]

log = logging.getLogger(__name__)


class EventKind(Enum):
    STOP_ON_ENTRY = 'stopOnEntry'
    STOP_ON_STEP = 'stopOnStep'
    STOP_ON_BREAKPOINT = 'stopOnBreakpoint'
    STOP_ON_DATA_BREAKPOINT = 'stopOnDataBreakpoint'
    STOP_ON_INSTRUCTION_BREAKPOINT = 'stopOnInstructionBreakpoint'
    STOP_ON_PAUSE = 'stopOnPause'
    STOP_ON_STEP_OVER = 'stopOnStepOver'
    STOP_ON_STEP_OUT = 'stopOnStepOut'
    BREAKPOINT_VALIDATED = 'breakpointValidated'
    OUTPUT = 'output'
    END = 'end'

    @property
    def is_stop(self) -> bool:
        return self.value.startswith('stopOn')


class RunState(Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    STOPPED = 'stopped'
    TERMINATED = 'terminated'


@dataclass
class Breakpoint:
    id: int
    line: int
    verified: bool = False
    path: str = ""


@dataclass
class RuntimeEvent:
    kind: EventKind
    breakpoint: Optional[Breakpoint] = None
    text: Optional[str] = None


@dataclass
class RuntimeVariable:
    name: str
    value: int
    radix: int = 10

    @property
    def display(self) -> str:
        return format_word(self.value, self.radix, signed=self.name != 'PC')


@dataclass
class StackFrame:
    index: int
    name: str
    file: str
    line: int


@dataclass
class DisassembledInstruction:
    address: int
    instruction: str
    line: Optional[int]


class FileAccessor(Protocol):
    """File access supplied by the host (editor, CLI, tests)."""
    is_windows: bool

    def read_file(self, path: str) -> bytes: ...

    def write_file(self, path: str, contents: bytes) -> None: ...


class LocalFileAccessor:
    """FileAccessor backed by the local filesystem."""

    def __init__(self):
        self.is_windows = os.name == 'nt'

    def read_file(self, path: str) -> bytes:
        return Path(path).read_bytes()

    def write_file(self, path: str, contents: bytes) -> None:
        Path(path).write_bytes(contents)


ACCESS_TYPES = {
    'read': {'read'},
    'write': {'write'},
    'readwrite': {'read', 'write'},
}


class ReTIRuntime:
    """Execution controller for one debug session."""

    def __init__(self, file_accessor: FileAccessor, settings: Optional[ReTISettings] = None):
        self.fs = file_accessor
        self.settings = settings or ReTISettings()
        self.debug = True
        self.state = RunState.IDLE
        self.stop_kind: Optional[EventKind] = None
        self.load_error: Optional[LoadError] = None

        self.source_file = ""
        self.isr_file = ""
        self.current_line = 0
        self._program: Optional[LoadedProgram] = None
        self._loaded_key: Optional[Tuple[str, str, object]] = None

        self._breakpoints: Dict[str, List[Breakpoint]] = {}
        self._breakpoint_id = 1
        self._return_stack: List[int] = []
        self._events: Deque[RuntimeEvent] = deque()

        # Address breakpoints: data address → access kinds, instruction PCs
        self._data_breakpoints: Dict[int, Set[str]] = {}
        self._instruction_breakpoints: Set[int] = set()
        self._data_hits: List[Tuple[int, bool, int]] = []

    # ══════════════════════════════════════════════
    # Properties
    # ══════════════════════════════════════════════

    @property
    def program(self) -> Optional[LoadedProgram]:
        return self._program

    @property
    def cpu(self) -> Optional[ReTIEmulator]:
        return self._program.cpu if self._program else None

    @property
    def return_stack(self) -> Tuple[int, ...]:
        return tuple(self._return_stack)

    @property
    def in_isr(self) -> bool:
        return self.cpu is not None and self.cpu.in_isr

    @property
    def current_file(self) -> str:
        return self.isr_file if self.in_isr else self.source_file

    def _current_map(self) -> SourceMap:
        if self.in_isr and self._program.isr is not None:
            return self._program.isr
        return self._program.main

    def _map_for(self, path: str) -> Optional[SourceMap]:
        if self._program is None:
            return None
        if path == self.source_file:
            return self._program.main
        if self.isr_file and path == self.isr_file:
            return self._program.isr
        return None

    def normalize_path(self, path: str) -> str:
        if self.fs.is_windows:
            return path.replace('/', '\\').lower()
        return path

    # ══════════════════════════════════════════════
    # Events
    # ══════════════════════════════════════════════

    def _emit(self, kind: EventKind, breakpoint: Optional[Breakpoint] = None,
              text: Optional[str] = None):
        log.debug("event %s line=%d %s", kind.value, self.current_line, text or "")
        self._events.append(RuntimeEvent(kind, breakpoint, text))
        if kind.is_stop:
            self.state = RunState.STOPPED
            self.stop_kind = kind
        elif kind is EventKind.END:
            self.state = RunState.TERMINATED
            self.stop_kind = None

    def drain_events(self) -> List[RuntimeEvent]:
        events = list(self._events)
        self._events.clear()
        return events

    def _end(self, reason: Optional[StopReason] = None):
        cpu = self.cpu
        text = None
        if cpu is not None and reason in (StopReason.ERROR, StopReason.ILLEGAL):
            text = cpu.last_error
        self._emit(EventKind.END, text=text)

    def _flush_output(self):
        uart = self.cpu.uart
        if uart is not None:
            out = uart.take_output()
            if out:
                self._emit(EventKind.OUTPUT, text=out.decode('latin-1'))

    # ══════════════════════════════════════════════
    # Lifecycle
    # ══════════════════════════════════════════════

    def start(self, program: str, stop_on_entry: bool = True, debug: bool = True,
              cancel: Optional[CancellationToken] = None, isr_program: Optional[str] = None,
              data: Tuple[int, ...] = ()) -> bool:
        """Load ``program`` (cold start) and begin execution.

        Returns False if the program could not be read or assembled; an
        OUTPUT event with the reason and an END event are emitted.
        """
        path = self.normalize_path(program)
        isr_path = self.normalize_path(isr_program) if isr_program else ""
        self.debug = debug

        try:
            raw = self.fs.read_file(program)
            isr_raw = self.fs.read_file(isr_program) if isr_program else None
        except OSError as e:
            self._emit(EventKind.OUTPUT, text=f"Cannot read program: {e}")
            self._emit(EventKind.END)
            return False

        result = load_program(raw, self.settings, isr_raw, data, name=path, isr_name=isr_path)
        self.load_error = result.error
        if not result.ok:
            self._program = None
            self._emit(EventKind.OUTPUT, text=str(result.error))
            self._emit(EventKind.END)
            return False

        key = (path, isr_path, self.settings.variant)
        if key != self._loaded_key:
            self._return_stack.clear()
            for stale in [p for p in self._breakpoints if p not in (path, isr_path)]:
                del self._breakpoints[stale]
        self._loaded_key = key

        self._program = result.program
        self.source_file = path
        self.isr_file = isr_path if result.program.isr is not None else ""
        self.current_line = 0
        self.state = RunState.RUNNING

        reason = self.cpu.boot()
        if reason is not None:
            self._end(reason)
            return False
        self._install_data_watches()

        self.verify_breakpoints(self.source_file)
        if self.isr_file:
            self.verify_breakpoints(self.isr_file)

        if not self.cpu.is_valid_pc():
            self._end()
            return True

        if debug and stop_on_entry:
            self._find_next_statement(EventKind.STOP_ON_ENTRY)
            return True
        # A breakpoint on the first instruction line stops before it runs
        if debug and self._find_next_statement():
            return True
        self.continue_(cancel)
        return True

    # ══════════════════════════════════════════════
    # Execution requests
    # ══════════════════════════════════════════════

    def continue_(self, cancel: Optional[CancellationToken] = None):
        """Run until a breakpoint, cancellation or termination."""
        if self._program is None:
            return
        self.state = RunState.RUNNING
        while True:
            if self._execute_line():
                return
            if is_cancelled(cancel):
                self._emit(EventKind.STOP_ON_PAUSE)
                return
            if self._find_next_statement():
                return

    def step(self):
        """Execute exactly one instruction."""
        if self._program is None:
            return
        self.state = RunState.RUNNING
        if not self._execute_line():
            self._find_next_statement(EventKind.STOP_ON_STEP)

    def step_over(self, cancel: Optional[CancellationToken] = None):
        """Step, treating a call-like instruction as a single step."""
        if self._program is None:
            return
        self.state = RunState.RUNNING
        is_call, return_pc = self.cpu.is_call_instruction()
        if not is_call:
            if not self._execute_line():
                self._find_next_statement(EventKind.STOP_ON_STEP_OVER)
            return

        while True:
            if self._execute_line():
                return
            if self.cpu.regs.pc == return_pc:
                self._emit(EventKind.STOP_ON_STEP_OVER)
                return
            if is_cancelled(cancel):
                self._emit(EventKind.STOP_ON_PAUSE)
                return
            if self._find_next_statement():
                return

    def step_out(self, cancel: Optional[CancellationToken] = None):
        """Run until the most recent call returns. Empty stack: continue."""
        if self._program is None:
            return
        if not self._return_stack:
            self.continue_(cancel)
            return

        self.state = RunState.RUNNING
        target = self._return_stack[-1]
        while True:
            if self.cpu.regs.pc == target:
                self._return_stack.pop()
                self._emit(EventKind.STOP_ON_STEP_OUT)
                return
            if self._execute_line():
                return
            if is_cancelled(cancel):
                self._emit(EventKind.STOP_ON_PAUSE)
                return
            if self._find_next_statement():
                return

    def _execute_line(self) -> bool:
        """Execute the instruction at PC. Returns True if execution must stop."""
        cpu = self.cpu
        if not cpu.is_valid_pc():
            self._end()
            return True

        is_call, return_pc = cpu.is_call_instruction()
        self._data_hits.clear()
        reason = cpu.step()
        self._flush_output()
        if reason is not None:
            self._end(reason)
            return True

        if is_call:
            new_pc = cpu.regs.pc
            top = self._return_stack[-1] if self._return_stack else None
            if top != new_pc and top != return_pc:
                self._return_stack.append(return_pc)

        if not self._sync_line():
            self._end()
            return True

        if self._data_hits:
            address, is_write, value = self._data_hits[0]
            access = 'write' if is_write else 'read'
            self._emit(EventKind.STOP_ON_DATA_BREAKPOINT,
                       text=f"{access} M[{address}] = {value}")
            return True

        if self._program.isa.address_breakpoints and cpu.regs.pc in self._instruction_breakpoints:
            self._emit(EventKind.STOP_ON_INSTRUCTION_BREAKPOINT)
            return True
        return False

    def _sync_line(self) -> bool:
        """Point current_line at the instruction under PC. False if none."""
        line = self._current_map().line_of(self.pc_to_instr_num())
        if line is None:
            return False
        self.current_line = line
        return True

    def _find_next_statement(self, stop_event: Optional[EventKind] = None) -> bool:
        """Advance current_line to the next breakpoint or instruction line.

        Returns True if a stop event was emitted.
        """
        source = self._current_map()
        path = self.current_file
        for ln in range(self.current_line, len(source.lines)):
            bp = self._breakpoint_at(path, ln) if self.debug else None
            if bp is not None:
                self.current_line = ln
                self._emit(EventKind.STOP_ON_BREAKPOINT, breakpoint=bp)
                if not bp.verified:
                    bp.verified = True
                    self._emit(EventKind.BREAKPOINT_VALIDATED, breakpoint=bp)
                return True
            if source.is_instruction_line(ln):
                self.current_line = ln
                break

        if stop_event is not None:
            self._emit(stop_event)
            return True
        return False

    # ══════════════════════════════════════════════
    # Address translation
    # ══════════════════════════════════════════════

    def instr_num_to_pc(self, instr: int) -> int:
        offset = self._program.isr_offset if self.in_isr else 0
        return self.cpu.code_base + instr + offset

    def pc_to_instr_num(self, pc: Optional[int] = None) -> int:
        if pc is None:
            pc = self.cpu.regs.pc
        offset = self._program.isr_offset if self.in_isr else 0
        return pc - self.cpu.code_base - offset

    def get_source_for_pc(self) -> Tuple[str, int]:
        return self.current_file, self.current_line

    # ══════════════════════════════════════════════
    # Line breakpoints
    # ══════════════════════════════════════════════

    def set_breakpoint(self, path: str, line: int) -> Breakpoint:
        path = self.normalize_path(path)
        bp = Breakpoint(self._breakpoint_id, line, False, path)
        self._breakpoint_id += 1
        self._breakpoints.setdefault(path, []).append(bp)
        self.verify_breakpoints(path)
        return bp

    def clear_breakpoint(self, path: str, line: int) -> Optional[Breakpoint]:
        bps = self._breakpoints.get(self.normalize_path(path), [])
        for k, bp in enumerate(bps):
            if bp.line == line:
                return bps.pop(k)
        return None

    def clear_breakpoints(self, path: str):
        self._breakpoints.pop(self.normalize_path(path), None)

    def get_breakpoints(self, path: str) -> List[Breakpoint]:
        return list(self._breakpoints.get(self.normalize_path(path), []))

    def _breakpoint_at(self, path: str, line: int) -> Optional[Breakpoint]:
        for bp in self._breakpoints.get(path, ()):
            if bp.line == line:
                return bp
        return None

    def verify_breakpoints(self, path: str):
        """Move unverified breakpoints off blank/comment lines and verify them.

        A breakpoint whose line carries the lazy marker stays unverified
        until it is first hit.
        """
        path = self.normalize_path(path)
        source = self._map_for(path)
        if source is None:
            return
        marker = self.settings.lazy_marker
        for bp in self._breakpoints.get(path, ()):
            if bp.verified or not 0 <= bp.line < len(source.lines):
                continue
            line = source.next_instruction_line(bp.line)
            if line is None:
                continue
            bp.line = line
            if marker and marker in source.lines[line]:
                continue
            bp.verified = True
            self._emit(EventKind.BREAKPOINT_VALIDATED, breakpoint=bp)

    # ══════════════════════════════════════════════
    # Address breakpoints (fire in the OS variant only)
    # ══════════════════════════════════════════════

    def set_data_breakpoint(self, address: str, access: str = 'write') -> bool:
        addr = parse_number(str(address))
        kinds = ACCESS_TYPES.get(access.lower())
        if addr is None or kinds is None:
            return False
        self._data_breakpoints.setdefault(addr, set()).update(kinds)
        self._install_data_watches()
        return True

    def clear_all_data_breakpoints(self):
        self._data_breakpoints.clear()
        if self.cpu is not None:
            self.cpu.clear_data_watches()

    def set_instruction_breakpoint(self, address: int) -> bool:
        self._instruction_breakpoints.add(address & 0xFFFFFFFF)
        return True

    def clear_instruction_breakpoints(self):
        self._instruction_breakpoints.clear()

    def _install_data_watches(self):
        cpu = self.cpu
        if cpu is None or not self._program.isa.address_breakpoints:
            return
        cpu.clear_data_watches()
        for address in self._data_breakpoints:
            cpu.watch_data(address, partial(self._on_data_access, address))

    def _on_data_access(self, address: int, _abs: int, _old: int, new: int, is_write: bool):
        kinds = self._data_breakpoints.get(address, ())
        if ('write' if is_write else 'read') in kinds:
            self._data_hits.append((address, is_write, new))

    # ══════════════════════════════════════════════
    # Inspection
    # ══════════════════════════════════════════════

    def evaluate(self, expression: str) -> Optional[RuntimeVariable]:
        """Register name → register value; numeric address → memory word."""
        cpu = self.cpu
        if cpu is None:
            return None
        expr = expression.strip()
        reg = self._program.isa.register(expr)
        if reg is not None:
            return RuntimeVariable(reg.name, cpu.get_register(reg), int(self.settings.radix))
        address = parse_number(expr)
        if address is None:
            return None
        value = cpu.get_data(address)
        if value is None:
            return None
        return RuntimeVariable(f"M[{address}]", value, int(self.settings.radix))

    def get_local_variables(self) -> List[RuntimeVariable]:
        if self.cpu is None:
            return []
        radix = int(self.settings.radix)
        return [RuntimeVariable(name, value, radix)
                for name, value in self.cpu.regs.snapshot().items()]

    def set_register(self, name: str, value: Union[int, str]) -> Optional[RuntimeVariable]:
        """Write a register. Writing PC moves the current line along with it."""
        cpu = self.cpu
        if cpu is None:
            return None
        reg = self._program.isa.register(name)
        if isinstance(value, str):
            value = parse_number(value)
        if reg is None or value is None:
            return None
        cpu.set_register(reg, value)
        if reg.name == 'PC' and self._sync_line():
            self._emit(EventKind.STOP_ON_STEP)
        return RuntimeVariable(reg.name, cpu.get_register(reg), int(self.settings.radix))

    def get_memory_chunk(self, start: int, count: int) -> List[int]:
        """Up to ``count`` data words from ``start``; stops at the end of memory."""
        cpu = self.cpu
        words = []
        if cpu is None:
            return words
        for address in range(start, start + count):
            value = cpu.get_data(address)
            if value is None:
                break
            words.append(value)
        return words

    def write_memory(self, start: int, words: List[int]) -> int:
        """Write consecutive data words. Returns how many were written."""
        cpu = self.cpu
        written = 0
        if cpu is None:
            return written
        for k, word in enumerate(words):
            if not cpu.set_data(start + k, word):
                break
            written += 1
        return written

    def stack(self) -> List[StackFrame]:
        return [StackFrame(0, "ReTI", self.current_file, self.current_line)]

    def disassemble(self, start: int, count: int) -> List[DisassembledInstruction]:
        """Decode ``count`` program words starting at instruction index ``start``."""
        if self._program is None:
            return []
        program = self._program
        words = program.main.words + (program.isr.words if program.isr else [])
        result = []
        for k in range(max(start, 0), min(start + count, len(words))):
            if k < program.main.size:
                line = program.main.line_of(k)
            else:
                line = program.isr.line_of(k - program.main.size)
            result.append(DisassembledInstruction(
                self.cpu.code_base + k, decode(words[k], program.isa).text, line))
        return result

    def send_input(self, data: bytes) -> bool:
        """Queue bytes on the UART receive side (OS variant)."""
        cpu = self.cpu
        if cpu is None or cpu.uart is None:
            return False
        cpu.uart.inject_rx(data)
        return True
