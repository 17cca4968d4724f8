"""
ReTI Simulator — Program Loader

    source bytes ──> lines ──> tokens ──> encode() per line ──> words
                       │                                          │
                       └──── line ↔ instruction maps ─────────────┘
                                                                  │
                                              fresh ReTIEmulator <┘

The first line that fails to assemble aborts the whole load; nothing
partial is ever returned. Loading is a cold start: every successful load
builds a brand-new CPU.

Map conventions:
  line_to_instr[line] = instruction index, or NO_INSTRUCTION (-1) for
                        blank / comment-only lines
  instr_to_line[k]    = source line of instruction k
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .assembler import AsmStatus, encode
from .config import ReTISettings
from .disassembler import decode
from .emu import ReTIEmulator
from .isa import IsaSpec, isa_for
from .mem.memory import MemoryFault
from .parser import decode_source, parse_hex_words, parse_line, split_lines

__all__ = [
    'NO_INSTRUCTION', 'SourceMap', 'LoadError', 'LoadedProgram', 'LoadResult',
    'build_source_map', 'build_hex_map', 'load_program', 'is_hex_path',
]

log = logging.getLogger(__name__)

NO_INSTRUCTION = -1
HEX_EXTENSION = '.retias'


@dataclass
class SourceMap:
    """Source lines of one program plus the line ↔ instruction maps."""
    name: str
    lines: List[str]
    line_to_instr: List[int]
    instr_to_line: List[int]
    words: List[int]

    @property
    def size(self) -> int:
        return len(self.instr_to_line)

    def instruction_at(self, line: int) -> Optional[int]:
        if 0 <= line < len(self.line_to_instr):
            instr = self.line_to_instr[line]
            if instr != NO_INSTRUCTION:
                return instr
        return None

    def line_of(self, instr: int) -> Optional[int]:
        if 0 <= instr < len(self.instr_to_line):
            return self.instr_to_line[instr]
        return None

    def is_instruction_line(self, line: int) -> bool:
        return self.instruction_at(line) is not None

    def next_instruction_line(self, line: int) -> Optional[int]:
        """First instruction line at or after ``line``."""
        for ln in range(max(line, 0), len(self.line_to_instr)):
            if self.line_to_instr[ln] != NO_INSTRUCTION:
                return ln
        return None


@dataclass
class LoadError:
    """Why a load failed. ``line`` is 0-based; status is None for layout errors."""
    message: str
    line: int = 0
    text: str = ""
    status: Optional[AsmStatus] = None
    source: str = ""

    def __str__(self):
        where = f"{self.source}:" if self.source else "line "
        return f"{where}{self.line + 1}: {self.message}"


@dataclass
class LoadedProgram:
    settings: ReTISettings
    isa: IsaSpec
    main: SourceMap
    cpu: ReTIEmulator
    isr: Optional[SourceMap] = None
    data: List[int] = field(default_factory=list)

    @property
    def isr_offset(self) -> int:
        """Instruction index of the first ISR word, relative to CS."""
        return self.main.size


@dataclass
class LoadResult:
    program: Optional[LoadedProgram] = None
    error: Optional[LoadError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def is_hex_path(path: str) -> bool:
    return str(path).lower().endswith(HEX_EXTENSION)


def build_source_map(text: str, isa: IsaSpec, name: str = "",
                     comment: str = ';') -> Tuple[Optional[SourceMap], Optional[LoadError]]:
    """Assemble source text. Returns (map, None) or (None, error)."""
    lines = split_lines(text)
    line_to_instr: List[int] = []
    instr_to_line: List[int] = []
    words: List[int] = []

    for num, line in enumerate(lines):
        tokens = parse_line(line, comment)
        if not tokens:
            line_to_instr.append(NO_INSTRUCTION)
            continue
        result = encode(tokens, isa)
        if not result.ok:
            error = LoadError(result.message, num, line, result.status, name)
            log.warning("assembly failed: %s", error)
            return None, error
        line_to_instr.append(len(words))
        instr_to_line.append(num)
        words.append(result.word)

    return SourceMap(name, lines, line_to_instr, instr_to_line, words), None


def build_hex_map(text: str, isa: IsaSpec,
                  name: str = "") -> Tuple[Optional[SourceMap], Optional[LoadError]]:
    """Load ``.retias`` hex words; one synthesized source line per word."""
    try:
        words = parse_hex_words(text)
    except ValueError as e:
        return None, LoadError(str(e), 0, "", AsmStatus.BAD_NUMBER, name)
    lines = [decode(word, isa).text for word in words]
    index = list(range(len(words)))
    return SourceMap(name, lines, list(index), list(index), words), None


def _build(raw: bytes, isa: IsaSpec, settings: ReTISettings, name: str):
    text = decode_source(raw)
    if is_hex_path(name):
        return build_hex_map(text, isa, name)
    return build_source_map(text, isa, name, settings.comment)


def load_program(source: bytes, settings: ReTISettings, isr_source: Optional[bytes] = None,
                 data: Sequence[int] = (), name: str = "", isr_name: str = "") -> LoadResult:
    """Assemble a program (and OS interrupt routine) and build a fresh CPU.

    Args:
        source:     Program bytes (assembler text, or hex words if ``name``
                    ends in ``.retias``).
        settings:   Variant, sizes, comment delimiter.
        isr_source: Interrupt service routine (OS only; ignored for TI).
        data:       Initial data memory image.
    """
    isa = isa_for(settings.variant)

    main, error = _build(source, isa, settings, name)
    if error is not None:
        return LoadResult(error=error)

    isr = None
    if isr_source is not None:
        if not isa.has_interrupts:
            log.warning("interrupt service routine ignored for %s", settings.variant.value)
        else:
            isr, error = _build(isr_source, isa, settings, isr_name)
            if error is not None:
                return LoadResult(error=error)

    try:
        cpu = ReTIEmulator(isa, main.words, list(data),
                           isr.words if isr is not None else (), settings)
    except MemoryFault as e:
        return LoadResult(error=LoadError(str(e), source=name))

    log.info("loaded %s: %d instructions%s", name or "<source>", main.size,
             f" + {isr.size} ISR" if isr is not None else "")
    return LoadResult(LoadedProgram(settings, isa, main, cpu, isr, list(data)))
