"""
ReTI Simulator
==============
Assembler, disassembler, CPU emulator and debugger back end for ReTI, the
small register-transfer teaching machine, in its basic (TI) and extended
(OS: interrupts, segments, UART) variants.

Architecture:
    ┌──────────┐    ┌──────────┐    ┌───────────┐    ┌──────────┐    ┌──────────────┐
    │ Source   │───>│  Parser  │───>│ Assembler │───>│  Loader  │───>│ ReTIEmulator │
    │ (.reti)  │    │ (tokens) │    │  (words)  │    │ (maps)   │    │  (step/run)  │
    └──────────┘    └──────────┘    └───────────┘    └──────────┘    └──────┬───────┘
                                                                           │
                                                      ┌────────────────────┴─┐
                                                      │ ReTIRuntime (debug)  │──> events
                                                      └──────────────────────┘

    - isa.py:          variant tables + word pack/unpack (TI_ISA, OS_ISA)
    - assembler.py:    tokens → word, status codes instead of exceptions
    - disassembler.py: word → mnemonic text + field explanation
    - emu.py:          CPU core; cpu/, mem/, periph/ hold its parts
    - loader.py:       source bytes → words + line/instruction maps + CPU
    - runtime.py:      breakpoints, stepping, return-address stack
"""

__version__ = "0.4.0"

from .config import ConfigError, Radix, ReTISettings, Variant
from .isa import OS_ISA, TI_ISA, Instruction, IsaSpec, Reg, isa_for
from .assembler import AsmStatus, AssembleResult, encode
from .disassembler import INVALID_INSTRUCTION, Decoded, decode
from .emu import ReTIEmulator, StopReason
from .cancellation import CancellationToken
from .loader import LoadError, LoadResult, SourceMap, load_program
from .runtime import EventKind, LocalFileAccessor, ReTIRuntime, RuntimeEvent

