"""
ReTI Simulator — Word Memory

Memory is word-addressed (one 32-bit word per address) and flat: every
region is a fixed-size, bounds-checked block. An access outside a region
raises ``MemoryFault``, which the CPU reports as a runtime error rather
than growing the memory.

TI memory map:
  code  — the assembled program, read-only, addressed by PC
  data  — ``data_size`` words (default 2^24), sparse, addressed by
          LOAD/STORE/COMPUTE; unwritten words read as zero

OS memory map (device selected by address bits 31..30, offset = bits 29..0):
  00  EPROM  — boot ROM, read-only to programs
  01  UART   — 8 memory-mapped ports, routed to the UART peripheral
  10  SRAM   — ``sram_size`` words: vector table, code, data, stack
  11  SRAM   — mirror of 10
"""

from typing import Callable, Dict, List, Optional, Sequence

from ..bits import WORD_MASK

DEVICE_SHIFT = 30
OFFSET_MASK = (1 << DEVICE_SHIFT) - 1

EPROM = 0
UART = 1
SRAM = 2

UART_BASE = UART << DEVICE_SHIFT
SRAM_BASE = SRAM << DEVICE_SHIFT

EPROM_SIZE = 1 << 16

WatchCallback = Callable[[int, int, int, bool], None]


class MemoryFault(Exception):
    """Access outside a region or write to read-only memory."""


def device_of(address: int) -> int:
    """Device select for an absolute OS address (SRAM is mirrored at 11)."""
    device = (address & WORD_MASK) >> DEVICE_SHIFT
    return SRAM if device == 3 else device


class MemoryRegion:
    """A named, bounds-checked block of words."""

    def __init__(self, name: str, size: int, writable: bool = True):
        self.name = name
        self.writable = writable
        self.words: List[int] = [0] * size

    @property
    def size(self) -> int:
        return len(self.words)

    def _check(self, offset: int):
        if not 0 <= offset < len(self.words):
            raise MemoryFault(f"{self.name} address {offset} out of range (size {len(self.words)})")

    def read(self, offset: int) -> int:
        self._check(offset)
        return self.words[offset]

    def write(self, offset: int, value: int):
        if not self.writable:
            raise MemoryFault(f"{self.name} is read-only (address {offset})")
        self._check(offset)
        self.words[offset] = value & WORD_MASK

    def load(self, words: Sequence[int], offset: int = 0):
        """Bulk load, bypassing write protection."""
        if offset < 0 or offset + len(words) > len(self.words):
            raise MemoryFault(f"{len(words)} words do not fit in {self.name} at {offset}")
        for k, word in enumerate(words):
            self.words[offset + k] = word & WORD_MASK


class SparseRegion:
    """A bounds-checked block that stores only the words written so far."""

    def __init__(self, name: str, size: int):
        self.name = name
        self.size = size
        self.words: Dict[int, int] = {}

    def _check(self, offset: int):
        if not 0 <= offset < self.size:
            raise MemoryFault(f"{self.name} address {offset} out of range (size {self.size})")

    def read(self, offset: int) -> int:
        self._check(offset)
        return self.words.get(offset, 0)

    def write(self, offset: int, value: int):
        self._check(offset)
        value &= WORD_MASK
        if value:
            self.words[offset] = value
        else:
            self.words.pop(offset, None)

    def load(self, words: Sequence[int], offset: int = 0):
        if offset < 0 or offset + len(words) > self.size:
            raise MemoryFault(f"{len(words)} words do not fit in {self.name} at {offset}")
        for k, word in enumerate(words):
            self.write(offset + k, word)


class _WatchMixin:
    """Watchpoints: address → callback(addr, old, new, is_write).

    Reads fire with old == new and ``is_write`` False.
    """

    def _init_watch(self):
        self._watchpoints: Dict[int, List[WatchCallback]] = {}

    def add_watchpoint(self, address: int, callback: WatchCallback):
        self._watchpoints.setdefault(address & WORD_MASK, []).append(callback)

    def clear_watchpoints(self):
        self._watchpoints.clear()

    def _notify(self, address: int, old: int, new: int, is_write: bool):
        for cb in self._watchpoints.get(address, ()):
            cb(address, old, new, is_write)


class TIMemory(_WatchMixin):
    """Separate code and data regions of the TI variant."""

    def __init__(self, code: Sequence[int] = (), data_size: int = 1 << 24):
        self.code = MemoryRegion('code', len(code), writable=False)
        self.code.load(code)
        self.data = SparseRegion('data', data_size)
        self._init_watch()

    def fetch(self, pc: int) -> int:
        return self.code.read(pc)

    def read(self, address: int, notify: bool = True) -> int:
        value = self.data.read(address)
        if notify:
            self._notify(address, value, value, False)
        return value

    def write(self, address: int, value: int, notify: bool = True):
        old = self.data.read(address)
        self.data.write(address, value)
        if notify:
            self._notify(address, old, value & WORD_MASK, True)

    def load_data(self, words: Sequence[int], offset: int = 0):
        self.data.load(words, offset)


class OSMemoryMap(_WatchMixin):
    """EPROM / UART / SRAM device map of the OS variant."""

    def __init__(self, sram_size: int = 1 << 12, uart=None):
        self.eprom = MemoryRegion('EPROM', EPROM_SIZE, writable=False)
        self.sram = MemoryRegion('SRAM', sram_size)
        self.uart_ports = MemoryRegion('UART', 8)

        # I/O handlers for UART ports: port → read_fn(port) / write_fn(port, value)
        self._io_read_handlers: Dict[int, Callable] = {}
        self._io_write_handlers: Dict[int, Callable] = {}
        self._init_watch()

        self.uart = uart
        if uart is not None:
            uart.register(self)

    def register_io_handler(self, port: int, read_fn: Optional[Callable],
                            write_fn: Optional[Callable]):
        if read_fn is not None:
            self._io_read_handlers[port] = read_fn
        if write_fn is not None:
            self._io_write_handlers[port] = write_fn

    def _region(self, address: int) -> MemoryRegion:
        device = device_of(address)
        if device == EPROM:
            return self.eprom
        if device == UART:
            return self.uart_ports
        return self.sram

    def fetch(self, address: int) -> int:
        return self._region(address).read(address & OFFSET_MASK)

    def read(self, address: int, notify: bool = True) -> int:
        address &= WORD_MASK
        offset = address & OFFSET_MASK
        region = self._region(address)
        if region is self.uart_ports and offset in self._io_read_handlers:
            region._check(offset)
            value = self._io_read_handlers[offset](offset) & WORD_MASK
        else:
            value = region.read(offset)
        if notify:
            self._notify(address, value, value, False)
        return value

    def write(self, address: int, value: int, notify: bool = True):
        address &= WORD_MASK
        value &= WORD_MASK
        offset = address & OFFSET_MASK
        region = self._region(address)
        if region is self.uart_ports and offset in self._io_write_handlers:
            region._check(offset)
            read_fn = self._io_read_handlers.get(offset)
            old = read_fn(offset) if read_fn else 0
            self._io_write_handlers[offset](offset, value)
        else:
            old = region.read(offset)
            region.write(offset, value)
        if notify:
            self._notify(address, old, value, True)
