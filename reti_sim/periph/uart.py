"""
ReTI Simulator — UART Peripheral (OS variant)

Memory-mapped serial port living in device 01 of the OS address space.
Programs reach it with absolute addresses (0x40000000 + port) or with DS
pointing at the UART device.

Port map:
  R0  — transmit data  (program writes the byte to send)
  R1  — receive data   (byte delivered by the UART)
  R2  — status
          bit 0  TX_READY  — set: transmitter idle. The program writes R0,
                             then clears this bit to start the transfer.
          bit 1  RX_FULL   — set: R1 holds a received byte. The program
                             reads R1, then clears this bit to acknowledge.
  R3-R7 — general purpose, plain storage

Simplifications for emulator:
  - transfers complete on the next ``tick()`` (called once per instruction)
  - bytes only, no framing or baud timing
  - received bytes are queued host-side with ``inject_rx()``
"""

from collections import deque

TX_DATA = 0
RX_DATA = 1
STATUS = 2
PORT_COUNT = 8

# Status bits
TX_READY = 0x01
RX_FULL = 0x02


class UARTPeripheral:
    """UART model with a host-side TX buffer and RX queue."""

    def __init__(self):
        self._ports = [0] * PORT_COUNT
        self._ports[STATUS] = TX_READY

        # TX output: all transmitted bytes go here
        self.tx_buffer: bytearray = bytearray()

        # RX injection queue: bytes waiting for the program to accept them
        self._rx_queue: deque = deque()

    def register(self, memory):
        """Wire all ports into the OS memory map."""
        for port in range(PORT_COUNT):
            memory.register_io_handler(port, self._read_port, self._write_port)

    def _read_port(self, port: int) -> int:
        return self._ports[port]

    def _write_port(self, port: int, value: int):
        self._ports[port] = value & 0xFFFFFFFF

    @property
    def status(self) -> int:
        return self._ports[STATUS]

    def tick(self):
        """Advance the handshake by one step. Called after every instruction."""
        if not self._ports[STATUS] & TX_READY:
            self.tx_buffer.append(self._ports[TX_DATA] & 0xFF)
            self._ports[STATUS] |= TX_READY

        if not self._ports[STATUS] & RX_FULL and self._rx_queue:
            self._ports[RX_DATA] = self._rx_queue.popleft()
            self._ports[STATUS] |= RX_FULL

    # --- External API (host side) ---

    def inject_rx(self, data: bytes):
        """Queue bytes for the program to receive through R1."""
        for byte in data:
            self._rx_queue.append(byte & 0xFF)

    @property
    def rx_pending(self) -> int:
        return len(self._rx_queue)

    def take_output(self) -> bytes:
        """Return and clear everything transmitted since the last call."""
        out = bytes(self.tx_buffer)
        self.tx_buffer.clear()
        return out

    def reset(self):
        self._ports = [0] * PORT_COUNT
        self._ports[STATUS] = TX_READY
        self.tx_buffer.clear()
        self._rx_queue.clear()
