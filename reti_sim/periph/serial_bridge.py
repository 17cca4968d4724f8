"""
ReTI Simulator — UART ↔ Host Serial Bridge

Connects the emulated UART to a real or virtual serial port so an OS
program can talk to a terminal:

    bridge = SerialBridge.open(uart, "/dev/ttyUSB0", baud=9600)
    cpu.run(on_step=bridge.pump)
    bridge.close()

Any pyserial URL works (``loop://``, ``socket://host:port``, ``rfc2217://``).
"""

import logging
from typing import Optional

import serial

from .uart import UARTPeripheral

log = logging.getLogger(__name__)

DEFAULT_BAUD = 9600


class SerialBridge:
    """Pumps bytes between a UARTPeripheral and a pyserial port."""

    def __init__(self, uart: UARTPeripheral, port):
        self.uart = uart
        self._serial = port
        self.bytes_in = 0
        self.bytes_out = 0

    @classmethod
    def open(cls, uart: UARTPeripheral, url: str, baud: int = DEFAULT_BAUD) -> "SerialBridge":
        """Open a serial port (device path or pyserial URL) without blocking reads."""
        port = serial.serial_for_url(
            url,
            baudrate=baud,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=0,
        )
        log.info("UART bridged to %s @ %d baud", url, baud)
        return cls(uart, port)

    def pump(self, *_args):
        """Move pending bytes in both directions. Never blocks.

        Accepts and ignores positional arguments so it can be passed directly
        as a per-step callback.
        """
        out = self.uart.take_output()
        if out:
            self._serial.write(out)
            self.bytes_out += len(out)

        waiting = self._serial.in_waiting
        if waiting:
            data = self._serial.read(waiting)
            self.uart.inject_rx(data)
            self.bytes_in += len(data)

    def close(self):
        if self._serial is not None and self._serial.is_open:
            self._serial.flush()
            self._serial.close()
        log.info("UART bridge closed (%d bytes in, %d bytes out)", self.bytes_in, self.bytes_out)

    @property
    def port(self) -> Optional[object]:
        return self._serial
