"""
ReTI Simulator — Settings

A single immutable settings value is threaded through the loader, the CPU
and the execution controller. Nothing reads configuration from globals.

The ``from_mapping`` constructor accepts the key names used by the editor
extension settings, so a JSON settings file can be fed in unchanged:

    {"version": "Extended ReTI (OS)", "number_style": "Hexadecimal"}
"""

from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from typing import Any, Mapping


class ConfigError(ValueError):
    """Raised for unknown or malformed settings values."""


class Variant(Enum):
    TI = "Basic ReTI (TI)"
    OS = "Extended ReTI (OS)"


class Radix(IntEnum):
    DECIMAL = 10
    HEXADECIMAL = 16
    BINARY = 2


_VARIANT_NAMES = {
    "basic reti (ti)": Variant.TI,
    "ti": Variant.TI,
    "basic": Variant.TI,
    "extended reti (os)": Variant.OS,
    "os": Variant.OS,
    "extended": Variant.OS,
}

_RADIX_NAMES = {
    "decimal": Radix.DECIMAL,
    "dec": Radix.DECIMAL,
    "10": Radix.DECIMAL,
    "hexadecimal": Radix.HEXADECIMAL,
    "hex": Radix.HEXADECIMAL,
    "16": Radix.HEXADECIMAL,
    "binary": Radix.BINARY,
    "bin": Radix.BINARY,
    "2": Radix.BINARY,
}


def parse_variant(value: Any) -> Variant:
    if isinstance(value, Variant):
        return value
    try:
        return _VARIANT_NAMES[str(value).strip().lower()]
    except KeyError:
        raise ConfigError(f"unknown ReTI version: {value!r}") from None


def parse_radix(value: Any) -> Radix:
    if isinstance(value, Radix):
        return value
    try:
        return _RADIX_NAMES[str(value).strip().lower()]
    except KeyError:
        raise ConfigError(f"unknown number style: {value!r}") from None


@dataclass(frozen=True)
class ReTISettings:
    """Simulator configuration.

    Attributes:
        variant:           ISA variant (TI or OS).
        radix:             Display radix for register and memory values.
        data_size:         TI data memory size in words.
        sram_size:         OS SRAM size in words.
        data_segment_size: OS words reserved after the code for data + stack.
        comment:           Comment delimiter in source files.
        lazy_marker:       Breakpoints on lines containing this text verify on first hit.
    """
    variant: Variant = Variant.TI
    radix: Radix = Radix.DECIMAL
    data_size: int = 1 << 24
    sram_size: int = 1 << 12
    data_segment_size: int = 32
    comment: str = ";"
    lazy_marker: str = "lazy"

    @property
    def is_os(self) -> bool:
        return self.variant is Variant.OS

    def with_variant(self, variant) -> "ReTISettings":
        return replace(self, variant=parse_variant(variant))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "ReTISettings":
        """Build settings from a plain mapping (JSON settings file).

        Unknown keys are ignored; unknown values raise ConfigError.
        """
        kwargs = {}
        if "version" in mapping:
            kwargs["variant"] = parse_variant(mapping["version"])
        if "number_style" in mapping:
            kwargs["radix"] = parse_radix(mapping["number_style"])
        for key in ("data_size", "sram_size", "data_segment_size"):
            if key in mapping:
                try:
                    kwargs[key] = int(mapping[key])
                except (TypeError, ValueError):
                    raise ConfigError(f"{key} must be an integer") from None
                if kwargs[key] <= 0:
                    raise ConfigError(f"{key} must be positive")
        for key in ("comment", "lazy_marker"):
            if key in mapping:
                kwargs[key] = str(mapping[key])
        return cls(**kwargs)
