"""
Pure register decoder that converts raw Modbus register values into
physical measurements.

A decoding configuration names an encoding (signed16, unsigned16, signed32,
unsigned32, float32), a register kind, an address, and an affine transform.
``decode`` reinterprets the raw bit pattern for the encoding and applies
``value * scale + offset``.

This module has no side effects, no I/O and no clock, so it is safe to call
from any number of concurrent request handlers.

CHANGELOG:
- 2026-10-17: Add validate_config for configuration-time checks
- 2026-10-17: Initial creation

TODO:
- None
"""

from __future__ import annotations

import math
import struct
from collections.abc import Sequence
from enum import StrEnum

from solarmon.errors import ConfigurationError

MAX_REGISTER_ADDRESS = 0xFFFF


class Encoding(StrEnum):
    """Bit-level interpretation of a raw register value."""

    SIGNED16 = "signed16"
    UNSIGNED16 = "unsigned16"
    SIGNED32 = "signed32"
    UNSIGNED32 = "unsigned32"
    FLOAT32 = "float32"


class RegisterKind(StrEnum):
    """Modbus register table the value is read from."""

    HOLDING = "holding"
    INPUT = "input"
    COIL = "coil"
    DISCRETE = "discrete"


_WORD_COUNTS: dict[Encoding, int] = {
    Encoding.SIGNED16: 1,
    Encoding.UNSIGNED16: 1,
    Encoding.SIGNED32: 2,
    Encoding.UNSIGNED32: 2,
    Encoding.FLOAT32: 2,
}


# ---------------------------------------------------------------------------
# Enum parsing
# ---------------------------------------------------------------------------


def parse_encoding(value: str | Encoding) -> Encoding:
    """Return the Encoding for *value*.

    Raises:
        ConfigurationError: If *value* is not a known encoding.
    """
    try:
        return Encoding(value)
    except ValueError:
        raise ConfigurationError(
            f"Unknown encoding '{value}'. Must be one of: "
            f"{sorted(e.value for e in Encoding)}.",
            field="encoding",
        ) from None


def parse_register_kind(value: str | RegisterKind) -> RegisterKind:
    """Return the RegisterKind for *value*.

    Raises:
        ConfigurationError: If *value* is not a known register kind.
    """
    try:
        return RegisterKind(value)
    except ValueError:
        raise ConfigurationError(
            f"Unknown register kind '{value}'. Must be one of: "
            f"{sorted(k.value for k in RegisterKind)}.",
            field="register_kind",
        ) from None


def word_count(encoding: str | Encoding) -> int:
    """Number of 16-bit registers the encoding spans (1 or 2)."""
    return _WORD_COUNTS[parse_encoding(encoding)]


# ---------------------------------------------------------------------------
# Type conversion helpers
# ---------------------------------------------------------------------------


def _to_s16(raw: int) -> int:
    """Interpret a raw 16-bit value as signed (two's complement)."""
    val = raw & 0xFFFF
    if val >= 0x8000:
        val -= 0x10000
    return val


def _to_s32(raw: int) -> int:
    """Interpret a raw 32-bit value as signed (two's complement)."""
    val = raw & 0xFFFFFFFF
    if val >= 0x80000000:
        val -= 0x100000000
    return val


def _to_f32(raw: int) -> float:
    """Interpret a raw 32-bit pattern as IEEE-754 binary32."""
    return struct.unpack(">f", struct.pack(">I", raw & 0xFFFFFFFF))[0]


def combine_registers(words: Sequence[int], encoding: str | Encoding) -> int:
    """Assemble consecutive 16-bit register words into one raw value.

    Words are taken high word first, the order the registers appear at
    ``address`` and ``address + 1``.

    Args:
        words: Register words as read from the device.
        encoding: Encoding that determines how many words are needed.

    Returns:
        int: Unsigned raw value of the encoding's width.

    Raises:
        ValueError: If the number of words does not match the encoding.
    """
    needed = word_count(encoding)
    if len(words) != needed:
        raise ValueError(
            f"encoding {Encoding(encoding).value} needs {needed} register(s), "
            f"got {len(words)}"
        )
    raw = 0
    for word in words:
        raw = (raw << 16) | (int(word) & 0xFFFF)
    return raw


# ---------------------------------------------------------------------------
# Core
# ---------------------------------------------------------------------------


def decode(
    raw_value: int,
    encoding: str | Encoding,
    scale: float = 1.0,
    offset: float = 0.0,
) -> float:
    """Decode a raw register value into a physical measurement.

    The raw value is masked to the width implied by *encoding*, reinterpreted
    (two's complement for the signed encodings, IEEE-754 binary32 for
    float32), then scaled: ``reinterpreted * scale + offset``.

    Args:
        raw_value: Unsigned raw register value (16 or 32 bits).
        encoding: One of the Encoding values.
        scale: Multiplicative factor (default 1.0).
        offset: Additive offset applied after scaling (default 0.0).

    Returns:
        float: The physical value.

    Raises:
        ConfigurationError: If *encoding* is not a known encoding.
    """
    enc = parse_encoding(encoding)
    raw = int(raw_value)

    if enc is Encoding.UNSIGNED16:
        value: float = raw & 0xFFFF
    elif enc is Encoding.SIGNED16:
        value = _to_s16(raw)
    elif enc is Encoding.UNSIGNED32:
        value = raw & 0xFFFFFFFF
    elif enc is Encoding.SIGNED32:
        value = _to_s32(raw)
    else:
        value = _to_f32(raw)

    return float(value) * scale + offset


def validate_config(
    address: int,
    register_kind: str | RegisterKind,
    encoding: str | Encoding,
    scale: float = 1.0,
    offset: float = 0.0,
) -> tuple[RegisterKind, Encoding]:
    """Check a decoding configuration before it is stored.

    Ingestion only ever sees configurations that passed this check, so it
    never raises ConfigurationError itself.

    Returns:
        tuple: The parsed (RegisterKind, Encoding).

    Raises:
        ConfigurationError: On an unknown kind/encoding, an address outside
            the register space, or a non-finite or zero scale.
    """
    kind = parse_register_kind(register_kind)
    enc = parse_encoding(encoding)

    last_address = address + _WORD_COUNTS[enc] - 1
    if address < 0 or last_address > MAX_REGISTER_ADDRESS:
        raise ConfigurationError(
            f"Register address {address} with encoding {enc.value} does not "
            f"fit in 0..{MAX_REGISTER_ADDRESS}.",
            field="address",
        )
    if not math.isfinite(scale) or scale == 0:
        raise ConfigurationError(
            "scale must be a finite, non-zero number.", field="scale"
        )
    if not math.isfinite(offset):
        raise ConfigurationError("offset must be a finite number.", field="offset")

    return kind, enc
