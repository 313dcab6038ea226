"""
Unit tests for the pure register decoder.

Tests verify:
- Each encoding reinterprets the raw bit pattern correctly.
- Scale and offset are applied as value * scale + offset.
- Multi-word values are assembled high word first.
- Configuration-time validation rejects unknown kinds, encodings,
  out-of-range addresses and unusable scales.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

import math

import pytest

from solarmon.decoding import (
    Encoding,
    RegisterKind,
    combine_registers,
    decode,
    parse_encoding,
    validate_config,
    word_count,
)
from solarmon.errors import ConfigurationError

# ---------------------------------------------------------------------------
# Encodings
# ---------------------------------------------------------------------------


class TestDecodeEncodings:
    """Bit-level reinterpretation per encoding."""

    def test_unsigned16_with_scale(self) -> None:
        """452 at scale 0.1 is 45.2."""
        assert decode(452, "unsigned16", 0.1) == pytest.approx(45.2)

    def test_signed16_all_ones_is_minus_one(self) -> None:
        assert decode(0xFFFF, Encoding.SIGNED16) == -1.0

    def test_signed16_min_value(self) -> None:
        assert decode(0x8000, "signed16") == -32768.0

    def test_signed16_positive_passthrough(self) -> None:
        assert decode(0x7FFF, "signed16") == 32767.0

    def test_unsigned16_masks_to_width(self) -> None:
        assert decode(0x1_0005, "unsigned16") == 5.0

    def test_signed32_negative(self) -> None:
        assert decode(0xFFFFFFFE, "signed32") == -2.0

    def test_unsigned32_large_value(self) -> None:
        assert decode(0xFFFFFFFF, "unsigned32") == 4294967295.0

    def test_float32_bit_pattern(self) -> None:
        """0x41200000 is IEEE-754 binary32 for 10.0."""
        assert decode(0x41200000, "float32") == 10.0

    def test_float32_nan_pattern_decodes_to_nan(self) -> None:
        assert math.isnan(decode(0x7FC00000, "float32"))


class TestDecodeAffine:
    """Scale and offset."""

    def test_offset_applied_after_scale(self) -> None:
        assert decode(100, "unsigned16", scale=0.5, offset=-10.0) == 40.0

    def test_default_scale_and_offset_are_identity(self) -> None:
        assert decode(1234, "unsigned16") == 1234.0

    def test_result_is_float(self) -> None:
        assert isinstance(decode(1, "unsigned16"), float)

    def test_deterministic(self) -> None:
        first = decode(0xABCD, "signed16", 0.01, 3.0)
        assert all(decode(0xABCD, "signed16", 0.01, 3.0) == first for _ in range(5))

    def test_unknown_encoding_raises(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            decode(1, "int8")
        assert exc_info.value.field == "encoding"


# ---------------------------------------------------------------------------
# Register assembly
# ---------------------------------------------------------------------------


class TestCombineRegisters:
    """High word first assembly of register words."""

    def test_two_words_high_first(self) -> None:
        assert combine_registers([0x0001, 0x0002], "unsigned32") == 0x00010002

    def test_single_word(self) -> None:
        assert combine_registers([0x1234], "unsigned16") == 0x1234

    def test_float32_words(self) -> None:
        raw = combine_registers([0x4120, 0x0000], Encoding.FLOAT32)
        assert decode(raw, Encoding.FLOAT32) == 10.0

    def test_wrong_word_count_raises(self) -> None:
        with pytest.raises(ValueError):
            combine_registers([1], "signed32")

    def test_word_count(self) -> None:
        assert word_count("signed16") == 1
        assert word_count("float32") == 2


# ---------------------------------------------------------------------------
# Configuration validation
# ---------------------------------------------------------------------------


class TestValidateConfig:
    """Checks applied before a decoding configuration is stored."""

    def test_valid_config_returns_parsed_enums(self) -> None:
        kind, enc = validate_config(100, "input", "unsigned16", 0.1, 0.0)
        assert kind is RegisterKind.INPUT
        assert enc is Encoding.UNSIGNED16

    def test_unknown_register_kind(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(0, "eeprom", "unsigned16")
        assert exc_info.value.field == "register_kind"

    def test_unknown_encoding(self) -> None:
        with pytest.raises(ConfigurationError):
            validate_config(0, "holding", "double")

    def test_negative_address(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(-1, "holding", "unsigned16")
        assert exc_info.value.field == "address"

    def test_32_bit_value_must_fit_two_registers(self) -> None:
        validate_config(0xFFFF, "holding", "unsigned16")
        with pytest.raises(ConfigurationError):
            validate_config(0xFFFF, "holding", "unsigned32")

    def test_zero_scale_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            validate_config(0, "holding", "unsigned16", scale=0.0)
        assert exc_info.value.field == "scale"

    def test_non_finite_offset_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            validate_config(0, "holding", "unsigned16", offset=math.inf)

    def test_parse_encoding_accepts_enum(self) -> None:
        assert parse_encoding(Encoding.SIGNED32) is Encoding.SIGNED32
