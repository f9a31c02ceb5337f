"""Hex helpers for the API and event payloads."""

from typing import Optional

from zkpool.crypto.field import FIELD_SIZE, field_from_bytes_le


def bytes_to_hex(data: bytes) -> str:
    """``0x``-prefixed lowercase hex."""
    return "0x" + bytes(data).hex()


def hex_to_bytes(value: str, expected_length: Optional[int] = None) -> bytes:
    """
    Decode hex with or without a ``0x`` prefix.

    Args:
        value: Hex text
        expected_length: Exact decoded length to require, if any

    Raises:
        ValueError: On non-hex text, an odd digit count, or a length mismatch
    """
    digits = value[2:] if value.startswith(("0x", "0X")) else value
    if len(digits) % 2:
        raise ValueError("Hex string must have an even number of digits")
    data = bytes.fromhex(digits)
    if expected_length is not None and len(data) != expected_length:
        raise ValueError(f"Expected {expected_length} bytes, got {len(data)}")
    return data


def hex_to_field(value: str) -> int:
    """
    Decode a 32-byte little-endian field element given as hex.

    Raises:
        ValueError: If value is not 32 bytes of hex
        InvalidFieldElementError: If the element is not below the modulus
    """
    return field_from_bytes_le(hex_to_bytes(value, FIELD_SIZE))
