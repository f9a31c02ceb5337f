"""BN254 field constants and canonical field-element handling."""

import secrets
from typing import Any

from zkpool.exceptions import InvalidFieldElementError

# Scalar field of BN254 (order of G1/G2); public inputs live here.
SCALAR_FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617

# Base field of BN254; curve point coordinates live here.
BASE_FIELD_MODULUS = 21888242871839275222246405745257275088696311157297823662689037894645226208583

FIELD_SIZE = 32  # bytes


def is_field_element(value: Any) -> bool:
    """Return True if value is a canonical scalar field element."""
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value < SCALAR_FIELD_MODULUS
    )


def require_field_element(value: Any, name: str = "value") -> int:
    """
    Validate a scalar field element.

    Values at or above the modulus are rejected rather than reduced, so a
    field element has exactly one accepted representation.

    Args:
        value: Candidate element
        name: Name used in the error message

    Returns:
        int: The validated element

    Raises:
        InvalidFieldElementError: If value is not an int in [0, r)
    """
    if not is_field_element(value):
        raise InvalidFieldElementError(f"{name} is not a canonical field element")
    return value


def field_to_bytes_le(value: int) -> bytes:
    """Encode a field element as 32 little-endian bytes."""
    require_field_element(value)
    return value.to_bytes(FIELD_SIZE, "little")


def field_from_bytes_le(data: bytes) -> int:
    """
    Decode 32 little-endian bytes into a field element.

    Raises:
        InvalidFieldElementError: If data is not 32 bytes or encodes a value >= r
    """
    if not isinstance(data, (bytes, bytearray)) or len(data) != FIELD_SIZE:
        raise InvalidFieldElementError(f"Field element must be {FIELD_SIZE} bytes")
    value = int.from_bytes(data, "little")
    if value >= SCALAR_FIELD_MODULUS:
        raise InvalidFieldElementError("Field element is not below the scalar field modulus")
    return value


def random_field_element() -> int:
    """Draw a uniformly random scalar field element."""
    return secrets.randbelow(SCALAR_FIELD_MODULUS)
