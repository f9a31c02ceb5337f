"""Locked public-input layout shared by the pool and the circuits.

Every public input travels as 32 little-endian bytes. The order of inputs
per circuit is part of the wire contract and is fingerprinted by the ABI
hash; changing it means bumping ABI_VERSION.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Sequence, Tuple

from zkpool.crypto.field import FIELD_SIZE, field_from_bytes_le, field_to_bytes_le
from zkpool.exceptions import (
    AmountOverflowError,
    InvalidCircuitError,
    InvalidFieldElementError,
    PublicInputCountMismatchError,
    RecipientLimbOverflowError,
)
from zkpool.utils.hash import sha256

ABI_VERSION = 2
ADDRESS_SIZE = 32
LIMB_SIZE = 16
U64_SIZE = 8
PROOF_SIZE = 256


class CircuitId(IntEnum):
    """Circuit identifiers used by the key registry."""
    DEPOSIT = 0
    TRANSFER = 1
    WITHDRAW = 2


PUBLIC_INPUT_LAYOUTS: Dict[CircuitId, Tuple[str, ...]] = {
    CircuitId.DEPOSIT: ("commitment",),
    CircuitId.TRANSFER: ("root", "nullifier", "new_commitment", "fee"),
    CircuitId.WITHDRAW: ("root", "nullifier", "recipient_lo", "recipient_hi", "amount", "fee"),
}


def to_circuit_id(value) -> CircuitId:
    try:
        return CircuitId(value)
    except ValueError:
        raise InvalidCircuitError(f"Unknown circuit id: {value!r}") from None


def public_input_count(circuit_id) -> int:
    return len(PUBLIC_INPUT_LAYOUTS[to_circuit_id(circuit_id)])


def compute_abi_hash() -> bytes:
    """
    Fingerprint of the public-input layout.

    Returns:
        bytes: SHA-256 over a canonical text description of the layout
    """
    parts = [
        f"zkpool-abi-v{ABI_VERSION}",
        f"field:{FIELD_SIZE}le",
        "proof:a64,b128,c64",
        f"address:{LIMB_SIZE}+{LIMB_SIZE}",
    ]
    for circuit_id in sorted(PUBLIC_INPUT_LAYOUTS):
        names = ",".join(PUBLIC_INPUT_LAYOUTS[circuit_id])
        parts.append(f"{circuit_id.name.lower()}={int(circuit_id)}:{names}")
    return sha256("|".join(parts))


def encode_field(value: int) -> bytes:
    return field_to_bytes_le(value)


def decode_field(data: bytes) -> int:
    return field_from_bytes_le(data)


def encode_u64(value: int) -> bytes:
    """Encode an amount as a 32-byte field with only the first 8 bytes used."""
    if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value < 2**64:
        raise AmountOverflowError(f"Value {value!r} does not fit in 64 bits")
    return value.to_bytes(FIELD_SIZE, "little")


def decode_u64(data: bytes) -> int:
    """
    Decode a 64-bit amount from a 32-byte field.

    Raises:
        InvalidFieldElementError: If data is not 32 bytes
        AmountOverflowError: If any byte past offset 8 is non-zero
    """
    if not isinstance(data, (bytes, bytearray)) or len(data) != FIELD_SIZE:
        raise InvalidFieldElementError(f"Field element must be {FIELD_SIZE} bytes")
    if any(data[U64_SIZE:]):
        raise AmountOverflowError("Amount does not fit in 64 bits")
    return int.from_bytes(data[:U64_SIZE], "little")


def encode_address(address: bytes) -> Tuple[bytes, bytes]:
    """
    Split a 32-byte address into two field limbs.

    Returns:
        tuple: (recipient_lo, recipient_hi), each 32 bytes with the upper
        16 bytes zero
    """
    if not isinstance(address, (bytes, bytearray)) or len(address) != ADDRESS_SIZE:
        raise ValueError(f"Address must be {ADDRESS_SIZE} bytes")
    padding = bytes(FIELD_SIZE - LIMB_SIZE)
    return bytes(address[:LIMB_SIZE]) + padding, bytes(address[LIMB_SIZE:]) + padding


def decode_address(recipient_lo: bytes, recipient_hi: bytes) -> bytes:
    """
    Join two field limbs back into a 32-byte address.

    Raises:
        RecipientLimbOverflowError: If either limb is 2^128 or more
    """
    for name, limb in (("recipient_lo", recipient_lo), ("recipient_hi", recipient_hi)):
        if not isinstance(limb, (bytes, bytearray)) or len(limb) != FIELD_SIZE:
            raise InvalidFieldElementError(f"{name} must be {FIELD_SIZE} bytes")
        if any(limb[LIMB_SIZE:]):
            raise RecipientLimbOverflowError(f"{name} does not fit in 128 bits")
    return bytes(recipient_lo[:LIMB_SIZE]) + bytes(recipient_hi[:LIMB_SIZE])


def check_input_count(circuit_id: CircuitId, public_inputs: Sequence[bytes]) -> None:
    expected = public_input_count(circuit_id)
    if len(public_inputs) != expected:
        raise PublicInputCountMismatchError(
            f"{circuit_id.name.lower()} expects {expected} public inputs, got {len(public_inputs)}"
        )


def decode_public_inputs(public_inputs: Sequence[bytes]) -> List[int]:
    """Decode raw 32-byte inputs into canonical field elements."""
    return [decode_field(value) for value in public_inputs]


@dataclass(frozen=True)
class DepositInputs:
    commitment: int

    circuit_id = CircuitId.DEPOSIT

    @classmethod
    def from_public_inputs(cls, public_inputs: Sequence[bytes]) -> "DepositInputs":
        check_input_count(CircuitId.DEPOSIT, public_inputs)
        return cls(commitment=decode_field(public_inputs[0]))

    def to_public_inputs(self) -> List[bytes]:
        return [encode_field(self.commitment)]


@dataclass(frozen=True)
class TransferInputs:
    root: int
    nullifier: int
    new_commitment: int
    fee: int

    circuit_id = CircuitId.TRANSFER

    @classmethod
    def from_public_inputs(cls, public_inputs: Sequence[bytes]) -> "TransferInputs":
        check_input_count(CircuitId.TRANSFER, public_inputs)
        root, nullifier, new_commitment, fee = public_inputs
        return cls(
            root=decode_field(root),
            nullifier=decode_field(nullifier),
            new_commitment=decode_field(new_commitment),
            fee=decode_u64(fee),
        )

    def to_public_inputs(self) -> List[bytes]:
        return [
            encode_field(self.root),
            encode_field(self.nullifier),
            encode_field(self.new_commitment),
            encode_u64(self.fee),
        ]


@dataclass(frozen=True)
class WithdrawInputs:
    root: int
    nullifier: int
    recipient: bytes
    amount: int
    fee: int

    circuit_id = CircuitId.WITHDRAW

    @classmethod
    def from_public_inputs(cls, public_inputs: Sequence[bytes]) -> "WithdrawInputs":
        check_input_count(CircuitId.WITHDRAW, public_inputs)
        root, nullifier, recipient_lo, recipient_hi, amount, fee = public_inputs
        return cls(
            root=decode_field(root),
            nullifier=decode_field(nullifier),
            recipient=decode_address(recipient_lo, recipient_hi),
            amount=decode_u64(amount),
            fee=decode_u64(fee),
        )

    def to_public_inputs(self) -> List[bytes]:
        recipient_lo, recipient_hi = encode_address(self.recipient)
        return [
            encode_field(self.root),
            encode_field(self.nullifier),
            recipient_lo,
            recipient_hi,
            encode_u64(self.amount),
            encode_u64(self.fee),
        ]
