"""Per-circuit verification key storage with hash binding."""

import hmac
import logging
import threading
from dataclasses import dataclass
from typing import Dict, Optional

from zkpool.core.abi import CircuitId, public_input_count, to_circuit_id
from zkpool.crypto.groth16 import VerifyingKey
from zkpool.exceptions import (
    AbiHashMismatchError,
    InvalidVerificationKeyError,
    VerificationKeyNotSetError,
    VkHashMismatchError,
)
from zkpool.utils.hash import sha256

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyRecord:
    """Stored key material for one circuit."""

    circuit_id: CircuitId
    key_bytes: bytes
    content_hash: bytes
    n_public: int
    abi_hash: bytes
    verifying_key: VerifyingKey

    def to_dict(self) -> dict:
        return {
            "circuit_id": int(self.circuit_id),
            "circuit": self.circuit_id.name.lower(),
            "content_hash": "0x" + self.content_hash.hex(),
            "n_public": self.n_public,
            "size": len(self.key_bytes),
        }


class VerificationKeyRegistry:
    """
    Keys by circuit id, bound to one ABI hash.

    A key is accepted only if SHA-256 of its bytes equals the declared hash,
    it was compiled for this registry's ABI hash, and its IC length matches
    the circuit's locked public-input count.
    """

    def __init__(self, abi_hash: bytes):
        if len(abi_hash) != 32:
            raise AbiHashMismatchError("ABI hash must be 32 bytes")
        self.abi_hash = abi_hash
        self._records: Dict[CircuitId, KeyRecord] = {}
        self._lock = threading.Lock()

    def prepare_key(
        self,
        circuit_id,
        key_bytes: bytes,
        declared_hash: bytes,
        abi_hash: Optional[bytes] = None,
    ) -> KeyRecord:
        """
        Validate a key without storing it.

        Args:
            circuit_id: Target circuit
            key_bytes: Serialized verifying key
            declared_hash: SHA-256 of key_bytes claimed by the uploader
            abi_hash: Layout hash the key was compiled against (defaults to
                the registry's own)

        Returns:
            KeyRecord: The validated record

        Raises:
            InvalidCircuitError: Unknown circuit id
            AbiHashMismatchError: Key compiled for another layout
            VkHashMismatchError: Content hash differs from declared_hash
            InvalidVerificationKeyError: Bytes do not parse or IC length is wrong
        """
        circuit = to_circuit_id(circuit_id)
        key_bytes = bytes(key_bytes)
        abi_hash = self.abi_hash if abi_hash is None else bytes(abi_hash)
        if not hmac.compare_digest(abi_hash, self.abi_hash):
            raise AbiHashMismatchError(
                f"Key for {circuit.name.lower()} was built for a different ABI"
            )

        content_hash = sha256(key_bytes)
        if not hmac.compare_digest(content_hash, bytes(declared_hash)):
            raise VkHashMismatchError(
                f"Key hash {content_hash.hex()[:16]}... does not match declared hash"
            )

        n_public = public_input_count(circuit)
        if len(key_bytes) != VerifyingKey.expected_size(n_public):
            raise InvalidVerificationKeyError(
                f"Key for {circuit.name.lower()} must be {VerifyingKey.expected_size(n_public)} bytes"
            )
        verifying_key = VerifyingKey.from_bytes(key_bytes)

        return KeyRecord(
            circuit_id=circuit,
            key_bytes=key_bytes,
            content_hash=content_hash,
            n_public=n_public,
            abi_hash=abi_hash,
            verifying_key=verifying_key,
        )

    def store(self, record: KeyRecord) -> KeyRecord:
        """Install a record returned by prepare_key."""
        circuit = record.circuit_id
        with self._lock:
            replaced = circuit in self._records
            self._records[circuit] = record
        logger.info(
            "%s key for %s circuit (hash %s...)",
            "Replaced" if replaced else "Stored",
            circuit.name.lower(),
            record.content_hash.hex()[:16],
        )
        return record

    def set_key(
        self,
        circuit_id,
        key_bytes: bytes,
        declared_hash: bytes,
        abi_hash: Optional[bytes] = None,
    ) -> KeyRecord:
        """Validate and store a key; see prepare_key."""
        return self.store(self.prepare_key(circuit_id, key_bytes, declared_hash, abi_hash))

    def get_key(self, circuit_id) -> KeyRecord:
        """
        Look up a stored key.

        Raises:
            VerificationKeyNotSetError: If no key was uploaded for the circuit
        """
        circuit = to_circuit_id(circuit_id)
        record = self._records.get(circuit)
        if record is None:
            raise VerificationKeyNotSetError(f"No key set for {circuit.name.lower()} circuit")
        return record

    def has_key(self, circuit_id) -> bool:
        return to_circuit_id(circuit_id) in self._records

    def records(self) -> Dict[CircuitId, KeyRecord]:
        return dict(self._records)
