"""Tests for the verification key registry."""

import pytest

from zkpool.core.abi import CircuitId, compute_abi_hash
from zkpool.core.vk_registry import VerificationKeyRegistry
from zkpool.exceptions import (
    AbiHashMismatchError,
    InvalidCircuitError,
    InvalidVerificationKeyError,
    VerificationKeyNotSetError,
    VkHashMismatchError,
)
from zkpool.utils.hash import sha256


@pytest.fixture
def registry():
    return VerificationKeyRegistry(compute_abi_hash())


@pytest.fixture(scope="module")
def deposit_key(provers):
    return provers[CircuitId.DEPOSIT].verifying_key_bytes


class TestVerificationKeyRegistry:
    """Hash binding and lookups."""

    def test_set_and_get(self, registry, deposit_key):
        record = registry.set_key(CircuitId.DEPOSIT, deposit_key, sha256(deposit_key))
        assert registry.get_key(0) is record
        assert record.n_public == 1
        assert record.content_hash == sha256(deposit_key)
        assert record.verifying_key.n_public == 1

    def test_prepare_does_not_install(self, registry, deposit_key):
        record = registry.prepare_key(CircuitId.DEPOSIT, deposit_key, sha256(deposit_key))
        assert not registry.has_key(CircuitId.DEPOSIT)
        assert registry.store(record) is record
        assert registry.get_key(CircuitId.DEPOSIT) is record

    def test_modified_byte_changes_hash(self, deposit_key):
        tampered = bytearray(deposit_key)
        tampered[-1] ^= 0x01
        assert sha256(bytes(tampered)) != sha256(deposit_key)

    def test_hash_mismatch_rejected(self, registry, deposit_key):
        tampered = bytearray(deposit_key)
        tampered[-1] ^= 0x01
        with pytest.raises(VkHashMismatchError):
            registry.set_key(CircuitId.DEPOSIT, bytes(tampered), sha256(deposit_key))
        assert not registry.has_key(CircuitId.DEPOSIT)

    def test_abi_mismatch_rejected(self, registry, deposit_key):
        with pytest.raises(AbiHashMismatchError):
            registry.set_key(CircuitId.DEPOSIT, deposit_key, sha256(deposit_key), abi_hash=b"\x00" * 32)

    def test_key_for_wrong_circuit_rejected(self, registry, deposit_key):
        with pytest.raises(InvalidVerificationKeyError):
            registry.set_key(CircuitId.TRANSFER, deposit_key, sha256(deposit_key))

    def test_unknown_circuit(self, registry, deposit_key):
        with pytest.raises(InvalidCircuitError):
            registry.set_key(3, deposit_key, sha256(deposit_key))

    def test_missing_key(self, registry):
        with pytest.raises(VerificationKeyNotSetError):
            registry.get_key(CircuitId.WITHDRAW)

    def test_replace_key(self, registry, provers, deposit_key):
        registry.set_key(CircuitId.DEPOSIT, deposit_key, sha256(deposit_key))
        from zkpool.crypto.setup import DevelopmentSetup
        replacement = DevelopmentSetup.generate(1).verifying_key.to_bytes()
        registry.set_key(CircuitId.DEPOSIT, replacement, sha256(replacement))
        assert registry.get_key(CircuitId.DEPOSIT).key_bytes == replacement

    def test_record_summary(self, registry, deposit_key):
        record = registry.set_key(CircuitId.DEPOSIT, deposit_key, sha256(deposit_key))
        summary = record.to_dict()
        assert summary["circuit"] == "deposit"
        assert summary["size"] == len(deposit_key)
