"""Deterministic account addresses for pool state."""

from zkpool.utils.hash import hash_concatenate

ADDRESS_PREFIX = b"zkpool/account"

CONFIG_TAG = b"config"
VK_TAG = b"vk"
ROOTS_TAG = b"roots"
NULLIFIERS_TAG = b"nullifiers"
TREASURY_TAG = b"treasury"


def derive_address(tag: bytes, *seeds: bytes) -> bytes:
    """
    Derive a 32-byte account address from a tag and seeds.

    Each component is length-prefixed so different splits of the same
    bytes never produce the same address.
    """
    parts = [ADDRESS_PREFIX]
    for component in (tag, *seeds):
        parts.append(len(component).to_bytes(2, "little"))
        parts.append(component)
    return hash_concatenate(*parts)


def config_address() -> bytes:
    return derive_address(CONFIG_TAG)


def vk_address(circuit_id: int) -> bytes:
    return derive_address(VK_TAG, bytes([int(circuit_id)]))


def roots_address() -> bytes:
    return derive_address(ROOTS_TAG)


def nullifier_shard_address(shard_id: int) -> bytes:
    return derive_address(NULLIFIERS_TAG, shard_id.to_bytes(2, "little"))


def treasury_address() -> bytes:
    return derive_address(TREASURY_TAG)
