"""Cryptographic hash utilities."""

import hashlib
from typing import Union

from zkpool.crypto.field import SCALAR_FIELD_MODULUS, field_to_bytes_le, require_field_element

# Domain tags; each use of the hash gets its own tag so outputs never collide
# across roles even when arities match.
COMMITMENT_DOMAIN = b"zkpool/note-commitment/v1"
NULLIFIER_DOMAIN = b"zkpool/nullifier/v1"
MERKLE_NODE_DOMAIN = b"zkpool/merkle-node/v1"


def sha256(data: Union[bytes, str]) -> bytes:
    """
    Compute SHA-256 hash of data.

    Args:
        data: Bytes or string to hash

    Returns:
        bytes: 32-byte SHA-256 hash
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).digest()


def hash_concatenate(*data: Union[bytes, str]) -> bytes:
    """
    Hash concatenated data.

    Args:
        *data: Multiple bytes or strings to concatenate and hash

    Returns:
        bytes: SHA-256 hash of concatenated data
    """
    hasher = hashlib.sha256()
    for item in data:
        if isinstance(item, str):
            item = item.encode('utf-8')
        hasher.update(item)
    return hasher.digest()


def hash_to_field(domain: bytes, *elements: int) -> int:
    """
    Hash field elements into the scalar field under a domain tag.

    The preimage is ``len(domain) || domain || arity || e_0 || ... || e_n``
    with each element as 32 little-endian bytes.

    Args:
        domain: Domain separation tag
        *elements: Canonical field elements

    Returns:
        int: Digest reduced modulo the scalar field order

    Raises:
        InvalidFieldElementError: If any element is not canonical
    """
    hasher = hashlib.sha256()
    hasher.update(len(domain).to_bytes(1, "little"))
    hasher.update(domain)
    hasher.update(len(elements).to_bytes(1, "little"))
    for index, element in enumerate(elements):
        require_field_element(element, f"element {index}")
        hasher.update(field_to_bytes_le(element))
    return int.from_bytes(hasher.digest(), "little") % SCALAR_FIELD_MODULUS


def hash2(domain: bytes, left: int, right: int) -> int:
    """Two-to-one field hash."""
    return hash_to_field(domain, left, right)


def hash3(domain: bytes, a: int, b: int, c: int) -> int:
    """Three-to-one field hash."""
    return hash_to_field(domain, a, b, c)


def merkle_hash(left: int, right: int) -> int:
    """
    Compute the parent of two Merkle siblings.

    Args:
        left: Left child (field element)
        right: Right child (field element)

    Returns:
        int: Parent node
    """
    return hash2(MERKLE_NODE_DOMAIN, left, right)
