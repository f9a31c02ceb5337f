"""Pytest configuration and fixtures."""

import pytest
import sys
from pathlib import Path

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from zkpool.core.abi import CircuitId, encode_field
from zkpool.core.commitment import Note
from zkpool.core.merkle_tree import MerkleTree
from zkpool.core.pool import ShieldedPool
from zkpool.core.treasury import InMemoryTreasury
from zkpool.crypto.circuits import CircuitProver, TransferWitness, WithdrawWitness
from zkpool.crypto.groth16 import Groth16Verifier
from zkpool.security import Keypair
from zkpool.utils.hash import sha256

TEST_DEPTH = 8
TEST_WINDOW = 4


@pytest.fixture(scope="session")
def provers():
    """Development provers for all three circuits (expensive; built once)."""
    return {circuit: CircuitProver.generate(circuit, merkle_depth=TEST_DEPTH) for circuit in CircuitId}


@pytest.fixture(scope="session")
def admin_keypair():
    return Keypair.from_seed(b"\x01" * 32)


@pytest.fixture(scope="session")
def admin(admin_keypair):
    return admin_keypair.public_key


@pytest.fixture
def treasury():
    return InMemoryTreasury(initial_balance=1_000_000)


def upload_keys(pool, admin, provers):
    for circuit, prover in provers.items():
        key = prover.verifying_key_bytes
        pool.set_verification_key(admin, circuit, key, sha256(key))


@pytest.fixture
def pool(admin, provers, treasury):
    """Initialized pool with all keys uploaded."""
    pool = ShieldedPool.initialize(
        admin,
        Groth16Verifier(),
        merkle_depth=TEST_DEPTH,
        root_window=TEST_WINDOW,
        treasury=treasury,
    )
    upload_keys(pool, admin, provers)
    return pool


class Wallet:
    """Off-ledger helper: keeps a tree and builds spend witnesses."""

    def __init__(self, depth=TEST_DEPTH, secret_key=12345):
        self.tree = MerkleTree(depth)
        self.secret_key = secret_key

    def deposit(self, amount, recipient_key=777):
        note = Note.create(recipient_key, amount)
        index = self.tree.insert(note.commitment)
        return note, index

    def transfer_witness(self, note, index, new_amount, fee):
        return TransferWitness(
            secret_key=self.secret_key,
            note_id=index,
            note=note,
            inclusion=self.tree.prove_inclusion(index),
            root=self.tree.root(),
            new_note=Note.create(888, new_amount),
            fee=fee,
        )

    def withdraw_witness(self, note, index, recipient, amount, fee):
        return WithdrawWitness(
            secret_key=self.secret_key,
            note_id=index,
            note=note,
            inclusion=self.tree.prove_inclusion(index),
            root=self.tree.root(),
            recipient=recipient,
            amount=amount,
            fee=fee,
        )

    @property
    def root_bytes(self):
        return encode_field(self.tree.root())


@pytest.fixture
def wallet():
    return Wallet()


@pytest.fixture
def key_uploader(admin, provers):
    """Callable that uploads every circuit key to a pool."""
    return lambda pool: upload_keys(pool, admin, provers)
