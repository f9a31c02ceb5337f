"""Tests for the shielded pool state machine."""

import threading

import pytest

from zkpool.core.abi import CircuitId, compute_abi_hash, encode_field, encode_u64
from zkpool.core.commitment import Note
from zkpool.core.pool import ShieldedPool
from zkpool.crypto.circuits import DepositWitness
from zkpool.core.treasury import InMemoryTreasury
from zkpool.crypto.groth16 import PROOF_SIZE, Groth16Verifier, StructuralVerifier
from zkpool.exceptions import (
    AbiHashMismatchError,
    FeeExceedsAmountError,
    InsecureVerifierError,
    InsufficientFundsError,
    InvalidMerkleDepthError,
    InvalidProofError,
    InvalidRootWindowError,
    NullifierAlreadySpentError,
    NullifierCapacityExceededError,
    PoolPausedError,
    PublicInputCountMismatchError,
    ShieldedPoolError,
    StaleRootError,
    StorageError,
    UnauthorizedError,
    VerificationKeyNotSetError,
    VkHashMismatchError,
)
from zkpool.utils.hash import sha256

OUTSIDER = b"\x09" * 32
RELAYER = b"\x0a" * 32
RECIPIENT = bytes(range(100, 132))
FEE_PAYEE = b"\x0b" * 32


def prepare_transfer(pool, admin, provers, wallet, amount=100, fee=10):
    note, index = wallet.deposit(amount)
    pool.add_root(admin, wallet.tree.root())
    witness = wallet.transfer_witness(note, index, amount - fee, fee)
    return provers[CircuitId.TRANSFER].prove(witness)


def prepare_withdraw(pool, admin, provers, wallet, amount=100, fee=5):
    note, index = wallet.deposit(amount + fee)
    pool.add_root(admin, wallet.tree.root())
    witness = wallet.withdraw_witness(note, index, RECIPIENT, amount, fee)
    return provers[CircuitId.WITHDRAW].prove(witness)


def ledger_state(pool):
    return (pool.roots.to_dict(), pool.nullifiers.snapshot(), pool.treasury.balance())


class TestInitialization:
    """Pool creation."""

    def test_initialize_emits_event(self, admin):
        pool = ShieldedPool.initialize(admin, Groth16Verifier())
        assert pool.config.merkle_depth == 20
        assert pool.config.root_window == 64
        assert pool.config.abi_hash == compute_abi_hash()
        assert [e.kind for e in pool.events.events()] == ["Initialized"]

    def test_invalid_depth(self, admin):
        with pytest.raises(InvalidMerkleDepthError):
            ShieldedPool.initialize(admin, Groth16Verifier(), merkle_depth=0)
        with pytest.raises(InvalidMerkleDepthError):
            ShieldedPool.initialize(admin, Groth16Verifier(), merkle_depth=33)

    def test_invalid_window(self, admin):
        with pytest.raises(InvalidRootWindowError):
            ShieldedPool.initialize(admin, Groth16Verifier(), root_window=0)
        with pytest.raises(InvalidRootWindowError):
            ShieldedPool.initialize(admin, Groth16Verifier(), root_window=257)

    def test_abi_hash_must_match_layout(self, admin):
        with pytest.raises(AbiHashMismatchError):
            ShieldedPool.initialize(admin, Groth16Verifier(), abi_hash=b"\x01" * 32)

    def test_admin_must_be_identity(self):
        with pytest.raises(ValueError):
            ShieldedPool.initialize(b"short", Groth16Verifier())

    def test_structural_verifier_needs_opt_in(self, admin):
        with pytest.raises(InsecureVerifierError):
            ShieldedPool.initialize(admin, StructuralVerifier())
        pool = ShieldedPool.initialize(admin, StructuralVerifier(), allow_insecure_verifier=True)
        assert pool.state()["verifier"] == "structural"


class TestAdminOperations:
    """Admin-gated mutations."""

    def test_outsider_cannot_mutate(self, pool, provers):
        key = provers[CircuitId.DEPOSIT].verifying_key_bytes
        with pytest.raises(UnauthorizedError):
            pool.set_verification_key(OUTSIDER, CircuitId.DEPOSIT, key, sha256(key))
        with pytest.raises(UnauthorizedError):
            pool.add_root(OUTSIDER, 1)
        with pytest.raises(UnauthorizedError):
            pool.set_paused(OUTSIDER, True)
        with pytest.raises(UnauthorizedError):
            pool.set_relayer(OUTSIDER, RELAYER)
        assert len(pool.roots) == 0
        assert not pool.config.paused

    def test_relayer_can_add_roots_only(self, pool, admin):
        pool.set_relayer(admin, RELAYER)
        assert pool.add_root(RELAYER, 5) == 0
        with pytest.raises(UnauthorizedError):
            pool.set_paused(RELAYER, True)
        pool.set_relayer(admin, RELAYER, enabled=False)
        with pytest.raises(UnauthorizedError):
            pool.add_root(RELAYER, 6)

    def test_add_root_accepts_bytes(self, pool, admin):
        pool.add_root(admin, encode_field(42))
        assert pool.roots.contains(42)
        event = pool.events.events("RootAdded")[-1]
        assert (event.root, event.index) == (42, 0)

    def test_key_upload_records_hash(self, pool, provers):
        for circuit, prover in provers.items():
            assert pool.config.vk_hashes[circuit] == sha256(prover.verifying_key_bytes)
        assert len(pool.events.events("VerificationKeySet")) == 3

    def test_mismatched_key_upload_rejected(self, pool, admin, provers):
        key = provers[CircuitId.DEPOSIT].verifying_key_bytes
        before = pool.config.vk_hashes[CircuitId.DEPOSIT]
        with pytest.raises(VkHashMismatchError):
            pool.set_verification_key(admin, CircuitId.DEPOSIT, key[:-1] + bytes([key[-1] ^ 1]), sha256(key))
        assert pool.config.vk_hashes[CircuitId.DEPOSIT] == before

    def test_pause_toggle(self, pool, admin):
        pool.set_paused(admin, True)
        assert pool.config.paused
        pool.set_paused(admin, False)
        assert not pool.config.paused
        assert [e.paused for e in pool.events.events("PoolPausedChanged")] == [True, False]


class TestDeposit:
    """Deposit submissions."""

    def test_deposit_accepted(self, pool, provers):
        note = Note.create(7, 50)
        proof, inputs = provers[CircuitId.DEPOSIT].prove(DepositWitness(note))
        receipt = pool.submit_deposit(proof, inputs)
        assert receipt.commitment == note.commitment
        event = pool.events.events("NewCommitment")[-1]
        assert event.commitment == note.commitment
        assert event.circuit_id == CircuitId.DEPOSIT

    def test_deposit_without_key(self, admin, provers):
        pool = ShieldedPool.initialize(admin, Groth16Verifier(), merkle_depth=8)
        proof, inputs = provers[CircuitId.DEPOSIT].prove(DepositWitness(Note.create(1, 1)))
        with pytest.raises(VerificationKeyNotSetError):
            pool.submit_deposit(proof, inputs)

    def test_deposit_proof_bound_to_commitment(self, pool, provers):
        proof, _ = provers[CircuitId.DEPOSIT].prove(DepositWitness(Note.create(1, 1)))
        with pytest.raises(InvalidProofError):
            pool.submit_deposit(proof, [encode_field(12345)])
        assert pool.events.events("NewCommitment") == []

    def test_count_mismatch(self, pool):
        with pytest.raises(PublicInputCountMismatchError):
            pool.submit_deposit(bytes(PROOF_SIZE), [encode_field(1), encode_field(2)])


class TestTransfer:
    """Transfer submissions."""

    def test_transfer_accepted_and_spent(self, pool, admin, provers, wallet):
        proof, inputs = prepare_transfer(pool, admin, provers, wallet)
        receipt = pool.submit_transfer(proof, inputs)
        assert pool.is_spent(receipt.nullifier)
        assert receipt.fee == 10
        kinds = [e.kind for e in pool.events.events()][-2:]
        assert kinds == ["NullifierSpent", "NewCommitment"]

    def test_double_spend(self, pool, admin, provers, wallet):
        proof, inputs = prepare_transfer(pool, admin, provers, wallet)
        pool.submit_transfer(proof, inputs)
        with pytest.raises(NullifierAlreadySpentError):
            pool.submit_transfer(proof, inputs)
        assert len(pool.nullifiers) == 1

    def test_unknown_root_is_stale(self, pool, admin, provers, wallet):
        note, index = wallet.deposit(100)
        witness = wallet.transfer_witness(note, index, 100, 0)
        proof, inputs = provers[CircuitId.TRANSFER].prove(witness)
        before = ledger_state(pool)
        with pytest.raises(StaleRootError):
            pool.submit_transfer(proof, inputs)
        assert ledger_state(pool) == before

    def test_evicted_root_is_stale(self, pool, admin, provers, wallet):
        proof, inputs = prepare_transfer(pool, admin, provers, wallet)
        for filler in range(pool.config.root_window):
            pool.add_root(admin, 10_000 + filler)
        with pytest.raises(StaleRootError):
            pool.submit_transfer(proof, inputs)
        assert len(pool.nullifiers) == 0

    def test_invalid_proof_does_not_spend(self, pool, admin, provers, wallet):
        proof, inputs = prepare_transfer(pool, admin, provers, wallet)
        other_proof, _ = prepare_transfer(pool, admin, provers, wallet)
        before = ledger_state(pool)
        with pytest.raises(InvalidProofError):
            pool.submit_transfer(other_proof, inputs)
        assert ledger_state(pool) == before

    @pytest.mark.parametrize("index,bit", [(0, 0), (1, 0), (1, 77), (2, 200), (3, 3), (3, 70)])
    def test_tampered_input_rejected(self, pool, admin, provers, wallet, index, bit):
        proof, inputs = prepare_transfer(pool, admin, provers, wallet)
        tampered = list(inputs)
        data = bytearray(tampered[index])
        data[bit // 8] ^= 1 << (bit % 8)
        tampered[index] = bytes(data)
        before = ledger_state(pool)
        with pytest.raises(ShieldedPoolError):
            pool.submit_transfer(proof, tampered)
        assert ledger_state(pool) == before

    def test_paused_pool_rejects(self, pool, admin, provers, wallet):
        proof, inputs = prepare_transfer(pool, admin, provers, wallet)
        pool.set_paused(admin, True)
        with pytest.raises(PoolPausedError):
            pool.submit_transfer(proof, inputs)
        pool.set_paused(admin, False)
        pool.submit_transfer(proof, inputs)

    def test_key_binding_checked(self, pool, admin, provers, wallet):
        proof, inputs = prepare_transfer(pool, admin, provers, wallet)
        pool.config.vk_hashes[CircuitId.TRANSFER] = b"\x00" * 32
        with pytest.raises(VkHashMismatchError):
            pool.submit_transfer(proof, inputs)


class TestWithdraw:
    """Withdraw submissions."""

    def test_withdraw_releases_amount(self, pool, admin, provers, wallet, treasury):
        proof, inputs = prepare_withdraw(pool, admin, provers, wallet, amount=100, fee=5)
        start = treasury.balance()
        receipt = pool.submit_withdraw(proof, inputs)
        assert receipt.recipient == RECIPIENT
        assert treasury.paid_to(RECIPIENT) == 100
        assert treasury.balance() == start - 100
        event = pool.events.events("Withdrawn")[-1]
        assert (event.recipient, event.amount, event.fee) == (RECIPIENT, 100, 5)

    def test_fee_paid_to_fee_recipient(self, pool, admin, provers, wallet, treasury):
        proof, inputs = prepare_withdraw(pool, admin, provers, wallet, amount=100, fee=5)
        pool.submit_withdraw(proof, inputs, fee_recipient=FEE_PAYEE)
        assert treasury.paid_to(FEE_PAYEE) == 5
        assert treasury.paid_to(RECIPIENT) == 100

    def test_withdraw_double_spend(self, pool, admin, provers, wallet):
        proof, inputs = prepare_withdraw(pool, admin, provers, wallet)
        pool.submit_withdraw(proof, inputs)
        with pytest.raises(NullifierAlreadySpentError):
            pool.submit_withdraw(proof, inputs)

    def test_fee_exceeds_amount(self, pool):
        inputs = [encode_field(1), encode_field(2), bytes(32), bytes(32), encode_u64(5), encode_u64(6)]
        with pytest.raises(FeeExceedsAmountError):
            pool.submit_withdraw(bytes(PROOF_SIZE), inputs)

    def test_insufficient_funds_does_not_spend(self, admin, provers, wallet, key_uploader):
        pool = ShieldedPool.initialize(
            admin, Groth16Verifier(), merkle_depth=8, root_window=4, treasury=InMemoryTreasury(10)
        )
        key_uploader(pool)
        proof, inputs = prepare_withdraw(pool, admin, provers, wallet, amount=100, fee=0)
        with pytest.raises(InsufficientFundsError):
            pool.submit_withdraw(proof, inputs)
        assert len(pool.nullifiers) == 0
        assert pool.treasury.balance() == 10

    def test_recipient_limb_overflow(self, pool):
        bad_hi = bytearray(32)
        bad_hi[20] = 1
        inputs = [encode_field(1), encode_field(2), bytes(32), bytes(bad_hi), encode_u64(5), encode_u64(0)]
        with pytest.raises(ShieldedPoolError) as excinfo:
            pool.submit_withdraw(bytes(PROOF_SIZE), inputs)
        assert excinfo.value.code == "RecipientLimbOverflow"


class FailOn:
    """Subscriber that rejects batches containing a given event kind."""

    def __init__(self, kind):
        self.kind = kind
        self.active = True

    def __call__(self, events):
        if self.active and any(event.kind == self.kind for event in events):
            raise StorageError(f"cannot store {self.kind}")


class OfflineTreasury(InMemoryTreasury):
    def hold(self, payouts):
        raise StorageError("treasury offline")


class TestAtomicity:
    """A failure at any step leaves no partial effects."""

    def test_failed_publication_leaves_nullifier_unspent(self, pool, admin, provers, wallet):
        proof, inputs = prepare_transfer(pool, admin, provers, wallet)
        rejecter = FailOn("NullifierSpent")
        pool.events.subscribe(rejecter)
        before = ledger_state(pool)
        published = pool.events.published

        with pytest.raises(StorageError):
            pool.submit_transfer(proof, inputs)
        assert pool.nullifiers.total_spent() == 0
        assert pool.events.events("NewCommitment") == []
        assert pool.events.published == published
        assert ledger_state(pool) == before

        rejecter.active = False
        receipt = pool.submit_transfer(proof, inputs)
        assert pool.is_spent(receipt.nullifier)

    def test_failed_publication_leaves_window(self, pool, admin):
        pool.add_root(admin, 1)
        pool.events.subscribe(FailOn("RootAdded"))
        with pytest.raises(StorageError):
            pool.add_root(admin, 2)
        assert pool.roots.roots() == [1]
        assert pool.roots.cursor == 1

    def test_failed_publication_installs_no_key(self, admin, provers):
        pool = ShieldedPool.initialize(admin, Groth16Verifier(), merkle_depth=8)
        pool.events.subscribe(FailOn("VerificationKeySet"))
        key = provers[CircuitId.DEPOSIT].verifying_key_bytes
        with pytest.raises(StorageError):
            pool.set_verification_key(admin, CircuitId.DEPOSIT, key, sha256(key))
        assert pool.registry.records() == {}
        assert CircuitId.DEPOSIT not in pool.config.vk_hashes

    def test_failed_publication_keeps_pause_flag(self, pool, admin):
        pool.events.subscribe(FailOn("PoolPausedChanged"))
        with pytest.raises(StorageError):
            pool.set_paused(admin, True)
        assert not pool.config.paused

    def test_failed_withdraw_publication_returns_funds(self, pool, admin, provers, wallet, treasury):
        proof, inputs = prepare_withdraw(pool, admin, provers, wallet, amount=100, fee=5)
        pool.events.subscribe(FailOn("Withdrawn"))
        start = treasury.balance()
        with pytest.raises(StorageError):
            pool.submit_withdraw(proof, inputs, fee_recipient=FEE_PAYEE)
        assert treasury.balance() == start
        assert treasury.payouts == []
        assert pool.nullifiers.total_spent() == 0
        assert pool.events.events("Withdrawn") == []

    def test_failed_hold_publishes_nothing(self, admin, provers, wallet, key_uploader):
        pool = ShieldedPool.initialize(
            admin, Groth16Verifier(), merkle_depth=8, root_window=4, treasury=OfflineTreasury(1_000)
        )
        key_uploader(pool)
        proof, inputs = prepare_withdraw(pool, admin, provers, wallet)
        published = pool.events.published
        with pytest.raises(StorageError):
            pool.submit_withdraw(proof, inputs)
        assert pool.nullifiers.total_spent() == 0
        assert pool.events.published == published
        assert pool.treasury.balance() == 1_000

    def test_full_shard_publishes_nothing(self, admin, provers, wallet, key_uploader):
        pool = ShieldedPool.initialize(
            admin, Groth16Verifier(), merkle_depth=8, root_window=4, nullifier_shard_capacity=1
        )
        key_uploader(pool)
        first = prepare_transfer(pool, admin, provers, wallet)
        second = prepare_transfer(pool, admin, provers, wallet)
        pool.submit_transfer(*first)
        published = pool.events.published
        with pytest.raises(NullifierCapacityExceededError):
            pool.submit_transfer(*second)
        assert pool.events.published == published
        assert pool.nullifiers.total_spent() == 1


class TestConcurrentSubmission:
    """Racing submissions of the same proof."""

    def test_one_of_many_transfers_wins(self, pool, admin, provers, wallet):
        proof, inputs = prepare_transfer(pool, admin, provers, wallet)
        barrier = threading.Barrier(4)
        results = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                pool.submit_transfer(proof, inputs)
                outcome = "ok"
            except NullifierAlreadySpentError:
                outcome = "spent"
            with results_lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(results) == ["ok", "spent", "spent", "spent"]
        assert pool.nullifiers.total_spent() == 1
        assert len(pool.events.events("NewCommitment")) == 1


class TestQueries:
    """Read-only views."""

    def test_state_snapshot(self, pool, admin):
        pool.add_root(admin, 3)
        state = pool.state()
        assert state["config"]["root_window"] == 4
        assert state["roots"]["size"] == 1
        assert state["verifier"] == "groth16"
        assert len(state["verification_keys"]) == 3
        assert "config" in state["accounts"]

    def test_submit_dispatch(self, pool, provers):
        proof, inputs = provers[CircuitId.DEPOSIT].prove(DepositWitness(Note.create(1, 2)))
        receipt = pool.submit(CircuitId.DEPOSIT, proof, inputs)
        assert receipt.to_dict()["circuit"] == "deposit"
