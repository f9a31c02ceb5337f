"""Shielded pool: the verification gate state machine.

Ties the root window, the nullifier ledger, the key registry and a proof
verifier together behind three user operations and a handful of
admin-only mutations.

Submission flow (Transfer shown; Withdraw adds funds release):

    1. Pool not paused
    2. Public inputs decoded against the locked layout (count, ranges)
    3. Key present and bound to the configuration
    4. Proof verified
    5. Root in the current window
    6. Nullifier not yet spent and its shard not full
    7. Events published (persisted by a database subscriber)
    8. Nullifier spent (last mutating step)

Every check runs before any mutation, so a rejected submission leaves the
window, ledger and registry unchanged. Events are published before the
in-memory state changes, so a subscriber failure aborts the operation
with nothing applied. Withdrawals hold their funds before publishing and
settle them only after the spend. Pairing work happens outside the pool
lock against a snapshot of the key; the key binding and pause flag are
re-checked under the lock before anything is written.
"""

import hmac
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Dict, Iterable, Optional, Sequence, Set, Tuple, Union

from zkpool.core.abi import (
    CircuitId,
    DepositInputs,
    TransferInputs,
    WithdrawInputs,
    compute_abi_hash,
    decode_field,
    decode_public_inputs,
    to_circuit_id,
)
from zkpool.core.addresses import (
    config_address,
    nullifier_shard_address,
    roots_address,
    treasury_address,
    vk_address,
)
from zkpool.core.events import (
    EventLog,
    Initialized,
    NewCommitment,
    NullifierSpent,
    PoolPausedChanged,
    RelayerChanged,
    RootAdded,
    VerificationKeySet,
    Withdrawn,
)
from zkpool.core.merkle_tree import DEFAULT_MERKLE_DEPTH, validate_depth
from zkpool.core.nullifier_ledger import MAX_NULLIFIERS_PER_SHARD, NullifierLedger
from zkpool.core.root_history import DEFAULT_ROOT_WINDOW, RootHistoryWindow
from zkpool.core.treasury import FundsTransfer, InMemoryTreasury
from zkpool.core.vk_registry import KeyRecord, VerificationKeyRegistry
from zkpool.crypto.field import require_field_element
from zkpool.crypto.groth16 import ProofVerifier, build_verifier
from zkpool.exceptions import (
    AbiHashMismatchError,
    FeeExceedsAmountError,
    InsecureVerifierError,
    InvalidProofError,
    PoolPausedError,
    StaleRootError,
    UnauthorizedError,
    VkHashMismatchError,
)

logger = logging.getLogger(__name__)

IDENTITY_SIZE = 32


def _require_identity(identity: bytes, name: str) -> bytes:
    if not isinstance(identity, (bytes, bytearray)) or len(identity) != IDENTITY_SIZE:
        raise ValueError(f"{name} must be a {IDENTITY_SIZE}-byte identity")
    return bytes(identity)


@dataclass
class PoolConfig:
    """Configuration record created once at initialization."""

    admin: bytes
    merkle_depth: int
    root_window: int
    abi_hash: bytes
    paused: bool = False
    vk_hashes: Dict[CircuitId, bytes] = field(default_factory=dict)
    relayers: Set[bytes] = field(default_factory=set)
    initialized_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        return {
            "admin": "0x" + self.admin.hex(),
            "merkle_depth": self.merkle_depth,
            "root_window": self.root_window,
            "abi_hash": "0x" + self.abi_hash.hex(),
            "paused": self.paused,
            "vk_hashes": {c.name.lower(): "0x" + h.hex() for c, h in sorted(self.vk_hashes.items())},
            "relayers": sorted("0x" + r.hex() for r in self.relayers),
            "initialized_at": self.initialized_at.isoformat(),
        }


@dataclass(frozen=True)
class DepositReceipt:
    commitment: int
    timestamp: datetime

    def to_dict(self) -> dict:
        return {"circuit": "deposit", "commitment": hex(self.commitment), "timestamp": self.timestamp.isoformat()}


@dataclass(frozen=True)
class TransferReceipt:
    nullifier: int
    new_commitment: int
    fee: int
    shard: int
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "circuit": "transfer",
            "nullifier": hex(self.nullifier),
            "new_commitment": hex(self.new_commitment),
            "fee": self.fee,
            "shard": self.shard,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class WithdrawReceipt:
    nullifier: int
    recipient: bytes
    amount: int
    fee: int
    fee_recipient: Optional[bytes]
    shard: int
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "circuit": "withdraw",
            "nullifier": hex(self.nullifier),
            "recipient": "0x" + self.recipient.hex(),
            "amount": self.amount,
            "fee": self.fee,
            "fee_recipient": None if self.fee_recipient is None else "0x" + self.fee_recipient.hex(),
            "shard": self.shard,
            "timestamp": self.timestamp.isoformat(),
        }


class ShieldedPool:
    """Ledger-facing program for deposits, private transfers and withdrawals."""

    def __init__(
        self,
        config: PoolConfig,
        verifier: ProofVerifier,
        treasury: Optional[FundsTransfer] = None,
        nullifier_shard_bits: int = 0,
        nullifier_shard_capacity: int = MAX_NULLIFIERS_PER_SHARD,
        event_log: Optional[EventLog] = None,
        allow_insecure_verifier: bool = False,
    ):
        if not verifier.is_sound and not allow_insecure_verifier:
            raise InsecureVerifierError(
                f"The {verifier.name} verifier does not check proofs; pass allow_insecure_verifier=True"
            )
        self.config = config
        self.verifier = verifier
        self.treasury = treasury if treasury is not None else InMemoryTreasury()
        self.registry = VerificationKeyRegistry(config.abi_hash)
        self.roots = RootHistoryWindow(config.root_window)
        self.nullifiers = NullifierLedger(nullifier_shard_bits, nullifier_shard_capacity)
        self.events = event_log if event_log is not None else EventLog()
        self._lock = threading.RLock()

        if not verifier.is_sound:
            logger.warning("Pool is running with the %s verifier; proofs are NOT checked", verifier.name)

    @classmethod
    def initialize(
        cls,
        admin: bytes,
        verifier: ProofVerifier,
        merkle_depth: int = DEFAULT_MERKLE_DEPTH,
        root_window: int = DEFAULT_ROOT_WINDOW,
        abi_hash: Optional[bytes] = None,
        treasury: Optional[FundsTransfer] = None,
        nullifier_shard_bits: int = 0,
        nullifier_shard_capacity: int = MAX_NULLIFIERS_PER_SHARD,
        event_log: Optional[EventLog] = None,
        allow_insecure_verifier: bool = False,
    ) -> "ShieldedPool":
        """
        Create a pool and emit ``Initialized``.

        Args:
            admin: 32-byte admin identity
            verifier: Proof verifier backend
            merkle_depth: Depth of the off-ledger tree (1..32)
            root_window: Number of recent roots accepted (1..256)
            abi_hash: Layout hash the deployment was built for; must equal
                ``compute_abi_hash()``
            allow_insecure_verifier: Accept a verifier that does not check proofs

        Raises:
            InvalidMerkleDepthError: Depth out of range
            InvalidRootWindowError: Window out of range
            AbiHashMismatchError: abi_hash differs from this build's layout
            InsecureVerifierError: Unsound verifier without allow_insecure_verifier
        """
        admin = _require_identity(admin, "admin")
        validate_depth(merkle_depth)
        expected = compute_abi_hash()
        abi_hash = expected if abi_hash is None else bytes(abi_hash)
        if not hmac.compare_digest(abi_hash, expected):
            raise AbiHashMismatchError("ABI hash does not match the locked public-input layout")

        config = PoolConfig(
            admin=admin,
            merkle_depth=merkle_depth,
            root_window=root_window,
            abi_hash=abi_hash,
        )
        pool = cls(
            config,
            verifier,
            treasury=treasury,
            nullifier_shard_bits=nullifier_shard_bits,
            nullifier_shard_capacity=nullifier_shard_capacity,
            event_log=event_log,
            allow_insecure_verifier=allow_insecure_verifier,
        )
        pool.events.publish(
            Initialized(
                admin=admin,
                merkle_depth=merkle_depth,
                root_window=root_window,
                abi_hash=abi_hash,
                timestamp=config.initialized_at,
            )
        )
        logger.info("Pool initialized: depth=%d window=%d", merkle_depth, root_window)
        return pool

    @classmethod
    def from_settings(
        cls,
        admin: bytes,
        settings,
        treasury: Optional[FundsTransfer] = None,
        event_log: Optional[EventLog] = None,
    ) -> "ShieldedPool":
        """Initialize a pool using PoolSettings for sizes, history and verifier choice."""
        if event_log is None:
            event_log = EventLog(settings.event_history)
        return cls.initialize(
            admin,
            build_verifier(settings),
            merkle_depth=settings.merkle_depth,
            root_window=settings.root_window,
            treasury=treasury,
            nullifier_shard_bits=settings.nullifier_shard_bits,
            nullifier_shard_capacity=settings.nullifier_shard_capacity,
            event_log=event_log,
            allow_insecure_verifier=settings.allow_insecure_verifier,
        )

    # Authorization

    def _is_admin(self, authority: bytes) -> bool:
        return isinstance(authority, (bytes, bytearray)) and hmac.compare_digest(
            bytes(authority), self.config.admin
        )

    def _require_admin(self, authority: bytes) -> None:
        if not self._is_admin(authority):
            raise UnauthorizedError("Only the pool admin may perform this operation")

    def _require_root_writer(self, authority: bytes) -> None:
        is_relayer = isinstance(authority, (bytes, bytearray)) and bytes(authority) in self.config.relayers
        if not (self._is_admin(authority) or is_relayer):
            raise UnauthorizedError("Only the admin or a relayer may add roots")

    # Admin operations

    def set_verification_key(
        self,
        authority: bytes,
        circuit_id,
        key_bytes: bytes,
        declared_hash: bytes,
        abi_hash: Optional[bytes] = None,
    ) -> KeyRecord:
        """
        Upload or replace the key for a circuit.

        Raises:
            UnauthorizedError: Caller is not the admin
            VkHashMismatchError: Content hash differs from declared_hash
            AbiHashMismatchError: Key built for another layout
            InvalidVerificationKeyError: Key does not parse for the circuit
        """
        with self._lock:
            self._require_admin(authority)
            record = self.registry.prepare_key(circuit_id, key_bytes, declared_hash, abi_hash)
            self.events.publish(
                VerificationKeySet(
                    circuit_id=int(record.circuit_id),
                    vk_hash=record.content_hash,
                    n_public=record.n_public,
                    key_bytes=record.key_bytes,
                )
            )
            self.registry.store(record)
            self.config.vk_hashes[record.circuit_id] = record.content_hash
        return record

    def add_root(self, authority: bytes, root: Union[int, bytes]) -> int:
        """
        Append a root to the window.

        Args:
            authority: Admin or relayer identity
            root: Root as a field element or its 32-byte encoding

        Returns:
            int: Slot the root was written to
        """
        if isinstance(root, (bytes, bytearray)):
            root = decode_field(bytes(root))
        require_field_element(root, "root")
        with self._lock:
            self._require_root_writer(authority)
            self.events.publish(RootAdded(root=root, index=self.roots.cursor))
            slot = self.roots.append(root)
        logger.info("Root %s... added at slot %d", hex(root)[:18], slot)
        return slot

    def set_paused(self, authority: bytes, paused: bool) -> None:
        with self._lock:
            self._require_admin(authority)
            self.events.publish(PoolPausedChanged(paused=bool(paused), admin=bytes(authority)))
            self.config.paused = bool(paused)
        logger.info("Pool %s", "paused" if paused else "resumed")

    def set_relayer(self, authority: bytes, relayer: bytes, enabled: bool = True) -> None:
        """Grant or revoke root-append rights for a relayer identity."""
        relayer = _require_identity(relayer, "relayer")
        with self._lock:
            self._require_admin(authority)
            self.events.publish(RelayerChanged(relayer=relayer, enabled=bool(enabled)))
            if enabled:
                self.config.relayers.add(relayer)
            else:
                self.config.relayers.discard(relayer)

    # Submission helpers

    def _check_not_paused(self) -> None:
        if self.config.paused:
            raise PoolPausedError("Pool is paused")

    def _check_key_binding(self, record: KeyRecord) -> None:
        bound = self.config.vk_hashes.get(record.circuit_id)
        if bound is None or not hmac.compare_digest(bound, record.content_hash):
            raise VkHashMismatchError(
                f"Stored {record.circuit_id.name.lower()} key does not match the configured hash"
            )

    def _verify(self, circuit: CircuitId, proof: bytes, public_inputs: Sequence[bytes]) -> KeyRecord:
        record = self.registry.get_key(circuit)
        self._check_key_binding(record)
        values = decode_public_inputs(public_inputs)
        if not self.verifier.verify(bytes(proof), values, record.verifying_key):
            logger.warning("Rejected %s submission: proof does not verify", circuit.name.lower())
            raise InvalidProofError(f"{circuit.name.lower()} proof does not verify")
        return record

    def _check_root(self, root: int) -> None:
        if not self.roots.contains(root):
            logger.warning("Rejected submission: stale root %s...", hex(root)[:18])
            raise StaleRootError("Root is not in the current root window")

    # User operations

    def submit_deposit(self, proof: bytes, public_inputs: Sequence[bytes]) -> DepositReceipt:
        """
        Accept a deposit proof and announce its commitment.

        Raises:
            PoolPausedError, PublicInputCountMismatchError,
            InvalidFieldElementError, VerificationKeyNotSetError,
            InvalidProofError
        """
        self._check_not_paused()
        inputs = DepositInputs.from_public_inputs(public_inputs)
        record = self._verify(CircuitId.DEPOSIT, proof, public_inputs)

        with self._lock:
            self._check_not_paused()
            self._check_key_binding(record)
            self.events.publish(
                NewCommitment(commitment=inputs.commitment, circuit_id=int(CircuitId.DEPOSIT))
            )

        logger.info("Deposit accepted: commitment %s...", hex(inputs.commitment)[:18])
        return DepositReceipt(commitment=inputs.commitment, timestamp=datetime.now(UTC))

    def submit_transfer(self, proof: bytes, public_inputs: Sequence[bytes]) -> TransferReceipt:
        """
        Spend a note privately into a new commitment.

        Raises:
            PoolPausedError, PublicInputCountMismatchError, AmountOverflowError,
            InvalidFieldElementError, VerificationKeyNotSetError,
            InvalidProofError, StaleRootError, NullifierAlreadySpentError,
            NullifierCapacityExceededError
        """
        self._check_not_paused()
        inputs = TransferInputs.from_public_inputs(public_inputs)
        record = self._verify(CircuitId.TRANSFER, proof, public_inputs)

        with self._lock:
            self._check_not_paused()
            self._check_key_binding(record)
            self._check_root(inputs.root)
            shard = self.nullifiers.ensure_spendable(inputs.nullifier)
            self.events.publish(
                NullifierSpent(nullifier=inputs.nullifier, circuit_id=int(CircuitId.TRANSFER), shard=shard),
                NewCommitment(commitment=inputs.new_commitment, circuit_id=int(CircuitId.TRANSFER)),
            )
            self.nullifiers.spend(inputs.nullifier)

        logger.info("Transfer accepted: nullifier %s... spent", hex(inputs.nullifier)[:18])
        return TransferReceipt(
            nullifier=inputs.nullifier,
            new_commitment=inputs.new_commitment,
            fee=inputs.fee,
            shard=shard,
            timestamp=datetime.now(UTC),
        )

    def submit_withdraw(
        self,
        proof: bytes,
        public_inputs: Sequence[bytes],
        fee_recipient: Optional[bytes] = None,
    ) -> WithdrawReceipt:
        """
        Spend a note and release its public amount.

        ``amount`` goes to the recipient encoded in the public inputs. The fee
        goes to fee_recipient (typically the relayer) when given, otherwise
        it stays in the treasury.

        Raises:
            PoolPausedError, PublicInputCountMismatchError, AmountOverflowError,
            RecipientLimbOverflowError, FeeExceedsAmountError,
            VerificationKeyNotSetError, InvalidProofError, StaleRootError,
            NullifierAlreadySpentError, InsufficientFundsError
        """
        if fee_recipient is not None:
            fee_recipient = _require_identity(fee_recipient, "fee_recipient")
        self._check_not_paused()
        inputs = WithdrawInputs.from_public_inputs(public_inputs)
        if inputs.fee > inputs.amount:
            raise FeeExceedsAmountError(f"Fee {inputs.fee} exceeds amount {inputs.amount}")
        record = self._verify(CircuitId.WITHDRAW, proof, public_inputs)

        payouts = [(inputs.recipient, inputs.amount)]
        if fee_recipient is not None:
            payouts.append((fee_recipient, inputs.fee))
        with self._lock:
            self._check_not_paused()
            self._check_key_binding(record)
            self._check_root(inputs.root)
            shard = self.nullifiers.ensure_spendable(inputs.nullifier)
            hold = self.treasury.hold(payouts)
            try:
                self.events.publish(
                    NullifierSpent(nullifier=inputs.nullifier, circuit_id=int(CircuitId.WITHDRAW), shard=shard),
                    Withdrawn(
                        recipient=inputs.recipient,
                        amount=inputs.amount,
                        fee=inputs.fee,
                        nullifier=inputs.nullifier,
                    ),
                )
            except Exception:
                self.treasury.cancel(hold)
                raise
            self.nullifiers.spend(inputs.nullifier)
            self.treasury.settle(hold)

        logger.info("Withdrawal accepted: %d released", inputs.amount)
        return WithdrawReceipt(
            nullifier=inputs.nullifier,
            recipient=inputs.recipient,
            amount=inputs.amount,
            fee=inputs.fee,
            fee_recipient=fee_recipient,
            shard=shard,
            timestamp=datetime.now(UTC),
        )

    def submit(self, circuit_id, proof: bytes, public_inputs: Sequence[bytes], **kwargs):
        """Dispatch to the submit method for circuit_id."""
        circuit = to_circuit_id(circuit_id)
        if circuit == CircuitId.DEPOSIT:
            return self.submit_deposit(proof, public_inputs)
        if circuit == CircuitId.TRANSFER:
            return self.submit_transfer(proof, public_inputs)
        return self.submit_withdraw(proof, public_inputs, **kwargs)

    # Queries and restore

    def is_spent(self, nullifier: Union[int, bytes]) -> bool:
        if isinstance(nullifier, (bytes, bytearray)):
            nullifier = decode_field(bytes(nullifier))
        return self.nullifiers.is_spent(nullifier)

    def accounts(self) -> Dict[str, str]:
        """Derived addresses of the pool's state accounts."""
        accounts = {
            "config": config_address(),
            "roots": roots_address(),
            "treasury": treasury_address(),
        }
        for circuit in CircuitId:
            accounts[f"vk_{circuit.name.lower()}"] = vk_address(circuit)
        for shard in self.nullifiers.snapshot():
            accounts[f"nullifiers_{shard}"] = nullifier_shard_address(shard)
        return {name: "0x" + address.hex() for name, address in accounts.items()}

    def state(self) -> dict:
        """Read-only snapshot of pool state."""
        with self._lock:
            return {
                "config": self.config.to_dict(),
                "roots": self.roots.to_dict(),
                "verification_keys": [r.to_dict() for r in self.registry.records().values()],
                "nullifiers_spent": self.nullifiers.total_spent(),
                "treasury_balance": self.treasury.balance(),
                "verifier": self.verifier.name,
                "accounts": self.accounts(),
            }

    def restore_state(
        self,
        window: Optional[RootHistoryWindow] = None,
        spent: Iterable[int] = (),
        keys: Iterable[Tuple[int, bytes, bytes]] = (),
    ) -> None:
        """
        Load persisted state into a freshly constructed pool.

        Keys are given as (circuit_id, key_bytes, content_hash) and are
        re-validated. No events are emitted.
        """
        with self._lock:
            if window is not None:
                if window.capacity != self.config.root_window:
                    raise ValueError("Restored window capacity differs from the configuration")
                self.roots = window
            self.nullifiers.restore(spent)
            for circuit_id, key_bytes, content_hash in keys:
                restored = self.registry.set_key(circuit_id, key_bytes, content_hash)
                self.config.vk_hashes[restored.circuit_id] = restored.content_hash

    def __repr__(self) -> str:
        return (
            f"ShieldedPool(depth={self.config.merkle_depth}, window={self.config.root_window}, "
            f"roots={len(self.roots)}, spent={len(self.nullifiers)}, paused={self.config.paused})"
        )
