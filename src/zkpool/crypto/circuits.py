"""Witness checks for the deposit, transfer and withdraw circuits.

Each circuit validates a private witness against the constraints the real
arithmetic circuit enforces and derives the ordered public-input vector.
``CircuitProver`` only emits a proof for a witness that passes.
"""

import logging
from dataclasses import dataclass
from typing import List, Tuple

from zkpool.core.abi import ADDRESS_SIZE, LIMB_SIZE, CircuitId, encode_field, public_input_count
from zkpool.core.commitment import Note, nullify, require_amount
from zkpool.core.merkle_tree import DEFAULT_MERKLE_DEPTH, InclusionProof, validate_depth, verify_inclusion
from zkpool.crypto.setup import DevelopmentSetup
from zkpool.exceptions import ShieldedPoolError, WitnessError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepositWitness:
    note: Note


@dataclass(frozen=True)
class TransferWitness:
    secret_key: int
    note_id: int
    note: Note
    inclusion: InclusionProof
    root: int
    new_note: Note
    fee: int


@dataclass(frozen=True)
class WithdrawWitness:
    secret_key: int
    note_id: int
    note: Note
    inclusion: InclusionProof
    root: int
    recipient: bytes
    amount: int
    fee: int


def _check_spend(
    secret_key: int, note_id: int, note: Note, inclusion: InclusionProof, root: int, merkle_depth: int
) -> int:
    if len(inclusion.siblings) != merkle_depth or len(inclusion.positions) != merkle_depth:
        raise WitnessError(
            f"Inclusion path has {len(inclusion.siblings)} levels, the circuit expects {merkle_depth}"
        )
    try:
        included = verify_inclusion(note.commitment, inclusion.siblings, inclusion.positions, root)
        nullifier = nullify(secret_key, note_id)
    except ShieldedPoolError as exc:
        raise WitnessError(f"Malformed spend witness: {exc}") from exc
    if not included:
        raise WitnessError("Spent note is not included under the public root")
    return nullifier


def _check_range(value: int, name: str) -> int:
    try:
        return require_amount(value, name)
    except ShieldedPoolError as exc:
        raise WitnessError(str(exc)) from exc


def deposit_public_inputs(witness: DepositWitness) -> List[int]:
    return [witness.note.commitment]


def transfer_public_inputs(witness: TransferWitness, merkle_depth: int) -> List[int]:
    """
    Check a transfer witness.

    Raises:
        WitnessError: On range, path depth, inclusion, or value-conservation failure
    """
    fee = _check_range(witness.fee, "fee")
    nullifier = _check_spend(
        witness.secret_key, witness.note_id, witness.note, witness.inclusion, witness.root, merkle_depth
    )
    if witness.note.amount != witness.new_note.amount + fee:
        raise WitnessError("Value not conserved: old_amount != new_amount + fee")
    return [witness.root, nullifier, witness.new_note.commitment, fee]


def withdraw_public_inputs(witness: WithdrawWitness, merkle_depth: int) -> List[int]:
    """
    Check a withdraw witness.

    Raises:
        WitnessError: On range, path depth, inclusion, recipient, or value-conservation failure
    """
    amount = _check_range(witness.amount, "amount")
    fee = _check_range(witness.fee, "fee")
    if len(witness.recipient) != ADDRESS_SIZE:
        raise WitnessError(f"Recipient must be {ADDRESS_SIZE} bytes")
    nullifier = _check_spend(
        witness.secret_key, witness.note_id, witness.note, witness.inclusion, witness.root, merkle_depth
    )
    if witness.note.amount != amount + fee:
        raise WitnessError("Value not conserved: old_amount != amount + fee")
    recipient_lo = int.from_bytes(witness.recipient[:LIMB_SIZE], "little")
    recipient_hi = int.from_bytes(witness.recipient[LIMB_SIZE:], "little")
    return [witness.root, nullifier, recipient_lo, recipient_hi, amount, fee]


class CircuitProver:
    """
    Development prover: witness check, then a trapdoor proof.

    Spend circuits are fixed to one tree depth; inclusion paths of any other
    length are rejected.
    """

    def __init__(
        self,
        circuit_id: CircuitId,
        setup: DevelopmentSetup,
        merkle_depth: int = DEFAULT_MERKLE_DEPTH,
    ):
        validate_depth(merkle_depth)
        if setup.n_public != public_input_count(circuit_id):
            raise ValueError(
                f"Setup has {setup.n_public} inputs, {circuit_id.name.lower()} needs "
                f"{public_input_count(circuit_id)}"
            )
        self.circuit_id = CircuitId(circuit_id)
        self.setup = setup
        self.merkle_depth = merkle_depth

    @classmethod
    def generate(cls, circuit_id: CircuitId, merkle_depth: int = DEFAULT_MERKLE_DEPTH) -> "CircuitProver":
        return cls(circuit_id, DevelopmentSetup.generate(public_input_count(circuit_id)), merkle_depth)

    def with_depth(self, merkle_depth: int) -> "CircuitProver":
        """Same setup and key, different tree depth."""
        return CircuitProver(self.circuit_id, self.setup, merkle_depth)

    @property
    def verifying_key_bytes(self) -> bytes:
        return self.setup.verifying_key.to_bytes()

    def prove(self, witness) -> Tuple[bytes, List[bytes]]:
        """
        Prove a witness.

        Returns:
            tuple: (256-byte proof, encoded public inputs)

        Raises:
            WitnessError: If the witness violates the circuit
        """
        if self.circuit_id == CircuitId.DEPOSIT:
            public_inputs = deposit_public_inputs(witness)
        elif self.circuit_id == CircuitId.TRANSFER:
            public_inputs = transfer_public_inputs(witness, self.merkle_depth)
        else:
            public_inputs = withdraw_public_inputs(witness, self.merkle_depth)
        proof = self.setup.prove(public_inputs)
        logger.debug("Generated %s proof", self.circuit_id.name.lower())
        return proof, [encode_field(value) for value in public_inputs]
