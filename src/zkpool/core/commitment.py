"""Note commitments and nullifiers."""

from dataclasses import dataclass

from zkpool.crypto.field import random_field_element, require_field_element
from zkpool.exceptions import AmountOverflowError
from zkpool.utils.hash import COMMITMENT_DOMAIN, NULLIFIER_DOMAIN, hash2, hash3

MAX_AMOUNT = 2**64 - 1


def require_amount(amount: int, name: str = "amount") -> int:
    """
    Validate an unsigned 64-bit amount.

    Raises:
        AmountOverflowError: If amount is negative, not an int, or >= 2^64
    """
    if not isinstance(amount, int) or isinstance(amount, bool) or not 0 <= amount <= MAX_AMOUNT:
        raise AmountOverflowError(f"{name} must be an unsigned 64-bit integer")
    return amount


def commit(recipient_key: int, amount: int, blinding: int) -> int:
    """
    Compute a note commitment ``Hash3(recipient_key, amount, blinding)``.

    Args:
        recipient_key: Recipient's public key as a field element
        amount: Note value, strictly below 2^64
        blinding: Random field element hiding the note

    Returns:
        int: Commitment field element

    Raises:
        InvalidFieldElementError: If a key or blinding is not canonical
        AmountOverflowError: If amount does not fit in 64 bits
    """
    require_field_element(recipient_key, "recipient_key")
    require_amount(amount)
    require_field_element(blinding, "blinding")
    return hash3(COMMITMENT_DOMAIN, recipient_key, amount, blinding)


def nullify(secret_key: int, note_id: int) -> int:
    """
    Compute a nullifier ``Hash2(secret_key, note_id)``.

    Args:
        secret_key: Owner's spending key
        note_id: Per-note identifier (tree position or salt)

    Returns:
        int: Nullifier field element
    """
    require_field_element(secret_key, "secret_key")
    require_field_element(note_id, "note_id")
    return hash2(NULLIFIER_DOMAIN, secret_key, note_id)


@dataclass(frozen=True)
class Note:
    """A private note held off-ledger by its owner."""

    recipient_key: int
    amount: int
    blinding: int

    def __post_init__(self):
        require_field_element(self.recipient_key, "recipient_key")
        require_amount(self.amount)
        require_field_element(self.blinding, "blinding")

    @classmethod
    def create(cls, recipient_key: int, amount: int) -> "Note":
        """Create a note with a fresh random blinding factor."""
        return cls(recipient_key=recipient_key, amount=amount, blinding=random_field_element())

    @property
    def commitment(self) -> int:
        return commit(self.recipient_key, self.amount, self.blinding)

    def nullifier(self, secret_key: int, note_id: int) -> int:
        """Nullifier for spending this note with the given key and id."""
        return nullify(secret_key, note_id)
