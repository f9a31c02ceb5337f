"""Funds-transfer collaborator used by withdrawals."""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Dict, List, Sequence, Tuple

from zkpool.exceptions import InsufficientFundsError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Payout:
    recipient: bytes
    amount: int
    timestamp: datetime


@dataclass(frozen=True)
class Hold:
    """Funds reserved for a set of payouts that have not been paid yet."""

    payouts: Tuple[Tuple[bytes, int], ...]

    @property
    def total(self) -> int:
        return sum(amount for _, amount in self.payouts)


class FundsTransfer(ABC):
    """
    Moves public value out of the pool.

    Payment is two-phase: ``hold`` reserves the funds and may fail,
    ``settle`` pays a hold out, ``cancel`` returns it to the balance.
    """

    @abstractmethod
    def balance(self) -> int:
        """Funds currently available to the pool."""

    @abstractmethod
    def hold(self, payouts: Sequence[Tuple[bytes, int]]) -> Hold:
        """
        Reserve funds for payouts.

        Raises:
            InsufficientFundsError: If the pool holds less than the total
        """

    @abstractmethod
    def settle(self, hold: Hold) -> None:
        """Pay out a hold."""

    @abstractmethod
    def cancel(self, hold: Hold) -> None:
        """Release a hold back into the balance."""

    def release(self, recipient: bytes, amount: int) -> None:
        """Pay amount to recipient in one step."""
        self.settle(self.hold([(recipient, amount)]))


class InMemoryTreasury(FundsTransfer):
    """Process-local treasury with a payout history."""

    def __init__(self, initial_balance: int = 0):
        if initial_balance < 0:
            raise ValueError("initial_balance must be non-negative")
        self._balance = initial_balance
        self._lock = threading.Lock()
        self.payouts: List[Payout] = []

    def fund(self, amount: int) -> int:
        """Add funds; returns the new balance."""
        if amount <= 0:
            raise ValueError("amount must be positive")
        with self._lock:
            self._balance += amount
            return self._balance

    def balance(self) -> int:
        return self._balance

    def hold(self, payouts: Sequence[Tuple[bytes, int]]) -> Hold:
        hold = Hold(tuple((bytes(recipient), amount) for recipient, amount in payouts if amount))
        if any(amount < 0 for _, amount in hold.payouts):
            raise ValueError("payout amounts must be non-negative")
        with self._lock:
            if hold.total > self._balance:
                raise InsufficientFundsError(
                    f"Treasury holds {self._balance}, cannot release {hold.total}"
                )
            self._balance -= hold.total
        return hold

    def settle(self, hold: Hold) -> None:
        now = datetime.now(UTC)
        with self._lock:
            self.payouts.extend(Payout(recipient, amount, now) for recipient, amount in hold.payouts)
        for recipient, amount in hold.payouts:
            logger.info("Released %d to %s", amount, recipient.hex()[:16])

    def cancel(self, hold: Hold) -> None:
        with self._lock:
            self._balance += hold.total

    def paid_to(self, recipient: bytes) -> int:
        return sum(p.amount for p in self.payouts if p.recipient == recipient)

    def totals(self) -> Dict[str, int]:
        return {"balance": self._balance, "paid_out": sum(p.amount for p in self.payouts)}
