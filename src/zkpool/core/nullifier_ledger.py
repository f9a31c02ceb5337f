"""Sharded set of spent nullifiers."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Set

from zkpool.crypto.field import require_field_element
from zkpool.exceptions import NullifierAlreadySpentError, NullifierCapacityExceededError

logger = logging.getLogger(__name__)

MAX_NULLIFIERS_PER_SHARD = 100_000
MAX_SHARD_BITS = 16


@dataclass
class NullifierShard:
    """One partition of the spent set."""

    shard_id: int
    capacity: int
    nullifiers: Set[int] = field(default_factory=set)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def __len__(self) -> int:
        return len(self.nullifiers)


class NullifierLedger:
    """
    Exactly-once record of spent nullifiers.

    The shard of a nullifier is its low ``shard_bits`` bits. Each shard has
    its own lock, so spends in different shards do not contend and two
    spends of the same value always serialise on the same lock.
    """

    def __init__(self, shard_bits: int = 0, shard_capacity: int = MAX_NULLIFIERS_PER_SHARD):
        if not 0 <= shard_bits <= MAX_SHARD_BITS:
            raise ValueError(f"shard_bits must be between 0 and {MAX_SHARD_BITS}")
        if shard_capacity < 1:
            raise ValueError("shard_capacity must be positive")
        self.shard_bits = shard_bits
        self.shard_capacity = shard_capacity
        self._shards: Dict[int, NullifierShard] = {}
        self._shards_lock = threading.Lock()

    def shard_of(self, nullifier: int) -> int:
        return nullifier & ((1 << self.shard_bits) - 1)

    def _shard(self, shard_id: int) -> NullifierShard:
        with self._shards_lock:
            shard = self._shards.get(shard_id)
            if shard is None:
                shard = NullifierShard(shard_id=shard_id, capacity=self.shard_capacity)
                self._shards[shard_id] = shard
            return shard

    def is_spent(self, nullifier: int) -> bool:
        shard = self._shards.get(self.shard_of(nullifier))
        return shard is not None and nullifier in shard.nullifiers

    def ensure_spendable(self, nullifier: int) -> int:
        """
        Check that spend(nullifier) would succeed without recording it.

        Returns:
            int: Shard the nullifier would be recorded in

        Raises:
            NullifierAlreadySpentError: If the nullifier was spent before
            NullifierCapacityExceededError: If the target shard is full
        """
        require_field_element(nullifier, "nullifier")
        shard = self._shards.get(self.shard_of(nullifier))
        if shard is not None:
            with shard.lock:
                self._check_shard(shard, nullifier)
        return self.shard_of(nullifier)

    @staticmethod
    def _check_shard(shard: NullifierShard, nullifier: int) -> None:
        if nullifier in shard.nullifiers:
            raise NullifierAlreadySpentError(f"Nullifier {hex(nullifier)} already spent")
        if len(shard.nullifiers) >= shard.capacity:
            raise NullifierCapacityExceededError(
                f"Nullifier shard {shard.shard_id} is full ({shard.capacity})"
            )

    def spend(self, nullifier: int) -> int:
        """
        Atomically check and insert a nullifier.

        Args:
            nullifier: Nullifier field element

        Returns:
            int: Shard the nullifier was recorded in

        Raises:
            NullifierAlreadySpentError: If the nullifier was spent before
            NullifierCapacityExceededError: If the target shard is full
        """
        require_field_element(nullifier, "nullifier")
        shard = self._shard(self.shard_of(nullifier))
        with shard.lock:
            self._check_shard(shard, nullifier)
            shard.nullifiers.add(nullifier)

        logger.debug("Nullifier recorded in shard %d", shard.shard_id)
        return shard.shard_id

    def shard_size(self, shard_id: int) -> int:
        shard = self._shards.get(shard_id)
        return 0 if shard is None else len(shard)

    def total_spent(self) -> int:
        return sum(len(shard) for shard in list(self._shards.values()))

    def snapshot(self) -> Dict[int, List[int]]:
        """Sorted nullifiers per shard."""
        return {
            shard_id: sorted(shard.nullifiers)
            for shard_id, shard in sorted(self._shards.items())
        }

    def restore(self, nullifiers: Iterable[int]) -> None:
        """Re-insert previously spent nullifiers (e.g. after restart)."""
        for nullifier in nullifiers:
            self.spend(nullifier)

    def __contains__(self, nullifier: int) -> bool:
        return self.is_spent(nullifier)

    def __len__(self) -> int:
        return self.total_spent()
