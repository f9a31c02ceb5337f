"""Bounded window of recently published Merkle roots."""

import logging
from typing import List, Optional

from zkpool.crypto.field import require_field_element
from zkpool.exceptions import InvalidRootWindowError

logger = logging.getLogger(__name__)

DEFAULT_ROOT_WINDOW = 64
MAX_ROOT_WINDOW = 256


class RootHistoryWindow:
    """
    Fixed-capacity ring buffer of roots.

    Once full, each append overwrites the oldest slot. Membership only
    considers the live slots, so a root that has been evicted is stale.
    """

    def __init__(self, capacity: int = DEFAULT_ROOT_WINDOW):
        if not isinstance(capacity, int) or not 1 <= capacity <= MAX_ROOT_WINDOW:
            raise InvalidRootWindowError(
                f"Root window must be between 1 and {MAX_ROOT_WINDOW}, got {capacity}"
            )
        self.capacity = capacity
        self.slots: List[int] = [0] * capacity
        self.cursor = 0
        self.size = 0

    def append(self, root: int) -> int:
        """
        Write root at the cursor and advance it.

        Appending a root that is already present is allowed.

        Returns:
            int: Slot index the root was written to
        """
        require_field_element(root, "root")
        slot = self.cursor
        self.slots[slot] = root
        self.cursor = (self.cursor + 1) % self.capacity
        if self.size < self.capacity:
            self.size += 1
        logger.debug("Root written to slot %d (size=%d)", slot, self.size)
        return slot

    def contains(self, root: int) -> bool:
        return root in self.slots[: self.size]

    def latest(self) -> Optional[int]:
        """Most recently appended root, or None when empty."""
        if self.size == 0:
            return None
        return self.slots[(self.cursor - 1) % self.capacity]

    def roots(self) -> List[int]:
        """Live slots in slot order."""
        return list(self.slots[: self.size])

    def to_dict(self) -> dict:
        return {
            "capacity": self.capacity,
            "cursor": self.cursor,
            "size": self.size,
            "roots": [hex(root) for root in self.roots()],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RootHistoryWindow":
        """Rebuild a window saved with to_dict."""
        window = cls(data["capacity"])
        roots = [int(root, 16) for root in data["roots"]]
        if len(roots) != data["size"] or not 0 <= data["cursor"] < window.capacity:
            raise InvalidRootWindowError("Inconsistent root window state")
        window.slots[: len(roots)] = roots
        window.cursor = data["cursor"]
        window.size = data["size"]
        return window

    def __len__(self) -> int:
        return self.size

    def __repr__(self) -> str:
        return f"RootHistoryWindow(capacity={self.capacity}, size={self.size}, cursor={self.cursor})"
