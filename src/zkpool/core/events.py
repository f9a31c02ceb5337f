"""Events emitted by the pool for indexers and storage."""

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, UTC
from typing import Callable, Deque, List, Optional, Sequence

from zkpool.utils.encoding import bytes_to_hex

logger = logging.getLogger(__name__)


def _jsonable(value):
    if isinstance(value, bytes):
        return bytes_to_hex(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, int) and not isinstance(value, bool) and value >= 2**53:
        return hex(value)
    return value


@dataclass(frozen=True)
class PoolEvent:
    """Base event; ``kind`` names the concrete type."""

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        data = {key: _jsonable(value) for key, value in asdict(self).items()}
        data["kind"] = self.kind
        return data


@dataclass(frozen=True)
class Initialized(PoolEvent):
    admin: bytes
    merkle_depth: int
    root_window: int
    abi_hash: bytes
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class VerificationKeySet(PoolEvent):
    circuit_id: int
    vk_hash: bytes
    n_public: int
    key_bytes: bytes = field(repr=False, default=b"")


@dataclass(frozen=True)
class RootAdded(PoolEvent):
    root: int
    index: int


@dataclass(frozen=True)
class NewCommitment(PoolEvent):
    commitment: int
    circuit_id: int


@dataclass(frozen=True)
class NullifierSpent(PoolEvent):
    nullifier: int
    circuit_id: int
    shard: int


@dataclass(frozen=True)
class Withdrawn(PoolEvent):
    recipient: bytes
    amount: int
    fee: int
    nullifier: int


@dataclass(frozen=True)
class PoolPausedChanged(PoolEvent):
    paused: bool
    admin: bytes


@dataclass(frozen=True)
class RelayerChanged(PoolEvent):
    relayer: bytes
    enabled: bool


Subscriber = Callable[[Sequence[PoolEvent]], None]

DEFAULT_EVENT_HISTORY = 1024


class EventLog:
    """
    Recent event history with synchronous subscribers.

    Callers publish the events of an operation before applying its state
    change. Every subscriber receives the whole batch; if one raises, the
    operation is abandoned and the batch is not added to the history.
    Subscribers run in subscription order and earlier ones are not rolled
    back, so a durable store should be the only subscriber that can fail.

    Only the latest ``history_limit`` events are kept in memory; a database
    subscriber holds the full history.
    """

    def __init__(self, history_limit: int = DEFAULT_EVENT_HISTORY):
        if history_limit < 1:
            raise ValueError("history_limit must be positive")
        self._events: Deque[PoolEvent] = deque(maxlen=history_limit)
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self.published = 0

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def publish(self, *events: PoolEvent) -> None:
        """Deliver one operation's events as a batch."""
        for callback in list(self._subscribers):
            callback(events)
        with self._lock:
            self._events.extend(events)
            self.published += len(events)
        for event in events:
            logger.debug("Event %s", event.kind)

    def emit(self, event: PoolEvent) -> None:
        self.publish(event)

    def events(self, kind: Optional[str] = None) -> List[PoolEvent]:
        with self._lock:
            events = list(self._events)
        if kind is None:
            return events
        return [event for event in events if event.kind == kind]

    def __len__(self) -> int:
        return len(self._events)
