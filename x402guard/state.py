"""Runtime state for stateful policies: sliding windows and spending totals."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, Hashable, Tuple, TypeVar

logger = logging.getLogger(__name__)

StateKey = Tuple[int, str]
Entry = TypeVar("Entry")
Result = TypeVar("Result")

GLOBAL_SUBJECT = "*"


@dataclass
class RateLimitWindow:
    """Timestamps of admitted requests within the trailing window."""

    subject_key: str
    timestamps: deque[float] = field(default_factory=deque)

    def prune(self, now: float, window_seconds: float) -> None:
        # half-open window (now - window, now]: an entry exactly window_seconds old is dropped
        while self.timestamps and now - self.timestamps[0] >= window_seconds:
            self.timestamps.popleft()

    def try_acquire(self, now: float, max_requests: int, window_seconds: float) -> bool:
        self.prune(now, window_seconds)
        if len(self.timestamps) >= max_requests:
            return False
        self.timestamps.append(now)
        return True

    def retry_after(self, now: float, window_seconds: float) -> float:
        if not self.timestamps:
            return 0.0
        return max(0.0, self.timestamps[0] + window_seconds - now)


@dataclass
class SpendingAccumulator:
    """Running total for one subject, reset lazily when its window lapses."""

    subject_key: str
    window_start: float
    total: Decimal = Decimal("0")

    def roll(self, now: float, window_seconds: float) -> None:
        if now - self.window_start >= window_seconds:
            self.total = Decimal("0")
            self.window_start = now

    def try_spend(self, now: float, amount: Decimal, max_amount: Decimal, window_seconds: float) -> bool:
        self.roll(now, window_seconds)
        if self.total + amount > max_amount:
            return False
        self.total += amount
        return True


class StateStore(ABC):
    """Keyed storage for mutable per-(policy, subject) entries."""

    @abstractmethod
    def get_or_create(self, key: Hashable, factory: Callable[[], Entry]) -> Entry:
        """Return the entry for ``key``, creating it with ``factory`` on first use."""

    @abstractmethod
    def mutate(
        self,
        key: Hashable,
        factory: Callable[[], Entry],
        func: Callable[[Entry], Result],
    ) -> Result:
        """Apply ``func`` to the entry for ``key`` with exclusive access to that entry."""

    @abstractmethod
    def clear(self) -> None:
        """Drop every entry."""

    @abstractmethod
    def __len__(self) -> int:
        ...


class LocalStateStore(StateStore):
    """Unsynchronised store for single-threaded or cooperative hosts."""

    def __init__(self) -> None:
        self._entries: Dict[Hashable, object] = {}

    def get_or_create(self, key: Hashable, factory: Callable[[], Entry]) -> Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = factory()
            self._entries[key] = entry
        return entry  # type: ignore[return-value]

    def mutate(self, key: Hashable, factory: Callable[[], Entry], func: Callable[[Entry], Result]) -> Result:
        return func(self.get_or_create(key, factory))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class _Slot:
    __slots__ = ("lock", "value")

    def __init__(self, value: object) -> None:
        self.lock = threading.Lock()
        self.value = value


class ShardedStateStore(StateStore):
    """Thread-safe store with one lock per entry.

    The shard locks only guard entry creation; read-modify-write of an entry
    holds that entry's own lock, so different subjects never wait on each other.
    """

    def __init__(self, shards: int = 16) -> None:
        if shards <= 0:
            raise ValueError("shards must be positive")
        self._shards: list[tuple[threading.Lock, Dict[Hashable, _Slot]]] = [
            (threading.Lock(), {}) for _ in range(shards)
        ]

    def _slot(self, key: Hashable, factory: Callable[[], object]) -> _Slot:
        lock, entries = self._shards[hash(key) % len(self._shards)]
        slot = entries.get(key)
        if slot is not None:
            return slot
        with lock:
            slot = entries.get(key)
            if slot is None:
                slot = _Slot(factory())
                entries[key] = slot
                logger.debug("Created state entry %s", key)
            return slot

    def get_or_create(self, key: Hashable, factory: Callable[[], Entry]) -> Entry:
        return self._slot(key, factory).value  # type: ignore[return-value]

    def mutate(self, key: Hashable, factory: Callable[[], Entry], func: Callable[[Entry], Result]) -> Result:
        slot = self._slot(key, factory)
        with slot.lock:
            return func(slot.value)  # type: ignore[arg-type]

    def clear(self) -> None:
        for lock, entries in self._shards:
            with lock:
                entries.clear()

    def __len__(self) -> int:
        return sum(len(entries) for _, entries in self._shards)


RuntimeState = StateStore


def state_key(policy_index: int, subject: str) -> StateKey:
    return (policy_index, subject)
