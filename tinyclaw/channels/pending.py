"""In-memory correlation of queued message ids to reply targets."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar

DEFAULT_PENDING_TTL_S = 5 * 60

T = TypeVar("T")


@dataclass(slots=True)
class PendingDelivery(Generic[T]):
    target: T
    created_at: float = field(default_factory=time.monotonic)


class PendingDeliveries(Generic[T]):
    """
    ``message_id -> reply target`` with lazy time-based eviction.

    Losing this map only orphans replies; the queue still holds the truth.
    """

    def __init__(
        self,
        ttl_s: float = DEFAULT_PENDING_TTL_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_s = ttl_s
        self._clock = clock
        self._entries: dict[str, PendingDelivery[T]] = {}

    def add(self, message_id: str, target: T) -> None:
        self._entries[message_id] = PendingDelivery(target, self._clock())

    def get(self, message_id: str) -> Optional[T]:
        entry = self._entries.get(message_id)
        if entry is None or self._expired(entry):
            return None
        return entry.target

    def pop(self, message_id: str) -> Optional[T]:
        entry = self._entries.pop(message_id, None)
        return entry.target if entry else None

    def sweep(self) -> int:
        """Drop stale entries; returns how many were removed."""
        stale = [k for k, v in self._entries.items() if self._expired(v)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def targets(self) -> Iterator[Any]:
        return (entry.target for entry in list(self._entries.values()))

    def _expired(self, entry: PendingDelivery[T]) -> bool:
        return self._clock() - entry.created_at > self.ttl_s

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)
