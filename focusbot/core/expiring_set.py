"""
FocusBot — Time-bounded membership cache.

Used by the reminder checker to remember which event occurrences were
already announced. Each entry carries its own expiry; purge() drops the
ones that are past it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Generic, Hashable, NamedTuple, TypeVar

K = TypeVar("K", bound=Hashable)


class ReminderKey(NamedTuple):
    """Identifies one occurrence of one event for one user."""

    user_id: int
    event_id: int
    event_epoch: int        # event start, seconds since the epoch

    @classmethod
    def for_event(cls, user_id: int, event_id: int, starts_at: datetime) -> ReminderKey:
        return cls(user_id, event_id, int(starts_at.timestamp()))


class ExpiringSet(Generic[K]):
    """A set whose members expire at a per-entry deadline."""

    def __init__(self) -> None:
        self._entries: dict[K, datetime] = {}

    def add(self, key: K, expires_at: datetime) -> None:
        self._entries[key] = expires_at

    def discard(self, key: K) -> None:
        self._entries.pop(key, None)

    def purge(self, now: datetime) -> int:
        """Drop entries whose expiry is at or before `now`. Returns how many."""
        expired = [key for key, deadline in self._entries.items() if deadline <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
