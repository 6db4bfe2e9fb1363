"""In-process trust store for tests and dry runs."""

from __future__ import annotations

import time
from typing import Dict, Tuple

from spamcrasher.datatypes.decision_datatypes import UserRecord
from spamcrasher.datatypes.identifiers import ChannelID, UserID
from spamcrasher.store.trust_store import user_key


class MemoryTrustStore:
    """
    Dictionary-backed :class:`TrustStore`.

    Updates never await between the read and the write, so on a single
    event loop every increment is atomic without a lock. State is lost when
    the process exits.
    """

    name = "memory"

    def __init__(self) -> None:
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._closed = False

    async def get_user_count(self, user_id: UserID, channel_id: ChannelID | None = None) -> int:
        return self._counters.get(user_key(user_id, channel_id), (0, 0.0))[0]

    async def increment_user_count(
        self,
        user_id: UserID,
        channel_id: ChannelID | None = None,
        amount: int = 1,
    ) -> int:
        if amount < 1:
            raise ValueError("amount must be >= 1")
        key = user_key(user_id, channel_id)
        count = self._counters.get(key, (0, 0.0))[0] + amount
        self._counters[key] = (count, time.time())
        return count

    async def get_user_record(self, user_id: UserID, channel_id: ChannelID | None = None) -> UserRecord | None:
        key = user_key(user_id, channel_id)
        if key not in self._counters:
            return None
        count, last_seen = self._counters[key]
        return UserRecord(key=key, interaction_count=count, last_seen=last_seen)

    async def is_empty(self) -> bool:
        return not self._counters

    async def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed
