"""
Trust store contract and key scheme.

A trust store keeps one monotonically increasing interaction counter per
user (optionally per user and channel). Every backend must implement the
increment as a single atomic primitive so concurrent messages from the same
user observe a strictly increasing sequence of counts.

Backends never retry: a retried increment could count one message twice.
An increment may complete after the caller stopped waiting for it (the
engine bounds each call with ``store_timeout`` but lets the write finish), so
a message decided with a store error can still have been counted.
Connectivity problems surface as :class:`~spamcrasher.errors.StoreUnavailable`.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from spamcrasher.datatypes.decision_datatypes import UserRecord
from spamcrasher.datatypes.identifiers import ChannelID, UserID

KEY_PREFIX = "user"


def user_key(user_id: UserID | int | str, channel_id: ChannelID | int | str | None = None) -> str:
    """Build the store key ``user:<id>[:channel:<id>]``."""
    key = f"{KEY_PREFIX}:{UserID(user_id)}"
    if channel_id is not None:
        key += f":channel:{ChannelID(channel_id)}"
    return key


@runtime_checkable
class TrustStore(Protocol):
    """Durable per-user interaction counters shared by all engine instances."""

    name: str

    async def get_user_count(self, user_id: UserID, channel_id: ChannelID | None = None) -> int:
        """Return the current count, 0 for a user never seen."""
        ...

    async def increment_user_count(
        self,
        user_id: UserID,
        channel_id: ChannelID | None = None,
        amount: int = 1,
    ) -> int:
        """Atomically add ``amount`` and return the new count."""
        ...

    async def get_user_record(self, user_id: UserID, channel_id: ChannelID | None = None) -> UserRecord | None:
        ...

    async def is_empty(self) -> bool:
        """True when no counter has ever been written."""
        ...

    async def close(self) -> None:
        ...
