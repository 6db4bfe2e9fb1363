"""
Redis trust store, shared by any number of engine instances.

Counters live under ``user:<id>[:channel:<id>]`` as plain integers so the
database can be inspected with redis-cli. The last time a user was seen is
kept next to it under ``last_seen:<key>``. Both are written in one
MULTI/EXEC transaction; the count itself comes from ``INCRBY`` which Redis
executes atomically.
"""

from __future__ import annotations

import time

import redis.asyncio as redis
from redis.exceptions import RedisError

from spamcrasher.datatypes.decision_datatypes import UserRecord
from spamcrasher.datatypes.identifiers import ChannelID, UserID
from spamcrasher.errors import StoreUnavailable
from spamcrasher.store.trust_store import user_key
from spamcrasher.util.logger import get_logger

logger = get_logger("redis_store")

LAST_SEEN_PREFIX = "last_seen"


class RedisTrustStore:
    """:class:`TrustStore` backed by Redis."""

    name = "redis"

    def __init__(self, url: str | None = None, *, client: redis.Redis | None = None) -> None:
        if client is None and not url:
            raise ValueError("RedisTrustStore needs a url or a client")
        self._url = url
        self._client: redis.Redis | None = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            raise StoreUnavailable("Redis trust store is not open")
        return self._client

    async def open(self) -> None:
        """Connect and ping the server.

        Raises:
            StoreUnavailable: If the URL is invalid or the server does not answer.
        """
        if self._client is None:
            try:
                self._client = redis.from_url(self._url, decode_responses=True)
            except ValueError as exc:
                raise StoreUnavailable(f"Failed to parse Redis URL: {exc}") from exc

        try:
            await self._client.ping()
        except RedisError as exc:
            raise StoreUnavailable(f"Failed to connect to Redis: {exc}") from exc
        logger.info("[REDIS STORE] Connected to Redis")

    async def close(self) -> None:
        if self._client is None:
            return
        try:
            await self._client.aclose()
        finally:
            self._client = None
            logger.info("[REDIS STORE] Connection closed")

    async def get_user_count(self, user_id: UserID, channel_id: ChannelID | None = None) -> int:
        key = user_key(user_id, channel_id)
        try:
            value = await self.client.get(key)
        except RedisError as exc:
            raise StoreUnavailable(f"Failed to read {key}: {exc}") from exc
        return int(value) if value is not None else 0

    async def increment_user_count(
        self,
        user_id: UserID,
        channel_id: ChannelID | None = None,
        amount: int = 1,
    ) -> int:
        if amount < 1:
            raise ValueError("amount must be >= 1")
        key = user_key(user_id, channel_id)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.incrby(key, amount)
                pipe.set(f"{LAST_SEEN_PREFIX}:{key}", repr(time.time()))
                count, _ = await pipe.execute()
        except RedisError as exc:
            raise StoreUnavailable(f"Failed to increment {key}: {exc}") from exc
        return int(count)

    async def get_user_record(self, user_id: UserID, channel_id: ChannelID | None = None) -> UserRecord | None:
        key = user_key(user_id, channel_id)
        try:
            count, last_seen = await self.client.mget(key, f"{LAST_SEEN_PREFIX}:{key}")
        except RedisError as exc:
            raise StoreUnavailable(f"Failed to read {key}: {exc}") from exc
        if count is None:
            return None
        return UserRecord(
            key=key,
            interaction_count=int(count),
            last_seen=float(last_seen) if last_seen is not None else None,
        )

    async def is_empty(self) -> bool:
        try:
            return await self.client.dbsize() == 0
        except RedisError as exc:
            raise StoreUnavailable(f"Failed to get Redis database size: {exc}") from exc
