"""
Trust store package for spamcrasher.

- **trust_store.py**: The :class:`TrustStore` protocol and the
  ``user:<id>[:channel:<id>]`` key scheme.
- **sqlite_store.py**: aiosqlite backend, one WAL connection per process.
- **redis_store.py**: redis.asyncio backend for deployments with several
  engine instances.
- **memory_store.py**: dictionary backend for tests and dry runs.

Public API:
    - open_trust_store: Build and open the backend named in the settings
"""

from __future__ import annotations

from spamcrasher.configuration.engine_settings import EngineSettings
from spamcrasher.store.memory_store import MemoryTrustStore
from spamcrasher.store.redis_store import RedisTrustStore
from spamcrasher.store.sqlite_store import SQLiteTrustStore
from spamcrasher.store.trust_store import TrustStore, user_key
from spamcrasher.util.logger import get_logger

logger = get_logger("store")


async def open_trust_store(settings: EngineSettings) -> TrustStore:
    """Create the configured backend and open its connection.

    Raises:
        StoreUnavailable: If the backend cannot be reached.
    """
    if settings.store_backend == "memory":
        logger.warning("[STORE] Using in-memory trust store; counters are lost on exit")
        return MemoryTrustStore()

    if settings.store_backend == "redis":
        store: RedisTrustStore | SQLiteTrustStore = RedisTrustStore(settings.redis_url)
    else:
        store = SQLiteTrustStore(settings.sqlite_path)
    await store.open()
    return store


__all__ = [
    "TrustStore",
    "user_key",
    "open_trust_store",
    "MemoryTrustStore",
    "RedisTrustStore",
    "SQLiteTrustStore",
]
