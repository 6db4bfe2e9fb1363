"""
SQLite trust store: single long-lived aiosqlite connection.

Design
------
One connection is opened for the whole engine lifecycle and configured with
WAL pragmas, so readers never block and any process on the host sharing the
database file sees the same counters.

SQLite is single-writer. Writes are serialised at the application layer with
a semaphore so tasks queue up instead of fighting SQLite's busy timeout.

The increment is one ``INSERT ... ON CONFLICT DO UPDATE ... RETURNING``
statement: the read and the write of a counter can never be split by
another writer.

Usage
-----
    store = SQLiteTrustStore(Path("./data/trust.db"))
    await store.open()
    count = await store.increment_user_count(UserID(42))
    await store.close()
"""

from __future__ import annotations

import asyncio
import sqlite3
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite

from spamcrasher.datatypes.decision_datatypes import UserRecord
from spamcrasher.datatypes.identifiers import ChannelID, UserID
from spamcrasher.errors import StoreUnavailable
from spamcrasher.store.trust_store import user_key
from spamcrasher.util.logger import get_logger

logger = get_logger("sqlite_store")

# ── Pragmas applied once when the connection is opened ──────────────────────
_PRAGMAS = [
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",    # safe with WAL; faster than FULL
    "PRAGMA busy_timeout = 5000",     # wait for writers from other processes
    "PRAGMA temp_store = MEMORY",
    "PRAGMA wal_autocheckpoint = 1000",
]

_SCHEMA = """
    CREATE TABLE IF NOT EXISTS trust_counters (
        key TEXT PRIMARY KEY,
        interaction_count INTEGER NOT NULL CHECK (interaction_count >= 0),
        last_seen REAL NOT NULL
    )
"""

_INCREMENT_SQL = """
    INSERT INTO trust_counters (key, interaction_count, last_seen)
    VALUES (?, ?, ?)
    ON CONFLICT(key) DO UPDATE SET
        interaction_count = interaction_count + excluded.interaction_count,
        last_seen = excluded.last_seen
    RETURNING interaction_count
"""


class SQLiteTrustStore:
    """
    :class:`TrustStore` backed by a SQLite database file.

    Thread / task safety
    --------------------
    * Reads: run directly on the shared connection; WAL allows concurrent reads.
    * Writes: go through ``_transaction()``, serialised by ``_write_sem``.
    """

    name = "sqlite"

    def __init__(self, path: Path) -> None:
        self._path = path
        self._conn: aiosqlite.Connection | None = None
        self._write_sem = asyncio.Semaphore(1)   # one writer at a time

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        """
        Open the database, apply pragmas and create the schema.

        Raises:
            StoreUnavailable: If the file cannot be opened or initialised.
        """
        if self._conn is not None:
            logger.warning("[SQLITE STORE] open() called but connection already exists, ignoring")
            return

        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self._path)
            self._conn.row_factory = aiosqlite.Row
            for pragma in _PRAGMAS:
                await self._conn.execute(pragma)
            await self._conn.execute(_SCHEMA)
            await self._conn.commit()
        except (sqlite3.Error, OSError) as exc:
            if self._conn is not None:
                await self._conn.close()
                self._conn = None
            raise StoreUnavailable(f"Failed to open trust store {self._path}: {exc}") from exc

        logger.info("[SQLITE STORE] Opened trust store at %s", self._path)

    async def close(self) -> None:
        """Flush the WAL and close the connection. Safe to call twice."""
        if self._conn is None:
            return

        try:
            await self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
            await self._conn.commit()
        except sqlite3.Error:
            logger.exception("[SQLITE STORE] WAL checkpoint failed during close")
        finally:
            await self._conn.close()
            self._conn = None
            logger.info("[SQLITE STORE] Connection closed")

    # ------------------------------------------------------------------
    # Connection access
    # ------------------------------------------------------------------

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreUnavailable(f"Trust store {self._path} is not open")
        return self._conn

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialised write transaction; commits on exit, rolls back on error."""
        conn = self.connection

        async with self._write_sem:
            try:
                yield conn
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise

    # ------------------------------------------------------------------
    # TrustStore API
    # ------------------------------------------------------------------

    async def get_user_count(self, user_id: UserID, channel_id: ChannelID | None = None) -> int:
        record = await self.get_user_record(user_id, channel_id)
        return record.interaction_count if record else 0

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
            async with self._transaction() as conn:
                cursor = await conn.execute(_INCREMENT_SQL, (key, amount, time.time()))
                row = await cursor.fetchone()
                await cursor.close()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to increment {key}: {exc}") from exc

        if row is None:
            raise StoreUnavailable(f"Increment of {key} returned no row")
        return int(row["interaction_count"])

    async def get_user_record(self, user_id: UserID, channel_id: ChannelID | None = None) -> UserRecord | None:
        key = user_key(user_id, channel_id)
        try:
            cursor = await self.connection.execute(
                "SELECT interaction_count, last_seen FROM trust_counters WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
            await cursor.close()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to read {key}: {exc}") from exc

        if row is None:
            return None
        return UserRecord(key=key, interaction_count=int(row["interaction_count"]), last_seen=float(row["last_seen"]))

    async def is_empty(self) -> bool:
        try:
            cursor = await self.connection.execute("SELECT 1 FROM trust_counters LIMIT 1")
            row = await cursor.fetchone()
            await cursor.close()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Failed to probe trust store: {exc}") from exc
        return row is None
