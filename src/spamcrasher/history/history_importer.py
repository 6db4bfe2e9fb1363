"""
Bulk loading of historical interaction counts into the trust store.

The importer runs once at startup and only against an empty store. It
accepts two file formats:

- ``*.json``: a Telegram Desktop chat export. Every entry of ``messages``
  with ``type == "message"`` and a ``from_id`` of the form ``user<id>``
  counts as one interaction of that user in the exported chat.
- anything else: plain text, one record per line as
  ``user_id[,count[,channel_id]]``. Blank lines and ``#`` comments are ignored.

The whole file is parsed before the store is touched, so a malformed file
leaves the store empty. Records are written with the store's own increment
primitive; the resulting state is the same as if the messages had been seen
live.
"""

from __future__ import annotations

import asyncio
import json
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Tuple

from spamcrasher.datatypes.decision_datatypes import UserScope
from spamcrasher.datatypes.identifiers import ChannelID, UserID
from spamcrasher.errors import HistoryImportError, StoreUnavailable
from spamcrasher.store.trust_store import TrustStore
from spamcrasher.util.logger import get_logger

logger = get_logger("history_importer")

TELEGRAM_USER_PREFIX = "user"


@dataclass(frozen=True, slots=True)
class HistoryRecord:
    """Interactions of one user, optionally inside one channel."""
    user_id: UserID
    count: int = 1
    channel_id: ChannelID | None = None


@dataclass(frozen=True, slots=True)
class ImportSummary:
    """Result of an import run.

    Attributes:
        records: Interactions written to the store.
        users: Distinct store keys touched.
        skipped: Entries ignored (service messages, channel posts, records
            without a channel under channel scope).
    """
    records: int = 0
    users: int = 0
    skipped: int = 0


def parse_telegram_export(data: Any) -> Tuple[List[HistoryRecord], int]:
    """Turn a Telegram Desktop export into one record per user message.

    Raises:
        HistoryImportError: If the document does not look like an export.
    """
    if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
        raise HistoryImportError("Telegram export must be an object with a 'messages' list")

    channel_id: ChannelID | None = None
    if data.get("id") is not None:
        try:
            channel_id = ChannelID(data["id"])
        except (TypeError, ValueError) as exc:
            raise HistoryImportError(f"Invalid chat id in export: {data['id']!r}") from exc

    records: List[HistoryRecord] = []
    skipped = 0
    for entry in data["messages"]:
        if not isinstance(entry, dict) or entry.get("type") != "message":
            skipped += 1
            continue
        from_id = entry.get("from_id")
        if not isinstance(from_id, str) or not from_id.startswith(TELEGRAM_USER_PREFIX):
            # Channel posts and anonymous admins carry "channel<id>"
            skipped += 1
            continue
        try:
            user_id = UserID(from_id[len(TELEGRAM_USER_PREFIX):])
        except (TypeError, ValueError) as exc:
            raise HistoryImportError(f"Invalid from_id in export: {from_id!r}") from exc
        records.append(HistoryRecord(user_id=user_id, count=1, channel_id=channel_id))

    return records, skipped


def parse_record_lines(lines: Iterable[str]) -> List[HistoryRecord]:
    """Parse ``user_id[,count[,channel_id]]`` lines.

    Raises:
        HistoryImportError: On the first malformed line, naming its number.
    """
    records: List[HistoryRecord] = []
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        fields = [part.strip() for part in line.split(",")]
        if len(fields) > 3:
            raise HistoryImportError(f"Line {lineno}: expected at most 3 fields, got {len(fields)}")
        try:
            user_id = UserID(fields[0])
            count = int(fields[1]) if len(fields) > 1 and fields[1] else 1
            channel_id = ChannelID(fields[2]) if len(fields) > 2 and fields[2] else None
        except (TypeError, ValueError) as exc:
            raise HistoryImportError(f"Line {lineno}: {exc}") from exc
        if count < 1:
            raise HistoryImportError(f"Line {lineno}: count must be positive, got {count}")

        records.append(HistoryRecord(user_id=user_id, count=count, channel_id=channel_id))
    return records


def load_history_file(path: Path) -> Tuple[List[HistoryRecord], int]:
    """Read and parse a history file. Returns ``(records, skipped)``.

    Raises:
        HistoryImportError: Missing, unreadable or malformed file.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise HistoryImportError(f"History file not found: {path}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise HistoryImportError(f"Cannot read history file {path}: {exc}") from exc

    if path.suffix.lower() == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise HistoryImportError(f"Invalid JSON in {path}: {exc}") from exc
        return parse_telegram_export(data)

    return parse_record_lines(text.splitlines()), 0


class HistoryImporter:
    """
    Populate a trust store from a history file.

    Args:
        store: Store to write to.
        user_scope: Must match the engine's scope so imported counts land on
            the keys the engine reads.
    """

    def __init__(self, store: TrustStore, user_scope: UserScope = UserScope.GLOBAL) -> None:
        self._store = store
        self._user_scope = user_scope

    def _aggregate(self, records: Iterable[HistoryRecord]) -> Tuple[Dict[Tuple[UserID, ChannelID | None], int], int]:
        totals: Counter[Tuple[UserID, ChannelID | None]] = Counter()
        skipped = 0
        for record in records:
            if self._user_scope is UserScope.CHANNEL:
                if record.channel_id is None:
                    skipped += 1
                    continue
                totals[(record.user_id, record.channel_id)] += record.count
            else:
                totals[(record.user_id, None)] += record.count
        return dict(totals), skipped

    async def import_file(self, path: str | Path) -> ImportSummary:
        """Parse ``path`` completely, then write every record to the store.

        Raises:
            HistoryImportError: Parse failure or store failure during the write.
        """
        path = Path(path)
        records, skipped = await asyncio.to_thread(load_history_file, path)
        totals, scope_skipped = self._aggregate(records)
        skipped += scope_skipped

        written = 0
        try:
            for (user_id, channel_id), count in totals.items():
                await self._store.increment_user_count(user_id, channel_id, amount=count)
                written += count
        except StoreUnavailable as exc:
            raise HistoryImportError(
                f"Store failed after {written} imported interactions: {exc}"
            ) from exc

        summary = ImportSummary(records=written, users=len(totals), skipped=skipped)
        logger.info(
            "[HISTORY] Imported %d interactions for %d keys from %s (%d skipped)",
            summary.records, summary.users, path, summary.skipped,
        )
        return summary

    async def import_if_empty(self, path: str | Path) -> ImportSummary | None:
        """Run :meth:`import_file` only when the store holds no counters.

        Import failures are logged and swallowed; the engine can still run
        without history. Returns ``None`` when nothing was imported.
        """
        try:
            empty = await self._store.is_empty()
        except StoreUnavailable as exc:
            logger.error("[HISTORY] Cannot check whether the store is empty, skipping import: %s", exc)
            return None

        if not empty:
            logger.info("[HISTORY] Store is not empty. Skipping history load.")
            return None

        try:
            return await self.import_file(path)
        except HistoryImportError as exc:
            logger.error("[HISTORY] Failed to load history from %s: %s", path, exc)
            return None


async def import_history(
    store: TrustStore,
    path: str | Path,
    user_scope: UserScope = UserScope.GLOBAL,
) -> ImportSummary | None:
    """Convenience wrapper used by the bootstrap."""
    return await HistoryImporter(store, user_scope).import_if_empty(path)


__all__ = [
    "HistoryRecord",
    "ImportSummary",
    "HistoryImporter",
    "import_history",
    "load_history_file",
    "parse_record_lines",
    "parse_telegram_export",
]
