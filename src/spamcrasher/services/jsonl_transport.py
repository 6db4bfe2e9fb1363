"""
JSON-lines transport over standard streams.

Input, one message per line::

    {"message_id": 7, "user_id": 42, "channel_id": -1001, "text": "hello"}

Output, one decision per line (see :meth:`Decision.to_dict`). Lines that
are not valid messages are logged and skipped.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import sys
import threading
from typing import AsyncIterator, TextIO

from spamcrasher.datatypes.decision_datatypes import Decision, IncomingMessage
from spamcrasher.util.logger import get_logger

logger = get_logger("jsonl_transport")

READ_AHEAD_LINES = 256


def parse_message_line(line: str) -> IncomingMessage | None:
    """Parse one input line, returning None for blank or invalid lines."""
    line = line.strip()
    if not line:
        return None
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as exc:
        logger.warning("[TRANSPORT] Skipping invalid JSON line: %s", exc)
        return None
    if not isinstance(payload, dict):
        logger.warning("[TRANSPORT] Skipping non-object line: %r", payload)
        return None
    try:
        return IncomingMessage.from_dict(payload)
    except (KeyError, TypeError, ValueError) as exc:
        logger.warning("[TRANSPORT] Skipping malformed message %r: %s", payload, exc)
        return None


def _pump_lines(stream: TextIO, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
    """Copy lines from a blocking stream onto ``queue``; ``None`` marks EOF."""
    try:
        for line in iter(stream.readline, ""):
            asyncio.run_coroutine_threadsafe(queue.put(line), loop).result()
        asyncio.run_coroutine_threadsafe(queue.put(None), loop).result()
    except (RuntimeError, concurrent.futures.CancelledError):
        # Event loop went away while this thread was blocked
        return


async def read_messages(stream: TextIO | None = None) -> AsyncIterator[IncomingMessage]:
    """Yield messages from ``stream`` (stdin by default) until EOF.

    A daemon thread does the blocking reads, so a shutdown never waits for
    the next line of input.
    """
    stream = stream or sys.stdin
    queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=READ_AHEAD_LINES)
    reader = threading.Thread(
        target=_pump_lines,
        args=(stream, asyncio.get_running_loop(), queue),
        name="jsonl-reader",
        daemon=True,
    )
    reader.start()

    while True:
        line = await queue.get()
        if line is None:
            return
        message = parse_message_line(line)
        if message is not None:
            yield message


class JsonlDecisionWriter:
    """Decision sink writing one JSON object per line."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout
        self._lock = asyncio.Lock()

    def _write_line(self, line: str) -> None:
        self._stream.write(line + "\n")
        self._stream.flush()

    async def __call__(self, decision: Decision) -> None:
        line = json.dumps(decision.to_dict(), ensure_ascii=False)
        # Runs in a worker thread so a stalled pipe cannot block the loop
        async with self._lock:
            await asyncio.to_thread(self._write_line, line)
