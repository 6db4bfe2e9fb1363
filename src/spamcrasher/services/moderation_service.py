"""
Moderation Service.

Feeds messages from a transport into the decision engine and hands every
decision to a sink. The transport is anything that yields
:class:`IncomingMessage` objects asynchronously; the sink is any coroutine
function accepting a :class:`Decision`.

Each message is decided in its own task so a slow classifier call for one
user never holds up messages from others. ``max_concurrency`` bounds the
number of messages in flight; when it is reached, reading from the source
pauses.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterable, Awaitable, Callable, Set

from spamcrasher.datatypes.decision_datatypes import Decision, IncomingMessage
from spamcrasher.errors import EngineStopped
from spamcrasher.moderation.decision_engine import DecisionEngine
from spamcrasher.util.logger import get_logger

logger = get_logger("moderation_service")

DecisionSink = Callable[[Decision], Awaitable[None]]


class ModerationService:
    """
    Run loop between a message source, the engine and a decision sink.

    Parameters
    ----------
    engine:
        Started :class:`DecisionEngine`.
    sink:
        Coroutine function receiving each decision.
    max_concurrency:
        Upper bound on messages decided at the same time.
    """

    def __init__(self, engine: DecisionEngine, sink: DecisionSink, max_concurrency: int = 64) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._engine = engine
        self._sink = sink
        self._slots = asyncio.Semaphore(max_concurrency)
        self._tasks: Set[asyncio.Task] = set()
        self._reader: asyncio.Task | None = None
        self._stop_requested = False
        self.processed = 0
        self.failed = 0

    # ------------------------------------------------------
    # Public API
    # ------------------------------------------------------

    async def run(self, source: AsyncIterable[IncomingMessage]) -> int:
        """Consume ``source`` until it is exhausted or :meth:`stop` is called.

        When the source is exhausted every accepted message is decided
        before returning. After :meth:`stop` the call returns as soon as
        reading has stopped; accepted messages are left in flight so the
        engine's shutdown grace period can bound them, and :meth:`drain`
        collects them afterwards. Returns the number of messages that
        produced a decision so far.
        """
        if self._stop_requested:
            return self.processed

        self._reader = asyncio.create_task(self._consume(source), name="moderation-reader")
        try:
            await self._reader
        except asyncio.CancelledError:
            # Either stop() cancelled the reader or run() itself is being cancelled
            if not self._stop_requested:
                raise
            logger.info("[SERVICE] Message source closed by stop(), %d message(s) in flight", len(self._tasks))
        finally:
            self._reader = None

        if self._stop_requested:
            return self.processed
        return await self.drain()

    async def drain(self) -> int:
        """Wait for every accepted message to finish. Returns ``processed``."""
        if self._tasks:
            logger.debug("[SERVICE] Waiting for %d in-flight message(s)", len(self._tasks))
            await asyncio.gather(*self._tasks, return_exceptions=True)

        logger.info("[SERVICE] Run finished: %d decided, %d failed", self.processed, self.failed)
        return self.processed

    def stop(self) -> None:
        """Stop reading new messages. Accepted messages stay in flight."""
        self._stop_requested = True
        if self._reader is not None and not self._reader.done():
            self._reader.cancel()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # -------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------

    async def _consume(self, source: AsyncIterable[IncomingMessage]) -> None:
        async for message in source:
            if self._stop_requested:
                break
            await self._slots.acquire()
            task = asyncio.create_task(self._handle(message), name=f"decide-{message.message_id}")
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._slots.release()

    async def _handle(self, message: IncomingMessage) -> None:
        try:
            decision = await self._engine.decide(message)
        except EngineStopped:
            logger.debug("[SERVICE] Engine stopped; dropping message %s", message.message_id)
            self.failed += 1
            return
        except asyncio.CancelledError:
            logger.warning("[SERVICE] Decision for message %s cancelled at shutdown", message.message_id)
            self.failed += 1
            raise

        try:
            await self._sink(decision)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failed += 1
            logger.exception("[SERVICE] Decision sink raised for message %s", message.message_id)
            return
        self.processed += 1
