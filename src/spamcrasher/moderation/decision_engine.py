"""
Per-message moderation decisions.

For every message the engine walks the same short state machine::

    Received -> ChannelChecked -> {ShortCircuitAllowed | CountRead}
             -> {ClassifyInvoked | ThresholdSkipped} -> Decided

1. Whitelisted channel: allow, nothing else is touched.
2. Atomically increment the author's interaction counter in the trust store.
3. Authors whose new count is at or below ``new_user_threshold`` are new and
   get classified; everybody else is allowed as an established user.
4. ``score >= suppress_threshold`` suppresses, ``score >= spam_threshold``
   flags, anything lower is allowed.

Store and classifier failures never escape :meth:`DecisionEngine.decide`:
they become decisions with an error reason, resolved by the configured
fail-open / fail-closed policy. An increment that exceeds ``store_timeout``
is left to finish in the background, so the message is still counted once.
:meth:`DecisionEngine.stop` waits for such writes before closing the store.
The engine holds no lock of its own; the only shared state is the store
counter, whose increment is atomic.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from typing import Dict, Set

from spamcrasher.classifier.provider import ClassifierProvider
from spamcrasher.configuration.engine_settings import EngineSettings
from spamcrasher.datatypes.decision_datatypes import (
    ClassificationResult,
    Decision,
    DecisionReason,
    DecisionType,
    FailurePolicy,
    IncomingMessage,
    UserScope,
)
from spamcrasher.errors import ClassifierError, EngineStopped, StoreUnavailable
from spamcrasher.moderation.channel_policy import ChannelPolicy
from spamcrasher.store.trust_store import TrustStore
from spamcrasher.util.logger import get_logger

logger = get_logger("decision_engine")


class DecisionEngine:
    """
    Combine trust counters, the classifier and the threshold policy.

    All collaborators are injected so tests can run the engine against an
    in-memory store and a stub classifier.

    Args:
        settings: Validated engine settings (prompt, thresholds, policies, timeouts).
        store: Trust store holding interaction counters.
        provider: Classifier capability; the engine never sees a vendor type.
        channel_policy: Whitelist; defaults to ``settings.whitelist_channels``.
    """

    def __init__(
        self,
        settings: EngineSettings,
        store: TrustStore,
        provider: ClassifierProvider,
        channel_policy: ChannelPolicy | None = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._provider = provider
        if channel_policy is None:
            channel_policy = ChannelPolicy(settings.whitelist_channels)
        self._channel_policy = channel_policy
        self._started = False
        self._stopping = False
        self._stopped = asyncio.Event()
        self._in_flight: Set[asyncio.Task] = set()
        self._store_writes: Set[asyncio.Future] = set()
        self._stats: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def accepting(self) -> bool:
        return self._started and not self._stopping

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self) -> None:
        """Begin accepting messages. Calling it again is a no-op."""
        if self._stopping:
            raise EngineStopped("Engine cannot be restarted after stop()")
        if self._started:
            return
        self._started = True
        logger.info(
            "[ENGINE] Started: provider=%s store=%s spam_threshold=%.2f new_user_threshold=%d "
            "scope=%s whitelist=%d classifier_failure=%s store_failure=%s",
            self._provider.name,
            getattr(self._store, "name", type(self._store).__name__),
            self._settings.spam_threshold,
            self._settings.new_user_threshold,
            self._settings.user_scope,
            len(self._channel_policy),
            self._settings.classifier_failure_policy,
            self._settings.store_failure_policy,
        )

    async def stop(self, grace_period: float | None = None) -> None:
        """Stop accepting messages, drain in-flight work and release resources.

        In-flight decisions get ``grace_period`` seconds (default from the
        settings) to finish; whatever is left afterwards is cancelled. The
        classifier client and the store connection are closed last. Only the
        first call does anything; later calls wait for it to finish.
        """
        if self._stopping:
            await self._stopped.wait()
            return
        self._stopping = True
        grace = self._settings.shutdown_grace_seconds if grace_period is None else grace_period

        pending = {task for task in self._in_flight if task is not asyncio.current_task()}
        if pending:
            logger.info("[ENGINE] Waiting up to %.1fs for %d in-flight decision(s)", grace, len(pending))
            _, still_running = await asyncio.wait(pending, timeout=grace)
            if still_running:
                logger.warning("[ENGINE] Cancelling %d decision(s) past the grace deadline", len(still_running))
                for task in still_running:
                    task.cancel()
                await asyncio.gather(*still_running, return_exceptions=True)

        if self._store_writes:
            _, unfinished = await asyncio.wait(set(self._store_writes), timeout=self._settings.store_timeout)
            for write in unfinished:
                write.cancel()
            await asyncio.gather(*unfinished, return_exceptions=True)

        try:
            await self._provider.close()
        except Exception as exc:
            logger.exception("[ENGINE] Error closing classifier provider: %s", exc)
        try:
            await self._store.close()
        except Exception as exc:
            logger.exception("[ENGINE] Error closing trust store: %s", exc)

        self._stopped.set()
        logger.info("[ENGINE] Stopped. Decision stats: %s", dict(self._stats))

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def decision_stats(self) -> Dict[str, int]:
        """Number of decisions per reason (and per action) since start."""
        return dict(self._stats)

    def _record(self, decision: Decision) -> Decision:
        self._stats[decision.reason.value] += 1
        self._stats[f"action:{decision.action.value}"] += 1

        message = decision.message
        args = (
            decision.action, decision.reason,
            message.user_id if message else "?", message.channel_id if message else "?",
            decision.interaction_count, decision.score,
        )
        if decision.reason.is_error:
            logger.error("[DECISION] %s (%s) user=%s channel=%s count=%s score=%s error=%s", *args, decision.error)
        elif decision.is_spam:
            logger.info("[DECISION] %s (%s) user=%s channel=%s count=%s score=%s", *args)
        else:
            logger.debug("[DECISION] %s (%s) user=%s channel=%s count=%s score=%s", *args)
        return decision

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def decide(self, message: IncomingMessage) -> Decision:
        """Produce the decision for one message.

        Raises:
            EngineStopped: If the engine was not started or is shutting down.
        """
        if not self.accepting:
            raise EngineStopped("Engine is not accepting messages")

        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)
        try:
            try:
                decision = await self._decide(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("[ENGINE] Unexpected error deciding message %s: %s", message.message_id, exc)
                decision = self._fallback(
                    message, DecisionReason.INTERNAL_ERROR, self._settings.classifier_failure_policy, exc
                )
            return self._record(decision)
        finally:
            if task is not None:
                self._in_flight.discard(task)

    async def _decide(self, message: IncomingMessage) -> Decision:
        settings = self._settings

        if self._channel_policy.is_whitelisted(message.channel_id):
            return Decision(DecisionType.ALLOW, DecisionReason.WHITELISTED, message=message)

        scope_channel = message.channel_id if settings.user_scope is UserScope.CHANNEL else None
        # Shielded: a timed-out increment still completes, it is never cut off mid-write
        increment = asyncio.ensure_future(self._store.increment_user_count(message.user_id, scope_channel))
        self._store_writes.add(increment)
        increment.add_done_callback(self._store_write_done)
        try:
            count = await asyncio.wait_for(asyncio.shield(increment), timeout=settings.store_timeout)
        except (StoreUnavailable, TimeoutError) as exc:
            return self._fallback(message, DecisionReason.STORE_ERROR, settings.store_failure_policy, exc)

        if count > settings.new_user_threshold:
            return Decision(
                DecisionType.ALLOW, DecisionReason.ESTABLISHED_USER, message=message, interaction_count=count
            )

        try:
            result = await asyncio.wait_for(
                self._provider.classify(message.text, settings.prompt),
                timeout=settings.classify_timeout,
            )
        except (ClassifierError, TimeoutError) as exc:
            return self._fallback(
                message, DecisionReason.CLASSIFIER_ERROR, settings.classifier_failure_policy, exc, count
            )

        return self._apply_thresholds(message, result, count)

    def _store_write_done(self, write: asyncio.Future) -> None:
        self._store_writes.discard(write)
        if not write.cancelled() and write.exception() is not None:
            logger.debug("[ENGINE] Store increment failed: %s", write.exception())

    def _apply_thresholds(self, message: IncomingMessage, result: ClassificationResult, count: int) -> Decision:
        settings = self._settings
        score = result.score

        if settings.suppress_threshold is not None and score >= settings.suppress_threshold:
            action, reason = DecisionType.SUPPRESS, DecisionReason.SUPPRESS_THRESHOLD_EXCEEDED
        elif score >= settings.spam_threshold:
            action, reason = DecisionType.FLAG, DecisionReason.SPAM_THRESHOLD_EXCEEDED
        else:
            action, reason = DecisionType.ALLOW, DecisionReason.BELOW_THRESHOLD

        return Decision(
            action,
            reason,
            message=message,
            score=score,
            interaction_count=count,
            classification=result,
        )

    @staticmethod
    def _fallback(
        message: IncomingMessage,
        reason: DecisionReason,
        policy: FailurePolicy,
        exc: BaseException,
        count: int | None = None,
    ) -> Decision:
        error = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
        return Decision(
            policy.action,
            reason,
            message=message,
            interaction_count=count,
            error=f"{error} ({policy})",
        )
