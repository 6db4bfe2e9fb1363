"""
Tests for the decision engine state machine.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from spamcrasher.datatypes.decision_datatypes import (
    DecisionReason,
    DecisionType,
    FailurePolicy,
    IncomingMessage,
    UserScope,
)
from spamcrasher.datatypes.identifiers import ChannelID, UserID
from spamcrasher.errors import EngineStopped, ProviderAuthError, ProviderTransientError, StoreUnavailable
from spamcrasher.moderation.channel_policy import ChannelPolicy
from spamcrasher.moderation.decision_engine import DecisionEngine


def make_message(user=1, channel=-100, text="hello there", message_id=1) -> IncomingMessage:
    return IncomingMessage(
        message_id=message_id,
        user_id=UserID(user),
        channel_id=ChannelID(channel),
        text=text,
    )


@pytest.fixture
def build_engine(make_settings, memory_store):
    def factory(provider, store=None, channel_policy=None, **settings_overrides):
        engine = DecisionEngine(
            make_settings(**settings_overrides),
            store if store is not None else memory_store,
            provider,
            channel_policy,
        )
        engine.start()
        return engine

    return factory


async def wait_until_in_flight(engine: DecisionEngine, count: int = 1) -> None:
    for _ in range(100):
        if engine.in_flight >= count:
            return
        await asyncio.sleep(0)
    raise AssertionError("decision never became in-flight")


def failing_store(error: BaseException) -> MagicMock:
    store = MagicMock()
    store.name = "failing"
    store.increment_user_count = AsyncMock(side_effect=error)
    store.close = AsyncMock()
    return store


# ---------------------------------------------------------------------------
# Channel whitelist
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_whitelisted_channel_is_allowed_without_store_or_classifier(
    build_engine, scripted_classifier, memory_store
):
    provider = scripted_classifier([1.0])
    engine = build_engine(provider, whitelist_channels=frozenset({ChannelID(-100)}))

    for i in range(5):
        decision = await engine.decide(make_message(message_id=i))
        assert decision.action is DecisionType.ALLOW
        assert decision.reason is DecisionReason.WHITELISTED

    assert provider.requests == []
    assert await memory_store.is_empty()


@pytest.mark.asyncio
async def test_explicit_channel_policy_overrides_settings(build_engine, scripted_classifier):
    provider = scripted_classifier([0.9])
    engine = build_engine(
        provider,
        channel_policy=ChannelPolicy(),
        whitelist_channels=frozenset({ChannelID(-100)}),
    )

    decision = await engine.decide(make_message())

    assert decision.reason is DecisionReason.SPAM_THRESHOLD_EXCEEDED
    assert len(provider.requests) == 1


# ---------------------------------------------------------------------------
# New-user gate and thresholds
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_only_first_message_of_new_user_is_classified(build_engine, scripted_classifier):
    provider = scripted_classifier([0.1])
    engine = build_engine(provider, new_user_threshold=1)

    first = await engine.decide(make_message(message_id=1))
    second = await engine.decide(make_message(message_id=2))
    third = await engine.decide(make_message(message_id=3))

    assert first.action is DecisionType.ALLOW
    assert first.reason is DecisionReason.BELOW_THRESHOLD
    assert first.interaction_count == 1
    assert first.score == pytest.approx(0.1)
    assert first.classification is not None

    for later, count in ((second, 2), (third, 3)):
        assert later.action is DecisionType.ALLOW
        assert later.reason is DecisionReason.ESTABLISHED_USER
        assert later.interaction_count == count
        assert later.score is None

    assert len(provider.requests) == 1


@pytest.mark.asyncio
async def test_threshold_boundary_is_inclusive(build_engine, scripted_classifier):
    engine = build_engine(scripted_classifier([0.5]), spam_threshold=0.5)

    decision = await engine.decide(make_message())

    assert decision.action is DecisionType.FLAG
    assert decision.reason is DecisionReason.SPAM_THRESHOLD_EXCEEDED
    assert decision.score == 0.5


@pytest.mark.asyncio
async def test_score_below_threshold_is_allowed(build_engine, scripted_classifier):
    engine = build_engine(scripted_classifier([0.4999]), spam_threshold=0.5)

    decision = await engine.decide(make_message())

    assert decision.action is DecisionType.ALLOW
    assert decision.reason is DecisionReason.BELOW_THRESHOLD


@pytest.mark.asyncio
async def test_suppress_threshold_takes_precedence(build_engine, scripted_classifier):
    provider = scripted_classifier([0.95, 0.7])
    engine = build_engine(provider, spam_threshold=0.5, suppress_threshold=0.9, new_user_threshold=5)

    suppressed = await engine.decide(make_message(message_id=1))
    flagged = await engine.decide(make_message(message_id=2))

    assert suppressed.action is DecisionType.SUPPRESS
    assert suppressed.reason is DecisionReason.SUPPRESS_THRESHOLD_EXCEEDED
    assert flagged.action is DecisionType.FLAG


@pytest.mark.asyncio
async def test_zero_new_user_threshold_classifies_nobody(build_engine, scripted_classifier):
    provider = scripted_classifier([1.0])
    engine = build_engine(provider, new_user_threshold=0)

    decision = await engine.decide(make_message())

    assert decision.reason is DecisionReason.ESTABLISHED_USER
    assert provider.requests == []


@pytest.mark.asyncio
async def test_empty_text_is_counted_and_classified(build_engine, scripted_classifier, memory_store):
    provider = scripted_classifier([0.0])
    engine = build_engine(provider)

    decision = await engine.decide(make_message(text=""))

    assert decision.reason is DecisionReason.BELOW_THRESHOLD
    assert provider.requests[0].text == ""
    assert await memory_store.get_user_count(UserID(1)) == 1


@pytest.mark.asyncio
async def test_prompt_from_settings_is_sent(build_engine, scripted_classifier):
    provider = scripted_classifier([0.0])
    engine = build_engine(provider, prompt="custom prompt")

    await engine.decide(make_message())

    assert provider.requests[0].prompt == "custom prompt"


@pytest.mark.asyncio
async def test_channel_scope_counts_per_channel(build_engine, scripted_classifier, memory_store):
    provider = scripted_classifier([0.0])
    engine = build_engine(provider, user_scope=UserScope.CHANNEL, new_user_threshold=1)

    in_a = await engine.decide(make_message(channel=-1))
    in_b = await engine.decide(make_message(channel=-2))
    again_in_a = await engine.decide(make_message(channel=-1))

    assert in_a.reason is DecisionReason.BELOW_THRESHOLD
    assert in_b.reason is DecisionReason.BELOW_THRESHOLD
    assert again_in_a.reason is DecisionReason.ESTABLISHED_USER
    assert await memory_store.get_user_count(UserID(1), ChannelID(-1)) == 2
    assert await memory_store.get_user_count(UserID(1)) == 0


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concurrent_messages_from_same_user_count_exactly(build_engine, scripted_classifier, memory_store):
    gate = asyncio.Event()
    provider = scripted_classifier([0.0], gate=gate)
    engine = build_engine(provider, new_user_threshold=3)

    tasks = [asyncio.create_task(engine.decide(make_message(message_id=i))) for i in range(25)]
    await wait_until_in_flight(engine, 3)
    gate.set()
    decisions = await asyncio.gather(*tasks)

    assert await memory_store.get_user_count(UserID(1)) == 25
    assert sorted(d.interaction_count for d in decisions) == list(range(1, 26))
    # Exactly the first three interactions were new-user messages
    assert len(provider.requests) == 3
    assert sum(d.reason is DecisionReason.ESTABLISHED_USER for d in decisions) == 22


# ---------------------------------------------------------------------------
# Failure policies
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "policy, expected_action",
    [(FailurePolicy.FAIL_OPEN, DecisionType.ALLOW), (FailurePolicy.FAIL_CLOSED, DecisionType.FLAG)],
)
@pytest.mark.asyncio
async def test_exhausted_transient_errors_apply_classifier_policy(
    build_engine, scripted_classifier, policy, expected_action
):
    provider = scripted_classifier([ProviderTransientError("503 unavailable")], max_retries=3)
    engine = build_engine(provider, classifier_failure_policy=policy)

    decision = await engine.decide(make_message())

    assert decision.action is expected_action
    assert decision.reason is DecisionReason.CLASSIFIER_ERROR
    assert decision.interaction_count == 1
    assert "ProviderTransientError" in decision.error
    assert str(policy) in decision.error
    assert len(provider.requests) == 3


@pytest.mark.asyncio
async def test_auth_error_falls_back_for_every_later_message(build_engine, scripted_classifier):
    provider = scripted_classifier([ProviderAuthError("401")])
    engine = build_engine(provider, classifier_failure_policy=FailurePolicy.FAIL_CLOSED)

    first = await engine.decide(make_message(user=1))
    second = await engine.decide(make_message(user=2))

    assert first.action is DecisionType.FLAG
    assert second.action is DecisionType.FLAG
    assert second.reason is DecisionReason.CLASSIFIER_ERROR
    assert provider.call_count == 1


@pytest.mark.asyncio
async def test_classifier_timeout_is_classifier_error(build_engine, scripted_classifier):
    provider = scripted_classifier([0.0], gate=asyncio.Event())
    engine = build_engine(provider, classify_timeout=0.05)

    decision = await engine.decide(make_message())

    assert decision.action is DecisionType.ALLOW
    assert decision.reason is DecisionReason.CLASSIFIER_ERROR
    assert "TimeoutError" in decision.error


@pytest.mark.parametrize(
    "policy, expected_action",
    [(FailurePolicy.FAIL_OPEN, DecisionType.ALLOW), (FailurePolicy.FAIL_CLOSED, DecisionType.FLAG)],
)
@pytest.mark.asyncio
async def test_store_failure_applies_store_policy(build_engine, scripted_classifier, policy, expected_action):
    provider = scripted_classifier([1.0])
    engine = build_engine(provider, store=failing_store(StoreUnavailable("redis down")), store_failure_policy=policy)

    decision = await engine.decide(make_message())

    assert decision.action is expected_action
    assert decision.reason is DecisionReason.STORE_ERROR
    assert decision.interaction_count is None
    assert provider.requests == []


@pytest.mark.asyncio
async def test_store_timeout_is_store_error(build_engine, scripted_classifier):
    cancelled = asyncio.Event()

    async def hang(*args, **kwargs):
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise

    store = failing_store(StoreUnavailable("unused"))
    store.increment_user_count = AsyncMock(side_effect=hang)
    engine = build_engine(scripted_classifier([1.0]), store=store, store_timeout=0.05)

    decision = await engine.decide(make_message())

    assert decision.reason is DecisionReason.STORE_ERROR
    # The write is only abandoned when the engine shuts down
    assert not cancelled.is_set()
    await engine.stop()
    assert cancelled.is_set()
    store.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_slow_increment_completes_after_store_timeout(build_engine, scripted_classifier, memory_store):
    release = asyncio.Event()
    real_increment = memory_store.increment_user_count

    async def slow_increment(*args, **kwargs):
        await release.wait()
        return await real_increment(*args, **kwargs)

    memory_store.increment_user_count = slow_increment
    provider = scripted_classifier([1.0])
    engine = build_engine(provider, store_timeout=0.05)

    decision = await engine.decide(make_message(user=5))

    assert decision.reason is DecisionReason.STORE_ERROR
    assert provider.requests == []

    release.set()
    await engine.stop()
    assert await memory_store.get_user_count(UserID(5)) == 1


@pytest.mark.asyncio
async def test_unexpected_error_becomes_internal_error(build_engine, scripted_classifier):
    provider = scripted_classifier([RuntimeError("bug in provider")])
    engine = build_engine(provider, classifier_failure_policy=FailurePolicy.FAIL_CLOSED)

    decision = await engine.decide(make_message())

    assert decision.action is DecisionType.FLAG
    assert decision.reason is DecisionReason.INTERNAL_ERROR
    assert "bug in provider" in decision.error


# ---------------------------------------------------------------------------
# Observability
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_decision_stats_count_reasons_and_actions(build_engine, scripted_classifier):
    provider = scripted_classifier([0.9])
    engine = build_engine(provider, whitelist_channels=frozenset({ChannelID(-5)}))

    await engine.decide(make_message(channel=-5))
    await engine.decide(make_message(user=1))
    await engine.decide(make_message(user=1))

    stats = engine.decision_stats
    assert stats["whitelisted"] == 1
    assert stats["new-user threshold exceeded"] == 1
    assert stats["established user"] == 1
    assert stats["action:allow"] == 2
    assert stats["action:flag"] == 1


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_decide_requires_started_engine(make_settings, memory_store, scripted_classifier):
    engine = DecisionEngine(make_settings(), memory_store, scripted_classifier())

    with pytest.raises(EngineStopped):
        await engine.decide(make_message())

    engine.start()
    engine.start()
    assert engine.accepting


@pytest.mark.asyncio
async def test_stop_closes_dependencies_and_rejects_new_messages(build_engine, scripted_classifier, memory_store):
    provider = scripted_classifier([0.0])
    engine = build_engine(provider)

    await engine.stop()
    await engine.stop()

    assert provider.closed
    assert memory_store.closed
    assert not engine.accepting
    with pytest.raises(EngineStopped):
        await engine.decide(make_message())
    with pytest.raises(EngineStopped):
        engine.start()


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_decision_within_grace(build_engine, scripted_classifier):
    gate = asyncio.Event()
    engine = build_engine(scripted_classifier([0.8], gate=gate))

    task = asyncio.create_task(engine.decide(make_message()))
    await wait_until_in_flight(engine)
    asyncio.get_running_loop().call_later(0.01, gate.set)

    await engine.stop(grace_period=5.0)

    decision = task.result()
    assert decision.action is DecisionType.FLAG


@pytest.mark.asyncio
async def test_stop_cancels_decisions_past_grace_period(build_engine, scripted_classifier):
    provider = scripted_classifier([0.8], gate=asyncio.Event())
    engine = build_engine(provider, classify_timeout=30.0)

    task = asyncio.create_task(engine.decide(make_message()))
    await wait_until_in_flight(engine)

    await engine.stop(grace_period=0.05)

    assert task.cancelled()
    assert engine.in_flight == 0
    assert provider.closed


@pytest.mark.asyncio
async def test_stop_tolerates_close_errors(build_engine, scripted_classifier):
    store = failing_store(StoreUnavailable("unused"))
    store.close = AsyncMock(side_effect=StoreUnavailable("already gone"))
    provider = scripted_classifier([0.0])
    engine = build_engine(provider, store=store)

    await engine.stop()

    store.close.assert_awaited_once()
    assert provider.closed
