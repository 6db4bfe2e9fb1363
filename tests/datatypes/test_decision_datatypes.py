import pytest

from spamcrasher.datatypes.decision_datatypes import (
    ClassificationResult,
    Decision,
    DecisionReason,
    DecisionType,
    FailurePolicy,
    IncomingMessage,
    UserRecord,
)
from spamcrasher.datatypes.identifiers import ChannelID, UserID


def test_incoming_message_from_dict_converts_types():
    message = IncomingMessage.from_dict(
        {"message_id": "9", "user_id": "42", "channel_id": -100, "text": None, "timestamp": 1700000000}
    )
    assert message.message_id == 9
    assert message.user_id == UserID(42)
    assert message.channel_id == ChannelID(-100)
    assert message.text == ""
    assert message.timestamp == pytest.approx(1700000000.0)


def test_incoming_message_from_dict_requires_ids():
    with pytest.raises(KeyError):
        IncomingMessage.from_dict({"channel_id": 1, "text": "hi"})


def test_user_record_is_new_is_inclusive():
    assert UserRecord("user:1", 1).is_new(1) is True
    assert UserRecord("user:1", 2).is_new(1) is False
    assert UserRecord("user:1", 1).is_new(0) is False


def test_failure_policy_actions():
    assert FailurePolicy.FAIL_OPEN.action is DecisionType.ALLOW
    assert FailurePolicy.FAIL_CLOSED.action is DecisionType.FLAG
    assert str(FailurePolicy.FAIL_CLOSED) == "fail_closed"


def test_reason_error_flags():
    assert DecisionReason.CLASSIFIER_ERROR.is_error
    assert DecisionReason.STORE_ERROR.is_error
    assert DecisionReason.INTERNAL_ERROR.is_error
    assert not DecisionReason.WHITELISTED.is_error
    assert not DecisionReason.SPAM_THRESHOLD_EXCEEDED.is_error


def test_decision_to_dict_includes_message_and_classification():
    message = IncomingMessage(message_id=3, user_id=UserID(1), channel_id=ChannelID(-5), text="buy now")
    result = ClassificationResult(score=0.9, provider="openai", model="gpt", latency_ms=12.345)
    decision = Decision(
        DecisionType.FLAG,
        DecisionReason.SPAM_THRESHOLD_EXCEEDED,
        message=message,
        score=0.9,
        interaction_count=1,
        classification=result,
    )

    payload = decision.to_dict()

    assert decision.is_spam is True
    assert payload == {
        "action": "flag",
        "reason": "new-user threshold exceeded",
        "score": 0.9,
        "interaction_count": 1,
        "message_id": 3,
        "user_id": "1",
        "channel_id": "-5",
        "provider": "openai",
        "model": "gpt",
        "latency_ms": 12.3,
    }


def test_decision_to_dict_error_only():
    decision = Decision(DecisionType.ALLOW, DecisionReason.STORE_ERROR, error="StoreUnavailable: down (fail_open)")
    payload = decision.to_dict()
    assert decision.is_spam is False
    assert payload["error"] == "StoreUnavailable: down (fail_open)"
    assert "user_id" not in payload
