"""
Tests for the JSON-lines stdin/stdout transport.
"""

import asyncio
import io
import json
import threading

import pytest

from spamcrasher.datatypes.decision_datatypes import (
    ClassificationResult,
    Decision,
    DecisionReason,
    DecisionType,
    IncomingMessage,
)
from spamcrasher.datatypes.identifiers import ChannelID, UserID
from spamcrasher.services.jsonl_transport import JsonlDecisionWriter, parse_message_line, read_messages


def test_parse_message_line_builds_message():
    message = parse_message_line('{"message_id": 7, "user_id": "42", "channel_id": -1001, "text": "hi"}\n')

    assert message is not None
    assert message.message_id == 7
    assert message.user_id == UserID(42)
    assert message.channel_id == ChannelID(-1001)
    assert message.text == "hi"


def test_parse_message_line_defaults_missing_text():
    message = parse_message_line('{"user_id": 1, "channel_id": 2}')
    assert message is not None
    assert message.text == ""
    assert message.message_id == 0


@pytest.mark.parametrize(
    "line",
    [
        "",
        "   \n",
        "{not json",
        "[1, 2, 3]",
        '"just a string"',
        '{"channel_id": 2, "text": "no author"}',
        '{"user_id": "abc", "channel_id": 2}',
        '{"user_id": 1, "channel_id": 2, "message_id": "x"}',
    ],
)
def test_parse_message_line_skips_invalid(line):
    assert parse_message_line(line) is None


@pytest.mark.asyncio
async def test_read_messages_yields_valid_lines_until_eof():
    stream = io.StringIO(
        '{"message_id": 1, "user_id": 10, "channel_id": 5, "text": "first"}\n'
        "garbage\n"
        "\n"
        '{"message_id": 2, "user_id": 11, "channel_id": 5, "text": "second"}\n'
    )

    messages = [message async for message in read_messages(stream)]

    assert [m.message_id for m in messages] == [1, 2]
    assert [m.text for m in messages] == ["first", "second"]


@pytest.mark.asyncio
async def test_read_messages_empty_stream():
    assert [message async for message in read_messages(io.StringIO(""))] == []


@pytest.mark.asyncio
async def test_decision_writer_emits_one_json_object_per_line():
    stream = io.StringIO()
    writer = JsonlDecisionWriter(stream)
    message = IncomingMessage(message_id=3, user_id=UserID(9), channel_id=ChannelID(-7), text="buy now")

    await writer(
        Decision(
            DecisionType.FLAG,
            DecisionReason.SPAM_THRESHOLD_EXCEEDED,
            message=message,
            score=0.93,
            interaction_count=1,
            classification=ClassificationResult(score=0.93, provider="openai", model="gpt-test", latency_ms=12.34),
        )
    )
    await writer(Decision(DecisionType.ALLOW, DecisionReason.WHITELISTED, message=message))

    lines = stream.getvalue().splitlines()
    assert len(lines) == 2
    first, second = (json.loads(line) for line in lines)
    assert first == {
        "action": "flag",
        "reason": "new-user threshold exceeded",
        "score": 0.93,
        "interaction_count": 1,
        "message_id": 3,
        "user_id": "9",
        "channel_id": "-7",
        "provider": "openai",
        "model": "gpt-test",
        "latency_ms": 12.3,
    }
    assert second["action"] == "allow"
    assert second["reason"] == "whitelisted"
    assert "error" not in second


class BlockingStream(io.StringIO):
    """StringIO whose writes wait until ``release`` is set."""

    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def write(self, text):
        self.release.wait(timeout=5)
        return super().write(text)


@pytest.mark.asyncio
async def test_decision_writer_does_not_block_event_loop():
    stream = BlockingStream()
    writer = JsonlDecisionWriter(stream)
    message = IncomingMessage(message_id=1, user_id=UserID(1), channel_id=ChannelID(2), text="x")

    write = asyncio.create_task(writer(Decision(DecisionType.ALLOW, DecisionReason.ESTABLISHED_USER, message=message)))
    loop = asyncio.get_running_loop()
    started = loop.time()
    for _ in range(10):
        await asyncio.sleep(0.01)

    assert loop.time() - started < 2.0
    assert not write.done()

    stream.release.set()
    await asyncio.wait_for(write, timeout=5)
    assert json.loads(stream.getvalue())["message_id"] == 1
