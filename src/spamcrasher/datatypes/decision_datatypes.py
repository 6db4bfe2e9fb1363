"""
Decision types and data structures for the moderation pipeline.

This module defines the DecisionType and DecisionReason enums together with
the dataclasses that flow through the engine: the incoming message, the
per-user trust record, the classifier result and the final decision.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from spamcrasher.datatypes.identifiers import ChannelID, UserID


class DecisionType(Enum):
    """Actions the engine can hand back to the transport."""

    ALLOW = "allow"
    FLAG = "flag"
    SUPPRESS = "suppress"

    def __str__(self) -> str:
        return self.value


class DecisionReason(Enum):
    """Why a decision was taken. Values are stable and used in logs."""

    WHITELISTED = "whitelisted"
    ESTABLISHED_USER = "established user"
    BELOW_THRESHOLD = "below spam threshold"
    SPAM_THRESHOLD_EXCEEDED = "new-user threshold exceeded"
    SUPPRESS_THRESHOLD_EXCEEDED = "suppress threshold exceeded"
    CLASSIFIER_ERROR = "classifier error"
    STORE_ERROR = "store error"
    INTERNAL_ERROR = "internal error"

    def __str__(self) -> str:
        return self.value

    @property
    def is_error(self) -> bool:
        return self in (
            DecisionReason.CLASSIFIER_ERROR,
            DecisionReason.STORE_ERROR,
            DecisionReason.INTERNAL_ERROR,
        )


class FailurePolicy(Enum):
    """How a message is treated when a dependency fails."""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"

    def __str__(self) -> str:
        return self.value

    @property
    def action(self) -> DecisionType:
        return DecisionType.ALLOW if self is FailurePolicy.FAIL_OPEN else DecisionType.FLAG


class UserScope(Enum):
    """Whether interaction counters are kept per user or per user and channel."""

    GLOBAL = "global"
    CHANNEL = "channel"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    """A chat message as delivered by the transport.

    Attributes:
        message_id: Platform message identifier.
        user_id: Author of the message.
        channel_id: Chat the message was posted in.
        text: Message text, possibly empty.
        timestamp: Unix time the message was sent.
    """
    message_id: int
    user_id: UserID
    channel_id: ChannelID
    text: str
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "IncomingMessage":
        """Build a message from a loosely-typed mapping (JSON transport, tests)."""
        return cls(
            message_id=int(payload.get("message_id", 0)),
            user_id=UserID(payload["user_id"]),
            channel_id=ChannelID(payload["channel_id"]),
            text=str(payload.get("text") or ""),
            timestamp=float(payload.get("timestamp") or time.time()),
        )


@dataclass(frozen=True, slots=True)
class UserRecord:
    """Trust state of one user (optionally scoped to a channel)."""
    key: str
    interaction_count: int
    last_seen: float | None = None

    def is_new(self, new_user_threshold: int) -> bool:
        return self.interaction_count <= new_user_threshold


@dataclass(frozen=True, slots=True)
class ClassificationRequest:
    text: str
    prompt: str


@dataclass(frozen=True, slots=True)
class ClassificationResult:
    """Spam likelihood returned by a classifier provider.

    Attributes:
        score: Probability-like score in [0, 1].
        provider: Name of the vendor that produced the score.
        model: Model identifier used for the call.
        latency_ms: Wall time of the successful call, retries included.
        attempts: Number of outbound calls it took.
    """
    score: float
    provider: str
    model: str
    latency_ms: float = 0.0
    attempts: int = 1


@dataclass(frozen=True, slots=True)
class Decision:
    """Outcome of the engine for exactly one message."""
    action: DecisionType
    reason: DecisionReason
    message: IncomingMessage | None = None
    score: float | None = None
    interaction_count: int | None = None
    classification: ClassificationResult | None = None
    error: str | None = None

    @property
    def is_spam(self) -> bool:
        return self.action is not DecisionType.ALLOW

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the decision for the transport and for logs."""
        payload: Dict[str, Any] = {
            "action": self.action.value,
            "reason": self.reason.value,
            "score": self.score,
            "interaction_count": self.interaction_count,
        }
        if self.message is not None:
            payload["message_id"] = self.message.message_id
            payload["user_id"] = str(self.message.user_id)
            payload["channel_id"] = str(self.message.channel_id)
        if self.classification is not None:
            payload["provider"] = self.classification.provider
            payload["model"] = self.classification.model
            payload["latency_ms"] = round(self.classification.latency_ms, 1)
        if self.error:
            payload["error"] = self.error
        return payload
