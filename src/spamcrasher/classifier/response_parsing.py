"""Utilities for reading a spam score out of a model response."""

from __future__ import annotations

import json
import math
import re
from typing import Any

import jsonschema
from jsonschema import ValidationError

from spamcrasher.errors import ClassifierResponseError
from spamcrasher.util.logger import get_logger

logger = get_logger("response_parsing")

SCORE_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "score": {"type": "number", "minimum": 0, "maximum": 1},
        "spam_score": {"type": "number", "minimum": 0, "maximum": 1},
        "reason": {"type": "string"},
    },
    "anyOf": [
        {"required": ["score"]},
        {"required": ["spam_score"]},
    ],
}

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


def _strip_fence(raw: str) -> str:
    match = _FENCE_RE.match(raw.strip())
    return match.group(1) if match else raw.strip()


def _extract_json_payload(raw: str) -> Any:
    try:
        return json.loads(_strip_fence(raw))
    except json.JSONDecodeError as exc:
        raise ValueError("Failed to extract JSON payload") from exc


def parse_score(response: str, *, provider: str | None = None) -> float:
    """Parse a classifier answer into a score in [0, 1].

    Two shapes are accepted: a JSON object ``{"score": 0.93}`` (``spam_score``
    is an accepted alias, code fences are tolerated) validated against
    :data:`SCORE_SCHEMA`, or a bare number such as ``0.93``.

    Raises:
        ClassifierResponseError: If no score in range can be read.
    """
    text = (response or "").strip()
    if not text:
        raise ClassifierResponseError("Empty classifier response", provider=provider)

    try:
        payload = _extract_json_payload(text)
    except ValueError:
        logger.debug("[PARSE] Response is not JSON: %.200s", text)
        raise ClassifierResponseError(f"Unparseable classifier response: {text[:200]!r}", provider=provider) from None

    if isinstance(payload, bool):
        raise ClassifierResponseError(f"Classifier returned a boolean: {text[:200]!r}", provider=provider)

    if isinstance(payload, (int, float)):
        score = float(payload)
    else:
        try:
            jsonschema.validate(instance=payload, schema=SCORE_SCHEMA)
        except ValidationError as exc:
            logger.warning("[PARSE] Schema validation failed: %s", exc.message)
            raise ClassifierResponseError(f"Invalid classifier response: {exc.message}", provider=provider) from exc
        score = float(payload["score"] if "score" in payload else payload["spam_score"])

    if math.isnan(score) or not 0.0 <= score <= 1.0:
        raise ClassifierResponseError(f"Score {score} outside [0, 1]", provider=provider)
    return score
