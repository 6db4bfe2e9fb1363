"""
Pytest configuration and fixtures for spamcrasher tests.
"""

import asyncio
import os
import sys
import tempfile
from pathlib import Path
from typing import List

import pytest

# Keep session log files out of the source tree
os.environ.setdefault("SPAMCRASHER_LOG_DIR", tempfile.mkdtemp(prefix="spamcrasher-logs-"))

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from spamcrasher.classifier.provider import ClassifierProvider  # noqa: E402
from spamcrasher.configuration.engine_settings import EngineSettings  # noqa: E402
from spamcrasher.datatypes.decision_datatypes import ClassificationRequest  # noqa: E402
from spamcrasher.store.memory_store import MemoryTrustStore  # noqa: E402


class ScriptedClassifier(ClassifierProvider):
    """Provider whose answers are scripted per call.

    Each script entry is either a score or an exception instance to raise.
    The last entry repeats once the script is exhausted. When ``gate`` is
    set, every call waits for it before answering.
    """

    def __init__(self, script=None, *, gate: asyncio.Event | None = None, **kwargs) -> None:
        kwargs.setdefault("base_delay", 0.0)
        kwargs.setdefault("max_delay", 0.0)
        super().__init__("stub", "stub-model", **kwargs)
        self.script = list(script if script is not None else [0.0])
        self.gate = gate
        self.requests: List[ClassificationRequest] = []
        self.closed = False

    async def _request_score(self, request: ClassificationRequest) -> float:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_settings():
    """Factory for EngineSettings with test-friendly defaults."""

    def factory(**overrides) -> EngineSettings:
        values = dict(
            prompt='Rate this message. Answer with JSON {"score": <0..1>}.',
            provider="openai",
            model="test-model",
            api_key="sk-test",
            spam_threshold=0.5,
            new_user_threshold=1,
            classify_timeout=2.0,
            store_timeout=2.0,
            shutdown_grace_seconds=1.0,
            base_delay=0.0,
            max_delay=0.0,
            store_backend="memory",
        )
        values.update(overrides)
        return EngineSettings(**values)

    return factory


@pytest.fixture
def scripted_classifier():
    """The ScriptedClassifier class, for tests that build their own instances."""
    return ScriptedClassifier


@pytest.fixture
def memory_store() -> MemoryTrustStore:
    return MemoryTrustStore()
