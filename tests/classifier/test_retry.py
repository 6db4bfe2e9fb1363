import pytest

from spamcrasher.classifier.retry import backoff_delay, call_with_retries
from spamcrasher.errors import ClassifierError, ProviderAuthError, ProviderTransientError


class Recorder:
    def __init__(self) -> None:
        self.sleeps = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)


def test_backoff_delay_doubles_and_caps():
    assert [backoff_delay(n, 1.0, 30.0) for n in range(6)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]
    assert backoff_delay(0, 0.5, 0.2) == 0.2


@pytest.mark.asyncio
async def test_transient_failures_exhaust_budget_and_surface_once():
    recorder = Recorder()
    calls = []

    async def always_fails():
        calls.append(1)
        raise ProviderTransientError(f"503 #{len(calls)}")

    with pytest.raises(ProviderTransientError, match="#3"):
        await call_with_retries(always_fails, max_retries=3, base_delay=1.0, max_delay=30.0, sleep=recorder.sleep)

    assert len(calls) == 3
    assert recorder.sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_success_after_transient_failure():
    recorder = Recorder()
    attempts = []
    outcomes = [ProviderTransientError("timeout"), 0.42]

    async def flaky():
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    result = await call_with_retries(flaky, max_retries=3, sleep=recorder.sleep, on_attempt=attempts.append)

    assert result == 0.42
    assert attempts == [1, 2]
    assert recorder.sleeps == [1.0]


@pytest.mark.parametrize("error", [ProviderAuthError("401"), ClassifierError("bad request"), KeyError("x")])
@pytest.mark.asyncio
async def test_non_transient_errors_are_not_retried(error):
    recorder = Recorder()
    calls = []

    async def fails():
        calls.append(1)
        raise error

    with pytest.raises(type(error)):
        await call_with_retries(fails, max_retries=5, sleep=recorder.sleep)

    assert len(calls) == 1
    assert recorder.sleeps == []


@pytest.mark.asyncio
async def test_custom_retry_on():
    recorder = Recorder()
    calls = []

    async def fails():
        calls.append(1)
        raise KeyError("flaky")

    with pytest.raises(KeyError):
        await call_with_retries(fails, max_retries=2, retry_on=(KeyError,), sleep=recorder.sleep)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_max_retries_must_be_positive():
    async def never_called():
        raise AssertionError("should not run")

    with pytest.raises(ValueError):
        await call_with_retries(never_called, max_retries=0)
