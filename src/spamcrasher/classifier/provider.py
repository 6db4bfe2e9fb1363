"""
Classifier provider capability.

The decision engine only ever sees :class:`ClassifierProvider`. A vendor
variant subclasses it and implements :meth:`ClassifierProvider._request_score`
(one outbound call, vendor errors mapped onto the spamcrasher taxonomy);
the base class wraps every call with the token bucket, the retry loop and
latency measurement.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod

from spamcrasher.classifier.rate_limiter import TokenBucket
from spamcrasher.classifier.retry import call_with_retries
from spamcrasher.datatypes.decision_datatypes import ClassificationRequest, ClassificationResult
from spamcrasher.errors import ClassifierError, ProviderAuthError, ProviderTransientError
from spamcrasher.util.logger import get_logger

logger = get_logger("classifier_provider")

AUTH_STATUS_CODES = frozenset({401, 403})
TRANSIENT_STATUS_CODES = frozenset({408, 409, 429})


def error_for_status(status_code: int | None, message: str, provider: str) -> ClassifierError:
    """Map an HTTP status from a vendor SDK onto the error taxonomy."""
    if status_code in AUTH_STATUS_CODES:
        return ProviderAuthError(message, provider=provider)
    if status_code is not None and (status_code in TRANSIENT_STATUS_CODES or status_code >= 500):
        return ProviderTransientError(message, provider=provider)
    return ClassifierError(message, provider=provider)


class ClassifierProvider(ABC):
    """
    Rate-limited, retrying spam classifier.

    Args:
        name: Vendor name reported in results and logs.
        model: Model identifier sent to the vendor.
        rate_limiter: Bucket bounding outbound calls of this instance.
        max_retries: Total attempts per classification for transient errors.
        base_delay: First backoff delay in seconds.
        max_delay: Backoff cap in seconds.
    """

    def __init__(
        self,
        name: str,
        model: str,
        *,
        rate_limiter: TokenBucket | None = None,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
    ) -> None:
        self.name = name
        self.model = model
        self.rate_limiter = rate_limiter or TokenBucket(rate=0.0)
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._auth_error: ProviderAuthError | None = None
        self._calls = 0

    @property
    def disabled(self) -> bool:
        """True once the vendor rejected our credentials."""
        return self._auth_error is not None

    @property
    def call_count(self) -> int:
        """Outbound calls attempted so far, retries included."""
        return self._calls

    @abstractmethod
    async def _request_score(self, request: ClassificationRequest) -> float:
        """Perform one vendor call and return the parsed score.

        Implementations raise :class:`ProviderAuthError`,
        :class:`ProviderTransientError` or :class:`ClassifierError`.
        """

    async def _attempt(self, request: ClassificationRequest) -> float:
        await self.rate_limiter.acquire()
        self._calls += 1
        return await self._request_score(request)

    async def classify(self, text: str, prompt: str) -> ClassificationResult:
        """Score ``text`` with ``prompt`` as instructions.

        Raises:
            ProviderAuthError: Credentials rejected (now or on an earlier call).
            ProviderTransientError: Every retry failed.
            RateLimited: The rate limiter could not grant a slot in time.
            ClassifierError: Any other failure, including unparseable answers.
        """
        if self._auth_error is not None:
            # Fresh instance per call so the stored error never accumulates frames
            raise ProviderAuthError(str(self._auth_error), provider=self.name) from self._auth_error

        request = ClassificationRequest(text=text, prompt=prompt)
        attempts = 0

        def count_attempt(n: int) -> None:
            nonlocal attempts
            attempts = n

        started = time.perf_counter()
        try:
            score = await call_with_retries(
                lambda: self._attempt(request),
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                operation=f"{self.name} classify",
                on_attempt=count_attempt,
            )
        except ProviderAuthError as exc:
            self._auth_error = exc
            logger.critical("[%s] Credentials rejected, provider disabled: %s", self.name.upper(), exc)
            raise

        latency_ms = (time.perf_counter() - started) * 1000
        logger.debug("[%s] score=%.3f latency=%.0fms attempts=%d", self.name.upper(), score, latency_ms, attempts)
        return ClassificationResult(
            score=score,
            provider=self.name,
            model=self.model,
            latency_ms=latency_ms,
            attempts=attempts,
        )

    async def close(self) -> None:
        """Release the vendor client. Subclasses holding connections override this."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model!r})"
