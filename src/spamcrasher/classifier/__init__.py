"""
Spam classifier providers for spamcrasher.

- **provider.py**: :class:`ClassifierProvider`, the capability the engine
  depends on. Owns rate limiting, retries and latency measurement.
- **openai_provider.py** / **anthropic_provider.py**: one variant per vendor.
- **rate_limiter.py**: token bucket bounding outbound calls per instance.
- **retry.py**: exponential backoff for transient failures.
- **response_parsing.py**: turns a model answer into a score in [0, 1].

Public API:
    - build_provider: Construct the vendor variant named in the settings
"""

from __future__ import annotations

from spamcrasher.classifier.anthropic_provider import AnthropicClassifier
from spamcrasher.classifier.openai_provider import OpenAIClassifier
from spamcrasher.classifier.provider import ClassifierProvider
from spamcrasher.classifier.rate_limiter import TokenBucket
from spamcrasher.configuration.engine_settings import EngineSettings
from spamcrasher.errors import ConfigError
from spamcrasher.util.logger import get_logger

logger = get_logger("classifier")


def build_provider(settings: EngineSettings) -> ClassifierProvider:
    """Instantiate the configured vendor variant once at startup.

    Raises:
        ConfigError: For an unknown provider name.
    """
    limiter = TokenBucket(rate=settings.rate_limit, burst=settings.burst, max_wait=settings.max_wait)
    common = dict(
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
        request_timeout=settings.request_timeout,
        rate_limiter=limiter,
        max_retries=settings.max_retries,
        base_delay=settings.base_delay,
        max_delay=settings.max_delay,
    )

    if settings.provider == "openai":
        provider: ClassifierProvider = OpenAIClassifier(
            settings.api_key, settings.model, base_url=settings.base_url, **common
        )
    elif settings.provider == "anthropic":
        provider = AnthropicClassifier(settings.api_key, settings.model, **common)
    else:
        raise ConfigError(f"Unsupported API provider: {settings.provider}")

    logger.info(
        "[CLASSIFIER] Using %s model=%s rate=%s/s burst=%d retries=%d",
        provider.name, provider.model,
        settings.rate_limit if limiter.enabled else "unlimited",
        settings.burst, settings.max_retries,
    )
    return provider


__all__ = [
    "ClassifierProvider",
    "OpenAIClassifier",
    "AnthropicClassifier",
    "TokenBucket",
    "build_provider",
]
