"""
Validated runtime settings for the decision engine.

:class:`AppConfig` hands out raw values; this module merges them with
command-line overrides and environment secrets, validates everything once
and freezes the result. Any problem is a :class:`ConfigError`, raised at
startup and never at decision time.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, FrozenSet, Mapping

from spamcrasher.configuration.app_configuration import AppConfig
from spamcrasher.datatypes.decision_datatypes import FailurePolicy, UserScope
from spamcrasher.datatypes.identifiers import ChannelID
from spamcrasher.errors import ConfigError
from spamcrasher.moderation.channel_policy import parse_channel_ids

SUPPORTED_PROVIDERS = ("openai", "anthropic")
SUPPORTED_STORES = ("sqlite", "redis", "memory")

API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """Everything the engine, the provider and the store need to be built."""
    prompt: str
    provider: str
    model: str
    api_key: str
    spam_threshold: float = 0.5
    suppress_threshold: float | None = None
    new_user_threshold: int = 1
    user_scope: UserScope = UserScope.GLOBAL
    whitelist_channels: FrozenSet[ChannelID] = frozenset()
    classifier_failure_policy: FailurePolicy = FailurePolicy.FAIL_OPEN
    store_failure_policy: FailurePolicy = FailurePolicy.FAIL_OPEN
    classify_timeout: float = 60.0
    store_timeout: float = 5.0
    shutdown_grace_seconds: float = 10.0
    max_concurrency: int = 64
    base_url: str | None = None
    max_tokens: int = 64
    temperature: float = 0.0
    request_timeout: float = 30.0
    rate_limit: float = 0.0
    burst: int = 1
    max_wait: float = 10.0
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    store_backend: str = "sqlite"
    sqlite_path: Path = Path("./data/trust.db")
    redis_url: str | None = None
    history_file: str | None = None
    log_level: str = "info"


def _as_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}") from None


def _as_int(name: str, value: Any) -> int:
    if isinstance(value, float) and not value.is_integer():
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


def _unit_interval(name: str, value: Any) -> float:
    number = _as_float(name, value)
    if not 0.0 <= number <= 1.0:
        raise ConfigError(f"{name} must be within [0, 1], got {number}")
    return number


def _enum(enum_cls, name: str, value: Any):
    normalized = str(value).strip().lower().replace("-", "_")
    for member in enum_cls:
        if member.value == normalized:
            return member
    choices = ", ".join(m.value for m in enum_cls)
    raise ConfigError(f"{name} must be one of {choices}, got {value!r}")


def load_prompt(inline: str, path: str | None) -> str:
    """Return the prompt text, reading ``path`` when given.

    Raises:
        ConfigError: If the file cannot be read or the resulting prompt is empty.
    """
    prompt = inline
    if path:
        try:
            prompt = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Failed to read prompt file {path}: {exc}") from exc
    if not prompt.strip():
        raise ConfigError("No prompt provided")
    return prompt


def build_engine_settings(
    config: AppConfig,
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """Merge ``config`` with ``overrides`` and ``environ`` into validated settings.

    Args:
        config: Loaded YAML configuration.
        overrides: Command-line values; ``None`` entries are ignored.
        environ: Environment used for secrets (``os.environ`` in production).

    Raises:
        ConfigError: On the first invalid or missing value.
    """
    try:
        return _build_engine_settings(config, overrides, environ)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc


def _build_engine_settings(
    config: AppConfig,
    overrides: Mapping[str, Any] | None,
    environ: Mapping[str, str] | None,
) -> EngineSettings:
    overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
    environ = environ or {}
    classifier = config.classifier_settings

    provider = str(overrides.get("provider", classifier.provider)).strip().lower()
    if provider not in SUPPORTED_PROVIDERS:
        raise ConfigError(f"Unsupported API provider: {provider}")

    api_key = environ.get(API_KEY_ENV[provider], "")
    if not api_key:
        raise ConfigError(f"{API_KEY_ENV[provider]} environment variable is not set")

    if "prompt_path" in overrides:
        prompt = load_prompt("", overrides["prompt_path"])
    else:
        prompt = load_prompt(config.prompt, config.prompt_path)

    new_user_threshold = _as_int("new_user_threshold", overrides.get("new_user_threshold", config.new_user_threshold))
    if new_user_threshold < 0:
        raise ConfigError(f"new_user_threshold must be >= 0, got {new_user_threshold}")

    spam_threshold = _unit_interval("spam_threshold", overrides.get("spam_threshold", config.spam_threshold))
    suppress_threshold = config.suppress_threshold
    if suppress_threshold is not None:
        suppress_threshold = _unit_interval("suppress_threshold", suppress_threshold)
        if suppress_threshold < spam_threshold:
            raise ConfigError("suppress_threshold must not be lower than spam_threshold")

    whitelist = parse_channel_ids(config.whitelist_channels) | parse_channel_ids(overrides.get("whitelist_channels"))

    rate_limit = _as_float("classifier.rate_limit.rate", classifier.rate_limit)
    burst = _as_int("classifier.rate_limit.burst", classifier.burst)
    if burst < 1:
        raise ConfigError("classifier.rate_limit.burst must be >= 1")
    max_retries = _as_int("classifier.retry.max_retries", classifier.max_retries)
    if max_retries < 1:
        raise ConfigError("classifier.retry.max_retries must be >= 1")

    store_backend = config.store_backend
    redis_url = config.redis_url or environ.get("REDIS_URL") or None
    if not config.store_backend_configured and redis_url:
        store_backend = "redis"
    if store_backend not in SUPPORTED_STORES:
        raise ConfigError(f"Unsupported store backend: {store_backend}")
    if store_backend == "redis" and not redis_url:
        raise ConfigError("REDIS_URL environment variable is not set")

    max_concurrency = _as_int("engine.max_concurrency", config.max_concurrency)
    if max_concurrency < 1:
        raise ConfigError("engine.max_concurrency must be >= 1")

    return EngineSettings(
        prompt=prompt,
        provider=provider,
        model=str(overrides.get("model", classifier.model)),
        api_key=api_key,
        spam_threshold=spam_threshold,
        suppress_threshold=suppress_threshold,
        new_user_threshold=new_user_threshold,
        user_scope=_enum(UserScope, "user_scope", config.user_scope),
        whitelist_channels=whitelist,
        classifier_failure_policy=_enum(FailurePolicy, "policy.classifier_failure", config.classifier_failure_policy),
        store_failure_policy=_enum(FailurePolicy, "policy.store_failure", config.store_failure_policy),
        classify_timeout=_as_float("policy.classify_timeout", config.classify_timeout),
        store_timeout=_as_float("policy.store_timeout", config.store_timeout),
        shutdown_grace_seconds=_as_float("engine.shutdown_grace_seconds", config.shutdown_grace_seconds),
        max_concurrency=max_concurrency,
        base_url=classifier.base_url,
        max_tokens=_as_int("classifier.max_tokens", classifier.max_tokens),
        temperature=_as_float("classifier.temperature", classifier.temperature),
        request_timeout=_as_float("classifier.request_timeout", classifier.request_timeout),
        rate_limit=rate_limit,
        burst=burst,
        max_wait=_as_float("classifier.rate_limit.max_wait", classifier.max_wait),
        max_retries=max_retries,
        base_delay=_as_float("classifier.retry.base_delay", classifier.base_delay),
        max_delay=_as_float("classifier.retry.max_delay", classifier.max_delay),
        store_backend=store_backend,
        sqlite_path=config.sqlite_path,
        redis_url=redis_url,
        history_file=overrides.get("history_file", config.history_file) or None,
        log_level=str(overrides.get("log_level", config.log_level)),
    )
