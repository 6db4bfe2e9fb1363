from typing import Any, Dict


class ClassifierSettings:
    """Helper exposing typed accessors for the ``classifier`` config section.

    Like the rest of the configuration layer this wraps the raw mapping and
    coerces values lazily; validation of ranges happens when the engine
    settings are built.
    """

    def __init__(self, data: Dict[str, Any] | None = None) -> None:
        self.data: Dict[str, Any] = data or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for `key` or `default` if missing."""
        return self.data.get(key, default)

    def as_dict(self) -> Dict[str, Any]:
        return self.data

    def _section(self, name: str) -> Dict[str, Any]:
        section = self.data.get(name, {})
        return section if isinstance(section, dict) else {}

    @property
    def provider(self) -> str:
        return str(self.data.get("provider") or "openai").strip().lower()

    @property
    def model(self) -> str:
        return str(self.data.get("model") or "gpt-4o-mini")

    @property
    def base_url(self) -> str | None:
        val = self.data.get("base_url")
        return str(val) if val else None

    @property
    def max_tokens(self) -> int:
        return int(self.data.get("max_tokens", 64))

    @property
    def temperature(self) -> float:
        return float(self.data.get("temperature", 0.0))

    @property
    def request_timeout(self) -> float:
        return float(self.data.get("request_timeout", 30.0))

    # Rate limiting
    @property
    def rate_limit(self) -> float:
        return float(self._section("rate_limit").get("rate", 0.0))

    @property
    def burst(self) -> int:
        return int(self._section("rate_limit").get("burst", 1))

    @property
    def max_wait(self) -> float:
        return float(self._section("rate_limit").get("max_wait", 10.0))

    # Retry with backoff
    @property
    def max_retries(self) -> int:
        return int(self._section("retry").get("max_retries", 3))

    @property
    def base_delay(self) -> float:
        return float(self._section("retry").get("base_delay", 1.0))

    @property
    def max_delay(self) -> float:
        return float(self._section("retry").get("max_delay", 30.0))
