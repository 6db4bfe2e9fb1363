from __future__ import annotations
from pathlib import Path
import fcntl
import os
from typing import Any, Dict, List
import yaml

from spamcrasher.configuration.classifier_settings import ClassifierSettings
from spamcrasher.errors import ConfigError
from spamcrasher.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path(os.getenv("SPAMCRASHER_CONFIG", "./config/app_config.yml")).resolve()


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    The class caches the contents of ``./config/app_config.yml`` and exposes
    dictionary-like access helpers plus typed shortcuts for every section the
    engine consumes. Values are not validated here; see
    :func:`spamcrasher.configuration.engine_settings.build_engine_settings`.
    """

    def __init__(self, config_path: Path) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        """Read and parse the YAML file.

        A missing file yields an empty mapping so defaults apply.

        Raises:
            ConfigError: If the file exists but cannot be read or parsed, or
                does not contain a mapping.
        """
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            logger.warning("[APP CONFIGURATION] Config file %s not found, using defaults.", self.config_path)
            return {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {self.config_path}: {exc}") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigError(f"Cannot read config {self.config_path}: {exc}") from exc

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config {self.config_path} must contain a mapping, got {type(data).__name__}")
        return data

    def _section(self, name: str) -> Dict[str, Any]:
        section = self._data.get(name, {})
        return section if isinstance(section, dict) else {}

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Reload configuration from disk and return the loaded mapping.

        Returns an empty dict when the file is missing.

        Raises:
            ConfigError: If the file cannot be read or parsed.
        """
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the current cached configuration mapping (do not mutate)."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def log_level(self) -> str:
        return str(self._data.get("log_level") or "info")

    @property
    def prompt(self) -> str:
        """Inline prompt template, or empty string when a prompt file is used."""
        return str(self._data.get("prompt") or "")

    @property
    def prompt_path(self) -> str | None:
        value = self._data.get("prompt_path")
        return str(value) if value else None

    @property
    def spam_threshold(self) -> Any:
        return self._data.get("spam_threshold", 0.5)

    @property
    def suppress_threshold(self) -> Any:
        return self._data.get("suppress_threshold")

    @property
    def new_user_threshold(self) -> Any:
        return self._data.get("new_user_threshold", 1)

    @property
    def user_scope(self) -> str:
        return str(self._data.get("user_scope") or "global")

    @property
    def whitelist_channels(self) -> List[Any] | str:
        value = self._data.get("whitelist_channels") or []
        return value if isinstance(value, (list, str)) else [value]

    @property
    def history_file(self) -> str | None:
        value = self._data.get("history_file")
        return str(value) if value else None

    @property
    def classifier_settings(self) -> ClassifierSettings:
        """Return the ``classifier`` section wrapped in :class:`ClassifierSettings`."""
        return ClassifierSettings(self._section("classifier"))

    @property
    def classifier_failure_policy(self) -> str:
        return str(self._section("policy").get("classifier_failure") or "fail_open")

    @property
    def store_failure_policy(self) -> str:
        return str(self._section("policy").get("store_failure") or "fail_open")

    @property
    def classify_timeout(self) -> float:
        return float(self._section("policy").get("classify_timeout", 60.0))

    @property
    def store_timeout(self) -> float:
        return float(self._section("policy").get("store_timeout", 5.0))

    @property
    def shutdown_grace_seconds(self) -> float:
        return float(self._section("engine").get("shutdown_grace_seconds", 10.0))

    @property
    def max_concurrency(self) -> int:
        return int(self._section("engine").get("max_concurrency", 64))

    @property
    def store_backend(self) -> str:
        return str(self._section("store").get("backend") or "sqlite").strip().lower()

    @property
    def store_backend_configured(self) -> bool:
        """True when the config names a backend explicitly instead of relying on the default."""
        return bool(self._section("store").get("backend"))

    @property
    def sqlite_path(self) -> Path:
        return Path(self._section("store").get("sqlite_path") or "./data/trust.db").resolve()

    @property
    def redis_url(self) -> str | None:
        value = self._section("store").get("redis_url")
        return str(value) if value else None
