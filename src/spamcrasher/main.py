"""
Spam Crasher
============

Moderation decision engine for group chats. Reads chat messages as JSON
lines on stdin, decides for each one whether it is spam (taking the
author's history into account) and writes the decisions as JSON lines to
stdout.

Startup order: configuration, trust store, history import, classifier,
engine. Any failure before the engine starts is fatal and yields exit
code 1.
"""

import argparse
import asyncio
import os
import signal
import sys
from pathlib import Path
from typing import Any, AsyncIterable, Dict, List

from dotenv import load_dotenv

from spamcrasher.classifier import build_provider
from spamcrasher.configuration.app_configuration import CONFIG_PATH, AppConfig
from spamcrasher.configuration.engine_settings import EngineSettings, build_engine_settings
from spamcrasher.datatypes.decision_datatypes import IncomingMessage
from spamcrasher.errors import ConfigError, StoreUnavailable
from spamcrasher.history.history_importer import import_history
from spamcrasher.moderation.decision_engine import DecisionEngine
from spamcrasher.services.jsonl_transport import JsonlDecisionWriter, read_messages
from spamcrasher.services.moderation_service import DecisionSink, ModerationService
from spamcrasher.store import open_trust_store
from spamcrasher.store.trust_store import TrustStore
from spamcrasher.util.logger import get_logger, handle_exception, set_log_level

logger = get_logger("main")

# Command-line flags that override a YAML value, mapped to settings keys
OVERRIDE_FLAGS = {
    "provider": "provider",
    "model": "model",
    "prompt": "prompt_path",
    "spam_threshold": "spam_threshold",
    "new_user_threshold": "new_user_threshold",
    "whitelist_channels": "whitelist_channels",
    "history": "history_file",
    "log_level": "log_level",
}


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spamcrasher",
        description="Decide whether chat messages are spam, based on user history and an AI classifier.",
    )
    parser.add_argument("--config", help="Path to the YAML configuration (default: %(default)s)", default=str(CONFIG_PATH))
    parser.add_argument("--log-level", help="Console log level: debug, info, warn, error")
    parser.add_argument("--history", help="History file imported when the trust store is empty")
    parser.add_argument("--provider", help="Classifier vendor: openai or anthropic")
    parser.add_argument("--model", help="Classifier model name")
    parser.add_argument("--prompt", help="Path to the classifier prompt file")
    parser.add_argument("--spam-threshold", type=float, help="Score at or above which new users are flagged")
    parser.add_argument("--new-user-threshold", type=int, help="Interactions after which a user is trusted")
    parser.add_argument("--whitelist-channels", help="Comma-separated channel IDs that are never moderated")
    return parser


def parse_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Collect the flags the user actually passed as settings overrides."""
    return {
        key: getattr(args, flag)
        for flag, key in OVERRIDE_FLAGS.items()
        if getattr(args, flag, None) is not None
    }


def load_settings(args: argparse.Namespace) -> EngineSettings:
    """Load the environment, the YAML file and the flags into validated settings.

    Raises
    ------
    ConfigError
        If any value is missing or invalid.
    """
    load_dotenv(dotenv_path=Path.cwd() / ".env")
    config = AppConfig(Path(args.config).resolve())
    settings = build_engine_settings(config, parse_overrides(args), os.environ)
    set_log_level(settings.log_level)
    return settings


async def initialize_runtime(settings: EngineSettings) -> DecisionEngine:
    """Open the store, import history, build the classifier and start the engine.

    Raises
    ------
    StoreUnavailable
        If the trust store cannot be opened.
    ConfigError
        If the classifier cannot be constructed.
    """
    store: TrustStore = await open_trust_store(settings)

    try:
        if settings.history_file:
            await import_history(store, settings.history_file, settings.user_scope)
        provider = build_provider(settings)
    except BaseException:
        await store.close()
        raise

    engine = DecisionEngine(settings, store, provider)
    engine.start()
    return engine


def install_signal_handlers(service: ModerationService) -> List[signal.Signals]:
    """Stop reading input on SIGINT/SIGTERM. Returns the signals handled."""
    loop = asyncio.get_running_loop()
    installed: List[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.stop)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform or outside the main thread
            continue
        installed.append(sig)
    return installed


async def async_main(
    args: argparse.Namespace,
    source: AsyncIterable[IncomingMessage] | None = None,
    sink: DecisionSink | None = None,
) -> int:
    """Bootstrap the engine, run the message loop and shut down cleanly.

    Returns
    -------
    int
        Process exit code.
    """
    try:
        settings = load_settings(args)
    except ConfigError as exc:
        logger.critical("Invalid configuration: %s", exc)
        return 1

    try:
        engine = await initialize_runtime(settings)
    except (ConfigError, StoreUnavailable) as exc:
        logger.critical("Failed to initialize: %s", exc)
        return 1

    service = ModerationService(engine, sink or JsonlDecisionWriter(), settings.max_concurrency)
    installed = install_signal_handlers(service)
    loop = asyncio.get_running_loop()

    try:
        await service.run(source if source is not None else read_messages())
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        # Decisions still running get the engine grace period, then are cancelled
        await engine.stop()
        await service.drain()
        logger.info("Shutdown complete.")

    return 0


def main(argv: List[str] | None = None) -> int:
    """Entrypoint that runs the async runtime and returns the process code."""
    sys.excepthook = handle_exception
    args = build_arg_parser().parse_args(argv)
    logger.info("Starting spam crasher…")
    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except Exception as exc:
        logger.critical("An unexpected error occurred: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
