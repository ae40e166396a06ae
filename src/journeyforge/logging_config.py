"""Process-wide logging setup for the journeyforge CLI.

Setup happens in two steps around the litellm import:

1. ``setup_logging()`` runs first thing in the CLI module. It exports
   ``LITELLM_LOG`` (read by litellm when it is imported), installs the
   root console handler and quiets chatty third-party loggers.
2. ``cleanup_third_party_handlers()`` runs once the imports are done and
   strips the console handlers litellm attaches to its own loggers.

``configure_from_settings()`` applies ``log_level`` and adds a file log
under ``log_dir`` once settings are known. Every entry point here can be
called repeatedly.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from journeyforge.config import Settings

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"
LOG_FILENAME = "journeyforge.log"

_QUIET_LOGGERS = (
    "LiteLLM",
    "LiteLLM Router",
    "LiteLLM Proxy",
    "openai._base_client",
    "httpx",
    "asyncio",
)
_LITELLM_LOGGERS = _QUIET_LOGGERS[:3]

_console_ready = False
_litellm_cleaned = False


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(level: str = "INFO") -> None:
    """Install the root console handler; later calls do nothing."""
    global _console_ready  # noqa: PLW0603
    if _console_ready:
        return
    _console_ready = True

    os.environ.setdefault("LITELLM_LOG", "WARNING")
    logging.basicConfig(level=_level(level), format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_level(level: str) -> None:
    logging.getLogger().setLevel(_level(level))


def cleanup_third_party_handlers() -> None:
    """Drop litellm's own handlers so its records print once, via root."""
    global _litellm_cleaned  # noqa: PLW0603
    if _litellm_cleaned:
        return
    _litellm_cleaned = True

    for name in _LITELLM_LOGGERS:
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.propagate = True


def attach_file_handler(log_dir: Path, level: str = "INFO") -> Path:
    """Mirror root records into ``<log_dir>/journeyforge.log``.

    Returns the log file path. A second call for the same file reuses
    the existing handler.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    path = (log_dir / LOG_FILENAME).resolve()
    root = logging.getLogger()
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == str(path):
            handler.setLevel(_level(level))
            return path
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(_level(level))
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root.addHandler(handler)
    return path


def configure_from_settings(settings: Settings, *, verbose: bool = False) -> Path:
    """Apply ``log_level`` (or DEBUG when verbose) and the file log."""
    level = "DEBUG" if verbose else settings.log_level
    set_level(level)
    return attach_file_handler(settings.log_dir, level)
