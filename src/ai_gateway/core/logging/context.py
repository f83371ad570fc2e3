"""
Per-request log context and process-wide logging state.

The request id lives in a ``ContextVar`` so every coroutine serving a
request logs with its own id even when many requests interleave on the
event loop. Level and configuration flags are plain module state: they
are set once by ``configure_logging`` and only read afterwards.

Environment variables read by ``read_logging_config``:
    - AI_GATEWAY_LOG_LEVEL (falls back to LOG_LEVEL)
    - AI_GATEWAY_LOG_DIR
    - AI_GATEWAY_JSONL_FILE
    - AI_GATEWAY_LOG_ROTATE_BYTES
    - AI_GATEWAY_LOG_ROTATE_BACKUP
"""
from __future__ import annotations

import os
from contextvars import ContextVar
from typing import Any, Dict

from .levels import LEVEL_NAMES, LogLevel

# "-" marks log lines emitted outside any request (startup, sweeps)
_request_id: ContextVar[str] = ContextVar("request_id", default="-")

_configured: bool = False
_log_config: Dict[str, Any] = {}
_current_level: LogLevel = LogLevel.NORMAL


def get_request_id() -> str:
    """Return the request id bound to the current context, or "-"."""
    return _request_id.get()


def set_request_id(rid: str) -> None:
    """Bind a request id to the current context."""
    _request_id.set(rid)


def get_level() -> LogLevel:
    return _current_level


def set_level(level: LogLevel) -> None:
    global _current_level
    _current_level = level


def get_level_name() -> str:
    return LEVEL_NAMES.get(_current_level, "NORMAL")


def is_configured() -> bool:
    return _configured


def set_configured(value: bool) -> None:
    global _configured
    _configured = value


def get_log_config() -> Dict[str, Any]:
    return _log_config


def set_log_config(config: Dict[str, Any]) -> None:
    global _log_config
    _log_config = config


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def read_logging_config() -> Dict[str, Any]:
    """
    Resolve logging options from settings.yaml and the environment.

    The ``logging`` section of the settings file is the base; environment
    variables win. A missing or broken settings file just means defaults.
    """
    cfg: Dict[str, Any] = {}

    try:
        from ai_gateway.core.config import load_settings
        settings = load_settings()
        cfg.update(settings.raw.get("logging", {}) or {})
    except (OSError, ValueError):
        pass

    level = os.getenv("AI_GATEWAY_LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if level:
        cfg["level"] = level
    if os.getenv("AI_GATEWAY_LOG_DIR"):
        cfg["log_dir"] = os.environ["AI_GATEWAY_LOG_DIR"]
    if os.getenv("AI_GATEWAY_JSONL_FILE"):
        cfg["jsonl_file"] = os.environ["AI_GATEWAY_JSONL_FILE"]

    rotate_bytes = _env_int("AI_GATEWAY_LOG_ROTATE_BYTES")
    if rotate_bytes is not None:
        cfg["rotate_max_bytes"] = rotate_bytes
    rotate_backup = _env_int("AI_GATEWAY_LOG_ROTATE_BACKUP")
    if rotate_backup is not None:
        cfg["rotate_backup_count"] = rotate_backup

    return cfg
