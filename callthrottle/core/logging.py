"""Structured logging for throttle events.

Records are rendered as JSON lines (or plain text), call payloads are
redacted before they reach a handler, and records emitted while a throttled
target runs are tagged with that throttle's name.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from callthrottle.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

# Call payloads can carry user data; only counts are meant to be logged
SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset(
    {"args", "kwargs", "pending_args", "api_key", "authorization", "token", "secret", "password"}
)

# Attributes every LogRecord has; anything else on a record came from ``extra``.
_RECORD_ATTRS = frozenset(vars(LogRecord("", logging.INFO, "", 0, "", None, None))) | {
    "message",
    "asctime",
    "taskName",
}

_active_throttle: ContextVar[str | None] = ContextVar("active_throttle", default=None)


def set_active_throttle(name: str | None) -> Token:
    """Tag log records with ``name`` until the returned token is reset."""

    return _active_throttle.set(name)


def reset_active_throttle(token: Token) -> None:
    _active_throttle.reset(token)


def get_active_throttle() -> str | None:
    return _active_throttle.get()


def _redact_mapping(value: Mapping[Any, Any], sensitive_keys: frozenset[str]) -> dict[Any, Any]:
    return {
        key: REDACTED if str(key).lower() in sensitive_keys else _redact(item, sensitive_keys)
        for key, item in value.items()
    }


def _redact(value: Any, sensitive_keys: frozenset[str]) -> Any:
    if isinstance(value, Mapping):
        return _redact_mapping(value, sensitive_keys)
    return value


def _record_extras(record: LogRecord, sensitive_keys: frozenset[str]) -> dict[str, Any]:
    """Return the ``extra`` fields of a record with sensitive values replaced."""

    extras = {
        key: value
        for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }
    return _redact_mapping(extras, sensitive_keys)


class ThrottleContextFilter(logging.Filter):
    """Attach the active throttle name from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "throttle", None) is None:
            name = get_active_throttle()
            if name:
                record.throttle = name
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact sensitive ``extra`` fields in place so every formatter sees them masked."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(
            key.lower() for key in (sensitive_keys or SENSITIVE_KEYS_DEFAULT)
        )

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in _record_extras(record, self.sensitive_keys).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message, then extras."""

    def __init__(self, *, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(
            key.lower() for key in (sensitive_keys or SENSITIVE_KEYS_DEFAULT)
        )

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        throttle = getattr(record, "throttle", None) or get_active_throttle()
        if throttle:
            payload["throttle"] = throttle
        payload.update(_record_extras(record, self.sensitive_keys))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    file_path = Path(log_settings.file_path or "logs/callthrottle.log")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if log_settings.max_bytes:
        return RotatingFileHandler(
            file_path,
            maxBytes=log_settings.max_bytes,
            backupCount=log_settings.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(file_path, encoding="utf-8")


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install a single root handler built from ``log_settings``.

    Libraries normally leave this to the application; the demo runner and
    applications that want the structured format call it once at startup.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log

    handler = _build_handler(cfg)
    handler.addFilter(ThrottleContextFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))
