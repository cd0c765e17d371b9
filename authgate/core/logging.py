"""Structured logging for authgate.

Every record passes through two filters before it is written:
- ``RequestIdFilter`` stamps the correlation id of the current request.
- ``SensitiveDataFilter`` removes credentials. Fields named like a secret
  are replaced wholesale; free text (messages, URLs, uvicorn access lines)
  is scrubbed of ``token=`` query parameters and session cookie values,
  since verification and reset links carry their token in the query string.

User and client identifiers never appear verbatim: callers log
``hash_identifier(value)`` instead.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from authgate.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

# Structured fields whose value is dropped entirely
SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "__session",
        "password",
        "new_password",
        "password_hash",
        "secret",
        "raw_secret",
        "session_token",
        "token",
        "composed_token",
        "token_hash",
        "verify_url",
        "reset_url",
        "redis_url",
    }
)

# Credential fragments that can hide inside otherwise harmless text
_SECRET_PATTERNS = (
    (re.compile(r"(?i)(\btoken=)[^&\s\"']+"), r"\1" + REDACTED),
    (re.compile(r"(__session=)[^;\s\"']+"), r"\1" + REDACTED),
    (re.compile(r"(redis://[^:/@\s]*:)[^@\s]+(@)"), r"\1" + REDACTED + r"\2"),
)

# Attributes every LogRecord carries; anything else came in through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_identifier(value: str | None) -> str | None:
    """Truncated SHA-256 of an identifier (IP, user id, email) for log fields.

    Returns:
        First 16 hex chars of the digest, or None when value is empty.
    """

    if not value:
        return None
    return hashlib.sha256(value.encode()).hexdigest()[:16]


def scrub_text(text: str) -> str:
    """Mask token query parameters, session cookies and Redis passwords."""

    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _redact_value(value: Any, sensitive_keys: frozenset[str]) -> Any:
    if isinstance(value, str):
        return scrub_text(value)
    if isinstance(value, Mapping):
        return {
            k: REDACTED if str(k).lower() in sensitive_keys else _redact_value(v, sensitive_keys)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_value(v, sensitive_keys) for v in value)
    return value


def _extra_fields(record: LogRecord, sensitive_keys: frozenset[str]) -> dict[str, Any]:
    """Return the ``extra`` fields of a record with credentials removed."""

    return {
        key: REDACTED if key.lower() in sensitive_keys else _redact_value(value, sensitive_keys)
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class RequestIdFilter(logging.Filter):
    """Attach request_id from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Remove credentials from a record's extras, message and arguments.

    Arguments are scrubbed in place rather than merged into the message so
    formatters that read ``record.args`` (uvicorn's access formatter) still
    work.
    """

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT))

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in _extra_fields(record, self.sensitive_keys).items():
            setattr(record, key, value)

        if isinstance(record.msg, str):
            record.msg = scrub_text(record.msg)
        if isinstance(record.args, (tuple, Mapping)):
            record.args = _redact_value(record.args, self.sensitive_keys)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message, extras."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT))
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        record_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": scrub_text(record.getMessage()),
        }

        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            record_data["request_id"] = request_id

        record_data.update(_extra_fields(record, self.sensitive_keys))
        if record.exc_info and record.exc_info[0] is not None:
            record_data["exc_type"] = record.exc_info[0].__name__

        return json.dumps(record_data, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    """Stdout handler, or a (rotating) file handler when output=file."""

    if log_settings.output.lower() == "file":
        file_path = Path(log_settings.file_path or "logs/authgate.log")
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if log_settings.max_bytes:
            return RotatingFileHandler(
                file_path,
                maxBytes=log_settings.max_bytes,
                backupCount=log_settings.backup_count,
                encoding="utf-8",
            )
        return logging.FileHandler(file_path, encoding="utf-8")

    return logging.StreamHandler(sys.stdout)


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install the redacting handler on the root logger.

    uvicorn's access logger keeps its own handler, so the redaction filter is
    also attached to that logger directly; its lines contain full request
    paths including query strings.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log

    level = getattr(logging, cfg.level.upper(), logging.INFO)
    handler = _build_handler(cfg)

    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())

    if cfg.format.lower() == "plain":
        formatter: logging.Formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
    else:
        formatter = JsonFormatter()

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Avoid double logging from uvicorn if it gets re-configured
    logging.getLogger("uvicorn").propagate = False
    access_logger = logging.getLogger("uvicorn.access")
    access_logger.propagate = False
    if not any(isinstance(f, SensitiveDataFilter) for f in access_logger.filters):
        access_logger.addFilter(SensitiveDataFilter())
