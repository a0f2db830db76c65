"""
askstream - Structured JSON Logging

One JSON object per line, with the request and session correlation fields
injected from a context variable.

Features:
- Correlation fields (request_id, trace_id, span_id, session_id, strategy)
- Keyword arguments become structured fields: logger.info("msg", tool="createJob")
- Provider keys and wallet addresses are redacted, nested dicts included
- Long fields (prompts, upstream bodies) are clipped

Usage:
    from askstream.observability.logging import setup_logging, get_logger

    setup_logging(level="INFO")

    logger = get_logger(__name__)
    logger.info("Strategy selected", strategy="self_hosted")

Output:
    {"timestamp": "2025-03-07T10:30:00+00:00", "level": "INFO", "logger": "askstream.routing.session",
     "message": "Strategy selected", "request_id": "req_xyz", "session_id": "sess_abc",
     "strategy": "self_hosted"}
"""

import os
import sys
import json
import logging
from typing import Optional, Dict, Any, Union
from datetime import datetime, timezone
from dataclasses import dataclass, field, fields
from contextvars import ContextVar


_request_context: ContextVar[Optional["LogContext"]] = ContextVar("log_context", default=None)

# Attributes every LogRecord carries; anything else came in through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Logging kwargs StructuredLogger passes through instead of treating as fields
_LOGGING_KWARGS = frozenset({"exc_info", "stack_info", "stacklevel"})

REDACTED = "[REDACTED]"
MAX_FIELD_CHARS = 2000


@dataclass
class LogContext:
    """
    Correlation fields for the current request.

    Set by ObservabilityMiddleware; RequestSession fills in session_id,
    model and strategy once it has dispatched.
    """
    request_id: str = ""
    trace_id: str = ""
    span_id: str = ""
    session_id: str = ""
    model: str = ""
    strategy: str = ""
    endpoint: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def get_current(cls) -> Optional["LogContext"]:
        return _request_context.get()

    @classmethod
    def set_current(cls, ctx: "LogContext"):
        _request_context.set(ctx)

    @classmethod
    def clear(cls):
        _request_context.set(None)

    def update(self, **kwargs):
        """Set known fields; unknown keys land in `extra`."""
        for key, value in kwargs.items():
            if key != "extra" and hasattr(self, key):
                setattr(self, key, value)
            else:
                self.extra[key] = value

    def to_dict(self) -> Dict[str, Any]:
        """Non-empty fields only."""
        result = {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name != "extra" and getattr(self, f.name)
        }
        result.update(self.extra)
        return result


class JSONFormatter(logging.Formatter):
    """JSON formatter with context injection, redaction and field clipping."""

    SENSITIVE_FIELDS = (
        "password", "secret", "token", "api_key", "apikey",
        "authorization", "credential", "private_key", "wallet",
    )

    def __init__(
        self,
        include_location: bool = False,
        redact_sensitive: bool = True,
        max_field_chars: int = MAX_FIELD_CHARS,
    ):
        super().__init__()
        self.include_location = include_location
        self.redact_sensitive = redact_sensitive
        self.max_field_chars = max_field_chars

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_location:
            log_data["location"] = f"{record.filename}:{record.lineno}"

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        ctx = LogContext.get_current()
        if ctx:
            log_data.update(ctx.to_dict())

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                log_data[key] = self._clean(key, value)

        return json.dumps(log_data, default=str, ensure_ascii=False)

    def _clean(self, key: str, value: Any) -> Any:
        if self.redact_sensitive and self._is_sensitive(key):
            return REDACTED
        if isinstance(value, dict):
            return {k: self._clean(str(k), v) for k, v in value.items()}
        if isinstance(value, str) and len(value) > self.max_field_chars:
            return value[:self.max_field_chars] + f"...[{len(value) - self.max_field_chars} more chars]"
        return value

    def _is_sensitive(self, field_name: str) -> bool:
        field_lower = field_name.lower()
        return any(sensitive in field_lower for sensitive in self.SENSITIVE_FIELDS)


class StructuredLogger:
    """
    Thin wrapper over logging.Logger.

    Keyword arguments other than the logging ones are attached to the record
    as structured fields. Do not pass LogRecord attribute names (e.g.
    `message`, `module`) as keywords; logging rejects them.
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, msg: str, *args, **kwargs):
        if not self._logger.isEnabledFor(level):
            return
        extra = kwargs.pop("extra", {})
        for key in [k for k in kwargs if k not in _LOGGING_KWARGS]:
            extra[key] = kwargs.pop(key)
        self._logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        """Log at ERROR with the active exception's traceback."""
        kwargs["exc_info"] = True
        self._log(logging.ERROR, msg, *args, **kwargs)


_logging_configured = False


def setup_logging(
    level: Union[str, int] = "INFO",
    json_output: bool = True,
    include_location: bool = False,
    redact_sensitive: bool = True,
) -> None:
    """
    Configure the root logger with a single stdout handler.

    Args:
        level: Log level name or number
        json_output: JSONFormatter when True, plain text otherwise
        include_location: Add filename:lineno to JSON lines
        redact_sensitive: Mask provider keys and wallet addresses
    """
    global _logging_configured

    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if json_output:
        handler.setFormatter(JSONFormatter(
            include_location=include_location,
            redact_sensitive=redact_sensitive,
        ))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        ))
    root_logger.addHandler(handler)

    # Upstream clients log every request line at INFO
    for noisy in ("httpx", "httpcore", "uvicorn.access", "opentelemetry"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _logging_configured = True


def get_logger(name: str) -> StructuredLogger:
    """Structured logger; configures logging from LOG_LEVEL / LOG_FORMAT on first use."""
    if not _logging_configured:
        setup_logging(
            level=os.getenv("LOG_LEVEL", "INFO"),
            json_output=os.getenv("LOG_FORMAT", "json").lower() == "json",
        )
    return StructuredLogger(logging.getLogger(name))
