"""
Structured Logging with Correlation IDs

Every record carries the ids of the flow it belongs to:
- tenant_id: the tenant owning the integration
- profile_id: an ERP connection profile
- job_id: a sync job
- invoice_id: an invoice moving through compliance
- provider_id: an access-point provider

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(tenant_id="T-001", profile_id="erp-12"):
        logger.info("Testing connection", extra_fields={"path": "api"})
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Any, Dict, Iterator, Optional


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass(frozen=True)
class CorrelationContext:
    tenant_id: Optional[str] = None
    profile_id: Optional[str] = None
    job_id: Optional[str] = None
    invoice_id: Optional[str] = None
    provider_id: Optional[str] = None
    operation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


_correlation_context: ContextVar[CorrelationContext] = ContextVar(
    "correlation_context",
    default=CorrelationContext(),
)


def get_correlation_context() -> CorrelationContext:
    return _correlation_context.get()


@contextmanager
def with_correlation(**ids: Optional[str]) -> Iterator[CorrelationContext]:
    """Layer ``ids`` over the current context for the duration of the block.

    ``None`` values leave the outer value in place. The previous context is
    restored on exit, including across ``await`` points of the same task.
    """
    ctx = replace(get_correlation_context(), **{k: v for k, v in ids.items() if v is not None})
    token = _correlation_context.set(ctx)
    try:
        yield ctx
    finally:
        _correlation_context.reset(token)


# =============================================================================
# Formatters
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """One JSON object per line: level, logger, message, correlation ids, extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **get_correlation_context().to_dict(),
            **getattr(record, "extra_fields", {}),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


# (context field, prefix) in display order; the tenant is shown bare
_READABLE_IDS = (
    ("tenant_id", ""),
    ("profile_id", "erp:"),
    ("job_id", "job:"),
    ("invoice_id", "inv:"),
    ("provider_id", "app:"),
)


class HumanReadableFormatter(logging.Formatter):
    """
    Console format:
    2026-01-09 12:00:00 [INFO ] sync.monitor [T-001/job:job-9]: Sync job job-9 completed
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_correlation_context()
        ids = [f"{prefix}{getattr(ctx, name)}" for name, prefix in _READABLE_IDS if getattr(ctx, name)]
        timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")

        line = f"{timestamp} [{record.levelname:5}] {record.name} [{'/'.join(ids) or '-'}]: {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


# =============================================================================
# Logger with Correlation Support
# =============================================================================

class CorrelatedLogger:
    """Logger wrapper accepting ``extra_fields`` on every call."""

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def log(self, level: int, msg: str, *args, extra_fields: Optional[Dict[str, Any]] = None, **kwargs):
        if self._logger.isEnabledFor(level):
            # stacklevel 3 attributes the record to the caller of debug()/info()/...
            self._logger.log(level, msg, *args, extra={"extra_fields": extra_fields or {}}, stacklevel=3, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self.log(logging.ERROR, msg, *args, **kwargs)


# =============================================================================
# Logger Factory
# =============================================================================

_loggers: Dict[str, CorrelatedLogger] = {}
_configured = False

_APP_LOGGERS = (
    "api", "backend", "compliance", "connectors", "core",
    "providers", "sync", "activities", "workflows",
)

_QUIET_LOGGERS = {
    "aiohttp": logging.WARNING,
    "httpx": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "temporalio": logging.INFO,
}


def configure_logging(level: int = logging.INFO, json_format: bool = False) -> None:
    """Install one stdout handler on the root logger. Later calls are no-ops."""
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    for name in _APP_LOGGERS:
        logging.getLogger(name).setLevel(level)
    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    _configured = True


def get_logger(name: str) -> CorrelatedLogger:
    """Correlated logger for ``name`` (typically ``__name__``)."""
    if name not in _loggers:
        if not _configured:
            configure_logging()
        _loggers[name] = CorrelatedLogger(logging.getLogger(name))
    return _loggers[name]
