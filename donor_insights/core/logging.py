"""
Structured logging.

Mensagens curtas e contexto em ``key=value``: every degrade path in the
engine logs the range, dimension and query involved, so the context
dict is the important part of each record.
"""

import json
import logging
import sys
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from donor_insights.core.config import settings

# Atributos do LogRecord que não podem vir como contexto
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "timestamp"}


def _render(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def _context(kwargs: Dict[str, Any]) -> Dict[str, Any]:
    """Contexto seguro para ``extra``: chaves reservadas ganham prefixo ``ctx_``."""
    return {
        (f"ctx_{key}" if key in _RECORD_ATTRS else key): _render(value)
        for key, value in kwargs.items()
    }


class StructuredLogger:
    """Thin wrapper over ``logging.Logger`` taking keyword context."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def debug(self, message: str, **kwargs):
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(message, extra=_context(kwargs))

    def info(self, message: str, **kwargs):
        self.logger.info(message, extra=_context(kwargs))

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, extra=_context(kwargs))

    def error(self, message: str, exc: Optional[BaseException] = None, **kwargs):
        self.logger.error(message, exc_info=exc, extra=_context(kwargs))


def _extras(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RECORD_ATTRS}


class StructuredFormatter(logging.Formatter):
    """``[time] LEVEL logger: message | key=value | ...``"""

    def format(self, record: logging.LogRecord) -> str:
        line = f"[{self.formatTime(record)}] {record.levelname} {record.name}: {record.getMessage()}"
        extras = _extras(record)
        if extras:
            line += " | " + " | ".join(f"{k}={v}" for k, v in extras.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_extras(record),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=False)


_FORMATTERS = {
    "structured": StructuredFormatter,
    "json": JsonFormatter,
}


def configure_logging(
    level: str = "INFO",
    format_type: str = "structured",
    enable_console: bool = True,
    enable_file: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Nível (DEBUG, INFO, WARNING, ERROR)
        format_type: 'structured' (texto key=value) ou 'json'
        enable_console: Loga em stdout
        enable_file: Loga também em arquivo
        log_file: Caminho do arquivo (obrigatório com enable_file)
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = _FORMATTERS.get(format_type, StructuredFormatter)()
    handlers = []
    if enable_console:
        handlers.append(logging.StreamHandler(sys.stdout))
    if enable_file and log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    # SQL do SQLAlchemy só em WARNING+ (as queries já são logadas pelo store em caso de erro)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)


app_logger = get_logger("donor_insights")
engine_logger = get_logger("donor_insights.engine")
store_logger = get_logger("donor_insights.store")
cache_logger = get_logger("donor_insights.cache")
api_logger = get_logger("donor_insights.api")


def init_app_logging():
    """Configura o logging a partir do Settings."""
    configure_logging(
        level=settings.LOG_LEVEL,
        format_type=settings.LOG_FORMAT,
        enable_file=settings.LOG_TO_FILE,
        log_file=settings.LOG_FILE_PATH,
    )
    app_logger.info(
        "Application logging initialized",
        level=settings.LOG_LEVEL,
        format_type=settings.LOG_FORMAT,
        log_file=settings.LOG_FILE_PATH if settings.LOG_TO_FILE else None,
    )
