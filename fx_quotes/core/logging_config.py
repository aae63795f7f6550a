"""
Logging setup for FX Quote Aggregator Service.

Log records go to stdout either as JSON documents (python-json-logger) or as
plain text lines, selected by ``LOG_FORMAT``. Context is attached through
``extra={...}`` and ends up as top-level JSON keys.
"""

import logging
import logging.config
import sys
from typing import Any, Dict, Optional
from pythonjsonlogger.json import JsonFormatter

from .config import settings

ROOT_LOGGER_NAME = "fx_quotes"

# Third-party loggers that are only interesting when something goes wrong
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "uvicorn.access")

TEXT_FORMATS = {
    "INFO": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    "DEBUG": "%(asctime)s [%(levelname)s] %(name)s: %(message)s [%(filename)s:%(lineno)d]",
}


def _formatter(log_format: str, log_level: str) -> Dict[str, Any]:
    if log_format == "json":
        return {
            "()": JsonFormatter,
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
            "datefmt": "%Y-%m-%dT%H:%M:%S",
            "rename_fields": {"asctime": "timestamp", "levelname": "level", "name": "logger"},
            "static_fields": {"service": settings.app_name, "version": settings.app_version},
        }
    return {
        "format": TEXT_FORMATS.get(log_level, TEXT_FORMATS["INFO"]),
        "datefmt": "%Y-%m-%d %H:%M:%S",
    }


def build_logging_config(log_format: str, log_level: str) -> Dict[str, Any]:
    """dictConfig payload routing every logger to a single stdout handler."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": _formatter(log_format, log_level)},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "stream": sys.stdout,
            }
        },
        "root": {"handlers": ["console"], "level": log_level},
        "loggers": {
            name: {"level": "WARNING"} for name in QUIET_LOGGERS
        },
    }


def setup_logging(log_format: Optional[str] = None, log_level: Optional[str] = None) -> None:
    """Configure logging from settings unless format or level are given."""
    logging.config.dictConfig(build_logging_config(
        log_format or settings.log_format,
        log_level or settings.log_level,
    ))


def create_logger(module_name: str) -> logging.Logger:
    """Logger for a module, always under the ``fx_quotes`` namespace."""
    if module_name == ROOT_LOGGER_NAME or module_name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(module_name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{module_name}")
