"""structlog wiring for cfx-directory.

Events are rendered by ``python-json-logger`` through stdlib handlers: the
console, ``logs/directory.log``, ``logs/error.log`` and one file per upstream
source under ``logs/sources/``.
"""

from __future__ import annotations

import logging
import logging.config
import os
from collections import deque
from pathlib import Path
from typing import Any, Iterable

import structlog

ROOT_LOGGER = "cfx_directory"
SOURCE_LOGGER_PREFIX = f"{ROOT_LOGGER}.source"
JSON_FORMATTER = "pythonjsonlogger.jsonlogger.JsonFormatter"
JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured = False


def log_dir() -> Path:
    home = os.environ.get("CFX_DIRECTORY_HOME")
    if home:
        return Path(home).expanduser().resolve() / "logs"
    return Path(__file__).resolve().parents[1] / "logs"


def main_log_path() -> Path:
    return log_dir() / "directory.log"


def error_log_path() -> Path:
    return log_dir() / "error.log"


def source_log_path(source_name: str) -> Path:
    return log_dir() / "sources" / f"{source_name}.log"


def build_logging_config(verbose: bool = False) -> dict[str, Any]:
    """Return the ``dictConfig`` payload for the application loggers."""

    level = "DEBUG" if verbose else "INFO"
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": JSON_FORMATTER, "fmt": JSON_FIELDS}},
        "handlers": {
            "console": {"class": "logging.StreamHandler", "level": level, "formatter": "json"},
            "directory_file": {
                "class": "logging.FileHandler",
                "level": "INFO",
                "filename": str(main_log_path()),
                "encoding": "utf-8",
                "formatter": "json",
            },
            "error_file": {
                "class": "logging.FileHandler",
                "level": "ERROR",
                "filename": str(error_log_path()),
                "encoding": "utf-8",
                "formatter": "json",
            },
        },
        "loggers": {
            ROOT_LOGGER: {
                "handlers": ["console", "directory_file", "error_file"],
                "level": level,
                "propagate": False,
            },
        },
    }


def _prepare_files() -> None:
    (log_dir() / "sources").mkdir(parents=True, exist_ok=True)
    for path in (main_log_path(), error_log_path()):
        path.touch(exist_ok=True)


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Initialise handlers once and return the application logger."""

    global _configured
    _prepare_files()
    if not _configured:
        logging.config.dictConfig(build_logging_config(verbose))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                # hand the event dict to the JSON formatter as the record message
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _configured = True
    return structlog.get_logger(ROOT_LOGGER)


def _has_file_handler(py_logger: logging.Logger, path: Path) -> bool:
    return any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == str(path)
        for handler in py_logger.handlers
    )


def source_logger(source_name: str, verbose: bool = False) -> structlog.BoundLogger:
    """Logger for one upstream source; it also writes to its own file."""

    configure_logging(verbose)
    path = source_log_path(source_name)
    path.parent.mkdir(parents=True, exist_ok=True)
    name = f"{SOURCE_LOGGER_PREFIX}.{source_name}"
    py_logger = logging.getLogger(name)
    if not _has_file_handler(py_logger, path):
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setLevel(logging.INFO)
        root_handlers = logging.getLogger(ROOT_LOGGER).handlers
        if root_handlers:
            handler.setFormatter(root_handlers[0].formatter)
        py_logger.addHandler(handler)
    return structlog.get_logger(name).bind(source=source_name)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        return list(deque(stream, maxlen=line_count))


def available_source_logs() -> Iterable[Path]:
    sources = log_dir() / "sources"
    if not sources.exists():
        return []
    return sorted(sources.glob("*.log"))


__all__ = [
    "available_source_logs",
    "build_logging_config",
    "configure_logging",
    "error_log_path",
    "log_dir",
    "main_log_path",
    "source_log_path",
    "source_logger",
    "tail_log",
]
