"""structlog + python-json-logger setup for book-digest.

Every event is a JSON line. The ``book_digest`` logger writes to the console
and ``logs/book_digest.log``, with errors copied to ``logs/error.log``; each
catalog source additionally gets ``logs/sources/<slug>.log``.
"""

from __future__ import annotations

import logging
import logging.config
import os
from collections import deque
from dataclasses import dataclass
from pathlib import Path

import structlog
from pythonjsonlogger.json import JsonFormatter

ROOT_LOGGER = "book_digest"
LOG_HOME_ENV = "BOOK_DIGEST_HOME"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_configured_level: str | None = None


@dataclass(frozen=True)
class LogLayout:
    root: Path

    @property
    def main(self) -> Path:
        return self.root / "book_digest.log"

    @property
    def errors(self) -> Path:
        return self.root / "error.log"

    @property
    def sources_dir(self) -> Path:
        return self.root / "sources"

    def source(self, source_name: str) -> Path:
        slug = "".join(ch.lower() if ch.isalnum() else "-" for ch in source_name).strip("-")
        return self.sources_dir / f"{slug or 'source'}.log"

    def ensure(self) -> None:
        self.sources_dir.mkdir(parents=True, exist_ok=True)
        self.main.touch(exist_ok=True)
        self.errors.touch(exist_ok=True)


def log_layout() -> LogLayout:
    home = os.environ.get(LOG_HOME_ENV)
    if home:
        return LogLayout(Path(home).expanduser().resolve() / "logs")
    return LogLayout(Path(__file__).resolve().parents[1] / "logs")


def _dict_config(layout: LogLayout, level: str) -> dict:
    def file_handler(path: Path, handler_level: str) -> dict:
        return {
            "class": "logging.FileHandler",
            "level": handler_level,
            "filename": str(path),
            "formatter": "json",
            "encoding": "utf-8",
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"json": {"()": JsonFormatter, "fmt": JSON_FORMAT}},
        "handlers": {
            "console": {"class": "logging.StreamHandler", "level": level, "formatter": "json"},
            "main_file": file_handler(layout.main, "INFO"),
            "error_file": file_handler(layout.errors, "ERROR"),
        },
        "loggers": {
            ROOT_LOGGER: {
                "handlers": ["console", "main_file", "error_file"],
                "level": level,
                "propagate": False,
            },
        },
    }


def configure_logging(verbose: bool = False) -> structlog.BoundLogger:
    """Install handlers once per process and return the ``book_digest`` logger.

    A later ``verbose=True`` call lowers the level to DEBUG on the already
    configured logger instead of rebuilding the handlers.
    """

    global _configured_level
    layout = log_layout()
    layout.ensure()
    level = "DEBUG" if verbose else "INFO"

    if _configured_level is None:
        logging.config.dictConfig(_dict_config(layout, level))
        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.stdlib.add_log_level,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _configured_level = level
    elif verbose and _configured_level != "DEBUG":
        root = logging.getLogger(ROOT_LOGGER)
        root.setLevel(logging.DEBUG)
        for handler in root.handlers:
            if type(handler) is logging.StreamHandler:
                handler.setLevel(logging.DEBUG)
        _configured_level = "DEBUG"
    return structlog.get_logger(ROOT_LOGGER)


def source_log_path(source_name: str) -> Path:
    return log_layout().source(source_name)


def source_logger(source_name: str, verbose: bool = False) -> structlog.BoundLogger:
    """Logger bound to one catalog source; events also land in that source's file."""

    configure_logging(verbose)
    path = source_log_path(source_name)
    logger_name = f"{ROOT_LOGGER}.source.{path.stem}"
    py_logger = logging.getLogger(logger_name)
    if not any(getattr(handler, "baseFilename", None) == str(path) for handler in py_logger.handlers):
        handler = logging.FileHandler(path, encoding="utf-8")
        handler.setFormatter(JsonFormatter(JSON_FORMAT))
        handler.setLevel(logging.INFO)
        py_logger.addHandler(handler)
    return structlog.get_logger(logger_name).bind(source=source_name)


def tail_log(path: Path, line_count: int = 100) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8", errors="ignore") as stream:
        return list(deque(stream, maxlen=line_count))


def available_source_logs() -> list[Path]:
    sources_dir = log_layout().sources_dir
    if not sources_dir.exists():
        return []
    return sorted(sources_dir.glob("*.log"))


def main_log_path() -> Path:
    return log_layout().main


__all__ = [
    "LogLayout",
    "available_source_logs",
    "configure_logging",
    "log_layout",
    "main_log_path",
    "source_log_path",
    "source_logger",
    "tail_log",
]
