from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TextIO

import structlog
from structlog.typing import EventDict, Processor

from podcast_digest.config import AppSettings
from podcast_digest.telemetry import TELEMETRY_LOGGER_NAME

ROOT_LOGGER_NAME = "podcast_digest"
LOG_FILE_NAME = "podcast-digest.log"
TELEMETRY_LOG_FILE_NAME = "podcast-digest-telemetry.log"

# Bound context values under these keys are replaced by their length.
BULKY_CONTEXT_KEYS: frozenset[str] = frozenset({"transcript", "summary_text", "chunk"})


def configure_application_logging(settings: AppSettings) -> Path:
    """
    Route `podcast_digest.*` records to a console renderer and a JSON log file.

    Telemetry events get their own file and do not reach the console.
    Returns the path of the main log file.
    """
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / LOG_FILE_NAME
    telemetry_log_file = settings.log_dir / TELEMETRY_LOG_FILE_NAME

    structlog.configure(
        processors=[
            *_shared_pre_chain(),
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_level = logging.getLevelNamesMapping().get(
        settings.log_level.strip().upper(), logging.INFO
    )
    _install_handlers(
        ROOT_LOGGER_NAME,
        _console_handler(sys.stdout, level=console_level),
        _json_file_handler(log_file, level=logging.DEBUG),
    )
    _install_handlers(
        TELEMETRY_LOGGER_NAME,
        _json_file_handler(telemetry_log_file, level=logging.INFO),
        level=logging.INFO,
    )

    logging.getLogger(ROOT_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s telemetry_path=%s",
        logging.getLevelName(console_level),
        log_file,
        telemetry_log_file,
    )
    return log_file


def _install_handlers(
    logger_name: str,
    *handlers: logging.Handler,
    level: int = logging.DEBUG,
) -> None:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)


def _console_handler(stream: TextIO, *, level: int) -> logging.Handler:
    handler = logging.StreamHandler(stream=stream)
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_pre_chain(),
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(colors=_is_interactive(stream)),
            ],
        )
    )
    return handler


def _json_file_handler(path: Path, *, level: int) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_pre_chain(),
            processors=[
                _add_thread_metadata,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
        )
    )
    return handler


def _shared_pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        _shrink_bulky_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _shrink_bulky_context(
    _logger: object,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    for key in BULKY_CONTEXT_KEYS & event_dict.keys():
        value = event_dict.pop(key)
        event_dict[f"{key}_length"] = len(value) if isinstance(value, str) else None
    return event_dict


def _add_thread_metadata(
    _logger: object,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    # Worker and transcript-source threads interleave in one file.
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["module"] = record.module
        event_dict["lineno"] = record.lineno
        event_dict["thread_name"] = record.threadName
    return event_dict


def _is_interactive(stream: TextIO) -> bool:
    try:
        return stream.isatty()
    except (AttributeError, OSError, ValueError):
        return False
