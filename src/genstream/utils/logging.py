"""
Logging configuration for genstream.

Log events are structlog key/value events rendered through the standard
library, so one setup covers:
- A rich console handler on stderr (stdout carries streamed content)
- Rotating JSON or plain text files plus an errors-only file
- Per-session context (``session_id``) bound with contextvars
- Optional Sentry reporting of session failures
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import sentry_sdk
import structlog
from rich.console import Console
from rich.logging import RichHandler
from sentry_sdk.integrations.logging import LoggingIntegration

console = Console(stderr=True)

MAX_LOG_BYTES = 10 * 1024 * 1024

# Failures that are expected during normal streaming and not worth a Sentry event
_SENTRY_IGNORED_CODES = frozenset({"DECODE_ERROR", "EMPTY_STREAM"})

# Applied to stdlib records (aiohttp, asyncio) before the renderer sees them
_FOREIGN_PRE_CHAIN = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {name}")
    return level


def _processors() -> List[Any]:
    # Rendering happens per handler, see _formatter()
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]


def _drop_console_fields(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # RichHandler prints its own time and level columns
    event_dict.pop("timestamp", None)
    event_dict.pop("level", None)
    return event_dict


def _formatter(*processors: Any) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *processors],
        foreign_pre_chain=_FOREIGN_PRE_CHAIN,
    )


def _file_formatter(enable_json: bool) -> structlog.stdlib.ProcessorFormatter:
    if enable_json:
        return _formatter(
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        )
    return _formatter(structlog.dev.ConsoleRenderer(colors=False))


def _file_handlers(log_dir: Path, app_name: str, enable_json: bool) -> List[logging.Handler]:
    log_dir.mkdir(parents=True, exist_ok=True)
    formatter = _file_formatter(enable_json)

    handlers = []
    for filename, level, backups in (
        (f"{app_name}.log", logging.DEBUG, 10),
        (f"{app_name}-errors.log", logging.ERROR, 5),
    ):
        handler = logging.handlers.RotatingFileHandler(
            log_dir / filename,
            maxBytes=MAX_LOG_BYTES,
            backupCount=backups,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handlers.append(handler)
    return handlers


def _sentry_before_send(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    exc_info = hint.get("exc_info")
    if exc_info and getattr(exc_info[1], "code", None) in _SENTRY_IGNORED_CODES:
        return None
    return event


def setup_logging(
    app_name: str = "genstream",
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    enable_json: bool = True,
    enable_file: bool = True,
    enable_sentry: bool = False,
    sentry_dsn: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Set up logging for the application.

    Replaces any handlers already installed on the root logger, so it is
    safe to call again with different settings.

    Args:
        app_name: Application name, used for log file names
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_dir: Directory for log files (defaults to ~/.genstream/logs)
        enable_json: Write log files as JSON lines instead of plain text
        enable_file: Write rotating log files
        enable_sentry: Report errors to Sentry
        sentry_dsn: Sentry DSN

    Returns:
        The effective settings and the handlers installed
    """
    level = _level(log_level)

    structlog.configure(
        processors=_processors(),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = RichHandler(
        console=console,
        level=level,
        show_time=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
        tracebacks_suppress=["click", "asyncio"],
    )
    console_handler.setFormatter(
        _formatter(_drop_console_fields, structlog.dev.ConsoleRenderer(colors=False))
    )
    handlers: List[logging.Handler] = [console_handler]

    if enable_file:
        log_dir = log_dir or Path.home() / ".genstream" / "logs"
        handlers.extend(_file_handlers(log_dir, app_name, enable_json))

    for handler in handlers:
        root_logger.addHandler(handler)

    # aiohttp access and client chatter is only useful when debugging
    logging.getLogger("aiohttp").setLevel(max(level, logging.WARNING))

    if enable_sentry and sentry_dsn:
        sentry_sdk.init(
            dsn=sentry_dsn,
            integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
            before_send=_sentry_before_send,
            traces_sample_rate=0.0,
        )
        sentry_sdk.set_tag("app", app_name)

    get_logger(app_name).debug(
        "logging_initialized",
        log_level=log_level,
        log_dir=str(log_dir) if enable_file else None,
        enable_json=enable_json,
        enable_sentry=enable_sentry,
        pid=os.getpid(),
    )

    return {
        "app_name": app_name,
        "log_level": log_level,
        "log_dir": log_dir if enable_file else None,
        "handlers": handlers,
        "console": console,
    }


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance by name."""
    return structlog.get_logger(name)


def bind_session(session_id: str):
    """Context manager adding ``session_id`` to every event logged inside it."""
    return structlog.contextvars.bound_contextvars(session_id=session_id)


__all__ = [
    'setup_logging',
    'get_logger',
    'bind_session',
    'console',
]
