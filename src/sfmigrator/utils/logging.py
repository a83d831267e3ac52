"""
Logging configuration for sfmigrator.

Console output goes through rich by default, with an optional plain file log.
Every handler installed here masks org session ids and bearer tokens, which
show up in `sf org display` output and in HTTP error bodies.
"""

import logging
import re
import sys
import traceback
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "sfmigrator"
DEFAULT_LOG_FILE = "logs/sfmigrator.log"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Session ids look like "00D5g000004XXXX!AQ0AQ..."
_SECRET_PATTERNS = (
    re.compile(r"\b(00D\w{12,15}!)[\w.]+"),
    re.compile(r"(Bearer\s+)\S+", re.IGNORECASE),
    re.compile(r"(\"accessToken\"\s*:\s*\")[^\"]+"),
)
MASK = "***"


def redact(text: str) -> str:
    """Mask session ids and bearer tokens in ``text``."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(rf"\g<1>{MASK}", text)
    return text


class RedactingFilter(logging.Filter):
    """Rewrites the rendered message of every record with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = redact(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


class FileFormatter(logging.Formatter):
    """One parseable line per record; tracebacks follow on the next lines."""

    def __init__(self) -> None:
        super().__init__(fmt="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s", datefmt=DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        result = super().format(record)
        # logging.Formatter already appends exc_text once it is cached
        if record.exc_info and not record.exc_text:
            result += "\n" + "".join(traceback.format_exception(*record.exc_info))
        return redact(result)


class ConsoleFormatter(logging.Formatter):
    """Plain console format: "level: timestamp - msg", with file:line for errors."""

    def __init__(self) -> None:
        super().__init__(datefmt=DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        parts = [self.formatTime(record)]
        if record.levelno >= logging.ERROR and record.pathname:
            parts.append(f"{Path(record.pathname).name}:{record.lineno}")
        parts.append(record.getMessage())
        return f"{record.levelname}: " + " - ".join(parts)


def _parse_level(level: str | int) -> int:
    """Level constant for a name or number; unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(str(level).upper(), logging.INFO)


def _console_handler(level: int, console: Console | None, use_rich: bool, format_string: str | None) -> logging.Handler:
    if use_rich:
        # Shares the console with rich status spinners so lines do not interleave
        return RichHandler(
            level=level,
            console=console or Console(stderr=True),
            show_path=False,
            markup=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(ConsoleFormatter() if format_string is None else logging.Formatter(format_string))
    return handler


def _file_handler(log_file: Path, file_mode: str) -> logging.Handler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file, mode=file_mode, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(FileFormatter())
    return handler


def setup_logging(
    level: str | int = logging.INFO,
    log_file: str | Path | None = None,
    format_string: str | None = None,
    file_mode: str = "a",
    console: Console | None = None,
    console_enabled: bool = True,
    use_rich: bool = True,
) -> logging.Logger:
    """
    Configure the ``sfmigrator`` logger.

    Calling it again replaces the handlers installed by the previous call;
    the root logger is left alone.

    Args:
        level: Level name (DEBUG, INFO, ...) or constant
        log_file: Also write records to this file (everything the logger lets through)
        format_string: Format for the plain console handler
        file_mode: 'a' to append to ``log_file``, 'w' to overwrite it
        console: Rich console for the rich handler (default: a stderr console)
        console_enabled: Install a console handler at all
        use_rich: Rich handler instead of a plain stream handler

    Returns:
        The package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    level_int = _parse_level(level)
    logger.setLevel(level_int)

    handlers = []
    if console_enabled:
        handlers.append(_console_handler(level_int, console, use_rich, format_string))
    if log_file:
        handlers.append(_file_handler(Path(log_file), file_mode))

    for handler in handlers:
        handler.addFilter(RedactingFilter())
        logger.addHandler(handler)
    return logger


def setup_logging_from_config(
    config: dict[str, Any], project_dir: Path | None = None, console: Console | None = None
) -> logging.Logger:
    """
    Configure logging from the ``logging:`` section of migrator.yaml.

    Recognised keys: ``level``, ``file_enabled``, ``file``, ``file_mode``,
    ``console_enabled``, ``console_type`` (``rich`` or ``plain``) and ``format``.
    A relative ``file`` is resolved against ``project_dir``.
    """
    section = config.get("logging") or {}

    # File logging is opt-in: the CLI runs inside arbitrary project folders
    log_file: Path | None = None
    if section.get("file_enabled", False):
        log_file = Path(section.get("file") or DEFAULT_LOG_FILE)
        if project_dir and not log_file.is_absolute():
            log_file = project_dir / log_file

    return setup_logging(
        level=section.get("level", logging.INFO),
        log_file=log_file,
        format_string=section.get("format"),
        file_mode=section.get("file_mode", "a"),
        console=console,
        console_enabled=section.get("console_enabled", True),
        use_rich=section.get("console_type", "rich") == "rich",
    )


def get_logger(name: str = PACKAGE_LOGGER) -> logging.Logger:
    logger = logging.getLogger(name)
    # Child loggers (e.g. "sfmigrator.poller") must reach the package handlers
    logger.propagate = True
    return logger
