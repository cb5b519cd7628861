"""Core logging and progress helpers for polyfold."""

from __future__ import annotations

import logging
import sys
import traceback
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Protocol

from polyfold.constants import DEFAULT_LOG_TAG

_recent_log_lines: deque[str] = deque(maxlen=1200)


class Logger(Protocol):
    """Simple logger protocol used by every polyfold component."""

    def info(self, message: Any) -> None: ...

    def warning(self, message: Any) -> None: ...

    def error(self, message: Any) -> None: ...

    def exception(self, message: Any, exc: BaseException | None = None) -> None: ...


class FeedbackProtocol(Protocol):
    """Minimal progress interface (processing-framework style feedback)."""

    def setProgress(self, value: float | int) -> None: ...

    def setProgressText(self, message: str) -> None: ...


LoggerFactory = Callable[[str], Logger]
ErrorHandler = Callable[[str, Any, Optional[str]], None]


def _format_message(message: Any) -> str:
    if isinstance(message, str):
        return message
    return repr(message)


def _level_name(level: int | None) -> str:
    if level is None:
        return "INFO"
    return logging.getLevelName(level) if level in (logging.CRITICAL, logging.WARNING, logging.DEBUG) else "INFO"


def record_log_entry(tag: str, level: int | None, message: Any) -> None:
    """Capture recent log entries so they can be dumped after a failure."""
    text = _format_message(message)
    if not text:
        return
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    _recent_log_lines.append(f"{timestamp} [{_level_name(level)}] {tag}: {text}")


def get_recent_log_output(max_lines: int = 400) -> str:
    """Return recent log lines captured in the current process."""
    if max_lines <= 0 or not _recent_log_lines:
        return ""
    lines = list(_recent_log_lines)[-max_lines:]
    return "\n".join(lines)


def clear_recent_log_output() -> None:
    _recent_log_lines.clear()


def _default_error_handler(title: str, message: Any, context: str | None) -> None:
    text = _format_message(message) if not isinstance(message, BaseException) else str(message)
    if context:
        text = f"{text}\n{context}"
    print(f"{title}: {text}", file=sys.stderr)


_error_handler: ErrorHandler = _default_error_handler


def _logger_factory(tag):
    return PythonLogger(tag)


def register_error_handler(handler: ErrorHandler) -> None:
    global _error_handler
    _error_handler = handler


def register_logger_factory(factory: LoggerFactory) -> None:
    global _logger_factory
    _logger_factory = factory


def create_logger(tag: str = DEFAULT_LOG_TAG) -> Logger:
    return _logger_factory(tag)


def show_error_dialog(title: str, message: Any) -> None:
    _error_handler(title, message, None)


@dataclass
class PythonLogger:
    tag: str = DEFAULT_LOG_TAG

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(self.tag)
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S"),
            )
            self._logger.addHandler(handler)
        self._logger.setLevel(logging.INFO)

    def _log(self, level: int, message: Any) -> None:
        record_log_entry(self.tag, level, message)
        self._logger.log(level, _format_message(message))

    def debug(self, message: Any) -> None:
        self._log(logging.DEBUG, message)

    def info(self, message: Any) -> None:
        self._log(logging.INFO, message)

    def warning(self, message: Any) -> None:
        self._log(logging.WARNING, message)

    def error(self, message: Any) -> None:
        self._log(logging.CRITICAL, message)

    def exception(self, message: Any, exc: BaseException | None = None) -> None:
        details = _format_message(message)
        if exc is None:
            details += "\n" + traceback.format_exc()
        else:
            details += "\n" + "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        self._log(logging.CRITICAL, details)


@dataclass
class Reporter:
    """Fan messages out to a logger and progress to an optional feedback object."""

    logger: Logger
    feedback: FeedbackProtocol | None = None
    error_handler: ErrorHandler = _default_error_handler

    @classmethod
    def from_feedback(cls, feedback: FeedbackProtocol | None, tag: str = DEFAULT_LOG_TAG) -> Reporter:
        logger = _logger_factory(tag)
        return cls(logger=logger, feedback=feedback, error_handler=_error_handler)

    def info(self, message: Any) -> None:
        self.logger.info(message)
        self._progress_text(message)

    def warning(self, message: Any) -> None:
        self.logger.warning(message)

    def error(self, message: Any) -> None:
        self.logger.error(message)
        self.error_handler("polyfold Error", message, None)

    def exception(self, message: Any, exc: BaseException | None = None) -> None:
        self.logger.exception(message, exc)
        self.error_handler("polyfold Error", message, None)

    def progress(self, value: float | int) -> None:
        if self.feedback is not None and hasattr(self.feedback, "setProgress"):
            self.feedback.setProgress(int(value))

    def _progress_text(self, message: Any) -> None:
        if self.feedback is not None and hasattr(self.feedback, "setProgressText"):
            self.feedback.setProgressText(_format_message(message))


def ensure_reporter(reporter: Reporter | None) -> Reporter:
    """Return ``reporter`` or a default one writing to the package logger."""
    if reporter is not None:
        return reporter
    return Reporter.from_feedback(None)
