"""Tests for the reporter and logging helpers."""

from __future__ import annotations

import logging

import polyfold.logging as polyfold_logging
from fakes import DummyLog
from polyfold.logging import (
    PythonLogger,
    Reporter,
    clear_recent_log_output,
    create_logger,
    ensure_reporter,
    get_recent_log_output,
    register_error_handler,
    register_logger_factory,
    show_error_dialog,
)


class _Feedback:
    def __init__(self) -> None:
        self.progress = []
        self.texts = []

    def setProgress(self, value) -> None:
        self.progress.append(value)

    def setProgressText(self, text) -> None:
        self.texts.append(text)


def test_reporter_fans_out_to_logger_and_feedback() -> None:
    log = DummyLog()
    feedback = _Feedback()
    errors = []
    reporter = Reporter(logger=log, feedback=feedback, error_handler=lambda *args: errors.append(args))

    reporter.info("Extracting samples")
    reporter.warning("2 regions dropped")
    reporter.progress(42.7)
    reporter.error("boom")

    assert log.records == [("info", "Extracting samples"), ("warning", "2 regions dropped"), ("error", "boom")]
    assert feedback.texts == ["Extracting samples"]
    assert feedback.progress == [42]
    assert errors == [("polyfold Error", "boom", None)]


def test_python_logger_records_recent_lines(caplog) -> None:
    clear_recent_log_output()
    logger = PythonLogger("PolyfoldTest")

    with caplog.at_level(logging.INFO, logger="PolyfoldTest"):
        logger.info("first")
        logger.warning("second")

    recent = get_recent_log_output()
    assert "[INFO] PolyfoldTest: first" in recent
    assert "[WARNING] PolyfoldTest: second" in recent
    assert [r.getMessage() for r in caplog.records] == ["first", "second"]
    assert get_recent_log_output(max_lines=0) == ""


def test_registered_logger_factory_is_used(monkeypatch) -> None:
    log = DummyLog()
    # restored on teardown
    monkeypatch.setattr(polyfold_logging, "_logger_factory", polyfold_logging._logger_factory)
    register_logger_factory(lambda tag: log)

    reporter = ensure_reporter(None)
    reporter.info("hello")

    assert create_logger() is log
    assert log.records == [("info", "hello")]


def test_registered_error_handler_receives_errors(monkeypatch) -> None:
    shown = []
    monkeypatch.setattr(polyfold_logging, "_error_handler", polyfold_logging._error_handler)
    register_error_handler(lambda title, message, context: shown.append((title, str(message), context)))

    show_error_dialog("polyfold CLI Error", ValueError("bad raster"))
    Reporter.from_feedback(None).error("fold failed")

    assert shown == [("polyfold CLI Error", "bad raster", None), ("polyfold Error", "fold failed", None)]


def test_ensure_reporter_keeps_given_reporter() -> None:
    reporter = Reporter(logger=DummyLog())

    assert ensure_reporter(reporter) is reporter
