# backend/tests/unit/test_logging_setup.py
import logging

import structlog

from chatflow.utils.logging import setup_logging


def _structlog_handlers():
    return [
        h for h in logging.getLogger().handlers
        if isinstance(h.formatter, structlog.stdlib.ProcessorFormatter)
    ]


def test_setup_logging_is_idempotent():
    setup_logging(environment="test", level="debug")
    setup_logging(environment="test", level="warning")

    assert len(_structlog_handlers()) == 1
    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING


def test_development_uses_console_renderer():
    setup_logging(environment="development", level="info")

    (handler,) = _structlog_handlers()
    assert isinstance(handler.formatter.processors[-1], structlog.dev.ConsoleRenderer)
