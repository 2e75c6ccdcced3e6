"""Bridge from stdlib logging to the host application's diagnostic sink."""

from __future__ import annotations

import logging
from typing import Protocol

PACKAGE_LOGGER_NAME = "clawbridge_core"

_DEFAULT_FORMAT = "[%(asctime)s.%(msecs)03d] %(message)s"
_DEFAULT_DATEFMT = "%H:%M:%S"


class DiagnosticSink(Protocol):
    """Receives one formatted diagnostic line at a time."""

    def log(self, line: str) -> None: ...


class DiagnosticSinkHandler(logging.Handler):
    """logging.Handler that forwards formatted records to a DiagnosticSink."""

    def __init__(self, sink: DiagnosticSink, level: int = logging.DEBUG) -> None:
        super().__init__(level)
        self._sink = sink
        self.setFormatter(logging.Formatter(_DEFAULT_FORMAT, _DEFAULT_DATEFMT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._sink.log(self.format(record))
        except Exception:
            self.handleError(record)


def attach_diagnostic_sink(
    sink: DiagnosticSink, *, level: int = logging.DEBUG
) -> DiagnosticSinkHandler:
    """Install a DiagnosticSinkHandler on the package logger.

    Returns the handler so the caller can remove it with
    ``logging.getLogger(PACKAGE_LOGGER_NAME).removeHandler(handler)``.
    """
    handler = DiagnosticSinkHandler(sink, level)
    logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    logger.addHandler(handler)
    if logger.level == logging.NOTSET or logger.level > level:
        logger.setLevel(level)
    return handler
