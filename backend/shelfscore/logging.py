"""structlog configuration shared by the API process and tests."""

from __future__ import annotations

import logging
import sys
from typing import IO

import structlog

from shelfscore.config import settings


class _TeeWriter:
    """Mirror log lines to stdout and an append-only file.

    A file that cannot be opened or written disables file output; stdout
    keeps working.
    """

    def __init__(self, file_path: str) -> None:
        self._file: IO[str] | None = None
        try:
            self._file = open(file_path, "a")  # noqa: SIM115
        except OSError as exc:
            print(f"WARNING: log file {file_path!r} unavailable: {exc}", file=sys.stderr)

    def write(self, data: str) -> None:
        sys.stdout.write(data)
        if self._file is None:
            return
        try:
            self._file.write(data)
            self._file.flush()
        except (OSError, ValueError):
            self._file = None
            print("WARNING: log file write failed, file logging disabled", file=sys.stderr)

    def flush(self) -> None:
        sys.stdout.flush()


def configure_logging(level: str | None = None) -> None:
    """Console output in development, JSON lines everywhere else.

    Exceptions logged with ``exc_info`` are rendered into the event in JSON
    mode so operator logs carry the full traceback.
    """
    level_name = (level or settings.log_level).upper()
    numeric_level = logging.getLevelNamesMapping().get(level_name, logging.INFO)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if settings.environment == "development":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())

    if settings.log_file:
        tee = _TeeWriter(settings.log_file)
        logger_factory = structlog.PrintLoggerFactory(file=tee)  # type: ignore[arg-type]
    else:
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )
