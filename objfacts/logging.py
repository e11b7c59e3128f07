"""Structured logging configuration using ``structlog``.

Call :func:`setup_logging` once at startup, before the first object file
is read.  Everything goes to ``stderr``; ``stdout`` is left to the caller.
"""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(log_level: str = "INFO", verbose: bool = False) -> None:
    """Configure ``structlog`` and the standard-library root logger.

    Args:
        log_level: Minimum severity level (e.g. ``"DEBUG"``, ``"INFO"``).
        verbose: Lower the threshold to ``INFO`` if it is higher, so the
            per-file progress events are shown.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    if verbose:
        numeric_level = min(numeric_level, logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=numeric_level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
