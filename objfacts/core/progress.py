"""Progress events emitted while discovering and processing object files.

Events are logged through ``structlog`` (``info`` when verbose, ``debug``
otherwise; failures always at ``warning`` or ``error``) and forwarded to any
registered listener so that a presentation layer can render its own view.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

logger = structlog.get_logger(__name__)


class ProgressEvent(str, enum.Enum):
    """Progress milestones of one run."""

    SEARCH_STARTED = "search_started"
    FILE_FOUND = "file_found"
    FILE_NOT_FOUND = "file_not_found"
    FILE_EXCLUDED = "file_excluded"
    EXCLUSION_NOT_FOUND = "exclusion_not_found"
    SEARCH_FINISHED = "search_finished"
    NO_FILES = "no_files"
    PROCESSING_STARTED = "processing_started"
    FILE_STARTED = "file_started"
    FILE_FORMAT = "file_format"
    FILE_INVALID = "file_invalid"
    SYMBOL_PASS = "symbol_pass"
    LINK_PASS = "link_pass"
    PURGE = "purge"
    PROCESSING_FINISHED = "processing_finished"
    RESOLVING_STARTED = "resolving_started"
    RESOLVING_FINISHED = "resolving_finished"
    OUTPUT_WRITTEN = "output_written"
    OUTPUT_FAILED = "output_failed"


_WARNING_EVENTS = {
    ProgressEvent.FILE_NOT_FOUND,
    ProgressEvent.FILE_INVALID,
    ProgressEvent.EXCLUSION_NOT_FOUND,
}
_ERROR_EVENTS = {ProgressEvent.NO_FILES, ProgressEvent.OUTPUT_FAILED}

Listener = Callable[[ProgressEvent, dict[str, Any]], None]


@dataclass
class ProgressReporter:
    """Fan-out point for progress events.

    Attributes:
        verbose: Log routine events at ``info`` instead of ``debug``.
        listeners: Callables invoked as ``listener(event, details)``.
        total_files: Number of files scheduled for processing.
        current_file: 1-based index of the file being processed.
    """

    verbose: bool = False
    listeners: list[Listener] = field(default_factory=list)
    total_files: int = 0
    current_file: int = 0

    def subscribe(self, listener: Listener) -> None:
        self.listeners.append(listener)

    def start_processing(self, total_files: int) -> None:
        self.total_files = total_files
        self.current_file = 0
        self.emit(ProgressEvent.PROCESSING_STARTED, total=total_files)

    def start_file(self, path: str) -> None:
        """Advance the file counter and announce *path*."""
        self.current_file += 1
        self.emit(
            ProgressEvent.FILE_STARTED,
            file=path,
            index=self.current_file,
            total=self.total_files,
        )

    def emit(self, event: ProgressEvent, **details: Any) -> None:
        """Log *event* and pass it to every listener."""
        if event in _ERROR_EVENTS:
            logger.error(event.value, **details)
        elif event in _WARNING_EVENTS:
            logger.warning(event.value, **details)
        elif self.verbose:
            logger.info(event.value, **details)
        else:
            logger.debug(event.value, **details)

        for listener in self.listeners:
            listener(event, details)
