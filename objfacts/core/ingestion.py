"""Extraction orchestrator that ties discovery and resolution together.

This is the main entry point for analysing a project: it registers the
explicitly supplied object files, crawls the start directory, applies
exclusions and hands the final file list to the :class:`ResolutionDriver`.
"""

from __future__ import annotations

import pathlib
import threading
from typing import Iterable, Optional

import structlog

from objfacts.core.crawler import (
    ObjectFileCrawler,
    apply_exclusions,
    dedupe_paths,
    register_input_files,
    resolve_input_files,
)
from objfacts.core.progress import ProgressEvent, ProgressReporter
from objfacts.core.resolver import ResolutionDriver, RunSummary
from objfacts.errors import NoObjectFiles
from objfacts.graph.fact_graph import FactGraph
from objfacts.readers.factory import ReaderFactory

logger = structlog.get_logger(__name__)


def extract_facts(
    output_path: str | pathlib.Path,
    *,
    start_dir: str | pathlib.Path | None = ".",
    input_files: Iterable[str | pathlib.Path] = (),
    exclude_files: Iterable[str | pathlib.Path] = (),
    low_memory: bool = False,
    dump_frequency: Optional[int] = None,
    blacklist: list[str] | None = None,
    reader_factory: Optional[ReaderFactory] = None,
    progress: Optional[ProgressReporter] = None,
    cancel_event: Optional[threading.Event] = None,
) -> RunSummary:
    """Analyse a set of object files and write their TA fact file.

    Args:
        output_path: Destination TA file.
        start_dir: Directory searched recursively for object files, or
            ``None`` to process only *input_files*.
        input_files: Object files to process in addition to those found.
        exclude_files: Files to leave out, matched by canonical path.
        low_memory: Flush the graph to disk every *dump_frequency* files.
        dump_frequency: Files between two flushes in low-memory mode.
        blacklist: Glob patterns pruned during the directory search.
        reader_factory: Override for the object-file readers.
        progress: Receives progress events.
        cancel_event: When set, the run stops before the next file.

    Returns:
        The :class:`RunSummary` of the resolution run.

    Raises:
        InputFileNotFound: If an explicit input file does not exist.
        NoObjectFiles: If no object file is left to process.
        MissingContainerNode: See :meth:`ResolutionDriver.run`.
        OutputSinkUnwritable: See :meth:`ResolutionDriver.run`.
        RunCancelled: See :meth:`ResolutionDriver.run`.
    """
    progress = progress or ProgressReporter()
    graph = FactGraph(low_memory=low_memory)

    files = resolve_input_files(input_files, progress=progress)
    register_input_files(graph, files)

    if start_dir is not None:
        root = pathlib.Path(start_dir)
        if not root.is_dir():
            raise NotADirectoryError(f"Start directory is not a directory: {root}")
        crawler = ObjectFileCrawler(root, blacklist=blacklist, progress=progress)
        files.extend(crawler.crawl(graph))

    files = dedupe_paths(files)
    files = apply_exclusions(files, exclude_files, graph, progress=progress)
    if not files:
        progress.emit(ProgressEvent.NO_FILES)
        raise NoObjectFiles()
    progress.emit(ProgressEvent.SEARCH_FINISHED, files=len(files))

    driver = ResolutionDriver(
        graph,
        output_path,
        reader_factory=reader_factory,
        dump_frequency=dump_frequency,
        progress=progress,
        cancel_event=cancel_event,
    )
    return driver.run(files)
