"""Recursive object-file discovery with .gitignore-style blacklist filtering.

Walking the tree also builds the structural part of the fact graph: every
visited directory becomes a ``Subsystem`` node, every object file a ``File``
node, each linked to its parent directory by a ``Contains`` edge.  The
resolution driver later hangs symbols off those file nodes.
"""

from __future__ import annotations

import pathlib
from typing import Iterable, Iterator, Optional

import pathspec
import structlog

from objfacts.config import settings
from objfacts.core.progress import ProgressEvent, ProgressReporter
from objfacts.errors import InputFileNotFound
from objfacts.graph.fact_graph import FactGraph
from objfacts.models.graph import EdgeType, NodeType

logger = structlog.get_logger(__name__)


class ObjectFileCrawler:
    """Recursively walks a directory tree, registering object files.

    Args:
        root: The root directory to scan.
        blacklist: Optional list of glob patterns to exclude.  Falls back
            to :pyattr:`objfacts.config.Settings.default_blacklist`.
        extensions: File suffixes to collect.  Falls back to
            :pyattr:`objfacts.config.Settings.object_extensions`.
        progress: Receives a ``file_found`` event per object file.
    """

    def __init__(
        self,
        root: pathlib.Path,
        blacklist: list[str] | None = None,
        extensions: Iterable[str] | None = None,
        progress: Optional[ProgressReporter] = None,
    ) -> None:
        self.root = pathlib.Path(root).resolve()
        self.blacklist = blacklist if blacklist is not None else settings.default_blacklist
        self.extensions = {ext.lower() for ext in (extensions or settings.object_extensions)}
        self.progress = progress or ProgressReporter()
        self._spec = pathspec.PathSpec.from_lines("gitwildmatch", self.blacklist)

    def _is_excluded(self, path: pathlib.Path) -> bool:
        """Check whether *path* matches any blacklist pattern."""
        try:
            relative = path.relative_to(self.root)
        except ValueError:
            return False
        posix = relative.as_posix()
        if path.is_dir():
            posix += "/"
        return self._spec.match_file(posix)

    def _is_object_file(self, path: pathlib.Path) -> bool:
        return path.suffix.lower() in self.extensions

    def crawl(self, graph: FactGraph) -> list[pathlib.Path]:
        """Register the directory tree under :pyattr:`root` in *graph*.

        Args:
            graph: Graph receiving ``Subsystem``/``File`` nodes and
                ``Contains`` edges.

        Returns:
            Absolute paths of every object file found, in walk order.
        """
        logger.info("crawl_started", root=str(self.root))
        self.progress.emit(ProgressEvent.SEARCH_STARTED, root=str(self.root))

        files = list(self._walk(self.root, None, graph))

        logger.info("crawl_finished", root=str(self.root), files_found=len(files))
        return files

    def _walk(
        self,
        directory: pathlib.Path,
        parent: Optional[pathlib.Path],
        graph: FactGraph,
    ) -> Iterator[pathlib.Path]:
        """Register *directory*, yield its object files, then recurse.

        Files of a directory are yielded before the contents of its
        subdirectories.
        """
        dir_id = str(directory)
        graph.add_node(dir_id, NodeType.SUBSYSTEM)
        if parent is not None:
            graph.add_edge(str(parent), dir_id, EdgeType.CONTAINS)

        try:
            entries = sorted(directory.iterdir())
        except PermissionError:
            logger.warning("permission_denied", path=dir_id)
            return

        subdirectories: list[pathlib.Path] = []
        for entry in entries:
            if self._is_excluded(entry):
                logger.debug("excluded", path=str(entry))
                continue

            if entry.is_dir():
                subdirectories.append(entry)
            elif entry.is_file() and self._is_object_file(entry):
                file_id = str(entry)
                graph.add_node(file_id, NodeType.FILE)
                graph.add_edge(dir_id, file_id, EdgeType.CONTAINS)
                self.progress.emit(ProgressEvent.FILE_FOUND, file=file_id)
                yield entry

        for subdirectory in subdirectories:
            yield from self._walk(subdirectory, directory, graph)


def resolve_input_files(
    paths: Iterable[str | pathlib.Path],
    progress: Optional[ProgressReporter] = None,
) -> list[pathlib.Path]:
    """Canonicalize explicitly supplied object files.

    Raises:
        InputFileNotFound: If any of the files does not exist.
    """
    progress = progress or ProgressReporter()
    resolved: list[pathlib.Path] = []
    for raw in paths:
        path = pathlib.Path(raw).expanduser()
        if not path.is_file():
            progress.emit(ProgressEvent.FILE_NOT_FOUND, file=str(raw))
            raise InputFileNotFound(str(raw))
        canonical = path.resolve()
        progress.emit(ProgressEvent.FILE_FOUND, file=str(canonical))
        resolved.append(canonical)
    return resolved


def register_input_files(graph: FactGraph, files: Iterable[pathlib.Path]) -> None:
    """Add a ``File`` node for every file not already in *graph*."""
    for path in files:
        graph.add_node(str(path), NodeType.FILE)


def dedupe_paths(files: Iterable[pathlib.Path]) -> list[pathlib.Path]:
    """Drop repeated paths, keeping the first occurrence's position."""
    seen: set[str] = set()
    unique: list[pathlib.Path] = []
    for path in files:
        key = str(path)
        if key in seen:
            continue
        seen.add(key)
        unique.append(path)
    return unique


def apply_exclusions(
    files: list[pathlib.Path],
    excluded: Iterable[str | pathlib.Path],
    graph: FactGraph,
    progress: Optional[ProgressReporter] = None,
) -> list[pathlib.Path]:
    """Remove excluded files from *files* and their nodes from *graph*.

    An exclusion matches a file only when both canonical path strings are
    identical.

    Returns:
        The remaining files, in their original order.
    """
    progress = progress or ProgressReporter()
    remaining = list(files)
    for raw in excluded:
        canonical = str(pathlib.Path(raw).expanduser().resolve())
        match = next((path for path in remaining if str(path) == canonical), None)
        if match is None:
            progress.emit(ProgressEvent.EXCLUSION_NOT_FOUND, file=canonical)
            continue
        remaining.remove(match)
        graph.remove_node(canonical)
        progress.emit(ProgressEvent.FILE_EXCLUDED, file=canonical)
    return remaining
