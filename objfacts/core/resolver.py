"""Resolution driver that turns a set of object files into a fact graph.

The driver runs three phases over one :class:`ResolutionContext`:

1. **Ingesting**: for each file, a symbol pass creates ``Function`` and
   ``Object`` nodes under the file node, then a link pass turns every
   relocation inside a symbol into a ``Link`` edge.  References to symbols
   that no processed file has defined yet go to the pending table.
2. **GlobalResolution**: the pending table is drained once against the
   now-complete mangle index.  Whatever still does not resolve points
   outside the input set (system libraries and the like) and is dropped.
3. **Serialized**: the graph is written as a TA file, or, in low-memory
   mode, its last resident facts are flushed to the streaming writer.
"""

from __future__ import annotations

import enum
import pathlib
import threading
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

import structlog
from pydantic import BaseModel, Field

from objfacts.config import settings
from objfacts.core.progress import ProgressEvent, ProgressReporter
from objfacts.errors import (
    FatalError,
    MissingContainerNode,
    NoObjectFiles,
    OutputSinkUnwritable,
    RunCancelled,
    UnreadableObjectFile,
)
from objfacts.graph.fact_file import StreamingFactWriter, write_fact_file
from objfacts.graph.fact_graph import FactGraph
from objfacts.models.graph import EdgeType
from objfacts.readers.base import BaseObjectReader, ObjectHandle, RelocationRecord, SymbolRecord
from objfacts.readers.demangle import demangle
from objfacts.readers.factory import ReaderFactory, build_default_factory

logger = structlog.get_logger(__name__)


class DriverState(str, enum.Enum):
    """Lifecycle of one resolution run."""

    IDLE = "idle"
    INGESTING = "ingesting"
    GLOBAL_RESOLUTION = "global_resolution"
    SERIALIZED = "serialized"
    DONE = "done"
    ABORTED = "aborted"


class PendingReferences:
    """References whose target alias was unknown when first observed.

    Maps a source alias to the target aliases it still waits for.  The
    table is consumed exactly once by :meth:`drain`.
    """

    def __init__(self) -> None:
        self._table: dict[str, list[str]] = {}

    def add(self, source_alias: str, target_alias: str) -> bool:
        """Record a deferred reference.

        Returns:
            ``False`` if the pair was already pending.
        """
        targets = self._table.setdefault(source_alias, [])
        if target_alias in targets:
            return False
        targets.append(target_alias)
        return True

    def targets(self, source_alias: str) -> list[str]:
        return list(self._table.get(source_alias, ()))

    def drain(self) -> Iterator[tuple[str, str]]:
        """Yield every pending pair and leave the table empty."""
        table, self._table = self._table, {}
        for source_alias, targets in table.items():
            for target_alias in targets:
                yield source_alias, target_alias

    def clear(self) -> None:
        self._table.clear()

    def __len__(self) -> int:
        return sum(len(targets) for targets in self._table.values())


@dataclass
class ResolutionContext:
    """All mutable state of one run, owned by the driver.

    Attributes:
        graph: The fact graph being built.
        pending: Deferred references awaiting global resolution.
        state: Current driver state.
    """

    graph: FactGraph
    pending: PendingReferences = field(default_factory=PendingReferences)
    state: DriverState = DriverState.IDLE

    def transition(self, state: DriverState) -> None:
        logger.debug("driver_state", previous=self.state.value, state=state.value)
        self.state = state

    def teardown(self) -> None:
        """Release per-run tables once the run has ended."""
        self.pending.clear()


class RunSummary(BaseModel):
    """Counters describing a finished (or aborted) run."""

    output_path: str = Field(..., description="TA file written by the run.")
    state: DriverState = Field(DriverState.IDLE, description="Final driver state.")
    files_processed: int = Field(0, description="Object files ingested.")
    files_invalid: int = Field(0, description="Object files skipped as unreadable.")
    symbols_skipped: int = Field(0, description="Symbols whose id could not be derived.")
    links_resolved_inline: int = Field(0, description="Link edges created during ingestion.")
    references_deferred: int = Field(0, description="References added to the pending table.")
    links_resolved_globally: int = Field(0, description="Link edges created by global resolution.")
    references_dropped: int = Field(0, description="Pending references that never resolved.")
    purges: int = Field(0, description="Low-memory flushes performed.")
    nodes: int = Field(0, description="Nodes created during the run.")
    edges: int = Field(0, description="Edges created during the run.")


@dataclass
class _ExtractedSymbol:
    symbol: SymbolRecord
    node_id: Optional[str]
    display_name: str
    references: list[RelocationRecord]


class ResolutionDriver:
    """Drives the inspector and the fact graph across a whole file set.

    Usage::

        graph = FactGraph()
        files = ObjectFileCrawler(root).crawl(graph)
        driver = ResolutionDriver(graph, "out.ta")
        summary = driver.run(files)

    Args:
        graph: Graph pre-populated with the ``File`` node of every object
            file that will be processed.
        output_path: Destination TA file.
        reader_factory: Supplies the reader for each file.  Defaults to the
            built-in ELF reader.
        dump_frequency: In low-memory mode, purge the graph after every
            this many files.
        progress: Receives progress events.
        cancel_event: When set, the run stops cleanly before the next file.
    """

    def __init__(
        self,
        graph: FactGraph,
        output_path: str | pathlib.Path,
        *,
        reader_factory: Optional[ReaderFactory] = None,
        dump_frequency: Optional[int] = None,
        progress: Optional[ProgressReporter] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.output_path = pathlib.Path(output_path)
        self.reader_factory = reader_factory or build_default_factory()
        self.dump_frequency = settings.dump_frequency if dump_frequency is None else dump_frequency
        if self.dump_frequency < 1:
            raise ValueError(f"dump_frequency must be positive, got {self.dump_frequency}")
        self.progress = progress or ProgressReporter()
        self.cancel_event = cancel_event
        self.context = ResolutionContext(graph=graph)
        self.summary = RunSummary(output_path=str(self.output_path))

    @property
    def graph(self) -> FactGraph:
        return self.context.graph

    @property
    def state(self) -> DriverState:
        return self.context.state

    @property
    def low_memory(self) -> bool:
        return self.graph.low_memory

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, object_files: Iterable[pathlib.Path]) -> RunSummary:
        """Process *object_files*, resolve references and write the TA file.

        Raises:
            NoObjectFiles: If *object_files* is empty.
            MissingContainerNode: If a file has no ``File`` node in the graph.
            OutputSinkUnwritable: If the TA file cannot be written.
            RunCancelled: If :pyattr:`cancel_event` was set.
        """
        files = [pathlib.Path(path) for path in object_files]
        if not files:
            self.context.transition(DriverState.ABORTED)
            self.summary.state = self.state
            self.progress.emit(ProgressEvent.NO_FILES)
            raise NoObjectFiles()

        logger.info(
            "ingestion_started",
            files=len(files),
            low_memory=self.low_memory,
            output=str(self.output_path),
        )

        writer = StreamingFactWriter(self.output_path) if self.low_memory else None
        try:
            if writer is not None:
                writer.open()

            self.context.transition(DriverState.INGESTING)
            self.progress.start_processing(len(files))
            for index, path in enumerate(files, start=1):
                self._check_cancelled()
                self.process_file(path)
                if writer is not None and index % self.dump_frequency == 0:
                    self.progress.emit(ProgressEvent.PURGE, after_files=index)
                    self._purge(writer)
            self.progress.emit(ProgressEvent.PROCESSING_FINISHED, processed=self.summary.files_processed)

            self.context.transition(DriverState.GLOBAL_RESOLUTION)
            self.progress.emit(ProgressEvent.RESOLVING_STARTED, pending=len(self.context.pending))
            self.resolve_pending()
            self.progress.emit(
                ProgressEvent.RESOLVING_FINISHED,
                resolved=self.summary.links_resolved_globally,
                dropped=self.summary.references_dropped,
            )

            self._serialize(writer)
            self.context.transition(DriverState.SERIALIZED)
            self.progress.emit(ProgressEvent.OUTPUT_WRITTEN, path=str(self.output_path))
        except FatalError as exc:
            if writer is not None:
                writer.discard(remove_partial=True)
            if isinstance(exc, OutputSinkUnwritable):
                self.progress.emit(ProgressEvent.OUTPUT_FAILED, path=str(self.output_path), error=str(exc))
            self.context.transition(DriverState.ABORTED)
            self._finish()
            raise

        self.context.transition(DriverState.DONE)
        self._finish()
        logger.info("ingestion_finished", **self.summary.model_dump(mode="json"))
        return self.summary

    def process_file(self, path: pathlib.Path) -> bool:
        """Run the symbol pass and the link pass for one object file.

        Everything is read from the file before the graph is touched, so an
        unreadable file leaves no partial facts behind.

        Returns:
            ``False`` if the file was skipped as unreadable.
        """
        path = pathlib.Path(path)
        self.progress.start_file(str(path))

        reader = self.reader_factory.for_file(path)
        if reader is None:
            self._skip_file(path, "no reader registered for this file type")
            return False

        try:
            with reader.load(path) as handle:
                self.progress.emit(
                    ProgressEvent.FILE_FORMAT,
                    file=str(path),
                    bits=handle.bits,
                    endian="little" if handle.little_endian else "big",
                )
                extracted = self._extract(reader, handle)
        except UnreadableObjectFile as exc:
            self._skip_file(path, exc.reason)
            return False
        except Exception as exc:
            logger.exception("object_file_parse_failed", file=str(path))
            self._skip_file(path, str(exc) or type(exc).__name__)
            return False

        self.progress.emit(ProgressEvent.SYMBOL_PASS, file=str(path), symbols=len(extracted))
        self._ingest_symbols(path, extracted)

        self.progress.emit(ProgressEvent.LINK_PASS, file=str(path))
        self._link_references(extracted)

        self.summary.files_processed += 1
        return True

    def resolve_pending(self) -> None:
        """Replay every deferred reference against the complete alias index."""
        graph = self.graph
        for source_alias, target_alias in self.context.pending.drain():
            if graph.link_edge_exists_by_alias(source_alias, target_alias):
                continue
            if graph.add_edge_by_alias(source_alias, target_alias, EdgeType.LINK):
                self.summary.links_resolved_globally += 1
            else:
                self.summary.references_dropped += 1
                logger.debug("reference_dropped", source=source_alias, target=target_alias)

    # ------------------------------------------------------------------
    # Per-file passes
    # ------------------------------------------------------------------

    def _extract(self, reader: BaseObjectReader, handle: ObjectHandle) -> list[_ExtractedSymbol]:
        extracted: list[_ExtractedSymbol] = []
        for symbol in reader.symbols(handle):
            extracted.append(
                _ExtractedSymbol(
                    symbol=symbol,
                    node_id=reader.symbol_id(handle, symbol),
                    display_name=demangle(symbol.name),
                    references=list(reader.references(handle, symbol)),
                )
            )
        return extracted

    def _ingest_symbols(self, path: pathlib.Path, extracted: list[_ExtractedSymbol]) -> None:
        graph = self.graph
        file_id = str(path)
        for item in extracted:
            if item.node_id is None:
                self.summary.symbols_skipped += 1
                logger.warning(
                    "symbol_id_failed",
                    file=file_id,
                    symbol=item.symbol.name,
                    section_index=item.symbol.section_index,
                )
                continue

            graph.add_node(item.node_id, item.symbol.type, item.display_name, item.symbol.name)
            if graph.contains_edge_exists(file_id, item.node_id):
                continue
            if not graph.add_edge(file_id, item.node_id, EdgeType.CONTAINS):
                raise MissingContainerNode(file_id, item.node_id)

    def _link_references(self, extracted: list[_ExtractedSymbol]) -> None:
        graph = self.graph
        pending = self.context.pending
        for item in extracted:
            source_alias = item.symbol.name
            if item.node_id is None or not source_alias:
                continue
            for relocation in item.references:
                target_alias = relocation.target_name
                if graph.link_edge_exists_by_alias(source_alias, target_alias):
                    continue
                if graph.add_edge_by_alias(source_alias, target_alias, EdgeType.LINK):
                    self.summary.links_resolved_inline += 1
                elif pending.add(source_alias, target_alias):
                    self.summary.references_deferred += 1

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _skip_file(self, path: pathlib.Path, reason: str) -> None:
        self.summary.files_invalid += 1
        self.progress.emit(ProgressEvent.FILE_INVALID, file=str(path), reason=reason)

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            logger.warning("run_cancelled", processed=self.summary.files_processed)
            raise RunCancelled("Run cancelled before all object files were processed.")

    def _purge(self, writer: StreamingFactWriter) -> None:
        self.graph.purge(writer)
        self.summary.purges += 1

    def _serialize(self, writer: Optional[StreamingFactWriter]) -> None:
        if writer is None:
            write_fact_file(self.output_path, self.graph)
            return
        self._purge(writer)
        writer.close()

    def _finish(self) -> None:
        self.summary.state = self.state
        self.summary.nodes = self.graph.node_count
        self.summary.edges = self.graph.edge_count
        self.context.teardown()
