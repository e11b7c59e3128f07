"""Tuple-Attribute (TA) fact file output.

A TA file is the literal schema header followed by a ``FACT TUPLE``
section (instances, then relationships) and a ``FACT ATTRIBUTE`` section.

:func:`write_fact_file` renders a whole graph in one pass.
:class:`StreamingFactWriter` is the sink used by low-memory runs: tuple
lines are appended to the output as each purge happens, attribute lines are
spooled to a temporary file and appended after the attribute header when
the writer is closed, so both modes produce the same sections with the same
lines.
"""

from __future__ import annotations

import pathlib
import shutil
import tempfile
from typing import IO, Any, Optional

import structlog

from objfacts.errors import OutputSinkUnwritable
from objfacts.graph.fact_graph import FactGraph

logger = structlog.get_logger(__name__)

TA_SCHEMA = (
    "//Generated TA File\n"
    "//Author: Jingwei Wu & Bryan J Muscedere\n"
    "\n"
    "SCHEME TUPLE :\n"
    "cLinks\t\tcRoot\t\tcRoot\n"
    "contain\t\tcRoot\t\tcRoot\n"
    "\n"
    "$INHERIT\tcArchitecturalNds\tcRoot\n"
    "$INHERIT\tcAsgNds\t\t\tcRoot\n"
    "$INHERIT\tcSubSystem\t\tcArchitecturalNds\n"
    "$INHERIT\tcFile\t\t\tcArchitecturalNds\n"
    "$INHERIT\tcExecutable\t\tcFile\n"
    "$INHERIT\tcObjectFile\t\tcFile\n"
    "$INHERIT\tcArchiveFile\t\tcFile\n"
    "$INHERIT\tcFunction\t\tcAsgNds\n"
    "$INHERIT\tcObject\t\t\tcAsgNds\n"
    "\n"
    "SCHEME ATTRIBUTE :\n"
    "$ENTITY {\n\tx\n\ty\n\twidth\n\theight\n\tlabel\n}\n"
    "\n"
    "cRoot {\n\telision = contain\n\tcolor = (0.0 0.0 0.0)\n\tfile\n\tline\n\tname\n}\n"
    "\n"
    "cAsgNds {\n\tbeg\n\tend\n\tfile\n\tline\n\tvalue\n\tcolor = (0.0 0.0 0.0)\n}\n"
    "\n"
    "cArchitecturalNds {\n\tclass_style = 4\n\tcolor = (0.0 0.0 1.0)\n\tcolor = (0.0 0.0 0.0)\n}\n"
    "\n"
    "cSubSystem {\n\tclass_style = 4\n\tcolor = (0.0 0.0 1.0)\n}\n"
    "\n"
    "cFile {\n\tclass_style = 2\n\tcolor = (0.9 0.9 0.9)\n\tlabelcolor = (0.0 0.0 0.0)\n}\n"
    "\n"
    "cExecutable {\n\tclass_style = 4\n\tcolor = (0.8 0.9 0.9)\n\tlabelcolor = (0.0 0.0 0.0)\n}\n"
    "\n"
    "cObjectFile {\n\tclass_style = 4\n\tcolor = (0.6 0.8 0.6)\n\tlabelcolor = (0.0 0.0 0.0)\n}\n"
    "\n"
    "cArchiveFile {\n\tclass_style = 4\n\tcolor = (0.5 0.5 0.1)\n\tlabelcolor = (0.0 0.0 0.0)\n}\n"
    "\n"
    "cFunction {\n\tcolor = (1.0 0.0 0.0)\n\tlabelcolor = (0.0 0.0 0.0)\n}\n"
    "\n"
    "(cLinks) {\n\tcolor = (0.0 0.0 0.0)\n}\n"
    "\n"
)

TUPLE_HEADER = "FACT TUPLE :\n"
ATTRIBUTE_HEADER = "\nFACT ATTRIBUTE :\n"


def render_fact_file(graph: FactGraph) -> str:
    """Return the complete TA document for the resident contents of *graph*."""
    return (
        TA_SCHEMA
        + TUPLE_HEADER
        + graph.serialize_instances()
        + graph.serialize_relationships()
        + ATTRIBUTE_HEADER
        + graph.serialize_attributes()
    )


def write_fact_file(output_path: str | pathlib.Path, graph: FactGraph) -> pathlib.Path:
    """Write *graph* to *output_path* in a single pass.

    Raises:
        OutputSinkUnwritable: If the file cannot be opened or written.
    """
    path = pathlib.Path(output_path)
    try:
        with path.open("w", encoding="utf-8") as fh:
            fh.write(render_fact_file(graph))
    except OSError as exc:
        raise OutputSinkUnwritable(str(path), str(exc)) from exc

    logger.info("ta_file_written", path=str(path), nodes=graph.node_count, edges=graph.edge_count)
    return path


class StreamingFactWriter:
    """Incremental TA writer used as the purge sink in low-memory mode.

    Usage::

        with StreamingFactWriter(path) as writer:
            graph.purge(writer)
            ...
            graph.purge(writer)

    Attributes:
        path: Destination TA file.
    """

    def __init__(self, output_path: str | pathlib.Path) -> None:
        self.path = pathlib.Path(output_path)
        self._out: Optional[IO[str]] = None
        self._spool: Optional[IO[str]] = None
        self._created = False
        self.flushes = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Create the output file and write the schema and tuple header."""
        if self._out is not None:
            return
        try:
            self._out = self.path.open("w", encoding="utf-8")
            self._created = True
            self._out.write(TA_SCHEMA + TUPLE_HEADER)
            self._spool = tempfile.TemporaryFile(mode="w+", encoding="utf-8")
        except OSError as exc:
            self.discard(remove_partial=True)
            raise OutputSinkUnwritable(str(self.path), str(exc)) from exc
        logger.debug("ta_stream_opened", path=str(self.path))

    def close(self) -> None:
        """Append the attribute section and close the output file."""
        if self._out is None or self._spool is None:
            return
        try:
            self._out.write(ATTRIBUTE_HEADER)
            self._spool.seek(0)
            shutil.copyfileobj(self._spool, self._out)
            self._out.flush()
        except OSError as exc:
            raise OutputSinkUnwritable(str(self.path), str(exc)) from exc
        finally:
            self.discard()
        self._created = False
        logger.info("ta_file_written", path=str(self.path), flushes=self.flushes)

    def __enter__(self) -> StreamingFactWriter:
        self.open()
        return self

    def __exit__(self, *exc: Any) -> None:
        if exc[0] is None:
            self.close()
        else:
            self.discard(remove_partial=True)

    # ------------------------------------------------------------------
    # FactSink protocol
    # ------------------------------------------------------------------

    def write_tuples(self, text: str) -> None:
        self._write(self._out, text)
        self.flushes += 1

    def write_attributes(self, text: str) -> None:
        self._write(self._spool, text)

    def _write(self, stream: Optional[IO[str]], text: str) -> None:
        if stream is None:
            raise RuntimeError("StreamingFactWriter is not open. Call open() first.")
        try:
            stream.write(text)
        except OSError as exc:
            raise OutputSinkUnwritable(str(self.path), str(exc)) from exc

    def discard(self, remove_partial: bool = False) -> None:
        """Close the streams without writing the attribute section.

        Args:
            remove_partial: Also delete the output file this writer created,
                so an aborted run leaves no truncated TA file behind.
        """
        for stream in (self._spool, self._out):
            if stream is not None:
                stream.close()
        self._spool = None
        self._out = None

        if remove_partial and self._created:
            self._created = False
            try:
                self.path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("partial_output_not_removed", path=str(self.path), error=str(exc))
            else:
                logger.info("partial_output_removed", path=str(self.path))
