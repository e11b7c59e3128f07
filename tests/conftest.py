"""Shared fixtures for the objfacts test suite."""

from __future__ import annotations

import pathlib
from typing import Any, Callable

import pytest

from objfacts.core.crawler import register_input_files
from objfacts.core.progress import ProgressEvent, ProgressReporter
from objfacts.graph.fact_graph import FactGraph
from tests.elf_builder import Reloc, Sym, func, undefined, write_object


@pytest.fixture
def graph() -> FactGraph:
    return FactGraph()


@pytest.fixture
def low_memory_graph() -> FactGraph:
    return FactGraph(low_memory=True)


@pytest.fixture
def make_object(tmp_path: pathlib.Path) -> Callable[..., pathlib.Path]:
    """Write a synthetic ELF object below ``tmp_path`` and return its path."""

    def _make(name: str, symbols: list[Sym], relocations: list[Reloc] = (), **kwargs: Any) -> pathlib.Path:
        return write_object(tmp_path / name, symbols, relocations, **kwargs)

    return _make


@pytest.fixture
def caller_and_callee(make_object) -> tuple[pathlib.Path, pathlib.Path]:
    """``a.o`` defines ``f`` calling the undefined ``g``; ``b.o`` defines ``g``."""
    a = make_object(
        "a.o",
        [
            Sym("a.c", section="*ABS*", kind="file", bind="local"),
            Sym("", section=".text", kind="section", bind="local"),
            func("f", value=0x0, size=0x10),
            undefined("g"),
        ],
        [Reloc(".text", 0x5, "g")],
    )
    b = make_object("b.o", [func("g", value=0x0, size=0x10)])
    return a, b


@pytest.fixture
def register() -> Callable[[FactGraph, list[pathlib.Path]], None]:
    """Give every file a ``File`` node, as the discovery step would."""

    def _register(graph: FactGraph, files: list[pathlib.Path]) -> None:
        register_input_files(graph, files)

    return _register


@pytest.fixture
def recorded_events() -> tuple[ProgressReporter, list[tuple[ProgressEvent, dict[str, Any]]]]:
    """A progress reporter whose listener records every emitted event."""
    events: list[tuple[ProgressEvent, dict[str, Any]]] = []
    reporter = ProgressReporter()
    reporter.subscribe(lambda event, details: events.append((event, details)))
    return reporter, events
