"""Tests for the resolution driver."""

import threading

import pytest

from objfacts.core.progress import ProgressEvent, ProgressReporter
from objfacts.core.resolver import DriverState, PendingReferences, ResolutionDriver
from objfacts.errors import (
    AmbiguousAliasWarning,
    MissingContainerNode,
    NoObjectFiles,
    OutputSinkUnwritable,
    RunCancelled,
)
from objfacts.graph.fact_file import ATTRIBUTE_HEADER, TA_SCHEMA, TUPLE_HEADER
from objfacts.graph.fact_graph import FactGraph
from objfacts.models.graph import EdgeType, NodeType
from tests.elf_builder import Reloc, Sym, data, func, undefined


def run_driver(files, out, register, low_memory=False, **kwargs):
    graph = FactGraph(low_memory=low_memory)
    register(graph, files)
    driver = ResolutionDriver(graph, out, **kwargs)
    return driver, driver.run(files)


def ta_lines(path):
    """Return the tuple and attribute sections of a TA file as sorted lists."""
    text = path.read_text(encoding="utf-8")
    assert text.startswith(TA_SCHEMA + TUPLE_HEADER)
    tuples, attributes = text[len(TA_SCHEMA + TUPLE_HEADER):].split(ATTRIBUTE_HEADER)
    return sorted(tuples.splitlines()), sorted(attributes.splitlines())


class TestPendingReferences:
    def test_add_deduplicates(self):
        pending = PendingReferences()
        assert pending.add("f", "g") is True
        assert pending.add("f", "g") is False
        assert pending.add("f", "h") is True
        assert pending.targets("f") == ["g", "h"]
        assert len(pending) == 2

    def test_drain_empties_table(self):
        pending = PendingReferences()
        pending.add("f", "g")
        pending.add("x", "y")
        assert list(pending.drain()) == [("f", "g"), ("x", "y")]
        assert len(pending) == 0
        assert list(pending.drain()) == []


class TestCrossFileResolution:
    def test_reference_resolved_globally(self, caller_and_callee, tmp_path, register):
        a, b = caller_and_callee
        out = tmp_path / "out.ta"
        driver, summary = run_driver([a, b], out, register)

        f_id = f"{a}[.text+0x0]"
        g_id = f"{b}[.text+0x0]"
        assert driver.graph.has_edge(f_id, g_id, EdgeType.LINK)
        assert driver.graph.contains_edge_exists(str(a), f_id)
        assert driver.graph.contains_edge_exists(str(b), g_id)
        assert summary.references_deferred == 1
        assert summary.links_resolved_globally == 1
        assert summary.references_dropped == 0
        assert summary.state is DriverState.DONE

        tuples, attributes = ta_lines(out)
        assert f"reference {f_id} {g_id}" in tuples
        assert f'{f_id} {{ label = "f" }}' in attributes

    def test_reference_resolved_inline_when_target_seen_first(self, caller_and_callee, tmp_path, register):
        a, b = caller_and_callee
        driver, summary = run_driver([b, a], tmp_path / "out.ta", register)

        assert summary.links_resolved_inline == 1
        assert summary.references_deferred == 0
        assert driver.graph.has_edge(f"{a}[.text+0x0]", f"{b}[.text+0x0]", EdgeType.LINK)

    def test_unresolvable_reference_dropped(self, make_object, tmp_path, register):
        main = make_object("main.o", [func("main", size=0x20), undefined("printf")], [Reloc(".text", 0x8, "printf")])
        driver, summary = run_driver([main], tmp_path / "out.ta", register)

        assert summary.references_dropped == 1
        assert summary.state is DriverState.DONE
        assert not [e for e in driver.graph.edges if e.type is EdgeType.LINK]

    def test_intra_file_reference_and_data(self, make_object, tmp_path, register):
        obj = make_object(
            "unit.o",
            [func("_Z6helperv", value=0x0, size=0x10), func("main", value=0x10, size=0x10), data("table")],
            [Reloc(".text", 0x14, "_Z6helperv"), Reloc(".text", 0x18, "table")],
        )
        driver, summary = run_driver([obj], tmp_path / "out.ta", register)

        helper, main, table = f"{obj}[.text+0x0]", f"{obj}[.text+0x10]", f"{obj}[.data+0x0]"
        assert driver.graph.has_edge(main, helper, EdgeType.LINK)
        assert driver.graph.has_edge(main, table, EdgeType.LINK)
        assert driver.graph.get_node(table).type is NodeType.OBJECT
        assert driver.graph.get_node(helper).name.startswith("helper")
        assert summary.links_resolved_inline == 2

    def test_every_symbol_has_one_container(self, caller_and_callee, tmp_path, register):
        driver, _ = run_driver(list(caller_and_callee), tmp_path / "out.ta", register)
        graph = driver.graph
        for node in graph.nodes:
            if node.type in (NodeType.FUNCTION, NodeType.OBJECT):
                parents = [e for e in graph.edges if e.type is EdgeType.CONTAINS and e.target_id == node.id]
                assert len(parents) == 1

    def test_fallback_tags_never_emitted(self, caller_and_callee, tmp_path, register):
        out = tmp_path / "out.ta"
        run_driver(list(caller_and_callee), out, register)
        tuples, _ = ta_lines(out)
        assert not [line for line in tuples if line.startswith("$INSTANCE") and line.endswith(" cRoot")]
        assert not [line for line in tuples if line.startswith("unknown ")]


class TestFailures:
    def test_no_files(self, tmp_path, recorded_events):
        progress, events = recorded_events
        driver = ResolutionDriver(FactGraph(), tmp_path / "out.ta", progress=progress)
        with pytest.raises(NoObjectFiles):
            driver.run([])
        assert driver.state is DriverState.ABORTED
        assert (ProgressEvent.NO_FILES, {}) in events
        assert not (tmp_path / "out.ta").exists()

    def test_invalid_file_skipped(self, caller_and_callee, tmp_path, register, recorded_events):
        progress, events = recorded_events
        bogus = tmp_path / "bogus.o"
        bogus.write_bytes(b"\x7fELF but not really")
        a, b = caller_and_callee

        driver, summary = run_driver([a, bogus, b], tmp_path / "out.ta", register, progress=progress)

        assert summary.files_invalid == 1
        assert summary.files_processed == 2
        assert summary.state is DriverState.DONE
        assert [d["file"] for e, d in events if e is ProgressEvent.FILE_INVALID] == [str(bogus)]
        # The invalid file keeps its node but gains nothing under it.
        assert driver.graph.has_node(str(bogus))
        assert not [e for e in driver.graph.edges if e.source_id == str(bogus)]

    @pytest.mark.parametrize("low_memory", [False, True])
    def test_missing_container_aborts(self, caller_and_callee, tmp_path, low_memory):
        a, _ = caller_and_callee
        driver = ResolutionDriver(FactGraph(low_memory=low_memory), tmp_path / "out.ta")
        with pytest.raises(MissingContainerNode) as excinfo:
            driver.run([a])
        assert excinfo.value.container_id == str(a)
        assert driver.state is DriverState.ABORTED
        assert not (tmp_path / "out.ta").exists()

    def test_unwritable_output(self, caller_and_callee, tmp_path, register, recorded_events):
        progress, events = recorded_events
        with pytest.raises(OutputSinkUnwritable):
            run_driver(list(caller_and_callee), tmp_path / "missing" / "out.ta", register, progress=progress)
        assert ProgressEvent.OUTPUT_FAILED in [e for e, _ in events]

    def test_unwritable_output_low_memory(self, caller_and_callee, tmp_path, register):
        graph = FactGraph(low_memory=True)
        files = list(caller_and_callee)
        register(graph, files)
        driver = ResolutionDriver(graph, tmp_path / "missing" / "out.ta")
        with pytest.raises(OutputSinkUnwritable):
            driver.run(files)
        assert driver.state is DriverState.ABORTED

    @pytest.mark.parametrize("low_memory", [False, True])
    def test_cancellation(self, caller_and_callee, tmp_path, register, low_memory):
        cancel = threading.Event()
        cancel.set()
        graph = FactGraph(low_memory=low_memory)
        files = list(caller_and_callee)
        register(graph, files)
        driver = ResolutionDriver(graph, tmp_path / "out.ta", cancel_event=cancel)

        with pytest.raises(RunCancelled):
            driver.run(files)
        assert driver.state is DriverState.ABORTED
        assert driver.summary.files_processed == 0
        assert not (tmp_path / "out.ta").exists()

    def test_cancellation_after_purge_leaves_no_partial_file(self, caller_and_callee, tmp_path, register):
        cancel = threading.Event()
        progress = ProgressReporter()
        progress.subscribe(lambda event, details: cancel.set() if event is ProgressEvent.PURGE else None)
        out = tmp_path / "out.ta"

        with pytest.raises(RunCancelled):
            run_driver(
                list(caller_and_callee),
                out,
                register,
                low_memory=True,
                dump_frequency=1,
                progress=progress,
                cancel_event=cancel,
            )
        assert not out.exists()

    def test_invalid_dump_frequency(self, tmp_path):
        with pytest.raises(ValueError):
            ResolutionDriver(FactGraph(low_memory=True), tmp_path / "out.ta", dump_frequency=0)


class TestLowMemory:
    @pytest.fixture
    def project(self, make_object):
        files = []
        for index in range(5):
            symbols = [func(f"fn{index}", size=0x10), data(f"var{index}")]
            relocations = [Reloc(".text", 0x4, f"var{index}")]
            if index < 4:
                symbols.append(undefined(f"fn{index + 1}"))
                relocations.append(Reloc(".text", 0x8, f"fn{index + 1}"))
            symbols.append(undefined("puts"))
            relocations.append(Reloc(".text", 0xC, "puts"))
            files.append(make_object(f"unit{index}.o", symbols, relocations))
        return files

    @pytest.mark.parametrize("dump_frequency", [1, 2, 3, 10])
    def test_streaming_output_matches(self, project, tmp_path, register, dump_frequency):
        normal_out = tmp_path / "normal.ta"
        streamed_out = tmp_path / "streamed.ta"

        _, normal = run_driver(project, normal_out, register)
        _, streamed = run_driver(
            project, streamed_out, register, low_memory=True, dump_frequency=dump_frequency
        )

        assert ta_lines(streamed_out) == ta_lines(normal_out)
        assert streamed.nodes == normal.nodes
        assert streamed.edges == normal.edges
        assert streamed.links_resolved_globally == normal.links_resolved_globally == 4
        assert streamed.purges == len(project) // dump_frequency + 1

    def test_cross_file_links_survive_purge(self, project, tmp_path, register):
        driver, _ = run_driver(project, tmp_path / "out.ta", register, low_memory=True, dump_frequency=1)
        graph = driver.graph
        for index in range(4):
            assert graph.link_edge_exists_by_alias(f"fn{index}", f"fn{index + 1}")


class TestAmbiguousAliases:
    @pytest.fixture
    def duplicated_helper(self, make_object):
        """Two objects each defining a file-local ``helper``; the second also calls it."""
        first = make_object("first.o", [Sym("helper", section=".text", size=0x10, bind="local")])
        second = make_object(
            "second.o",
            [Sym("helper", section=".text", size=0x10, bind="local"), func("caller", value=0x10, size=0x10)],
            [Reloc(".text", 0x14, "helper")],
        )
        return first, second

    def test_ambiguity_observable_during_link_pass(self, duplicated_helper, tmp_path, register):
        first, second = duplicated_helper
        first_helper, second_helper = f"{first}[.text+0x0]", f"{second}[.text+0x0]"

        with pytest.warns(AmbiguousAliasWarning, match="helper"):
            driver, summary = run_driver([first, second], tmp_path / "out.ta", register)

        graph = driver.graph
        assert graph.ambiguous_aliases == {"helper": [first_helper, second_helper]}
        # First-inserted id wins.
        assert graph.has_edge(f"{second}[.text+0x10]", first_helper, EdgeType.LINK)
        assert not graph.has_edge(f"{second}[.text+0x10]", second_helper, EdgeType.LINK)
        assert summary.links_resolved_inline == 1
        assert summary.state is DriverState.DONE
