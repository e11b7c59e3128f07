"""Tests for object-file discovery, explicit inputs and exclusions."""

import pytest

from objfacts.core.crawler import (
    ObjectFileCrawler,
    apply_exclusions,
    dedupe_paths,
    register_input_files,
    resolve_input_files,
)
from objfacts.core.progress import ProgressEvent
from objfacts.errors import InputFileNotFound
from objfacts.models.graph import EdgeType, NodeType


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "project"
    (root / "src" / "net").mkdir(parents=True)
    (root / ".git").mkdir()
    (root / "src" / "main.o").write_bytes(b"")
    (root / "src" / "util.O").write_bytes(b"")
    (root / "src" / "main.c").write_text("int main(void) { return 0; }\n")
    (root / "src" / "net" / "socket.o").write_bytes(b"")
    (root / ".git" / "stale.o").write_bytes(b"")
    (root / "top.o").write_bytes(b"")
    return root.resolve()


class TestCrawler:
    def test_finds_object_files_in_walk_order(self, tree, graph):
        files = ObjectFileCrawler(tree).crawl(graph)
        assert files == [
            tree / "top.o",
            tree / "src" / "main.o",
            tree / "src" / "util.O",
            tree / "src" / "net" / "socket.o",
        ]

    def test_builds_directory_hierarchy(self, tree, graph):
        ObjectFileCrawler(tree).crawl(graph)

        src, net = str(tree / "src"), str(tree / "src" / "net")
        assert graph.get_node(str(tree)).type is NodeType.SUBSYSTEM
        assert graph.get_node(net).type is NodeType.SUBSYSTEM
        assert graph.get_node(str(tree / "top.o")).type is NodeType.FILE
        assert graph.contains_edge_exists(str(tree), src)
        assert graph.contains_edge_exists(src, net)
        assert graph.contains_edge_exists(net, str(tree / "src" / "net" / "socket.o"))

    def test_blacklisted_directories_pruned(self, tree, graph):
        files = ObjectFileCrawler(tree).crawl(graph)
        assert tree / ".git" / "stale.o" not in files
        assert not graph.has_node(str(tree / ".git"))

    def test_custom_blacklist_and_extensions(self, tree, graph):
        crawler = ObjectFileCrawler(tree, blacklist=["net/"], extensions=[".c"])
        assert crawler.crawl(graph) == [tree / "src" / "main.c"]

    def test_emits_file_found(self, tree, graph, recorded_events):
        progress, events = recorded_events
        ObjectFileCrawler(tree, progress=progress).crawl(graph)
        found = [d["file"] for e, d in events if e is ProgressEvent.FILE_FOUND]
        assert len(found) == 4


class TestInputFiles:
    def test_resolve_and_register(self, tree, graph):
        files = resolve_input_files([tree / "src" / ".." / "top.o"])
        assert files == [tree / "top.o"]
        register_input_files(graph, files)
        assert graph.get_node(str(tree / "top.o")).type is NodeType.FILE

    def test_missing_input(self, tree, recorded_events):
        progress, events = recorded_events
        with pytest.raises(InputFileNotFound) as excinfo:
            resolve_input_files([tree / "nope.o"], progress=progress)
        assert excinfo.value.exit_status == 2
        assert events[-1][0] is ProgressEvent.FILE_NOT_FOUND

    def test_dedupe_keeps_first_position(self, tree):
        a, b = tree / "top.o", tree / "src" / "main.o"
        assert dedupe_paths([a, b, a]) == [a, b]


class TestExclusions:
    def test_excluded_file_and_node_removed(self, tree, graph, recorded_events):
        progress, events = recorded_events
        files = ObjectFileCrawler(tree).crawl(graph)
        excluded = tree / "src" / "main.o"

        remaining = apply_exclusions(files, [excluded], graph, progress=progress)

        assert excluded not in remaining
        assert len(remaining) == 3
        assert not graph.has_node(str(excluded))
        assert not graph.contains_edge_exists(str(tree / "src"), str(excluded))
        assert (ProgressEvent.FILE_EXCLUDED, {"file": str(excluded)}) in events

    def test_unknown_exclusion_reported(self, tree, graph, recorded_events):
        progress, events = recorded_events
        files = ObjectFileCrawler(tree).crawl(graph)
        remaining = apply_exclusions(files, [tree / "ghost.o"], graph, progress=progress)
        assert remaining == files
        assert events[-1][0] is ProgressEvent.EXCLUSION_NOT_FOUND

    def test_relative_exclusion_matches_canonical_path(self, tree, graph, monkeypatch):
        files = ObjectFileCrawler(tree).crawl(graph)
        monkeypatch.chdir(tree / "src")
        remaining = apply_exclusions(files, ["net/socket.o"], graph)
        assert tree / "src" / "net" / "socket.o" not in remaining
