"""The fact graph: the single authoritative store of nodes and edges.

Nodes live in an id-keyed table and edges in a table keyed by
``(source_id, target_id, type)``; an incidence index maps every node id to
the keys of the edges touching it so that removals cascade without scanning.
A separate mangle index maps raw symbol names to the ids that carry them and
is only consulted when creating ``Link`` edges.

In low-memory mode the graph also remembers which node ids and edge keys
*ever* existed.  :meth:`FactGraph.purge` writes the resident facts to a sink
and drops them, while the existence sets, the incidence index and the mangle
index stay intact so cross-file linking and cascading removal keep working
after the flush.
"""

from __future__ import annotations

import warnings
from typing import Iterable, Optional, Protocol

import structlog

from objfacts.errors import AmbiguousAliasWarning
from objfacts.models.graph import Edge, EdgeKey, EdgeType, Node, NodeType

logger = structlog.get_logger(__name__)


class FactSink(Protocol):
    """Destination for rendered facts during a purge."""

    def write_tuples(self, text: str) -> None:
        """Append instance and relationship lines."""

    def write_attributes(self, text: str) -> None:
        """Append attribute lines."""


class FactGraph:
    """Owns every node and edge produced during one analysis run.

    Args:
        low_memory: Track existence of flushed facts so that the graph can
            be purged periodically (see :meth:`purge`).
    """

    def __init__(self, low_memory: bool = False) -> None:
        self.low_memory = low_memory
        self._nodes: dict[str, Node] = {}
        self._edges: dict[EdgeKey, Edge] = {}
        self._incident: dict[str, set[EdgeKey]] = {}
        self._mangle_index: dict[str, list[str]] = {}

        # Existence flags that outlive a purge.
        self._seen_nodes: set[str] = set()
        self._seen_edges: set[EdgeKey] = set()

        self._ambiguous: set[str] = set()
        self._warned: set[str] = set()
        self.purge_count = 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_node(self, node_id: str) -> bool:
        """Return ``True`` if *node_id* exists, resident or flushed."""
        if node_id in self._nodes:
            return True
        return self.low_memory and node_id in self._seen_nodes

    def get_node(self, node_id: str) -> Optional[Node]:
        """Return the resident node for *node_id*, if any."""
        return self._nodes.get(node_id)

    def has_edge(self, source_id: str, target_id: str, edge_type: EdgeType) -> bool:
        return self._edge_exists((source_id, target_id, edge_type))

    def ids_for_alias(self, alias: str) -> list[str]:
        """Return every node id carrying *alias*, in insertion order."""
        return list(self._mangle_index.get(alias, ()))

    def find_node_by_alias(self, alias: str) -> Optional[str]:
        """Resolve *alias* to a node id.

        When several ids share the alias the first-inserted one wins and
        the ambiguity is reported once through :class:`AmbiguousAliasWarning`.

        Returns:
            The resolved node id, or ``None`` if the alias is unknown.
        """
        ids = self._mangle_index.get(alias)
        if not ids:
            return None
        if len(ids) > 1:
            self._report_ambiguity(alias, ids)
        return ids[0]

    def contains_edge_exists(self, source_id: str, target_id: str) -> bool:
        """Return ``True`` if a ``Contains`` edge already links the two ids."""
        return self._edge_exists((source_id, target_id, EdgeType.CONTAINS))

    def link_edge_exists_by_alias(self, source_alias: str, target_alias: str) -> bool:
        """Return ``True`` if any id pair behind the two aliases is linked."""
        for source_id in self._mangle_index.get(source_alias, ()):
            for target_id in self._mangle_index.get(target_alias, ()):
                if self._edge_exists((source_id, target_id, EdgeType.LINK)):
                    return True
        return False

    @property
    def nodes(self) -> list[Node]:
        """Resident nodes in insertion order."""
        return list(self._nodes.values())

    @property
    def edges(self) -> list[Edge]:
        """Resident edges in insertion order."""
        return list(self._edges.values())

    @property
    def node_count(self) -> int:
        """Number of nodes created during the run, flushed ones included."""
        if self.low_memory:
            return len(self._seen_nodes)
        return len(self._nodes)

    @property
    def edge_count(self) -> int:
        """Number of edges created during the run, flushed ones included."""
        if self.low_memory:
            return len(self._seen_edges)
        return len(self._edges)

    @property
    def ambiguous_aliases(self) -> dict[str, list[str]]:
        """Aliases shared by more than one node id, mapped to those ids."""
        return {
            alias: list(self._mangle_index[alias])
            for alias in sorted(self._ambiguous)
            if len(self._mangle_index.get(alias, ())) > 1
        }

    # ------------------------------------------------------------------
    # Node operations
    # ------------------------------------------------------------------

    def add_node(
        self,
        node_id: str,
        node_type: NodeType,
        name: str = "",
        alias: str = "",
    ) -> bool:
        """Add a node, or attach a new alias to an existing one.

        Args:
            node_id: Unique id of the node.
            node_type: Kind of node.
            name: Demangled display name.
            alias: Raw mangled name; empty for path-derived nodes.

        Returns:
            ``True`` if the node was created, ``False`` if the id already
            existed (whether or not the alias was new for it).
        """
        if self.has_node(node_id):
            if alias and node_id not in self._mangle_index.get(alias, ()):
                node = self._nodes.get(node_id)
                if node is not None:
                    node.add_alias(alias)
                self._index_alias(alias, node_id)
                logger.warning("alias_added_to_existing_node", node=node_id, alias=alias)
            return False

        node = Node(id=node_id, type=node_type, name=name, aliases=[alias] if alias else [])
        self._nodes[node_id] = node
        if self.low_memory:
            self._seen_nodes.add(node_id)
        if alias:
            self._index_alias(alias, node_id)
        return True

    def remove_node(self, node_id: str) -> bool:
        """Delete a node and every edge incident to it.

        The node's aliases are dropped from the mangle index.  In low-memory
        mode facts that were already flushed stay in the output.

        Returns:
            ``True`` if the node existed.
        """
        if not self.has_node(node_id):
            return False

        node = self._nodes.pop(node_id, None)
        self._seen_nodes.discard(node_id)

        for key in list(self._incident.get(node_id, ())):
            self._drop_edge(key)
        self._incident.pop(node_id, None)

        if node is not None:
            aliases: Iterable[str] = list(node.aliases)
        else:
            aliases = [alias for alias, ids in self._mangle_index.items() if node_id in ids]
        for alias in aliases:
            ids = self._mangle_index.get(alias)
            if ids is None:
                continue
            if node_id in ids:
                ids.remove(node_id)
            if not ids:
                del self._mangle_index[alias]

        logger.debug("node_removed", node=node_id)
        return True

    # ------------------------------------------------------------------
    # Edge operations
    # ------------------------------------------------------------------

    def add_edge(self, source_id: str, target_id: str, edge_type: EdgeType) -> bool:
        """Add an edge between two existing node ids.

        Returns:
            ``False`` (and no mutation) if either id is absent; ``True``
            otherwise, including when the edge was already present.
        """
        if not self.has_node(source_id) or not self.has_node(target_id):
            return False
        self._insert_edge(Edge(source_id=source_id, target_id=target_id, type=edge_type))
        return True

    def add_edge_by_alias(self, source_alias: str, target_alias: str, edge_type: EdgeType) -> bool:
        """Add an edge between the nodes behind two mangled names.

        Returns:
            ``False`` if either alias is unknown.
        """
        source_id = self.find_node_by_alias(source_alias)
        if source_id is None:
            return False
        target_id = self.find_node_by_alias(target_alias)
        if target_id is None:
            return False
        self._insert_edge(Edge(source_id=source_id, target_id=target_id, type=edge_type))
        return True

    def remove_edge(self, source_id: str, target_id: str, edge_type: EdgeType) -> bool:
        """Remove one edge.

        Returns:
            ``True`` if the edge existed.
        """
        key = (source_id, target_id, edge_type)
        if not self._edge_exists(key):
            return False
        self._drop_edge(key)
        return True

    # ------------------------------------------------------------------
    # TA rendering
    # ------------------------------------------------------------------

    def serialize_instances(self) -> str:
        """Render one ``$INSTANCE`` line per resident node."""
        return "".join(node.render_instance() for node in self._nodes.values())

    def serialize_relationships(self) -> str:
        """Render one relationship line per resident edge."""
        return "".join(edge.render() for edge in self._edges.values())

    def serialize_attributes(self) -> str:
        """Render one label line per resident node with a display name."""
        return "".join(node.render_attribute() for node in self._nodes.values())

    def purge(self, sink: FactSink) -> None:
        """Flush resident facts to *sink* and discard them.

        Existence flags, the incidence index and the mangle index are kept,
        so existence queries, alias resolution and :meth:`remove_node` keep
        answering correctly afterwards.

        Raises:
            RuntimeError: If the graph was not created in low-memory mode.
        """
        if not self.low_memory:
            raise RuntimeError("purge() requires a FactGraph created with low_memory=True.")

        sink.write_tuples(self.serialize_instances() + self.serialize_relationships())
        sink.write_attributes(self.serialize_attributes())

        flushed_nodes = len(self._nodes)
        flushed_edges = len(self._edges)
        self._nodes.clear()
        self._edges.clear()
        self.purge_count += 1

        logger.debug(
            "graph_purged",
            nodes=flushed_nodes,
            edges=flushed_edges,
            aliases=len(self._mangle_index),
            purge=self.purge_count,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _edge_exists(self, key: EdgeKey) -> bool:
        if key in self._edges:
            return True
        return self.low_memory and key in self._seen_edges

    def _insert_edge(self, edge: Edge) -> None:
        key = edge.key
        if self._edge_exists(key):
            return
        self._edges[key] = edge
        self._incident.setdefault(edge.source_id, set()).add(key)
        self._incident.setdefault(edge.target_id, set()).add(key)
        if self.low_memory:
            self._seen_edges.add(key)

    def _drop_edge(self, key: EdgeKey) -> None:
        self._edges.pop(key, None)
        self._seen_edges.discard(key)
        source_id, target_id, _ = key
        for endpoint in (source_id, target_id):
            incident = self._incident.get(endpoint)
            if incident is not None:
                incident.discard(key)

    def _index_alias(self, alias: str, node_id: str) -> None:
        ids = self._mangle_index.setdefault(alias, [])
        if node_id in ids:
            return
        ids.append(node_id)
        if len(ids) > 1:
            self._ambiguous.add(alias)

    def _report_ambiguity(self, alias: str, ids: list[str]) -> None:
        if alias in self._warned:
            return
        self._warned.add(alias)
        logger.warning("ambiguous_alias", alias=alias, candidates=list(ids), chosen=ids[0])
        warnings.warn(
            f"Alias {alias!r} resolves to {len(ids)} nodes; using {ids[0]}",
            AmbiguousAliasWarning,
            stacklevel=3,
        )
