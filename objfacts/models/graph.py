"""Graph data models for nodes and edges of the fact graph.

Nodes and edges never hold references to each other: an edge names its
endpoints by node id, and the :class:`~objfacts.graph.fact_graph.FactGraph`
owns every object in id-keyed tables.
"""

from __future__ import annotations

import enum

from pydantic import BaseModel, ConfigDict, Field


class NodeType(str, enum.Enum):
    """Kinds of graph vertices.

    ``ROOT`` is the explicit unmapped variant; it is never produced from
    object-file input.
    """

    FILE = "File"
    OBJECT = "Object"
    FUNCTION = "Function"
    SUBSYSTEM = "Subsystem"
    ROOT = "Root"

    @property
    def ta_tag(self) -> str:
        """TA schema class name for this node type."""
        return NODE_TAGS[self]


class EdgeType(str, enum.Enum):
    """Kinds of graph relationships.

    ``UNKNOWN`` is the explicit unmapped variant.
    """

    CONTAINS = "Contains"
    LINK = "Link"
    UNKNOWN = "Unknown"

    @property
    def ta_tag(self) -> str:
        """TA relation name for this edge type."""
        return EDGE_TAGS[self]


NODE_TAGS: dict[NodeType, str] = {
    NodeType.FILE: "cObjectFile",
    NodeType.FUNCTION: "cFunction",
    NodeType.OBJECT: "cObject",
    NodeType.SUBSYSTEM: "cSubSystem",
    NodeType.ROOT: "cRoot",
}

EDGE_TAGS: dict[EdgeType, str] = {
    EdgeType.CONTAINS: "contain",
    EdgeType.LINK: "reference",
    EdgeType.UNKNOWN: "unknown",
}

# Tags that only the unmapped variants render to.
FALLBACK_NODE_TAG = NODE_TAGS[NodeType.ROOT]
FALLBACK_EDGE_TAG = EDGE_TAGS[EdgeType.UNKNOWN]

EdgeKey = tuple[str, str, EdgeType]


class Node(BaseModel):
    """A single vertex of the fact graph.

    Attributes:
        id: Globally unique identifier.  For symbols this is
            ``<object path>[<section>+0x<offset>]``; for files and
            directories it is the path itself.
        type: The kind of entity this node represents.
        name: Demangled display name (empty for path-derived nodes).
        aliases: Mangled symbol names that resolve to this node, in the
            order they were first observed.
    """

    id: str = Field(..., min_length=1, description="Unique node identifier.")
    type: NodeType = Field(..., description="Kind of entity.")
    name: str = Field("", description="Demangled display name.")
    aliases: list[str] = Field(default_factory=list, description="Mangled names.")

    def has_alias(self, alias: str) -> bool:
        """Return ``True`` if *alias* already resolves to this node."""
        return alias in self.aliases

    def add_alias(self, alias: str) -> bool:
        """Append *alias* unless it is already known.

        Returns:
            ``True`` if the alias was new.
        """
        if not alias or alias in self.aliases:
            return False
        self.aliases.append(alias)
        return True

    def render_instance(self) -> str:
        return f"$INSTANCE {self.id} {self.type.ta_tag}\n"

    def render_attribute(self) -> str:
        """Return the attribute line, or an empty string when unnamed."""
        if not self.name:
            return ""
        return f'{self.id} {{ label = "{self.name}" }}\n'


class Edge(BaseModel):
    """A directed relationship between two node ids.

    Attributes:
        source_id: The ``id`` of the originating node.
        target_id: The ``id`` of the destination node.
        type: The kind of relationship this edge represents.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(..., description="Originating node id.")
    target_id: str = Field(..., description="Destination node id.")
    type: EdgeType = Field(..., description="Relationship type.")

    @property
    def key(self) -> EdgeKey:
        """Deduplication key ``(source_id, target_id, type)``."""
        return (self.source_id, self.target_id, self.type)

    def render(self) -> str:
        return f"{self.type.ta_tag} {self.source_id} {self.target_id}\n"
