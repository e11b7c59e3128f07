"""Pydantic v2 data models for the object-file fact graph."""

from objfacts.models.graph import (
    Edge,
    EdgeKey,
    EdgeType,
    Node,
    NodeType,
)

__all__ = [
    "NodeType",
    "EdgeType",
    "Node",
    "Edge",
    "EdgeKey",
]
