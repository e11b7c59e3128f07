"""Fact graph storage and TA rendering."""

from objfacts.graph.fact_file import StreamingFactWriter, write_fact_file
from objfacts.graph.fact_graph import FactGraph, FactSink

__all__ = ["FactGraph", "FactSink", "StreamingFactWriter", "write_fact_file"]
