"""Binary object-file readers and the reader factory."""

from objfacts.readers.base import BaseObjectReader, ObjectHandle, RelocationRecord, SymbolRecord
from objfacts.readers.demangle import demangle
from objfacts.readers.factory import ReaderFactory, build_default_factory

__all__ = [
    "BaseObjectReader",
    "ObjectHandle",
    "ReaderFactory",
    "RelocationRecord",
    "SymbolRecord",
    "build_default_factory",
    "demangle",
]
