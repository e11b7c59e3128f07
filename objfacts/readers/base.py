"""Abstract base class for all binary object readers.

A reader turns one object file into symbol and relocation records.  It has
no knowledge of other files or of the fact graph; the resolution driver
combines its output across the whole input set.
"""

from __future__ import annotations

import abc
import pathlib
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from objfacts.models.graph import NodeType


@dataclass(frozen=True)
class SymbolRecord:
    """A defined function or data symbol.

    Attributes:
        name: Raw (mangled) symbol name.
        address: Offset of the symbol inside its section.
        size: Size of the symbol in bytes.
        type: ``NodeType.FUNCTION`` or ``NodeType.OBJECT``.
        section_index: Index of the section holding the symbol.
    """

    name: str
    address: int
    size: int
    type: NodeType
    section_index: int

    def owns(self, offset: int) -> bool:
        """Return ``True`` if a relocation at *offset* lies inside this symbol.

        The range is ``[address, address + size)``; zero-size symbols own
        nothing.
        """
        return self.address <= offset < self.address + self.size


@dataclass(frozen=True)
class RelocationRecord:
    """A relocation entry, used as evidence of a reference.

    Attributes:
        offset: Offset of the patched location inside the target section.
        target_name: Raw name of the referenced symbol.
    """

    offset: int
    target_name: str


class ObjectHandle(abc.ABC):
    """An opened object file.  Always close it, preferably via ``with``."""

    def __init__(self, path: pathlib.Path) -> None:
        self.path = path

    @property
    @abc.abstractmethod
    def bits(self) -> int:
        """Word size of the object file (32 or 64)."""

    @property
    @abc.abstractmethod
    def little_endian(self) -> bool:
        """``True`` for little-endian encodings."""

    @abc.abstractmethod
    def close(self) -> None:
        """Release the underlying file."""

    def __enter__(self) -> ObjectHandle:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class BaseObjectReader(abc.ABC):
    """Contract that every object-file reader must fulfil.

    Subclasses are responsible for:

    1. Opening a file and rejecting anything that is not in their format.
    2. Surfacing defined function/object symbols.
    3. Locating relocation sections and listing their entries.
    """

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def load(self, path: pathlib.Path) -> ObjectHandle:
        """Open *path*.

        Raises:
            UnreadableObjectFile: If the file is absent or unparseable.
                Nothing is left open in that case.
        """

    @abc.abstractmethod
    def symbols(self, handle: ObjectHandle) -> Iterator[SymbolRecord]:
        """Yield every defined function/object symbol of *handle*."""

    @abc.abstractmethod
    def section_name(self, handle: ObjectHandle, section_index: int) -> Optional[str]:
        """Return the name of a section, or ``None`` if the index is invalid."""

    @abc.abstractmethod
    def relocation_section_for(self, handle: ObjectHandle, section_index: int) -> Optional[int]:
        """Return the index of the relocation section applying to *section_index*."""

    @abc.abstractmethod
    def relocations(self, handle: ObjectHandle, section_index: int) -> Iterator[RelocationRecord]:
        """Yield the named entries of the relocation section *section_index*."""

    # ------------------------------------------------------------------
    # Helpers available to all subclasses
    # ------------------------------------------------------------------

    def symbol_id(self, handle: ObjectHandle, symbol: SymbolRecord) -> Optional[str]:
        """Build the unique node id ``<path>[<section>+0x<offset>]``.

        Returns:
            The id, or ``None`` when the symbol's section does not exist.
        """
        section = self.section_name(handle, symbol.section_index)
        if section is None:
            return None
        return f"{handle.path}[{section}+0x{symbol.address:x}]"

    def references(self, handle: ObjectHandle, symbol: SymbolRecord) -> Iterator[RelocationRecord]:
        """Yield the relocations that fall inside *symbol*'s address range."""
        reloc_section = self.relocation_section_for(handle, symbol.section_index)
        if reloc_section is None:
            return
        for relocation in self.relocations(handle, reloc_section):
            if symbol.owns(relocation.offset):
                yield relocation
