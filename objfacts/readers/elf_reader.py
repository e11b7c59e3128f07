"""ELF object-file reader built on ``pyelftools``.

Handles 32- and 64-bit objects of either endianness.  Symbols come from
``SHT_SYMTAB`` sections; a code/data section's relocations come from the
section named ``.rel<name>`` or ``.rela<name>``.
"""

from __future__ import annotations

import pathlib
from typing import BinaryIO, Iterator, Optional

import structlog
from elftools.elf.elffile import ELFFile
from elftools.elf.enums import ENUM_ST_SHNDX
from elftools.elf.relocation import RelocationSection
from elftools.elf.sections import SymbolTableSection

from objfacts.errors import UnreadableObjectFile
from objfacts.models.graph import NodeType
from objfacts.readers.base import BaseObjectReader, ObjectHandle, RelocationRecord, SymbolRecord

logger = structlog.get_logger(__name__)

# Relocation section prefixes: plain entries and addend-carrying entries.
RELOCATION_PREFIXES: tuple[str, ...] = (".rel", ".rela")

_SYMBOL_TYPES: dict[str, NodeType] = {
    "STT_FUNC": NodeType.FUNCTION,
    "STT_OBJECT": NodeType.OBJECT,
}


class ElfObjectHandle(ObjectHandle):
    """An opened ELF file together with its parsed section table."""

    def __init__(self, path: pathlib.Path, stream: BinaryIO, elf: ELFFile) -> None:
        super().__init__(path)
        self._stream = stream
        self.elf = elf
        self.section_names: list[str] = [section.name for section in elf.iter_sections()]
        self.relocation_cache: dict[int, list[RelocationRecord]] = {}

    @property
    def bits(self) -> int:
        return self.elf.elfclass

    @property
    def little_endian(self) -> bool:
        return self.elf.little_endian

    def close(self) -> None:
        self._stream.close()


class ElfObjectReader(BaseObjectReader):
    """Extracts defined symbols and their relocations from ELF objects."""

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load(self, path: pathlib.Path) -> ElfObjectHandle:
        path = pathlib.Path(path)
        try:
            stream = path.open("rb")
        except OSError as exc:
            raise UnreadableObjectFile(str(path), exc.strerror or str(exc)) from exc

        try:
            elf = ELFFile(stream)
            handle = ElfObjectHandle(path, stream, elf)
        except Exception as exc:
            # pyelftools reports truncated or foreign files through several
            # unrelated exception types.
            stream.close()
            raise UnreadableObjectFile(str(path), str(exc) or type(exc).__name__) from exc

        logger.debug(
            "elf_loaded",
            file=str(path),
            bits=handle.bits,
            little_endian=handle.little_endian,
            sections=len(handle.section_names),
        )
        return handle

    def symbols(self, handle: ObjectHandle) -> Iterator[SymbolRecord]:
        elf = self._elf(handle)
        for section in elf.iter_sections():
            if not isinstance(section, SymbolTableSection) or section["sh_type"] != "SHT_SYMTAB":
                continue
            for symbol in section.iter_symbols():
                shndx = symbol["st_shndx"]
                if shndx == "SHN_UNDEF":
                    continue
                node_type = _SYMBOL_TYPES.get(symbol["st_info"]["type"])
                if node_type is None:
                    continue
                yield SymbolRecord(
                    name=symbol.name,
                    address=symbol["st_value"],
                    size=symbol["st_size"],
                    type=node_type,
                    section_index=_section_index(shndx),
                )

    def section_name(self, handle: ObjectHandle, section_index: int) -> Optional[str]:
        names = self._handle(handle).section_names
        if 0 <= section_index < len(names):
            return names[section_index]
        return None

    def relocation_section_for(self, handle: ObjectHandle, section_index: int) -> Optional[int]:
        target = self.section_name(handle, section_index)
        if not target:
            return None
        candidates = {prefix + target for prefix in RELOCATION_PREFIXES}
        for index, name in enumerate(self._handle(handle).section_names):
            if name in candidates:
                return index
        return None

    def relocations(self, handle: ObjectHandle, section_index: int) -> Iterator[RelocationRecord]:
        elf_handle = self._handle(handle)
        cached = elf_handle.relocation_cache.get(section_index)
        if cached is None:
            cached = self._read_relocations(elf_handle, section_index)
            elf_handle.relocation_cache[section_index] = cached
        yield from cached

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _read_relocations(self, handle: ElfObjectHandle, section_index: int) -> list[RelocationRecord]:
        if not 0 <= section_index < len(handle.section_names):
            return []
        section = handle.elf.get_section(section_index)
        if not isinstance(section, RelocationSection):
            return []

        symtab = None
        link = section["sh_link"]
        if 0 <= link < len(handle.section_names):
            linked = handle.elf.get_section(link)
            if isinstance(linked, SymbolTableSection):
                symtab = linked

        records: list[RelocationRecord] = []
        for relocation in section.iter_relocations():
            name = ""
            symbol_index = relocation["r_info_sym"]
            if symtab is not None and symbol_index < symtab.num_symbols():
                name = symtab.get_symbol(symbol_index).name
            if not name:
                continue
            records.append(RelocationRecord(offset=relocation["r_offset"], target_name=name))
        return records

    @staticmethod
    def _handle(handle: ObjectHandle) -> ElfObjectHandle:
        if not isinstance(handle, ElfObjectHandle):
            raise TypeError(f"Expected an ElfObjectHandle, got {type(handle).__name__}")
        return handle

    def _elf(self, handle: ObjectHandle) -> ELFFile:
        return self._handle(handle).elf


def _section_index(shndx: int | str) -> int:
    """Map a symbol's ``st_shndx`` to a number.

    pyelftools reports reserved indices (``SHN_ABS``, ``SHN_COMMON``...) by
    name; they never name a real section.
    """
    if isinstance(shndx, int):
        return shndx
    return ENUM_ST_SHNDX.get(shndx, -1)
