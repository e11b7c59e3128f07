"""Factory for obtaining the correct object-file reader at runtime.

Adding support for a new binary format requires only:

1. Creating a new subclass of :class:`BaseObjectReader`.
2. Registering it via :meth:`ReaderFactory.register`.
"""

from __future__ import annotations

import pathlib
from typing import Type

import structlog

from objfacts.readers.base import BaseObjectReader
from objfacts.readers.elf_reader import ElfObjectReader

logger = structlog.get_logger(__name__)

# Map file extensions to binary format identifiers.  Explicitly supplied
# files with any other suffix are probed as ELF.
EXTENSION_FORMAT_MAP: dict[str, str] = {
    ".o": "elf",
    ".obj": "elf",
}
DEFAULT_FORMAT = "elf"


def get_format_for_file(path: pathlib.Path) -> str:
    """Return the binary format identifier for *path* based on its suffix."""
    return EXTENSION_FORMAT_MAP.get(path.suffix.lower(), DEFAULT_FORMAT)


class ReaderFactory:
    """Registry-based factory that maps format names to reader classes.

    Usage::

        factory = ReaderFactory()
        factory.register("elf", ElfObjectReader)
        reader = factory.for_file(path)
    """

    def __init__(self) -> None:
        self._registry: dict[str, Type[BaseObjectReader]] = {}
        self._instances: dict[str, BaseObjectReader] = {}

    def register(self, fmt: str, reader_cls: Type[BaseObjectReader]) -> None:
        """Register a reader class for the binary format *fmt*."""
        self._registry[fmt] = reader_cls
        self._instances.pop(fmt, None)
        logger.debug("reader_registered", format=fmt, cls=reader_cls.__name__)

    def get(self, fmt: str) -> BaseObjectReader | None:
        """Return a (cached) reader instance for *fmt*, or ``None``."""
        if fmt in self._instances:
            return self._instances[fmt]

        cls = self._registry.get(fmt)
        if cls is None:
            logger.warning("no_reader_registered", format=fmt)
            return None

        instance = cls()
        self._instances[fmt] = instance
        return instance

    def for_file(self, path: pathlib.Path) -> BaseObjectReader | None:
        """Return the reader responsible for *path*."""
        return self.get(get_format_for_file(path))

    @property
    def supported_formats(self) -> list[str]:
        """Return a sorted list of registered format identifiers."""
        return sorted(self._registry.keys())


def build_default_factory() -> ReaderFactory:
    """Create a :class:`ReaderFactory` pre-loaded with the built-in readers."""
    factory = ReaderFactory()
    factory.register("elf", ElfObjectReader)
    return factory
