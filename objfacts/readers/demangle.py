"""Best-effort demangling of Itanium C++ ABI symbol names."""

from __future__ import annotations

import functools

import structlog
from itanium_demangler import parse as parse_mangled

logger = structlog.get_logger(__name__)


@functools.lru_cache(maxsize=65536)
def demangle(name: str) -> str:
    """Return the human-readable form of *name*.

    Plain C names and names the demangler cannot handle come back verbatim.

    Args:
        name: Raw symbol name as stored in the symbol table.

    Returns:
        The demangled name, or *name* itself.
    """
    if not name.startswith("_Z"):
        return name
    try:
        ast = parse_mangled(name)
    except Exception:
        logger.debug("demangle_failed", symbol=name)
        return name
    if ast is None:
        return name
    return str(ast)
