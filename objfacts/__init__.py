"""objfacts: extracts a Tuple-Attribute fact graph from ELF object files."""

__version__ = "0.1.0"
