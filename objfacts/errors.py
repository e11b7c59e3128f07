"""Exception hierarchy shared by the readers, the graph and the driver.

Per-file problems (:class:`UnreadableObjectFile`) are caught at the file
boundary by the resolution driver.  Everything else derived from
:class:`FatalError` ends the run; the CLI maps each one to its own exit
status via :attr:`FatalError.exit_status`.
"""

from __future__ import annotations


class ObjFactsError(Exception):
    """Base class for every error raised by objfacts."""


class UnreadableObjectFile(ObjFactsError):
    """An object file is missing or is not a parseable ELF image.

    Attributes:
        path: The file that could not be loaded.
        reason: Short human-readable cause.
    """

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Could not read object file {path}: {reason}")
        self.path = path
        self.reason = reason


class FatalError(ObjFactsError):
    """An error that aborts the whole run."""

    exit_status: int = 1


class NoObjectFiles(FatalError):
    """The resolved set of object files is empty."""

    exit_status = 2

    def __init__(self) -> None:
        super().__init__(
            "No object files supplied to the program! "
            "The program will now exit without performing analysis."
        )


class InputFileNotFound(FatalError):
    """An explicitly supplied input file does not exist."""

    exit_status = 2

    def __init__(self, path: str) -> None:
        super().__init__(f"The file {path} does not exist! Please supply a valid file name.")
        self.path = path


class MissingContainerNode(FatalError):
    """A symbol's enclosing file node is absent from the graph.

    This means the discovery step did not register the object file before
    it was handed to the driver.
    """

    exit_status = 3

    def __init__(self, container_id: str, symbol_id: str) -> None:
        super().__init__(
            f"Error adding {symbol_id} to file {container_id}: file node does not exist!"
        )
        self.container_id = container_id
        self.symbol_id = symbol_id


class OutputSinkUnwritable(FatalError):
    """The TA output file could not be opened or appended to."""

    exit_status = 4

    def __init__(self, path: str, reason: str = "") -> None:
        message = f"TA file could not be written to {path}!"
        if reason:
            message += f" ({reason})"
        super().__init__(message)
        self.path = path


class RunCancelled(FatalError):
    """The run was cancelled externally between two object files."""

    exit_status = 130


class AmbiguousAliasWarning(UserWarning):
    """More than one node id carries the same mangled alias."""
