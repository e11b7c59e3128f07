"""Command-line interface for objfacts.

Extracts a series of facts from compiled C/C++ object files and writes
them as a Tuple-Attribute file describing the whole system.
"""

from __future__ import annotations

import argparse
import signal
import threading
from typing import Any, Optional, Sequence

import structlog

from objfacts import __version__
from objfacts.config import settings
from objfacts.core.ingestion import extract_facts
from objfacts.core.progress import ProgressReporter
from objfacts.errors import FatalError
from objfacts.logging import setup_logging

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_BAD_INPUT = 2

DESCRIPTION = (
    "Extracts a series of abstract facts from C/C++ object files to allow for a "
    "concise, detailed, and whole-system representation of a software project. "
    "Generates a Tuple-Attribute file based on the facts collected."
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="objfacts", description=DESCRIPTION)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-d",
        "--dir",
        default=".",
        help="Sets the starting directory to search for object files (default: %(default)s).",
    )
    parser.add_argument(
        "-o",
        "--out",
        default=settings.default_output,
        help="Sets the output TA file (default: %(default)s).",
    )
    parser.add_argument(
        "-s",
        "--suppress",
        action="store_true",
        help="Skip the directory search and only process files given with --input.",
    )
    parser.add_argument(
        "-i",
        "--input",
        action="append",
        default=[],
        metavar="FILE",
        help="Object file to process. May be given multiple times.",
    )
    parser.add_argument(
        "-e",
        "--exclude",
        action="append",
        default=[],
        metavar="FILE",
        help="Object file to leave out. May be given multiple times.",
    )
    parser.add_argument(
        "-l",
        "--low-memory",
        action="store_true",
        default=settings.low_memory,
        help="Periodically flush facts to the output file to bound memory use.",
    )
    parser.add_argument(
        "-f",
        "--dump-frequency",
        type=int,
        default=settings.dump_frequency,
        help="Number of files between flushes in low-memory mode (default: %(default)s).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=settings.verbose,
        help="Report progress for every file.",
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Minimum log level (default: %(default)s).",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the extractor and return the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.dump_frequency < 1:
        parser.error("--dump-frequency must be a positive integer")

    setup_logging(args.log_level, verbose=args.verbose)

    cancel_event = threading.Event()
    previous_handler = _install_interrupt_handler(cancel_event)
    try:
        summary = extract_facts(
            args.out,
            start_dir=None if args.suppress else args.dir,
            input_files=args.input,
            exclude_files=args.exclude,
            low_memory=args.low_memory,
            dump_frequency=args.dump_frequency,
            progress=ProgressReporter(verbose=args.verbose),
            cancel_event=cancel_event,
        )
    except FatalError as exc:
        logger.error("run_aborted", error=str(exc), exit_status=exc.exit_status)
        return exc.exit_status
    except NotADirectoryError as exc:
        logger.error("run_aborted", error=str(exc), exit_status=EXIT_BAD_INPUT)
        return EXIT_BAD_INPUT
    finally:
        _restore_interrupt_handler(previous_handler)

    logger.info(
        "ta_file_ready",
        path=summary.output_path,
        files=summary.files_processed,
        invalid=summary.files_invalid,
        nodes=summary.nodes,
        edges=summary.edges,
    )
    return EXIT_OK


def _install_interrupt_handler(cancel_event: threading.Event) -> Any:
    """Turn Ctrl-C into a clean stop between two object files."""
    if threading.current_thread() is not threading.main_thread():
        return None

    def _handler(signum: int, frame: Any) -> None:
        logger.warning("interrupt_received", detail="stopping after the current file")
        cancel_event.set()

    return signal.signal(signal.SIGINT, _handler)


def _restore_interrupt_handler(previous: Any) -> None:
    if previous is not None:
        signal.signal(signal.SIGINT, previous)
