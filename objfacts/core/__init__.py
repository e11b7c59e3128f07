"""Object-file discovery, progress reporting and the resolution driver."""

from objfacts.core.crawler import ObjectFileCrawler
from objfacts.core.progress import ProgressEvent, ProgressReporter
from objfacts.core.resolver import DriverState, ResolutionDriver, RunSummary

__all__ = [
    "DriverState",
    "ObjectFileCrawler",
    "ProgressEvent",
    "ProgressReporter",
    "ResolutionDriver",
    "RunSummary",
]
