"""Application-wide configuration and settings.

Uses ``pydantic-settings`` so values can be overridden via environment
variables prefixed with ``OBJFACTS_``.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Global settings for the objfacts extractor.

    Attributes:
        app_name: Display name of the application.
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        default_output: TA file written when no ``--out`` is given.
        object_extensions: File suffixes treated as object files.
        default_blacklist: Directory/file patterns to skip during discovery.
        low_memory: Stream the graph to disk periodically instead of
            holding every fact until the end of the run.
        dump_frequency: Number of object files between two purges in
            low-memory mode.
        verbose: Emit per-file progress events at INFO level.
    """

    app_name: str = "objfacts"
    log_level: str = "INFO"
    default_output: str = "./out.ta"
    object_extensions: list[str] = [".o"]
    default_blacklist: list[str] = [
        ".git",
        "__pycache__",
        "venv",
        ".venv",
        ".tox",
        ".mypy_cache",
        ".pytest_cache",
        ".idea",
        ".vscode",
    ]

    # Bounded-memory mode
    low_memory: bool = False
    dump_frequency: int = 100

    verbose: bool = False

    model_config = {"env_prefix": "OBJFACTS_", "env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
