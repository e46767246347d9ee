"""Logging setup and per-run mirroring of console output to dedicated log files."""
from __future__ import annotations

import io
import logging
import re
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, TextIO

DEFAULT_LOG_DIR = Path("logs")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
PACKAGE_LOGGER = "gcorr"
MAX_TOKEN_LEN = 128

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_truncated_runs: set[Path] = set()
_truncate_lock = threading.Lock()


def sanitize_token(value: str, *, fallback: str = "unnamed") -> str:
    """Return ``value`` as a single file-system-safe path component."""
    token = _UNSAFE_CHARS.sub("_", str(value)).strip("._-")
    return token[:MAX_TOKEN_LEN] if token else fallback


def resolve_log_path(name: str, *, directory: str | Path | None = None) -> Path:
    return Path(directory or DEFAULT_LOG_DIR) / f"{sanitize_token(name, fallback='run')}.log"


def configure_logging(level: int = logging.INFO, log_file: str | Path | None = None) -> logging.Logger:
    """Attach stream (and optionally file) handlers to the package logger."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logger.handlers = []
    formatter = logging.Formatter(LOG_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="w", encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def _start_run_log(path: Path) -> None:
    """Truncate a run log the first time this process writes to it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with _truncate_lock:
        if path not in _truncated_runs:
            path.write_text("", encoding="utf-8")
            _truncated_runs.add(path)


class _MirrorStream(io.TextIOBase):
    """Write-only text stream that forwards every write to all ``targets``."""

    def __init__(self, *targets: TextIO) -> None:
        self._targets = targets

    def write(self, s: str) -> int:  # type: ignore[override]
        for target in self._targets:
            target.write(s)
            target.flush()
        return len(s)

    def flush(self) -> None:  # type: ignore[override]
        for target in self._targets:
            target.flush()

    def isatty(self) -> bool:  # type: ignore[override]
        console = self._targets[0]
        return bool(getattr(console, "isatty", lambda: False)())

    @property
    def encoding(self) -> str:  # type: ignore[override]
        return getattr(self._targets[0], "encoding", "utf-8")

    def writable(self) -> bool:  # type: ignore[override]
        return True


@contextmanager
def run_logging(name: str, *, directory: str | Path | None = None) -> Iterator[Path]:
    """Mirror stdout and ``gcorr`` log records into ``<directory>/<name>.log``."""
    path = resolve_log_path(name, directory=directory)
    _start_run_log(path)
    logger = logging.getLogger(PACKAGE_LOGGER)
    with path.open("a", encoding="utf-8") as run_log:
        record_handler = logging.StreamHandler(run_log)
        record_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(record_handler)
        console = sys.stdout
        sys.stdout = _MirrorStream(console, run_log)
        try:
            yield path
        finally:
            sys.stdout = console
            logger.removeHandler(record_handler)
