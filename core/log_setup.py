"""Centralized logging setup — file + optional console output.

Each launch creates a new timestamped log file in ``logs/`` (e.g.
``logs/myclaw_2026-02-19_15-30-00.log``). A ``latest.log`` symlink
always points to the current session's log. Old logs beyond
``_MAX_LOG_FILES`` are automatically cleaned up.

Includes a RedactingFilter that strips API keys, passwords, and other
secrets from log messages before they reach disk, and an in-memory
LogBuffer that keeps the most recent records for the owner's
``gateway logs`` action.
"""

from __future__ import annotations

import logging
import os
import re
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

_LOG_DIR = Path("logs")
_MAX_LOG_FILES = 10
_LOG_BUFFER_SIZE = 500
_FMT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"

_configured = False

_REDACT_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(api[_-]?key|token|secret|password|passwd|authorization)\s*[:=]\s*\S+", re.I),
    re.compile(r"(sk-[a-zA-Z0-9\-_]{20,})"),
    re.compile(r"(AIza[0-9A-Za-z\-_]{30,})"),
    re.compile(r"(Bearer\s+[a-zA-Z0-9._\-+/=]+)", re.I),
]

_REDACTED = "[REDACTED]"


def redact(text: str) -> str:
    """Apply every redaction pattern to ``text``."""
    for pattern in _REDACT_PATTERNS:
        text = pattern.sub(_REDACTED, text)
    return text


class RedactingFilter(logging.Filter):
    """Strip sensitive patterns from log records before output."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if record.args and isinstance(record.args, tuple):
            new_args: list[object] = []
            for arg in record.args:
                if isinstance(arg, str):
                    arg = redact(arg)
                new_args.append(arg)
            record.args = tuple(new_args)
        return True


@dataclass
class LogEntry:
    ts: str
    level: str
    message: str


class LogBuffer(logging.Handler):
    """Ring buffer of the most recent formatted records."""

    def __init__(self, capacity: int = _LOG_BUFFER_SIZE) -> None:
        super().__init__(level=logging.INFO)
        self._entries: deque[LogEntry] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)
        self._entries.append(
            LogEntry(
                ts=datetime.fromtimestamp(record.created).isoformat(timespec="seconds"),
                level=record.levelname.lower(),
                message=message,
            )
        )

    def __len__(self) -> int:
        return len(self._entries)

    def tail(self, lines: int = 50, level: str = "all") -> list[LogEntry]:
        """Return the last ``lines`` entries, optionally filtered by level."""
        entries = list(self._entries)
        if level != "all":
            entries = [e for e in entries if e.level == level]
        return entries[-lines:] if lines > 0 else []


log_buffer = LogBuffer()


def _cleanup_old_logs() -> None:
    """Remove oldest log files when count exceeds _MAX_LOG_FILES."""
    log_files = sorted(
        (f for f in _LOG_DIR.iterdir() if f.name.startswith("myclaw_") and f.suffix == ".log"),
        key=lambda f: f.stat().st_mtime,
    )
    while len(log_files) > _MAX_LOG_FILES:
        oldest = log_files.pop(0)
        oldest.unlink(missing_ok=True)


def setup_logging(*, debug: bool = False) -> None:
    """Configure root logger with a timestamped file handler and console.

    Safe to call multiple times — subsequent calls are no-ops.
    """
    global _configured
    if _configured:
        return
    _configured = True

    _LOG_DIR.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_file = _LOG_DIR / f"myclaw_{timestamp}.log"

    latest_link = _LOG_DIR / "latest.log"
    try:
        if latest_link.is_symlink() or latest_link.exists():
            latest_link.unlink()
        os.symlink(log_file.name, latest_link)
    except OSError:
        pass  # Symlinks may not work on all platforms

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    redact_filter = RedactingFilter()
    fmt = logging.Formatter(_FMT, datefmt=_DATE_FMT)

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(fmt)
    fh.addFilter(redact_filter)
    root.addHandler(fh)

    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if debug else logging.WARNING)
    ch.setFormatter(fmt)
    ch.addFilter(redact_filter)
    root.addHandler(ch)

    log_buffer.addFilter(redact_filter)
    root.addHandler(log_buffer)

    # httpx logs every request line at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _cleanup_old_logs()
