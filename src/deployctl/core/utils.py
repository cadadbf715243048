"""Common utilities for deployctl."""

import os
import re
import tempfile
import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable


def parse_duration(duration_str: str) -> timedelta:
    """Parse duration string to timedelta.

    Supports formats like: 30s, 5m, 2h
    Also supports combinations: 1m30s
    A bare number is read as seconds.

    Args:
        duration_str: Duration string

    Returns:
        timedelta object

    Raises:
        ValueError: If format is invalid
    """
    if not duration_str:
        raise ValueError("Duration string cannot be empty")

    text = duration_str.strip().lower()
    if re.fullmatch(r"\d+(\.\d+)?", text):
        return timedelta(seconds=float(text))

    pattern = re.compile(r"(\d+)([smh])")
    matches = pattern.findall(text)

    if not matches or "".join(v + u for v, u in matches) != text:
        raise ValueError(f"Invalid duration format: {duration_str}")

    total = timedelta()
    units = {
        "s": "seconds",
        "m": "minutes",
        "h": "hours",
    }

    for value, unit in matches:
        total += timedelta(**{units[unit]: int(value)})

    return total


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def clock_prefix(moment: datetime | None = None) -> str:
    """Short wall-clock prefix used on captured log lines."""
    return (moment or datetime.now()).strftime("[%H:%M:%S]")


def sanitize_filename(name: str) -> str:
    """Sanitize a string for use as a filename.

    Args:
        name: String to sanitize

    Returns:
        Sanitized filename
    """
    sanitized = re.sub(r'[<>:"/\\|?*\s]', "_", name)
    sanitized = sanitized.strip(". ")
    return sanitized or "unnamed"


def atomic_write_text(path: Path, content: str) -> None:
    """Write a file so readers see either the old or the new content.

    The data goes to a temp file in the same directory which is then
    renamed over the target.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


class LogTail:
    """Thread-safe ring buffer keeping the most recent N log lines."""

    def __init__(self, max_lines: int = 200):
        if max_lines < 1:
            raise ValueError("max_lines must be at least 1")
        self._lines: deque[str] = deque(maxlen=max_lines)
        self._lock = threading.Lock()

    @property
    def max_lines(self) -> int:
        return self._lines.maxlen or 0

    def append(self, line: str) -> None:
        """Append one or more lines (embedded newlines are split)."""
        with self._lock:
            for part in line.splitlines() or [""]:
                self._lines.append(part.rstrip())

    def extend(self, lines: Iterable[str]) -> None:
        for line in lines:
            self.append(line)

    def snapshot(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._lines)

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)


def split_services(value: str) -> list[str]:
    """Split a comma separated service list, dropping blanks and duplicates."""
    seen: list[str] = []
    for part in value.split(","):
        name = part.strip()
        if name and name not in seen:
            seen.append(name)
    return seen
