"""Tests for common utilities."""

import threading
from datetime import datetime, timedelta

import pytest

from deployctl.core.utils import (
    LogTail,
    atomic_write_text,
    clock_prefix,
    parse_duration,
    sanitize_filename,
    split_services,
)


class TestParseDuration:
    """Tests for parse_duration."""

    def test_units(self):
        assert parse_duration("30s") == timedelta(seconds=30)
        assert parse_duration("5m") == timedelta(minutes=5)
        assert parse_duration("2h") == timedelta(hours=2)

    def test_combination(self):
        assert parse_duration("1m30s") == timedelta(seconds=90)

    def test_bare_number_is_seconds(self):
        assert parse_duration("100") == timedelta(seconds=100)
        assert parse_duration("2.5") == timedelta(seconds=2.5)

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_duration("")
        with pytest.raises(ValueError):
            parse_duration("soon")
        with pytest.raises(ValueError):
            parse_duration("5m garbage")


class TestLogTail:
    """Tests for LogTail."""

    def test_bounded(self):
        tail = LogTail(max_lines=3)
        for i in range(10):
            tail.append(f"line {i}")
        assert tail.snapshot() == ("line 7", "line 8", "line 9")
        assert len(tail) == 3

    def test_splits_multiline(self):
        tail = LogTail()
        tail.append("first\nsecond  \n")
        assert tail.snapshot() == ("first", "second")

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            LogTail(max_lines=0)

    def test_concurrent_append(self):
        tail = LogTail(max_lines=1000)

        def writer(prefix: str) -> None:
            for i in range(100):
                tail.append(f"{prefix}-{i}")

        threads = [threading.Thread(target=writer, args=(str(n),)) for n in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(tail) == 500


class TestAtomicWrite:
    """Tests for atomic_write_text."""

    def test_writes_and_replaces(self, tmp_path):
        target = tmp_path / "nested" / "state.json"
        atomic_write_text(target, "one")
        atomic_write_text(target, "two")
        assert target.read_text() == "two"
        assert [p.name for p in target.parent.iterdir()] == ["state.json"]


class TestMisc:
    """Tests for small helpers."""

    def test_clock_prefix(self):
        assert clock_prefix(datetime(2024, 1, 2, 3, 4, 5)) == "[03:04:05]"

    def test_sanitize_filename(self):
        assert sanitize_filename("auth-service") == "auth-service"
        assert sanitize_filename("a/b c") == "a_b_c"
        assert sanitize_filename("..") == "unnamed"

    def test_split_services(self):
        assert split_services("auth, chat,,auth ,") == ["auth", "chat"]
