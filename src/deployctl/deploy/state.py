"""Status Store: one TaskRecord per service for the current run."""

import json
import threading
from pathlib import Path

from deployctl.core.logging import get_logger
from deployctl.core.utils import atomic_write_text, sanitize_filename
from deployctl.deploy.models import TaskRecord

logger = get_logger(__name__)


class StatusStore:
    """Shared mapping service -> TaskRecord.

    Each record has a single writer (its task runner) and any number of
    readers. A write swaps in a new immutable record, and the on-disk copy
    is replaced with write-then-rename, so a reader never sees a partial
    record in memory or on disk.
    """

    def __init__(self, state_dir: str | Path | None = None):
        """Initialize the store.

        Args:
            state_dir: Directory for per-service JSON files; None keeps
                records in memory only
        """
        self._records: dict[str, TaskRecord] = {}
        self._lock = threading.Lock()
        self._state_dir = Path(state_dir) if state_dir else None
        if self._state_dir:
            self._state_dir.mkdir(parents=True, exist_ok=True)

    @property
    def state_dir(self) -> Path | None:
        return self._state_dir

    def _path(self, service: str) -> Path:
        assert self._state_dir is not None
        return self._state_dir / f"{sanitize_filename(service)}.json"

    def put(self, record: TaskRecord) -> None:
        """Atomically replace the record for ``record.service``."""
        with self._lock:
            self._records[record.service] = record
        if self._state_dir:
            try:
                atomic_write_text(self._path(record.service), json.dumps(record.to_dict(), indent=2))
            except OSError as e:
                # The in-memory record stays authoritative for this run
                logger.warning("Failed to persist task record", service=record.service, error=str(e))

    def get(self, service: str) -> TaskRecord | None:
        with self._lock:
            return self._records.get(service)

    def snapshot(self) -> dict[str, TaskRecord]:
        """Consistent copy of all records."""
        with self._lock:
            return dict(self._records)

    def records(self) -> list[TaskRecord]:
        """All records ordered by service name."""
        return sorted(self.snapshot().values(), key=lambda r: r.service)

    def all_terminal(self) -> bool:
        snapshot = self.snapshot()
        return bool(snapshot) and all(r.is_terminal for r in snapshot.values())

    def clear(self) -> None:
        """Forget records from any previous run."""
        with self._lock:
            self._records.clear()
        if self._state_dir:
            for state_file in self._state_dir.glob("*.json"):
                state_file.unlink(missing_ok=True)
            logger.debug("Cleared status store", path=str(self._state_dir))

    def load_persisted(self) -> list[TaskRecord]:
        """Read the records left on disk by the last run."""
        if not self._state_dir:
            return []
        records: list[TaskRecord] = []
        for state_file in sorted(self._state_dir.glob("*.json")):
            try:
                with open(state_file) as f:
                    records.append(TaskRecord.from_dict(json.load(f)))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Failed to load task record {state_file}: {e}")
        return records
