"""Append-only JSONL log of sync, repair and cleanup runs.

Each line is a ``RunRecord`` holding the full result object of one run,
so operators can see what a past run changed and which items failed.
"""

import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel

from daftar.schemas.sync import RunRecord, SyncOperation

logger = logging.getLogger(__name__)


class RunLog:
    """Append-only JSONL run log.

    Usage::

        run_log = RunLog("/path/to/sync_runs.jsonl")
        run_log.log_result(SyncOperation.SYNC, report)
        entries = run_log.read_entries(since=some_datetime)
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def log(self, record: RunRecord) -> None:
        """Append a single record to the log file."""
        with self._path.open("a", encoding="utf-8") as f:
            f.write(record.model_dump_json() + "\n")
        logger.debug("Run log: %s errors=%d", record.operation, record.error_count)

    def log_result(self, operation: SyncOperation, result: BaseModel) -> RunRecord:
        """Record a finished operation's result object."""
        data = result.model_dump(mode="json")
        record = RunRecord(
            timestamp=datetime.now(UTC),
            operation=operation,
            error_count=len(data.get("error_messages", [])),
            result=data,
        )
        self.log(record)
        return record

    def read_entries(
        self,
        *,
        since: datetime | None = None,
        operation: SyncOperation | None = None,
        limit: int | None = None,
    ) -> list[RunRecord]:
        """Read records with optional filtering.

        Args:
            since: Only return records after this timestamp.
            operation: Only return records of this operation.
            limit: Maximum number of records to return (newest after filtering).

        Returns:
            List of RunRecord objects, oldest first.
        """
        if not self._path.exists():
            return []

        entries: list[RunRecord] = []
        with self._path.open(encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                record = RunRecord.model_validate_json(line)
                if since and record.timestamp <= since:
                    continue
                if operation and record.operation != operation:
                    continue
                entries.append(record)

        if limit is not None:
            entries = entries[-limit:]

        return entries
