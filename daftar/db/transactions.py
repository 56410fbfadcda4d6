"""Queries against the ``transactions`` table used by the sync core."""

import logging
from typing import Any

from pydantic import ValidationError

from daftar.db.columns import normalize_rows
from daftar.db.engine import RowStore
from daftar.schemas.transactions import TransactionRecord

logger = logging.getLogger(__name__)

_SELECT_WITHOUT_FILES = """
SELECT id, date, type, amount, description, project_id, created_by,
       employee_id, file_url, file_type, archived
FROM transactions
WHERE file_url IS NULL OR file_url = ''
ORDER BY date DESC, id
"""

_SELECT_ATTACHMENTS = """
SELECT id, file_url, file_type FROM transactions
ORDER BY id
"""

_SELECT_FOR_SYNC = """
SELECT id, date, type, expense_type, amount, description, project_id,
       created_by, employee_id, file_url, file_type, archived
FROM transactions
ORDER BY id
"""

_SELECT_FILE_URLS = """
SELECT file_url FROM transactions
WHERE file_url IS NOT NULL AND file_url != ''
"""

_COUNT_ALL = "SELECT COUNT(*) AS count FROM transactions"

_COUNT_WITH_FILES = """
SELECT COUNT(*) AS count FROM transactions
WHERE file_url IS NOT NULL AND file_url != ''
"""

_UPDATE_FILE = """
UPDATE transactions SET file_url = :file_url, file_type = :file_type
WHERE id = :id
"""

_UPDATE_FILE_URL = "UPDATE transactions SET file_url = :file_url WHERE id = :id"


def _valid_records(rows: list[dict[str, Any]]) -> list[TransactionRecord]:
    """Validate rows one by one, skipping (and logging) the ones that fail."""
    records = []
    for row in normalize_rows(rows):
        try:
            records.append(TransactionRecord.model_validate(row))
        except ValidationError as exc:
            logger.warning(
                "Skipping transaction %s: %d invalid field(s)", row.get("id"), exc.error_count()
            )
    return records


class TransactionRepository:
    """Reads transactions and rewrites their attachment columns.

    Never inserts or deletes rows.
    """

    def __init__(self, store: RowStore) -> None:
        self._store = store

    async def list_attachment_refs(self) -> list[dict[str, Any]]:
        """Attachment columns of every row, unvalidated.

        Callers validate each row with ``AttachmentRef`` so one bad row
        does not stop a pass over the others.
        """
        return normalize_rows(await self._store.fetch_all(_SELECT_ATTACHMENTS))

    async def list_without_files(self) -> list[TransactionRecord]:
        """Transactions lacking an attachment, newest date first."""
        return _valid_records(await self._store.fetch_all(_SELECT_WITHOUT_FILES))

    async def fetch_sync_rows(self, *, all_columns: bool = False) -> list[dict[str, Any]]:
        """Raw rows for pushing to the remote store, column names normalized."""
        sql = "SELECT * FROM transactions ORDER BY id" if all_columns else _SELECT_FOR_SYNC
        return normalize_rows(await self._store.fetch_all(sql))

    async def referenced_file_urls(self) -> set[str]:
        rows = await self._store.fetch_all(_SELECT_FILE_URLS)
        return {row["file_url"] for row in normalize_rows(rows)}

    async def count(self) -> int:
        return int(await self._store.fetch_value(_COUNT_ALL) or 0)

    async def count_with_files(self) -> int:
        return int(await self._store.fetch_value(_COUNT_WITH_FILES) or 0)

    async def update_file(
        self,
        transaction_id: int,
        file_url: str | None,
        file_type: str | None,
    ) -> None:
        """Set (or clear, with None) a transaction's attachment."""
        await self._store.execute(
            _UPDATE_FILE,
            {"id": transaction_id, "file_url": file_url, "file_type": file_type},
        )
        logger.debug("Transaction %d file_url=%s", transaction_id, file_url)

    async def update_file_url(self, transaction_id: int, file_url: str) -> None:
        await self._store.execute(_UPDATE_FILE_URL, {"id": transaction_id, "file_url": file_url})
