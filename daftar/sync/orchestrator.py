"""Push local uploads and database rows to the Supabase remote store.

Three entry points share the same building blocks:

- ``sync_all_data``: staged run (scan → upload files → sync transactions
  → sync metadata) reporting progress in a ``SyncProgressReport``.
- ``migrate_to_supabase``: files plus every transaction column, in
  larger batches.
- ``sync_data_only``: rows only, counted per table.

Everything runs sequentially on the event loop. Every upsert is keyed on
the primary key, so re-running converges instead of duplicating rows.
Nothing is rolled back: writes that succeeded before a failure stay.
"""

import logging
import time
from pathlib import Path
from typing import Any

import httpx

from daftar.db.columns import normalize_rows
from daftar.db.engine import RowStore
from daftar.db.transactions import TransactionRepository
from daftar.integrations.supabase import SupabaseClient
from daftar.schemas.files import FileDescriptor
from daftar.schemas.sync import (
    DataSyncResult,
    MigrationResult,
    SyncProgressReport,
    SyncStage,
    SyncStatus,
    TableSyncCount,
)
from daftar.storage.scanner import UPLOAD_EXTENSIONS, scan
from daftar.sync.errors import safe_error_message

logger = logging.getLogger(__name__)

DEFAULT_CREATED_BY = 1

REMOTE_UNAVAILABLE = "Remote store client is not configured (check SUPABASE_URL and keys)"

# (table, query, quiet when empty). Users never leave with password columns.
METADATA_TABLES: list[tuple[str, str, bool]] = [
    ("projects", "SELECT * FROM projects ORDER BY id", False),
    (
        "users",
        "SELECT id, username, name, email, role, permissions, active FROM users ORDER BY id",
        False,
    ),
    ("expense_types", "SELECT * FROM expense_types ORDER BY id", False),
    ("employees", "SELECT * FROM employees ORDER BY id", True),
    ("settings", "SELECT * FROM settings ORDER BY id", False),
]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def prepare_transaction_row(row: dict[str, Any]) -> dict[str, Any]:
    """Fill the defaults the remote ``transactions`` table requires."""
    prepared = dict(row)
    prepared["archived"] = bool(prepared.get("archived") or False)
    if prepared.get("created_by") is None:
        prepared["created_by"] = DEFAULT_CREATED_BY
    return prepared


def batched(rows: list[dict[str, Any]], size: int) -> list[list[dict[str, Any]]]:
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    return [rows[i : i + size] for i in range(0, len(rows), size)]


class LocalToRemoteSync:
    """Coordinates scanner, source database and remote store.

    Usage::

        async with RowStore(DATABASE_URL) as store, SupabaseClient(url, key) as remote:
            sync = LocalToRemoteSync(store, remote, "./uploads")
            report = await sync.sync_all_data()
    """

    def __init__(
        self,
        store: RowStore,
        remote: SupabaseClient | None,
        uploads_dir: str | Path,
        *,
        bucket: str = "files",
        bucket_size_limit_bytes: int = 100 * 1024 * 1024,
        batch_size: int = 50,
        migration_batch_size: int = 100,
    ) -> None:
        self._store = store
        self._transactions = TransactionRepository(store)
        self._remote = remote
        self._uploads_dir = Path(uploads_dir)
        self._bucket = bucket
        self._bucket_size_limit = bucket_size_limit_bytes
        self._batch_size = batch_size
        self._migration_batch_size = migration_batch_size
        self.progress = SyncProgressReport()

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    async def prepare_bucket(self) -> bool:
        ok = await self._remote.ensure_bucket(
            self._bucket, public=True, size_limit_bytes=self._bucket_size_limit
        )
        if not ok:
            logger.warning("Bucket %s could not be verified; uploads may fail", self._bucket)
        return ok

    async def upload_file(self, file: FileDescriptor) -> str | None:
        """Upload one file and link it to its transaction when the id is known.

        Returns the public URL, or None when the upload was rejected.
        Local read errors and database errors propagate.
        """
        data = Path(file.absolute_path).read_bytes()
        key = f"{_now_ms()}_{file.associated_entity_id or 0}_{file.file_name}"
        url = await self._remote.upload_blob(self._bucket, key, data, file.mime_type)
        if url is None:
            return None

        if file.associated_entity_id:
            await self._transactions.update_file(file.associated_entity_id, url, file.mime_type)
        logger.info("Uploaded %s -> %s", file.file_name, key)
        return url

    async def _upsert_in_batches(
        self, table: str, rows: list[dict[str, Any]], size: int
    ) -> list[tuple[int, int, str | None]]:
        """Upsert ``rows`` batch by batch; a failed batch does not stop the rest.

        Returns ``(batch_number, batch_size, error)`` per batch.
        """
        outcomes = []
        batches = batched(rows, size)
        for number, batch in enumerate(batches, start=1):
            error = await self._remote.upsert_rows(table, batch, on_conflict="id")
            if error is None:
                logger.info("%s batch %d/%d synced (%d rows)", table, number, len(batches), len(batch))
            else:
                logger.warning("%s batch %d/%d failed: %s", table, number, len(batches), error)
            outcomes.append((number, len(batch), error))
        return outcomes

    async def _sync_table(self, table: str, sql: str) -> tuple[TableSyncCount, str | None]:
        """Copy one auxiliary table in a single upsert. Empty tables are skipped."""
        count = TableSyncCount()
        try:
            rows = normalize_rows(await self._store.fetch_all(sql))
        except Exception as exc:
            logger.exception("Reading %s failed", table)
            return count, f"Reading {table} failed: {safe_error_message(exc)}"

        count.total = len(rows)
        if not rows:
            return count, None

        error = await self._remote.upsert_rows(table, rows, on_conflict="id")
        if error is not None:
            return count, f"Syncing {table} failed: {error}"
        count.synced = len(rows)
        return count, None

    # ------------------------------------------------------------------
    # sync_all_data
    # ------------------------------------------------------------------

    async def sync_all_data(self) -> SyncProgressReport:
        """Run every stage in order and return the run's report.

        The report is also exposed as ``self.progress`` while running.
        """
        report = SyncProgressReport()
        self.progress = report

        if self._remote is None:
            report.stage = SyncStage.ERROR
            report.error_messages.append(REMOTE_UNAVAILABLE)
            return report

        try:
            report.stage = SyncStage.SCANNING
            files = await self._scan_stage(report)

            report.stage = SyncStage.UPLOADING_FILES
            await self._upload_stage(report, files)

            report.stage = SyncStage.SYNCING_TRANSACTIONS
            await self._transactions_stage(report)

            report.stage = SyncStage.SYNCING_METADATA
            await self._metadata_stage(report)

            report.stage = SyncStage.COMPLETED
            logger.info(
                "Sync completed: %d/%d processed, %d error(s)",
                report.processed_count,
                report.total_count,
                len(report.error_messages),
            )
        except Exception as exc:
            logger.exception("Sync aborted during %s", report.stage)
            report.stage = SyncStage.ERROR
            report.error_messages.append(f"General error: {safe_error_message(exc)}")

        return report

    async def _scan_stage(self, report: SyncProgressReport) -> list[FileDescriptor]:
        files = scan(self._uploads_dir, UPLOAD_EXTENSIONS)
        row_count = await self._transactions.count()
        logger.info("Found %d local file(s) and %d transaction(s)", len(files), row_count)
        report.total_count = len(files) + row_count
        report.success_messages.append(f"Scanned: {len(files)} file(s), {row_count} transaction(s)")
        return files

    async def _upload_stage(self, report: SyncProgressReport, files: list[FileDescriptor]) -> None:
        if files:
            await self.prepare_bucket()
        for file in files:
            try:
                url = await self.upload_file(file)
            except Exception as exc:
                logger.exception("Error uploading %s", file.file_name)
                report.error_messages.append(
                    f"Error uploading {file.file_name}: {safe_error_message(exc)}"
                )
                continue
            if url is None:
                report.error_messages.append(f"Failed to upload {file.file_name}")
                continue
            report.processed_count += 1
            report.success_messages.append(f"Uploaded file: {file.file_name}")

    async def _transactions_stage(self, report: SyncProgressReport) -> None:
        rows = [prepare_transaction_row(r) for r in await self._transactions.fetch_sync_rows()]
        for number, size, error in await self._upsert_in_batches(
            "transactions", rows, self._batch_size
        ):
            if error is None:
                report.processed_count += size
                report.success_messages.append(f"Synced batch {number}: {size} transaction(s)")
            else:
                report.error_messages.append(f"Batch {number} failed: {error}")

    async def _metadata_stage(self, report: SyncProgressReport) -> None:
        for table, sql, quiet_if_empty in METADATA_TABLES:
            count, error = await self._sync_table(table, sql)
            if error is not None:
                report.error_messages.append(error)
            elif count.total or not quiet_if_empty:
                report.success_messages.append(f"Synced {count.synced} {table} row(s)")

    # ------------------------------------------------------------------
    # migrate_to_supabase
    # ------------------------------------------------------------------

    async def migrate_to_supabase(self) -> MigrationResult:
        """Upload every local file, then push all transaction columns."""
        result = MigrationResult()
        if self._remote is None:
            result.error_messages.append(REMOTE_UNAVAILABLE)
            return result

        try:
            files = scan(self._uploads_dir, UPLOAD_EXTENSIONS)
            result.total_files = len(files)
            if files:
                await self.prepare_bucket()

            for file in files:
                try:
                    url = await self.upload_file(file)
                except Exception as exc:
                    logger.exception("Error uploading %s", file.file_name)
                    result.failed_files += 1
                    result.error_messages.append(
                        f"Error uploading {file.file_name}: {safe_error_message(exc)}"
                    )
                    continue
                if url is None:
                    result.failed_files += 1
                    result.error_messages.append(f"Failed to upload {file.file_name}")
                else:
                    result.uploaded_files += 1

            rows = [
                prepare_transaction_row(r)
                for r in await self._transactions.fetch_sync_rows(all_columns=True)
            ]
            result.total_transactions = len(rows)
            for number, size, error in await self._upsert_in_batches(
                "transactions", rows, self._migration_batch_size
            ):
                if error is None:
                    result.synced_transactions += size
                else:
                    result.error_messages.append(f"Batch {number} error: {error}")

            logger.info(
                "Migration done: %d/%d files, %d/%d transactions",
                result.uploaded_files,
                result.total_files,
                result.synced_transactions,
                result.total_transactions,
            )
        except Exception as exc:
            logger.exception("Migration aborted")
            result.error_messages.append(f"General error: {safe_error_message(exc)}")

        return result

    # ------------------------------------------------------------------
    # sync_data_only
    # ------------------------------------------------------------------

    async def sync_data_only(self) -> DataSyncResult:
        """Push rows without touching files."""
        result = DataSyncResult()
        if self._remote is None:
            result.error_messages.append(REMOTE_UNAVAILABLE)
            return result

        try:
            rows = [prepare_transaction_row(r) for r in await self._transactions.fetch_sync_rows()]
            result.transactions.total = len(rows)
            for number, size, error in await self._upsert_in_batches(
                "transactions", rows, self._batch_size
            ):
                if error is None:
                    result.transactions.synced += size
                else:
                    result.error_messages.append(f"Transactions batch {number}: {error}")

            for table, sql, _ in METADATA_TABLES:
                count, error = await self._sync_table(table, sql)
                setattr(result, table, count)
                if error is not None:
                    result.error_messages.append(error)
        except Exception as exc:
            logger.exception("Data sync aborted")
            result.error_messages.append(f"General error: {safe_error_message(exc)}")

        result.success = not result.error_messages
        return result

    # ------------------------------------------------------------------
    # get_sync_status
    # ------------------------------------------------------------------

    async def get_sync_status(self) -> SyncStatus:
        status = SyncStatus(local_files=len(scan(self._uploads_dir, UPLOAD_EXTENSIONS)))
        try:
            status.local_transactions = await self._transactions.count()
        except Exception as exc:
            logger.exception("Counting local transactions failed")
            status.error_messages.append(f"Local database: {safe_error_message(exc)}")

        if self._remote is None:
            status.error_messages.append(REMOTE_UNAVAILABLE)
            return status

        try:
            status.remote_files = len(await self._remote.list_objects(self._bucket))
            status.remote_transactions = await self._remote.count_rows("transactions")
        except httpx.HTTPError as exc:
            status.error_messages.append(f"Remote store: {safe_error_message(exc)}")
        return status
