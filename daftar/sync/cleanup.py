"""Audit and repair attachment references on transaction rows.

- ``cleanup_database`` clears links to decommissioned storage providers
  and references to local files that no longer exist.
- ``organize_existing_files`` moves loose local files into
  ``uploads/transactions/<id>/<epoch-ms>_<name>``.
- ``get_system_status`` reports counts and disk usage without writing.

All three are idempotent: a second run finds nothing left to change.
Only the attachment columns are read, and each row is validated on its
own, so a malformed row is reported and skipped. A local reference that
resolves outside the uploads root is never followed.
"""

import asyncio
import logging
import shutil
import time
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from daftar.db.engine import RowStore
from daftar.db.transactions import TransactionRepository
from daftar.integrations.supabase import PUBLIC_OBJECT_PATH
from daftar.schemas.sync import CleanupResult, OrganizeResult, SystemStatus
from daftar.schemas.transactions import AttachmentRef
from daftar.sync.errors import safe_error_message

logger = logging.getLogger(__name__)

# Storage providers the system no longer uses
DECOMMISSIONED_PROVIDERS = ("firebasestorage.googleapis.com", "firebase")

# Path fragments that mark a URL as served by the current setup
CURRENT_URL_MARKERS = ("/uploads/", PUBLIC_OBJECT_PATH)

ORGANIZED_PREFIX = "/uploads/transactions/"

YIELD_EVERY = 50


def is_broken_link(file_url: str) -> bool:
    if any(marker in file_url for marker in DECOMMISSIONED_PROVIDERS):
        return True
    is_remote = file_url.startswith(("http://", "https://"))
    return is_remote and not any(marker in file_url for marker in CURRENT_URL_MARKERS)


def is_local_file(file_url: str) -> bool:
    return file_url.startswith("/uploads/") or not file_url.startswith("http")


def is_organized(file_url: str) -> bool:
    return ORGANIZED_PREFIX in file_url


class DatabaseCleanup:
    """Attachment audit over every transaction row.

    Usage::

        cleanup = DatabaseCleanup(row_store, "./uploads")
        result = await cleanup.cleanup_database()
    """

    def __init__(self, store: RowStore, uploads_dir: str | Path) -> None:
        self._transactions = TransactionRepository(store)
        self._uploads_dir = Path(uploads_dir)
        self._root = self._uploads_dir.resolve()

    def local_path(self, file_url: str) -> Path | None:
        """Resolve a local ``/uploads/...`` reference to a path on disk.

        Returns None when the reference escapes the uploads root
        (``../x.pdf``, ``/uploads/../../etc/passwd``).
        """
        relative = file_url.removeprefix("/uploads/").lstrip("/")
        path = (self._uploads_dir / relative).resolve()
        if not path.is_relative_to(self._root):
            return None
        return path

    # ------------------------------------------------------------------
    # cleanup_database
    # ------------------------------------------------------------------

    async def cleanup_database(self) -> CleanupResult:
        result = CleanupResult()
        try:
            rows = await self._transactions.list_attachment_refs()
        except Exception as exc:
            logger.exception("Listing transactions failed")
            result.error_messages.append(f"General cleanup error: {safe_error_message(exc)}")
            return result

        result.total_transactions = len(rows)
        logger.info("Checking %d transaction(s)", result.total_transactions)

        for row in rows:
            if not row.get("file_url"):
                continue
            result.processed_transactions += 1

            try:
                await self._check_row(row, result)
            except Exception as exc:
                logger.exception("Cleanup of transaction %s failed", row.get("id"))
                result.error_messages.append(
                    f"Error processing transaction {row.get('id')}: {safe_error_message(exc)}"
                )

            if result.processed_transactions % YIELD_EVERY == 0:
                await asyncio.sleep(0.01)

        logger.info(
            "Cleanup done: %d link(s) removed, %d valid file(s)",
            result.broken_links_removed,
            result.valid_files_found,
        )
        return result

    async def _check_row(self, row: dict[str, Any], result: CleanupResult) -> None:
        ref = AttachmentRef.model_validate(row)
        file_url = ref.file_url
        if is_broken_link(file_url):
            await self._transactions.update_file(ref.id, None, None)
            result.broken_links_removed += 1
            logger.info("Removed broken link of transaction %d", ref.id)
            return

        if not is_local_file(file_url):
            result.valid_files_found += 1
            return

        path = self.local_path(file_url)
        if path is None:
            await self._transactions.update_file(ref.id, None, None)
            result.broken_links_removed += 1
            logger.warning("Removed out-of-root reference of transaction %d: %s", ref.id, file_url)
        elif path.exists():
            result.valid_files_found += 1
            if not is_organized(file_url):
                result.organizable_files += 1
        else:
            await self._transactions.update_file(ref.id, None, None)
            result.broken_links_removed += 1
            logger.info("Removed missing-file reference of transaction %d", ref.id)

    # ------------------------------------------------------------------
    # organize_existing_files
    # ------------------------------------------------------------------

    async def organize_existing_files(self) -> OrganizeResult:
        result = OrganizeResult()
        try:
            rows = await self._transactions.list_attachment_refs()
        except Exception as exc:
            logger.exception("Listing transactions failed")
            result.error_messages.append(f"General organize error: {safe_error_message(exc)}")
            return result

        for row in rows:
            if not row.get("file_url"):
                continue
            try:
                new_url = await self._organize_row(row)
            except Exception as exc:
                logger.exception("Organizing transaction %s failed", row.get("id"))
                result.error_messages.append(
                    f"Error organizing transaction {row.get('id')}: {safe_error_message(exc)}"
                )
                continue

            if new_url is not None:
                result.organized += 1
                logger.info("Organized transaction %s: %s", row.get("id"), new_url)

        return result

    async def _organize_row(self, row: dict[str, Any]) -> str | None:
        """Move one row's loose local file into place; None when there is nothing to do."""
        ref = AttachmentRef.model_validate(row)
        file_url = ref.file_url
        if not is_local_file(file_url) or is_organized(file_url):
            return None

        old_path = self.local_path(file_url)
        if old_path is None:
            logger.warning("Not organizing transaction %d: %s is outside the uploads root", ref.id, file_url)
            return None
        if not old_path.is_file():
            return None
        return await self._move_into_place(ref.id, old_path)

    async def _move_into_place(self, transaction_id: int, old_path: Path) -> str:
        """Copy, repoint the row, then delete the original."""
        new_dir = self._uploads_dir / "transactions" / str(transaction_id)
        new_dir.mkdir(parents=True, exist_ok=True)

        new_name = f"{time.time_ns() // 1_000_000}_{old_path.name}"
        new_path = new_dir / new_name
        shutil.copy2(old_path, new_path)

        new_url = f"{ORGANIZED_PREFIX}{transaction_id}/{new_name}"
        await self._transactions.update_file_url(transaction_id, new_url)

        old_path.unlink()
        return new_url

    # ------------------------------------------------------------------
    # get_system_status
    # ------------------------------------------------------------------

    async def get_system_status(self) -> SystemStatus:
        status = SystemStatus()
        try:
            rows = await self._transactions.list_attachment_refs()
        except Exception as exc:
            logger.exception("Reading system status failed")
            status.error_messages.append(f"General status error: {safe_error_message(exc)}")
            return status

        status.total_transactions = len(rows)
        for row in rows:
            if not row.get("file_url"):
                continue
            try:
                ref = AttachmentRef.model_validate(row)
            except ValidationError as exc:
                status.error_messages.append(
                    f"Error reading transaction {row.get('id')}: {safe_error_message(exc)}"
                )
                continue
            status.transactions_with_files += 1
            self._tally(ref.file_url, status)

        return status

    def _tally(self, file_url: str, status: SystemStatus) -> None:
        if is_broken_link(file_url):
            status.broken_links += 1
            return
        if not is_local_file(file_url):
            status.valid_cloud_files += 1
            return

        path = self.local_path(file_url)
        if path is None:
            status.broken_links += 1
            return
        try:
            size = path.stat().st_size
        except OSError:
            status.missing_local_files += 1
            return
        status.valid_local_files += 1
        if not is_organized(file_url):
            status.unorganized_files += 1
        status.disk_usage.total_size += size
        status.disk_usage.file_count += 1
