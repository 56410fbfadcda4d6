"""Link orphaned upload files to transactions that have no attachment.

Files written by the web app are named ``<epoch-ms>_<original name>``, so
the prefix is a rough creation time. Each orphaned file is paired with
the transaction whose date (taken at UTC midnight) is nearest to it, if
that is less than a day away.

The assignment is greedy in file order (oldest timestamp first, scan
order among equal timestamps), not globally optimal: a transaction taken
by an earlier file is no longer available to later ones.
"""

import logging
from datetime import date
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from daftar.db.engine import RowStore
from daftar.db.transactions import TransactionRepository
from daftar.schemas.files import FileDescriptor
from daftar.schemas.sync import AttachmentFixResult, AttachmentStatus
from daftar.schemas.transactions import TransactionRecord
from daftar.storage.scanner import ATTACHMENT_EXTENSIONS, scan
from daftar.sync.errors import safe_error_message

logger = logging.getLogger(__name__)

MATCH_WINDOW_MS = 24 * 60 * 60 * 1000


class AttachmentMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    file: FileDescriptor
    transaction_id: int
    distance_ms: int
    file_url: str
    file_type: str


class MatchResult(BaseModel):
    matches: list[AttachmentMatch] = Field(default_factory=list)
    unmatched_files: list[FileDescriptor] = Field(default_factory=list)
    unmatched_transactions: list[TransactionRecord] = Field(default_factory=list)


def match_files(
    files: list[FileDescriptor],
    transactions: list[TransactionRecord],
    *,
    window_ms: int = MATCH_WINDOW_MS,
) -> MatchResult:
    """Greedily pair files with the nearest-dated transaction.

    Files without an embedded timestamp sort as 0 and are tried first.
    Among transactions at the same distance, the earliest in
    ``transactions`` wins. A pair is accepted only when the distance is
    strictly below ``window_ms``.
    """
    ordered = sorted(files, key=lambda f: f.embedded_timestamp or 0)
    pool = list(transactions)
    result = MatchResult()

    for file in ordered:
        file_ms = file.embedded_timestamp or 0
        best: TransactionRecord | None = None
        best_distance = 0
        for transaction in pool:
            distance = abs(file_ms - transaction.midnight_ms)
            if best is None or distance < best_distance:
                best = transaction
                best_distance = distance

        if best is None or best_distance >= window_ms:
            result.unmatched_files.append(file)
            continue

        pool.remove(best)
        result.matches.append(
            AttachmentMatch(
                file=file,
                transaction_id=best.id,
                distance_ms=best_distance,
                file_url=file.upload_url,
                file_type=file.mime_type,
            )
        )

    result.unmatched_transactions = pool
    return result


class AttachmentFixer:
    """Finds orphaned uploads and links them to transactions.

    Usage::

        fixer = AttachmentFixer(row_store, "./uploads")
        result = await fixer.fix_orphaned_attachments()
    """

    def __init__(
        self,
        store: RowStore,
        uploads_dir: str | Path,
        *,
        since: date | None = None,
    ) -> None:
        self._transactions = TransactionRepository(store)
        self._uploads_dir = Path(uploads_dir)
        self._since = since

    async def find_orphaned_files(self) -> list[FileDescriptor]:
        """Uploads outside any per-transaction directory that no row references."""
        referenced = await self._transactions.referenced_file_urls()
        return [
            f
            for f in scan(self._uploads_dir, ATTACHMENT_EXTENSIONS)
            if f.associated_entity_id is None and f.upload_url not in referenced
        ]

    async def find_transactions_without_files(self) -> list[TransactionRecord]:
        transactions = await self._transactions.list_without_files()
        if self._since is None:
            return transactions
        return [t for t in transactions if t.date >= self._since]

    async def fix_orphaned_attachments(self) -> AttachmentFixResult:
        result = AttachmentFixResult()
        try:
            orphaned = await self.find_orphaned_files()
            candidates = await self.find_transactions_without_files()
        except Exception as exc:
            logger.exception("Could not collect attachment candidates")
            result.error_messages.append(f"General error: {safe_error_message(exc)}")
            return result

        result.orphaned_files = len(orphaned)
        result.transactions_without_files = len(candidates)
        logger.info(
            "Found %d orphaned file(s), %d transaction(s) without attachments",
            len(orphaned),
            len(candidates),
        )

        matched = match_files(orphaned, candidates)
        for match in matched.matches:
            try:
                await self._transactions.update_file(
                    match.transaction_id, match.file_url, match.file_type
                )
            except Exception as exc:
                logger.exception("Failed linking %s", match.file.file_name)
                result.error_messages.append(
                    f"Error linking {match.file.file_name}: {safe_error_message(exc)}"
                )
                continue
            result.linked += 1
            logger.info("Linked %s to transaction %d", match.file.file_name, match.transaction_id)

        return result

    async def get_attachment_status(self) -> AttachmentStatus:
        status = AttachmentStatus()
        try:
            orphaned = await self.find_orphaned_files()
            status.transactions_with_files = await self._transactions.count_with_files()
        except Exception as exc:
            logger.exception("Could not read attachment status")
            status.error_messages.append(f"General error: {safe_error_message(exc)}")
            return status

        status.total_files = len(scan(self._uploads_dir, ATTACHMENT_EXTENSIONS))
        status.orphaned_files = len(orphaned)
        status.file_list = [f.file_name for f in orphaned]
        return status
