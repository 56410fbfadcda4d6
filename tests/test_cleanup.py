"""Tests for the database cleanup auditor."""

from pathlib import Path

import pytest

from daftar.sync.cleanup import DatabaseCleanup, is_broken_link, is_local_file, is_organized

from conftest import SUPABASE_TEST_URL, fetch_transaction, insert_transaction

FIREBASE_URL = "https://firebasestorage.googleapis.com/v0/b/app/o/receipt.png"
SUPABASE_FILE_URL = f"{SUPABASE_TEST_URL}/storage/v1/object/public/files/1_1_a.png"


def _write(path: Path, content: bytes = b"data") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


@pytest.fixture()
def uploads(tmp_path):
    root = tmp_path / "uploads"
    root.mkdir()
    return root


@pytest.fixture()
def cleanup(store, uploads):
    return DatabaseCleanup(store, uploads)


# ------------------------------------------------------------------
# URL classification
# ------------------------------------------------------------------


class TestClassification:
    def test_firebase_is_broken(self):
        assert is_broken_link(FIREBASE_URL)
        assert is_broken_link("gs://firebase-bucket/receipt.png")

    def test_foreign_http_is_broken(self):
        assert is_broken_link("https://cdn.example.com/receipt.png")

    def test_current_urls_are_not_broken(self):
        assert not is_broken_link(SUPABASE_FILE_URL)
        assert not is_broken_link("/uploads/receipt.png")
        assert not is_broken_link("https://app.example.com/uploads/receipt.png")

    def test_local(self):
        assert is_local_file("/uploads/a.png")
        assert is_local_file("a.png")
        assert not is_local_file(SUPABASE_FILE_URL)

    def test_organized(self):
        assert is_organized("/uploads/transactions/4/1_a.png")
        assert not is_organized("/uploads/a.png")

    def test_local_path(self, cleanup, uploads):
        assert cleanup.local_path("/uploads/3/a.png") == (uploads / "3" / "a.png").resolve()
        assert cleanup.local_path("a.png") == (uploads / "a.png").resolve()

    def test_local_path_outside_root(self, cleanup):
        assert cleanup.local_path("../outside.pdf") is None
        assert cleanup.local_path("/uploads/../../etc/passwd") is None
        assert cleanup.local_path("/uploads/3/../a.png") is not None


# ------------------------------------------------------------------
# cleanup_database
# ------------------------------------------------------------------


class TestCleanupDatabase:
    async def test_clears_decommissioned_provider_links(self, store, cleanup):
        await insert_transaction(store, 1, file_url=FIREBASE_URL, file_type="image/png")

        result = await cleanup.cleanup_database()

        assert result.total_transactions == 1
        assert result.processed_transactions == 1
        assert result.broken_links_removed == 1
        row = await fetch_transaction(store, 1)
        assert row["file_url"] is None
        assert row["file_type"] is None

    async def test_second_run_removes_nothing(self, store, cleanup):
        await insert_transaction(store, 1, file_url=FIREBASE_URL)

        await cleanup.cleanup_database()
        second = await cleanup.cleanup_database()

        assert second.broken_links_removed == 0
        assert second.processed_transactions == 0

    async def test_clears_missing_local_file(self, store, cleanup):
        await insert_transaction(store, 1, file_url="/uploads/gone.pdf", file_type="application/pdf")

        result = await cleanup.cleanup_database()

        assert result.broken_links_removed == 1
        assert (await fetch_transaction(store, 1))["file_url"] is None

    async def test_keeps_existing_files_and_cloud_links(self, store, cleanup, uploads):
        _write(uploads / "loose.png")
        _write(uploads / "transactions" / "2" / "1_done.png")
        await insert_transaction(store, 1, file_url="/uploads/loose.png")
        await insert_transaction(store, 2, file_url="/uploads/transactions/2/1_done.png")
        await insert_transaction(store, 3, file_url=SUPABASE_FILE_URL)
        await insert_transaction(store, 4)

        result = await cleanup.cleanup_database()

        assert result.total_transactions == 4
        assert result.processed_transactions == 3
        assert result.broken_links_removed == 0
        assert result.valid_files_found == 3
        assert result.organizable_files == 1
        assert (await fetch_transaction(store, 3))["file_url"] == SUPABASE_FILE_URL

    async def test_row_failure_does_not_stop_the_run(self, store, cleanup, monkeypatch):
        await insert_transaction(store, 1, file_url=FIREBASE_URL)
        await insert_transaction(store, 2, file_url=FIREBASE_URL)

        original = cleanup._transactions.update_file

        async def flaky(transaction_id, file_url, file_type):
            if transaction_id == 1:
                raise RuntimeError("locked")
            await original(transaction_id, file_url, file_type)

        monkeypatch.setattr(cleanup._transactions, "update_file", flaky)

        result = await cleanup.cleanup_database()

        assert result.broken_links_removed == 1
        assert result.error_messages == ["Error processing transaction 1: locked"]
        assert (await fetch_transaction(store, 2))["file_url"] is None

    async def test_missing_table(self, store, cleanup):
        await store.execute("DROP TABLE transactions")

        result = await cleanup.cleanup_database()

        assert result.total_transactions == 0
        assert result.error_messages[0].startswith("General cleanup error:")

    async def test_malformed_row_does_not_block_the_pass(self, store, cleanup):
        await insert_transaction(store, 1, file_url=FIREBASE_URL)
        await insert_transaction(store, 2, "not-a-date", type="transfer", file_url=FIREBASE_URL)

        result = await cleanup.cleanup_database()

        assert result.total_transactions == 2
        assert result.broken_links_removed == 2
        assert result.error_messages == []
        assert (await fetch_transaction(store, 1))["file_url"] is None
        assert (await fetch_transaction(store, 2))["file_url"] is None

    async def test_clears_reference_outside_uploads(self, store, cleanup, tmp_path):
        outside = _write(tmp_path / "outside.pdf")
        await insert_transaction(store, 1, file_url="../outside.pdf")

        result = await cleanup.cleanup_database()

        assert result.broken_links_removed == 1
        assert result.valid_files_found == 0
        assert (await fetch_transaction(store, 1))["file_url"] is None
        assert outside.exists()


# ------------------------------------------------------------------
# organize_existing_files
# ------------------------------------------------------------------


class TestOrganize:
    async def test_moves_file_and_repoints_row(self, store, cleanup, uploads):
        _write(uploads / "receipt.png", b"img")
        await insert_transaction(store, 4, file_url="/uploads/receipt.png", file_type="image/png")

        result = await cleanup.organize_existing_files()

        assert result.organized == 1
        assert result.error_messages == []
        assert not (uploads / "receipt.png").exists()
        [moved] = list((uploads / "transactions" / "4").iterdir())
        assert moved.name.endswith("_receipt.png")
        assert moved.read_bytes() == b"img"
        row = await fetch_transaction(store, 4)
        assert row["file_url"] == f"/uploads/transactions/4/{moved.name}"
        assert row["file_type"] == "image/png"

    async def test_second_run_is_a_no_op(self, store, cleanup, uploads):
        _write(uploads / "receipt.png")
        await insert_transaction(store, 4, file_url="/uploads/receipt.png")

        await cleanup.organize_existing_files()
        second = await cleanup.organize_existing_files()

        assert second.organized == 0
        assert len(list((uploads / "transactions" / "4").iterdir())) == 1

    async def test_skips_cloud_missing_and_organized(self, store, cleanup, uploads):
        _write(uploads / "transactions" / "2" / "1_done.png")
        await insert_transaction(store, 1, file_url=SUPABASE_FILE_URL)
        await insert_transaction(store, 2, file_url="/uploads/transactions/2/1_done.png")
        await insert_transaction(store, 3, file_url="/uploads/gone.png")
        await insert_transaction(store, 4)

        result = await cleanup.organize_existing_files()

        assert result.organized == 0
        assert (await fetch_transaction(store, 3))["file_url"] == "/uploads/gone.png"

    async def test_never_moves_files_outside_uploads(self, store, cleanup, uploads, tmp_path):
        outside = _write(tmp_path / "outside.pdf", b"keep")
        await insert_transaction(store, 1, file_url="../outside.pdf")
        await insert_transaction(store, 2, file_url="/uploads/../outside.pdf")

        result = await cleanup.organize_existing_files()

        assert result.organized == 0
        assert result.error_messages == []
        assert outside.read_bytes() == b"keep"
        assert not (uploads / "transactions").exists()
        assert (await fetch_transaction(store, 1))["file_url"] == "../outside.pdf"

    async def test_malformed_row_is_still_organized(self, store, cleanup, uploads):
        _write(uploads / "receipt.png")
        await insert_transaction(store, 4, "not-a-date", type="transfer", file_url="/uploads/receipt.png")

        result = await cleanup.organize_existing_files()

        assert result.organized == 1
        assert result.error_messages == []
        assert (await fetch_transaction(store, 4))["file_url"].startswith("/uploads/transactions/4/")


# ------------------------------------------------------------------
# get_system_status
# ------------------------------------------------------------------


class TestSystemStatus:
    async def test_counts(self, store, cleanup, uploads):
        _write(uploads / "loose.png", b"12345")
        _write(uploads / "transactions" / "2" / "1_done.png", b"123")
        await insert_transaction(store, 1, file_url="/uploads/loose.png")
        await insert_transaction(store, 2, file_url="/uploads/transactions/2/1_done.png")
        await insert_transaction(store, 3, file_url=SUPABASE_FILE_URL)
        await insert_transaction(store, 4, file_url=FIREBASE_URL)
        await insert_transaction(store, 5, file_url="/uploads/gone.png")
        await insert_transaction(store, 6)

        status = await cleanup.get_system_status()

        assert status.total_transactions == 6
        assert status.transactions_with_files == 5
        assert status.broken_links == 1
        assert status.valid_cloud_files == 1
        assert status.valid_local_files == 2
        assert status.unorganized_files == 1
        assert status.missing_local_files == 1
        assert status.disk_usage.total_size == 8
        assert status.disk_usage.file_count == 2

    async def test_read_only(self, store, cleanup):
        await insert_transaction(store, 1, file_url=FIREBASE_URL)

        await cleanup.get_system_status()

        assert (await fetch_transaction(store, 1))["file_url"] == FIREBASE_URL

    async def test_outside_reference_counts_as_broken(self, store, cleanup, tmp_path):
        _write(tmp_path / "outside.pdf", b"123456789")
        await insert_transaction(store, 1, file_url="../outside.pdf")

        status = await cleanup.get_system_status()

        assert status.broken_links == 1
        assert status.valid_local_files == 0
        assert status.disk_usage.total_size == 0

    async def test_malformed_row_is_counted(self, store, cleanup, uploads):
        _write(uploads / "loose.png", b"12345")
        await insert_transaction(store, 1, file_url=FIREBASE_URL)
        await insert_transaction(store, 2, "not-a-date", type="transfer", file_url="/uploads/loose.png")

        status = await cleanup.get_system_status()

        assert status.total_transactions == 2
        assert status.broken_links == 1
        assert status.valid_local_files == 1
        assert status.error_messages == []
