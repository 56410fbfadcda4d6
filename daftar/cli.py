"""CLI entry point for the daftar attachment sync tools.

Commands:
    daftar sync             — full staged sync (files, transactions, metadata)
    daftar migrate          — upload files and every transaction column
    daftar sync-data        — rows only, counted per table
    daftar sync-status      — local vs. remote counts
    daftar fix-attachments  — link orphaned uploads to transactions
    daftar attachments      — attachment overview
    daftar cleanup          — clear broken and missing attachment links
    daftar organize         — move loose files into uploads/transactions/<id>/
    daftar status           — attachment health and disk usage
    daftar doctor           — check the remote store is reachable
    daftar history          — past runs from the run log
    daftar watch            — upload new attachments continuously
    daftar purge-sessions   — drop expired login sessions
"""

import asyncio
import logging
import sys
from datetime import date
from pathlib import Path

import click

from daftar.config import (
    BUCKET_SIZE_LIMIT_MB,
    DATABASE_URL,
    MATCH_SINCE_DATE,
    MIGRATION_BATCH_SIZE,
    RUN_LOG_PATH,
    SESSION_DB_PATH,
    SESSION_TTL_HOURS,
    STORAGE_BUCKET,
    SUPABASE_ANON_KEY,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
    SYNC_BATCH_SIZE,
    UPLOADS_DIR,
)

logger = logging.getLogger("daftar")

MAX_ERRORS_SHOWN = 10


def _validate_database() -> None:
    """Fail loudly if the source database is not configured."""
    if not DATABASE_URL:
        click.echo("Error: Missing required config: DATABASE_URL", err=True)
        click.echo("Set it in secrets/app.env or the environment.", err=True)
        sys.exit(1)


def _validate_remote() -> None:
    """Fail loudly if Supabase credentials are missing."""
    missing = []
    if not SUPABASE_URL:
        missing.append("SUPABASE_URL")
    if not SUPABASE_SERVICE_ROLE_KEY and not SUPABASE_ANON_KEY:
        missing.append("SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_ANON_KEY)")
    if missing:
        click.echo(f"Error: Missing required config: {', '.join(missing)}", err=True)
        click.echo("Set these in secrets/app.env or via SOPS.", err=True)
        sys.exit(1)


def _echo_errors(messages: list[str]) -> None:
    for message in messages[:MAX_ERRORS_SHOWN]:
        click.echo(f"  ERROR: {message}", err=True)
    if len(messages) > MAX_ERRORS_SHOWN:
        click.echo(f"  … and {len(messages) - MAX_ERRORS_SHOWN} more (see history)", err=True)


def _remote_client():
    from daftar.integrations.supabase import create_remote_client

    return create_remote_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY, SUPABASE_ANON_KEY)


def _build_sync(store, remote):
    from daftar.sync.orchestrator import LocalToRemoteSync

    return LocalToRemoteSync(
        store,
        remote,
        UPLOADS_DIR,
        bucket=STORAGE_BUCKET,
        bucket_size_limit_bytes=BUCKET_SIZE_LIMIT_MB * 1024 * 1024,
        batch_size=SYNC_BATCH_SIZE,
        migration_batch_size=MIGRATION_BATCH_SIZE,
    )


def _log_run(operation, result) -> None:
    from daftar.sync.run_log import RunLog

    RunLog(RUN_LOG_PATH).log_result(operation, result)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """daftar — attachment sync and repair for the accounting database."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


# ------------------------------------------------------------------
# daftar sync / migrate / sync-data / sync-status
# ------------------------------------------------------------------


@cli.command()
def sync() -> None:
    """Full staged sync of files, transactions and metadata."""
    _validate_database()
    _validate_remote()
    asyncio.run(_sync_async())


async def _sync_async() -> None:
    from daftar.db.engine import RowStore
    from daftar.schemas.sync import SyncOperation

    async with RowStore(DATABASE_URL) as store, _remote_client() as remote:
        report = await _build_sync(store, remote).sync_all_data()

    _log_run(SyncOperation.SYNC, report)
    click.echo(
        f"Stage: {report.stage.value}. Processed: {report.processed_count}/{report.total_count}, "
        f"Errors: {len(report.error_messages)}"
    )
    _echo_errors(report.error_messages)


@cli.command()
def migrate() -> None:
    """Upload every local file and push all transaction rows."""
    _validate_database()
    _validate_remote()
    asyncio.run(_migrate_async())


async def _migrate_async() -> None:
    from daftar.db.engine import RowStore
    from daftar.schemas.sync import SyncOperation

    async with RowStore(DATABASE_URL) as store, _remote_client() as remote:
        result = await _build_sync(store, remote).migrate_to_supabase()

    _log_run(SyncOperation.MIGRATE, result)
    click.echo(
        f"Files: {result.uploaded_files}/{result.total_files} uploaded "
        f"({result.failed_files} failed). "
        f"Transactions: {result.synced_transactions}/{result.total_transactions} synced."
    )
    _echo_errors(result.error_messages)


@cli.command("sync-data")
def sync_data() -> None:
    """Push database rows only (no files)."""
    _validate_database()
    _validate_remote()
    asyncio.run(_sync_data_async())


async def _sync_data_async() -> None:
    from daftar.db.engine import RowStore
    from daftar.schemas.sync import SyncOperation

    async with RowStore(DATABASE_URL) as store, _remote_client() as remote:
        result = await _build_sync(store, remote).sync_data_only()

    _log_run(SyncOperation.SYNC_DATA, result)
    for table in ("transactions", "projects", "users", "expense_types", "employees", "settings"):
        count = getattr(result, table)
        click.echo(f"  {table:<15} {count.synced}/{count.total}")
    click.echo("Done." if result.success else f"Finished with {len(result.error_messages)} error(s).")
    _echo_errors(result.error_messages)


@cli.command("sync-status")
def sync_status() -> None:
    """Compare local and remote file and transaction counts."""
    _validate_database()
    asyncio.run(_sync_status_async())


async def _sync_status_async() -> None:
    from daftar.db.engine import RowStore

    remote = _remote_client()
    async with RowStore(DATABASE_URL) as store:
        try:
            status = await _build_sync(store, remote).get_sync_status()
        finally:
            if remote:
                await remote.close()

    click.echo("Sync Status")
    click.echo(f"  Local files:          {status.local_files}")
    click.echo(f"  Local transactions:   {status.local_transactions}")
    click.echo(f"  Remote files:         {status.remote_files}")
    click.echo(f"  Remote transactions:  {status.remote_transactions}")
    _echo_errors(status.error_messages)


# ------------------------------------------------------------------
# daftar fix-attachments / attachments
# ------------------------------------------------------------------


def _build_fixer(store):
    from daftar.sync.matcher import AttachmentFixer

    since = date.fromisoformat(MATCH_SINCE_DATE) if MATCH_SINCE_DATE else None
    return AttachmentFixer(store, UPLOADS_DIR, since=since)


@cli.command("fix-attachments")
def fix_attachments() -> None:
    """Link orphaned uploads to transactions dated within a day of them."""
    _validate_database()
    asyncio.run(_fix_attachments_async())


async def _fix_attachments_async() -> None:
    from daftar.db.engine import RowStore
    from daftar.schemas.sync import SyncOperation

    async with RowStore(DATABASE_URL) as store:
        result = await _build_fixer(store).fix_orphaned_attachments()

    _log_run(SyncOperation.FIX_ATTACHMENTS, result)
    click.echo(
        f"Orphaned files: {result.orphaned_files}, "
        f"Transactions without files: {result.transactions_without_files}, "
        f"Linked: {result.linked}"
    )
    _echo_errors(result.error_messages)


@cli.command()
def attachments() -> None:
    """Show attachment counts and the orphaned file list."""
    _validate_database()
    asyncio.run(_attachments_async())


async def _attachments_async() -> None:
    from daftar.db.engine import RowStore

    async with RowStore(DATABASE_URL) as store:
        status = await _build_fixer(store).get_attachment_status()

    click.echo("Attachments")
    click.echo(f"  Files on disk:            {status.total_files}")
    click.echo(f"  Transactions with files:  {status.transactions_with_files}")
    click.echo(f"  Orphaned files:           {status.orphaned_files}")
    for name in status.file_list:
        click.echo(f"    {name}")
    _echo_errors(status.error_messages)


# ------------------------------------------------------------------
# daftar cleanup / organize / status
# ------------------------------------------------------------------


@cli.command()
def cleanup() -> None:
    """Clear broken links and references to missing local files."""
    _validate_database()
    asyncio.run(_cleanup_async())


async def _cleanup_async() -> None:
    from daftar.db.engine import RowStore
    from daftar.schemas.sync import SyncOperation
    from daftar.sync.cleanup import DatabaseCleanup

    async with RowStore(DATABASE_URL) as store:
        result = await DatabaseCleanup(store, UPLOADS_DIR).cleanup_database()

    _log_run(SyncOperation.CLEANUP, result)
    click.echo(
        f"Checked: {result.processed_transactions}/{result.total_transactions}, "
        f"Removed: {result.broken_links_removed}, Valid: {result.valid_files_found}, "
        f"Organizable: {result.organizable_files}"
    )
    _echo_errors(result.error_messages)


@cli.command()
def organize() -> None:
    """Move loose local attachments into uploads/transactions/<id>/."""
    _validate_database()
    asyncio.run(_organize_async())


async def _organize_async() -> None:
    from daftar.db.engine import RowStore
    from daftar.schemas.sync import SyncOperation
    from daftar.sync.cleanup import DatabaseCleanup

    async with RowStore(DATABASE_URL) as store:
        result = await DatabaseCleanup(store, UPLOADS_DIR).organize_existing_files()

    _log_run(SyncOperation.ORGANIZE, result)
    click.echo(f"Organized: {result.organized}")
    _echo_errors(result.error_messages)


@cli.command()
def status() -> None:
    """Attachment health across all transactions."""
    _validate_database()
    asyncio.run(_status_async())


async def _status_async() -> None:
    from daftar.db.engine import RowStore
    from daftar.sync.cleanup import DatabaseCleanup

    async with RowStore(DATABASE_URL) as store:
        s = await DatabaseCleanup(store, UPLOADS_DIR).get_system_status()

    click.echo("System Status")
    click.echo(f"  Transactions:         {s.total_transactions}")
    click.echo(f"  With attachments:     {s.transactions_with_files}")
    click.echo(f"  Broken links:         {s.broken_links}")
    click.echo(f"  Local files:          {s.valid_local_files}")
    click.echo(f"  Cloud files:          {s.valid_cloud_files}")
    click.echo(f"  Unorganized:          {s.unorganized_files}")
    click.echo(f"  Missing on disk:      {s.missing_local_files}")
    click.echo(
        f"  Disk usage:           {s.disk_usage.total_size} bytes "
        f"in {s.disk_usage.file_count} file(s)"
    )
    _echo_errors(s.error_messages)


# ------------------------------------------------------------------
# daftar doctor
# ------------------------------------------------------------------


@cli.command()
def doctor() -> None:
    """Check that the remote store is reachable with the configured keys."""
    _validate_remote()
    asyncio.run(_doctor_async())


async def _doctor_async() -> None:
    async with _remote_client() as remote:
        report = await remote.health_check()

    click.echo("Remote Store")
    click.echo(f"  Database:  {'ok' if report.database else 'FAILED'}")
    click.echo(f"  Storage:   {'ok' if report.storage else 'FAILED'}")
    _echo_errors(report.error_messages)
    if not (report.database and report.storage):
        sys.exit(1)


# ------------------------------------------------------------------
# daftar history
# ------------------------------------------------------------------


@cli.command()
@click.option("--limit", "-n", default=10, show_default=True, help="Number of runs to show.")
@click.option(
    "--operation",
    type=click.Choice(
        ["sync", "migrate", "sync_data", "fix_attachments", "cleanup", "organize"],
        case_sensitive=False,
    ),
    default=None,
    help="Only show runs of this operation.",
)
def history(limit: int, operation: str | None) -> None:
    """Show recent runs from the run log."""
    from daftar.schemas.sync import SyncOperation
    from daftar.sync.run_log import RunLog

    entries = RunLog(RUN_LOG_PATH).read_entries(
        operation=SyncOperation(operation) if operation else None,
        limit=limit,
    )
    if not entries:
        click.echo("No runs recorded.")
        return
    for entry in entries:
        click.echo(
            f"{entry.timestamp:%Y-%m-%d %H:%M:%S}  {entry.operation.value:<16} "
            f"errors={entry.error_count}"
        )


# ------------------------------------------------------------------
# daftar watch
# ------------------------------------------------------------------


@cli.command()
@click.option(
    "--uploads-dir",
    default=UPLOADS_DIR,
    show_default=True,
    help="Uploads directory to watch.",
)
def watch(uploads_dir: str) -> None:
    """Upload attachments as they appear under uploads/<id>/."""
    if not Path(uploads_dir).is_dir():
        click.echo(f"Error: Uploads directory does not exist: {uploads_dir}", err=True)
        sys.exit(1)
    _validate_database()
    _validate_remote()
    asyncio.run(_watch_async(Path(uploads_dir)))


async def _watch_async(uploads_dir: Path) -> None:
    from daftar.db.engine import RowStore
    from daftar.sync.watcher import watch_uploads

    async with RowStore(DATABASE_URL) as store, _remote_client() as remote:
        click.echo(f"Watching {uploads_dir} for new attachments (Ctrl+C to stop)…")
        await watch_uploads(uploads_dir, _build_sync(store, remote))


# ------------------------------------------------------------------
# daftar purge-sessions
# ------------------------------------------------------------------


@cli.command("purge-sessions")
def purge_sessions() -> None:
    """Delete expired login sessions."""
    from datetime import timedelta

    from daftar.auth.sessions import SqliteSessionStore

    with SqliteSessionStore(SESSION_DB_PATH, ttl=timedelta(hours=SESSION_TTL_HOURS)) as store:
        removed = store.purge_expired()
    click.echo(f"Purged: {removed}")
