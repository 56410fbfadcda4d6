"""Continuous mode: upload attachments as they land in the uploads tree.

Uses the ``watchdog`` library (inotify on Linux) to detect new files.
The Observer runs in a background thread and schedules async
``LocalToRemoteSync.upload_file`` calls onto the asyncio event loop.
Each event gets its own task; a lock shared by the handler makes them
run one at a time.

Only files inside a per-transaction directory (``uploads/<id>/...``) are
handled; loose files are left for the attachment fixer.
"""

import asyncio
import logging
import time
from pathlib import Path

from watchdog.events import FileClosedEvent, FileSystemEventHandler
from watchdog.observers import Observer

from daftar.storage.scanner import (
    UPLOAD_EXTENSIONS,
    describe_file,
    entity_id_for,
    has_allowed_extension,
)
from daftar.sync.orchestrator import LocalToRemoteSync

logger = logging.getLogger(__name__)

# Events for the same file within this window are ignored
DEBOUNCE_SECONDS = 2.0


async def _upload_logged(
    lock: asyncio.Lock, sync: LocalToRemoteSync, path: Path, root: Path, entity_id: int
) -> str | None:
    try:
        async with lock:
            url = await sync.upload_file(describe_file(path, root, entity_id))
    except Exception:
        logger.exception("Failed to upload %s", path.name)
        return None
    if url is None:
        logger.warning("Upload of %s was rejected", path.name)
    return url


class UploadsHandler(FileSystemEventHandler):
    """Handles filesystem events in the uploads tree.

    Uses ``on_closed`` (inotify IN_CLOSE_WRITE) as the primary trigger,
    meaning the file is complete when the writer closes the handle.
    Falls back to ``on_created`` with a debounce for platforms without
    IN_CLOSE_WRITE support.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        sync: LocalToRemoteSync,
        uploads_dir: Path,
        extensions: frozenset[str] = UPLOAD_EXTENSIONS,
    ) -> None:
        super().__init__()
        self._loop = loop
        self._sync = sync
        self._root = uploads_dir.resolve()
        self._extensions = extensions
        self._last_seen: dict[str, float] = {}
        self._upload_lock = asyncio.Lock()

    def _should_debounce(self, path_str: str) -> bool:
        """Return True if this file was seen too recently."""
        now = time.monotonic()
        last = self._last_seen.get(path_str, 0.0)
        if now - last < DEBOUNCE_SECONDS:
            return True
        self._last_seen[path_str] = now
        return False

    def entity_id(self, path: Path) -> int | None:
        """The transaction id for a watched file, or None to ignore it."""
        if not path.is_file() or not has_allowed_extension(path.name, self._extensions):
            return None
        try:
            return entity_id_for(path.resolve(), self._root)
        except ValueError:
            return None

    def _schedule_upload(self, src_path: str) -> None:
        path = Path(src_path)
        entity_id = self.entity_id(path)
        if not entity_id:
            return
        if self._should_debounce(src_path):
            return

        logger.info("Detected attachment %s for transaction %d", path.name, entity_id)
        asyncio.run_coroutine_threadsafe(
            _upload_logged(self._upload_lock, self._sync, path.resolve(), self._root, entity_id),
            self._loop,
        )

    def on_closed(self, event: FileClosedEvent) -> None:
        """Triggered when a file is closed after writing (inotify)."""
        if event.is_directory:
            return
        self._schedule_upload(event.src_path)

    def on_created(self, event) -> None:
        """Fallback for platforms without on_closed support.

        Also handles files deposited by atomic move (rename) into the tree.
        """
        if event.is_directory:
            return
        self._schedule_upload(event.src_path)


async def watch_uploads(uploads_dir: Path, sync: LocalToRemoteSync) -> None:
    """Watch the uploads tree and upload new attachments continuously.

    Runs until interrupted (KeyboardInterrupt / cancellation).
    """
    loop = asyncio.get_running_loop()
    await sync.prepare_bucket()

    handler = UploadsHandler(loop=loop, sync=sync, uploads_dir=uploads_dir)
    observer = Observer()
    observer.schedule(handler, str(uploads_dir), recursive=True)
    observer.start()
    logger.info("Watching %s for new attachments…", uploads_dir)

    try:
        while True:
            await asyncio.sleep(1)
    except (asyncio.CancelledError, KeyboardInterrupt):
        pass
    finally:
        observer.stop()
        observer.join()
        logger.info("Watcher stopped.")
