"""Tests for the uploads watcher event handler."""

import asyncio
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from daftar.sync.watcher import UploadsHandler


def _write(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"data")
    return path


def _event(path: Path, is_directory: bool = False):
    return SimpleNamespace(src_path=str(path), is_directory=is_directory)


def _handler(tmp_path, sync=None):
    loop = asyncio.get_running_loop()
    return UploadsHandler(loop=loop, sync=sync or AsyncMock(), uploads_dir=tmp_path)


class TestEntityId:
    async def test_file_in_transaction_directory(self, tmp_path):
        path = _write(tmp_path / "42" / "receipt.png")

        assert _handler(tmp_path).entity_id(path) == 42

    async def test_loose_file(self, tmp_path):
        path = _write(tmp_path / "receipt.png")

        assert _handler(tmp_path).entity_id(path) is None

    async def test_disallowed_extension(self, tmp_path):
        path = _write(tmp_path / "42" / "setup.exe")

        assert _handler(tmp_path).entity_id(path) is None

    async def test_missing_file(self, tmp_path):
        assert _handler(tmp_path).entity_id(tmp_path / "42" / "gone.png") is None

    async def test_outside_root(self, tmp_path):
        path = _write(tmp_path / "elsewhere" / "7" / "a.png")

        assert _handler(tmp_path / "uploads").entity_id(path) is None


class TestScheduling:
    async def test_uploads_with_entity(self, tmp_path):
        path = _write(tmp_path / "42" / "receipt.png")
        sync = AsyncMock()
        sync.upload_file.return_value = "https://x/receipt.png"

        _handler(tmp_path, sync).on_closed(_event(path))
        await asyncio.sleep(0.05)

        sync.upload_file.assert_awaited_once()
        file = sync.upload_file.await_args.args[0]
        assert file.associated_entity_id == 42
        assert file.relative_path == "42/receipt.png"
        assert file.mime_type == "image/png"

    async def test_ignores_loose_files_and_directories(self, tmp_path):
        loose = _write(tmp_path / "receipt.png")
        sync = AsyncMock()
        handler = _handler(tmp_path, sync)

        handler.on_created(_event(loose))
        handler.on_created(_event(tmp_path / "42", is_directory=True))
        await asyncio.sleep(0.05)

        sync.upload_file.assert_not_awaited()

    async def test_debounces_repeated_events(self, tmp_path):
        path = _write(tmp_path / "42" / "receipt.png")
        sync = AsyncMock()
        handler = _handler(tmp_path, sync)

        handler.on_created(_event(path))
        handler.on_closed(_event(path))
        await asyncio.sleep(0.05)

        assert sync.upload_file.await_count == 1

    async def test_upload_failure_is_logged_not_raised(self, tmp_path):
        path = _write(tmp_path / "42" / "receipt.png")
        sync = AsyncMock()
        sync.upload_file.side_effect = OSError("disk")

        with patch("daftar.sync.watcher.logger") as mock_logger:
            _handler(tmp_path, sync).on_closed(_event(path))
            await asyncio.sleep(0.05)

        mock_logger.exception.assert_called_once()

    async def test_uploads_run_one_at_a_time(self, tmp_path):
        paths = [_write(tmp_path / str(n) / "receipt.png") for n in (1, 2, 3)]
        active = 0
        peak = 0

        async def slow_upload(file):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return f"https://x/{file.file_name}"

        sync = AsyncMock()
        sync.upload_file.side_effect = slow_upload
        handler = _handler(tmp_path, sync)

        for path in paths:
            handler.on_closed(_event(path))
        await asyncio.sleep(0.2)

        assert sync.upload_file.await_count == 3
        assert peak == 1
