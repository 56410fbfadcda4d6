"""Local uploads tree scanner.

Walks the uploads directory and describes every attachment file found.
A directory whose name is all digits is taken to be the id of the
transaction its files belong to (``uploads/42/receipt.png`` → 42); the
closest such ancestor wins.
"""

import logging
import re
from pathlib import Path

from daftar.schemas.files import FileDescriptor, mime_type_for

logger = logging.getLogger(__name__)

# Extensions considered by the sync and migration passes
UPLOAD_EXTENSIONS = frozenset({"pdf", "jpg", "jpeg", "png", "gif", "doc", "docx"})

# Extensions considered when repairing orphaned attachments
ATTACHMENT_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "pdf", "webp", "txt"})

_ENTITY_DIR_RE = re.compile(r"^[0-9]+$")
_TIMESTAMP_RE = re.compile(r"^([0-9]{13})")


def extract_timestamp(file_name: str) -> int | None:
    """Return the epoch-millisecond prefix of a file name, if it has one."""
    match = _TIMESTAMP_RE.match(file_name)
    return int(match.group(1)) if match else None


def parse_entity_id(dir_name: str) -> int | None:
    """Return the directory name as an id when it is made only of digits."""
    if _ENTITY_DIR_RE.match(dir_name):
        return int(dir_name)
    return None


def has_allowed_extension(file_name: str, extensions: frozenset[str] | None) -> bool:
    if extensions is None:
        return True
    return Path(file_name).suffix.lower().lstrip(".") in extensions


def scan(
    root: str | Path,
    extensions: frozenset[str] | None = UPLOAD_EXTENSIONS,
) -> list[FileDescriptor]:
    """Recursively list attachment files under ``root``.

    Args:
        root: The uploads directory.
        extensions: Lower-case extensions to keep, or ``None`` for all files.

    Returns:
        Descriptors in sorted walk order. Empty if ``root`` does not exist.
    """
    root_path = Path(root)
    if not root_path.is_dir():
        return []

    files: list[FileDescriptor] = []
    _scan_dir(root_path, root_path, None, extensions, files)
    return files


def _scan_dir(
    root: Path,
    directory: Path,
    entity_id: int | None,
    extensions: frozenset[str] | None,
    out: list[FileDescriptor],
) -> None:
    try:
        items = sorted(directory.iterdir())
    except OSError as exc:
        logger.warning("Skipping unreadable directory %s: %s", directory, exc)
        return

    for item in items:
        try:
            if item.is_dir():
                child_id = parse_entity_id(item.name)
                _scan_dir(
                    root,
                    item,
                    child_id if child_id is not None else entity_id,
                    extensions,
                    out,
                )
            elif item.is_file() and has_allowed_extension(item.name, extensions):
                out.append(describe_file(item, root, entity_id))
        except OSError as exc:
            logger.warning("Skipping unreadable file %s: %s", item, exc)


def describe_file(path: Path, root: Path, entity_id: int | None = None) -> FileDescriptor:
    """Build a descriptor for a single file under ``root``."""
    return FileDescriptor(
        absolute_path=str(path.resolve()),
        relative_path=path.relative_to(root).as_posix(),
        file_name=path.name,
        size_bytes=path.stat().st_size,
        associated_entity_id=entity_id,
        embedded_timestamp=extract_timestamp(path.name),
        mime_type=mime_type_for(path.name),
    )


def entity_id_for(path: Path, root: Path) -> int | None:
    """Infer the entity id of a single file from its ancestors below ``root``."""
    entity_id = None
    for part in path.relative_to(root).parts[:-1]:
        parsed = parse_entity_id(part)
        if parsed is not None:
            entity_id = parsed
    return entity_id


def count_files(root: str | Path, extensions: frozenset[str] | None = ATTACHMENT_EXTENSIONS) -> int:
    """Count allowed files anywhere under ``root``."""
    return len(scan(root, extensions))
