"""Schemas for files found in the local uploads tree."""

from pathlib import PurePath

from pydantic import BaseModel, Field

DEFAULT_MIME_TYPE = "application/octet-stream"

MIME_TYPES: dict[str, str] = {
    "pdf": "application/pdf",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "txt": "text/plain",
    "doc": "application/msword",
    "docx": "application/msword",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.ms-excel",
}


def mime_type_for(file_name: str) -> str:
    """Map a file name to its MIME type by extension."""
    extension = PurePath(file_name).suffix.lower().lstrip(".")
    return MIME_TYPES.get(extension, DEFAULT_MIME_TYPE)


class FileDescriptor(BaseModel):
    """One file found during an uploads directory scan."""

    absolute_path: str
    relative_path: str = Field(description="Posix path relative to the scan root")
    file_name: str
    size_bytes: int = Field(default=0, ge=0)
    associated_entity_id: int | None = Field(
        default=None,
        description="Id from the nearest all-digit ancestor directory",
    )
    embedded_timestamp: int | None = Field(
        default=None,
        description="Epoch milliseconds from a 13-digit file name prefix",
    )
    mime_type: str = DEFAULT_MIME_TYPE

    @property
    def upload_url(self) -> str:
        """Local URL under which the web app serves this file."""
        return f"/uploads/{self.relative_path}"
