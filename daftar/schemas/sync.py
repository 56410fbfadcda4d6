"""Result and report schemas for the sync, repair and cleanup operations.

Every operation returns one of these instead of raising; callers inspect
``error_messages`` to tell full success from partial success.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class SyncStage(StrEnum):
    """Stages of a full sync run, in order. ``ERROR`` is absorbing."""

    READY = "ready"
    SCANNING = "scanning"
    UPLOADING_FILES = "uploading_files"
    SYNCING_TRANSACTIONS = "syncing_transactions"
    SYNCING_METADATA = "syncing_metadata"
    COMPLETED = "completed"
    ERROR = "error"


class SyncProgressReport(BaseModel):
    """Progress of one ``sync_all_data`` run, mutated in place as it advances."""

    stage: SyncStage = SyncStage.READY
    processed_count: int = 0
    total_count: int = 0
    error_messages: list[str] = Field(default_factory=list)
    success_messages: list[str] = Field(default_factory=list)


class MigrationResult(BaseModel):
    total_files: int = 0
    uploaded_files: int = 0
    failed_files: int = 0
    total_transactions: int = 0
    synced_transactions: int = 0
    error_messages: list[str] = Field(default_factory=list)


class TableSyncCount(BaseModel):
    synced: int = 0
    total: int = 0


class DataSyncResult(BaseModel):
    """Per-table outcome of a rows-only sync."""

    transactions: TableSyncCount = Field(default_factory=TableSyncCount)
    projects: TableSyncCount = Field(default_factory=TableSyncCount)
    users: TableSyncCount = Field(default_factory=TableSyncCount)
    expense_types: TableSyncCount = Field(default_factory=TableSyncCount)
    employees: TableSyncCount = Field(default_factory=TableSyncCount)
    settings: TableSyncCount = Field(default_factory=TableSyncCount)
    error_messages: list[str] = Field(default_factory=list)
    success: bool = False


class SyncStatus(BaseModel):
    """Local vs. remote counts."""

    local_files: int = 0
    local_transactions: int = 0
    remote_files: int = 0
    remote_transactions: int = 0
    error_messages: list[str] = Field(default_factory=list)


class AttachmentFixResult(BaseModel):
    orphaned_files: int = 0
    transactions_without_files: int = 0
    linked: int = 0
    error_messages: list[str] = Field(default_factory=list)


class AttachmentStatus(BaseModel):
    total_files: int = 0
    transactions_with_files: int = 0
    orphaned_files: int = 0
    file_list: list[str] = Field(default_factory=list)
    error_messages: list[str] = Field(default_factory=list)


class CleanupResult(BaseModel):
    total_transactions: int = 0
    processed_transactions: int = 0
    broken_links_removed: int = 0
    valid_files_found: int = 0
    organizable_files: int = 0
    error_messages: list[str] = Field(default_factory=list)


class OrganizeResult(BaseModel):
    organized: int = 0
    error_messages: list[str] = Field(default_factory=list)


class DiskUsage(BaseModel):
    total_size: int = 0
    file_count: int = 0


class SystemStatus(BaseModel):
    """Attachment health across all transaction rows."""

    total_transactions: int = 0
    transactions_with_files: int = 0
    broken_links: int = 0
    valid_local_files: int = 0
    valid_cloud_files: int = 0
    unorganized_files: int = 0
    missing_local_files: int = 0
    disk_usage: DiskUsage = Field(default_factory=DiskUsage)
    error_messages: list[str] = Field(default_factory=list)


class HealthReport(BaseModel):
    """Outcome of probing the remote store."""

    configured: bool = False
    database: bool = False
    storage: bool = False
    error_messages: list[str] = Field(default_factory=list)


class SyncOperation(StrEnum):
    SYNC = "sync"
    MIGRATE = "migrate"
    SYNC_DATA = "sync_data"
    FIX_ATTACHMENTS = "fix_attachments"
    CLEANUP = "cleanup"
    ORGANIZE = "organize"


class RunRecord(BaseModel):
    """One line of the run log."""

    timestamp: datetime
    operation: SyncOperation
    error_count: int = Field(default=0, ge=0)
    result: dict[str, Any] = Field(default_factory=dict)
