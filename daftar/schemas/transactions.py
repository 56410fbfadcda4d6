"""Pydantic models for transaction rows read from the source database.

Only the columns the sync core touches are modelled.
"""

from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, field_validator


class TransactionType(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"


class TransactionRecord(BaseModel):
    """A financial entry. The core only ever changes ``file_url``/``file_type``."""

    id: int
    date: date
    type: TransactionType
    amount: Decimal = Decimal("0")
    description: str = ""
    project_id: int | None = None
    created_by: int | None = None
    employee_id: int | None = None
    file_url: str | None = None
    file_type: str | None = None
    archived: bool = False

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value):
        # SQLite hands back text, Postgres may hand back a timestamp
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and len(value) > 10:
            return value[:10]
        return value

    @property
    def has_file(self) -> bool:
        return bool(self.file_url)

    @property
    def midnight_ms(self) -> int:
        """The transaction date at UTC midnight, in epoch milliseconds."""
        midnight = datetime.combine(self.date, time.min, tzinfo=timezone.utc)
        return int(midnight.timestamp() * 1000)


class AttachmentRef(BaseModel):
    """The attachment columns of one row, without the financial fields.

    The cleanup passes only need these, so a row whose ``type`` or
    ``date`` does not validate can still have its link repaired.
    """

    id: int
    file_url: str | None = None
    file_type: str | None = None
