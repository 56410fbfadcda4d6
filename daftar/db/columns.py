"""Column-name normalization for rows coming out of the source database.

Depending on the driver and the query, the same logical column arrives as
``file_url``, ``fileurl`` (Postgres folds unquoted aliases to lower case)
or ``fileUrl``. Everything downstream sees the canonical snake_case name.
"""

from typing import Any

CANONICAL_COLUMNS = (
    "expense_type",
    "project_id",
    "created_by",
    "employee_id",
    "file_url",
    "file_type",
    "created_at",
    "updated_at",
)


def _aliases(canonical: str) -> tuple[str, ...]:
    head, *rest = canonical.split("_")
    camel = head + "".join(part.capitalize() for part in rest)
    return (canonical, camel, camel.lower())


COLUMN_ALIASES: dict[str, str] = {
    alias: canonical for canonical in CANONICAL_COLUMNS for alias in _aliases(canonical)
}


def normalize_row(row: dict[str, Any]) -> dict[str, Any]:
    """Rename aliased keys to their canonical name.

    When several aliases of one column are present, the first non-null
    value wins.
    """
    normalized: dict[str, Any] = {}
    for key, value in row.items():
        name = COLUMN_ALIASES.get(key, key)
        if normalized.get(name) is None:
            normalized[name] = value
    return normalized


def normalize_rows(rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [normalize_row(row) for row in rows]
