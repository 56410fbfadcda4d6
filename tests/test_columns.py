"""Tests for source-row column normalization."""

from daftar.db.columns import COLUMN_ALIASES, normalize_row, normalize_rows


def test_aliases_cover_snake_camel_and_lower():
    assert COLUMN_ALIASES["file_url"] == "file_url"
    assert COLUMN_ALIASES["fileUrl"] == "file_url"
    assert COLUMN_ALIASES["fileurl"] == "file_url"
    assert COLUMN_ALIASES["expenseType"] == "expense_type"
    assert COLUMN_ALIASES["createdby"] == "created_by"


def test_lowercase_keys_are_renamed():
    row = {"id": 1, "fileurl": "/uploads/a.pdf", "filetype": "application/pdf"}

    assert normalize_row(row) == {
        "id": 1,
        "file_url": "/uploads/a.pdf",
        "file_type": "application/pdf",
    }


def test_camel_keys_are_renamed():
    row = {"id": 1, "projectId": 3, "employeeId": None}

    assert normalize_row(row) == {"id": 1, "project_id": 3, "employee_id": None}


def test_first_non_null_alias_wins():
    row = {"fileurl": None, "fileUrl": "/uploads/b.pdf", "file_url": "/uploads/c.pdf"}

    assert normalize_row(row) == {"file_url": "/uploads/b.pdf"}


def test_unknown_keys_pass_through():
    row = {"id": 9, "amount": 10, "Description": "x"}

    assert normalize_row(row) == row


def test_normalize_rows():
    rows = [{"createdBy": 1}, {"created_by": 2}]

    assert normalize_rows(rows) == [{"created_by": 1}, {"created_by": 2}]
