"""Shared fixtures for daftar tests.

``store`` is a throwaway SQLite source database with the accounting
schema. ``fake_supabase`` is an in-memory stand-in for the Supabase
storage and PostgREST endpoints, wired into ``remote`` through
``httpx.MockTransport``.
"""

import json
import os
from datetime import date, datetime, time, timezone

import httpx
import pytest

from daftar.db.engine import RowStore
from daftar.integrations.supabase import SupabaseClient

SUPABASE_TEST_URL = "https://proj.supabase.co"

SCHEMA = [
    """
    CREATE TABLE transactions (
        id           INTEGER PRIMARY KEY,
        date         TEXT NOT NULL,
        type         TEXT NOT NULL,
        expense_type TEXT,
        amount       NUMERIC NOT NULL DEFAULT 0,
        description  TEXT DEFAULT '',
        project_id   INTEGER,
        created_by   INTEGER,
        employee_id  INTEGER,
        file_url     TEXT,
        file_type    TEXT,
        archived     INTEGER DEFAULT 0
    )
    """,
    "CREATE TABLE projects (id INTEGER PRIMARY KEY, name TEXT, status TEXT)",
    """
    CREATE TABLE users (
        id          INTEGER PRIMARY KEY,
        username    TEXT,
        password    TEXT,
        name        TEXT,
        email       TEXT,
        role        TEXT,
        permissions TEXT,
        active      INTEGER
    )
    """,
    "CREATE TABLE expense_types (id INTEGER PRIMARY KEY, name TEXT)",
    "CREATE TABLE employees (id INTEGER PRIMARY KEY, name TEXT, salary NUMERIC)",
    "CREATE TABLE settings (id INTEGER PRIMARY KEY, key TEXT, value TEXT)",
]


@pytest.fixture(autouse=True)
def _no_sops(monkeypatch):
    """Ensure tests never try to invoke SOPS."""
    monkeypatch.setenv("DAFTAR_USE_SOPS", "false")


@pytest.fixture()
def project_root():
    """Return the project root path."""
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def midnight_ms(day: date) -> int:
    """UTC midnight of ``day`` in epoch milliseconds."""
    return int(datetime.combine(day, time.min, tzinfo=timezone.utc).timestamp() * 1000)


# ------------------------------------------------------------------
# Source database
# ------------------------------------------------------------------


async def create_schema(store: RowStore) -> None:
    for statement in SCHEMA:
        await store.execute(statement)


async def insert_transaction(
    store: RowStore,
    id: int,
    day: str = "2025-01-15",
    *,
    type: str = "expense",
    amount: float = 100.0,
    description: str = "",
    file_url: str | None = None,
    file_type: str | None = None,
    created_by: int | None = None,
) -> None:
    await store.execute(
        "INSERT INTO transactions (id, date, type, amount, description, created_by,"
        " file_url, file_type) VALUES (:id, :date, :type, :amount, :description,"
        " :created_by, :file_url, :file_type)",
        {
            "id": id,
            "date": day,
            "type": type,
            "amount": amount,
            "description": description,
            "created_by": created_by,
            "file_url": file_url,
            "file_type": file_type,
        },
    )


async def fetch_transaction(store: RowStore, id: int) -> dict:
    rows = await store.fetch_all("SELECT * FROM transactions WHERE id = :id", {"id": id})
    return rows[0]


@pytest.fixture()
async def store(tmp_path):
    row_store = RowStore(f"sqlite+aiosqlite:///{tmp_path / 'source.db'}")
    await create_schema(row_store)
    yield row_store
    await row_store.close()


# ------------------------------------------------------------------
# Fake Supabase
# ------------------------------------------------------------------


class FakeSupabase:
    """Just enough of the Supabase HTTP API for the sync core.

    Failure knobs:
        fail_upload_names: upload keys containing any of these are rejected.
        fail_tables: upserts into these tables are rejected.
        fail_row_ids: upserts containing any of these ids are rejected.
    """

    def __init__(self) -> None:
        self.buckets: dict[str, dict] = {}
        self.objects: dict[str, dict[str, tuple[bytes, str]]] = {}
        self.tables: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.fail_upload_names: set[str] = set()
        self.fail_tables: set[str] = set()
        self.fail_row_ids: set[int] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        method = request.method

        if path == "/storage/v1/bucket":
            if method == "GET":
                return httpx.Response(200, json=list(self.buckets.values()))
            body = json.loads(request.content)
            if body["name"] in self.buckets:
                return httpx.Response(400, json={"message": "The resource already exists"})
            self.buckets[body["name"]] = body
            self.objects.setdefault(body["name"], {})
            return httpx.Response(200, json={"name": body["name"]})

        if path.startswith("/storage/v1/bucket/"):
            name = path.removeprefix("/storage/v1/bucket/")
            if name in self.buckets:
                return httpx.Response(200, json=self.buckets[name])
            return httpx.Response(400, json={"statusCode": "404", "message": "Bucket not found"})

        if path.startswith("/storage/v1/object/list/"):
            bucket = path.removeprefix("/storage/v1/object/list/")
            names = sorted(self.objects.get(bucket, {}))
            return httpx.Response(200, json=[{"name": n} for n in names])

        if path.startswith("/storage/v1/object/"):
            bucket, _, key = path.removeprefix("/storage/v1/object/").partition("/")
            if any(marker in key for marker in self.fail_upload_names):
                return httpx.Response(400, json={"message": "Invalid key"})
            content_type = request.headers.get("content-type", "")
            self.objects.setdefault(bucket, {})[key] = (request.content, content_type)
            return httpx.Response(200, json={"Key": f"{bucket}/{key}"})

        if path.startswith("/rest/v1/"):
            table = path.removeprefix("/rest/v1/")
            if method == "GET":
                count = len(self.tables.get(table, {}))
                end = max(count - 1, 0)
                return httpx.Response(
                    200, json=[], headers={"content-range": f"0-{end}/{count}"}
                )
            if table in self.fail_tables:
                return httpx.Response(
                    404, json={"message": f'relation "{table}" does not exist'}
                )
            rows = json.loads(request.content)
            if any(row.get("id") in self.fail_row_ids for row in rows):
                return httpx.Response(400, json={"message": "violates check constraint"})
            conflict = request.url.params.get("on_conflict", "id")
            target = self.tables.setdefault(table, {})
            for row in rows:
                target.setdefault(row[conflict], {}).update(row)
            return httpx.Response(201)

        return httpx.Response(404, json={"message": f"no route for {method} {path}"})


@pytest.fixture()
def fake_supabase():
    return FakeSupabase()


@pytest.fixture()
async def remote(fake_supabase):
    async with SupabaseClient(
        SUPABASE_TEST_URL,
        "service-key",
        transport=httpx.MockTransport(fake_supabase.handler),
    ) as client:
        yield client
