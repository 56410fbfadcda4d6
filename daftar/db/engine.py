"""Async SQLAlchemy access to the source database.

The sync core speaks plain parameterized SQL (``:name`` placeholders)
so the same statements run on Postgres (asyncpg) and SQLite (aiosqlite).

Usage::

    async with RowStore("postgresql+asyncpg://...") as store:
        rows = await store.fetch_all("SELECT * FROM projects")
"""

from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine


class RowStore:
    """Thin async wrapper returning rows as plain dicts."""

    def __init__(self, database_url: str, *, engine: AsyncEngine | None = None) -> None:
        self._engine = engine or create_async_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
        )

    async def __aenter__(self) -> "RowStore":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._engine.dispose()

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def fetch_all(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run a query and return every row as a dict."""
        async with self._engine.connect() as conn:
            result = await conn.execute(text(sql), params or {})
            return [dict(row) for row in result.mappings().all()]

    async def fetch_value(self, sql: str, params: dict[str, Any] | None = None) -> Any:
        """Run a query and return the first column of the first row."""
        async with self._engine.connect() as conn:
            result = await conn.execute(text(sql), params or {})
            return result.scalar()

    async def execute(self, sql: str, params: dict[str, Any] | None = None) -> int:
        """Run a write statement in its own transaction. Returns the rowcount."""
        async with self._engine.begin() as conn:
            result = await conn.execute(text(sql), params or {})
            return result.rowcount
