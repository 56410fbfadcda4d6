"""Async client for the Supabase storage and PostgREST APIs.

Only the handful of calls the sync core needs: bucket bootstrap, blob
upload, object listing, batched row upserts and row counts.
"""

import asyncio
import logging
from typing import Any

import httpx
from httpx import RemoteProtocolError
from pydantic_core import to_jsonable_python

from daftar.schemas.sync import HealthReport

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
RETRY_DELAY = 1.0

PUBLIC_OBJECT_PATH = "/storage/v1/object/public/"


async def _retry_on_disconnect(coro_fn, *args, **kwargs):
    """Retry an async call on ``RemoteProtocolError`` (server disconnect).

    Retries up to ``MAX_RETRIES`` times with a fixed delay between attempts.
    """
    for attempt in range(MAX_RETRIES + 1):
        try:
            return await coro_fn(*args, **kwargs)
        except RemoteProtocolError:
            if attempt == MAX_RETRIES:
                raise
            logger.warning(
                "Connection dropped (attempt %d/%d), retrying...",
                attempt + 1,
                MAX_RETRIES,
            )
            await asyncio.sleep(RETRY_DELAY)


def _error_text(response: httpx.Response) -> str:
    """Pull the human-readable message out of a Supabase error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("message", "error", "msg", "details"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"


class SupabaseClient:
    """Async HTTP client for a Supabase project.

    Usage::

        async with SupabaseClient(url, service_key) as client:
            await client.ensure_bucket("files")
            url = await client.upload_blob("files", "a.pdf", data, "application/pdf")
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "x-client-info": "daftar-sync",
            },
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "SupabaseClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def base_url(self) -> str:
        return self._base_url

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def ensure_bucket(
        self,
        name: str,
        *,
        public: bool = True,
        size_limit_bytes: int = 100 * 1024 * 1024,
    ) -> bool:
        """Create a public bucket unless it already exists.

        Returns True when the bucket exists afterwards. "Already exists"
        answers from the API count as success.
        """
        try:
            response = await _retry_on_disconnect(
                self._client.get, f"/storage/v1/bucket/{name}"
            )
            if response.status_code == 200:
                return True

            response = await _retry_on_disconnect(
                self._client.post,
                "/storage/v1/bucket",
                json={
                    "id": name,
                    "name": name,
                    "public": public,
                    "file_size_limit": size_limit_bytes,
                },
            )
        except httpx.HTTPError as exc:
            logger.warning("Could not ensure bucket %s: %s", name, exc)
            return False

        if response.is_success:
            logger.info("Created storage bucket %s", name)
            return True
        message = _error_text(response)
        if response.status_code == 409 or "already exists" in message.lower():
            return True
        logger.warning("Could not create bucket %s: %s", name, message)
        return False

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self._base_url}{PUBLIC_OBJECT_PATH}{bucket}/{key}"

    async def upload_blob(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str | None:
        """Upload bytes under ``key`` (overwriting) and return the public URL.

        Returns None on failure; the caller counts failures.
        """
        try:
            response = await _retry_on_disconnect(
                self._client.post,
                f"/storage/v1/object/{bucket}/{key}",
                content=data,
                headers={"Content-Type": content_type, "x-upsert": "true"},
            )
        except httpx.HTTPError as exc:
            logger.warning("Upload of %s failed: %s", key, exc)
            return None

        if not response.is_success:
            logger.warning("Upload of %s rejected: %s", key, _error_text(response))
            return None
        return self.public_url(bucket, key)

    async def list_objects(self, bucket: str, *, prefix: str = "", limit: int = 1000) -> list[dict]:
        """List objects in a bucket (single page)."""
        response = await _retry_on_disconnect(
            self._client.post,
            f"/storage/v1/object/list/{bucket}",
            json={"prefix": prefix, "limit": limit, "offset": 0},
        )
        response.raise_for_status()
        return response.json()

    async def list_buckets(self) -> list[dict]:
        response = await _retry_on_disconnect(self._client.get, "/storage/v1/bucket")
        response.raise_for_status()
        return response.json()

    # ------------------------------------------------------------------
    # Rows (PostgREST)
    # ------------------------------------------------------------------

    async def upsert_rows(
        self,
        table: str,
        rows: list[dict[str, Any]],
        on_conflict: str = "id",
    ) -> str | None:
        """Insert-or-update ``rows`` keyed on ``on_conflict``.

        One request per call, so the caller controls batch size.

        Returns:
            None on success, otherwise the error message.
        """
        if not rows:
            return None
        try:
            response = await _retry_on_disconnect(
                self._client.post,
                f"/rest/v1/{table}",
                params={"on_conflict": on_conflict},
                json=to_jsonable_python(rows),
                headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            )
        except httpx.HTTPError as exc:
            return str(exc) or type(exc).__name__

        if response.is_success:
            return None
        return _error_text(response)

    async def count_rows(self, table: str) -> int:
        """Exact row count of a table, read from the Content-Range header."""
        response = await _retry_on_disconnect(
            self._client.get,
            f"/rest/v1/{table}",
            params={"select": "id", "limit": "1"},
            headers={"Prefer": "count=exact"},
        )
        response.raise_for_status()
        content_range = response.headers.get("content-range", "")
        # Format: "0-0/123" or "*/0"
        total = content_range.rpartition("/")[2]
        return int(total) if total.isdigit() else 0

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def health_check(self) -> HealthReport:
        """Check the row store and the storage API independently."""
        report = HealthReport(configured=True)

        try:
            response = await self._client.get(
                "/rest/v1/users", params={"select": "id", "limit": "1"}
            )
            response.raise_for_status()
            report.database = True
        except httpx.HTTPError as exc:
            report.error_messages.append(f"database: {exc}")

        try:
            await self.list_buckets()
            report.storage = True
        except httpx.HTTPError as exc:
            report.error_messages.append(f"storage: {exc}")

        return report


def create_remote_client(
    base_url: str,
    service_key: str,
    anon_key: str = "",
    **kwargs,
) -> SupabaseClient | None:
    """Build a client from configuration, or None when it is incomplete.

    The service-role key is preferred; the anon key is the fallback.
    """
    api_key = service_key or anon_key
    if not base_url or not api_key:
        logger.warning("Supabase is not configured (missing URL or API key)")
        return None
    return SupabaseClient(base_url, api_key, **kwargs)
