"""Session stores for the web layer.

Handlers receive a ``SessionStore`` instead of reaching for a
process-wide dict, so tests can hand in ``InMemorySessionStore`` and
production can use ``SqliteSessionStore``. Expired sessions are dropped
on lookup.
"""

import logging
import secrets
import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Session(BaseModel):
    token: str
    user_id: int
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(UTC)) >= self.expires_at


class SessionStore(Protocol):
    def create(self, user_id: int) -> Session: ...

    def get(self, token: str) -> Session | None: ...

    def invalidate(self, token: str) -> bool: ...


def _new_session(user_id: int, ttl: timedelta) -> Session:
    now = datetime.now(UTC)
    return Session(
        token=secrets.token_urlsafe(32),
        user_id=user_id,
        created_at=now,
        expires_at=now + ttl,
    )


class InMemorySessionStore:
    """Dict-backed store. Sessions vanish with the process."""

    def __init__(self, ttl: timedelta = timedelta(hours=24)) -> None:
        self._ttl = ttl
        self._sessions: dict[str, Session] = {}

    def create(self, user_id: int) -> Session:
        session = _new_session(user_id, self._ttl)
        self._sessions[session.token] = session
        return session

    def get(self, token: str) -> Session | None:
        session = self._sessions.get(token)
        if session is None:
            return None
        if session.is_expired():
            self.invalidate(token)
            return None
        return session

    def invalidate(self, token: str) -> bool:
        return self._sessions.pop(token, None) is not None


_CREATE_SESSIONS = """
CREATE TABLE IF NOT EXISTS sessions (
    token       TEXT PRIMARY KEY,
    user_id     INTEGER NOT NULL,
    created_at  TEXT NOT NULL,
    expires_at  TEXT NOT NULL
)
"""

_INSERT_SESSION = """
INSERT INTO sessions (token, user_id, created_at, expires_at)
VALUES (?, ?, ?, ?)
"""

_SELECT_SESSION = """
SELECT token, user_id, created_at, expires_at FROM sessions WHERE token = ?
"""

_DELETE_SESSION = "DELETE FROM sessions WHERE token = ?"

_DELETE_EXPIRED = "DELETE FROM sessions WHERE expires_at <= ?"


class SqliteSessionStore:
    """SQLite-backed store that survives restarts.

    Usage::

        with SqliteSessionStore("/path/to/sessions.db") as store:
            session = store.create(user_id=1)
    """

    def __init__(self, db_path: str | Path, ttl: timedelta = timedelta(hours=24)) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ttl = ttl
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_CREATE_SESSIONS)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SqliteSessionStore":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def create(self, user_id: int) -> Session:
        session = _new_session(user_id, self._ttl)
        self._conn.execute(
            _INSERT_SESSION,
            (
                session.token,
                session.user_id,
                session.created_at.isoformat(),
                session.expires_at.isoformat(),
            ),
        )
        self._conn.commit()
        return session

    def get(self, token: str) -> Session | None:
        row = self._conn.execute(_SELECT_SESSION, (token,)).fetchone()
        if row is None:
            return None
        session = Session(
            token=row[0],
            user_id=row[1],
            created_at=datetime.fromisoformat(row[2]),
            expires_at=datetime.fromisoformat(row[3]),
        )
        if session.is_expired():
            self.invalidate(token)
            return None
        return session

    def invalidate(self, token: str) -> bool:
        cursor = self._conn.execute(_DELETE_SESSION, (token,))
        self._conn.commit()
        return cursor.rowcount > 0

    def purge_expired(self) -> int:
        """Delete every expired session. Returns how many were removed."""
        cursor = self._conn.execute(_DELETE_EXPIRED, (datetime.now(UTC).isoformat(),))
        self._conn.commit()
        if cursor.rowcount:
            logger.info("Purged %d expired session(s)", cursor.rowcount)
        return cursor.rowcount
