"""Single source of truth for all configuration and secrets.

All modules import from here, never from os.environ directly.

Lookup order for every key: process environment, then the env file
(secrets/app.env, or the SOPS-encrypted secrets/app.env.enc when
DAFTAR_USE_SOPS=true), then the default below.
"""

import os
from pathlib import Path

from daftar.secrets import load_env_file, load_secrets

PROJECT_ROOT = Path(__file__).resolve().parent.parent

USE_SOPS = os.environ.get("DAFTAR_USE_SOPS", "false").lower() == "true"


def _load() -> dict[str, str | None]:
    if USE_SOPS:
        return load_secrets(PROJECT_ROOT / "secrets/app.env.enc")
    return load_env_file(PROJECT_ROOT / "secrets/app.env")


_file_values = _load()


def _get(key: str, default: str = "") -> str:
    value = os.environ.get(key)
    if value is None:
        value = _file_values.get(key)
    return value if value is not None else default


# --- Source database (SQLAlchemy async URL) ---
DATABASE_URL: str = _get(
    "DATABASE_URL", f"sqlite+aiosqlite:///{PROJECT_ROOT / 'data' / 'daftar.db'}"
)

# --- Remote store (Supabase) ---
SUPABASE_URL: str = _get("SUPABASE_URL")
SUPABASE_SERVICE_ROLE_KEY: str = _get("SUPABASE_SERVICE_ROLE_KEY")
SUPABASE_ANON_KEY: str = _get("SUPABASE_ANON_KEY")
STORAGE_BUCKET: str = _get("STORAGE_BUCKET", "files")
BUCKET_SIZE_LIMIT_MB: int = int(_get("BUCKET_SIZE_LIMIT_MB", "100"))

# --- Local uploads ---
UPLOADS_DIR: str = _get("UPLOADS_DIR", str(PROJECT_ROOT / "uploads"))

# --- Sync tuning ---
SYNC_BATCH_SIZE: int = int(_get("SYNC_BATCH_SIZE", "50"))
MIGRATION_BATCH_SIZE: int = int(_get("MIGRATION_BATCH_SIZE", "100"))
MATCH_SINCE_DATE: str = _get("MATCH_SINCE_DATE", "2025-01-01")

# --- Bookkeeping ---
RUN_LOG_PATH: str = _get("RUN_LOG_PATH", str(PROJECT_ROOT / "data" / "sync_runs.jsonl"))
SESSION_DB_PATH: str = _get("SESSION_DB_PATH", str(PROJECT_ROOT / "data" / "sessions.db"))
SESSION_TTL_HOURS: int = int(_get("SESSION_TTL_HOURS", "24"))
