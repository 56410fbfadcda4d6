"""Read application settings from a plain or SOPS-encrypted .env file."""

import subprocess
from io import StringIO
from pathlib import Path

from dotenv import dotenv_values

SOPS_BINARY = "sops"


class SecretsError(RuntimeError):
    """The encrypted env file could not be decrypted."""


def _sops_command(path: Path) -> list[str]:
    # ``.env.enc`` carries no format hint, so name it on both sides
    return [
        SOPS_BINARY,
        "--decrypt",
        "--input-type",
        "dotenv",
        "--output-type",
        "dotenv",
        str(path),
    ]


def load_secrets(encrypted_path: str | Path) -> dict[str, str | None]:
    """Decrypt a SOPS-encrypted env file and parse it.

    Raises:
        FileNotFoundError: The encrypted file does not exist.
        SecretsError: ``sops`` is not installed or refused to decrypt.
            The message carries sops' own stderr.
    """
    path = Path(encrypted_path)
    if not path.exists():
        raise FileNotFoundError(f"Encrypted secrets file not found: {path}")

    try:
        completed = subprocess.run(
            _sops_command(path), capture_output=True, text=True, check=True
        )
    except FileNotFoundError as exc:
        raise SecretsError(f"{SOPS_BINARY} is not installed or not on PATH") from exc
    except subprocess.CalledProcessError as exc:
        detail = (exc.stderr or "").strip() or f"exit status {exc.returncode}"
        raise SecretsError(f"Could not decrypt {path.name}: {detail}") from exc

    return dict(dotenv_values(stream=StringIO(completed.stdout)))


def load_env_file(dotenv_path: str | Path) -> dict[str, str | None]:
    """Load a plain .env file. A missing file yields an empty mapping.

    Deployments that inject settings through the process environment
    (Netlify, containers) ship no env file at all.
    """
    path = Path(dotenv_path)
    if not path.exists():
        return {}

    return dict(dotenv_values(path))
