"""Password hashing and the htpasswd credential bundle.

The bundle is staged as a flat file (one ``name:hash`` line per tenant), read
back, published as a Secret by the caller and then removed. Removal failures
are logged and swallowed: by the time discard() runs, the Secret already
holds the data.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Protocol

import bcrypt

from .config import DEFAULT_BCRYPT_ROUNDS

logger = logging.getLogger(__name__)

HTPASSWD_FILENAME = "htpasswdfile.txt"
STAGING_FILE_MODE = 0o600


class CredentialStagingError(Exception):
    """Raised when the bundle cannot be written to or read from the staging directory."""

    pass


class PasswordHasher(Protocol):
    """One-way password hash producing htpasswd-compatible strings."""

    def hash(self, password: str) -> str: ...


class BcryptHasher:
    """bcrypt hasher; every call uses a fresh salt."""

    def __init__(self, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> None:
        self._rounds = rounds

    def hash(self, password: str) -> str:
        hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self._rounds))
        return hashed.decode("ascii")


def render_bundle(entries: Iterable[tuple[str, str]]) -> str:
    return "".join(f"{name}:{hashed}\n" for name, hashed in entries)


def bundle_users(bundle: str) -> list[str]:
    """User names present in an htpasswd bundle, in file order."""
    return [line.split(":", 1)[0] for line in bundle.splitlines() if ":" in line]


class CredentialStager:
    """Writes, reads and discards the staged htpasswd file."""

    def __init__(self, staging_dir: Path, hasher: PasswordHasher) -> None:
        self._staging_dir = staging_dir
        self._hasher = hasher

    @property
    def path(self) -> Path:
        return self._staging_dir / HTPASSWD_FILENAME

    def stage(self, tenants: Sequence[str], password: str) -> Path:
        """Hash ``password`` once per tenant and write the bundle file.

        Raises:
            CredentialStagingError: If the staging directory is not writable.
        """
        content = render_bundle((tenant, self._hasher.hash(password)) for tenant in tenants)

        try:
            self._staging_dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, STAGING_FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
        except OSError as e:
            raise CredentialStagingError(
                f"Cannot stage credential bundle at {self.path}: {e}"
            ) from e

        logger.info(
            "Staged credential bundle",
            extra={"path": str(self.path), "tenant_count": len(tenants)},
        )
        return self.path

    def read(self) -> str:
        try:
            return self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise CredentialStagingError(
                f"Cannot read staged credential bundle at {self.path}: {e}"
            ) from e

    def discard(self) -> None:
        """Remove the staged file. Never raises."""
        try:
            self.path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.warning(
                "Failed to remove staged credential bundle",
                extra={"path": str(self.path), "error": str(e)},
            )
