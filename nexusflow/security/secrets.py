"""One-time disclosure of application master secrets.

The plaintext secret exists only in the value returned by ``issue`` or
``rotate``. The vault keeps an scrypt digest and its salt, so a lost secret
can be replaced but never recovered.
"""

from __future__ import annotations

import base64
import logging
import os
import secrets
from datetime import datetime, timezone
from typing import Dict, Optional

from cryptography.exceptions import InvalidKey
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from pydantic import BaseModel, ConfigDict, Field

from ..errors import NexusflowError

logger = logging.getLogger(__name__)

_SALT_BYTES = 16
_SECRET_BYTES = 32


class SecretAlreadyIssued(NexusflowError):
    """The application already has a secret; use ``rotate``."""


class IssuedSecret(BaseModel):
    """Returned exactly once per issued version."""

    model_config = ConfigDict(frozen=True)

    app_key: str
    version: int
    master_secret: str


class SecretInfo(BaseModel):
    """What the vault may tell anyone about a stored secret."""

    model_config = ConfigDict(frozen=True)

    app_key: str
    version: int
    issued_at: datetime


class _StoredSecret(BaseModel):
    app_key: str
    version: int
    salt: str
    digest: str
    issued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def _kdf(salt: bytes) -> Scrypt:
    return Scrypt(salt=salt, length=32, n=2**14, r=8, p=1)


class SecretVault:
    """Issue, rotate and verify application master secrets."""

    def __init__(self) -> None:
        self._stored: Dict[str, _StoredSecret] = {}

    def _store(self, app_key: str, version: int) -> IssuedSecret:
        plaintext = secrets.token_urlsafe(_SECRET_BYTES)
        salt = os.urandom(_SALT_BYTES)
        digest = _kdf(salt).derive(plaintext.encode())
        self._stored[app_key] = _StoredSecret(
            app_key=app_key,
            version=version,
            salt=base64.b64encode(salt).decode(),
            digest=base64.b64encode(digest).decode(),
        )
        return IssuedSecret(app_key=app_key, version=version, master_secret=plaintext)

    def issue(self, app_key: str) -> IssuedSecret:
        """Create the first secret for ``app_key`` and disclose it once.

        Raises:
            SecretAlreadyIssued: if ``app_key`` already has a secret.
        """
        if app_key in self._stored:
            raise SecretAlreadyIssued(f"secret for '{app_key}' was already issued")
        logger.info(f"Issued master secret for {app_key}")
        return self._store(app_key, 1)

    def rotate(self, app_key: str) -> IssuedSecret:
        """Replace the secret for ``app_key``; the old one stops verifying."""
        current = self._stored.get(app_key)
        version = current.version + 1 if current else 1
        logger.info(f"Rotated master secret for {app_key} to version {version}")
        return self._store(app_key, version)

    def verify(self, app_key: str, candidate: str) -> bool:
        stored = self._stored.get(app_key)
        if stored is None:
            return False
        kdf = _kdf(base64.b64decode(stored.salt))
        try:
            kdf.verify(candidate.encode(), base64.b64decode(stored.digest))
        except InvalidKey:
            return False
        return True

    def describe(self, app_key: str) -> Optional[SecretInfo]:
        stored = self._stored.get(app_key)
        if stored is None:
            return None
        return SecretInfo(
            app_key=stored.app_key, version=stored.version, issued_at=stored.issued_at
        )
