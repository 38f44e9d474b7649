"""Persisted OAuth credentials, keyed by upstream id.

The on-disk layout is a single JSON object mapping upstream ids to
credential records (camelCase keys, ``expiresAt`` in epoch milliseconds)::

    {
      "linear": {
        "clientId": "abc",
        "accessToken": "…",
        "refreshToken": "…",
        "tokenType": "Bearer",
        "expiresAt": 1767225600000,
        "registrationResponse": {"client_id": "abc", …}
      }
    }
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class AuthCredential(BaseModel):
    """A bearer credential for one upstream."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., alias="accessToken")
    token_type: str = Field(default="Bearer", alias="tokenType")
    refresh_token: Optional[str] = Field(default=None, alias="refreshToken")
    expires_at_ms: Optional[int] = Field(default=None, alias="expiresAt")
    client_id: str = Field(..., alias="clientId")
    client_secret: Optional[str] = Field(default=None, alias="clientSecret")
    registration: Optional[Dict[str, Any]] = Field(default=None, alias="registrationResponse")

    @property
    def expires_at(self) -> Optional[float]:
        """Absolute expiry in epoch seconds, or ``None`` for no expiry."""
        if self.expires_at_ms is None:
            return None
        return self.expires_at_ms / 1000.0

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (time.time() if now is None else now)

    @classmethod
    def from_token_response(
        cls,
        payload: Dict[str, Any],
        client_id: str,
        client_secret: Optional[str] = None,
        *,
        previous_refresh_token: Optional[str] = None,
        registration: Optional[Dict[str, Any]] = None,
        now: Optional[float] = None,
    ) -> "AuthCredential":
        """Build a credential from an OAuth token endpoint response."""
        issued_at = time.time() if now is None else now
        expires_in = payload.get("expires_in")
        expires_at_ms = None
        if expires_in:
            expires_at_ms = int((issued_at + float(expires_in)) * 1000)
        return cls(
            access_token=payload["access_token"],
            token_type=payload.get("token_type") or "Bearer",
            refresh_token=payload.get("refresh_token") or previous_refresh_token,
            expires_at_ms=expires_at_ms,
            client_id=client_id,
            client_secret=client_secret,
            registration=registration,
        )


class CredentialStore:
    """JSON file store for :class:`AuthCredential` records.

    Reads and writes are serialised with an :class:`asyncio.Lock`; the file
    is written with ``0600`` permissions.
    """

    def __init__(self, fpath: str) -> None:
        self.fpath = fpath
        self._lock = asyncio.Lock()

    def _read_all(self) -> Dict[str, Any]:
        """Return every stored record; an unreadable document counts as empty.

        The next :meth:`save` replaces such a document.
        """
        try:
            with open(self.fpath, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            logger.warning(
                "Credential file '%s' is not valid JSON and will be ignored: %s", self.fpath, exc
            )
            return {}
        if not isinstance(data, dict):
            logger.warning(
                "Credential file '%s' must contain a JSON object (got %s); it will be ignored.",
                self.fpath,
                type(data).__name__,
            )
            return {}
        return data

    def _write_all(self, data: Dict[str, Any]) -> None:
        parent = os.path.dirname(os.path.abspath(self.fpath))
        os.makedirs(parent, exist_ok=True)
        with open(self.fpath, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.chmod(self.fpath, 0o600)

    async def load(self, key: str) -> Optional[AuthCredential]:
        async with self._lock:
            raw = self._read_all().get(key)
        if raw is None:
            return None
        try:
            return AuthCredential.model_validate(raw)
        except ValidationError as exc:
            logger.warning(
                "[%s] Stored credential is malformed and will be ignored: %s",
                key,
                exc,
            )
            return None

    async def save(self, key: str, credential: AuthCredential) -> None:
        async with self._lock:
            data = self._read_all()
            data[key] = credential.model_dump(by_alias=True, exclude_none=True)
            self._write_all(data)
        logger.info("[%s] Credentials saved to %s.", key, self.fpath)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            data = self._read_all()
            if key not in data:
                return False
            del data[key]
            self._write_all(data)
        logger.info("[%s] Credentials cleared.", key)
        return True
