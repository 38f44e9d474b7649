"""Authentication providers for outgoing upstream connections.

Implements two strategies:

* **StaticTokenProvider** – the ``Authorization: Bearer`` header from config.
* **OAuth2Provider** – a bearer token obtained through :class:`OAuth2Client`.

Both expose an :class:`httpx.Auth` hook that stamps their headers on every
request the MCP transport sends.
"""

from __future__ import annotations

import abc
import logging
from typing import Dict, Generator, Optional

import httpx

from mcp_aggregator.bridge.auth.credentials import AuthCredential
from mcp_aggregator.bridge.auth.oauth import OAuth2Client
from mcp_aggregator.config.schema import UpstreamDescriptor, WebSocketTransport
from mcp_aggregator.display.logging_config import secret_redaction_filter
from mcp_aggregator.errors import ConfigurationError

logger = logging.getLogger(__name__)


class HeaderAuth(httpx.Auth):
    """Set fixed headers (typically ``Authorization``) on each outgoing request."""

    def __init__(self, headers: Dict[str, str]) -> None:
        self._headers = dict(headers)

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers.update(self._headers)
        yield request


# ── Abstract base ─────────────────────────────────────────────────────


class AuthProvider(abc.ABC):
    """Base class for outgoing-authentication strategies."""

    @abc.abstractmethod
    def get_headers(self) -> Dict[str, str]:
        """Return HTTP headers to inject into outgoing requests."""

    @abc.abstractmethod
    def redacted_repr(self) -> str:
        """Human-readable description with sensitive values masked."""

    @property
    @abc.abstractmethod
    def token(self) -> str:
        """Token carried in the ``Authorization`` header."""

    def httpx_auth(self) -> httpx.Auth:
        return HeaderAuth(self.get_headers())


# ── Static bearer token ──────────────────────────────────────────────


class StaticTokenProvider(AuthProvider):
    """Fixed bearer token from the configured ``Authorization`` header."""

    def __init__(self, token: str) -> None:
        self._token = token
        secret_redaction_filter.register(token)

    @property
    def token(self) -> str:
        return self._token

    def get_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def redacted_repr(self) -> str:
        return f"StaticTokenProvider(token={_redact(self._token)})"


# ── OAuth 2.0 authorization code ────────────────────────────────────


class OAuth2Provider(AuthProvider):
    """Bearer token from a credential acquired at connect time.

    The token is captured once; a later refresh on disk does not affect an
    established connection.
    """

    def __init__(self, credential: AuthCredential) -> None:
        self.credential = credential

    @property
    def token(self) -> str:
        return self.credential.access_token

    def get_headers(self) -> Dict[str, str]:
        token_type = self.credential.token_type or "Bearer"
        if token_type.lower() == "bearer":
            token_type = "Bearer"
        return {"Authorization": f"{token_type} {self.token}"}

    def redacted_repr(self) -> str:
        return (
            f"OAuth2Provider(client_id={self.credential.client_id!r}, "
            f"access_token={_redact(self.token)})"
        )


# ── Factory ──────────────────────────────────────────────────────────


async def create_auth_provider(
    descriptor: UpstreamDescriptor,
    oauth_client: Optional[OAuth2Client] = None,
) -> Optional[AuthProvider]:
    """Build the :class:`AuthProvider` for *descriptor*, or ``None``.

    For ``oauth2`` this runs :meth:`OAuth2Client.acquire`, which may open a
    browser and wait for the user.
    """
    transport = descriptor.transport
    if transport.type == "stdio" or isinstance(transport, WebSocketTransport):
        return None

    if transport.auth == "bearer":
        token = transport.bearer_token
        if not token:
            raise ConfigurationError(f"Upstream '{descriptor.id}' has no bearer token configured.")
        return StaticTokenProvider(token)

    if transport.auth == "oauth2":
        if oauth_client is None:
            raise ConfigurationError(f"Upstream '{descriptor.id}' requires an OAuth2 client.")
        credential = await oauth_client.acquire(
            transport.url, transport.client_id, transport.client_secret
        )
        provider = OAuth2Provider(credential)
        logger.debug("[%s] Auth provider: %s", descriptor.id, provider.redacted_repr())
        return provider

    return None


# ── Helpers ──────────────────────────────────────────────────────────


def _redact(value: str, visible: int = 4) -> str:
    """Mask all but the last *visible* characters."""
    if len(value) <= visible:
        return "****"
    return "*" * (len(value) - visible) + value[-visible:]
