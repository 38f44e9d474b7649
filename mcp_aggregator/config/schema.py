"""Upstream server descriptor models.

Defines Pydantic models for stdio, streamable-http, SSE and (declared but
unsupported) WebSocket upstream MCP servers.  The persisted format written
by earlier releases (``requiresAuth`` / ``authType`` / camelCase keys) is
normalised on load.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

AuthKind = Literal["none", "bearer", "oauth2"]

_AUTH_ALIASES = {
    "bearer-static": "bearer",
    "static": "bearer",
}

# RFC 3986 scheme; resource URIs are namespaced as "<id>://<uri>".
_URI_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*$")


def _has_authorization(headers: Optional[Dict[str, str]]) -> bool:
    return any(k.lower() == "authorization" for k in (headers or {}))


def _validate_http_url(v: str) -> str:
    v = v.strip()
    if not v.startswith(("http://", "https://")):
        raise ValueError(f"URL '{v}' must start with http:// or https://")
    return v


class _TransportBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


# ── Transport variants ───────────────────────────────────────────────────


class StdioTransport(_TransportBase):
    """Local subprocess speaking MCP over stdin/stdout."""

    type: Literal["stdio"]
    command: str = Field(..., min_length=1, description="Executable to run")
    args: List[str] = Field(default_factory=list)
    env: Optional[Dict[str, str]] = None

    @field_validator("command")
    @classmethod
    def _strip_command(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("command must be a non-empty string")
        return v


class _HttpTransport(_TransportBase):
    """Shared fields for the HTTP-based transports."""

    url: str = Field(..., min_length=1)
    headers: Dict[str, str] = Field(default_factory=dict)
    auth: AuthKind = "none"
    client_id: Optional[str] = Field(default=None, alias="clientId")
    client_secret: Optional[str] = Field(default=None, alias="clientSecret")

    @model_validator(mode="before")
    @classmethod
    def _normalise_auth(cls, data: Any) -> Any:
        """Map ``requiresAuth``/``authType`` onto ``auth``.

        ``requiresAuth: true, authType: oauth2`` selects OAuth 2.0; a
        configured ``Authorization`` header otherwise selects a static
        bearer token.
        """
        if not isinstance(data, dict):
            return data
        data = dict(data)
        requires_auth = data.pop("requiresAuth", None)
        auth_type = data.pop("authType", None)
        auth = data.get("auth")
        if isinstance(auth, str):
            data["auth"] = _AUTH_ALIASES.get(auth, auth)
        elif auth is None:
            if requires_auth and auth_type == "oauth2":
                data["auth"] = "oauth2"
            elif _has_authorization(data.get("headers")):
                data["auth"] = "bearer"
            else:
                data["auth"] = "none"
        return data

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        return _validate_http_url(v)

    @model_validator(mode="after")
    def _check_bearer_header(self) -> "_HttpTransport":
        if self.auth == "bearer" and not _has_authorization(self.headers):
            raise ValueError("auth 'bearer' requires an 'Authorization' header")
        return self

    @property
    def bearer_token(self) -> Optional[str]:
        """Token from the configured ``Authorization: Bearer`` header, if any."""
        for key, value in self.headers.items():
            if key.lower() == "authorization":
                scheme, _, token = value.partition(" ")
                return token.strip() if scheme.lower() == "bearer" else value
        return None


class StreamableHttpTransport(_HttpTransport):
    """Long-lived streamable HTTP endpoint."""

    type: Literal["streamable-http"]


class SseTransport(_HttpTransport):
    """Legacy server-sent-events endpoint."""

    type: Literal["sse"]


class WebSocketTransport(_TransportBase):
    """Declared for compatibility; connecting fails with UnsupportedTransport."""

    type: Literal["websocket"]
    url: str = Field(..., min_length=1)
    headers: Dict[str, str] = Field(default_factory=dict)


# Discriminated union: pick the right model based on "type" field
TransportConfig = Annotated[
    Union[StdioTransport, StreamableHttpTransport, SseTransport, WebSocketTransport],
    Field(discriminator="type"),
]


# ── Upstream descriptor ──────────────────────────────────────────────────


class UpstreamDescriptor(BaseModel):
    """One configured upstream MCP server."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1, description="Stable identifier, used as namespace.")
    name: str = Field(default="", description="Human-readable display name.")
    description: Optional[str] = None
    transport: TransportConfig
    created_at: Optional[int] = Field(default=None, alias="createdAt")
    last_used: Optional[int] = Field(default=None, alias="lastUsed")

    @field_validator("id")
    @classmethod
    def _strip_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("id must be a non-empty string")
        return v

    @model_validator(mode="before")
    @classmethod
    def _default_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name") and isinstance(data.get("id"), str):
            data = {**data, "name": data["id"].strip()}
        return data

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def transport_type(self) -> str:
        return self.transport.type

    @property
    def is_uri_scheme(self) -> bool:
        """Whether :attr:`id` can prefix namespaced resource URIs."""
        return bool(_URI_SCHEME_RE.match(self.id))
