"""Outgoing authentication for upstream MCP servers."""

from mcp_aggregator.bridge.auth.callback import CallbackListener, open_browser
from mcp_aggregator.bridge.auth.credentials import AuthCredential, CredentialStore
from mcp_aggregator.bridge.auth.oauth import OAuth2Client, generate_pkce
from mcp_aggregator.bridge.auth.provider import (
    AuthProvider,
    HeaderAuth,
    OAuth2Provider,
    StaticTokenProvider,
    create_auth_provider,
)

__all__ = [
    "AuthCredential",
    "AuthProvider",
    "CallbackListener",
    "CredentialStore",
    "HeaderAuth",
    "OAuth2Client",
    "OAuth2Provider",
    "StaticTokenProvider",
    "create_auth_provider",
    "generate_pkce",
    "open_browser",
]
