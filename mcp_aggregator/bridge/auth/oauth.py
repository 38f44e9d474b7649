"""OAuth 2.0 authorization code flow (PKCE, RFC 7591 registration).

One :class:`OAuth2Client` manages the credential of one upstream:

* a stored, unexpired credential is returned as-is;
* an expired credential with a refresh token is refreshed once, and any
  failure of that refresh falls back to full authorization once;
* otherwise the full browser flow runs: metadata discovery, client
  identity resolution, authorization, code exchange.

Every credential obtained is persisted through the
:class:`~mcp_aggregator.bridge.auth.credentials.CredentialStore`.
"""

from __future__ import annotations

import base64
import contextlib
import hashlib
import logging
import secrets
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit

import httpx

from mcp_aggregator.bridge.auth.callback import CallbackListener, open_browser
from mcp_aggregator.bridge.auth.credentials import AuthCredential, CredentialStore
from mcp_aggregator.constants import (
    HTTP_TIMEOUT,
    OAUTH_CLIENT_NAME,
    OAUTH_DEFAULT_SCOPE,
    OAUTH_METADATA_PATH,
    OAUTH_REDIRECT_URI,
)
from mcp_aggregator.display.logging_config import secret_redaction_filter
from mcp_aggregator.errors import (
    AuthError,
    DiscoveryError,
    RefreshError,
    RegistrationError,
    TokenExchangeError,
)

logger = logging.getLogger(__name__)

_REGISTRATION_GUIDANCE = (
    "To fix this, register an OAuth application with the provider manually, "
    f"set its redirect URI to {OAUTH_REDIRECT_URI}, and add 'clientId' "
    "(and 'clientSecret' if issued) to this server's configuration."
)

_REQUIRED_METADATA = ("authorization_endpoint", "token_endpoint")


def generate_pkce() -> Tuple[str, str]:
    """Return a ``(code_verifier, code_challenge)`` pair for the S256 method."""
    verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def generate_state() -> str:
    return secrets.token_hex(16)


def metadata_url(upstream_url: str) -> str:
    """Well-known authorization server metadata URL for *upstream_url*'s origin."""
    parts = urlsplit(upstream_url)
    return f"{parts.scheme}://{parts.netloc}{OAUTH_METADATA_PATH}"


def _describe(resp: httpx.Response) -> str:
    return f"HTTP {resp.status_code} {resp.reason_phrase} - {resp.text[:500]}"


class OAuth2Client:
    """Authentication lifecycle for a single upstream id."""

    def __init__(
        self,
        upstream_id: str,
        store: CredentialStore,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        callback_factory: Callable[[str], CallbackListener] = CallbackListener,
        browser: Callable[[str], None] = open_browser,
        redirect_uri: str = OAUTH_REDIRECT_URI,
        scope: str = OAUTH_DEFAULT_SCOPE,
    ) -> None:
        self.upstream_id = upstream_id
        self._store = store
        self._http_client = http_client
        self._callback_factory = callback_factory
        self._browser = browser
        self.redirect_uri = redirect_uri
        self.scope = scope

    @contextlib.asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
        else:
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
                yield client

    @staticmethod
    def _register_secrets(credential: AuthCredential) -> None:
        secret_redaction_filter.register(credential.access_token)
        secret_redaction_filter.register(credential.refresh_token)
        secret_redaction_filter.register(credential.client_secret)

    # ── Entry point ──────────────────────────────────────────────────

    async def acquire(
        self,
        upstream_url: str,
        manual_client_id: Optional[str] = None,
        manual_client_secret: Optional[str] = None,
    ) -> AuthCredential:
        """Return a valid credential, refreshing or re-authorizing as needed."""
        stored = await self._store.load(self.upstream_id)
        if stored is not None:
            self._register_secrets(stored)
            if not stored.is_expired():
                logger.info("[%s] Using stored OAuth credentials.", self.upstream_id)
                return stored

            if stored.refresh_token:
                logger.info("[%s] Access token expired, refreshing.", self.upstream_id)
                try:
                    metadata = await self.discover_metadata(upstream_url)
                    return await self.refresh(
                        metadata["token_endpoint"],
                        stored.refresh_token,
                        stored.client_id,
                        stored.client_secret,
                        registration=stored.registration,
                    )
                except AuthError as exc:
                    logger.warning(
                        "[%s] Token refresh failed, starting a new authorization: %s",
                        self.upstream_id,
                        exc,
                    )
            else:
                logger.info(
                    "[%s] Access token expired and no refresh token is stored.",
                    self.upstream_id,
                )

        return await self.perform_full_auth(
            upstream_url, manual_client_id, manual_client_secret, previous=stored
        )

    async def perform_full_auth(
        self,
        upstream_url: str,
        manual_client_id: Optional[str] = None,
        manual_client_secret: Optional[str] = None,
        *,
        previous: Optional[AuthCredential] = None,
    ) -> AuthCredential:
        """Discover, resolve the client identity, then run the browser flow."""
        logger.info("[%s] Starting OAuth 2.0 authorization.", self.upstream_id)
        metadata = await self.discover_metadata(upstream_url)
        client_id, client_secret, registration = await self._resolve_client(
            metadata, manual_client_id, manual_client_secret, previous
        )
        return await self.authorize(
            metadata["authorization_endpoint"],
            metadata["token_endpoint"],
            client_id,
            client_secret,
            registration=registration,
        )

    async def clear_credentials(self) -> bool:
        return await self._store.delete(self.upstream_id)

    # ── Discovery and registration ───────────────────────────────────

    async def discover_metadata(self, upstream_url: str) -> Dict[str, Any]:
        url = metadata_url(upstream_url)
        logger.debug("[%s] Fetching OAuth metadata from %s", self.upstream_id, url)
        try:
            async with self._http() as client:
                resp = await client.get(url, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise DiscoveryError(f"Failed to fetch OAuth metadata from {url}: {exc}") from exc

        if not resp.is_success:
            raise DiscoveryError(f"Failed to fetch OAuth metadata from {url}: {_describe(resp)}")
        try:
            metadata = resp.json()
        except ValueError as exc:
            raise DiscoveryError(f"OAuth metadata at {url} is not valid JSON.") from exc
        if not isinstance(metadata, dict):
            raise DiscoveryError(f"OAuth metadata at {url} is not a JSON object.")

        missing = [key for key in _REQUIRED_METADATA if not metadata.get(key)]
        if missing:
            raise DiscoveryError(
                f"OAuth metadata at {url} is missing: {', '.join(missing)}"
            )
        return metadata

    async def _resolve_client(
        self,
        metadata: Dict[str, Any],
        manual_client_id: Optional[str],
        manual_client_secret: Optional[str],
        previous: Optional[AuthCredential],
    ) -> Tuple[str, Optional[str], Optional[Dict[str, Any]]]:
        """Pick the client identity: stored registration, manual, then dynamic."""
        if previous is not None and previous.registration and previous.registration.get("client_id"):
            logger.info("[%s] Reusing stored client registration.", self.upstream_id)
            reg = previous.registration
            return reg["client_id"], reg.get("client_secret"), reg

        if manual_client_id:
            logger.info("[%s] Using configured OAuth client id.", self.upstream_id)
            secret_redaction_filter.register(manual_client_secret)
            return manual_client_id, manual_client_secret, None

        endpoint = metadata.get("registration_endpoint")
        if not endpoint:
            raise RegistrationError(
                "The authorization server does not support dynamic client "
                f"registration. {_REGISTRATION_GUIDANCE}"
            )
        reg = await self.register_client(endpoint)
        return reg["client_id"], reg.get("client_secret"), reg

    async def register_client(self, registration_endpoint: str) -> Dict[str, Any]:
        """Register this aggregator as a public native client (RFC 7591)."""
        body = {
            "client_name": OAUTH_CLIENT_NAME,
            "redirect_uris": [self.redirect_uri],
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "token_endpoint_auth_method": "none",
            "application_type": "native",
        }
        try:
            async with self._http() as client:
                resp = await client.post(registration_endpoint, json=body)
        except httpx.HTTPError as exc:
            raise RegistrationError(
                f"Client registration failed: {exc}. {_REGISTRATION_GUIDANCE}"
            ) from exc

        if not resp.is_success:
            raise RegistrationError(
                f"Client registration failed: {_describe(resp)}. {_REGISTRATION_GUIDANCE}"
            )
        try:
            registration = resp.json()
        except ValueError as exc:
            raise RegistrationError(
                f"Client registration returned invalid JSON. {_REGISTRATION_GUIDANCE}"
            ) from exc
        if not isinstance(registration, dict) or not registration.get("client_id"):
            raise RegistrationError(
                f"Client registration returned no client_id. {_REGISTRATION_GUIDANCE}"
            )

        secret_redaction_filter.register(registration.get("client_secret"))
        logger.info(
            "[%s] ✓ Client registered successfully (client_id=%s).",
            self.upstream_id,
            registration["client_id"],
        )
        return registration

    # ── Authorization and tokens ─────────────────────────────────────

    def build_authorization_url(
        self, authorization_endpoint: str, client_id: str, state: str, code_challenge: str
    ) -> str:
        params = {
            "client_id": client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "scope": self.scope,
        }
        return str(httpx.URL(authorization_endpoint).copy_merge_params(params))

    async def authorize(
        self,
        authorization_endpoint: str,
        token_endpoint: str,
        client_id: str,
        client_secret: Optional[str] = None,
        *,
        registration: Optional[Dict[str, Any]] = None,
    ) -> AuthCredential:
        """Run the browser flow and persist the resulting credential."""
        verifier, challenge = generate_pkce()
        state = generate_state()
        auth_url = self.build_authorization_url(authorization_endpoint, client_id, state, challenge)

        async with self._callback_factory(state) as listener:
            self._browser(auth_url)
            code = await listener.wait_for_code()

        payload = await self.exchange_code(token_endpoint, code, client_id, client_secret, verifier)
        credential = AuthCredential.from_token_response(
            payload, client_id, client_secret, registration=registration
        )
        self._register_secrets(credential)
        await self._store.save(self.upstream_id, credential)
        return credential

    async def exchange_code(
        self,
        token_endpoint: str,
        code: str,
        client_id: str,
        client_secret: Optional[str],
        code_verifier: str,
    ) -> Dict[str, Any]:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": client_id,
            "code_verifier": code_verifier,
        }
        if client_secret:
            data["client_secret"] = client_secret
        payload = await self._token_request(token_endpoint, data, TokenExchangeError, "Token exchange")
        logger.info("[%s] ✓ Access token obtained.", self.upstream_id)
        return payload

    async def refresh(
        self,
        token_endpoint: str,
        refresh_token: str,
        client_id: str,
        client_secret: Optional[str] = None,
        *,
        registration: Optional[Dict[str, Any]] = None,
    ) -> AuthCredential:
        """Use the refresh-token grant and persist the new credential."""
        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": client_id,
        }
        if client_secret:
            data["client_secret"] = client_secret
        payload = await self._token_request(token_endpoint, data, RefreshError, "Token refresh")

        credential = AuthCredential.from_token_response(
            payload,
            client_id,
            client_secret,
            previous_refresh_token=refresh_token,
            registration=registration,
        )
        self._register_secrets(credential)
        await self._store.save(self.upstream_id, credential)
        logger.info("[%s] ✓ Access token refreshed.", self.upstream_id)
        return credential

    async def _token_request(
        self,
        token_endpoint: str,
        data: Dict[str, str],
        error_cls: type,
        action: str,
    ) -> Dict[str, Any]:
        try:
            async with self._http() as client:
                resp = await client.post(
                    token_endpoint, data=data, headers={"Accept": "application/json"}
                )
        except httpx.HTTPError as exc:
            raise error_cls(f"{action} failed: {exc}") from exc

        if not resp.is_success:
            raise error_cls(f"{action} failed: {_describe(resp)}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise error_cls(f"{action} returned invalid JSON.") from exc
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise error_cls(f"{action} response contains no access_token.")
        return payload
