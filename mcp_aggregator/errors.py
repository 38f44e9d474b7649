"""Custom exception classes for MCP Aggregator."""

from typing import Optional


class AggregatorBaseError(Exception):
    """Base class for all custom exceptions in MCP Aggregator."""

    pass


class ConfigurationError(AggregatorBaseError):
    """Raised when loading or validating the configuration file fails."""

    pass


# ── Upstream connection ──────────────────────────────────────────────


class UpstreamError(AggregatorBaseError):
    """Base class for failures bound to a single upstream."""

    def __init__(self, message: str, upstream_id: Optional[str] = None):
        self.upstream_id = upstream_id
        prefix = f"[{upstream_id}] " if upstream_id else ""
        super().__init__(f"{prefix}{message}")


class ConnectError(UpstreamError):
    """Raised when the transport to an upstream cannot be established."""

    pass


class UnsupportedTransport(UpstreamError):
    """Raised for transport kinds that are declared but not implemented."""

    pass


# ── Authentication ───────────────────────────────────────────────────


class AuthError(AggregatorBaseError):
    """Base class for OAuth 2.0 lifecycle failures.

    ``upstream_id`` is attached by the connector so the gateway can log
    and skip the affected upstream.
    """

    def __init__(self, message: str, upstream_id: Optional[str] = None):
        self.upstream_id = upstream_id
        super().__init__(message)

    def __str__(self) -> str:
        msg = super().__str__()
        if self.upstream_id:
            return f"[{self.upstream_id}] {msg}"
        return msg


class DiscoveryError(AuthError):
    """OAuth metadata could not be fetched or parsed."""


class RegistrationError(AuthError):
    """Dynamic client registration failed or is not available."""


class AuthorizationDenied(AuthError):
    """The provider reported an error on the authorization callback."""


class StateMismatch(AuthError):
    """The callback ``state`` does not match the one that was sent."""


class MissingCode(AuthError):
    """The callback carried no authorization code."""


class AuthorizationTimeout(AuthError):
    """The browser flow did not complete within the callback timeout."""


class TokenExchangeError(AuthError):
    """The token endpoint rejected the authorization code exchange."""


class RefreshError(AuthError):
    """The token endpoint rejected the refresh-token grant."""


# ── Request routing ──────────────────────────────────────────────────


class RoutingError(AggregatorBaseError):
    """Base class for per-request dispatch failures."""

    pass


class UnknownEntry(RoutingError):
    """The requested namespaced identifier is not in the registry."""

    def __init__(self, kind: str, public_id: str):
        self.kind = kind
        self.public_id = public_id
        super().__init__(f"Unknown {kind}: '{public_id}'")


class UpstreamUnavailable(RoutingError):
    """The owning upstream connection is no longer live."""

    def __init__(self, upstream_id: str, public_id: str):
        self.upstream_id = upstream_id
        self.public_id = public_id
        super().__init__(
            f"Upstream '{upstream_id}' providing '{public_id}' is not connected."
        )


class UpstreamTimeout(RoutingError):
    """The upstream did not answer within the per-request timeout."""

    def __init__(self, upstream_id: str, public_id: str, timeout: float):
        self.upstream_id = upstream_id
        self.public_id = public_id
        self.timeout = timeout
        super().__init__(
            f"Upstream '{upstream_id}' timed out after {timeout}s handling '{public_id}'."
        )
