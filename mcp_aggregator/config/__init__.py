"""Configuration loading and validation for MCP Aggregator."""

from mcp_aggregator.config.loader import (
    ServerConfigStore,
    expand_env_vars,
    validate_descriptors,
)
from mcp_aggregator.config.schema import (
    AuthKind,
    SseTransport,
    StdioTransport,
    StreamableHttpTransport,
    TransportConfig,
    UpstreamDescriptor,
    WebSocketTransport,
)

__all__ = [
    "AuthKind",
    "ServerConfigStore",
    "SseTransport",
    "StdioTransport",
    "StreamableHttpTransport",
    "TransportConfig",
    "UpstreamDescriptor",
    "WebSocketTransport",
    "expand_env_vars",
    "validate_descriptors",
]
