"""
MCP Aggregator - A single endpoint for many MCP servers.

MCP Aggregator connects to multiple upstream MCP servers (stdio, streamable
HTTP, SSE), authenticates where required (static bearer tokens or OAuth 2.0
with PKCE), and exposes their namespaced capabilities (tools, resources,
prompts) through one streamable HTTP endpoint.
"""

from mcp_aggregator.constants import SERVER_NAME, SERVER_VERSION

__version__ = SERVER_VERSION
__app_name__ = SERVER_NAME

__all__ = [
    "SERVER_NAME",
    "SERVER_VERSION",
    "__version__",
    "__app_name__",
]
