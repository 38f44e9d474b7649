"""Downstream MCP server: gateway lifecycle, handlers and ASGI app."""

from mcp_aggregator.server.app import create_app
from mcp_aggregator.server.gateway import AggregationGateway

__all__ = ["AggregationGateway", "create_app"]
