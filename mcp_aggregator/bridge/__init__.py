"""Upstream connections, capability aggregation and request routing."""

from mcp_aggregator.bridge.capability_registry import CapabilityRegistry, RegistryEntry
from mcp_aggregator.bridge.client_manager import ClientManager, Connection
from mcp_aggregator.bridge.forwarder import forward_request

__all__ = [
    "CapabilityRegistry",
    "ClientManager",
    "Connection",
    "RegistryEntry",
    "forward_request",
]
