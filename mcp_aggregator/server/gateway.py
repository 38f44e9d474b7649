"""Aggregation gateway - owns the upstream connections and the merged registry.

AggregationGateway ties the configuration store, the connector and the
capability registry together and exposes them through one low-level MCP
server instance.  It does NOT import the display layer; the lifespan in
``server/app.py`` renders status from the properties here.
"""

import logging
from typing import Dict, List, Optional

from mcp import types as mcp_types
from mcp.server.lowlevel import Server as McpServer

from mcp_aggregator.bridge.auth.credentials import CredentialStore
from mcp_aggregator.bridge.capability_registry import CapabilityRegistry
from mcp_aggregator.bridge.client_manager import ClientManager, _log_backend_fail
from mcp_aggregator.config.loader import ServerConfigStore
from mcp_aggregator.config.schema import UpstreamDescriptor
from mcp_aggregator.constants import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_CREDENTIALS_FILE,
    DEFAULT_HOST,
    DEFAULT_PORT,
    SERVER_NAME,
    SERVER_VERSION,
    UPSTREAM_CALL_TIMEOUT,
)
from mcp_aggregator.server.handlers import register_handlers

logger = logging.getLogger(__name__)


class AggregationGateway:
    """Connects every configured upstream and serves the merged registry.

    Usage::

        gateway = AggregationGateway(config_path="mcp-servers.json")
        await gateway.start()
        ...
        await gateway.shutdown()
    """

    def __init__(
        self,
        config_path: str = DEFAULT_CONFIG_FILE,
        credentials_path: str = DEFAULT_CREDENTIALS_FILE,
        *,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        config_store: Optional[ServerConfigStore] = None,
        credential_store: Optional[CredentialStore] = None,
        manager: Optional[ClientManager] = None,
        registry: Optional[CapabilityRegistry] = None,
        call_timeout: float = UPSTREAM_CALL_TIMEOUT,
        log_fpath: Optional[str] = None,
        log_level: Optional[str] = None,
    ) -> None:
        self.config_path = config_path
        self.host = host
        self.port = port
        self.call_timeout = call_timeout
        self.log_fpath = log_fpath
        self.log_level = log_level

        self.config_store = config_store or ServerConfigStore(config_path)
        self.credential_store = credential_store or CredentialStore(credentials_path)
        self.manager = manager or ClientManager(self.credential_store)
        self.registry = registry or CapabilityRegistry()

        self.failures: Dict[str, str] = {}
        self.total_upstreams = 0

        self.mcp_server = McpServer(SERVER_NAME, version=SERVER_VERSION)
        register_handlers(self.mcp_server, self)
        logger.debug("MCP server instance '%s' created.", self.mcp_server.name)

    # ── Status ───────────────────────────────────────────────────────

    @property
    def connected_upstreams(self) -> int:
        return self.manager.get_active_connection_count()

    @property
    def tools(self) -> List[mcp_types.Tool]:
        return self.registry.get_aggregated_tools()

    @property
    def resources(self) -> List[mcp_types.Resource]:
        return self.registry.get_aggregated_resources()

    @property
    def prompts(self) -> List[mcp_types.Prompt]:
        return self.registry.get_aggregated_prompts()

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> None:
        """Connect and aggregate every configured upstream, sequentially.

        A failing upstream is logged and skipped; this never aborts.

        Raises:
            ConfigurationError: If the configuration file itself is unreadable.
        """
        descriptors = self.config_store.load_all()
        self.total_upstreams = len(descriptors)
        self.failures.clear()

        if not descriptors:
            logger.warning("No upstream servers configured; serving an empty registry.")
            return

        logger.info("Connecting %d upstream server(s)...", len(descriptors))
        for descriptor in descriptors:
            await self._connect_upstream(descriptor)

        connected = self.connected_upstreams
        logger.info(
            "Upstream connection pass finished: %d/%d connected.",
            connected,
            self.total_upstreams,
        )
        if connected == 0:
            logger.error(
                "All %d upstream server(s) failed to connect; serving an empty registry.",
                self.total_upstreams,
            )

    async def _connect_upstream(self, descriptor: UpstreamDescriptor) -> bool:
        upstream_id = descriptor.id
        try:
            conn = await self.manager.connect(descriptor)
            await self.registry.register_upstream(conn)
        except Exception as exc:
            _log_backend_fail(upstream_id, descriptor.transport_type, exc)
            self.failures[upstream_id] = str(exc)
            return False

        self.failures.pop(upstream_id, None)
        try:
            self.config_store.mark_used(upstream_id)
        except OSError as exc:
            logger.warning("[%s] Could not record last use: %s", upstream_id, exc)
        return True

    async def reconnect(self, upstream_id: str) -> bool:
        """Disconnect, reconnect and replace the registry entries of one upstream."""
        conn = self.manager.get_connection(upstream_id)
        descriptor = self.config_store.get(upstream_id) or (conn.descriptor if conn else None)
        if descriptor is None:
            raise KeyError(f"Unknown upstream '{upstream_id}'.")

        logger.info("[%s] Reconnecting...", upstream_id)
        await self.manager.disconnect(upstream_id)
        if await self._connect_upstream(descriptor):
            return True
        await self.registry.remove_upstream(upstream_id)
        return False

    async def remove_upstream(self, upstream_id: str) -> bool:
        """Disconnect one upstream and drop its registry entries."""
        disconnected = await self.manager.disconnect(upstream_id)
        removed = await self.registry.remove_upstream(upstream_id)
        return disconnected or removed > 0

    async def shutdown(self) -> None:
        logger.info("Gateway shutting down...")
        await self.manager.disconnect_all()
        logger.info("Gateway shutdown complete.")
