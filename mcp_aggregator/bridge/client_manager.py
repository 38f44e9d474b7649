"""Upstream MCP server connection management."""

import asyncio
import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

import httpx
from mcp import ClientSession, StdioServerParameters
from mcp.client.sse import sse_client
from mcp.client.stdio import stdio_client
from mcp.client.streamable_http import streamablehttp_client

from mcp_aggregator.bridge.auth.credentials import CredentialStore
from mcp_aggregator.bridge.auth.oauth import OAuth2Client
from mcp_aggregator.bridge.auth.provider import AuthProvider, create_auth_provider
from mcp_aggregator.config.schema import (
    SseTransport,
    StdioTransport,
    StreamableHttpTransport,
    UpstreamDescriptor,
    WebSocketTransport,
)
from mcp_aggregator.constants import MCP_INIT_TIMEOUT
from mcp_aggregator.errors import (
    AuthError,
    ConfigurationError,
    ConnectError,
    UnsupportedTransport,
)

logger = logging.getLogger(__name__)

NET_EXCS: tuple = (
    httpx.ConnectError,
    httpx.TimeoutException,
    httpx.NetworkError,
)


@dataclass
class Connection:
    """A live, initialised session with one upstream."""

    descriptor: UpstreamDescriptor
    session: ClientSession
    exit_stack: AsyncExitStack
    supports_tools: bool = False
    supports_resources: bool = False
    supports_prompts: bool = False
    supports_logging: bool = False
    server_name: Optional[str] = None
    server_version: Optional[str] = None
    auth_provider: Optional[AuthProvider] = field(default=None, repr=False)

    @property
    def upstream_id(self) -> str:
        return self.descriptor.id


def _log_backend_fail(
    upstream_id: str,
    transport_type: Optional[str],
    e: BaseException,
    context: str = "connect",
) -> None:
    """Helper to log upstream startup/connection failures."""
    type_str = transport_type or "unknown type"
    cause = e.__cause__ if isinstance(e, ConnectError) and e.__cause__ else e
    if isinstance(e, AuthError):
        logger.error("[%s] (%s) Authentication failed during %s: %s", upstream_id, type_str, context, e)
    elif isinstance(e, UnsupportedTransport):
        logger.error("[%s] (%s) %s", upstream_id, type_str, e)
    elif isinstance(e, ConfigurationError):
        logger.error(
            "[%s] (%s) Configuration error during %s: %s", upstream_id, type_str, context, e
        )
    elif isinstance(cause, asyncio.TimeoutError):
        logger.error("[%s] (%s) %s timed out.", upstream_id, type_str, context)
    elif isinstance(cause, (*NET_EXCS, ConnectionError, BrokenPipeError)):
        logger.error(
            "[%s] (%s) Network/connection error during %s: %s: %s",
            upstream_id,
            type_str,
            context,
            type(cause).__name__,
            cause,
        )
    elif isinstance(cause, FileNotFoundError):
        logger.error(
            "[%s] (%s) Command or file not found '%s' during %s.",
            upstream_id,
            type_str,
            cause.filename,
            context,
        )
    else:
        logger.error(
            "[%s] (%s) Unexpected error during %s: %s",
            upstream_id,
            type_str,
            context,
            e,
            exc_info=cause,
        )


class ClientManager:
    """Owns one :class:`Connection` per connected upstream.

    Each connection has its own :class:`AsyncExitStack` so upstreams can be
    torn down individually.  Connects and disconnects must happen in the
    same task because the SDK transports hold anyio cancel scopes.
    """

    def __init__(
        self,
        credential_store: Optional[CredentialStore] = None,
        oauth_factory: Optional[Callable[[str], OAuth2Client]] = None,
        init_timeout: float = MCP_INIT_TIMEOUT,
    ) -> None:
        self._connections: Dict[str, Connection] = {}
        self._credential_store = credential_store
        self._oauth_factory = oauth_factory
        self.init_timeout = init_timeout
        logger.info("ClientManager initialized.")

    def _oauth_client(self, upstream_id: str) -> Optional[OAuth2Client]:
        if self._oauth_factory is not None:
            return self._oauth_factory(upstream_id)
        if self._credential_store is not None:
            return OAuth2Client(upstream_id, self._credential_store)
        return None

    async def connect(self, descriptor: UpstreamDescriptor) -> Connection:
        """Authenticate (if required), open the transport and initialise.

        Raises:
            UnsupportedTransport: For WebSocket descriptors, before any I/O.
            AuthError: Tagged with the upstream id.
            ConfigurationError: For unusable auth configuration.
            ConnectError: For any transport or initialisation failure.
        """
        upstream_id = descriptor.id
        transport = descriptor.transport
        if isinstance(transport, WebSocketTransport):
            raise UnsupportedTransport(
                "WebSocket transport is not implemented yet.", upstream_id
            )

        if upstream_id in self._connections:
            logger.warning("[%s] Already connected; replacing the existing session.", upstream_id)
            await self.disconnect(upstream_id)

        logger.info("[%s] Attempting connection, type: %s...", upstream_id, transport.type)
        try:
            provider = await create_auth_provider(descriptor, self._oauth_client(upstream_id))
        except AuthError as exc:
            if exc.upstream_id is None:
                exc.upstream_id = upstream_id
            raise

        exit_stack = AsyncExitStack()
        try:
            session = await self._open_session(exit_stack, descriptor, provider)
            logger.info(
                "[%s] Initializing MCP connection (timeout: %ss)...",
                upstream_id,
                self.init_timeout,
            )
            init_result = await asyncio.wait_for(session.initialize(), timeout=self.init_timeout)
        except Exception as exc:
            await self._close_stack(upstream_id, exit_stack)
            raise ConnectError(f"Connection failed: {type(exc).__name__}: {exc}", upstream_id) from exc
        except asyncio.CancelledError:
            await self._close_stack(upstream_id, exit_stack)
            raise

        caps = init_result.capabilities
        server_info = init_result.serverInfo
        conn = Connection(
            descriptor=descriptor,
            session=session,
            exit_stack=exit_stack,
            supports_tools=caps.tools is not None,
            supports_resources=caps.resources is not None,
            supports_prompts=caps.prompts is not None,
            supports_logging=caps.logging is not None,
            server_name=server_info.name if server_info else None,
            server_version=server_info.version if server_info else None,
            auth_provider=provider,
        )
        self._connections[upstream_id] = conn
        logger.info(
            "✅ MCP connection initialized for upstream '%s' (%s, server: %s %s).",
            upstream_id,
            transport.type,
            conn.server_name or "?",
            conn.server_version or "",
        )
        return conn

    async def _open_session(
        self,
        exit_stack: AsyncExitStack,
        descriptor: UpstreamDescriptor,
        provider: Optional[AuthProvider],
    ) -> ClientSession:
        upstream_id = descriptor.id
        transport = descriptor.transport
        auth = provider.httpx_auth() if provider is not None else None

        if isinstance(transport, StdioTransport):
            params = StdioServerParameters(
                command=transport.command, args=list(transport.args), env=transport.env
            )
            logger.debug("[%s] Stdio upstream: %s %s", upstream_id, params.command, params.args)
            read_stream, write_stream = await exit_stack.enter_async_context(stdio_client(params))
        elif isinstance(transport, StreamableHttpTransport):
            logger.debug("[%s] Streamable-HTTP upstream, url=%s", upstream_id, transport.url)
            read_stream, write_stream, _get_session_id = await exit_stack.enter_async_context(
                streamablehttp_client(url=transport.url, headers=dict(transport.headers), auth=auth)
            )
        elif isinstance(transport, SseTransport):
            logger.debug("[%s] SSE upstream, url=%s", upstream_id, transport.url)
            read_stream, write_stream = await exit_stack.enter_async_context(
                sse_client(url=transport.url, headers=dict(transport.headers), auth=auth)
            )
        else:
            raise ConfigurationError(
                f"Unsupported transport type '{transport.type}' for upstream '{upstream_id}'."
            )
        logger.debug("[%s] (%s) transport streams established.", upstream_id, transport.type)
        return await exit_stack.enter_async_context(ClientSession(read_stream, write_stream))

    async def _close_stack(self, upstream_id: str, exit_stack: AsyncExitStack) -> None:
        try:
            await exit_stack.aclose()
        except Exception as exc:
            logger.warning("[%s] Error while closing transport: %s", upstream_id, exc)

    async def disconnect(self, upstream_id: str) -> bool:
        """Tear down the connection for *upstream_id*; return ``False`` if absent."""
        conn = self._connections.pop(upstream_id, None)
        if conn is None:
            return False
        logger.info("[%s] Disconnecting...", upstream_id)
        await self._close_stack(upstream_id, conn.exit_stack)
        logger.info("[%s] Disconnected.", upstream_id)
        return True

    async def disconnect_all(self) -> None:
        """Disconnect every upstream, continuing through individual errors."""
        ids = list(reversed(self._connections))
        logger.info("Disconnecting %d upstream connection(s)...", len(ids))
        for upstream_id in ids:
            try:
                await self.disconnect(upstream_id)
            except Exception:
                logger.exception("[%s] Unexpected error during disconnect.", upstream_id)
        logger.info("All upstream connections closed.")

    def get_connection(self, upstream_id: str) -> Optional[Connection]:
        return self._connections.get(upstream_id)

    def get_all_connections(self) -> List[Connection]:
        return list(self._connections.values())

    def get_active_connection_count(self) -> int:
        return len(self._connections)
