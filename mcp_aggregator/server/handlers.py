"""MCP handler functions - registered on the gateway's MCP server instance."""

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from mcp import types as mcp_types
from mcp.server.lowlevel import Server as McpServer
from mcp.shared.exceptions import McpError

from mcp_aggregator.bridge.capability_registry import EntryKind
from mcp_aggregator.bridge.forwarder import forward_request
from mcp_aggregator.errors import RoutingError, UnknownEntry

if TYPE_CHECKING:
    from mcp_aggregator.server.gateway import AggregationGateway

logger = logging.getLogger(__name__)


def to_mcp_error(exc: RoutingError) -> McpError:
    """Map a routing failure onto an MCP protocol error."""
    code = mcp_types.INVALID_PARAMS if isinstance(exc, UnknownEntry) else mcp_types.INTERNAL_ERROR
    return McpError(mcp_types.ErrorData(code=code, message=str(exc)))


async def _dispatch(
    gateway: "AggregationGateway",
    kind: EntryKind,
    public_id: str,
    arguments: Optional[Dict[str, Any]] = None,
) -> mcp_types.ServerResult:
    try:
        result = await forward_request(
            kind,
            public_id,
            arguments,
            gateway.registry,
            gateway.manager,
            timeout=gateway.call_timeout,
        )
    except RoutingError as exc:
        raise to_mcp_error(exc) from exc
    return mcp_types.ServerResult(result)


def register_handlers(mcp_server: McpServer, gateway: "AggregationGateway") -> None:
    """Register all MCP protocol handlers on the server instance.

    Call, read and get handlers are installed directly in
    ``request_handlers`` so the upstream result is relayed as-is.
    """

    @mcp_server.list_tools()
    async def handle_list_tools() -> List[mcp_types.Tool]:
        tools = gateway.registry.get_aggregated_tools()
        logger.info("Returning %s aggregated tools", len(tools))
        return tools

    @mcp_server.list_resources()
    async def handle_list_resources() -> List[mcp_types.Resource]:
        resources = gateway.registry.get_aggregated_resources()
        logger.info("Returning %s aggregated resources", len(resources))
        return resources

    @mcp_server.list_prompts()
    async def handle_list_prompts() -> List[mcp_types.Prompt]:
        prompts = gateway.registry.get_aggregated_prompts()
        logger.info("Returning %s aggregated prompts", len(prompts))
        return prompts

    async def handle_call_tool(req: mcp_types.CallToolRequest) -> mcp_types.ServerResult:
        logger.debug("Handling callTool: name='%s'", req.params.name)
        return await _dispatch(gateway, "tool", req.params.name, req.params.arguments)

    async def handle_read_resource(req: mcp_types.ReadResourceRequest) -> mcp_types.ServerResult:
        logger.debug("Handling readResource: uri='%s'", req.params.uri)
        return await _dispatch(gateway, "resource", str(req.params.uri))

    async def handle_get_prompt(req: mcp_types.GetPromptRequest) -> mcp_types.ServerResult:
        logger.debug("Handling getPrompt: name='%s'", req.params.name)
        return await _dispatch(gateway, "prompt", req.params.name, req.params.arguments)

    mcp_server.request_handlers[mcp_types.CallToolRequest] = handle_call_tool
    mcp_server.request_handlers[mcp_types.ReadResourceRequest] = handle_read_resource
    mcp_server.request_handlers[mcp_types.GetPromptRequest] = handle_get_prompt
    logger.debug("MCP handlers registered.")
