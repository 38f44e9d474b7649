"""Route a downstream request to the upstream that owns the capability."""

import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import AnyUrl

from mcp_aggregator.bridge.capability_registry import CapabilityRegistry, EntryKind
from mcp_aggregator.bridge.client_manager import ClientManager
from mcp_aggregator.constants import UPSTREAM_CALL_TIMEOUT
from mcp_aggregator.errors import UnknownEntry, UpstreamTimeout, UpstreamUnavailable

logger = logging.getLogger(__name__)


async def forward_request(
    kind: EntryKind,
    public_id: str,
    args: Optional[Dict[str, Any]],
    registry: CapabilityRegistry,
    manager: ClientManager,
    timeout: float = UPSTREAM_CALL_TIMEOUT,
) -> Any:
    """
    Forward a tool call, resource read or prompt fetch to its upstream.

    The original identifier is restored and *args* are passed through
    unmodified. The upstream's result, or the error it raises, is returned
    to the caller unchanged.

    Raises:
        UnknownEntry: *public_id* is not registered for *kind*.
        UpstreamUnavailable: The owning upstream is no longer connected.
        UpstreamTimeout: No answer within *timeout* seconds.
    """
    entry = registry.resolve(kind, public_id)
    if entry is None:
        logger.warning("Unable to resolve %s '%s'.", kind, public_id)
        raise UnknownEntry(kind, public_id)

    conn = manager.get_connection(entry.upstream_id)
    if conn is None:
        logger.error(
            "[%s] No live connection while forwarding %s '%s'.",
            entry.upstream_id,
            kind,
            public_id,
        )
        raise UpstreamUnavailable(entry.upstream_id, public_id)

    logger.debug(
        "[%s] Forwarding %s '%s' as '%s'.", entry.upstream_id, kind, public_id, entry.original_id
    )
    session = conn.session
    if kind == "tool":
        call = session.call_tool(entry.original_id, arguments=args)
    elif kind == "resource":
        call = session.read_resource(AnyUrl(entry.original_id))
    else:
        call = session.get_prompt(entry.original_id, arguments=args)

    try:
        result = await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(
            "[%s] %s '%s' timed out after %ss.", entry.upstream_id, kind, public_id, timeout
        )
        raise UpstreamTimeout(entry.upstream_id, public_id, timeout) from None

    logger.info("[%s] %s '%s' forwarded successfully.", entry.upstream_id, kind, public_id)
    return result
