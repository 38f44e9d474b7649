"""MCP capability discovery, namespacing and routing."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from mcp import types as mcp_types
from pydantic import ValidationError

from mcp_aggregator.bridge.client_manager import Connection
from mcp_aggregator.constants import CAP_FETCH_TIMEOUT, NAME_DELIMITER, URI_DELIMITER

logger = logging.getLogger(__name__)

EntryKind = Literal["tool", "resource", "prompt"]
KINDS: Tuple[EntryKind, ...] = ("tool", "resource", "prompt")

CapabilityItem = Union[mcp_types.Tool, mcp_types.Resource, mcp_types.Prompt]


@dataclass(frozen=True)
class RegistryEntry:
    """One exposed capability and the upstream that owns it."""

    kind: EntryKind
    public_id: str
    upstream_id: str
    original_id: str
    item: CapabilityItem


def namespace_name(upstream_id: str, name: str) -> str:
    return f"{upstream_id}{NAME_DELIMITER}{name}"


def namespace_uri(upstream_id: str, uri: str) -> str:
    return f"{upstream_id}{URI_DELIMITER}{uri}"


def strip_namespace(kind: EntryKind, public_id: str) -> Tuple[str, str]:
    """Split *public_id* into ``(upstream_id, original_id)``.

    Splits on the first delimiter. Raises :class:`ValueError` when the
    identifier carries no namespace.
    """
    delimiter = URI_DELIMITER if kind == "resource" else NAME_DELIMITER
    upstream_id, sep, original = public_id.partition(delimiter)
    if not sep or not upstream_id:
        raise ValueError(f"'{public_id}' is not a namespaced {kind} identifier.")
    return upstream_id, original


def _decorate(display_name: str, text: Optional[str], fallback: str) -> str:
    return f"[{display_name}] {text or fallback}"


class CapabilityRegistry:
    """Merged, namespaced view of every connected upstream's capabilities.

    Writes are serialised by one :class:`asyncio.Lock`.  An upstream's entries
    are always replaced as a whole, so readers never see a mix of old and new
    entries for the same upstream.
    """

    def __init__(self, cap_fetch_timeout: float = CAP_FETCH_TIMEOUT) -> None:
        self._entries: Dict[EntryKind, Dict[str, RegistryEntry]] = {k: {} for k in KINDS}
        # URL-normalised resource URI -> exact public id
        self._uri_aliases: Dict[str, str] = {}
        self._lock = asyncio.Lock()
        self.cap_fetch_timeout = cap_fetch_timeout
        logger.info("CapabilityRegistry initialized.")

    # ── Discovery ────────────────────────────────────────────────────

    async def _list_category(self, conn: Connection, kind: EntryKind) -> List[Any]:
        """List one category; a failure is logged and yields an empty list."""
        upstream_id = conn.upstream_id
        list_method = {
            "tool": conn.session.list_tools,
            "resource": conn.session.list_resources,
            "prompt": conn.session.list_prompts,
        }[kind]
        logger.debug(
            "[%s] Requesting %s list (timeout %ss)...", upstream_id, kind, self.cap_fetch_timeout
        )
        try:
            result = await asyncio.wait_for(list_method(), timeout=self.cap_fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning("[%s] Listing %ss timed out; category skipped.", upstream_id, kind)
            return []
        except Exception as exc:
            logger.warning(
                "[%s] Listing %ss failed; category skipped: %s: %s",
                upstream_id,
                kind,
                type(exc).__name__,
                exc,
            )
            return []
        items = getattr(result, f"{kind}s", None)
        if not isinstance(items, list):
            logger.warning("[%s] Unexpected %s list response: %r", upstream_id, kind, result)
            return []
        return items

    def _build_entry(self, conn: Connection, kind: EntryKind, item: Any) -> Optional[RegistryEntry]:
        upstream_id = conn.upstream_id
        display = conn.descriptor.display_name

        if kind == "resource":
            original = str(item.uri)
            public_id = namespace_uri(upstream_id, original)
            data = item.model_dump(by_alias=True, exclude_none=True)
            # Listed URIs are URL-normalised on the wire; that form is indexed as an alias.
            data["uri"] = public_id
            data["name"] = _decorate(display, item.name, original)
            try:
                exposed = mcp_types.Resource.model_validate(data)
            except ValidationError as exc:
                logger.warning(
                    "[%s] Resource '%s' cannot be namespaced, skipped: %s",
                    upstream_id,
                    original,
                    exc.errors()[0]["msg"] if exc.errors() else exc,
                )
                return None
            return RegistryEntry(kind, public_id, upstream_id, original, exposed)

        if not item.name:
            logger.warning("[%s] Found unnamed %s, skipped: %r", upstream_id, kind, item)
            return None
        public_id = namespace_name(upstream_id, item.name)
        exposed = item.model_copy(
            update={
                "name": public_id,
                "description": _decorate(display, item.description, item.name),
            }
        )
        return RegistryEntry(kind, public_id, upstream_id, item.name, exposed)

    async def discover(self, conn: Connection) -> List[RegistryEntry]:
        """Enumerate every advertised category of *conn* into registry entries."""
        advertised = {
            "tool": conn.supports_tools,
            "resource": conn.supports_resources,
            "prompt": conn.supports_prompts,
        }
        entries: List[RegistryEntry] = []
        for kind in KINDS:
            if not advertised[kind]:
                logger.debug("[%s] Does not advertise %ss.", conn.upstream_id, kind)
                continue
            if kind == "resource" and not conn.descriptor.is_uri_scheme:
                logger.error(
                    "[%s] Id is not a valid URI scheme; resources cannot be served.",
                    conn.upstream_id,
                )
                continue
            for item in await self._list_category(conn, kind):
                entry = self._build_entry(conn, kind, item)
                if entry is not None:
                    entries.append(entry)
        return entries

    # ── Registration ─────────────────────────────────────────────────

    async def register_upstream(self, conn: Connection) -> int:
        """Replace all entries of ``conn``'s upstream with freshly listed ones.

        Returns the number of entries registered.
        """
        upstream_id = conn.upstream_id
        entries = await self.discover(conn)

        async with self._lock:
            self._drop(upstream_id)
            registered = 0
            for entry in entries:
                table = self._entries[entry.kind]
                existing = table.get(entry.public_id)
                if existing is not None:
                    logger.warning(
                        "[%s] %s '%s' collides with an entry of '%s'; the first is kept.",
                        upstream_id,
                        entry.kind.capitalize(),
                        entry.public_id,
                        existing.upstream_id,
                    )
                    continue
                table[entry.public_id] = entry
                if entry.kind == "resource":
                    alias = str(entry.item.uri)
                    if alias != entry.public_id:
                        self._uri_aliases.setdefault(alias, entry.public_id)
                registered += 1

        logger.info(
            "[%s] Registered %d capabilities (tools: %d, resources: %d, prompts: %d).",
            upstream_id,
            registered,
            len(self._for_upstream("tool", upstream_id)),
            len(self._for_upstream("resource", upstream_id)),
            len(self._for_upstream("prompt", upstream_id)),
        )
        return registered

    def _drop(self, upstream_id: str) -> int:
        removed = 0
        for kind in KINDS:
            table = self._entries[kind]
            stale = [pid for pid, e in table.items() if e.upstream_id == upstream_id]
            for pid in stale:
                del table[pid]
            removed += len(stale)
        table = self._entries["resource"]
        self._uri_aliases = {a: pid for a, pid in self._uri_aliases.items() if pid in table}
        return removed

    async def remove_upstream(self, upstream_id: str) -> int:
        async with self._lock:
            removed = self._drop(upstream_id)
        logger.info("[%s] Removed %d registry entries.", upstream_id, removed)
        return removed

    # ── Lookup ───────────────────────────────────────────────────────

    def resolve(self, kind: EntryKind, public_id: str) -> Optional[RegistryEntry]:
        """Look up *public_id*; resource URIs also match their URL-normalised form."""
        table = self._entries[kind]
        entry = table.get(public_id)
        if entry is None and kind == "resource" and public_id in self._uri_aliases:
            entry = table.get(self._uri_aliases[public_id])
        return entry

    def _for_upstream(self, kind: EntryKind, upstream_id: str) -> List[RegistryEntry]:
        return [e for e in self._entries[kind].values() if e.upstream_id == upstream_id]

    def get_aggregated_tools(self) -> List[mcp_types.Tool]:
        return [e.item for e in self._entries["tool"].values()]  # type: ignore[misc]

    def get_aggregated_resources(self) -> List[mcp_types.Resource]:
        return [e.item for e in self._entries["resource"].values()]  # type: ignore[misc]

    def get_aggregated_prompts(self) -> List[mcp_types.Prompt]:
        return [e.item for e in self._entries["prompt"].values()]  # type: ignore[misc]

    def get_route_map(self) -> Dict[str, Tuple[str, str]]:
        """Return ``{public_id: (upstream_id, original_id)}`` across all kinds."""
        return {
            e.public_id: (e.upstream_id, e.original_id)
            for kind in KINDS
            for e in self._entries[kind].values()
        }
