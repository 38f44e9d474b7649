"""Shared fixtures: descriptors, fake sessions and connections."""

from __future__ import annotations

from contextlib import AsyncExitStack
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from mcp import types as mcp_types

from mcp_aggregator.bridge.client_manager import Connection
from mcp_aggregator.config.schema import UpstreamDescriptor


def _descriptor(upstream_id: str, name: Optional[str] = None, **transport: Any) -> UpstreamDescriptor:
    body: Dict[str, Any] = {"id": upstream_id, "transport": transport or {"type": "stdio", "command": "echo"}}
    if name is not None:
        body["name"] = name
    return UpstreamDescriptor.model_validate(body)


def _session(
    tools: Optional[List[mcp_types.Tool]] = None,
    resources: Optional[List[mcp_types.Resource]] = None,
    prompts: Optional[List[mcp_types.Prompt]] = None,
) -> MagicMock:
    session = MagicMock()
    session.list_tools = AsyncMock(return_value=mcp_types.ListToolsResult(tools=tools or []))
    session.list_resources = AsyncMock(
        return_value=mcp_types.ListResourcesResult(resources=resources or [])
    )
    session.list_prompts = AsyncMock(return_value=mcp_types.ListPromptsResult(prompts=prompts or []))
    session.call_tool = AsyncMock()
    session.read_resource = AsyncMock()
    session.get_prompt = AsyncMock()
    return session


def _connection(
    descriptor: UpstreamDescriptor,
    session: MagicMock,
    *,
    tools: bool = True,
    resources: bool = True,
    prompts: bool = True,
) -> Connection:
    return Connection(
        descriptor=descriptor,
        session=session,
        exit_stack=AsyncExitStack(),
        supports_tools=tools,
        supports_resources=resources,
        supports_prompts=prompts,
    )


@pytest.fixture
def make_descriptor() -> Callable[..., UpstreamDescriptor]:
    return _descriptor


@pytest.fixture
def make_session() -> Callable[..., MagicMock]:
    return _session


@pytest.fixture
def make_connection() -> Callable[..., Connection]:
    return _connection


class FakeManager:
    """Stand-in for ClientManager that hands out prepared connections."""

    def __init__(
        self,
        connections: Dict[str, Connection],
        failures: Optional[Dict[str, Exception]] = None,
    ) -> None:
        self.connections = connections
        self.failures = failures or {}
        self.live: Dict[str, Connection] = {}
        self.connect_calls: List[str] = []

    async def connect(self, descriptor: UpstreamDescriptor) -> Connection:
        self.connect_calls.append(descriptor.id)
        if descriptor.id in self.failures:
            raise self.failures[descriptor.id]
        conn = self.connections[descriptor.id]
        self.live[descriptor.id] = conn
        return conn

    async def disconnect(self, upstream_id: str) -> bool:
        return self.live.pop(upstream_id, None) is not None

    async def disconnect_all(self) -> None:
        self.live.clear()

    def get_connection(self, upstream_id: str) -> Optional[Connection]:
        return self.live.get(upstream_id)

    def get_all_connections(self) -> List[Connection]:
        return list(self.live.values())

    def get_active_connection_count(self) -> int:
        return len(self.live)


@pytest.fixture
def fake_manager_cls() -> type:
    return FakeManager
