"""Tests for the ASGI application: lifespan, CORS and the /mcp route."""

from __future__ import annotations

import pytest
from mcp import types as mcp_types
from starlette.testclient import TestClient

from mcp_aggregator.server.app import create_app
from mcp_aggregator.server.gateway import AggregationGateway

MCP_HEADERS = {
    "Accept": "application/json, text/event-stream",
    "Content-Type": "application/json",
}


@pytest.fixture
def gateway(tmp_path, make_descriptor, make_session, make_connection, fake_manager_cls):
    cfg = tmp_path / "mcp-servers.json"
    cfg.write_text(
        '[{"id": "alpha", "transport": {"type": "stdio", "command": "echo"}}]', encoding="utf-8"
    )
    session = make_session(
        tools=[mcp_types.Tool(name="ping", inputSchema={"type": "object"})]
    )
    conn = make_connection(make_descriptor("alpha"), session)
    return AggregationGateway(
        str(cfg), str(tmp_path / "auth.json"), manager=fake_manager_cls({"alpha": conn})
    )


class TestApp:
    def test_lifespan_starts_and_stops_gateway(self, gateway) -> None:
        app = create_app(gateway)
        assert app.state.gateway is gateway
        with TestClient(app):
            assert gateway.connected_upstreams == 1
            assert [t.name for t in gateway.tools] == ["alpha__ping"]
        assert gateway.connected_upstreams == 0

    def test_cors_preflight(self, gateway) -> None:
        with TestClient(create_app(gateway)) as client:
            resp = client.options(
                "/mcp",
                headers={
                    "Origin": "http://example.com",
                    "Access-Control-Request-Method": "POST",
                    "Access-Control-Request-Headers": "Content-Type",
                },
            )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "*"
        assert "POST" in resp.headers["access-control-allow-methods"]

    def test_get_not_allowed(self, gateway) -> None:
        with TestClient(create_app(gateway)) as client:
            assert client.get("/mcp").status_code == 405

    def test_tools_list_over_http(self, gateway) -> None:
        with TestClient(create_app(gateway)) as client:
            resp = client.post(
                "/mcp",
                headers=MCP_HEADERS,
                json={"jsonrpc": "2.0", "id": 1, "method": "tools/list", "params": {}},
            )
        assert resp.status_code == 200
        assert "alpha__ping" in resp.text
