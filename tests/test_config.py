"""Tests for upstream descriptor validation and the configuration store."""

from __future__ import annotations

import json
import logging

import pytest
import yaml
from pydantic import ValidationError

from mcp_aggregator.config import (
    ServerConfigStore,
    StdioTransport,
    StreamableHttpTransport,
    UpstreamDescriptor,
    WebSocketTransport,
    expand_env_vars,
    validate_descriptors,
)
from mcp_aggregator.errors import ConfigurationError

# ── Descriptor schema ────────────────────────────────────────────────────


class TestUpstreamDescriptor:
    def test_stdio_minimal_defaults_name_to_id(self) -> None:
        d = UpstreamDescriptor.model_validate(
            {"id": " files ", "transport": {"type": "stdio", "command": "npx", "args": ["-y", "fs"]}}
        )
        assert d.id == "files"
        assert d.name == "files"
        assert d.display_name == "files"
        assert isinstance(d.transport, StdioTransport)
        assert d.transport.args == ["-y", "fs"]
        assert d.transport_type == "stdio"

    def test_empty_id_rejected(self) -> None:
        with pytest.raises(ValidationError):
            UpstreamDescriptor.model_validate(
                {"id": "  ", "transport": {"type": "stdio", "command": "x"}}
            )

    def test_requires_auth_oauth2_is_normalised(self) -> None:
        d = UpstreamDescriptor.model_validate(
            {
                "id": "linear",
                "name": "Linear",
                "transport": {
                    "type": "sse",
                    "url": "https://mcp.linear.app/sse",
                    "requiresAuth": True,
                    "authType": "oauth2",
                    "clientId": "cid",
                    "clientSecret": "csecret",
                },
                "createdAt": 1700000000000,
                "lastUsed": 1700000001000,
            }
        )
        assert d.transport.auth == "oauth2"
        assert d.transport.client_id == "cid"
        assert d.transport.client_secret == "csecret"
        assert d.created_at == 1700000000000
        assert d.last_used == 1700000001000

    def test_authorization_header_selects_bearer(self) -> None:
        d = UpstreamDescriptor.model_validate(
            {
                "id": "gh",
                "transport": {
                    "type": "streamable-http",
                    "url": "https://api.example.com/mcp",
                    "headers": {"Authorization": "Bearer ghp_token"},
                },
            }
        )
        assert isinstance(d.transport, StreamableHttpTransport)
        assert d.transport.auth == "bearer"
        assert d.transport.bearer_token == "ghp_token"

    def test_bearer_static_alias_requires_header(self) -> None:
        with pytest.raises(ValidationError):
            UpstreamDescriptor.model_validate(
                {
                    "id": "gh",
                    "transport": {
                        "type": "streamable-http",
                        "url": "https://api.example.com/mcp",
                        "auth": "bearer-static",
                    },
                }
            )

    def test_http_url_scheme_checked(self) -> None:
        with pytest.raises(ValidationError):
            UpstreamDescriptor.model_validate(
                {"id": "x", "transport": {"type": "sse", "url": "ftp://example.com"}}
            )

    def test_websocket_is_accepted_by_config(self) -> None:
        d = UpstreamDescriptor.model_validate(
            {"id": "ws", "transport": {"type": "websocket", "url": "wss://example.com/ws"}}
        )
        assert isinstance(d.transport, WebSocketTransport)

    def test_descriptor_is_frozen(self) -> None:
        d = UpstreamDescriptor.model_validate(
            {"id": "a", "transport": {"type": "stdio", "command": "x"}}
        )
        with pytest.raises(ValidationError):
            d.id = "b"  # type: ignore[misc]


# ── Loader ───────────────────────────────────────────────────────────────


class TestExpandEnvVars:
    def test_expands_nested(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AGG_TEST_TOKEN", "s3cret")
        data = {"headers": {"Authorization": "Bearer ${AGG_TEST_TOKEN}"}, "args": ["${AGG_TEST_TOKEN}", 3]}
        out = expand_env_vars(data)
        assert out["headers"]["Authorization"] == "Bearer s3cret"
        assert out["args"] == ["s3cret", 3]

    def test_unset_placeholder_kept(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("AGG_TEST_MISSING", raising=False)
        assert expand_env_vars("${AGG_TEST_MISSING}") == "${AGG_TEST_MISSING}"


class TestValidateDescriptors:
    def test_list_shape(self) -> None:
        out = validate_descriptors(
            [
                {"id": "a", "transport": {"type": "stdio", "command": "x"}},
                {"id": "b", "transport": {"type": "sse", "url": "http://localhost:8080/sse"}},
            ]
        )
        assert [d.id for d in out] == ["a", "b"]

    def test_servers_mapping_shape(self) -> None:
        out = validate_descriptors(
            {"servers": {"a": {"transport": {"type": "stdio", "command": "x"}}}}
        )
        assert out[0].id == "a"

    def test_invalid_and_duplicate_entries_skipped(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.ERROR):
            out = validate_descriptors(
                [
                    {"id": "a", "transport": {"type": "stdio", "command": "first"}},
                    {"id": "bad", "transport": {"type": "carrier-pigeon"}},
                    {"id": "a", "transport": {"type": "stdio", "command": "second"}},
                    "not-an-object",
                ]
            )
        assert [d.id for d in out] == ["a"]
        assert out[0].transport.command == "first"
        assert "bad" in caplog.text
        assert "Duplicate upstream id 'a'" in caplog.text

    def test_unknown_top_level_shape(self) -> None:
        with pytest.raises(ConfigurationError):
            validate_descriptors({"upstreams": []})


class TestLoadConfig:
    def test_missing_file_is_empty(self, tmp_path) -> None:
        assert ServerConfigStore(str(tmp_path / "absent.json")).load_all() == []

    def test_malformed_json_is_fatal(self, tmp_path) -> None:
        path = tmp_path / "mcp-servers.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            ServerConfigStore(str(path)).load()

    def test_yaml_file(self, tmp_path) -> None:
        path = tmp_path / "servers.yaml"
        path.write_text(
            yaml.safe_dump({"servers": [{"id": "y", "transport": {"type": "stdio", "command": "x"}}]}),
            encoding="utf-8",
        )
        assert [d.id for d in ServerConfigStore(str(path)).load_all()] == ["y"]

    def test_id_unusable_as_uri_scheme_is_kept_and_reported(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.ERROR):
            descriptors = validate_descriptors(
                [
                    {"id": "srv_1712345678_abc123def", "transport": {"type": "stdio", "command": "x"}},
                    {"id": "alpha", "transport": {"type": "stdio", "command": "x"}},
                ]
            )
        assert [d.id for d in descriptors] == ["srv_1712345678_abc123def", "alpha"]
        assert not descriptors[0].is_uri_scheme
        assert descriptors[1].is_uri_scheme
        assert "'srv_1712345678_abc123def' is not a valid URI scheme" in caplog.text
        assert "'alpha'" not in caplog.text


class TestServerConfigStore:
    def _write(self, path, entries) -> None:
        path.write_text(json.dumps(entries), encoding="utf-8")

    def test_load_all_orders_by_last_used_then_created(self, tmp_path) -> None:
        path = tmp_path / "mcp-servers.json"
        self._write(
            path,
            [
                {"id": "old", "transport": {"type": "stdio", "command": "x"}, "createdAt": 1},
                {"id": "new", "transport": {"type": "stdio", "command": "x"}, "createdAt": 5},
                {"id": "used", "transport": {"type": "stdio", "command": "x"}, "createdAt": 2, "lastUsed": 9},
            ],
        )
        store = ServerConfigStore(str(path))
        assert [d.id for d in store.load_all()] == ["used", "new", "old"]
        assert store.get("new") is not None
        assert store.get("nope") is None

    def test_mark_used_keeps_placeholders(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("AGG_TEST_TOKEN", "s3cret")
        path = tmp_path / "mcp-servers.json"
        self._write(
            path,
            [
                {
                    "id": "gh",
                    "transport": {
                        "type": "streamable-http",
                        "url": "https://api.example.com/mcp",
                        "headers": {"Authorization": "Bearer ${AGG_TEST_TOKEN}"},
                    },
                }
            ],
        )
        store = ServerConfigStore(str(path))
        assert store.get("gh").transport.bearer_token == "s3cret"

        store.mark_used("gh")

        saved = json.loads(path.read_text(encoding="utf-8"))
        assert saved[0]["transport"]["headers"]["Authorization"] == "Bearer ${AGG_TEST_TOKEN}"
        assert isinstance(saved[0]["lastUsed"], int)
        assert store.get("gh").last_used == saved[0]["lastUsed"]

    def test_mark_used_leaves_yaml_file_untouched(self, tmp_path) -> None:
        path = tmp_path / "servers.yaml"
        text = (
            "# production upstreams, do not edit casually\n"
            "servers:\n"
            "  fs:  # local files\n"
            "    transport:\n"
            "      type: stdio\n"
            "      command: echo\n"
        )
        path.write_text(text, encoding="utf-8")
        store = ServerConfigStore(str(path))

        store.mark_used("fs")

        assert path.read_text(encoding="utf-8") == text
        assert store.get("fs").last_used is not None

    def test_add_and_remove(self, tmp_path) -> None:
        path = tmp_path / "mcp-servers.json"
        store = ServerConfigStore(str(path))
        descriptor = UpstreamDescriptor.model_validate(
            {"id": "fs", "name": "Files", "transport": {"type": "stdio", "command": "npx"}}
        )

        store.add(descriptor)
        saved = json.loads(path.read_text(encoding="utf-8"))
        assert saved[0]["id"] == "fs"
        assert saved[0]["createdAt"] > 0
        assert ServerConfigStore(str(path)).get("fs").display_name == "Files"

        assert store.remove("fs") is True
        assert json.loads(path.read_text(encoding="utf-8")) == []
        assert store.remove("fs") is False
