"""Tests for the command-line entry point."""

from __future__ import annotations

import asyncio
import json

import pytest

from mcp_aggregator import cli
from mcp_aggregator.bridge.auth.credentials import AuthCredential, CredentialStore
from mcp_aggregator.constants import DEFAULT_PORT


class TestParsePort:
    def test_default(self) -> None:
        assert cli.parse_port(None) == DEFAULT_PORT

    def test_valid(self) -> None:
        assert cli.parse_port("8080") == 8080

    @pytest.mark.parametrize("value", ["abc", "70000", "0", "-1", "80.5"])
    def test_invalid(self, value: str) -> None:
        with pytest.raises(ValueError):
            cli.parse_port(value)


class TestServe:
    @pytest.fixture(autouse=True)
    def _no_logging_setup(self, monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
        monkeypatch.setattr(
            "mcp_aggregator.display.logging_config.setup_logging",
            lambda level: (str(tmp_path / "test.log"), level.upper()),
        )

    @pytest.mark.parametrize("port", ["abc", "70000"])
    def test_invalid_port_exits_1(self, port: str, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["serve", port])
        assert exc_info.value.code == 1
        assert "Invalid port" in capsys.readouterr().err

    def test_malformed_config_exits_1(self, tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
        cfg = tmp_path / "mcp-servers.json"
        cfg.write_text("{broken", encoding="utf-8")

        def must_not_run(*args, **kwargs):
            raise AssertionError("server must not start")

        monkeypatch.setattr(cli.asyncio, "run", must_not_run)
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["serve", "9123", "--config", str(cfg)])
        assert exc_info.value.code == 1


class TestListAndLogout:
    def test_no_command_prints_help(self, capsys) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 1
        assert "serve" in capsys.readouterr().out

    def test_list(self, tmp_path, capsys) -> None:
        cfg = tmp_path / "mcp-servers.json"
        cfg.write_text(
            json.dumps(
                [
                    {"id": "fs", "name": "Files", "transport": {"type": "stdio", "command": "npx"}},
                    {
                        "id": "linear",
                        "transport": {
                            "type": "sse",
                            "url": "https://mcp.linear.app/sse",
                            "requiresAuth": True,
                            "authType": "oauth2",
                        },
                    },
                ]
            ),
            encoding="utf-8",
        )
        cli.main(["list", "--config", str(cfg)])
        out = capsys.readouterr().out
        assert "Files" in out
        assert "https://mcp.linear.app/sse" in out
        assert "auth=oauth2" in out

    def test_list_empty(self, tmp_path, capsys) -> None:
        cli.main(["list", "--config", str(tmp_path / "absent.json")])
        assert "No upstream servers configured" in capsys.readouterr().out

    def test_config_path_from_environment(self, tmp_path, monkeypatch, capsys) -> None:
        cfg = tmp_path / "from-env.json"
        cfg.write_text(
            json.dumps([{"id": "envsrv", "transport": {"type": "stdio", "command": "x"}}]),
            encoding="utf-8",
        )
        monkeypatch.setenv("MCP_AGGREGATOR_CONFIG", str(cfg))
        cli.main(["list"])
        assert "envsrv" in capsys.readouterr().out

    def test_logout(self, tmp_path, capsys) -> None:
        creds = tmp_path / "auth.json"
        asyncio.run(
            CredentialStore(str(creds)).save(
                "linear", AuthCredential(access_token="at", client_id="cid")
            )
        )

        cli.main(["logout", "linear", "--credentials", str(creds)])
        assert "Credentials cleared for 'linear'" in capsys.readouterr().out
        assert json.loads(creds.read_text(encoding="utf-8")) == {}

        cli.main(["logout", "linear", "--credentials", str(creds)])
        assert "No stored credentials" in capsys.readouterr().out
