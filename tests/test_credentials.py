"""Tests for the on-disk OAuth credential store."""

from __future__ import annotations

import json
import logging
import os
import stat

import pytest

from mcp_aggregator.bridge.auth.credentials import AuthCredential, CredentialStore


class TestAuthCredential:
    def test_no_expiry_never_expires(self) -> None:
        cred = AuthCredential(access_token="at", client_id="cid")
        assert cred.expires_at is None
        assert not cred.is_expired()

    def test_is_expired(self) -> None:
        cred = AuthCredential(access_token="at", client_id="cid", expires_at_ms=10_000)
        assert cred.expires_at == 10.0
        assert cred.is_expired(now=11.0)
        assert not cred.is_expired(now=9.0)

    def test_from_token_response_computes_expiry(self) -> None:
        cred = AuthCredential.from_token_response(
            {"access_token": "at", "expires_in": 3600, "token_type": "bearer"},
            "cid",
            now=1000.0,
        )
        assert cred.expires_at == 4600.0
        assert cred.token_type == "bearer"
        assert cred.refresh_token is None

    def test_from_token_response_keeps_previous_refresh_token(self) -> None:
        cred = AuthCredential.from_token_response(
            {"access_token": "at2"},
            "cid",
            previous_refresh_token="rt-old",
            registration={"client_id": "cid"},
        )
        assert cred.refresh_token == "rt-old"
        assert cred.expires_at is None
        assert cred.token_type == "Bearer"
        assert cred.registration == {"client_id": "cid"}


@pytest.mark.asyncio
class TestCredentialStore:
    async def test_round_trip(self, tmp_path) -> None:
        path = tmp_path / "auth-credentials.json"
        store = CredentialStore(str(path))
        cred = AuthCredential(
            access_token="at",
            refresh_token="rt",
            expires_at_ms=1767225600000,
            client_id="cid",
            registration={"client_id": "cid", "client_name": "MCP Aggregator"},
        )

        await store.save("linear", cred)
        loaded = await CredentialStore(str(path)).load("linear")

        assert loaded == cred
        raw = json.loads(path.read_text(encoding="utf-8"))
        assert raw["linear"]["accessToken"] == "at"
        assert raw["linear"]["expiresAt"] == 1767225600000
        assert raw["linear"]["registrationResponse"]["client_id"] == "cid"
        assert "clientSecret" not in raw["linear"]

    async def test_file_is_private(self, tmp_path) -> None:
        path = tmp_path / "creds" / "auth.json"
        store = CredentialStore(str(path))
        await store.save("a", AuthCredential(access_token="at", client_id="cid"))
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    async def test_records_are_keyed_by_upstream(self, tmp_path) -> None:
        store = CredentialStore(str(tmp_path / "auth.json"))
        await store.save("a", AuthCredential(access_token="at-a", client_id="cid"))
        await store.save("b", AuthCredential(access_token="at-b", client_id="cid"))
        assert (await store.load("a")).access_token == "at-a"
        assert (await store.load("b")).access_token == "at-b"

    async def test_missing_file_and_key(self, tmp_path) -> None:
        store = CredentialStore(str(tmp_path / "absent.json"))
        assert await store.load("a") is None
        assert await store.delete("a") is False

    async def test_delete(self, tmp_path) -> None:
        store = CredentialStore(str(tmp_path / "auth.json"))
        await store.save("a", AuthCredential(access_token="at", client_id="cid"))
        assert await store.delete("a") is True
        assert await store.load("a") is None

    async def test_malformed_record_ignored(self, tmp_path) -> None:
        path = tmp_path / "auth.json"
        path.write_text(json.dumps({"a": {"tokenType": "Bearer"}}), encoding="utf-8")
        assert await CredentialStore(str(path)).load("a") is None

    @pytest.mark.parametrize("content", ["{truncated", "[1, 2]"])
    async def test_unreadable_file_counts_as_empty(self, tmp_path, caplog, content: str) -> None:
        path = tmp_path / "auth.json"
        path.write_text(content, encoding="utf-8")
        store = CredentialStore(str(path))

        with caplog.at_level(logging.WARNING):
            assert await store.load("a") is None
        assert "will be ignored" in caplog.text

        await store.save("a", AuthCredential(access_token="at", client_id="cid"))
        assert json.loads(path.read_text(encoding="utf-8"))["a"]["accessToken"] == "at"
