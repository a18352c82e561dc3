"""Tests for the credential vault."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from topix.vault import Credential, CredentialVault, KeyringBackend, OAuth2Token, StoreBackend

TOKEN_URL = "https://auth.example.com/oauth/token"


@pytest.fixture
def fallback(store):
    return StoreBackend(store)


@pytest.fixture
def primary(memory_keyring):
    return KeyringBackend("com.topix.test", memory_keyring)


@pytest.fixture
def vault(fallback, primary):
    return CredentialVault(fallback, primary=primary, retry_base_delay=0)


@pytest.fixture
def store_only_vault(fallback):
    return CredentialVault(fallback, retry_base_delay=0)


def oauth_credential(expires_in: timedelta, refresh_token="refresh-1", token_url=TOKEN_URL):
    data = {
        "access_token": "access-1",
        "expires_at": (datetime.now(timezone.utc) + expires_in).isoformat(),
        "refresh_token": refresh_token,
        "client_id": "client",
        "client_secret": "secret",
        "account": "user@example.com",
    }
    if token_url:
        data["token_url"] = token_url
    return Credential("oauth2", data)


class TestKeyringPrimary:
    """Test cases for the vault with a working keyring."""

    def test_store_keeps_secret_out_of_database(self, vault, store, memory_keyring):
        credential = Credential("apikey", {"api_key": "k-123"})

        asyncio.run(vault.store("news", credential))

        record = store.credentials.get("news")
        assert not record.has_secret
        assert json.loads(record.credentials) == {"type": "apikey"}
        assert memory_keyring.passwords[("com.topix.test", "news")] == credential.to_json()
        assert vault.active_backend == "keyring"

    def test_get_list_delete(self, vault):
        credential = Credential("basic", {"username": "me", "password": "pw"})

        async def scenario():
            await vault.store("mail", credential)
            got = await vault.get("mail")
            listed = await vault.list()
            deleted = await vault.delete("mail")
            return got, listed, deleted, await vault.has_credentials("mail")

        got, listed, deleted, remaining = asyncio.run(scenario())

        assert got == credential
        assert listed == [{"plugin_id": "mail", "auth_type": "basic"}]
        assert deleted
        assert not remaining

    def test_missing_credential(self, vault):
        assert asyncio.run(vault.get("nothing")) is None

    def test_malformed_keyring_entry_is_absent(self, vault, memory_keyring):
        memory_keyring.passwords[("com.topix.test", "news")] = "{not json"
        assert asyncio.run(vault.get("news")) is None
        assert vault.is_primary_available()


class TestDemotion:
    """Test cases for falling back to the store."""

    def test_store_falls_back_when_keyring_fails(self, vault, store, memory_keyring):
        memory_keyring.fail = True
        credential = Credential("apikey", {"api_key": "k-123"})

        asyncio.run(vault.store("news", credential))

        assert not vault.is_primary_available()
        assert vault.active_backend == "store"
        assert store.credentials.get("news").credentials == credential.to_json()
        assert asyncio.run(vault.get("news")) == credential

    def test_session_credentials_survive_demotion(self, vault, store, memory_keyring):
        credential = Credential("apikey", {"api_key": "k-123"})

        async def scenario():
            await vault.store("news", credential)
            memory_keyring.fail = True
            return await vault.get("news")

        assert asyncio.run(scenario()) == credential
        record = store.credentials.get("news")
        assert record.has_secret
        assert record.credentials == credential.to_json()

    def test_demotion_is_one_way(self, vault, memory_keyring):
        async def scenario():
            memory_keyring.fail = True
            await vault.list()
            memory_keyring.fail = False
            await vault.store("news", Credential("apikey", {"api_key": "x"}))

        asyncio.run(scenario())
        assert not vault.is_primary_available()
        assert ("com.topix.test", "news") not in memory_keyring.passwords

    def test_delete_after_demotion_uses_store(self, vault, memory_keyring):
        async def scenario():
            memory_keyring.fail = True
            await vault.store("news", Credential("apikey", {"api_key": "x"}))
            return await vault.delete("news"), await vault.get("news")

        assert asyncio.run(scenario()) == (True, None)


class TestStoreOnly:
    def test_round_trip_is_byte_identical(self, store_only_vault, store):
        credential = Credential("custom", {"token": "t", "nested": {"a": [1, 2]}})

        asyncio.run(store_only_vault.store("custom_plugin", credential))

        assert store.credentials.get("custom_plugin").credentials == credential.to_json()
        assert asyncio.run(store_only_vault.get("custom_plugin")) == credential
        assert not store_only_vault.is_primary_available()

    def test_list(self, store_only_vault):
        async def scenario():
            await store_only_vault.store("b", Credential("apikey", {"api_key": "1"}))
            await store_only_vault.store("a", Credential("basic", {"username": "u", "password": "p"}))
            return await store_only_vault.list()

        assert asyncio.run(scenario()) == [
            {"plugin_id": "a", "auth_type": "basic"},
            {"plugin_id": "b", "auth_type": "apikey"},
        ]


class TestOAuth2:
    """Test cases for validation and refresh of OAuth2 credentials."""

    def test_token_valid_beyond_margin_is_returned_unchanged(self, store_only_vault, httpx_mock):
        credential = oauth_credential(timedelta(minutes=10))

        async def scenario():
            await store_only_vault.store("mail", credential)
            return await store_only_vault.validate("mail")

        assert asyncio.run(scenario()) == credential
        assert httpx_mock.get_requests() == []

    def test_token_within_margin_is_refreshed(self, store_only_vault, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=TOKEN_URL,
            json={"access_token": "access-2", "expires_in": 3600, "token_type": "Bearer"},
        )
        credential = oauth_credential(timedelta(minutes=4))

        async def scenario():
            await store_only_vault.store("mail", credential)
            refreshed = await store_only_vault.validate("mail")
            return refreshed, await store_only_vault.get("mail")

        refreshed, stored = asyncio.run(scenario())

        assert refreshed.data["access_token"] == "access-2"
        assert refreshed.data["refresh_token"] == "refresh-1"
        assert refreshed.data["account"] == "user@example.com"
        assert not OAuth2Token.from_credential(refreshed).expires_within(3000)
        assert stored == refreshed

        form = parse_qs(httpx_mock.get_requests()[0].content.decode())
        assert form["grant_type"] == ["refresh_token"]
        assert form["refresh_token"] == ["refresh-1"]
        assert form["client_id"] == ["client"]

    def test_new_refresh_token_replaces_old(self, store_only_vault, httpx_mock):
        httpx_mock.add_response(
            method="POST", json={"access_token": "a2", "refresh_token": "refresh-2", "expires_in": 60}
        )

        refreshed = asyncio.run(store_only_vault.refresh("mail", oauth_credential(timedelta(minutes=1))))
        assert refreshed.data["refresh_token"] == "refresh-2"

    def test_no_refresh_token_means_no_request(self, store_only_vault, httpx_mock):
        credential = oauth_credential(timedelta(minutes=1), refresh_token="")

        async def scenario():
            await store_only_vault.store("mail", credential)
            return await store_only_vault.validate("mail")

        assert asyncio.run(scenario()) is None
        assert httpx_mock.get_requests() == []

    def test_no_token_url_means_no_request(self, store_only_vault, httpx_mock):
        credential = oauth_credential(timedelta(minutes=1), token_url=None)
        assert asyncio.run(store_only_vault.refresh("mail", credential)) is None
        assert httpx_mock.get_requests() == []

    def test_server_errors_are_retried(self, store_only_vault, httpx_mock):
        httpx_mock.add_response(method="POST", status_code=500)
        httpx_mock.add_exception(httpx.ConnectError("connection reset"))
        httpx_mock.add_response(method="POST", json={"access_token": "a3", "expires_in": 3600})

        refreshed = asyncio.run(store_only_vault.refresh("mail", oauth_credential(timedelta(minutes=1))))

        assert refreshed.data["access_token"] == "a3"
        assert len(httpx_mock.get_requests()) == 3

    def test_client_errors_are_not_retried(self, store_only_vault, httpx_mock):
        httpx_mock.add_response(method="POST", status_code=400, json={"error": "invalid_grant"})

        assert asyncio.run(store_only_vault.refresh("mail", oauth_credential(timedelta(minutes=1)))) is None
        assert len(httpx_mock.get_requests()) == 1

    def test_gives_up_after_max_retries(self, fallback, httpx_mock):
        vault = CredentialVault(fallback, max_retries=2, retry_base_delay=0)
        for _ in range(3):
            httpx_mock.add_response(method="POST", status_code=503)

        assert asyncio.run(vault.refresh("mail", oauth_credential(timedelta(minutes=1)))) is None
        assert len(httpx_mock.get_requests()) == 3

    def test_invalid_token_response(self, store_only_vault, httpx_mock):
        httpx_mock.add_response(method="POST", json={"token_type": "Bearer"})
        assert asyncio.run(store_only_vault.refresh("mail", oauth_credential(timedelta(minutes=1)))) is None

    def test_validate_ignores_other_types(self, store_only_vault):
        async def scenario():
            await store_only_vault.store("news", Credential("apikey", {"api_key": "k"}))
            return await store_only_vault.validate("news")

        assert asyncio.run(scenario()) is None

    def test_validate_malformed_oauth_payload(self, store_only_vault):
        async def scenario():
            await store_only_vault.store("mail", Credential("oauth2", {"access_token": "a"}))
            return await store_only_vault.validate("mail")

        assert asyncio.run(scenario()) is None
