"""Tests for VaultClient - AppRole auth, KV secrets and transit encryption."""

import base64
import logging
from unittest.mock import MagicMock, patch

import pytest
from hvac.exceptions import InvalidPath, InvalidRequest

from clients.vault_client import VaultClient, VaultError


@pytest.fixture
def vault_env(monkeypatch):
    monkeypatch.setenv("VAULT_ADDR", "https://vault.example.com")
    monkeypatch.setenv("VAULT_ROLE_ID", "role")
    monkeypatch.setenv("VAULT_SECRET_ID", "secret")
    monkeypatch.delenv("VAULT_NAMESPACE", raising=False)
    monkeypatch.delenv("VAULT_TRANSIT_KEY", raising=False)


@pytest.fixture
def hvac_client(vault_env):
    """Patched hvac.Client that authenticates."""
    client = MagicMock()
    client.auth.approle.login.return_value = {"auth": {"client_token": "s.token"}}
    client.is_authenticated.return_value = True
    with patch("clients.vault_client.hvac.Client", return_value=client):
        yield client


@pytest.fixture
def vault(hvac_client):
    return VaultClient()


class TestVaultClientInit:
    """Initialization and authentication."""

    def test_missing_vault_addr_raises(self, vault_env, monkeypatch):
        monkeypatch.delenv("VAULT_ADDR")

        with pytest.raises(ValueError, match="VAULT_ADDR"):
            VaultClient()

    def test_missing_approle_credentials_raises(self, vault_env, monkeypatch):
        monkeypatch.delenv("VAULT_ROLE_ID")

        with pytest.raises(ValueError, match="VAULT_ROLE_ID"):
            VaultClient()

    def test_failed_login_raises_permission_error(self, hvac_client):
        hvac_client.auth.approle.login.side_effect = RuntimeError("invalid role")

        with pytest.raises(PermissionError, match="authentication"):
            VaultClient()

    def test_valid_approle_sets_token(self, vault, hvac_client):
        assert hvac_client.token == "s.token"
        assert vault.transit_key == "org-stripe-keys"


class TestGetSecret:
    """Secret retrieval - paths automatically scoped to billing/."""

    def test_returns_field_value(self, vault, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.return_value = {
            "data": {"data": {"url": "postgresql://billing"}}
        }

        assert vault.get_secret("database", "url") == "postgresql://billing"
        kwargs = hvac_client.secrets.kv.v2.read_secret_version.call_args.kwargs
        assert kwargs["path"] == "billing/database"

    def test_missing_path_raises(self, vault, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.side_effect = InvalidPath()

        with pytest.raises(PermissionError):
            vault.get_secret("nonexistent", "field")

    def test_missing_field_raises_keyerror(self, vault, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.return_value = {"data": {"data": {"url": "x"}}}

        with pytest.raises(KeyError, match="not found"):
            vault.get_secret("database", "password")


class TestTransit:
    """Encryption of organization Stripe keys."""

    def test_encrypt_sends_base64_plaintext(self, vault, hvac_client):
        hvac_client.secrets.transit.encrypt_data.return_value = {"data": {"ciphertext": "vault:v1:abc"}}

        assert vault.encrypt("sk_test_org") == "vault:v1:abc"
        kwargs = hvac_client.secrets.transit.encrypt_data.call_args.kwargs
        assert kwargs["name"] == "org-stripe-keys"
        assert base64.b64decode(kwargs["plaintext"]) == b"sk_test_org"

    def test_decrypt_returns_plaintext(self, vault, hvac_client):
        encoded = base64.b64encode(b"sk_test_org").decode("ascii")
        hvac_client.secrets.transit.decrypt_data.return_value = {"data": {"plaintext": encoded}}

        assert vault.decrypt("vault:v1:abc") == "sk_test_org"

    def test_encrypt_failure_raises_without_leaking(self, vault, hvac_client, caplog):
        hvac_client.secrets.transit.encrypt_data.side_effect = InvalidRequest("bad request")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(VaultError):
                vault.encrypt("sk_live_secret_value")

        assert "sk_live_secret_value" not in caplog.text

    def test_decrypt_failure_raises_vault_error(self, vault, hvac_client):
        hvac_client.secrets.transit.decrypt_data.side_effect = InvalidRequest("cipher text is invalid")

        with pytest.raises(VaultError):
            vault.decrypt("garbage")
