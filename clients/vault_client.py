"""
HashiCorp Vault client for billing secret management.

Uses AppRole authentication. Fails fast on missing configuration.
KV paths are scoped to the 'billing/' prefix. Organization Stripe secret keys
are encrypted at rest with the transit engine; plaintext exists only in the
caller's stack frame.
"""

import base64
import os
import logging
from typing import Dict

import hvac
from hvac.exceptions import InvalidPath, InvalidRequest, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

# Project scope - all secrets under this path
_SECRET_PREFIX = "billing"

# Transit key used for organization Stripe secret keys
_DEFAULT_TRANSIT_KEY = "org-stripe-keys"

# Singleton instance and cache
_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, str] = {}


def _ensure_vault_client() -> "VaultClient":
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


class VaultError(Exception):
    """Vault operation failed. Fatal - application cannot function without secrets."""


class VaultClient:
    """Vault client with AppRole auth, env-based config, and fail-fast behavior."""

    def __init__(
        self,
        vault_addr: str | None = None,
        vault_namespace: str | None = None,
        transit_key: str | None = None,
    ):
        """Initialize with environment variables. Fails fast on missing config."""
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        self.vault_role_id = os.getenv("VAULT_ROLE_ID")
        self.vault_secret_id = os.getenv("VAULT_SECRET_ID")
        self.transit_key = transit_key or os.getenv("VAULT_TRANSIT_KEY", _DEFAULT_TRANSIT_KEY)

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")

        if not self.vault_role_id or not self.vault_secret_id:
            raise ValueError(
                "VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required"
            )

        client_kwargs = {"url": self.vault_addr}
        if self.vault_namespace:
            client_kwargs["namespace"] = self.vault_namespace

        self.client = hvac.Client(**client_kwargs)
        self._authenticate_approle()

        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed")

        logger.info("Vault client initialized: %s", self.vault_addr)

    def _authenticate_approle(self) -> None:
        """Authenticate using AppRole credentials."""
        try:
            auth_response = self.client.auth.approle.login(
                role_id=self.vault_role_id,
                secret_id=self.vault_secret_id,
            )
            self.client.token = auth_response["auth"]["client_token"]
            logger.info("AppRole authentication successful")
        except Exception as e:
            logger.error("AppRole authentication failed: %s", e)
            raise PermissionError(f"AppRole authentication failed: {e}")

    def get_secret(self, path: str, field: str) -> str:
        """
        Retrieve single field from KV v2 secret.

        Path is automatically scoped to 'billing/' prefix.

        Args:
            path: Secret path relative to billing/ (e.g., 'database', 'stripe')
            field: Field name within secret (e.g., 'url')

        Returns:
            Field value as string.

        Raises:
            PermissionError: Path not accessible or doesn't exist.
            KeyError: Field not found in secret.
        """
        full_path = f"{_SECRET_PREFIX}/{path}"

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
            secret_data = response["data"]["data"]

            if field not in secret_data:
                available = list(secret_data.keys())
                raise KeyError(
                    f"Field '{field}' not found in secret '{full_path}'. "
                    f"Available: {', '.join(available)}"
                )

            return secret_data[field]

        except InvalidPath:
            logger.error("Secret path not found: %s", full_path)
            raise PermissionError(f"Secret path '{full_path}' not found in Vault")

        except (Unauthorized, Forbidden) as e:
            logger.error("Access denied to secret %s: %s", full_path, e)
            raise PermissionError(f"Access denied to secret '{full_path}': {e}")

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a value with the transit engine.

        Returns:
            Transit ciphertext ("vault:v1:...") safe to store in the database.

        Raises:
            VaultError: If the transit engine rejects the request.
        """
        encoded = base64.b64encode(plaintext.encode("utf-8")).decode("ascii")
        try:
            response = self.client.secrets.transit.encrypt_data(
                name=self.transit_key,
                plaintext=encoded,
            )
        except (InvalidPath, InvalidRequest, Unauthorized, Forbidden) as e:
            logger.error("Transit encryption failed for key %s: %s", self.transit_key, type(e).__name__)
            raise VaultError("Transit encryption failed")
        return response["data"]["ciphertext"]

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a transit ciphertext.

        The plaintext is returned to the caller and never logged or cached.

        Raises:
            VaultError: If the ciphertext is malformed or the key is unavailable.
        """
        try:
            response = self.client.secrets.transit.decrypt_data(
                name=self.transit_key,
                ciphertext=ciphertext,
            )
        except (InvalidPath, InvalidRequest, Unauthorized, Forbidden) as e:
            logger.error("Transit decryption failed for key %s: %s", self.transit_key, type(e).__name__)
            raise VaultError("Transit decryption failed")
        return base64.b64decode(response["data"]["plaintext"]).decode("utf-8")


# Convenience functions


def _get_cached_fields(path: str, fields: list[str]) -> Dict[str, str]:
    client = _ensure_vault_client()
    result = {}

    for field in fields:
        cache_key = f"{_SECRET_PREFIX}/{path}/{field}"
        if cache_key in _secret_cache:
            result[field] = _secret_cache[cache_key]
        else:
            value = client.get_secret(path, field)
            _secret_cache[cache_key] = value
            result[field] = value

    return result


def get_database_url() -> str:
    """Get PostgreSQL connection URL from Vault."""
    return _get_cached_fields("database", ["url"])["url"]


def get_valkey_url() -> str:
    """Get Valkey (Redis) connection URL from Vault."""
    return _get_cached_fields("valkey", ["url"])["url"]


def get_email_config() -> Dict[str, str]:
    """Get email gateway configuration from Vault.

    Returns:
        Dict with keys: gateway_url, api_key, hmac_secret
    """
    return _get_cached_fields("email", ["gateway_url", "api_key", "hmac_secret"])


def get_stripe_config() -> Dict[str, str]:
    """Get platform Stripe configuration from Vault.

    Returns:
        Dict with keys: secret_key, connect_webhook_secret, publishable_key
    """
    return _get_cached_fields(
        "stripe", ["secret_key", "connect_webhook_secret", "publishable_key"]
    )


def get_vault_client() -> VaultClient:
    """Process-wide authenticated client, also used for transit encryption."""
    return _ensure_vault_client()
