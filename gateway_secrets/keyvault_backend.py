# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Azure Key Vault secret backend."""

import base64
import binascii
import hashlib
import os
import re

from gateway_logging import create_logger

from .backend import BackendKind, SecretBackend
from .config import DEFAULT_MASTER_KEY_ID
from .exceptions import (
    ConfigurationError,
    SecretConnectivityError,
    SecretCryptoError,
    SecretNotFoundError,
)

logger = create_logger(logger_type="stdout", level="INFO", name="gateway_secrets.keyvault")

MAX_SECRET_NAME_LENGTH = 127


def to_vault_secret_name(name: str) -> str:
    """Map a secret path onto the Key Vault name charset ``[0-9A-Za-z-]``.

    ``gateway/owners/openai/credentials/api_key`` becomes
    ``gateway-owners-openai-credentials-api-key``. Names longer than 127
    characters are truncated and suffixed with a digest of the full path.
    """
    vault_name = re.sub(r"[^0-9A-Za-z-]", "-", name)
    if len(vault_name) > MAX_SECRET_NAME_LENGTH:
        digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:16]
        vault_name = f"{vault_name[:MAX_SECRET_NAME_LENGTH - 17]}-{digest}"
    return vault_name


class KeyVaultSecretBackend(SecretBackend):
    """Secret backend that stores secrets in Azure Key Vault.

    Uses ``SecretClient`` for secret values, ``KeyClient`` for key rotation
    and ``CryptographyClient`` for RSA-OAEP-256 envelope operations.
    Authentication goes through ``DefaultAzureCredential`` (managed identity,
    environment credentials or Azure CLI, in that order).

    Ciphertexts produced by ``encrypt`` are prefixed with the key version
    (``<version>:<base64>``) so they stay decryptable after the key rotates.

    Configuration via environment variables when no explicit URL is given:
    - AZURE_KEY_VAULT_URI: Full URI (e.g., "https://my-vault.vault.azure.net/")
    - AZURE_KEY_VAULT_NAME: Name of the Key Vault (e.g., "my-vault")

    Attributes:
        vault_url: Azure Key Vault URL
        client: SecretClient instance
        key_client: KeyClient instance
        master_key_id: Name of the Key Vault key used as master key
    """

    kind = BackendKind.KEY_VAULT

    def __init__(
        self,
        vault_url: str | None = None,
        vault_name: str | None = None,
        timeout_seconds: float = 10.0,
        purge_on_delete: bool = False,
        master_key_id: str = DEFAULT_MASTER_KEY_ID,
    ):
        """Initialize the Azure Key Vault backend.

        Args:
            vault_url: Full Azure Key Vault URL
            vault_name: Name of the Key Vault; ignored if vault_url is provided
            timeout_seconds: Connection and read timeout for every call
            purge_on_delete: Purge soft-deleted secrets after deleting them
            master_key_id: Name of the master key in the vault

        Raises:
            ConfigurationError: If the Azure SDK is missing or no vault is configured
            SecretConnectivityError: If client initialization fails
        """
        try:
            from azure.core.exceptions import AzureError, ClientAuthenticationError
            from azure.identity import DefaultAzureCredential
            from azure.keyvault.keys import KeyClient
            from azure.keyvault.secrets import SecretClient
        except ImportError as e:
            raise ConfigurationError(
                "Azure SDK dependencies for the key vault backend are not installed. "
                "Install with: pip install gateway-secrets[azure]"
            ) from e

        self.vault_url = self._determine_vault_url(vault_url, vault_name)
        self.timeout_seconds = timeout_seconds
        self.purge_on_delete = purge_on_delete
        self.master_key_id = master_key_id
        self._client_options = {
            "connection_timeout": timeout_seconds,
            "read_timeout": timeout_seconds,
        }

        try:
            self._credential = DefaultAzureCredential()
            self.client = SecretClient(vault_url=self.vault_url, credential=self._credential, **self._client_options)
            self.key_client = KeyClient(vault_url=self.vault_url, credential=self._credential, **self._client_options)
            logger.info("Initialized key vault secret backend", vault_url=self.vault_url)
        except ClientAuthenticationError as e:
            raise SecretConnectivityError(f"Failed to authenticate with Azure Key Vault: {e}") from e
        except ValueError as e:
            raise ConfigurationError(f"Invalid Azure Key Vault URL '{self.vault_url}': {e}") from e
        except AzureError as e:
            raise SecretConnectivityError(f"Azure Key Vault client error: {e}") from e

    @staticmethod
    def _determine_vault_url(vault_url: str | None, vault_name: str | None) -> str:
        if vault_url:
            return vault_url

        env_uri = os.getenv("AZURE_KEY_VAULT_URI")
        if env_uri:
            return env_uri

        if vault_name:
            return f"https://{vault_name}.vault.azure.net/"

        env_name = os.getenv("AZURE_KEY_VAULT_NAME")
        if env_name:
            return f"https://{env_name}.vault.azure.net/"

        raise ConfigurationError(
            "Azure Key Vault URL not configured. Provide vault_url or set "
            "AZURE_KEY_VAULT_URL, AZURE_KEY_VAULT_URI or AZURE_KEY_VAULT_NAME"
        )

    def close(self) -> None:
        for resource in (
            getattr(self, "client", None),
            getattr(self, "key_client", None),
            getattr(self, "_credential", None),
        ):
            close_method = getattr(resource, "close", None)
            if callable(close_method):
                try:
                    close_method()
                except (AttributeError, TypeError, RuntimeError) as e:
                    logger.warning("Unexpected error closing key vault resource", error=str(e))

    def _crypto_client(self, key_identifier: str):
        from azure.keyvault.keys.crypto import CryptographyClient

        return CryptographyClient(key_identifier, credential=self._credential, **self._client_options)

    def get_secret(self, name: str) -> str:
        from azure.core.exceptions import AzureError, ResourceNotFoundError

        vault_name = to_vault_secret_name(name)
        try:
            secret = self.client.get_secret(vault_name)
        except ResourceNotFoundError as e:
            raise SecretNotFoundError(f"Secret not found: {name}") from e
        except AzureError as e:
            raise SecretConnectivityError(f"Failed to retrieve secret '{name}': {e}") from e

        if secret.value is None:
            raise SecretNotFoundError(f"Secret '{name}' has no value")
        return secret.value

    def set_secret(self, name: str, value: str) -> None:
        from azure.core.exceptions import AzureError, HttpResponseError

        vault_name = to_vault_secret_name(name)
        try:
            try:
                self.client.set_secret(vault_name, value)
            except HttpResponseError as e:
                # 409: secret is soft-deleted and must be recovered before it can be written
                if getattr(e, "status_code", None) != 409:
                    raise
                logger.info("Recovering soft-deleted secret before update", secret_path=name)
                self.client.begin_recover_deleted_secret(vault_name).wait(timeout=self.timeout_seconds)
                self.client.set_secret(vault_name, value)
        except AzureError as e:
            raise SecretConnectivityError(f"Failed to store secret '{name}': {e}") from e

    def delete_secret(self, name: str) -> None:
        from azure.core.exceptions import AzureError, ResourceNotFoundError

        vault_name = to_vault_secret_name(name)
        try:
            poller = self.client.begin_delete_secret(vault_name)
            poller.wait(timeout=self.timeout_seconds)
            if self.purge_on_delete:
                self.client.purge_deleted_secret(vault_name)
        except ResourceNotFoundError:
            return
        except AzureError as e:
            raise SecretConnectivityError(f"Failed to delete secret '{name}': {e}") from e

    def get_encryption_key(self, key_id: str) -> bytes:
        """Return the versioned key identifier; key material never leaves the vault."""
        from azure.core.exceptions import AzureError, ResourceNotFoundError

        try:
            key = self.key_client.get_key(key_id)
        except ResourceNotFoundError as e:
            raise SecretNotFoundError(f"Key not found: {key_id}") from e
        except AzureError as e:
            raise SecretConnectivityError(f"Failed to retrieve key '{key_id}': {e}") from e
        return key.id.encode("utf-8")

    def rotate_encryption_key(self, key_id: str) -> str:
        from azure.core.exceptions import AzureError, ResourceNotFoundError

        try:
            key = self.key_client.rotate_key(key_id)
        except ResourceNotFoundError as e:
            raise SecretNotFoundError(f"Key not found: {key_id}") from e
        except AzureError as e:
            raise SecretConnectivityError(f"Failed to rotate key '{key_id}': {e}") from e
        return key.properties.version

    def encrypt(self, plaintext: str, key_id: str) -> str:
        from azure.core.exceptions import AzureError, ResourceNotFoundError
        from azure.keyvault.keys.crypto import EncryptionAlgorithm

        try:
            key = self.key_client.get_key(key_id)
            result = self._crypto_client(key.id).encrypt(
                EncryptionAlgorithm.rsa_oaep_256, plaintext.encode("utf-8")
            )
        except ResourceNotFoundError as e:
            raise SecretNotFoundError(f"Key not found: {key_id}") from e
        except AzureError as e:
            raise SecretConnectivityError(f"Failed to encrypt with key '{key_id}': {e}") from e

        payload = base64.b64encode(result.ciphertext).decode("ascii")
        return f"{key.properties.version}:{payload}"

    def decrypt(self, ciphertext: str, key_id: str) -> str:
        from azure.core.exceptions import AzureError, HttpResponseError, ResourceNotFoundError
        from azure.keyvault.keys.crypto import EncryptionAlgorithm

        version, _, payload = ciphertext.partition(":")
        if not version or not payload:
            raise SecretCryptoError("Malformed ciphertext: missing key version prefix")
        try:
            blob = base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise SecretCryptoError("Ciphertext is not valid base64") from e

        key_identifier = f"{self.vault_url.rstrip('/')}/keys/{key_id}/{version}"
        try:
            result = self._crypto_client(key_identifier).decrypt(EncryptionAlgorithm.rsa_oaep_256, blob)
        except ResourceNotFoundError as e:
            raise SecretNotFoundError(f"Key version not found: {key_id}/{version}") from e
        except HttpResponseError as e:
            if getattr(e, "status_code", None) == 400:
                raise SecretCryptoError(f"Key Vault rejected ciphertext for key '{key_id}'") from e
            raise SecretConnectivityError(f"Failed to decrypt with key '{key_id}': {e}") from e
        except AzureError as e:
            raise SecretConnectivityError(f"Failed to decrypt with key '{key_id}': {e}") from e
        return result.plaintext.decode("utf-8")
