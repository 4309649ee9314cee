# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""HashiCorp Vault secret backend (KV v2 + transit engine)."""

import base64
import binascii

from gateway_logging import create_logger

from .backend import BackendKind, SecretBackend
from .config import DEFAULT_MASTER_KEY_ID
from .exceptions import (
    ConfigurationError,
    SecretConnectivityError,
    SecretCryptoError,
    SecretNotFoundError,
)

logger = create_logger(logger_type="stdout", level="INFO", name="gateway_secrets.transit")


def _b64encode_text(text: str) -> str:
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


class TransitVaultSecretBackend(SecretBackend):
    """Secret backend for a self-hosted HashiCorp Vault using python-hvac.

    Secrets are written to the KV v2 engine at ``{mount_path}/data/{name}``.
    With ``wrap_values`` enabled (the default) each value is first encrypted
    with the transit master key and stored as ``{"ciphertext": "vault:vN:..."}``;
    re-storing a value after a transit key rotation re-wraps it under the
    latest key version. Entries written as ``{"value": ...}`` by operators
    are returned unchanged.

    Args:
        url: Vault server URL (e.g., "https://vault.example.com:8200")
        token: Vault token
        mount_path: KV v2 mount point
        transit_mount_path: Transit engine mount point
        namespace: Optional Vault Enterprise namespace
        timeout_seconds: HTTP timeout for every call
        master_key_id: Transit key used to wrap stored values
        wrap_values: Wrap KV values with the transit key

    Raises:
        ConfigurationError: If hvac is missing or url/token are not set
    """

    kind = BackendKind.TRANSIT_VAULT

    def __init__(
        self,
        url: str | None,
        token: str | None,
        mount_path: str = "secret",
        transit_mount_path: str = "transit",
        namespace: str | None = None,
        timeout_seconds: float = 10.0,
        master_key_id: str = DEFAULT_MASTER_KEY_ID,
        wrap_values: bool = True,
    ):
        try:
            import hvac
        except ImportError as e:
            raise ConfigurationError(
                "hvac is required for the transit vault backend. "
                "Install with: pip install gateway-secrets[vault]"
            ) from e

        if not url or not token:
            raise ConfigurationError("Transit vault backend requires VAULT_ADDR and VAULT_TOKEN")

        self.url = url
        self.mount_path = mount_path
        self.transit_mount_path = transit_mount_path
        self.master_key_id = master_key_id
        self.wrap_values = wrap_values
        self.client = hvac.Client(url=url, token=token, namespace=namespace, timeout=timeout_seconds)
        logger.info(
            "Initialized transit vault secret backend",
            vault_url=url,
            mount_path=mount_path,
            transit_mount_path=transit_mount_path,
        )

    def close(self) -> None:
        adapter = getattr(self.client, "adapter", None)
        close_method = getattr(adapter, "close", None)
        if callable(close_method):
            close_method()

    def get_secret(self, name: str) -> str:
        from hvac.exceptions import InvalidPath, VaultError
        from requests.exceptions import RequestException

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=name,
                mount_point=self.mount_path,
                raise_on_deleted_version=True,
            )
        except InvalidPath as e:
            raise SecretNotFoundError(f"Secret not found: {name}") from e
        except (VaultError, RequestException) as e:
            raise SecretConnectivityError(f"Failed to retrieve secret '{name}': {e}") from e

        data = (response.get("data") or {}).get("data") or {}
        if "ciphertext" in data:
            return self.decrypt(data["ciphertext"], self.master_key_id)
        if data.get("value") is not None:
            return data["value"]
        raise SecretNotFoundError(f"Secret '{name}' has no value")

    def set_secret(self, name: str, value: str) -> None:
        from hvac.exceptions import VaultError
        from requests.exceptions import RequestException

        if self.wrap_values:
            secret = {"ciphertext": self.encrypt(value, self.master_key_id)}
        else:
            secret = {"value": value}

        try:
            self.client.secrets.kv.v2.create_or_update_secret(
                path=name,
                secret=secret,
                mount_point=self.mount_path,
            )
        except (VaultError, RequestException) as e:
            raise SecretConnectivityError(f"Failed to store secret '{name}': {e}") from e

    def delete_secret(self, name: str) -> None:
        from hvac.exceptions import InvalidPath, VaultError
        from requests.exceptions import RequestException

        try:
            self.client.secrets.kv.v2.delete_metadata_and_all_versions(
                path=name,
                mount_point=self.mount_path,
            )
        except InvalidPath:
            return
        except (VaultError, RequestException) as e:
            raise SecretConnectivityError(f"Failed to delete secret '{name}': {e}") from e

    def get_encryption_key(self, key_id: str) -> bytes:
        """Generate a data key under transit key ``key_id`` and return its plaintext."""
        from hvac.exceptions import InvalidPath, VaultError
        from requests.exceptions import RequestException

        try:
            response = self.client.secrets.transit.generate_data_key(
                name=key_id,
                key_type="plaintext",
                mount_point=self.transit_mount_path,
            )
        except InvalidPath as e:
            raise SecretNotFoundError(f"Transit key not found: {key_id}") from e
        except (VaultError, RequestException) as e:
            raise SecretConnectivityError(f"Failed to generate data key for '{key_id}': {e}") from e
        return base64.b64decode(response["data"]["plaintext"])

    def rotate_encryption_key(self, key_id: str) -> str:
        from hvac.exceptions import InvalidPath, VaultError
        from requests.exceptions import RequestException

        try:
            self.client.secrets.transit.rotate_key(name=key_id, mount_point=self.transit_mount_path)
            response = self.client.secrets.transit.read_key(name=key_id, mount_point=self.transit_mount_path)
        except InvalidPath as e:
            raise SecretNotFoundError(f"Transit key not found: {key_id}") from e
        except (VaultError, RequestException) as e:
            raise SecretConnectivityError(f"Failed to rotate transit key '{key_id}': {e}") from e
        return str(response["data"]["latest_version"])

    def encrypt(self, plaintext: str, key_id: str) -> str:
        from hvac.exceptions import InvalidPath, VaultError
        from requests.exceptions import RequestException

        try:
            response = self.client.secrets.transit.encrypt_data(
                name=key_id,
                plaintext=_b64encode_text(plaintext),
                mount_point=self.transit_mount_path,
            )
        except InvalidPath as e:
            raise SecretNotFoundError(f"Transit key not found: {key_id}") from e
        except (VaultError, RequestException) as e:
            raise SecretConnectivityError(f"Failed to encrypt with transit key '{key_id}': {e}") from e
        return response["data"]["ciphertext"]

    def decrypt(self, ciphertext: str, key_id: str) -> str:
        from hvac.exceptions import InvalidPath, InvalidRequest, VaultError
        from requests.exceptions import RequestException

        try:
            response = self.client.secrets.transit.decrypt_data(
                name=key_id,
                ciphertext=ciphertext,
                mount_point=self.transit_mount_path,
            )
        except InvalidRequest as e:
            raise SecretCryptoError(f"Vault rejected ciphertext for transit key '{key_id}'") from e
        except InvalidPath as e:
            raise SecretNotFoundError(f"Transit key not found: {key_id}") from e
        except (VaultError, RequestException) as e:
            raise SecretConnectivityError(f"Failed to decrypt with transit key '{key_id}': {e}") from e

        try:
            return base64.b64decode(response["data"]["plaintext"]).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise SecretCryptoError("Vault returned malformed plaintext") from e
