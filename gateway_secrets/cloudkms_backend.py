# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""AWS KMS + Secrets Manager secret backend."""

import base64
import binascii
from datetime import datetime, timezone

from gateway_logging import create_logger

from .backend import BackendKind, SecretBackend
from .config import DEFAULT_MASTER_KEY_ID
from .exceptions import (
    ConfigurationError,
    SecretConnectivityError,
    SecretCryptoError,
    SecretNotFoundError,
)

logger = create_logger(logger_type="stdout", level="INFO", name="gateway_secrets.cloudkms")

# Secrets Manager reports ResourceNotFoundException, KMS reports NotFoundException
NOT_FOUND_CODES = frozenset({"ResourceNotFoundException", "NotFoundException"})


def _error_code(error: Exception) -> str:
    response = getattr(error, "response", None) or {}
    return response.get("Error", {}).get("Code", "")


class CloudKMSSecretBackend(SecretBackend):
    """Secret backend backed by AWS Secrets Manager and AWS KMS.

    Secrets are stored as Secrets Manager ``SecretString`` values encrypted
    at rest with the configured KMS key. Writing a secret again after the
    KMS key has rotated makes AWS encrypt it with the new backing key.

    Both clients are created with explicit connect/read timeouts and SDK
    retries disabled; callers own any retry policy.

    Example:
        >>> backend = CloudKMSSecretBackend(region="eu-west-1", kms_key_id="alias/gateway")
        >>> backend.set_secret("gateway/owners/openai/credentials/api_key", "sk-...")

    Attributes:
        master_key_id: KMS key id/ARN/alias used for secrets and rotation
        kms_client: boto3 KMS client
        secrets_client: boto3 Secrets Manager client
    """

    kind = BackendKind.CLOUD_KMS

    def __init__(
        self,
        region: str = "us-east-1",
        kms_key_id: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        secrets_manager_region: str | None = None,
        timeout_seconds: float = 10.0,
        master_key_id: str = DEFAULT_MASTER_KEY_ID,
    ):
        """Initialize the AWS clients.

        Args:
            region: AWS region for KMS
            kms_key_id: KMS key id; defaults to ``master_key_id``
            access_key_id: Optional static access key (default credential chain otherwise)
            secret_access_key: Optional static secret key
            secrets_manager_region: Region for Secrets Manager (defaults to ``region``)
            timeout_seconds: Connect and read timeout for every call
            master_key_id: Fallback key id when ``kms_key_id`` is not given

        Raises:
            ConfigurationError: If boto3 is not installed
            SecretConnectivityError: If the clients cannot be created
        """
        try:
            import boto3
            from botocore.config import Config
            from botocore.exceptions import BotoCoreError
        except ImportError as e:
            raise ConfigurationError(
                "AWS SDK dependencies for the cloud KMS backend are not installed. "
                "Install with: pip install gateway-secrets[aws]"
            ) from e

        self.region = region
        self.master_key_id = kms_key_id or master_key_id
        self.timeout_seconds = timeout_seconds

        client_config = Config(
            connect_timeout=timeout_seconds,
            read_timeout=timeout_seconds,
            retries={"max_attempts": 1, "mode": "standard"},
        )
        credentials = {}
        if access_key_id and secret_access_key:
            credentials = {
                "aws_access_key_id": access_key_id,
                "aws_secret_access_key": secret_access_key,
            }

        try:
            self.kms_client = boto3.client("kms", region_name=region, config=client_config, **credentials)
            self.secrets_client = boto3.client(
                "secretsmanager",
                region_name=secrets_manager_region or region,
                config=client_config,
                **credentials,
            )
        except BotoCoreError as e:
            raise SecretConnectivityError(f"Failed to create AWS clients: {e}") from e

        logger.info("Initialized cloud KMS secret backend", region=region, key_id=self.master_key_id)

    def close(self) -> None:
        for client in (getattr(self, "kms_client", None), getattr(self, "secrets_client", None)):
            close_method = getattr(client, "close", None)
            if callable(close_method):
                close_method()

    def get_secret(self, name: str) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self.secrets_client.get_secret_value(SecretId=name)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                raise SecretNotFoundError(f"Secret not found: {name}") from e
            raise SecretConnectivityError(f"Failed to retrieve secret '{name}': {e}") from e
        except BotoCoreError as e:
            raise SecretConnectivityError(f"Failed to retrieve secret '{name}': {e}") from e

        value = response.get("SecretString")
        if value is None:
            binary = response.get("SecretBinary")
            if binary is None:
                raise SecretNotFoundError(f"Secret '{name}' has no value")
            value = binary.decode("utf-8") if isinstance(binary, bytes) else str(binary)
        return value

    def set_secret(self, name: str, value: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            try:
                self.secrets_client.put_secret_value(SecretId=name, SecretString=value)
            except ClientError as e:
                if _error_code(e) not in NOT_FOUND_CODES:
                    raise
                # Secret does not exist yet
                create_args = {"Name": name, "SecretString": value}
                if self.master_key_id:
                    create_args["KmsKeyId"] = self.master_key_id
                self.secrets_client.create_secret(**create_args)
        except (ClientError, BotoCoreError) as e:
            raise SecretConnectivityError(f"Failed to store secret '{name}': {e}") from e

    def delete_secret(self, name: str) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            self.secrets_client.delete_secret(SecretId=name, ForceDeleteWithoutRecovery=True)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                return
            raise SecretConnectivityError(f"Failed to delete secret '{name}': {e}") from e
        except BotoCoreError as e:
            raise SecretConnectivityError(f"Failed to delete secret '{name}': {e}") from e

    def get_encryption_key(self, key_id: str) -> bytes:
        """Generate an AES-256 data key under ``key_id`` and return its plaintext."""
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self.kms_client.generate_data_key(KeyId=key_id, KeySpec="AES_256")
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                raise SecretNotFoundError(f"KMS key not found: {key_id}") from e
            raise SecretConnectivityError(f"Failed to generate data key for '{key_id}': {e}") from e
        except BotoCoreError as e:
            raise SecretConnectivityError(f"Failed to generate data key for '{key_id}': {e}") from e
        return response["Plaintext"]

    def rotate_encryption_key(self, key_id: str) -> str:
        """Request on-demand rotation of ``key_id``.

        KMS does not expose backing-key versions, so the returned version is
        the key ARN suffixed with the UTC time the rotation was requested.
        """
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self.kms_client.rotate_key_on_demand(KeyId=key_id)
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                raise SecretNotFoundError(f"KMS key not found: {key_id}") from e
            raise SecretConnectivityError(f"Failed to rotate KMS key '{key_id}': {e}") from e
        except BotoCoreError as e:
            raise SecretConnectivityError(f"Failed to rotate KMS key '{key_id}': {e}") from e

        requested_at = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        return f"{response.get('KeyId', key_id)}@{requested_at}"

    def encrypt(self, plaintext: str, key_id: str) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            response = self.kms_client.encrypt(KeyId=key_id, Plaintext=plaintext.encode("utf-8"))
        except ClientError as e:
            if _error_code(e) in NOT_FOUND_CODES:
                raise SecretNotFoundError(f"KMS key not found: {key_id}") from e
            raise SecretConnectivityError(f"Failed to encrypt with KMS key '{key_id}': {e}") from e
        except BotoCoreError as e:
            raise SecretConnectivityError(f"Failed to encrypt with KMS key '{key_id}': {e}") from e
        return base64.b64encode(response["CiphertextBlob"]).decode("ascii")

    def decrypt(self, ciphertext: str, key_id: str) -> str:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            blob = base64.b64decode(ciphertext, validate=True)
        except binascii.Error as e:
            raise SecretCryptoError("Ciphertext is not valid base64") from e

        try:
            response = self.kms_client.decrypt(CiphertextBlob=blob, KeyId=key_id)
        except ClientError as e:
            code = _error_code(e)
            if code in ("InvalidCiphertextException", "IncorrectKeyException"):
                raise SecretCryptoError(f"KMS rejected ciphertext for key '{key_id}'") from e
            if code in NOT_FOUND_CODES:
                raise SecretNotFoundError(f"KMS key not found: {key_id}") from e
            raise SecretConnectivityError(f"Failed to decrypt with KMS key '{key_id}': {e}") from e
        except BotoCoreError as e:
            raise SecretConnectivityError(f"Failed to decrypt with KMS key '{key_id}': {e}") from e
        return response["Plaintext"].decode("utf-8")
