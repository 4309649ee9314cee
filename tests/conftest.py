# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Test fixtures for the gateway secrets subsystem.

Cloud SDKs are not required to run the tests. Fixtures patch ``sys.modules``
with per-test fakes for boto3/botocore, the Azure SDK and hvac; each fake
keeps its state in memory and behaves like the real service for the calls
the backends make.
"""

from __future__ import annotations

import base64
import os
import sys
import types
from dataclasses import dataclass
from unittest.mock import MagicMock

import pytest

from gateway_logging import SilentLogger


def _module(name: str, **attrs) -> types.ModuleType:
    module = types.ModuleType(name)
    for attr, value in attrs.items():
        setattr(module, attr, value)
    return module


# --------------------------------------------------------------------------
# AWS (boto3 / botocore)
# --------------------------------------------------------------------------


class FakeClientError(Exception):
    """Stand-in for ``botocore.exceptions.ClientError``."""

    def __init__(self, error_response, operation_name):
        self.response = error_response
        self.operation_name = operation_name
        super().__init__(f"An error occurred ({error_response['Error']['Code']}) when calling {operation_name}")


class FakeBotoCoreError(Exception):
    pass


def _client_error(code: str, operation: str) -> FakeClientError:
    return FakeClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeSecretsManager:
    def __init__(self):
        self.secrets: dict[str, str] = {}
        self.kms_key_ids: dict[str, str | None] = {}
        self.fail_with: str | None = None
        self.close = MagicMock()

    def _check(self, operation):
        if self.fail_with:
            raise _client_error(self.fail_with, operation)

    def get_secret_value(self, SecretId):
        self._check("GetSecretValue")
        if SecretId not in self.secrets:
            raise _client_error("ResourceNotFoundException", "GetSecretValue")
        return {"Name": SecretId, "SecretString": self.secrets[SecretId]}

    def put_secret_value(self, SecretId, SecretString):
        self._check("PutSecretValue")
        if SecretId not in self.secrets:
            raise _client_error("ResourceNotFoundException", "PutSecretValue")
        self.secrets[SecretId] = SecretString
        return {"Name": SecretId}

    def create_secret(self, Name, SecretString, KmsKeyId=None):
        self._check("CreateSecret")
        self.secrets[Name] = SecretString
        self.kms_key_ids[Name] = KmsKeyId
        return {"Name": Name}

    def delete_secret(self, SecretId, ForceDeleteWithoutRecovery=False):
        self._check("DeleteSecret")
        if SecretId not in self.secrets:
            raise _client_error("ResourceNotFoundException", "DeleteSecret")
        del self.secrets[SecretId]
        return {"Name": SecretId}


class FakeKMS:
    def __init__(self):
        self.rotations: list[str] = []
        self.missing_keys: set[str] = set()
        self.close = MagicMock()

    def _check_key(self, key_id, operation):
        if key_id in self.missing_keys:
            raise _client_error("NotFoundException", operation)

    def generate_data_key(self, KeyId, KeySpec):
        self._check_key(KeyId, "GenerateDataKey")
        return {"KeyId": KeyId, "Plaintext": os.urandom(32), "CiphertextBlob": b"wrapped"}

    def rotate_key_on_demand(self, KeyId):
        self._check_key(KeyId, "RotateKeyOnDemand")
        self.rotations.append(KeyId)
        return {"KeyId": KeyId}

    def encrypt(self, KeyId, Plaintext):
        self._check_key(KeyId, "Encrypt")
        return {"KeyId": KeyId, "CiphertextBlob": KeyId.encode() + b"|" + Plaintext[::-1]}

    def decrypt(self, CiphertextBlob, KeyId=None):
        key_id, sep, payload = CiphertextBlob.partition(b"|")
        if not sep or (KeyId and key_id.decode() != KeyId):
            raise _client_error("InvalidCiphertextException", "Decrypt")
        return {"KeyId": key_id.decode(), "Plaintext": payload[::-1]}


@dataclass(frozen=True)
class AwsSdkFakes:
    kms: FakeKMS
    secretsmanager: FakeSecretsManager
    client_factory: MagicMock
    ClientError: type[Exception]
    BotoCoreError: type[Exception]


@pytest.fixture
def aws_sdk(monkeypatch: pytest.MonkeyPatch) -> AwsSdkFakes:
    """Provide per-test boto3/botocore fakes via ``sys.modules``."""
    kms = FakeKMS()
    secretsmanager = FakeSecretsManager()
    clients = {"kms": kms, "secretsmanager": secretsmanager}
    client_factory = MagicMock(name="boto3.client", side_effect=lambda service, **kwargs: clients[service])

    config_module = _module("botocore.config", Config=MagicMock(name="Config"))
    exceptions_module = _module("botocore.exceptions", ClientError=FakeClientError, BotoCoreError=FakeBotoCoreError)

    monkeypatch.setitem(sys.modules, "boto3", _module("boto3", client=client_factory))
    monkeypatch.setitem(sys.modules, "botocore", _module("botocore", config=config_module, exceptions=exceptions_module))
    monkeypatch.setitem(sys.modules, "botocore.config", config_module)
    monkeypatch.setitem(sys.modules, "botocore.exceptions", exceptions_module)

    return AwsSdkFakes(
        kms=kms,
        secretsmanager=secretsmanager,
        client_factory=client_factory,
        ClientError=FakeClientError,
        BotoCoreError=FakeBotoCoreError,
    )


# --------------------------------------------------------------------------
# Azure Key Vault
# --------------------------------------------------------------------------


class AzureError(Exception):
    def __init__(self, message=None, **kwargs):
        super().__init__(message)
        self.message = message


class HttpResponseError(AzureError):
    def __init__(self, message=None, status_code=None, **kwargs):
        super().__init__(message)
        self.status_code = status_code


class ResourceNotFoundError(HttpResponseError):
    def __init__(self, message=None, **kwargs):
        super().__init__(message, status_code=404)


class ClientAuthenticationError(HttpResponseError):
    def __init__(self, message=None, **kwargs):
        super().__init__(message, status_code=401)


class _Poller:
    def __init__(self):
        self.wait = MagicMock(name="wait")


class FakeSecretClient:
    def __init__(self, vault_url, credential, **kwargs):
        self.vault_url = vault_url
        self.kwargs = kwargs
        self.secrets: dict[str, str] = {}
        self.deleted: dict[str, str] = {}
        self.purged: list[str] = []
        self.fail_with: Exception | None = None
        self.close = MagicMock()

    def get_secret(self, name):
        if self.fail_with:
            raise self.fail_with
        if name not in self.secrets:
            raise ResourceNotFoundError(f"Secret {name} not found")
        return types.SimpleNamespace(name=name, value=self.secrets[name])

    def set_secret(self, name, value):
        if self.fail_with:
            raise self.fail_with
        if name in self.deleted:
            raise HttpResponseError("Secret is currently in a deleted but recoverable state", status_code=409)
        self.secrets[name] = value
        return types.SimpleNamespace(name=name, value=value)

    def begin_delete_secret(self, name):
        if name not in self.secrets:
            raise ResourceNotFoundError(f"Secret {name} not found")
        self.deleted[name] = self.secrets.pop(name)
        return _Poller()

    def purge_deleted_secret(self, name):
        self.deleted.pop(name, None)
        self.purged.append(name)

    def begin_recover_deleted_secret(self, name):
        self.secrets[name] = self.deleted.pop(name)
        return _Poller()


class FakeKeyClient:
    def __init__(self, vault_url, credential, **kwargs):
        self.vault_url = vault_url.rstrip("/")
        self.versions: dict[str, int] = {}
        self.close = MagicMock()

    def _key(self, name):
        version = f"v{self.versions[name]}"
        return types.SimpleNamespace(
            id=f"{self.vault_url}/keys/{name}/{version}",
            name=name,
            properties=types.SimpleNamespace(version=version),
        )

    def create_key(self, name):
        self.versions[name] = 1
        return self._key(name)

    def get_key(self, name):
        if name not in self.versions:
            raise ResourceNotFoundError(f"Key {name} not found")
        return self._key(name)

    def rotate_key(self, name):
        if name not in self.versions:
            raise ResourceNotFoundError(f"Key {name} not found")
        self.versions[name] += 1
        return self._key(name)


class FakeCryptographyClient:
    def __init__(self, key_identifier, credential, **kwargs):
        self.key_identifier = key_identifier

    def encrypt(self, algorithm, plaintext):
        return types.SimpleNamespace(ciphertext=self.key_identifier.encode() + b"|" + plaintext)

    def decrypt(self, algorithm, ciphertext):
        key_identifier, sep, plaintext = ciphertext.partition(b"|")
        if not sep or key_identifier.decode() != self.key_identifier:
            raise HttpResponseError("Bad ciphertext", status_code=400)
        return types.SimpleNamespace(plaintext=plaintext)


@dataclass(frozen=True)
class AzureSdkFakes:
    """Per-test Azure SDK fakes; client instances are captured on creation."""

    secret_clients: list
    key_clients: list
    default_credential_cls: MagicMock
    AzureError: type[Exception]
    HttpResponseError: type[Exception]
    ResourceNotFoundError: type[Exception]
    ClientAuthenticationError: type[Exception]

    @property
    def secret_client(self) -> FakeSecretClient:
        return self.secret_clients[-1]

    @property
    def key_client(self) -> FakeKeyClient:
        return self.key_clients[-1]


@pytest.fixture
def azure_sdk(monkeypatch: pytest.MonkeyPatch) -> AzureSdkFakes:
    """Provide per-test Azure SDK module fakes via ``sys.modules``."""
    secret_clients: list[FakeSecretClient] = []
    key_clients: list[FakeKeyClient] = []

    def make_secret_client(*args, **kwargs):
        client = FakeSecretClient(*args, **kwargs)
        secret_clients.append(client)
        return client

    def make_key_client(*args, **kwargs):
        client = FakeKeyClient(*args, **kwargs)
        key_clients.append(client)
        return client

    default_credential_cls = MagicMock(name="DefaultAzureCredential")

    monkeypatch.setitem(sys.modules, "azure", _module("azure"))
    monkeypatch.setitem(sys.modules, "azure.core", _module("azure.core"))
    monkeypatch.setitem(
        sys.modules,
        "azure.core.exceptions",
        _module(
            "azure.core.exceptions",
            AzureError=AzureError,
            HttpResponseError=HttpResponseError,
            ResourceNotFoundError=ResourceNotFoundError,
            ClientAuthenticationError=ClientAuthenticationError,
        ),
    )
    monkeypatch.setitem(sys.modules, "azure.identity", _module("azure.identity", DefaultAzureCredential=default_credential_cls))
    monkeypatch.setitem(sys.modules, "azure.keyvault", _module("azure.keyvault"))
    monkeypatch.setitem(sys.modules, "azure.keyvault.secrets", _module("azure.keyvault.secrets", SecretClient=make_secret_client))
    monkeypatch.setitem(sys.modules, "azure.keyvault.keys", _module("azure.keyvault.keys", KeyClient=make_key_client))
    monkeypatch.setitem(
        sys.modules,
        "azure.keyvault.keys.crypto",
        _module(
            "azure.keyvault.keys.crypto",
            CryptographyClient=FakeCryptographyClient,
            EncryptionAlgorithm=types.SimpleNamespace(rsa_oaep_256="RSA-OAEP-256"),
        ),
    )

    return AzureSdkFakes(
        secret_clients=secret_clients,
        key_clients=key_clients,
        default_credential_cls=default_credential_cls,
        AzureError=AzureError,
        HttpResponseError=HttpResponseError,
        ResourceNotFoundError=ResourceNotFoundError,
        ClientAuthenticationError=ClientAuthenticationError,
    )


# --------------------------------------------------------------------------
# HashiCorp Vault (hvac)
# --------------------------------------------------------------------------


class VaultError(Exception):
    pass


class InvalidPath(VaultError):
    pass


class InvalidRequest(VaultError):
    pass


class Forbidden(VaultError):
    pass


class FakeKvV2:
    def __init__(self):
        self.data: dict[tuple[str, str], dict] = {}
        self.fail_with: Exception | None = None

    def read_secret_version(self, path, mount_point="secret", raise_on_deleted_version=None, version=None):
        if self.fail_with:
            raise self.fail_with
        if (mount_point, path) not in self.data:
            raise InvalidPath(f"no secret at {mount_point}/data/{path}")
        return {"data": {"data": dict(self.data[(mount_point, path)]), "metadata": {"version": 1}}}

    def create_or_update_secret(self, path, secret, mount_point="secret", cas=None):
        if self.fail_with:
            raise self.fail_with
        self.data[(mount_point, path)] = dict(secret)
        return {"data": {"version": 1}}

    def delete_metadata_and_all_versions(self, path, mount_point="secret"):
        if self.fail_with:
            raise self.fail_with
        self.data.pop((mount_point, path), None)


class FakeTransit:
    def __init__(self):
        self.keys: dict[str, int] = {}

    def _encode(self, name, version, plaintext_b64):
        blob = base64.b64encode(f"{name}|{plaintext_b64}".encode()).decode()
        return f"vault:v{version}:{blob}"

    def encrypt_data(self, name, plaintext, mount_point="transit"):
        version = self.keys.setdefault(name, 1)
        return {"data": {"ciphertext": self._encode(name, version, plaintext), "key_version": version}}

    def decrypt_data(self, name, ciphertext, mount_point="transit"):
        try:
            _, version, blob = ciphertext.split(":", 2)
            key_name, plaintext_b64 = base64.b64decode(blob).decode().split("|", 1)
        except ValueError as e:
            raise InvalidRequest("invalid ciphertext") from e
        if key_name != name or int(version[1:]) > self.keys.get(name, 0):
            raise InvalidRequest("cipher: message authentication failed")
        return {"data": {"plaintext": plaintext_b64}}

    def rotate_key(self, name, mount_point="transit"):
        if name not in self.keys:
            raise InvalidPath(f"no existing key named {name} could be found")
        self.keys[name] += 1

    def read_key(self, name, mount_point="transit"):
        if name not in self.keys:
            raise InvalidPath(f"no existing key named {name} could be found")
        return {"data": {"name": name, "latest_version": self.keys[name]}}

    def generate_data_key(self, name, key_type, mount_point="transit"):
        if name not in self.keys:
            raise InvalidPath(f"no existing key named {name} could be found")
        return {"data": {"plaintext": base64.b64encode(os.urandom(32)).decode()}}


class FakeVaultClient:
    def __init__(self, url=None, token=None, namespace=None, timeout=None, **kwargs):
        self.url = url
        self.token = token
        self.namespace = namespace
        self.timeout = timeout
        self.secrets = types.SimpleNamespace(
            kv=types.SimpleNamespace(v2=FakeKvV2()),
            transit=FakeTransit(),
        )
        self.adapter = MagicMock(name="adapter")


@dataclass(frozen=True)
class HvacFakes:
    clients: list
    VaultError: type[Exception]
    InvalidPath: type[Exception]
    InvalidRequest: type[Exception]
    Forbidden: type[Exception]

    @property
    def client(self) -> FakeVaultClient:
        return self.clients[-1]


@pytest.fixture
def hvac_sdk(monkeypatch: pytest.MonkeyPatch) -> HvacFakes:
    """Provide a per-test hvac fake via ``sys.modules``."""
    clients: list[FakeVaultClient] = []

    def make_client(*args, **kwargs):
        client = FakeVaultClient(*args, **kwargs)
        clients.append(client)
        return client

    exceptions_module = _module(
        "hvac.exceptions",
        VaultError=VaultError,
        InvalidPath=InvalidPath,
        InvalidRequest=InvalidRequest,
        Forbidden=Forbidden,
    )
    monkeypatch.setitem(sys.modules, "hvac", _module("hvac", Client=make_client, exceptions=exceptions_module))
    monkeypatch.setitem(sys.modules, "hvac.exceptions", exceptions_module)

    return HvacFakes(
        clients=clients,
        VaultError=VaultError,
        InvalidPath=InvalidPath,
        InvalidRequest=InvalidRequest,
        Forbidden=Forbidden,
    )


# --------------------------------------------------------------------------
# Shared helpers
# --------------------------------------------------------------------------


class ManualClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def silent_logger() -> SilentLogger:
    return SilentLogger()


@pytest.fixture
def environ() -> dict[str, str]:
    """Isolated mapping used instead of ``os.environ``."""
    return {}


TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


@pytest.fixture
def encryption_key() -> str:
    return TEST_ENCRYPTION_KEY


@pytest.fixture
def env_backend(environ):
    from gateway_secrets import EnvironmentSecretBackend

    return EnvironmentSecretBackend(
        master_key_id="gateway-encryption-key",
        encryption_key=TEST_ENCRYPTION_KEY,
        environ=environ,
    )
