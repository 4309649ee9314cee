# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Secret backends for storing credentials and managing encryption keys.

This package provides one contract over four secret/key-management systems:
process environment variables (with local AES-256-GCM envelopes), AWS KMS +
Secrets Manager, Azure Key Vault and HashiCorp Vault (KV v2 + transit).

Example:
    >>> from gateway_secrets import create_secret_backend, load_secrets_config
    >>> backend = create_secret_backend(load_secrets_config())
    >>> backend.set_secret("gateway/owners/openai/credentials/api_key", "sk-...")
"""

from .backend import BackendKind, SecretBackend, environment_variable_name
from .config import (
    CacheSettings,
    CloudKMSSettings,
    EnvConfigProvider,
    FallbackSettings,
    KeyVaultSettings,
    RotationSettings,
    SecretsConfig,
    TransitVaultSettings,
    load_secrets_config,
    parse_backend_kind,
)
from .exceptions import (
    ConfigurationError,
    SecretConnectivityError,
    SecretCryptoError,
    SecretError,
    SecretNotFoundError,
    UnsupportedOperationError,
)
from .environment_backend import EnvironmentSecretBackend
from .cloudkms_backend import CloudKMSSecretBackend
from .keyvault_backend import KeyVaultSecretBackend
from .transit_backend import TransitVaultSecretBackend
from .factory import create_secret_backend

__all__ = [
    "BackendKind",
    "SecretBackend",
    "environment_variable_name",
    "EnvironmentSecretBackend",
    "CloudKMSSecretBackend",
    "KeyVaultSecretBackend",
    "TransitVaultSecretBackend",
    "create_secret_backend",
    "SecretsConfig",
    "CloudKMSSettings",
    "KeyVaultSettings",
    "TransitVaultSettings",
    "RotationSettings",
    "CacheSettings",
    "FallbackSettings",
    "EnvConfigProvider",
    "load_secrets_config",
    "parse_backend_kind",
    "SecretError",
    "SecretNotFoundError",
    "SecretConnectivityError",
    "SecretCryptoError",
    "UnsupportedOperationError",
    "ConfigurationError",
]

__version__ = "0.1.0"
