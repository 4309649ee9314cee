# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Configuration for the secrets subsystem.

Settings are read once at process start from environment variables and
validated eagerly. Invalid values raise ``ConfigurationError``.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Mapping

from croniter import croniter

from .backend import BackendKind
from .exceptions import ConfigurationError

DEFAULT_NAMESPACE = "gateway"
DEFAULT_MASTER_KEY_ID = "gateway-encryption-key"

BACKEND_ALIASES: dict[str, BackendKind] = {
    "environment": BackendKind.ENVIRONMENT,
    "env": BackendKind.ENVIRONMENT,
    "cloud-kms": BackendKind.CLOUD_KMS,
    "aws": BackendKind.CLOUD_KMS,
    "kms": BackendKind.CLOUD_KMS,
    "key-vault": BackendKind.KEY_VAULT,
    "keyvault": BackendKind.KEY_VAULT,
    "azure": BackendKind.KEY_VAULT,
    "transit-vault": BackendKind.TRANSIT_VAULT,
    "vault": BackendKind.TRANSIT_VAULT,
    "hashicorp": BackendKind.TRANSIT_VAULT,
}


class EnvConfigProvider:
    """Configuration provider that reads from environment variables."""

    def __init__(self, environ: Mapping[str, str] | None = None):
        self._environ = environ if environ is not None else os.environ

    def get(self, key: str, default: Any = None) -> Any:
        value = self._environ.get(key)
        if value is None or value == "":
            return default
        return value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self._environ.get(key)
        if value is None or value == "":
            return default

        value_lower = value.lower()
        if value_lower in ("true", "1", "yes", "on"):
            return True
        if value_lower in ("false", "0", "no", "off"):
            return False
        raise ConfigurationError(f"{key} must be a boolean, got '{value}'")

    def get_int(self, key: str, default: int = 0) -> int:
        value = self._environ.get(key)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError as e:
            raise ConfigurationError(f"{key} must be an integer, got '{value}'") from e

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = self._environ.get(key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except ValueError as e:
            raise ConfigurationError(f"{key} must be a number, got '{value}'") from e


@dataclass
class CloudKMSSettings:
    """AWS KMS + Secrets Manager connection settings."""
    region: str = "us-east-1"
    access_key_id: str | None = None
    secret_access_key: str | None = None
    kms_key_id: str | None = None
    secrets_manager_region: str | None = None


@dataclass
class KeyVaultSettings:
    """Azure Key Vault connection settings."""
    vault_url: str | None = None
    vault_name: str | None = None
    purge_on_delete: bool = False


@dataclass
class TransitVaultSettings:
    """HashiCorp Vault connection settings."""
    url: str | None = None
    token: str | None = None
    mount_path: str = "secret"
    transit_mount_path: str = "transit"
    namespace: str | None = None


@dataclass
class RotationSettings:
    enabled: bool = False
    interval_hours: int = 168  # 1 week
    cron_expression: str | None = None


@dataclass
class CacheSettings:
    enabled: bool = True
    ttl_seconds: int = 300
    max_size: int = 100


@dataclass
class FallbackSettings:
    enabled: bool = True
    to_environment: bool = True

    @property
    def active(self) -> bool:
        """True when credential reads may fall back to environment variables."""
        return self.enabled and self.to_environment


@dataclass
class SecretsConfig:
    """Top-level secrets subsystem configuration."""
    backend: BackendKind = BackendKind.ENVIRONMENT
    environment: str = "development"
    namespace: str = DEFAULT_NAMESPACE
    timeout_seconds: float = 10.0
    master_key_id: str = DEFAULT_MASTER_KEY_ID
    encryption_key: str | None = None
    cloud_kms: CloudKMSSettings = field(default_factory=CloudKMSSettings)
    key_vault: KeyVaultSettings = field(default_factory=KeyVaultSettings)
    transit_vault: TransitVaultSettings = field(default_factory=TransitVaultSettings)
    rotation: RotationSettings = field(default_factory=RotationSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    fallback: FallbackSettings = field(default_factory=FallbackSettings)

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    def missing_backend_settings(self) -> list[str]:
        """Return the names of required settings missing for the selected backend."""
        missing: list[str] = []
        backend = parse_backend_kind(self.backend)
        if backend == BackendKind.ENVIRONMENT:
            if self.is_production and not self.encryption_key:
                missing.append("ENCRYPTION_KEY")
        elif backend == BackendKind.CLOUD_KMS:
            if not self.cloud_kms.region:
                missing.append("AWS_REGION")
        elif backend == BackendKind.KEY_VAULT:
            if not (self.key_vault.vault_url or self.key_vault.vault_name):
                missing.append("AZURE_KEY_VAULT_URL")
        elif backend == BackendKind.TRANSIT_VAULT:
            if not self.transit_vault.url:
                missing.append("VAULT_ADDR")
            if not self.transit_vault.token:
                missing.append("VAULT_TOKEN")
        return missing

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigurationError: If any setting is out of range
        """
        if not 1 <= self.rotation.interval_hours <= 8760:
            raise ConfigurationError("KEY_ROTATION_INTERVAL_HOURS must be between 1 and 8760")
        if self.rotation.cron_expression and not croniter.is_valid(self.rotation.cron_expression):
            raise ConfigurationError(
                f"KEY_ROTATION_SCHEDULE is not a valid cron expression: {self.rotation.cron_expression}"
            )
        if not 1 <= self.cache.ttl_seconds <= 86400:
            raise ConfigurationError("SECRETS_CACHE_TTL_SECONDS must be between 1 and 86400")
        if not 1 <= self.cache.max_size <= 100000:
            raise ConfigurationError("SECRETS_CACHE_MAX_SIZE must be between 1 and 100000")
        if self.timeout_seconds <= 0:
            raise ConfigurationError("SECRETS_BACKEND_TIMEOUT_SECONDS must be positive")
        if not self.namespace.strip("/"):
            raise ConfigurationError("SECRETS_NAMESPACE must not be empty")


def parse_backend_kind(value: str | BackendKind) -> BackendKind:
    """Resolve a backend selector (including legacy aliases) to a ``BackendKind``.

    Raises:
        ConfigurationError: If the selector is unknown
    """
    if isinstance(value, BackendKind):
        return value
    kind = BACKEND_ALIASES.get(value.strip().lower())
    if kind is None:
        raise ConfigurationError(
            f"Unknown secrets provider: {value}. "
            f"Available: {', '.join(k.value for k in BackendKind)}"
        )
    return kind


def load_secrets_config(environ: Mapping[str, str] | None = None) -> SecretsConfig:
    """Load and validate ``SecretsConfig`` from environment variables.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``)

    Returns:
        Validated SecretsConfig

    Raises:
        ConfigurationError: If a value cannot be parsed or is out of range
    """
    env = EnvConfigProvider(environ)

    aws_region = env.get("AWS_REGION", "us-east-1")
    config = SecretsConfig(
        backend=parse_backend_kind(env.get("SECRETS_PROVIDER", BackendKind.ENVIRONMENT.value)),
        environment=env.get("ENVIRONMENT", "development"),
        namespace=env.get("SECRETS_NAMESPACE", DEFAULT_NAMESPACE),
        timeout_seconds=env.get_float("SECRETS_BACKEND_TIMEOUT_SECONDS", 10.0),
        master_key_id=env.get("ENCRYPTION_KEY_ID", DEFAULT_MASTER_KEY_ID),
        encryption_key=env.get("ENCRYPTION_KEY"),
        cloud_kms=CloudKMSSettings(
            region=aws_region,
            access_key_id=env.get("AWS_ACCESS_KEY_ID"),
            secret_access_key=env.get("AWS_SECRET_ACCESS_KEY"),
            kms_key_id=env.get("AWS_KMS_KEY_ID"),
            secrets_manager_region=env.get("AWS_SECRETS_MANAGER_REGION", aws_region),
        ),
        key_vault=KeyVaultSettings(
            vault_url=env.get("AZURE_KEY_VAULT_URL") or env.get("AZURE_KEY_VAULT_URI"),
            vault_name=env.get("AZURE_KEY_VAULT_NAME"),
            purge_on_delete=env.get_bool("AZURE_KEY_VAULT_PURGE_ON_DELETE", False),
        ),
        transit_vault=TransitVaultSettings(
            url=env.get("VAULT_ADDR"),
            token=env.get("VAULT_TOKEN"),
            mount_path=env.get("VAULT_MOUNT_PATH", "secret"),
            transit_mount_path=env.get("VAULT_TRANSIT_MOUNT_PATH", "transit"),
            namespace=env.get("VAULT_NAMESPACE"),
        ),
        rotation=RotationSettings(
            enabled=env.get_bool("KEY_ROTATION_ENABLED", False),
            interval_hours=env.get_int("KEY_ROTATION_INTERVAL_HOURS", 168),
            cron_expression=env.get("KEY_ROTATION_SCHEDULE"),
        ),
        cache=CacheSettings(
            enabled=env.get_bool("SECRETS_CACHE_ENABLED", True),
            ttl_seconds=env.get_int("SECRETS_CACHE_TTL_SECONDS", 300),
            max_size=env.get_int("SECRETS_CACHE_MAX_SIZE", 100),
        ),
        fallback=FallbackSettings(
            enabled=env.get_bool("SECRETS_FALLBACK_ENABLED", True),
            to_environment=env.get_bool("SECRETS_FALLBACK_TO_ENV", True),
        ),
    )
    config.validate()
    return config
