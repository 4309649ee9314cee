# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Factory for creating secret backends."""

from typing import Any, Callable, Mapping, MutableMapping, cast

from gateway_logging import create_logger

from .backend import BackendKind, SecretBackend
from .config import SecretsConfig, parse_backend_kind
from .exceptions import ConfigurationError

logger = create_logger(logger_type="stdout", level="INFO", name="gateway_secrets.factory")


def _environment(config: SecretsConfig, environ: MutableMapping[str, str] | None) -> SecretBackend:
    from .environment_backend import EnvironmentSecretBackend

    return EnvironmentSecretBackend(
        master_key_id=config.master_key_id,
        encryption_key=config.encryption_key,
        environ=environ,
        production=config.is_production,
    )


def _cloud_kms(config: SecretsConfig, environ: MutableMapping[str, str] | None) -> SecretBackend:
    from .cloudkms_backend import CloudKMSSecretBackend

    settings = config.cloud_kms
    return CloudKMSSecretBackend(
        region=settings.region,
        kms_key_id=settings.kms_key_id,
        access_key_id=settings.access_key_id,
        secret_access_key=settings.secret_access_key,
        secrets_manager_region=settings.secrets_manager_region,
        timeout_seconds=config.timeout_seconds,
        master_key_id=config.master_key_id,
    )


def _key_vault(config: SecretsConfig, environ: MutableMapping[str, str] | None) -> SecretBackend:
    from .keyvault_backend import KeyVaultSecretBackend

    settings = config.key_vault
    return KeyVaultSecretBackend(
        vault_url=settings.vault_url,
        vault_name=settings.vault_name,
        timeout_seconds=config.timeout_seconds,
        purge_on_delete=settings.purge_on_delete,
        master_key_id=config.master_key_id,
    )


def _transit_vault(config: SecretsConfig, environ: MutableMapping[str, str] | None) -> SecretBackend:
    from .transit_backend import TransitVaultSecretBackend

    settings = config.transit_vault
    return TransitVaultSecretBackend(
        url=settings.url,
        token=settings.token,
        mount_path=settings.mount_path,
        transit_mount_path=settings.transit_mount_path,
        namespace=settings.namespace,
        timeout_seconds=config.timeout_seconds,
        master_key_id=config.master_key_id,
    )


_BUILDERS: Mapping[BackendKind, Callable[[SecretsConfig, Any], SecretBackend]] = {
    BackendKind.ENVIRONMENT: _environment,
    BackendKind.CLOUD_KMS: _cloud_kms,
    BackendKind.KEY_VAULT: _key_vault,
    BackendKind.TRANSIT_VAULT: _transit_vault,
}


def create_secret_backend(
    config: SecretsConfig,
    environ: MutableMapping[str, str] | None = None,
) -> SecretBackend:
    """Factory function to create the secret backend selected by ``config``.

    When settings required by the selected backend are missing, production
    processes fail fast; other environments log a warning and use the
    environment backend instead.

    Args:
        config: Loaded secrets configuration
        environ: Mapping the environment backend stores secrets in
            (defaults to ``os.environ``)

    Returns:
        SecretBackend instance

    Raises:
        ConfigurationError: If the backend is unknown, or required settings
            are missing in production

    Example:
        >>> backend = create_secret_backend(load_secrets_config())
    """
    kind = parse_backend_kind(config.backend)
    builder = _BUILDERS.get(kind)
    if builder is None:
        raise ConfigurationError(f"Unknown secrets provider: {kind}")

    missing = config.missing_backend_settings()
    if missing:
        if config.is_production:
            raise ConfigurationError(
                f"Secrets provider '{kind.value}' is missing required settings: {', '.join(missing)}"
            )
        if kind != BackendKind.ENVIRONMENT:
            logger.warning(
                "Secrets provider is not fully configured, falling back to environment backend",
                provider=kind.value,
                missing=missing,
            )
            return _environment(config, environ)

    backend = builder(config, environ)
    logger.info("Secret backend created", provider=kind.value)
    return cast(SecretBackend, backend)
