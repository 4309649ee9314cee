# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Wiring of the secrets subsystem at process start."""

from dataclasses import dataclass
from typing import MutableMapping

from gateway_logging import Logger, create_logger
from gateway_secrets import SecretBackend, SecretsConfig, create_secret_backend, load_secrets_config

from .admin import SecretsAdmin
from .registry import OwnerRegistry
from .rotation import KeyRotationService
from .service import CredentialService


@dataclass
class SecretsSubsystem:
    """Every component of the secrets subsystem, built once per process."""
    config: SecretsConfig
    backend: SecretBackend
    credential_service: CredentialService
    rotation_service: KeyRotationService
    admin: SecretsAdmin

    def close(self) -> None:
        """Stop the rotation schedule and release backend resources."""
        self.rotation_service.close()
        self.backend.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def build_secrets_subsystem(
    registry: OwnerRegistry,
    config: SecretsConfig | None = None,
    logger: Logger | None = None,
    environ: MutableMapping[str, str] | None = None,
) -> SecretsSubsystem:
    """Build backend, services and admin facade from configuration.

    The rotation schedule is started when rotation is enabled in ``config``.

    Args:
        registry: Owner registry the rotation sweep iterates
        config: Secrets configuration (loaded from the environment if omitted)
        logger: Logger shared by all components
        environ: Mapping used by the environment backend and fallback

    Returns:
        SecretsSubsystem

    Raises:
        ConfigurationError: If the configuration is invalid, or required
            backend settings are missing in production
    """
    config = config or load_secrets_config(environ)
    logger = logger or create_logger(name="gateway_credentials")

    backend = create_secret_backend(config, environ=environ)
    credential_service = CredentialService.from_config(backend, config, environ=environ, logger=logger)
    rotation_service = KeyRotationService(
        credential_service=credential_service,
        backend=backend,
        registry=registry,
        settings=config.rotation,
        logger=logger,
    )
    admin = SecretsAdmin(credential_service, rotation_service, registry, logger=logger)

    if config.rotation.enabled:
        rotation_service.schedule_rotation()

    logger.info(
        "Secrets subsystem initialized",
        backend=backend.kind.value,
        environment=config.environment,
        cache_enabled=config.cache.enabled,
        rotation_enabled=config.rotation.enabled,
    )
    return SecretsSubsystem(
        config=config,
        backend=backend,
        credential_service=credential_service,
        rotation_service=rotation_service,
        admin=admin,
    )
