# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Tests for building the secrets subsystem."""

import pytest

from gateway_credentials import InMemoryOwnerRegistry, SecretsSubsystem, build_secrets_subsystem
from gateway_secrets import (
    BackendKind,
    ConfigurationError,
    EnvironmentSecretBackend,
    RotationSettings,
    SecretsConfig,
)


@pytest.fixture
def registry():
    return InMemoryOwnerRegistry()


class TestBuildSecretsSubsystem:
    """Tests for build_secrets_subsystem."""

    def test_from_environment_variables(self, registry, environ, silent_logger, encryption_key):
        environ.update({
            "SECRETS_PROVIDER": "env",
            "ENCRYPTION_KEY": encryption_key,
            "SECRETS_NAMESPACE": "tenant-a",
            "SECRETS_CACHE_TTL_SECONDS": "60",
        })

        with build_secrets_subsystem(registry, logger=silent_logger, environ=environ) as subsystem:
            assert isinstance(subsystem, SecretsSubsystem)
            assert isinstance(subsystem.backend, EnvironmentSecretBackend)
            assert subsystem.credential_service.namespace == "tenant-a"
            assert subsystem.credential_service.cache.ttl_seconds == 60
            assert subsystem.rotation_service.schedule_active is False

            subsystem.credential_service.store_credential("openai", "api_key", "sk")
            assert subsystem.credential_service.get_credential("openai", "api_key") == "sk"

        assert silent_logger.has_log("Secrets subsystem initialized")

    def test_components_share_one_backend(self, registry, environ, silent_logger, encryption_key):
        config = SecretsConfig(encryption_key=encryption_key)

        with build_secrets_subsystem(registry, config=config, logger=silent_logger, environ=environ) as subsystem:
            assert subsystem.credential_service.backend is subsystem.backend
            assert subsystem.rotation_service.backend is subsystem.backend
            assert subsystem.admin.rotation_service is subsystem.rotation_service
            assert subsystem.backend.kind is BackendKind.ENVIRONMENT

    def test_rotation_enabled_starts_schedule(self, registry, environ, silent_logger, encryption_key):
        config = SecretsConfig(
            encryption_key=encryption_key,
            rotation=RotationSettings(enabled=True, interval_hours=24),
        )

        subsystem = build_secrets_subsystem(registry, config=config, logger=silent_logger, environ=environ)
        try:
            assert subsystem.rotation_service.schedule_active is True
            assert subsystem.rotation_service.next_rotation is not None
        finally:
            subsystem.close()

        assert subsystem.rotation_service.schedule_active is False

    def test_builds_independent_instances(self, registry, environ, silent_logger, encryption_key):
        config = SecretsConfig(encryption_key=encryption_key)

        first = build_secrets_subsystem(registry, config=config, logger=silent_logger, environ=environ)
        second = build_secrets_subsystem(registry, config=config, logger=silent_logger, environ=environ)

        assert first.credential_service is not second.credential_service
        assert first.credential_service.cache is not second.credential_service.cache

    def test_production_missing_settings_is_fatal(self, registry, environ):
        config = SecretsConfig(backend=BackendKind.CLOUD_KMS, environment="production")
        config.cloud_kms.region = None

        with pytest.raises(ConfigurationError, match="AWS_REGION"):
            build_secrets_subsystem(registry, config=config, environ=environ)

    def test_invalid_environment_configuration(self, registry, environ):
        environ["SECRETS_PROVIDER"] = "floppy-disk"

        with pytest.raises(ConfigurationError, match="Unknown secrets provider"):
            build_secrets_subsystem(registry, environ=environ)

    def test_invalid_rotation_schedule_is_configuration_error(self, registry, environ):
        environ.update({"KEY_ROTATION_ENABLED": "true", "KEY_ROTATION_SCHEDULE": "every tuesday"})

        with pytest.raises(ConfigurationError, match="KEY_ROTATION_SCHEDULE"):
            build_secrets_subsystem(registry, environ=environ)
