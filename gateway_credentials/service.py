# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Owner-scoped credential storage on top of a secret backend."""

import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from gateway_logging import Logger, create_logger
from gateway_secrets import (
    FallbackSettings,
    SecretBackend,
    SecretError,
    SecretsConfig,
    environment_variable_name,
)
from gateway_secrets.config import DEFAULT_NAMESPACE

from .cache import CredentialCache

CANARY_PATH = "test/connection"


@dataclass
class BulkReadResult:
    """Outcome of a bulk credential read.

    Attributes:
        values: Credential key -> value, only for keys that resolved
        failed: Credential key -> error message for keys that did not
    """
    values: dict[str, str] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def failed_keys(self) -> list[str]:
        return list(self.failed)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


@dataclass
class BulkWriteResult:
    """Outcome of a bulk credential write or delete.

    Attributes:
        stored: Keys written (or deleted) successfully
        skipped: Keys not written because their value was empty or not a string
        failed: Credential key -> error message
    """
    stored: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def success(self) -> bool:
        return not self.failed


class CredentialService:
    """Caller-facing entry point for credential I/O.

    Credentials are addressed by ``(owner_id, key)`` and stored in the
    backend under ``{namespace}/owners/{owner_id}/credentials/{key}``.
    Reads go through the cache; writes go to the backend first and only
    then to the cache.

    Args:
        backend: Active secret backend
        namespace: Prefix of every secret path
        cache: Credential cache, or None to disable caching
        fallback: Environment fallback settings (enabled by default)
        environ: Mapping searched by the environment fallback (defaults to ``os.environ``)
        logger: Logger instance
    """

    def __init__(
        self,
        backend: SecretBackend,
        namespace: str = DEFAULT_NAMESPACE,
        cache: CredentialCache | None = None,
        fallback: FallbackSettings | None = None,
        environ: Mapping[str, str] | None = None,
        logger: Logger | None = None,
    ):
        self.backend = backend
        self.namespace = namespace.strip("/")
        self.cache = cache
        self.fallback = fallback or FallbackSettings()
        self._environ = environ if environ is not None else os.environ
        self.logger = logger or create_logger(name="gateway_credentials.service")
        self._key_locks: dict[tuple[str, str], threading.RLock] = {}
        self._key_locks_guard = threading.Lock()

    @classmethod
    def from_config(
        cls,
        backend: SecretBackend,
        config: SecretsConfig,
        environ: Mapping[str, str] | None = None,
        logger: Logger | None = None,
    ) -> "CredentialService":
        """Build a service with the cache and fallback settings from ``config``."""
        cache = None
        if config.cache.enabled:
            cache = CredentialCache(ttl_seconds=config.cache.ttl_seconds, max_size=config.cache.max_size)
        return cls(
            backend=backend,
            namespace=config.namespace,
            cache=cache,
            fallback=config.fallback,
            environ=environ,
            logger=logger,
        )

    @property
    def cache_enabled(self) -> bool:
        return self.cache is not None

    def _credential_lock(self, owner_id: str, key: str) -> threading.RLock:
        # One lock per credential guards its backend I/O; cache hits never take it
        with self._key_locks_guard:
            lock = self._key_locks.get((owner_id, key))
            if lock is None:
                lock = self._key_locks[(owner_id, key)] = threading.RLock()
            return lock

    def generate_secret_name(self, owner_id: str, key: str) -> str:
        return f"{self.namespace}/owners/{owner_id}/credentials/{key}"

    def environment_variable_name(self, owner_id: str, key: str) -> str:
        """Return ``SECRET_<OWNERID>_<KEY>``, the environment fallback name."""
        return environment_variable_name(owner_id, key)

    def get_credential(self, owner_id: str, key: str, allow_fallback: bool = True) -> str:
        """Retrieve a credential value.

        Args:
            owner_id: Owner of the credential
            key: Credential key name
            allow_fallback: Consult the environment fallback on backend failure

        Returns:
            Plaintext credential value

        Raises:
            SecretNotFoundError: If the secret is absent and no fallback applies
            SecretConnectivityError: If the backend failed and no fallback applies
        """
        if self.cache is not None:
            cached = self.cache.get(owner_id, key)
            if cached is not None:
                return cached

        secret_name = self.generate_secret_name(owner_id, key)
        try:
            with self._credential_lock(owner_id, key):
                value = self.backend.get_secret(secret_name)
                if self.cache is not None:
                    self.cache.put(owner_id, key, value)
        except SecretError as e:
            if allow_fallback and self.fallback.active:
                env_var = self.environment_variable_name(owner_id, key)
                env_value = self._environ.get(env_var)
                if env_value:
                    self.logger.warning(
                        "Using fallback environment variable for credential",
                        owner_id=owner_id,
                        credential_key=key,
                        env_var=env_var,
                    )
                    return env_value

            self.logger.error(
                "Failed to retrieve credential",
                owner_id=owner_id,
                credential_key=key,
                secret_path=secret_name,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise

        return value

    def store_credential(self, owner_id: str, key: str, value: str) -> None:
        """Write a credential to the backend, then to the cache.

        Raises:
            SecretError: If the backend write fails; the cache is left untouched
        """
        secret_name = self.generate_secret_name(owner_id, key)
        with self._credential_lock(owner_id, key):
            try:
                self.backend.set_secret(secret_name, value)
            except SecretError as e:
                self.logger.error(
                    "Failed to store credential",
                    owner_id=owner_id,
                    credential_key=key,
                    secret_path=secret_name,
                    error=str(e),
                )
                raise

            if self.cache is not None:
                self.cache.put(owner_id, key, value)
        self.logger.info(
            "Credential stored",
            owner_id=owner_id,
            credential_key=key,
            secret_path=secret_name,
        )

    def delete_credential(self, owner_id: str, key: str) -> None:
        """Delete a credential from the backend, then drop it from the cache."""
        secret_name = self.generate_secret_name(owner_id, key)
        with self._credential_lock(owner_id, key):
            try:
                self.backend.delete_secret(secret_name)
            except SecretError as e:
                self.logger.error(
                    "Failed to delete credential",
                    owner_id=owner_id,
                    credential_key=key,
                    secret_path=secret_name,
                    error=str(e),
                )
                raise

            if self.cache is not None:
                self.cache.invalidate(owner_id, key)
        self.logger.info(
            "Credential deleted",
            owner_id=owner_id,
            credential_key=key,
            secret_path=secret_name,
        )

    def invalidate_cached_credential(self, owner_id: str, key: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(owner_id, key)

    def reencrypt_credential(self, owner_id: str, key: str) -> None:
        """Read a credential from the backend and write it back under the current key version.

        Holds the credential's lock across the read and the write, so a
        concurrent store or delete is never overwritten with the old value.
        The environment fallback is not consulted.

        Raises:
            SecretNotFoundError: If the credential is not stored
            SecretError: If the read or the write fails
        """
        with self._credential_lock(owner_id, key):
            self.invalidate_cached_credential(owner_id, key)
            value = self.get_credential(owner_id, key, allow_fallback=False)
            self.store_credential(owner_id, key, value)

    def get_provider_credentials(self, owner_id: str, keys: Iterable[str]) -> BulkReadResult:
        """Resolve several credentials; one key failing does not abort the others."""
        result = BulkReadResult()
        for key in keys:
            try:
                result.values[key] = self.get_credential(owner_id, key)
            except SecretError as e:
                result.failed[key] = str(e)

        if result.failed:
            self.logger.warning(
                "Some credentials could not be retrieved",
                owner_id=owner_id,
                failed_keys=result.failed_keys,
                failed_count=result.failed_count,
            )
        return result

    def store_provider_credentials(self, owner_id: str, credentials: Mapping[str, Any]) -> BulkWriteResult:
        """Store several credentials.

        Empty, None or non-string values are skipped and logged, never stored.
        """
        result = BulkWriteResult()
        for key, value in credentials.items():
            if not isinstance(value, str) or not value:
                self.logger.warning(
                    "Skipping empty or non-string credential value",
                    owner_id=owner_id,
                    credential_key=key,
                    value_type=type(value).__name__,
                )
                result.skipped.append(key)
                continue
            try:
                self.store_credential(owner_id, key, value)
            except SecretError as e:
                result.failed[key] = str(e)
            else:
                result.stored.append(key)
        return result

    def delete_provider_credentials(self, owner_id: str, keys: Iterable[str]) -> BulkWriteResult:
        result = BulkWriteResult()
        for key in keys:
            try:
                self.delete_credential(owner_id, key)
            except SecretError as e:
                self.logger.warning(
                    "Failed to delete credential, continuing",
                    owner_id=owner_id,
                    credential_key=key,
                    error=str(e),
                )
                result.failed[key] = str(e)
            else:
                result.stored.append(key)
        return result

    def test_connection(self) -> bool:
        """Write, read back and delete a canary secret.

        Returns:
            True if the value read back matches; False on mismatch or any error
        """
        suffix = uuid.uuid4().hex
        canary_name = f"{self.namespace}/{CANARY_PATH}/{suffix}"
        canary_value = f"test-{suffix}"
        try:
            self.backend.set_secret(canary_name, canary_value)
            retrieved = self.backend.get_secret(canary_name)
            self.backend.delete_secret(canary_name)
        except Exception as e:
            self.logger.error(
                "Secrets backend connection test failed",
                backend=self.backend.kind.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            return False

        success = retrieved == canary_value
        self.logger.info("Secrets backend connection test completed", success=success)
        return success

    def get_health_status(self) -> dict[str, Any]:
        connected = self.test_connection()
        status: dict[str, Any] = {
            "status": "healthy" if connected else "unhealthy",
            "backend_kind": self.backend.kind.value,
            "cache_enabled": self.cache_enabled,
            "cache_size": len(self.cache) if self.cache is not None else 0,
            "last_checked": datetime.now(timezone.utc).isoformat(),
        }
        if not connected:
            status["error"] = "Secrets backend connection test failed"
        return status

    def clear_cache(self) -> int:
        """Drop every cached credential. Returns the number of entries removed."""
        if self.cache is None:
            return 0
        removed = self.cache.clear()
        self.logger.info("Credential cache cleared", entries_removed=removed)
        return removed

    def cache_stats(self) -> dict[str, Any]:
        if self.cache is None:
            return {"enabled": False}
        return {"enabled": True, **self.cache.stats()}
