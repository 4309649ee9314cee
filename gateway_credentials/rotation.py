# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Master-key rotation and credential re-encryption."""

import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from gateway_logging import Logger, create_logger
from gateway_secrets import RotationSettings, SecretBackend, SecretError, SecretNotFoundError

from .exceptions import ConcurrencyError, OwnerNotFoundError, PartialFailureError
from .registry import OwnerRecord, OwnerRegistry
from .scheduler import RotationScheduler
from .service import BulkWriteResult, CredentialService

DEFAULT_HISTORY_LIMIT = 100
DEFAULT_TEST_KEY_ID = "gateway-test-key"

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RotationRecord:
    """Audit entry written once at the end of every rotation attempt."""
    timestamp: datetime
    key_version: str | None
    status: str
    duration_ms: int
    failed_owner_count: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@dataclass
class RotationResult:
    """Outcome of ``KeyRotationService.perform_rotation``."""
    success: bool
    duration_ms: int
    key_version: str | None = None
    failed_owner_count: int = 0
    owners_processed: int = 0
    credentials_reencrypted: int = 0
    failed_owners: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    last_rotation: datetime | None = None
    next_rotation: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for name in ("last_rotation", "next_rotation"):
            if data[name] is not None:
                data[name] = data[name].isoformat()
        return data


@dataclass
class _SweepOutcome:
    owners_processed: int = 0
    credentials_reencrypted: int = 0
    failed_owners: dict[str, str] = field(default_factory=dict)


class KeyRotationService:
    """Rotates the master key and re-encrypts every owner's credentials.

    A rotation asks the backend for a new master key version, then reads and
    re-stores every credential listed by the owner registry so the backend
    re-encrypts it under the new version. One owner failing does not stop
    the others. Every attempt, successful or not, appends one
    ``RotationRecord`` to a bounded in-memory history.

    The rotation flag is process-local. Several service instances sharing
    one backend are not coordinated.

    Args:
        credential_service: Service used for the get+store sweep
        backend: Secret backend holding the master key
        registry: Owner registry listing owners and their credential keys
        settings: Rotation schedule settings
        master_key_id: Master key to rotate (defaults to ``backend.master_key_id``)
        logger: Logger instance
        history_limit: Maximum number of retained rotation records
        test_key_id: Disposable key used by ``test_rotation``
        clock: Returns the current aware datetime; injectable for tests
    """

    def __init__(
        self,
        credential_service: CredentialService,
        backend: SecretBackend,
        registry: OwnerRegistry,
        settings: RotationSettings | None = None,
        master_key_id: str | None = None,
        logger: Logger | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        test_key_id: str = DEFAULT_TEST_KEY_ID,
        clock: Callable[[], datetime] = _utcnow,
    ):
        settings = settings or RotationSettings()
        self.credential_service = credential_service
        self.backend = backend
        self.registry = registry
        self.master_key_id = master_key_id or backend.master_key_id
        self.logger = logger or create_logger(name="gateway_credentials.rotation")
        self.test_key_id = test_key_id
        self._clock = clock

        self.enabled = settings.enabled
        self.interval_hours = settings.interval_hours
        self.cron_expression = settings.cron_expression

        self._state_lock = threading.Lock()
        self._active_rotations = 0
        self._history: deque[RotationRecord] = deque(maxlen=history_limit)
        self.last_rotation: datetime | None = None

        self._schedule_lock = threading.Lock()
        self._scheduler: RotationScheduler | None = None

    @property
    def is_rotating(self) -> bool:
        with self._state_lock:
            return self._active_rotations > 0

    @property
    def schedule_active(self) -> bool:
        scheduler = self._scheduler
        return scheduler is not None and scheduler.is_running()

    @property
    def next_rotation(self) -> datetime | None:
        scheduler = self._scheduler
        if scheduler is not None and scheduler.is_running():
            return scheduler.next_run
        if self.enabled and self.last_rotation is not None:
            return self.last_rotation + timedelta(hours=self.interval_hours)
        return None

    def schedule_rotation(self, cron_expression: str | None = None, interval_hours: int | None = None) -> None:
        """Start periodic rotation. Calling it while a schedule is active does nothing.

        Args:
            cron_expression: Five-field cron expression; overrides the configured one
            interval_hours: Hours between rotations; overrides the configured interval

        Raises:
            ValueError: If the cron expression is invalid or the interval is not positive
        """
        with self._schedule_lock:
            if self._scheduler is not None and self._scheduler.is_running():
                self.logger.warning("Key rotation already scheduled")
                return

            cron = cron_expression or self.cron_expression
            hours = interval_hours or self.interval_hours
            scheduler = RotationScheduler(
                callback=self._run_scheduled_rotation,
                interval_seconds=hours * 3600,
                cron_expression=cron,
                logger=self.logger,
                clock=self._clock,
            )
            scheduler.start()

            self._scheduler = scheduler
            self.cron_expression = cron
            self.interval_hours = hours
            self.enabled = True

        self.logger.info(
            "Key rotation scheduled",
            cron_expression=cron,
            interval_hours=hours,
            next_rotation=scheduler.next_run.isoformat() if scheduler.next_run else None,
        )

    def stop_rotation(self) -> None:
        """Cancel the periodic schedule. A rotation already running completes."""
        with self._schedule_lock:
            scheduler = self._scheduler
            self._scheduler = None
            self.enabled = False

        if scheduler is not None:
            scheduler.stop()
            self.logger.info("Key rotation stopped")

    def _run_scheduled_rotation(self) -> None:
        try:
            self.perform_rotation()
        except ConcurrencyError:
            self.logger.warning("Skipping scheduled key rotation, a rotation is already in progress")

    def perform_rotation(self, force: bool = False) -> RotationResult:
        """Rotate the master key and re-encrypt all owner credentials.

        Args:
            force: Run even if another rotation is in progress

        Returns:
            RotationResult; ``success`` is False if the key rotation failed or
            any owner could not be re-encrypted

        Raises:
            ConcurrencyError: If a rotation is in progress and force is False
        """
        with self._state_lock:
            if self._active_rotations and not force:
                raise ConcurrencyError("Key rotation is already in progress")
            self._active_rotations += 1

        started = time.monotonic()
        result: RotationResult | None = None
        try:
            result = self._rotate(started, force)
            return result
        finally:
            if result is None:
                # Unexpected error escaped; still leave an audit entry
                result = RotationResult(
                    success=False,
                    duration_ms=self._elapsed_ms(started),
                    error="Key rotation aborted",
                )
            self._record(result)
            with self._state_lock:
                self._active_rotations -= 1

    def _rotate(self, started: float, force: bool) -> RotationResult:
        self.logger.info("Starting encryption key rotation", key_id=self.master_key_id, force=force)

        try:
            key_version = self.backend.rotate_encryption_key(self.master_key_id)
        except Exception as e:
            self.logger.error(
                "Master encryption key rotation failed",
                key_id=self.master_key_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return RotationResult(
                success=False,
                duration_ms=self._elapsed_ms(started),
                error=f"Master key rotation failed: {e}",
            )

        self.logger.info("Master encryption key rotated", key_id=self.master_key_id, key_version=key_version)

        try:
            sweep = self._reencrypt_all_owners()
        except Exception as e:
            self.logger.error("Re-encryption sweep failed", key_version=key_version, error=str(e))
            return RotationResult(
                success=False,
                duration_ms=self._elapsed_ms(started),
                key_version=key_version,
                error=f"Re-encryption sweep failed: {e}",
            )

        failed_count = len(sweep.failed_owners)
        success = failed_count == 0
        if success:
            self.last_rotation = self._clock()

        result = RotationResult(
            success=success,
            duration_ms=self._elapsed_ms(started),
            key_version=key_version,
            failed_owner_count=failed_count,
            owners_processed=sweep.owners_processed,
            credentials_reencrypted=sweep.credentials_reencrypted,
            failed_owners=sweep.failed_owners,
            error=None if success else f"Failed to re-encrypt credentials for {failed_count} owner(s)",
            last_rotation=self.last_rotation,
            next_rotation=self.next_rotation,
        )

        log = self.logger.info if success else self.logger.error
        log(
            "Encryption key rotation completed" if success else "Encryption key rotation completed with failures",
            key_version=key_version,
            duration_ms=result.duration_ms,
            owners_processed=sweep.owners_processed,
            credentials_reencrypted=sweep.credentials_reencrypted,
            failed_owner_count=failed_count,
        )
        return result

    def _reencrypt_all_owners(self) -> _SweepOutcome:
        owners = self.registry.list_owners()
        self.logger.info("Re-encrypting owner credentials", owner_count=len(owners))

        outcome = _SweepOutcome()
        for owner in owners:
            try:
                count = self._reencrypt_owner(owner)
            except Exception as e:
                outcome.failed_owners[owner.owner_id] = str(e)
                self.logger.error(
                    "Failed to re-encrypt owner credentials",
                    owner_id=owner.owner_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                continue
            outcome.owners_processed += 1
            outcome.credentials_reencrypted += count
        return outcome

    def _reencrypt_owner(self, owner: OwnerRecord) -> int:
        """Read and re-store each credential of ``owner``; returns how many were re-encrypted.

        Raises:
            PartialFailureError: If any key could not be re-encrypted
        """
        service = self.credential_service
        reencrypted = 0
        failed: dict[str, str] = {}
        for key in owner.credential_keys:
            try:
                service.reencrypt_credential(owner.owner_id, key)
            except SecretNotFoundError:
                self.logger.warning(
                    "Credential listed by registry is not stored, skipping",
                    owner_id=owner.owner_id,
                    credential_key=key,
                )
                continue
            except SecretError as e:
                failed[key] = str(e)
                continue
            reencrypted += 1

        if failed:
            raise PartialFailureError(
                f"{len(failed)} of {len(owner.credential_keys)} credentials failed to re-encrypt",
                failed=failed,
            )
        return reencrypted

    def _record(self, result: RotationResult) -> None:
        record = RotationRecord(
            timestamp=self._clock(),
            key_version=result.key_version,
            status=STATUS_SUCCESS if result.success else STATUS_FAILED,
            duration_ms=result.duration_ms,
            failed_owner_count=result.failed_owner_count,
            error=result.error,
        )
        with self._state_lock:
            self._history.append(record)

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    def rotate_provider_credentials(self, owner_id: str, new_credentials: Mapping[str, Any]) -> BulkWriteResult:
        """Replace one owner's credential values without touching the master key.

        Raises:
            OwnerNotFoundError: If the registry does not know ``owner_id``
            PartialFailureError: If any credential could not be stored
        """
        owner = self.registry.get_owner(owner_id)
        if owner is None:
            raise OwnerNotFoundError(f"Owner {owner_id} not found")

        self.logger.info("Rotating owner credentials", owner_id=owner_id, credential_keys=list(new_credentials))
        result = self.credential_service.store_provider_credentials(owner_id, new_credentials)

        if result.stored:
            keys = list(owner.credential_keys)
            keys.extend(key for key in result.stored if key not in keys)
            self.registry.update_credential_keys(owner_id, keys)

        if result.failed:
            self.logger.error(
                "Owner credential rotation partially failed",
                owner_id=owner_id,
                failed_keys=list(result.failed),
            )
            raise PartialFailureError(
                f"Failed to rotate {result.failed_count} credential(s) for owner {owner_id}",
                failed=result.failed,
            )

        self.logger.info("Owner credentials rotated", owner_id=owner_id, credential_count=len(result.stored))
        return result

    def get_rotation_status(self) -> dict[str, Any]:
        next_rotation = self.next_rotation
        return {
            "enabled": self.enabled,
            "is_rotating": self.is_rotating,
            "last_rotation": self.last_rotation.isoformat() if self.last_rotation else None,
            "next_rotation": next_rotation.isoformat() if next_rotation else None,
            "interval_hours": self.interval_hours,
            "cron_expression": self.cron_expression,
            "schedule_active": self.schedule_active,
        }

    def test_rotation(self) -> dict[str, Any]:
        """Dry run: check connectivity and exercise key rotation on a disposable key."""
        self.logger.info("Starting key rotation test")

        connected = self.credential_service.test_connection()
        if not connected:
            self.logger.error("Key rotation test failed", error="Secrets backend connection test failed")
            return {
                "success": False,
                "secrets_manager_connected": False,
                "error": "Secrets backend connection test failed",
            }

        try:
            self.backend.rotate_encryption_key(self.test_key_id)
        except SecretNotFoundError as e:
            # Test key may not exist yet
            self.logger.debug("Test key rotation skipped", key_id=self.test_key_id, error=str(e))
        except SecretError as e:
            self.logger.warning("Test key rotation failed", key_id=self.test_key_id, error=str(e))

        return {
            "success": True,
            "secrets_manager_connected": True,
            "message": "Key rotation test completed successfully",
        }

    def get_rotation_history(self) -> list[RotationRecord]:
        """Return retained rotation records, oldest first."""
        with self._state_lock:
            return list(self._history)

    def close(self) -> None:
        self.stop_rotation()
