# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Administrative operations over credentials and key rotation.

These are plain calls for an admin layer to expose however it likes. No
operation here ever returns a credential value.
"""

from datetime import datetime, timezone
from typing import Any

from gateway_logging import Logger, create_logger
from gateway_secrets import SecretError

from .exceptions import OwnerNotFoundError
from .registry import OwnerRecord, OwnerRegistry
from .rotation import KeyRotationService
from .service import CredentialService


class SecretsAdmin:
    """Facade over CredentialService and KeyRotationService for operators."""

    def __init__(
        self,
        credential_service: CredentialService,
        rotation_service: KeyRotationService,
        registry: OwnerRegistry,
        logger: Logger | None = None,
    ):
        self.credential_service = credential_service
        self.rotation_service = rotation_service
        self.registry = registry
        self.logger = logger or create_logger(name="gateway_credentials.admin")

    def _require_owner(self, owner_id: str) -> OwnerRecord:
        owner = self.registry.get_owner(owner_id)
        if owner is None:
            raise OwnerNotFoundError(f"Owner {owner_id} not found")
        return owner

    def health(self) -> dict[str, Any]:
        return self.credential_service.get_health_status()

    def test_connection(self) -> dict[str, Any]:
        return {
            "connected": self.credential_service.test_connection(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def clear_cache(self, actor: str | None = None) -> dict[str, Any]:
        removed = self.credential_service.clear_cache()
        self.logger.info("Secrets cache cleared by admin", actor=actor, entries_removed=removed)
        return {"cleared": True, "entries_removed": removed}

    def rotation_status(self) -> dict[str, Any]:
        return self.rotation_service.get_rotation_status()

    def rotation_history(self) -> dict[str, Any]:
        history = [record.to_dict() for record in self.rotation_service.get_rotation_history()]
        return {"history": history, "count": len(history)}

    def perform_rotation(self, force: bool = False, actor: str | None = None) -> dict[str, Any]:
        """Run a manual rotation.

        Raises:
            ConcurrencyError: If a rotation is in progress and force is False
        """
        self.logger.info("Manual key rotation initiated", actor=actor, force=force)
        return self.rotation_service.perform_rotation(force=force).to_dict()

    def test_rotation(self) -> dict[str, Any]:
        return self.rotation_service.test_rotation()

    def set_rotation_enabled(self, enabled: bool, actor: str | None = None) -> dict[str, Any]:
        """Start or stop the rotation schedule and return the new status."""
        self.logger.info("Key rotation schedule toggled", actor=actor, enabled=enabled)
        if enabled:
            self.rotation_service.schedule_rotation()
        else:
            self.rotation_service.stop_rotation()
        return self.rotation_service.get_rotation_status()

    def owner_credential_metadata(self, owner_id: str) -> dict[str, Any]:
        """Describe which credential keys an owner holds.

        Raises:
            OwnerNotFoundError: If the owner does not exist
        """
        owner = self._require_owner(owner_id)
        keys = list(owner.credential_keys)
        return {
            "owner_id": owner.owner_id,
            "owner_name": owner.name,
            "credential_keys": keys,
            "credential_count": len(keys),
            "has_credentials": bool(keys),
        }

    def validate_owner_credentials(self, owner_id: str) -> dict[str, Any]:
        """Report which of an owner's credentials are currently readable.

        Raises:
            OwnerNotFoundError: If the owner does not exist
        """
        owner = self._require_owner(owner_id)
        results = []
        for key in owner.credential_keys:
            try:
                self.credential_service.get_credential(owner.owner_id, key)
            except SecretError as e:
                results.append({"key": key, "status": "invalid", "message": str(e)})
            else:
                results.append({"key": key, "status": "valid", "message": "Credential found and accessible"})

        invalid = sum(1 for result in results if result["status"] == "invalid")
        return {
            "owner_id": owner.owner_id,
            "owner_name": owner.name,
            "total_credentials": len(results),
            "valid_credentials": len(results) - invalid,
            "invalid_credentials": invalid,
            "all_valid": invalid == 0,
            "results": results,
        }
