# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Owner registry contract consumed by the rotation sweep and admin operations."""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable


@dataclass(frozen=True)
class OwnerRecord:
    """An entity (e.g., a provider configuration) owning named credentials."""
    owner_id: str
    credential_keys: tuple[str, ...] = field(default_factory=tuple)
    name: str | None = None


class OwnerRegistry(ABC):
    """Source of truth for owners and the credential keys they hold.

    Owner records are persisted outside the secrets subsystem; implementations
    adapt whatever store holds them.
    """

    @abstractmethod
    def list_owners(self) -> list[OwnerRecord]:
        """Return every owner known to the registry."""
        pass

    @abstractmethod
    def get_owner(self, owner_id: str) -> OwnerRecord | None:
        """Return one owner, or None if it does not exist."""
        pass

    def update_credential_keys(self, owner_id: str, credential_keys: Iterable[str]) -> None:
        """Record the credential keys an owner now holds.

        Called after an owner's credentials are rotated. The default does
        nothing, for registries that are read-only to this subsystem.
        """
        pass


class InMemoryOwnerRegistry(OwnerRegistry):
    """Thread-safe in-memory registry for development and tests."""

    def __init__(self, owners: Iterable[OwnerRecord] = ()):
        self._lock = threading.Lock()
        self._owners: dict[str, OwnerRecord] = {owner.owner_id: owner for owner in owners}

    def add_owner(self, owner_id: str, credential_keys: Iterable[str] = (), name: str | None = None) -> OwnerRecord:
        record = OwnerRecord(owner_id=owner_id, credential_keys=tuple(credential_keys), name=name)
        with self._lock:
            self._owners[owner_id] = record
        return record

    def remove_owner(self, owner_id: str) -> None:
        with self._lock:
            self._owners.pop(owner_id, None)

    def list_owners(self) -> list[OwnerRecord]:
        with self._lock:
            return list(self._owners.values())

    def get_owner(self, owner_id: str) -> OwnerRecord | None:
        with self._lock:
            return self._owners.get(owner_id)

    def update_credential_keys(self, owner_id: str, credential_keys: Iterable[str]) -> None:
        with self._lock:
            existing = self._owners.get(owner_id)
            name = existing.name if existing else None
            self._owners[owner_id] = OwnerRecord(
                owner_id=owner_id,
                credential_keys=tuple(credential_keys),
                name=name,
            )
