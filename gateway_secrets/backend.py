# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Base secret backend interface."""

import re
from abc import ABC, abstractmethod
from enum import Enum


class BackendKind(str, Enum):
    """Closed set of supported secret backends."""

    ENVIRONMENT = "environment"
    CLOUD_KMS = "cloud-kms"
    KEY_VAULT = "key-vault"
    TRANSIT_VAULT = "transit-vault"


def environment_variable_name(*parts: str) -> str:
    """Build a ``SECRET_<PART>_<PART>`` environment variable name.

    Each part is upper-cased and every character outside ``[A-Z0-9_]`` is
    replaced by ``_``.
    """
    normalized = [re.sub(r"[^A-Z0-9_]", "_", part.upper()) for part in parts]
    return "SECRET_" + "_".join(normalized)


class SecretBackend(ABC):
    """Abstract base class for secret backends.

    A backend talks to exactly one external secret/key-management system.
    Every operation blocks until the remote call completes or its timeout
    elapses. Remote failures are raised as typed errors and never turned
    into empty values.
    """

    kind: BackendKind

    @abstractmethod
    def get_secret(self, name: str) -> str:
        """Retrieve a secret by name.

        Raises:
            SecretNotFoundError: If the secret does not exist
            SecretConnectivityError: If the backend cannot be reached
        """
        pass

    @abstractmethod
    def set_secret(self, name: str, value: str) -> None:
        """Create or overwrite a secret.

        Raises:
            SecretConnectivityError: If the backend cannot be reached
        """
        pass

    @abstractmethod
    def delete_secret(self, name: str) -> None:
        """Delete a secret. Deleting an absent secret is not an error.

        Raises:
            SecretConnectivityError: If the backend cannot be reached
        """
        pass

    @abstractmethod
    def get_encryption_key(self, key_id: str) -> bytes:
        """Return key material (or an opaque key handle) for ``key_id``."""
        pass

    @abstractmethod
    def rotate_encryption_key(self, key_id: str) -> str:
        """Create a new version of ``key_id`` and return its version identifier.

        Stored secrets are not re-encrypted by this call.
        """
        pass

    @abstractmethod
    def encrypt(self, plaintext: str, key_id: str) -> str:
        """Encrypt ``plaintext`` under ``key_id`` and return a text ciphertext."""
        pass

    @abstractmethod
    def decrypt(self, ciphertext: str, key_id: str) -> str:
        """Decrypt a ciphertext produced by ``encrypt``."""
        pass

    def close(self) -> None:
        """Release any resources held by this backend."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
