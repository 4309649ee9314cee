# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Credential retrieval, caching and key rotation for gateway owners.

Example:
    >>> from gateway_credentials import InMemoryOwnerRegistry, build_secrets_subsystem
    >>> registry = InMemoryOwnerRegistry()
    >>> registry.add_owner("openai", ["api_key"])
    >>> subsystem = build_secrets_subsystem(registry)
    >>> subsystem.credential_service.store_credential("openai", "api_key", "sk-...")
    >>> subsystem.rotation_service.perform_rotation()
"""

from .exceptions import ConcurrencyError, OwnerNotFoundError, PartialFailureError
from .cache import CachedEntry, CredentialCache
from .registry import InMemoryOwnerRegistry, OwnerRecord, OwnerRegistry
from .service import BulkReadResult, BulkWriteResult, CredentialService
from .scheduler import RotationScheduler
from .rotation import KeyRotationService, RotationRecord, RotationResult
from .admin import SecretsAdmin
from .bootstrap import SecretsSubsystem, build_secrets_subsystem

__all__ = [
    "CachedEntry",
    "CredentialCache",
    "CredentialService",
    "BulkReadResult",
    "BulkWriteResult",
    "OwnerRecord",
    "OwnerRegistry",
    "InMemoryOwnerRegistry",
    "KeyRotationService",
    "RotationRecord",
    "RotationResult",
    "RotationScheduler",
    "SecretsAdmin",
    "SecretsSubsystem",
    "build_secrets_subsystem",
    "ConcurrencyError",
    "PartialFailureError",
    "OwnerNotFoundError",
]

__version__ = "0.1.0"
