# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Exceptions for credential management and key rotation."""

from typing import Mapping

from gateway_secrets.exceptions import SecretError, SecretNotFoundError


class ConcurrencyError(SecretError):
    """Raised when a rotation is requested while another one is in flight."""
    pass


class PartialFailureError(SecretError):
    """Raised when a bulk operation completed with some keys or owners failing.

    Attributes:
        failed: Mapping of failed key (or owner id) to error message
        failed_count: Number of failed items
    """

    def __init__(
        self,
        message: str,
        failed: Mapping[str, str] | None = None,
        failed_count: int | None = None,
    ):
        super().__init__(message)
        self.failed = dict(failed or {})
        self.failed_count = failed_count if failed_count is not None else len(self.failed)


class OwnerNotFoundError(SecretNotFoundError):
    """Raised when the owner registry has no record for an owner id."""
    pass
