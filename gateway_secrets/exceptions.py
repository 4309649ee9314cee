# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Exceptions for secret management."""


class SecretError(Exception):
    """Base exception for secret management errors."""
    pass


class SecretNotFoundError(SecretError):
    """Raised when a requested secret or key does not exist."""
    pass


class SecretConnectivityError(SecretError):
    """Raised when a backend is unreachable, rejects authentication, or is misconfigured."""
    pass


class UnsupportedOperationError(SecretError):
    """Raised when a backend does not implement an operation of the contract."""
    pass


class SecretCryptoError(SecretError):
    """Raised when ciphertext cannot be decrypted or fails authentication."""
    pass


class ConfigurationError(SecretError):
    """Raised when required settings for the selected backend are missing or invalid."""
    pass
