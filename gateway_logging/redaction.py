# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Masking of secret-looking structured log fields."""

from typing import Any

REDACTED = "***REDACTED***"

# Field names (lowercase) that must never be emitted verbatim
SENSITIVE_FIELDS = frozenset(
    {
        "value",
        "secret",
        "secret_value",
        "credential_value",
        "plaintext",
        "password",
        "token",
        "api_key",
        "encryption_key",
        "key_material",
    }
)


def is_sensitive_field(name: str) -> bool:
    """Return True if a structured field name denotes secret material."""
    lowered = name.lower()
    if lowered in SENSITIVE_FIELDS:
        return True
    return lowered.endswith("_secret") or lowered.endswith("_password") or lowered.endswith("_token")


def redact_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``fields`` with sensitive entries masked.

    Nested dictionaries are masked recursively. Non-sensitive values are
    passed through unchanged.
    """
    redacted: dict[str, Any] = {}
    for name, field_value in fields.items():
        if is_sensitive_field(name):
            redacted[name] = REDACTED
        elif isinstance(field_value, dict):
            redacted[name] = redact_fields(field_value)
        else:
            redacted[name] = field_value
    return redacted
