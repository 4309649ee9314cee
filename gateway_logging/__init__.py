# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Structured logging for the gateway secrets subsystem.

Every component of the secrets subsystem logs through the ``Logger``
interface defined here. Structured fields are passed as keyword arguments;
fields whose names look like secret material are masked before output so
a plaintext credential never reaches a log sink.

Example:
    >>> from gateway_logging import create_logger
    >>> logger = create_logger(logger_type="stdout", level="INFO", name="gateway_credentials")
    >>> logger.info("Credential stored", owner_id="openai", credential_key="api_key")
    >>>
    >>> # In-memory logger for tests
    >>> test_logger = create_logger(logger_type="silent")
    >>> test_logger.info("Test message")
"""

__version__ = "0.1.0"

from .factory import create_logger
from .logger import Logger
from .redaction import REDACTED, is_sensitive_field, redact_fields
from .silent_logger import SilentLogger
from .stdout_logger import StdoutLogger

__all__ = [
    "__version__",
    "Logger",
    "REDACTED",
    "SilentLogger",
    "StdoutLogger",
    "create_logger",
    "is_sensitive_field",
    "redact_fields",
]
