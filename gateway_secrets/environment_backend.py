# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Copilot-for-Consensus contributors

"""Environment-variable secret backend with local envelope encryption."""

import base64
import binascii
import os
import string
import threading
from typing import MutableMapping

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from gateway_logging import create_logger

from .backend import BackendKind, SecretBackend, environment_variable_name
from .config import DEFAULT_MASTER_KEY_ID
from .exceptions import ConfigurationError, SecretCryptoError, SecretNotFoundError

logger = create_logger(logger_type="stdout", level="INFO", name="gateway_secrets.environment")

ENVELOPE_PREFIX = "enc:"
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE_BITS = 256

# Fixed salt: a configured passphrase must derive the same key across restarts
_SCRYPT_SALT = b"gateway-secrets/environment-backend/v1"


def derive_key(passphrase: str) -> bytes:
    """Turn a configured ``ENCRYPTION_KEY`` into 32 bytes of key material.

    A 64-character hex string is used verbatim; anything else is stretched
    with scrypt.
    """
    if len(passphrase) == 64 and all(c in string.hexdigits for c in passphrase):
        return bytes.fromhex(passphrase)
    kdf = Scrypt(salt=_SCRYPT_SALT, length=32, n=2**14, r=8, p=1)
    return kdf.derive(passphrase.encode("utf-8"))


class EnvironmentSecretBackend(SecretBackend):
    """Secret backend that keeps secrets in process environment variables.

    Intended for development and tests. A secret named
    ``gateway/owners/openai/credentials/api_key`` lives in
    ``SECRET_GATEWAY_OWNERS_OPENAI_CREDENTIALS_API_KEY``.

    Stored values are AES-256-GCM envelopes of the form
    ``enc:v<N>:<base64(nonce || ciphertext)>`` where ``N`` is the master key
    version used. Every key version is kept in memory, so values written
    before a rotation stay readable until they are re-stored. Values set
    by an operator without the ``enc:`` prefix are returned as-is.

    Keys live only in memory: rotated key versions are lost on restart.

    Attributes:
        master_key_id: Key id used to wrap stored secrets
        environ: Mutable mapping holding the secrets
    """

    kind = BackendKind.ENVIRONMENT

    def __init__(
        self,
        master_key_id: str = DEFAULT_MASTER_KEY_ID,
        encryption_key: str | None = None,
        environ: MutableMapping[str, str] | None = None,
        production: bool = False,
    ):
        """Initialize the environment backend.

        Args:
            master_key_id: Identifier of the master key
            encryption_key: Hex key or passphrase; a random key is generated when absent
            environ: Mapping to store secrets in (defaults to ``os.environ``)
            production: Whether the process runs in production

        Raises:
            ConfigurationError: If no encryption key is configured in production
        """
        self.master_key_id = master_key_id
        self.environ = environ if environ is not None else os.environ
        self._lock = threading.Lock()
        self._keyrings: dict[str, list[bytes]] = {
            master_key_id: [self._initial_key(encryption_key, production)],
        }
        logger.info("Initialized environment secret backend", key_id=master_key_id)

    @staticmethod
    def _initial_key(encryption_key: str | None, production: bool) -> bytes:
        if encryption_key:
            return derive_key(encryption_key)
        if production:
            raise ConfigurationError("ENCRYPTION_KEY environment variable is required in production")
        logger.warning("No ENCRYPTION_KEY configured, using a random key for this process")
        return AESGCM.generate_key(bit_length=KEY_SIZE_BITS)

    def _keyring(self, key_id: str) -> list[bytes]:
        ring = self._keyrings.get(key_id)
        if ring is None:
            raise SecretNotFoundError(f"Encryption key not found: {key_id}")
        return ring

    def current_key_version(self, key_id: str) -> str:
        """Return the version label new envelopes for ``key_id`` are written with."""
        with self._lock:
            return f"v{len(self._keyring(key_id))}"

    def get_secret(self, name: str) -> str:
        raw = self.environ.get(environment_variable_name(name))
        if not raw:
            raise SecretNotFoundError(f"Secret not found: {name}")
        if raw.startswith(ENVELOPE_PREFIX):
            return self.decrypt(raw, self.master_key_id)
        return raw

    def set_secret(self, name: str, value: str) -> None:
        self.environ[environment_variable_name(name)] = self.encrypt(value, self.master_key_id)
        logger.debug("Secret stored in process environment, not persistent across restarts", secret_path=name)

    def delete_secret(self, name: str) -> None:
        self.environ.pop(environment_variable_name(name), None)

    def get_encryption_key(self, key_id: str) -> bytes:
        with self._lock:
            return self._keyring(key_id)[-1]

    def rotate_encryption_key(self, key_id: str) -> str:
        with self._lock:
            ring = self._keyring(key_id)
            ring.append(AESGCM.generate_key(bit_length=KEY_SIZE_BITS))
            version = f"v{len(ring)}"
        logger.warning(
            "Encryption key rotated in memory, not persistent across restarts",
            key_id=key_id,
            key_version=version,
        )
        return version

    def encrypt(self, plaintext: str, key_id: str) -> str:
        with self._lock:
            ring = self._keyring(key_id)
            version = len(ring)
            key = ring[-1]
        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), key_id.encode("utf-8"))
        payload = base64.b64encode(nonce + sealed).decode("ascii")
        return f"{ENVELOPE_PREFIX}v{version}:{payload}"

    def decrypt(self, ciphertext: str, key_id: str) -> str:
        parts = ciphertext.split(":", 2)
        if len(parts) != 3 or f"{parts[0]}:" != ENVELOPE_PREFIX or not parts[1].startswith("v"):
            raise SecretCryptoError("Malformed ciphertext envelope")

        try:
            version = int(parts[1][1:])
            data = base64.b64decode(parts[2], validate=True)
        except (ValueError, binascii.Error) as e:
            raise SecretCryptoError("Malformed ciphertext envelope") from e
        if len(data) < NONCE_SIZE + TAG_SIZE:
            raise SecretCryptoError("Malformed ciphertext envelope: payload too short")

        with self._lock:
            ring = self._keyring(key_id)
            if not 1 <= version <= len(ring):
                raise SecretCryptoError(f"Unknown key version v{version} for key {key_id}")
            key = ring[version - 1]

        nonce, sealed = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            return AESGCM(key).decrypt(nonce, sealed, key_id.encode("utf-8")).decode("utf-8")
        except InvalidTag as e:
            raise SecretCryptoError(f"Ciphertext failed authentication for key {key_id}") from e
