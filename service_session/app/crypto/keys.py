"""
Secret key material for the session codec.

The configured secret is a hexadecimal string. The first ``ENCRYPTION_KEY_SIZE``
decoded bytes key the block cipher; the full decoded secret keys the MAC.
"""

import binascii
import secrets
from dataclasses import dataclass
from typing import Optional

from shared.errors import ConfigurationError

# AES-256
ENCRYPTION_KEY_SIZE = 32


@dataclass(frozen=True)
class SecretKey:
    """Immutable key pair derived from the configured secret."""

    encryption_key: bytes
    signing_key: bytes

    def __repr__(self) -> str:
        return f"SecretKey(encryption_key=<{len(self.encryption_key)} bytes>, signing_key=<{len(self.signing_key)} bytes>)"

    __str__ = __repr__


def generate_secret_hex(num_bytes: int = 64) -> str:
    """Return a random hexadecimal secret suitable for ``ACCESS_SESSION_SECRET``."""
    return secrets.token_hex(num_bytes)


def validate_secret(secret_hex: Optional[str], required_key_bytes: int = ENCRYPTION_KEY_SIZE) -> SecretKey:
    """
    Validate a hexadecimal secret and derive the session keys from it.

    A secret longer than ``required_key_bytes`` is truncated for the cipher
    key. A shorter one is rejected, never padded.

    Raises:
        ConfigurationError: if the secret is missing, not hexadecimal, or too short.
    """
    required_chars = required_key_bytes * 2

    if secret_hex is None or not str(secret_hex).strip():
        raise ConfigurationError(
            "A session secret is required for encrypting the session cookie. "
            f"Set ACCESS_SESSION_SECRET to a random hexadecimal string of at least "
            f"{required_chars} characters, for example: {generate_secret_hex(required_key_bytes)}",
            details={"required_hex_chars": required_chars}
        )

    secret_hex = str(secret_hex).strip()
    try:
        raw = binascii.unhexlify(secret_hex)
    except (binascii.Error, ValueError):
        raise ConfigurationError(
            "The session secret must be a hexadecimal string",
            details={"required_hex_chars": required_chars}
        ) from None

    if len(raw) < required_key_bytes:
        raise ConfigurationError(
            f"The session secret must be a hexadecimal string of at least {required_chars} "
            f"characters; the configured value has {len(secret_hex)}. You could use the "
            f"following (randomly generated) secret: {generate_secret_hex(required_key_bytes)}",
            details={"required_hex_chars": required_chars, "provided_hex_chars": len(secret_hex)}
        )

    return SecretKey(encryption_key=raw[:required_key_bytes], signing_key=raw)
