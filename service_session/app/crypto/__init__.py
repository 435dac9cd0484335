"""
Session token cryptography.
"""

from .keys import ENCRYPTION_KEY_SIZE, SecretKey, generate_secret_hex, validate_secret
from .codec import DecodeResult, DecodeStatus, SessionCodec

__all__ = [
    "DecodeResult",
    "DecodeStatus",
    "ENCRYPTION_KEY_SIZE",
    "SecretKey",
    "SessionCodec",
    "generate_secret_hex",
    "validate_secret",
]
