"""
Session cookie codec.

Token layout (all segments base64url, unpadded)::

    <iv>[ |.]<ciphertext>.<mac>[.<timestamp>]

The separator after the IV is a space when the body was zlib-compressed and a
period otherwise. The MAC covers ``iv + plaintext + str(timestamp)`` where
``plaintext`` is the serialized session before compression and encryption, so
a changed key or a corrupted IV is caught even though CBC decryption itself
never reports a wrong key. The timestamp segment is a 4-byte big-endian count
of seconds since the epoch and is only present when the token was issued with
an expiry.
"""

import base64
import binascii
import json
import os
import re
import struct
import time
import zlib
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from shared.errors import ConfigurationError, ValidationError
from shared.logging import get_logger
from .keys import SecretKey

IV_SIZE = 16
TIMESTAMP_SIZE = 4
SEPARATOR_COMPRESSED = " "
SEPARATOR_PLAIN = "."
MAX_DECOMPRESSED_SIZE = 1024 * 1024

SUPPORTED_DIGESTS = {
    "SHA1": hashes.SHA1,
    "SHA224": hashes.SHA224,
    "SHA256": hashes.SHA256,
    "SHA384": hashes.SHA384,
    "SHA512": hashes.SHA512,
}

_SEGMENT = r"[A-Za-z0-9_-]+"
_TOKEN_RE = re.compile(
    rf"\A({_SEGMENT})([ .])({_SEGMENT})\.({_SEGMENT})(?:\.({_SEGMENT}))?\Z"
)

Duration = Union[int, float, timedelta]


class DecodeStatus(str, Enum):
    """Outcome of decoding a session token."""

    OK = "ok"
    INVALID = "invalid"
    EXPIRED = "expired"


@dataclass(frozen=True)
class DecodeResult:
    """
    Result of :meth:`SessionCodec.decode`.

    ``EXPIRED`` results carry the authentic timestamp but never the session.
    ``reason`` is for logs and metrics only and must not reach the client.
    """

    status: DecodeStatus
    session: Optional[Dict[str, Any]] = None
    timestamp: Optional[int] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, session: Dict[str, Any], timestamp: Optional[int] = None) -> "DecodeResult":
        return cls(DecodeStatus.OK, session=session, timestamp=timestamp)

    @classmethod
    def invalid(cls, reason: str) -> "DecodeResult":
        return cls(DecodeStatus.INVALID, reason=reason)

    @classmethod
    def expired(cls, timestamp: int) -> "DecodeResult":
        return cls(DecodeStatus.EXPIRED, timestamp=timestamp, reason="expired")

    @property
    def is_ok(self) -> bool:
        return self.status is DecodeStatus.OK

    @property
    def is_expired(self) -> bool:
        return self.status is DecodeStatus.EXPIRED


class _Rejected(Exception):
    """Internal signal carrying the reason a token was rejected."""


class _Expired(Exception):
    """Internal signal for an authentic token past its expiry."""

    def __init__(self, timestamp: int):
        self.timestamp = timestamp
        super().__init__(f"expired at {timestamp}")


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    padding_chars = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode((data + padding_chars).encode("ascii"))


def _seconds(value: Optional[Duration]) -> Optional[float]:
    if value is None:
        return None
    seconds = value.total_seconds() if isinstance(value, timedelta) else float(value)
    if seconds <= 0:
        raise ConfigurationError(
            "expire_after must be a positive duration",
            details={"expire_after": seconds}
        )
    return seconds


class SessionCodec:
    """
    Encrypts, authenticates and optionally compresses session values.

    Instances are immutable after construction and hold no per-call state:
    cipher and HMAC contexts are created for every call, so one codec can be
    shared across concurrently handled requests.
    """

    def __init__(
        self,
        key: SecretKey,
        *,
        digest: str = "SHA1",
        compress: bool = True,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        digest_name = (digest or "").upper().replace("-", "")
        if digest_name not in SUPPORTED_DIGESTS:
            raise ConfigurationError(
                f"Unsupported session digest algorithm: {digest}",
                details={"supported": sorted(SUPPORTED_DIGESTS)}
            )
        self._key = key
        self._digest = SUPPORTED_DIGESTS[digest_name]
        self._compress = compress
        self._clock = clock or time.time
        self.digest_name = digest_name
        self.logger = get_logger("session.codec")

    @property
    def compress(self) -> bool:
        return self._compress

    def now(self) -> int:
        """Current time in whole seconds, from the injected clock."""
        return int(self._clock())

    def encode(self, session: Mapping[str, Any], expire_after: Optional[Duration] = None) -> str:
        """
        Encode a session value into a token string.

        A timestamp segment is appended when ``expire_after`` is set.

        Raises:
            ValidationError: if the session is not a JSON-serializable mapping.
            ConfigurationError: if ``expire_after`` is not a positive duration.
        """
        plaintext = self._serialize(session)

        body, compressed = plaintext, False
        if self._compress:
            deflated = zlib.compress(plaintext)
            if len(deflated) < len(plaintext):
                body, compressed = deflated, True

        iv = os.urandom(IV_SIZE)
        ciphertext = self._encrypt(body, iv)

        timestamp = self.now() if _seconds(expire_after) is not None else None
        mac = self._sign(iv, plaintext, timestamp).finalize()

        separator = SEPARATOR_COMPRESSED if compressed else SEPARATOR_PLAIN
        token = f"{b64url_encode(iv)}{separator}{b64url_encode(ciphertext)}.{b64url_encode(mac)}"
        if timestamp is not None:
            token += "." + b64url_encode(struct.pack(">I", timestamp))
        return token

    def decode(self, token: Optional[Union[str, bytes]], expire_after: Optional[Duration] = None) -> DecodeResult:
        """
        Decode a token. Never raises for malformed, tampered or expired input.

        With ``expire_after`` set, a token without a timestamp is invalid and a
        token whose timestamp is at least ``expire_after`` seconds old decodes
        as expired. A non-positive ``expire_after`` is a ``ConfigurationError``.
        """
        expire_seconds = _seconds(expire_after)
        try:
            session, timestamp = self._decode(token, expire_seconds)
        except _Rejected as rejection:
            reason = str(rejection)
            self.logger.debug("Session token rejected", reason=reason)
            return DecodeResult.invalid(reason)
        except _Expired as stale:
            self.logger.debug("Session token expired", timestamp=stale.timestamp)
            return DecodeResult.expired(stale.timestamp)
        return DecodeResult.ok(session, timestamp)

    def _decode(self, token, expire_after: Optional[float]) -> Tuple[Dict[str, Any], Optional[int]]:
        if not token:
            raise _Rejected("missing")
        if isinstance(token, bytes):
            try:
                token = token.decode("ascii")
            except UnicodeDecodeError:
                raise _Rejected("malformed") from None
        if not isinstance(token, str):
            raise _Rejected("malformed")

        match = _TOKEN_RE.match(token)
        if match is None:
            raise _Rejected("malformed")
        b64_iv, separator, b64_ciphertext, b64_mac, b64_timestamp = match.groups()

        try:
            iv = b64url_decode(b64_iv)
            ciphertext = b64url_decode(b64_ciphertext)
            mac = b64url_decode(b64_mac)
            raw_timestamp = b64url_decode(b64_timestamp) if b64_timestamp else None
        except (binascii.Error, ValueError):
            raise _Rejected("encoding") from None

        if len(iv) != IV_SIZE:
            raise _Rejected("iv_length")

        timestamp = None
        if raw_timestamp is not None:
            if len(raw_timestamp) != TIMESTAMP_SIZE:
                raise _Rejected("timestamp_length")
            timestamp = struct.unpack(">I", raw_timestamp)[0]

        body = self._decrypt(ciphertext, iv)
        plaintext = self._inflate(body) if separator == SEPARATOR_COMPRESSED else body

        try:
            self._sign(iv, plaintext, timestamp).verify(mac)
        except InvalidSignature:
            raise _Rejected("signature") from None

        if expire_after is not None:
            if timestamp is None:
                raise _Rejected("timestamp_missing")
            if self.now() - timestamp >= expire_after:
                raise _Expired(timestamp)

        try:
            session = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            self.logger.warning("Authentic session token could not be deserialized")
            raise _Rejected("deserialize") from None
        if not isinstance(session, dict):
            self.logger.warning("Authentic session token does not hold an object", type=type(session).__name__)
            raise _Rejected("deserialize")
        return session, timestamp

    def _serialize(self, session: Mapping[str, Any]) -> bytes:
        if not isinstance(session, Mapping):
            raise ValidationError(
                "Session value must be a mapping",
                details={"type": type(session).__name__}
            )
        try:
            return json.dumps(
                dict(session),
                sort_keys=True,
                separators=(",", ":"),
                ensure_ascii=False,
                allow_nan=False,
            ).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                "Session value is not serializable",
                details={"error": str(exc)}
            ) from exc

    def _encrypt(self, body: bytes, iv: bytes) -> bytes:
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(body) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key.encryption_key), modes.CBC(iv)).encryptor()
        return encryptor.update(padded) + encryptor.finalize()

    def _decrypt(self, ciphertext: bytes, iv: bytes) -> bytes:
        try:
            decryptor = Cipher(algorithms.AES(self._key.encryption_key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            raise _Rejected("decrypt") from None

    def _inflate(self, body: bytes) -> bytes:
        inflater = zlib.decompressobj()
        try:
            plaintext = inflater.decompress(body, MAX_DECOMPRESSED_SIZE)
        except zlib.error:
            raise _Rejected("decompress") from None
        if inflater.unconsumed_tail or inflater.unused_data or not inflater.eof:
            raise _Rejected("decompress")
        return plaintext

    def _sign(self, iv: bytes, plaintext: bytes, timestamp: Optional[int]) -> hmac.HMAC:
        signer = hmac.HMAC(self._key.signing_key, self._digest())
        signer.update(iv)
        signer.update(plaintext)
        signer.update(b"" if timestamp is None else str(timestamp).encode("ascii"))
        return signer
