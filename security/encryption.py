"""
Dual-domain encryption for the POS Agent.

Two independent encryption domains are provided:

- ConfigCipher (machine-bound): AES-256-GCM with a key derived via
  PBKDF2-HMAC-SHA3-256 from the application secret, salted with the
  machine fingerprint. Protects the local configuration file.
- DatabaseCipher (server-bound): ChaCha20-Poly1305 keyed directly with the
  32-byte server key. Protects the settings database and can be opened on
  any machine once the server key is known.

Both produce envelopes of the form base64(nonce || ciphertext || tag).
The two classes share no base class.
"""

import os
import base64
import binascii
import hashlib

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

from .errors import AuthError, FormatError, KeyMaterialError


# Build-time application secret for the config domain.
# Rotating it invalidates every config envelope on every machine.
APP_SECRET = b"YourSuperSecretHardcodedKeyHere-ChangeInProduction!"

PBKDF2_ITERATIONS = 10000
KEY_LEN = 32  # 256 bits
NONCE_LEN = 12  # 96 bits for both AES-GCM and ChaCha20-Poly1305


def _encode_envelope(nonce: bytes, ciphertext: bytes) -> str:
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def _decode_envelope(envelope: str) -> tuple[bytes, bytes]:
    """Split an envelope into (nonce, ciphertext+tag) or raise AuthError."""
    try:
        raw = base64.b64decode(envelope, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise AuthError() from e

    if len(raw) < NONCE_LEN:
        raise AuthError()

    return raw[:NONCE_LEN], raw[NONCE_LEN:]


class ConfigCipher:
    """Machine-bound AES-256-GCM cipher for configuration data."""

    def __init__(self, fingerprint: str):
        """
        Derive the config key for this machine.

        Args:
            fingerprint: The machine fingerprint used as PBKDF2 salt

        Raises:
            KeyMaterialError: If the fingerprint is empty
        """
        if not fingerprint:
            raise KeyMaterialError("machine fingerprint cannot be empty")

        key = hashlib.pbkdf2_hmac(
            "sha3_256",
            APP_SECRET,
            fingerprint.encode("utf-8"),
            PBKDF2_ITERATIONS,
            dklen=KEY_LEN,
        )
        self._aesgcm = AESGCM(key)

    def seal(self, plaintext: bytes) -> str:
        """
        Encrypt data with a fresh random nonce.

        Args:
            plaintext: Bytes to protect

        Returns:
            Base64 envelope (nonce || ciphertext || tag)
        """
        nonce = os.urandom(NONCE_LEN)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext, None)
        return _encode_envelope(nonce, ciphertext)

    def open(self, envelope: str) -> bytes:
        """
        Decrypt an envelope produced by seal().

        Args:
            envelope: Base64 envelope

        Returns:
            The original plaintext

        Raises:
            AuthError: If the envelope is malformed, truncated or fails
                authentication
        """
        nonce, ciphertext = _decode_envelope(envelope)
        try:
            return self._aesgcm.decrypt(nonce, ciphertext, None)
        except (InvalidTag, ValueError) as e:
            raise AuthError() from e


class DatabaseCipher:
    """Server-keyed ChaCha20-Poly1305 cipher for database values."""

    def __init__(self, server_key: bytes):
        """
        Args:
            server_key: Exactly 32 bytes issued by the server

        Raises:
            KeyMaterialError: If the key is not 32 bytes
        """
        if not isinstance(server_key, (bytes, bytearray)) or len(server_key) != KEY_LEN:
            raise KeyMaterialError(f"server key must be {KEY_LEN} bytes")

        self._aead = ChaCha20Poly1305(bytes(server_key))

    def seal(self, plaintext: bytes) -> str:
        """Encrypt data and return a base64 envelope."""
        nonce = os.urandom(NONCE_LEN)
        ciphertext = self._aead.encrypt(nonce, plaintext, None)
        return _encode_envelope(nonce, ciphertext)

    def open(self, envelope: str) -> bytes:
        """Decrypt an envelope; raises AuthError on any failure."""
        nonce, ciphertext = _decode_envelope(envelope)
        try:
            return self._aead.decrypt(nonce, ciphertext, None)
        except (InvalidTag, ValueError) as e:
            raise AuthError() from e


def generate_server_key() -> bytes:
    """Generate a new random 256-bit server key."""
    return os.urandom(KEY_LEN)


def server_key_to_text(key: bytes) -> str:
    """Encode a server key as standard base64 for transport."""
    return base64.b64encode(key).decode("ascii")


def server_key_from_text(text: str) -> bytes:
    """
    Decode a base64 server key.

    Args:
        text: Base64-encoded key

    Returns:
        The 32 raw key bytes

    Raises:
        FormatError: On invalid base64 or a decoded length other than 32
    """
    try:
        key = base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError, AttributeError) as e:
        raise FormatError(f"failed to decode server key: {e}") from e

    if len(key) != KEY_LEN:
        raise FormatError(f"invalid server key length: expected {KEY_LEN}, got {len(key)}")

    return key
