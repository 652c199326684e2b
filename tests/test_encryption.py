"""Tests for the config and database encryption domains."""

import base64
import hashlib

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from security.encryption import (
    NONCE_LEN,
    ConfigCipher,
    DatabaseCipher,
    generate_server_key,
    server_key_from_text,
    server_key_to_text,
)
from security.errors import AuthError, FormatError, KeyMaterialError

PAYLOADS = [
    pytest.param(b"", id="empty"),
    pytest.param(b"Hello, World!", id="short"),
    pytest.param(b"x" * 100_000, id="long"),
    pytest.param(b"\x00\x01\x02\x03\x00\xff", id="binary-with-nul"),
    pytest.param("Hello 世界 🌍 Привет مرحبا".encode("utf-8"), id="unicode"),
    pytest.param(b'{"server_url":"https://example.com","store_id":"12345","port":8080}', id="json"),
]

INVALID_ENVELOPES = [
    pytest.param("", id="empty"),
    pytest.param("not-valid-base64!!!", id="invalid-base64"),
    pytest.param("YWJj", id="too-short"),
    pytest.param("SGVsbG8gV29ybGQ=", id="shorter-than-nonce"),
    pytest.param(base64.b64encode(b"\x00" * 40).decode(), id="random-bytes"),
]


def _tamper(envelope: str, index: int = -1) -> str:
    raw = bytearray(base64.b64decode(envelope))
    raw[index] ^= 0x01
    return base64.b64encode(bytes(raw)).decode()


class TestConfigCipher:
    """Machine-bound AES-256-GCM domain."""

    @pytest.mark.parametrize("plaintext", PAYLOADS)
    def test_round_trip(self, plaintext: bytes) -> None:
        cipher = ConfigCipher("test-machine-id-12345")
        envelope = cipher.seal(plaintext)
        assert envelope
        assert cipher.open(envelope) == plaintext

    def test_same_fingerprint_derives_same_key(self) -> None:
        envelope = ConfigCipher("machine-a").seal(b"data")
        assert ConfigCipher("machine-a").open(envelope) == b"data"

    def test_empty_fingerprint_rejected(self) -> None:
        with pytest.raises(KeyMaterialError):
            ConfigCipher("")

    def test_key_ignores_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """The config key depends only on the built-in secret and the fingerprint."""
        monkeypatch.setenv("POSAGENT_APP_SECRET", "something-else")
        key = hashlib.pbkdf2_hmac(
            "sha3_256",
            b"YourSuperSecretHardcodedKeyHere-ChangeInProduction!",
            b"machine-a",
            10000,
            dklen=32,
        )
        raw = base64.b64decode(ConfigCipher("machine-a").seal(b"payload"))

        assert AESGCM(key).decrypt(raw[:NONCE_LEN], raw[NONCE_LEN:], None) == b"payload"

    def test_different_machine_ids(self) -> None:
        envelope = ConfigCipher("machine-1").seal(b"sensitive config data")
        with pytest.raises(AuthError):
            ConfigCipher("machine-2").open(envelope)

    def test_nonce_is_fresh(self) -> None:
        cipher = ConfigCipher("machine")
        first = base64.b64decode(cipher.seal(b"same"))
        second = base64.b64decode(cipher.seal(b"same"))
        assert first[:NONCE_LEN] != second[:NONCE_LEN]
        assert first != second

    @pytest.mark.parametrize("envelope", INVALID_ENVELOPES)
    def test_invalid_input(self, envelope: str) -> None:
        with pytest.raises(AuthError):
            ConfigCipher("test-machine").open(envelope)

    @pytest.mark.parametrize("index", [0, NONCE_LEN, -1])
    def test_tampering_detected(self, index: int) -> None:
        cipher = ConfigCipher("test-machine")
        envelope = cipher.seal(b"do not touch")
        with pytest.raises(AuthError):
            cipher.open(_tamper(envelope, index))


class TestDatabaseCipher:
    """Server-keyed ChaCha20-Poly1305 domain."""

    @pytest.mark.parametrize("plaintext", PAYLOADS)
    def test_round_trip(self, plaintext: bytes, server_key: bytes) -> None:
        cipher = DatabaseCipher(server_key)
        assert cipher.open(cipher.seal(plaintext)) == plaintext

    def test_machine_independent(self, server_key: bytes) -> None:
        """Another instance with the same key (e.g. after restore) can open it."""
        envelope = DatabaseCipher(server_key).seal(b"backup row")
        assert DatabaseCipher(bytes(server_key)).open(envelope) == b"backup row"

    def test_different_keys(self) -> None:
        envelope = DatabaseCipher(generate_server_key()).seal(b"database record")
        with pytest.raises(AuthError):
            DatabaseCipher(generate_server_key()).open(envelope)

    @pytest.mark.parametrize("size", [0, 16, 31, 33, 64])
    def test_invalid_key_size(self, size: int) -> None:
        with pytest.raises(KeyMaterialError):
            DatabaseCipher(b"\x00" * size)

    def test_key_must_be_bytes(self) -> None:
        with pytest.raises(KeyMaterialError):
            DatabaseCipher("a" * 32)  # type: ignore[arg-type]

    @pytest.mark.parametrize("envelope", INVALID_ENVELOPES)
    def test_invalid_input(self, envelope: str, server_key: bytes) -> None:
        with pytest.raises(AuthError):
            DatabaseCipher(server_key).open(envelope)

    def test_tampering_detected(self, server_key: bytes) -> None:
        cipher = DatabaseCipher(server_key)
        with pytest.raises(AuthError):
            cipher.open(_tamper(cipher.seal(b"balance=1000.50")))


class TestServerKeys:
    """Server key generation and transport encoding."""

    def test_generate(self) -> None:
        key1 = generate_server_key()
        key2 = generate_server_key()
        assert len(key1) == 32
        assert key1 != key2

    def test_text_round_trip(self, server_key: bytes) -> None:
        text = server_key_to_text(server_key)
        assert server_key_from_text(text) == server_key

    def test_surrounding_whitespace_ignored(self, server_key: bytes) -> None:
        assert server_key_from_text(server_key_to_text(server_key) + "\n") == server_key

    @pytest.mark.parametrize(
        "text",
        [
            pytest.param("not-valid-base64!!!", id="invalid-base64"),
            pytest.param("YWJjZGVm", id="wrong-length"),
            pytest.param(base64.b64encode(b"k" * 33).decode(), id="too-long"),
            pytest.param("", id="empty"),
        ],
    )
    def test_invalid_text(self, text: str) -> None:
        with pytest.raises(FormatError):
            server_key_from_text(text)


class TestDomainSeparation:
    """Envelopes never cross between the config and database domains."""

    @pytest.mark.parametrize("plaintext", PAYLOADS)
    def test_cross_domain_open_fails(self, plaintext: bytes) -> None:
        config_cipher = ConfigCipher("machine-123")
        database_cipher = DatabaseCipher(generate_server_key())

        config_envelope = config_cipher.seal(plaintext)
        database_envelope = database_cipher.seal(plaintext)
        assert config_envelope != database_envelope

        with pytest.raises(AuthError):
            config_cipher.open(database_envelope)
        with pytest.raises(AuthError):
            database_cipher.open(config_envelope)

    def test_fingerprint_shaped_like_key_still_isolated(self) -> None:
        """A 32-char fingerprint used as raw server key bytes opens nothing."""
        fingerprint = "f" * 32
        config_cipher = ConfigCipher(fingerprint)
        database_cipher = DatabaseCipher(fingerprint.encode("ascii"))

        with pytest.raises(AuthError):
            database_cipher.open(config_cipher.seal(b"payload"))
        with pytest.raises(AuthError):
            config_cipher.open(database_cipher.seal(b"payload"))
