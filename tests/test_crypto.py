"""Tests for local and password encryption."""

import base64

import pytest

from notesync.crypto import (
    DecryptionError,
    LocalCrypto,
    decrypt_with_password,
    encrypt_with_password,
)
from notesync.crypto.local import ENCRYPTED_FILE_HEADER, ENCRYPTED_PREFIX

TEST_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


class TestLocalCryptoConfig:
    """Tests for key handling and feature flags."""

    def test_no_key(self):
        crypto = LocalCrypto(notes_enabled=True, files_enabled=True)

        assert not crypto.is_available
        assert not crypto.notes_enabled
        assert not crypto.files_enabled

    def test_invalid_key_disables(self):
        crypto = LocalCrypto("not-hex", notes_enabled=True)
        assert not crypto.is_available
        assert not crypto.notes_enabled

        crypto = LocalCrypto("abcd", notes_enabled=True)
        assert not crypto.is_available

    def test_valid_key(self):
        crypto = LocalCrypto(TEST_KEY, notes_enabled=True)

        assert crypto.is_available
        assert crypto.notes_enabled
        assert not crypto.files_enabled

    def test_toggle_flags(self):
        crypto = LocalCrypto(TEST_KEY)
        crypto.files_enabled = True

        assert crypto.files_enabled
        assert not crypto.notes_enabled


class TestLocalCryptoStrings:
    """Tests for ENC:-prefixed string encryption."""

    def test_encrypt_format(self, crypto):
        encrypted = crypto.encrypt_string("hello")

        assert encrypted.startswith(ENCRYPTED_PREFIX)
        raw = base64.b64decode(encrypted[len(ENCRYPTED_PREFIX):])
        # nonce + ciphertext + tag
        assert len(raw) == 12 + len("hello") + 16
        assert crypto.decrypt_string(encrypted) == "hello"

    def test_fresh_nonce_per_call(self, crypto):
        assert crypto.encrypt_string("same") != crypto.encrypt_string("same")

    def test_unicode(self, crypto):
        text = "Einkaufsliste: Äpfel, 🍞"
        assert crypto.decrypt_string(crypto.encrypt_string(text)) == text

    def test_empty_and_already_encrypted_unchanged(self, crypto):
        encrypted = crypto.encrypt_string("x")

        assert crypto.encrypt_string("") == ""
        assert crypto.encrypt_string(encrypted) == encrypted

    def test_disabled_returns_plaintext(self):
        crypto = LocalCrypto(TEST_KEY, notes_enabled=False)
        assert crypto.encrypt_string("plain") == "plain"

    def test_plaintext_passes_through_decrypt(self, crypto):
        assert crypto.decrypt_string("written before encryption") == "written before encryption"

    def test_is_encrypted(self, crypto):
        assert LocalCrypto.is_encrypted(crypto.encrypt_string("a"))
        assert not LocalCrypto.is_encrypted("a")
        assert not LocalCrypto.is_encrypted("")
        assert not LocalCrypto.is_encrypted(None)

    def test_wrong_key_raises(self, crypto):
        encrypted = crypto.encrypt_string("secret")
        other = LocalCrypto("ff" * 32, notes_enabled=True)

        with pytest.raises(DecryptionError):
            other.decrypt_string(encrypted)

    def test_malformed_payload_raises(self, crypto):
        with pytest.raises(DecryptionError):
            crypto.decrypt_string(ENCRYPTED_PREFIX + "%%%not base64%%%")

        with pytest.raises(DecryptionError):
            crypto.decrypt_string(ENCRYPTED_PREFIX + base64.b64encode(b"short").decode())

    def test_ciphertext_without_key_raises(self, crypto):
        encrypted = crypto.encrypt_string("secret")

        with pytest.raises(DecryptionError):
            LocalCrypto().decrypt_string(encrypted)


class TestLocalCryptoBytes:
    """Tests for ENCR-framed file encryption."""

    def test_encrypt_bytes_format(self, crypto):
        data = b"\x89PNG fake image"
        encrypted = crypto.encrypt_bytes(data)

        assert encrypted.startswith(ENCRYPTED_FILE_HEADER)
        assert len(encrypted) == 4 + 12 + len(data) + 16
        assert crypto.decrypt_bytes(encrypted) == data

    def test_files_disabled(self):
        crypto = LocalCrypto(TEST_KEY, notes_enabled=True, files_enabled=False)
        assert crypto.encrypt_bytes(b"raw") == b"raw"

    def test_plain_bytes_pass_through(self, crypto):
        assert crypto.decrypt_bytes(b"raw file") == b"raw file"

    def test_already_encrypted_not_reencrypted(self, crypto):
        encrypted = crypto.encrypt_bytes(b"data")
        assert crypto.encrypt_bytes(encrypted) == encrypted

    def test_tampered_bytes_raise(self, crypto):
        encrypted = bytearray(crypto.encrypt_bytes(b"data"))
        encrypted[-1] ^= 0x01

        with pytest.raises(DecryptionError):
            crypto.decrypt_bytes(bytes(encrypted))

    def test_truncated_bytes_raise(self, crypto):
        with pytest.raises(DecryptionError):
            crypto.decrypt_bytes(ENCRYPTED_FILE_HEADER + b"short")


class TestPasswordEncryption:
    """Tests for password-locked note payloads."""

    def test_roundtrip(self):
        encrypted = encrypt_with_password("my diary", "hunter2")

        assert encrypted != "my diary"
        assert decrypt_with_password(encrypted, "hunter2") == "my diary"

    def test_empty_data(self):
        assert encrypt_with_password("", "hunter2") == ""

    def test_empty_password_rejected(self):
        with pytest.raises(ValueError):
            encrypt_with_password("data", "")

    def test_wrong_password(self):
        encrypted = encrypt_with_password("my diary", "hunter2")

        with pytest.raises(DecryptionError):
            decrypt_with_password(encrypted, "wrong")

    def test_garbage_input(self):
        with pytest.raises(DecryptionError):
            decrypt_with_password("not-a-payload", "hunter2")
