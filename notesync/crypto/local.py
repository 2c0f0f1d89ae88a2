"""Local data encryption for protecting notes and attachments at rest.

Note fields and attachment files are encrypted with AES-256-GCM using a
device key supplied through configuration. Encrypted strings carry an
``ENC:`` prefix and encrypted files an ``ENCR`` header, so values are never
encrypted twice and plaintext written before encryption was enabled still
reads back unchanged.
"""

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "ENC:"
ENCRYPTED_FILE_HEADER = b"ENCR"

NONCE_LENGTH = 12
TAG_LENGTH = 16


class DecryptionError(Exception):
    """Stored ciphertext could not be decrypted (wrong key or corrupt data)."""


class LocalCrypto:
    """Encrypts and decrypts local data with a device key.

    Note and file encryption are opt-in and toggled separately. Both
    read as disabled when no valid key is configured.
    """

    def __init__(
        self,
        key_hex: str | None = None,
        notes_enabled: bool = False,
        files_enabled: bool = False,
    ):
        """Initialize local encryption.

        Args:
            key_hex: 64-character hex string (256-bit AES key).
            notes_enabled: Encrypt note content and attachment lists.
            files_enabled: Encrypt attachment file bytes.
        """
        self._key: bytes | None = None
        if key_hex:
            try:
                key = bytes.fromhex(key_hex)
            except ValueError:
                key = b""
            if len(key) == 32:
                self._key = key
            else:
                logger.warning(
                    "Invalid local data key (expected 64 hex characters), "
                    "local encryption disabled"
                )
        self._notes_enabled = notes_enabled
        self._files_enabled = files_enabled

    @property
    def is_available(self) -> bool:
        """Whether a valid key is configured."""
        return self._key is not None

    @property
    def notes_enabled(self) -> bool:
        return self.is_available and self._notes_enabled

    @notes_enabled.setter
    def notes_enabled(self, enabled: bool) -> None:
        self._notes_enabled = enabled

    @property
    def files_enabled(self) -> bool:
        return self.is_available and self._files_enabled

    @files_enabled.setter
    def files_enabled(self, enabled: bool) -> None:
        self._files_enabled = enabled

    @staticmethod
    def is_encrypted(value: str | None) -> bool:
        return bool(value) and value.startswith(ENCRYPTED_PREFIX)

    def _cipher(self) -> AESGCM:
        if self._key is None:
            raise DecryptionError("No local data key configured")
        return AESGCM(self._key)

    def encrypt_string(self, value: str) -> str:
        """Encrypt a string for storage in SQLite.

        Returns the value unchanged if it is empty, already encrypted, or
        note encryption is disabled.
        """
        if not value or not self.notes_enabled or self.is_encrypted(value):
            return value

        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._cipher().encrypt(nonce, value.encode("utf-8"), None)
        return ENCRYPTED_PREFIX + base64.b64encode(nonce + sealed).decode("ascii")

    def decrypt_string(self, value: str) -> str:
        """Decrypt a string read from SQLite.

        Values without the encryption prefix are returned as-is, so this
        works whether or not note encryption is currently enabled.

        Raises:
            DecryptionError: The payload is malformed or fails authentication.
        """
        if not self.is_encrypted(value):
            return value

        try:
            combined = base64.b64decode(value[len(ENCRYPTED_PREFIX):], validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError(f"Malformed encrypted value: {e}") from e

        if len(combined) < NONCE_LENGTH + TAG_LENGTH:
            raise DecryptionError("Encrypted value is truncated")

        nonce, sealed = combined[:NONCE_LENGTH], combined[NONCE_LENGTH:]
        try:
            plaintext = self._cipher().decrypt(nonce, sealed, None)
        except InvalidTag as e:
            raise DecryptionError("Encrypted value failed authentication") from e

        return plaintext.decode("utf-8")

    def encrypt_bytes(self, data: bytes) -> bytes:
        """Encrypt attachment bytes.

        Format: ENCR header (4) + nonce (12) + ciphertext + tag (16).
        """
        if not data or not self.files_enabled or data.startswith(ENCRYPTED_FILE_HEADER):
            return data

        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._cipher().encrypt(nonce, data, None)
        return ENCRYPTED_FILE_HEADER + nonce + sealed

    def decrypt_bytes(self, data: bytes) -> bytes:
        """Decrypt attachment bytes, passing through unencrypted data."""
        if not data.startswith(ENCRYPTED_FILE_HEADER):
            return data

        body = data[len(ENCRYPTED_FILE_HEADER):]
        if len(body) < NONCE_LENGTH + TAG_LENGTH:
            raise DecryptionError("Encrypted file is truncated")

        try:
            return self._cipher().decrypt(body[:NONCE_LENGTH], body[NONCE_LENGTH:], None)
        except InvalidTag as e:
            raise DecryptionError("Encrypted file failed authentication") from e
