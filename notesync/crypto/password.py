"""Password encryption for locked notes.

Uses AES-256-GCM with a key derived from the password via SHA-256.
Format: base64(nonce + ciphertext + tag).
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .local import NONCE_LENGTH, TAG_LENGTH, DecryptionError


def _derive_key(password: str) -> bytes:
    digest = hashes.Hash(hashes.SHA256())
    digest.update(password.encode("utf-8"))
    return digest.finalize()


def encrypt_with_password(data: str, password: str) -> str:
    """Encrypt text with a password-derived key.

    Raises:
        ValueError: If the password is empty.
    """
    if not password:
        raise ValueError("Password cannot be empty")
    if not data:
        return ""

    nonce = os.urandom(NONCE_LENGTH)
    sealed = AESGCM(_derive_key(password)).encrypt(nonce, data.encode("utf-8"), None)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt_with_password(encrypted: str, password: str) -> str:
    """Decrypt text produced by encrypt_with_password.

    Raises:
        ValueError: If the password is empty.
        DecryptionError: If the data is invalid or the password is wrong.
    """
    if not password:
        raise ValueError("Password cannot be empty")
    if not encrypted:
        return ""

    try:
        combined = base64.b64decode(encrypted, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError("Invalid encrypted data") from e

    if len(combined) < NONCE_LENGTH + TAG_LENGTH:
        raise DecryptionError("Invalid encrypted data")

    try:
        plaintext = AESGCM(_derive_key(password)).decrypt(
            combined[:NONCE_LENGTH], combined[NONCE_LENGTH:], None
        )
    except InvalidTag as e:
        raise DecryptionError("Incorrect password or corrupted data") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecryptionError("Decrypted data is not valid text") from e
