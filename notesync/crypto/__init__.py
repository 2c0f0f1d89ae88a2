"""Encryption for notesync.

Provides at-rest encryption of local note data with a device key, and
password encryption for individually locked notes.
"""

from .local import DecryptionError, LocalCrypto
from .password import decrypt_with_password, encrypt_with_password

__all__ = [
    "DecryptionError",
    "LocalCrypto",
    "decrypt_with_password",
    "encrypt_with_password",
]
