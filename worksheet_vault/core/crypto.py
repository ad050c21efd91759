"""
Field encryption primitive - AES-256-GCM over individual string values.
Key management is out of scope: the key is derived from configuration.
"""

import base64
import os
from abc import ABC, abstractmethod
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .config import FIELD_ENCRYPTION_PASSWORD, FIELD_ENCRYPTION_SALT
from .errors import CipherError

# Marker identifying values written by AesGcmFieldCipher
CIPHERTEXT_PREFIX = "enc:v1:"

NONCE_SIZE = 12
TAG_SIZE = 16


class IFieldCipher(ABC):
    """Abstract interface for the string encryption primitive."""

    @abstractmethod
    async def encrypt(self, plaintext: str) -> str:
        """Encrypt a string value. Raises CipherError on failure."""
        pass

    @abstractmethod
    async def decrypt(self, ciphertext: str) -> str:
        """Decrypt a string value. Raises CipherError on failure."""
        pass


def _derive_key(password: str, salt: bytes) -> bytes:
    """Derive encryption key from password using PBKDF2."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=100000,
    )
    return kdf.derive(password.encode())


def _encrypt_data(data: bytes, key: bytes) -> bytes:
    """Encrypt data using AES-256-GCM."""
    nonce = os.urandom(NONCE_SIZE)
    cipher = Cipher(algorithms.AES(key), modes.GCM(nonce))
    encryptor = cipher.encryptor()

    ciphertext = encryptor.update(data) + encryptor.finalize()

    # Return nonce + tag + ciphertext
    return nonce + encryptor.tag + ciphertext


def _decrypt_data(encrypted_data: bytes, key: bytes) -> bytes:
    """Decrypt data using AES-256-GCM."""
    if len(encrypted_data) < NONCE_SIZE + TAG_SIZE:
        raise CipherError("Encrypted data too short")

    nonce = encrypted_data[:NONCE_SIZE]
    tag = encrypted_data[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
    ciphertext = encrypted_data[NONCE_SIZE + TAG_SIZE:]

    cipher = Cipher(algorithms.AES(key), modes.GCM(nonce, tag))
    decryptor = cipher.decryptor()
    return decryptor.update(ciphertext) + decryptor.finalize()


class AesGcmFieldCipher(IFieldCipher):
    """AES-256-GCM cipher producing prefixed base64 text suitable for JSON documents."""

    def __init__(self, password: Optional[str] = None, salt: Optional[str] = None, key: Optional[bytes] = None):
        if key is not None:
            if len(key) != 32:
                raise ValueError("AES-256 key must be 32 bytes")
            self._key = key
        else:
            self._key = _derive_key(
                password if password is not None else FIELD_ENCRYPTION_PASSWORD,
                (salt if salt is not None else FIELD_ENCRYPTION_SALT).encode(),
            )

    async def encrypt(self, plaintext: str) -> str:
        if not isinstance(plaintext, str):
            raise CipherError(f"Cannot encrypt value of type {type(plaintext).__name__}")

        try:
            blob = _encrypt_data(plaintext.encode("utf-8"), self._key)
        except Exception as e:
            raise CipherError(f"Encryption failed: {e}") from e

        return CIPHERTEXT_PREFIX + base64.b64encode(blob).decode("ascii")

    async def decrypt(self, ciphertext: str) -> str:
        if not isinstance(ciphertext, str) or not ciphertext.startswith(CIPHERTEXT_PREFIX):
            raise CipherError("Value is not field ciphertext")

        try:
            blob = base64.b64decode(ciphertext[len(CIPHERTEXT_PREFIX):], validate=True)
            return _decrypt_data(blob, self._key).decode("utf-8")
        except CipherError:
            raise
        except InvalidTag as e:
            raise CipherError("Ciphertext failed authentication") from e
        except (ValueError, UnicodeDecodeError) as e:
            raise CipherError(f"Malformed ciphertext: {e}") from e


def is_ciphertext(value: str) -> bool:
    """Check whether a value carries the field ciphertext marker."""
    return isinstance(value, str) and value.startswith(CIPHERTEXT_PREFIX)
