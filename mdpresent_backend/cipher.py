"""
Content encryption for locked documents using PBKDF2 + AES-256-GCM.

The content key is derived from the password with the document's own random
salt (the same salt as the password hash) but a different PRF, so the stored
hash reveals nothing about the key.
"""
from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import PBKDF2_ITERATIONS
from .errors import IntegrityError

KEY_HASH_NAME = "sha256"
KEY_LENGTH_BYTES = 32  # 256 bits
IV_LENGTH_BYTES = 12  # 96 bits, recommended for AES-GCM


@dataclass(frozen=True)
class EncryptedBlob:
    """Self-contained ciphertext + IV pair, both hex encoded."""

    ciphertext: str
    iv: str

    def to_dict(self) -> dict:
        return {"ciphertext": self.ciphertext, "iv": self.iv}

    @classmethod
    def from_dict(cls, data: dict) -> "EncryptedBlob":
        try:
            return cls(ciphertext=str(data["ciphertext"]), iv=str(data["iv"]))
        except (KeyError, TypeError) as exc:
            raise IntegrityError("Malformed encrypted artifact") from exc


def derive_content_key(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """
    Derive the AES-256 content key for a document.

    Args:
        password: The document password
        salt: The document's per-lock random salt
        iterations: PBKDF2 round count

    Returns:
        32-byte key suitable for AES-256-GCM
    """
    return hashlib.pbkdf2_hmac(
        KEY_HASH_NAME,
        password.encode("utf-8"),
        salt,
        iterations,
        dklen=KEY_LENGTH_BYTES,
    )


def encrypt_with_key(key: bytes, plaintext: str) -> EncryptedBlob:
    iv = os.urandom(IV_LENGTH_BYTES)
    ciphertext = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    return EncryptedBlob(ciphertext=ciphertext.hex(), iv=iv.hex())


def decrypt_with_key(key: bytes, blob: EncryptedBlob) -> str:
    """
    Decrypt a blob produced by encrypt_with_key().

    Raises:
        IntegrityError: wrong key, tampered ciphertext or malformed hex
    """
    try:
        ciphertext = bytes.fromhex(blob.ciphertext)
        iv = bytes.fromhex(blob.iv)
    except ValueError as exc:
        raise IntegrityError("Malformed encrypted artifact") from exc
    if len(iv) != IV_LENGTH_BYTES:
        raise IntegrityError("Malformed encrypted artifact")
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
    except InvalidTag as exc:
        raise IntegrityError("Decryption failed: wrong password or corrupted data") from exc
    return plaintext.decode("utf-8")


def encrypt(plaintext: str, password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> EncryptedBlob:
    return encrypt_with_key(derive_content_key(password, salt, iterations), plaintext)


def decrypt(blob: EncryptedBlob, password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> str:
    return decrypt_with_key(derive_content_key(password, salt, iterations), blob)
