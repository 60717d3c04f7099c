"""Password hashing for locked documents (PBKDF2-HMAC-SHA512)."""
from __future__ import annotations

import hashlib
import hmac
import os

from .config import PBKDF2_ITERATIONS

HASH_NAME = "sha512"
HASH_LENGTH_BYTES = 64
SALT_LENGTH_BYTES = 32


def generate_salt(length: int = SALT_LENGTH_BYTES) -> bytes:
    """Return a cryptographically secure random salt. Call once per lock."""
    return os.urandom(length)


def hash_password(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """
    Derive a verifiable 64-byte hash from a password and salt.

    Deterministic for a fixed (password, salt, iterations); the digest size
    does not depend on the password length.
    """
    if isinstance(password, str):
        password = password.encode("utf-8")
    return hashlib.pbkdf2_hmac(HASH_NAME, password, salt, iterations, dklen=HASH_LENGTH_BYTES)


def verify_password(password: str, salt: bytes, expected: bytes, iterations: int = PBKDF2_ITERATIONS) -> bool:
    return hmac.compare_digest(hash_password(password, salt, iterations), expected)
