"""Error taxonomy for the file-lock subsystem.

Every error carries the HTTP status it maps to, so route handlers can let
them propagate and the app-level exception handler turns them into JSON.
"""
from __future__ import annotations


class LockError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LockError):
    """Malformed request or password too short."""

    status_code = 400


class AuthError(LockError):
    """Wrong password."""

    status_code = 401


class NotLockedError(LockError):
    status_code = 400


class LockedError(LockError):
    """Write attempted on a locked document without access."""

    status_code = 403


class DocumentNotFoundError(LockError):
    status_code = 404


class StorageError(LockError):
    status_code = 500


class IntegrityError(LockError):
    """Ciphertext failed authentication (wrong key or tampered blob)."""

    status_code = 500
