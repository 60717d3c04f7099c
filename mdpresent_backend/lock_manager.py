"""File lock manager: password-protected, encrypted markdown documents.

States per document are UNLOCKED (no record) and LOCKED (record with
``is_locked``). Transitions:

- set_lock:      UNLOCKED -> LOCKED (hash + encrypt + write artifact)
- remove_lock:   LOCKED -> UNLOCKED (drop record + artifact, plaintext untouched)
- unlock_file:   LOCKED -> LOCKED, restores decrypted content onto plaintext
- grant_temporary_access: LOCKED -> LOCKED, session-scoped read/write bypass

Reads and writes of a locked document by a granted session go through the
encrypted artifact, so the artifact is always the source of truth.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .access import SessionAccessCache
from .cipher import EncryptedBlob, decrypt_with_key, derive_content_key, encrypt_with_key
from .config import DELETE_PLAINTEXT_ON_LOCK, MIN_PASSWORD_LENGTH, PBKDF2_ITERATIONS
from .errors import (
    AuthError,
    DocumentNotFoundError,
    IntegrityError,
    LockedError,
    NotLockedError,
    StorageError,
    ValidationError,
)
from .hashing import generate_salt, hash_password, verify_password
from .lock_store import LockMetadataStore, LockRecord
from .storage import DocumentStorage, document_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileView:
    content: str
    is_locked: bool
    needs_password: bool = False

    def to_dict(self) -> dict:
        data = {"content": self.content, "isLocked": self.is_locked}
        if self.needs_password:
            data["needsPassword"] = True
        return data


class FileLockManager:
    def __init__(
        self,
        storage: DocumentStorage,
        store: LockMetadataStore,
        access: SessionAccessCache,
        iterations: int = PBKDF2_ITERATIONS,
        min_password_length: int = MIN_PASSWORD_LENGTH,
        delete_plaintext_on_lock: bool = DELETE_PLAINTEXT_ON_LOCK,
    ):
        self.storage = storage
        self.store = store
        self.access = access
        self.iterations = iterations
        self.min_password_length = min_password_length
        self.delete_plaintext_on_lock = delete_plaintext_on_lock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _record(self, filename: str) -> Optional[LockRecord]:
        self.storage.path_for(filename)  # validates the name
        record = self.store.get(filename)
        if record is None or not record.is_locked:
            return None
        return record

    def is_locked(self, filename: str) -> bool:
        return self._record(filename) is not None

    def locked_documents(self) -> list[str]:
        return sorted(name for name, record in self.store.load().items() if record.is_locked)

    def get_file(self, session_id: Optional[str], filename: str) -> FileView:
        record = self._record(filename)
        if record is None:
            return FileView(content=self.storage.read(filename), is_locked=False)

        key = self.access.key_for(session_id, filename)
        if key is None:
            return FileView(content="", is_locked=True, needs_password=True)
        return FileView(content=self._decrypt_artifact(filename, key), is_locked=True)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _check_password(self, password: object) -> str:
        if not isinstance(password, str) or len(password) < self.min_password_length:
            raise ValidationError(f"Password must be at least {self.min_password_length} characters")
        return password

    def set_lock(self, filename: str, password: str) -> LockRecord:
        password = self._check_password(password)
        if self.is_locked(filename):
            raise ValidationError(f"{filename} is already locked; remove the lock first")
        if not self.storage.exists(filename):
            raise DocumentNotFoundError(f"Document not found: {filename}")

        salt = generate_salt()
        password_hash = hash_password(password, salt, self.iterations)
        key = derive_content_key(password, salt, self.iterations)

        with self.store.update() as records:
            existing = records.get(filename)
            if existing is not None and existing.is_locked:
                raise ValidationError(f"{filename} is already locked; remove the lock first")
            plaintext = self.storage.read(filename)
            self.storage.write_encrypted(filename, encrypt_with_key(key, plaintext).to_dict())
            record = LockRecord.new(password_hash, salt, has_encrypted_file=True)
            records[filename] = record
            self.access.revoke_document(filename)

        if self.delete_plaintext_on_lock:
            self.storage.delete(filename)
        logger.info("Locked %s", filename)
        return record

    def remove_lock(self, filename: str) -> bool:
        """Drop the lock record and artifact. Idempotent; returns whether a lock existed."""
        self.storage.path_for(filename)
        with self.store.update() as records:
            record = records.pop(filename, None)
            self.storage.delete_encrypted(filename)
            self.access.revoke_document(filename)

        if record is None:
            logger.debug("remove_lock on unlocked document %s", filename)
            return False
        if not self.storage.exists(filename):
            logger.warning("Lock removed from %s but no plaintext copy exists", filename)
        logger.info("Removed lock from %s", filename)
        return True

    def _verify(self, filename: str, password: object) -> LockRecord:
        record = self._record(filename)
        if record is None:
            raise NotLockedError(f"{filename} is not locked")
        if not isinstance(password, str) or not verify_password(
            password, record.salt_bytes, record.hash_bytes, self.iterations
        ):
            logger.info("Rejected password for %s", filename)
            raise AuthError("Incorrect password")
        return record

    def grant_temporary_access(self, session_id: Optional[str], filename: str, password: str) -> None:
        if not session_id:
            raise ValidationError("Missing session")
        record = self._verify(filename, password)
        key = derive_content_key(password, record.salt_bytes, self.iterations)
        with self.store.mutex:
            # The lock may have been removed or replaced while deriving the key.
            current = self._record(filename)
            if current is None:
                raise NotLockedError(f"{filename} is not locked")
            if current.salt != record.salt:
                logger.info("Lock on %s changed during verification", filename)
                raise AuthError("Incorrect password")
            self.access.grant(session_id, filename, key)
        logger.info("Granted temporary access to %s", filename)

    def unlock_file(self, filename: str, password: str) -> None:
        """Restore decrypted content onto the plaintext document; the lock stays."""
        record = self._verify(filename, password)
        key = derive_content_key(password, record.salt_bytes, self.iterations)
        self.storage.write(filename, self._decrypt_artifact(filename, key))
        logger.info("Restored plaintext of %s", filename)

    def create_file(self, filename: str) -> str:
        """Create a document with starter content. Locked names are refused."""
        name = document_name(filename)
        with self.store.mutex:
            if self.is_locked(name):
                raise LockedError(f"{name} is locked")
            return self.storage.create(name)

    def save_file(self, session_id: Optional[str], filename: str, content: str) -> None:
        with self.store.mutex:
            record = self._record(filename)
            if record is None:
                self.storage.write(filename, content)
                return

            key = self.access.key_for(session_id, filename)
            if key is None:
                raise LockedError(f"{filename} is locked")
            self.storage.write_encrypted(filename, encrypt_with_key(key, content).to_dict())
            if not self.delete_plaintext_on_lock:
                self.storage.write(filename, content)
        logger.info("Saved locked document %s (re-encrypted)", filename)

    # ------------------------------------------------------------------

    def _decrypt_artifact(self, filename: str, key: bytes) -> str:
        payload = self.storage.read_encrypted(filename)
        try:
            return decrypt_with_key(key, EncryptedBlob.from_dict(payload))
        except IntegrityError as exc:
            # The password was already verified, so this is a damaged artifact.
            logger.error("Encrypted artifact for %s failed integrity check", filename)
            raise StorageError(f"Encrypted artifact for {filename} is corrupt") from exc
