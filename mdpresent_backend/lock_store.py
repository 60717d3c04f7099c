from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from .errors import StorageError
from .storage import atomic_write_text

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class LockRecord:
    password_hash: str
    salt: str
    created_at: str
    is_locked: bool = True
    has_encrypted_file: bool = False

    @classmethod
    def new(cls, password_hash: bytes, salt: bytes, has_encrypted_file: bool) -> "LockRecord":
        return cls(
            password_hash=password_hash.hex(),
            salt=salt.hex(),
            created_at=_utc_now_iso(),
            has_encrypted_file=has_encrypted_file,
        )

    @property
    def salt_bytes(self) -> bytes:
        return bytes.fromhex(self.salt)

    @property
    def hash_bytes(self) -> bytes:
        return bytes.fromhex(self.password_hash)

    def to_dict(self) -> dict:
        return {
            "isLocked": self.is_locked,
            "passwordHash": self.password_hash,
            "salt": self.salt,
            "createdAt": self.created_at,
            "hasEncryptedFile": self.has_encrypted_file,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LockRecord":
        return cls(
            password_hash=str(data["passwordHash"]),
            salt=str(data["salt"]),
            created_at=str(data.get("createdAt", "")),
            is_locked=bool(data.get("isLocked", True)),
            has_encrypted_file=bool(data.get("hasEncryptedFile", False)),
        )


class LockMetadataStore:
    """Whole-file JSON store mapping document filename -> LockRecord.

    Every mutation is a full read-modify-write. ``update()`` holds the store
    mutex across the cycle so writers for different documents never lose
    each other's changes.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.mutex = threading.RLock()

    def load(self) -> dict[str, LockRecord]:
        with self.mutex:
            try:
                raw = self.path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return {}
            except OSError:
                logger.warning("Lock metadata at %s is unreadable; treating as empty", self.path, exc_info=True)
                return {}

            try:
                data = json.loads(raw)
                if not isinstance(data, dict):
                    raise ValueError("top-level value is not an object")
                return {str(name): LockRecord.from_dict(rec) for name, rec in data.items()}
            except (ValueError, KeyError, TypeError, AttributeError):
                logger.warning("Lock metadata at %s is corrupt; treating as empty", self.path, exc_info=True)
                return {}

    def save(self, records: dict[str, LockRecord]) -> None:
        payload = {name: rec.to_dict() for name, rec in sorted(records.items())}
        with self.mutex:
            try:
                atomic_write_text(self.path, json.dumps(payload, indent=2, sort_keys=True))
            except OSError as exc:
                raise StorageError("Failed to save lock metadata") from exc

    def get(self, filename: str) -> LockRecord | None:
        return self.load().get(filename)

    @contextmanager
    def update(self) -> Iterator[dict[str, LockRecord]]:
        """Load, yield the mapping for in-place edits, then save it.

        Nothing is saved if the body raises.
        """
        with self.mutex:
            records = self.load()
            yield records
            self.save(records)
