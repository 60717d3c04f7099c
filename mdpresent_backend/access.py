"""
Session access cache - which sessions proved a password for which documents.

Lives only in process memory. Each grant keeps the derived content key so a
verified session can decrypt on read without re-entering the password.
Grants expire after ``ttl_seconds``; a ttl of 0 disables expiry.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional


@dataclass
class AccessGrant:
    key: bytes
    granted_at: float


@dataclass
class SessionAccessCache:
    ttl_seconds: float = 0.0
    clock: Callable[[], float] = time.time
    _grants: dict[str, dict[str, AccessGrant]] = field(default_factory=dict, repr=False)
    _mutex: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _expired(self, grant: AccessGrant, now: float) -> bool:
        return bool(self.ttl_seconds) and (now - grant.granted_at) > self.ttl_seconds

    def grant(self, session_id: str, filename: str, key: bytes) -> None:
        with self._mutex:
            self._grants.setdefault(session_id, {})[filename] = AccessGrant(key=key, granted_at=self.clock())

    def _lookup(self, session_id: str, filename: str) -> Optional[AccessGrant]:
        with self._mutex:
            documents = self._grants.get(session_id)
            if not documents:
                return None
            grant = documents.get(filename)
            if grant is None:
                return None
            if self._expired(grant, self.clock()):
                del documents[filename]
                if not documents:
                    del self._grants[session_id]
                return None
            return grant

    def has_access(self, session_id: Optional[str], filename: str) -> bool:
        if not session_id:
            return False
        return self._lookup(session_id, filename) is not None

    def key_for(self, session_id: Optional[str], filename: str) -> Optional[bytes]:
        if not session_id:
            return None
        grant = self._lookup(session_id, filename)
        return grant.key if grant else None

    def documents_for(self, session_id: str) -> set[str]:
        with self._mutex:
            return set(self._grants.get(session_id, {}))

    def revoke_document(self, filename: str) -> int:
        """Drop every session's grant for ``filename``. Returns how many were dropped."""
        dropped = 0
        with self._mutex:
            for session_id in list(self._grants):
                documents = self._grants[session_id]
                if documents.pop(filename, None) is not None:
                    dropped += 1
                if not documents:
                    del self._grants[session_id]
        return dropped

    def purge_expired(self) -> int:
        if not self.ttl_seconds:
            return 0
        now = self.clock()
        purged = 0
        with self._mutex:
            for session_id in list(self._grants):
                documents = self._grants[session_id]
                for filename in [f for f, g in documents.items() if self._expired(g, now)]:
                    del documents[filename]
                    purged += 1
                if not documents:
                    del self._grants[session_id]
        return purged
