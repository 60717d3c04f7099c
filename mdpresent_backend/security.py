from __future__ import annotations

import re
import secrets
from pathlib import Path

from .config import ENCRYPTED_SUFFIX, LOCKS_FILENAME, MARKDOWN_EXTS


_SESSION_ID_RE = re.compile(r"^[0-9a-f]{64}$")


def generate_session_id() -> str:
    """Return a fresh session id: 32 random bytes, hex encoded."""
    return secrets.token_hex(32)


def normalize_session_id(session_id: str) -> str:
    """Validate and normalize a session id taken from a cookie.

    Session ids are capability tokens for temporary access grants, so only
    accept exactly what generate_session_id() produces.
    """
    if not isinstance(session_id, str):
        raise ValueError("Invalid session id")
    session_id = session_id.strip().lower()
    if not _SESSION_ID_RE.match(session_id):
        raise ValueError("Invalid session id")
    return session_id


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name:
        return False
    if name in (".", ".."):
        return False
    return True


def is_document_filename(name: str) -> bool:
    """A user-addressable markdown document: safe basename, .md, not reserved."""
    if not is_safe_basename(name):
        return False
    if name == LOCKS_FILENAME or name.endswith(ENCRYPTED_SUFFIX):
        return False
    return Path(name).suffix.lower() in MARKDOWN_EXTS


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    This defends against path traversal on user-controlled document names.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise ValueError("Path traversal attempt")
    return resolved
