from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from .config import ENCRYPTED_SUFFIX, NEW_DOCUMENT_CONTENT
from .errors import DocumentNotFoundError, StorageError, ValidationError
from .security import is_document_filename, safe_join

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to a temp file beside ``path`` and rename it into place.

    Readers see either the old file or the new one, never a partial write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def document_name(filename: str) -> str:
    """Strip ``filename`` and append ``.md`` when it has no markdown extension."""
    name = (filename or "").strip()
    if not name.lower().endswith(".md"):
        name += ".md"
    return name


@dataclass(frozen=True)
class DocumentStorage:
    """The preset directory: one flat folder of markdown documents.

    Encrypted artifacts live beside their document as ``<name>.encrypted``.
    """

    root: Path

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, filename: str) -> Path:
        if not is_document_filename(filename):
            raise ValidationError(f"Invalid document name: {filename!r}")
        try:
            return safe_join(self.root, filename)
        except ValueError:
            raise ValidationError(f"Invalid document name: {filename!r}")

    def encrypted_path_for(self, filename: str) -> Path:
        path = self.path_for(filename)
        return path.with_name(path.name + ENCRYPTED_SUFFIX)

    def exists(self, filename: str) -> bool:
        return self.path_for(filename).is_file()

    def list_documents(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(
            child.name for child in self.root.iterdir() if child.is_file() and is_document_filename(child.name)
        )

    def read(self, filename: str) -> str:
        path = self.path_for(filename)
        if not path.is_file():
            raise DocumentNotFoundError(f"Document not found: {filename}")
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to read {filename}") from exc

    def write(self, filename: str, content: str) -> None:
        path = self.path_for(filename)
        self.ensure_root()
        try:
            path.write_text(content or "", encoding="utf-8")
        except OSError as exc:
            raise StorageError(f"Failed to write {filename}") from exc

    def delete(self, filename: str) -> bool:
        path = self.path_for(filename)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Failed to delete {filename}") from exc
        return True

    def create(self, filename: str) -> str:
        """Create a new document with starter content; existing files are left alone.

        Returns the normalized filename (``.md`` appended when missing).
        """
        name = document_name(filename)
        path = self.path_for(name)
        if not path.exists():
            self.write(name, NEW_DOCUMENT_CONTENT)
            logger.info("Created: %s", name)
        return name

    # ------------------------------------------------------------------
    # Encrypted artifacts
    # ------------------------------------------------------------------

    def has_encrypted(self, filename: str) -> bool:
        return self.encrypted_path_for(filename).is_file()

    def read_encrypted(self, filename: str) -> dict:
        path = self.encrypted_path_for(filename)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise StorageError(f"Encrypted artifact missing for {filename}")
        except (OSError, ValueError) as exc:
            raise StorageError(f"Encrypted artifact unreadable for {filename}") from exc

    def write_encrypted(self, filename: str, payload: dict) -> None:
        path = self.encrypted_path_for(filename)
        try:
            atomic_write_text(path, json.dumps(payload, indent=2, sort_keys=True))
        except OSError as exc:
            raise StorageError(f"Failed to write encrypted artifact for {filename}") from exc

    def delete_encrypted(self, filename: str) -> bool:
        path = self.encrypted_path_for(filename)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Failed to delete encrypted artifact for {filename}") from exc
        return True

    def snapshot(self) -> dict[str, float]:
        """Map every file under root to its mtime; used to detect changes."""
        if not self.root.exists():
            return {}
        state: dict[str, float] = {}
        for child in self.root.iterdir():
            if not child.is_file() or child.name.endswith(".tmp"):
                continue
            try:
                state[child.name] = child.stat().st_mtime
            except OSError:
                continue
        return state
