from __future__ import annotations

import os
from pathlib import Path


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Directory holding the presentation markdown files.
# Default: ./.preset relative to the working directory, like the original tool.
# Override with env var MDPRESENT_STORAGE_ROOT.
_root_raw = os.environ.get("MDPRESENT_STORAGE_ROOT")
if _root_raw and _root_raw.strip():
    STORAGE_ROOT = Path(_root_raw)
else:
    STORAGE_ROOT = Path.cwd() / ".preset"
STORAGE_ROOT = STORAGE_ROOT.resolve()

PACKAGE_DIR = Path(__file__).resolve().parent

_template_raw = os.environ.get("MDPRESENT_TEMPLATE")
if _template_raw and _template_raw.strip():
    TEMPLATE_PATH = Path(_template_raw).resolve()
else:
    TEMPLATE_PATH = PACKAGE_DIR / "templates" / "template.html"

LOG_DIR = Path(os.environ.get("MDPRESENT_LOG_DIR", "logs")).resolve()
DEBUG = _env_flag("MDPRESENT_DEBUG")

DEFAULT_PORT = int(os.environ.get("PORT", "8090"))

# Password hashing / content encryption.
PBKDF2_ITERATIONS = int(os.environ.get("MDPRESENT_PBKDF2_ITERATIONS", "100000"))
MIN_PASSWORD_LENGTH = int(os.environ.get("MDPRESENT_MIN_PASSWORD_LENGTH", "4"))

# Keep the plaintext next to the encrypted artifact after locking (original behaviour).
DELETE_PLAINTEXT_ON_LOCK = _env_flag("MDPRESENT_DELETE_PLAINTEXT_ON_LOCK")

# Temporary access grants expire with the session cookie.
ACCESS_TTL_HOURS = float(os.environ.get("MDPRESENT_ACCESS_TTL_HOURS", "24"))
ACCESS_PURGE_INTERVAL_SECONDS = int(os.environ.get("MDPRESENT_ACCESS_PURGE_INTERVAL_SECONDS", "600"))

SESSION_COOKIE_NAME = "sessionId"
SESSION_COOKIE_MAX_AGE = 24 * 60 * 60

RELOAD_POLL_SECONDS = float(os.environ.get("MDPRESENT_RELOAD_POLL_SECONDS", "1.0"))

MAX_UPLOAD_BYTES = int(os.environ.get("MDPRESENT_MAX_UPLOAD_BYTES", str(5 * 1024 * 1024)))  # 5MB

# Reserved names inside STORAGE_ROOT.
LOCKS_FILENAME = ".file-locks.json"
ENCRYPTED_SUFFIX = ".encrypted"
MARKDOWN_EXTS = {".md"}
NEW_DOCUMENT_CONTENT = "# New Presentation\n\nStart writing here."
