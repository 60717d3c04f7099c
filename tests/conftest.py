import os
import tempfile

# Keep module-level config (and the default app in server.py) away from the working tree.
os.environ.setdefault("MDPRESENT_STORAGE_ROOT", tempfile.mkdtemp(prefix="mdpresent-preset-"))
os.environ.setdefault("MDPRESENT_LOG_DIR", tempfile.mkdtemp(prefix="mdpresent-logs-"))
os.environ.setdefault("MDPRESENT_RELOAD_POLL_SECONDS", "0.2")

import pytest
from fastapi.testclient import TestClient

from mdpresent_backend.access import SessionAccessCache
from mdpresent_backend.lock_manager import FileLockManager
from mdpresent_backend.lock_store import LockMetadataStore
from mdpresent_backend.storage import DocumentStorage

# Low round count keeps the suite fast; production uses >= 100,000.
TEST_ITERATIONS = 1000

SESSION_A = "a" * 64
SESSION_B = "b" * 64


@pytest.fixture
def storage(tmp_path):
    s = DocumentStorage(tmp_path / "preset")
    s.ensure_root()
    return s


@pytest.fixture
def store(storage):
    return LockMetadataStore(storage.root / ".file-locks.json")


@pytest.fixture
def access():
    return SessionAccessCache()


@pytest.fixture
def manager(storage, store, access):
    return FileLockManager(storage, store, access, iterations=TEST_ITERATIONS)


@pytest.fixture
def app(tmp_path):
    from server import create_app

    return create_app(storage_root=tmp_path / "preset", iterations=TEST_ITERATIONS)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def other_client(app):
    """A second browser: same server, separate session cookie."""
    return TestClient(app)
