"""Tests for FileLockManager: the lock / unlock / temporary access state machine."""

import threading

import pytest

from mdpresent_backend import lock_manager
from mdpresent_backend.access import SessionAccessCache
from mdpresent_backend.errors import (
    AuthError,
    DocumentNotFoundError,
    LockedError,
    NotLockedError,
    StorageError,
    ValidationError,
)
from mdpresent_backend.lock_manager import FileLockManager, FileView

from conftest import SESSION_A, SESSION_B, TEST_ITERATIONS

CONTENT = "# Quarterly review\n\n## Numbers\n\nConfidential."


@pytest.fixture
def demo(storage):
    storage.write("demo.md", CONTENT)
    return "demo.md"


# ==============================================================================
# set_lock
# ==============================================================================

def test_short_password_rejected(manager, demo):
    with pytest.raises(ValidationError):
        manager.set_lock(demo, "abc")
    assert not manager.is_locked(demo)


def test_four_char_password_accepted(manager, demo):
    manager.set_lock(demo, "abcd")
    assert manager.is_locked(demo)


def test_set_lock_writes_record_and_artifact(manager, storage, store, demo):
    record = manager.set_lock(demo, "pass1234")

    assert storage.has_encrypted(demo)
    stored = store.get(demo)
    assert stored.is_locked and stored.has_encrypted_file
    assert stored.password_hash == record.password_hash
    assert len(stored.salt_bytes) == 32

    artifact = storage.read_encrypted(demo)
    assert set(artifact) == {"ciphertext", "iv"}
    assert CONTENT.encode("utf-8").hex() not in artifact["ciphertext"]


def test_each_lock_gets_a_fresh_salt(manager, storage, demo):
    storage.write("other.md", CONTENT)
    first = manager.set_lock(demo, "pass1234")
    second = manager.set_lock("other.md", "pass1234")
    assert first.salt != second.salt
    assert first.password_hash != second.password_hash


def test_set_lock_requires_existing_document(manager):
    with pytest.raises(DocumentNotFoundError):
        manager.set_lock("ghost.md", "pass1234")


def test_set_lock_twice_is_rejected(manager, demo):
    manager.set_lock(demo, "pass1234")
    with pytest.raises(ValidationError, match="already locked"):
        manager.set_lock(demo, "another1")


def test_invalid_filename_rejected(manager):
    with pytest.raises(ValidationError):
        manager.set_lock("../escape.md", "pass1234")
    with pytest.raises(ValidationError):
        manager.is_locked("notes.txt")


def test_concurrent_locks_on_distinct_documents(manager, storage, store):
    names = ["a.md", "b.md", "c.md", "d.md"]
    for name in names:
        storage.write(name, f"# {name}")

    threads = [threading.Thread(target=manager.set_lock, args=(n, "pass1234")) for n in names]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(store.load()) == names


# ==============================================================================
# get_file / grant_temporary_access
# ==============================================================================

def test_get_unlocked_file(manager, demo):
    assert manager.get_file(SESSION_A, demo) == FileView(content=CONTENT, is_locked=False)


def test_locked_file_needs_password(manager, demo):
    manager.set_lock(demo, "pass1234")
    view = manager.get_file(SESSION_A, demo)
    assert view.to_dict() == {"content": "", "isLocked": True, "needsPassword": True}


def test_grant_allows_reading(manager, demo):
    manager.set_lock(demo, "pass1234")
    manager.grant_temporary_access(SESSION_A, demo, "pass1234")

    view = manager.get_file(SESSION_A, demo)
    assert not view.needs_password
    assert view.content == CONTENT
    assert view.to_dict() == {"content": CONTENT, "isLocked": True}

    # Another session still needs the password.
    assert manager.get_file(SESSION_B, demo).needs_password


def test_grant_with_wrong_password(manager, access, demo):
    manager.set_lock(demo, "pass1234")
    with pytest.raises(AuthError):
        manager.grant_temporary_access(SESSION_A, demo, "nope-nope")
    assert not access.has_access(SESSION_A, demo)


def test_grant_on_unlocked_document(manager, demo):
    with pytest.raises(NotLockedError):
        manager.grant_temporary_access(SESSION_A, demo, "pass1234")


def test_grant_requires_session(manager, demo):
    manager.set_lock(demo, "pass1234")
    with pytest.raises(ValidationError):
        manager.grant_temporary_access(None, demo, "pass1234")


def test_read_decrypts_artifact_not_plaintext(manager, storage, demo):
    manager.set_lock(demo, "pass1234")
    manager.grant_temporary_access(SESSION_A, demo, "pass1234")

    # Out-of-band plaintext edits do not leak through a locked read.
    storage.write(demo, "tampered")
    assert manager.get_file(SESSION_A, demo).content == CONTENT


def test_corrupt_artifact_is_a_storage_error(manager, storage, demo):
    manager.set_lock(demo, "pass1234")
    manager.grant_temporary_access(SESSION_A, demo, "pass1234")
    payload = storage.read_encrypted(demo)
    flipped = int(payload["ciphertext"][:2], 16) ^ 0x01
    payload["ciphertext"] = f"{flipped:02x}" + payload["ciphertext"][2:]
    storage.write_encrypted(demo, payload)

    with pytest.raises(StorageError):
        manager.get_file(SESSION_A, demo)


# ==============================================================================
# save_file
# ==============================================================================

def test_save_unlocked(manager, storage, demo):
    manager.save_file(SESSION_A, demo, "new body")
    assert storage.read(demo) == "new body"


def test_save_locked_without_access_is_rejected(manager, storage, demo):
    manager.set_lock(demo, "pass1234")
    artifact_before = storage.read_encrypted(demo)

    with pytest.raises(LockedError):
        manager.save_file(SESSION_A, demo, "overwrite attempt")

    assert storage.read(demo) == CONTENT
    assert storage.read_encrypted(demo) == artifact_before


def test_save_with_access_re_encrypts(manager, storage, demo):
    manager.set_lock(demo, "pass1234")
    manager.grant_temporary_access(SESSION_A, demo, "pass1234")
    manager.save_file(SESSION_A, demo, "edited while locked")

    assert storage.read(demo) == "edited while locked"
    assert manager.is_locked(demo)

    # A fresh session sees the edit after proving the password.
    manager.grant_temporary_access(SESSION_B, demo, "pass1234")
    assert manager.get_file(SESSION_B, demo).content == "edited while locked"


# ==============================================================================
# unlock_file / remove_lock
# ==============================================================================

def test_unlock_file_restores_plaintext_and_keeps_lock(manager, storage, demo):
    manager.set_lock(demo, "pass1234")
    storage.write(demo, "")

    manager.unlock_file(demo, "pass1234")

    assert storage.read(demo) == CONTENT
    assert manager.is_locked(demo)
    assert storage.has_encrypted(demo)


def test_unlock_file_wrong_password(manager, storage, demo):
    manager.set_lock(demo, "pass1234")
    storage.write(demo, "")
    with pytest.raises(AuthError):
        manager.unlock_file(demo, "wrong-pass")
    assert storage.read(demo) == ""


def test_unlock_file_not_locked(manager, demo):
    with pytest.raises(NotLockedError):
        manager.unlock_file(demo, "pass1234")


def test_remove_lock(manager, storage, store, access, demo):
    manager.set_lock(demo, "pass1234")
    manager.grant_temporary_access(SESSION_A, demo, "pass1234")

    assert manager.remove_lock(demo) is True

    assert not manager.is_locked(demo)
    assert store.get(demo) is None
    assert not storage.has_encrypted(demo)
    assert not access.has_access(SESSION_A, demo)
    assert storage.read(demo) == CONTENT


def test_remove_lock_never_locked_is_noop(manager, demo):
    assert manager.remove_lock(demo) is False
    assert manager.remove_lock("never-existed.md") is False


def test_change_password_is_remove_then_set(manager, demo):
    manager.set_lock(demo, "old-pass")
    manager.remove_lock(demo)
    manager.set_lock(demo, "new-pass")

    with pytest.raises(AuthError):
        manager.grant_temporary_access(SESSION_A, demo, "old-pass")
    manager.grant_temporary_access(SESSION_A, demo, "new-pass")


def test_relock_revokes_existing_grants(manager, demo):
    manager.set_lock(demo, "pass1234")
    manager.grant_temporary_access(SESSION_A, demo, "pass1234")
    manager.remove_lock(demo)
    manager.set_lock(demo, "pass5678")
    assert manager.get_file(SESSION_A, demo).needs_password


def test_locked_documents(manager, storage, demo):
    storage.write("open.md", "x")
    manager.set_lock(demo, "pass1234")
    assert manager.locked_documents() == [demo]


# ==============================================================================
# Plaintext deletion on lock
# ==============================================================================

@pytest.fixture
def strict_manager(storage, store):
    return FileLockManager(
        storage, store, SessionAccessCache(), iterations=TEST_ITERATIONS, delete_plaintext_on_lock=True
    )


def test_lock_deletes_plaintext_when_enabled(strict_manager, storage, demo):
    strict_manager.set_lock(demo, "pass1234")
    assert not storage.exists(demo)
    assert strict_manager.is_locked(demo)

    strict_manager.grant_temporary_access(SESSION_A, demo, "pass1234")
    assert strict_manager.get_file(SESSION_A, demo).content == CONTENT


def test_save_does_not_recreate_plaintext_when_deletion_enabled(strict_manager, storage, demo):
    strict_manager.set_lock(demo, "pass1234")
    strict_manager.grant_temporary_access(SESSION_A, demo, "pass1234")
    strict_manager.save_file(SESSION_A, demo, "v2")

    assert not storage.exists(demo)
    assert strict_manager.get_file(SESSION_A, demo).content == "v2"


def test_corrupt_metadata_means_unlocked(manager, storage, store, demo):
    manager.set_lock(demo, "pass1234")
    store.path.write_text("{broken", encoding="utf-8")
    assert not manager.is_locked(demo)
    assert manager.get_file(SESSION_A, demo).content == CONTENT


# ==============================================================================
# Lock changes while a grant is being verified
# ==============================================================================

def test_grant_fails_if_lock_replaced_during_key_derivation(manager, access, demo, monkeypatch):
    manager.set_lock(demo, "pass1234")
    real_derive = lock_manager.derive_content_key
    relocked = []

    def derive_then_relock(password, salt, iterations):
        key = real_derive(password, salt, iterations)
        if not relocked:
            relocked.append(True)
            manager.remove_lock(demo)
            manager.set_lock(demo, "pass5678")
        return key

    monkeypatch.setattr(lock_manager, "derive_content_key", derive_then_relock)
    with pytest.raises(AuthError):
        manager.grant_temporary_access(SESSION_A, demo, "pass1234")

    assert not access.has_access(SESSION_A, demo)
    assert manager.get_file(SESSION_A, demo).needs_password


def test_grant_fails_if_lock_removed_during_key_derivation(manager, access, demo, monkeypatch):
    manager.set_lock(demo, "pass1234")
    real_derive = lock_manager.derive_content_key

    def derive_then_unlock(password, salt, iterations):
        key = real_derive(password, salt, iterations)
        manager.remove_lock(demo)
        return key

    monkeypatch.setattr(lock_manager, "derive_content_key", derive_then_unlock)
    with pytest.raises(NotLockedError):
        manager.grant_temporary_access(SESSION_A, demo, "pass1234")
    assert not access.has_access(SESSION_A, demo)


# ==============================================================================
# create_file
# ==============================================================================

def test_create_file(manager, storage):
    assert manager.create_file("talk") == "talk.md"
    assert storage.exists("talk.md")


def test_create_file_refuses_locked_name(strict_manager, storage, demo):
    strict_manager.set_lock(demo, "pass1234")
    with pytest.raises(LockedError):
        strict_manager.create_file("demo")
    assert not storage.exists(demo)
