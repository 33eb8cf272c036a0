import json
import os
import threading

import pytest

from cubed_sync import credentials as credentials_mod
from cubed_sync.credentials import Credentials, CredentialStore
from cubed_sync.errors import StoreWriteError


def test_save_then_load_round_trip(tmp_path):
    store = CredentialStore(str(tmp_path / "credentials.enc"))
    creds = Credentials("alice", "s3cr3t pässwörd;=\"")
    store.save(creds)
    assert store.load() == creds


def test_save_overwrites_previous(tmp_path):
    store = CredentialStore(str(tmp_path / "credentials.enc"))
    store.save(Credentials("alice", "one"))
    store.save(Credentials("bob", "two"))
    assert store.load() == Credentials("bob", "two")
    leftovers = [p for p in os.listdir(tmp_path) if p != "credentials.enc"]
    assert leftovers == []


def test_file_does_not_contain_plaintext(tmp_path):
    path = tmp_path / "credentials.enc"
    CredentialStore(str(path)).save(Credentials("alice", "hunter2"))
    raw = path.read_text()
    assert "hunter2" not in raw
    assert "alice" not in raw
    assert oct(os.stat(path).st_mode & 0o777) == oct(0o600)


def test_load_missing_file_returns_none(tmp_path):
    assert CredentialStore(str(tmp_path / "nope" / "credentials.enc")).load() is None


@pytest.mark.parametrize("content", ["", "garbage", "[]", '{"version": 99}', '{"version": 1, "salt": "zz"}'])
def test_load_corrupt_file_returns_none(tmp_path, content):
    path = tmp_path / "credentials.enc"
    path.write_text(content)
    assert CredentialStore(str(path)).load() is None


def test_load_tampered_ciphertext_returns_none(tmp_path):
    path = tmp_path / "credentials.enc"
    CredentialStore(str(path)).save(Credentials("alice", "secret"))
    blob = json.loads(path.read_text())
    flipped = "0" if blob["ciphertext"][0] != "0" else "1"
    blob["ciphertext"] = flipped + blob["ciphertext"][1:]
    path.write_text(json.dumps(blob))
    assert CredentialStore(str(path)).load() is None


def test_load_with_other_machine_key_returns_none(tmp_path, monkeypatch):
    path = tmp_path / "credentials.enc"
    CredentialStore(str(path)).save(Credentials("alice", "secret"))
    monkeypatch.setattr(credentials_mod.socket, "gethostname", lambda: "some-other-host")
    assert CredentialStore(str(path)).load() is None


def test_save_failure_raises_store_write_error(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")
    store = CredentialStore(str(blocker / "credentials.enc"))
    with pytest.raises(StoreWriteError):
        store.save(Credentials("alice", "secret"))


def test_keyring_backed_key(tmp_path, monkeypatch):
    vault = {}
    monkeypatch.setattr(credentials_mod.keyring, "get_password", lambda service, name: vault.get((service, name)))
    monkeypatch.setattr(credentials_mod.keyring, "set_password",
                        lambda service, name, value: vault.__setitem__((service, name), value))
    path = tmp_path / "credentials.enc"
    store = CredentialStore(str(path), use_keyring=True, keyring_service="cubed-test")
    store.save(Credentials("alice", "secret"))
    assert ("cubed-test", credentials_mod.KEYRING_ENTRY) in vault
    assert json.loads(path.read_text())["key"] == "keyring"
    assert store.load() == Credentials("alice", "secret")
    vault.clear()
    assert store.load() is None


def test_clear(tmp_path):
    store = CredentialStore(str(tmp_path / "credentials.enc"))
    assert store.clear() is False
    store.save(Credentials("alice", "secret"))
    assert store.clear() is True
    assert store.load() is None


def test_password_not_in_repr():
    assert "secret" not in repr(Credentials("alice", "secret"))


def test_concurrent_saves_are_serialized(tmp_path, monkeypatch):
    path = tmp_path / "credentials.enc"
    store = CredentialStore(str(path))
    writing = []
    overlaps = []
    original = store._write_atomic

    def tracked(text):
        writing.append(1)
        if len(writing) > 1:
            overlaps.append(len(writing))
        try:
            threading.Event().wait(0.005)
            original(text)
        finally:
            writing.pop()
    monkeypatch.setattr(store, "_write_atomic", tracked)
    saved = [Credentials(f"user{i}", f"pass{i}") for i in range(8)]
    threads = [threading.Thread(target=store.save, args=(c,)) for c in saved]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    assert overlaps == []
    assert store.load() in saved
    assert [p for p in os.listdir(tmp_path) if p.endswith(".tmp")] == []


def test_failed_replace_keeps_old_file_and_removes_temp(tmp_path, monkeypatch):
    path = tmp_path / "credentials.enc"
    store = CredentialStore(str(path))
    store.save(Credentials("alice", "old"))
    before = path.read_bytes()

    def broken_replace(src, dst):
        raise OSError("disk full")
    monkeypatch.setattr(credentials_mod.os, "replace", broken_replace)
    with pytest.raises(StoreWriteError):
        store.save(Credentials("alice", "new"))
    monkeypatch.undo()
    assert path.read_bytes() == before
    assert store.load() == Credentials("alice", "old")
    assert os.listdir(tmp_path) == ["credentials.enc"]
