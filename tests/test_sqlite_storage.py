from __future__ import annotations

import os

import pytest

from buildbox.conversation import ConversationLog, EntryKind, SQLiteStorage, history_key
from buildbox.conversation.storage import STATE_DIR_ENV


def test_sqlite_storage_roundtrip(tmp_path) -> None:
    db_path = tmp_path / "buildbox.sqlite"
    with SQLiteStorage(db_path) as storage:
        assert storage.get("missing") is None
        storage.set("alpha", "1")
        storage.set("alpha", "2")
        storage.set("beta", "3")
        assert storage.get("alpha") == "2"
        storage.delete("beta")
        storage.delete("never-set")
        assert storage.keys() == ["alpha"]

    with SQLiteStorage(db_path) as reopened:
        assert reopened.get("alpha") == "2"


def test_conversation_survives_reopen(tmp_path) -> None:
    db_path = tmp_path / "data" / "buildbox.sqlite"
    with SQLiteStorage(db_path) as storage:
        log = ConversationLog(storage, "persisted")
        log.append(EntryKind.USER, "Build a thing")
        log.append(EntryKind.PLAN, {"goal": "Build a thing", "files": []})

    with SQLiteStorage(db_path) as storage:
        assert storage.get(history_key("persisted")) is not None
        restored = ConversationLog(storage, "persisted")
        assert [entry.kind for entry in restored.all()] == [EntryKind.USER, EntryKind.PLAN]
        assert restored.latest_pending_plan() is not None


def test_from_config_resolves_relative_paths(tmp_path) -> None:
    config = {"paths": {"db_path": "state/session.sqlite"}}
    with SQLiteStorage.from_config(config, base_dir=tmp_path) as storage:
        assert storage.db_path == (tmp_path / "state" / "session.sqlite").resolve()

    with SQLiteStorage.from_config({"paths": {"data": "cache"}}, base_dir=tmp_path) as storage:
        assert storage.db_path.name == "buildbox.sqlite"
        assert storage.db_path.parent == (tmp_path / "cache").resolve()


def test_closed_storage_rejects_access(tmp_path) -> None:
    storage = SQLiteStorage(tmp_path / "closed.sqlite")
    storage.close()
    with pytest.raises(RuntimeError):
        storage.get("anything")


skip_if_root = pytest.mark.skipif(
    hasattr(os, "geteuid") and os.geteuid() == 0, reason="root ignores file permissions"
)


@skip_if_root
def test_sqlite_storage_falls_back_when_db_path_readonly(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(STATE_DIR_ENV, str(tmp_path / "state"))
    readonly_dir = tmp_path / "readonly"
    readonly_dir.mkdir()
    db_path = readonly_dir / "buildbox.sqlite"
    db_path.write_text("", encoding="utf-8")
    db_path.chmod(0o444)

    with SQLiteStorage(db_path) as storage:
        fallback_path = storage.db_path
        storage.set("k", "v")

    with SQLiteStorage(db_path) as storage_again:
        assert storage_again.db_path == fallback_path
        assert storage_again.get("k") == "v"

    assert fallback_path.is_relative_to(tmp_path / "state")
    assert os.access(fallback_path, os.W_OK)


@skip_if_root
def test_readonly_history_is_imported_into_fallback(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv(STATE_DIR_ENV, str(tmp_path / "state"))
    db_path = tmp_path / "shared" / "buildbox.sqlite"
    with SQLiteStorage(db_path) as original:
        ConversationLog(original, "team").append(EntryKind.USER, "Keep me")
    db_path.chmod(0o444)
    db_path.parent.chmod(0o555)

    try:
        with SQLiteStorage(db_path) as storage:
            assert storage.db_path != db_path.resolve()
            entries = ConversationLog(storage, "team").all()
            assert [entry.text for entry in entries] == ["Keep me"]
    finally:
        db_path.parent.chmod(0o755)
