from __future__ import annotations

import pytest

from buildbox.planning import (
    ActionLevel,
    ExecutionError,
    FileAction,
    FileChange,
    Plan,
    PlanExecutor,
    execute_plan,
)
from buildbox.workspace.files import FileRecord, FileStore


def _change(filename: str, action: str, content: str | None = None) -> FileChange:
    return FileChange(filename=filename, action=FileAction(action), content=content)


def _plan(*changes: FileChange) -> Plan:
    return Plan(goal="Test plan", files=changes)


def test_empty_plan_leaves_store_and_logs_one_success(sample_store: FileStore) -> None:
    result = execute_plan(_plan(), sample_store)

    assert result.store == sample_store
    assert len(result.records) == 1
    assert result.records[0].level is ActionLevel.SUCCESS
    assert result.records[0].action is None


def test_two_edits_to_same_path_last_write_wins(sample_store: FileStore) -> None:
    result = execute_plan(
        _plan(_change("src/app.js", "edit", "first"), _change("src/app.js", "edit", "second")),
        sample_store,
    )

    record = result.store.get("src/app.js")
    assert record is not None
    assert record.content == "second"
    assert record.is_modified


def test_missing_edit_target_warns_and_batch_continues(sample_store: FileStore) -> None:
    result = execute_plan(
        _plan(_change("src/missing.js", "edit", "x"), _change("src/new.js", "create", "new")),
        sample_store,
    )

    assert [record.level for record in result.records] == [ActionLevel.WARNING, ActionLevel.SUCCESS]
    assert result.records[0].message == "Warning: File not found: src/missing.js"
    created = result.store.get("src/new.js")
    assert created is not None and created.is_new and not created.is_modified
    assert "src/missing.js" not in result.store


def test_create_collision_overwrites_without_duplicating(sample_store: FileStore) -> None:
    result = execute_plan(_plan(_change("src/app.js", "create", "replaced")), sample_store)

    assert result.store.paths().count("src/app.js") == 1
    assert len(result.store) == len(sample_store)
    record = result.store.get("src/app.js")
    assert record is not None
    assert record.content == "replaced"
    assert record.is_modified
    assert not record.is_new


def test_create_without_content_yields_empty_file(sample_store: FileStore) -> None:
    result = execute_plan(_plan(_change("docs/empty.md", "create")), sample_store)

    record = result.store.get("docs/empty.md")
    assert record is not None and record.content == ""


def test_edit_without_content_only_marks_modified(sample_store: FileStore) -> None:
    result = execute_plan(_plan(_change("README.md", "edit")), sample_store)

    record = result.store.get("README.md")
    assert record is not None
    assert record.content == "# Demo\n"
    assert record.is_modified


def test_delete_tombstones_upstream_files_only(sample_store: FileStore) -> None:
    result = execute_plan(
        _plan(
            _change("tmp/scratch.txt", "create", "scratch"),
            _change("tmp/scratch.txt", "delete"),
            _change("README.md", "delete"),
            _change("README.md", "delete"),
        ),
        sample_store,
    )

    assert "README.md" not in result.store
    assert "tmp/scratch.txt" not in result.store
    assert result.store.deleted_paths == frozenset({"README.md"})
    assert result.records[-1].level is ActionLevel.WARNING


def test_recreating_deleted_file_restores_it_as_modified() -> None:
    store = FileStore([FileRecord(path="a.txt", content="new")], deleted_paths=["b.txt"])

    result = execute_plan(_plan(_change("b.txt", "create", "back")), store)

    record = result.store.get("b.txt")
    assert record is not None
    assert record.is_modified and not record.is_new
    assert result.store.deleted_paths == frozenset()


@pytest.mark.parametrize("path", ["../escape.txt", "/etc/passwd", "src/../../up.js", "C:/win.txt"])
def test_unsafe_paths_are_skipped(path: str, sample_store: FileStore) -> None:
    result = execute_plan(_plan(_change(path, "create", "x")), sample_store)

    assert result.records[0].level is ActionLevel.WARNING
    assert "unsafe path" in result.records[0].message
    assert result.store == sample_store


def test_paths_are_normalised_before_lookup(sample_store: FileStore) -> None:
    result = execute_plan(_plan(_change("./src\\app.js", "edit", "win")), sample_store)

    record = result.store.get("src/app.js")
    assert record is not None and record.content == "win"


def test_unexpected_fault_raises_and_leaves_store_untouched(sample_store: FileStore) -> None:
    broken = FileChange.model_construct(filename="src/app.js", action="rename", content="x", reason="")
    plan = Plan.model_construct(
        goal="Broken",
        explanation="",
        files=(_change("README.md", "edit", "changed"), broken),
        dependencies=(),
        steps=(),
    )
    snapshot = list(sample_store)

    with pytest.raises(ExecutionError):
        PlanExecutor().execute(plan, sample_store)

    assert list(sample_store) == snapshot
    readme = sample_store.get("README.md")
    assert readme is not None and readme.content == "# Demo\n" and not readme.is_modified


def test_store_mark_synced_clears_flags_and_tombstones(sample_store: FileStore) -> None:
    result = execute_plan(
        _plan(_change("README.md", "delete"), _change("src/new.js", "create", "n")),
        sample_store,
    )
    assert result.store.has_changes()
    assert [record.path for record in result.store.changed_files()] == ["src/new.js"]

    synced = result.store.mark_synced()
    assert not synced.has_changes()
    assert synced.deleted_paths == frozenset()
