"""Apply an approved plan to a working copy of the file store."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from ..workspace.files import FileRecord, FileStore, is_safe_path, normalise_path
from .errors import ExecutionError
from .schemas import FileAction, FileChange, Plan

LOGGER = logging.getLogger(__name__)


class ActionLevel(str, Enum):
    """Outcome classification for a single attempted change."""

    SUCCESS = "success"
    WARNING = "warning"


@dataclass(frozen=True, slots=True)
class ActionRecord:
    """Outcome of applying one :class:`FileChange`."""

    filename: str
    action: Optional[FileAction]
    level: ActionLevel
    message: str

    @property
    def ok(self) -> bool:
        return self.level is ActionLevel.SUCCESS


@dataclass(slots=True)
class ExecutionResult:
    """New file store plus the ordered action log."""

    store: FileStore
    records: List[ActionRecord] = field(default_factory=list)

    @property
    def warnings(self) -> List[ActionRecord]:
        return [record for record in self.records if record.level is ActionLevel.WARNING]

    @property
    def successes(self) -> List[ActionRecord]:
        return [record for record in self.records if record.level is ActionLevel.SUCCESS]


@dataclass(slots=True)
class _WorkingCopy:
    """Private mutable copy of a store; never visible outside ``execute``."""

    files: Dict[str, FileRecord]
    deleted: Set[str]

    @classmethod
    def of(cls, store: FileStore) -> "_WorkingCopy":
        return cls(files=dict(store.records), deleted=set(store.deleted_paths))

    def freeze(self) -> FileStore:
        return FileStore(self.files.values(), deleted_paths=self.deleted)


class PlanExecutor:
    """Apply plan changes strictly in order; later writes to a path win."""

    def __init__(self) -> None:
        self._handlers: Dict[FileAction, Callable[[_WorkingCopy, str, FileChange], ActionRecord]] = {
            FileAction.CREATE: self._create,
            FileAction.EDIT: self._edit,
            FileAction.DELETE: self._delete,
        }

    def execute(self, plan: Plan, store: FileStore) -> ExecutionResult:
        """Return the store produced by ``plan`` without touching ``store``."""
        if plan.is_advisory:
            record = ActionRecord(
                filename="",
                action=None,
                level=ActionLevel.SUCCESS,
                message="No file changes in plan; nothing to apply.",
            )
            return ExecutionResult(store=store, records=[record])

        working = _WorkingCopy.of(store)
        records: List[ActionRecord] = []
        for index, change in enumerate(plan.files):
            try:
                records.append(self._apply(working, change))
            except Exception as error:
                LOGGER.exception("Plan execution aborted at change %d", index)
                raise ExecutionError(
                    f"Failed to apply change {index + 1} ({getattr(change, 'filename', '?')}): {error}"
                ) from error

        result = ExecutionResult(store=working.freeze(), records=records)
        LOGGER.info(
            "Applied plan '%s': %d change(s), %d warning(s)",
            plan.goal,
            len(result.successes),
            len(result.warnings),
        )
        return result

    def _apply(self, working: _WorkingCopy, change: FileChange) -> ActionRecord:
        path = normalise_path(change.filename)
        if not is_safe_path(path):
            return self._warning(change, f"Skipped unsafe path: {change.filename}")
        handler = self._handlers[FileAction(change.action)]
        return handler(working, path, change)

    def _create(self, working: _WorkingCopy, path: str, change: FileChange) -> ActionRecord:
        content = change.content if change.content is not None else ""
        existing = working.files.get(path)
        if existing is not None:
            working.files[path] = existing.with_content(content)
            return self._success(change, path, f"Overwrote existing file: {path}")
        if path in working.deleted:
            working.deleted.discard(path)
            working.files[path] = FileRecord(path=path, content=content, is_modified=True)
            return self._success(change, path, f"Restored file: {path}")
        working.files[path] = FileRecord(path=path, content=content, is_new=True)
        return self._success(change, path, f"Created file: {path}")

    def _edit(self, working: _WorkingCopy, path: str, change: FileChange) -> ActionRecord:
        existing = working.files.get(path)
        if existing is None:
            return self._warning(change, f"File not found: {path}")
        if change.content is None:
            working.files[path] = replace(existing, is_modified=True)
            return self._success(change, path, f"Touched file (no content supplied): {path}")
        working.files[path] = existing.with_content(change.content)
        return self._success(change, path, f"Updated file: {path}")

    def _delete(self, working: _WorkingCopy, path: str, change: FileChange) -> ActionRecord:
        existing = working.files.pop(path, None)
        if existing is None:
            return self._warning(change, f"File not found: {path}")
        if not existing.is_new:
            working.deleted.add(path)
        return self._success(change, path, f"Deleted file: {path}")

    @staticmethod
    def _success(change: FileChange, path: str, message: str) -> ActionRecord:
        return ActionRecord(filename=path, action=change.action, level=ActionLevel.SUCCESS, message=message)

    @staticmethod
    def _warning(change: FileChange, message: str) -> ActionRecord:
        LOGGER.warning("%s", message)
        return ActionRecord(
            filename=change.filename,
            action=change.action,
            level=ActionLevel.WARNING,
            message=f"Warning: {message}",
        )


def execute_plan(plan: Plan, store: FileStore) -> ExecutionResult:
    """Apply ``plan`` to ``store`` using a default :class:`PlanExecutor`."""
    return PlanExecutor().execute(plan, store)


__all__ = [
    "ActionLevel",
    "ActionRecord",
    "ExecutionResult",
    "PlanExecutor",
    "execute_plan",
]
