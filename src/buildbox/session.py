"""Plan lifecycle for one assistant session.

The session owns the canonical :class:`FileStore`, the pending plan, and the
conversation log. Transitions follow ``idle -> generating -> pending_review ->
executing -> idle``; every failure is recorded in the log so the session stays
usable afterwards.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Optional

from .conversation.log import PLAN_DISCARDED, ConversationLog
from .conversation.entries import EntryKind
from .planning.errors import ExecutionError, PlanFormatError, ServiceError
from .planning.executor import ActionLevel, ExecutionResult, PlanExecutor
from .planning.generator import PlanGenerator
from .planning.schemas import Plan
from .workspace.files import FileStore
from .workspace.repository import Locator, PushService

LOGGER = logging.getLogger(__name__)

__all__ = ["AssistantSession", "PlanState", "TransitionError"]


class PlanState(str, Enum):
    """Named states of the plan lifecycle."""

    IDLE = "idle"
    GENERATING = "generating"
    PENDING_REVIEW = "pending_review"
    EXECUTING = "executing"


class TransitionError(RuntimeError):
    """Raised when an operation is not allowed in the current state."""


class AssistantSession:
    """Single-writer coordinator between the generator, executor, store and log."""

    def __init__(
        self,
        generator: PlanGenerator,
        log: ConversationLog,
        file_store: FileStore,
        *,
        executor: Optional[PlanExecutor] = None,
    ) -> None:
        self._generator = generator
        self._log = log
        self._store = file_store
        self._executor = executor or PlanExecutor()
        self._lock = threading.RLock()
        self._state = PlanState.IDLE
        self._pending: Optional[Plan] = None
        self._sequence = 0
        self._log.on_clear(self._discard_pending)

    # ------------------------------------------------------------ properties
    @property
    def state(self) -> PlanState:
        return self._state

    @property
    def pending_plan(self) -> Optional[Plan]:
        return self._pending

    @property
    def file_store(self) -> FileStore:
        return self._store

    @property
    def log(self) -> ConversationLog:
        return self._log

    # ------------------------------------------------------------ generation
    def submit_goal(self, goal: str, selected_path: Optional[str] = None) -> Optional[Plan]:
        """Generate a plan for ``goal``.

        Returns the new pending plan, or ``None`` when the goal is blank, the
        request failed (an error entry is logged), or a newer request superseded
        this one while it was in flight. Any other fault is logged as an error
        entry and re-raised once the session has settled.
        """
        if goal is None or not goal.strip():
            return None
        cleaned = goal.strip()

        with self._lock:
            if self._state is PlanState.EXECUTING:
                raise TransitionError("Cannot generate a plan while another plan is executing.")
            self._sequence += 1
            ticket = self._sequence
            store = self._store
            selected = store.get(selected_path) if selected_path else None
            self._log.append(EntryKind.USER, cleaned)
            self._state = PlanState.GENERATING

        try:
            plan = self._generator.generate(cleaned, store, selected)
        except (PlanFormatError, ServiceError) as error:
            with self._lock:
                if self._is_stale(ticket):
                    return None
                if isinstance(error, PlanFormatError):
                    message = f"Sorry, I received an invalid response format: {error}"
                else:
                    message = f"Sorry, I couldn't generate a plan: {error}"
                self._log.append(EntryKind.ERROR, message)
                self._settle()
            return None
        except Exception as error:
            with self._lock:
                if not self._is_stale(ticket):
                    self._log.append(EntryKind.ERROR, f"Sorry, I couldn't generate a plan: {error}")
                    self._settle()
            raise

        with self._lock:
            if self._is_stale(ticket):
                return None
            self._pending = plan
            self._log.append(EntryKind.PLAN, plan)
            self._state = PlanState.PENDING_REVIEW
        return plan

    def _is_stale(self, ticket: int) -> bool:
        if ticket == self._sequence:
            return False
        LOGGER.info("Discarding plan response %d; request %d is newer", ticket, self._sequence)
        return True

    def _settle(self) -> None:
        self._state = PlanState.PENDING_REVIEW if self._pending is not None else PlanState.IDLE

    # ------------------------------------------------------------- execution
    def execute_pending(self) -> ExecutionResult:
        """Apply the pending plan to the file store and record each outcome."""
        with self._lock:
            if self._state is not PlanState.PENDING_REVIEW or self._pending is None:
                raise TransitionError(f"No plan awaiting review (state: {self._state.value}).")
            plan = self._pending
            self._state = PlanState.EXECUTING
            self._log.append(EntryKind.SYSTEM, "Executing plan...")
            try:
                result = self._executor.execute(plan, self._store)
            except ExecutionError as error:
                self._log.append(EntryKind.ERROR, f"Failed to execute plan: {error}")
                self._state = PlanState.PENDING_REVIEW
                raise

            self._store = result.store
            for record in result.records:
                kind = EntryKind.SYSTEM if record.level is ActionLevel.SUCCESS else EntryKind.ERROR
                self._log.append(kind, record.message)
            self._log.append(EntryKind.SUCCESS, f"Successfully executed plan: {plan.goal}")
            self._pending = None
            self._state = PlanState.IDLE
        return result

    def cancel_pending(self) -> None:
        with self._lock:
            if self._state is PlanState.EXECUTING:
                raise TransitionError("Cannot cancel a plan while it is executing.")
            if self._pending is None:
                return
            self._pending = None
            self._log.append(EntryKind.SYSTEM, PLAN_DISCARDED)
            if self._state is PlanState.PENDING_REVIEW:
                self._state = PlanState.IDLE

    def resume_pending(self) -> Optional[Plan]:
        """Restore the newest unexecuted plan recorded in the log."""
        with self._lock:
            if self._state is not PlanState.IDLE:
                return self._pending
            plan = self._log.latest_pending_plan()
            if plan is not None:
                self._pending = plan
                self._state = PlanState.PENDING_REVIEW
            return plan

    # ---------------------------------------------------------------- upkeep
    def clear(self) -> None:
        """Empty the log, drop the pending plan, and invalidate in-flight requests."""
        with self._lock:
            if self._state is PlanState.EXECUTING:
                raise TransitionError("Cannot clear the session while a plan is executing.")
            self._log.clear()

    def _discard_pending(self) -> None:
        with self._lock:
            self._pending = None
            self._sequence += 1
            if self._state is not PlanState.EXECUTING:
                self._state = PlanState.IDLE

    def edit_file(self, path: str, content: str) -> FileStore:
        """Apply a direct user edit to the canonical store."""
        with self._lock:
            if self._state is PlanState.EXECUTING:
                raise TransitionError("Cannot edit files while a plan is executing.")
            self._store = self._store.with_content(path, content)
            return self._store

    def push(self, service: PushService, locator: Locator, message: str) -> str:
        """Send changed and deleted files to ``service`` and mark the store synced."""
        with self._lock:
            if self._state is PlanState.EXECUTING:
                raise TransitionError("Cannot push while a plan is executing.")
            store = self._store
            changed = store.changed_files()
            deleted = sorted(store.deleted_paths)
            if not changed and not deleted:
                self._log.append(EntryKind.SYSTEM, "No changes to push.")
                return ""
            try:
                commit_id = service.commit(locator, changed, message, deleted=deleted)
            except ServiceError as error:
                self._log.append(EntryKind.ERROR, f"Failed to push changes: {error}")
                raise
            self._store = store.mark_synced()
            self._log.append(
                EntryKind.SUCCESS,
                f"Pushed {len(changed) + len(deleted)} file(s) ({commit_id[:7] or 'no commit'}).",
            )
        return commit_id

    def close(self) -> None:
        self._log.close()
