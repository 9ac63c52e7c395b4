"""Append-only conversation log persisted to session storage."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, List, Optional, Tuple, Union

from pydantic import ValidationError

from ..planning.errors import PlanFormatError
from ..planning.parsing import plan_from_payload
from ..planning.schemas import Plan
from .entries import ConversationEntry, EntryKind, is_record, parse_timestamp
from .storage import KeyValueStorage

LOGGER = logging.getLogger(__name__)

PLAN_DISCARDED = "Plan discarded."

ClearListener = Callable[[], None]


def history_key(session_id: str) -> str:
    """Return the storage key used for a session's history."""
    return f"chat_history_{session_id}"


class ConversationLog:
    """Ordered record of goals, plans, execution outcomes, and errors.

    The whole sequence is written to ``storage`` on every append and read back
    on construction. Corrupted stored data is discarded rather than raised.
    """

    def __init__(self, storage: KeyValueStorage, session_id: str) -> None:
        if not session_id or not session_id.strip():
            raise ValueError("A session identifier is required.")
        self._storage = storage
        self._session_id = session_id.strip()
        self._entries: List[ConversationEntry] = []
        self._listeners: List[ClearListener] = []
        self._last_id = 0
        self._closed = False
        self._rehydrate()

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def key(self) -> str:
        return history_key(self._session_id)

    # ------------------------------------------------------------------ public
    def append(self, kind: Union[EntryKind, str], payload: Union[Plan, str]) -> ConversationEntry:
        """Append an entry and persist the full sequence."""
        if self._closed:
            raise RuntimeError("Conversation log is closed.")
        entry_kind = EntryKind(kind)
        if entry_kind is EntryKind.PLAN:
            payload = plan_from_payload(payload)
        elif isinstance(payload, Plan):
            raise ValueError(f"Only plan entries may carry a Plan payload (got kind={entry_kind.value}).")
        entry = ConversationEntry(id=self._next_id(), kind=entry_kind, payload=payload)
        self._entries.append(entry)
        self._persist()
        return entry

    def all(self) -> Tuple[ConversationEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        """Drop every entry, remove stored history, and notify clear listeners."""
        self._entries.clear()
        self._storage.delete(self.key)
        for listener in list(self._listeners):
            listener()

    def on_clear(self, listener: ClearListener) -> None:
        self._listeners.append(listener)

    def latest_pending_plan(self) -> Optional[Plan]:
        """Return the newest plan not yet executed or discarded."""
        for entry in reversed(self._entries):
            if entry.kind is EntryKind.SUCCESS:
                return None
            if entry.kind is EntryKind.SYSTEM and entry.text == PLAN_DISCARDED:
                return None
            if entry.kind is EntryKind.PLAN:
                return entry.plan
        return None

    def close(self) -> None:
        """Detach listeners and refuse further appends."""
        self._listeners.clear()
        self._closed = True

    # ---------------------------------------------------------------- internals
    def _next_id(self) -> int:
        now_ms = time.time_ns() // 1_000_000
        self._last_id = max(now_ms, self._last_id + 1)
        return self._last_id

    def _persist(self) -> None:
        payload = json.dumps([entry.to_record() for entry in self._entries], ensure_ascii=False)
        self._storage.set(self.key, payload)

    def _rehydrate(self) -> None:
        raw = self._storage.get(self.key)
        if not raw:
            return
        try:
            records = json.loads(raw)
        except (TypeError, ValueError) as error:
            LOGGER.warning("Discarding corrupted history for session %s: %s", self._session_id, error)
            self._storage.delete(self.key)
            return
        if not isinstance(records, list):
            LOGGER.warning("Discarding history for session %s: expected a list", self._session_id)
            self._storage.delete(self.key)
            return

        for record in records:
            entry = self._load_entry(record)
            if entry is None:
                continue
            self._entries.append(entry)
            self._last_id = max(self._last_id, entry.id)

    def _load_entry(self, record: Any) -> Optional[ConversationEntry]:
        if not is_record(record):
            LOGGER.warning("Skipping malformed history record: %r", record)
            return None
        raw_kind = record.get("kind", record.get("type"))
        try:
            kind = EntryKind(raw_kind)
        except ValueError:
            LOGGER.warning("Skipping history record with unknown kind %r", raw_kind)
            return None

        entry_id = record.get("id")
        if not isinstance(entry_id, int) or isinstance(entry_id, bool) or entry_id <= self._last_id:
            entry_id = self._last_id + 1
        timestamp = parse_timestamp(record.get("timestamp"))
        payload = record.get("payload", record.get("content"))

        if kind is EntryKind.PLAN:
            try:
                plan = plan_from_payload(payload)
            except PlanFormatError as error:
                return ConversationEntry(
                    id=entry_id,
                    kind=EntryKind.ERROR,
                    payload=f"Invalid plan format in saved history: {error}",
                    timestamp=timestamp,
                )
            return ConversationEntry(id=entry_id, kind=kind, payload=plan, timestamp=timestamp)

        text = payload if isinstance(payload, str) else json.dumps(payload)
        try:
            return ConversationEntry(id=entry_id, kind=kind, payload=text, timestamp=timestamp)
        except ValidationError as error:
            LOGGER.warning("Skipping unreadable history record: %s", error)
            return None


__all__ = ["PLAN_DISCARDED", "ConversationLog", "history_key"]
