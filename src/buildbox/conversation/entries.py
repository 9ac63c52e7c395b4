"""Typed records stored in the conversation log."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field

from ..planning.schemas import Plan


def utc_now() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


class EntryKind(str, Enum):
    """Kinds of conversation entries shown to the user."""

    USER = "user"
    PLAN = "plan"
    SYSTEM = "system"
    SUCCESS = "success"
    ERROR = "error"


class ConversationEntry(BaseModel):
    """Append-only conversation record; ordering follows append sequence."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: int
    kind: EntryKind
    payload: Union[Plan, str]
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def plan(self) -> Plan | None:
        return self.payload if isinstance(self.payload, Plan) else None

    @property
    def text(self) -> str:
        """Human-readable rendering of the payload."""
        if isinstance(self.payload, Plan):
            return f"Plan: {self.payload.goal}"
        return self.payload

    def to_record(self) -> Dict[str, Any]:
        """Serialise to the JSON-compatible shape used for persistence."""
        payload: Any = self.payload.to_payload() if isinstance(self.payload, Plan) else self.payload
        return {
            "id": self.id,
            "kind": self.kind.value,
            "payload": payload,
            "timestamp": self.timestamp.isoformat(),
        }


def parse_timestamp(value: Any) -> datetime:
    """Parse a stored timestamp, falling back to the current time."""
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return utc_now()
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return utc_now()


def is_record(value: Any) -> bool:
    """Return ``True`` for stored mappings that name an entry kind (``kind`` or legacy ``type``)."""
    return isinstance(value, Mapping) and ("kind" in value or "type" in value)


__all__ = ["ConversationEntry", "EntryKind", "is_record", "parse_timestamp", "utc_now"]
