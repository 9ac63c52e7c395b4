"""Typed plan payloads exchanged with the completion service."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PlanModel(BaseModel):
    """Base model for immutable plan records."""

    model_config = ConfigDict(extra="ignore", frozen=True)


class FileAction(str, Enum):
    """Closed set of mutations a plan may request."""

    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"


class FileChange(PlanModel):
    """Single file mutation inside a plan."""

    filename: str
    action: FileAction
    content: Optional[str] = None
    reason: str = ""

    @field_validator("filename")
    @classmethod
    def _clean_filename(cls, value: str) -> str:
        cleaned = value.strip().replace("\\", "/")
        if not cleaned:
            raise ValueError("filename must not be blank")
        return cleaned

    @field_validator("reason")
    @classmethod
    def _strip_reason(cls, value: str) -> str:
        return value.strip()

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"filename": self.filename, "action": self.action.value}
        if self.content is not None:
            payload["content"] = self.content
        if self.reason:
            payload["reason"] = self.reason
        return payload


class Plan(PlanModel):
    """Reviewable proposal of file mutations generated from a goal.

    ``files`` is applied in order. ``dependencies`` and ``steps`` are
    informational and never executed.
    """

    goal: str
    explanation: str = ""
    files: Tuple[FileChange, ...] = ()
    dependencies: Tuple[str, ...] = ()
    steps: Tuple[str, ...] = ()

    @field_validator("goal")
    @classmethod
    def _require_goal(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("goal must not be blank")
        return cleaned

    @field_validator("explanation")
    @classmethod
    def _strip_explanation(cls, value: str) -> str:
        return value.strip()

    @field_validator("steps")
    @classmethod
    def _clean_steps(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        return tuple(item.strip() for item in value if item.strip())

    @field_validator("dependencies")
    @classmethod
    def _dedupe_dependencies(cls, value: Tuple[str, ...]) -> Tuple[str, ...]:
        seen: list[str] = []
        for item in (entry.strip() for entry in value):
            if item and item not in seen:
                seen.append(item)
        return tuple(seen)

    @property
    def is_advisory(self) -> bool:
        """Return ``True`` when the plan carries no file changes."""
        return not self.files

    def to_payload(self) -> Dict[str, Any]:
        """Render the plan using the boundary JSON shape."""
        return {
            "goal": self.goal,
            "explanation": self.explanation,
            "files": [change.to_payload() for change in self.files],
            "dependencies": list(self.dependencies),
            "steps": list(self.steps),
        }


def _plan_response_schema() -> Dict[str, Any]:
    """Hand-authored strict schema describing the plan response."""
    string = {"type": "string"}
    nullable_string = {"anyOf": [{"type": "string"}, {"type": "null"}]}
    string_array = {"type": "array", "items": string}

    change_schema: Dict[str, Any] = {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "filename": string,
            "action": {"type": "string", "enum": [action.value for action in FileAction]},
            "content": nullable_string,
            "reason": string,
        },
        "required": ["filename", "action", "content", "reason"],
    }

    return {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "goal": string,
            "explanation": string,
            "files": {"type": "array", "items": change_schema},
            "dependencies": string_array,
            "steps": string_array,
        },
        "required": ["goal", "explanation", "files", "dependencies", "steps"],
    }


PLAN_RESPONSE_SCHEMA: Dict[str, Any] = _plan_response_schema()


__all__ = ["FileAction", "FileChange", "PLAN_RESPONSE_SCHEMA", "Plan", "PlanModel"]
