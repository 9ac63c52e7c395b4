"""Decode completion-service text into validated :class:`Plan` objects.

Completion text is not guaranteed to be clean JSON. Markdown fences and noisy
prefixes are tolerated. Legacy field names are normalised, and malformed file
entries are dropped with a warning instead of failing the whole plan.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .errors import PlanFormatError
from .schemas import FileAction, FileChange, Plan

LOGGER = logging.getLogger(__name__)

_FENCED_RE = re.compile(r"^```[\w.+-]*[ \t]*\n?(?P<body>.*?)\n?[ \t]*```$", re.DOTALL)
_OPENING_FENCE_RE = re.compile(r"^```[\w.+-]*[ \t]*\n?")
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")

_GOAL_ALIASES = ("goal", "plan")
_FILES_ALIASES = ("files", "files_to_edit")
_FILENAME_ALIASES = ("filename", "path", "file_path")
_ACTIONS = {action.value: action for action in FileAction}


def strip_code_fences(text: str | None) -> str:
    """Remove a wrapping Markdown code fence (```json ... ``` or ``` ... ```)."""
    stripped = (text or "").strip()
    if not stripped.startswith("```"):
        return stripped
    match = _FENCED_RE.match(stripped)
    if match:
        return match.group("body").strip()
    # Unterminated fence: drop the opening marker only.
    return _OPENING_FENCE_RE.sub("", stripped, count=1).strip()


def _normalise_json_string(payload: str) -> str:
    """Normalise typographic characters models like to emit."""
    translation = {
        0x201C: '"',
        0x201D: '"',
        0x00A0: " ",
        0xFEFF: "",
    }
    return payload.translate(str.maketrans(translation))


def _extract_json_object(text: str) -> str | None:
    """Return the first balanced JSON object embedded in ``text``."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return _TRAILING_COMMA_RE.sub(r"\1", text[start : index + 1])
    return None


def load_json_text(raw: str | None) -> Any:
    """Parse completion text as JSON after fence stripping and light repair."""
    text = strip_code_fences(raw).lstrip("\ufeff")
    if not text:
        raise PlanFormatError("Completion service returned an empty response.")

    candidates = [text]
    normalised = _normalise_json_string(text)
    if normalised != text:
        candidates.append(normalised)

    last_error: Exception | None = None
    for candidate in candidates:
        for attempt in (candidate, _extract_json_object(candidate)):
            if attempt is None:
                continue
            try:
                return json.loads(attempt)
            except (ValueError, RecursionError) as error:
                last_error = error

    snippet = text[:200]
    raise PlanFormatError(f"Completion service returned invalid JSON: {snippet}") from last_error


def normalise_legacy_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Map legacy plan shapes (``plan``, ``files_to_edit``) onto the canonical keys."""
    normalised: Dict[str, Any] = dict(payload)

    if not _present(normalised.get("goal")):
        for alias in _GOAL_ALIASES[1:]:
            if _present(normalised.get(alias)):
                normalised["goal"] = normalised[alias]
                break

    if normalised.get("files") is None:
        for alias in _FILES_ALIASES[1:]:
            if normalised.get(alias) is not None:
                normalised["files"] = normalised[alias]
                break

    for legacy_key in ("plan", "files_to_edit", "questions"):
        normalised.pop(legacy_key, None)
    return normalised


def _present(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _string_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, Sequence):
        return []
    items: List[str] = []
    for item in value:
        if item is None:
            continue
        text = item if isinstance(item, str) else json.dumps(item)
        text = text.strip()
        if text:
            items.append(text)
    return items


def _coerce_change(index: int, entry: Any) -> Optional[FileChange]:
    """Convert a raw ``files`` entry, returning ``None`` when it must be dropped."""
    if not isinstance(entry, Mapping):
        LOGGER.warning("Dropping files[%d]: expected an object, got %s", index, type(entry).__name__)
        return None

    filename = ""
    for alias in _FILENAME_ALIASES:
        candidate = entry.get(alias)
        if isinstance(candidate, str) and candidate.strip():
            filename = candidate
            break
    if not filename:
        LOGGER.warning("Dropping files[%d]: missing filename", index)
        return None

    raw_action = entry.get("action")
    action = _ACTIONS.get(raw_action.strip().lower()) if isinstance(raw_action, str) else None
    if action is None:
        LOGGER.warning("Dropping files[%d] (%s): unsupported action %r", index, filename, raw_action)
        return None

    content = entry.get("content")
    if content is not None and not isinstance(content, str):
        content = json.dumps(content, indent=2)

    reason = entry.get("reason")
    try:
        return FileChange(
            filename=filename,
            action=action,
            content=content,
            reason=reason if isinstance(reason, str) else "",
        )
    except ValidationError as error:
        LOGGER.warning("Dropping files[%d] (%s): %s", index, filename, error)
        return None


def plan_from_payload(value: Any) -> Plan:
    """Validate a decoded payload (mapping, JSON string, or Plan) into a :class:`Plan`."""
    if isinstance(value, Plan):
        return value
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        value = load_json_text(value)
    if not isinstance(value, Mapping):
        raise PlanFormatError(f"Plan payload must be a JSON object, got {type(value).__name__}.")

    payload = normalise_legacy_payload(value)

    goal = payload.get("goal")
    if not _present(goal):
        raise PlanFormatError("Plan is missing a goal.")

    files_value = payload.get("files")
    if files_value is None:
        files_value = []
    if isinstance(files_value, (str, bytes)) or not isinstance(files_value, Sequence):
        raise PlanFormatError("Plan 'files' must be a list of file changes.")

    changes = [
        change
        for change in (_coerce_change(index, entry) for index, entry in enumerate(files_value))
        if change is not None
    ]

    explanation = payload.get("explanation")
    try:
        return Plan(
            goal=goal,
            explanation=explanation if isinstance(explanation, str) else "",
            files=tuple(changes),
            dependencies=tuple(_string_list(payload.get("dependencies"))),
            steps=tuple(_string_list(payload.get("steps"))),
        )
    except ValidationError as error:
        raise PlanFormatError(f"Plan failed validation: {error}") from error


def decode_plan_text(raw: str | None) -> Plan:
    """Decode raw completion text into a validated :class:`Plan`."""
    return plan_from_payload(load_json_text(raw))


__all__ = [
    "decode_plan_text",
    "load_json_text",
    "normalise_legacy_payload",
    "plan_from_payload",
    "strip_code_fences",
]
