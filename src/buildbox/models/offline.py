"""Deterministic stand-in for the completion service used in demos and tests."""

from __future__ import annotations

import json
import re
from typing import Any, Dict

from .llm_client import LLMClient

__all__ = ["OfflineLLMClient", "is_offline_model"]

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def is_offline_model(model_name: str) -> bool:
    """Return ``True`` for model names that never reach the network."""
    key = model_name.strip().lower()
    return key in {"offline", "gpt-5-offline"} or key.endswith("-offline")


def _slug(value: str, max_length: int = 48) -> str:
    slug = _SLUG_RE.sub("-", value.lower()).strip("-")
    return slug[:max_length].rstrip("-") or "goal"


class OfflineLLMClient(LLMClient):
    """Local stub that synthesizes a plan from request metadata."""

    def __init__(self) -> None:
        super().__init__("offline")

    def _raw_invoke(self, payload: Dict[str, Any], timeout: float) -> str:
        metadata = payload.get("metadata") or {}
        goal = str(metadata.get("goal") or "").strip() or "Describe the requested change"
        return json.dumps(self._build_plan(goal))

    @staticmethod
    def _build_plan(goal: str) -> Dict[str, Any]:
        notes_path = f"notes/{_slug(goal)}.md"
        return {
            "goal": goal,
            "explanation": "Offline planner: records the goal as a note for a later online run.",
            "files": [
                {
                    "filename": notes_path,
                    "action": "create",
                    "content": f"# {goal}\n\n- [ ] Break the goal into concrete file edits.\n",
                    "reason": "Capture the goal so it can be planned against a real model.",
                }
            ],
            "dependencies": [],
            "steps": [
                f"Create {notes_path} describing the goal.",
                "Re-run the planner with a remote model for real edits.",
            ],
        }
