"""Prompt templates and helpers for the plan generator."""

from __future__ import annotations

import json
from typing import Any, Mapping

JSON_RESPONSE_INSTRUCTION = (
    "Return only JSON. Emit a single JSON object that satisfies the documented response schema. "
    "Do not include markdown fences, explanations, or trailing text. "
    "Use double-quoted keys and strings."
)

PLAN_SYSTEM_PROMPT = f"""You are a conversational coding assistant embedded in a browser code editor.
You receive a goal and the full contents of the user's repository working copy.
Produce a reviewable plan of file changes that achieves the goal.

Respond with this JSON shape:
{{
  "goal": "one-line restatement of the user's request",
  "explanation": "why these changes achieve the goal",
  "files": [
    {{"filename": "relative/path", "action": "create" | "edit" | "delete", "content": "full new file content or null", "reason": "why this file changes"}}
  ],
  "dependencies": ["newly required packages"],
  "steps": ["human-readable steps"]
}}

Rules:
- Use paths exactly as they appear in the project context when editing or deleting.
- For create and edit, "content" must be the complete file text, never a diff.
- List changes in the order they should be applied.
- If no file needs to change, return an empty "files" list and explain in "explanation".

{JSON_RESPONSE_INSTRUCTION}"""


def render_plan_prompt(goal: str, project_context: Mapping[str, Any]) -> str:
    """Render the user prompt carrying the goal and the serialized project context."""
    context_json = json.dumps(project_context, indent=2, ensure_ascii=False)
    return (
        f'Generate a conversational plan to achieve this goal: "{goal}"\n\n'
        "## Project Context\n"
        f"{context_json}"
    )


__all__ = ["JSON_RESPONSE_INSTRUCTION", "PLAN_SYSTEM_PROMPT", "render_plan_prompt"]
