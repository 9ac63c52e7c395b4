"""Turn a natural-language goal plus the file store into a :class:`Plan`."""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..languages import language_for
from ..models.llm_client import CompletionRequest, LLMClient, LLMClientError
from ..prompts import PLAN_SYSTEM_PROMPT, render_plan_prompt
from ..workspace.files import FileRecord, FileStore
from .errors import InputError, PlanFormatError, ServiceError
from .parsing import decode_plan_text
from .schemas import PLAN_RESPONSE_SCHEMA, Plan

LOGGER = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def build_project_context(
    goal: str,
    store: FileStore,
    selected_file: Optional[FileRecord] = None,
) -> Dict[str, Any]:
    """Describe every file (with language tag and content) plus the selected file."""
    files = [
        {
            "name": record.name,
            "path": record.path,
            "language": language_for(record.name),
            "content": record.content,
        }
        for record in store
    ]
    selected: Optional[Dict[str, Any]] = None
    if selected_file is not None:
        selected = {
            "name": selected_file.name,
            "path": selected_file.path,
            "language": language_for(selected_file.name),
            "content": selected_file.content,
        }
    return {"goal": goal, "files": files, "selectedFile": selected}


class PlanGenerator:
    """Request a plan from the completion service and validate the reply.

    The generator never mutates the file store it is given.
    """

    def __init__(
        self,
        client: LLMClient,
        *,
        timeout: Optional[float] = None,
        logs_root: Optional[Path] = None,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._logs_root = Path(logs_root) if logs_root is not None else None

    @property
    def client(self) -> LLMClient:
        return self._client

    def build_request(
        self,
        goal: str,
        store: FileStore,
        selected_file: Optional[FileRecord] = None,
    ) -> CompletionRequest:
        cleaned = goal.strip()
        context = build_project_context(cleaned, store, selected_file)
        return CompletionRequest(
            prompt=render_plan_prompt(cleaned, context),
            system_prompt=PLAN_SYSTEM_PROMPT,
            metadata={"phase": "plan", "goal": cleaned},
            response_schema=PLAN_RESPONSE_SCHEMA,
            schema_name="plan",
            timeout=self._timeout,
        )

    def generate(
        self,
        goal: str,
        store: FileStore,
        selected_file: Optional[FileRecord] = None,
    ) -> Plan:
        """Return a validated plan or raise ``InputError``/``PlanFormatError``/``ServiceError``."""
        if goal is None or not goal.strip():
            raise InputError("A goal is required to generate a plan.")

        request = self.build_request(goal, store, selected_file)
        raw: Optional[str] = None
        try:
            raw = self._client.complete(request)
        except LLMClientError as error:
            self._write_exchange_log(request, raw=None, error=error)
            raise ServiceError(str(error)) from error

        try:
            plan = decode_plan_text(raw)
        except PlanFormatError as error:
            self._write_exchange_log(request, raw=raw, error=error)
            raise

        self._write_exchange_log(request, raw=raw, plan=plan)
        LOGGER.info("Generated plan '%s' with %d file change(s)", plan.goal, len(plan.files))
        return plan

    def _write_exchange_log(
        self,
        request: CompletionRequest,
        *,
        raw: Optional[str],
        plan: Optional[Plan] = None,
        error: Optional[Exception] = None,
    ) -> None:
        """Persist the request/response exchange for later debugging."""
        if self._logs_root is None:
            return
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "model": request.model or self._client.model,
            "metadata": request.metadata,
            "system_prompt": request.system_prompt,
            "user_prompt": request.prompt,
            "raw": raw,
        }
        if plan is not None:
            entry["result"] = plan.to_payload()
        if error is not None:
            entry["error"] = f"{type(error).__name__}: {error}"

        goal_slug = _SLUG_RE.sub("-", str(request.metadata.get("goal", ""))).strip("-")[:60] or "goal"
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        log_dir = self._logs_root / "plans"
        log_path = log_dir / f"plan__{goal_slug}__{timestamp}.json"
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            with log_path.open("w", encoding="utf-8") as handle:
                json.dump(entry, handle, indent=2, sort_keys=True, ensure_ascii=False)
        except OSError as write_error:
            LOGGER.warning("Unable to write plan exchange log %s: %s", log_path, write_error)


__all__ = ["PlanGenerator", "build_project_context"]
