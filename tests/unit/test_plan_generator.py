from __future__ import annotations

import json
from pathlib import Path

import pytest

from buildbox.models.llm_client import LLMTransportError
from buildbox.planning import InputError, PlanFormatError, PlanGenerator, ServiceError
from buildbox.planning.generator import build_project_context
from buildbox.workspace.files import FileStore

from conftest import ScriptedClient, plan_json


@pytest.mark.parametrize("goal", ["", "   ", "\n\t"])
def test_blank_goal_raises_before_any_call(goal: str, sample_store: FileStore) -> None:
    client = ScriptedClient(plan_json())
    generator = PlanGenerator(client)

    with pytest.raises(InputError):
        generator.generate(goal, sample_store)
    assert client.calls == 0


def test_generate_returns_plan_and_leaves_store_untouched(sample_store: FileStore) -> None:
    files = [{"filename": "src/app.js", "action": "edit", "content": "console.log('hi');\n"}]
    client = ScriptedClient("```json\n" + plan_json("Say hi", files) + "\n```")
    generator = PlanGenerator(client, timeout=12)
    before = list(sample_store)

    plan = generator.generate("  Say hi  ", sample_store)

    assert plan.goal == "Say hi"
    assert [change.filename for change in plan.files] == ["src/app.js"]
    assert list(sample_store) == before
    assert client.payloads[0]["metadata"] == {"phase": "plan", "goal": "Say hi"}


def test_request_carries_context_schema_and_timeout(sample_store: FileStore) -> None:
    generator = PlanGenerator(ScriptedClient(), timeout=42)
    selected = sample_store.get("src/app.js")

    request = generator.build_request("Refactor", sample_store, selected)

    assert request.timeout == 42
    assert request.schema_name == "plan"
    assert request.response_schema is not None
    assert "Refactor" in request.prompt
    assert '"selectedFile"' in request.prompt
    assert '"language": "javascript"' in request.prompt


def test_project_context_lists_files_and_selection(sample_store: FileStore) -> None:
    context = build_project_context("Goal", sample_store, sample_store.get("README.md"))

    assert [entry["path"] for entry in context["files"]] == ["src/app.js", "README.md"]
    assert context["files"][0]["name"] == "app.js"
    assert context["selectedFile"]["language"] == "markdown"
    assert build_project_context("Goal", sample_store)["selectedFile"] is None


def test_transport_failure_becomes_service_error(sample_store: FileStore) -> None:
    generator = PlanGenerator(ScriptedClient(LLMTransportError("HTTP 429: quota exceeded")))

    with pytest.raises(ServiceError, match="quota exceeded"):
        generator.generate("Anything", sample_store)


def test_unparseable_reply_becomes_plan_format_error(sample_store: FileStore) -> None:
    generator = PlanGenerator(ScriptedClient("not json"))

    with pytest.raises(PlanFormatError):
        generator.generate("Anything", sample_store)


def test_exchange_logs_are_written(tmp_path: Path, sample_store: FileStore) -> None:
    generator = PlanGenerator(ScriptedClient(plan_json("Logged"), "not json"), logs_root=tmp_path)

    generator.generate("Logged", sample_store)
    with pytest.raises(PlanFormatError):
        generator.generate("Broken", sample_store)

    logs = sorted((tmp_path / "plans").glob("plan__*.json"))
    assert len(logs) == 2
    entries = [json.loads(path.read_text(encoding="utf-8")) for path in logs]
    assert any(entry.get("result", {}).get("goal") == "Logged" for entry in entries)
    assert any("PlanFormatError" in entry.get("error", "") for entry in entries)


def test_log_write_failure_does_not_fail_generation(tmp_path: Path, sample_store: FileStore) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file in the way", encoding="utf-8")
    generator = PlanGenerator(ScriptedClient(plan_json("Still works")), logs_root=blocker)

    assert generator.generate("Still works", sample_store).goal == "Still works"
