from __future__ import annotations

import json

import pytest

from buildbox.models import gpt5
from buildbox.models.gpt5 import GPT5Client, urllib_transport
from buildbox.models.llm_client import CompletionRequest, LLMResponseFormatError, LLMTransportError
from buildbox.planning.parsing import decode_plan_text
from buildbox.planning.schemas import PLAN_RESPONSE_SCHEMA


def _make_response_payload(goal: str) -> str:
    payload = {
        "goal": goal,
        "explanation": "Example",
        "files": [
            {
                "filename": "src/app.js",
                "action": "edit",
                "content": "console.log('hi');\n",
                "reason": "Say hi",
            }
        ],
        "dependencies": [],
        "steps": ["Edit app"],
    }
    response = {
        "id": "resp_mock",
        "object": "response",
        "status": "completed",
        "output": [
            {
                "id": "msg_mock",
                "type": "message",
                "role": "assistant",
                "content": [
                    {
                        "type": "output_text",
                        "text": json.dumps(payload),
                    }
                ],
            }
        ],
    }
    return json.dumps(response)


def test_gpt5_client_extracts_json_from_responses_api() -> None:
    seen: list[dict] = []

    def transport(payload: dict, timeout: float) -> str:
        seen.append(payload)
        return _make_response_payload("Say hi")

    client = GPT5Client(model="gpt-5-mini", transport=transport)
    request = CompletionRequest(
        prompt="{}",
        system_prompt="system",
        response_schema=PLAN_RESPONSE_SCHEMA,
        schema_name="plan",
    )

    plan = decode_plan_text(client.complete(request))
    assert plan.goal == "Say hi"
    assert len(plan.files) == 1

    payload = seen[0]
    assert payload["model"] == "gpt-5-mini"
    assert [message["role"] for message in payload["input"]] == ["system", "user"]
    assert payload["text"]["format"]["name"] == "plan"
    assert payload["text"]["format"]["strict"] is True


def test_gpt5_client_extracts_from_output_json_block() -> None:
    payload = {"goal": "Alt goal", "explanation": "", "files": [], "dependencies": [], "steps": []}

    def transport(_: dict, __: float) -> str:
        response = {
            "output": [
                {
                    "id": "msg_json",
                    "type": "message",
                    "role": "assistant",
                    "content": [
                        {
                            "type": "output_json",
                            "json": payload,
                        }
                    ],
                }
            ]
        }
        return json.dumps(response)

    client = GPT5Client(model="gpt-5-mini", transport=transport)
    plan = decode_plan_text(client.complete(CompletionRequest(prompt="{}")))
    assert plan.goal == "Alt goal"
    assert plan.files == ()


def test_gpt5_client_surfaces_error_envelopes() -> None:
    def transport(_: dict, __: float) -> str:
        return json.dumps({"error": {"message": "Rate limit reached"}})

    client = GPT5Client(model="gpt-5-mini", transport=transport)
    with pytest.raises(LLMTransportError, match="Rate limit"):
        client.complete(CompletionRequest(prompt="{}"))


def test_gpt5_client_wraps_timeouts() -> None:
    def transport(_: dict, timeout: float) -> str:
        raise TimeoutError("slow")

    client = GPT5Client(model="gpt-5-mini", transport=transport, timeout=3)
    with pytest.raises(LLMTransportError, match="timed out"):
        client.complete(CompletionRequest(prompt="{}"))


def test_request_timeout_overrides_client_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GPT5_TIMEOUT", raising=False)
    timeouts: list[float] = []

    def transport(_: dict, timeout: float) -> str:
        timeouts.append(timeout)
        return "{}"

    client = GPT5Client(model="gpt-5-mini", transport=transport, timeout=30)
    client.complete(CompletionRequest(prompt="{}", timeout=5))
    client.complete(CompletionRequest(prompt="{}"))
    assert timeouts == [5, 30]


def test_empty_completion_is_a_format_error() -> None:
    client = GPT5Client(model="gpt-5-mini", transport=lambda _payload, _timeout: "   ")
    with pytest.raises(LLMResponseFormatError):
        client.complete(CompletionRequest(prompt="{}"))


def test_default_transport_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GPT5_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ValueError, match="API key"):
        GPT5Client(model="gpt-5-mini")


def test_urllib_transport_wraps_socket_timeouts(monkeypatch) -> None:
    def _slow_urlopen(request, timeout):
        raise TimeoutError("timed out")

    monkeypatch.setattr(gpt5.urllib.request, "urlopen", _slow_urlopen)
    send = urllib_transport("http://localhost.invalid/v1/responses", "test-key")

    with pytest.raises(LLMTransportError, match="timed out after 3s"):
        send({"model": "gpt-5"}, 3.0)
