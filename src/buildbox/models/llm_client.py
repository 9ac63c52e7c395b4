"""Client base class shared by all completion-service integrations."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

__all__ = [
    "CompletionRequest",
    "LLMClient",
    "LLMClientError",
    "LLMResponseFormatError",
    "LLMTransportError",
]


METADATA_VALUE_LIMIT = 512


class LLMClientError(RuntimeError):
    """Base error raised for completion client failures."""


class LLMTransportError(LLMClientError):
    """Raised when the transport fails (network, auth, quota, timeout)."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the service answers without any usable text."""


@dataclass(slots=True)
class CompletionRequest:
    """System/user message pair sent to a completion service."""

    prompt: str
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    response_schema: Optional[Dict[str, Any]] = None
    schema_name: str = "response"
    temperature: float = 0.0
    timeout: Optional[float] = None

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render the Responses-API request body."""
        messages = [_input_message("user", self.prompt)]
        if self.system_prompt:
            messages.insert(0, _input_message("system", self.system_prompt))

        payload: Dict[str, Any] = {"model": self.model or default_model, "input": messages}
        if self.response_schema is not None:
            payload["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": self.schema_name,
                    "schema": self.response_schema,
                    "strict": True,
                }
            }
        if self.temperature:
            payload["temperature"] = self.temperature
        if self.metadata:
            payload["metadata"] = {key: _metadata_value(value) for key, value in self.metadata.items()}
        return payload


def _input_message(role: str, text: str) -> Dict[str, Any]:
    return {"role": role, "content": [{"type": "input_text", "text": text}]}


def _metadata_value(value: Any) -> str:
    """Metadata values must be short strings."""
    text = value if isinstance(value, str) else json.dumps(value, separators=(",", ":"), sort_keys=True)
    if len(text) > METADATA_VALUE_LIMIT:
        text = f"{text[: METADATA_VALUE_LIMIT - 3]}..."
    return text


class LLMClient:
    """High-level helper that sends one request and returns the raw completion text.

    There is no automatic retry: a failed call surfaces immediately so the
    caller can report it and let the user re-submit.
    """

    def __init__(self, model: str, *, timeout: float = 120.0) -> None:
        self._model = model
        self._timeout = timeout

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    @property
    def timeout(self) -> float:
        return self._timeout

    def complete(self, request: CompletionRequest) -> str:
        """Invoke the underlying model and return its raw text output."""
        payload = request.to_payload(self._model)
        timeout = request.timeout if request.timeout and request.timeout > 0 else self._timeout
        raw = self._raw_invoke(payload, timeout)
        if raw is None or not raw.strip():
            raise LLMResponseFormatError("Model returned an empty response.")
        return raw

    def _raw_invoke(self, payload: Dict[str, Any], timeout: float) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")
