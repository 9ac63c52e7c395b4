"""GPT-5 completion client for the OpenAI Responses API."""

from __future__ import annotations

import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, Iterable, Iterator, Optional

from .llm_client import LLMClient, LLMResponseFormatError, LLMTransportError

__all__ = ["DEFAULT_BASE_URL", "GPT5Client", "extract_response_text", "urllib_transport"]

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1/responses"

Transport = Callable[[Dict[str, Any], float], str]


def urllib_transport(base_url: str, api_key: str) -> Transport:
    """Return a transport that POSTs payloads to ``base_url`` with bearer auth."""

    def _send(payload: Dict[str, Any], timeout: float) -> str:
        if os.getenv("BUILDBOX_DEBUG_PAYLOAD"):
            LOGGER.debug("Completion payload:\n%s", json.dumps(payload, indent=2, sort_keys=True))
        request = urllib.request.Request(
            base_url,
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
                "X-OpenAI-Client": "buildbox/0.1",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=timeout) as response:
                body = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:
            raise LLMTransportError(f"Completion request timed out after {timeout:g}s.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            detail = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code}: {detail}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach completion endpoint: {error.reason}") from error
        if status >= 400:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Unexpected HTTP status {status}")
        return body.decode("utf-8")

    return _send


def _as_items(container: Any) -> Iterable[Any]:
    if isinstance(container, dict):
        return [container]
    if isinstance(container, list):
        return container
    return []


def _texts_in(item: Dict[str, Any]) -> Iterator[str]:
    """Yield text candidates from one output event, message part, or choice."""
    for part in _as_items(item.get("content")):
        if not isinstance(part, dict):
            continue
        structured = part.get("json")
        if isinstance(structured, (dict, list)):
            yield json.dumps(structured)
        yield part.get("text")
    yield item.get("text")
    message = item.get("message")
    if isinstance(message, dict):
        yield message.get("content")
        yield message.get("text")


def _first_text(container: Any) -> Optional[str]:
    for item in _as_items(container):
        if not isinstance(item, dict):
            continue
        for candidate in _texts_in(item):
            if isinstance(candidate, str) and candidate.strip():
                return candidate
    return None


def extract_response_text(raw_response: str) -> Optional[str]:
    """Pull the model's text out of a Responses-API or chat-style envelope.

    Non-JSON bodies are returned as-is. An ``error`` envelope raises
    :class:`LLMTransportError` with the upstream message.
    """
    if not raw_response:
        return None
    try:
        data = json.loads(raw_response)
    except json.JSONDecodeError:
        return raw_response
    if not isinstance(data, dict):
        return raw_response

    error_block = data.get("error")
    if isinstance(error_block, dict) and error_block.get("message"):
        raise LLMTransportError(str(error_block["message"]))

    nested = data.get("response") if isinstance(data.get("response"), dict) else {}
    containers = (
        data.get("output") or data.get("outputs"),
        nested.get("output") or nested.get("outputs"),
        data.get("content") or data.get("choices"),
        [{"text": data.get("output_text")}],
    )
    for container in containers:
        text = _first_text(container)
        if text:
            return text
    return raw_response


class GPT5Client(LLMClient):
    """Completion client backed by the GPT-5 Responses API or an injected transport."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = "gpt-5",
        transport: Optional[Transport] = None,
        timeout: float = 120.0,
    ) -> None:
        override = os.getenv("GPT5_TIMEOUT")
        if override:
            try:
                timeout = float(override) if float(override) > 0 else timeout
            except ValueError:
                LOGGER.warning("Ignoring non-numeric GPT5_TIMEOUT=%r", override)
        super().__init__(model=model, timeout=timeout)

        if transport is None:
            key = api_key or os.getenv("GPT5_API_KEY") or os.getenv("OPENAI_API_KEY")
            if not key:
                raise ValueError("An API key is required when using the default transport.")
            transport = urllib_transport(base_url, key)
        self._transport = transport

    def _raw_invoke(self, payload: Dict[str, Any], timeout: float) -> str:
        try:
            raw_response = self._transport(payload, timeout)
        except LLMTransportError:
            raise
        except TimeoutError as error:
            raise LLMTransportError(f"Completion request timed out after {timeout:g}s.") from error
        except Exception as error:  # pragma: no cover
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

        text = extract_response_text(raw_response)
        if text is None:
            raise LLMResponseFormatError("GPT-5 response did not contain output text.")
        return text
