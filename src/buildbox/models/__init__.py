"""Convenience exports for buildbox completion client implementations."""

from .gpt5 import GPT5Client
from .llm_client import (
    CompletionRequest,
    LLMClient,
    LLMClientError,
    LLMResponseFormatError,
    LLMTransportError,
)
from .offline import OfflineLLMClient, is_offline_model

__all__ = [
    "CompletionRequest",
    "GPT5Client",
    "LLMClient",
    "LLMClientError",
    "LLMResponseFormatError",
    "LLMTransportError",
    "OfflineLLMClient",
    "is_offline_model",
]
