"""Convenience exports for the completion client and its call styles."""

from .llm_client import (
    CallStyle,
    LLMClient,
    LLMClientError,
    LLMRequest,
    LLMResponseFormatError,
    LLMTransportError,
)
from .openai_client import (
    ChatCompletionsCallStyle,
    HttpTransport,
    ResponsesCallStyle,
    build_openai_client,
)

__all__ = [
    "CallStyle",
    "ChatCompletionsCallStyle",
    "HttpTransport",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMTransportError",
    "ResponsesCallStyle",
    "build_openai_client",
]
