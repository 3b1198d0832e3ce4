"""OpenAI call styles: the Responses API first, Chat Completions as fallback."""

from __future__ import annotations

import json
import os
from typing import Any, Callable, Dict, Optional

from ..errors import ConfigurationError
from .llm_client import CallStyle, LLMClient, LLMRequest, LLMTransportError

__all__ = [
    "ChatCompletionsCallStyle",
    "HttpTransport",
    "ResponsesCallStyle",
    "build_openai_client",
]


DEFAULT_BASE_URL = "https://api.openai.com/v1"

Transport = Callable[[str, Dict[str, Any]], str]


class HttpTransport:
    """POST JSON payloads to the OpenAI REST API."""

    def __init__(self, *, api_key: str, timeout: float = 120.0) -> None:
        self._api_key = api_key
        timeout_override = os.getenv("SITEPATCH_MODEL_TIMEOUT")
        if timeout_override:
            try:
                parsed = float(timeout_override)
                if parsed > 0:
                    timeout = parsed
            except ValueError:
                pass
        self._timeout = timeout

    def __call__(self, url: str, payload: Dict[str, Any]) -> str:
        import urllib.error
        import urllib.request

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError("Completion request timed out.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise LLMTransportError(f"HTTP {error.code}: {message}") from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise LLMTransportError(f"Failed to reach {url}: {error.reason}") from error

        if status >= 400:
            raise LLMTransportError(f"Unexpected HTTP status {status}")

        return raw.decode("utf-8")


class _OpenAICallStyle(CallStyle):
    endpoint = ""

    def __init__(self, model: str, *, transport: Transport, base_url: str = DEFAULT_BASE_URL) -> None:
        super().__init__(model)
        self._transport = transport
        self._url = f"{base_url.rstrip('/')}/{self.endpoint}"

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        try:
            return self._transport(self._url, payload)
        except LLMTransportError:
            raise
        except Exception as error:
            raise LLMTransportError(f"Transport rejected the request: {error}") from error

    @staticmethod
    def _load(raw_response: str) -> Any:
        if not raw_response:
            return None
        try:
            return json.loads(raw_response)
        except json.JSONDecodeError:
            return None


class ResponsesCallStyle(_OpenAICallStyle):
    """Preferred call style targeting ``/responses``."""

    name = "responses"
    endpoint = "responses"

    def to_payload(self, request: LLMRequest) -> Dict[str, Any]:
        messages: list[Dict[str, Any]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})
        payload: Dict[str, Any] = {"model": self.model, "input": messages}
        if request.metadata:
            payload["metadata"] = request.serialised_metadata()
        return payload

    def _extract_text(self, raw_response: str) -> Optional[str]:
        data = self._load(raw_response)
        if not isinstance(data, dict):
            return None

        output_text = data.get("output_text")
        if isinstance(output_text, str) and output_text.strip():
            return output_text

        # The output list interleaves reasoning and message items.
        chunks: list[str] = []
        for item in data.get("output") or []:
            if not isinstance(item, dict) or item.get("type", "message") != "message":
                continue
            for content in item.get("content") or []:
                if isinstance(content, dict) and content.get("type") in ("output_text", "text"):
                    text = content.get("text")
                    if isinstance(text, str):
                        chunks.append(text)
        joined = "".join(chunks)
        return joined or None


class ChatCompletionsCallStyle(_OpenAICallStyle):
    """Fallback call style targeting ``/chat/completions``."""

    name = "chat-completions"
    endpoint = "chat/completions"

    def __init__(
        self,
        model: str,
        *,
        transport: Transport,
        base_url: str = DEFAULT_BASE_URL,
        temperature: Optional[float] = 0.2,
    ) -> None:
        super().__init__(model, transport=transport, base_url=base_url)
        self._temperature = temperature

    def to_payload(self, request: LLMRequest) -> Dict[str, Any]:
        messages: list[Dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})
        payload: Dict[str, Any] = {"model": self.model, "messages": messages}
        if self._temperature is not None:
            payload["temperature"] = self._temperature
        return payload

    def _extract_text(self, raw_response: str) -> Optional[str]:
        data = self._load(raw_response)
        if not isinstance(data, dict):
            return None
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices:
            return None
        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else None
        if not isinstance(message, dict):
            return None
        content = message.get("content")
        return content if isinstance(content, str) else None


def build_openai_client(
    *,
    api_key: Optional[str] = None,
    primary_model: str = "gpt-5",
    fallback_model: str = "gpt-4o-mini",
    fallback_temperature: Optional[float] = 0.2,
    base_url: str = DEFAULT_BASE_URL,
    timeout: float = 120.0,
    transport: Optional[Transport] = None,
) -> LLMClient:
    """Construct the two-style client used by the pipeline."""
    if transport is None:
        key = api_key or os.getenv("OPENAI_API_KEY")
        if not key:
            raise ConfigurationError("OPENAI_API_KEY is required when using the default transport.")
        transport = HttpTransport(api_key=key, timeout=timeout)
    return LLMClient(
        [
            ResponsesCallStyle(primary_model, transport=transport, base_url=base_url),
            ChatCompletionsCallStyle(
                fallback_model,
                transport=transport,
                base_url=base_url,
                temperature=fallback_temperature,
            ),
        ]
    )
