from __future__ import annotations

import json
from typing import Any, Dict, List, Tuple

import pytest

from sitepatch.errors import ConfigurationError, ModelUnavailableError
from sitepatch.models import (
    ChatCompletionsCallStyle,
    LLMClient,
    LLMRequest,
    LLMTransportError,
    ResponsesCallStyle,
    build_openai_client,
)


class RecordingTransport:
    """Transport double keyed by endpoint suffix."""

    def __init__(self, replies: Dict[str, Any]) -> None:
        self.replies = replies
        self.calls: List[Tuple[str, Dict[str, Any]]] = []

    def __call__(self, url: str, payload: Dict[str, Any]) -> str:
        self.calls.append((url, payload))
        for suffix, reply in self.replies.items():
            if url.endswith(suffix):
                if isinstance(reply, Exception):
                    raise reply
                return reply if isinstance(reply, str) else json.dumps(reply)
        raise LLMTransportError(f"unexpected url {url}")


def _request() -> LLMRequest:
    return LLMRequest(prompt="add a favicon", system_prompt="diff only", stage="diff", metadata={"attempt": 1})


def test_responses_style_reads_output_text() -> None:
    transport = RecordingTransport({"/responses": {"output_text": "diff --git a/x b/x"}})
    style = ResponsesCallStyle("gpt-5", transport=transport, base_url="https://example.test/v1/")

    assert style.complete(_request()) == "diff --git a/x b/x"
    url, payload = transport.calls[0]
    assert url == "https://example.test/v1/responses"
    assert payload["model"] == "gpt-5"
    assert payload["input"][0] == {"role": "system", "content": "diff only"}
    assert payload["metadata"] == {"attempt": "1"}


def test_responses_style_joins_message_output_items() -> None:
    body = {
        "output": [
            {"type": "reasoning", "summary": []},
            {
                "type": "message",
                "content": [
                    {"type": "output_text", "text": "diff --git "},
                    {"type": "output_text", "text": "a/x b/x"},
                ],
            },
        ]
    }
    style = ResponsesCallStyle("gpt-5", transport=RecordingTransport({"/responses": body}))

    assert style.complete(_request()) == "diff --git a/x b/x"


def test_chat_style_reads_first_choice_and_sends_temperature() -> None:
    transport = RecordingTransport({"/chat/completions": {"choices": [{"message": {"content": "hello"}}]}})
    style = ChatCompletionsCallStyle("gpt-4o-mini", transport=transport, temperature=0.2)

    assert style.complete(_request()) == "hello"
    _, payload = transport.calls[0]
    assert payload["temperature"] == 0.2
    assert payload["messages"][-1] == {"role": "user", "content": "add a favicon"}


def test_client_falls_back_to_chat_when_responses_fails() -> None:
    transport = RecordingTransport(
        {
            "/responses": LLMTransportError("HTTP 404: model not found"),
            "/chat/completions": {"choices": [{"message": {"content": "fallback text"}}]},
        }
    )
    client = build_openai_client(transport=transport)
    seen: list[tuple[str, bool]] = []

    text = client.complete(_request(), logger=lambda req, style, out, err: seen.append((style.name, err is None)))

    assert text == "fallback text"
    assert [url.rsplit("/v1/", 1)[1] for url, _ in transport.calls] == ["responses", "chat/completions"]
    assert seen == [("responses", False), ("chat-completions", True)]


def test_empty_completion_counts_as_failure() -> None:
    transport = RecordingTransport(
        {
            "/responses": {"output_text": "   "},
            "/chat/completions": {"choices": [{"message": {"content": "real answer"}}]},
        }
    )
    client = build_openai_client(transport=transport)

    assert client.complete(_request()) == "real answer"


def test_client_raises_model_unavailable_when_every_style_fails() -> None:
    transport = RecordingTransport(
        {
            "/responses": RuntimeError("connection reset"),
            "/chat/completions": "not json",
        }
    )
    client = build_openai_client(transport=transport)

    with pytest.raises(ModelUnavailableError) as excinfo:
        client.complete(_request())

    failures = excinfo.value.details["failures"]
    assert len(failures) == 2
    assert failures[0].startswith("responses (gpt-5)")


def test_build_client_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ConfigurationError):
        build_openai_client()


def test_client_requires_at_least_one_style() -> None:
    with pytest.raises(ValueError):
        LLMClient([])


def test_metadata_is_truncated() -> None:
    request = LLMRequest(prompt="p", metadata={"note": "x" * 600})

    assert len(request.serialised_metadata()["note"]) == 512
