"""Completion client that tries a fixed sequence of call styles."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..errors import ModelUnavailableError

__all__ = [
    "CallStyle",
    "LLMClient",
    "LLMClientError",
    "LLMRequest",
    "LLMResponseFormatError",
    "LLMTransportError",
]

LOGGER = logging.getLogger(__name__)

_MAX_METADATA_LEN = 512


class LLMClientError(RuntimeError):
    """Base error raised by a single call style."""


class LLMTransportError(LLMClientError):
    """Raised when the underlying transport fails to return a response."""


class LLMResponseFormatError(LLMClientError):
    """Raised when the response does not contain any completion text."""


@dataclass(slots=True)
class LLMRequest:
    """Provider-neutral completion request."""

    prompt: str
    system_prompt: Optional[str] = None
    stage: str = "completion"
    metadata: Dict[str, Any] = field(default_factory=dict)

    def serialised_metadata(self) -> Dict[str, str]:
        """Render metadata as bounded strings suitable for request bodies."""
        rendered: Dict[str, str] = {}
        for key, value in self.metadata.items():
            if isinstance(value, str):
                formatted = value
            else:
                formatted = json.dumps(value, separators=(",", ":"), sort_keys=True)
            if len(formatted) > _MAX_METADATA_LEN:
                formatted = f"{formatted[: _MAX_METADATA_LEN - 3]}..."
            rendered[key] = formatted
        return rendered


class CallStyle:
    """One request shape for asking the completion service for text.

    Subclasses render the payload, perform the call and pull the completion
    text out of the raw response.
    """

    name = "call-style"

    def __init__(self, model: str) -> None:
        self._model = model

    @property
    def model(self) -> str:
        return self._model

    def complete(self, request: LLMRequest) -> str:
        payload = self.to_payload(request)
        raw = self._raw_invoke(payload)
        text = self._extract_text(raw)
        if text is None or not text.strip():
            raise LLMResponseFormatError(f"{self.name} response did not contain completion text.")
        return text

    def to_payload(self, request: LLMRequest) -> Dict[str, Any]:
        raise NotImplementedError("Subclasses must implement to_payload().")

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        raise NotImplementedError("Subclasses must implement _raw_invoke().")

    def _extract_text(self, raw_response: str) -> Optional[str]:
        raise NotImplementedError("Subclasses must implement _extract_text().")


ResponseLogger = Callable[[LLMRequest, CallStyle, Optional[str], Optional[Exception]], None]


class LLMClient:
    """Try each call style in order and return the first completion text."""

    def __init__(self, styles: Sequence[CallStyle]) -> None:
        if not styles:
            raise ValueError("At least one call style is required.")
        self._styles: List[CallStyle] = list(styles)

    @property
    def styles(self) -> tuple[CallStyle, ...]:
        return tuple(self._styles)

    def complete(self, request: LLMRequest, *, logger: Optional[ResponseLogger] = None) -> str:
        failures: list[str] = []
        last_error: Optional[Exception] = None
        for style in self._styles:
            try:
                text = style.complete(request)
            except LLMClientError as error:
                LOGGER.warning("%s call style failed for %s: %s", style.name, request.stage, error)
                failures.append(f"{style.name} ({style.model}): {error}")
                last_error = error
                if logger:
                    logger(request, style, None, error)
                continue
            LOGGER.debug("%s call style answered %s (%d chars)", style.name, request.stage, len(text))
            if logger:
                logger(request, style, text, None)
            return text

        raise ModelUnavailableError(
            f"No completion available for {request.stage}: every call style failed.",
            details={"failures": failures},
        ) from last_error
