"""Typed payloads exchanged between the pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .errors import ConfigurationError

DEFAULT_REQUESTER = "web-user"

FILE_MAP_ACTIONS: tuple[str, ...] = ("upsert", "delete")


@dataclass(frozen=True, slots=True)
class ChangeRequest:
    """Free-text change request produced by the dispatch trigger."""

    prompt: str
    requester: str = DEFAULT_REQUESTER

    def __post_init__(self) -> None:
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise ConfigurationError("A non-empty change request prompt is required.")
        if not isinstance(self.requester, str) or not self.requester.strip():
            object.__setattr__(self, "requester", DEFAULT_REQUESTER)

    @classmethod
    def from_values(cls, prompt: Optional[str], requester: Optional[str] = None) -> "ChangeRequest":
        """Build a request from optional CLI or environment values."""
        if prompt is None or not prompt.strip():
            raise ConfigurationError("AI_PROMPT not set; pass --prompt or provide a dispatch event.")
        return cls(prompt=prompt.strip(), requester=(requester or DEFAULT_REQUESTER).strip())

    @classmethod
    def from_event_payload(cls, payload: Mapping[str, Any]) -> "ChangeRequest":
        """Build a request from a repository dispatch event body.

        Both the full event (with ``client_payload``) and the bare client
        payload are accepted.
        """
        body: Any = payload.get("client_payload", payload) if isinstance(payload, Mapping) else None
        if not isinstance(body, Mapping):
            raise ConfigurationError("Dispatch event does not carry a client payload.")
        prompt = body.get("prompt")
        requester = body.get("user") or body.get("requester")
        if not isinstance(prompt, str):
            raise ConfigurationError("Dispatch event payload is missing a prompt.")
        return cls.from_values(prompt, requester if isinstance(requester, str) else None)


@dataclass(frozen=True, slots=True)
class FileMapChange:
    """Whole-file replacement or deletion emitted by the fallback protocol."""

    path: str
    action: str
    content: str | None = None


@dataclass(frozen=True, slots=True)
class FileMapDocument:
    """Ordered collection of file-map changes."""

    changes: tuple[FileMapChange, ...] = ()

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(change.path for change in self.changes)

    def __len__(self) -> int:
        return len(self.changes)


__all__ = [
    "DEFAULT_REQUESTER",
    "FILE_MAP_ACTIONS",
    "ChangeRequest",
    "FileMapChange",
    "FileMapDocument",
]
