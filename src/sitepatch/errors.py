"""Error taxonomy shared by every pipeline stage."""

from __future__ import annotations

from typing import Any, Mapping


class PipelineError(RuntimeError):
    """Base error for fatal pipeline conditions."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ConfigurationError(PipelineError):
    """Raised when a required credential or input is missing."""


class ModelUnavailableError(PipelineError):
    """Raised when every configured call style failed to produce a response."""


class MalformedModelOutputError(PipelineError):
    """Raised when neither a diff nor a file map can be extracted from model output."""


class PathViolationError(PipelineError):
    """Raised when a proposed change targets a path outside the allowlist."""

    def __init__(self, path: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(f"Change touches disallowed path: {path}", details=details)
        self.path = path


class ApplyStrategyError(PipelineError):
    """Raised when a single diff-apply strategy fails; recovered by the next strategy."""


class FileMapSchemaError(PipelineError):
    """Raised when the fallback file map is malformed or cannot be applied."""


__all__ = [
    "ApplyStrategyError",
    "ConfigurationError",
    "FileMapSchemaError",
    "MalformedModelOutputError",
    "ModelUnavailableError",
    "PathViolationError",
    "PipelineError",
]
