"""Model-driven patch pipeline for small static front ends."""

from .errors import (
    ConfigurationError,
    FileMapSchemaError,
    MalformedModelOutputError,
    ModelUnavailableError,
    PathViolationError,
    PipelineError,
)
from .orchestrator import AppliedVia, Orchestrator, PipelineResult, PipelineState
from .structured import ChangeRequest

__all__ = [
    "AppliedVia",
    "ChangeRequest",
    "ConfigurationError",
    "FileMapSchemaError",
    "MalformedModelOutputError",
    "ModelUnavailableError",
    "Orchestrator",
    "PathViolationError",
    "PipelineError",
    "PipelineResult",
    "PipelineState",
]
