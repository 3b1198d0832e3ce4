"""Model-facing stages of the pipeline."""

from __future__ import annotations

from enum import Enum


class StageName(str, Enum):
    """Enumeration of the model requests issued during a run."""

    DIFF = "diff"
    FILE_MAP = "filemap"


__all__ = ["StageName"]
