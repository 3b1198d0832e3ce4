"""File-map stage: ask the model for whole-file replacements as JSON."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..context_builder import ContextBundle
from ..models.llm_client import LLMClient
from ..prompts import render_file_map_system_prompt, render_file_map_user_prompt
from ..structured import ChangeRequest
from ..tools.allowlist import DEFAULT_ALLOWLIST, PathAllowlist
from . import StageName
from .base import invoke_stage


def request_file_map(
    request: ChangeRequest,
    bundle: ContextBundle,
    last_failure_note: Optional[str] = None,
    *,
    client: LLMClient,
    allowlist: PathAllowlist = DEFAULT_ALLOWLIST,
    project_name: str = "Co-op Clicker",
    artifacts_root: Optional[Path] = None,
) -> str:
    """Return the model's raw response to the file-map instruction.

    ``last_failure_note`` carries the final ``git apply`` diagnostic so the
    model can avoid the same structural mistake.
    """
    return invoke_stage(
        StageName.FILE_MAP.value,
        client=client,
        system_prompt=render_file_map_system_prompt(allowlist.describe()),
        prompt=render_file_map_user_prompt(
            request,
            bundle,
            project_name=project_name,
            failure_note=last_failure_note,
        ),
        metadata={"requester": request.requester},
        artifacts_root=artifacts_root,
    )
