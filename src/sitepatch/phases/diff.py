"""Diff stage: ask the model for a single unified diff."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..context_builder import ContextBundle
from ..models.llm_client import LLMClient
from ..prompts import render_diff_system_prompt, render_diff_user_prompt
from ..structured import ChangeRequest
from ..tools.allowlist import DEFAULT_ALLOWLIST, PathAllowlist
from . import StageName
from .base import invoke_stage


def request_diff(
    request: ChangeRequest,
    bundle: ContextBundle,
    *,
    client: LLMClient,
    allowlist: PathAllowlist = DEFAULT_ALLOWLIST,
    project_name: str = "Co-op Clicker",
    artifacts_root: Optional[Path] = None,
) -> str:
    """Return the model's raw response to the diff instruction."""
    return invoke_stage(
        StageName.DIFF.value,
        client=client,
        system_prompt=render_diff_system_prompt(allowlist.describe()),
        prompt=render_diff_user_prompt(request, bundle, project_name=project_name),
        metadata={"requester": request.requester},
        artifacts_root=artifacts_root,
    )
