"""Shared helper for issuing a stage request and logging the raw output."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from ..models.llm_client import CallStyle, LLMClient, LLMRequest
from ..tools.run_logs import write_llm_output


def invoke_stage(
    stage: str,
    *,
    client: LLMClient,
    system_prompt: str,
    prompt: str,
    metadata: Optional[dict[str, Any]] = None,
    artifacts_root: Optional[Path] = None,
) -> str:
    """Send one completion request and return the raw text verbatim."""
    request = LLMRequest(
        prompt=prompt,
        system_prompt=system_prompt,
        stage=stage,
        metadata=dict(metadata or {}),
    )

    def _log_output(
        llm_request: LLMRequest,
        style: CallStyle,
        raw: Optional[str],
        error: Optional[Exception],
    ) -> None:
        if artifacts_root is None:
            return
        write_llm_output(
            artifacts_root,
            stage=llm_request.stage,
            call_style=style.name,
            model=style.model,
            raw=raw,
            error=error,
        )

    return client.complete(request, logger=_log_output)
