"""Prompt templates for the diff and file-map requests."""

from __future__ import annotations

from typing import Optional, Sequence

from .context_builder import ContextBundle
from .structured import ChangeRequest

DIFF_START_EXAMPLE = "diff --git a/index.html b/index.html"

FILE_MAP_SCHEMA_EXAMPLE = (
    '{"changes": [{"path": "index.html", "action": "upsert", "content": "<full file text>"}, '
    '{"path": "css/old.css", "action": "delete"}]}'
)

_EMPTY_CONTEXT = "(no project files found)"


def _render_allowed(allowed: Sequence[str]) -> str:
    return ", ".join(allowed)


def render_diff_system_prompt(allowed: Sequence[str]) -> str:
    """System instruction that constrains the model to a single unified diff."""
    return (
        "You are an expert front-end coder. Output a single unified diff (git patch) only.\n"
        "Constraints:\n"
        f"- Only modify files under: {_render_allowed(allowed)}.\n"
        "- Keep changes minimal and self-contained.\n"
        "- Ensure the site still loads as a static site (no new build tools).\n"
        "- If adding assets, inline small snippets (e.g. tiny CSS/JS) instead of adding npm deps.\n"
        "- Prefer vanilla JS or small CDN script tags for visual effects.\n"
        "- Use UTF-8 and end files with a newline."
    )


def render_diff_user_prompt(request: ChangeRequest, bundle: ContextBundle, *, project_name: str) -> str:
    context = bundle.render() or _EMPTY_CONTEXT
    return (
        f"Implement the following request for the {project_name} site.\n"
        f"Request: {request.prompt}\n\n"
        f"Project files (read-only context):\n{context}\n\n"
        "Return only a valid unified diff starting with lines like:\n"
        f"{DIFF_START_EXAMPLE}"
    )


def render_file_map_system_prompt(allowed: Sequence[str]) -> str:
    """System instruction describing the strict JSON file-map schema."""
    return (
        "You are an expert front-end coder. A unified diff could not be applied, so describe the change "
        "as whole-file replacements instead.\n"
        "Return only JSON: a single object with a `changes` array. Each entry has:\n"
        "- `path`: repository-relative file path\n"
        '- `action`: "upsert" (create or fully replace the file) or "delete"\n'
        "- `content`: the complete new file text, required for upsert, omitted for delete\n"
        f"Example: {FILE_MAP_SCHEMA_EXAMPLE}\n"
        "Do not include markdown fences, prose, or comments.\n"
        f"Only touch files under: {_render_allowed(allowed)}."
    )


def render_file_map_user_prompt(
    request: ChangeRequest,
    bundle: ContextBundle,
    *,
    project_name: str,
    failure_note: Optional[str] = None,
) -> str:
    context = bundle.render() or _EMPTY_CONTEXT
    sections = [
        f"Implement the following request for the {project_name} site.",
        f"Request: {request.prompt}",
        "",
        f"Project files (read-only context):\n{context}",
    ]
    if failure_note and failure_note.strip():
        sections.extend(
            [
                "",
                "The previous unified diff failed to apply with this error; do not repeat the same mistake:",
                failure_note.strip(),
            ]
        )
    sections.extend(["", "Return only the JSON object."])
    return "\n".join(sections)


__all__ = [
    "DIFF_START_EXAMPLE",
    "FILE_MAP_SCHEMA_EXAMPLE",
    "render_diff_system_prompt",
    "render_diff_user_prompt",
    "render_file_map_system_prompt",
    "render_file_map_user_prompt",
]
