"""Parse, validate and apply the whole-file fallback protocol."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

from ..errors import FileMapSchemaError
from ..structured import FILE_MAP_ACTIONS, FileMapChange, FileMapDocument
from .allowlist import DEFAULT_ALLOWLIST, PathAllowlist, normalise_path
from .vcs import GitRepository

LOGGER = logging.getLogger(__name__)

_FENCE = re.compile(r"```[^\n]*\n(.*?)```", re.DOTALL)


@dataclass(slots=True)
class _RawChange:
    path: str
    action: str
    content: Optional[str] = None


@dataclass(slots=True)
class _RawFileMap:
    changes: List[_RawChange] = field(default_factory=list)


_FILE_MAP_ADAPTER = TypeAdapter(_RawFileMap)


def _strip_fence(payload: str) -> str:
    match = _FENCE.search(payload)
    brace = payload.find("{")
    # Fences inside JSON string values are file content.
    if match and (brace == -1 or match.start() < brace):
        return match.group(1)
    return payload


def _slice_object(payload: str) -> str:
    start = payload.find("{")
    end = payload.rfind("}")
    if start == -1 or end <= start:
        raise FileMapSchemaError(
            "Model output does not contain a JSON object.",
            details={"raw_output": payload},
        )
    return payload[start : end + 1]


def parse_file_map(raw_text: str, allowlist: PathAllowlist = DEFAULT_ALLOWLIST) -> FileMapDocument:
    """Turn model output into a validated ``FileMapDocument``.

    The whole document is rejected when any member is malformed or targets a
    path outside ``allowlist``.
    """
    text = (raw_text or "").replace("\r\n", "\n")
    if text.startswith("\ufeff"):
        text = text[1:]
    candidate = _slice_object(_strip_fence(text))

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as error:
        raise FileMapSchemaError(
            f"File map is not valid JSON: {error}",
            details={"raw_output": raw_text},
        ) from error

    if not isinstance(data, dict) or not isinstance(data.get("changes"), list):
        raise FileMapSchemaError(
            "File map must be an object with a `changes` array.",
            details={"raw_output": raw_text},
        )

    try:
        parsed = _FILE_MAP_ADAPTER.validate_python(data)
    except ValidationError as error:
        raise FileMapSchemaError(
            f"File map failed schema validation: {error.error_count()} error(s)",
            details={"raw_output": raw_text, "errors": error.errors(include_url=False)},
        ) from error

    changes: list[FileMapChange] = []
    for index, entry in enumerate(parsed.changes):
        action = entry.action.strip().lower()
        if action == "upsert" and entry.content is None:
            raise FileMapSchemaError(
                f"Change {index} upserts {entry.path} without content.",
                details={"raw_output": raw_text},
            )
        changes.append(FileMapChange(path=entry.path.strip(), action=action, content=entry.content))

    allowlist.check(change.path for change in changes)
    return FileMapDocument(changes=tuple(changes))


def _ensure_single_trailing_newline(content: str) -> str:
    normalised = content.replace("\r\n", "\n")
    return normalised.rstrip("\n") + "\n"


def _resolve_target(root: Path, path: str) -> Path:
    target = (root / normalise_path(path)).resolve()
    try:
        target.relative_to(root)
    except ValueError:
        raise FileMapSchemaError(f"File map change escapes the working tree: {path}") from None
    return target


def _apply_change(target: Path, change: FileMapChange) -> None:
    if change.action == "delete":
        # Absent targets are already in the requested state.
        target.unlink(missing_ok=True)
        return
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(_ensure_single_trailing_newline(change.content or ""), encoding="utf-8")


def apply_file_map(
    document: FileMapDocument,
    *,
    repo_root: Path | str,
    repository: Optional[GitRepository] = None,
    exclude: Sequence[str] = (),
) -> list[str]:
    """Write or delete each change in order, then stage the working tree.

    Returns the normalised paths that were changed. An unknown action stops
    the run at that change; earlier changes stay on disk.
    """
    root = Path(repo_root).resolve()
    applied: list[str] = []
    for index, change in enumerate(document.changes):
        target = _resolve_target(root, change.path)
        relative = target.relative_to(root).as_posix()
        if change.action not in FILE_MAP_ACTIONS:
            raise FileMapSchemaError(
                f"Unsupported file map action {change.action!r} for {change.path}.",
                details={"index": index, "applied": list(applied)},
            )
        if change.action == "upsert" and change.content is None:
            raise FileMapSchemaError(f"Change {index} upserts {change.path} without content.")
        if change.action == "delete" and target.is_dir():
            raise FileMapSchemaError(
                f"File map may only delete files, not the directory {relative}.",
                details={"index": index, "applied": list(applied)},
            )
        try:
            _apply_change(target, change)
        except OSError as error:
            raise FileMapSchemaError(
                f"Failed to {change.action} {relative}: {error}",
                details={"index": index, "applied": list(applied)},
            ) from error
        LOGGER.debug("File map %s %s", change.action, relative)
        applied.append(relative)

    if repository is not None:
        repository.stage_all(exclude=exclude)
    return applied


__all__ = ["apply_file_map", "parse_file_map"]
