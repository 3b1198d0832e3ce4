"""Persist raw model output and failure diagnostics for post-run review."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

from ..utils.slug import slugify

LOGGER = logging.getLogger(__name__)
TELEMETRY_LOGGER = logging.getLogger("sitepatch.telemetry")

LLM_OUTPUTS_DIR = "llm_outputs"
FAILURES_DIR = "failures"


def _json_safe(value: Any) -> Any:
    """Convert payload values into JSON-friendly representations."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return _json_safe(asdict(value))
    if isinstance(value, Mapping):
        return {str(key): _json_safe(child) for key, child in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_json_safe(item) for item in value]
        return sorted(items, key=str) if isinstance(value, (set, frozenset)) else items
    return str(value)


def emit_event(event: str, **fields: Any) -> None:
    """Log one structured telemetry event as compact JSON."""
    payload: dict[str, Any] = {"event": event, "timestamp": _timestamp().isoformat()}
    for key, value in fields.items():
        payload[key] = _json_safe(value)
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))


def _timestamp() -> datetime:
    return datetime.now(timezone.utc)


def write_llm_output(
    artifacts_root: Path,
    *,
    stage: str,
    call_style: str,
    model: str,
    raw: Optional[str],
    error: Optional[Exception] = None,
) -> Optional[Path]:
    """Write one model response (or call-style failure) to a text file."""
    outputs_root = artifacts_root / LLM_OUTPUTS_DIR
    try:
        outputs_root.mkdir(parents=True, exist_ok=True)
    except OSError as mkdir_error:
        LOGGER.warning("Cannot create %s: %s", outputs_root, mkdir_error)
        return None

    timestamp = _timestamp()
    file_name = "__".join(
        [
            "output",
            slugify(stage, fallback="stage"),
            slugify(call_style, fallback="style"),
            timestamp.strftime("%Y%m%dT%H%M%S%fZ"),
            uuid.uuid4().hex[:8],
        ]
    )
    lines = [
        f"Timestamp: {timestamp.isoformat()}",
        f"Stage: {stage}",
        f"Call style: {call_style}",
        f"Model: {model}",
    ]
    if error is not None:
        lines.append(f"Error: {error}")
    lines.append("")
    lines.append("Raw Response:")
    lines.append(raw if raw is not None else "(none)")

    log_path = outputs_root / f"{file_name}.txt"
    try:
        log_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    except OSError as write_error:
        LOGGER.warning("Failed to persist model output to %s: %s", log_path, write_error)
        return None
    return log_path


def write_failure_artifact(artifacts_root: Path, *, label: str, payload: Mapping[str, Any]) -> Path:
    """Write the JSON diagnostic describing a failed run and return its path."""
    failures_root = artifacts_root / FAILURES_DIR
    failures_root.mkdir(parents=True, exist_ok=True)
    timestamp = _timestamp()
    file_name = "__".join(
        [
            slugify(label, fallback="run"),
            timestamp.strftime("%Y%m%dT%H%M%SZ"),
            uuid.uuid4().hex[:8],
        ]
    )
    artifact_path = failures_root / f"{file_name}.json"
    body = {"timestamp": timestamp.isoformat(), **_json_safe(payload)}
    with artifact_path.open("w", encoding="utf-8") as handle:
        json.dump(body, handle, indent=2, sort_keys=True)
    return artifact_path


__all__ = [
    "FAILURES_DIR",
    "LLM_OUTPUTS_DIR",
    "emit_event",
    "write_failure_artifact",
    "write_llm_output",
]
