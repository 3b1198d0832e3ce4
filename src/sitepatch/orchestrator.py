"""Pipeline orchestrator: an explicit state machine over the patch stages."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .context_builder import ContextBuilder, ContextBundle
from .errors import PipelineError
from .models.llm_client import LLMClient
from .phases.diff import request_diff
from .phases.filemap import request_file_map
from .structured import ChangeRequest, FileMapDocument
from .tools.allowlist import DEFAULT_ALLOWLIST, PathAllowlist
from .tools.filemap import apply_file_map, parse_file_map
from .tools.patch import ApplyAttempt, DiffApplier, PatchCandidate, Runner, build_candidate
from .tools.run_logs import emit_event, write_failure_artifact
from .tools.vcs import GitRepository

LOGGER = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "Co-op Clicker"
DEFAULT_ARTIFACTS_DIR = ".sitepatch"
SCRATCH_PATCH_NAME = "ai.patch"
APPLY_LOG_NAME = "apply-error.log"


class PipelineState(str, Enum):
    """States visited by a single pipeline run."""

    INIT = "init"
    CONTEXT_COLLECTED = "context_collected"
    DIFF_REQUESTED = "diff_requested"
    DIFF_VALIDATED = "diff_validated"
    DIFF_APPLIED = "diff_applied"
    DIFF_EXHAUSTED = "diff_exhausted"
    FILEMAP_REQUESTED = "filemap_requested"
    FILEMAP_VALIDATED = "filemap_validated"
    FILEMAP_APPLIED = "filemap_applied"
    DONE = "done"
    FAILED = "failed"


class StepOutcome(str, Enum):
    """Result reported by the handler of a state."""

    OK = "ok"
    EXHAUSTED = "exhausted"
    FATAL = "fatal"


class AppliedVia(str, Enum):
    DIFF = "diff"
    FILEMAP = "filemap"


TERMINAL_STATES = frozenset({PipelineState.DONE, PipelineState.FAILED})

_TRANSITIONS: Mapping[tuple[PipelineState, StepOutcome], PipelineState] = {
    (PipelineState.INIT, StepOutcome.OK): PipelineState.CONTEXT_COLLECTED,
    (PipelineState.CONTEXT_COLLECTED, StepOutcome.OK): PipelineState.DIFF_REQUESTED,
    (PipelineState.DIFF_REQUESTED, StepOutcome.OK): PipelineState.DIFF_VALIDATED,
    (PipelineState.DIFF_VALIDATED, StepOutcome.OK): PipelineState.DIFF_APPLIED,
    (PipelineState.DIFF_VALIDATED, StepOutcome.EXHAUSTED): PipelineState.DIFF_EXHAUSTED,
    (PipelineState.DIFF_APPLIED, StepOutcome.OK): PipelineState.DONE,
    (PipelineState.DIFF_EXHAUSTED, StepOutcome.OK): PipelineState.FILEMAP_REQUESTED,
    (PipelineState.FILEMAP_REQUESTED, StepOutcome.OK): PipelineState.FILEMAP_VALIDATED,
    (PipelineState.FILEMAP_VALIDATED, StepOutcome.OK): PipelineState.FILEMAP_APPLIED,
    (PipelineState.FILEMAP_APPLIED, StepOutcome.OK): PipelineState.DONE,
}


def next_state(state: PipelineState, outcome: StepOutcome) -> PipelineState:
    """Return the state that follows ``state`` after ``outcome``.

    Any fatal outcome leads to ``FAILED``; terminal states and unknown pairs
    raise ``ValueError``.
    """
    if state in TERMINAL_STATES:
        raise ValueError(f"{state.value} is terminal")
    if outcome is StepOutcome.FATAL:
        return PipelineState.FAILED
    try:
        return _TRANSITIONS[(state, outcome)]
    except KeyError:
        raise ValueError(f"No transition from {state.value} on {outcome.value}") from None


@dataclass(slots=True)
class PipelineResult:
    """Terminal outcome of one run."""

    applied: bool
    via: Optional[AppliedVia] = None
    reason: Optional[str] = None
    error_type: Optional[str] = None
    attempts: tuple[ApplyAttempt, ...] = ()
    states: tuple[PipelineState, ...] = ()
    changed_paths: tuple[str, ...] = ()
    artifact_path: Optional[Path] = None

    @property
    def exit_code(self) -> int:
        return 0 if self.applied else 1


@dataclass(slots=True)
class _RunContext:
    """Mutable per-run scratchpad shared by the state handlers."""

    request: ChangeRequest
    bundle: ContextBundle = field(default_factory=ContextBundle)
    raw_diff: Optional[str] = None
    candidate: Optional[PatchCandidate] = None
    attempts: List[ApplyAttempt] = field(default_factory=list)
    raw_file_map: Optional[str] = None
    document: Optional[FileMapDocument] = None
    changed_paths: List[str] = field(default_factory=list)
    via: Optional[AppliedVia] = None
    error: Optional[PipelineError] = None

    @property
    def last_failure_note(self) -> Optional[str]:
        for attempt in reversed(self.attempts):
            if not attempt.success and attempt.diagnostic:
                return attempt.diagnostic
        return None


class Orchestrator:
    """Sequence context collection, diff application and the file-map fallback."""

    def __init__(
        self,
        *,
        client: LLMClient,
        config: Mapping[str, Any] | None = None,
        repo_root: Path | str,
        allowlist: PathAllowlist = DEFAULT_ALLOWLIST,
        runner: Optional[Runner] = None,
        repository: Optional[GitRepository] = None,
    ) -> None:
        self.client = client
        self.config: Mapping[str, Any] = config or {}
        self.repo_root = Path(repo_root).resolve()
        self.allowlist = allowlist
        self._runner = runner
        self._repository = repository

        project_cfg = self.config.get("project") or {}
        self.project_name = str(project_cfg.get("name") or DEFAULT_PROJECT_NAME)
        paths_cfg = self.config.get("paths") or {}
        artifacts_value = str(paths_cfg.get("artifacts") or DEFAULT_ARTIFACTS_DIR)
        artifacts_path = Path(artifacts_value)
        if not artifacts_path.is_absolute():
            artifacts_path = self.repo_root / artifacts_path
        self.artifacts_root = artifacts_path
        self.scratch_path = self.artifacts_root / SCRATCH_PATCH_NAME
        self.apply_log_path = self.artifacts_root / APPLY_LOG_NAME

        self._handlers: Dict[PipelineState, Callable[[_RunContext], StepOutcome]] = {
            PipelineState.INIT: self._collect_context,
            PipelineState.CONTEXT_COLLECTED: self._request_diff,
            PipelineState.DIFF_REQUESTED: self._validate_diff,
            PipelineState.DIFF_VALIDATED: self._apply_diff,
            PipelineState.DIFF_APPLIED: self._finish_diff,
            PipelineState.DIFF_EXHAUSTED: self._request_file_map,
            PipelineState.FILEMAP_REQUESTED: self._validate_file_map,
            PipelineState.FILEMAP_VALIDATED: self._apply_file_map,
            PipelineState.FILEMAP_APPLIED: self._finish_file_map,
        }

    # ------------------------------------------------------------------ driver
    def run(self, request: ChangeRequest) -> PipelineResult:
        """Drive one request to ``DONE`` or ``FAILED``."""
        context = _RunContext(request=request)
        state = PipelineState.INIT
        states: List[PipelineState] = [state]
        emit_event("pipeline_started", requester=request.requester, repo_root=self.repo_root)

        while state not in TERMINAL_STATES:
            handler = self._handlers[state]
            try:
                outcome = handler(context)
            except PipelineError as error:
                context.error = error
                outcome = StepOutcome.FATAL
            except OSError as error:
                context.error = PipelineError(f"Filesystem error during {state.value}: {error}")
                outcome = StepOutcome.FATAL
            previous, state = state, next_state(state, outcome)
            states.append(state)
            emit_event("pipeline_transition", source=previous, outcome=outcome, target=state)

        if state is PipelineState.FAILED:
            return self._fail(context, states)

        via = context.via.value if context.via else "unknown"
        LOGGER.info("Patch applied via %s for: %s (requested by %s)", via, request.prompt, request.requester)
        return PipelineResult(
            applied=True,
            via=context.via,
            attempts=tuple(context.attempts),
            states=tuple(states),
            changed_paths=tuple(context.changed_paths),
        )

    # ---------------------------------------------------------------- handlers
    def _collect_context(self, context: _RunContext) -> StepOutcome:
        context.bundle = ContextBuilder(self.repo_root).collect()
        LOGGER.debug("Collected context files: %s", ", ".join(context.bundle.paths) or "(none)")
        return StepOutcome.OK

    def _request_diff(self, context: _RunContext) -> StepOutcome:
        context.raw_diff = request_diff(
            context.request,
            context.bundle,
            client=self.client,
            allowlist=self.allowlist,
            project_name=self.project_name,
            artifacts_root=self.artifacts_root,
        )
        return StepOutcome.OK

    def _validate_diff(self, context: _RunContext) -> StepOutcome:
        context.candidate = build_candidate(context.raw_diff or "", self.allowlist)
        return StepOutcome.OK

    def _apply_diff(self, context: _RunContext) -> StepOutcome:
        assert context.candidate is not None
        applier = DiffApplier(
            self.repo_root,
            scratch_path=self.scratch_path,
            log_path=self.apply_log_path,
            allowlist=self.allowlist,
            runner=self._runner,
        )
        context.attempts = applier.apply(context.candidate)
        if context.attempts and context.attempts[-1].success:
            context.changed_paths = sorted(context.candidate.touched_paths)
            return StepOutcome.OK
        return StepOutcome.EXHAUSTED

    def _finish_diff(self, context: _RunContext) -> StepOutcome:
        context.via = AppliedVia.DIFF
        self._run_build_hook()
        return StepOutcome.OK

    def _request_file_map(self, context: _RunContext) -> StepOutcome:
        context.raw_file_map = request_file_map(
            context.request,
            context.bundle,
            context.last_failure_note,
            client=self.client,
            allowlist=self.allowlist,
            project_name=self.project_name,
            artifacts_root=self.artifacts_root,
        )
        return StepOutcome.OK

    def _validate_file_map(self, context: _RunContext) -> StepOutcome:
        context.document = parse_file_map(context.raw_file_map or "", self.allowlist)
        return StepOutcome.OK

    def _apply_file_map(self, context: _RunContext) -> StepOutcome:
        assert context.document is not None
        repository = self._repository or GitRepository(self.repo_root)
        context.changed_paths = apply_file_map(
            context.document,
            repo_root=self.repo_root,
            repository=repository,
            exclude=self.stage_exclusions(),
        )
        return StepOutcome.OK

    def _finish_file_map(self, context: _RunContext) -> StepOutcome:
        context.via = AppliedVia.FILEMAP
        self._run_build_hook()
        return StepOutcome.OK

    # ----------------------------------------------------------------- helpers
    def stage_exclusions(self) -> list[str]:
        try:
            return [self.artifacts_root.relative_to(self.repo_root).as_posix()]
        except ValueError:
            return []

    def _run_build_hook(self) -> None:
        """Run the optional build command; failures are only reported."""
        build_cfg = self.config.get("build") or {}
        if not build_cfg.get("enabled"):
            return
        command = build_cfg.get("command") or ["npm", "run", "-s", "build"]
        if isinstance(command, str):
            command = command.split()
        try:
            result = subprocess.run(
                [str(part) for part in command],
                cwd=self.repo_root,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as error:
            LOGGER.warning("Build command %s could not start: %s", command, error)
            return
        if result.returncode != 0:
            LOGGER.warning("Build command %s exited with %d; continuing", command, result.returncode)

    def _read_apply_log(self) -> Optional[str]:
        try:
            return self.apply_log_path.read_text(encoding="utf-8")
        except OSError:
            return None

    def _fail(self, context: _RunContext, states: Sequence[PipelineState]) -> PipelineResult:
        error = context.error or PipelineError("Pipeline failed without an error")
        failed_at = states[-2] if len(states) > 1 else PipelineState.INIT
        LOGGER.error("Pipeline failed during %s: %s", failed_at.value, error)
        payload = {
            "request": {"prompt": context.request.prompt, "requester": context.request.requester},
            "failed_at": failed_at,
            "states": list(states),
            "error": {
                "type": type(error).__name__,
                "message": str(error),
                "details": error.details,
            },
            "context_files": list(context.bundle.paths),
            "raw_diff_output": context.raw_diff,
            "sanitized_diff": context.candidate.sanitized_text if context.candidate else None,
            "attempts": [attempt.to_dict() for attempt in context.attempts],
            "apply_log": self._read_apply_log() if context.attempts else None,
            "raw_file_map_output": context.raw_file_map,
            "changed_paths": list(context.changed_paths),
        }
        artifact_path: Optional[Path]
        try:
            artifact_path = write_failure_artifact(self.artifacts_root, label=context.request.prompt, payload=payload)
        except OSError as write_error:
            LOGGER.error("Failed to write failure artifact: %s", write_error)
            artifact_path = None
        emit_event("pipeline_failed", error_type=type(error).__name__, artifact=artifact_path)
        return PipelineResult(
            applied=False,
            reason=str(error),
            error_type=type(error).__name__,
            attempts=tuple(context.attempts),
            states=tuple(states),
            changed_paths=tuple(context.changed_paths),
            artifact_path=artifact_path,
        )


__all__ = [
    "AppliedVia",
    "Orchestrator",
    "PipelineResult",
    "PipelineState",
    "StepOutcome",
    "TERMINAL_STATES",
    "next_state",
]
