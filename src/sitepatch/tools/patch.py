"""Unified diff sanitising and guarded application via ``git apply``."""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from ..errors import ApplyStrategyError, MalformedModelOutputError
from .allowlist import DEFAULT_ALLOWLIST, PathAllowlist, normalise_path
from .run_logs import emit_event
from .vcs import run_git

LOGGER = logging.getLogger(__name__)

DIFF_MARKER = "diff --git"
DEV_NULL = "/dev/null"

_FENCED_DIFF = re.compile(r"```[ \t]*(?:diff|patch)\b[^\n]*\n(.*?)```", re.DOTALL | re.IGNORECASE)
_DIFF_HEADER = re.compile(r"^diff --git (\S+) (\S+)\s*$")
_FILE_HEADER = re.compile(r"^(?:---|\+\+\+) (.+)$")
_RENAME_HEADER = re.compile(r"^rename (?:from|to) (.+)$")

Runner = Callable[[Sequence[str], Path], "subprocess.CompletedProcess[str]"]


class ApplyStrategy(str, Enum):
    """Ordered ``git apply`` variants tried for every candidate diff."""

    DEFAULT = "default"
    STRIP_0 = "strip-0"
    STRIP_1 = "strip-1"

    @property
    def flags(self) -> Tuple[str, ...]:
        return _STRATEGY_FLAGS[self]


_STRATEGY_FLAGS: Mapping[ApplyStrategy, Tuple[str, ...]] = {
    ApplyStrategy.DEFAULT: ("--whitespace=fix", "--reject"),
    ApplyStrategy.STRIP_0: ("-p0", "--whitespace=fix"),
    ApplyStrategy.STRIP_1: ("-p1", "--whitespace=fix"),
}

STRATEGY_ORDER: Tuple[ApplyStrategy, ...] = (
    ApplyStrategy.DEFAULT,
    ApplyStrategy.STRIP_0,
    ApplyStrategy.STRIP_1,
)


@dataclass(frozen=True, slots=True)
class PatchCandidate:
    """Model output together with the sanitised diff and the paths it touches."""

    raw_text: str
    sanitized_text: str
    touched_paths: FrozenSet[str]


@dataclass(frozen=True, slots=True)
class ApplyAttempt:
    """Outcome of one apply strategy."""

    strategy: ApplyStrategy
    success: bool
    diagnostic: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"strategy": self.strategy.value, "success": self.success, "diagnostic": self.diagnostic}


def extract_diff(raw_text: str) -> str:
    """Strip fences, prose and CRLF from model output and return the diff.

    Raises ``MalformedModelOutputError`` when no ``diff --git`` payload is found.
    """
    text = raw_text or ""
    if text.startswith("\ufeff"):
        text = text[1:]
    text = text.replace("\r\n", "\n")

    fence = _FENCED_DIFF.search(text)
    marker_index = text.find(DIFF_MARKER)
    # A fence that opens after the first marker belongs to the diff body.
    if fence and (marker_index == -1 or fence.start() < marker_index):
        text = fence.group(1)

    marker_index = text.find(DIFF_MARKER)
    if marker_index > 0:
        text = text[marker_index:]
    text = text.strip()

    if not text.startswith(DIFF_MARKER):
        raise MalformedModelOutputError(
            "Model did not return a unified diff.",
            details={"raw_output": raw_text},
        )
    return text


def _split_git_header(line: str, raw_text: str) -> Tuple[str, ...]:
    """Return the two paths of a ``diff --git`` line.

    Paths containing spaces only parse when both sides name the same file,
    which is what git emits for everything but renames.
    """
    header = _DIFF_HEADER.match(line)
    if header:
        return header.groups()
    rest = line[len(DIFF_MARKER) :].strip()
    if len(rest) % 2 == 1:
        middle = len(rest) // 2
        left, right = rest[:middle], rest[middle + 1 :]
        if rest[middle] == " " and normalise_path(left) == normalise_path(right):
            return (left, right)
    raise MalformedModelOutputError(
        f"Cannot read file names from diff header: {line!r}",
        details={"raw_output": raw_text},
    )


def extract_touched_paths(patch: str) -> FrozenSet[str]:
    """Collect every file path named by the diff headers."""
    paths: set[str] = set()
    in_header = False
    for line in patch.splitlines():
        if line.startswith(DIFF_MARKER + " "):
            paths.update(_split_git_header(line, patch))
            in_header = True
            continue
        if line.startswith("@@"):
            in_header = False
        # Removed lines such as "-- note" look like headers inside hunks.
        if not in_header:
            continue
        match = _FILE_HEADER.match(line) or _RENAME_HEADER.match(line)
        if not match:
            continue
        # Strip trailing timestamps emitted by some diff tools.
        entry = match.group(1).split("\t", 1)[0].strip().strip('"')
        if entry and entry != DEV_NULL:
            paths.add(entry)
    return frozenset(normalise_path(path) for path in paths)


def build_candidate(raw_text: str, allowlist: PathAllowlist = DEFAULT_ALLOWLIST) -> PatchCandidate:
    """Sanitise ``raw_text`` and reject diffs that touch disallowed paths."""
    sanitized = extract_diff(raw_text)
    touched = extract_touched_paths(sanitized)
    if not touched:
        raise MalformedModelOutputError(
            "Diff does not describe any file changes.",
            details={"raw_output": raw_text},
        )
    allowlist.check(sorted(touched))
    return PatchCandidate(raw_text=raw_text, sanitized_text=sanitized, touched_paths=touched)


def parse_numstat(output: str) -> List[str]:
    """Read the target paths from ``git apply --numstat -z`` output.

    Each record is ``added<TAB>deleted<TAB>path``; renames leave the path
    empty and append the old and new paths as separate fields.
    """
    fields = output.split("\0")
    paths: List[str] = []
    index = 0
    while index < len(fields):
        record = fields[index]
        index += 1
        if not record.strip():
            continue
        parts = record.split("\t", 2)
        if len(parts) != 3:
            continue
        if parts[2]:
            paths.append(parts[2])
            continue
        paths.extend(entry for entry in fields[index : index + 2] if entry)
        index += 2
    return paths


class DiffApplier:
    """Apply a candidate diff with each strategy until one applies cleanly."""

    def __init__(
        self,
        repo_root: Path | str,
        *,
        scratch_path: Path | str,
        log_path: Path | str,
        allowlist: PathAllowlist = DEFAULT_ALLOWLIST,
        runner: Optional[Runner] = None,
        strategies: Sequence[ApplyStrategy] = STRATEGY_ORDER,
    ) -> None:
        self.repo_root = Path(repo_root).resolve()
        self.scratch_path = Path(scratch_path)
        self.log_path = Path(log_path)
        self.allowlist = allowlist
        self._runner: Runner = runner or run_git
        self._strategies = tuple(strategies)

    def apply(self, candidate: PatchCandidate | str) -> List[ApplyAttempt]:
        """Return the attempts made, in order, stopping at the first success."""
        if isinstance(candidate, str):
            candidate = build_candidate(candidate, self.allowlist)
        else:
            self.allowlist.check(sorted(candidate.touched_paths))

        self.scratch_path.parent.mkdir(parents=True, exist_ok=True)
        self.scratch_path.write_text(candidate.sanitized_text + "\n", encoding="utf-8")

        attempts: List[ApplyAttempt] = []
        for strategy in self._strategies:
            try:
                self._apply_with(strategy)
            except ApplyStrategyError as error:
                diagnostic = str(error)
                self._write_log(strategy, diagnostic)
                attempts.append(ApplyAttempt(strategy=strategy, success=False, diagnostic=diagnostic))
                emit_event("diff_apply_failed", strategy=strategy.value, diagnostic=diagnostic)
                continue
            attempts.append(ApplyAttempt(strategy=strategy, success=True))
            emit_event("diff_applied", strategy=strategy.value, paths=candidate.touched_paths)
            return attempts

        LOGGER.info("All %d apply strategies failed", len(attempts))
        return attempts

    def _apply_with(self, strategy: ApplyStrategy) -> None:
        patch_arg = str(self.scratch_path.resolve())
        check_flags = [flag for flag in strategy.flags if flag != "--reject"]
        check = self._runner(["apply", "--check", *check_flags, patch_arg], self.repo_root)
        if check.returncode != 0:
            raise ApplyStrategyError(self._diagnostic("git apply --check", strategy, check))
        # The strip level decides which files git writes; check those exact paths.
        targets = self._targets_for(strategy, patch_arg)
        self.allowlist.check_targets(targets, strategy=strategy.value)
        result = self._runner(["apply", *strategy.flags, patch_arg], self.repo_root)
        if result.returncode != 0:
            raise ApplyStrategyError(self._diagnostic("git apply", strategy, result))

    def _targets_for(self, strategy: ApplyStrategy, patch_arg: str) -> List[str]:
        strip_flags = [flag for flag in strategy.flags if flag.startswith("-p")]
        result = self._runner(["apply", "--numstat", "-z", *strip_flags, patch_arg], self.repo_root)
        if result.returncode != 0:
            raise ApplyStrategyError(self._diagnostic("git apply --numstat", strategy, result))
        targets = parse_numstat(result.stdout)
        if not targets:
            raise ApplyStrategyError(f"git apply --numstat ({strategy.value}) reported no files")
        return targets

    @staticmethod
    def _diagnostic(label: str, strategy: ApplyStrategy, result: subprocess.CompletedProcess[str]) -> str:
        message = (result.stderr or "").strip() or (result.stdout or "").strip() or f"exit code {result.returncode}"
        return f"{label} ({strategy.value}) failed: {message}"

    def _write_log(self, strategy: ApplyStrategy, diagnostic: str) -> None:
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            self.log_path.write_text(f"strategy: {strategy.value}\n{diagnostic}\n", encoding="utf-8")
        except OSError as error:
            LOGGER.warning("Failed to write apply log %s: %s", self.log_path, error)


__all__ = [
    "DIFF_MARKER",
    "STRATEGY_ORDER",
    "ApplyAttempt",
    "ApplyStrategy",
    "DiffApplier",
    "PatchCandidate",
    "build_candidate",
    "extract_diff",
    "extract_touched_paths",
    "parse_numstat",
]
