"""Git plumbing for the working tree being patched.

Staging is only needed by the file-map path; the diff path leaves its edits
for the downstream commit step, which reads ``pending_changes``.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence

from ..errors import PipelineError


class GitError(PipelineError):
    """Raised when a git command fails or the repository cannot be used."""


@dataclass(frozen=True, slots=True)
class PendingChange:
    """One ``git status`` entry: two-letter code and repository-relative path."""

    status: str
    path: str


def run_git(args: Sequence[str], cwd: Path) -> subprocess.CompletedProcess[str]:
    """Run ``git`` without raising and decode its output leniently."""
    process = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=False,
        check=False,
    )
    stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
    stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
    return subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)


class GitRepository:
    """Checkout that receives the pipeline's edits."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    def _git(self, *args: str) -> str:
        result = run_git(args, self.root)
        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "unknown git error"
            raise GitError(f"git {' '.join(args)} failed: {message}", details={"returncode": result.returncode})
        return result.stdout

    def stage_all(self, *, exclude: Sequence[str] = ()) -> None:
        """Stage additions, edits and deletions except the ``exclude`` pathspecs."""
        self._git("add", "--all", "--", ".", *(f":(exclude){entry}" for entry in exclude if entry))

    def pending_changes(self, *, exclude: Sequence[str] = ()) -> List[PendingChange]:
        """List staged and unstaged changes, skipping paths under ``exclude``."""
        prefixes = tuple(entry.rstrip("/") + "/" for entry in exclude if entry)
        entries = self._git("status", "--porcelain", "-z", "--untracked-files=all").split("\0")
        changes: List[PendingChange] = []
        index = 0
        while index < len(entries):
            entry = entries[index]
            index += 1
            if len(entry) < 4:
                continue
            status, path = entry[:2], entry[3:]
            # Renames and copies carry the source path as the next field.
            if status[0] in {"R", "C"}:
                index += 1
            if path.startswith(prefixes):
                continue
            changes.append(PendingChange(status=status.strip(), path=path))
        return sorted(changes, key=lambda change: change.path)


__all__ = ["GitError", "GitRepository", "PendingChange", "run_git"]
