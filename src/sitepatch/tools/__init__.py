"""Working-tree tools used by the pipeline."""

from .allowlist import DEFAULT_ALLOWLIST, PathAllowlist
from .filemap import apply_file_map, parse_file_map
from .patch import ApplyAttempt, ApplyStrategy, DiffApplier, PatchCandidate, build_candidate, extract_diff
from .vcs import GitError, GitRepository, PendingChange

__all__ = [
    "DEFAULT_ALLOWLIST",
    "ApplyAttempt",
    "ApplyStrategy",
    "DiffApplier",
    "GitError",
    "GitRepository",
    "PatchCandidate",
    "PendingChange",
    "PathAllowlist",
    "apply_file_map",
    "build_candidate",
    "extract_diff",
    "parse_file_map",
]
