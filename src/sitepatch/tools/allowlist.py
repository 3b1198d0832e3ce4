"""Path allowlist shared by the diff and file-map appliers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Tuple

from ..errors import PathViolationError

ALLOWED_FILES: Tuple[str, ...] = ("index.html", "main.js", "style.css")
ALLOWED_PREFIXES: Tuple[str, ...] = ("public/", "src/", "styles/", "css/")


def normalise_path(path: str) -> str:
    """Strip diff-header decoration (``./``, ``a/``, ``b/``) from ``path``."""
    candidate = path.strip()
    if candidate.startswith("./"):
        candidate = candidate[2:]
    if candidate.startswith(("a/", "b/")):
        candidate = candidate[2:]
    return candidate


@dataclass(frozen=True, slots=True)
class PathAllowlist:
    """Exact filenames and directory prefixes a change may touch."""

    files: Tuple[str, ...] = ALLOWED_FILES
    prefixes: Tuple[str, ...] = ALLOWED_PREFIXES

    def is_allowed(self, path: str) -> bool:
        if not isinstance(path, str):
            return False
        return self.is_allowed_target(normalise_path(path))

    def is_allowed_target(self, norm: str) -> bool:
        """Match a path exactly as it will be written, without stripping ``a/``."""
        if not isinstance(norm, str) or not norm or norm.endswith("/"):
            return False
        if norm.startswith("/") or "\\" in norm:
            return False
        if ".." in norm.split("/"):
            return False
        if norm in self.files:
            return True
        return any(norm.startswith(prefix) for prefix in self.prefixes)

    def check(self, paths: Iterable[str]) -> None:
        """Raise ``PathViolationError`` for the first path outside the allowlist."""
        for path in paths:
            if not self.is_allowed(path):
                raise PathViolationError(path, details={"allowed": self.describe()})

    def check_targets(self, paths: Iterable[str], *, strategy: str | None = None) -> None:
        """Like ``check`` for paths already stripped by ``git apply -p<n>``."""
        for path in paths:
            if not self.is_allowed_target(path):
                details: dict[str, object] = {"allowed": self.describe()}
                if strategy is not None:
                    details["strategy"] = strategy
                raise PathViolationError(path, details=details)

    def describe(self) -> list[str]:
        return [*self.files, *(f"{prefix}**" for prefix in self.prefixes)]


DEFAULT_ALLOWLIST = PathAllowlist()

__all__ = [
    "ALLOWED_FILES",
    "ALLOWED_PREFIXES",
    "DEFAULT_ALLOWLIST",
    "PathAllowlist",
    "normalise_path",
]
