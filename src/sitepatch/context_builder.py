"""Collect the front-end entry files that ground each model request."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

DEFAULT_CANDIDATES: tuple[str, ...] = (
    "index.html",
    "main.js",
    "style.css",
    "src/index.js",
    "src/index.jsx",
    "src/App.js",
    "src/App.jsx",
)

_SECTION_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True, slots=True)
class ContextFile:
    """Single source file included in the model context."""

    path: str
    content: str

    def render(self) -> str:
        return f"FILE: {self.path}\n\n```\n{self.content}\n```"


@dataclass(frozen=True, slots=True)
class ContextBundle:
    """Ordered, read-only set of files sent to the model."""

    files: tuple[ContextFile, ...] = ()

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(entry.path for entry in self.files)

    def render(self) -> str:
        """Concatenate every file as ``FILE: <path>`` followed by a fenced body."""
        return _SECTION_SEPARATOR.join(entry.render() for entry in self.files)

    def __bool__(self) -> bool:
        return bool(self.files)


class ContextBuilder:
    """Read a fixed candidate list of entry files from the working tree."""

    def __init__(self, repo_root: Path | str, candidates: Sequence[str] = DEFAULT_CANDIDATES) -> None:
        self.repo_root = Path(repo_root).resolve()
        self.candidates = tuple(candidates)

    def collect(self) -> ContextBundle:
        files: list[ContextFile] = []
        for candidate in self.candidates:
            content = self._read_text_if_exists(candidate)
            if content is not None:
                files.append(ContextFile(path=candidate, content=content))
        return ContextBundle(files=tuple(files))

    def _read_text_if_exists(self, relative: str) -> str | None:
        path = self.repo_root / relative
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return None


__all__ = ["DEFAULT_CANDIDATES", "ContextBuilder", "ContextBundle", "ContextFile"]
