from __future__ import annotations

import subprocess
import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from sitepatch.models.llm_client import CallStyle, LLMClient, LLMRequest, LLMTransportError  # noqa: E402

INDEX_HTML = textwrap.dedent(
    """\
    <!doctype html>
    <html>
    <head>
    <title>Co-op Clicker</title>
    </head>
    <body>
    </body>
    </html>
    """
)

MAIN_JS = "console.log('old');\n"
STYLE_CSS = "body { margin: 0; }\n"


@dataclass(slots=True)
class SiteRepo:
    """Fixture payload representing the static site checkout under test."""

    root: Path

    def git(self, *args: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            ["git", *args],
            cwd=self.root,
            check=True,
            capture_output=True,
            text=True,
        )

    def read(self, relative: str) -> str:
        return (self.root / relative).read_text(encoding="utf-8")

    def staged(self) -> List[str]:
        output = self.git("diff", "--cached", "--name-only").stdout
        return [line for line in output.splitlines() if line]


@pytest.fixture()
def site_repo(tmp_path: Path) -> SiteRepo:
    """Create a git repository holding a tiny static site."""

    repo_root = tmp_path / "site"
    repo_root.mkdir()
    repo = SiteRepo(root=repo_root)
    repo.git("init")
    repo.git("config", "user.email", "agent@example.com")
    repo.git("config", "user.name", "Site Patcher")

    (repo_root / "index.html").write_text(INDEX_HTML, encoding="utf-8")
    (repo_root / "main.js").write_text(MAIN_JS, encoding="utf-8")
    (repo_root / "style.css").write_text(STYLE_CSS, encoding="utf-8")
    (repo_root / "server-secrets.txt").write_text("token=abc\n", encoding="utf-8")

    repo.git("add", ".")
    repo.git("commit", "-m", "Initial site")
    return repo


Scripted = Union[str, Exception]


class ScriptedCallStyle(CallStyle):
    """Call style that replays canned responses and records every request."""

    def __init__(self, responses: Sequence[Scripted], *, name: str = "scripted", model: str = "fake-model") -> None:
        super().__init__(model)
        self.name = name
        self._responses: List[Scripted] = list(responses)
        self.requests: List[LLMRequest] = []

    def to_payload(self, request: LLMRequest) -> Dict[str, Any]:
        self.requests.append(request)
        return {"prompt": request.prompt}

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        if not self._responses:
            raise LLMTransportError("no scripted response left")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def _extract_text(self, raw_response: str) -> Optional[str]:
        return raw_response


@pytest.fixture()
def scripted_client() -> Callable[..., tuple[LLMClient, ScriptedCallStyle]]:
    """Return a factory building a single-style client from canned responses."""

    def _factory(*responses: Scripted) -> tuple[LLMClient, ScriptedCallStyle]:
        style = ScriptedCallStyle(responses)
        return LLMClient([style]), style

    return _factory
