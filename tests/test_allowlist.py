from __future__ import annotations

import pytest

from sitepatch.errors import PathViolationError
from sitepatch.tools.allowlist import DEFAULT_ALLOWLIST, PathAllowlist, normalise_path


@pytest.mark.parametrize(
    "path",
    [
        "index.html",
        "main.js",
        "style.css",
        "./index.html",
        "a/src/widget.js",
        "b/css/theme.css",
        "public/favicon.ico",
        "styles/nested/dark.css",
    ],
)
def test_allowed_paths(path: str) -> None:
    assert DEFAULT_ALLOWLIST.is_allowed(path)


@pytest.mark.parametrize(
    "path",
    [
        "scripts/evil.sh",
        "server-secrets.txt",
        "package.json",
        "index.html.bak",
        "srcfoo/app.js",
        "",
        "/etc/passwd",
        "src/../server-secrets.txt",
        "api/counter.js",
        "src/",
        "css",
    ],
)
def test_denied_paths(path: str) -> None:
    assert not DEFAULT_ALLOWLIST.is_allowed(path)


def test_normalise_path_strips_diff_decoration() -> None:
    assert normalise_path("./a/main.js") == "main.js"
    assert normalise_path("b/src/App.jsx") == "src/App.jsx"
    assert normalise_path("src/a/file.js") == "src/a/file.js"


def test_check_reports_first_offending_path() -> None:
    with pytest.raises(PathViolationError) as excinfo:
        DEFAULT_ALLOWLIST.check(["index.html", "scripts/evil.sh", "secrets.txt"])

    assert excinfo.value.path == "scripts/evil.sh"
    assert "scripts/evil.sh" in str(excinfo.value)


def test_custom_allowlist_uses_its_own_entries() -> None:
    allowlist = PathAllowlist(files=("README.md",), prefixes=("docs/",))

    assert allowlist.is_allowed("a/README.md")
    assert allowlist.is_allowed("docs/guide.md")
    assert not allowlist.is_allowed("index.html")
    assert allowlist.describe() == ["README.md", "docs/**"]


def test_check_targets_does_not_strip_diff_prefixes() -> None:
    DEFAULT_ALLOWLIST.check_targets(["index.html", "src/a/file.js"])

    with pytest.raises(PathViolationError) as excinfo:
        DEFAULT_ALLOWLIST.check_targets(["b/index.html"], strategy="strip-0")

    assert excinfo.value.path == "b/index.html"
    assert excinfo.value.details["strategy"] == "strip-0"
