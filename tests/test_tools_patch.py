from __future__ import annotations

import subprocess
import textwrap
from pathlib import Path
from typing import List, Sequence

import pytest

from sitepatch.errors import PathViolationError
from sitepatch.tools.patch import ApplyStrategy, DiffApplier, build_candidate, parse_numstat

FAVICON_DIFF = textwrap.dedent(
    """\
    diff --git a/index.html b/index.html
    --- a/index.html
    +++ b/index.html
    @@ -2,6 +2,7 @@
     <html>
     <head>
     <title>Co-op Clicker</title>
    +<link rel="icon" href="favicon.ico">
     </head>
     <body>
     </body>
    """
)

STALE_DIFF = textwrap.dedent(
    """\
    diff --git a/main.js b/main.js
    --- a/main.js
    +++ b/main.js
    @@ -1 +1 @@
    -console.log('something else');
    +console.log('hi');
    """
)


class _SpyRunner:
    def __init__(self, returncode: int = 0, stderr: str = "", numstat: str = "1\t0\tindex.html\0") -> None:
        self.calls: List[List[str]] = []
        self._returncode = returncode
        self._stderr = stderr
        self._numstat = numstat

    def __call__(self, args: Sequence[str], cwd: Path) -> subprocess.CompletedProcess[str]:
        self.calls.append(list(args))
        stdout = self._numstat if "--numstat" in args else ""
        return subprocess.CompletedProcess(["git", *args], self._returncode, stdout, self._stderr)


def _applier(root: Path, **kwargs) -> DiffApplier:
    return DiffApplier(
        root,
        scratch_path=root / ".sitepatch" / "ai.patch",
        log_path=root / ".sitepatch" / "apply-error.log",
        **kwargs,
    )


def test_default_strategy_applies_clean_diff(site_repo) -> None:
    applier = _applier(site_repo.root)

    attempts = applier.apply(FAVICON_DIFF)

    assert [attempt.strategy for attempt in attempts] == [ApplyStrategy.DEFAULT]
    assert attempts[0].success
    assert '<link rel="icon" href="favicon.ico">' in site_repo.read("index.html")
    assert not (site_repo.root / "index.html.rej").exists()


def test_all_strategies_fail_on_stale_context(site_repo) -> None:
    applier = _applier(site_repo.root)

    attempts = applier.apply(STALE_DIFF)

    assert [attempt.strategy for attempt in attempts] == [
        ApplyStrategy.DEFAULT,
        ApplyStrategy.STRIP_0,
        ApplyStrategy.STRIP_1,
    ]
    assert not any(attempt.success for attempt in attempts)
    assert all(attempt.diagnostic for attempt in attempts)
    assert site_repo.read("main.js") == "console.log('old');\n"
    assert not (site_repo.root / "main.js.rej").exists()

    log_text = (site_repo.root / ".sitepatch" / "apply-error.log").read_text(encoding="utf-8")
    assert log_text.startswith("strategy: strip-1")


def test_strip_zero_strategy_applies_prefixless_diff(site_repo) -> None:
    prefixless = FAVICON_DIFF.replace("a/index.html", "index.html").replace("b/index.html", "index.html")
    applier = _applier(site_repo.root)

    attempts = applier.apply(prefixless)

    assert [attempt.strategy for attempt in attempts] == [ApplyStrategy.DEFAULT, ApplyStrategy.STRIP_0]
    assert attempts[-1].success
    assert "favicon.ico" in site_repo.read("index.html")


def test_path_violation_happens_before_any_write_or_tool_call(tmp_path: Path) -> None:
    runner = _SpyRunner()
    applier = _applier(tmp_path, runner=runner)
    patch = FAVICON_DIFF + textwrap.dedent(
        """\
        diff --git a/server-secrets.txt b/server-secrets.txt
        --- a/server-secrets.txt
        +++ b/server-secrets.txt
        @@ -1 +1 @@
        -token=abc
        +token=leaked
        """
    )

    with pytest.raises(PathViolationError):
        applier.apply(patch)

    assert runner.calls == []
    assert not (tmp_path / ".sitepatch").exists()


def test_runner_receives_check_then_apply_flags(tmp_path: Path) -> None:
    runner = _SpyRunner()
    applier = _applier(tmp_path, runner=runner)

    attempts = applier.apply(build_candidate(FAVICON_DIFF))

    assert attempts[0].success
    scratch = str((tmp_path / ".sitepatch" / "ai.patch").resolve())
    assert runner.calls == [
        ["apply", "--check", "--whitespace=fix", scratch],
        ["apply", "--numstat", "-z", scratch],
        ["apply", "--whitespace=fix", "--reject", scratch],
    ]
    assert (tmp_path / ".sitepatch" / "ai.patch").read_text(encoding="utf-8") == FAVICON_DIFF


def test_failed_check_skips_real_apply(tmp_path: Path) -> None:
    runner = _SpyRunner(returncode=1, stderr="error: patch failed: index.html:2")
    applier = _applier(tmp_path, runner=runner)

    attempts = applier.apply(FAVICON_DIFF)

    assert len(attempts) == 3
    assert all(call[1] == "--check" for call in runner.calls)
    assert "patch failed: index.html:2" in (attempts[-1].diagnostic or "")
    assert "-p1" in runner.calls[-1]


def test_prefixless_header_is_checked_at_the_stripped_path(site_repo) -> None:
    # -p1 turns "src/server-secrets.txt" into the root-level secrets file.
    patch = textwrap.dedent(
        """\
        diff --git src/server-secrets.txt src/server-secrets.txt
        --- src/server-secrets.txt
        +++ src/server-secrets.txt
        @@ -1 +1 @@
        -token=abc
        +token=leaked
        """
    )
    applier = _applier(site_repo.root)

    with pytest.raises(PathViolationError) as excinfo:
        applier.apply(patch)

    assert excinfo.value.path == "server-secrets.txt"
    assert excinfo.value.details["strategy"] == "default"
    assert site_repo.read("server-secrets.txt") == "token=abc\n"


def test_strip_zero_new_file_is_checked_at_the_unstripped_path(site_repo) -> None:
    # Only -p0 applies this, and it would create "b/index.html".
    patch = textwrap.dedent(
        """\
        diff --git b/index.html b/index.html
        new file mode 100644
        --- /dev/null
        +++ b/index.html
        @@ -0,0 +1 @@
        +<p>shadow</p>
        """
    )
    applier = _applier(site_repo.root)

    with pytest.raises(PathViolationError) as excinfo:
        applier.apply(patch)

    assert excinfo.value.path == "b/index.html"
    assert excinfo.value.details["strategy"] == "strip-0"
    assert not (site_repo.root / "b").exists()
    assert site_repo.read("index.html").startswith("<!doctype html>")


def test_header_with_spaces_is_checked_before_apply(site_repo) -> None:
    patch = textwrap.dedent(
        """\
        diff --git a/main.js b/main.js
        --- a/main.js
        +++ b/main.js
        @@ -1 +1 @@
        -console.log('old');
        +console.log('hi');
        diff --git a/evil hook.sh b/evil hook.sh
        new file mode 100755
        --- /dev/null
        +++ b/evil hook.sh
        @@ -0,0 +1 @@
        +echo pwned
        """
    )
    applier = _applier(site_repo.root)

    with pytest.raises(PathViolationError) as excinfo:
        applier.apply(patch)

    assert excinfo.value.path == "evil hook.sh"
    assert not (site_repo.root / "evil hook.sh").exists()
    assert site_repo.read("main.js") == "console.log('old');\n"


def test_numstat_targets_outside_allowlist_stop_before_apply(tmp_path: Path) -> None:
    runner = _SpyRunner(numstat="1\t0\tindex.html\0" + "2\t0\tserver-secrets.txt\0")
    applier = _applier(tmp_path, runner=runner)

    with pytest.raises(PathViolationError):
        applier.apply(FAVICON_DIFF)

    assert [call[1] for call in runner.calls] == ["--check", "--numstat"]


def test_parse_numstat_reads_plain_and_renamed_records() -> None:
    output = "1\t0\tindex.html\0" + "0\t0\t\0css/old.css\0css/new.css\0" + "-\t-\tpublic/logo.png\0"

    assert parse_numstat(output) == ["index.html", "css/old.css", "css/new.css", "public/logo.png"]
