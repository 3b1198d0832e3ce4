"""CLI commands for running the patch pipeline against a working tree."""

from __future__ import annotations

import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml

from .errors import ConfigurationError
from .models import LLMClient, build_openai_client
from .orchestrator import Orchestrator, PipelineResult
from .structured import ChangeRequest
from .tools.allowlist import DEFAULT_ALLOWLIST
from .tools.vcs import GitError, GitRepository

APP_HELP = "Apply model-written patches to a static front end."
DEFAULT_CONFIG_NAME = "sitepatch.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "name": "Co-op Clicker",
        "repo_root": ".",
    },
    "models": {
        "primary": "gpt-5",
        "fallback": "gpt-4o-mini",
        "fallback_temperature": 0.2,
        "base_url": "https://api.openai.com/v1",
        "timeout": 120,
    },
    "paths": {
        "artifacts": ".sitepatch",
    },
    "build": {
        "enabled": False,
        "command": ["npm", "run", "-s", "build"],
    },
}

app = typer.Typer(help=APP_HELP)


def _copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Path, *, required: bool = False) -> Dict[str, Any]:
    """Load YAML configuration layered over the built-in defaults.

    A missing file yields the defaults unless ``required`` is set.
    """
    if not config_path.exists():
        if required:
            raise typer.BadParameter(f"Config file not found: {config_path}")
        return _copy_config_template()

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse config: {error}")
        raise typer.Exit(code=1) from error

    if not isinstance(data, dict):
        typer.echo("Configuration must be a mapping at the top level.")
        raise typer.Exit(code=1)

    return _merge(_copy_config_template(), data)


def _resolve_repo_root(config: Dict[str, Any], config_path: Path, override: Optional[Path]) -> Path:
    """Resolve the working tree root from the CLI or configuration."""
    if override is not None:
        return override.resolve()
    project_cfg = config.get("project") or {}
    repo_root_path = Path(project_cfg.get("repo_root", "."))
    if not repo_root_path.is_absolute():
        repo_root_path = (config_path.resolve().parent / repo_root_path).resolve()
    return repo_root_path


def _build_client(config: Dict[str, Any]) -> LLMClient:
    """Construct the two-style OpenAI client from the ``models`` section."""
    models_cfg = config.get("models") or {}
    client_kwargs: Dict[str, Any] = {}
    for key, option in (("primary", "primary_model"), ("fallback", "fallback_model"), ("base_url", "base_url")):
        value = models_cfg.get(key)
        if isinstance(value, str) and value.strip():
            client_kwargs[option] = value.strip()
    timeout_value = models_cfg.get("timeout")
    if isinstance(timeout_value, (int, float)) and timeout_value > 0:
        client_kwargs["timeout"] = float(timeout_value)
    temperature_value = models_cfg.get("fallback_temperature")
    if temperature_value is None or isinstance(temperature_value, (int, float)):
        client_kwargs["fallback_temperature"] = temperature_value
    return build_openai_client(**client_kwargs)


def _load_event_request(event_path: Path) -> ChangeRequest:
    try:
        payload = json.loads(event_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as error:
        raise ConfigurationError(f"Cannot read dispatch event {event_path}: {error}") from error
    return ChangeRequest.from_event_payload(payload)


def _resolve_request(prompt: Optional[str], requester: Optional[str], event_path: Optional[Path]) -> ChangeRequest:
    if prompt and prompt.strip():
        return ChangeRequest.from_values(prompt, requester)
    if event_path is not None:
        return _load_event_request(event_path)
    return ChangeRequest.from_values(prompt, requester)


def _render_result(result: PipelineResult, request: ChangeRequest) -> None:
    for attempt in result.attempts:
        status = "ok" if attempt.success else "failed"
        typer.echo(f"- git apply [{attempt.strategy.value}]: {status}")
    if result.applied:
        via = result.via.value if result.via else "unknown"
        typer.echo(f"Patch applied via {via} for: {request.prompt} (requested by {request.requester})")
        for path in result.changed_paths:
            typer.echo(f"  changed {path}")
        return
    typer.echo(f"Pipeline failed ({result.error_type}): {result.reason}", err=True)
    if result.artifact_path is not None:
        typer.echo(f"Diagnostics written to {result.artifact_path.as_posix()}", err=True)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def run(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the pipeline configuration file.",
    ),
    repo_root: Optional[Path] = typer.Option(
        None,
        "--repo-root",
        help="Working tree to patch (defaults to project.repo_root).",
    ),
    prompt: Optional[str] = typer.Option(
        None,
        "--prompt",
        "-p",
        envvar="AI_PROMPT",
        help="Free-text change request.",
    ),
    requester: Optional[str] = typer.Option(
        None,
        "--requester",
        envvar="AI_REQUESTER",
        help="Identity of whoever asked for the change.",
    ),
    event_path: Optional[Path] = typer.Option(
        None,
        "--event-path",
        envvar="SITEPATCH_EVENT_PATH",
        help="Dispatch event JSON carrying client_payload.prompt and client_payload.user.",
    ),
) -> None:
    """Request a patch for the change request and apply it to the working tree."""
    config_path = Path(config)
    config_data = load_config(config_path)
    root = _resolve_repo_root(config_data, config_path, repo_root)

    try:
        if event_path is None and not prompt and os.getenv("GITHUB_EVENT_PATH"):
            event_path = Path(os.environ["GITHUB_EVENT_PATH"])
        request = _resolve_request(prompt, requester, event_path)
        client = _build_client(config_data)
    except ConfigurationError as error:
        typer.echo(f"Configuration error: {error}", err=True)
        raise typer.Exit(code=1) from error

    orchestrator = Orchestrator(client=client, config=config_data, repo_root=root, allowlist=DEFAULT_ALLOWLIST)
    result = orchestrator.run(request)
    _render_result(result, request)

    if result.applied:
        try:
            pending = GitRepository(root).pending_changes(exclude=orchestrator.stage_exclusions())
        except GitError as error:
            typer.echo(f"Could not read git status: {error}", err=True)
            pending = []
        if pending:
            typer.echo(f"{len(pending)} path(s) pending for the commit step:")
            for change in pending:
                typer.echo(f"  {change.status:>2} {change.path}")
    raise typer.Exit(code=result.exit_code)


@app.command("check-paths")
def check_paths(
    paths: List[str] = typer.Argument(..., help="Repository-relative paths to test."),
) -> None:
    """Report whether each path may be modified by the pipeline."""
    denied = 0
    for path in paths:
        allowed = DEFAULT_ALLOWLIST.is_allowed(path)
        if not allowed:
            denied += 1
        typer.echo(f"{'allowed' if allowed else 'denied '}  {path}")
    if denied:
        raise typer.Exit(code=1)


@app.command("init-config")
def init_config(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Where to write the configuration file.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration template."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"{config_path} already exists; pass --force to overwrite.")
        raise typer.Exit(code=1)
    _write_config(config_path, _copy_config_template())
    typer.echo(f"Wrote {config_path}.")


if __name__ == "__main__":
    app()
