"""CLI commands for planning and applying changes to a working copy."""

from __future__ import annotations

import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import typer
import yaml

from .conversation import ConversationEntry, ConversationLog, EntryKind, SQLiteStorage
from .models import GPT5Client, LLMClient, OfflineLLMClient, is_offline_model
from .planning import (
    ActionLevel,
    ExecutionError,
    ExecutionResult,
    Plan,
    PlanExecutor,
    PlanGenerator,
    ServiceError,
)
from .session import AssistantSession, TransitionError
from .workspace import FileStore, GitPushService, LocalRepository, PushService

APP_HELP = "Plan and apply AI-assisted edits to a repository working copy."
DEFAULT_CONFIG_NAME = "config.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "repo_root": ".",
    },
    "models": {
        "default": "gpt-5-mini",
        "timeout": 120,
    },
    "session": {
        "id": "default",
    },
    "paths": {
        "data": "data",
        "db_path": "data/buildbox.sqlite",
        "logs": "data/logs",
    },
    "workspace": {
        "max_file_kb": 512,
    },
    "push": {
        "mode": "directory",
        "remote": "",
        "branch": "",
        "message": "",
    },
}

app = typer.Typer(help=APP_HELP)

CONFIG_OPTION = typer.Option(
    DEFAULT_CONFIG_NAME,
    "--config",
    "-c",
    help="Path to the buildbox configuration file.",
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Configure logging before any command runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk, filling missing sections from the template."""
    if not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse config: {error}")
        raise typer.Exit(code=1) from error

    if not isinstance(data, dict):
        typer.echo("Configuration must be a mapping at the top level.")
        raise typer.Exit(code=1)

    merged = copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)
    for section, values in data.items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section].update(values)
        else:
            merged[section] = values
    return merged


def _resolve_repo_root(config: Dict[str, Any], config_path: Path) -> Path:
    project_cfg = config.get("project") or {}
    repo_root_path = Path(project_cfg.get("repo_root") or ".")
    if not repo_root_path.is_absolute():
        repo_root_path = (config_path.parent / repo_root_path).resolve()
    return repo_root_path


def _resolve_path(value: Any, base: Path) -> Optional[Path]:
    if not isinstance(value, str) or not value.strip():
        return None
    candidate = Path(value.strip())
    if not candidate.is_absolute():
        candidate = (base / candidate).resolve()
    return candidate


def _model_timeout(config: Dict[str, Any]) -> Optional[float]:
    timeout_value = (config.get("models") or {}).get("timeout")
    if isinstance(timeout_value, (int, float)) and timeout_value > 0:
        return float(timeout_value)
    return None


def _build_client(config: Dict[str, Any], *, use_remote: bool) -> LLMClient:
    """Select either the real GPT-5 client or the offline stub."""
    models_cfg = config.get("models") or {}
    model_name = str(models_cfg.get("default") or "gpt-5-mini")
    offline_model = is_offline_model(model_name)

    if use_remote and not offline_model:
        typer.echo(f"Using GPT-5 client ({model_name}).")
        client_kwargs: Dict[str, Any] = {}
        timeout_value = _model_timeout(config)
        if timeout_value is not None:
            client_kwargs["timeout"] = timeout_value
        base_url_value = models_cfg.get("base_url")
        if isinstance(base_url_value, str) and base_url_value.strip():
            client_kwargs["base_url"] = base_url_value.strip()
        api_key_value = models_cfg.get("api_key")
        if isinstance(api_key_value, str) and api_key_value.strip():
            client_kwargs["api_key"] = api_key_value.strip()
        try:
            return GPT5Client(model=model_name, **client_kwargs)
        except ValueError as error:
            if "api key" in str(error).lower():
                typer.echo(
                    "No API key given. Set OPENAI_API_KEY or GPT5_API_KEY, "
                    "or re-run with --no-use-remote to use the offline stub."
                )
            else:
                typer.echo(f"Failed to initialise GPT-5 client: {error}")
            raise typer.Exit(code=1)

    if use_remote and offline_model:
        typer.echo(f"Model '{model_name}' is offline-only; using offline stub client.")
    else:
        typer.echo("Using offline stub client.")
    return OfflineLLMClient()


def _state_dirs(config: Dict[str, Any], repo_root: Path) -> List[Path]:
    """Directories holding buildbox's own database and logs, never part of the working copy."""
    paths_cfg = config.get("paths") or {}
    dirs = [_resolve_path(paths_cfg.get(key), repo_root) for key in ("data", "logs")]
    db_path = _resolve_path(paths_cfg.get("db_path"), repo_root)
    if db_path is not None:
        dirs.append(db_path.parent)
    return [path for path in dirs if path is not None and path != repo_root]


def _build_push_service(config: Dict[str, Any]) -> PushService:
    push_cfg = config.get("push") or {}
    max_file_kb = int((config.get("workspace") or {}).get("max_file_kb") or 512)
    mode = str(push_cfg.get("mode") or "directory").strip().lower()
    if mode == "git":
        return GitPushService(
            remote=str(push_cfg.get("remote") or "").strip() or None,
            branch=str(push_cfg.get("branch") or "").strip() or None,
            max_file_kb=max_file_kb,
        )
    if mode != "directory":
        typer.echo(f"Unknown push mode '{mode}'; expected 'directory' or 'git'.")
        raise typer.Exit(code=1)
    return LocalRepository(max_file_kb=max_file_kb)


@dataclass(slots=True)
class _Runtime:
    """Everything a command needs, wired from one configuration file."""

    config: Dict[str, Any]
    config_path: Path
    repo_root: Path
    session: AssistantSession

    @property
    def session_id(self) -> str:
        return self.session.log.session_id


@contextmanager
def _open_runtime(
    config_path: Path,
    *,
    config: Optional[Dict[str, Any]] = None,
    client: Optional[LLMClient] = None,
    load_files: bool = True,
) -> Iterator[_Runtime]:
    if config is None:
        config = load_config(config_path)
    repo_root = _resolve_repo_root(config, config_path)
    logs_root = _resolve_path((config.get("paths") or {}).get("logs"), repo_root)
    session_id = str((config.get("session") or {}).get("id") or "default")

    store = FileStore()
    if load_files:
        max_file_kb = int((config.get("workspace") or {}).get("max_file_kb") or 512)
        try:
            repository = LocalRepository(max_file_kb=max_file_kb, exclude=_state_dirs(config, repo_root))
            records = repository.fetch_repository(repo_root)
        except ServiceError as error:
            typer.echo(f"Failed to load repository: {error}")
            raise typer.Exit(code=1) from error
        store = FileStore.from_records(records)

    generator = PlanGenerator(
        client or OfflineLLMClient(),
        timeout=_model_timeout(config),
        logs_root=logs_root,
    )
    with SQLiteStorage.from_config(config, base_dir=repo_root) as storage:
        log = ConversationLog(storage, session_id)
        session = AssistantSession(generator, log, store)
        try:
            yield _Runtime(config=config, config_path=config_path, repo_root=repo_root, session=session)
        finally:
            session.close()


def _render_plan(plan: Plan) -> None:
    """Render a plan for review."""
    typer.echo(f"Plan: {plan.goal}")
    if plan.explanation:
        typer.echo(plan.explanation)
    if not plan.files:
        typer.echo("No file changes proposed.")
    else:
        typer.echo("Files:")
        for change in plan.files:
            reason = f" - {change.reason}" if change.reason else ""
            typer.echo(f"  [{change.action.value}] {change.filename}{reason}")
    if plan.dependencies:
        typer.echo(f"Dependencies: {', '.join(plan.dependencies)}")
    if plan.steps:
        typer.echo("Steps:")
        for index, step in enumerate(plan.steps, start=1):
            typer.echo(f"  {index}. {step}")


def _render_execution(result: ExecutionResult) -> None:
    for record in result.records:
        marker = "+" if record.level is ActionLevel.SUCCESS else "!"
        typer.echo(f"  {marker} {record.message}")
    typer.echo(f"{len(result.successes)} change(s) applied, {len(result.warnings)} warning(s).")


def _render_entry(entry: ConversationEntry) -> None:
    stamp = entry.timestamp.strftime("%Y-%m-%d %H:%M:%S")
    typer.echo(f"[{stamp}] {entry.kind.value}: {entry.text}")
    plan = entry.plan
    if plan is not None:
        for change in plan.files:
            typer.echo(f"    [{change.action.value}] {change.filename}")


@app.command()
def plan(
    goal: str = typer.Argument(..., help="What the change should achieve."),
    selected: Optional[str] = typer.Option(
        None,
        "--selected",
        help="Repository-relative path of the file the goal focuses on.",
    ),
    use_remote: bool = typer.Option(
        True,
        "--use-remote/--no-use-remote",
        help="Use the configured remote model instead of the offline stub.",
    ),
    config: str = CONFIG_OPTION,
) -> None:
    """Generate a plan for GOAL against the current working copy."""
    if not goal.strip():
        raise typer.BadParameter("A goal is required.")
    config_path = Path(config)
    config_data = load_config(config_path)
    client = _build_client(config_data, use_remote=use_remote)

    with _open_runtime(config_path, config=config_data, client=client) as runtime:
        session = runtime.session
        if selected and selected not in session.file_store:
            typer.echo(f"Selected file not found in working copy: {selected}")
            raise typer.Exit(code=1)
        session.resume_pending()
        result = session.submit_goal(goal, selected)
        if result is None:
            entries = session.log.all()
            if entries and entries[-1].kind is EntryKind.ERROR:
                typer.echo(entries[-1].text)
            raise typer.Exit(code=1)
        _render_plan(result)
        typer.echo("Run 'buildbox apply' to execute this plan.")


@app.command()
def apply(
    push: bool = typer.Option(
        True,
        "--push/--no-push",
        help="Write the resulting changes back to the repository.",
    ),
    message: Optional[str] = typer.Option(
        None,
        "--message",
        "-m",
        help="Commit message for the pushed changes.",
    ),
    config: str = CONFIG_OPTION,
) -> None:
    """Execute the pending plan and optionally push the result."""
    config_path = Path(config)
    with _open_runtime(config_path) as runtime:
        session = runtime.session
        pending = session.resume_pending()
        if pending is None:
            typer.echo("No plan to execute.")
            raise typer.Exit(code=1)

        if not push:
            typer.echo(f"Previewing plan: {pending.goal}")
            try:
                result = PlanExecutor().execute(pending, session.file_store)
            except ExecutionError as error:
                typer.echo(f"Failed to preview plan: {error}")
                raise typer.Exit(code=1) from error
            _render_execution(result)
            typer.echo("Changes were not written (--no-push); the plan is still pending.")
            return

        typer.echo(f"Executing plan: {pending.goal}")
        try:
            result = session.execute_pending()
        except (ExecutionError, TransitionError) as error:
            typer.echo(f"Failed to execute plan: {error}")
            raise typer.Exit(code=1) from error
        _render_execution(result)

        push_cfg = runtime.config.get("push") or {}
        commit_message = (
            message
            or str(push_cfg.get("message") or "").strip()
            or f"buildbox: {pending.goal}"
        )
        service = _build_push_service(runtime.config)
        try:
            commit_id = session.push(service, runtime.repo_root, commit_message)
        except ServiceError as error:
            typer.echo(f"Failed to push changes: {error}")
            raise typer.Exit(code=1) from error
        if commit_id:
            typer.echo(f"Pushed changes ({commit_id[:12]}).")
        else:
            typer.echo("No changes to push.")


@app.command()
def history(config: str = CONFIG_OPTION) -> None:
    """Show the conversation log for the configured session."""
    with _open_runtime(Path(config), load_files=False) as runtime:
        entries = runtime.session.log.all()
        if not entries:
            typer.echo("Conversation log is empty.")
            return
        for entry in entries:
            _render_entry(entry)


@app.command()
def clear(config: str = CONFIG_OPTION) -> None:
    """Clear the conversation log and discard any pending plan."""
    with _open_runtime(Path(config), load_files=False) as runtime:
        runtime.session.clear()
        typer.echo(f"Cleared conversation for session '{runtime.session_id}'.")


@app.command()
def status(config: str = CONFIG_OPTION) -> None:
    """Validate configuration and report session status."""
    config_path = Path(config)
    with _open_runtime(config_path) as runtime:
        models_cfg = runtime.config.get("models") or {}
        session = runtime.session
        typer.echo(f"Loaded configuration from {config_path}")
        typer.echo(f"Repository: {runtime.repo_root}")
        typer.echo(f"Model: {models_cfg.get('default')}")
        typer.echo(f"Session: {runtime.session_id} ({len(session.log)} entries)")
        typer.echo(f"Files: {len(session.file_store)}")
        pending = session.resume_pending()
        if pending is not None:
            typer.echo(f"Pending plan: {pending.goal} ({len(pending.files)} change(s))")
        else:
            typer.echo("No pending plan.")


if __name__ == "__main__":
    app()
