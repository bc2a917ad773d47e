"""Core CLI application and shared utilities."""

from __future__ import annotations

from typing import List, Optional

import typer
from click import get_current_context
from rich.console import Console

from ..config import RepositoryConfig, Settings, load_settings
from ..errors import ArchiveWardenError, ConfigError
from ..logger import configure_logging, get_logger
from ..store import BorgArchiveStore

app = typer.Typer(add_completion=False, no_args_is_help=True, help="Per-file backup archive lifecycle for Borg repositories.")
console = Console()
log = get_logger(__name__)


@app.callback()
def main(
    ctx: typer.Context,
    config: str = typer.Option(None, "--config", "-c", help="Path to archive-warden.yaml"),
    log_level: str = typer.Option(None, "--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
) -> None:
    """archive-warden - deduplicated per-file archives and per-directory retention."""
    configure_logging(level=log_level, json_output=json_logs)
    ctx.obj = {"config": config, "log_level": log_level, "json_logs": json_logs}


def get_config_path(ctx: typer.Context | None = None) -> str | None:
    """Get config path from context."""
    context = ctx or get_current_context(silent=True)
    return context.obj.get("config") if context and context.obj else None


def fail(error: Exception) -> None:
    console.print(f"[red]Error: {error}[/red]")
    raise typer.Exit(1)


def load_cli_settings(ctx: typer.Context) -> Settings:
    """Load settings and re-apply logging with the configured log file."""
    try:
        settings = load_settings(get_config_path(ctx))
    except ArchiveWardenError as e:
        fail(e)
    obj = ctx.obj or {}
    if settings.log_file or settings.log_level:
        configure_logging(
            level=obj.get("log_level") or settings.log_level,
            json_output=bool(obj.get("json_logs")),
            log_file=settings.log_file,
        )
    return settings


def select_repositories(settings: Settings, name: Optional[str], all_repos: bool) -> List[RepositoryConfig]:
    if all_repos:
        return list(settings.repositories)
    if name:
        repo = settings.get_repository(name)
        if repo is None:
            raise ConfigError(f"Repository '{name}' not found")
        return [repo]
    if len(settings.repositories) == 1:
        return list(settings.repositories)
    raise ConfigError("Please specify --repository or --all for multi-repo config")


def store_for(settings: Settings, repo: RepositoryConfig) -> BorgArchiveStore:
    return BorgArchiveStore(
        repo.path,
        passphrase=repo.passphrase(),
        borg_path=settings.borg_path,
        compression=settings.compression_for(repo),
    )
