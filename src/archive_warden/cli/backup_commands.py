"""
CLI commands for backups.
"""

from __future__ import annotations

from typing import Optional

import typer

from ..backup import PerFileBackup, StandardBackup
from ..config import RetentionMode
from ..errors import ArchiveWardenError
from ..logger import get_logger
from .core import app, console, fail, load_cli_settings, select_repositories, store_for

log = get_logger(__name__)


@app.command("backup")
def backup(
    ctx: typer.Context,
    repository: Optional[str] = typer.Option(None, "--repository", "-r", help="Repository name"),
    all_repos: bool = typer.Option(False, "--all", help="Back up every configured repository"),
    paranoid: bool = typer.Option(
        False,
        "--paranoid",
        help="Verify unchanged files by SHA-256 instead of size and mtime only (per_file mode)",
    ),
) -> None:
    """Create archives for the configured sources."""
    settings = load_cli_settings(ctx)
    failed = False
    try:
        repos = select_repositories(settings, repository, all_repos)
        for repo in repos:
            console.print(f"\n[bold]Repository: {repo.name}[/bold]")
            store = store_for(settings, repo)
            if repo.retention_mode == RetentionMode.STANDARD:
                result = StandardBackup(store, repo_label=repo.name).run(repo.backup_paths(), repo.exclude_patterns())
                console.print(f"[green]✓ Created archive {result.created[0]}[/green]")
                continue

            use_paranoid = paranoid or settings.paranoid_for(repo)
            result = PerFileBackup(store, repo_label=repo.name, paranoid=use_paranoid).run(
                repo.backup_paths(), repo.exclude_patterns()
            )
            console.print(
                f"[green]✓ Per-file backup completed:[/green] "
                f"{len(result.created)} new, {len(result.versioned)} versioned, {len(result.skipped)} unchanged"
            )
            for name in result.created + result.versioned:
                console.print(f"  + {name}")
            for path, error in result.failed.items():
                console.print(f"[red]✗ {path}: {error}[/red]")
            failed = failed or not result.ok
    except ArchiveWardenError as e:
        log.error("Backup failed: %s", e)
        fail(e)

    if failed:
        raise typer.Exit(1)
