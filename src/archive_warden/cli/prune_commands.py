"""
CLI commands for retention pruning.
"""

from __future__ import annotations

import json
from typing import Optional

import typer
from rich.table import Table

from ..errors import ArchiveWardenError, EmptyRetentionPolicy
from ..logger import get_logger
from ..prune import prune_repository
from .core import app, console, fail, load_cli_settings, select_repositories, store_for

log = get_logger(__name__)


@app.command("prune")
def prune(
    ctx: typer.Context,
    repository: Optional[str] = typer.Option(None, "--repository", "-r", help="Repository name"),
    all_repos: bool = typer.Option(False, "--all", help="Prune every configured repository"),
    apply: bool = typer.Option(False, "--apply", help="Delete archives (default is a dry run)"),
    as_json: bool = typer.Option(False, "--json", help="Print the prune result as JSON"),
) -> None:
    """Apply each repository's retention policy."""
    settings = load_cli_settings(ctx)
    dry_run = not apply
    failed = False
    try:
        for repo in select_repositories(settings, repository, all_repos):
            if repo.retention is None or repo.retention.is_empty:
                raise EmptyRetentionPolicy(f"No retention policy configured for repository '{repo.name}'")
            res = prune_repository(
                store_for(settings, repo),
                repo.retention,
                mode=repo.retention_mode,
                dry_run=dry_run,
            )
            failed = failed or not res["ok"]

            if as_json:
                console.print_json(json.dumps({"repository": repo.name, **res}, default=str))
                continue

            table = Table(title=f"Retention groups: {repo.name}")
            table.add_column("Group")
            table.add_column("Archives", justify="right")
            table.add_column("Keep", justify="right", style="green")
            table.add_column("Delete", justify="right", style="red")
            for group in res["groups"]:
                table.add_row(group["group"], str(group["archives"]), str(group["kept"]), str(group["deleted"]))
            console.print(table)

            if dry_run:
                console.print(f"[yellow][DRY-RUN] Would remove {len(res['planned_remove'])} archive(s)[/yellow]")
                for name in res["planned_remove"]:
                    console.print(f"  - {name}")
            else:
                console.print(f"[green]✓ Pruned {res['deleted_count']} archive(s)[/green]")
            for name in res["unreadable"]:
                console.print(f"[yellow]! Unreadable archive kept: {name}[/yellow]")
            for err in res["errors"]:
                console.print(f"[red]✗ {err['name']}: {err['error']}[/red]")
    except ArchiveWardenError as e:
        log.error("Prune failed: %s", e)
        fail(e)

    if failed:
        raise typer.Exit(1)
