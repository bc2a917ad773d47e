"""
CLI commands for inspecting repositories and archive metadata.
"""

from __future__ import annotations

from typing import Optional

import typer
from rich.table import Table

from ..errors import ArchiveWardenError
from ..logger import get_logger
from ..metadata import decode_with_format
from ..prune import load_records
from ..store import borg_version
from .core import app, console, fail, load_cli_settings, select_repositories, store_for

log = get_logger(__name__)


@app.command("list")
def list_archives(
    ctx: typer.Context,
    repository: Optional[str] = typer.Option(None, "--repository", "-r", help="Repository name"),
) -> None:
    """List archives with their decoded metadata."""
    settings = load_cli_settings(ctx)
    try:
        repo = select_repositories(settings, repository, False)[0]
        records, unreadable = load_records(store_for(settings, repo))
    except ArchiveWardenError as e:
        fail(e)

    table = Table(title=f"Archives in {repo.name}")
    table.add_column("Name", style="cyan")
    table.add_column("Created")
    table.add_column("Source path")
    table.add_column("Size", justify="right")
    table.add_column("Source dir")
    for record in records:
        meta = record.metadata
        table.add_row(
            record.name,
            record.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            meta.source_path or "-",
            "-" if meta.size is None else str(meta.size),
            "<legacy>" if meta.source_dir is None else meta.source_dir,
        )
    console.print(table)
    for name in unreadable:
        console.print(f"[yellow]! Comment unreadable: {name}[/yellow]")


@app.command("init")
def init_repository(
    ctx: typer.Context,
    repository: Optional[str] = typer.Option(None, "--repository", "-r", help="Repository name"),
    encryption: str = typer.Option("repokey", "--encryption", "-e", help="Borg encryption mode"),
) -> None:
    """Create the Borg repository at the configured path."""
    settings = load_cli_settings(ctx)
    try:
        repo = select_repositories(settings, repository, False)[0]
        store_for(settings, repo).init(encryption=encryption)
    except ArchiveWardenError as e:
        fail(e)
    console.print(f"[green]✓ Repository initialized at {repo.path}[/green]")


@app.command("restore")
def restore(
    ctx: typer.Context,
    archive: str = typer.Argument(..., help="Archive name"),
    repository: Optional[str] = typer.Option(None, "--repository", "-r", help="Repository name"),
    destination: str = typer.Option(".", "--destination", "-d", help="Destination directory"),
    path: Optional[str] = typer.Option(None, "--path", help="Single file or directory inside the archive"),
) -> None:
    """Restore an archive, or one path from it."""
    settings = load_cli_settings(ctx)
    try:
        repo = select_repositories(settings, repository, False)[0]
        target = store_for(settings, repo).extract(archive, destination=destination, path=path)
    except ArchiveWardenError as e:
        log.error("Failed to restore archive: %s", e)
        fail(e)

    if path:
        console.print(f"[green]✓ Restored {path} from {archive} to {target}[/green]")
    else:
        console.print(f"[green]✓ Archive restored to {target}[/green]")


@app.command("info")
def info(
    ctx: typer.Context,
    repository: Optional[str] = typer.Option(None, "--repository", "-r", help="Repository name"),
) -> None:
    """Show repository information."""
    settings = load_cli_settings(ctx)
    try:
        repo = select_repositories(settings, repository, False)[0]
        data = store_for(settings, repo).repository_info()
    except ArchiveWardenError as e:
        fail(e)

    details = data.get("repository") or {}
    stats = (data.get("cache") or {}).get("stats") or {}
    table = Table(title=f"Repository {repo.name}", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Location", str(details.get("location") or repo.path))
    table.add_row("ID", str(details.get("id") or "-"))
    table.add_row("Encryption", str((data.get("encryption") or {}).get("mode") or "-"))
    table.add_row("Last modified", str(details.get("last_modified") or "-"))
    table.add_row("Original size", str(stats.get("total_size", "-")))
    table.add_row("Deduplicated size", str(stats.get("unique_csize", "-")))
    console.print(table)


@app.command("version")
def version(ctx: typer.Context) -> None:
    """Show the installed Borg version."""
    settings = load_cli_settings(ctx)
    try:
        console.print(f"borg {borg_version(settings.borg_path)}")
    except ArchiveWardenError as e:
        fail(e)


@app.command("check")
def check(
    ctx: typer.Context,
    repository: Optional[str] = typer.Option(None, "--repository", "-r", help="Repository name"),
) -> None:
    """Check that the installed Borg can read the repository format."""
    settings = load_cli_settings(ctx)
    try:
        repo = select_repositories(settings, repository, False)[0]
        result = store_for(settings, repo).check_compatibility()
    except ArchiveWardenError as e:
        fail(e)

    status = "[green]compatible[/green]" if result["compatible"] else "[red]INCOMPATIBLE[/red]"
    console.print(
        f"{repo.name}: borg {result['borg_version']}, repository version {result['repository_version']} - {status}"
    )
    if not result["compatible"]:
        raise typer.Exit(1)


@app.command("decode")
def decode_comment(comment: str = typer.Argument(..., help="Archive comment to decode")) -> None:
    """Decode an archive comment and show which format it uses."""
    meta, fmt = decode_with_format(comment)
    console.print(f"format:       {fmt.value}")
    console.print(f"source_path:  {meta.source_path or '-'}")
    console.print(f"size:         {'-' if meta.size is None else meta.size}")
    console.print(f"content_hash: {meta.content_hash or '-'}")
    console.print(f"source_dir:   {'-' if meta.source_dir is None else meta.source_dir}")
