"""CLI commands for archive-warden."""

# These imports register CLI commands with the app via decorators
from . import (  # noqa: F401
    backup_commands,
    prune_commands,
    repo_commands,
)
from .core import app


def main() -> None:
    """Console entry point for the archive-warden CLI."""
    app()


__all__ = ["app", "main"]
