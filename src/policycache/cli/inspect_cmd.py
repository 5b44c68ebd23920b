"""CLI command for inspecting a persisted cache snapshot.

Usage:
    policycache inspect .policycache
    policycache inspect .policycache --key films --stale-only
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer


def inspect_snapshot(
    directory: Path | None = typer.Argument(
        None,
        help="Directory holding the persisted snapshot (defaults to POLICYCACHE_SNAPSHOT_DIR)",
        exists=True,
        file_okay=False,
    ),
    key: str | None = typer.Option(
        None,
        "--key",
        "-k",
        help="Snapshot key (defaults to POLICYCACHE_SNAPSHOT_KEY)",
    ),
    stale_only: bool = typer.Option(
        False,
        "--stale-only",
        help="Only list stale entities",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show verbose output",
    ),
) -> None:
    """List cached entities with their state and lease."""
    asyncio.run(_inspect(directory, key, stale_only, verbose))


async def _inspect(
    directory: Path | None, key: str | None, stale_only: bool, verbose: bool
) -> None:
    """Async implementation of inspect command."""
    from rich.console import Console
    from rich.table import Table

    from policycache.cli._common import open_persisted
    from policycache.core.types import EntityState

    console = Console()
    cache, persistor = open_persisted(directory, key, verbose)

    if not await persistor.restore():
        console.print(f"[red]No usable snapshot[/red] {persistor.key}")
        raise typer.Exit(code=1)

    now = cache.manager.clock()
    table = Table(title=f"Snapshot {persistor.key}")
    table.add_column("Key", style="cyan")
    table.add_column("Type")
    table.add_column("State")
    table.add_column("Expires in")
    table.add_column("Stale fields")

    for entity_key in sorted(cache.store.keys()):
        state = cache.state(entity_key)
        entity = cache.store.get(entity_key)
        if entity is None or (stale_only and state is not EntityState.STALE):
            continue

        expires_at = entity.expires_at()
        if expires_at is None:
            expires = "never"
        elif expires_at <= now:
            expires = "elapsed"
        else:
            expires = f"{(expires_at - now) / 1000:.1f}s"

        color = "green" if state is EntityState.FRESH else "yellow"
        table.add_row(
            entity_key,
            entity.typename or "-",
            f"[{color}]{state.value if state else '-'}[/{color}]",
            expires,
            ", ".join(sorted(entity.stale_fields)) or "-",
        )

    console.print(table)

    stats = cache.stats()
    console.print(
        f"[bold]{stats['entities']}[/bold] entities "
        f"([green]{stats['fresh']} fresh[/green], [yellow]{stats['stale']} stale[/yellow]), "
        f"{stats['edges']} references"
    )
