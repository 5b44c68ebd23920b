"""CLI command for sweeping a persisted cache snapshot.

Usage:
    policycache sweep .policycache
    policycache sweep .policycache --evict
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer


def sweep_snapshot(
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
    evict: bool = typer.Option(
        False,
        "--evict",
        "-e",
        help="Also evict stale entities",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Report without writing the snapshot back",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Show verbose output",
    ),
) -> None:
    """Mark entities whose lease elapsed as stale and persist the result."""
    asyncio.run(_sweep(directory, key, evict, dry_run, verbose))


async def _sweep(
    directory: Path | None, key: str | None, evict: bool, dry_run: bool, verbose: bool
) -> None:
    """Async implementation of sweep command."""
    from rich.console import Console

    from policycache.cli._common import open_persisted

    console = Console()
    cache, persistor = open_persisted(directory, key, verbose)

    if not await persistor.restore():
        console.print(f"[red]No usable snapshot[/red] {persistor.key}")
        raise typer.Exit(code=1)

    result = cache.sweep()
    console.print(
        f"Scanned {result.scanned} entities: "
        f"[yellow]{len(result.expired)} expired[/yellow], "
        f"{len(result.invalidated)} dependent fields invalidated"
    )
    if verbose:
        for expired_key in result.expired:
            console.print(f"  [yellow]stale[/yellow] {expired_key}")

    if evict:
        evicted = cache.evict_stale()
        console.print(f"[red]{len(evicted)} evicted[/red]")
        if verbose:
            for evicted_key in evicted:
                console.print(f"  [red]evicted[/red] {evicted_key}")

    if dry_run:
        console.print("[blue]Dry run:[/blue] snapshot not written")
        return

    if not await persistor.persist():
        console.print("[red]Snapshot exceeds the configured size limit, not written[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Wrote {persistor.key} ({len(cache)} entities)")
