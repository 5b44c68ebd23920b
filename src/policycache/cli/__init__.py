"""CLI commands for policycache.

Operates on snapshots persisted by CachePersistor with LocalFileStorage:
- policycache inspect: Show the entities of a persisted snapshot
- policycache sweep: Expire (and optionally evict) entities of a snapshot

Usage:
    policycache --help
    policycache inspect .policycache
    policycache sweep .policycache --evict
"""

import typer

from policycache.cli.inspect_cmd import inspect_snapshot
from policycache.cli.sweep_cmd import sweep_snapshot

app = typer.Typer(
    name="policycache",
    help="policycache: normalized entity cache with invalidation policies",
    no_args_is_help=True,
)

app.command("inspect")(inspect_snapshot)
app.command("sweep")(sweep_snapshot)


@app.callback()
def callback() -> None:
    """policycache: normalized entity cache with invalidation policies."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
