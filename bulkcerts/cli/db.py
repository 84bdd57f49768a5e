"""
bulkcerts DB CLI.

Usage:
  bulkcerts db init
"""

import sys

import click
from rich.console import Console

from bulkcerts.errors import UpstreamError, ValidationError

console = Console()


@click.group()
def db():
    """Manage the chunk record database."""
    pass


@db.command()
def init():
    """Create the chunk record table if it does not exist."""
    from bulkcerts.config import build_dsn_from_env
    from bulkcerts.io.db import ChunkRecordStore, DBClient

    dsn = build_dsn_from_env()
    if not dsn:
        console.print("[red]Error:[/red] Missing required SQL environment variables")
        console.print("Required: BULKCERTS_SQL_HOST, BULKCERTS_SQL_USER, BULKCERTS_SQL_PASSWORD")
        sys.exit(1)

    store = ChunkRecordStore(DBClient(dsn))
    try:
        store.ensure_schema()
    except (UpstreamError, ValidationError) as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    finally:
        store.close()
    console.print("[green]✓[/green] Chunk record table ready")
