#!/usr/bin/env python3
"""
bulkcerts CLI - Main entry point.

Commands:
  bulkcerts db       - Prepare the chunk record table
  bulkcerts tasks    - Create, inspect, fetch, delete and replay bulk tasks
  bulkcerts worker   - Run a worker that processes chunk messages
  bulkcerts queue    - Inspect and maintain the work queue
"""

import logging
import sys

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler

from bulkcerts import __version__

# Setup rich console
console = Console()

# Load environment variables from .env file if present
load_dotenv()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)]
    )
    logging.getLogger("bulkcerts").setLevel(level)


@click.group()
@click.version_option(version=__version__)
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose logging')
@click.pass_context
def cli(ctx, verbose):
    """bulkcerts - Bulk X.509 device certificate issuance on AWS."""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    setup_logging(verbose)


# Import subcommands
from bulkcerts.cli.db import db  # noqa: E402
from bulkcerts.cli.queue import queue  # noqa: E402
from bulkcerts.cli.tasks import tasks  # noqa: E402
from bulkcerts.cli.worker import worker  # noqa: E402

cli.add_command(db)
cli.add_command(tasks)
cli.add_command(worker)
cli.add_command(queue)


def main():
    """Main entry point."""
    try:
        cli(obj={})
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        if '--verbose' in sys.argv or '-v' in sys.argv:
            raise
        sys.exit(1)


if __name__ == '__main__':
    main()
