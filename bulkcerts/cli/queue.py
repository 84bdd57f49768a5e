"""
bulkcerts Queue CLI - Manage the chunk work queue.

Usage:
  bulkcerts queue stats [--queue-url <url>]
  bulkcerts queue purge [--queue-url <url>] [--yes]
  bulkcerts queue redrive --source-queue-url <dlq-url> [--dest-queue-url <url>]
"""

import os
import sys
from datetime import datetime

import click
from rich.console import Console
from rich.table import Table

from bulkcerts.errors import UpstreamError, ValidationError

console = Console()


def get_sqs_client(region=None):
    """Get SQS client from environment."""
    from bulkcerts.io.sqs import SQSClient

    return SQSClient(region or os.environ.get('BULKCERTS_REGION', 'us-east-1'))


def resolve_queue_url(queue_url):
    queue_url = queue_url or os.environ.get('BULKCERTS_QUEUE_URL')
    if not queue_url:
        console.print("[red]Error:[/red] Must specify --queue-url or set BULKCERTS_QUEUE_URL")
        sys.exit(1)
    return queue_url


@click.group()
def queue():
    """Inspect and maintain the chunk work queue (stats, purge, redrive)."""
    pass


@queue.command()
@click.option('--queue-url', help='SQS queue URL (default: BULKCERTS_QUEUE_URL)')
@click.option('--region', help='AWS region (default: from BULKCERTS_REGION env or us-east-1)')
def stats(queue_url, region):
    """Show queue statistics."""
    queue_url = resolve_queue_url(queue_url)
    sqs = get_sqs_client(region)

    try:
        stats_data = sqs.get_queue_stats(queue_url)
    except UpstreamError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    table = Table(title=f"Queue Stats: {queue_url}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Messages Available", str(stats_data['approximate_messages']))
    table.add_row("Messages In Flight", str(stats_data['approximate_messages_not_visible']))
    table.add_row("Messages Delayed", str(stats_data['approximate_messages_delayed']))

    created = datetime.fromtimestamp(stats_data['created_timestamp'])
    modified = datetime.fromtimestamp(stats_data['last_modified_timestamp'])
    table.add_row("Created", created.strftime('%Y-%m-%d %H:%M:%S'))
    table.add_row("Last Modified", modified.strftime('%Y-%m-%d %H:%M:%S'))

    console.print(table)


@queue.command()
@click.option('--queue-url', help='SQS queue URL (default: BULKCERTS_QUEUE_URL)')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@click.option('--region', help='AWS region (default: from BULKCERTS_REGION env or us-east-1)')
def purge(queue_url, yes, region):
    """Purge all messages from queue (WARNING: irreversible, pending chunks will need a replay)."""
    queue_url = resolve_queue_url(queue_url)

    if not yes:
        console.print("[yellow]WARNING:[/yellow] This will delete all messages from the queue!")
        click.confirm("Are you sure?", abort=True)

    sqs = get_sqs_client(region)
    try:
        sqs.purge(queue_url)
    except UpstreamError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    console.print("[green]✓[/green] Purged queue")


@queue.command()
@click.option('--source-queue-url', required=True, help='Source queue URL (e.g., DLQ)')
@click.option('--dest-queue-url', help='Destination queue URL (default: BULKCERTS_QUEUE_URL)')
@click.option('--max-messages', type=int, default=1000, help='Maximum messages to redrive')
@click.option('--region', help='AWS region (default: from BULKCERTS_REGION env or us-east-1)')
def redrive(source_queue_url, dest_queue_url, max_messages, region):
    """Redrive chunk messages from a DLQ back to the work queue."""
    from bulkcerts.core.models import ChunkRequest

    dest_queue_url = resolve_queue_url(dest_queue_url)
    sqs = get_sqs_client(region)

    console.print("Redriving messages from DLQ to main queue...")
    console.print(f"Source: {source_queue_url}")
    console.print(f"Dest: {dest_queue_url}")

    count = 0
    skipped = 0
    try:
        while count + skipped < max_messages:
            msg = sqs.receive_one(source_queue_url, wait_seconds=1, visibility_timeout=30)
            if msg is None:
                break

            try:
                request = ChunkRequest.from_json(msg.body)
            except ValidationError as e:
                # Poison messages stay in the DLQ for inspection
                console.print(f"[yellow]Skipping malformed message {msg.message_id}:[/yellow] {e}")
                skipped += 1
                continue

            sqs.send_chunk_request(dest_queue_url, request)
            sqs.delete(source_queue_url, msg.receipt_handle)
            count += 1

            if count % 10 == 0:
                console.print(f"Redriven {count} messages...")
    except UpstreamError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    console.print(f"[green]✓[/green] Redriven {count} message(s), skipped {skipped}")
