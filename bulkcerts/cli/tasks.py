"""
bulkcerts Tasks CLI - Bulk certificate tasks.

Usage:
  bulkcerts tasks create --quantity 1000 --ca-alias prod
  bulkcerts tasks create --quantity 20 --ca-alias prod --generator increment --common-name dev- --start 00A0
  bulkcerts tasks status <task-id>
  bulkcerts tasks fetch <task-id> [--links] [--output certs.zip]
  bulkcerts tasks delete <task-id>
  bulkcerts tasks replay <task-id>
"""

import json
import shutil
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from bulkcerts.core.models import CertificateInfo, CommonNameGenerator
from bulkcerts.errors import NotFoundError, UpstreamError, ValidationError

console = Console()

_HANDLED_ERRORS = (ValidationError, NotFoundError, UpstreamError)


def get_service():
    """Build the service from environment configuration."""
    from bulkcerts.config import BulkCertsConfig
    from bulkcerts.orch.service import BulkCertificatesService

    try:
        cfg = BulkCertsConfig.from_env()
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    return cfg, BulkCertificatesService.from_config(cfg)


def fail(e: Exception) -> None:
    label = "Not found" if isinstance(e, NotFoundError) else "Error"
    console.print(f"[red]{label}:[/red] {e}")
    sys.exit(1)


@click.group()
def tasks():
    """Create, inspect, fetch, delete and replay bulk certificate tasks."""
    pass


@tasks.command()
@click.option('--quantity', '-n', type=int, required=True, help='Number of certificates to issue')
@click.option('--ca-alias', required=True, help='CA alias (see BULKCERTS_SUPPLIER_ROOT_CAS)')
@click.option('--include-ca', is_flag=True, help='Append the CA certificate to each certificate PEM (customer CA only)')
@click.option('--common-name', help='Common name, or literal prefix with a generator')
@click.option('--generator', type=click.Choice(CommonNameGenerator.ALL), default=CommonNameGenerator.STATIC,
              show_default=True, help='Common name generator')
@click.option('--start', 'common_name_start', help='First hex value for the increment generator')
@click.option('--names-file', type=click.Path(exists=True, dir_okay=False),
              help='File with one common name per line (list generator)')
@click.option('--organization', help='Subject O')
@click.option('--organizational-unit', help='Subject OU')
@click.option('--locality', help='Subject L')
@click.option('--state', 'state_name', help='Subject ST')
@click.option('--country', help='Subject C (two letters)')
@click.option('--email', 'email_address', help='Subject emailAddress')
def create(quantity, ca_alias, include_ca, common_name, generator, common_name_start, names_file,
           organization, organizational_unit, locality, state_name, country, email_address):
    """Split a bulk request into chunks and queue them."""
    cfg, service = get_service()

    common_name_list = None
    if names_file:
        lines = Path(names_file).read_text(encoding="utf-8").splitlines()
        common_name_list = [line.strip() for line in lines if line.strip() and not line.startswith('#')]

    cert_info = CertificateInfo(**cfg.cert_info_defaults).with_overrides(
        common_name=common_name,
        common_name_generator=generator,
        common_name_start=common_name_start,
        common_name_list=common_name_list,
        organization=organization,
        organizational_unit=organizational_unit,
        locality=locality,
        state_name=state_name,
        country=country,
        email_address=email_address,
    )

    try:
        accepted = service.create_task(quantity, ca_alias, cert_info, include_ca=include_ca)
    except _HANDLED_ERRORS as e:
        fail(e)
    finally:
        service.close()

    console.print(f"[green]✓[/green] Task accepted: [cyan]{accepted.task_id}[/cyan]")
    console.print(f"[dim]Status: {accepted.location}[/dim]")
    click.echo(json.dumps(accepted.to_dict()))


@tasks.command()
@click.argument('task_id')
@click.option('--json', 'as_json', is_flag=True, help='Print the raw status document')
def status(task_id, as_json):
    """Show the aggregated status of a task."""
    _, service = get_service()
    try:
        doc = service.get_task_status(task_id)
    except _HANDLED_ERRORS as e:
        fail(e)
    finally:
        service.close()

    if as_json:
        click.echo(json.dumps(doc))
        return

    table = Table(title=f"Task {task_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for key, value in doc.items():
        table.add_row(key, str(value))
    console.print(table)


@tasks.command()
@click.argument('task_id')
@click.option('--links', is_flag=True, help='Print presigned URLs instead of downloading a merged archive')
@click.option('--output', '-o', type=click.Path(dir_okay=False), help='Where to write the merged archive (default: <task-id>.zip)')
def fetch(task_id, links, output):
    """Fetch the certificates of a completed task."""
    from bulkcerts.orch.service import RETRIEVAL_LINKS, RETRIEVAL_REDIRECT

    _, service = get_service()
    try:
        result = service.retrieve_artifacts(task_id, as_links=links)
    except _HANDLED_ERRORS as e:
        fail(e)
    finally:
        service.close()

    if result.kind == RETRIEVAL_REDIRECT:
        console.print(f"[yellow]Task {task_id} is still pending.[/yellow] Poll: {result.redirect_to}")
        sys.exit(2)

    if result.kind == RETRIEVAL_LINKS:
        for url in result.urls:
            click.echo(url)
        return

    dest = Path(output or f"{task_id}.zip")
    shutil.move(str(result.bundle_path), dest)
    console.print(f"[green]✓[/green] Wrote {dest}")


@tasks.command()
@click.argument('task_id')
@click.option('--yes', is_flag=True, help='Skip confirmation')
def delete(task_id, yes):
    """Delete all artifacts of a task (chunk records are kept)."""
    if not yes:
        click.confirm(f"Delete all certificate archives of task {task_id}?", abort=True)

    _, service = get_service()
    try:
        count = service.delete_task_artifacts(task_id)
    except _HANDLED_ERRORS as e:
        fail(e)
    finally:
        service.close()

    console.print(f"[green]✓[/green] Deleted {count} object(s)")


@tasks.command()
@click.argument('task_id')
def replay(task_id):
    """Republish work messages for chunks that are still pending."""
    _, service = get_service()
    try:
        count = service.replay_pending(task_id)
    except _HANDLED_ERRORS as e:
        fail(e)
    finally:
        service.close()

    console.print(f"[green]✓[/green] Republished {count} chunk(s)")
