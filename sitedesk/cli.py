#!/usr/bin/env python3
"""
SiteDesk CLI

Command-line interface for the SiteDesk member administration console.
"""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from sitedesk.config import configure_logging, load_config
from sitedesk.jobs import JobConflictError, JobState, JobType, create_registry
from sitedesk.platform import CampaignActivity, PlatformClient, PlatformError
from sitedesk.sites import ManagedSite, SiteNotFoundError, SiteStore

logger = logging.getLogger(__name__)
console = Console()

REFRESH_SECONDS = 0.2

STATUS_COLORS = {
    "success": "green",
    "error": "red",
    "mixed": "yellow",
    "pending": "blue",
}


def get_sites() -> SiteStore:
    """Get the site store using config."""
    config = load_config()
    return SiteStore(config.get("sites", {}).get("path", "config/sites.yaml"))


def get_client(config: dict, sites: SiteStore) -> PlatformClient:
    """Get a platform client using config."""
    return PlatformClient.from_config(config, sites)


@click.group()
@click.version_option(version="0.1.0", prog_name="sitedesk")
def main():
    """SiteDesk - Member Administration Console

    Import users, bulk-delete members and manage site credentials.
    """
    configure_logging(load_config(), RichHandler(console=console, show_path=False))


@main.command()
def init():
    """Create the site store and check configuration."""
    sites = get_sites()
    if not sites.path.exists():
        sites.path.parent.mkdir(parents=True, exist_ok=True)
        sites.path.write_text("[]\n")
    console.print(f"[green]✓[/green] Site store ready at {sites.path}")

    config_path = Path("config.yaml")
    if not config_path.exists():
        console.print(
            "[yellow]![/yellow] No config.yaml found. "
            "Copy config.example.yaml and set the functions URL."
        )
    else:
        console.print("[green]✓[/green] Configuration loaded")


# --- Sites ---

@main.group()
def sites():
    """Manage sites and their API keys."""
    pass


@sites.command(name="list")
def sites_list():
    """List managed sites."""
    store = get_sites()
    managed = store.list()

    if not managed:
        console.print("[yellow]No sites configured.[/yellow] Add one with 'sitedesk sites add'.")
        return

    table = Table(title="Managed Sites", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Site ID")
    table.add_column("API Key", style="dim")
    table.add_column("Campaign")

    for site in managed:
        table.add_row(site.site_name, site.site_id, site.masked_key, site.campaign_id or "-")

    console.print(table)


@sites.command(name="add")
@click.option("--name", "-n", required=True, help="Display name of the site")
@click.option("--site-id", "-s", required=True, help="Platform site ID")
@click.option("--api-key", "-k", required=True, help="Platform API key")
@click.option("--campaign-id", "-c", default=None, help="Campaign ID for statistics")
@click.option("--replace", "original_site_id", default=None, help="Site ID of an entry to replace")
def sites_add(name, site_id, api_key, campaign_id, original_site_id):
    """Add a site, or update one with the same ID."""
    store = get_sites()
    site = ManagedSite(site_name=name, site_id=site_id, api_key=api_key, campaign_id=campaign_id)
    try:
        store.save(site, original_site_id=original_site_id)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise SystemExit(1)
    console.print(f"[green]✓[/green] Saved site {name} ({site_id})")


@sites.command(name="remove")
@click.argument("site_id")
def sites_remove(site_id):
    """Remove a site."""
    store = get_sites()
    if store.delete(site_id):
        console.print(f"[green]✓[/green] Removed site {site_id}")
    else:
        console.print(f"[red]Site {site_id} not found[/red]")


# --- Members ---

async def _fetch_members(site_id: str, search: str | None, with_owner: bool = True):
    config = load_config()
    store = get_sites()
    async with get_client(config, store) as client:
        if search:
            members = await client.search_members(site_id, search)
        else:
            members = await client.list_members(site_id)
        owner = None
        if with_owner:
            try:
                owner = await client.get_owner_contact_id(site_id)
            except PlatformError as e:
                logger.warning("Could not determine the owner of %s: %s", site_id, e)
    return members, owner


@main.command()
@click.argument("site_id")
@click.option("--search", "-q", default=None, help="Search by login email or nickname")
def members(site_id, search):
    """List members of a site."""
    try:
        found, owner = asyncio.run(_fetch_members(site_id, search))
    except PlatformError as e:
        console.print(f"[red]Error:[/red] {e}")
        return

    table = Table(title=f"Members ({len(found)})", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="dim")
    table.add_column("Name")
    table.add_column("Email")
    table.add_column("Status")

    for member in found:
        name = member.nickname or "-"
        if owner and member.contact_id == owner:
            name += " [magenta](owner)[/magenta]"
        table.add_row(member.id, name, member.login_email or "-", member.status or "-")

    console.print(table)


# --- Campaign statistics ---

async def _fetch_campaign(site_id: str, campaign_id: str, activity: CampaignActivity):
    config = load_config()
    store = get_sites()
    async with get_client(config, store) as client:
        stats = await client.get_campaign_stats(site_id, campaign_id)
        recipients = await client.get_campaign_recipients(site_id, campaign_id, activity)
    return stats, recipients


@main.command()
@click.argument("site_id")
@click.option(
    "--activity", "-a",
    type=click.Choice([a.value for a in CampaignActivity], case_sensitive=False),
    default=CampaignActivity.DELIVERED.value,
    help="Recipient activity to list",
)
@click.option("--export", "-o", "export_path", type=click.Path(dir_okay=False), help="Write recipient emails to a file")
def campaign(site_id, activity, export_path):
    """Show statistics and recipients of the site's email campaign."""
    try:
        site = get_sites().get(site_id)
    except SiteNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        return
    if not site.campaign_id:
        console.print("[yellow]![/yellow] No Campaign ID is configured for this site.")
        return

    activity = CampaignActivity(activity.upper())
    try:
        stats, recipients = asyncio.run(_fetch_campaign(site_id, site.campaign_id, activity))
    except PlatformError as e:
        console.print(f"[red]Error:[/red] {e}")
        return

    if stats is None:
        console.print("[dim]No statistics found for this campaign.[/dim]")
    else:
        table = Table(title=f"Campaign {site.campaign_id}", show_header=True, header_style="bold cyan")
        for column in ("Delivered", "Opened", "Clicked", "Bounced", "Complained", "Not Sent"):
            table.add_column(column, justify="right")
        table.add_row(*(str(value) for value in (
            stats.delivered, stats.opened, stats.clicked, stats.bounced, stats.complained, stats.not_sent,
        )))
        console.print(table)

    table = Table(title=f"Recipients - {activity.value} ({len(recipients)})", show_header=True, header_style="bold cyan")
    table.add_column("Email Address")
    table.add_column("Full Name")
    table.add_column("Last Activity", style="dim")
    for recipient in recipients:
        table.add_row(
            recipient.email_address or "N/A",
            recipient.full_name or "N/A",
            recipient.last_activity_date or "-",
        )
    console.print(table)

    if export_path:
        emails = [r.email_address for r in recipients if r.email_address]
        Path(export_path).write_text("\n".join(emails))
        console.print(f"[green]✓[/green] Exported {len(emails)} email(s) to {export_path}")


# --- Jobs ---

async def _run_job(site_id: str, job_type: JobType, work_items, overrides: dict, select_members=None) -> JobState:
    """Run one job in the foreground, rendering progress until it ends."""
    config = load_config()
    store = get_sites()
    async with get_client(config, store) as client:
        registry = create_registry(client, config)

        if select_members is not None:
            listed = await client.list_members(site_id)
            work_items = [m for m in listed if select_members(m)]

        state = registry.start(site_id, job_type, work_items, overrides)
        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("{task.description}"),
                BarColumn(),
                TextColumn("{task.percentage:>3.0f}%"),
                TimeElapsedColumn(),
                console=console,
            ) as progress:
                task = progress.add_task("Starting...", total=100)
                while state.is_active:
                    description = state.message
                    if state.countdown:
                        description = f"{description} (next in {state.countdown}s)"
                    progress.update(task, completed=state.progress, description=description)
                    await asyncio.sleep(REFRESH_SECONDS)
                await registry.wait(site_id, job_type)
                progress.update(task, completed=state.progress, description=state.message)
        except asyncio.CancelledError:
            registry.cancel(site_id, job_type)
            await registry.wait(site_id, job_type)
            raise

    return state


def _read_recipients(emails: tuple, file: str | None) -> list[str]:
    recipients = list(emails)
    if file:
        recipients.append(Path(file).read_text())
    return recipients


def _print_import_results(state: JobState) -> None:
    table = Table(title="Import Results", show_header=True, header_style="bold cyan")
    table.add_column("Email")
    table.add_column("Status")
    table.add_column("Message")

    for result in state.results:
        color = STATUS_COLORS.get(result.status.value, "white")
        table.add_row(result.item, f"[{color}]{result.status.value.upper()}[/{color}]", result.message)

    console.print(table)


def _print_deletion_log(state: JobState) -> None:
    table = Table(title="Deletion Log", show_header=True, header_style="bold cyan")
    table.add_column("Batch", justify="right")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Details")

    for entry in state.logs:
        color = STATUS_COLORS.get(entry.status.value, "white")
        details = entry.details
        if entry.raw_error:
            details += f" ({entry.raw_error})"
        table.add_row(str(entry.batch), entry.type.value, f"[{color}]{entry.status.value.upper()}[/{color}]", details)
        for contact in entry.contact_results or []:
            if contact.error:
                table.add_row("", "", "", f"[red]{contact.email or contact.contact_id}: {contact.error}[/red]")

    console.print(table)


def _summary(state: JobState) -> str:
    minutes, seconds = divmod(int(state.elapsed_time), 60)
    return f"""
[bold]Status:[/bold] {state.status.value}
[bold]Progress:[/bold] {state.progress:.0f}%
[bold]Elapsed:[/bold] {minutes:02d}:{seconds:02d}
[bold]Message:[/bold] {state.message}
    """.strip()


@main.command(name="import")
@click.argument("site_id")
@click.option("--email", "-e", "emails", multiple=True, help="Recipient email (repeatable)")
@click.option("--file", "-f", type=click.Path(exists=True, dir_okay=False), help="File with recipients")
@click.option("--subject", "-s", default=None, help="Custom subject line")
@click.option("--delay", "-d", type=float, default=None, help="Seconds between imports")
def import_users(site_id, emails, file, subject, delay):
    """Import users into a site, one at a time.

    Press Ctrl-C to end the job; remaining emails are not processed.
    """
    recipients = _read_recipients(emails, file)
    if not recipients:
        console.print("[yellow]![/yellow] Provide at least one --email or a --file.")
        return

    overrides = {"custom_subject": subject, "delay_seconds": delay}
    try:
        state = asyncio.run(_run_job(site_id, JobType.IMPORT, recipients, overrides))
    except KeyboardInterrupt:
        console.print("[red]Import job terminated by user.[/red]")
        return
    except JobConflictError as e:
        console.print(f"[red]Error:[/red] {e}")
        return

    if state.total == 0:
        console.print("[yellow]![/yellow] No valid email addresses found to import.")
        return

    _print_import_results(state)
    console.print(Panel(_summary(state), title="Import Job", border_style="blue"))


@main.command()
@click.argument("site_id")
@click.option("--member", "-m", "member_ids", multiple=True, help="Member ID to delete (repeatable)")
@click.option("--all", "delete_all", is_flag=True, help="Delete every member except the site owner")
@click.option("--batch-size", "-b", type=int, default=None, help="Members per batch")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def delete(site_id, member_ids, delete_all, batch_size, yes):
    """Bulk-delete members and their contacts.

    The site owner is never deleted.
    """
    if not member_ids and not delete_all:
        console.print("[yellow]![/yellow] Pass --member IDs or --all.")
        return

    if not yes:
        target = "all members" if delete_all else f"{len(member_ids)} member(s)"
        click.confirm(f"Delete {target} of {site_id} and their contacts?", abort=True)

    wanted = set(member_ids)
    overrides = {"batch_size": batch_size}
    try:
        state = asyncio.run(_run_job(
            site_id, JobType.BULK_DELETE, [], overrides,
            select_members=lambda m: delete_all or m.id in wanted,
        ))
    except KeyboardInterrupt:
        console.print("[red]Deletion job cancelled by user.[/red]")
        return
    except (JobConflictError, PlatformError) as e:
        console.print(f"[red]Error:[/red] {e}")
        return

    _print_deletion_log(state)
    console.print(Panel(_summary(state), title="Bulk Delete Job", border_style="blue"))


if __name__ == "__main__":
    main()
