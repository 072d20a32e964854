"""
Command Line Interface for leiMatchAPI
"""

import sys
import json
import random
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.tree import Tree

from .client import GleifClient, GleifClientError, GleifNotFoundError
from .data_processor import MATCH_RESULT_LABELS, DataProcessor
from .hierarchy import HierarchyAssembler, HierarchyBrowser
from .matcher import NameMatcher
from .models import CompanyRecord, HierarchyView, MatchStatus, RelationshipLinks
from .parser import parse_record
from .utils import describe_exception_reason

console = Console()
logger = logging.getLogger(__name__)


def _load_client(config: Optional[str]) -> GleifClient:
    api_config = {}
    if config and Path(config).exists():
        with open(config, 'r') as f:
            api_config = json.load(f)
    return GleifClient(**api_config)


def _relationship_summary(links: Optional[RelationshipLinks], missing: str) -> str:
    if links is None or not links.is_present:
        return missing
    if not links.reporting_exception or links.preferred_link() != links.reporting_exception:
        return "Available in corporate hierarchy"
    if links.reason:
        return f"Exception: {describe_exception_reason(links.reason)}"
    return "Exception: details available in corporate hierarchy"


def _render_company(company: CompanyRecord) -> Panel:
    table = Table.grid(padding=(0, 2))
    table.add_column(style="dim")
    table.add_column()

    table.add_row("LEI", company.lei)
    if company.entity_category:
        table.add_row("Category", company.entity_category)
    table.add_row("Legal form", company.legal_form_description or "Not available")
    table.add_row("Entity status", company.entity_status or "Not available")
    if company.registration_status:
        table.add_row("Registration",
                      f"{company.registration_status} - {company.registration_status_description}")
    table.add_row("Registration authority", company.registration_authority or "Not available")
    if company.bic:
        table.add_row("BIC", ", ".join(company.bic))
    table.add_row("Legal address", company.address or "Not available")
    if company.headquarters_address:
        table.add_row("Headquarters", company.headquarters_address)
    table.add_row("Jurisdiction", company.jurisdiction or "Not available")
    table.add_row("Initial registration", company.initial_registration_date or "Not available")
    table.add_row("Last update", company.last_update_date or "Not available")
    table.add_row("Next renewal", company.next_renewal_date or "Not available")
    table.add_row("Direct parent", _relationship_summary(company.direct_parent, "No direct parent"))
    table.add_row("Ultimate parent", _relationship_summary(company.ultimate_parent, "No ultimate parent"))
    table.add_row("Subsidiaries",
                  "Available in corporate hierarchy" if company.has_children else "No subsidiaries")

    return Panel(table, title=company.legal_name, expand=False)


def _entity_label(company: CompanyRecord, role: str) -> str:
    details = " · ".join(part for part in (company.lei, company.jurisdiction,
                                             company.registration_status) if part)
    return f"[bold]{company.legal_name}[/bold] [dim]({role}; {details})[/dim]"


def _render_hierarchy(view: HierarchyView) -> Tree:
    pivots = {company.lei: index for index, company in enumerate(view.entities(), start=1)}

    def label(company: CompanyRecord, role: str) -> str:
        number = pivots.get(company.lei)
        prefix = f"[cyan]{number}.[/cyan] " if number else ""
        return prefix + _entity_label(company, role)

    root = Tree("Corporate hierarchy")
    node = root
    if view.ultimate_parent:
        node = node.add(label(view.ultimate_parent, "Ultimate parent"))
    elif view.ultimate_parent_exception:
        node.add(f"[yellow]Ultimate parent not reported:[/yellow] "
                 f"{view.ultimate_parent_exception.reason_description}")

    if view.direct_parent and (
        not view.ultimate_parent or view.direct_parent.lei != view.ultimate_parent.lei
    ):
        node = node.add(label(view.direct_parent, "Direct parent"))
    elif view.direct_parent_exception:
        node.add(f"[yellow]Direct parent not reported:[/yellow] "
                 f"{view.direct_parent_exception.reason_description}")

    current = node.add(f"[green]{_entity_label(view.current, 'Current entity')}[/green]")
    for child in view.children:
        current.add(label(child, "Subsidiary"))

    if not view.has_relationships:
        root.add("[dim]This entity has no parent or child relationships[/dim]")
    return root


def _render_suppliers(dataset) -> Table:
    counts = dataset.counts()
    attempted = counts[MatchStatus.MATCHED] + counts[MatchStatus.NO_MATCH]
    table = Table(
        title="Supplier Matches",
        caption=f"{attempted} match attempts ({counts[MatchStatus.MATCHED]} successful matches) "
                f"out of {len(dataset)} suppliers",
    )
    table.add_column("Original Name", style="bold")
    table.add_column("Match Result")
    table.add_column("Official Company Name", style="magenta")
    table.add_column("LEI", style="cyan")
    table.add_column("Address", max_width=40)
    table.add_column("Jurisdiction", style="green")
    table.add_column("Status")

    styles = {
        MatchStatus.NOT_ATTEMPTED: "dim",
        MatchStatus.NO_MATCH: "red",
        MatchStatus.MATCHED: "green",
    }
    for record in dataset:
        company = record.company
        table.add_row(
            record.original_name,
            f"[{styles[record.match_status]}]{MATCH_RESULT_LABELS[record.match_status]}[/]",
            company.legal_name if company else "-",
            company.lei if company else "-",
            company.address if company else "-",
            company.jurisdiction or "-" if company else "-",
            company.registration_status or "-" if company else "-",
        )
    return table


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']), default='WARNING', help='Set log level')
def cli(verbose, log_level):
    """LEI Match - Match suppliers to GLEIF LEI records and explore corporate hierarchies"""
    # Configure logging
    level = getattr(logging, log_level.upper())
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@cli.command()
@click.argument('input_file', type=click.Path(exists=True))
@click.option('--cap', type=int, default=None, help='Maximum number of suppliers queried')
@click.option('--throttle-ms', type=int, default=None, help='Pause between registry requests')
@click.option('--seed', type=int, default=None, help='Seed for sampling oversized files')
@click.option('--retry-unmatched', is_flag=True, help='Retry suppliers without a match once')
@click.option('--output', type=click.Path(), help='Write results to a .csv or .xlsx file')
@click.option('--config', type=click.Path(), help='Configuration file path')
def match(input_file, cap, throttle_ms, seed, retry_unmatched, output, config):
    """Match the suppliers of a CSV file against the GLEIF registry.

    INPUT_FILE: Path to input CSV (or Excel) file with a supplier name column
    """
    try:
        console.print(Panel.fit("🔎 Matching Suppliers with GLEIF", style="bold blue"))

        client = _load_client(config)
        matcher = NameMatcher(
            client,
            batch_cap=cap,
            throttle_seconds=throttle_ms / 1000 if throttle_ms is not None else None,
            rng=random.Random(seed) if seed is not None else None,
        )
        processor = DataProcessor(matcher)
        dataset = processor.load_suppliers(input_file)
        console.print(f"📄 Loaded {len(dataset)} suppliers", style="green")

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            console=console,
        ) as progress:
            task = progress.add_task("Matching suppliers with GLEIF API...", total=None)

            def on_progress(done, total, record):
                progress.update(task, total=total, completed=done,
                                description=f"Matching suppliers with GLEIF API... ({done}/{total})")

            summary = processor.run_matching(dataset, progress=on_progress)
            if retry_unmatched:
                progress.update(task, description="Retrying unmatched suppliers...")
                recovered = processor.retry_unmatched(dataset)
                summary.matched += recovered
                summary.no_match -= recovered

        console.print(_render_suppliers(dataset))
        console.print(
            f"✅ Completed matching: {summary.matched} of {summary.attempted} suppliers matched",
            style="green",
        )
        if summary.not_attempted:
            console.print(f"{summary.not_attempted} suppliers were not attempted", style="dim")
        if summary.errors:
            console.print(f"⚠️  {summary.errors} registry requests failed; those suppliers show as no match",
                          style="yellow")

        if output:
            path = processor.export_results(dataset, output)
            console.print(f"💾 Saved results to: {path}", style="green")

    except Exception as e:
        console.print(f"❌ Error: {e}", style="red")
        logger.exception("CLI match command failed")
        sys.exit(1)


@cli.command()
@click.argument('name')
@click.option('--config', type=click.Path(), help='Configuration file path')
def search(name, config):
    """Match a single company name and show the best LEI record."""
    try:
        matcher = NameMatcher(_load_client(config))
        company = matcher.match_by_name(name)
        if company is None:
            console.print("No match found", style="yellow")
            return
        console.print(_render_company(matcher.prefetch_exception_reasons(company)))

    except Exception as e:
        console.print(f"❌ Error: {e}", style="red")
        sys.exit(1)


@cli.command()
@click.argument('lei')
@click.option('--config', type=click.Path(), help='Configuration file path')
def lookup(lei, config):
    """Show the LEI record of an entity."""
    try:
        client = _load_client(config)
        try:
            company = parse_record(client.get_record(lei))
        except GleifNotFoundError:
            company = None
        if company is None:
            console.print(f"No LEI record found for {lei}", style="yellow")
            sys.exit(1)
        company = NameMatcher(client).prefetch_exception_reasons(company)
        console.print(_render_company(company))

    except GleifClientError as e:
        console.print(f"❌ Error: {e}", style="red")
        sys.exit(1)


@cli.command()
@click.argument('lei')
@click.option('--interactive', '-i', is_flag=True, help='Prompt for an entity to re-root on')
@click.option('--config', type=click.Path(), help='Configuration file path')
def hierarchy(lei, interactive, config):
    """Show the corporate hierarchy around an entity."""
    try:
        browser = HierarchyBrowser(HierarchyAssembler(_load_client(config)))
        view = browser.navigate(lei)
        if view is None:
            console.print("❌ Failed to load the corporate hierarchy", style="red")
            sys.exit(1)

        while True:
            console.print(_render_hierarchy(view))
            if view.is_partial:
                console.print(f"⚠️  Hierarchy is incomplete: {view.error}", style="yellow")

            pivots = view.entities()
            if not interactive or not pivots:
                break
            choice = click.prompt("Entity number to explore (blank to quit)",
                                  default="", show_default=False)
            if not choice.strip():
                break
            if not choice.strip().isdigit() or not 1 <= int(choice) <= len(pivots):
                console.print(f"Choose a number between 1 and {len(pivots)}", style="yellow")
                continue
            with console.status("Loading entity hierarchy..."):
                next_view = browser.select(int(choice) - 1)
            if next_view is None:
                console.print("❌ Failed to load the corporate hierarchy", style="red")
                continue
            view = next_view

    except Exception as e:
        console.print(f"❌ Error: {e}", style="red")
        logger.exception("CLI hierarchy command failed")
        sys.exit(1)


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
