"""
Product Insight Engine - CLI Entry Point.
CLI using Click and Rich.
"""

import sys
import asyncio
from pathlib import Path
from functools import wraps
from typing import Optional

import click
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.panel import Panel
from rich.table import Table

from product_insight.analyzers.task_registry import get_task_name
from product_insight.config.settings import get_settings
from product_insight.extractors.identity_resolver import ConfirmedIdentityCache, is_valid_code
from product_insight.models.schemas import AnalysisRun, TaskStatus
from product_insight.pipeline.orchestrator import ProductAnalysisOrchestrator
from product_insight.services.validation_service import ValidationError, ValidationService
from product_insight.utils.logger import setup_logging

# Initialize Rich Console
console = Console()

STATUS_STYLES = {
    TaskStatus.PENDING.value: "[dim]pending[/dim]",
    TaskStatus.RUNNING.value: "[cyan]running[/cyan]",
    TaskStatus.COMPLETED.value: "[green]completed[/green]",
    TaskStatus.ERROR.value: "[red]error[/red]",
}

# =============================================================================
# Helper Functions
# =============================================================================

def async_command(f):
    """Decorator to run async click commands."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def setup_logger(verbose: bool):
    """Configure logging based on verbosity."""
    settings = get_settings()
    if verbose or settings.debug:
        level = "DEBUG"
    elif settings.log_level == "INFO":
        level = "WARNING"
    else:
        level = settings.log_level
    setup_logging(
        level=level,
        json_format=False,
        log_file=str(settings.log_file) if settings.log_file else None,
    )


def render_run(run: AnalysisRun) -> Table:
    table = Table(title=f"Analysis: {run.product.name}", show_header=True, header_style="bold magenta")
    table.add_column("Task")
    table.add_column("Status")
    table.add_column("Confidence", justify="right")
    table.add_column("Notes")

    for task_id, result in run.tools.items():
        confidence = f"{result.confidence_score:.2f}" if result.confidence_score is not None else "-"
        if result.status == TaskStatus.ERROR:
            notes = result.error or ""
        elif result.degraded:
            notes = "[yellow]fallback[/yellow]"
        else:
            notes = ""
        table.add_row(get_task_name(task_id), STATUS_STYLES.get(result.status, result.status), confidence, notes)
    return table


def load_identity_cache() -> ConfirmedIdentityCache:
    path = get_settings().identity_cache_path
    return ConfirmedIdentityCache.load(path) if path else ConfirmedIdentityCache()

# =============================================================================
# CLI Group
# =============================================================================

@click.group()
@click.version_option(version="1.0.0")
def cli():
    """Product Insight Engine"""
    pass

# =============================================================================
# Commands
# =============================================================================

@cli.command()
@click.argument('identifier')
@click.option('--name', default=None, help='Product name (for product codes)')
@click.option('--json', 'as_json', is_flag=True, help='Print the full run as JSON')
@click.option('--verbose', is_flag=True, help='Detailed logging')
@async_command
async def analyze(identifier: str, name: Optional[str], as_json: bool, verbose: bool):
    """
    Run all analysis tasks for one product.

    IDENTIFIER: A product code (e.g. 3017620422003) or a product name
    """
    setup_logger(verbose)

    try:
        product = ValidationService().validate_reference(identifier, name)
    except ValidationError as e:
        console.print(f"[bold red]Invalid input:[/bold red] {e.message}")
        sys.exit(2)

    if not as_json:
        console.print(Panel.fit(f"[bold blue]Product Analysis[/bold blue]\nTarget: [cyan]{product.name}[/cyan] ({product.identifier})"))

    try:
        async with ProductAnalysisOrchestrator(settings=get_settings()) as orchestrator:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TextColumn("{task.completed}/{task.total}"),
                console=console,
                disable=as_json,
            ) as progress:
                task = progress.add_task("[cyan]Gathering context...", total=len(orchestrator.registry))

                def on_progress(task_id, status, data):
                    if status == TaskStatus.RUNNING:
                        progress.update(task, description=f"[cyan]Running {get_task_name(task_id)}")
                    else:
                        progress.advance(task)

                run = await orchestrator.analyze(product, on_progress=on_progress)
                progress.update(task, description="[green]Analysis complete!")

    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {str(e)}")
        if verbose:
            console.print_exception()
        sys.exit(1)

    if as_json:
        console.print_json(run.model_dump_json())
        return

    console.print(render_run(run))
    summary = run.summary()
    console.print(
        f"[green]✓[/green] {summary['completed']} completed, "
        f"{summary['errors']} failed, {summary['degraded']} on fallback data."
    )


@cli.command()
@click.argument('code')
@click.option('--confirm', 'confirm_index', type=int, default=None,
              help='Confirm the candidate at this position (1-based) and remember it')
@async_command
async def resolve(code: str, confirm_index: Optional[int]):
    """
    List identity candidates for a product code.

    CODE: 13-digit product code
    """
    setup_logger(False)

    if not is_valid_code(code):
        console.print(f"[bold red]Invalid product code:[/bold red] {code}")
        sys.exit(2)

    settings = get_settings()
    cache = load_identity_cache()

    try:
        async with ProductAnalysisOrchestrator(settings=settings) as orchestrator:
            with console.status(f"[cyan]Resolving {code}..."):
                candidates = await orchestrator.resolve_candidates(code, cache)
    except Exception as e:
        console.print(f"[bold red]Resolution Failed:[/bold red] {e}")
        sys.exit(1)

    if not candidates:
        console.print("[yellow]No candidates found. Enter the product name manually.[/yellow]")
        return

    table = Table(title=f"Candidates for {code}", show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Name")
    table.add_column("Brand")
    table.add_column("Source")
    table.add_column("Score", justify="right")
    for index, candidate in enumerate(candidates, start=1):
        table.add_row(
            str(index),
            candidate.name,
            candidate.brand or "-",
            candidate.source_domain,
            f"{candidate.score:.2f}",
        )
    console.print(table)

    if confirm_index is not None:
        if not 1 <= confirm_index <= len(candidates):
            console.print(f"[bold red]No candidate at position {confirm_index}[/bold red]")
            sys.exit(2)
        chosen = candidates[confirm_index - 1]
        cache.confirm(code, chosen.name)
        if settings.identity_cache_path:
            cache.save(settings.identity_cache_path)
        console.print(f"[green]✓[/green] Confirmed {code} as [cyan]{chosen.name}[/cyan]")


@cli.command()
@click.argument('file_path', type=click.Path(exists=True))
@click.option('--verbose', is_flag=True, help='Detailed logging')
@async_command
async def batch(file_path: str, verbose: bool):
    """
    Analyze multiple products from a file, one after another.

    FILE_PATH: Text file with one "identifier[,name]" per line.
    """
    setup_logger(verbose)

    products = ValidationService().parse_bulk(Path(file_path).read_text(encoding="utf-8").splitlines())
    if not products:
        console.print("[red]No valid products found in file.[/red]")
        sys.exit(1)

    console.print(f"[bold]Batch Processing [cyan]{len(products)}[/cyan] products[/bold]")

    try:
        async with ProductAnalysisOrchestrator(settings=get_settings()) as orchestrator:
            runs = await orchestrator.analyze_many(products)
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    for run in runs:
        summary = run.summary()
        marker = "[green]✓[/green]" if summary["errors"] == 0 else "[yellow]![/yellow]"
        console.print(
            f"{marker} {run.product.name}: {summary['completed']} completed, "
            f"{summary['errors']} failed, {summary['degraded']} fallback"
        )

    console.print(Panel(f"Batch Complete\nAnalyzed: [green]{len(runs)}[/green] of {len(products)}"))


@cli.command()
def validate_setup():
    """Check API keys and environment configuration."""
    console.print("[bold]Validating Setup...[/bold]")

    try:
        settings = get_settings()

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Check")
        table.add_column("Status")
        table.add_column("Details")

        problems = settings.validate_backend()
        status = "[green]Pass[/green]" if not problems else "[red]Fail[/red]"
        table.add_row("Generative Backend", status, f"{settings.llm_provider} ({settings.active_model})")

        providers = settings.get_search_providers()
        status = "[green]Pass[/green]" if providers else "[red]Fail[/red]"
        table.add_row("Search Providers", status, ", ".join(providers) or "None")

        table.add_row("Fetch Allowlist", "[blue]Info[/blue]", f"{len(settings.allowed_fetch_domains)} domains")
        table.add_row("Environment", "[blue]Info[/blue]", settings.app_env)

        console.print(table)

        for problem in problems:
            console.print(f"[yellow]Warning: {problem}[/yellow]")
        if problems:
            sys.exit(1)

    except Exception as e:
        console.print(f"[bold red]Configuration Error:[/bold red] {e}")
        sys.exit(1)

if __name__ == "__main__":
    cli()
