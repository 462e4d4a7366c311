"""
Listing Research & Generation Pipeline - CLI Entry Point.
CLI using Click and Rich over the JSON file store in ``DATA_DIR``.
"""

import sys
import asyncio
import json
import logging
from pathlib import Path
from functools import wraps
from typing import Any, Optional

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler

from src.config.providers import (
    ANTHROPIC_API_KEY,
    RUFUS_EXTENSION_API_KEY,
    ChainedConfigProvider,
    build_config_chain,
)
from src.config.settings import get_settings
from src.models.schemas import (
    BatchRequest,
    Category,
    Country,
    ExistingListingText,
    GenerationPhase,
    PhaseRequest,
    ProductSpec,
    ProductType,
    ResearchAnalysis,
)
from src.pipeline.batch import BatchOrchestrator
from src.pipeline.jobs import BackgroundJobRunner
from src.pipeline.phases import PhasedGenerationMachine
from src.pipeline.workflow import ListingWorkflow
from src.research.ingestion import ExtensionAuthenticator, QnAService, RufusJobQueue
from src.research.reviews import ReviewsService
from src.services.llm_service import ClaudeService
from src.services.marketplace_service import ApifyProvider, OxylabsProvider
from src.services.validation_service import ValidationService
from src.storage.store import JsonFileStore, Store
from src.utils.formatters import ListingFormatter, format_sections_table
from src.utils.logger import setup_logging
from src.utils.retry import ErrorHandler, NotFoundError

# Initialize Rich Console
console = Console()

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
    level = "DEBUG" if verbose else "WARNING"
    setup_logging(level=level, json_format=False)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )
    # Silence third-party libs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def open_store() -> Store:
    """The CLI's persistent store."""
    return JsonFileStore(get_settings().data_dir / "store.json")


def build_config(store: Store) -> ChainedConfigProvider:
    return build_config_chain(store=store, settings=get_settings())


def build_claude_service(store: Store) -> ClaudeService:
    return ClaudeService(config=build_config(store), settings=get_settings())


def fail(error: Exception, verbose: bool = False) -> None:
    """Print the error record and exit with status 1."""
    response = ErrorHandler.to_response(error)
    console.print(f"[bold red]Error ({response.error_type}):[/bold red] {response.message}")
    for detail in response.details:
        console.print(f"  [dim]{detail.field}:[/dim] {detail.message}")
    if verbose:
        console.print_exception()
    sys.exit(1)


def parse_attributes(values: tuple[str, ...]) -> dict[str, str]:
    """``key=value`` pairs from repeated ``--attr`` options."""
    attributes = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"Expected key=value, got '{item}'", param_hint="--attr")
        attributes[key.strip()] = value.strip()
    return attributes


def product_options(f):
    """Options describing one product for the title phase."""
    options = [
        click.option("--category-id", help="Category id"),
        click.option("--country-id", help="Country (marketplace) id"),
        click.option("--product-name", default="", help="Product name"),
        click.option("--brand", default="", help="Brand name"),
        click.option("--asin", default=None, help="Product ASIN"),
        click.option("--product-type", "product_type_name", default=None, help="Product type name"),
        click.option("--attr", "attrs", multiple=True, help="Product attribute as key=value (repeatable)"),
        click.option(
            "--mode",
            type=click.Choice(["new", "optimize_existing", "based_on_existing"]),
            default="new",
            help="Optimization mode",
        ),
        click.option(
            "--existing",
            type=click.Path(exists=True),
            default=None,
            help="JSON file with the existing listing {title, bullets, description}",
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def build_title_request(
    listing_id: Optional[str],
    category_id: Optional[str],
    country_id: Optional[str],
    product_name: str,
    brand: str,
    asin: Optional[str],
    product_type_name: Optional[str],
    attrs: tuple[str, ...],
    mode: str,
    existing: Optional[str],
) -> PhaseRequest:
    existing_text = None
    if existing:
        existing_text = ExistingListingText.model_validate_json(Path(existing).read_text(encoding="utf-8"))
    return PhaseRequest(
        phase=GenerationPhase.TITLE.value,
        listing_id=listing_id,
        category_id=category_id,
        country_id=country_id,
        product=ProductSpec(
            product_name=product_name,
            brand=brand,
            asin=asin,
            attributes=parse_attributes(attrs),
            product_type_name=product_type_name,
        ),
        optimization_mode=mode,
        existing_listing_text=existing_text,
    )


def bearer(api_key: Optional[str]) -> Optional[str]:
    return f"Bearer {api_key}" if api_key else None


# =============================================================================
# CLI Group
# =============================================================================

@click.group()
@click.version_option(version="1.0.0")
def cli():
    """Listing Research & Generation Pipeline"""
    pass

# =============================================================================
# Reference Data
# =============================================================================

FIXTURE_TABLES = {
    "categories": (Category, "save_category"),
    "countries": (Country, "save_country"),
    "product_types": (ProductType, "save_product_type"),
    "analyses": (ResearchAnalysis, "save_analysis"),
}


@cli.command("load-fixtures")
@click.argument("file_path", type=click.Path(exists=True))
@click.option("--verbose", is_flag=True, help="Detailed logging")
@async_command
async def load_fixtures(file_path: str, verbose: bool):
    """
    Load categories, countries, product types, analyses and admin settings.

    FILE_PATH: JSON file keyed by table name.
    """
    setup_logger(verbose)
    try:
        data = json.loads(Path(file_path).read_text(encoding="utf-8"))
        store = open_store()

        table = Table(title="Fixtures Loaded")
        table.add_column("Table")
        table.add_column("Records", justify="right")

        for name, (model, method) in FIXTURE_TABLES.items():
            rows = data.get(name, [])
            for row in rows:
                await getattr(store, method)(model.model_validate(row))
            table.add_row(name, str(len(rows)))

        admin_settings = data.get("admin_settings", {})
        for key, value in admin_settings.items():
            await store.set_admin_setting(key, value)
        table.add_row("admin_settings", str(len(admin_settings)))

        console.print(table)
    except Exception as e:
        fail(e, verbose)

# =============================================================================
# Generation
# =============================================================================

@cli.command()
@click.argument("phase", type=click.Choice([p.value for p in GenerationPhase]))
@click.option("--listing-id", default=None, help="Listing to continue (or replace, for the title phase)")
@product_options
@click.option("--verbose", is_flag=True, help="Detailed logging")
@async_command
async def generate(
    phase: str,
    listing_id: Optional[str],
    category_id: Optional[str],
    country_id: Optional[str],
    product_name: str,
    brand: str,
    asin: Optional[str],
    product_type_name: Optional[str],
    attrs: tuple[str, ...],
    mode: str,
    existing: Optional[str],
    verbose: bool,
):
    """
    Run one generation phase.

    PHASE: title, bullets, description or backend.
    """
    setup_logger(verbose)
    try:
        if phase == GenerationPhase.TITLE.value:
            request = build_title_request(
                listing_id, category_id, country_id, product_name, brand,
                asin, product_type_name, attrs, mode, existing,
            )
        else:
            request = PhaseRequest(phase=phase, listing_id=listing_id)

        store = open_store()
        machine = PhasedGenerationMachine(store, build_claude_service(store))

        with console.status(f"[cyan]Generating {phase}..."):
            outcome = await machine.run_phase(request)

        summary = Table(title=f"{phase.title()} Phase", show_header=False)
        summary.add_row("Listing ID", outcome.listing_id)
        summary.add_row("Listing Phase", str(outcome.listing.phase))
        summary.add_row("Model", outcome.model)
        summary.add_row("Tokens (phase / total)", f"{outcome.tokens_used:,} / {outcome.listing.tokens_used:,}")
        if outcome.keyword_coverage is not None:
            summary.add_row("Keyword Coverage", f"{outcome.keyword_coverage.coverage_score:.0f}%")
        console.print(summary)
        console.print(format_sections_table(outcome.sections))
    except Exception as e:
        fail(e, verbose)


@cli.command("generate-all")
@product_options
@click.option("--verbose", is_flag=True, help="Detailed logging")
@async_command
async def generate_all(
    category_id: Optional[str],
    country_id: Optional[str],
    product_name: str,
    brand: str,
    asin: Optional[str],
    product_type_name: Optional[str],
    attrs: tuple[str, ...],
    mode: str,
    existing: Optional[str],
    verbose: bool,
):
    """Run every phase for one product, accepting the first variant of each section."""
    setup_logger(verbose)
    console.print(Panel.fit(f"[bold blue]All-Phases Generation[/bold blue]\nProduct: [cyan]{product_name}[/cyan]"))
    try:
        request = build_title_request(
            None, category_id, country_id, product_name, brand,
            asin, product_type_name, attrs, mode, existing,
        )
        store = open_store()
        machine = PhasedGenerationMachine(store, build_claude_service(store))

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("[cyan]Generating title...", total=None)

            def update_progress(pct: int, msg: str):
                progress.update(task, description=f"[cyan]{msg} ({pct}%)")

            workflow = ListingWorkflow(machine, store, progress_callback=update_progress)
            result = await workflow.run(request)
            progress.update(task, completed=True, description="[green]Listing complete!")

        console.print(f"[green]✓[/green] Listing [bold]{result.listing_id}[/bold] generated "
                      f"({', '.join(result.phases_completed)}; {result.tokens_used:,} tokens).")
    except Exception as e:
        fail(e, verbose)


@cli.command()
@click.argument("file_path", type=click.Path(exists=True))
@click.option("--category-id", default=None, help="Overrides the file's category_id")
@click.option("--country-id", default=None, help="Overrides the file's country_id")
@click.option("--verbose", is_flag=True, help="Detailed logging")
@async_command
async def batch(file_path: str, category_id: Optional[str], country_id: Optional[str], verbose: bool):
    """
    Generate complete listings for a batch of products.

    FILE_PATH: JSON file {name, category_id, country_id, products: [...]}.
    """
    setup_logger(verbose)
    try:
        data = json.loads(Path(file_path).read_text(encoding="utf-8"))
        if isinstance(data, list):
            data = {"products": data}
        if category_id:
            data["category_id"] = category_id
        if country_id:
            data["country_id"] = country_id
        validator = ValidationService()
        products = [validator.parse_product(row) for row in data.get("products") or []]
        request = BatchRequest.model_validate({**data, "products": products})

        console.print(f"[bold]Batch Processing [cyan]{len(request.products)}[/cyan] products[/bold]")

        store = open_store()
        orchestrator = BatchOrchestrator(store, build_claude_service(store), validator)

        with Progress(console=console) as progress:
            task = progress.add_task("[cyan]Processing...", total=100)

            def update_progress(pct: int, msg: str):
                progress.update(task, completed=pct, description=f"[cyan]{msg}")

            outcome = await orchestrator.run_batch(request, progress_callback=update_progress)

        for failure in outcome.failed_products:
            console.print(f"[red]✗ {failure.product_name}: {failure.error}[/red]")

        job = outcome.batch_job
        failed = len(outcome.failed_products)
        console.print(Panel(
            f"Batch {job.id} [bold]{job.status}[/bold]\n"
            f"Success: [green]{job.completed_listings}[/green]\nFailed: [red]{failed}[/red]"
        ))
    except Exception as e:
        fail(e, verbose)

# =============================================================================
# Research
# =============================================================================

@cli.command("fetch-reviews")
@click.argument("asin")
@click.option("--country-id", required=True, help="Country (marketplace) id")
@click.option("--pages", type=int, default=None, help="Pages to fetch; 0 fetches everything")
@click.option("--sort-by", type=click.Choice(["recent", "helpful"]), default="recent")
@click.option("--background", is_flag=True, help="Run as a tracked background job")
@click.option("--verbose", is_flag=True, help="Detailed logging")
@async_command
async def fetch_reviews(
    asin: str,
    country_id: str,
    pages: Optional[int],
    sort_by: str,
    background: bool,
    verbose: bool,
):
    """
    Fetch and merge reviews for ASIN through the provider fallback chain.
    """
    setup_logger(verbose)
    try:
        store = open_store()
        settings = get_settings()
        config = build_config(store)
        async with OxylabsProvider(settings, config) as oxylabs, ApifyProvider(settings, config) as apify:
            service = ReviewsService(store, oxylabs, apify, settings)

            if background:
                runner = BackgroundJobRunner(store, settings)
                job_id = await service.fetch_reviews_in_background(runner, asin, country_id, pages, sort_by)
                console.print(f"[dim]Job {job_id} dispatched[/dim]")
                with console.status("[cyan]Fetching reviews..."):
                    job = await runner.wait_for(job_id)
                if job.status != "completed":
                    console.print(f"[bold red]Job {job.id} {job.status}:[/bold red] {job.error}")
                    sys.exit(1)
                console.print_json(json.dumps(job.result))
                return

            with console.status("[cyan]Fetching reviews..."):
                record = await service.fetch_reviews(asin, country_id, pages, sort_by)

        table = Table(title=f"Reviews for {record.asin}", show_header=False)
        table.add_row("Source", record.source or "-")
        table.add_row("Fallback Reason", record.fallback_reason or "-")
        table.add_row("Reviews Stored", str(len(record.reviews)))
        table.add_row("Total Reviews", str(record.total_reviews))
        table.add_row("Overall Rating", str(record.overall_rating or "-"))
        table.add_row("Pages Fetched", str(record.total_pages_fetched))
        console.print(table)
    except Exception as e:
        fail(e, verbose)


@cli.command("fetch-questions")
@click.argument("asin")
@click.option("--country-id", required=True, help="Country (marketplace) id")
@click.option("--pages", type=int, default=1)
@click.option("--verbose", is_flag=True, help="Detailed logging")
@async_command
async def fetch_questions(asin: str, country_id: str, pages: int, verbose: bool):
    """Pull marketplace Q&A for ASIN and merge it into the stored collection."""
    setup_logger(verbose)
    try:
        store = open_store()
        config = build_config(store)
        async with OxylabsProvider(get_settings(), config) as oxylabs:
            service = QnAService(store, ExtensionAuthenticator(config), oxylabs)
            record = await service.fetch_questions(asin, country_id, pages)
        console.print(f"[green]✓[/green] {record.total_questions} questions stored for {record.asin}")
    except Exception as e:
        fail(e, verbose)


@cli.command("ingest-qna")
@click.argument("file_path", type=click.Path(exists=True))
@click.option("--api-key", envvar="RUFUS_EXTENSION_API_KEY", help="Extension API key")
@click.option("--verbose", is_flag=True, help="Detailed logging")
@async_command
async def ingest_qna(file_path: str, api_key: Optional[str], verbose: bool):
    """
    Ingest an extension Q&A payload.

    FILE_PATH: JSON {asin, marketplace, questions: [{question, answer}]}.
    """
    setup_logger(verbose)
    try:
        payload = json.loads(Path(file_path).read_text(encoding="utf-8"))
        store = open_store()
        service = QnAService(store, ExtensionAuthenticator(build_config(store)))
        summary = await service.ingest(bearer(api_key), payload)
        console.print_json(json.dumps(summary))
    except Exception as e:
        fail(e, verbose)


@cli.group("rufus-queue")
def rufus_queue():
    """Manage the Rufus question-collection queue."""
    pass


def _rufus_queue(store: Store) -> RufusJobQueue:
    return RufusJobQueue(store, ExtensionAuthenticator(build_config(store)), get_settings())


@rufus_queue.command("create")
@click.argument("asins", nargs=-1, required=True)
@click.option("--country-id", required=True, help="Country (marketplace) id")
@click.option("--source", default="manual")
@async_command
async def rufus_create(asins: tuple[str, ...], country_id: str, source: str):
    """Queue ASINS for collection."""
    setup_logger(False)
    try:
        job = await _rufus_queue(open_store()).create_job(asins, country_id, source)
        console.print(f"[green]✓[/green] Rufus job {job.id} queued with {job.total_asins} ASINs")
    except Exception as e:
        fail(e)


@rufus_queue.command("next")
@click.option("--api-key", envvar="RUFUS_EXTENSION_API_KEY", help="Extension API key")
@async_command
async def rufus_next(api_key: Optional[str]):
    """Claim the next pending ASIN."""
    setup_logger(False)
    try:
        item = await _rufus_queue(open_store()).next_item(bearer(api_key))
        if item is None:
            console.print("[yellow]Queue is empty.[/yellow]")
            return
        console.print_json(json.dumps(item))
    except Exception as e:
        fail(e)


@rufus_queue.command("complete")
@click.argument("item_id")
@click.option("--status", type=click.Choice(["completed", "failed", "skipped"]), required=True)
@click.option("--questions-found", type=int, default=0)
@click.option("--error", "error_message", default=None)
@click.option("--api-key", envvar="RUFUS_EXTENSION_API_KEY", help="Extension API key")
@async_command
async def rufus_complete(
    item_id: str,
    status: str,
    questions_found: int,
    error_message: Optional[str],
    api_key: Optional[str],
):
    """Report the outcome for ITEM_ID."""
    setup_logger(False)
    try:
        job = await _rufus_queue(open_store()).complete_item(
            bearer(api_key), item_id, status, questions_found, error_message
        )
        console.print(
            f"Job {job.id}: [bold]{job.status}[/bold] "
            f"({job.completed_asins} completed, {job.failed_asins} failed of {job.total_asins})"
        )
    except Exception as e:
        fail(e)

# =============================================================================
# Inspection
# =============================================================================

@cli.command()
@async_command
async def jobs():
    """List background jobs (stale ones are marked failed first)."""
    setup_logger(False)
    try:
        rows = await BackgroundJobRunner(open_store()).list_jobs()
        table = Table(title="Background Jobs")
        table.add_column("ID")
        table.add_column("Kind")
        table.add_column("Status")
        table.add_column("Updated")
        table.add_column("Error")
        for job in rows:
            table.add_row(job.id, job.kind, job.status, job.updated_at.isoformat(), job.error or "")
        console.print(table)
    except Exception as e:
        fail(e)


@cli.command()
@click.argument("listing_id")
@click.option("--format", "format_type", type=click.Choice(["markdown", "json"]), default="markdown")
@click.option("--save", is_flag=True, help="Also write the export under DATA_DIR/exports")
@async_command
async def show(listing_id: str, format_type: str, save: bool):
    """Print the confirmed text of LISTING_ID."""
    setup_logger(False)
    try:
        store = open_store()
        listing = await store.get_listing(listing_id)
        if listing is None:
            raise NotFoundError("Listing", listing_id)
        sections = await store.get_sections(listing_id)

        formatter = ListingFormatter()
        if format_type == "json":
            console.print_json(formatter.to_json(listing, sections))
        else:
            console.print(formatter.to_markdown(listing, sections), markup=False)
        if save:
            path = formatter.save(listing, sections, format_type)
            console.print(f"[green]✓[/green] Saved to {path}")
    except Exception as e:
        fail(e)


@cli.command("validate-setup")
@async_command
async def validate_setup():
    """Check API keys and environment configuration."""
    console.print("[bold]Validating Setup...[/bold]")

    try:
        settings = get_settings()
        store = open_store()
        config = build_config(store)

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Check")
        table.add_column("Status")
        table.add_column("Details")

        def row(label: str, value: Optional[Any], required: bool = False) -> bool:
            if value:
                table.add_row(label, "[green]Pass[/green]", "configured")
                return True
            status = "[red]Fail[/red]" if required else "[yellow]Missing[/yellow]"
            table.add_row(label, status, "not configured")
            return not required

        ok = row("Anthropic API Key", await config.get(ANTHROPIC_API_KEY), required=True)
        row("Research Providers", ", ".join(settings.configured_providers()))
        row("Rufus Extension Key", await config.get(RUFUS_EXTENSION_API_KEY))

        table.add_row("Data Dir", "[green]Pass[/green]", str(settings.data_dir))
        table.add_row("Environment", "[blue]Info[/blue]", settings.app_env)

        console.print(table)

        if not ok:
            console.print("\n[yellow]Warning: no Anthropic API key configured. Generation will fail.[/yellow]")
            sys.exit(1)

    except Exception as e:
        console.print(f"[bold red]Configuration Error:[/bold red] {e}")
        sys.exit(1)

if __name__ == "__main__":
    cli()
