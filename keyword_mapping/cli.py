"""Typer CLI for keyword mapping.

Collect keywords for a seed query, cluster them and attach audience personas.
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from keyword_mapping.models.keyword import KeywordVolumeItem
from keyword_mapping.modules.keyword_research.merger import sort_by_volume
from keyword_mapping.utils.helpers import format_number

console = Console()
app = typer.Typer(
    name="kwmap",
    help="Keyword mapping -- keyword research, semantic clustering and personas.",
    add_completion=False,
    no_args_is_help=True,
)

DEFAULT_CONFIG_PATH = "config/settings.yaml"


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _run_async(coro):
    """Run an async coroutine from synchronous CLI context."""
    return asyncio.run(coro)


def _get_app():
    """Create and initialise the application object."""
    from keyword_mapping.app import KeywordMappingApp
    kw_app = KeywordMappingApp(config_path=os.getenv("KWMAP_CONFIG", DEFAULT_CONFIG_PATH))
    kw_app.initialize()
    return kw_app


def _spinner():
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )


def _status_markup(status: str) -> str:
    colours = {
        "completed": "green",
        "processing": "yellow",
        "failed": "red",
        "pending": "dim",
    }
    colour = colours.get(status, "white")
    return f"[{colour}]{status}[/{colour}]"


def _print_keywords(keywords: list[dict], limit: int) -> None:
    items = sort_by_volume(KeywordVolumeItem.from_dict(k) for k in keywords)
    table = Table(title=f"Keywords ({len(items)})", show_header=True, header_style="bold magenta")
    table.add_column("Keyword", style="cyan", min_width=25)
    table.add_column("Volume", justify="right")
    table.add_column("Competition")
    table.add_column("CPC", justify="right")
    for item in items[:limit]:
        table.add_row(
            item.text,
            format_number(item.search_volume),
            item.competition or "-",
            format_number(item.cpc),
        )
    console.print(table)
    if len(items) > limit:
        console.print(f"... {len(items) - limit} more")


def _print_clusters(detail: dict) -> None:
    clusters = detail.get("clusters_with_volume") or [
        {"clusterName": name, "keywords": [{"text": k} for k in members], "totalVolume": 0}
        for name, members in (detail.get("clusters") or {}).items()
    ]
    if not clusters:
        console.print("[dim]No clusters.[/dim]")
        return
    table = Table(title=f"Clusters ({len(clusters)})", show_header=True, header_style="bold magenta")
    table.add_column("Cluster", style="cyan", min_width=20)
    table.add_column("Volume", justify="right")
    table.add_column("Keywords", max_width=70)
    for cluster in clusters:
        members = ", ".join(k.get("text", "") for k in cluster.get("keywords", []))
        table.add_row(
            cluster.get("clusterName", ""),
            format_number(cluster.get("totalVolume", 0)),
            members,
        )
    console.print(table)


# ------------------------------------------------------------------
# research
# ------------------------------------------------------------------
@app.command()
def research(
    query: str = typer.Argument(..., help="Seed keyword or URL."),
    region: str = typer.Option("TW", "--region", "-r", help="Region code (e.g. TW, US)."),
    language: str = typer.Option("zh-TW", "--language", "-l", help="Language code (e.g. zh-TW, en)."),
    filter_zero_volume: Optional[bool] = typer.Option(
        None, "--filter-zero/--keep-zero",
        help="Drop keywords without search volume (default from config).",
    ),
    alphabet: Optional[bool] = typer.Option(
        None, "--alphabet/--no-alphabet", help="Expand autosuggest with a-z suffixes.",
    ),
    symbols: Optional[bool] = typer.Option(
        None, "--symbols/--no-symbols", help="Expand autosuggest with symbol suffixes.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Collect keyword suggestions with volumes and save them as a research record."""
    _setup_logging(verbose)
    console.print(Panel(f"[bold cyan]Keyword Research: {query}[/bold cyan]"))
    kw_app = _get_app()

    with _spinner() as progress:
        progress.add_task(description="Collecting suggestions and volumes...", total=None)
        result = _run_async(
            kw_app.process_and_save_query(
                query, region, language,
                filter_zero_volume=filter_zero_volume,
                use_alphabet=alphabet,
                use_symbols=symbols,
            )
        )

    if not result["success"]:
        console.print(f"[red]\u2718[/red] {result['error']}")
        raise typer.Exit(code=1)
    if result.get("error"):
        console.print(f"[yellow]\u26a0[/yellow] {result['error']}")

    detail = kw_app.get_repository().get_detail(result["research_id"]) or {}
    _print_keywords(detail.get("keywords", []), limit=30)
    console.print(f"[green]\u2714[/green] Saved research [bold]{result['research_id']}[/bold]")


# ------------------------------------------------------------------
# cluster
# ------------------------------------------------------------------
@app.command()
def cluster(
    research_id: str = typer.Argument(..., help="Research record id."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Cluster a research record's keywords and wait for the result."""
    _setup_logging(verbose)
    console.print(Panel(f"[bold cyan]Semantic Clustering: {research_id}[/bold cyan]"))
    kw_app = _get_app()

    with _spinner() as progress:
        progress.add_task(description="Clustering keywords...", total=None)
        result = _run_async(kw_app.run_clustering(research_id))

    status = result.get("status") or "unknown"
    if not result["success"]:
        console.print(f"[red]\u2718[/red] {result.get('error')} (status: {_status_markup(status)})")
        raise typer.Exit(code=1)

    _print_clusters(kw_app.get_repository().get_detail(research_id) or {})
    console.print(f"[green]\u2714[/green] Clustering {_status_markup(status)}.")


# ------------------------------------------------------------------
# persona
# ------------------------------------------------------------------
@app.command()
def persona(
    research_id: str = typer.Argument(..., help="Research record id."),
    cluster_name: Optional[str] = typer.Argument(None, help="Cluster name (omit with --all)."),
    all_clusters: bool = typer.Option(False, "--all", help="Generate personas for every cluster."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Generate an audience persona for one cluster, or for all of them."""
    _setup_logging(verbose)
    if not cluster_name and not all_clusters:
        console.print("[red]\u2718[/red] Give a cluster name or use --all.")
        raise typer.Exit(code=2)
    kw_app = _get_app()

    with _spinner() as progress:
        progress.add_task(description="Generating personas...", total=None)
        if all_clusters:
            result = _run_async(kw_app.generate_all_personas(research_id))
        else:
            result = _run_async(kw_app.save_persona(research_id, cluster_name))

    if all_clusters:
        for name in result.get("generated", []):
            console.print(f"[green]\u2714[/green] {name}")
        for name, error in result.get("failed", {}).items():
            console.print(f"[red]\u2718[/red] {name}: {error}")
    if not result["success"]:
        if not all_clusters or result.get("error") and not result.get("failed"):
            console.print(f"[red]\u2718[/red] {result.get('error')}")
        raise typer.Exit(code=1)

    detail = kw_app.get_repository().get_detail(research_id) or {}
    for entry in detail.get("personas", []):
        if all_clusters or entry.get("name") == cluster_name:
            console.print(Panel(entry.get("description", ""), title=entry.get("name", "")))


# ------------------------------------------------------------------
# status / show / list / delete
# ------------------------------------------------------------------
@app.command()
def status(
    research_id: str = typer.Argument(..., help="Research record id."),
) -> None:
    """Show the clustering status of a research record."""
    kw_app = _get_app()
    current = kw_app.fetch_clustering_status(research_id)
    if current is None:
        console.print("[red]\u2718[/red] Research item not found.")
        raise typer.Exit(code=1)
    console.print(f"{research_id}: {_status_markup(current.value)}")
    record = kw_app.get_repository().get(research_id)
    if record is not None and record.clustering_error:
        console.print(f"[red]Last error:[/red] {record.clustering_error}")


@app.command()
def show(
    research_id: str = typer.Argument(..., help="Research record id."),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum keywords to print."),
) -> None:
    """Print a research record with keywords, clusters and personas."""
    kw_app = _get_app()
    detail = kw_app.get_repository().get_detail(research_id)
    if detail is None:
        console.print("[red]\u2718[/red] Research item not found.")
        raise typer.Exit(code=1)

    console.print(Panel(
        f"[bold]{detail['query']}[/bold]  ({detail['region']}/{detail['language']})\n"
        f"Clustering: {_status_markup(detail['clustering_status'])}  "
        f"Updated: {detail['updated_at']}",
        title=detail["name"],
    ))
    _print_keywords(detail.get("keywords", []), limit=limit)
    _print_clusters(detail)
    for entry in detail.get("personas", []):
        console.print(Panel(entry.get("description", ""), title=entry.get("name", "")))


@app.command(name="list")
def list_research(
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum records to list."),
) -> None:
    """List stored research records, newest first."""
    kw_app = _get_app()
    rows = kw_app.get_repository().list_summaries(limit=limit)
    if not rows:
        console.print("[dim]No research records yet.[/dim]")
        return

    table = Table(title="Keyword Research", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim")
    table.add_column("Query", style="cyan")
    table.add_column("Region/Lang")
    table.add_column("Keywords", justify="right")
    table.add_column("Volume", justify="right")
    table.add_column("Clustering")
    for row in rows:
        table.add_row(
            row["id"],
            row["query"],
            f"{row['region']}/{row['language']}",
            str(row["keyword_count"]),
            format_number(row["total_volume"]),
            _status_markup(row["clustering_status"]),
        )
    console.print(table)


@app.command()
def delete(
    research_id: str = typer.Argument(..., help="Research record id."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete a research record."""
    if not yes:
        typer.confirm(f"Delete research {research_id}?", abort=True)
    kw_app = _get_app()
    if not kw_app.get_repository().delete(research_id):
        console.print("[red]\u2718[/red] Research item not found.")
        raise typer.Exit(code=1)
    console.print(f"[green]\u2714[/green] Deleted {research_id}.")


# ------------------------------------------------------------------
# sweep
# ------------------------------------------------------------------
@app.command()
def sweep(
    older_than: Optional[float] = typer.Option(
        None, "--older-than", "-o",
        help="Minutes in processing before a run counts as stale (default from config).",
    ),
    watch: bool = typer.Option(
        False, "--watch", "-w", help="Keep sweeping on the configured interval until Ctrl-C.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Mark clustering runs stuck in processing as failed so they can be retried."""
    _setup_logging(verbose)
    kw_app = _get_app()

    swept = kw_app.sweep_stale_runs(older_than)
    for research_id in swept:
        console.print(f"[yellow]\u26a0[/yellow] {research_id}: {_status_markup('failed')}")
    console.print(f"[green]\u2714[/green] {len(swept)} stale run(s) marked failed.")

    if not watch:
        return
    kw_app.start_maintenance(older_than)
    console.print("[dim]Sweeping in the background. Press Ctrl-C to stop.[/dim]")
    try:
        while kw_app.maintenance_running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        kw_app.stop_maintenance()
    console.print("[green]\u2714[/green] Maintenance stopped.")


# ------------------------------------------------------------------
# setup / health
# ------------------------------------------------------------------
@app.command()
def setup(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Create the database and check configuration and credentials."""
    _setup_logging(verbose)
    console.print(Panel("[bold cyan]Keyword Mapping Setup[/bold cyan]"))

    console.print("\n[bold]Step 1: Database[/bold]")
    try:
        _get_app()
        console.print("[green]\u2714[/green] Database tables created.")
    except Exception as exc:
        console.print("[red]\u2718[/red] Database error: " + str(exc))

    console.print("\n[bold]Step 2: Configuration[/bold]")
    config_path = Path(os.getenv("KWMAP_CONFIG", DEFAULT_CONFIG_PATH))
    if config_path.exists():
        console.print(f"[green]\u2714[/green] {config_path} found.")
    else:
        console.print(f"[yellow]\u26a0[/yellow] {config_path} not found. Using defaults.")

    console.print("\n[bold]Step 3: Credentials[/bold]")
    for name in (
        "OPENAI_API_KEY", "GEMINI_API_KEY",
        "GOOGLE_ADS_DEVELOPER_TOKEN", "GOOGLE_ADS_CLIENT_ID", "GOOGLE_ADS_CLIENT_SECRET",
        "GOOGLE_ADS_REFRESH_TOKEN", "GOOGLE_ADS_CUSTOMER_ID",
    ):
        value = os.getenv(name, "")
        if value:
            masked = value[:4] + "..." + value[-4:] if len(value) > 12 else "****"
            console.print(f"[green]\u2714[/green] {name}: {masked}")
        else:
            console.print(f"[yellow]\u26a0[/yellow] {name} not set.")

    console.print("\n[bold green]Setup complete![/bold green]")
    console.print("Run [bold]kwmap health[/bold] to verify system health.")


@app.command()
def health() -> None:
    """Show component health: database, LLM providers, Google Ads, config."""
    kw_app = _get_app()
    table = Table(title="Component Status", show_header=True, header_style="bold magenta")
    table.add_column("Component", style="cyan", min_width=15)
    table.add_column("Status", min_width=10)
    table.add_column("Details", max_width=50)
    badges = {
        "ok": "[green]\u2714 OK[/green]",
        "warning": "[yellow]\u26a0 Warning[/yellow]",
        "error": "[red]\u2718 Error[/red]",
    }
    for component, info in kw_app.get_status().items():
        table.add_row(
            component.replace("_", " ").title(),
            badges.get(info["status"], info["status"]),
            info["details"],
        )
    console.print(table)


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
