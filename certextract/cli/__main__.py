"""
CLI for certificate extraction.

Commands:
    extract  - Run tiered extraction on one or more documents
    analyse  - Show format analysis for a document
"""

import asyncio
import json
import logging
import mimetypes
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table as RichTable

app = typer.Typer(
    name="certextract",
    help="Tiered extraction of compliance certificate data",
)
console = Console()


def _mime_type(path: Path) -> str:
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


def _settings_source(source: str):
    from ..config.extraction_settings import EnvSettingsSource

    if source == "firestore":
        from ..firestore import FirestoreSettingsSource

        return FirestoreSettingsSource()
    if source == "env":
        return EnvSettingsSource()
    rprint(f"[red]Invalid settings source: {source}. Must be 'env' or 'firestore'[/red]")
    raise typer.Exit(1)


def _print_outcome(path: Path, outcome) -> None:
    status_style = "green" if outcome.success else "yellow"
    rprint(
        f"\n[bold]{path.name}[/bold]: [{status_style}]{outcome.status.value}[/{status_style}] "
        f"at {outcome.final_tier.value}, confidence {outcome.confidence:.2f}, "
        f"cost ${outcome.total_cost:.4f}"
    )

    table = RichTable(title="Tier attempts")
    table.add_column("Tier", style="cyan")
    table.add_column("Provider")
    table.add_column("Status")
    table.add_column("Confidence", justify="right")
    table.add_column("Cost", justify="right")
    table.add_column("ms", justify="right")
    table.add_column("Reason")
    for attempt in outcome.attempts:
        table.add_row(
            attempt.tier.value,
            attempt.provider or "-",
            attempt.status.value,
            f"{attempt.confidence:.2f}",
            f"{attempt.cost:.4f}",
            str(attempt.duration_ms),
            attempt.escalation_reason or "",
        )
    console.print(table)

    if outcome.data:
        fields = RichTable(title="Extracted fields")
        fields.add_column("Field", style="cyan")
        fields.add_column("Value")
        for name, value in outcome.data.to_dict().items():
            if value in (None, [], {}):
                continue
            fields.add_row(name, value if isinstance(value, str) else json.dumps(value))
        console.print(fields)

    for warning in outcome.warnings:
        rprint(f"[yellow]! {warning}[/yellow]")


@app.command()
def extract(
    paths: list[Path] = typer.Argument(..., help="Documents to extract"),
    certificate_type: Optional[str] = typer.Option(None, "--type", "-t", help="Declared certificate type (GAS, EICR, ...)"),
    force_ai: bool = typer.Option(False, "--force-ai", help="Enable AI tiers regardless of settings"),
    skip: list[str] = typer.Option([], "--skip", help="Tier to skip (e.g. tier-3); repeatable"),
    settings_source: str = typer.Option("env", "--settings-source", "-s", help="Settings source: env or firestore"),
    max_concurrent: int = typer.Option(3, "--max-concurrent", help="Documents extracted at once"),
    as_json: bool = typer.Option(False, "--json", help="Print results as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log tier transitions"),
):
    """
    Run tiered extraction on documents.

    Examples:
        certextract extract gas_cert.pdf --type GAS
        certextract extract scans/*.jpg --force-ai --json
    """
    from ..orchestrator import DocumentJob, ExtractionOptions, build_orchestrator, extract_many
    from ..schemas.tiers import Tier

    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING)

    try:
        skip_tiers = {Tier(value) for value in skip}
    except ValueError:
        valid = ", ".join(t.value for t in Tier)
        rprint(f"[red]Invalid tier in --skip. Must be one of: {valid}[/red]")
        raise typer.Exit(1)

    missing = [p for p in paths if not p.is_file()]
    if missing:
        rprint(f"[red]File not found: {', '.join(str(p) for p in missing)}[/red]")
        raise typer.Exit(1)

    orchestrator = build_orchestrator(_settings_source(settings_source))
    jobs = [
        DocumentJob(
            certificate_id=path.stem,
            content=path.read_bytes(),
            mime_type=_mime_type(path),
            filename=path.name,
            certificate_type=certificate_type,
        )
        for path in paths
    ]
    options = ExtractionOptions(force_ai=force_ai, skip_tiers=skip_tiers)

    async def run():
        try:
            async with orchestrator.audit_recorder:
                return await extract_many(
                    orchestrator, jobs, max_concurrent=max_concurrent, options=options
                )
        finally:
            await orchestrator.registry.close()

    outcomes = asyncio.run(run())

    if as_json:
        console.print_json(json.dumps([outcome.to_dict() for outcome in outcomes]))
        return

    for path, outcome in zip(paths, outcomes):
        _print_outcome(path, outcome)


@app.command()
def analyse(
    path: Path = typer.Argument(..., help="Document to analyse"),
):
    """Show format analysis (format, pages, text quality, detected type)."""
    from ..analysis import analyse_document

    if not path.is_file():
        rprint(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)

    analysis = analyse_document(path.read_bytes(), _mime_type(path), path.name)

    table = RichTable(title=f"Format analysis: {path.name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value")
    for name, value in analysis.model_dump(mode="json", exclude={"text_content"}).items():
        table.add_row(name, str(value))
    console.print(table)


if __name__ == "__main__":
    app()
