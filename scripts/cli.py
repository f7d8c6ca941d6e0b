from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import typer
from rich import print
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

# If not installed in editable mode, add repo root to PYTHONPATH
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from plu.config import get_settings
from plu.db import get_records_for_url, init_db, save_records
from plu.errors import PluError
from plu.extract.batch import MultiZoneExtractor
from plu.extract.extractor import write_jsonl
from plu.extract.orchestrator import ExtractionOptions, ExtractionOrchestrator
from plu.extract.schema import RuleRecord, export_json_schema
from plu.extract.zone_locator import detect_zone_codes, locate_zone_section
from plu.ingest.pdf_text import extract_document_text
from plu.llm.llm_text_client_factory import create_llm_text_client

app = typer.Typer(add_completion=False, help="PLU regulation rule extraction (lean CLI)")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")):
    cfg = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if verbose else cfg.log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False)],
    )


def _local_text(source: str) -> Optional[Tuple[str, int]]:
    """(text, size) when `source` is a local PDF, None for URLs."""
    p = Path(source)
    if source.startswith(("http://", "https://")) or not p.is_file():
        return None
    data = p.read_bytes()
    return extract_document_text(data, get_settings().min_text_chars), len(data)


def _print_record(r: RuleRecord) -> None:
    table = Table(title=f"Zone {r.zone} ({r.zone_type}) - {r.method}, confidence {r.confidence:.2f}")
    table.add_column("Restrictions")
    table.add_column("Droits")
    rows = max(len(r.restrictions), len(r.rights))
    for i in range(rows):
        table.add_row(
            r.restrictions[i] if i < len(r.restrictions) else "",
            r.rights[i] if i < len(r.rights) else "",
        )
    print(table)
    if r.source_articles:
        print(f"[dim]articles: {', '.join(r.source_articles)}[/dim]")


def _fail(e: PluError) -> None:
    typer.secho(f"{type(e).__name__}: {e}", fg="red")
    if e.attempted_methods:
        typer.secho(f"attempted: {', '.join(e.attempted_methods)}", fg="red")
    raise typer.Exit(1)


@app.command()
def extract(
    source: str = typer.Argument(..., help="PDF URL (or local PDF path)"),
    zone: str = typer.Argument(..., help="Zone code, e.g. UB, N, 1AU"),
    no_ai: bool = typer.Option(False, "--no-ai", help="Deterministic extraction only"),
    force_refresh: bool = typer.Option(False, "--force-refresh", help="Ignore cached result"),
    timeout: float = typer.Option(None, "--timeout", help="Per-call timeout in seconds"),
    as_json: bool = typer.Option(False, "--json", help="Print the record as JSON"),
    out: Path = typer.Option(None, help="Write the record to a JSONL file"),
):
    """
    Extract the construction rules of one zone.
    """
    orchestrator = ExtractionOrchestrator.from_settings()
    opts = ExtractionOptions(
        force_refresh=force_refresh, use_generative=not no_ai, timeout_s=timeout
    )
    try:
        local = _local_text(source)
        if local:
            text, size = local
            outcome = orchestrator.extract(source, zone, opts, document_text=text, pdf_size=size)
        else:
            outcome = orchestrator.extract(source, zone, opts)
    except PluError as e:
        _fail(e)
    except ValueError as e:
        typer.secho(str(e), fg="red")
        raise typer.Exit(2)

    record = outcome.record
    if as_json:
        typer.echo(json.dumps(record.model_dump(by_alias=True), ensure_ascii=False, indent=2))
    else:
        _print_record(record)
        m = outcome.metrics
        print(f"[dim]{m.method} in {m.duration_ms:.0f} ms, {m.rules_extracted} rules[/dim]")
    if out:
        write_jsonl([record], out)
        print(f"[green]✓[/green] wrote {out}")


@app.command("extract-all")
def extract_all(
    source: str = typer.Argument(..., help="PDF URL"),
    workers: int = typer.Option(None, "--workers", help="Zones processed in parallel"),
    no_ai: bool = typer.Option(False, "--no-ai", help="Deterministic extraction only"),
    as_json: bool = typer.Option(False, "--json", help="Print the batch report as JSON"),
    out: Path = typer.Option(None, help="Write all records to a JSONL file"),
    save: bool = typer.Option(False, "--save", help="Store records in the sqlite database"),
):
    """
    Detect every zone of a regulation PDF and extract each one.
    """
    orchestrator = ExtractionOrchestrator.from_settings()
    runner = MultiZoneExtractor(orchestrator, max_workers=workers)
    try:
        report = runner.run(
            source, ExtractionOptions(use_generative=not no_ai), show_progress=not as_json
        )
    except PluError as e:
        _fail(e)

    if as_json:
        typer.echo(json.dumps(report.model_dump(by_alias=True), ensure_ascii=False, indent=2))
    else:
        for r in report.records:
            _print_record(r)
        print(
            f"[bold]{report.zone_count}/{len(report.zones_detected)}[/bold] zones, "
            f"average confidence {report.average_confidence:.2f}, methods {report.methods}"
        )
        for z, err in report.failed_zones.items():
            print(f"[yellow]skip[/yellow] {z}: {err}")
    if out:
        write_jsonl(report.records, out)
        print(f"[green]✓[/green] wrote {out}")
    if save:
        db_path = init_db()
        n = save_records(source, (r.model_dump(by_alias=True) for r in report.records), db_path)
        print(f"[green]✓[/green] {n} records saved to {db_path}")


@app.command()
def zones(pdf: Path = typer.Argument(..., help="Local PDF path")):
    """List the zone codes announced by the document headings."""
    try:
        text = extract_document_text(pdf.read_bytes(), get_settings().min_text_chars)
    except PluError as e:
        _fail(e)
    codes = detect_zone_codes(text)
    if not codes:
        typer.secho("No zone heading found", fg="yellow")
        raise typer.Exit(1)
    print(", ".join(codes))


@app.command()
def locate(
    pdf: Path = typer.Argument(..., help="Local PDF path"),
    zone: str = typer.Argument(..., help="Zone code"),
):
    """Print the section of the document that holds the rules of ZONE."""
    cfg = get_settings()
    try:
        text = extract_document_text(pdf.read_bytes(), cfg.min_text_chars)
        section = locate_zone_section(text, zone, cfg.min_section_chars)
    except PluError as e:
        _fail(e)
    except ValueError as e:
        typer.secho(str(e), fg="red")
        raise typer.Exit(2)
    if not section:
        typer.secho(f"Zone {zone} not found", fg="yellow")
        raise typer.Exit(1)
    typer.echo(section)
    print(f"[dim]{len(section)} chars[/dim]")


@app.command()
def records(source: str = typer.Argument(..., help="PDF URL used with extract-all --save")):
    """Show the records stored for a document."""
    rows = get_records_for_url(source, init_db())
    if not rows:
        typer.secho(f"No stored records for {source}", fg="yellow")
        raise typer.Exit(1)
    for row in rows:
        _print_record(RuleRecord.model_validate(row))


@app.command()
def schema(out: Path = typer.Option(None, help="Write the schema to this file instead of stdout")):
    """JSON Schema of an extracted record."""
    text = json.dumps(export_json_schema(), indent=2, ensure_ascii=False)
    if out is None:
        typer.echo(text)
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(text, encoding="utf-8")
    print(f"[green]✓[/green] wrote {out}")


@app.command("check-ollama")
def check_ollama():
    """Send a one-line prompt to the configured Ollama endpoint."""
    cfg = get_settings()
    if not cfg.ollama_url:
        typer.secho("No Ollama endpoint configured (set OLLAMA_URL)", fg="yellow")
        raise typer.Exit(1)
    client = create_llm_text_client(
        "ollama", model=cfg.ollama_model, host=cfg.ollama_url, num_predict=32
    )
    try:
        answer = client.generate_raw(
            "Quelle est la capitale de la France ? R\u00e9ponds en un mot.",
            timeout_s=cfg.generative_timeout_s,
        )
    except PluError as e:
        _fail(e)
    print(f"[green]✓[/green] {cfg.ollama_model} at {cfg.ollama_url} answered: {escape(answer.strip()[:200])}")


if __name__ == "__main__":
    app()
