from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from atlas_submittals.config import settings
from atlas_submittals.config_fields import load_field_config
from atlas_submittals.data.sources import FileSource
from atlas_submittals.etl.pipeline import IngestionPipeline

cli = typer.Typer(help="Atlas submittal log ingestion CLI")


@cli.callback()
def configure(verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging")) -> None:
    level = logging.DEBUG if verbose else getattr(logging, settings.logging.level.upper(), logging.INFO)
    logging.basicConfig(level=level)


@cli.command()
def version() -> None:
    """Print runtime version."""
    typer.echo(f"{settings.app.name} {settings.app.version}")


@cli.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host to bind"),
    port: int = typer.Option(8000, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable autoreload for local development"),
) -> None:
    """Run the ingestion API server."""
    uvicorn.run(
        "atlas_submittals.api.main:app",
        host=host,
        port=port,
        reload=reload,
        app_dir="src",
    )


@cli.command()
def extract(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Spreadsheet to extract"),
    dataset: str = typer.Option("documents", "--dataset", "-d", help="Configured dataset key"),
    sheet: Optional[str] = typer.Option(None, help="Worksheet name (overrides the dataset's)"),
    records: bool = typer.Option(False, "--records", help="Print extracted records as JSON"),
) -> None:
    """Run one extraction over a local file and print a summary with diagnostics."""
    if dataset not in settings.datasets:
        typer.echo(f"Unknown dataset '{dataset}'. Known: {', '.join(settings.datasets)}", err=True)
        raise typer.Exit(code=2)

    ds = settings.datasets[dataset]
    if sheet:
        ds = ds.model_copy(update={"sheet_name": sheet})
    pipeline = IngestionPipeline.from_settings(
        dataset, ds, settings.ingestion, fields=load_field_config(settings.paths.fields_path)
    )
    result = pipeline.run(FileSource(path))

    typer.echo(
        f"{dataset}: {len(result.records)} records, "
        f"{len(result.warnings)} warnings, {len(result.errors)} errors "
        f"(sheet={result.sheet_name!r}, header row={_row_label(result.header_row_index)})"
    )
    for diag in result.diagnostics:
        where = f"row {diag.row_number}" if diag.row_number is not None else "sheet"
        typer.echo(f"  [{diag.severity.value}] {diag.code} ({where}): {diag.message}")
    if records:
        payload = [r.model_dump(mode="json", by_alias=True) for r in result.records]
        typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
    if result.failed:
        raise typer.Exit(code=1)


def _row_label(index: Optional[int]) -> str:
    return "-" if index is None else str(index + 1)


if __name__ == "__main__":
    cli()
