"""Property Whisperer CLI."""

import asyncio
from pathlib import Path
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from whisperer.config import settings
from whisperer.errors import WhispererError
from whisperer.logging_config import configure_logging
from whisperer.models import CheckStatus, ExtractionRecord, JobState
from whisperer.pipeline import PipelineServices
from whisperer.reconcile import format_money

app = typer.Typer(
    name="whisperer",
    help="Extraction and reconciliation pipeline for operating memoranda, T-12s and rent rolls",
    add_completion=False,
)
console = Console()

STATUS_STYLE = {
    CheckStatus.PASS: "green",
    CheckStatus.WARN: "yellow",
    CheckStatus.FAIL: "red",
}


@app.callback()
def main(log_level: str = typer.Option(None, help="Override WHISPERER_LOG_LEVEL")) -> None:
    configure_logging(log_level or settings.log_level)


def _run(coro):
    try:
        return asyncio.run(coro)
    except WhispererError as exc:
        console.print(f"[bold red]{type(exc).__name__}:[/bold red] {exc}")
        raise typer.Exit(code=1)


def print_record(record: ExtractionRecord) -> None:
    totals = record.totals
    console.print(
        f"EGI {format_money(totals.egi)}  OpEx {format_money(totals.opex)}  "
        f"NOI {format_money(totals.noi)}  DSCR {totals.dscr if totals.dscr is not None else 'n/a'}"
    )
    table = Table(title="Checks")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Detail")
    for check in record.checks:
        style = STATUS_STYLE[check.status]
        table.add_row(check.label, f"[{style}]{check.status.value}[/{style}]", check.detail or "")
    console.print(table)
    confidences = ", ".join(f"{name} {score:.2f}" for name, score in sorted(record.confidences.items()))
    console.print(f"[dim]Confidence: {confidences}[/dim]")


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind address (default from settings)"),
    port: int = typer.Option(None, help="Port (default from settings)"),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    from whisperer.api import create_app

    uvicorn.run(create_app(settings), host=host or settings.api_host, port=port or settings.api_port)


@app.command("init-db")
def init_db() -> None:
    """Create the database tables."""

    async def _init():
        services = PipelineServices(settings)
        try:
            await services.database.init()
        finally:
            await services.database.close()

    _run(_init())
    console.print("[green]Database tables ready[/green]")


@app.command()
def submit(
    pdf_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="PDF to submit"),
    show_checks: bool = typer.Option(False, "--checks", help="Print the reconciled totals and checks"),
) -> None:
    """Submit a PDF and run its job in this process."""

    async def _submit():
        services = PipelineServices(settings)
        await services.start(housekeeping=False)
        try:
            handle = await services.gateway.submit(pdf_path.read_bytes(), pdf_path.name, "application/pdf")
            console.print(f"[bold blue]Job:[/bold blue] {handle.job_id}")
            console.print(f"[dim]Document: {handle.document_id}{' (deduplicated)' if handle.deduplicated else ''}[/dim]")
            await services.runner.wait(handle.job_id)
            job_status = await services.status.get_status(handle.job_id)
            if job_status.state == JobState.ERROR:
                console.print(f"[bold red]Job failed:[/bold red] {job_status.error}")
                raise typer.Exit(code=1)
            console.print(f"[green]Job {job_status.state.value}[/green]")
            if not show_checks:
                return
            record = await services.store.get(handle.document_id)
            if record is not None:
                print_record(record)
        finally:
            await services.close()

    _run(_submit())


@app.command()
def status(job_id: UUID = typer.Argument(..., help="Job id")) -> None:
    """Show a job's state and progress."""

    async def _status():
        services = PipelineServices(settings)
        try:
            return await services.status.get_status(job_id)
        finally:
            await services.database.close()

    job_status = _run(_status())
    console.print(f"[bold blue]{job_status.job_id}[/bold blue] {job_status.state.value} {job_status.progress}%")
    if job_status.error:
        console.print(f"[red]{job_status.error}[/red]")


@app.command()
def export(
    document_id: UUID = typer.Argument(..., help="Document id"),
    output: Path = typer.Argument(..., dir_okay=False, help="Where to write the zip"),
) -> None:
    """Write the audit bundle of a document's published record."""
    from whisperer.export import AuditExporter

    async def _export():
        services = PipelineServices(settings)
        try:
            return await AuditExporter(services.database, services.store).export(document_id)
        finally:
            await services.database.close()

    bundle = _run(_export())
    output.write_bytes(bundle)
    console.print(f"[green]Wrote {output} ({len(bundle)} bytes)[/green]")


@app.command()
def sweep() -> None:
    """Run one timeout sweep over in-flight jobs."""

    async def _sweep():
        services = PipelineServices(settings)
        try:
            return await services.status.expire_stale_jobs()
        finally:
            await services.database.close()

    expired = _run(_sweep())
    console.print(f"Expired {len(expired)} job(s)")
    for job_id in expired:
        console.print(f"  [yellow]{job_id}[/yellow]")


if __name__ == "__main__":
    app()
