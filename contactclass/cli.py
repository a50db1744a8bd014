"""contactclass CLI.

Commands:
- init: Initialize database schema
- import-csv: Create a job from a CSV/XLSX contact export
- run: Enqueue a job on the worker queue (or drain it locally)
- step: Run one orchestrator step inline
- status: Show job progress and recent activity
- override: Record a manual category for one row
- purge-cache: Delete expired cache entries
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx
import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import select

from contactclass.cache import SqlCacheStore, build_cache_store
from contactclass.config import get_config
from contactclass.core.logging import configure_logging
from contactclass.core.queue import get_queue
from contactclass.db.connection import (
    close_db,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
)
from contactclass.db.models import ActivityModel, Base, JobRowModel
from contactclass.db.repository import JobRepository, parse_job_id
from contactclass.exceptions import ContactClassError
from contactclass.ingestion import read_contact_file
from contactclass.models import Category, Language
from contactclass.pipeline.factory import build_orchestrator
from contactclass.pipeline.scheduler import ArqJobScheduler, InMemoryScheduler

app = typer.Typer(
    name="contactclass",
    help="contactclass - Budget-aware contact classification pipeline",
    no_args_is_help=True,
)

console = Console()


def _repository() -> JobRepository:
    config = get_config()
    return JobRepository(
        get_session_factory(), claim_timeout_seconds=config.queue.claim_timeout_seconds
    )


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")

    async def _init():
        if drop:
            console.print("[yellow]Dropping existing tables...[/yellow]")
            async with get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.drop_all)
        console.print("[green]Creating tables...[/green]")
        await init_db()
        await close_db()

    asyncio.run(_init())
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command(name="import-csv")
def import_csv_cmd(
    file_path: Path = typer.Argument(..., help="Contact export (CSV/XLSX)"),
    language: str | None = typer.Option(None, "--language", "-l", help="Output language (en/fr)"),
    user_id: str | None = typer.Option(None, "--user", help="Owner of the job"),
    enqueue: bool = typer.Option(False, "--run", help="Enqueue the job after import"),
):
    """Create a classification job from a contact file."""
    config = get_config()
    job_language = Language(language or config.default_language)

    try:
        records = read_contact_file(file_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[bold]Importing contacts:[/bold] {file_path} ({len(records)} rows)")

    async def _import():
        job = await _repository().create_job(
            filename=file_path.name,
            records=records,
            language=job_language,
            user_id=user_id,
            file_path=str(file_path),
        )
        if enqueue:
            redis = await get_queue()
            try:
                await ArqJobScheduler(redis).enqueue(job.id)
            finally:
                await redis.aclose()
        await close_db()
        return job

    job = asyncio.run(_import())
    console.print(f"[bold green]✓[/bold green] Job created: {job.id}")
    if enqueue:
        console.print("[green]✓[/green] Job enqueued")


@app.command()
def run(
    job_id: str = typer.Argument(..., help="Job ID"),
    local: bool = typer.Option(False, "--local", help="Run every step in this process"),
):
    """Start processing a job."""
    try:
        job_uuid = parse_job_id(job_id)
    except ContactClassError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    if not local:

        async def _enqueue():
            redis = await get_queue()
            try:
                await ArqJobScheduler(redis).enqueue(job_uuid)
            finally:
                await redis.aclose()

        asyncio.run(_enqueue())
        console.print(f"[bold green]✓[/bold green] Job {job_uuid} enqueued")
        return

    configure_logging()

    async def _drain():
        scheduler = InMemoryScheduler()
        result = await _run_steps(scheduler, job_uuid, drain=True)
        await close_db()
        return result

    result = asyncio.run(_drain())
    _print_step(result)


@app.command()
def step(job_id: str = typer.Argument(..., help="Job ID")):
    """Run exactly one orchestrator step inline."""
    configure_logging()

    async def _step():
        result = await _run_steps(InMemoryScheduler(), job_id, drain=False)
        await close_db()
        return result

    _print_step(asyncio.run(_step()))


async def _run_steps(scheduler: InMemoryScheduler, job_id, drain: bool):
    config = get_config()
    session_factory = get_session_factory()
    cache = build_cache_store(config, session_factory)
    async with httpx.AsyncClient() as client:
        try:
            orchestrator = build_orchestrator(config, session_factory, cache, client, scheduler)
            result = await orchestrator.step(job_id)
            while drain and scheduler.pending:
                next_id, defer_seconds = scheduler.pop()
                if defer_seconds:
                    await asyncio.sleep(defer_seconds)
                result = await orchestrator.step(next_id)
                console.print(f"  {result.status}", style="dim")
        finally:
            await cache.close()
    return result


def _print_step(result) -> None:
    if result.error:
        console.print(f"[red]✗[/red] {result.status or 'ERROR'}: {result.error}")
        raise typer.Exit(code=1)
    console.print(f"[bold green]✓[/bold green] Job {result.job_id}: {result.status}")


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job ID"),
    activity: int = typer.Option(10, "--activity", help="Number of activity entries"),
):
    """Show job progress, budget counters and recent activity."""

    async def _status():
        try:
            job = await _repository().get_job(job_id)
        except ContactClassError as e:
            console.print(f"[red]✗[/red] {e}")
            raise typer.Exit(code=1)

        table = Table(title=f"Job {job.id}")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right", style="green")

        table.add_row("File", job.filename)
        table.add_row("Status", job.status)
        table.add_row("Step", job.current_step or "-")
        table.add_row("Rows", f"{job.processed_rows}/{job.total_rows}")
        table.add_row("AI rows", f"{job.ai_rows} ({job.ai_usage_percent:.1f}%)")
        table.add_row("Avg confidence", f"{job.avg_confidence:.1f}")
        table.add_row("Needs review", str(job.needs_review_count))
        table.add_row("Search calls", str(job.search_calls_count))
        table.add_row("AI tokens", str(job.ai_tokens_estimate))
        if job.error_message:
            table.add_row("Error", job.error_message)
        console.print(table)

        async with get_session() as session:
            entries = (
                await session.execute(
                    select(ActivityModel)
                    .where(ActivityModel.job_id == job.id)
                    .order_by(ActivityModel.created_at.desc())
                    .limit(activity)
                )
            ).scalars().all()

        if entries:
            feed = Table(title="Recent activity")
            feed.add_column("Time", style="dim")
            feed.add_column("Type")
            feed.add_column("Message")
            for entry in reversed(entries):
                feed.add_row(entry.created_at.strftime("%H:%M:%S"), entry.message_type, entry.message)
            console.print(feed)

        await close_db()

    asyncio.run(_status())


@app.command()
def override(
    job_id: str = typer.Argument(..., help="Job ID"),
    row_index: int = typer.Argument(..., help="Row index in the source file"),
    category: str = typer.Argument(..., help="CLIENT, PRESCRIBER, SUPPLIER or A_QUALIFIER"),
    edited_by: str = typer.Option(..., "--by", help="Reviewer name"),
    reason: str | None = typer.Option(None, "--reason", help="Reviewer note"),
):
    """Record a manual classification for one row."""
    try:
        job_uuid = parse_job_id(job_id)
        chosen = Category.from_label(category)
    except (ContactClassError, ValueError) as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    async def _override():
        repository = _repository()
        job = await repository.get_job(job_uuid)
        async with get_session() as session:
            row_id = await session.scalar(
                select(JobRowModel.id).where(
                    JobRowModel.job_id == job_uuid, JobRowModel.row_index == row_index
                )
            )
        if row_id is None:
            console.print(f"[red]✗[/red] Row {row_index} not found")
            raise typer.Exit(code=1)
        await repository.apply_manual_override(
            row_id, chosen, edited_by, reason=reason, language=Language(job.language)
        )
        await repository.refresh_stats(job_uuid)
        await close_db()

    asyncio.run(_override())
    console.print(f"[bold green]✓[/bold green] Row {row_index} set to {chosen.value}")


@app.command(name="purge-cache")
def purge_cache_cmd():
    """Delete expired entries from the database cache."""
    config = get_config()
    if config.cache.backend.lower() != "database":
        console.print("[yellow]⚠[/yellow] Redis cache entries expire on their own")
        return

    async def _purge():
        purged = await SqlCacheStore(get_session_factory()).purge_expired()
        await close_db()
        return purged

    purged = asyncio.run(_purge())
    console.print(f"[bold green]✓[/bold green] Purged {purged} expired entries")


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
