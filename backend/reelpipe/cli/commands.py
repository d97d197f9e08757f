"""CLI commands for reelpipe using Typer and Rich.

Commands:
- submit: Store a script and create a reel job (optionally run it now)
- run: Run a job's pipeline in the foreground
- status: Show detailed job information
- list: List jobs in a table
- cancel: Cancel a job that has not finished
- watch: Poll for new jobs and run them
- cleanup: Remove temp files left behind by a crashed process
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy import select

from reelpipe import validate_dependencies
from reelpipe.config import settings
from reelpipe.db import async_session, get_store, init_database, shutdown
from reelpipe.db.models import PipelineRun
from reelpipe.db.store import REEL_TONES, JobNotFoundError
from reelpipe.orchestrator.state import (
    PIPELINE_STATES,
    PROCESSING,
    Status,
    StatusKind,
    is_failure,
    is_terminal,
    progress_for,
)
from reelpipe.services.temp_files import get_temp_manager
from reelpipe.workers.job_watcher import JobWatcher, build_orchestrator

app = typer.Typer(name="reelpipe", help="Script-to-reel video generation pipeline")
console = Console()


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _require_ffmpeg() -> None:
    try:
        validate_dependencies()
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)


async def _run_job(job_id: str) -> Status:
    """Run one job in the foreground with a live status line."""
    store = get_store()
    try:
        orchestrator = build_orchestrator(store)
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    try:
        with console.status("[bold green]Starting pipeline...") as live:
            def progress_callback(status: Status):
                live.update(f"[bold green]{PIPELINE_STATES[status.kind]} ({progress_for(status):.0%})")

            orchestrator.progress_callback = progress_callback
            return await orchestrator.run(job_id)
    finally:
        await orchestrator.services.aclose()


def _print_outcome(job_id: str, outcome: Status, video_uri: Optional[str] = None) -> None:
    if outcome.kind is StatusKind.COMPLETED:
        console.print("[green]✓[/green] Reel complete!")
        if video_uri:
            console.print(f"[green]Video:[/green] {video_uri}")
    elif is_failure(outcome):
        console.print(f"[red]✗ Pipeline failed:[/red] {outcome.reason}")
        raise typer.Exit(code=1)
    elif outcome.kind is StatusKind.CANCELLED:
        console.print(f"[yellow]Job {job_id} was cancelled[/yellow]")
    else:
        console.print(f"[yellow]Job {job_id} stopped as {outcome}[/yellow]")
        raise typer.Exit(code=1)


@app.command()
def submit(
    script_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Text file containing the script"),
    voice: str = typer.Option(..., "--voice", help="Voice id for narration"),
    user: str = typer.Option("local", "--user", "-u", help="Owning user id"),
    tone: str = typer.Option("professional", "--tone", "-t", help=f"One of: {', '.join(REEL_TONES)}"),
    title: Optional[str] = typer.Option(None, "--title", help="Script title"),
    run: bool = typer.Option(False, "--run/--no-run", help="Run the pipeline now instead of leaving it for a watcher"),
):
    """Store a script and create a reel job for it."""
    if tone not in REEL_TONES:
        console.print(f"[red]Error:[/red] Invalid tone: {tone}")
        console.print(f"Allowed: {', '.join(REEL_TONES)}")
        raise typer.Exit(code=1)
    content = script_file.read_text(encoding="utf-8")
    if not content.strip():
        console.print(f"[red]Error:[/red] {script_file} is empty")
        raise typer.Exit(code=1)
    if run:
        _require_ffmpeg()

    asyncio.run(_submit_async(content, voice, user, tone, title or script_file.stem, run))


async def _submit_async(content: str, voice: str, user: str, tone: str, title: str, run: bool):
    """Async implementation of submit command."""
    await init_database()
    store = get_store()
    try:
        script_id = await store.create_script(content, user, title=title)
        job = await store.create_job(script_id, voice, user, tone=tone)
        console.print(f"[green]Created job:[/green] {job.id}")

        if not run:
            console.print(f"Run it with: python -m reelpipe run {job.id}")
            return
        if not await store.claim_job(job.id):
            console.print("[yellow]Job was claimed by a watcher before it could run here[/yellow]")
            return

        console.print()
        outcome = await _run_job(job.id)
        refreshed = await store.get_job(job.id)
        _print_outcome(job.id, outcome, refreshed.video_uri if refreshed else None)
    finally:
        await shutdown()


@app.command()
def run(
    job_id: str = typer.Argument(..., help="Job id"),
    force: bool = typer.Option(False, "--force", help="Run even if another process claimed the job"),
):
    """Run a job's pipeline in the foreground."""
    _require_ffmpeg()
    asyncio.run(_run_async(job_id, force))


async def _run_async(job_id: str, force: bool):
    """Async implementation of run command."""
    await init_database()
    store = get_store()
    try:
        job = await store.get_job(job_id)
        if job is None:
            console.print(f"[red]Error:[/red] Job not found: {job_id}")
            raise typer.Exit(code=1)
        if is_terminal(job.status):
            console.print(f"[yellow]Job already {job.status}[/yellow]")
            return
        if job.status != PROCESSING:
            console.print(f"[red]Error:[/red] Job stopped mid-pipeline at {job.status} and cannot be restarted")
            raise typer.Exit(code=1)
        if not await store.claim_job(job_id) and not force:
            console.print("[yellow]Job is already claimed by another run.[/yellow] Use --force to run it anyway.")
            raise typer.Exit(code=1)

        outcome = await _run_job(job_id)
        refreshed = await store.get_job(job_id)
        _print_outcome(job_id, outcome, refreshed.video_uri if refreshed else None)
    finally:
        await shutdown()


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Job id"),
):
    """Show detailed job status and information."""
    asyncio.run(_status_async(job_id))


async def _status_async(job_id: str):
    """Async implementation of status command."""
    await init_database()
    store = get_store()
    try:
        job = await store.get_job(job_id)
        if job is None:
            console.print(f"[red]Error:[/red] Job not found: {job_id}")
            raise typer.Exit(code=1)

        async with async_session() as session:
            result = await session.execute(
                select(PipelineRun)
                .where(PipelineRun.job_id == job_id)
                .order_by(PipelineRun.started_at.desc())
                .limit(1)
            )
            latest_run = result.scalar_one_or_none()

        status_color = _get_status_color(job.status.kind)
        info_lines = [
            f"[bold]ID:[/bold] {job.id}",
            f"[bold]Status:[/bold] [{status_color}]{job.status.kind.value}[/{status_color}]"
            f" ({PIPELINE_STATES[job.status.kind]})",
            f"[bold]Progress:[/bold] {progress_for(job.status):.0%}",
            f"[bold]Script:[/bold] {job.script_id}",
            f"[bold]Voice:[/bold] {job.voice_id}",
            f"[bold]Tone:[/bold] {job.tone}",
            f"[bold]User:[/bold] {job.user_id}",
        ]
        if job.created_at:
            info_lines.append(f"[bold]Created:[/bold] {job.created_at.strftime('%Y-%m-%d %H:%M:%S')}")
        if job.updated_at:
            info_lines.append(f"[bold]Updated:[/bold] {job.updated_at.strftime('%Y-%m-%d %H:%M:%S')}")

        if job.video_uri:
            info_lines.append(f"[bold]Video:[/bold] [green]{job.video_uri}[/green]")
        if job.thumbnail_uri:
            info_lines.append(f"[bold]Thumbnail:[/bold] {job.thumbnail_uri}")
        if is_failure(job.status):
            info_lines.append(f"[bold]Error:[/bold] [red]{job.status.reason}[/red]")

        if latest_run and latest_run.total_duration_seconds:
            duration = latest_run.total_duration_seconds
            if duration < 60:
                duration_str = f"{duration:.1f}s"
            else:
                mins = int(duration // 60)
                secs = duration % 60
                duration_str = f"{mins}m {secs:.1f}s"
            info_lines.append(f"[bold]Last Run Duration:[/bold] {duration_str}")
            if latest_run.log:
                steps = ", ".join(f"{name} {secs:.1f}s" for name, secs in latest_run.log.items())
                info_lines.append(f"[bold]Steps:[/bold] {steps}")

        console.print(Panel(
            "\n".join(info_lines),
            title="[bold]Job Status[/bold]",
            border_style="blue",
        ))
    finally:
        await shutdown()


@app.command(name="list")
def list_jobs(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Only this user's jobs"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum rows"),
):
    """List reel jobs, newest first."""
    asyncio.run(_list_async(user, limit))


async def _list_async(user: Optional[str], limit: int):
    """Async implementation of list command."""
    await init_database()
    try:
        jobs = await get_store().list_jobs(user_id=user, limit=limit)
        if not jobs:
            console.print("[yellow]No jobs found[/yellow]")
            return

        table = Table(show_header=True, header_style="bold blue")
        table.add_column("ID", style="dim")
        table.add_column("User")
        table.add_column("Tone")
        table.add_column("Status")
        table.add_column("Progress", justify="right")
        table.add_column("Created")

        for job in jobs:
            status_color = _get_status_color(job.status.kind)
            table.add_row(
                job.id[:8] + "...",
                job.user_id,
                job.tone,
                f"[{status_color}]{job.status.kind.value}[/{status_color}]",
                f"{job.progress:.0%}",
                job.created_at.strftime("%Y-%m-%d %H:%M") if job.created_at else "",
            )

        console.print(table)
    finally:
        await shutdown()


@app.command()
def cancel(
    job_id: str = typer.Argument(..., help="Job id"),
):
    """Cancel a job; a running pipeline stops at its next stage boundary."""
    asyncio.run(_cancel_async(job_id))


async def _cancel_async(job_id: str):
    """Async implementation of cancel command."""
    await init_database()
    store = get_store()
    try:
        if await store.cancel_job(job_id):
            console.print(f"[green]Job {job_id} cancelled[/green]")
            return
        try:
            current = await store.get_status(job_id)
        except JobNotFoundError:
            console.print(f"[red]Error:[/red] Job not found: {job_id}")
            raise typer.Exit(code=1)
        console.print(f"[yellow]Job cannot be cancelled from status '{current.kind.value}'[/yellow]")
        raise typer.Exit(code=1)
    finally:
        await shutdown()


@app.command()
def watch(
    interval: Optional[float] = typer.Option(None, "--interval", "-i", help="Seconds between polls"),
    max_concurrent: Optional[int] = typer.Option(None, "--max-concurrent", "-c", help="Jobs to run at once"),
):
    """Poll for new jobs and run them until interrupted."""
    _require_ffmpeg()
    asyncio.run(_watch_async(
        interval or settings.pipeline.watch_poll_interval,
        max_concurrent or settings.pipeline.max_concurrent_jobs,
    ))


async def _watch_async(interval: float, max_concurrent: int):
    """Async implementation of watch command."""
    await init_database()
    temp_manager = get_temp_manager()
    temp_manager.reclaim_orphans()

    store = get_store()
    try:
        orchestrator = build_orchestrator(store)
    except RuntimeError as e:
        console.print(f"[red]Error:[/red] {str(e)}")
        raise typer.Exit(code=1)

    watcher = JobWatcher(store, orchestrator, poll_interval=interval, max_concurrent=max_concurrent)
    console.print(f"[green]Watching for jobs[/green] (every {interval:g}s, {max_concurrent} at a time). Ctrl+C to stop.")
    try:
        await watcher.run()
    finally:
        temp_manager.release_all()
        await orchestrator.services.aclose()
        await shutdown()


@app.command()
def cleanup():
    """Delete files in the scratch directory that no live run is tracking.

    Only use while no pipeline is running in another process.
    """
    removed = get_temp_manager().reclaim_orphans()
    console.print(f"Removed {removed} file(s) from {settings.storage.tmp_dir}")


def _get_status_color(kind: StatusKind) -> str:
    """Get Rich color for a job status.

    Color coding:
    - completed: green
    - failed: red
    - cancelled: magenta
    - in-progress states: yellow
    - processing: dim
    """
    if kind is StatusKind.COMPLETED:
        return "green"
    elif kind is StatusKind.FAILED:
        return "red"
    elif kind is StatusKind.CANCELLED:
        return "magenta"
    elif kind is StatusKind.PROCESSING:
        return "dim"
    else:
        return "yellow"
