"""Command-line interface for Flipmode sync."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .app import FlipmodeApp
from .config import ConfigManager, apply_cli_overrides
from .errors import FlipmodeError
from .scheduler import AsyncioScheduler

console = Console()
logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[
            RichHandler(console=console, rich_tracebacks=True, show_path=False, show_time=False)
        ],
    )


def notify(message: str):
    console.print(f"[cyan]{message}[/cyan]")


def run(make: Callable[[], Awaitable[Any]]) -> Any:
    """Build and run a coroutine; FlipmodeErrors become a red message and exit code 1."""
    try:
        return asyncio.run(make())
    except FlipmodeError as e:
        if e.detail:
            logger.debug(f"{e}: {e.detail}")
        console.print(f"[red]{e}[/red]")
        sys.exit(1)


@click.group()
@click.option("--config", type=click.Path(exists=True), help="Configuration file")
@click.option("--vault", type=click.Path(file_okay=False), help="Vault directory")
@click.option("--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def main(ctx, config: Optional[str], vault: Optional[str], verbose: bool):
    """Flipmode - athlete/coach research sync."""
    setup_logging(verbose)
    ctx.obj = apply_cli_overrides(ConfigManager.load(config), vault=vault)


def get_app(ctx) -> FlipmodeApp:
    return FlipmodeApp(ctx.obj, notify=notify)


def prompt_answer(question: str) -> Optional[str]:
    console.print(f"[bold]{question}[/bold]")
    return click.prompt("Answer (blank to skip)", default="", show_default=False) or None


@main.command()
@click.pass_context
def health(ctx):
    """Check that the queue service is reachable."""
    healthy = run(lambda: get_app(ctx).health_client().check_health())
    if healthy:
        console.print("[green]✓ Queue service is healthy[/green]")
    else:
        console.print("[red]Queue service is unreachable[/red]")
        sys.exit(1)


@main.command()
@click.argument("query")
@click.option("--local", is_flag=True, help="Research locally instead of asking the coach")
@click.pass_context
def submit(ctx, query: str, local: bool):
    """Send QUERY to the coach, or research it locally."""
    app = get_app(ctx)
    if local:
        path = run(lambda: app.local_research.research(query))
        console.print(f"[green]Saved to {path}[/green]")
        return
    job_id = run(lambda: app.manager.submit(query))
    console.print(f"[green]Job {job_id}[/green]")


@main.command()
@click.argument("transcript")
@click.pass_context
def ask(ctx, transcript: str):
    """Clarify TRANSCRIPT interactively, then send it. Empty answer skips."""
    app = get_app(ctx)
    job_id = run(lambda: app.capture.run(transcript, prompt_answer))
    console.print(f"[green]Job {job_id}[/green]")


@main.command()
@click.argument("audio", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def voice(ctx, audio: str):
    """Transcribe an AUDIO recording, clarify it, then send it."""
    app = get_app(ctx)
    data = Path(audio).read_bytes()
    job_id = run(lambda: app.capture.run_audio(data, prompt_answer))
    console.print(f"[green]Job {job_id}[/green]")


@main.command("voice-usage")
@click.pass_context
def voice_usage(ctx):
    """Show how many voice notes are left today."""
    usage = run(lambda: get_app(ctx).require_dialogue().voice_usage())
    console.print(f"{usage.get('remaining', 0)} of {usage.get('limit', 0)} voice notes left today")


@main.command()
@click.option("--once", is_flag=True, help="Run a single poll cycle and exit")
@click.pass_context
def poll(ctx, once: bool):
    """Wait for pending jobs and save their research."""
    app = get_app(ctx)

    async def poll_jobs():
        manager = app.manager
        await manager.restore()
        if once:
            return await manager.poll()

        scheduler = AsyncioScheduler()
        manager.start(scheduler)
        try:
            while len(manager.repository):
                await asyncio.sleep(1)
        finally:
            manager.stop()
            await scheduler.shutdown()

    try:
        report = run(poll_jobs)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped polling[/yellow]")
        return

    if report is None:
        console.print("[green]No pending jobs left[/green]")
        return
    console.print(
        f"Checked {report.checked}, saved {len(report.materialized)}, failed {len(report.failed)}"
    )
    for job_id, error in report.errors.items():
        console.print(f"[yellow]{job_id}: {error}[/yellow]")


@main.command()
@click.pass_context
def jobs(ctx):
    """List this athlete's jobs."""
    app = get_app(ctx)
    job_list = run(lambda: app.require_queue().list_jobs())

    table = Table(expand=True)
    table.add_column("Job", style="cyan")
    table.add_column("Status")
    table.add_column("Submitted")
    table.add_column("Query")
    for job in job_list:
        table.add_row(job.job_id[:8], job.status.value, str(job.submitted_at or ""), job.display_query)
    console.print(table)


@main.command()
@click.pass_context
def sync(ctx):
    """Pull completed research and concepts from the coach."""
    report = run(lambda: get_app(ctx).engine.athlete_pull())
    console.print(f"[green]{report.summary()}[/green]")


@main.command("push-graph")
@click.pass_context
def push_graph(ctx):
    """Send sessions and queries to the coach."""
    snapshot = run(lambda: get_app(ctx).engine.push_graph())
    console.print(
        f"[green]Synced: {len(snapshot['sessions'])} sessions, {len(snapshot['queries'])} queries[/green]"
    )


@main.command()
@click.pass_context
def repair(ctx):
    """Re-derive source note status from derived artifacts."""
    repaired = run(lambda: get_app(ctx).linker.repair())
    console.print(f"[green]Repaired {repaired} note(s)[/green]")


@main.group()
def coach():
    """Coach-side commands."""


@coach.command("sync")
@click.pass_context
def coach_sync(ctx):
    """Refresh athlete summaries and pull pending queries."""
    report = run(lambda: get_app(ctx).engine.coach_pull())
    console.print(
        f"[green]Synced {report.athletes} athletes, {report.pending_created} new pending queries[/green]"
    )
    if report.failures:
        console.print(f"[yellow]{report.failures} item(s) failed, see log[/yellow]")


@coach.command()
@click.pass_context
def stats(ctx):
    """Show queue statistics."""
    app = get_app(ctx)
    data = run(lambda: app.require_coach().get_stats())

    table = Table(title="Queue")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(str(key), str(value))
    console.print(table)


@coach.command("add-athlete")
@click.argument("discord_id")
@click.option("--name", help="Display name")
@click.pass_context
def add_athlete(ctx, discord_id: str, name: Optional[str]):
    """Add DISCORD_ID to the roster."""
    app = get_app(ctx)
    result = run(lambda: app.require_coach().add_athlete(discord_id, name))
    console.print(f"[green]✓ Added {name or discord_id}[/green]")
    if result.get("token"):
        console.print(f"Athlete token: {result['token']}")


@coach.command()
@click.argument("note")
@click.pass_context
def generate(ctx, note: str):
    """Generate the article for a pending query NOTE."""
    app = get_app(ctx)
    path = run(lambda: app.workflow.generate_article(app.note_path(note)))
    console.print(f"[green]Draft saved to {path}[/green]")


@coach.command()
@click.argument("note")
@click.pass_context
def push(ctx, note: str):
    """Push the article in NOTE to the athlete."""
    app = get_app(ctx)
    path = run(lambda: app.workflow.push_article(app.note_path(note)))
    console.print(f"[green]Moved to {path}[/green]")


@coach.command()
@click.argument("note")
@click.pass_context
def publish(ctx, note: str):
    """Publish a draft training review NOTE."""
    app = get_app(ctx)
    result = run(lambda: app.workflow.publish_review(app.note_path(note)))
    if result.parent_updated:
        console.print(f"[green]Updated {result.parent_path}[/green]")


@coach.command("push-concepts")
@click.argument("athlete_id")
@click.pass_context
def push_concepts(ctx, athlete_id: str):
    """Push local concept notes to ATHLETE_ID."""
    created, updated = run(lambda: get_app(ctx).engine.push_concepts(athlete_id))
    console.print(f"[green]Pushed concepts: {created} new, {updated} updated[/green]")


if __name__ == "__main__":
    main()
