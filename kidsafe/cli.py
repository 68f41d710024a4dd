from __future__ import annotations

import sys
import time
import logging

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config import load_config, get_pipeline_config
from .database.connection import init_database
from .database.models import AGE_RATINGS, TaskStatus
from .database.repository import Repository
from .errors import InvalidTransition, PipelineError, TaskNotFound
from .pipeline.factory import Pipeline
from .utils.logging_config import setup_logging

console = Console()
logger = logging.getLogger(__name__)

STATUS_COLORS = {
    TaskStatus.PENDING: "white",
    TaskStatus.PROCESSING: "cyan",
    TaskStatus.TRANSCRIBED: "blue",
    TaskStatus.CLASSIFYING: "magenta",
    TaskStatus.DONE: "green",
    TaskStatus.FAILED: "red",
}


def _build_pipeline(ctx) -> Pipeline:
    config = ctx.obj["config"]
    repo = Repository(config["db_path"])
    return Pipeline(config, repo, ctx.obj.get("services"))


def _print_event(event: dict):
    kind = event["event"]
    if kind == "idle":
        console.print(f"[dim]No tasks waiting for {event['stage']}.[/dim]")
    elif kind == "transcribed":
        console.print(f"  [green]OK[/green] {event['video_id']} transcribed ({event['chars']} chars)")
    elif kind == "classified":
        verdict = "[green]safe[/green]" if event["safe"] else "[red]unsafe[/red]"
        console.print(f"  [green]OK[/green] {event['video_id']} classified: {verdict}, age {event['age']}")
    elif kind == "failed":
        label = escape(f"[{event['kind']}]")
        console.print(f"  [red]FAIL[/red] {event['video_id']} {label}: {escape(event['error'][:100])}")
    elif kind == "lost":
        console.print(f"  [yellow]LOST[/yellow] {event['video_id']}: {escape(event['error'][:100])}")
    elif kind == "swept":
        console.print(f"  [yellow]STUCK[/yellow] {event['video_id']}: {event['reason']}")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(ctx, verbose):
    """KidSafe - classify YouTube videos before children can see them."""
    ctx.ensure_object(dict)
    config = ctx.obj.get("config") or load_config()
    if verbose:
        config["log_level"] = "DEBUG"
    setup_logging(config.get("log_file"), config.get("log_level", "INFO"))
    ctx.obj["config"] = config


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create the database schema and apply migrations."""
    db_path = ctx.obj["config"]["db_path"]
    init_database(db_path).close()
    console.print(f"[green]Database ready:[/green] {db_path}")


@cli.command()
@click.argument("channel_id")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=None, help="Max uploads to fetch")
@click.pass_context
def ingest(ctx, channel_id, limit):
    """Register a channel's recent uploads and queue them for classification.

    \b
    Examples:
        kidsafe ingest UCxxxxxxxxxxxxxxxxxxxxxx
        kidsafe ingest UCxxxxxxxxxxxxxxxxxxxxxx -n 25
    """
    pipeline = _build_pipeline(ctx)
    try:
        with console.status(f"[bold]Fetching uploads for {channel_id}...[/bold]"):
            result = pipeline.ingestion().run(channel_id, limit)
    except (PipelineError, ValueError) as e:
        console.print(f"[red]Error:[/red] Ingestion failed: {escape(str(e))}")
        sys.exit(1)
    finally:
        pipeline.repo.close()

    console.print(f"[green]Ingested channel:[/green] {channel_id}")
    console.print(f"  Videos found:  {result['total_videos']}")
    console.print(f"  New videos:    {result['new_videos']}")
    console.print(f"  New tasks:     {result['new_tasks']}")


@cli.command()
@click.argument("video_id")
@click.pass_context
def enqueue(ctx, video_id):
    """Queue a single video that is already registered."""
    repo = Repository(ctx.obj["config"]["db_path"])
    try:
        if repo.get_video(video_id) is None:
            console.print(f"[yellow]Warning:[/yellow] no video row for {video_id}; "
                          "the task will fail until it is ingested.")
        task = repo.enqueue(video_id)
    finally:
        repo.close()
    console.print(f"Task {task.id} for {video_id}: [bold]{task.status}[/bold]")


@cli.command()
@click.pass_context
def transcribe(ctx):
    """Run one transcription pass (at most one task)."""
    pipeline = _build_pipeline(ctx)
    try:
        _print_event(pipeline.transcription().run_once())
    finally:
        pipeline.repo.close()


@cli.command()
@click.pass_context
def classify(ctx):
    """Run one classification pass (at most one task)."""
    pipeline = _build_pipeline(ctx)
    try:
        _print_event(pipeline.classification().run_once())
    finally:
        pipeline.repo.close()


@cli.command()
@click.option("--stale-after", type=int, default=None,
              help="Seconds without progress before a claimed task counts as stuck")
@click.pass_context
def sweep(ctx, stale_after):
    """Fail tasks stuck in processing/classifying."""
    pipeline = _build_pipeline(ctx)
    if stale_after is not None:
        pipeline.settings["stale_after_seconds"] = stale_after
    try:
        swept = pipeline.janitor().sweep()
    finally:
        pipeline.repo.close()

    if not swept:
        console.print("[green]No stuck tasks.[/green]")
        return
    for item in swept:
        _print_event({"event": "swept", **item})
    console.print(f"[bold]{len(swept)} task(s) failed.[/bold] Run [bold]kidsafe retry-failed[/bold] to requeue.")


@cli.command()
@click.option("--interval", type=float, default=None, help="Seconds to sleep when idle")
@click.option("--max-ticks", type=int, default=None, help="Stop after this many ticks")
@click.pass_context
def poll(ctx, interval, max_ticks):
    """Long-running worker: sweep, transcribe and classify in a loop."""
    pipeline = _build_pipeline(ctx)
    interval = interval if interval is not None else get_pipeline_config(ctx.obj["config"])["poll_interval"]
    ticks = 0
    try:
        while max_ticks is None or ticks < max_ticks:
            ticks += 1
            events = pipeline.tick()
            busy = False
            for event in events:
                if event["event"] != "idle":
                    busy = True
                    _print_event(event)
            if not busy and (max_ticks is None or ticks < max_ticks):
                time.sleep(interval)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")
    finally:
        pipeline.repo.close()


@cli.command()
@click.argument("task_id")
@click.pass_context
def reset(ctx, task_id):
    """Put a failed task back to pending."""
    repo = Repository(ctx.obj["config"]["db_path"])
    try:
        task = repo.reset_task(task_id)
    except (TaskNotFound, InvalidTransition) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        sys.exit(1)
    finally:
        repo.close()
    console.print(f"Task {task.id} ({task.video_id}) is [bold]pending[/bold] again.")


@cli.command("retry-failed")
@click.option("--limit", "-n", type=int, default=None, help="Max tasks to reset")
@click.pass_context
def retry_failed(ctx, limit):
    """Reset failed tasks to pending so the workers pick them up again."""
    repo = Repository(ctx.obj["config"]["db_path"])
    try:
        count = repo.reset_failed_tasks(limit)
    finally:
        repo.close()

    if count == 0:
        console.print("[green]No failed tasks to retry.[/green]")
    else:
        console.print(f"[bold]Reset {count} failed task(s) to pending.[/bold]")


@cli.command()
@click.pass_context
def status(ctx):
    """Show queue and verdict statistics."""
    repo = Repository(ctx.obj["config"]["db_path"])
    try:
        stats = repo.get_pipeline_stats()
    finally:
        repo.close()

    table = Table(title="KidSafe Pipeline Status")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Channels", str(stats["channels"]))
    table.add_row("Tasks", str(stats["total_tasks"]))
    for status_name in TaskStatus.ALL:
        count = stats["tasks_by_status"].get(status_name, 0)
        if count:
            table.add_row(f"  {status_name}", str(count))
    for kind, count in sorted(stats["failures_by_kind"].items()):
        table.add_row(f"    failed: {kind}", str(count))
    table.add_row("Videos", str(stats["videos"]["total"]))
    table.add_row("  analyzed", str(stats["videos"]["analyzed"]))
    table.add_row("  safe", str(stats["videos"]["safe"]))
    table.add_row("  unsafe", str(stats["videos"]["unsafe"]))

    console.print(table)


@cli.command()
@click.option("--status", "-s", "status_filter", default=None,
              type=click.Choice(list(TaskStatus.ALL)), help="Only tasks in this status")
@click.option("--limit", "-n", type=int, default=50, help="Max rows")
@click.pass_context
def tasks(ctx, status_filter, limit):
    """List tasks, oldest first."""
    repo = Repository(ctx.obj["config"]["db_path"])
    try:
        rows = repo.list_tasks(status_filter, limit)
    finally:
        repo.close()

    if not rows:
        console.print("[yellow]No tasks.[/yellow]")
        return

    table = Table(title="Tasks")
    table.add_column("Task")
    table.add_column("Video")
    table.add_column("Status")
    table.add_column("Updated")
    table.add_column("Failure")
    for t in rows:
        color = STATUS_COLORS.get(t.status, "white")
        failure = ""
        if t.status == TaskStatus.FAILED:
            failure = escape(f"[{t.failure_kind}] in {t.last_status}: {(t.failure_reason or '')[:60]}")
        table.add_row(t.id[:12], t.video_id, f"[{color}]{t.status}[/{color}]",
                      t.updated_at[:19], failure)
    console.print(table)


@cli.command()
@click.argument("child_id")
@click.argument("channel_id")
@click.option("--revoke", is_flag=True, help="Remove the approval instead")
@click.pass_context
def approve(ctx, child_id, channel_id, revoke):
    """Approve (or revoke) a channel for a child profile."""
    repo = Repository(ctx.obj["config"]["db_path"])
    try:
        if revoke:
            changed = repo.revoke_channel(child_id, channel_id)
            verb = "Revoked" if changed else "Was not approved:"
        else:
            changed = repo.approve_channel(child_id, channel_id)
            verb = "Approved" if changed else "Already approved:"
    finally:
        repo.close()
    console.print(f"{verb} {channel_id} for child {child_id}")


@cli.command()
@click.argument("child_id")
@click.argument("video_id")
@click.option("--max-age", type=click.Choice(list(AGE_RATINGS)), default=None,
              help="Also require this age rating or younger")
@click.pass_context
def check(ctx, child_id, video_id, max_age):
    """Ask the safety gate whether a child may watch a video."""
    pipeline = _build_pipeline(ctx)
    try:
        video = pipeline.repo.get_video(video_id)
        visible = pipeline.gate().is_visible_to_child(video, child_id, max_age)
    finally:
        pipeline.repo.close()

    if visible:
        console.print(f"[green]VISIBLE[/green] {video_id} for child {child_id}")
        return
    if video is None:
        reason = "unknown video"
    elif not video.is_analyzed:
        reason = "not analyzed yet"
    elif not video.safe:
        reason = f"unsafe: {escape(video.verdict.reason)}"
    else:
        reason = "channel not approved or age rating too high"
    console.print(f"[red]HIDDEN[/red] {video_id} for child {child_id} ({reason})")
    sys.exit(2)


@cli.command()
@click.argument("child_id")
@click.option("--max-age", type=click.Choice(list(AGE_RATINGS)), default=None)
@click.pass_context
def videos(ctx, child_id, max_age):
    """List the videos a child may watch."""
    pipeline = _build_pipeline(ctx)
    try:
        visible = pipeline.gate().visible_videos(child_id, max_age)
    finally:
        pipeline.repo.close()

    if not visible:
        console.print(f"[yellow]Nothing visible for child {child_id} yet.[/yellow]")
        return

    table = Table(title=f"Visible for {child_id}")
    table.add_column("Video")
    table.add_column("Title")
    table.add_column("Age")
    table.add_column("Loud", justify="right")
    table.add_column("Junk", justify="right")
    for v in visible:
        table.add_row(v.video_id, v.title[:50], v.verdict.age,
                      str(v.verdict.loud), str(v.verdict.junk))
    console.print(table)


@cli.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", "-p", default=5000, type=int, help="Port to listen on")
@click.option("--debug", is_flag=True, help="Enable Flask debug mode")
@click.pass_context
def web(ctx, host, port, debug):
    """Serve the operator and viewing-surface HTTP API.

    \b
    Examples:
        kidsafe web                  # localhost:5000
        kidsafe web -p 8080
    """
    from .web.app import create_app
    app = create_app(ctx.obj["config"], ctx.obj.get("services"))

    console.print()
    console.print(Panel.fit(
        f"[bold green]KidSafe API[/bold green]\n"
        f"[dim]Listening on:[/dim] [bold]http://{host}:{port}/api[/bold]",
        border_style="green",
    ))
    console.print()

    app.run(host=host, port=port, debug=debug)
