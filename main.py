#!/usr/bin/env python3
"""
FeedLens - Feed Analysis Pipeline
=================================

Command line interface for database setup, queue administration, workers
and rule authoring.

Usage:
    python main.py --help                       # Show all commands
    python main.py check-config                 # Validate configuration
    python main.py init-db                      # Initialize database
    python main.py queue status                 # Show queue counts
    python main.py queue scan --limit 200       # Queue entries lacking screening
    python main.py worker                       # Run both stages until Ctrl+C
    python main.py rules test alice rule.json   # Dry-run a rule draft
"""

import asyncio
import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from feedlens.app import AppContext
from feedlens.config.settings import load_settings
from feedlens.database.models import RuleDraft
from feedlens.database.schema import DatabaseSchema
from feedlens.database.connection import DatabaseConnection
from feedlens.utils.exceptions import FeedLensError

console = Console()

STAGES = ("preliminary", "deep")


def _settings(ctx):
    if "settings" not in ctx.obj:
        overrides = {"debug": True} if ctx.obj.get("debug") else {}
        ctx.obj["settings"] = load_settings(**overrides)
    return ctx.obj["settings"]


def _app(ctx) -> AppContext:
    if "app" not in ctx.obj:
        app = AppContext(_settings(ctx)).init()
        ctx.obj["app"] = app
        ctx.call_on_close(lambda: asyncio.run(app.shutdown()))
    return ctx.obj["app"]


def _queues(app: AppContext, stage: str):
    queues = {"preliminary": app.preliminary_queue, "deep": app.deep_queue}
    if stage == "all":
        return list(queues.values())
    return [queues[stage]]


def _fail(message: str) -> None:
    console.print(f"[bold red]❌ {message}[/bold red]")
    sys.exit(1)


stage_option = click.option(
    "--stage", type=click.Choice(STAGES + ("all",)), default="all", show_default=True,
    help="Queue to operate on",
)


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.pass_context
def cli(ctx, debug):
    """FeedLens - two-stage content analysis pipeline."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.pass_context
def check_config(ctx):
    """Validate configuration and environment variables."""
    console.print("[bold blue]🔧 Checking FeedLens Configuration[/bold blue]")

    try:
        settings = _settings(ctx)
    except FeedLensError as e:
        _fail(f"Configuration error: {e}")

    table = Table(title="Configuration Status")
    table.add_column("Component", style="cyan")
    table.add_column("Details")

    table.add_row("Database", f"Path: {settings.database.path}, pool: {settings.database.pool_size}")
    table.add_row("Logging", f"Level: {settings.get_effective_log_level()}, file: {settings.logging.file_path}")
    for stage in STAGES:
        q = getattr(settings.queue, stage)
        table.add_row(
            f"Queue ({stage})",
            f"attempts {q.attempts}, backoff {q.backoff_delay}s, delay {q.delay}s, "
            f"concurrency {q.concurrency}",
        )
    table.add_row(
        "Analysis",
        f"min value {settings.analysis.min_value}, timeout {settings.analysis.timeout}s, "
        f"reflection rounds {settings.analysis.reflection_rounds}",
    )
    table.add_row(
        "Vector store",
        f"{settings.vector_store.backend.value}, dim {settings.vector_store.dimension}, "
        f"{settings.vector_store.metric.value}, enabled {settings.vector_store.enabled}",
    )
    console.print(table)
    console.print("[bold green]✅ Configuration is valid[/bold green]")


@cli.command()
@click.pass_context
def init_db(ctx):
    """Initialize database with schema."""
    console.print("[bold blue]🗄️ Initializing FeedLens Database[/bold blue]")
    settings = _settings(ctx)

    try:
        schema = DatabaseSchema(settings.database.path)
        schema.create_tables()
        if not schema.verify_schema():
            _fail("Database schema verification failed")

        db = DatabaseConnection(settings.database.path, pool_size=1)
        info = db.get_database_info()
        db.close_all_connections()
    except FeedLensError as e:
        _fail(f"Database initialization error: {e}")

    table = Table(title="Database Information")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Database Path", settings.database.path)
    table.add_row("Size", f"{info['database_size_mb']:.2f} MB")
    for name, count in info["table_counts"].items():
        table.add_row(f"Rows in {name}", str(count))
    console.print(table)
    console.print("[bold green]✅ Database initialized successfully![/bold green]")


# Queue administration

@cli.group()
def queue():
    """Inspect and administer the analysis queues."""


@queue.command()
@stage_option
@click.pass_context
def status(ctx, stage):
    """Show job counts and success rate."""
    app = _app(ctx)
    table = Table(title="Queue Status")
    for column in ("Queue", "Waiting", "Delayed", "Active", "Completed", "Failed", "Success %", "Paused"):
        table.add_column(column)

    for q in _queues(app, stage):
        stats = q.get_stats()
        table.add_row(
            q.name,
            str(stats["waiting"]),
            str(stats["delayed"]),
            str(stats["active"]),
            str(stats["completed"]),
            str(stats["failed"]),
            f"{stats['success_rate']}",
            "yes" if stats["paused"] else "no",
        )
    console.print(table)


@queue.command()
@click.argument('entry_ids', nargs=-1, required=True)
@click.option('--stage', type=click.Choice(STAGES), default="preliminary", show_default=True)
@click.option('--priority', type=int, help='Lower runs first (default 5)')
@click.option('--force', is_flag=True, help='Re-analyze entries that already have results')
@click.pass_context
def add(ctx, entry_ids, stage, priority, force):
    """Queue analysis for one or more entries."""
    app = _app(ctx)
    for entry_id in entry_ids:
        if stage == "preliminary":
            job_id = app.preliminary.add_job(entry_id, priority=priority, force_reanalyze=force)
        else:
            job_id = app.deep.add_job(entry_id, priority=priority, force_reanalyze=force)

        if job_id is None:
            console.print(f"[yellow]⏭️ {entry_id}: already queued[/yellow]")
        else:
            console.print(f"[green]➕ {entry_id}: job {job_id}[/green]")


@queue.command(name="add-batch")
@click.argument('ids_file', type=click.File('r'))
@click.option('--priority', type=int, help='Lower runs first (default 5)')
@click.option('--force', is_flag=True, help='Re-analyze entries that already have results')
@click.pass_context
def add_batch(ctx, ids_file, priority, force):
    """Queue preliminary analysis for entry ids listed one per line."""
    entry_ids = [line.strip() for line in ids_file if line.strip()]
    job_ids = _app(ctx).preliminary.add_jobs_batch(entry_ids, priority=priority, force_reanalyze=force)
    console.print(f"[green]➕ Queued {len(job_ids)} preliminary jobs[/green]")


@queue.command()
@click.option('--limit', default=100, show_default=True, help='Maximum entries to queue')
@click.option('--priority', type=int, help='Lower runs first (default 5)')
@click.pass_context
def scan(ctx, limit, priority):
    """Queue entries that have content but no preliminary result."""
    count = _app(ctx).preliminary.add_unanalyzed_entries(limit=limit, priority=priority)
    console.print(f"[green]🔍 Queued {count} unanalyzed entries[/green]")


@queue.command()
@click.argument('job_id', type=int)
@click.option('--stage', type=click.Choice(STAGES), default="preliminary", show_default=True)
@click.pass_context
def job(ctx, job_id, stage):
    """Show one job's state, progress and failure reason."""
    found = _queues(_app(ctx), stage)[0].get_job(job_id)
    if found is None:
        _fail(f"Job {job_id} not found in {stage} queue")

    table = Table(title=f"Job {job_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in found.to_dict().items():
        if isinstance(value, (dict, list)):
            value = json.dumps(value, default=str)
        table.add_row(key, "" if value is None else str(value))
    console.print(table)


@queue.command()
@click.option('--stage', type=click.Choice(STAGES), default="preliminary", show_default=True)
@click.option('--limit', default=100, show_default=True, help='Maximum failed jobs to retry')
@click.pass_context
def retry(ctx, stage, limit):
    """Move failed jobs back to waiting."""
    count = _queues(_app(ctx), stage)[0].retry_failed(limit)
    console.print(f"[green]🔁 Retried {count} failed jobs[/green]")


@queue.command()
@stage_option
@click.pass_context
def pause(ctx, stage):
    """Stop handing out jobs."""
    for q in _queues(_app(ctx), stage):
        q.pause()
        console.print(f"[yellow]⏸️ {q.name} paused[/yellow]")


@queue.command()
@stage_option
@click.pass_context
def resume(ctx, stage):
    """Resume a paused queue."""
    for q in _queues(_app(ctx), stage):
        q.resume()
        console.print(f"[green]▶️ {q.name} resumed[/green]")


@queue.command()
@stage_option
@click.pass_context
def drain(ctx, stage):
    """Delete waiting and delayed jobs."""
    for q in _queues(_app(ctx), stage):
        console.print(f"[yellow]🧹 {q.name}: removed {q.drain()} jobs[/yellow]")


@queue.command()
@stage_option
@click.pass_context
def prune(ctx, stage):
    """Apply the retention policy to finished jobs."""
    for q in _queues(_app(ctx), stage):
        console.print(f"[yellow]🧹 {q.name}: pruned {q.prune()} jobs[/yellow]")


# Workers

@cli.command()
@click.option('--once', is_flag=True, help='Process available jobs and exit')
@click.pass_context
def worker(ctx, once):
    """Run preliminary and deep workers until interrupted."""
    app = _app(ctx)

    async def run_workers():
        if once:
            prelim, deep = app.preliminary.create_worker(), app.deep.create_worker()
            done = await prelim.run_until_empty()
            done += await deep.run_until_empty()
            console.print(f"[green]✅ Processed {done} jobs[/green]")
            return

        workers = app.create_workers()
        for w in workers:
            w.start()
        console.print("[bold blue]🚀 Workers running, press Ctrl+C to stop[/bold blue]")
        try:
            await asyncio.Event().wait()
        finally:
            for w in workers:
                await w.close()

    try:
        asyncio.run(run_workers())
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 Workers stopped[/yellow]")


# Rules

@cli.group()
def rules():
    """Rule authoring helpers."""


@rules.command(name="test")
@click.argument('user_id')
@click.argument('rule_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def test_rule(ctx, user_id, rule_file):
    """Dry-run a rule draft (JSON) against a user's recent entries."""
    try:
        draft = RuleDraft.model_validate_json(rule_file.read_text(encoding="utf-8"))
    except ValueError as e:
        _fail(f"Invalid rule draft: {e}")

    result = _app(ctx).rule_engine.test_rule(user_id, draft)

    table = Table(title=f"Rule '{draft.name}' on {result.total_entries} recent entries")
    table.add_column("Condition", style="cyan")
    table.add_column("Matches", style="green")
    for condition_result in result.conditions:
        c = condition_result.condition
        table.add_row(f"{c.field} {c.operator} {c.value!r}", str(condition_result.match_count))
    table.add_row("[bold]all conditions[/bold]", f"[bold]{result.match_count}[/bold]")
    console.print(table)


if __name__ == "__main__":
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 FeedLens interrupted by user[/yellow]")
        sys.exit(130)
    except FeedLensError as e:
        console.print(f"\n[bold red]❌ {e.user_message}[/bold red]")
        sys.exit(1)
