"""Operator CLI for task tracking: retry, cleanup, monitoring and manual checks."""
import sys
import time
from contextlib import contextmanager
from typing import Iterator, Optional

import click
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.errors import BaseServiceError
from app.core.locks import get_lock_backend
from app.core.logging import configure_logging, get_logger
from app.db.session import SessionLocal, init_db
from app.models.monitor import MonitorSnapshot
from app.services.tracking.cleanup import CleanupService
from app.services.tracking.dispatch import CommitBoundDispatcher
from app.services.tracking.monitor import MonitorService
from app.services.tracking.retry import RetryReport, RetryService
from app.services.tracking.stale import StaleTaskFailer
from app.services.tracking.status_check import StatusCheckService

logger = get_logger(__name__)


def get_dispatcher():
    """Celery dispatcher, imported on demand so read-only commands skip the broker setup."""
    from app.services.worker import CeleryDispatcher

    return CeleryDispatcher()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Commit on success, roll back on any error."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def operator_errors() -> Iterator[None]:
    """Turn service errors into a printed message and exit status 1."""
    try:
        yield
    except BaseServiceError as e:
        raise click.ClickException(e.message) from e


def _print_retry_report(report: RetryReport) -> None:
    verb = "Would retry" if report.dry_run else "Retried"
    click.echo(f"{verb}: {len(report.retried)}")
    for correlation_id in report.retried:
        click.echo(f"  - {correlation_id}")
    if report.skipped:
        click.echo(f"Skipped: {len(report.skipped)}")
        for item in report.skipped:
            click.echo(f"  - {item['correlation_id']}: {item['reason']}")


@click.group()
@click.version_option(version=get_settings().app_version, prog_name="tracker")
def cli() -> None:
    """Generation task tracker CLI."""


# =============================================================================
# tasks
# =============================================================================
@cli.group()
def tasks() -> None:
    """Task maintenance commands."""


@tasks.command("fail-stale")
@click.option(
    "--timeout",
    type=click.IntRange(min=1),
    default=None,
    help="Minutes after which an in-flight task is stale (default from settings).",
)
@click.option("--dry-run", is_flag=True, help="Only report what would be failed.")
def fail_stale(timeout: Optional[int], dry_run: bool) -> None:
    """Mark pending/processing tasks older than the timeout as failed."""
    with session_scope() as db:
        result = StaleTaskFailer(db).run(timeout_minutes=timeout, dry_run=dry_run)

    if dry_run:
        click.echo(f"Found {result['found']} stale tasks (dry run, nothing changed)")
    else:
        click.echo(f"Marked {result['failed']} stale tasks as failed")
    for correlation_id in result["task_ids"]:
        click.echo(f"  - {correlation_id}")


# =============================================================================
# queue
# =============================================================================
@cli.group()
def queue() -> None:
    """Queue and retry tooling."""


@queue.command("retry-failed-tasks")
@click.option("--age", type=click.IntRange(min=1), default=24, show_default=True, help="Retry tasks failed within X hours.")
@click.option("--limit", type=click.IntRange(min=1), default=50, show_default=True, help="Maximum number of tasks to retry.")
@click.option("--task", "task_id", default=None, help="Retry one task by correlation id.")
@click.option("--generation", "generation_id", default=None, help="Retry all failed tasks of a generation.")
@click.option("--dry-run", is_flag=True, help="Show what would be retried without executing.")
@click.option("--force", is_flag=True, help="Retry regardless of error kind, retry count or status.")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
def retry_failed_tasks(
    age: int,
    limit: int,
    task_id: Optional[str],
    generation_id: Optional[str],
    dry_run: bool,
    force: bool,
    yes: bool,
) -> None:
    """Retry failed generation tasks with filtering."""
    with operator_errors(), session_scope() as db:
        service = RetryService(db, CommitBoundDispatcher(db, get_dispatcher()))

        if task_id:
            report = service.retry_task(task_id, force=force, dry_run=dry_run)
        elif generation_id:
            report = service.retry_generation(generation_id, force=force, dry_run=dry_run)
        else:
            candidates = service.failed_candidates(age_hours=age, limit=limit)
            if not candidates:
                click.echo(f"No failed tasks in the last {age} hours")
                return

            analysis = service.failure_analysis(age_hours=age)
            click.echo("Failure analysis:")
            for kind, count in analysis.items():
                click.echo(f"  {kind:<16} {count}")

            if not dry_run and not yes:
                click.confirm(f"Retry up to {len(candidates)} failed tasks?", abort=True)
            report = service.retry_failed(age_hours=age, limit=limit, force=force, dry_run=dry_run)

    _print_retry_report(report)


@queue.command("cleanup")
@click.option("--failed-jobs-days", type=click.IntRange(min=1), default=None, help="Delete failed-job records older than N days.")
@click.option("--content-days", type=click.IntRange(min=1), default=None, help="Archive completed content older than N days.")
@click.option("--generation-days", type=click.IntRange(min=1), default=None, help="Archive finished generations older than N days.")
@click.option("--cache", "include_cache", is_flag=True, help="Also clear sweep lock, last-run and rate counter keys.")
@click.option("--dry-run", is_flag=True, help="Only count what would be cleaned.")
@click.option("--force", is_flag=True, help="Skip confirmation.")
def cleanup(
    failed_jobs_days: Optional[int],
    content_days: Optional[int],
    generation_days: Optional[int],
    include_cache: bool,
    dry_run: bool,
    force: bool,
) -> None:
    """Delete aged failed-job records and archive aged content and generations."""
    if not dry_run and not force:
        click.confirm("Run cleanup now?", abort=True)

    with session_scope() as db:
        service = CleanupService(db, get_lock_backend() if include_cache else None)
        report = service.run(
            failed_jobs_days=failed_jobs_days,
            content_days=content_days,
            generation_days=generation_days,
            include_cache=include_cache,
            dry_run=dry_run,
        )

    prefix = "[dry run] " if dry_run else ""
    click.echo(f"{prefix}Failed jobs deleted: {report.failed_jobs_deleted}")
    click.echo(f"{prefix}Content archived: {report.content_archived}")
    click.echo(f"{prefix}Generations archived: {report.generations_archived}")
    if include_cache:
        click.echo(f"{prefix}Cache keys cleared: {report.cache_keys_cleared}")


def _render_snapshot(snapshot: MonitorSnapshot) -> None:
    click.echo(f"Queue monitor  {snapshot.timestamp.isoformat(timespec='seconds')}")
    click.echo("")
    click.echo("Queues")
    for name, depth in snapshot.queues.items():
        click.echo(f"  {name:<18} {'n/a' if depth is None else depth}")

    click.echo("Tasks")
    for status, count in snapshot.tasks.items():
        click.echo(f"  {status:<18} {count}")

    click.echo("Generations")
    for status, count in snapshot.generations.items():
        click.echo(f"  {status:<18} {count}")

    health = snapshot.health
    label = click.style("HEALTHY", fg="green") if health.healthy else click.style("UNHEALTHY", fg="red")
    click.echo("Health")
    click.echo(f"  {'status':<18} {label}")
    click.echo(f"  {'failed_jobs':<18} {health.failed_jobs}")
    click.echo(f"  {'bulk_check':<18} {'running' if health.bulk_check_running else 'idle'}")
    click.echo(f"  {'recent_errors':<18} {health.recent_errors}")
    click.echo(f"  {'success_rate':<18} {health.success_rate:.1f}%")


@queue.command("monitor")
@click.option("--once", is_flag=True, help="Print one snapshot and exit.")
@click.option("--json", "as_json", is_flag=True, help="Print the snapshot as JSON (implies --once).")
@click.option("--refresh", type=click.IntRange(min=1), default=5, show_default=True, help="Refresh interval in seconds.")
def monitor(once: bool, as_json: bool, refresh: int) -> None:
    """Show queue depth, status counts and health."""
    lock_backend = get_lock_backend()
    while True:
        with session_scope() as db:
            snapshot = MonitorService(db, lock_backend).snapshot()

        if as_json:
            click.echo(snapshot.model_dump_json(indent=2))
            return

        _render_snapshot(snapshot)
        if once:
            return
        time.sleep(refresh)
        click.clear()


@queue.command("status-check")
@click.option("--task", "task_id", default=None, help="Check one task by correlation id.")
@click.option("--generation", "generation_id", default=None, help="Check all tasks of a generation.")
@click.option("--pending", is_flag=True, help="Check all in-flight tasks of the last --hours hours.")
@click.option("--hours", type=click.IntRange(min=1), default=6, show_default=True)
@click.option("--start", "start_sweep", is_flag=True, help="Start a bulk sweep now.")
@click.option("--stop", "stop_sweep", is_flag=True, help="Force-release the sweep lock.")
@click.option("--force", is_flag=True, help="Also check tasks that are already terminal.")
def status_check(
    task_id: Optional[str],
    generation_id: Optional[str],
    pending: bool,
    hours: int,
    start_sweep: bool,
    stop_sweep: bool,
    force: bool,
) -> None:
    """Dispatch status checks on demand or control the bulk sweep."""
    lock_backend = get_lock_backend()

    with operator_errors(), session_scope() as db:
        service = StatusCheckService(db, CommitBoundDispatcher(db, get_dispatcher()), lock_backend)

        if stop_sweep:
            removed = service.stop_sweep()
            click.echo("Sweep lock released" if removed else "No sweep lock was held")
        elif start_sweep:
            service.start_sweep()
            click.echo("Bulk sweep dispatched")
        elif task_id:
            service.check_task(task_id, force=force)
            click.echo(f"Status check dispatched for {task_id}")
        elif generation_id:
            dispatched = service.check_generation(generation_id, force=force)
            click.echo(f"Status checks dispatched: {len(dispatched)}")
        elif pending:
            dispatched = service.check_pending(hours=hours)
            click.echo(f"Status checks dispatched: {len(dispatched)}")
        else:
            status = service.sweep_status()
            state = "running" if status["running"] else "idle"
            click.echo(f"Bulk sweep: {state}")
            if status["ttl"] is not None:
                click.echo(f"Lock expires in {status['ttl']}s")


def main() -> None:
    """Console script entry point."""
    configure_logging(get_settings(), stream=sys.stderr)
    init_db()
    cli()


if __name__ == "__main__":
    main()
