"""
Background job CLI.

Runs the reconciliation jobs outside the API process, either once (for an
external cron) or as a long-running scheduler.

\b
Examples:
    xscard-jobs list-jobs
    xscard-jobs run past_cleanup --dry-run
    xscard-jobs materialize --template tpl_01hgw2bbg0000000000000001
    xscard-jobs schedule
    xscard-jobs serve --reload
"""

import asyncio
import json
import sys
from typing import Optional

import click
import uvicorn

from backend.src.config.settings import get_settings
from backend.src.db.database import SessionLocal, dispose_engine, init_db
from backend.src.jobs import JobRegistry, build_registry, restore_archived_user
from backend.src.jobs.base import JobSummary
from backend.src.services.event_service import EventService
from backend.src.services.exceptions import ServiceError
from backend.src.services.identity_provider import NoopIdentityProvider
from backend.src.services.payment_gateway import PaystackGateway
from backend.src.utils.logging_config import init_logging


def _echo_error(message: str) -> None:
    click.echo(click.style("Error: ", fg="red", bold=True) + message, err=True)


def _echo_summary(summary: JobSummary) -> None:
    click.echo(json.dumps(summary.to_dict(), indent=2))


async def _with_registry(callback):
    settings = get_settings()
    gateway = PaystackGateway.from_settings(settings) if settings.paystack_configured else None
    registry = build_registry(
        settings,
        SessionLocal,
        gateway=gateway,
        identity_provider=NoopIdentityProvider(),
    )
    try:
        return await callback(registry)
    finally:
        await registry.stop_all()
        if gateway is not None:
            await gateway.close()


@click.group()
@click.option("--create-tables", is_flag=True, default=False, help="Create missing tables first.")
@click.pass_context
def cli(ctx: click.Context, create_tables: bool) -> None:
    """
    XSCard background jobs.

    Use 'xscard-jobs COMMAND --help' for more information on a command.
    """
    ctx.ensure_object(dict)
    init_logging()
    if create_tables:
        init_db()
    ctx.call_on_close(dispose_engine)


@cli.command("list-jobs")
def list_jobs() -> None:
    """List the jobs enabled by the current configuration."""
    async def _list(registry: JobRegistry):
        for scheduler in registry.all():
            click.echo(f"{scheduler.name:<26} {scheduler.trigger.describe()}")

    asyncio.run(_with_registry(_list))


@cli.command("run")
@click.argument("job_name")
@click.option("--dry-run", is_flag=True, default=False, help="Report actions without applying them.")
def run(job_name: str, dry_run: bool) -> None:
    """Run one job once and print its summary.

    Exits with status 1 when the job failed or reported item errors.
    """
    async def _run(registry: JobRegistry) -> Optional[JobSummary]:
        try:
            scheduler = registry.get(job_name)
        except ServiceError:
            _echo_error(f"Unknown job '{job_name}'. Available: {', '.join(registry.names())}")
            return None
        return await scheduler.run_once(dry_run=dry_run)

    summary = asyncio.run(_with_registry(_run))
    if summary is None:
        sys.exit(2)
    _echo_summary(summary)
    if summary.failed or summary.errors:
        sys.exit(1)


@cli.command("materialize")
@click.option("--template", "template_guid", default=None, help="Only this template (tpl_xxx).")
@click.option("--dry-run", is_flag=True, default=False, help="Report actions without applying them.")
def materialize(template_guid: Optional[str], dry_run: bool) -> None:
    """Roll the instance window forward for one or every recurring template."""
    if template_guid is None:
        async def _all(registry: JobRegistry) -> JobSummary:
            return await registry.get("materialization").run_once(dry_run=dry_run)

        summary = asyncio.run(_with_registry(_all))
        _echo_summary(summary)
        if summary.failed or summary.errors:
            sys.exit(1)
        return

    db = SessionLocal()
    try:
        service = EventService(db, get_settings())
        template = service.get_template(template_guid)
        if dry_run:
            plan = service.instances.plan(template)
            click.echo(f"{len(plan.occurrences)} occurrence(s) in window")
            for instance in plan.to_remove:
                click.echo(f"would remove {instance.instance_id}")
            for instance_id in plan.conflicts:
                click.echo(f"conflict: {instance_id} has registrations")
            return
        result = service.instances.materialize(template)
    except ServiceError as e:
        _echo_error(str(e))
        sys.exit(1)
    finally:
        db.close()

    click.echo(
        f"{result.created} created, {result.updated} updated, {result.unchanged} unchanged, "
        f"{result.removed} removed, {result.cancelled} cancelled"
    )
    for error in result.errors:
        _echo_error(error)
    if result.errors:
        sys.exit(1)


@cli.command("restore-user")
@click.argument("archive_guid")
def restore_user(archive_guid: str) -> None:
    """Re-create a user from an archive snapshot (arc_xxx)."""
    db = SessionLocal()
    try:
        user = restore_archived_user(db, archive_guid)
        click.echo(f"Restored {user.user_id}")
    except ServiceError as e:
        _echo_error(str(e))
        sys.exit(1)
    finally:
        db.close()


@cli.command("schedule")
def schedule() -> None:
    """Run every enabled job on its schedule until interrupted."""
    async def _forever(registry: JobRegistry):
        registry.start_all()
        click.echo(f"Scheduling: {', '.join(registry.names())} (Ctrl-C to stop)")
        await asyncio.Event().wait()

    try:
        asyncio.run(_with_registry(_forever))
    except KeyboardInterrupt:
        click.echo("Stopped")


@cli.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", default=8000, show_default=True, type=int, help="Bind port.")
@click.option("--reload", is_flag=True, default=False, help="Restart on code changes (development only).")
def serve(host: str, port: int, reload: bool) -> None:
    """Start the events API with uvicorn."""
    click.echo(f"Starting XSCard API on http://{host}:{port} (docs at /docs)")
    try:
        uvicorn.run(
            "backend.src.main:app",
            host=host,
            port=port,
            reload=reload,
            log_level="info",
        )
    except KeyboardInterrupt:
        click.echo("Server stopped")


if __name__ == "__main__":
    cli()
