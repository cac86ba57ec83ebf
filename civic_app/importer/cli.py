"""
``flask importer`` commands for politician imports, import logs, elections,
and the background worker.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import current_app
from flask.cli import AppGroup
from sqlalchemy.exc import NoResultFound

from civic_app.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from civic_app.importer.errors import ConstraintViolation, MalformedFile
from civic_app.importer.pipeline.election_service import ElectionEventService
from civic_app.importer.pipeline.service import ImportService
from civic_app.importer.utils import cleanup_upload, resolve_upload_directory
from civic_app.utils.importer import is_importer_enabled


def _require_enabled() -> None:
    if not is_importer_enabled(current_app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. Enable it to run importer CLI commands."
        )


@click.group(name="importer", cls=AppGroup)
def importer_cli():
    """Politician import and position history commands."""


def get_disabled_importer_group() -> click.Group:
    """
    Return a minimal command group that informs the operator the importer is disabled.
    """

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _resolve_celery() -> Celery:
    celery_app = get_celery_app(current_app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true and the "
            "importer package initialises before running worker commands."
        )
    return celery_app


def _read_file(file_path: Path) -> bytes:
    try:
        return file_path.read_bytes()
    except OSError as exc:
        raise click.ClickException(f"Unable to read {file_path}: {exc}") from exc


def _echo_errors(errors, limit: int = 50) -> None:
    for error in errors[:limit]:
        line = f"  row {error.row} [{error.field}] {error.message}"
        if error.suggestions:
            line += f" (did you mean: {', '.join(error.suggestions)})"
        click.echo(line)
    if len(errors) > limit:
        click.echo(f"  ... {len(errors) - limit} more")


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


@importer_cli.command("validate")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON.")
def importer_validate(file_path: Path, as_json: bool):
    """Validate FILE_PATH without importing anything."""
    _require_enabled()
    try:
        result = ImportService().validate_import(_read_file(file_path))
    except MalformedFile as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(result.as_dict(), indent=2))
    else:
        click.echo(f"Rows: {result.total_rows}  valid: {result.valid_rows}  invalid: {result.invalid_rows}")
        _echo_errors(result.errors)
    if result.invalid_rows:
        raise SystemExit(1)


@importer_cli.command("run")
@click.argument("file_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--election-id", type=int, help="Election that triggered these results (keeps history).")
@click.option("--validate-only", is_flag=True, help="Record a dry-run log without touching position data.")
@click.option("--inline", is_flag=True, help="Run in this process instead of queueing on the worker.")
def importer_run(file_path: Path, election_id: Optional[int], validate_only: bool, inline: bool):
    """Import politician positions from FILE_PATH."""
    _require_enabled()
    service = ImportService()
    try:
        started = service.start_import(
            _read_file(file_path),
            file_path.name,
            election_id=election_id,
            validate_only=validate_only,
            inline=True if inline else None,
        )
    except NoResultFound as exc:
        raise click.ClickException(str(exc)) from exc
    except RuntimeError as exc:
        raise click.ClickException(str(exc)) from exc

    payload = started.to_dict()
    if started.run is not None:
        payload["result"].pop("errors", None)
    current_app.logger.info(
        "Import started via CLI",
        extra={"importer_log_id": started.log.id, "importer_task_id": started.task_id},
    )
    click.echo(json.dumps(payload, indent=2))


@importer_cli.command("status")
@click.argument("import_log_id", type=int)
def importer_status(import_log_id: int):
    """Show counters and status for an import log."""
    _require_enabled()
    service = ImportService()
    try:
        summary = service.recorder.get_summary(import_log_id)
    except NoResultFound as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(summary.to_dict(), indent=2))


@importer_cli.command("error-report")
@click.argument("import_log_id", type=int)
@click.argument("output", type=click.Path(dir_okay=False, writable=True, path_type=Path))
def importer_error_report(import_log_id: int, output: Path):
    """Write the error report workbook for an import log to OUTPUT."""
    _require_enabled()
    try:
        content = ImportService().export_error_report(import_log_id)
    except NoResultFound as exc:
        raise click.ClickException(str(exc)) from exc
    output.write_bytes(content)
    click.echo(f"Wrote error report for import {import_log_id} to {output}")


@importer_cli.command("template")
@click.argument("output", type=click.Path(dir_okay=False, writable=True, path_type=Path))
def importer_template(output: Path):
    """Write a blank upload template to OUTPUT."""
    _require_enabled()
    output.write_bytes(ImportService().generate_template())
    click.echo(f"Wrote import template to {output}")


@importer_cli.command("cancel")
@click.argument("import_log_id", type=int)
def importer_cancel(import_log_id: int):
    """Ask a running import to stop after its current row."""
    _require_enabled()
    try:
        log = ImportService().cancel_import(import_log_id)
    except NoResultFound as exc:
        raise click.ClickException(str(exc)) from exc
    if log.status.is_terminal:
        click.echo(f"Import {import_log_id} already {log.status.value}; nothing to cancel.")
    else:
        click.echo(f"Cancellation requested for import {import_log_id}.")


@importer_cli.command("cleanup-uploads")
@click.option(
    "--max-age-hours",
    default=72,
    show_default=True,
    type=int,
    help="Remove importer uploads older than the specified number of hours.",
)
def importer_cleanup_uploads(max_age_hours: int):
    """Delete stale importer upload files."""
    _require_enabled()
    uploads_dir = resolve_upload_directory(current_app)
    cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
    removed = 0
    for path in uploads_dir.iterdir():
        if not path.is_file():
            continue
        modified = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)
        if modified < cutoff:
            cleanup_upload(path)
            removed += 1
    click.echo(f"Removed {removed} upload file(s) older than {max_age_hours} hours from {uploads_dir}.")


# ---------------------------------------------------------------------------
# Elections
# ---------------------------------------------------------------------------


@importer_cli.group(name="election")
def election_group():
    """Move election events through their lifecycle."""


@election_group.command("archive")
@click.argument("election_id", type=int)
@click.option("--position-id", "position_ids", type=int, multiple=True, required=True)
def election_archive(election_id: int, position_ids: tuple[int, ...]):
    """End the current holders of the given positions for ELECTION_ID."""
    _require_enabled()
    try:
        result = ElectionEventService().archive_current_holders(election_id, position_ids)
    except (NoResultFound, ConstraintViolation) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Archived {result.archived} current holder(s) for election {election_id}.")


@election_group.command("complete")
@click.argument("election_id", type=int)
def election_complete(election_id: int):
    """Mark ELECTION_ID completed."""
    _require_enabled()
    try:
        election = ElectionEventService().complete_election(election_id)
    except (NoResultFound, ConstraintViolation) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Election {election.id} is {election.status.value}.")


@election_group.command("cancel")
@click.argument("election_id", type=int)
def election_cancel(election_id: int):
    """Mark ELECTION_ID cancelled."""
    _require_enabled()
    try:
        election = ElectionEventService().cancel_election(election_id)
    except (NoResultFound, ConstraintViolation) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Election {election.id} is {election.status.value}.")


@election_group.command("stats")
@click.argument("election_id", type=int)
def election_stats(election_id: int):
    """Print what ELECTION_ID created, archived, and imported as JSON."""
    _require_enabled()
    try:
        stats = ElectionEventService().get_statistics(election_id)
    except NoResultFound as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(stats.to_dict(), indent=2))


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


@importer_cli.group(name="worker")
def worker_group():
    """Manage the importer background worker."""
    if not current_app.config.get("IMPORTER_WORKER_ENABLED"):
        click.echo(
            "Warning: IMPORTER_WORKER_ENABLED is false. Commands will still run, "
            "but imports will execute inline until the flag is enabled.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list.")
def worker_run(loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the Celery worker in the current process."""
    _require_enabled()
    celery_app = _resolve_celery()
    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting importer worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
def worker_ping(timeout: float):
    """Check worker connectivity with the heartbeat task."""
    _require_enabled()
    celery_app = _resolve_celery()
    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'importer.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    click.echo(json.dumps(payload, indent=2))
