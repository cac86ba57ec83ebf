"""
Celery tasks for the politician importer worker.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from civic_app.importer.pipeline.import_log import ImportLogRecorder
from civic_app.importer.pipeline.service import ImportService


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """
    Heartbeat task used by ``flask importer worker ping`` and the health endpoint.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="importer.pipeline.ingest_positions", bind=True)
def ingest_positions(
    self,
    *,
    import_log_id: int,
    file_path: str,
    validate_only: bool = False,
    keep_file: bool = False,
) -> dict[str, Any]:
    """
    Run a queued politician import against the stored upload.

    Row-level problems end up in the import log; anything else marks the log
    failed and is re-raised so Celery records the task failure.
    """
    current_app.logger.info(
        "Importer worker picked up import %s",
        import_log_id,
        extra={"importer_log_id": import_log_id, "importer_task_id": self.request.id},
    )
    try:
        result = ImportService().run_import(
            import_log_id,
            file_path,
            validate_only=validate_only,
            keep_file=keep_file,
        )
    except Exception as exc:
        ImportLogRecorder().fail(import_log_id, str(exc))
        current_app.logger.exception(
            "Importer worker failed import %s",
            import_log_id,
            extra={"importer_log_id": import_log_id, "importer_error": str(exc)},
        )
        raise

    payload = result.to_dict()
    payload.pop("errors", None)
    payload["error_count"] = len(result.errors)
    return payload
