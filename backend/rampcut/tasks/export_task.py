"""Celery task for export rendering."""

import asyncio

from rampcut.celery_app import celery_app
from rampcut.services.export_service import run_job


@celery_app.task(bind=True, max_retries=0)
def run_export_task(self, job_id: str) -> dict:
    """
    Execute an export job as a Celery task.

    Args:
        job_id: ID of the ExportJob to process

    Returns:
        dict with the job's final status (``skipped`` if it was not QUEUED)
    """
    status = asyncio.run(run_job(job_id))
    return {"job_id": job_id, "status": status or "skipped"}
