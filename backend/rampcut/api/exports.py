"""Export API endpoints.

Submitting returns immediately with a QUEUED job; the render runs
out-of-band (in-process background task or Celery worker, per
``settings.export_backend``) and callers poll the job.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Query, status
from fastapi.responses import FileResponse

from rampcut.api.deps import DbSession, ExportServiceDep
from rampcut.config import get_settings
from rampcut.engine.evaluator import evaluate_at
from rampcut.engine.timeline import OverlapPolicy
from rampcut.schemas.export import ExportJobResponse, ExportRequest
from rampcut.services.export_service import run_job
from rampcut.services.project_loader import load_project

router = APIRouter()
logger = logging.getLogger(__name__)


def dispatch_export(background_tasks: BackgroundTasks, job_id: str) -> None:
    """Hand a newly created job to the configured executor."""
    settings = get_settings()
    if settings.export_backend == "celery":
        from rampcut.tasks.export_task import run_export_task

        run_export_task.delay(job_id)
        logger.info(f"[EXPORT] Job {job_id} sent to Celery")
    else:
        background_tasks.add_task(run_job, job_id)
        logger.info(f"[EXPORT] Job {job_id} scheduled as background task")


@router.post(
    "/projects/{project_id}/export",
    response_model=ExportJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def submit_export(
    project_id: str,
    service: ExportServiceDep,
    background_tasks: BackgroundTasks,
    export_request: ExportRequest | None = None,
) -> ExportJobResponse:
    """Queue an export. Resubmitting a ``request_id`` returns the original job."""
    request_id = export_request.request_id if export_request else None
    job, created = service.submit(project_id, request_id)
    if created:
        dispatch_export(background_tasks, job.id)
    return ExportJobResponse.model_validate(job)


@router.get("/exports/{job_id}", response_model=ExportJobResponse)
def get_export(job_id: str, service: ExportServiceDep) -> ExportJobResponse:
    return ExportJobResponse.model_validate(service.get_status(job_id))


@router.get("/projects/{project_id}/exports", response_model=list[ExportJobResponse])
def list_exports(project_id: str, service: ExportServiceDep) -> list[ExportJobResponse]:
    """Export jobs of a project, newest first."""
    return [ExportJobResponse.model_validate(job) for job in service.list_for_project(project_id)]


@router.get("/exports/{job_id}/download")
def download_export(job_id: str, service: ExportServiceDep) -> FileResponse:
    path = service.get_download_path(job_id)
    return FileResponse(path, media_type="video/mp4", filename=f"export_{job_id}.mp4")


@router.post("/exports/{job_id}/cancel", response_model=ExportJobResponse)
def cancel_export(job_id: str, service: ExportServiceDep) -> ExportJobResponse:
    return ExportJobResponse.model_validate(service.cancel(job_id))


@router.get("/projects/{project_id}/evaluate")
def evaluate_project(
    project_id: str,
    db: DbSession,
    t: float = Query(..., ge=0, description="Timeline time in seconds"),
) -> dict:
    """Active layers at timeline time ``t`` (preview driver)."""
    project, _ = load_project(db, project_id)
    policy = OverlapPolicy(get_settings().export_video_overlap_policy)
    return evaluate_at(project, t, video_overlap=policy).to_dict()
