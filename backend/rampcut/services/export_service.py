"""Export job state machine and job runner.

Job lifecycle: ``QUEUED -> RUNNING -> COMPLETE | FAILED``.

- ``ExportService`` is request-scoped (one DB session per request): submit,
  status, listing, cancellation and download lookup.
- ``run_job`` executes one job out-of-band (FastAPI background task or
  Celery worker). Every write it makes is a single UPDATE statement in its
  own transaction, guarded by the expected current status, so pollers never
  observe a half-applied transition and a finished job is never re-run.
"""

import asyncio
import logging
import os
import uuid
from contextlib import AbstractContextManager
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rampcut.engine.timeline import AssetInfo, Project
from rampcut.exceptions import (
    ExportJobNotFoundError,
    ExportNotReadyError,
    RampcutError,
)
from rampcut.models.database import get_sync_db
from rampcut.models.export_job import ExportJob, ExportStatus
from rampcut.render.ffmpeg import FFmpegRunner
from rampcut.render.pipeline import JobLogAdapter, RenderPipeline
from rampcut.render.segment_planner import validate_project
from rampcut.services.project_loader import load_project

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractContextManager[Session]]

# Persist progress only when it moved at least this much (or the stage changed)
PROGRESS_WRITE_STEP = 0.5


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ExportService:
    """Request-scoped operations on export jobs."""

    def __init__(self, db: Session):
        self.db = db

    def _get(self, job_id: str) -> ExportJob:
        job = self.db.get(ExportJob, job_id)
        if job is None:
            raise ExportJobNotFoundError(job_id)
        return job

    def _find_by_request(self, request_id: str) -> ExportJob | None:
        return self.db.execute(
            select(ExportJob).where(ExportJob.request_id == request_id)
        ).scalar_one_or_none()

    def submit(self, project_id: str, request_id: str | None = None) -> tuple[ExportJob, bool]:
        """Create a QUEUED job, or return the existing job for ``request_id``.

        Returns:
            ``(job, created)``; callers schedule ``run_job`` only when ``created``

        Raises:
            ProjectNotFoundError: If the project does not exist
            ValidationError: If the timeline cannot be rendered
        """
        request_id = request_id or str(uuid.uuid4())

        existing = self._find_by_request(request_id)
        if existing is not None:
            logger.info(f"[EXPORT] Duplicate request {request_id}, returning job {existing.id}")
            return existing, False

        # Reject unrenderable timelines before a job exists
        project, assets = load_project(self.db, project_id)
        validate_project(project, assets)

        job = ExportJob(project_id=project_id, request_id=request_id)
        self.db.add(job)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race on the unique request_id: the first insert wins
            self.db.rollback()
            winner = self._find_by_request(request_id)
            if winner is None:
                raise
            logger.info(f"[EXPORT] Concurrent request {request_id} resolved to job {winner.id}")
            return winner, False

        self.db.refresh(job)
        logger.info(f"[EXPORT] Queued job {job.id} for project {project_id}")
        return job, True

    def get_status(self, job_id: str) -> ExportJob:
        return self._get(job_id)

    def list_for_project(self, project_id: str) -> list[ExportJob]:
        """Jobs of a project, newest first."""
        result = self.db.execute(
            select(ExportJob)
            .where(ExportJob.project_id == project_id)
            .order_by(ExportJob.created_at.desc())
        )
        return list(result.scalars().all())

    def cancel(self, job_id: str) -> ExportJob:
        """Request cancellation.

        A QUEUED job fails immediately; a RUNNING job is flagged and the
        pipeline stops at its next poll. Terminal jobs are returned unchanged.
        """
        job = self._get(job_id)
        self.db.refresh(job)
        if ExportStatus(job.status).is_terminal:
            return job
        self.db.execute(
            update(ExportJob)
            .where(ExportJob.id == job_id, ExportJob.status == ExportStatus.QUEUED.value)
            .values(
                status=ExportStatus.FAILED.value,
                cancel_requested=True,
                error="Cancelled before start",
                completed_at=_now(),
            )
        )
        self.db.execute(
            update(ExportJob)
            .where(ExportJob.id == job_id, ExportJob.status == ExportStatus.RUNNING.value)
            .values(cancel_requested=True)
        )
        self.db.commit()
        job = self._get(job_id)
        self.db.refresh(job)
        logger.info(f"[EXPORT] Cancel requested for job {job_id} (status {job.status})")
        return job

    def get_download_path(self, job_id: str) -> str:
        """Output file of a COMPLETE job.

        Raises:
            ExportNotReadyError: If the job is not COMPLETE or its file is gone
        """
        job = self._get(job_id)
        if job.status != ExportStatus.COMPLETE.value or not job.output_path:
            raise ExportNotReadyError()
        if not os.path.isfile(job.output_path):
            raise ExportNotReadyError("Export file is no longer available")
        return job.output_path


# =============================================================================
# Job runner
# =============================================================================


class JobStore:
    """Single-statement status writes for one running job."""

    def __init__(self, job_id: str, session_factory: SessionFactory = get_sync_db):
        self.job_id = job_id
        self.session_factory = session_factory
        self._last_progress = 0.0
        self._last_stage: str | None = None

    def claim(self) -> bool:
        """QUEUED -> RUNNING. False when the job is gone or not QUEUED."""
        with self.session_factory() as db:
            result = db.execute(
                update(ExportJob)
                .where(ExportJob.id == self.job_id, ExportJob.status == ExportStatus.QUEUED.value)
                .values(
                    status=ExportStatus.RUNNING.value,
                    started_at=_now(),
                    current_stage="Starting",
                    updated_at=_now(),
                )
            )
            return result.rowcount == 1

    def load_project(self) -> tuple[Project, dict[str, AssetInfo]]:
        with self.session_factory() as db:
            project_id = db.execute(
                select(ExportJob.project_id).where(ExportJob.id == self.job_id)
            ).scalar_one()
            return load_project(db, project_id)

    def progress(self, value: float, stage: str) -> None:
        """Advance persisted progress; never moves it backwards."""
        if value - self._last_progress < PROGRESS_WRITE_STEP and stage == self._last_stage and value < 100:
            return
        self._last_progress = value
        self._last_stage = stage
        with self.session_factory() as db:
            db.execute(
                update(ExportJob)
                .where(
                    ExportJob.id == self.job_id,
                    ExportJob.status == ExportStatus.RUNNING.value,
                    ExportJob.progress < value,
                )
                .values(progress=value, current_stage=stage, updated_at=_now())
            )

    def cancel_requested(self) -> bool:
        with self.session_factory() as db:
            return bool(
                db.execute(
                    select(ExportJob.cancel_requested).where(ExportJob.id == self.job_id)
                ).scalar_one_or_none()
            )

    def complete(self, output_path: str) -> None:
        with self.session_factory() as db:
            db.execute(
                update(ExportJob)
                .where(ExportJob.id == self.job_id, ExportJob.status == ExportStatus.RUNNING.value)
                .values(
                    status=ExportStatus.COMPLETE.value,
                    progress=100.0,
                    current_stage="Complete",
                    output_path=output_path,
                    completed_at=_now(),
                    updated_at=_now(),
                )
            )

    def fail(self, error: str) -> None:
        # progress is left as it was
        with self.session_factory() as db:
            db.execute(
                update(ExportJob)
                .where(ExportJob.id == self.job_id, ExportJob.status == ExportStatus.RUNNING.value)
                .values(
                    status=ExportStatus.FAILED.value,
                    error=error or "Unknown error",
                    completed_at=_now(),
                    updated_at=_now(),
                )
            )


class ProgressWriter:
    """Persists pipeline progress from a single task.

    The pipeline reports progress synchronously on the event loop; ``report``
    only enqueues, and one drain task hands each write to a worker thread.
    """

    def __init__(self, store: JobStore):
        self.store = store
        self._queue: asyncio.Queue[tuple[float, str] | None] = asyncio.Queue()
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._drain())

    def report(self, value: float, stage: str) -> None:
        self._queue.put_nowait((value, stage))

    async def _drain(self) -> None:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            await asyncio.to_thread(self.store.progress, *item)

    async def close(self) -> None:
        """Flush pending writes and stop the drain task."""
        if self._task is None:
            return
        self._queue.put_nowait(None)
        await self._task
        self._task = None


async def run_job(
    job_id: str,
    *,
    session_factory: SessionFactory = get_sync_db,
    runner: FFmpegRunner | None = None,
) -> str | None:
    """Run one export job to a terminal state.

    A job that is not QUEUED (already running elsewhere, finished, cancelled
    before start, or deleted) is left untouched. Every database call runs in
    a worker thread so the event loop keeps serving requests meanwhile.

    Returns:
        The job's final status, or None when nothing was run
    """
    log = JobLogAdapter(logger, {"job_id": job_id})
    store = JobStore(job_id, session_factory)

    if not await asyncio.to_thread(store.claim):
        log.info("[EXPORT] Job is not QUEUED, skipping")
        return None

    writer = ProgressWriter(store)
    pipeline = RenderPipeline(job_id, runner=runner, log=log)
    pipeline.set_progress_callback(writer.report)
    writer.start()

    try:
        try:
            project, assets = await asyncio.to_thread(store.load_project)
            output_path = await pipeline.render(
                project,
                assets,
                cancel_check=lambda: asyncio.to_thread(store.cancel_requested),
            )
        finally:
            await writer.close()
    except asyncio.CancelledError:
        await asyncio.to_thread(store.fail, "Cancelled: worker shut down")
        raise
    except RampcutError as e:
        log.error(f"[EXPORT] Failed: {e.message}")
        await asyncio.to_thread(store.fail, e.message)
        return ExportStatus.FAILED.value
    except Exception as e:
        log.exception("[EXPORT] Unexpected failure")
        await asyncio.to_thread(store.fail, f"Internal error: {e}")
        raise

    await asyncio.to_thread(store.complete, output_path)
    log.info(f"[EXPORT] Complete: {output_path}")
    return ExportStatus.COMPLETE.value
