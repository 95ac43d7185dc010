"""Durable job record storage with guarded status transitions."""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional
from sqlalchemy import select, update, delete, func
from sqlalchemy.ext.asyncio import async_sessionmaker
from converter.database import AsyncSessionLocal
from converter.models.job import Job
from converter.models.schemas import ConversionSettings, JobStatusResponse
from converter.services.job_state import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    JobStatus,
    sources_for,
)

logger = logging.getLogger(__name__)

_ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]
_TERMINAL_VALUES = [s.value for s in TERMINAL_STATUSES]


class JobStore:
    """
    Keyed storage for conversion jobs.

    Status changes go through ``transition``, whose UPDATE only matches rows
    in a legal source state, so once a job is terminal no later write can
    change it. Progress only ever moves up while the job is active.
    """

    def __init__(self, session_factory: async_sessionmaker = AsyncSessionLocal, publisher=None):
        self.session_factory = session_factory
        self.publisher = publisher

    def set_publisher(self, publisher):
        """Set the event publisher (WebSocket manager) for job updates."""
        self.publisher = publisher

    async def create(
        self,
        input_filename: str,
        output_format: str,
        settings: ConversionSettings,
        input_format: str = "",
    ) -> Job:
        """
        Create a job record in the ``uploading`` state.

        Args:
            input_filename: Original name of the uploaded file
            output_format: Requested output format (lowercase extension)
            settings: Settings snapshot for this submission
            input_format: Source extension, if known

        Returns:
            The persisted job
        """
        job = Job(
            input_filename=input_filename,
            input_format=input_format,
            output_format=output_format,
            settings=json.dumps(settings.model_dump(by_alias=True)),
            status=JobStatus.UPLOADING.value,
            progress=0.0,
        )
        async with self.session_factory() as db:
            db.add(job)
            await db.commit()
            await db.refresh(job)

        logger.info(f"Created job {job.id} ({input_filename} -> {output_format})")
        await self._publish_status(job.id, job.status)
        return job

    async def get(self, job_id: str) -> Optional[Job]:
        async with self.session_factory() as db:
            result = await db.execute(select(Job).where(Job.id == job_id))
            return result.scalar_one_or_none()

    async def get_status(self, job_id: str) -> Optional[JobStatusResponse]:
        """Return only the client-facing status fields of a job."""
        job = await self.get(job_id)
        if job is None:
            return None
        return JobStatusResponse.model_validate(job)

    async def list_jobs(
        self,
        status: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """
        List jobs, newest first.

        Args:
            status: Optional status filter
            limit: Maximum number of jobs to return
            offset: Offset for pagination

        Returns:
            Tuple of (jobs, total matching count)
        """
        query = select(Job).order_by(Job.created_at.desc())
        if status:
            query = query.where(Job.status == status)

        async with self.session_factory() as db:
            count_query = select(func.count()).select_from(query.subquery())
            total = (await db.execute(count_query)).scalar() or 0

            result = await db.execute(query.limit(limit).offset(offset))
            jobs = list(result.scalars().all())

        return jobs, total

    async def update(self, job_id: str, **fields: Any) -> bool:
        """Partial update of arbitrary columns. Does not check status rules."""
        async with self.session_factory() as db:
            result = await db.execute(update(Job).where(Job.id == job_id).values(**fields))
            await db.commit()
            return result.rowcount > 0

    async def transition(self, job_id: str, status, **fields: Any) -> bool:
        """
        Move a job to ``status`` if the transition is legal from its current state.

        Args:
            job_id: Job ID
            status: Target status
            **fields: Extra columns written in the same statement

        Returns:
            True if the job changed, False if it was missing or already in a
            state that does not allow this transition
        """
        target = JobStatus(status)
        sources = [s.value for s in sources_for(target)]
        values = {"status": target.value, **fields}

        if target in TERMINAL_STATUSES:
            values.setdefault("completed_at", datetime.now(timezone.utc))
        if target == JobStatus.READY:
            values["progress"] = 100.0

        async with self.session_factory() as db:
            result = await db.execute(
                update(Job)
                .where(Job.id == job_id, Job.status.in_(sources))
                .values(**values)
            )
            await db.commit()
            changed = result.rowcount > 0

        if not changed:
            logger.warning(f"Ignored transition of job {job_id} to '{target.value}'")
            return False

        logger.info(f"Job {job_id} -> {target.value}")
        await self._publish_status(
            job_id,
            target.value,
            error=values.get("error_message"),
            output_path=values.get("output_path"),
        )
        if target == JobStatus.READY:
            await self._publish_progress(job_id, 100.0)
        return True

    async def advance_progress(self, job_id: str, percent: float) -> bool:
        """
        Raise progress to ``percent`` unless it is already at or above it.

        Only applies while the job is active; a terminal job is never touched.
        """
        percent = max(0.0, min(100.0, float(percent)))
        async with self.session_factory() as db:
            result = await db.execute(
                update(Job)
                .where(
                    Job.id == job_id,
                    Job.status.in_(_ACTIVE_VALUES),
                    Job.progress < percent,
                )
                .values(progress=percent)
            )
            await db.commit()
            changed = result.rowcount > 0

        if changed:
            await self._publish_progress(job_id, percent)
        return changed

    async def bump_progress(self, job_id: str, step: float, ceiling: float) -> Optional[float]:
        """
        Read the current progress and raise it by ``step``, capped at ``ceiling``.

        Returns:
            The new progress value, or None if nothing was written
        """
        async with self.session_factory() as db:
            result = await db.execute(
                select(Job.progress, Job.status).where(Job.id == job_id)
            )
            row = result.one_or_none()

        if row is None or row.status not in _ACTIVE_VALUES:
            return None

        current = row.progress or 0.0
        if current >= ceiling:
            return None

        target = min(ceiling, current + step)
        if await self.advance_progress(job_id, target):
            return target
        return None

    async def fail_orphaned(self, message: str) -> int:
        """
        Fail every job left active by a previous process.

        Remote handles are never persisted, so such jobs cannot be resumed.

        Returns:
            Number of jobs marked failed
        """
        async with self.session_factory() as db:
            result = await db.execute(
                update(Job)
                .where(Job.status.in_(_ACTIVE_VALUES))
                .values(
                    status=JobStatus.FAILED.value,
                    error_message=message,
                    completed_at=datetime.now(timezone.utc),
                )
            )
            await db.commit()
            return result.rowcount

    async def delete(self, job_id: str) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(delete(Job).where(Job.id == job_id))
            await db.commit()
            return result.rowcount > 0

    async def delete_finished(self) -> int:
        """Delete all terminal jobs. Returns the number removed."""
        async with self.session_factory() as db:
            result = await db.execute(delete(Job).where(Job.status.in_(_TERMINAL_VALUES)))
            await db.commit()
            return result.rowcount

    async def _publish_status(self, job_id: str, status: str, error: Optional[str] = None,
                              output_path: Optional[str] = None):
        if self.publisher:
            await self.publisher.publish_status(job_id, status, error=error, output_path=output_path)

    async def _publish_progress(self, job_id: str, progress: float):
        if self.publisher:
            await self.publisher.publish_progress(job_id, progress)


# Global job store instance
job_store = JobStore()
