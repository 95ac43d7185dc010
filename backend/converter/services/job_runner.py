"""Runs one background task per in-flight conversion job."""
import asyncio
import logging
from typing import Dict, Optional
from converter.errors import ConversionError, sanitize_error_message
from converter.services.job_state import JobStatus
from converter.services.job_store import JobStore, job_store
from converter.services.reconciler import Reconciler, reconciler
from converter.services.submission_service import SubmissionService, submission_service

logger = logging.getLogger(__name__)


class JobRunner:
    """
    Starts, tracks and cancels conversion tasks.

    Each task submits its job to the engine and then reconciles it until a
    terminal state. The remote handle only lives inside the task.
    """

    def __init__(
        self,
        submission: SubmissionService = submission_service,
        reconciler: Reconciler = reconciler,
        store: JobStore = job_store,
    ):
        self.submission = submission
        self.reconciler = reconciler
        self.store = store
        self.tasks: Dict[str, asyncio.Task] = {}
        self.cancel_reasons: Dict[str, str] = {}

    def start(self, job_id: str) -> asyncio.Task:
        """
        Start processing a job in the background.

        Starting a job that already has a running task returns that task, so
        a job never has more than one remote operation.

        Args:
            job_id: Job ID

        Returns:
            The job's task
        """
        existing = self.tasks.get(job_id)
        if existing and not existing.done():
            logger.warning(f"Job {job_id} is already running")
            return existing

        task = asyncio.create_task(self._run(job_id), name=f"conversion-{job_id}")
        self.tasks[job_id] = task
        task.add_done_callback(lambda _: self._forget(job_id, task))
        logger.info(f"Started job {job_id}. Active jobs: {len(self.tasks)}")
        return task

    def _forget(self, job_id: str, task: asyncio.Task):
        if self.tasks.get(job_id) is task:
            del self.tasks[job_id]
        self.cancel_reasons.pop(job_id, None)

    async def _run(self, job_id: str):
        try:
            try:
                handle = await self.submission.submit(job_id)
            except ConversionError:
                # Submission already marked the job failed
                return
            await self.reconciler.run(job_id, handle)

        except asyncio.CancelledError:
            reason = self.cancel_reasons.get(job_id, "Cancelled")
            await self.store.transition(job_id, JobStatus.CANCELLED, error_message=reason)
            logger.info(f"Job {job_id} cancelled: {reason}")
            raise

        except Exception as e:
            logger.error(f"Error processing job {job_id}: {e}", exc_info=True)
            await self.store.transition(
                job_id, JobStatus.FAILED, error_message=sanitize_error_message(str(e))
            )

    def is_active(self, job_id: str) -> bool:
        task = self.tasks.get(job_id)
        return task is not None and not task.done()

    async def cancel(self, job_id: str, reason: str = "Cancelled by user") -> bool:
        """
        Cancel a running job and wait for its task to finish.

        Returns:
            True if a running task was cancelled, False if none was running
        """
        task = self.tasks.get(job_id)
        if task is None or task.done():
            return False

        logger.info(f"Cancelling job {job_id}")
        self.cancel_reasons[job_id] = reason
        task.cancel()
        await asyncio.wait([task])
        return True

    async def wait(self, job_id: str) -> Optional[asyncio.Task]:
        """Wait for a job's task to finish, if one is running."""
        task = self.tasks.get(job_id)
        if task is not None:
            await asyncio.wait([task])
        return task

    async def shutdown(self):
        """Cancel every running job."""
        job_ids = list(self.tasks)
        for job_id in job_ids:
            await self.cancel(job_id, reason="Cancelled by server shutdown")
        if job_ids:
            logger.info(f"Cancelled {len(job_ids)} running jobs on shutdown")

    def get_status(self) -> dict:
        return {
            "active_jobs": len(self.tasks),
            "job_ids": sorted(self.tasks),
        }


# Global job runner instance
job_runner = JobRunner()
