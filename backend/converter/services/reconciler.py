"""Server-side polling loop that mirrors a remote assembly into its job record."""

import asyncio
import logging
from typing import Optional
import httpx
from sqlalchemy.exc import SQLAlchemyError
from converter.config import settings
from converter.errors import (
    ConversionError,
    ReconciliationTimeout,
    RemoteProcessingError,
    ResultFetchError,
    sanitize_error_message,
)
from converter.formats import DEFAULT_TABLES, FormatTables
from converter.services.engine_client import (
    EngineClient,
    RemoteOperationHandle,
    RemoteState,
    RemoteStatus,
    engine_client,
)
from converter.services.job_state import JobStatus
from converter.services.job_store import JobStore, job_store
from converter.services.storage_service import StorageService, storage_service

logger = logging.getLogger(__name__)


def _describe_duration(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} seconds"


class Reconciler:
    """
    Waits for one remote operation and writes its outcome to the job store.

    Polls densely for the first ``dense_window`` seconds and sparsely after
    that, up to ``max_wait``. While the engine reports the job as running,
    progress is bumped towards ``progress_ceiling``; a separate nudger task
    does the same on its own timer so long encodes keep moving. The nudger
    is always stopped before the terminal write.
    """

    def __init__(
        self,
        store: JobStore = job_store,
        storage: StorageService = storage_service,
        engine: EngineClient = engine_client,
        tables: FormatTables = DEFAULT_TABLES,
        dense_interval: float = None,
        sparse_interval: float = None,
        dense_window: float = None,
        max_wait: float = None,
        progress_ceiling: float = None,
        poll_step: float = None,
        nudge_interval: float = None,
        nudge_step: float = None,
    ):
        self.store = store
        self.storage = storage
        self.engine = engine
        self.tables = tables
        self.dense_interval = dense_interval if dense_interval is not None else settings.POLL_DENSE_INTERVAL
        self.sparse_interval = sparse_interval if sparse_interval is not None else settings.POLL_SPARSE_INTERVAL
        self.dense_window = dense_window if dense_window is not None else settings.POLL_DENSE_WINDOW
        self.max_wait = max_wait if max_wait is not None else settings.POLL_MAX_WAIT
        self.progress_ceiling = progress_ceiling if progress_ceiling is not None else settings.PROGRESS_CEILING
        self.poll_step = poll_step if poll_step is not None else settings.PROGRESS_POLL_STEP
        self.nudge_interval = nudge_interval if nudge_interval is not None else settings.PROGRESS_NUDGE_INTERVAL
        self.nudge_step = nudge_step if nudge_step is not None else settings.PROGRESS_NUDGE_STEP

    async def run(self, job_id: str, handle: RemoteOperationHandle) -> JobStatus:
        """
        Block until the remote operation finishes or the maximum wait elapses.

        Args:
            job_id: Job ID
            handle: Remote operation to follow

        Returns:
            The terminal status written for the job
        """
        job = await self.store.get(job_id)
        if job is None:
            raise ConversionError(f"Job {job_id} not found")

        logger.info(f"Reconciling job {job_id} with {handle.assembly_id or handle.url}")

        try:
            nudger = asyncio.create_task(self._nudge_progress(job_id), name=f"nudge-{job_id}")
            try:
                status = await self._await_completion(job_id, handle)
            finally:
                await self._stop_nudger(nudger)

            output_path = await self._store_result(job_id, job.output_format, status)

        except ReconciliationTimeout as e:
            logger.error(f"Job {job_id}: {e}")
            await self.store.transition(job_id, JobStatus.FAILED, error_message=str(e))
            return JobStatus.FAILED

        except ConversionError as e:
            logger.error(f"Job {job_id} failed: {e}")
            await self.store.transition(
                job_id, JobStatus.FAILED, error_message=sanitize_error_message(str(e))
            )
            return JobStatus.FAILED

        except Exception as e:
            logger.error(f"Unexpected error reconciling job {job_id}: {e}", exc_info=True)
            await self.store.transition(
                job_id,
                JobStatus.FAILED,
                error_message=sanitize_error_message(f"Conversion failed: {e}"),
            )
            return JobStatus.FAILED

        try:
            committed = await self.store.transition(job_id, JobStatus.READY, output_path=output_path)
        except (asyncio.CancelledError, Exception):
            # No ready job will ever point at this output
            await self.storage.delete(settings.OUTPUT_BUCKET, output_path)
            raise

        if not committed:
            logger.warning(f"Job {job_id} finished remotely but was already terminal")
            await self.storage.delete(settings.OUTPUT_BUCKET, output_path)
            job = await self.store.get(job_id)
            return JobStatus(job.status) if job else JobStatus.FAILED

        logger.info(f"Job {job_id} ready: {output_path}")
        return JobStatus.READY

    async def _await_completion(self, job_id: str, handle: RemoteOperationHandle) -> RemoteStatus:
        loop = asyncio.get_running_loop()
        started = loop.time()

        while loop.time() - started < self.max_wait:
            status: Optional[RemoteStatus] = None
            try:
                status = await self.engine.poll(handle)
            except (httpx.HTTPError, ValueError) as e:
                # Reachability blip; the remote job is still running
                logger.warning(f"Transient poll error for job {job_id}: {e}")

            if status is not None:
                if status.state == RemoteState.COMPLETED:
                    return status
                if status.state == RemoteState.ERRORED:
                    raise RemoteProcessingError(status.error_detail or "Remote processing failed")
                await self._bump(job_id, self.poll_step)

            elapsed = loop.time() - started
            await asyncio.sleep(self.dense_interval if elapsed < self.dense_window else self.sparse_interval)

        raise ReconciliationTimeout(f"Processing timed out after {_describe_duration(self.max_wait)}")

    async def _store_result(self, job_id: str, output_format: str, status: RemoteStatus) -> str:
        if not status.result_url:
            raise ResultFetchError("Processing engine returned no output files")

        await self.store.advance_progress(job_id, 90)
        data = await self.engine.fetch_result(status.result_url)

        output_path = f"outputs/{job_id}.{output_format}"
        await self.storage.upload(
            settings.OUTPUT_BUCKET,
            output_path,
            data,
            content_type=self.tables.mime_type(output_format),
        )
        return output_path

    async def _bump(self, job_id: str, step: float):
        try:
            await self.store.bump_progress(job_id, step, self.progress_ceiling)
        except SQLAlchemyError as e:
            logger.warning(f"Could not update progress for job {job_id}: {e}")

    async def _nudge_progress(self, job_id: str):
        while True:
            await asyncio.sleep(self.nudge_interval)
            await self._bump(job_id, self.nudge_step)

    @staticmethod
    async def _stop_nudger(nudger: asyncio.Task):
        nudger.cancel()
        # wait() never re-raises the nudger's CancelledError
        await asyncio.wait([nudger])


# Global reconciler instance
reconciler = Reconciler()
