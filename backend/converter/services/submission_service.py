"""Creates conversion jobs and hands them to the processing engine."""

import json
import logging
from pathlib import Path
from converter.config import settings
from converter.errors import ConversionError, StorageError, sanitize_error_message
from converter.models.job import Job
from converter.models.schemas import ConversionSettings
from converter.services.engine_client import EngineClient, RemoteOperationHandle, engine_client
from converter.services.job_state import JobStatus
from converter.services.job_store import JobStore, job_store
from converter.services.pipeline_compiler import PipelineCompiler, default_compiler
from converter.services.storage_service import StorageService, storage_service

logger = logging.getLogger(__name__)


class SubmissionService:
    """Owns the ``uploading -> converting`` half of a job's lifecycle."""

    def __init__(
        self,
        store: JobStore = job_store,
        storage: StorageService = storage_service,
        engine: EngineClient = engine_client,
        compiler: PipelineCompiler = default_compiler,
    ):
        self.store = store
        self.storage = storage
        self.engine = engine
        self.compiler = compiler

    async def create_job(
        self,
        filename: str,
        data: bytes,
        output_format: str,
        conversion_settings: ConversionSettings,
    ) -> Job:
        """
        Record a new job and upload its source file.

        Args:
            filename: Original file name
            data: Source file contents
            output_format: Requested output format
            conversion_settings: Settings snapshot

        Returns:
            The job; its status is ``failed`` if the upload did not succeed
        """
        fmt = output_format.strip().lower().lstrip(".")
        input_format = Path(filename).suffix.lower().lstrip(".")

        job = await self.store.create(
            input_filename=filename,
            output_format=fmt,
            settings=conversion_settings,
            input_format=input_format,
        )
        input_path = f"uploads/{job.id}.{input_format or 'bin'}"

        await self.store.advance_progress(job.id, 10)
        try:
            await self.storage.upload(settings.UPLOAD_BUCKET, input_path, data)
        except StorageError as e:
            logger.error(f"Upload failed for job {job.id}: {e}")
            await self.store.transition(job.id, JobStatus.FAILED, error_message=str(e))
            return await self.store.get(job.id)

        await self.store.update(job.id, input_path=input_path)
        await self.store.advance_progress(job.id, 20)
        return await self.store.get(job.id)

    async def submit(self, job_id: str) -> RemoteOperationHandle:
        """
        Start the remote operation for an uploaded job.

        On success the job moves to ``converting`` with progress raised to the
        low watermark. Any failure marks the job ``failed`` and re-raises.

        Args:
            job_id: Job ID

        Returns:
            Handle to the remote operation

        Raises:
            ConversionError: If the source cannot be read or the engine
                rejects the job
        """
        job = await self.store.get(job_id)
        if job is None:
            raise ConversionError(f"Job {job_id} not found")
        if job.status != JobStatus.UPLOADING.value or not job.input_path:
            raise ConversionError(f"Job {job_id} is not ready for submission (status '{job.status}')")

        try:
            source = await self.storage.download(settings.UPLOAD_BUCKET, job.input_path)
            await self.store.advance_progress(job_id, 30)

            raw_settings = json.loads(job.settings) if job.settings else {}
            spec = self.compiler.compile(job.output_format, raw_settings)

            handle = await self.engine.submit(spec, source, job.input_filename)
        except ConversionError as e:
            logger.error(f"Submission failed for job {job_id}: {e}")
            await self.store.transition(
                job_id, JobStatus.FAILED, error_message=sanitize_error_message(str(e))
            )
            raise

        if not await self.store.transition(job_id, JobStatus.CONVERTING):
            # Cancelled while the upload to the engine was in flight
            raise ConversionError(f"Job {job_id} left 'uploading' before submission finished")

        await self.store.advance_progress(job_id, settings.PROGRESS_LOW_WATERMARK)
        logger.info(f"Job {job_id} submitted to processing engine")
        return handle


# Global submission service instance
submission_service = SubmissionService()
