"""Job management API endpoints."""

import json
import logging

from typing import Optional
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import RedirectResponse
from pydantic import ValidationError
from converter.config import settings as app_settings
from converter.formats import DEFAULT_TABLES
from converter.models.schemas import (
    ConversionSettings,
    JobCreateResponse,
    JobListResponse,
    JobResponse,
    JobStatusResponse,
)
from converter.services.job_runner import JobRunner, job_runner
from converter.services.job_state import ACTIVE_STATUSES, JobStatus, is_terminal
from converter.services.job_store import JobStore, job_store
from converter.services.storage_service import StorageService, storage_service
from converter.services.submission_service import SubmissionService, submission_service

logger = logging.getLogger(__name__)

router = APIRouter()

_ACTIVE_VALUES = {s.value for s in ACTIVE_STATUSES}


def get_job_store() -> JobStore:
    return job_store


def get_job_runner() -> JobRunner:
    return job_runner


def get_submission_service() -> SubmissionService:
    return submission_service


def get_storage_service() -> StorageService:
    return storage_service


def _parse_settings(raw_settings: str) -> ConversionSettings:
    try:
        raw = json.loads(raw_settings or "{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Settings must be a JSON object")

    if not isinstance(raw, dict):
        raise HTTPException(status_code=400, detail="Settings must be a JSON object")

    try:
        return ConversionSettings.model_validate(raw)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid settings: {e.errors()[0]['msg']}")


@router.post("", response_model=JobCreateResponse, status_code=202)
async def create_job(
    file: UploadFile = File(...),
    output_format: str = Form(...),
    raw_settings: str = Form("{}", alias="settings"),
    submission: SubmissionService = Depends(get_submission_service),
    runner: JobRunner = Depends(get_job_runner),
):
    """
    Upload a source file and start converting it.

    Args:
        file: Source media file
        output_format: Target format extension
        raw_settings: JSON-encoded conversion settings

    Returns:
        Created job ID and its initial status
    """
    fmt = output_format.strip().lower().lstrip(".")
    if not DEFAULT_TABLES.is_supported(fmt):
        raise HTTPException(status_code=400, detail=f"Unsupported output format '{output_format}'")

    if not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")

    conversion_settings = _parse_settings(raw_settings)

    data = await file.read()
    max_size = app_settings.MAX_UPLOAD_MB * 1024 * 1024
    if len(data) > max_size:
        raise HTTPException(
            status_code=413, detail=f"File too large. Maximum size: {app_settings.MAX_UPLOAD_MB} MB"
        )

    try:
        job = await submission.create_job(file.filename, data, fmt, conversion_settings)
    except Exception as e:
        logger.error(f"Error creating job: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Could not create conversion job")

    if job.status == JobStatus.UPLOADING.value:
        runner.start(job.id)

    return JobCreateResponse(job_id=job.id, status=job.status)


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status: Optional[str] = Query(None, description="Filter by status"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    store: JobStore = Depends(get_job_store),
):
    """List jobs, newest first, with optional status filtering."""
    try:
        jobs, total = await store.list_jobs(status=status, limit=limit, offset=offset)
        return JobListResponse(
            jobs=[JobResponse.model_validate(job) for job in jobs],
            total=total,
        )
    except Exception as e:
        logger.error(f"Error listing jobs: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.delete("/finished")
async def clear_finished_jobs(store: JobStore = Depends(get_job_store)):
    """Delete all ready, failed and cancelled jobs."""
    deleted_count = await store.delete_finished()
    logger.info(f"Cleared {deleted_count} finished jobs")
    return {"deleted_count": deleted_count}


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, store: JobStore = Depends(get_job_store)):
    job = await store.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse.model_validate(job)


@router.get("/{job_id}/status", response_model=JobStatusResponse)
async def get_job_status(job_id: str, store: JobStore = Depends(get_job_store)):
    """
    Client polling endpoint.

    Returns only status, progress, output_path and error_message.
    """
    status = await store.get_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return status


@router.get("/{job_id}/download")
async def download_output(
    job_id: str,
    store: JobStore = Depends(get_job_store),
    storage: StorageService = Depends(get_storage_service),
):
    """Redirect to the public URL of a finished job's output."""
    job = await store.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    if job.status != JobStatus.READY.value or not job.output_path:
        raise HTTPException(status_code=400, detail="Output is not ready yet")

    return RedirectResponse(
        storage.public_url(app_settings.OUTPUT_BUCKET, job.output_path),
        status_code=307,
    )


@router.delete("/{job_id}")
async def delete_or_cancel_job(
    job_id: str,
    store: JobStore = Depends(get_job_store),
    runner: JobRunner = Depends(get_job_runner),
):
    """
    Cancel an in-flight job, or delete a finished job from history.
    """
    job = await store.get(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    if job.status in _ACTIVE_VALUES:
        if not await runner.cancel(job_id):
            # No task owns it (e.g. left over from a previous process)
            await store.transition(job_id, JobStatus.CANCELLED, error_message="Cancelled by user")
        logger.info(f"Cancelled job {job_id}")
        return {"success": True, "message": f"Job {job_id} cancelled"}

    if is_terminal(job.status):
        await store.delete(job_id)
        logger.info(f"Deleted job {job_id} from history")
        return {"success": True, "message": f"Job {job_id} deleted"}

    raise HTTPException(status_code=400, detail=f"Cannot delete job with status '{job.status}'")
