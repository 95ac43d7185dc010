from unittest.mock import AsyncMock

import pytest

from converter.config import settings
from converter.errors import EngineNotConfigured, StorageError, SubmissionError
from converter.models.schemas import ConversionSettings
from converter.services.job_state import JobStatus
from converter.services.submission_service import SubmissionService
from fakes import FakeEngine


@pytest.fixture
def service(store, storage, fake_engine):
    return SubmissionService(store=store, storage=storage, engine=fake_engine)


async def test_create_job_uploads_source(service, store, storage):
    job = await service.create_job("Holiday.MOV", b"source-bytes", "MP4", ConversionSettings())

    assert job.status == "uploading"
    assert job.output_format == "mp4"
    assert job.input_format == "mov"
    assert job.input_path == f"uploads/{job.id}.mov"
    assert job.progress == 20.0
    assert await storage.download(settings.UPLOAD_BUCKET, job.input_path) == b"source-bytes"


async def test_upload_failure_fails_job(store, fake_engine):
    broken_storage = AsyncMock()
    broken_storage.upload.side_effect = StorageError("Could not store video-uploads/x: disk full")
    service = SubmissionService(store=store, storage=broken_storage, engine=fake_engine)

    job = await service.create_job("clip.mp4", b"data", "webm", ConversionSettings())

    assert job.status == "failed"
    assert "disk full" in job.error_message
    assert fake_engine.submitted == []


async def test_submit_moves_job_to_converting(service, store, fake_engine):
    job = await service.create_job(
        "clip.mov", b"source", "webm", ConversionSettings(remove_audio=True)
    )

    handle = await service.submit(job.id)

    assert handle.assembly_id == "abc"
    job = await store.get(job.id)
    assert job.status == "converting"
    assert job.progress == settings.PROGRESS_LOW_WATERMARK

    spec, source, filename = fake_engine.submitted[0]
    assert spec.output_format == "webm"
    assert spec.ffmpeg["an"] == 1
    assert source == b"source"
    assert filename == "clip.mov"


@pytest.mark.parametrize("error, expected", [
    (SubmissionError("Assembly creation failed: 500"), "Assembly creation failed: 500"),
    (EngineNotConfigured("Video processing service not configured."), "not configured"),
])
async def test_rejected_submission_never_converts(store, storage, error, expected):
    engine = FakeEngine(submit_error=error)
    service = SubmissionService(store=store, storage=storage, engine=engine)
    job = await service.create_job("clip.mov", b"source", "mp4", ConversionSettings())

    with pytest.raises(type(error)):
        await service.submit(job.id)

    job = await store.get(job.id)
    assert job.status == "failed"
    assert expected in job.error_message


async def test_submit_requires_uploaded_job(service, store):
    job = await service.create_job("clip.mov", b"source", "mp4", ConversionSettings())
    await store.transition(job.id, JobStatus.FAILED, error_message="gone")

    with pytest.raises(Exception, match="not ready for submission"):
        await service.submit(job.id)
