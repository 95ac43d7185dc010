import asyncio

import pytest

from converter.config import settings
from converter.errors import SubmissionError
from converter.models.schemas import ConversionSettings
from converter.services.job_runner import JobRunner
from converter.services.job_state import JobStatus
from converter.services.job_store import JobStore
from converter.services.submission_service import SubmissionService
from fakes import RUNNING, FakeEngine, completed


@pytest.fixture
def make_runner(store, storage, make_reconciler):
    def _make(engine, **reconciler_options):
        submission = SubmissionService(store=store, storage=storage, engine=engine)
        return JobRunner(
            submission=submission,
            reconciler=make_reconciler(engine, **reconciler_options),
            store=store,
        )
    return _make


async def _uploaded_job(runner):
    return await runner.submission.create_job("clip.mov", b"source", "mp4", ConversionSettings())


async def test_runner_takes_job_to_ready(store, make_runner):
    runner = make_runner(FakeEngine([RUNNING, completed()]))
    job = await _uploaded_job(runner)

    task = runner.start(job.id)
    await runner.wait(job.id)

    assert task.done()
    assert not runner.is_active(job.id)
    job = await store.get(job.id)
    assert job.status == "ready"
    assert job.output_path == f"outputs/{job.id}.mp4"


async def test_start_twice_reuses_task(make_runner):
    runner = make_runner(FakeEngine([RUNNING]), max_wait=10.0)
    job = await _uploaded_job(runner)

    first = runner.start(job.id)
    second = runner.start(job.id)
    assert first is second

    await runner.cancel(job.id)


async def test_cancel_marks_job_cancelled(store, make_runner):
    engine = FakeEngine([RUNNING])
    runner = make_runner(engine, max_wait=10.0)
    job = await _uploaded_job(runner)

    runner.start(job.id)
    while engine.poll_count == 0:
        await asyncio.sleep(0.001)

    assert await runner.cancel(job.id)

    job = await store.get(job.id)
    assert job.status == "cancelled"
    assert job.error_message == "Cancelled by user"
    assert job.output_path is None
    assert runner.get_status()["active_jobs"] == 0


async def test_cancel_unknown_job(make_runner):
    runner = make_runner(FakeEngine())
    assert not await runner.cancel("missing")


async def test_failed_submission_ends_task_quietly(store, make_runner):
    runner = make_runner(FakeEngine(submit_error=SubmissionError("Assembly creation failed: 401")))
    job = await _uploaded_job(runner)

    runner.start(job.id)
    await runner.wait(job.id)

    job = await store.get(job.id)
    assert job.status == "failed"
    assert job.error_message == "Assembly creation failed: 401"


async def test_shutdown_cancels_everything(store, make_runner):
    runner = make_runner(FakeEngine([RUNNING]), max_wait=10.0)
    jobs = [await _uploaded_job(runner) for _ in range(2)]
    for job in jobs:
        runner.start(job.id)
    await asyncio.sleep(0.01)

    await runner.shutdown()

    for job in jobs:
        assert (await store.get(job.id)).error_message == "Cancelled by server shutdown"


async def test_cancel_before_ready_commit_removes_output(session_factory, storage, make_reconciler):
    committing = asyncio.Event()

    class SlowReadyStore(JobStore):
        async def transition(self, job_id, status, **fields):
            if status == JobStatus.READY:
                committing.set()
                await asyncio.sleep(10)
            return await super().transition(job_id, status, **fields)

    store = SlowReadyStore(session_factory)
    engine = FakeEngine([completed()])
    reconciler = make_reconciler(engine)
    reconciler.store = store
    runner = JobRunner(
        submission=SubmissionService(store=store, storage=storage, engine=engine),
        reconciler=reconciler,
        store=store,
    )
    job = await _uploaded_job(runner)

    runner.start(job.id)
    await asyncio.wait_for(committing.wait(), timeout=5)
    assert await runner.cancel(job.id)

    job = await store.get(job.id)
    assert job.status == "cancelled"
    assert job.output_path is None
    assert not await storage.delete(settings.OUTPUT_BUCKET, f"outputs/{job.id}.mp4")
