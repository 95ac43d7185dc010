import asyncio

import httpx
import pytest

from converter.client.poller import (
    ConversionPoller,
    HttpStatusSource,
    PollerState,
    StoreStatusSource,
)
from converter.models.schemas import ConversionSettings, JobStatusResponse
from converter.services.job_state import JobStatus


def status(state="converting", progress=40.0, output_path=None, error_message=None):
    return JobStatusResponse(
        status=state, progress=progress, output_path=output_path, error_message=error_message
    )


class ScriptedSource:
    """Returns the scripted reads in order; the last one repeats."""

    def __init__(self, reads):
        self.reads = list(reads)
        self.calls = 0

    async def fetch(self, job_id):
        self.calls += 1
        item = self.reads.pop(0) if len(self.reads) > 1 else self.reads[0]
        if isinstance(item, Exception):
            raise item
        return item


class Recorder:
    def __init__(self):
        self.progress = []
        self.completed = []
        self.errors = []

    def on_progress(self, value):
        self.progress.append(value)

    async def on_complete(self, output_path):
        self.completed.append(output_path)

    def on_error(self, message):
        self.errors.append(message)

    def poller(self, source, job_id="job-1", **kwargs):
        return ConversionPoller(
            job_id,
            source,
            on_progress=self.on_progress,
            on_complete=self.on_complete,
            on_error=self.on_error,
            interval=kwargs.pop("interval", 0.001),
            **kwargs,
        )


async def test_first_poll_is_immediate():
    source = ScriptedSource([status()])
    poller = Recorder().poller(source, interval=60)

    assert poller.start()
    await asyncio.sleep(0.01)

    assert source.calls == 1
    poller.stop()
    await poller.wait()


async def test_completes_on_ready():
    recorder = Recorder()
    source = ScriptedSource([
        status(progress=40.0),
        status(progress=55.0),
        status("ready", 100.0, output_path="outputs/job-1.mp4"),
    ])
    poller = recorder.poller(source)

    poller.start()
    await poller.wait()

    assert poller.state == PollerState.STOPPED
    assert recorder.completed == ["outputs/job-1.mp4"]
    assert recorder.errors == []
    assert recorder.progress == [40.0, 55.0, 100.0]
    assert source.calls == 3


async def test_ready_without_output_keeps_polling():
    recorder = Recorder()
    source = ScriptedSource([
        status("ready", 100.0),
        status("ready", 100.0, output_path="outputs/job-1.mp4"),
    ])
    poller = recorder.poller(source)

    poller.start()
    await poller.wait()

    assert recorder.completed == ["outputs/job-1.mp4"]
    assert source.calls == 2


@pytest.mark.parametrize("read, message", [
    (status("failed", 40.0, error_message="Processing timed out after 5 minutes"),
     "Processing timed out after 5 minutes"),
    (status("failed", 40.0), "Conversion failed"),
    (status("cancelled", 40.0, error_message="Cancelled by user"), "Cancelled by user"),
])
async def test_reports_errors(read, message):
    recorder = Recorder()
    poller = recorder.poller(ScriptedSource([read]))

    poller.start()
    await poller.wait()

    assert recorder.errors == [message]
    assert recorder.completed == []
    assert poller.state == PollerState.STOPPED


async def test_transient_read_errors_keep_polling():
    recorder = Recorder()
    source = ScriptedSource([
        httpx.ConnectError("offline"),
        ValueError("garbled"),
        None,
        status("ready", 100.0, output_path="outputs/job-1.mp4"),
    ])
    poller = recorder.poller(source)

    poller.start()
    await poller.wait()

    assert source.calls == 4
    assert recorder.completed == ["outputs/job-1.mp4"]
    assert recorder.errors == []


async def test_reported_progress_never_decreases():
    recorder = Recorder()
    source = ScriptedSource([
        status(progress=50.0),
        status(progress=45.0),
        status(progress=70.0),
        status("failed", 60.0, error_message="boom"),
    ])
    poller = recorder.poller(source)

    poller.start()
    await poller.wait()

    assert recorder.progress == [50.0, 50.0, 70.0, 70.0]


async def test_failing_callback_does_not_stop_polling():
    completed = []

    def on_progress(value):
        raise RuntimeError("ui gone")

    source = ScriptedSource([
        status(progress=50.0),
        status(progress=60.0),
        status("ready", 100.0, output_path="outputs/job-1.mp4"),
    ])
    poller = ConversionPoller(
        "job-1", source, on_progress=on_progress, on_complete=completed.append, interval=0.001
    )

    poller.start()
    await poller.wait()

    assert source.calls == 3
    assert completed == ["outputs/job-1.mp4"]
    assert poller.state == PollerState.STOPPED


async def test_still_polling_after_callback_error():
    def on_progress(value):
        raise RuntimeError("ui gone")

    source = ScriptedSource([status(progress=50.0)])
    poller = ConversionPoller("job-1", source, on_progress=on_progress, interval=0.001)

    poller.start()
    await asyncio.sleep(0.03)

    assert poller.state == PollerState.POLLING
    assert source.calls > 1
    poller.stop()
    await poller.wait()


async def test_stop_cancels_and_cannot_restart():
    source = ScriptedSource([status()])
    poller = Recorder().poller(source, interval=0.005)

    poller.start()
    await asyncio.sleep(0.02)
    poller.stop()
    await poller.wait()
    calls = source.calls

    await asyncio.sleep(0.02)
    assert source.calls == calls
    assert poller.state == PollerState.STOPPED
    assert not poller.start()


@pytest.mark.parametrize("job_id, enabled", [(None, True), ("", True), ("job-1", False)])
async def test_does_not_start_without_job_or_when_disabled(job_id, enabled):
    source = ScriptedSource([status()])
    poller = Recorder().poller(source, job_id=job_id, enabled=enabled)

    assert not poller.start()
    assert poller.state == PollerState.IDLE
    assert source.calls == 0


async def test_context_manager_stops_on_exit():
    source = ScriptedSource([status()])
    async with Recorder().poller(source) as poller:
        await asyncio.sleep(0.01)
        assert poller.state == PollerState.POLLING
    assert poller.state == PollerState.STOPPED


async def test_store_status_source(store):
    job = await store.create("clip.mov", "mp3", ConversionSettings(), input_format="mov")
    await store.transition(job.id, JobStatus.CONVERTING)
    await store.transition(job.id, JobStatus.READY, output_path=f"outputs/{job.id}.mp3")

    recorder = Recorder()
    poller = recorder.poller(StoreStatusSource(store), job_id=job.id)
    poller.start()
    await poller.wait()

    assert recorder.completed == [f"outputs/{job.id}.mp3"]
    assert recorder.progress == [100.0]


async def test_http_status_source():
    def handler(request):
        if request.url.path == "/api/jobs/missing/status":
            return httpx.Response(404, json={"detail": "Job not found"})
        return httpx.Response(200, json={
            "status": "converting",
            "progress": 65.0,
            "output_path": None,
            "error_message": None,
        })

    client = httpx.AsyncClient(base_url="http://testserver", transport=httpx.MockTransport(handler))
    source = HttpStatusSource("http://testserver", client=client)

    result = await source.fetch("job-1")
    assert result.status == "converting"
    assert result.progress == 65.0
    assert await source.fetch("missing") is None

    await source.aclose()
    assert not client.is_closed
    await client.aclose()
