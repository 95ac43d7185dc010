"""Client-side poller that turns job status reads into callbacks."""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Callable, Optional
import httpx
from sqlalchemy.exc import SQLAlchemyError
from converter.config import settings
from converter.models.schemas import JobStatusResponse
from converter.services.job_state import JobStatus

logger = logging.getLogger(__name__)

# Read failures that only mean "try again next tick"
TRANSIENT_READ_ERRORS = (httpx.HTTPError, SQLAlchemyError, OSError, ValueError)


class PollerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    STOPPED = "stopped"


class HttpStatusSource:
    """Reads job status from the service's HTTP API."""

    def __init__(self, base_url: str, client: httpx.AsyncClient = None, timeout: float = 10.0):
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    async def fetch(self, job_id: str) -> Optional[JobStatusResponse]:
        response = await self.client.get(f"/api/jobs/{job_id}/status")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return JobStatusResponse.model_validate(response.json())

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()


class StoreStatusSource:
    """Reads job status straight from a JobStore."""

    def __init__(self, store):
        self.store = store

    async def fetch(self, job_id: str) -> Optional[JobStatusResponse]:
        return await self.store.get_status(job_id)


async def _invoke(callback: Optional[Callable], *args: Any):
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class ConversionPoller:
    """
    Polls one job on a fixed interval and reports through callbacks.

    ``idle -> polling -> stopped``. The first poll happens immediately on
    start. The poller stops for good on ``ready``, ``failed`` or
    ``cancelled``, or when ``stop()`` is called; a new poller is needed for
    a new job. Read failures are logged and retried on the next tick.
    """

    def __init__(
        self,
        job_id: Optional[str],
        source,
        on_progress: Callable[[float], Any] = None,
        on_complete: Callable[[str], Any] = None,
        on_error: Callable[[str], Any] = None,
        interval: float = None,
        enabled: bool = True,
    ):
        self.job_id = job_id
        self.source = source
        self.on_progress = on_progress
        self.on_complete = on_complete
        self.on_error = on_error
        self.interval = interval if interval is not None else settings.CLIENT_POLL_INTERVAL
        self.enabled = enabled
        self.last_progress = 0.0
        self._state = PollerState.IDLE
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> PollerState:
        return self._state

    def start(self) -> bool:
        """
        Begin polling.

        Returns:
            True if polling started, False if there is no job id, the poller
            is disabled, or it has already been started
        """
        if self._state != PollerState.IDLE or not self.job_id or not self.enabled:
            return False

        self._state = PollerState.POLLING
        self._task = asyncio.create_task(self._loop(), name=f"poll-{self.job_id}")
        return True

    def stop(self):
        """Stop polling and cancel the timer task."""
        self._state = PollerState.STOPPED
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    async def wait(self):
        """Wait until the poller has stopped."""
        if self._task is not None:
            await asyncio.wait([self._task])

    async def _loop(self):
        try:
            while self._state == PollerState.POLLING:
                await self.poll_once()
                if self._state != PollerState.POLLING:
                    break
                await asyncio.sleep(self.interval)
        finally:
            if self._state == PollerState.POLLING:
                self._state = PollerState.STOPPED

    async def poll_once(self):
        """Read the job once and dispatch callbacks."""
        if self._state != PollerState.POLLING:
            return

        try:
            status = await self.source.fetch(self.job_id)
        except TRANSIENT_READ_ERRORS as e:
            logger.debug(f"Status read for job {self.job_id} failed, retrying: {e}")
            return

        if status is None:
            return

        self.last_progress = max(self.last_progress, status.progress or 0.0)
        await self._dispatch(self.on_progress, self.last_progress)

        if status.status == JobStatus.READY.value and status.output_path:
            self._state = PollerState.STOPPED
            await self._dispatch(self.on_complete, status.output_path)
        elif status.status == JobStatus.FAILED.value:
            self._state = PollerState.STOPPED
            await self._dispatch(self.on_error, status.error_message or "Conversion failed")
        elif status.status == JobStatus.CANCELLED.value:
            self._state = PollerState.STOPPED
            await self._dispatch(self.on_error, status.error_message or "Conversion cancelled")

    async def _dispatch(self, callback: Optional[Callable], *args: Any):
        # A failing callback must not end polling
        try:
            await _invoke(callback, *args)
        except Exception:
            logger.warning(f"Callback for job {self.job_id} raised", exc_info=True)

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.stop()
        await self.wait()
