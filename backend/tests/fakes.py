"""Test doubles for the processing engine."""
from converter.services.engine_client import (
    RemoteOperationHandle,
    RemoteState,
    RemoteStatus,
)


RUNNING = RemoteStatus(state=RemoteState.RUNNING, raw_status="ASSEMBLY_EXECUTING")


def completed(url="https://engine.test/results/out.mp4"):
    return RemoteStatus(state=RemoteState.COMPLETED, result_url=url, raw_status="ASSEMBLY_COMPLETED")


def errored(detail="Invalid input file"):
    return RemoteStatus(state=RemoteState.ERRORED, error_detail=detail, raw_status="ASSEMBLY_ERROR")


class FakeEngine:
    """In-memory stand-in for the processing engine.

    ``statuses`` are returned in order by ``poll``; the last one repeats.
    Exceptions in the list are raised instead of returned.
    """

    def __init__(self, statuses=None, result=b"converted-bytes", submit_error=None, fetch_error=None):
        self.statuses = list(statuses or [RUNNING])
        self.result = result
        self.submit_error = submit_error
        self.fetch_error = fetch_error
        self.submitted = []
        self.poll_count = 0
        self.fetched = []

    async def submit(self, spec, source, filename):
        if self.submit_error:
            raise self.submit_error
        self.submitted.append((spec, source, filename))
        return RemoteOperationHandle(url="https://engine.test/assemblies/abc", assembly_id="abc")

    async def poll(self, handle):
        self.poll_count += 1
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def fetch_result(self, url):
        self.fetched.append(url)
        if self.fetch_error:
            raise self.fetch_error
        return self.result
