"""HTTP client for the external assembly-based transcoding engine."""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional
import httpx
from converter.config import settings
from converter.errors import (
    EngineNotConfigured,
    ResultFetchError,
    SubmissionError,
)
from converter.services.pipeline_compiler import PipelineSpec

logger = logging.getLogger(__name__)

ASSEMBLY_COMPLETED = "ASSEMBLY_COMPLETED"
ERROR_STATES = {"REQUEST_ABORTED", "ASSEMBLY_CANCELED"}


class RemoteState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERRORED = "errored"


@dataclass(frozen=True)
class RemoteOperationHandle:
    """Reference to one remote assembly."""
    url: str
    assembly_id: Optional[str] = None


@dataclass(frozen=True)
class RemoteStatus:
    state: RemoteState
    result_url: Optional[str] = None
    error_detail: Optional[str] = None
    raw_status: str = ""


def _first_result_url(data: Dict[str, Any]) -> Optional[str]:
    results = data.get("results") or {}
    if not isinstance(results, dict):
        return None
    for files in results.values():
        if isinstance(files, list) and files:
            first = files[0] or {}
            return first.get("ssl_url") or first.get("url")
    return None


def classify_status(data: Dict[str, Any]) -> RemoteStatus:
    """
    Map an assembly status document to running, completed or errored.

    Args:
        data: Decoded assembly status JSON

    Returns:
        RemoteStatus
    """
    status = str(data.get("ok") or "")

    if status == ASSEMBLY_COMPLETED:
        return RemoteStatus(
            state=RemoteState.COMPLETED,
            result_url=_first_result_url(data),
            raw_status=status,
        )

    if status.startswith("ASSEMBLY_ERROR") or status in ERROR_STATES or data.get("error"):
        detail = data.get("message") or data.get("error") or status or "Unknown engine error"
        return RemoteStatus(state=RemoteState.ERRORED, error_detail=str(detail), raw_status=status)

    return RemoteStatus(state=RemoteState.RUNNING, raw_status=status)


class EngineClient:
    """Submits pipelines to the engine and follows the resulting assemblies."""

    def __init__(
        self,
        api_url: str = None,
        auth_key: str = None,
        auth_secret: str = None,
        ffmpeg_stack: str = None,
        timeout: float = None,
        transport: httpx.AsyncBaseTransport = None,
    ):
        self.api_url = api_url or settings.ENGINE_API_URL
        self.auth_key = auth_key if auth_key is not None else settings.ENGINE_AUTH_KEY
        self.auth_secret = auth_secret if auth_secret is not None else settings.ENGINE_AUTH_SECRET
        self.ffmpeg_stack = ffmpeg_stack or settings.ENGINE_FFMPEG_STACK
        self.timeout = timeout or settings.ENGINE_TIMEOUT
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.auth_key and self.auth_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            transport=self.transport,
            follow_redirects=True,
        )

    def build_params(self, spec: PipelineSpec, now: datetime = None) -> Dict[str, Any]:
        """Assemble the signed-params document for one pipeline."""
        expires_at = (now or datetime.now(timezone.utc)) + timedelta(hours=1)
        return {
            "auth": {
                "key": self.auth_key,
                "expires": expires_at.strftime("%Y/%m/%d %H:%M:%S+00:00"),
            },
            "steps": {"encoded": spec.to_step(self.ffmpeg_stack)},
        }

    def sign(self, params_json: str) -> str:
        digest = hmac.new(
            self.auth_secret.encode(), params_json.encode(), hashlib.sha384
        ).hexdigest()
        return f"sha384:{digest}"

    async def submit(self, spec: PipelineSpec, source: bytes, filename: str) -> RemoteOperationHandle:
        """
        Create a remote assembly for ``source``.

        Args:
            spec: Compiled pipeline
            source: Source file contents
            filename: Name sent with the upload

        Returns:
            Handle to the created assembly

        Raises:
            EngineNotConfigured: If credentials are missing
            SubmissionError: If the engine is unreachable or rejects the job
        """
        if not self.configured:
            raise EngineNotConfigured(
                "Video processing service not configured. "
                "Set ENGINE_AUTH_KEY and ENGINE_AUTH_SECRET."
            )

        params_json = json.dumps(self.build_params(spec))
        form = {"params": params_json, "signature": self.sign(params_json)}

        try:
            async with self._client() as client:
                response = await client.post(
                    self.api_url,
                    data=form,
                    files={"file": (filename, source)},
                )
        except httpx.HTTPError as e:
            raise SubmissionError(f"Could not reach processing engine: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success or data.get("error"):
            reason = data.get("error") or data.get("message") or response.status_code
            raise SubmissionError(f"Assembly creation failed: {reason}")

        url = data.get("assembly_ssl_url") or data.get("assembly_url")
        if not url:
            raise SubmissionError("No assembly URL returned from processing engine")

        logger.info(f"Created assembly {data.get('assembly_id', url)}")
        return RemoteOperationHandle(url=url, assembly_id=data.get("assembly_id"))

    async def poll(self, handle: RemoteOperationHandle) -> RemoteStatus:
        """
        Fetch the current status of an assembly.

        Connectivity problems, 5xx responses and undecodable bodies raise
        (``httpx.HTTPError`` or ``ValueError``) so the caller can retry.
        """
        async with self._client() as client:
            response = await client.get(handle.url)

        if response.status_code >= 500:
            response.raise_for_status()

        data = response.json()
        if not isinstance(data, dict):
            raise ValueError("Unexpected assembly status payload")

        status = classify_status(data)
        logger.debug(f"Assembly {handle.assembly_id or handle.url} status: {status.raw_status}")
        return status

    async def fetch_result(self, url: str) -> bytes:
        """Download a finished result file."""
        try:
            async with self._client() as client:
                response = await client.get(url)
        except httpx.HTTPError as e:
            raise ResultFetchError(f"Could not fetch converted file: {e}") from e

        if not response.is_success:
            raise ResultFetchError(
                f"Could not fetch converted file (HTTP {response.status_code})"
            )
        return response.content


# Global engine client instance
engine_client = EngineClient()
