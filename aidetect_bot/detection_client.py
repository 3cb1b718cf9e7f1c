"""Client for the asynchronous, job-based AI image detection provider.

Each image goes through download, presigned upload slot, upload, job
submission and result polling. Any stage can fail; failures come back as
DetectionFailure values and never escape as exceptions.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union
from urllib.parse import urlparse

import httpx

from .config import DetectionConfig

logger = logging.getLogger(__name__)

DOWNLOAD_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; AIDetectBot/1.0)",
    "Accept": "image/*",
}
DEFAULT_CONTENT_TYPE = "image/jpeg"

SIZE_SUFFIX = re.compile(r":(large|medium|small|orig)$")
QUERY_SUFFIX = re.compile(r"[?&].*$")


class JobStage(str, Enum):
    """Pipeline stage a detection reached or failed in."""

    DOWNLOAD = "download"
    SLOT = "slot"
    UPLOAD = "upload"
    SUBMIT = "submit"
    POLL = "poll"


class PollStatus(str, Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class PollState:
    """Progress of the result-polling loop."""

    attempt: int = 0
    status: PollStatus = PollStatus.PENDING
    response: Optional[dict[str, Any]] = None

    @property
    def finished(self) -> bool:
        return self.status is not PollStatus.PENDING


def advance_poll(state: PollState, response: dict[str, Any], max_attempts: int) -> PollState:
    """Apply one query response to the polling state.

    ``done`` and ``failed`` are terminal. Any other status counts as pending
    until ``max_attempts`` responses have been seen, which is a timeout.
    """
    if state.finished:
        return state

    attempt = state.attempt + 1
    status = str(response.get("status", "")).lower()
    if status == PollStatus.DONE.value:
        return PollState(attempt, PollStatus.DONE, response)
    if status == PollStatus.FAILED.value:
        return PollState(attempt, PollStatus.FAILED, response)
    if attempt >= max_attempts:
        return PollState(attempt, PollStatus.TIMEOUT, response)
    return PollState(attempt, PollStatus.PENDING, response)


@dataclass
class DownloadedImage:
    content: bytes
    content_type: str
    filename: str


@dataclass
class DetectionSuccess:
    ai_probability: float
    final_result: str
    confidence: float
    processing_time_ms: int
    image_bytes: Optional[bytes] = field(default=None, repr=False)
    content_type: Optional[str] = None

    success = True


@dataclass
class DetectionFailure:
    stage: JobStage
    reason: str
    processing_time_ms: int

    success = False


DetectionResult = Union[DetectionSuccess, DetectionFailure]


class StageError(Exception):
    """Internal signal that a stage failed; converted to DetectionFailure."""

    def __init__(self, stage: JobStage, reason: str):
        self.stage = stage
        self.reason = reason
        super().__init__(f"{stage.value}: {reason}")


def filename_from_url(url: str, content_type: str) -> str:
    """Last path segment of the URL, with an extension matching the content type."""
    name = urlparse(url).path.rsplit("/", 1)[-1] or "image.jpg"
    if "." not in name:
        name += ".png" if "png" in content_type else ".jpg"
    return name


def sanitize_filename(filename: str) -> str:
    """Form the provider accepts: no whitespace, size suffix or query string."""
    cleaned = re.sub(r"\s+", "_", filename)
    cleaned = SIZE_SUFFIX.sub("", cleaned)
    return QUERY_SUFFIX.sub("", cleaned)


def _clamp_probability(value: Any) -> float:
    try:
        probability = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(100.0, max(0.0, probability))


class DetectionClient:
    """Runs detection jobs against the provider.

    Args:
        config: Provider endpoints, key and timing.
        http_client: Shared client; tests pass one built on MockTransport.
        sleep: Awaitable used between poll attempts.
        clock: Monotonic seconds, for processing time.
    """

    def __init__(
        self,
        config: DetectionConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.storage_base_url = config.storage_base_url.rstrip("/")
        self.http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.request_timeout_seconds), follow_redirects=True
        )
        self._sleep = sleep
        self._clock = clock

    async def aclose(self) -> None:
        await self.http.aclose()

    @property
    def _api_key(self) -> str:
        return self.config.api_key.get_secret_value()

    async def download(self, image_url: str) -> DownloadedImage:
        try:
            response = await self.http.get(
                image_url,
                headers=DOWNLOAD_HEADERS,
                timeout=self.config.download_timeout_seconds,
                follow_redirects=True,
            )
        except httpx.TimeoutException:
            raise StageError(JobStage.DOWNLOAD, "Download timeout")
        except httpx.HTTPError as e:
            raise StageError(JobStage.DOWNLOAD, str(e))
        if response.is_error:
            raise StageError(JobStage.DOWNLOAD, f"HTTP {response.status_code}")

        content_type = response.headers.get("content-type") or DEFAULT_CONTENT_TYPE
        return DownloadedImage(
            content=response.content,
            content_type=content_type,
            filename=filename_from_url(image_url, content_type),
        )

    async def acquire_slot(self, filename: str) -> tuple[str, str]:
        """Returns the presigned upload URL and the storage file path."""
        try:
            response = await self.http.get(
                f"{self.base_url}/get-presigned-url",
                params={"file_name": sanitize_filename(filename)},
                headers={"apikey": self._api_key, "Content-Type": "application/json"},
            )
            if response.is_error:
                raise StageError(
                    JobStage.SLOT, f"HTTP {response.status_code} - {response.text[:200]}"
                )
            data = response.json()
            return data["presigned_url"], data["file_path"]
        except httpx.HTTPError as e:
            raise StageError(JobStage.SLOT, str(e))
        except (KeyError, ValueError) as e:
            raise StageError(JobStage.SLOT, f"Malformed presigned URL response: {e}")

    async def upload(self, presigned_url: str, image: DownloadedImage) -> None:
        try:
            response = await self.http.put(
                presigned_url,
                content=image.content,
                headers={"Content-Type": image.content_type, "x-amz-acl": "private"},
            )
        except httpx.HTTPError as e:
            raise StageError(JobStage.UPLOAD, str(e))
        if response.is_error:
            raise StageError(JobStage.UPLOAD, f"HTTP {response.status_code}")

    async def submit(self, file_path: str) -> str:
        """Start a detection job and return its id."""
        try:
            response = await self.http.post(
                f"{self.base_url}/detect",
                json={"key": self._api_key, "url": f"{self.storage_base_url}/{file_path}"},
                headers={"accept": "application/json"},
            )
            if response.is_error:
                raise StageError(JobStage.SUBMIT, f"HTTP {response.status_code}")
            return str(response.json()["id"])
        except httpx.HTTPError as e:
            raise StageError(JobStage.SUBMIT, str(e))
        except (KeyError, ValueError) as e:
            raise StageError(JobStage.SUBMIT, f"Malformed submission response: {e}")

    async def query(self, job_id: str) -> dict[str, Any]:
        try:
            response = await self.http.post(
                f"{self.base_url}/query",
                json={"id": job_id},
                headers={"accept": "application/json"},
            )
            if response.is_error:
                raise StageError(JobStage.POLL, f"HTTP {response.status_code}")
            return response.json()
        except httpx.HTTPError as e:
            raise StageError(JobStage.POLL, str(e))
        except ValueError as e:
            raise StageError(JobStage.POLL, f"Malformed query response: {e}")

    async def poll(self, job_id: str) -> PollState:
        """Query until the job finishes or the attempt budget is spent."""
        state = PollState()
        while True:
            state = advance_poll(state, await self.query(job_id), self.config.max_poll_attempts)
            logger.debug("Detection %s poll attempt %d: %s", job_id, state.attempt, state.status.value)
            if state.finished:
                return state
            await self._sleep(self.config.poll_interval_seconds)

    async def detect(self, image_url: str) -> DetectionResult:
        """Run the whole job for one image."""
        started = self._clock()

        def elapsed_ms() -> int:
            return int((self._clock() - started) * 1000)

        try:
            image = await self.download(image_url)
            presigned_url, file_path = await self.acquire_slot(image.filename)
            await self.upload(presigned_url, image)
            job_id = await self.submit(file_path)
            state = await self.poll(job_id)
        except StageError as e:
            logger.error("Detection failed for %s at %s: %s", image_url, e.stage.value, e.reason)
            return DetectionFailure(stage=e.stage, reason=e.reason, processing_time_ms=elapsed_ms())

        if state.status is PollStatus.FAILED:
            logger.error("Detection job %s for %s reported failure", job_id, image_url)
            return DetectionFailure(JobStage.POLL, "Detection processing failed", elapsed_ms())
        if state.status is PollStatus.TIMEOUT:
            logger.error("Detection job %s timed out after %d attempts", job_id, state.attempt)
            return DetectionFailure(
                JobStage.POLL, f"Detection timed out after {state.attempt} attempts", elapsed_ms()
            )

        data = state.response or {}
        details = data.get("result_details") or {}
        probability = _clamp_probability(data.get("result"))
        confidence = details.get("confidence")
        result = DetectionSuccess(
            ai_probability=probability,
            final_result=details.get("final_result") or "Unknown",
            confidence=_clamp_probability(confidence) if confidence is not None else probability,
            processing_time_ms=elapsed_ms(),
            image_bytes=image.content,
            content_type=image.content_type,
        )
        logger.info(
            "Detection %s done for %s: %.0f%% AI (%s) in %dms",
            job_id,
            image_url,
            result.ai_probability,
            result.final_result,
            result.processing_time_ms,
        )
        return result
