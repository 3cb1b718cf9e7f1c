"""Tests for the detection job pipeline."""

import json

import httpx
import pytest

from aidetect_bot.detection_client import (
    DetectionClient,
    DetectionFailure,
    DetectionSuccess,
    JobStage,
    PollState,
    PollStatus,
    advance_poll,
    filename_from_url,
    sanitize_filename,
)

from .conftest import make_config

IMAGE_URL = "https://pbs.twimg.com/media/abc.jpg"


class TestAdvancePoll:
    """Test the polling state machine."""

    def test_pending_stays_pending_below_budget(self):
        state = advance_poll(PollState(), {"status": "pending"}, max_attempts=3)
        assert state.status is PollStatus.PENDING
        assert state.attempt == 1
        assert not state.finished

    def test_done_is_terminal(self):
        state = advance_poll(PollState(attempt=2), {"status": "done", "result": 90}, max_attempts=12)
        assert state.status is PollStatus.DONE
        assert state.response["result"] == 90

        again = advance_poll(state, {"status": "pending"}, max_attempts=12)
        assert again is state

    def test_failed_is_terminal(self):
        state = advance_poll(PollState(), {"status": "FAILED"}, max_attempts=12)
        assert state.status is PollStatus.FAILED

    def test_unknown_status_counts_as_pending(self):
        state = advance_poll(PollState(), {"status": "analyzing"}, max_attempts=12)
        assert state.status is PollStatus.PENDING

    def test_budget_spent_is_timeout(self):
        state = PollState()
        for _ in range(12):
            state = advance_poll(state, {"status": "pending"}, max_attempts=12)
        assert state.status is PollStatus.TIMEOUT
        assert state.attempt == 12

    def test_done_on_last_attempt_wins(self):
        state = PollState(attempt=11)
        state = advance_poll(state, {"status": "done"}, max_attempts=12)
        assert state.status is PollStatus.DONE


class TestFilenames:
    """Test upload filename handling."""

    def test_filename_from_url(self):
        assert filename_from_url(IMAGE_URL, "image/jpeg") == "abc.jpg"
        assert filename_from_url("https://example.com/img/xyz", "image/png") == "xyz.png"
        assert filename_from_url("https://example.com/", "image/jpeg") == "image.jpg"

    def test_sanitize_filename(self):
        assert sanitize_filename("my photo.jpg") == "my_photo.jpg"
        assert sanitize_filename("abc.jpg:large") == "abc.jpg"
        assert sanitize_filename("abc.jpg?format=jpg&name=small") == "abc.jpg"


class FakeProvider:
    """Mock transport handler for the provider, storage and image host."""

    def __init__(self, statuses, upload_status=200, download_error=None):
        self.statuses = list(statuses)
        self.upload_status = upload_status
        self.download_error = download_error
        self.queries = 0
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        host = request.url.host
        path = request.url.path

        if host == "pbs.twimg.com":
            if self.download_error is not None:
                raise self.download_error
            return httpx.Response(200, content=b"\xff\xd8jpeg", headers={"content-type": "image/jpeg"})
        if path == "/get-presigned-url":
            return httpx.Response(
                200,
                json={"presigned_url": "https://storage.test/upload/abc.jpg", "file_path": "uploads/abc.jpg"},
            )
        if host == "storage.test":
            return httpx.Response(self.upload_status)
        if path == "/detect":
            return httpx.Response(200, json={"id": "job-1"})
        if path == "/query":
            self.queries += 1
            status = self.statuses.pop(0) if self.statuses else "pending"
            body = {"id": "job-1", "status": status}
            if status == "done":
                body.update({"result": 87.4, "result_details": {"final_result": "AI Generated", "confidence": 92}})
            return httpx.Response(200, json=body)
        return httpx.Response(404)


class TestDetectionClient:
    """Test full detection jobs against a mock provider."""

    def setup_method(self):
        """Set up test fixtures."""
        self.config = make_config().detection
        self.sleeps: list[float] = []

    async def fake_sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def make_client(self, provider: FakeProvider) -> DetectionClient:
        return DetectionClient(
            self.config,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(provider)),
            sleep=self.fake_sleep,
        )

    async def test_done_after_pending_polls(self):
        provider = FakeProvider(["pending"] * 11 + ["done"])
        client = self.make_client(provider)

        result = await client.detect(IMAGE_URL)

        assert isinstance(result, DetectionSuccess)
        assert result.ai_probability == pytest.approx(87.4)
        assert result.final_result == "AI Generated"
        assert result.confidence == 92
        assert result.image_bytes == b"\xff\xd8jpeg"
        assert provider.queries == 12
        assert self.sleeps == [5.0] * 11

    async def test_times_out_after_budget(self):
        provider = FakeProvider(["pending"] * 13)
        client = self.make_client(provider)

        result = await client.detect(IMAGE_URL)

        assert isinstance(result, DetectionFailure)
        assert result.stage is JobStage.POLL
        assert "timed out" in result.reason
        assert provider.queries == 12

    async def test_failed_job(self):
        provider = FakeProvider(["pending", "failed"])
        result = await self.make_client(provider).detect(IMAGE_URL)

        assert isinstance(result, DetectionFailure)
        assert result.stage is JobStage.POLL
        assert provider.queries == 2

    async def test_upload_rejected(self):
        provider = FakeProvider(["done"], upload_status=403)
        result = await self.make_client(provider).detect(IMAGE_URL)

        assert isinstance(result, DetectionFailure)
        assert result.stage is JobStage.UPLOAD
        assert provider.queries == 0

    async def test_download_error(self):
        provider = FakeProvider(["done"], download_error=httpx.ConnectError("refused"))
        result = await self.make_client(provider).detect(IMAGE_URL)

        assert isinstance(result, DetectionFailure)
        assert result.stage is JobStage.DOWNLOAD

    async def test_download_timeout(self):
        provider = FakeProvider(["done"], download_error=httpx.ReadTimeout("slow"))
        result = await self.make_client(provider).detect(IMAGE_URL)

        assert isinstance(result, DetectionFailure)
        assert result.reason == "Download timeout"

    async def test_requests_carry_key_and_storage_url(self):
        provider = FakeProvider(["done"])
        await self.make_client(provider).detect(IMAGE_URL)

        slot = next(r for r in provider.requests if r.url.path == "/get-presigned-url")
        assert slot.headers["apikey"] == "detect-key"
        assert slot.url.params["file_name"] == "abc.jpg"

        upload = next(r for r in provider.requests if r.url.host == "storage.test")
        assert upload.method == "PUT"
        assert upload.headers["x-amz-acl"] == "private"
        assert upload.headers["content-type"] == "image/jpeg"

        submit = next(r for r in provider.requests if r.url.path == "/detect")
        assert json.loads(submit.content) == {
            "key": "detect-key",
            "url": f"{self.config.storage_base_url}/uploads/abc.jpg",
        }
