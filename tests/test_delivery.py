"""
Tests for DeliveryProxy retry behaviour.
"""
import httpx
import pytest

from fakes import RecordingSleep

from furniture_genai.delivery import DeliveryProxy, sanitize_filename
from furniture_genai.errors import TerminalBackendError, TransientBackendError, ValidationError


def make_proxy(handler, sleep=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return DeliveryProxy(api_key="sk-test", base_url="https://api.test/v1", client=client, sleep=sleep or RecordingSleep())


class Scripted:
    """Returns the scripted statuses in order, then 200."""

    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        if status == 200:
            return httpx.Response(200, content=b"\x00\x00mp4", headers={"content-type": "video/mp4"})
        return httpx.Response(status, text="nope")


class TestFetchVideo:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        handler = Scripted()
        sleep = RecordingSleep()
        artifact = await make_proxy(handler, sleep).fetch_video("video_1")

        assert artifact.content == b"\x00\x00mp4"
        assert artifact.content_type == "video/mp4"
        assert artifact.filename == "video-video_1.mp4"
        assert artifact.attempts == 1
        assert sleep.delays == []
        req = handler.requests[0]
        assert str(req.url) == "https://api.test/v1/videos/video_1/content"
        assert req.headers["authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_retries_with_linear_backoff(self):
        handler = Scripted(502, 503)
        sleep = RecordingSleep()
        artifact = await make_proxy(handler, sleep).fetch_video("video_1")
        assert artifact.attempts == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_final_4xx_is_terminal(self):
        sleep = RecordingSleep()
        with pytest.raises(TerminalBackendError) as excinfo:
            await make_proxy(Scripted(500, 500, 404), sleep).fetch_video("video_1")
        assert excinfo.value.status_code == 404
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_final_5xx_is_transient(self):
        with pytest.raises(TransientBackendError):
            await make_proxy(Scripted(500, 500, 500)).fetch_video("video_1")

    @pytest.mark.asyncio
    async def test_network_errors_are_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, content=b"ok")

        sleep = RecordingSleep()
        artifact = await make_proxy(handler, sleep).fetch_video("video_1")
        assert artifact.attempts == 3
        assert sleep.delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rejects_path_like_ids(self):
        with pytest.raises(ValidationError):
            await make_proxy(Scripted()).fetch_video("../secrets")


class TestFetchImage:
    @pytest.mark.asyncio
    async def test_disallowed_host(self):
        with pytest.raises(ValidationError, match="not allowed"):
            await make_proxy(Scripted()).fetch_image("https://evil.example.com/a.png")

    @pytest.mark.asyncio
    async def test_allowed_subdomain(self):
        handler = Scripted()
        artifact = await make_proxy(handler).fetch_image(
            "https://eu.storage.googleapis.com/bucket/a.png", filename="my image?.png"
        )
        assert artifact.filename == "my_image_.png"
        assert "authorization" not in handler.requests[0].headers


def test_sanitize_filename():
    assert sanitize_filename("../../etc/passwd") == ".._.._etc_passwd"
    assert sanitize_filename("") == "download"
