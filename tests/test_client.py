"""
Tests for ImgenClient and AsyncImgenClient, with the HTTP session mocked out.
"""

import asyncio
from unittest.mock import MagicMock

import aiohttp
import pytest
import requests

from imgen.api import build_create_request, build_edit_request
from imgen.client import MAX_RESPONSE_SIZE, AsyncImgenClient, ImgenClient
from imgen.exceptions import ApiError, DecodeError, TransportError, ValidationError
from imgen.inputs import ImageInput
from tests.conftest import make_response_body


class FakeResponse:
    """Just enough of `requests.Response` for ImgenClient.send."""

    def __init__(self, status_code: int = 200, body: bytes = b"", chunk_size: int = 7):
        self.status_code = status_code
        self.body = body
        self.chunk_size = chunk_size
        self.closed = False

    def iter_content(self, chunk_size=1):
        for i in range(0, len(self.body), self.chunk_size):
            yield self.body[i:i + self.chunk_size]

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.closed = True


@pytest.fixture
def client():
    client = ImgenClient(api_key="sk-test-123", base_url="https://api.example.com/v1/")
    client._session.post = MagicMock()
    yield client
    client.close()


class TestClientSetup:
    def test_headers(self):
        client = ImgenClient(api_key="sk-test-123")
        assert client._session.headers["Authorization"] == "Bearer sk-test-123"
        assert client._session.headers["Accept"] == "application/json"
        assert "gzip" in client._session.headers["Accept-Encoding"]
        client.close()

    @pytest.mark.parametrize("key", ["", None])
    def test_missing_key(self, key):
        with pytest.raises(ValidationError, match="No API key"):
            ImgenClient(api_key=key)

    def test_bad_base_url(self):
        with pytest.raises(ValidationError, match="Invalid base URL"):
            ImgenClient(api_key="sk", base_url="api.openai.com")

    def test_context_manager_closes_session(self):
        with ImgenClient(api_key="sk") as client:
            client._session.close = MagicMock()
        client._session.close.assert_called_once()


class TestCreateImages:
    def test_success(self, client, png_bytes):
        fake = FakeResponse(200, make_response_body([png_bytes, png_bytes]))
        client._session.post.return_value = fake

        response = client.create_images(build_create_request("a cute cat", n=2))

        assert [img.data for img in response.images] == [png_bytes, png_bytes]
        assert fake.closed

        args, kwargs = client._session.post.call_args
        assert args[0] == "https://api.example.com/v1/images/generations"
        assert kwargs["json"] == {"model": "gpt-image-1", "prompt": "a cute cat", "n": 2}

    def test_api_error_surfaces_provider_message(self, client):
        body = (
            b'{"error": {"message": "Your request was rejected by the safety system.",'
            b' "type": "image_generation_user_error", "code": "moderation_blocked"}}'
        )
        client._session.post.return_value = FakeResponse(400, body)

        with pytest.raises(ApiError) as exc_info:
            client.create_images(build_create_request("a cute cat"))

        err = exc_info.value
        assert err.status == 400
        assert err.message == "Your request was rejected by the safety system."
        assert err.error_type == "image_generation_user_error"
        assert err.code == "moderation_blocked"
        assert "rejected by the safety system" in str(err)

    def test_api_error_without_json_body(self, client):
        client._session.post.return_value = FakeResponse(503, b"upstream connect error")

        with pytest.raises(ApiError) as exc_info:
            client.create_images(build_create_request("a cute cat"))

        assert exc_info.value.status == 503
        assert exc_info.value.message == "upstream connect error"

    def test_api_error_empty_body(self, client):
        client._session.post.return_value = FakeResponse(500, b"")

        with pytest.raises(ApiError, match="HTTP 500"):
            client.create_images(build_create_request("a cute cat"))

    def test_connection_error(self, client):
        client._session.post.side_effect = requests.ConnectionError("Name or service not known")

        with pytest.raises(TransportError, match="Name or service not known"):
            client.create_images(build_create_request("a cute cat"))

    def test_timeout(self, client):
        client._session.post.side_effect = requests.Timeout("read timed out")

        with pytest.raises(TransportError):
            client.create_images(build_create_request("a cute cat"))

    def test_malformed_body(self, client):
        client._session.post.return_value = FakeResponse(
            200, b'{"created": 1, "data": [{"b64_json": "%%%"}]}'
        )

        with pytest.raises(DecodeError):
            client.create_images(build_create_request("a cute cat"))

    def test_response_too_large(self, client, monkeypatch):
        monkeypatch.setattr("imgen.client.MAX_RESPONSE_SIZE", 10)
        client._session.post.return_value = FakeResponse(200, b"x" * 50)

        with pytest.raises(TransportError, match="exceeds"):
            client.create_images(build_create_request("a cute cat"))

    def test_default_limit(self):
        assert MAX_RESPONSE_SIZE == 100 * 1024 * 1024


class TestEditImages:
    def test_multipart(self, client, png_bytes):
        client._session.post.return_value = FakeResponse(200, make_response_body([png_bytes]))
        image = ImageInput(data=png_bytes, filename="cat.png", content_type="image/png")
        mask = ImageInput(data=b"mask", filename="mask.png", content_type="image/png")

        response = client.edit_images(
            build_edit_request("add a hat", [image], mask=mask, mode="inpaint", n=1)
        )

        assert response.images[0].data == png_bytes
        args, kwargs = client._session.post.call_args
        assert args[0] == "https://api.example.com/v1/images/edits"
        assert kwargs["data"]["prompt"] == "add a hat"
        assert kwargs["data"]["n"] == "1"
        assert kwargs["files"] == [
            ("image[]", ("cat.png", png_bytes, "image/png")),
            ("mask", ("mask.png", b"mask", "image/png")),
        ]
        assert "json" not in kwargs


# ============ AsyncImgenClient ============


class FakeStream:
    def __init__(self, body: bytes, chunk_size: int):
        self.body = body
        self.chunk_size = chunk_size

    async def iter_chunked(self, n):
        for i in range(0, len(self.body), self.chunk_size):
            yield self.body[i:i + self.chunk_size]


class FakeAsyncResponse:
    """Just enough of `aiohttp.ClientResponse` for AsyncImgenClient.send."""

    def __init__(self, status: int = 200, body: bytes = b"", content_length=None, chunk_size: int = 7):
        self.status = status
        self.content_length = content_length
        self.content = FakeStream(body, chunk_size)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []
        self.closed = False

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    async def close(self):
        self.closed = True


class RecordingForm:
    """Stands in for aiohttp.FormData and keeps the fields in order."""

    def __init__(self):
        self.fields = []

    def add_field(self, name, value, **kwargs):
        self.fields.append((name, value, kwargs))


@pytest.fixture
def async_client():
    client = AsyncImgenClient(api_key="sk-test-123", base_url="https://api.example.com/v1/")
    client._session = FakeSession()
    return client


class TestAsyncClient:
    def test_missing_key(self):
        with pytest.raises(ValidationError, match="No API key"):
            AsyncImgenClient(api_key="")

    def test_session_headers(self):
        async def open_session():
            client = AsyncImgenClient(api_key="sk-test-123")
            await client.init()
            headers = dict(client._session.headers)
            await client.close()
            return headers

        headers = asyncio.run(open_session())
        assert headers["Authorization"] == "Bearer sk-test-123"
        assert headers["Accept"] == "application/json"

    def test_context_manager_closes_session(self, async_client):
        async def use():
            async with async_client:
                pass

        asyncio.run(use())
        assert async_client._session.closed

    def test_create_success(self, async_client, png_bytes):
        async_client._session.response = FakeAsyncResponse(200, make_response_body([png_bytes]))

        response = asyncio.run(async_client.create_images(build_create_request("a cute cat", n=1)))

        assert response.images[0].data == png_bytes
        url, kwargs = async_client._session.calls[0]
        assert url == "https://api.example.com/v1/images/generations"
        assert kwargs["json"] == {"model": "gpt-image-1", "prompt": "a cute cat", "n": 1}

    def test_api_error_surfaces_provider_message(self, async_client):
        body = (
            b'{"error": {"message": "Incorrect API key provided: sk-test",'
            b' "type": "invalid_request_error", "code": "invalid_api_key"}}'
        )
        async_client._session.response = FakeAsyncResponse(401, body)

        with pytest.raises(ApiError) as exc_info:
            asyncio.run(async_client.create_images(build_create_request("a cute cat")))

        assert exc_info.value.status == 401
        assert exc_info.value.message == "Incorrect API key provided: sk-test"
        assert exc_info.value.code == "invalid_api_key"

    def test_malformed_base64(self, async_client):
        async_client._session.response = FakeAsyncResponse(
            200, b'{"created": 1, "data": [{"b64_json": "%%%"}]}'
        )

        with pytest.raises(DecodeError, match="Malformed base64"):
            asyncio.run(async_client.create_images(build_create_request("a cute cat")))

    def test_chunked_response_is_capped(self, async_client, monkeypatch):
        monkeypatch.setattr("imgen.client.MAX_RESPONSE_SIZE", 100)
        async_client._session.response = FakeAsyncResponse(200, b"x" * 5000, content_length=None)

        with pytest.raises(TransportError, match="exceeds"):
            asyncio.run(async_client.create_images(build_create_request("a cute cat")))

    def test_declared_length_over_cap(self, async_client, monkeypatch):
        monkeypatch.setattr("imgen.client.MAX_RESPONSE_SIZE", 100)
        async_client._session.response = FakeAsyncResponse(200, b"x", content_length=5000)

        with pytest.raises(TransportError, match="exceeds"):
            asyncio.run(async_client.create_images(build_create_request("a cute cat")))

    def test_connection_error(self, async_client):
        async_client._session.error = aiohttp.ClientConnectionError("connection refused")

        with pytest.raises(TransportError, match="connection refused"):
            asyncio.run(async_client.create_images(build_create_request("a cute cat")))

    def test_timeout(self, async_client):
        async_client._session.error = asyncio.TimeoutError()

        with pytest.raises(TransportError, match="timed out"):
            asyncio.run(async_client.create_images(build_create_request("a cute cat")))

    def test_edit_multipart_fields(self, async_client, png_bytes, monkeypatch):
        monkeypatch.setattr("imgen.client.aiohttp.FormData", RecordingForm)
        async_client._session.response = FakeAsyncResponse(200, make_response_body([png_bytes]))
        image = ImageInput(data=png_bytes, filename="cat.png", content_type="image/png")
        mask = ImageInput(data=b"mask", filename="mask.png", content_type="image/png")

        asyncio.run(async_client.edit_images(
            build_edit_request("add a hat", [image], mask=mask, mode="inpaint", n=2)
        ))

        url, kwargs = async_client._session.calls[0]
        assert url == "https://api.example.com/v1/images/edits"
        fields = kwargs["data"].fields
        assert ("prompt", "add a hat", {}) in fields
        assert ("n", "2", {}) in fields
        files = [(name, value, kw) for name, value, kw in fields if kw]
        assert files == [
            ("image[]", png_bytes, {"filename": "cat.png", "content_type": "image/png"}),
            ("mask", b"mask", {"filename": "mask.png", "content_type": "image/png"}),
        ]
