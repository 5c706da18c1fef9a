"""
HTTP clients for the OpenAI Images API.

`ImgenClient` is the blocking client used by the CLI. `AsyncImgenClient` does
the same exchange over aiohttp for the web server. Both share the request
models and the response decoder in `imgen.api`.
"""

import asyncio
import time
from typing import Any, Dict, Optional

import aiohttp
import requests
from loguru import logger

from .api import CreateRequest, DecodedResponse, EditRequest, decode_response, parse_error_body
from .config import DEFAULT_BASE_URL, DEFAULT_TIMEOUT
from .exceptions import ApiError, TransportError, ValidationError

MAX_RESPONSE_SIZE = 100 << 20  # 100 MiB


def _check_base_url(base_url: str) -> str:
    base_url = base_url.rstrip("/")
    if not base_url.startswith(("https://", "http://")):
        raise ValidationError(f"Invalid base URL: {base_url}")
    return base_url


def _api_error(status: int, body: bytes) -> ApiError:
    detail = parse_error_body(body)
    if detail is not None and detail.message:
        code = str(detail.code) if detail.code is not None else None
        return ApiError(status, detail.message, error_type=detail.type, code=code)

    text = body.decode("utf-8", errors="replace").strip()
    return ApiError(status, text[:500] or f"HTTP {status}")


class ImgenClient:
    """
    Blocking client for the OpenAI Images API.

    Usage:
        with ImgenClient(api_key="sk-...") as client:
            response = client.create_images(build_create_request("a cute cat"))
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: Optional[float] = DEFAULT_TIMEOUT,
    ):
        if not api_key:
            raise ValidationError(
                "No API key: pass --api-key, set OPENAI_API_KEY or run `imgen config set-key`"
            )
        self.base_url = _check_base_url(base_url)
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update(self.headers(api_key))

    @staticmethod
    def headers(api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
            "Accept-Encoding": "gzip",
        }

    def send(self, path: str, **kwargs: Any) -> bytes:
        """POST to `path` and return the raw response body."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        start_time = time.time()

        try:
            resp = self._session.post(url, timeout=self.timeout, stream=True, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

        with resp:
            try:
                body = self._read_body(resp)
            except requests.RequestException as e:
                raise TransportError(f"Failed to read response from {url}: {e}") from e

        logger.info(
            f"{path}: request completed in {time.time() - start_time:.2f}s "
            f"with response size of {len(body)} bytes"
        )

        if not 200 <= resp.status_code < 300:
            raise _api_error(resp.status_code, body)
        return body

    @staticmethod
    def _read_body(resp: requests.Response) -> bytes:
        chunks = []
        size = 0
        for chunk in resp.iter_content(chunk_size=64 * 1024):
            size += len(chunk)
            if size > MAX_RESPONSE_SIZE:
                raise TransportError(f"Response exceeds {MAX_RESPONSE_SIZE} bytes")
            chunks.append(chunk)
        return b"".join(chunks)

    def create_images(self, request: CreateRequest) -> DecodedResponse:
        """Generate images from a text prompt."""
        logger.debug(f"Creating image(s) with model {request.model}")
        body = self.send("images/generations", json=request.to_payload())
        return decode_response(body)

    def edit_images(self, request: EditRequest) -> DecodedResponse:
        """Edit or extend source images, optionally within a mask."""
        logger.debug(
            f"Editing {len(request.images)} image(s) with model {request.model}"
            f"{' and a mask' if request.mask else ''}"
        )
        body = self.send("images/edits", data=request.form_fields(), files=request.form_files())
        return decode_response(body)

    def close(self):
        self._session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class AsyncImgenClient:
    """
    aiohttp client for the OpenAI Images API, used by the web server.

    Usage:
        async with AsyncImgenClient(api_key="sk-...") as client:
            response = await client.create_images(request)
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        if not api_key:
            raise ValidationError("No API key provided")
        self.api_key = api_key
        self.base_url = _check_base_url(base_url)
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    async def init(self):
        """Initialize the client session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers=ImgenClient.headers(self.api_key),
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )

    async def close(self):
        """Close the client session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def send(self, path: str, **kwargs: Any) -> bytes:
        if not self._session:
            await self.init()

        url = f"{self.base_url}/{path.lstrip('/')}"
        start_time = time.time()

        try:
            async with self._session.post(url, **kwargs) as resp:
                if resp.content_length and resp.content_length > MAX_RESPONSE_SIZE:
                    raise TransportError(f"Response exceeds {MAX_RESPONSE_SIZE} bytes")
                body = await self._read_body(resp)
                status = resp.status
        except aiohttp.ClientError as e:
            raise TransportError(f"Request to {url} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError(f"Request to {url} timed out after {self.timeout}s") from e

        logger.info(
            f"{path}: request completed in {time.time() - start_time:.2f}s "
            f"with response size of {len(body)} bytes"
        )

        if not 200 <= status < 300:
            raise _api_error(status, body)
        return body

    @staticmethod
    async def _read_body(resp: aiohttp.ClientResponse) -> bytes:
        # Chunked and compressed responses carry no usable Content-Length
        chunks = []
        size = 0
        async for chunk in resp.content.iter_chunked(64 * 1024):
            size += len(chunk)
            if size > MAX_RESPONSE_SIZE:
                raise TransportError(f"Response exceeds {MAX_RESPONSE_SIZE} bytes")
            chunks.append(chunk)
        return b"".join(chunks)

    async def create_images(self, request: CreateRequest) -> DecodedResponse:
        body = await self.send("images/generations", json=request.to_payload())
        return decode_response(body)

    async def edit_images(self, request: EditRequest) -> DecodedResponse:
        form = aiohttp.FormData()
        for name, value in request.form_fields().items():
            form.add_field(name, value)
        for name, (filename, data, content_type) in request.form_files():
            form.add_field(name, data, filename=filename, content_type=content_type)
        body = await self.send("images/edits", data=form)
        return decode_response(body)

    async def __aenter__(self):
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
