"""
Pytest configuration and fixtures for imgen tests.
"""

import base64
import io
import json

import pytest
from PIL import Image

from imgen.api import DecodedImage, DecodedResponse, Usage


def make_image_bytes(fmt: str = "PNG", color=(255, 0, 0, 255)) -> bytes:
    mode = "RGBA" if fmt == "PNG" else "RGB"
    img = Image.new(mode, (8, 8), color=color if mode == "RGBA" else color[:3])
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def make_response_body(images, created: int = 1713833628, usage: bool = True, **extra) -> bytes:
    """Build an Images API response body holding `images` (raw bytes)."""
    body = {
        "created": created,
        "data": [{"b64_json": base64.b64encode(data).decode("ascii")} for data in images],
    }
    if usage:
        body["usage"] = {
            "total_tokens": 100,
            "input_tokens": 50,
            "output_tokens": 50,
            "input_tokens_details": {"text_tokens": 10, "image_tokens": 40},
        }
    body.update(extra)
    return json.dumps(body).encode("utf-8")


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes("PNG")


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image_bytes("JPEG")


@pytest.fixture
def decoded_response(png_bytes) -> DecodedResponse:
    return DecodedResponse(
        created=1713833628,
        images=[DecodedImage(data=png_bytes), DecodedImage(data=png_bytes[::-1])],
        usage=Usage(total_tokens=100, input_tokens=50, output_tokens=50),
    )


@pytest.fixture
def isolated_env(monkeypatch, tmp_path):
    """Run with no API key in the environment and an empty config dir."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("OPENAI_BASE_URL", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.chdir(tmp_path)
    return tmp_path
