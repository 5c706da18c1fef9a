"""
Web frontend for imgen.

Endpoints:
- GET  /          (HTML form)
- POST /generate  (multipart form, responds with the first image)
- GET  /health
- GET  /models

Usage:
    imgen serve
    uvicorn imgen.server:app
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, List, Optional
from urllib.parse import urlparse

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, Response
from loguru import logger
import uvicorn

from . import __version__
from .api import (
    DEFAULT_MODEL,
    MODELS,
    DecodedResponse,
    build_create_request,
    build_edit_request,
    validate_mode,
)
from .client import AsyncImgenClient
from .config import load_server_config, resolve_api_key
from .exceptions import ApiError, DecodeError, ImgenError, TransportError, ValidationError
from .inputs import ImageInput, image_from_bytes
from .output import prompt_prefix

STATIC_PATH = Path(__file__).parent / "static"

MEDIA_TYPES = {
    "png": "image/png",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
}

CONFIG = load_server_config()


def status_for(error: ImgenError) -> int:
    """HTTP status to answer with for an imgen error."""
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, ApiError):
        return error.status if error.status >= 400 else 502
    if isinstance(error, (TransportError, DecodeError)):
        return 502
    return 500


def get_client_factory() -> Callable[..., AsyncImgenClient]:
    return AsyncImgenClient


async def _read_upload(upload: Optional[UploadFile]) -> Optional[ImageInput]:
    """Browsers send empty file parts for untouched inputs; treat those as absent."""
    if upload is None or not upload.filename:
        return None
    data = await upload.read()
    if not data:
        return None
    return image_from_bytes(data, filename=upload.filename)


def require_same_origin(request: Request):
    """
    Reject browser requests sent from another site.

    `/generate` may spend the server's own API key, so only the form served
    by this app may call it. Requests without an Origin header (curl, scripts)
    are allowed.
    """
    origin = request.headers.get("origin")
    if origin is None:
        return
    if urlparse(origin).netloc != request.headers.get("host"):
        logger.warning(f"[Web] Rejected cross-origin request from {origin}")
        raise HTTPException(status_code=403, detail="Cross-origin requests are not allowed")


# ============ Lifespan ============


@asynccontextmanager
async def lifespan(app: FastAPI):
    if "api_key" not in CONFIG:
        CONFIG["api_key"] = resolve_api_key()
    logger.info(f"Starting imgen web frontend on {CONFIG['host']}:{CONFIG['port']}")
    if not CONFIG.get("api_key"):
        logger.warning("No server API key configured; requests must supply one in the form")
    yield
    logger.info("imgen web frontend stopped")


# ============ FastAPI App ============

app = FastAPI(
    title="imgen",
    description="Browser form for OpenAI image generation and editing",
    version=__version__,
    lifespan=lifespan,
)


# ============ Endpoints ============


@app.get("/")
async def index():
    """Serve the generation form."""
    static_file = STATIC_PATH / "index.html"
    if static_file.exists():
        return FileResponse(str(static_file))
    raise HTTPException(status_code=404, detail="Web interface not found")


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": __version__,
        "has_api_key": bool(CONFIG.get("api_key")),
    }


@app.get("/models")
async def get_models():
    return {
        "object": "list",
        "data": [{"id": model, "object": "model", "owned_by": "openai"} for model in MODELS],
    }


@app.post("/generate", dependencies=[Depends(require_same_origin)])
async def generate(
    prompt: str = Form(..., description="Text prompt"),
    api_key: Optional[str] = Form(default=None),
    image: Optional[UploadFile] = File(default=None, description="Source image to edit"),
    mask: Optional[UploadFile] = File(default=None, description="Mask for in-painting"),
    model: str = Form(default=DEFAULT_MODEL),
    size: str = Form(default="1024x1024"),
    quality: str = Form(default="low"),
    output_format: str = Form(default="png"),
    client_factory: Callable[..., AsyncImgenClient] = Depends(get_client_factory),
):
    """
    Generate or edit an image and respond with the image bytes.

    With a source image the request goes to the edits endpoint; adding a mask
    makes it an in-paint.
    """
    try:
        source = await _read_upload(image)
        mask_input = await _read_upload(mask)
        images: List[ImageInput] = [source] if source else []
        mode = "generate" if not images else ("inpaint" if mask_input else "edit")
        validate_mode(mode, images, mask_input)

        key = api_key or CONFIG.get("api_key")
        logger.info(f"[Web] {mode}: {prompt[:80]}...")

        async with client_factory(
            key, base_url=CONFIG["base_url"], timeout=CONFIG["timeout"]
        ) as client:
            if images:
                request = build_edit_request(
                    prompt, images, mask=mask_input, mode=mode,
                    model=model, size=size, quality=quality,
                )
                output_format = "png"
                response: DecodedResponse = await client.edit_images(request)
            else:
                request = build_create_request(
                    prompt, model=model, size=size, quality=quality,
                    output_format=output_format,
                )
                response = await client.create_images(request)

    except ImgenError as e:
        logger.error(f"[Web] {type(e).__name__}: {e}")
        raise HTTPException(status_code=status_for(e), detail=str(e))

    if not response.images:
        raise HTTPException(status_code=502, detail="No images returned")

    first = response.images[0]
    filename = f"{prompt_prefix(prompt)}.{response.created}.1.{output_format}"
    filename = filename.encode("ascii", "ignore").decode() or f"imgen.{output_format}"
    headers = {"Content-Disposition": f'inline; filename="{filename}"'}
    if first.revised_prompt:
        revised = " ".join(first.revised_prompt.split())
        headers["X-Revised-Prompt"] = revised.encode("ascii", "ignore").decode()

    logger.success(f"[Web] Done: {len(first.data)} bytes")
    return Response(
        content=first.data,
        media_type=MEDIA_TYPES.get(output_format, "image/png"),
        headers=headers,
    )


# ============ Main ============

if __name__ == "__main__":
    uvicorn.run(
        "imgen.server:app",
        host=CONFIG.get("host", "127.0.0.1"),
        port=CONFIG.get("port", 8000),
        reload=False,
    )
