"""
Request and response models for the OpenAI Images API.

Generation requests are sent as JSON. Edit requests are sent as
multipart/form-data, because the edits endpoint takes image files.
"""

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import DecodeError, ValidationError
from .inputs import ImageInput

DEFAULT_MODEL = "gpt-image-1"

MODELS = [DEFAULT_MODEL]

# gpt-image-1 pricing, USD per 1M tokens
INPUT_COST_PER_MILLION = 10.0
OUTPUT_COST_PER_MILLION = 40.0

Mode = Literal["generate", "edit", "inpaint"]
Size = Literal["1024x1024", "1536x1024", "1024x1536", "auto"]
Quality = Literal["low", "medium", "high", "auto"]
Background = Literal["transparent", "opaque", "auto"]
Moderation = Literal["low", "auto"]
OutputFormat = Literal["png", "jpeg", "webp"]


# ============ Requests ============


class CreateRequest(BaseModel):
    """Request body for `POST /images/generations`."""

    model: str = Field(default=DEFAULT_MODEL, description="Model to use")
    prompt: str = Field(..., description="A text description of the desired image(s)")
    n: Optional[int] = Field(default=None, ge=1, le=10)
    size: Optional[Size] = None
    quality: Optional[Quality] = None
    background: Optional[Background] = None
    moderation: Optional[Moderation] = None
    output_compression: Optional[int] = Field(default=None, ge=0, le=100)
    output_format: Optional[OutputFormat] = None

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Prompt cannot be empty")
        return v

    def to_payload(self) -> Dict[str, Any]:
        """JSON body, with unset options left out."""
        return self.model_dump(exclude_none=True)


class EditRequest(BaseModel):
    """Request for `POST /images/edits`. Encoded as multipart form data."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    prompt: str = Field(..., description="A text description of the desired image(s)")
    images: List[ImageInput] = Field(default_factory=list, description="Source image(s) to edit")
    mask: Optional[ImageInput] = Field(
        default=None, description="Image whose transparent areas mark where to edit"
    )
    model: str = Field(default=DEFAULT_MODEL)
    n: Optional[int] = Field(default=None, ge=1, le=10)
    quality: Optional[Quality] = None
    size: Optional[Size] = None

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Prompt cannot be empty")
        return v

    @model_validator(mode="after")
    def images_present(self) -> "EditRequest":
        if not self.images:
            raise ValueError("At least one source image is required to edit")
        return self

    def form_fields(self) -> Dict[str, str]:
        fields = {"prompt": self.prompt, "model": self.model}
        if self.n is not None:
            fields["n"] = str(self.n)
        if self.quality is not None:
            fields["quality"] = self.quality
        if self.size is not None:
            fields["size"] = self.size
        return fields

    def form_files(self) -> List[Tuple[str, Tuple[str, bytes, str]]]:
        files = [("image[]", img.as_file_tuple()) for img in self.images]
        if self.mask is not None:
            files.append(("mask", self.mask.as_file_tuple()))
        return files


def _validation_message(e: PydanticValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


def validate_mode(
    mode: Mode, images: Optional[List[Any]] = None, mask: Optional[Any] = None
) -> None:
    """Check that the inputs a mode needs are present, before reading or sending anything."""
    has_images = bool(images)
    if mask is not None and not has_images:
        raise ValidationError("A mask requires a source image")
    if mode == "edit" and not has_images:
        raise ValidationError("Edit mode requires at least one source image")
    if mode == "inpaint":
        if not has_images:
            raise ValidationError("In-paint mode requires a source image")
        if mask is None:
            raise ValidationError("In-paint mode requires a mask")


def build_create_request(prompt: str, **options) -> CreateRequest:
    try:
        return CreateRequest(prompt=prompt, **options)
    except PydanticValidationError as e:
        raise ValidationError(_validation_message(e)) from e


def build_edit_request(
    prompt: str,
    images: List[ImageInput],
    mask: Optional[ImageInput] = None,
    mode: Mode = "edit",
    **options,
) -> EditRequest:
    validate_mode(mode, images, mask)
    try:
        return EditRequest(prompt=prompt, images=images, mask=mask, **options)
    except PydanticValidationError as e:
        raise ValidationError(_validation_message(e)) from e


# ============ Responses ============


class InputTokensDetails(BaseModel):
    text_tokens: int = 0
    image_tokens: int = 0


class Usage(BaseModel):
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    input_tokens_details: Optional[InputTokensDetails] = None

    def cost(self) -> float:
        """Estimated cost in USD for gpt-image-1."""
        input_cost = self.input_tokens / 1_000_000 * INPUT_COST_PER_MILLION
        output_cost = self.output_tokens / 1_000_000 * OUTPUT_COST_PER_MILLION
        return input_cost + output_cost


class ImageData(BaseModel):
    b64_json: str
    revised_prompt: Optional[str] = None


class ImageResponse(BaseModel):
    created: int
    data: List[ImageData]
    usage: Optional[Usage] = None


class ErrorDetail(BaseModel):
    message: str = ""
    type: Optional[str] = None
    code: Optional[Union[str, int]] = None


class ErrorBody(BaseModel):
    error: ErrorDetail


@dataclass
class DecodedImage:
    """A generated image as raw bytes."""

    data: bytes
    revised_prompt: Optional[str] = None


@dataclass
class DecodedResponse:
    created: int
    images: List[DecodedImage] = field(default_factory=list)
    usage: Optional[Usage] = None


def decode_b64(b64: str) -> bytes:
    try:
        return base64.b64decode(b64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Malformed base64 image data: {e}") from e


def decode_response(body: bytes) -> DecodedResponse:
    """Parse the JSON envelope and decode every image. All or nothing."""
    try:
        raw = orjson.loads(body)
    except orjson.JSONDecodeError as e:
        raise DecodeError(f"Response is not valid JSON: {e}") from e

    try:
        response = ImageResponse.model_validate(raw)
    except PydanticValidationError as e:
        raise DecodeError(f"Unexpected response shape: {_validation_message(e)}") from e

    images = [
        DecodedImage(data=decode_b64(item.b64_json), revised_prompt=item.revised_prompt)
        for item in response.data
    ]
    return DecodedResponse(created=response.created, images=images, usage=response.usage)


def parse_error_body(body: bytes) -> Optional[ErrorDetail]:
    """Extract `{"error": {...}}` from a provider error response, if present."""
    try:
        return ErrorBody.model_validate(orjson.loads(body)).error
    except (orjson.JSONDecodeError, PydanticValidationError):
        return None
