"""
Prompt and image inputs.

Command line prompts can be a literal string, a path to a file holding the
prompt, `@path` (must be a file) or `-` for stdin. Images can be a path or `-`.
At most one input may read stdin.
"""

import io
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, List, Optional, TextIO

from PIL import Image, UnidentifiedImageError

from .exceptions import IoError, ValidationError

STDIN = "-"

MIME_BY_EXTENSION = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}

MIME_BY_PIL_FORMAT = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
}

EXTENSION_BY_MIME = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
}


@dataclass
class ImageInput:
    """An image read fully into memory, ready to upload."""

    data: bytes
    filename: str
    content_type: str

    def as_file_tuple(self):
        return (self.filename, self.data, self.content_type)


def mime_from_filename(filename: str) -> str:
    """Infer the MIME type of an image from its extension."""
    suffix = Path(filename).suffix.lower()
    if suffix not in MIME_BY_EXTENSION:
        raise ValidationError(
            f"Unsupported image type '{suffix or filename}': expected .png, .jpg, .jpeg or .webp"
        )
    return MIME_BY_EXTENSION[suffix]


def mime_from_bytes(data: bytes) -> str:
    """Sniff the MIME type of an image from its content."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError) as e:
        raise ValidationError(f"Input is not a readable image: {e}") from e

    if fmt not in MIME_BY_PIL_FORMAT:
        raise ValidationError(f"Unsupported image format: {fmt}")
    return MIME_BY_PIL_FORMAT[fmt]


def ext_from_mime(content_type: str) -> str:
    if content_type not in EXTENSION_BY_MIME:
        raise ValidationError(f"Unsupported image content type: {content_type}")
    return EXTENSION_BY_MIME[content_type]


def image_from_bytes(data: bytes, filename: Optional[str] = None) -> ImageInput:
    """Wrap uploaded or piped bytes, sniffing the type and naming it if needed."""
    if not data:
        raise ValidationError("Image input is empty")
    content_type = mime_from_bytes(data)
    if not filename:
        filename = f"stdin.{ext_from_mime(content_type)}"
    return ImageInput(data=data, filename=filename, content_type=content_type)


class PromptSource:
    """Where to read the prompt from: a literal, a file or stdin."""

    def __init__(
        self,
        literal: Optional[str] = None,
        path: Optional[Path] = None,
        stdin: bool = False,
    ):
        self.literal = literal
        self.path = path
        self.stdin = stdin

    @classmethod
    def parse(cls, value: str) -> "PromptSource":
        if value == STDIN:
            return cls(stdin=True)

        require_file = value.startswith("@")
        path = Path(value[1:] if require_file else value)

        if path.is_file():
            return cls(path=path)
        if require_file:
            raise ValidationError(f"File not found: {path}")
        return cls(literal=value)

    def read(self, stdin: Optional[TextIO] = None) -> str:
        if self.stdin:
            stream = stdin or sys.stdin
            try:
                prompt = stream.read()
            except OSError as e:
                raise IoError(f"Failed to read prompt from stdin: {e}") from e
        elif self.path is not None:
            try:
                prompt = self.path.read_text(encoding="utf-8")
            except OSError as e:
                raise IoError(f"Failed to read prompt from file: {self.path}: {e}") from e
        else:
            prompt = self.literal or ""

        if not prompt.strip():
            raise ValidationError("Prompt cannot be empty")
        return prompt

    def __repr__(self):
        if self.stdin:
            return "PromptSource(stdin)"
        if self.path is not None:
            return f"PromptSource(path={self.path!r})"
        return f"PromptSource(literal={self.literal!r})"


class ImageSource:
    """Where to read an image from: a file or stdin."""

    def __init__(self, path: Optional[Path] = None, stdin: bool = False):
        self.path = path
        self.stdin = stdin

    @classmethod
    def parse(cls, value: str) -> "ImageSource":
        if value == STDIN:
            return cls(stdin=True)

        path = Path(value[1:] if value.startswith("@") else value)
        if not path.is_file():
            raise ValidationError(
                f"Expected a file path or '-' for stdin for image input, got: {value}"
            )
        return cls(path=path)

    def read(self, stdin: Optional[BinaryIO] = None) -> ImageInput:
        if self.stdin:
            stream = stdin or sys.stdin.buffer
            try:
                data = stream.read()
            except OSError as e:
                raise IoError(f"Failed to read image from stdin: {e}") from e
            return image_from_bytes(data)

        content_type = mime_from_filename(self.path.name)
        try:
            data = self.path.read_bytes()
        except OSError as e:
            raise IoError(f"Failed to read image from file: {self.path}: {e}") from e
        return ImageInput(data=data, filename=self.path.name, content_type=content_type)

    def __repr__(self):
        if self.stdin:
            return "ImageSource(stdin)"
        return f"ImageSource(path={self.path!r})"


def check_single_stdin(
    prompt: PromptSource,
    images: Optional[List[ImageSource]] = None,
    mask: Optional[ImageSource] = None,
) -> None:
    """Only one input can consume stdin."""
    count = int(prompt.stdin)
    count += sum(1 for img in images or [] if img.stdin)
    count += int(mask is not None and mask.stdin)
    if count > 1:
        raise ValidationError(
            "Only one input prompt, --image or --mask can be '-' (stdin) at a time"
        )
