import os
import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Union

from loguru import logger

from .api import DecodedResponse
from .exceptions import IoError

PREFIX_BYTES = 32
PREFIX_WORDS = 5
FALLBACK_PREFIX = "imgen"

EXTENSIONS = {
    "png": "png",
    "jpeg": "jpeg",
    "webp": "webp",
}


def prompt_prefix(prompt: str) -> str:
    """
    Turn the start of a prompt into a filename-safe prefix.

    Only the first 32 bytes of UTF-8 are looked at, cut back to a whole
    character. ASCII punctuation is dropped and ASCII letters are lowercased;
    other characters pass through so prompts in other languages still give a
    readable name.
    """
    head = prompt.encode("utf-8", errors="ignore")[:PREFIX_BYTES].decode("utf-8", errors="ignore")
    words = []
    for word in head.split():
        cleaned = "".join(
            (c.lower() if c.isascii() else c) for c in word if not c.isascii() or c.isalnum()
        )
        if cleaned:
            words.append(cleaned)
        if len(words) == PREFIX_WORDS:
            break
    return "_".join(words) or FALLBACK_PREFIX


def output_path(
    prefix: str,
    created: int,
    index: int,
    output_format: str = "png",
    directory: Optional[Union[str, Path]] = None,
) -> Path:
    """`{prefix}.{created}.{index}.{ext}`, with `index` starting at 1."""
    ext = EXTENSIONS.get(output_format, "png")
    path = Path(f"{prefix}.{created}.{index}.{ext}")
    if directory is not None:
        path = Path(directory) / path
    return path


def save_images(
    response: DecodedResponse,
    prefix: str,
    output_format: str = "png",
    directory: Optional[Union[str, Path]] = None,
) -> List[Path]:
    """Write every decoded image to disk and return the paths written."""
    paths = []
    for i, image in enumerate(response.images, start=1):
        path = output_path(prefix, response.created, i, output_format, directory)
        try:
            if path.parent != Path("."):
                path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(image.data)
        except OSError as e:
            raise IoError(f"Failed to write {path}: {e}") from e
        logger.debug(f"Saved {len(image.data)} bytes to {path}")
        paths.append(path)
    return paths


def open_in_viewer(path: Union[str, Path]) -> bool:
    """Open a file with the OS default application. Failures are only logged."""
    path = str(path)
    try:
        if sys.platform == "win32":
            os.startfile(path)
        elif sys.platform == "darwin":
            subprocess.Popen(["open", path], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        else:
            subprocess.Popen(["xdg-open", path], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except OSError as e:
        logger.warning(f"Failed to open {path}: {e}")
        return False
    return True
