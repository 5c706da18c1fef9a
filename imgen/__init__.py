"""
imgen - generate and edit images with the OpenAI Images API.
"""

__version__ = "0.1.4"

from .exceptions import (
    ApiError,
    ConfigError,
    DecodeError,
    ImgenError,
    IoError,
    TransportError,
    ValidationError,
)

__all__ = [
    "__version__",
    "ApiError",
    "ConfigError",
    "DecodeError",
    "ImgenError",
    "IoError",
    "TransportError",
    "ValidationError",
]
