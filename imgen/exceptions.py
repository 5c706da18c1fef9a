from typing import Optional


class ImgenError(Exception):
    """Base exception for every failure imgen reports to the user."""

    pass


class ValidationError(ImgenError):
    """Bad prompt, image or option input. Raised before any network call."""

    pass


class TransportError(ImgenError):
    """The request never got a response (DNS, connect, TLS, timeout...)."""

    pass


class ApiError(ImgenError):
    """
    The provider answered with a non-success status.

    Parameters
    ----------
    status: `int`
        HTTP status code of the response.
    message: `str`
        Error text extracted from the provider's error body.
    error_type: `str`, optional
        Provider error type, e.g. `invalid_request_error`.
    code: `str`, optional
        Provider error code, e.g. `moderation_blocked`.
    """

    def __init__(
        self,
        status: int,
        message: str,
        error_type: Optional[str] = None,
        code: Optional[str] = None,
    ):
        self.status = status
        self.message = message
        self.error_type = error_type
        self.code = code
        super().__init__(f"API error ({status}): {message}")


class DecodeError(ImgenError):
    """Response body is not the JSON envelope we expect, or base64 is malformed."""

    pass


class IoError(ImgenError):
    """Reading an input or writing an output file failed."""

    pass


class ConfigError(IoError):
    """The user config file exists but can't be read or parsed."""

    pass
