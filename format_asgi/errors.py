"""
Exceptions raised while negotiating, decoding and encoding message bodies.
"""


class FormatError(Exception):
    """Base class for every error raised by format_asgi."""


class AcceptHeaderError(FormatError, ValueError):
    """An 'Accept' header carries a q-value that is not a number."""


class UnknownFormatError(FormatError, KeyError):
    """A format name does not match any built-in formatter."""


class DecodeError(FormatError):
    """A formatter failed to decode a request body."""

    def __init__(self, format_name: str, message: str | None = None):
        self.format_name = format_name
        super().__init__(message or f"Could not decode request body as {format_name!r}")


class EncodeError(FormatError):
    """A formatter failed to encode a response body."""

    def __init__(self, format_name: str, message: str | None = None):
        self.format_name = format_name
        super().__init__(message or f"Could not encode response body as {format_name!r}")
