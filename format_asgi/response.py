"""
Middleware encoding response bodies into the format the client prefers.
"""
import io
import logging
import os
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from typing import Any

from .errors import EncodeError
from .formatters import (
    FORMATTERS,
    Charset,
    Encoder,
    FormatEncoder,
    formatter_options,
    init_encoder,
    is_encoder,
    resolve,
)
from .negotiation import preferred_encoder
from .records import Request, Response

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Response]
Predicate = Callable[[Request, Response], bool]
ErrorHandler = Callable[[Exception, Request, Response], Any]

# Headers set by the encoder, replaced whatever their case
ENCODED_HEADERS = ("content-type", "content-length")


def serializable(request: Request, response: Response | None) -> bool:
    """
    Returns True whenever the response body is not None, a string,
    raw bytes, a file path or a readable stream.
    """
    if response is None:
        return False
    body = response.body
    return not (
        body is None
        or isinstance(body, (str, bytes, bytearray, memoryview, os.PathLike))
        or hasattr(body, "read")
    )


def default_handle_error(error: Exception, request: Request, response: Response) -> Any:
    """Default error handler, re-raises the exception."""
    raise error


def init_encoders(
    formats: Sequence[str | FormatEncoder] | None = None,
    charset: Charset | None = None,
    format_options: Mapping[str, Mapping[str, Any]] | None = None,
) -> list[Encoder]:
    return [
        init_encoder(formatter, formatter_options(formatter, format_options, charset))
        for formatter in map(resolve, formats if formats is not None else FORMATTERS)
        if is_encoder(formatter)
    ]


def make_response_encoder(
    formats: Sequence[str | FormatEncoder] | None = None,
    predicate: Predicate = serializable,
    charset: Charset | None = None,
    handle_error: ErrorHandler = default_handle_error,
    format_options: Mapping[str, Mapping[str, Any]] | None = None,
) -> Callable[[Request, Response], Any]:
    """
    Returns a function taking (request, response) and returning the
    response with its body encoded. See `wrap_format_response`.
    """
    encoders = init_encoders(formats, charset, format_options)
    if not encoders:
        raise ValueError("At least one encoding format is required")

    def encode_response(request: Request, response: Response) -> Any:
        try:
            if not predicate(request, response):
                return response

            # No 406: fall back to the first format when nothing matches
            encoder = preferred_encoder(encoders, request) or encoders[0]
        except Exception as e:
            return handle_error(e, request, response)

        try:
            body, content_type = encoder.encode(response.body, request)
        except Exception as e:
            error = EncodeError(encoder.name)
            error.__cause__ = e
            return handle_error(error, request, response)

        logger.debug("Encoded response body with format %r", encoder.name)
        headers = {
            k: v for k, v in response.headers.items() if k.lower() not in ENCODED_HEADERS
        }
        headers["Content-Type"] = content_type
        headers["Content-Length"] = str(len(body))
        return replace(response, body=io.BytesIO(body), headers=headers)

    return encode_response


def wrap_format_response(
    handler: Handler,
    formats: Sequence[str | FormatEncoder] | None = None,
    predicate: Predicate = serializable,
    charset: Charset | None = None,
    handle_error: ErrorHandler = default_handle_error,
    format_options: Mapping[str, Mapping[str, Any]] | None = None,
) -> Callable[[Request], Any]:
    """
    Wraps a handler such that response bodies are encoded in the format
    preferred by the request 'Accept' header. The first format is used
    when there is no 'Accept' header or nothing in it matches.

    :param formats: format names or formatter objects, in order of
        preference. Defaults to every built-in formatter able to encode.
    :param predicate: called as ``predicate(request, response)``, the body
        is only encoded when it returns True. Defaults to `serializable`.
    :param charset: a charset name or a function taking the request and
        returning one. Defaults to the 'Accept-Charset' header or utf-8.
    :param handle_error: called as ``handle_error(error, request, response)``
        when encoding fails. Defaults to re-raising.
    :param format_options: options per format name, e.g. ``{"json": {"pretty": True}}``.
    """
    encode_response = make_response_encoder(
        formats, predicate, charset, handle_error, format_options
    )

    def wrapper(request: Request) -> Any:
        return encode_response(request, handler(request))

    return wrapper
