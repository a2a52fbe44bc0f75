"""
Middleware decoding request bodies into `body_params`.
"""
import io
import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from functools import reduce
from typing import Any

from .errors import DecodeError
from .formatters import (
    FORMATTERS,
    Charset,
    Decoder,
    FormatDecoder,
    formatter_options,
    init_decoder,
    is_decoder,
    resolve,
)
from .records import Request, has_body, read_body

logger = logging.getLogger(__name__)

Handler = Callable[[Request], Any]


def default_handle_error(error: Exception, handler: Handler, request: Request) -> Any:
    """Default error handler, re-raises the exception."""
    raise error


def _decoding_handler(
    next_handler: Handler,
    handler: Handler,
    decoder: Decoder,
    handle_error: Callable[[Exception, Handler, Request], Any],
) -> Handler:
    """
    Decodes with `decoder` when it matches and calls `handler`, the
    wrapped handler, with the result. Otherwise `next_handler` tries
    the next format.
    """
    def wrapper(request: Request) -> Any:
        try:
            matched = has_body(request) and decoder.matches(request)
            if matched:
                body = read_body(request.body)
                body_params = decoder.decode(replace(request, body=body)) if body else None
        except Exception as e:
            error = DecodeError(decoder.name)
            error.__cause__ = e
            return handle_error(error, handler, request)

        if not matched:
            return next_handler(request)

        if body_params is None:
            logger.debug("Format %r decoded nothing", decoder.name)
            return handler(replace(request, body=io.BytesIO(body)))

        logger.debug("Decoded request body with format %r", decoder.name)
        params = dict(request.params or {})
        if isinstance(body_params, Mapping):
            params.update(body_params)
        return handler(
            replace(request, body_params=body_params, params=params, body=io.BytesIO(body))
        )

    return wrapper


def wrap_format_params(
    handler: Handler,
    formats: Sequence[str | FormatDecoder] | None = None,
    charset: Charset | None = None,
    handle_error: Callable[[Exception, Handler, Request], Any] = default_handle_error,
    format_options: Mapping[str, Mapping[str, Any]] | None = None,
) -> Handler:
    """
    Wraps a handler such that request bodies are decoded by the first
    matching format, stored in `body_params` and, when they are a
    mapping, merged into `params`.

    :param formats: format names or formatter objects, tried in order.
        Defaults to every built-in formatter able to decode.
    :param charset: a charset name or a function taking the request and
        returning one. Defaults to the 'Content-Type' charset, then the
        'Accept-Charset' header, then a guess from the body.
    :param handle_error: called as ``handle_error(error, handler, request)``
        when decoding fails. Return ``handler(request)`` to go on with a
        modified request or any other value to answer directly.
        Defaults to re-raising.
    :param format_options: options per format name, e.g. ``{"json": {"kw": True}}``.
    """
    decoders = [
        init_decoder(formatter, formatter_options(formatter, format_options, charset))
        for formatter in map(resolve, formats if formats is not None else FORMATTERS)
        if is_decoder(formatter)
    ]

    # Wrapping in reverse makes the first format the outermost one,
    # so it is tried first. A matching format calls `handler` directly.
    return reduce(
        lambda h, decoder: _decoding_handler(h, handler, decoder, handle_error),
        reversed(decoders),
        handler,
    )
