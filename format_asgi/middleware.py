"""
Formatting middleware for plain handlers and for Starlette/ASGI apps.
"""
import io
import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from starlette.background import BackgroundTask
from starlette.datastructures import Headers
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .formatters import Charset, FormatDecoder, FormatEncoder
from .params import default_handle_error as default_params_error
from .params import wrap_format_params
from .records import Request, Response, read_body
from .response import default_handle_error as default_response_error
from .response import make_response_encoder, serializable, wrap_format_response

logger = logging.getLogger(__name__)

# Scope key holding the response encoder of the enclosing FormatMiddleware
ENCODER_SCOPE_KEY = "format_asgi.encode_response"

Formats = Sequence[str | FormatDecoder | FormatEncoder] | None


def wrap_formats(
    handler: Callable[[Request], Response],
    formats: Formats = None,
    charset: Charset | None = None,
    predicate: Callable[[Request, Response], bool] = serializable,
    handle_error: Callable = default_params_error,
    handle_response_error: Callable = default_response_error,
    format_options: Mapping[str, Mapping[str, Any]] | None = None,
) -> Callable[[Request], Any]:
    """
    Wraps a handler such that request bodies are decoded and response
    bodies encoded with the same formats.
    `handle_error` sees decoding errors, `handle_response_error` encoding ones.
    """
    handler = wrap_format_params(handler, formats, charset, handle_error, format_options)
    return wrap_format_response(
        handler, formats, predicate, charset, handle_response_error, format_options
    )


def to_starlette(response: Response) -> StarletteResponse:
    body = response.body
    if body is not None and not isinstance(body, str):
        body = read_body(body)
    return StarletteResponse(body, status_code=response.status, headers=response.headers)


async def send_result(result: Any, scope: Scope, receive: Receive, send: Send) -> None:
    if isinstance(result, Response):
        result = to_starlette(result)
    if not isinstance(result, StarletteResponse):
        raise TypeError(f"Cannot send {type(result).__name__} as a response")
    await result(scope, receive, send)


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """Returns a receive channel serving the buffered body first."""
    sent = False

    async def replay() -> Message:
        nonlocal sent
        if sent:
            return await receive()
        sent = True
        return {"type": "http.request", "body": body, "more_body": False}

    return replay


def _identity(request: Request) -> Request:
    return request


class FormatMiddleware:
    """
    ASGI middleware decoding request bodies and configuring how
    `FormattedResponse` bodies are encoded.

    Decoded bodies are stored in the request state:
    ``request.state.body_params`` holds the decoded value and
    ``request.state.params`` the query parameters merged with it.
    """

    def __init__(
        self,
        app: ASGIApp,
        formats: Formats = None,
        charset: Charset | None = None,
        predicate: Callable[[Request, Response], bool] = serializable,
        handle_error: Callable = default_params_error,
        handle_response_error: Callable = default_response_error,
        format_options: Mapping[str, Mapping[str, Any]] | None = None,
        excluded_handlers: Sequence[str] | None = None,
    ) -> None:
        self.app = app
        self.excluded_handlers = set(excluded_handlers or [])
        self.decode_request = wrap_format_params(
            _identity, formats, charset, handle_error, format_options
        )
        self.encode_response = make_response_encoder(
            formats, predicate, charset, handle_response_error, format_options
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or scope.get("path") in self.excluded_handlers:
            await self.app(scope, receive, send)
            return

        scope[ENCODER_SCOPE_KEY] = self.encode_response

        headers = Headers(scope=scope)
        if "content-type" not in headers:
            await self.app(scope, receive, send)
            return

        starlette_request = StarletteRequest(scope, receive)
        body = await starlette_request.body()
        request = Request(
            headers=dict(headers.items()),
            body=io.BytesIO(body),
            content_type=headers.get("content-type"),
            params=dict(starlette_request.query_params),
        )

        result = self.decode_request(request)
        if not isinstance(result, Request):
            # The error handler answered directly
            await send_result(result, scope, receive, send)
            return

        state = scope.setdefault("state", {})
        state["params"] = result.params
        if result.body_params is not None:
            state["body_params"] = result.body_params

        await self.app(scope, _replay_body(body, receive), send)


class FormattedResponse(StarletteResponse):
    """
    Response whose content is encoded, when sent, in the format the
    client prefers.

    Inside an app wrapped by `FormatMiddleware` the middleware settings
    are used, otherwise the keyword options given here (the same as
    `make_response_encoder` takes).
    """

    def __init__(
        self,
        content: Any,
        status_code: int = 200,
        headers: Mapping[str, str] | None = None,
        background: BackgroundTask | None = None,
        **options: Any,
    ) -> None:
        self.content = content
        self.options = options
        self.extra_headers = dict(headers or {})
        super().__init__(None, status_code, headers, background=background)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        encode_response = scope.get(ENCODER_SCOPE_KEY) or make_response_encoder(**self.options)

        headers = Headers(scope=scope)
        request = Request(headers=dict(headers.items()), content_type=headers.get("content-type"))
        response = Response(self.content, self.status_code, dict(self.extra_headers))
        result = encode_response(request, response)

        if isinstance(result, Response):
            result = to_starlette(result)
        if isinstance(result, StarletteResponse) and result.background is None:
            result.background = self.background
        await send_result(result, scope, receive, send)
