"""
Request and response records passed through the formatting pipelines.

The pipelines treat both records as values: every step returns a copy
made with ``dataclasses.replace`` instead of mutating its input.
"""
from dataclasses import dataclass, field
from typing import Any, BinaryIO


@dataclass
class Request:
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | BinaryIO | None = None
    content_type: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    body_params: Any = None


@dataclass
class Response:
    body: Any = None
    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)


def read_body(body: bytes | BinaryIO | None) -> bytes | None:
    """
    Reads a request body into memory.
    Bytes are returned as they are, readable handles are read to the end.
    """
    if body is None:
        return None
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    return body.read()


def has_body(request: Request) -> bool:
    body = request.body
    if body is None:
        return False
    if isinstance(body, (bytes, bytearray, memoryview)):
        return len(body) > 0
    return True


def get_content_type(request: Request) -> str | None:
    """
    Returns the declared content type of a request.
    The `content_type` field wins over the 'Content-Type' and
    'content-type' headers, probed in that order.
    """
    return (
        request.content_type
        or request.headers.get("Content-Type")
        or request.headers.get("content-type")
    )
