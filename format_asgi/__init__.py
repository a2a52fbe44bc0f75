"""
Content negotiation middleware: decodes request bodies and encodes
responses in JSON, edn, YAML or Transit depending on the request
'Content-Type', 'Accept' and 'Accept-Charset' headers.
"""
from .charsets import CharsetResolver, resolve_charset, resolve_response_charset
from .errors import (
    AcceptHeaderError,
    DecodeError,
    EncodeError,
    FormatError,
    UnknownFormatError,
)
from .formatters import (
    FORMATTERS,
    FormatDecoder,
    FormatEncoder,
    init_decoder,
    init_encoder,
    resolve,
)
from .headers import HeaderParser, MediaType, parse_accept, parse_accept_charset
from .middleware import FormatMiddleware, FormattedResponse, wrap_formats
from .negotiation import can_encode, preferred_encoder
from .params import wrap_format_params
from .records import Request, Response
from .response import serializable, wrap_format_response

__version__ = "0.7.0"

__all__ = [
    "AcceptHeaderError",
    "CharsetResolver",
    "DecodeError",
    "EncodeError",
    "FORMATTERS",
    "FormatDecoder",
    "FormatEncoder",
    "FormatError",
    "FormatMiddleware",
    "FormattedResponse",
    "HeaderParser",
    "MediaType",
    "Request",
    "Response",
    "UnknownFormatError",
    "can_encode",
    "init_decoder",
    "init_encoder",
    "parse_accept",
    "parse_accept_charset",
    "preferred_encoder",
    "resolve",
    "resolve_charset",
    "resolve_response_charset",
    "serializable",
    "wrap_format_params",
    "wrap_format_response",
    "wrap_formats",
]
