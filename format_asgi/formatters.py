"""
Built-in formatters and the interfaces custom formatters implement.

A formatter may be able to decode request bodies (`FormatDecoder`),
encode response bodies (`FormatEncoder`) or both. The pipelines check
the capability before using a formatter.
"""
import html
import io
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import edn_format
import msgspec
import yaml
from transit.reader import Reader
from transit.writer import Writer

from .charsets import default_charset_extractor, get_or_guess_charset
from .errors import UnknownFormatError
from .headers import MediaType, parse_accept
from .records import Request, get_content_type, has_body, read_body

DecodeFn = Callable[[Request], Any]
EncodeFn = Callable[[Any, Request], tuple[bytes, str]]
Charset = str | Callable[[Request], str]

JSON_PATTERN = re.compile(r"^application/(vnd.+)?json")
EDN_PATTERN = re.compile(r"^application/(vnd.+)?(x-)?(clojure|edn)")
YAML_PATTERN = re.compile(r"^(application|text)/(vnd.+)?(x-)?yaml")
TRANSIT_JSON_PATTERN = re.compile(r"^application/(vnd.+)?(x-)?transit\+json")
TRANSIT_MSGPACK_PATTERN = re.compile(r"^application/(vnd.+)?(x-)?transit\+msgpack")


def _has_methods(cls: type, *methods: str) -> bool:
    return all(any(method in base.__dict__ for base in cls.__mro__) for method in methods)


class FormatDecoder(ABC):
    """
    Decodes request bodies.
    Implementations need a `name` attribute.
    """

    @abstractmethod
    def create_decoder(self, options: Mapping[str, Any]) -> DecodeFn:
        """Returns a function taking a request with a fully read body and
        returning the decoded value."""

    @abstractmethod
    def decode_matches(self, request: Request) -> bool:
        """Returns True if the request can be decoded by this formatter."""

    @classmethod
    def __subclasshook__(cls, C):
        if cls is FormatDecoder:
            return _has_methods(C, "create_decoder", "decode_matches") or NotImplemented
        return NotImplemented


class FormatEncoder(ABC):
    """
    Encodes response bodies.
    Implementations need `name` and `content_type` attributes.
    """

    @abstractmethod
    def create_encoder(self, options: Mapping[str, Any]) -> EncodeFn:
        """Returns a function taking (body, request) and returning
        (encoded bytes, content type)."""

    @classmethod
    def __subclasshook__(cls, C):
        if cls is FormatEncoder:
            return _has_methods(C, "create_encoder") or NotImplemented
        return NotImplemented


def is_decoder(x: Any) -> bool:
    return isinstance(x, FormatDecoder)


def is_encoder(x: Any) -> bool:
    return isinstance(x, FormatEncoder)


@dataclass(frozen=True)
class Decoder:
    """A decoding formatter with its options applied."""
    name: str
    matches: Callable[[Request], bool]
    decode: DecodeFn


@dataclass(frozen=True)
class Encoder:
    """An encoding formatter with its options applied."""
    name: str
    content_type: str
    enc_type: MediaType
    encode: EncodeFn


def init_decoder(formatter: FormatDecoder, options: Mapping[str, Any] | None = None) -> Decoder:
    return Decoder(
        name=formatter.name,
        matches=formatter.decode_matches,
        decode=formatter.create_decoder(options or {}),
    )


def init_encoder(formatter: FormatEncoder, options: Mapping[str, Any] | None = None) -> Encoder:
    if not isinstance(formatter.content_type, str):
        raise TypeError(f"Formatter {formatter.name!r} needs a string content_type")
    return Encoder(
        name=formatter.name,
        content_type=formatter.content_type,
        enc_type=parse_accept(formatter.content_type)[0],
        encode=formatter.create_encoder(options or {}),
    )


#
# Utils
#

def regexp_predicate(pattern: re.Pattern, request: Request) -> bool:
    content_type = get_content_type(request)
    if not content_type:
        return False
    return has_body(request) and pattern.search(content_type) is not None


def _resolve_charset(charset: Charset, request: Request) -> str:
    if isinstance(charset, str):
        return charset
    if callable(charset):
        return charset(request)
    raise TypeError(f"charset must be a string or a callable, not {type(charset).__name__}")


def charset_decoder(decode_fn: Callable[[str], Any], options: Mapping[str, Any]) -> DecodeFn:
    charset = options.get("charset") or get_or_guess_charset

    def decoder(request: Request) -> Any:
        text = read_body(request.body).decode(_resolve_charset(charset, request))
        return decode_fn(text)

    return decoder


def charset_encoder(
    encode_fn: Callable[[Any], str], content_type: str, options: Mapping[str, Any]
) -> EncodeFn:
    charset = options.get("charset") or default_charset_extractor

    def encoder(body: Any, request: Request) -> tuple[bytes, str]:
        char_enc = _resolve_charset(charset, request)
        return encode_fn(body).encode(char_enc), f"{content_type}; charset={char_enc}"

    return encoder


def binary_decoder(decode_fn: Callable[[bytes], Any]) -> DecodeFn:
    def decoder(request: Request) -> Any:
        return decode_fn(read_body(request.body))

    return decoder


def binary_encoder(encode_fn: Callable[[Any], bytes], content_type: str) -> EncodeFn:
    def encoder(body: Any, request: Request) -> tuple[bytes, str]:
        return encode_fn(body), content_type

    return encoder


def _keywordize_option(options: Mapping[str, Any], default: bool) -> bool:
    return bool(options.get("keywordize", options.get("kw", default)))


def keywordize_keys(value: Any) -> Any:
    """Turns the string keys of every mapping in `value` into keywords."""
    if isinstance(value, Mapping):
        return {
            edn_format.Keyword(k) if isinstance(k, str) else k: keywordize_keys(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [keywordize_keys(v) for v in value]
    return value


def thaw(value: Any) -> Any:
    """Turns read-only mappings and tuples into dicts and lists. Map keys are left as read."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [thaw(v) for v in value]
    return value


def stringify_keys(value: Any) -> Any:
    """Turns keyword keys back into plain strings."""
    if isinstance(value, Mapping):
        return {
            k.name if isinstance(k, edn_format.Keyword) else k: stringify_keys(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [stringify_keys(v) for v in value]
    return value


#
# JSON
#

def _json_enc_hook(obj: Any) -> Any:
    if isinstance(obj, edn_format.Keyword):
        return obj.name
    if isinstance(obj, Mapping):
        return dict(obj)
    if isinstance(obj, Sequence):
        return list(obj)
    raise NotImplementedError(f"Objects of type {type(obj).__name__} are not supported")


@dataclass(frozen=True)
class JsonFormatter(FormatDecoder, FormatEncoder):
    name: str
    content_type: str
    keywordize: bool = False

    def create_decoder(self, options: Mapping[str, Any]) -> DecodeFn:
        keywordize = _keywordize_option(options, self.keywordize)

        def decode(text: str) -> Any:
            value = msgspec.json.decode(text)
            return keywordize_keys(value) if keywordize else value

        return charset_decoder(decode, options)

    def decode_matches(self, request: Request) -> bool:
        return regexp_predicate(JSON_PATTERN, request)

    def create_encoder(self, options: Mapping[str, Any]) -> EncodeFn:
        keywordize = _keywordize_option(options, self.keywordize)
        pretty = options.get("pretty", False)

        def encode(body: Any) -> str:
            if keywordize:
                body = stringify_keys(body)
            text = msgspec.json.encode(body, enc_hook=_json_enc_hook).decode("utf-8")
            return msgspec.json.format(text, indent=2) if pretty else text

        return charset_encoder(encode, self.content_type, options)


#
# EDN
#

EDN_WRITER_OPTIONS = ("keyword_keys", "sort_keys")


def _edn_encoder(content_type: str, options: Mapping[str, Any]) -> EncodeFn:
    writer_options = {k: options[k] for k in EDN_WRITER_OPTIONS if k in options}

    def encode(body: Any) -> str:
        return edn_format.dumps(body, **writer_options)

    return charset_encoder(encode, content_type, options)


@dataclass(frozen=True)
class EdnFormatter(FormatDecoder, FormatEncoder):
    """
    Reads and writes edn. Reading never evaluates code, tagged
    elements go through the handlers registered with edn_format.
    """
    name: str
    content_type: str

    def create_decoder(self, options: Mapping[str, Any]) -> DecodeFn:
        def decode(text: str) -> Any:
            if not text.strip():
                return None
            return edn_format.loads(text)

        return charset_decoder(decode, options)

    def decode_matches(self, request: Request) -> bool:
        return regexp_predicate(EDN_PATTERN, request)

    def create_encoder(self, options: Mapping[str, Any]) -> EncodeFn:
        return _edn_encoder(self.content_type, options)


@dataclass(frozen=True)
class EdnEncoder(FormatEncoder):
    """Write-only edn, used for 'application/clojure'."""
    name: str
    content_type: str

    def create_encoder(self, options: Mapping[str, Any]) -> EncodeFn:
        return _edn_encoder(self.content_type, options)


#
# YAML
#

class YamlDumper(yaml.SafeDumper):
    """Safe dumper that also knows keywords and read-only mappings."""


YamlDumper.add_representer(
    edn_format.Keyword, lambda dumper, data: dumper.represent_str(data.name)
)
YamlDumper.add_multi_representer(
    Mapping, lambda dumper, data: dumper.represent_dict(dict(data))
)


def wrap_html(text: str) -> str:
    return (
        "<html>\n<head></head>\n<body><div><pre>\n"
        + html.escape(text, quote=False)
        + "</pre></div></body></html>"
    )


def _yaml_encoder(content_type: str, html_wrap: bool, options: Mapping[str, Any]) -> EncodeFn:
    html_wrap = options.get("html", html_wrap)

    def encode(body: Any) -> str:
        text = yaml.dump(
            body,
            Dumper=YamlDumper,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
        )
        return wrap_html(text) if html_wrap else text

    return charset_encoder(encode, content_type, options)


@dataclass(frozen=True)
class YamlFormatter(FormatDecoder, FormatEncoder):
    name: str
    content_type: str
    keywordize: bool = False

    def create_decoder(self, options: Mapping[str, Any]) -> DecodeFn:
        keywordize = _keywordize_option(options, self.keywordize)

        def decode(text: str) -> Any:
            value = yaml.safe_load(text)
            return keywordize_keys(value) if keywordize else value

        return charset_decoder(decode, options)

    def decode_matches(self, request: Request) -> bool:
        return regexp_predicate(YAML_PATTERN, request)

    def create_encoder(self, options: Mapping[str, Any]) -> EncodeFn:
        return _yaml_encoder(self.content_type, False, options)


@dataclass(frozen=True)
class YamlEncoder(FormatEncoder):
    """Write-only YAML, optionally wrapped in an HTML page for browsers."""
    name: str
    content_type: str
    html: bool = False

    def create_encoder(self, options: Mapping[str, Any]) -> EncodeFn:
        return _yaml_encoder(self.content_type, self.html, options)


#
# Transit
#

@dataclass(frozen=True)
class TransitFormatter(FormatDecoder, FormatEncoder):
    """
    Transit over JSON or MessagePack.
    Transit bodies are binary, their content type has no charset.

    The `handlers` option maps types to write handlers and tags to
    read handlers; `default_handler` reads unknown tags.
    Decoded maps and arrays come back as plain dicts and lists.
    """
    name: str
    content_type: str
    fmt: str

    def _pattern(self) -> re.Pattern:
        return TRANSIT_JSON_PATTERN if self.fmt == "json" else TRANSIT_MSGPACK_PATTERN

    def create_decoder(self, options: Mapping[str, Any]) -> DecodeFn:
        handlers = options.get("handlers") or {}
        default_handler = options.get("default_handler")

        def decode(data: bytes) -> Any:
            reader = Reader(self.fmt)
            for tag, handler in handlers.items():
                if isinstance(tag, str):
                    reader.register(tag, handler)
            if default_handler is not None:
                reader.register("default_decoder", default_handler)
            if self.fmt == "json":
                return thaw(reader.read(io.StringIO(data.decode("utf-8"))))
            return thaw(reader.read(io.BytesIO(data)))

        return binary_decoder(decode)

    def decode_matches(self, request: Request) -> bool:
        return regexp_predicate(self._pattern(), request)

    def create_encoder(self, options: Mapping[str, Any]) -> EncodeFn:
        handlers = options.get("handlers") or {}
        protocol = "json_verbose" if self.fmt == "json" and options.get("verbose") else self.fmt

        def encode(data: Any) -> bytes:
            out = io.StringIO() if self.fmt == "json" else io.BytesIO()
            writer = Writer(out, protocol)
            for obj_type, handler in handlers.items():
                if isinstance(obj_type, type):
                    writer.register(obj_type, handler)
            writer.write(data)
            value = out.getvalue()
            return value.encode("utf-8") if isinstance(value, str) else value

        return binary_encoder(encode, self.content_type)


#
# Formatter list
#

FORMATTERS: tuple[FormatDecoder | FormatEncoder, ...] = (
    JsonFormatter("json", "application/json"),
    JsonFormatter("json-kw", "application/json", keywordize=True),
    EdnFormatter("edn", "application/edn"),
    EdnEncoder("clojure", "application/clojure"),
    YamlFormatter("yaml", "application/x-yaml"),
    YamlFormatter("yaml-kw", "application/x-yaml", keywordize=True),
    YamlEncoder("yaml-in-html", "text/html", html=True),
    TransitFormatter("transit-json", "application/transit+json", "json"),
    TransitFormatter("transit-msgpack", "application/transit+msgpack", "msgpack"),
)

FORMATTERS_MAP: dict[str, FormatDecoder | FormatEncoder] = {f.name: f for f in FORMATTERS}


def resolve(fmt: str | FormatDecoder | FormatEncoder) -> FormatDecoder | FormatEncoder:
    """
    Returns the built-in formatter called `fmt`.
    Formatter objects, built-in or custom, are returned unchanged.
    """
    if is_decoder(fmt) or is_encoder(fmt):
        return fmt
    try:
        return FORMATTERS_MAP[fmt]
    except (KeyError, TypeError):
        raise UnknownFormatError(f"Unknown format: {fmt!r}") from None


def formatter_options(
    formatter: FormatDecoder | FormatEncoder,
    options: Mapping[str, Mapping[str, Any]] | None,
    charset: Charset | None = None,
) -> dict[str, Any]:
    """Options for one formatter, with a pipeline wide charset as default."""
    opts: dict[str, Any] = {}
    if charset is not None:
        opts["charset"] = charset
    opts.update((options or {}).get(formatter.name) or {})
    return opts
