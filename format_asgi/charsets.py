"""
Charset resolution for request and response bodies.
"""
import codecs
import re
from collections.abc import Callable, Iterable
from encodings.aliases import aliases

from charset_normalizer import from_bytes

from .headers import HeaderParser, default_parser
from .records import Request, get_content_type, read_body

DEFAULT_CHARSET = "utf-8"

CONTENT_TYPE_CHARSET = re.compile(r";\s*charset=([^\s;]+)")


def _available_charsets() -> frozenset[str]:
    """
    Lower-case names of the text encodings this interpreter supports:
    codec names ("iso8859-1") and their hyphenated, registry style
    spellings ("iso-8859-1", "windows-1252"). Run-together aliases
    such as "utf8" or "latin1" are not included.
    """
    names: set[str] = set()
    spellings = [(name, name) for name in set(aliases.values())]
    spellings += [(alias, name) for alias, name in aliases.items() if "_" in alias]

    for spelling, module_name in spellings:
        try:
            info = codecs.lookup(module_name)
        except LookupError:
            continue  # platform specific codecs, e.g. "mbcs"
        if not getattr(info, "_is_text_encoding", True):
            continue  # bytes-to-bytes codecs such as "base64_codec"
        names.add(info.name.lower())
        names.add(spelling.replace("_", "-").lower())
    return frozenset(names)


AVAILABLE_CHARSETS = _available_charsets()


def preferred_charset(
    charsets: Iterable[tuple[str, float]],
    available: frozenset[str] = AVAILABLE_CHARSETS,
) -> str:
    """
    Returns an acceptable choice from a list of (charset, q-value) pairs.

    NOTE: choices are sorted by *ascending* q-value before filtering, so
    the supported charset with the lowest declared q wins. This matches
    the long-standing behaviour clients rely on and is kept on purpose.
    """
    for name, _ in sorted(charsets, key=lambda c: c[1]):
        if name.lower() in available:
            return name.lower()
    return DEFAULT_CHARSET


def get_charset(request: Request) -> str | None:
    """Returns the charset parameter of the request 'Content-Type', if any."""
    content_type = get_content_type(request)
    if content_type:
        match = CONTENT_TYPE_CHARSET.search(content_type)
        if match:
            return match.group(1).lower()
    return None


def guess_charset(request: Request, available: frozenset[str] = AVAILABLE_CHARSETS) -> str | None:
    """
    Sniffs the charset of the request body.
    Returns None when nothing supported could be detected.
    """
    body = read_body(request.body)
    if not body:
        return None

    match = from_bytes(body).best()
    if match is None:
        return None

    try:
        name = codecs.lookup(match.encoding).name.lower()
    except LookupError:
        return None
    return name if name in available else None


class CharsetResolver:
    """
    Picks the charset used to decode request bodies and to encode
    response bodies.
    The request side falls back through the 'Content-Type' charset,
    the 'Accept-Charset' header and content sniffing (when a detector
    is configured) before settling on utf-8.
    """

    def __init__(
        self,
        available: frozenset[str] = AVAILABLE_CHARSETS,
        parser: HeaderParser = default_parser,
        detector: Callable[[Request], str | None] | None = guess_charset,
    ):
        self.available = available
        self.parser = parser
        self.detector = detector

    def choose(self, accept_charset: str) -> str:
        """Returns a useful charset from the accept-charset string."""
        return preferred_charset(self.parser.parse_accept_charset(accept_charset), self.available)

    def resolve(self, request: Request) -> str:
        charset = get_charset(request)
        if charset in self.available:
            return charset

        accept_charset = request.headers.get("accept-charset")
        if accept_charset is not None:
            return self.choose(accept_charset)

        if self.detector is not None:
            charset = self.detector(request)
            if charset:
                return charset

        return DEFAULT_CHARSET

    def resolve_response(self, request: Request) -> str:
        accept_charset = request.headers.get("accept-charset")
        if accept_charset is not None:
            return self.choose(accept_charset)
        return DEFAULT_CHARSET


default_resolver = CharsetResolver()


def choose_charset(accept_charset: str) -> str:
    return default_resolver.choose(accept_charset)


def resolve_charset(request: Request) -> str:
    """Charset for decoding the body of `request`."""
    return default_resolver.resolve(request)


def resolve_response_charset(request: Request) -> str:
    """Charset for encoding the response to `request`."""
    return default_resolver.resolve_response(request)


# Names used by formatter options
get_or_guess_charset = resolve_charset
default_charset_extractor = resolve_response_charset
