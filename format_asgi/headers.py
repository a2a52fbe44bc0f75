"""
HTTP Accept and Accept-Charset header parsing utilities.
"""
import re
from dataclasses import dataclass
from functools import lru_cache

from .errors import AcceptHeaderError

# Parsed results are cached by the raw header string.
DEFAULT_CACHE_SIZE = 500

# One Accept-Charset entry: "utf-8" or "utf-8;q=0.5"
CHARSET_PART = re.compile(r"([^;]+)(?:;\s*q\s*=\s*([0-9\.]+))?")

# A q-value media range parameter: "q=0.5"
Q_PARAM = re.compile(r"q\s*=")


@dataclass(frozen=True)
class MediaType:
    """
    One media range of an 'Accept' header.
    "application/json;level=1;q=0.4"
    => MediaType(type="application", sub_type="json", q=0.4, parameter="level=1")
    """
    type: str
    sub_type: str | None = None
    q: float = 1.0
    parameter: str | None = None

    @property
    def mime(self) -> str:
        return f"{self.type}/{self.sub_type}"


def _parse_q(param: str) -> float:
    try:
        return float(param.split("=")[1])
    except (IndexError, ValueError) as e:
        raise AcceptHeaderError(f"Invalid q-value in media range: {param!r}") from e


def parse_media_range(value: str) -> MediaType:
    """
    Parses a single media range of the 'Accept' header (e.g., "text/*;q=0.8").
    Only the first non-q parameter is kept.
    """
    media_range, *params = value.strip().split(";")
    type_, _, sub_type = media_range.strip().lower().partition("/")

    if not params:
        return MediaType(type_, sub_type or None)

    # No media-range parameters, only a q-value
    if Q_PARAM.match(params[0].strip()):
        return MediaType(type_, sub_type or None, _parse_q(params[0]))

    q_val = 1.0
    for param in params[1:]:
        if Q_PARAM.match(param.strip()):
            q_val = _parse_q(param)
            break

    return MediaType(type_, sub_type or None, q_val, params[0].strip())


def _sort_by_check(media_types: list[MediaType], attr: str, check) -> None:
    # Entries equal to `check` go last, everything else keeps its order.
    media_types.sort(key=lambda m: getattr(m, attr) == check)


def parse_accept_header(accept: str) -> tuple[MediaType, ...]:
    """
    Parses an 'Accept' header into media ranges sorted by preference.

    Sorting is done with successive stable passes, so each pass only
    reorders entries tied on the previous ones:
    entries with a parameter first, concrete types before "*",
    concrete sub-types before "*" and finally by descending q-value.
    """
    media_types = [parse_media_range(part) for part in accept.split(",")]

    _sort_by_check(media_types, "parameter", None)
    _sort_by_check(media_types, "type", "*")
    _sort_by_check(media_types, "sub_type", "*")
    media_types.sort(key=lambda m: -m.q)

    return tuple(media_types)


def parse_accept_charset_header(accept_charset: str) -> tuple[tuple[str, float], ...]:
    """
    Parses an 'Accept-Charset' header into (charset, q-value) pairs.
    A missing or malformed q-value counts as 1.
    """
    choices: list[tuple[str, float]] = []

    for segment in accept_charset.split(","):
        if not segment:
            continue
        match = CHARSET_PART.search(segment)
        if not match:
            continue
        charset, q_str = match.groups()
        try:
            q_val = float(q_str.strip())
        except (AttributeError, ValueError):
            q_val = 1.0
        choices.append((charset.strip(), q_val))

    return tuple(choices)


class HeaderParser:
    """
    Owns the LRU caches used for parsing 'Accept' and 'Accept-Charset'
    headers. Each instance caches independently, so tests can work
    with fresh parsers.
    """

    def __init__(self, maxsize: int = DEFAULT_CACHE_SIZE):
        self.maxsize = maxsize
        self.parse_accept = lru_cache(maxsize=maxsize)(parse_accept_header)
        self.parse_accept_charset = lru_cache(maxsize=maxsize)(parse_accept_charset_header)

    def cache_clear(self) -> None:
        self.parse_accept.cache_clear()
        self.parse_accept_charset.cache_clear()


default_parser = HeaderParser()


def parse_accept(accept: str) -> tuple[MediaType, ...]:
    """Cached form of `parse_accept_header` using the default parser."""
    return default_parser.parse_accept(accept)


def parse_accept_charset(accept_charset: str) -> tuple[tuple[str, float], ...]:
    """Cached form of `parse_accept_charset_header` using the default parser."""
    return default_parser.parse_accept_charset(accept_charset)
