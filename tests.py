"""Main tests for the formatting middleware.

The middleware tests at the bottom run full Starlette apps through the
test client, the rest exercise the pipelines with plain records.
"""

import functools
import io

import edn_format
import pytest

from starlette.applications import Starlette
from starlette.responses import PlainTextResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from format_asgi import (
    AcceptHeaderError,
    CharsetResolver,
    DecodeError,
    EncodeError,
    FormatDecoder,
    FormatMiddleware,
    FormattedResponse,
    HeaderParser,
    MediaType,
    Request,
    Response,
    UnknownFormatError,
    can_encode,
    init_encoder,
    parse_accept,
    parse_accept_charset,
    preferred_encoder,
    resolve,
    wrap_format_params,
    wrap_format_response,
    wrap_formats,
)
from format_asgi.charsets import choose_charset, guess_charset, preferred_charset
from format_asgi.formatters import FORMATTERS, Encoder, init_decoder, is_decoder, is_encoder


@pytest.fixture
def test_client_factory(anyio_backend_name, anyio_backend_options):
    return functools.partial(
        TestClient,
        backend=anyio_backend_name,
        backend_options=anyio_backend_options,
    )


def echo_handler(request):
    return request


def body_request(body, content_type, **kwargs):
    return Request(
        headers={"Content-Type": content_type},
        body=io.BytesIO(body),
        **kwargs,
    )


#
# Header parsing
#

def test_parse_accept_ordering():
    accept = "text/plain, */*, text/plain;level=1, text/*, text/*;q=0.1"
    assert list(parse_accept(accept)) == [
        MediaType("text", "plain", 1.0, "level=1"),
        MediaType("text", "plain", 1.0),
        MediaType("text", "*", 1.0),
        MediaType("*", "*", 1.0),
        MediaType("text", "*", 0.1),
    ]


@pytest.mark.parametrize(
    "accept, expected",
    [
        ("application/json", MediaType("application", "json", 1.0)),
        ("application/json;q=0.4", MediaType("application", "json", 0.4)),
        ("application/json; q=0.4", MediaType("application", "json", 0.4)),
        ("application/json;level=1;q=0.4", MediaType("application", "json", 0.4, "level=1")),
        ("application/json;level=1", MediaType("application", "json", 1.0, "level=1")),
        ("Application/JSON", MediaType("application", "json", 1.0)),
        ("text/html;quux=2", MediaType("text", "html", 1.0, "quux=2")),
        ("text/html;level=1;quux=2", MediaType("text", "html", 1.0, "level=1")),
    ],
)
def test_parse_media_range(accept, expected):
    assert parse_accept(accept) == (expected,)


def test_parse_accept_higher_q_wins_over_specificity():
    ranked = parse_accept("application/json;level=1;q=0.2, */*;q=0.9")
    assert [m.mime for m in ranked] == ["*/*", "application/json"]


@pytest.mark.parametrize("accept", ["application/json;q=high", "text/html;level=1;q=", "text/*;q"])
def test_parse_accept_malformed_q(accept):
    with pytest.raises(AcceptHeaderError):
        parse_accept(accept)


@pytest.mark.parametrize(
    "accept_charset, expected",
    [
        ("utf-8", [("utf-8", 1.0)]),
        ("utf8; q=0.8, utf-16", [("utf8", 0.8), ("utf-16", 1.0)]),
        ("iso-8859-1;q=0.5 , utf-8", [("iso-8859-1", 0.5), ("utf-8", 1.0)]),
        # Malformed q-values silently count as 1
        ("utf-8;q=1.2.3", [("utf-8", 1.0)]),
        ("utf-8,,utf-16", [("utf-8", 1.0), ("utf-16", 1.0)]),
    ],
)
def test_parse_accept_charset(accept_charset, expected):
    assert list(parse_accept_charset(accept_charset)) == expected


def test_header_parsers_cache_independently():
    first = HeaderParser(maxsize=2)
    second = HeaderParser()

    first.parse_accept("application/json")
    first.parse_accept("application/json")

    assert first.parse_accept.cache_info().hits == 1
    assert second.parse_accept.cache_info().currsize == 0

    first.parse_accept("text/html")
    first.parse_accept("text/plain")
    assert first.parse_accept.cache_info().currsize == 2

    first.cache_clear()
    assert first.parse_accept.cache_info().currsize == 0


#
# Charsets
#

def test_charset_lowest_q_wins():
    # "utf8" is an alias spelling, not a canonical charset name
    assert choose_charset("utf8; q=0.8, utf-16") == "utf-16"
    assert choose_charset("utf-16;q=0.9, iso-8859-1;q=0.2") == "iso-8859-1"


def test_charset_ties_keep_declared_order():
    assert choose_charset("utf-16;q=0.5, iso-8859-1;q=0.5") == "utf-16"


@pytest.mark.parametrize("accept_charset", ["klingon", "", "UTF8;q=0.2"])
def test_charset_falls_back_to_utf8(accept_charset):
    assert choose_charset(accept_charset) == "utf-8"


def test_charset_membership_is_case_insensitive():
    assert preferred_charset([("UTF-16", 1.0)]) == "utf-16"


def test_resolve_charset_order():
    resolver = CharsetResolver(detector=lambda request: "utf-16")

    assert resolver.resolve(Request(headers={"content-type": "application/json; charset=ISO-8859-1"})) == "iso-8859-1"
    assert resolver.resolve(Request(headers={"content-type": "application/json; charset=klingon"})) == "utf-16"
    assert resolver.resolve(Request(headers={"accept-charset": "utf-16"})) == "utf-16"
    assert resolver.resolve(Request(headers={"accept-charset": "nope"})) == "utf-8"
    assert resolver.resolve(Request(body=b"{}")) == "utf-16"
    assert CharsetResolver(detector=None).resolve(Request(body=b"{}")) == "utf-8"


def test_resolve_response_charset_never_sniffs():
    resolver = CharsetResolver(detector=lambda request: "utf-16")

    assert resolver.resolve_response(Request(body=b"{}")) == "utf-8"
    assert resolver.resolve_response(Request(headers={"accept-charset": "utf-16"})) == "utf-16"


def test_guess_charset():
    text = "Jürgen Müller wohnt in der Schönhauser Allee und fährt gern Fahrrad. " * 4
    assert guess_charset(Request(body=text.encode("utf-8"))) == "utf-8"
    assert guess_charset(Request(body=b"")) is None
    assert guess_charset(Request()) is None


#
# Formatters
#

def test_built_in_formatter_capabilities():
    capabilities = {f.name: (is_decoder(f), is_encoder(f)) for f in FORMATTERS}
    assert capabilities == {
        "json": (True, True),
        "json-kw": (True, True),
        "edn": (True, True),
        "clojure": (False, True),
        "yaml": (True, True),
        "yaml-kw": (True, True),
        "yaml-in-html": (False, True),
        "transit-json": (True, True),
        "transit-msgpack": (True, True),
    }


def test_resolve_unknown_format():
    with pytest.raises(UnknownFormatError):
        resolve("xml")
    with pytest.raises(KeyError):
        resolve("xml")


def test_resolve_passes_custom_formatters_through():
    class CsvDecoder:
        name = "csv"

        def create_decoder(self, options):
            return lambda request: request.body.decode().split(",")

        def decode_matches(self, request):
            return request.headers.get("content-type") == "text/csv"

    csv = CsvDecoder()
    assert isinstance(csv, FormatDecoder)
    assert resolve(csv) is csv

    handler = wrap_format_params(echo_handler, formats=[csv])
    request = handler(Request(headers={"content-type": "text/csv"}, body=b"a,b,c"))
    assert request.body_params == ["a", "b", "c"]


@pytest.mark.parametrize(
    "name, content_type",
    [
        ("json", "application/json; charset=utf-8"),
        ("edn", "application/edn; charset=utf-8"),
        ("clojure", "application/clojure; charset=utf-8"),
        ("yaml", "application/x-yaml; charset=utf-8"),
        ("yaml-in-html", "text/html; charset=utf-8"),
        ("transit-json", "application/transit+json"),
        ("transit-msgpack", "application/transit+msgpack"),
    ],
)
def test_encoder_content_types(name, content_type):
    encoder = init_encoder(resolve(name))
    _, produced = encoder.encode({"a": 1}, Request())
    assert produced == content_type


@pytest.mark.parametrize(
    "name, content_type, expected",
    [
        ("json", "application/json", True),
        ("json", "application/vnd.api+json", True),
        ("json", "application/edn", False),
        ("edn", "application/edn", True),
        ("edn", "application/x-clojure", True),
        ("yaml", "text/yaml", True),
        ("yaml", "application/x-yaml", True),
        ("yaml", "application/json", False),
        ("transit-json", "application/transit+json", True),
        ("transit-json", "application/transit+msgpack", False),
        ("transit-msgpack", "application/vnd.app+transit+msgpack", True),
    ],
)
def test_decode_predicates(name, content_type, expected):
    assert resolve(name).decode_matches(body_request(b"x", content_type)) is expected


def test_decode_predicate_needs_a_body():
    assert not resolve("json").decode_matches(Request(headers={"Content-Type": "application/json"}))
    assert not resolve("json").decode_matches(Request(headers={"Content-Type": "application/json"}, body=b""))


def test_content_type_field_wins_over_headers():
    request = Request(
        content_type="application/edn",
        headers={"Content-Type": "application/json"},
        body=b"{}",
    )
    assert resolve("edn").decode_matches(request)
    assert not resolve("json").decode_matches(request)


KW = edn_format.Keyword


@pytest.mark.parametrize(
    "name, content_type, value",
    [
        ("json", "application/json", {"a": 1, "b": ["x", 2.5], "c": {"d": None}}),
        ("json-kw", "application/json", {KW("a"): 1, KW("b"): {KW("c"): "d"}}),
        ("edn", "application/edn", {"a": 1, "b": {"c": "d"}}),
        ("yaml", "application/x-yaml", {"a": 1, "b": ["x", 2.5], "c": {"d": True}}),
        ("yaml-kw", "application/x-yaml", {KW("a"): 1, KW("b"): {KW("c"): "d"}}),
    ],
)
def test_text_round_trip(name, content_type, value):
    formatter = resolve(name)
    body, _ = init_encoder(formatter).encode(value, Request())
    decoded = init_decoder(formatter).decode(Request(headers={"Content-Type": content_type}, body=body))
    assert decoded == value


@pytest.mark.parametrize(
    "name, content_type",
    [
        ("transit-json", "application/transit+json"),
        ("transit-msgpack", "application/transit+msgpack"),
    ],
)
def test_transit_round_trip(name, content_type):
    formatter = resolve(name)
    value = {"a": {"b": [1, 2]}, "c": "x", "d": 3.5}
    body, _ = init_encoder(formatter).encode(value, Request())
    decoded = init_decoder(formatter).decode(Request(headers={"Content-Type": content_type}, body=body))
    assert decoded == value


def test_transit_verbose_json():
    encoder = init_encoder(resolve("transit-json"), {"verbose": True})
    body, _ = encoder.encode({"a": 1}, Request())
    assert body.startswith(b"{")


def test_json_keywordize_option():
    decoder = init_decoder(resolve("json"), {"kw": True})
    assert decoder.decode(body_request(b'{"a": {"b": 1}}', "application/json")) == {KW("a"): {KW("b"): 1}}


def test_json_pretty():
    encoder = init_encoder(resolve("json"), {"pretty": True})
    body, _ = encoder.encode({"a": 1}, Request())
    assert body == b'{\n  "a": 1\n}'


def test_json_decodes_declared_charset():
    request = Request(
        headers={"Content-Type": "application/json; charset=utf-16"},
        body='{"name": "Jürgen"}'.encode("utf-16"),
    )
    assert init_decoder(resolve("json")).decode(request) == {"name": "Jürgen"}


def test_yaml_in_html():
    body, content_type = init_encoder(resolve("yaml-in-html")).encode({"a": "<b>"}, Request())
    assert content_type == "text/html; charset=utf-8"
    assert body == b"<html>\n<head></head>\n<body><div><pre>\na: &lt;b&gt;\n</pre></div></body></html>"


def test_edn_reads_keywords():
    decoder = init_decoder(resolve("edn"))
    assert decoder.decode(body_request(b'{:foo "bar"}', "application/edn")) == {KW("foo"): "bar"}


#
# Negotiation
#

def make_encoder(name, content_type):
    return Encoder(name, content_type, parse_accept(content_type)[0], lambda body, request: (b"", content_type))


def test_can_encode_wildcards():
    encoder = make_encoder("foo", "foo/bar")
    assert can_encode(encoder, MediaType("*", "*"))
    assert can_encode(encoder, MediaType("foo", "*"))
    assert can_encode(encoder, MediaType("foo", "bar"))
    assert not can_encode(encoder, MediaType("foo", "buzz"))
    assert not can_encode(encoder, MediaType("fizz", "*"))


def test_preferred_encoder():
    json_encoder = make_encoder("json", "application/json")
    html_encoder = make_encoder("html", "text/html")
    encoders = [json_encoder, html_encoder]

    ranked = [MediaType("text", "*", 1.0), MediaType("application", "json", 0.5)]
    assert preferred_encoder(encoders, Request(headers={"accept": ranked})) is html_encoder
    assert preferred_encoder(encoders, Request(headers={"accept": "text/*, application/json;q=0.5"})) is html_encoder
    assert preferred_encoder(encoders, Request()) is json_encoder


@pytest.mark.parametrize(
    "accept, expected",
    [
        ("*/*", "json"),
        ("text/html", "html"),
        ("application/*", "json"),
        ("application/xyz", None),
        ("application/xyz, text/*;q=0.1", "html"),
    ],
)
def test_preferred_encoder_table(accept, expected):
    encoders = [make_encoder("json", "application/json"), make_encoder("html", "text/html")]
    encoder = preferred_encoder(encoders, Request(headers={"accept": accept}))
    assert (encoder.name if encoder else None) == expected


def test_preferred_encoder_uses_content_type_without_accept():
    encoders = [make_encoder("json", "application/json"), make_encoder("html", "text/html")]
    assert preferred_encoder(encoders, Request(content_type="text/html")).name == "html"


#
# Request decoding
#

def test_decodes_json_body():
    handler = wrap_format_params(echo_handler)
    request = handler(body_request(b'{"foo": "bar"}', "application/json", params={"id": "1"}))

    assert request.body_params == {"foo": "bar"}
    assert request.params == {"id": "1", "foo": "bar"}
    # Body can still be read downstream
    assert request.body.read() == b'{"foo": "bar"}'


def test_first_matching_format_wins():
    calls = []

    class Spy(FormatDecoder):
        def __init__(self, name, matches):
            self.name = name
            self.matches = matches

        def create_decoder(self, options):
            def decode(request):
                calls.append(("decode", self.name))
                return {"by": self.name}
            return decode

        def decode_matches(self, request):
            calls.append(("match", self.name))
            return self.matches

    handler = wrap_format_params(echo_handler, formats=[Spy("json", False), Spy("edn", True), Spy("yaml", True)])
    request = handler(body_request(b"{}", "application/edn"))

    assert request.body_params == {"by": "edn"}
    assert calls == [("match", "json"), ("match", "edn"), ("decode", "edn")]


@pytest.mark.parametrize(
    "body, content_type",
    [
        (b'{"a": {"b": 1}}', "application/json"),
        (b"a:\n  b: 1\n", "application/x-yaml"),
    ],
)
def test_default_formats_keep_string_keys(body, content_type):
    request = wrap_format_params(echo_handler)(body_request(body, content_type))
    assert request.body_params == {"a": {"b": 1}}
    assert all(isinstance(k, str) for k in request.body_params)


def test_formats_after_a_match_are_never_tried():
    decoded = []

    def counting(name):
        class Counting(FormatDecoder):
            def create_decoder(self, options):
                def decode(request):
                    decoded.append(name)
                    return {"by": name}
                return decode

            def decode_matches(self, request):
                return True

        formatter = Counting()
        formatter.name = name
        return formatter

    handler = wrap_format_params(echo_handler, formats=[counting("json"), counting("json2")])
    request = handler(body_request(b"{}", "application/json"))

    assert request.body_params == {"by": "json"}
    assert decoded == ["json"]


def test_json_and_edn_in_declared_order():
    handler = wrap_format_params(echo_handler, formats=["json", "edn"])
    request = handler(body_request(b'{:a 1}', "application/edn"))
    assert request.body_params == {KW("a"): 1}


def test_empty_body_is_passed_through():
    handler = wrap_format_params(echo_handler)
    request = handler(body_request(b"", "application/json", params={"id": "1"}))

    assert request.body_params is None
    assert request.params == {"id": "1"}


def test_decoded_nothing_is_passed_through():
    handler = wrap_format_params(echo_handler, formats=["edn", "json"])
    request = handler(body_request(b"   ", "application/edn", params={"id": "1"}))

    assert request.body_params is None
    assert request.params == {"id": "1"}
    assert request.body.read() == b"   "


def test_unmatched_content_type_is_passed_through():
    original = body_request(b"a,b", "text/csv")
    assert wrap_format_params(echo_handler)(original) is original


def test_non_mapping_body_is_not_merged():
    handler = wrap_format_params(echo_handler)
    request = handler(body_request(b"[1, 2]", "application/json", params={"id": "1"}))

    assert request.body_params == [1, 2]
    assert request.params == {"id": "1"}


def test_decode_error_is_raised_by_default():
    handler = wrap_format_params(echo_handler)
    with pytest.raises(DecodeError) as exc_info:
        handler(body_request(b"{oops", "application/json"))
    assert exc_info.value.format_name == "json"
    assert exc_info.value.__cause__ is not None


def test_decode_error_handler():
    seen = []

    def handle_error(error, handler, request):
        seen.append(error)
        return Response(b"malformed body", status=400)

    handler = wrap_format_params(echo_handler, formats=["json", "json-kw"], handle_error=handle_error)
    response = handler(body_request(b"{oops", "application/json"))

    assert response.status == 400
    # No retry with the next format after an error
    assert len(seen) == 1


def test_handler_errors_are_not_decode_errors():
    def failing_handler(request):
        raise RuntimeError("handler failed")

    def handle_error(error, handler, request):
        pytest.fail("only decoding errors reach the error handler")

    handler = wrap_format_params(failing_handler, handle_error=handle_error)
    with pytest.raises(RuntimeError, match="handler failed"):
        handler(body_request(b"{}", "application/json"))


def test_handler_errors_without_a_body_propagate():
    def failing_handler(request):
        raise RuntimeError("handler failed")

    def handle_error(error, handler, request):
        return "answered"

    handler = wrap_format_params(failing_handler, handle_error=handle_error)
    with pytest.raises(RuntimeError, match="handler failed"):
        handler(Request())


def test_unsupported_content_type_charset_is_ignored():
    handler = wrap_format_params(echo_handler, formats=["json"])
    request = handler(body_request(b'{"a": 1}', "application/json; charset=klingon"))
    assert request.body_params == {"a": 1}


def test_fixed_request_charset():
    handler = wrap_format_params(echo_handler, formats=["json"], charset="utf-16")
    request = handler(body_request('{"a": "ö"}'.encode("utf-16"), "application/json"))
    assert request.body_params == {"a": "ö"}


#
# Response encoding
#

def respond_with(body, **kwargs):
    return lambda request: Response(body, **kwargs)


@pytest.mark.parametrize("body", [None, "plain text", b"raw", io.BytesIO(b"stream")])
def test_unserializable_bodies_are_passed_through(body):
    handler = wrap_format_response(respond_with(body, headers={"X-Custom": "1"}))
    response = handler(Request(headers={"accept": "application/json"}))

    assert response.body is body
    assert response.headers == {"X-Custom": "1"}


def test_encodes_preferred_format():
    handler = wrap_format_response(respond_with({"foo": "bar"}), formats=["json", "yaml"])
    response = handler(Request(headers={"accept": "application/x-yaml"}))

    assert response.body.read() == b"foo: bar\n"
    assert response.headers["Content-Type"] == "application/x-yaml; charset=utf-8"
    assert response.headers["Content-Length"] == "9"


def test_falls_back_to_first_format():
    handler = wrap_format_response(respond_with({"foo": "bar"}), formats=["json"])
    response = handler(Request(headers={"accept": "application/xyz"}))

    assert response.headers["Content-Type"] == "application/json; charset=utf-8"
    assert response.body.read() == b'{"foo":"bar"}'


def test_no_accept_header_uses_first_format():
    handler = wrap_format_response(respond_with({"foo": "bar"}), formats=["yaml", "json"])
    response = handler(Request())
    assert response.headers["Content-Type"] == "application/x-yaml; charset=utf-8"


def test_encoding_replaces_existing_headers():
    handler = wrap_format_response(
        respond_with({"a": 1}, headers={"content-type": "text/plain", "X-Custom": "1"}),
        formats=["json"],
    )
    response = handler(Request())
    assert response.headers == {
        "X-Custom": "1",
        "Content-Type": "application/json; charset=utf-8",
        "Content-Length": "7",
    }


def test_response_charset_from_accept_charset():
    handler = wrap_format_response(respond_with({"a": "ö"}), formats=["json"])
    response = handler(Request(headers={"accept-charset": "utf-16"}))

    assert response.headers["Content-Type"] == "application/json; charset=utf-16"
    assert response.body.read().decode("utf-16") == '{"a":"ö"}'


def test_response_charset_option():
    handler = wrap_format_response(
        respond_with({"a": 1}),
        formats=["json"],
        format_options={"json": {"charset": lambda request: "iso-8859-1"}},
    )
    response = handler(Request(headers={"accept-charset": "utf-16"}))
    assert response.headers["Content-Type"] == "application/json; charset=iso-8859-1"


def test_binary_formats_have_no_charset():
    handler = wrap_format_response(respond_with({"a": 1}))
    response = handler(Request(headers={"accept": "application/transit+msgpack"}))
    assert response.headers["Content-Type"] == "application/transit+msgpack"


def test_custom_predicate():
    handler = wrap_format_response(
        respond_with({"a": 1}),
        formats=["json"],
        predicate=lambda request, response: False,
    )
    assert handler(Request()).body == {"a": 1}


def test_encode_error_is_raised_by_default():
    handler = wrap_format_response(respond_with({"a": object()}), formats=["json"])
    with pytest.raises(EncodeError) as exc_info:
        handler(Request())
    assert exc_info.value.format_name == "json"


def test_encode_error_handler():
    def handle_error(error, request, response):
        return Response(b"cannot encode", status=500)

    handler = wrap_format_response(respond_with({"a": object()}), formats=["json"], handle_error=handle_error)
    assert handler(Request()).status == 500


def test_malformed_accept_goes_to_error_handler():
    seen = []

    def handle_error(error, request, response):
        seen.append(error)
        return response

    handler = wrap_format_response(respond_with({"a": 1}), handle_error=handle_error)
    handler(Request(headers={"accept": "application/json;q=high"}))
    assert isinstance(seen[0], AcceptHeaderError)


def test_wrap_formats():
    def handler(request):
        return Response({"echo": request.body_params})

    app = wrap_formats(handler, formats=["json", "yaml"])
    response = app(
        Request(
            headers={"Content-Type": "application/json", "accept": "application/x-yaml"},
            body=io.BytesIO(b'{"a": 1}'),
        )
    )
    assert response.body.read() == b"echo:\n  a: 1\n"


#
# ASGI middleware
#

async def echo_endpoint(request):
    return FormattedResponse(
        {
            "body_params": getattr(request.state, "body_params", None),
            "raw": (await request.body()).decode(),
        }
    )


def make_app(**options):
    app = Starlette(routes=[Route("/", echo_endpoint, methods=["GET", "POST"]),
                            Route("/excluded", echo_endpoint, methods=["POST"])])
    app.add_middleware(FormatMiddleware, **options)
    return app


def test_middleware_decodes_and_encodes(test_client_factory):
    client = test_client_factory(make_app(formats=["json", "yaml"]))
    response = client.post("/", content=b'{"a": 1}', headers={"content-type": "application/json"})

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/json; charset=utf-8"
    assert response.json() == {"body_params": {"a": 1}, "raw": '{"a": 1}'}
    assert int(response.headers["content-length"]) == len(response.content)


def test_middleware_negotiates_response(test_client_factory):
    client = test_client_factory(make_app(formats=["json", "yaml"]))
    response = client.get("/", headers={"accept": "application/x-yaml"})

    assert response.headers["content-type"] == "application/x-yaml; charset=utf-8"
    assert response.text == "body_params: null\nraw: ''\n"


def test_middleware_answers_in_request_format_without_accept(test_client_factory):
    client = test_client_factory(make_app(formats=["json", "yaml"]))
    del client.headers["accept"]
    response = client.post("/", content=b"a: 1\n", headers={"content-type": "application/x-yaml"})

    assert response.headers["content-type"] == "application/x-yaml; charset=utf-8"
    assert response.text.startswith("body_params:\n  a: 1\n")


def test_middleware_default_formats_keep_string_keys(test_client_factory):
    client = test_client_factory(make_app())
    response = client.post(
        "/",
        content=b"a: 1\n",
        headers={"content-type": "application/x-yaml", "accept": "application/json"},
    )
    assert response.json()["body_params"] == {"a": 1}


def test_middleware_excluded_handlers(test_client_factory):
    client = test_client_factory(make_app(formats=["json"], excluded_handlers=["/excluded"]))
    response = client.post("/excluded", content=b'{"a": 1}', headers={"content-type": "application/json"})
    assert response.json() == {"body_params": None, "raw": '{"a": 1}'}


def test_middleware_error_handler(test_client_factory):
    def handle_error(error, handler, request):
        return Response(b"malformed body", status=400)

    client = test_client_factory(make_app(formats=["json"], handle_error=handle_error))
    response = client.post("/", content=b"{oops", headers={"content-type": "application/json"})

    assert response.status_code == 400
    assert response.text == "malformed body"


def test_formatted_response_without_middleware(test_client_factory):
    def homepage(request):
        return FormattedResponse({"a": 1}, formats=["yaml", "json"])

    app = Starlette(routes=[Route("/", homepage)])
    client = test_client_factory(app)

    response = client.get("/", headers={"accept": "application/json"})
    assert response.json() == {"a": 1}

    response = client.get("/", headers={"accept": "text/plain"})
    assert response.text == "a: 1\n"


def test_middleware_leaves_plain_responses_alone(test_client_factory):
    def homepage(request):
        return PlainTextResponse("OK")

    app = Starlette(routes=[Route("/", homepage)])
    app.add_middleware(FormatMiddleware)

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "application/json"})
    assert response.text == "OK"
    assert response.headers["content-type"].startswith("text/plain")
