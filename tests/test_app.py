import json
import logging

import pytest
from conftest import MockHTTPProtocol, mock_scope, responder

from stackmux.app import Application
from stackmux.compose import Next
from stackmux.context import Context
from stackmux.errors import NotFound
from stackmux.router import Router


def _app(router: Router, **kwargs) -> Application:
    return Application(router.routes(), router.allowed_methods(**kwargs))


# --- response writing ---------------------------------------------------------
@pytest.mark.asyncio
async def test_str_body() -> None:
    router = Router()
    router.get("/hello", responder("hello"))
    proto = MockHTTPProtocol()
    await _app(router).__rsgi__(mock_scope("/hello"), proto)
    assert proto.response_status == 200
    assert proto.response_body == b"hello"
    assert proto.response_headers == [("Content-Type", "text/plain; charset=utf-8")]


@pytest.mark.asyncio
async def test_bytes_body() -> None:
    async def handler(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
        ctx.response.body = b"\x00\x01"
        ctx.response.headers["Content-Type"] = "application/octet-stream"

    router = Router()
    router.get("/bin", handler)
    proto = MockHTTPProtocol()
    await _app(router).__rsgi__(mock_scope("/bin"), proto)
    assert proto.response_body == b"\x00\x01"
    assert proto.response_headers == [("Content-Type", "application/octet-stream")]


@pytest.mark.asyncio
async def test_json_body() -> None:
    async def handler(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
        ctx.response.body = {"id": ctx.params["id"]}

    router = Router()
    router.get("/users/:id", handler)
    proto = MockHTTPProtocol()
    await _app(router).__rsgi__(mock_scope("/users/7"), proto)
    assert proto.response_body is not None
    assert json.loads(proto.response_body) == {"id": "7"}
    assert proto.response_headers == [("Content-Type", "application/json")]


@pytest.mark.asyncio
async def test_head_has_no_body() -> None:
    router = Router()
    router.get("/hello", responder("hello"))
    proto = MockHTTPProtocol()
    await _app(router).__rsgi__(mock_scope("/hello", "HEAD"), proto)
    assert proto.response_status == 200
    assert proto.response_body == b""


@pytest.mark.asyncio
async def test_unhandled_is_404() -> None:
    proto = MockHTTPProtocol()
    await _app(Router()).__rsgi__(mock_scope("/nothing"), proto)
    assert proto.response_status == 404
    assert proto.response_body == b""


@pytest.mark.asyncio
async def test_405_with_allowed_header() -> None:
    router = Router()
    router.post("/widgets", responder("created"))
    proto = MockHTTPProtocol()
    await _app(router).__rsgi__(mock_scope("/widgets", "GET"), proto)
    assert proto.response_status == 405
    assert proto.response_headers == [("Allowed", "POST")]


@pytest.mark.asyncio
async def test_redirect_response() -> None:
    router = Router()
    router.redirect("/old", "/new")
    proto = MockHTTPProtocol()
    await _app(router).__rsgi__(mock_scope("/old"), proto)
    assert proto.response_status == 302
    assert proto.response_headers is not None
    assert ("Location", "/new") in proto.response_headers


# --- request building ---------------------------------------------------------
@pytest.mark.asyncio
async def test_request_from_scope() -> None:
    seen: dict[str, object] = {}

    async def handler(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
        seen["method"] = ctx.request.method
        seen["body"] = ctx.request.body
        seen["query"] = ctx.request.query
        seen["client"] = ctx.request.client
        ctx.response.status = 204

    router = Router()
    router.post("/submit", handler)
    scope = mock_scope("/submit", "post", query_string="a=1&a=2&b=")
    proto = MockHTTPProtocol(body=b"payload")
    await _app(router).__rsgi__(scope, proto)
    assert proto.response_status == 204
    assert seen == {
        "method": "POST",
        "body": b"payload",
        "query": {"a": ["1", "2"], "b": [""]},
        "client": "127.0.0.1",
    }


# --- error mapping ------------------------------------------------------------
@pytest.mark.asyncio
async def test_http_error_from_throw() -> None:
    router = Router()
    router.post("/widgets", responder("created"))
    proto = MockHTTPProtocol()
    await _app(router, throw=True).__rsgi__(mock_scope("/widgets", "GET"), proto)
    assert proto.response_status == 405
    assert proto.response_body == b"Method Not Allowed"
    assert proto.response_headers == [
        ("Allowed", "POST"),
        ("Content-Type", "text/plain; charset=utf-8"),
    ]


@pytest.mark.asyncio
async def test_http_error_replaces_partial_response() -> None:
    async def handler(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
        ctx.response.headers["X-Partial"] = "1"
        raise NotFound("no such widget")

    router = Router()
    router.get("/widgets/:id", handler)
    proto = MockHTTPProtocol()
    await _app(router).__rsgi__(mock_scope("/widgets/1"), proto)
    assert proto.response_status == 404
    assert proto.response_body == b"no such widget"
    assert proto.response_headers == [("Content-Type", "text/plain; charset=utf-8")]


@pytest.mark.asyncio
async def test_undecodable_path_is_400() -> None:
    router = Router()
    router.get("/a", responder("a"))
    proto = MockHTTPProtocol()
    await _app(router).__rsgi__(mock_scope("/a%E0%A4%A"), proto)
    assert proto.response_status == 400
    assert proto.response_body == b"Malformed request path"


@pytest.mark.asyncio
async def test_unexpected_error_is_500(caplog: pytest.LogCaptureFixture) -> None:
    async def handler(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
        msg = "boom"
        raise RuntimeError(msg)

    router = Router()
    router.get("/boom", handler)
    proto = MockHTTPProtocol()
    with caplog.at_level(logging.ERROR, logger="stackmux.app"):
        await _app(router).__rsgi__(mock_scope("/boom"), proto)
    assert proto.response_status == 500
    assert proto.response_body == b"Internal Server Error"
    assert "unhandled error for GET /boom" in caplog.text
    assert "RuntimeError: boom" in caplog.text


@pytest.mark.asyncio
async def test_use_appends_middleware() -> None:
    calls: list[str] = []

    async def outer(ctx: Context, next: Next) -> None:  # noqa: A002
        calls.append("outer")
        await next()

    router = Router()
    router.get("/", responder("root"))
    app = Application().use(outer).use(router.routes())
    proto = MockHTTPProtocol()
    await app.__rsgi__(mock_scope("/"), proto)
    assert calls == ["outer"]
    assert proto.response_body == b"root"
