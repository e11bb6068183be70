"""RSGI application: the root middleware chain and the response writer."""

from __future__ import annotations

import json
import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, Self

from .compose import compose
from .context import Context, Request, Response
from .errors import HTTPError

if TYPE_CHECKING:
    from .compose import Middleware
    from .rsgi import HTTPProtocol, HTTPScope

logger = logging.getLogger(__name__)


class Application:
    """Root middleware stack served over RSGI.

    Usage::

        app = Application()
        app.use(router.routes(), router.allowed_methods())

        # granian --interface rsgi module:app
    """

    __slots__ = ("_middleware",)
    _middleware: list[Middleware[Context]]

    def __init__(self, *middleware: Middleware[Context]) -> None:
        self._middleware = list(middleware)

    def use(self, *middleware: Middleware[Context]) -> Self:
        """Appends middleware to the root chain."""
        self._middleware.extend(middleware)
        return self

    async def handle(self, ctx: Context) -> None:
        """Run the middleware chain for ``ctx``, turning errors into responses.

        An ``HTTPError`` becomes its status, detail and headers. Anything else
        is logged and answered with 500.
        """
        try:
            await compose(self._middleware)(ctx)
        except HTTPError as e:
            ctx.response = _error_response(e.status, e.detail, e.headers)
        except Exception:
            logger.exception(
                "unhandled error for %s %s", ctx.request.method, ctx.request.path
            )
            ctx.response = _error_response(
                HTTPStatus.INTERNAL_SERVER_ERROR, "Internal Server Error", ()
            )

    async def __rsgi__(self, scope: HTTPScope, proto: HTTPProtocol) -> None:
        body = await proto()
        ctx = Context(
            Request(
                method=scope.method.upper(),
                path=scope.path,
                query_string=scope.query_string,
                headers=scope.headers,
                scheme=scope.scheme,
                client=scope.client,
                server=scope.server,
                http_version=scope.http_version,
                body=body,
            )
        )
        await self.handle(ctx)
        send_response(ctx, proto)


def _error_response(
    status: int, detail: str, headers: tuple[tuple[str, str], ...]
) -> Response:
    response = Response()
    response.status = status
    response.body = detail or None
    response.headers.update(headers)
    return response


def send_response(ctx: Context, proto: HTTPProtocol) -> None:
    """Write ``ctx.response`` to the RSGI protocol.

    ``str`` bodies are sent as text, ``bytes`` as-is, other objects as JSON.
    HEAD requests never carry a body.
    """
    response = ctx.response
    status = int(response.status)
    body = response.body
    has_content_type = any(k.lower() == "content-type" for k in response.headers)

    if body is None or ctx.request.method == "HEAD":
        proto.response_empty(status, list(response.headers.items()))
    elif isinstance(body, bytes):
        proto.response_bytes(status, list(response.headers.items()), body)
    elif isinstance(body, str):
        if not has_content_type:
            response.headers["Content-Type"] = "text/plain; charset=utf-8"
        proto.response_str(status, list(response.headers.items()), body)
    else:
        if not has_content_type:
            response.headers["Content-Type"] = "application/json"
        proto.response_str(status, list(response.headers.items()), json.dumps(body))
