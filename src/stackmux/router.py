"""HTTP router and middleware multiplexer.

Inspired by koajs/router: routes are an ordered list of layers, every layer
matching a request contributes its middleware, and the combined chain runs
as one continuation-passing middleware.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field, replace
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Literal, Self
from urllib.parse import unquote, urlsplit

from .compose import Middleware, Next, compose
from .errors import BadRequest, MethodNotAllowed, MethodNotImplemented
from .layer import (
    CATCH_ALL,
    Layer,
    LayerKind,
    LayerOptions,
    ParamHandler,
    Query,
    RouteInfo,
    to_url,
)

if TYPE_CHECKING:
    from .context import Context

logger = logging.getLogger(__name__)

type HTTPMethod = Literal["DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "POST", "PUT"]
type ErrorFactory = Callable[[], Exception]

DEFAULT_METHODS: tuple[HTTPMethod, ...] = (
    "DELETE",
    "GET",
    "HEAD",
    "OPTIONS",
    "PATCH",
    "POST",
    "PUT",
)
ALL_METHODS: tuple[HTTPMethod, ...] = ("DELETE", "GET", "POST", "PUT")

# decodeURI semantics: escapes of reserved characters stay encoded
_RESERVED_ESCAPE = re.compile(r"(%(?:2[346BCF]|3[ABDF]|40))", re.IGNORECASE)


def decode_uri(path: str) -> str:
    """Percent-decode a request path, keeping reserved characters encoded.

    Raises ``UnicodeDecodeError`` for escapes that are not valid UTF-8.
    """
    if "%" not in path:
        return path
    parts = _RESERVED_ESCAPE.split(path)
    return "".join(
        part if i % 2 else unquote(part, errors="strict")
        for i, part in enumerate(parts)
    )


@dataclass(slots=True, frozen=True)
class RouterOptions:
    """Router-wide configuration.

    methods: verbs the router implements; others get 501 from allowed_methods()
    prefix: prepended to every route path
    sensitive: case sensitive matching (per-route default)
    strict: a trailing slash is significant (per-route default)
    router_path: match against this path instead of the request path
    """

    methods: tuple[str, ...] = DEFAULT_METHODS
    prefix: str | None = None
    sensitive: bool = False
    strict: bool = False
    router_path: str | None = None


@dataclass(slots=True)
class Matches:
    """Layers matching a (path, method) pair, in registration order.

    path: every layer whose pattern matches the path
    path_and_method: the subset that runs for the method
    route: whether a ROUTE layer is in path_and_method
    """

    path: list[Layer] = field(default_factory=list)
    path_and_method: list[Layer] = field(default_factory=list)
    route: bool = False


class RoutesMiddleware:
    """The middleware returned by ``Router.routes()``.

    Carries a back-reference to its router so that registering it on another
    router mounts (clones) the routes instead of nesting the dispatcher.
    """

    __slots__ = ("router",)

    def __init__(self, router: Router) -> None:
        self.router = router

    async def __call__(self, ctx: Context, next: Next) -> None:  # noqa: A002
        await self.router._dispatch(ctx, next)

    def __repr__(self) -> str:
        return f"RoutesMiddleware({self.router!r})"


class Router:
    """Ordered collection of layers with named routes and sub-router mounting.

    Usage::

        router = Router()
        router.get("/users/:id", load_user, show_user, name="user")
        router.post("/users", create_user)

        app = Application()
        app.use(router.routes())
        app.use(router.allowed_methods())
    """

    __slots__ = ("_options", "_params", "_stack")
    _options: RouterOptions
    _params: dict[str, ParamHandler]
    _stack: list[Layer]

    def __init__(
        self,
        *,
        methods: Iterable[str] | None = None,
        prefix: str | None = None,
        sensitive: bool = False,
        strict: bool = False,
        router_path: str | None = None,
    ) -> None:
        self._options = RouterOptions(
            methods=tuple(m.upper() for m in methods)
            if methods is not None
            else DEFAULT_METHODS,
            prefix=prefix.removesuffix("/") if prefix else None,
            sensitive=sensitive,
            strict=strict,
            router_path=router_path,
        )
        self._params = {}
        self._stack = []

    @property
    def config(self) -> RouterOptions:
        return self._options

    # --- registration ---------------------------------------------------------
    def _register(
        self,
        path: str | Sequence[str],
        middleware: Sequence[Middleware[Context]],
        methods: Sequence[str],
        *,
        kind: LayerKind = LayerKind.ROUTE,
        name: str | None = None,
        end: bool = True,
        sensitive: bool | None = None,
        strict: bool | None = None,
        ignore_captures: bool = False,
        ignore_prefix: bool = False,
    ) -> None:
        """Register middleware at path, flattening mounted routers in place."""
        if not isinstance(path, str):
            for p in path:
                self._register(
                    p,
                    middleware,
                    methods,
                    kind=kind,
                    name=name,
                    end=end,
                    sensitive=sensitive,
                    strict=strict,
                    ignore_captures=ignore_captures,
                    ignore_prefix=ignore_prefix,
                )
            return

        options = LayerOptions(
            end=end,
            sensitive=self._options.sensitive if sensitive is None else sensitive,
            strict=self._options.strict if strict is None else strict,
            ignore_captures=ignore_captures,
        )
        pending: list[Middleware[Context]] = []
        for mw in middleware:
            if not isinstance(mw, RoutesMiddleware):
                pending.append(mw)
                continue
            if pending:
                self._add_layer(path, pending, methods, kind, name, options)
                pending = []
            self._mount(path, mw.router, ignore_prefix=ignore_prefix)
        if pending:
            self._add_layer(path, pending, methods, kind, name, options)

    def _add_layer(
        self,
        path: str,
        middleware: Sequence[Middleware[Context]],
        methods: Sequence[str],
        kind: LayerKind,
        name: str | None,
        options: LayerOptions,
    ) -> None:
        layer = Layer(path, methods, middleware, kind=kind, name=name, options=options)
        if self._options.prefix:
            layer.set_prefix(self._options.prefix)
        for param, handler in self._params.items():
            layer.param(param, handler)
        self._stack.append(layer)

    def _mount(self, path: str, router: Router, *, ignore_prefix: bool) -> None:
        """Absorb a clone of ``router``'s layers, prefixed with ``path``."""
        mounted = router.clone()
        for layer in mounted._stack:
            if not ignore_prefix:
                layer.set_prefix(path)
            if self._options.prefix:
                layer.set_prefix(self._options.prefix)
            self._stack.append(layer)
        for param, handler in self._params.items():
            mounted.param(param, handler)
        logger.debug(
            "router.mount: %d layers at %r",
            len(mounted._stack),
            path if not ignore_prefix else "/",
        )

    def register(
        self,
        path: str | Sequence[str],
        methods: str | Iterable[str],
        *middleware: Middleware[Context],
        name: str | None = None,
        sensitive: bool | None = None,
        strict: bool | None = None,
        end: bool = True,
    ) -> Self:
        """Registers middleware at path for the given method(s).

        ``sensitive`` and ``strict`` default to the router's own settings.
        With ``end=False`` the route prefix-matches its path.
        """
        verbs = (methods,) if isinstance(methods, str) else tuple(methods)
        self._register(
            path,
            middleware,
            verbs,
            name=name,
            end=end,
            sensitive=sensitive,
            strict=strict,
        )
        return self

    def all(
        self,
        path: str | Sequence[str],
        *middleware: Middleware[Context],
        name: str | None = None,
    ) -> Self:
        """Registers middleware at path for DELETE, GET, HEAD, POST and PUT."""
        self._register(path, middleware, ALL_METHODS, name=name)
        return self

    def delete(
        self,
        path: str | Sequence[str],
        *middleware: Middleware[Context],
        name: str | None = None,
    ) -> Self:
        """Registers middleware at path for DELETE."""
        self._register(path, middleware, ("DELETE",), name=name)
        return self

    def get(
        self,
        path: str | Sequence[str],
        *middleware: Middleware[Context],
        name: str | None = None,
    ) -> Self:
        """Registers middleware at path for GET (and HEAD)."""
        self._register(path, middleware, ("GET",), name=name)
        return self

    def head(
        self,
        path: str | Sequence[str],
        *middleware: Middleware[Context],
        name: str | None = None,
    ) -> Self:
        """Registers middleware at path for HEAD."""
        self._register(path, middleware, ("HEAD",), name=name)
        return self

    def options(
        self,
        path: str | Sequence[str],
        *middleware: Middleware[Context],
        name: str | None = None,
    ) -> Self:
        """Registers middleware at path for OPTIONS."""
        self._register(path, middleware, ("OPTIONS",), name=name)
        return self

    def patch(
        self,
        path: str | Sequence[str],
        *middleware: Middleware[Context],
        name: str | None = None,
    ) -> Self:
        """Registers middleware at path for PATCH."""
        self._register(path, middleware, ("PATCH",), name=name)
        return self

    def post(
        self,
        path: str | Sequence[str],
        *middleware: Middleware[Context],
        name: str | None = None,
    ) -> Self:
        """Registers middleware at path for POST."""
        self._register(path, middleware, ("POST",), name=name)
        return self

    def put(
        self,
        path: str | Sequence[str],
        *middleware: Middleware[Context],
        name: str | None = None,
    ) -> Self:
        """Registers middleware at path for PUT."""
        self._register(path, middleware, ("PUT",), name=name)
        return self

    def use(
        self,
        path_or_middleware: str | Sequence[str] | Middleware[Context],
        *middleware: Middleware[Context],
    ) -> Self:
        """Registers middleware for every method, optionally under a path.

        With a path the layer prefix-matches it, so ``use("/api", mw)`` runs
        for ``/api/anything``. Passing another router's ``routes()`` mounts
        that router's routes under the path.
        """
        if isinstance(path_or_middleware, str | Sequence):
            self._register(
                path_or_middleware,
                middleware,
                (),
                kind=LayerKind.MIDDLEWARE,
                end=False,
            )
        else:
            self._register(
                CATCH_ALL,
                (path_or_middleware, *middleware),
                (),
                kind=LayerKind.MIDDLEWARE,
                end=False,
                ignore_captures=True,
                ignore_prefix=True,
            )
        return self

    def param(self, name: str, handler: ParamHandler) -> Self:
        """Registers ``handler(value, ctx, next)`` to run whenever ``name`` is bound.

        Applies to existing layers, layers registered later and layers
        absorbed from mounted routers.
        """
        self._params[name] = handler
        for layer in self._stack:
            layer.param(name, handler)
        return self

    def prefix(self, prefix: str) -> Self:
        """Prefix every route of this router, including ones registered later."""
        prefix = prefix.removesuffix("/")
        self._options = replace(self._options, prefix=prefix)
        for layer in self._stack:
            layer.set_prefix(prefix)
        logger.debug("router.prefix: %r applied to %d layers", prefix, len(self))
        return self

    def clone(self) -> Router:
        """Copy this router; the copy owns clones of every layer."""
        router = Router()
        router._options = self._options
        router._params = dict(self._params)
        router._stack = [layer.clone() for layer in self._stack]
        return router

    # --- matching and dispatch ------------------------------------------------
    def match(self, path: str, method: str) -> Matches:
        """Partition the layers matching ``path`` by whether they run for ``method``."""
        matches = Matches()
        for layer in self._stack:
            if not layer.match(path):
                continue
            matches.path.append(layer)
            if layer.kind is LayerKind.MIDDLEWARE or method in layer.methods:
                matches.path_and_method.append(layer)
                if layer.kind is LayerKind.ROUTE:
                    matches.route = True
        return matches

    def routes(self) -> RoutesMiddleware:
        """Middleware dispatching requests to the matching layers."""
        return RoutesMiddleware(self)

    async def _dispatch(self, ctx: Context, next: Next) -> None:  # noqa: A002
        if self._options.router_path is not None:
            path = self._options.router_path
        elif ctx.router_path is not None:
            path = ctx.router_path
        else:
            try:
                path = decode_uri(ctx.request.path)
            except UnicodeDecodeError:
                logger.debug("router: undecodable path %r", ctx.request.path)
                raise BadRequest("Malformed request path") from None

        matches = self.match(path, ctx.request.method)
        if ctx.matched is None:
            ctx.matched = list(matches.path)
        else:
            ctx.matched.extend(matches.path)
        ctx.router = self

        if not matches.route:
            await next()
            return

        chain: list[Middleware[Context]] = []
        for layer in matches.path_and_method:
            chain.append(_bind_layer(layer, path))
            chain.extend(layer.stack)
        await compose(chain)(ctx, next)

    def allowed_methods(
        self,
        *,
        throw: bool = False,
        not_implemented: ErrorFactory | None = None,
        method_not_allowed: ErrorFactory | None = None,
    ) -> Middleware[Context]:
        """Middleware answering requests nothing downstream handled.

        Runs after the rest of the chain. If the response is still 404:

            * method not implemented by this router -> 501
            * OPTIONS on a routable path            -> 200
            * method not among the path's routes    -> 405

        each with an ``Allowed`` header listing the methods of the matched
        routes. With ``throw=True`` an ``HTTPError`` is raised instead (or the
        result of ``not_implemented()`` / ``method_not_allowed()``).
        """
        implemented = self._options.methods

        async def allowed_methods(ctx: Context, next: Next) -> None:  # noqa: A002
            await next()
            if ctx.response.status != HTTPStatus.NOT_FOUND:
                return
            if ctx.matched is None:
                msg = "allowed_methods() requires routes() to run in the same chain"
                raise RuntimeError(msg)

            allowed = dict.fromkeys(
                method
                for layer in ctx.matched
                if layer.kind is LayerKind.ROUTE
                for method in layer.methods
            )
            allowed_header = ", ".join(allowed)
            method = ctx.request.method

            if method not in implemented:
                if throw:
                    raise (
                        not_implemented()
                        if not_implemented is not None
                        else MethodNotImplemented(allowed_header)
                    )
                ctx.response.status = HTTPStatus.NOT_IMPLEMENTED
                ctx.response.headers["Allowed"] = allowed_header
            elif allowed:
                if method == "OPTIONS":
                    ctx.response.status = HTTPStatus.OK
                    ctx.response.headers["Allowed"] = allowed_header
                elif method not in allowed:
                    if throw:
                        raise (
                            method_not_allowed()
                            if method_not_allowed is not None
                            else MethodNotAllowed(allowed_header)
                        )
                    ctx.response.status = HTTPStatus.METHOD_NOT_ALLOWED
                    ctx.response.headers["Allowed"] = allowed_header

        return allowed_methods

    # --- url generation -------------------------------------------------------
    def _route(self, name: str) -> Layer | None:
        for layer in self._stack:
            if layer.name == name:
                return layer
        return None

    def url(
        self,
        name: str,
        params: Mapping[Any, object] | None = None,
        *,
        query: Query | None = None,
    ) -> str | None:
        """Path for the named route, or None if no route has that name."""
        layer = self._route(name)
        if layer is None:
            return None
        return layer.url(params, query=query)

    @staticmethod
    def build_url(
        template: str,
        params: Mapping[Any, object] | None = None,
        *,
        query: Query | None = None,
    ) -> str:
        """Render a path template without registering it."""
        return to_url(template, params, query=query)

    def redirect(
        self,
        source: str,
        destination: str,
        status: int = HTTPStatus.FOUND,
    ) -> Self:
        """Redirect requests for ``source`` to ``destination``.

        Either may be a route name. ``destination`` may also be an absolute
        URL. Raises ``ValueError`` if a name cannot be resolved.
        """
        if not source.startswith("/"):
            resolved = self.url(source)
            if resolved is None:
                msg = f'Could not resolve named route: "{source}"'
                raise ValueError(msg)
            source = resolved

        if not destination.startswith("/"):
            resolved = self.url(destination)
            if resolved is not None:
                destination = resolved
            elif not urlsplit(destination).scheme:
                msg = f'Could not resolve named route: "{destination}"'
                raise ValueError(msg)

        target = destination

        async def redirect(ctx: Context, next: Next) -> None:  # noqa: A002
            await next()
            ctx.response.redirect(target)
            ctx.response.status = status

        self.all(source, redirect)
        return self

    # --- introspection --------------------------------------------------------
    def __iter__(self) -> Iterator[RouteInfo]:
        for layer in self._stack:
            yield layer.info()

    def __len__(self) -> int:
        return len(self._stack)

    def __repr__(self) -> str:
        return f"Router(layers={len(self._stack)}, prefix={self._options.prefix!r})"


def _bind_layer(layer: Layer, path: str) -> Middleware[Context]:
    """Middleware binding ``layer``'s captures and name onto the context."""

    async def bind(ctx: Context, next: Next) -> None:  # noqa: A002
        ctx.captures = layer.captures(path)
        ctx.params = layer.params(ctx.captures, ctx.params)
        ctx.route_name = layer.name
        if layer.kind is LayerKind.ROUTE:
            ctx.route_path = layer.path
        await next()

    return bind
