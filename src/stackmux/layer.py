"""Route layers: a compiled path pattern bound to methods and middleware."""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Self
from urllib.parse import quote, unquote, urlencode

from .compose import Middleware, Next
from .context import Context
from .pattern import Key, parse, path_to_regexp
from .pattern import compile as compile_path

type ParamHandler = Callable[[str, Context, Next], Awaitable[None]]
type Query = str | Mapping[str, Any] | Sequence[tuple[str, Any]]

CATCH_ALL = "(.*)"


class LayerKind(Enum):
    """What a layer's (lack of) methods means.

    ROUTE layers answer only to their declared methods and contribute those
    methods to the ``Allowed`` header.
    MIDDLEWARE layers declare no methods, run for every method and never
    make a path routable on their own.
    """

    ROUTE = "ROUTE"
    MIDDLEWARE = "MIDDLEWARE"


@dataclass(slots=True, frozen=True)
class LayerOptions:
    """Pattern compilation options for a single layer.

    end: the pattern must match the whole path (False = prefix match)
    sensitive: case sensitive matching
    strict: a trailing slash is significant
    ignore_captures: report no captures (and hence bind no params)
    """

    end: bool = True
    sensitive: bool = False
    strict: bool = False
    ignore_captures: bool = False


@dataclass(slots=True, frozen=True)
class RouteInfo:
    """Read-only snapshot of a layer, for introspection."""

    path: str
    methods: tuple[str, ...]
    param_names: tuple[str, ...]
    name: str | None
    kind: LayerKind
    middleware: tuple[Middleware[Context], ...]
    pattern: str


class ParamMiddleware:
    """Middleware bound to one path parameter, see ``Layer.param``."""

    __slots__ = ("handler", "param")

    def __init__(self, param: str, handler: ParamHandler) -> None:
        self.param = param
        self.handler = handler

    async def __call__(self, ctx: Context, next: Next) -> None:  # noqa: A002
        value = ctx.params.get(self.param)
        if not value:
            msg = f'param "{self.param}" was not bound for this request'
            raise AssertionError(msg)
        await self.handler(value, ctx, next)

    def __repr__(self) -> str:
        return f"ParamMiddleware({self.param!r}, {_qualname(self.handler)})"


def decode_component(value: str) -> str:
    """Percent-decode a path parameter, leaving undecodable input untouched."""
    try:
        return unquote(value, errors="strict")
    except UnicodeDecodeError:
        return value


def to_url(
    template: str,
    params: Mapping[Any, object] | None = None,
    *,
    query: Query | None = None,
    encode: Callable[[str], str] | None = None,
) -> str:
    """Render ``template`` with ``params``, optionally appending a query string.

    ``params`` is ignored when the template has no parameters. ``query`` may be
    a preformatted string or anything ``urllib.parse.urlencode`` accepts.
    """
    if not any(isinstance(token, Key) for token in parse(template)):
        params = None
    path = compile_path(template, encode=encode)(params)
    if query is None:
        return path
    if isinstance(query, str):
        search = quote(query.removeprefix("?"), safe="=&%+/?:@!$'()*,;~")
    else:
        search = urlencode(query, doseq=True)
    return f"{path}?{search}" if search else path


class Layer:
    """One registered route: path pattern, method set, middleware stack.

    Usage::

        layer = Layer("/users/:id", ["GET"], [handler], name="user")
        layer.match("/users/42")                   -> True
        layer.params(layer.captures("/users/42"))  -> {"id": "42"}
        layer.url({"id": 7})                       -> "/users/7"
    """

    __slots__ = (
        "_keys",
        "_options",
        "_regexp",
        "kind",
        "methods",
        "name",
        "path",
        "stack",
    )

    def __init__(
        self,
        path: str,
        methods: Iterable[str],
        middleware: Iterable[Middleware[Context]],
        *,
        kind: LayerKind = LayerKind.ROUTE,
        name: str | None = None,
        options: LayerOptions | None = None,
    ) -> None:
        verbs = tuple(dict.fromkeys(m.upper() for m in methods))
        if kind is LayerKind.ROUTE and not verbs:
            msg = f"route layer for {path!r} must declare at least one method"
            raise ValueError(msg)
        if kind is LayerKind.MIDDLEWARE and verbs:
            msg = f"middleware layer for {path!r} cannot declare methods"
            raise ValueError(msg)
        if "GET" in verbs and "HEAD" not in verbs:
            verbs = ("HEAD", *verbs)

        self.path = path
        self.methods: tuple[str, ...] = verbs
        self.kind = kind
        self.name = name
        self.stack: list[Middleware[Context]] = list(middleware)
        self._options = options or LayerOptions()
        self._keys: list[Key] = []
        self._regexp = self._compile()

    def _compile(self) -> re.Pattern[str]:
        self._keys = []
        return path_to_regexp(
            self.path,
            self._keys,
            sensitive=self._options.sensitive,
            strict=self._options.strict,
            end=self._options.end,
        )

    @property
    def options(self) -> LayerOptions:
        return self._options

    @property
    def param_names(self) -> list[str]:
        return [str(key.name) for key in self._keys]

    @property
    def regexp(self) -> re.Pattern[str]:
        return self._regexp

    def clone(self) -> Layer:
        """Copy this layer, including its own copy of the middleware stack."""
        return Layer(
            self.path,
            self.methods,
            self.stack,
            kind=self.kind,
            name=self.name,
            options=self._options,
        )

    def match(self, path: str) -> bool:
        return self._regexp.match(path) is not None

    def captures(self, path: str) -> list[str | None]:
        """Raw capture groups for a path this layer matches."""
        if self._options.ignore_captures:
            return []
        match = self._regexp.match(path)
        return list(match.groups()) if match is not None else []

    def params(
        self,
        captures: Sequence[str | None],
        existing: dict[str, str | None] | None = None,
    ) -> dict[str, str | None]:
        """Bind captures to parameter names, merging into ``existing``."""
        params = existing if existing is not None else {}
        for key, capture in zip(self._keys, captures, strict=False):
            params[str(key.name)] = decode_component(capture) if capture else capture
        return params

    def url(
        self,
        params: Mapping[Any, object] | None = None,
        *,
        query: Query | None = None,
    ) -> str:
        return to_url(self.path.replace(CATCH_ALL, ""), params, query=query)

    def param(self, name: str, handler: ParamHandler) -> Self:
        """Run ``handler(value, ctx, next)`` whenever this layer binds ``name``.

        Param middleware runs in path order: it is inserted ahead of the first
        middleware that is not param middleware, or that is bound to a param
        appearing later in the path.
        """
        names = self.param_names
        if name not in names:
            return self
        position = names.index(name)
        middleware = ParamMiddleware(name, handler)
        for i, existing in enumerate(self.stack):
            if (
                not isinstance(existing, ParamMiddleware)
                or _index(names, existing.param) > position
            ):
                self.stack.insert(i, middleware)
                break
        else:
            self.stack.append(middleware)
        return self

    def set_prefix(self, prefix: str) -> Self:
        """Prepend ``prefix`` to the path and recompile.

        A non-strict root path ``/`` is replaced by the prefix outright, so
        mounting ``/`` at ``/api`` answers ``/api`` rather than ``/api/``.
        """
        if self.path:
            if self.path != "/" or self._options.strict:
                self.path = f"{prefix}{self.path}"
            else:
                self.path = prefix
            self._regexp = self._compile()
        return self

    def info(self) -> RouteInfo:
        return RouteInfo(
            path=self.path,
            methods=self.methods,
            param_names=tuple(self.param_names),
            name=self.name,
            kind=self.kind,
            middleware=tuple(self.stack),
            pattern=self._regexp.pattern,
        )

    def __repr__(self) -> str:
        return (
            f"Layer(path={self.path!r}, methods={self.methods!r}, "
            f"kind={self.kind.value}, name={self.name!r})"
        )


def _index(names: list[str], name: str) -> int:
    return names.index(name) if name in names else -1


def _qualname(obj: object) -> str:
    """Extract __qualname__ from a callable, falling back to repr."""
    return str(obj.__qualname__) if hasattr(obj, "__qualname__") else repr(obj)
