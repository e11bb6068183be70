"""Per-request context passed through the middleware chain."""

from __future__ import annotations

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .layer import Layer
    from .router import Router


@dataclass(slots=True)
class Request:
    method: str
    path: str
    query_string: str = ""
    headers: Mapping[str, str] = field(default_factory=dict)
    scheme: str = "http"
    client: str = ""
    server: str = ""
    http_version: str = "1.1"
    body: bytes = b""

    @property
    def query(self) -> dict[str, list[str]]:
        return parse_qs(self.query_string, keep_blank_values=True)


class Response:
    """Mutable response state.

    ``status`` reads back the explicitly assigned status, else ``200`` once a
    body is set, else ``404``. ``404`` is therefore the "nothing handled this
    request" sentinel that ``Router.allowed_methods()`` looks for.
    """

    __slots__ = ("_status", "body", "headers")

    def __init__(self) -> None:
        self._status: int | None = None
        self.body: Any = None
        self.headers: dict[str, str] = {}

    @property
    def status(self) -> int:
        if self._status is not None:
            return self._status
        if self.body is not None:
            return HTTPStatus.OK
        return HTTPStatus.NOT_FOUND

    @status.setter
    def status(self, value: int) -> None:
        self._status = value

    def redirect(self, url: str) -> None:
        """Point the client at ``url``, defaulting the status to 302 Found."""
        self.headers["Location"] = url
        if self._status is None or not 300 <= self._status < 400:
            self._status = HTTPStatus.FOUND
        if self.body is None:
            self.body = f"Redirecting to {url}."


@dataclass(slots=True, eq=False)
class Context:
    """State owned by one in-flight request.

    The router assigns ``params``, ``captures``, ``matched``, ``router``,
    ``route_name`` and ``route_path``. ``router_path`` overrides the path
    used for matching. ``state`` is free for application middleware.
    """

    request: Request
    response: Response = field(default_factory=Response)
    params: dict[str, str | None] = field(default_factory=dict)
    captures: list[str | None] = field(default_factory=list)
    matched: list[Layer] | None = None
    router: Router | None = None
    router_path: str | None = None
    route_name: str | None = None
    route_path: str | None = None
    state: dict[str, Any] = field(default_factory=dict)
