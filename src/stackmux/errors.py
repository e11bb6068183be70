"""Exception hierarchy shared by the pattern compiler, router and application."""

from dataclasses import dataclass
from http import HTTPStatus


class StackmuxError(Exception):
    """Base for all stackmux errors."""


class PatternError(StackmuxError, ValueError):
    """Raised at registration time for a malformed path template."""


@dataclass(eq=False)
class HTTPError(StackmuxError):
    """An error that maps directly to an HTTP response.

    Raised from middleware; ``Application`` answers with ``status``,
    ``detail`` as the body and ``headers`` added to the response.
    """

    status: int
    detail: str = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)


class BadRequest(HTTPError):  # noqa: N818
    """400 - the request could not be understood."""

    def __init__(self, detail: str = "Bad Request") -> None:
        super().__init__(status=HTTPStatus.BAD_REQUEST, detail=detail)


class NotFound(HTTPError):  # noqa: N818
    """404 - nothing handled the request."""

    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(status=HTTPStatus.NOT_FOUND, detail=detail)


class MethodNotAllowed(HTTPError):  # noqa: N818
    """405 - the path is routable but not for this method."""

    def __init__(self, allowed: str = "", detail: str = "Method Not Allowed") -> None:
        super().__init__(
            status=HTTPStatus.METHOD_NOT_ALLOWED,
            detail=detail,
            headers=(("Allowed", allowed),) if allowed else (),
        )


class MethodNotImplemented(HTTPError):  # noqa: N818
    """501 - the method is not one the router supports at all."""

    def __init__(self, allowed: str = "", detail: str = "Not Implemented") -> None:
        super().__init__(
            status=HTTPStatus.NOT_IMPLEMENTED,
            detail=detail,
            headers=(("Allowed", allowed),) if allowed else (),
        )
