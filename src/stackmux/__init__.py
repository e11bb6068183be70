from importlib.metadata import version

from .app import Application
from .compose import Middleware, Next, compose
from .context import Context, Request, Response
from .errors import (
    BadRequest,
    HTTPError,
    MethodNotAllowed,
    MethodNotImplemented,
    NotFound,
    PatternError,
    StackmuxError,
)
from .layer import Layer, LayerKind, LayerOptions, RouteInfo, to_url
from .listing import format_routes
from .router import Router, RouterOptions, decode_uri

__all__ = [
    "Application",
    "BadRequest",
    "Context",
    "HTTPError",
    "Layer",
    "LayerKind",
    "LayerOptions",
    "MethodNotAllowed",
    "MethodNotImplemented",
    "Middleware",
    "Next",
    "NotFound",
    "PatternError",
    "Request",
    "Response",
    "RouteInfo",
    "Router",
    "RouterOptions",
    "StackmuxError",
    "__version__",
    "compose",
    "decode_uri",
    "format_routes",
    "to_url",
]

__version__ = version("stackmux")
