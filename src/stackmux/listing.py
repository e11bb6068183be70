"""Human-readable route listing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .layer import LayerKind, ParamMiddleware, _qualname

if TYPE_CHECKING:
    from .layer import RouteInfo
    from .router import Router

type _Row = tuple[str, str, str, list[str]]


def format_routes(router: Router, *, verbose: bool = False) -> str:
    """Format a router's layers as a column-aligned table, in match order.

        *            /api                          [auth]
        HEAD,GET     /api/users/:id   user         [load_user > show_user]
        POST         /api/users                    [create_user]

    Middleware layers (registered with ``use``) list ``*`` as their method.
    With ``verbose=True`` param hooks are included in the middleware chain and
    each row is followed by the compiled regular expression.
    """
    infos = list(router)
    if not infos:
        return ""

    rows = [_row(info, verbose=verbose) for info in infos]
    method_w = max(len(r[0]) for r in rows)
    path_w = max(len(r[1]) for r in rows)
    name_w = max(len(r[2]) for r in rows)

    lines: list[str] = []
    for info, (methods, path, name, mw) in zip(infos, rows, strict=True):
        line = f"{methods:<{method_w}}   {path:<{path_w}}   {name:<{name_w}}"
        if mw:
            line += f"   [{' > '.join(mw)}]"
        lines.append(line.rstrip())
        if verbose:
            lines.append(f"{'':<{method_w}}   {info.pattern}")
    return "\n".join(lines)


def _row(info: RouteInfo, *, verbose: bool) -> _Row:
    methods = "*" if info.kind is LayerKind.MIDDLEWARE else ",".join(info.methods)
    mw = [
        _label(m)
        for m in info.middleware
        if verbose or not isinstance(m, ParamMiddleware)
    ]
    return methods, info.path, info.name or "", mw


def _label(obj: object) -> str:
    if isinstance(obj, ParamMiddleware):
        return f":{obj.param}({_qualname(obj.handler)})"
    return _qualname(obj)
