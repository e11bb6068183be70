"""Continuation-passing middleware composition.

Each middleware receives the request context and a ``next`` continuation.
Code before ``await next()`` runs on the way in, code after it on the way
out. A middleware that never awaits ``next()`` ends the chain there.
"""

from collections.abc import Awaitable, Callable, Sequence

type Next = Callable[[], Awaitable[None]]
type Middleware[C] = Callable[[C, Next], Awaitable[None]]
type Dispatch[C] = Callable[[C, Next | None], Awaitable[None]]


async def _noop() -> None:
    return None


def compose[C](middleware: Sequence[Middleware[C]]) -> Dispatch[C]:
    """Compose middleware into a single dispatch function.

    The returned ``dispatch(ctx, next=None)`` runs the middleware in order
    and, once the last one awaits its continuation, awaits ``next`` (the
    rest of an enclosing chain) if given.

    Raises ``RuntimeError`` if a middleware awaits its ``next`` twice.
    """
    stack = tuple(middleware)

    async def dispatch_all(ctx: C, next: Next | None = None) -> None:  # noqa: A002
        index = -1

        async def dispatch(i: int) -> None:
            nonlocal index
            if i <= index:
                msg = "next() called multiple times"
                raise RuntimeError(msg)
            index = i
            if i == len(stack):
                await (next or _noop)()
                return
            await stack[i](ctx, lambda: dispatch(i + 1))

        await dispatch(0)

    return dispatch_all
