import pytest
from conftest import make_ctx

from stackmux.compose import Next, compose
from stackmux.context import Context


def _recorder(name: str, calls: list[str]):
    async def mw(ctx: Context, next: Next) -> None:  # noqa: A002
        calls.append(f"{name} in")
        await next()
        calls.append(f"{name} out")

    return mw


@pytest.mark.asyncio
async def test_onion_order() -> None:
    calls: list[str] = []
    dispatch = compose([_recorder("a", calls), _recorder("b", calls)])
    await dispatch(make_ctx())
    assert calls == ["a in", "b in", "b out", "a out"]


@pytest.mark.asyncio
async def test_not_calling_next_halts_chain() -> None:
    calls: list[str] = []

    async def stop(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
        calls.append("stop")

    dispatch = compose([_recorder("a", calls), stop, _recorder("never", calls)])
    await dispatch(make_ctx())
    assert calls == ["a in", "stop", "a out"]


@pytest.mark.asyncio
async def test_outer_next_runs_after_stack() -> None:
    calls: list[str] = []

    async def outer() -> None:
        calls.append("outer")

    await compose([_recorder("a", calls)])(make_ctx(), outer)
    assert calls == ["a in", "outer", "a out"]


@pytest.mark.asyncio
async def test_empty_stack_calls_outer_next() -> None:
    calls: list[str] = []

    async def outer() -> None:
        calls.append("outer")

    await compose([])(make_ctx(), outer)
    assert calls == ["outer"]


@pytest.mark.asyncio
async def test_next_called_twice_raises() -> None:
    async def twice(ctx: Context, next: Next) -> None:  # noqa: A002
        await next()
        await next()

    with pytest.raises(RuntimeError, match=r"next\(\) called multiple times"):
        await compose([twice])(make_ctx())


@pytest.mark.asyncio
async def test_exceptions_propagate_to_caller() -> None:
    calls: list[str] = []

    async def boom(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
        msg = "boom"
        raise RuntimeError(msg)

    async def guard(ctx: Context, next: Next) -> None:  # noqa: A002
        try:
            await next()
        except RuntimeError:
            calls.append("caught")
            raise

    with pytest.raises(RuntimeError, match="boom"):
        await compose([guard, boom])(make_ctx())
    assert calls == ["caught"]


@pytest.mark.asyncio
async def test_dispatch_is_reusable() -> None:
    calls: list[str] = []
    dispatch = compose([_recorder("a", calls)])
    await dispatch(make_ctx())
    await dispatch(make_ctx())
    assert calls == ["a in", "a out", "a in", "a out"]
