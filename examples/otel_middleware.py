# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "stackmux[otel,server]",
#     "httpx>=0.28.1,<0.29.0",
#     "opentelemetry-sdk>=1.39.1,<2.0.0",
# ]
#
# [tool.uv.sources]
# stackmux = { path = "../", editable = true }
# ///
"""RSGI OpenTelemetry tracing middleware demo.

Shows usage of otel middleware with an in-memory exporter so traces can be
printed to the console without needing an external collector.
"""

import asyncio
import logging
import sys

import httpx
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from stackmux import Application, Context, Router
from stackmux.compose import Next
from stackmux.middleware.otel import otel

ADDRESS = "127.0.0.1"
PORT = 8000


# --- handlers ---
async def hello(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
    ctx.response.body = "hello world"


async def greet(ctx: Context, next: Next) -> None:  # noqa: A002, ARG001
    ctx.response.body = f"hello {ctx.params['name']}"


# --- app setup ---
exporter = InMemorySpanExporter()
provider = TracerProvider()
provider.add_span_processor(SimpleSpanProcessor(exporter))

router = Router()
router.get("/", hello)
router.get("/greet/:name", greet)

# otel sits in front of the router, so 404/405 answers are traced too
app = Application(
    otel(tracer_provider=provider),
    router.routes(),
    router.allowed_methods(),
)


# --- run ---
async def main() -> None:
    logging.basicConfig(level=logging.INFO)
    task = asyncio.create_task(serve())
    await asyncio.sleep(0.1)
    await requests()
    provider.shutdown()
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


async def serve() -> None:
    from granian.server.embed import Server

    server = Server(app, address=ADDRESS, port=PORT, log_access=True)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await server.shutdown()


async def requests() -> None:
    base_url = f"http://{ADDRESS}:{PORT}"

    async with httpx.AsyncClient(base_url=base_url) as client:
        print("--- GET / ---", file=sys.stderr)
        await client.get("/")

        print("--- GET /greet/world ---", file=sys.stderr)
        await client.get("/greet/world")

        print("--- GET /nonexistent ---", file=sys.stderr)
        await client.get("/nonexistent")

        print("--- DELETE / (method not allowed) ---", file=sys.stderr)
        await client.delete("/")

    print("--- Collected spans ---", file=sys.stderr)
    for span in exporter.get_finished_spans():
        attrs = span.attributes or {}
        print(
            f"  {span.name:<30} "
            f"status={attrs['http.response.status_code']:<4} "
            f"route={attrs.get('http.route', ''):<20} "  # not set on 404
            f"path={attrs['url.path']}",
            file=sys.stderr,
        )


if __name__ == "__main__":
    asyncio.run(main())
