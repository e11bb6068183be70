"""OpenTelemetry tracing and metrics middleware.

Creates HTTP server spans and metrics with semantic conventions for each request.

Install with: uv add "stackmux[otel]"
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stackmux.compose import Middleware, Next
    from stackmux.context import Context

try:
    from opentelemetry import metrics, trace
    from opentelemetry.propagate import extract
    from opentelemetry.trace import (
        SpanKind,
        StatusCode,
        TracerProvider,
    )
except ImportError as e:
    msg = (
        "OpenTelemetry middleware requires the 'otel' extra. "
        "Install with: uv add 'stackmux[otel]'"
    )
    raise ImportError(msg) from e

from stackmux.errors import HTTPError

_DURATION_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.075,
    0.1,
    0.25,
    0.5,
    0.75,
    1.0,
    2.5,
    5.0,
    7.5,
    10.0,
)


def otel(
    *,
    tracer_provider: TracerProvider | None = None,
    meter_provider: metrics.MeterProvider | None = None,
) -> Middleware[Context]:
    """Create OpenTelemetry tracing and metrics middleware.

    Register it ahead of ``router.routes()`` so the span covers routing. The
    route is only known once the router has run, so the span starts out
    named after the method and is renamed to ``"METHOD route"`` (or
    ``"METHOD status"`` when no route matched) on the way out.

    Extracts trace context from incoming request headers (e.g. ``traceparent``)
    for distributed tracing. Only depends on ``opentelemetry-api``; users bring
    their own SDK and exporters.

    Metrics emitted:
        - ``http.server.request.duration`` (histogram, seconds)
        - ``http.server.active_requests`` (up-down counter)

    Args:
        tracer_provider: Optional TracerProvider. If None, uses the global provider.
        meter_provider: Optional MeterProvider. If None, uses the global provider.

    Example:
        app = Application()
        app.use(otel(), router.routes(), router.allowed_methods())
    """
    tracer = trace.get_tracer(
        "stackmux",
        tracer_provider=tracer_provider,
    )
    meter = metrics.get_meter(
        "stackmux",
        meter_provider=meter_provider,
    )
    duration_histogram = meter.create_histogram(
        "http.server.request.duration",
        unit="s",
        description="Duration of HTTP server requests.",
        explicit_bucket_boundaries_advisory=_DURATION_BUCKETS,
    )
    active_requests_counter = meter.create_up_down_counter(
        "http.server.active_requests",
        unit="{request}",
        description="Number of active HTTP server requests.",
    )

    async def traced(ctx: Context, next: Next) -> None:  # noqa: A002
        request = ctx.request
        method = request.method

        # Span attributes (stable HTTP semantic conventions)
        attributes: dict[str, str | int] = {
            "http.request.method": method,
            "url.path": request.path,
            "url.scheme": request.scheme,
            "network.protocol.version": request.http_version,
            "server.address": request.server,
            "client.address": request.client,
        }
        if request.query_string:
            attributes["url.query"] = request.query_string
        user_agent = request.headers.get("user-agent")
        if user_agent is not None:
            attributes["user_agent.original"] = user_agent

        active_attrs: dict[str, str | int] = {
            "http.request.method": method,
            "url.scheme": request.scheme,
        }
        active_requests_counter.add(1, active_attrs)
        start = time.perf_counter()

        with tracer.start_as_current_span(
            method,
            context=extract(request.headers),
            kind=SpanKind.SERVER,
            attributes=attributes,
            record_exception=True,
            set_status_on_exception=True,
        ) as span:
            status: int | None = None
            try:
                await next()
                status = int(ctx.response.status)
            except HTTPError as exc:
                status = int(exc.status)
                raise
            finally:
                duration = time.perf_counter() - start
                active_requests_counter.add(-1, active_attrs)
                duration_attrs = dict(active_attrs)

                route = ctx.route_path
                if route:
                    span.set_attribute("http.route", route)
                    duration_attrs["http.route"] = route
                    span.update_name(f"{method} {route}")
                # below isn't part of semantic conventions but having path params is useful
                for key, value in ctx.params.items():
                    if value is not None:
                        span.set_attribute(f"http.route.param.{key}", value)

                if status is not None:
                    span.set_attribute("http.response.status_code", status)
                    duration_attrs["http.response.status_code"] = status
                    if not route:
                        span.update_name(f"{method} {status}")
                    if status >= 500:
                        span.set_status(StatusCode.ERROR)
                duration_histogram.record(duration, duration_attrs)

    return traced
