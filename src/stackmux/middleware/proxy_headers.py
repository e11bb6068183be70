"""Proxy headers middleware for applications behind reverse proxies (e.g. AWS ALB).

Parses X-Forwarded-For and X-Forwarded-Proto from trusted proxies and
overrides ``ctx.request.client`` and ``ctx.request.scheme`` so downstream
middleware sees the real client information.

Headers left in ``ctx.request.headers`` for direct access:
    - x-forwarded-port
    - x-amzn-trace-id
    - x-amzn-tls-version
    - x-amzn-tls-cipher-suite
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stackmux.compose import Middleware, Next
    from stackmux.context import Context


def _host(client: str) -> str:
    """Strip the port from an RSGI client address (``ip:port`` or ``[ip6]:port``)."""
    if client.startswith("["):
        end = client.find("]")
        return client[1:end] if end != -1 else client
    if client.count(":") == 1:
        return client.rpartition(":")[0]
    return client


def _hop(value: str, num_proxies: int) -> str:
    """Entry appended by the outermost trusted proxy, or the leftmost one."""
    # rsplit with maxsplit avoids splitting the full string
    parts = value.rsplit(",", maxsplit=num_proxies)
    idx = -num_proxies if len(parts) >= num_proxies else 0
    return parts[idx].strip()


def proxy_headers(
    *,
    trusted_proxies: frozenset[str],
    num_proxies: int = 1,
) -> Middleware[Context]:
    """Create proxy headers middleware.

    Args:
        trusted_proxies: Set of proxy IP addresses to trust. Use
            `frozenset({"*"})` to trust all connecting clients.
        num_proxies: Number of proxy hops. The real client IP is extracted
            from X-Forwarded-For at position `-(num_proxies)` from the right.
            Default `1` is correct for a single proxy (e.g. ALB only).
            Use `2` for two proxy layers (e.g. CloudFront + ALB).

    Returns:
        Middleware that rewrites the request before calling ``next``.

    Example:
        app.use(proxy_headers(trusted_proxies=frozenset({"*"})))

        # CloudFront + ALB (two proxy hops)
        app.use(proxy_headers(trusted_proxies=frozenset({"*"}), num_proxies=2))
    """
    if num_proxies < 1:
        msg = f"num_proxies must be >= 1, got {num_proxies}"
        raise ValueError(msg)
    if not trusted_proxies:
        msg = "trusted_proxies must not be empty"
        raise ValueError(msg)

    trust_all = "*" in trusted_proxies

    async def proxied(ctx: Context, next: Next) -> None:  # noqa: A002
        request = ctx.request
        host = _host(request.client)
        if not (trust_all or host in trusted_proxies):
            await next()
            return

        xff = request.headers.get("x-forwarded-for")
        xfp = request.headers.get("x-forwarded-proto")
        if xff is None and xfp is None:
            await next()
            return

        request.client = host
        if xff is not None:
            request.client = _hop(xff, num_proxies) or host
        if xfp is not None:
            request.scheme = _hop(xfp, num_proxies) or request.scheme
        await next()

    return proxied
