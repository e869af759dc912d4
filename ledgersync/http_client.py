"""Shared HTTP client — connection pooling for all calls to the store.

One module-level httpx.AsyncClient singleton. Per-request timeout
overrides via http.get(url, timeout=15).

Usage:
    from ledgersync.http_client import http
    resp = await http.get(url, params=params, auth=auth)
"""

import httpx

_LIMITS = httpx.Limits(
    max_connections=20,
    max_keepalive_connections=10,
    keepalive_expiry=30,
)

http = httpx.AsyncClient(
    timeout=30,
    limits=_LIMITS,
    follow_redirects=False,
)


async def close_clients():
    """Shut down the shared client. Call from app lifespan shutdown."""
    try:
        await http.aclose()
    except RuntimeError:
        pass
