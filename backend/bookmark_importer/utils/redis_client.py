"""Redis client factory shared by the progress tracker and health probes."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client from ``url``.

    Hosted providers (Upstash and friends) terminate TLS with certificates
    the default store does not trust, so ``rediss://`` connections skip
    certificate verification. Plain ``redis://`` URLs to those hosts are
    upgraded to TLS first.
    """
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)

    if url.startswith("rediss://"):
        kwargs.setdefault("ssl_cert_reqs", ssl.CERT_NONE)

    kwargs.setdefault("socket_connect_timeout", 2)
    kwargs.setdefault("socket_timeout", 2)
    return Redis.from_url(url, **kwargs)
