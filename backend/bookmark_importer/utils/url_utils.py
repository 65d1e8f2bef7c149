"""URL helpers used to detect bookmarks that already exist remotely."""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlsplit


@dataclass(frozen=True)
class DedupePolicy:
    """How aggressively two URLs are folded onto the same dedup key.

    The base rule (scheme, host and path; query and fragment dropped) always
    applies. The two switches widen it.
    """

    strip_trailing_slash: bool = False
    strip_www: bool = False


DEFAULT_POLICY = DedupePolicy()


def is_valid_http_url(url: str | None) -> bool:
    """True when ``url`` is absolute and uses http or https."""
    if not url:
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme.lower() in ("http", "https") and bool(parts.hostname)


def base_url(url: str | None, policy: DedupePolicy = DEFAULT_POLICY) -> str | None:
    """Return ``scheme://host[:port]/path`` for ``url`` or None if it is not a web URL.

    Scheme and host are lower-cased; the path is kept as-is apart from the
    policy's trailing slash rule. An empty path becomes ``/``.
    """
    if not is_valid_http_url(url):
        return None
    parts = urlsplit(url.strip())
    try:
        port = parts.port
    except ValueError:
        return None

    host = parts.hostname or ""
    if policy.strip_www and host.startswith("www."):
        host = host[4:]
    netloc = f"{host}:{port}" if port is not None else host

    path = parts.path or "/"
    if policy.strip_trailing_slash and len(path) > 1:
        path = path.rstrip("/") or "/"

    return f"{parts.scheme.lower()}://{netloc}{path}"
