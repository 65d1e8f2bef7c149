"""Drop imported bookmarks whose URL the owner already has."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from bookmark_importer.core.exceptions import RemoteAPIError
from bookmark_importer.core.models import BOOKMARK_COLLECTION, ImportedBookmark
from bookmark_importer.remote.records import RecordsClient
from bookmark_importer.utils.url_utils import DEFAULT_POLICY, DedupePolicy, base_url

logger = logging.getLogger(__name__)


@dataclass
class ExistingUrls:
    """Dedup keys of the owner's remote bookmarks.

    ``degraded`` is set when the listing failed and the set is empty because
    of that, not because the owner has no bookmarks.
    """

    urls: set[str] = field(default_factory=set)
    degraded: bool = False
    error: str | None = None


@dataclass
class DedupeResult:
    bookmarks: list[ImportedBookmark]
    total: int
    degraded: bool = False

    @property
    def skipped(self) -> int:
        return self.total - len(self.bookmarks)


def fetch_existing_urls(client: RecordsClient, policy: DedupePolicy = DEFAULT_POLICY) -> ExistingUrls:
    """Page through all bookmark records and collect their dedup keys.

    A failed listing is not fatal: importing a few duplicates beats blocking
    the user, so the result is empty and flagged ``degraded``.
    """
    try:
        records = client.list_all_records(BOOKMARK_COLLECTION)
    except (RemoteAPIError, httpx.HTTPError, ValueError) as exc:
        logger.warning(f"Dedupe degraded for {client.did}: could not list existing bookmarks: {exc}")
        return ExistingUrls(degraded=True, error=str(exc))

    urls = set()
    for record in records:
        key = base_url((record.get("value") or {}).get("subject"), policy)
        if key:
            urls.add(key)
    logger.info(f"Loaded {len(urls)} existing bookmark URLs for {client.did}")
    return ExistingUrls(urls=urls)


def filter_new(
    bookmarks: list[ImportedBookmark],
    existing: ExistingUrls,
    policy: DedupePolicy = DEFAULT_POLICY,
) -> DedupeResult:
    """Keep bookmarks whose key is neither remote nor seen earlier in this file."""
    seen = set(existing.urls)
    fresh = []
    for bookmark in bookmarks:
        key = base_url(bookmark.url, policy)
        if key is None or key in seen:
            continue
        seen.add(key)
        fresh.append(bookmark)
    return DedupeResult(bookmarks=fresh, total=len(bookmarks), degraded=existing.degraded)
