"""First phase of an import: parse, dedup, resolve tags and store the job."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta

import httpx

from bookmark_importer.core.config import Settings
from bookmark_importer.core.exceptions import EmptyFileError, RemoteAPIError
from bookmark_importer.core.models import ImportFormat
from bookmark_importer.db.models.import_job import ImportJob
from bookmark_importer.remote.records import RecordsClient
from bookmark_importer.remote.session import RemoteSession
from bookmark_importer.services.deduplicator import fetch_existing_urls, filter_new
from bookmark_importer.services.import_parsers import parse_bookmark_file
from bookmark_importer.services.job_store import JobStore
from bookmark_importer.services.progress_tracker import publish_progress
from bookmark_importer.services.tag_records import existing_tag_values
from bookmark_importer.services.tag_resolver import resolve_tags
from bookmark_importer.utils.url_utils import DedupePolicy

logger = logging.getLogger(__name__)


@dataclass
class PreparedImport:
    format: ImportFormat
    total: int
    skipped: int
    job: ImportJob | None = None
    dedupe_degraded: bool = False

    @property
    def to_import(self) -> int:
        return self.total - self.skipped


def dedupe_policy(settings: Settings) -> DedupePolicy:
    return DedupePolicy(
        strip_trailing_slash=settings.dedupe_strip_trailing_slash,
        strip_www=settings.dedupe_strip_www,
    )


def _known_tags(client: RecordsClient) -> list[str]:
    try:
        return existing_tag_values(client)
    except (RemoteAPIError, httpx.HTTPError, ValueError) as exc:
        # Tag records are re-checked when the job finalizes, so this only
        # affects casing, never duplicates.
        logger.warning(f"Could not list existing tags for {client.did}: {exc}")
        return []


def prepare_import(
    content: str,
    session: RemoteSession,
    store: JobStore,
    settings: Settings,
) -> PreparedImport:
    """Turn an uploaded export into a stored import job.

    Returns without creating a job when nothing is left to import after
    dedup. Raises ``ImportInputError`` subclasses for unusable uploads.
    """
    if not content or not content.strip():
        raise EmptyFileError()

    parsed = parse_bookmark_file(content)
    total = len(parsed.bookmarks)
    if total == 0:
        return PreparedImport(format=parsed.format, total=0, skipped=0)

    policy = dedupe_policy(settings)
    client = RecordsClient(session, page_size=settings.list_page_size)

    # Both listings are read-only and hit different collections.
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="import-prep") as pool:
        existing_future = pool.submit(fetch_existing_urls, client, policy)
        tags_future = pool.submit(_known_tags, client)
        existing = existing_future.result()
        known_tags = tags_future.result()

    deduped = filter_new(parsed.bookmarks, existing, policy)
    logger.info(
        f"Import for {session.did}: {total} parsed, {deduped.skipped} duplicates, "
        f"{len(deduped.bookmarks)} to import"
        + (" (dedupe degraded)" if existing.degraded else "")
    )

    if not deduped.bookmarks:
        return PreparedImport(
            format=parsed.format,
            total=total,
            skipped=deduped.skipped,
            dedupe_degraded=existing.degraded,
        )

    resolution = resolve_tags([bookmark.tags for bookmark in deduped.bookmarks], known_tags)
    bookmarks = [
        bookmark.with_tags(tags) for bookmark, tags in zip(deduped.bookmarks, resolution.bookmark_tags)
    ]

    store.cleanup_stale_jobs(timedelta(hours=settings.job_ttl_hours))
    store.delete_jobs_for_owner(session.did)
    job = store.create_job(
        owner_id=session.did,
        format=parsed.format,
        total=total,
        skipped=deduped.skipped,
        bookmarks=bookmarks,
        tags=resolution.new_tags,
        meta={"dedupe_degraded": existing.degraded, "dedupe_error": existing.error},
    )
    publish_progress(job)

    return PreparedImport(
        format=parsed.format,
        total=total,
        skipped=deduped.skipped,
        job=job,
        dedupe_degraded=existing.degraded,
    )
