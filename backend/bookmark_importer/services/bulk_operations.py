"""Bulk delete and tag edits on bookmarks that already exist remotely."""

from __future__ import annotations

import enum
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import httpx

from bookmark_importer.core.exceptions import RemoteAPIError
from bookmark_importer.core.models import ANNOTATION_COLLECTION, BOOKMARK_COLLECTION
from bookmark_importer.remote.records import RecordsClient, delete_op, extract_rkey, update_op
from bookmark_importer.services.batch_executor import DEFAULT_MAX_OPERATIONS, BatchExecutor, WriteItem
from bookmark_importer.services.tag_records import create_missing_tag_records, existing_tag_values
from bookmark_importer.services.tag_resolver import (
    deduplicate_tags_case_insensitive,
    resolve_tag_casing,
    tag_includes,
)

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5


class BulkAction(str, enum.Enum):
    DELETE = "delete"
    ADD_TAGS = "add-tags"
    REMOVE_TAGS = "remove-tags"


@dataclass
class BulkResult:
    succeeded: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    bookmarks: list[dict[str, Any]] | None = None

    @property
    def success(self) -> bool:
        return self.failed == 0


@dataclass
class _FetchedBookmark:
    uri: str
    rkey: str
    value: dict[str, Any]
    annotation: dict[str, Any] | None


def _split_uris(uris: list[str]) -> tuple[list[tuple[str, str]], list[str]]:
    valid, invalid = [], []
    for uri in uris:
        rkey = extract_rkey(uri)
        if rkey:
            valid.append((uri, rkey))
        else:
            invalid.append(uri)
    return valid, invalid


def bulk_delete(
    client: RecordsClient,
    uris: list[str],
    max_operations: int = DEFAULT_MAX_OPERATIONS,
) -> BulkResult:
    """Delete bookmarks in capped atomic groups, then their annotations."""
    targets, invalid = _split_uris(uris)
    result = BulkResult(failed=len(invalid), errors=[f"Invalid URI: {uri}" for uri in invalid])

    executor = BatchExecutor(client.apply_writes, max_operations=max_operations, label="bulk delete")
    report = executor.run([WriteItem.of(uri, delete_op(BOOKMARK_COLLECTION, rkey)) for uri, rkey in targets])
    result.succeeded += report.succeeded_count
    result.failed += report.failed_count
    result.errors.extend(report.errors)

    # Annotations are optional sidecars; a missing one must not fail the delete.
    deleted = set(report.succeeded)
    annotation_items = [
        WriteItem.of(uri, delete_op(ANNOTATION_COLLECTION, rkey)) for uri, rkey in targets if uri in deleted
    ]
    if annotation_items:
        sidecars = BatchExecutor(
            client.apply_writes, max_operations=max_operations, label="bulk delete annotations"
        ).run(annotation_items)
        if sidecars.failed:
            logger.info(f"{sidecars.failed_count} annotation sidecar(s) not deleted for {client.did}")

    logger.info(f"Bulk delete for {client.did}: {result.succeeded} deleted, {result.failed} failed")
    return result


def _fetch_bookmark(client: RecordsClient, uri: str, rkey: str) -> _FetchedBookmark:
    record = client.get_record(BOOKMARK_COLLECTION, rkey)
    if record is None:
        raise RemoteAPIError(f"Bookmark not found: {uri}", status_code=404)
    try:
        annotation_record = client.get_record(ANNOTATION_COLLECTION, rkey)
    except (RemoteAPIError, httpx.HTTPError):
        annotation_record = None
    return _FetchedBookmark(
        uri=uri,
        rkey=rkey,
        value=dict(record.get("value") or {}),
        annotation=(annotation_record or {}).get("value"),
    )


def _edit_tags(current: list[str], tags: list[str], action: BulkAction) -> list[str]:
    if action is BulkAction.ADD_TAGS:
        return deduplicate_tags_case_insensitive([*current, *tags])
    return [tag for tag in current if not tag_includes(tags, tag)]


def _bookmark_view(fetched: _FetchedBookmark, tags: list[str]) -> dict[str, Any]:
    annotation = fetched.annotation or {}
    return {
        "uri": fetched.uri,
        "subject": fetched.value.get("subject"),
        "createdAt": fetched.value.get("createdAt"),
        "tags": tags,
        "title": annotation.get("title"),
        "description": annotation.get("description"),
    }


def bulk_update_tags(
    client: RecordsClient,
    uris: list[str],
    tags: list[str],
    action: BulkAction,
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    max_operations: int = DEFAULT_MAX_OPERATIONS,
) -> BulkResult:
    """Add or remove ``tags`` on each bookmark in ``uris``.

    Records are read with a small thread fan-out, then the updates go out
    through the batch executor. Results are per bookmark.
    """
    targets, invalid = _split_uris(uris)
    result = BulkResult(failed=len(invalid), errors=[f"Invalid URI: {uri}" for uri in invalid], bookmarks=[])

    try:
        known = existing_tag_values(client)
    except (RemoteAPIError, httpx.HTTPError, ValueError) as exc:
        logger.warning(f"Could not list existing tags for {client.did}: {exc}")
        known = []
    if action is BulkAction.ADD_TAGS:
        tags = resolve_tag_casing(tags, known)

    fetched: list[_FetchedBookmark] = []
    with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="bulk-tags") as pool:
        futures = [(uri, pool.submit(_fetch_bookmark, client, uri, rkey)) for uri, rkey in targets]
        for uri, future in futures:
            try:
                fetched.append(future.result())
            except (RemoteAPIError, httpx.HTTPError, ValueError) as exc:
                result.failed += 1
                result.errors.append(f"Failed to get bookmark {uri}: {exc}")

    new_tags = {item.uri: _edit_tags(list(item.value.get("tags") or []), tags, action) for item in fetched}
    items = [
        WriteItem.of(item.uri, update_op(BOOKMARK_COLLECTION, item.rkey, {**item.value, "tags": new_tags[item.uri]}))
        for item in fetched
    ]
    report = BatchExecutor(client.apply_writes, max_operations=max_operations, label=f"bulk {action.value}").run(items)
    result.succeeded += report.succeeded_count
    result.failed += report.failed_count
    result.errors.extend(report.errors)

    updated = set(report.succeeded)
    result.bookmarks = [_bookmark_view(item, new_tags[item.uri]) for item in fetched if item.uri in updated]

    if action is BulkAction.ADD_TAGS and result.succeeded:
        creation = create_missing_tag_records(client, tags, known=list(known))
        if creation.failed:
            logger.error(f"Bulk add-tags for {client.did}: tag records not created for {creation.failed}")

    logger.info(f"Bulk {action.value} for {client.did}: {result.succeeded} updated, {result.failed} failed")
    return result
