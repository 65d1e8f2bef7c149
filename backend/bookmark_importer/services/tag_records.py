"""Create tag records in the remote store, skipping any that already exist."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import httpx

from bookmark_importer.core.exceptions import RemoteAPIError
from bookmark_importer.core.models import TAG_COLLECTION
from bookmark_importer.remote.records import RecordsClient, tag_record
from bookmark_importer.services.tag_resolver import deduplicate_tags_case_insensitive, tag_includes

logger = logging.getLogger(__name__)


@dataclass
class TagCreationReport:
    created: list[str] = field(default_factory=list)
    existing: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def existing_tag_values(client: RecordsClient) -> list[str]:
    """Values of every tag record the owner already has."""
    values = []
    for record in client.list_all_records(TAG_COLLECTION):
        value = (record.get("value") or {}).get("value")
        if isinstance(value, str) and value:
            values.append(value)
    return values


def create_missing_tag_records(
    client: RecordsClient,
    tags: list[str],
    known: list[str] | None = None,
) -> TagCreationReport:
    """Create a record for every tag not already present (case-insensitively).

    ``known`` skips the listing call when the caller already has it. Runs
    to completion and reports per tag instead of raising, so it is safe to
    run again.
    """
    report = TagCreationReport()
    if not tags:
        return report

    if known is None:
        known = existing_tag_values(client)

    for tag in deduplicate_tags_case_insensitive(tags):
        if tag_includes(known, tag):
            report.existing.append(tag)
            continue
        try:
            client.create_record(TAG_COLLECTION, tag_record(tag))
        except (RemoteAPIError, httpx.HTTPError) as exc:
            logger.error(f'Failed to create tag "{tag}": {exc}')
            report.failed.append(tag)
            continue
        known.append(tag)
        report.created.append(tag)

    return report
