"""Tests for bulk delete and bulk tag edits."""

from bookmark_importer.core.models import ANNOTATION_COLLECTION, BOOKMARK_COLLECTION, TAG_COLLECTION
from bookmark_importer.services.bulk_operations import BulkAction, bulk_delete, bulk_update_tags
from conftest import OWNER


def _seed_bookmarks(record_server, count, tags=()):
    uris = []
    for n in range(count):
        uri = record_server.seed(
            OWNER,
            BOOKMARK_COLLECTION,
            f"bm{n}",
            {"subject": f"https://example.com/{n}", "createdAt": "2024-01-01T00:00:00.000Z", "tags": list(tags)},
        )
        uris.append(uri)
    return uris


def test_bulk_delete_removes_bookmarks_and_annotations(records, record_server):
    uris = _seed_bookmarks(record_server, 12)
    record_server.seed(OWNER, ANNOTATION_COLLECTION, "bm0", {"title": "Zero"})

    result = bulk_delete(records, uris, max_operations=10)

    assert result.success
    assert result.succeeded == 12
    assert record_server.values(OWNER, BOOKMARK_COLLECTION) == []
    assert record_server.values(OWNER, ANNOTATION_COLLECTION) == []
    assert all(len(writes) <= 10 for writes in record_server.apply_calls)


def test_bulk_delete_reports_failed_groups(records, record_server):
    uris = _seed_bookmarks(record_server, 4)
    record_server.fail_apply_calls = {2}

    result = bulk_delete(records, uris, max_operations=2)

    assert not result.success
    assert result.succeeded == 2
    assert result.failed == 2
    assert len(record_server.values(OWNER, BOOKMARK_COLLECTION)) == 2


def test_invalid_uris_fail_individually(records, record_server):
    uris = _seed_bookmarks(record_server, 1)

    result = bulk_delete(records, [*uris, "https://not-an-at-uri"])

    assert result.succeeded == 1
    assert result.failed == 1
    assert "Invalid URI" in result.errors[0]


def test_add_tags_uses_existing_casing_and_creates_missing_tags(records, record_server):
    uris = _seed_bookmarks(record_server, 3, tags=["keep"])
    record_server.seed(OWNER, TAG_COLLECTION, "t1", {"value": "Python"})

    result = bulk_update_tags(records, uris, ["python", "New"], BulkAction.ADD_TAGS, concurrency=2)

    assert result.success
    assert result.succeeded == 3
    for record in record_server.values(OWNER, BOOKMARK_COLLECTION):
        assert record["tags"] == ["keep", "Python", "New"]
    assert sorted(record["value"] for record in record_server.values(OWNER, TAG_COLLECTION)) == ["New", "Python"]
    assert {view["uri"] for view in result.bookmarks} == set(uris)


def test_remove_tags_is_case_insensitive(records, record_server):
    uris = _seed_bookmarks(record_server, 2, tags=["Python", "misc"])

    result = bulk_update_tags(records, uris, ["PYTHON"], BulkAction.REMOVE_TAGS)

    assert result.succeeded == 2
    for record in record_server.values(OWNER, BOOKMARK_COLLECTION):
        assert record["tags"] == ["misc"]
    assert record_server.values(OWNER, TAG_COLLECTION) == []


def test_missing_bookmark_fails_only_itself(records, record_server):
    uris = _seed_bookmarks(record_server, 1)
    missing = f"at://{OWNER}/{BOOKMARK_COLLECTION}/gone"

    result = bulk_update_tags(records, [*uris, missing], ["x"], BulkAction.ADD_TAGS)

    assert result.succeeded == 1
    assert result.failed == 1
    assert "gone" in result.errors[0]
