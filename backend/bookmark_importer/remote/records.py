"""Thin client for the remote record API (``com.atproto.repo.*`` XRPC calls)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from bookmark_importer.core.exceptions import RemoteAPIError
from bookmark_importer.core.models import utc_iso_now
from bookmark_importer.remote.session import RemoteSession

logger = logging.getLogger(__name__)

XRPC_PREFIX = "/xrpc/com.atproto.repo."
CREATE = "com.atproto.repo.applyWrites#create"
UPDATE = "com.atproto.repo.applyWrites#update"
DELETE = "com.atproto.repo.applyWrites#delete"


@dataclass
class RecordPage:
    records: list[dict[str, Any]] = field(default_factory=list)
    cursor: str | None = None


def at_uri(did: str, collection: str, rkey: str) -> str:
    return f"at://{did}/{collection}/{rkey}"


def extract_rkey(uri: str) -> str | None:
    """Last path segment of an ``at://did/collection/rkey`` URI."""
    if not uri or not uri.startswith("at://"):
        return None
    parts = uri[len("at://"):].split("/")
    if len(parts) != 3 or not parts[2]:
        return None
    return parts[2]


def create_op(collection: str, rkey: str, value: dict[str, Any]) -> dict[str, Any]:
    return {"$type": CREATE, "collection": collection, "rkey": rkey, "value": value}


def update_op(collection: str, rkey: str, value: dict[str, Any]) -> dict[str, Any]:
    return {"$type": UPDATE, "collection": collection, "rkey": rkey, "value": value}


def delete_op(collection: str, rkey: str) -> dict[str, Any]:
    return {"$type": DELETE, "collection": collection, "rkey": rkey}


def _error_text(response: httpx.Response) -> str:
    return f"HTTP {response.status_code}: {response.text[:200]}"


class RecordsClient:
    """Read and write records in the session owner's repository."""

    def __init__(self, session: RemoteSession, page_size: int = 100):
        self.session = session
        self.page_size = page_size

    @property
    def did(self) -> str:
        return self.session.did

    def _call(self, method: str, name: str, **options: Any) -> httpx.Response:
        return self.session.make_request(method, f"{XRPC_PREFIX}{name}", **options)

    def list_records(self, collection: str, cursor: str | None = None) -> RecordPage:
        params = {"repo": self.did, "collection": collection, "limit": str(self.page_size)}
        if cursor:
            params["cursor"] = cursor
        response = self._call("GET", "listRecords", params=params)
        if not response.is_success:
            raise RemoteAPIError(
                f"listRecords {collection} failed: {_error_text(response)}",
                status_code=response.status_code,
            )
        data = response.json()
        return RecordPage(records=data.get("records") or [], cursor=data.get("cursor") or None)

    def list_all_records(self, collection: str) -> list[dict[str, Any]]:
        """Follow the listing cursor until the server stops returning one."""
        records: list[dict[str, Any]] = []
        seen_cursors: set[str] = set()
        cursor: str | None = None
        while True:
            page = self.list_records(collection, cursor)
            records.extend(page.records)
            if not page.cursor or page.cursor in seen_cursors:
                break
            seen_cursors.add(page.cursor)
            cursor = page.cursor
        return records

    def apply_writes(self, writes: list[dict[str, Any]]) -> httpx.Response:
        """Submit one atomic batch; the caller inspects the response."""
        return self._call("POST", "applyWrites", json={"repo": self.did, "writes": writes})

    def get_record(self, collection: str, rkey: str) -> dict[str, Any] | None:
        params = {"repo": self.did, "collection": collection, "rkey": rkey}
        response = self._call("GET", "getRecord", params=params)
        if response.status_code in (400, 404) and "RecordNotFound" in response.text:
            return None
        if not response.is_success:
            raise RemoteAPIError(
                f"getRecord {collection}/{rkey} failed: {_error_text(response)}",
                status_code=response.status_code,
            )
        return response.json()

    def put_record(self, collection: str, rkey: str, record: dict[str, Any]) -> dict[str, Any]:
        response = self._call(
            "POST",
            "putRecord",
            json={"repo": self.did, "collection": collection, "rkey": rkey, "record": record},
        )
        if not response.is_success:
            raise RemoteAPIError(
                f"putRecord {collection}/{rkey} failed: {_error_text(response)}",
                status_code=response.status_code,
            )
        return response.json()

    def create_record(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        response = self._call(
            "POST",
            "createRecord",
            json={"repo": self.did, "collection": collection, "record": record},
        )
        if not response.is_success:
            raise RemoteAPIError(
                f"createRecord {collection} failed: {_error_text(response)}",
                status_code=response.status_code,
            )
        return response.json()

    def delete_record(self, collection: str, rkey: str) -> None:
        response = self._call(
            "POST",
            "deleteRecord",
            json={"repo": self.did, "collection": collection, "rkey": rkey},
        )
        if not response.is_success:
            raise RemoteAPIError(
                f"deleteRecord {collection}/{rkey} failed: {_error_text(response)}",
                status_code=response.status_code,
            )


def tag_record(value: str) -> dict[str, Any]:
    return {"value": value, "createdAt": utc_iso_now()}
