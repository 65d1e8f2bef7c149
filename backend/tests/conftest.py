import itertools
import json
import os
from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock
from urllib.parse import parse_qs

# Settings are read once at import time; point them at throwaway backends first.
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["REDIS_URL"] = "redis://localhost:6399/15"
os.environ["REMOTE_SERVICE_URL"] = "https://pds.test"

import httpx
import pytest
from sqlalchemy.orm import Session

from bookmark_importer.core.config import get_settings
from bookmark_importer.db.base import Base
from bookmark_importer.db.session import SessionLocal, engine, init_db
from bookmark_importer.remote.records import CREATE, DELETE, UPDATE, RecordsClient
from bookmark_importer.remote.session import DID_HEADER, HttpRemoteSession
from bookmark_importer.services import progress_tracker
from bookmark_importer.services.job_store import JobStore

OWNER = "did:plc:alice"
OTHER_OWNER = "did:plc:mallory"


class FakeRecordServer:
    """In-memory stand-in for the remote ``com.atproto.repo`` XRPC API.

    Holds one repository per DID. ``applyWrites`` is atomic like the real
    thing: a create on an existing key rejects the whole batch.
    """

    def __init__(self, page_size: int = 100):
        self.repos: dict[str, dict[str, dict[str, Any]]] = {}
        self.page_size = page_size
        self.apply_calls: list[list[dict[str, Any]]] = []
        self.fail_apply_calls: set[int] = set()
        self.fail_all_applies = False
        self.fail_listing: set[str] = set()
        self.fail_create_for: set[str] = set()
        self.max_writes = 10
        self._ids = itertools.count(1)
        self.transport = httpx.MockTransport(self.handle)

    def collection(self, did: str, collection: str) -> dict[str, Any]:
        return self.repos.setdefault(did, {}).setdefault(collection, {})

    def seed(self, did: str, collection: str, rkey: str, value: dict[str, Any]) -> str:
        self.collection(did, collection)[rkey] = value
        return f"at://{did}/{collection}/{rkey}"

    def values(self, did: str, collection: str) -> list[dict[str, Any]]:
        return list(self.collection(did, collection).values())

    def handle(self, request: httpx.Request) -> httpx.Response:
        name = request.url.path.rsplit(".", 1)[-1]
        if request.method == "GET":
            params = {key: values[0] for key, values in parse_qs(request.url.query.decode()).items()}
            return getattr(self, f"_{name}")(params)
        return getattr(self, f"_{name}")(json.loads(request.content or b"{}"))

    def _listRecords(self, params: dict[str, str]) -> httpx.Response:
        collection = params["collection"]
        if collection in self.fail_listing:
            return httpx.Response(500, json={"error": "InternalServerError"})
        items = sorted(self.collection(params["repo"], collection).items())
        start = int(params.get("cursor") or 0)
        limit = min(int(params.get("limit") or self.page_size), self.page_size)
        page = items[start:start + limit]
        body: dict[str, Any] = {
            "records": [
                {"uri": f"at://{params['repo']}/{collection}/{rkey}", "value": value} for rkey, value in page
            ]
        }
        if start + limit < len(items):
            body["cursor"] = str(start + limit)
        return httpx.Response(200, json=body)

    def _getRecord(self, params: dict[str, str]) -> httpx.Response:
        value = self.collection(params["repo"], params["collection"]).get(params["rkey"])
        if value is None:
            return httpx.Response(400, json={"error": "RecordNotFound", "message": "Could not locate record"})
        uri = f"at://{params['repo']}/{params['collection']}/{params['rkey']}"
        return httpx.Response(200, json={"uri": uri, "value": value})

    def _applyWrites(self, body: dict[str, Any]) -> httpx.Response:
        writes = body["writes"]
        self.apply_calls.append(writes)
        if self.fail_all_applies or len(self.apply_calls) in self.fail_apply_calls:
            return httpx.Response(502, json={"error": "UpstreamFailure"})
        if len(writes) > self.max_writes:
            return httpx.Response(400, json={"error": "InvalidRequest", "message": "Too many writes"})

        did = body["repo"]
        for write in writes:
            exists = write["rkey"] in self.collection(did, write["collection"])
            if write["$type"] == CREATE and exists:
                return httpx.Response(400, json={"error": "InvalidRequest", "message": "Record already exists"})
            if write["$type"] == UPDATE and not exists:
                return httpx.Response(400, json={"error": "InvalidRequest", "message": "Record not found"})

        for write in writes:
            records = self.collection(did, write["collection"])
            if write["$type"] == DELETE:
                records.pop(write["rkey"], None)
            else:
                records[write["rkey"]] = write["value"]
        return httpx.Response(200, json={"results": [{} for _ in writes]})

    def _createRecord(self, body: dict[str, Any]) -> httpx.Response:
        value = body["record"].get("value")
        if value in self.fail_create_for:
            return httpx.Response(500, json={"error": "InternalServerError"})
        rkey = f"gen{next(self._ids)}"
        self.collection(body["repo"], body["collection"])[rkey] = body["record"]
        return httpx.Response(200, json={"uri": f"at://{body['repo']}/{body['collection']}/{rkey}", "cid": "x"})

    def _putRecord(self, body: dict[str, Any]) -> httpx.Response:
        self.collection(body["repo"], body["collection"])[body["rkey"]] = body["record"]
        return httpx.Response(200, json={"uri": f"at://{body['repo']}/{body['collection']}/{body['rkey']}"})

    def _deleteRecord(self, body: dict[str, Any]) -> httpx.Response:
        self.collection(body["repo"], body["collection"]).pop(body["rkey"], None)
        return httpx.Response(200, json={})


class FakeSessionProvider:
    """Session provider whose ``restore`` can be switched off to simulate expiry."""

    def __init__(self, session: HttpRemoteSession | None, restorable: bool = True):
        self.session = session
        self.restorable = restorable

    def current(self) -> HttpRemoteSession | None:
        return self.session

    def restore(self, owner_id: str) -> HttpRemoteSession | None:
        if not self.restorable or self.session is None or self.session.did != owner_id:
            return None
        return self.session


@pytest.fixture(autouse=True)
def progress_cache(monkeypatch) -> dict[str, str]:
    """Replace the Redis client with a dict so progress snapshots stay in-process."""
    cache: dict[str, str] = {}
    fake = MagicMock()
    fake.set.side_effect = lambda key, value, ex=None: cache.__setitem__(key, value)
    fake.get.side_effect = cache.get
    monkeypatch.setattr(progress_tracker, "redis_client", fake)
    return cache


@pytest.fixture(autouse=True)
def database() -> Generator[None, None, None]:
    init_db(engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def store(db_session: Session) -> JobStore:
    return JobStore(db_session, chunk_size=2)


@pytest.fixture
def record_server() -> FakeRecordServer:
    return FakeRecordServer()


@pytest.fixture
def remote_session(record_server: FakeRecordServer) -> Generator[HttpRemoteSession, None, None]:
    session = HttpRemoteSession(OWNER, "https://pds.test", "token-alice", transport=record_server.transport)
    yield session
    session.close()


@pytest.fixture
def records(remote_session: HttpRemoteSession) -> RecordsClient:
    return RecordsClient(remote_session)


@pytest.fixture
def sessions(remote_session: HttpRemoteSession) -> FakeSessionProvider:
    return FakeSessionProvider(remote_session)


@pytest.fixture
def settings():
    return get_settings().model_copy(update={"import_chunk_size": 2})


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": "Bearer token-alice", DID_HEADER: OWNER}


@pytest.fixture
def client(record_server: FakeRecordServer, settings):
    from fastapi import Request
    from fastapi.testclient import TestClient

    from bookmark_importer.api.dependencies.auth import get_session_provider
    from bookmark_importer.core.config import get_settings as settings_dependency
    from bookmark_importer.main import app
    from bookmark_importer.remote.session import BearerSessionProvider

    def session_provider(request: Request):
        provider = BearerSessionProvider(request.headers, settings, transport=record_server.transport)
        try:
            yield provider
        finally:
            provider.close()

    app.dependency_overrides[get_session_provider] = session_provider
    app.dependency_overrides[settings_dependency] = lambda: settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
