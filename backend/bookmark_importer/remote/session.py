"""Authenticated access to the user's remote record store.

The OAuth layer lives outside this service. It hands us a ``RemoteSession``
(an owner identity plus a request method), and the ``SessionProvider`` is
where the import routes go to obtain one, either for the current request or
for the owner of a job being resumed.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from bookmark_importer.core.config import Settings

logger = logging.getLogger(__name__)

DID_HEADER = "X-Remote-Did"
USER_AGENT = "Bookmark-Importer/1.0"


class RemoteSession(Protocol):
    did: str
    service_url: str

    def make_request(self, method: str, url: str, **options: Any) -> httpx.Response:
        ...


class SessionProvider(Protocol):
    def current(self) -> RemoteSession | None:
        """Session of the caller of the current request, if authenticated."""

    def restore(self, owner_id: str) -> RemoteSession | None:
        """Session able to write on behalf of ``owner_id``, if still valid."""


class HttpRemoteSession:
    """Bearer-token session backed by an ``httpx.Client``."""

    def __init__(
        self,
        did: str,
        service_url: str,
        access_token: str,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.did = did
        self.service_url = service_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.service_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {access_token}",
                "User-Agent": USER_AGENT,
            },
        )

    def make_request(self, method: str, url: str, **options: Any) -> httpx.Response:
        return self._client.request(method, url, **options)

    def close(self) -> None:
        self._client.close()


class BearerSessionProvider:
    """Builds sessions from the ``Authorization`` and ``X-Remote-Did`` headers.

    ``restore`` only succeeds when the request's identity matches the job
    owner, so a job can never be advanced with somebody else's credentials.
    """

    def __init__(
        self,
        headers: httpx.Headers | dict[str, str] | Any,
        settings: Settings,
        transport: httpx.BaseTransport | None = None,
    ):
        self._headers = headers
        self._settings = settings
        self._transport = transport
        self._session: HttpRemoteSession | None = None

    def _credentials(self) -> tuple[str, str] | None:
        authorization = self._headers.get("authorization") or ""
        scheme, _, token = authorization.partition(" ")
        did = (self._headers.get(DID_HEADER.lower()) or "").strip()
        if scheme.lower() != "bearer" or not token.strip() or not did:
            return None
        return did, token.strip()

    def current(self) -> HttpRemoteSession | None:
        if self._session is None:
            credentials = self._credentials()
            if credentials is None:
                return None
            did, token = credentials
            self._session = HttpRemoteSession(
                did,
                self._settings.remote_service_url,
                token,
                timeout=self._settings.remote_timeout_seconds,
                transport=self._transport,
            )
        return self._session

    def restore(self, owner_id: str) -> HttpRemoteSession | None:
        session = self.current()
        if session is None or session.did != owner_id:
            logger.warning(f"No usable remote session for owner {owner_id}")
            return None
        return session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
