"""Remote session dependencies."""

from collections.abc import Generator

from fastapi import Depends, HTTPException, Request, status

from bookmark_importer.core.config import Settings, get_settings
from bookmark_importer.remote.session import BearerSessionProvider, RemoteSession, SessionProvider


def get_session_provider(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> Generator[SessionProvider, None, None]:
    provider = BearerSessionProvider(request.headers, settings)
    try:
        yield provider
    finally:
        provider.close()


def require_remote_session(provider: SessionProvider = Depends(get_session_provider)) -> RemoteSession:
    """Reject the request with 401 unless the caller has a remote session."""
    session = provider.current()
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required, please log in again",
        )
    return session
