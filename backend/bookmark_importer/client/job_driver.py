"""Polling client that drives an import job to completion.

The API advances a job by one chunk per request, so whoever uploads the file
also owns the loop: call ``/process`` until the server says ``done``. The
loop is capped at ``total_chunks + STALL_MARGIN`` calls so it ends even if
the server keeps answering "not done".
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import httpx

from bookmark_importer.core.exceptions import (
    AuthenticationError,
    ImporterError,
    ImportInputError,
    ImportStalledError,
    JobFailedError,
    JobNotFoundError,
    JobOwnershipError,
    StorageError,
)
from bookmark_importer.core.logging_config import configure_logging
from bookmark_importer.remote.session import DID_HEADER

logger = logging.getLogger(__name__)

STALL_MARGIN = 5

ProgressCallback = Callable[[dict[str, Any]], None]


@dataclass
class ImportSummary:
    imported: int
    skipped: int
    failed: int
    total: int
    format: str
    job_id: str | None = None

    @classmethod
    def from_result(cls, result: dict[str, Any], job_id: str | None = None) -> ImportSummary:
        return cls(
            imported=result.get("imported", 0),
            skipped=result.get("skipped", 0),
            failed=result.get("failed", 0),
            total=result.get("total", 0),
            format=result.get("format", ""),
            job_id=job_id,
        )


def _detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return str(body)


_ERRORS_BY_STATUS: dict[int, type[ImporterError]] = {
    400: ImportInputError,
    401: AuthenticationError,
    403: JobOwnershipError,
    404: JobNotFoundError,
    409: JobFailedError,
}


class ImportClient:
    """HTTP client for the import endpoints."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        did: str,
        *,
        timeout: float = 120.0,
        transport: httpx.BaseTransport | None = None,
        busy_delay: float = 1.0,
    ):
        self.busy_delay = busy_delay
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {access_token}", DID_HEADER: did},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ImportClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @staticmethod
    def _check(response: httpx.Response) -> dict[str, Any]:
        if response.is_success:
            return response.json()
        message = _detail(response)
        if response.status_code >= 500:
            raise StorageError(message)
        raise _ERRORS_BY_STATUS.get(response.status_code, ImporterError)(message)

    def start_import(self, content: bytes | str, filename: str = "bookmarks") -> dict[str, Any]:
        if isinstance(content, str):
            content = content.encode("utf-8")
        return self._check(self._client.post("/import", files={"file": (filename, content)}))

    def process_next(self, job_id: str) -> dict[str, Any]:
        return self._check(self._client.post(f"/import/{job_id}/process"))

    def get_status(self, job_id: str) -> dict[str, Any]:
        return self._check(self._client.get(f"/import/{job_id}"))

    def drive(self, job_id: str, total_chunks: int, on_progress: ProgressCallback | None = None) -> ImportSummary:
        """Call ``process_next`` until done, at most ``total_chunks + STALL_MARGIN`` times.

        Retryable server errors and "busy" answers use up an iteration
        instead of ending the loop.

        Raises:
            ImportStalledError: if the cap is reached first.
        """
        limit = total_chunks + STALL_MARGIN
        for attempt in range(1, limit + 1):
            try:
                body = self.process_next(job_id)
            except StorageError as exc:
                logger.warning(f"Import {job_id}: attempt {attempt}/{limit} hit a retryable error: {exc}")
                continue

            if on_progress is not None:
                on_progress(body)
            if body.get("done"):
                return ImportSummary.from_result(body.get("result") or {}, job_id=job_id)
            if body.get("busy") and self.busy_delay:
                time.sleep(self.busy_delay)

        logger.error(f"Import {job_id} did not finish within {limit} process calls")
        raise ImportStalledError()

    def run_import(
        self,
        content: bytes | str,
        filename: str = "bookmarks",
        on_progress: ProgressCallback | None = None,
    ) -> ImportSummary:
        """Upload ``content`` and drive the resulting job to completion."""
        started = self.start_import(content, filename)
        job_id = started.get("jobId")
        if not job_id:
            return ImportSummary.from_result(started.get("result") or {})
        return self.drive(job_id, int(started.get("totalChunks") or 0), on_progress)


def _print_progress(body: dict[str, Any]) -> None:
    print(
        f"imported={body.get('totalImported', 0)} failed={body.get('totalFailed', 0)} "
        f"chunks remaining={body.get('remaining', 0)}"
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Import a bookmark export file into your remote store.")
    parser.add_argument("file", type=Path, help="Netscape HTML, Pinboard JSON, Pocket or Instapaper CSV export")
    parser.add_argument("--server", default=os.environ.get("BOOKMARK_IMPORTER_URL", "http://localhost:8000"))
    parser.add_argument("--token", default=os.environ.get("BOOKMARK_IMPORTER_TOKEN"))
    parser.add_argument("--did", default=os.environ.get("BOOKMARK_IMPORTER_DID"))
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    if not args.token or not args.did:
        parser.error("--token and --did are required (or BOOKMARK_IMPORTER_TOKEN / BOOKMARK_IMPORTER_DID)")

    try:
        content = args.file.read_bytes()
    except OSError as exc:
        print(f"Cannot read {args.file}: {exc}", file=sys.stderr)
        return 2

    with ImportClient(args.server, args.token, args.did) as client:
        try:
            summary = client.run_import(content, args.file.name, on_progress=_print_progress)
        except AuthenticationError as exc:
            print(f"Authentication required: {exc}", file=sys.stderr)
            return 3
        except ImportStalledError as exc:
            print(str(exc), file=sys.stderr)
            return 4
        except ImporterError as exc:
            print(f"Import failed: {exc}", file=sys.stderr)
            return 1

    print(
        f"Done ({summary.format}): imported {summary.imported}, skipped {summary.skipped}, "
        f"failed {summary.failed} of {summary.total}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
