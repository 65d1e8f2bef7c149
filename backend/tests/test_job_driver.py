"""Tests for the polling client that drives an import to completion."""

import functools
import json

import httpx
import pytest

from bookmark_importer.client import job_driver
from bookmark_importer.client.job_driver import STALL_MARGIN, ImportClient
from bookmark_importer.core.exceptions import AuthenticationError, ImportStalledError


class ScriptedServer:
    """Answers ``/process`` with a scripted list of responses, then repeats the last one."""

    def __init__(self, process_script, start=None):
        self.process_script = list(process_script)
        self.start = start or {"success": True, "jobId": "job-1", "totalChunks": 2}
        self.process_calls = 0
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request):
        if request.url.path == "/import":
            assert b'name="file"' in request.content
            return httpx.Response(200, json=self.start)
        if request.url.path.endswith("/process"):
            self.process_calls += 1
            index = min(self.process_calls, len(self.process_script)) - 1
            status, body = self.process_script[index]
            return httpx.Response(status, json=body)
        return httpx.Response(404, json={"detail": "Import job not found"})


def _pending(remaining=1):
    return 200, {"success": True, "done": False, "remaining": remaining, "totalImported": 0, "totalFailed": 0}


DONE = (
    200,
    {
        "success": True,
        "done": True,
        "remaining": 0,
        "result": {"imported": 4, "skipped": 1, "failed": 0, "total": 5, "format": "netscape"},
    },
)


def _client(server):
    return ImportClient("http://importer.test", "token", "did:plc:alice", transport=server.transport, busy_delay=0)


def test_drive_until_done():
    server = ScriptedServer([_pending(1), _pending(0), DONE])
    seen = []

    with _client(server) as client:
        summary = client.run_import("<DT><A HREF=...>", "bookmarks.html", on_progress=seen.append)

    assert summary.imported == 4
    assert summary.skipped == 1
    assert summary.job_id == "job-1"
    assert server.process_calls == 3
    assert len(seen) == 3


def test_drive_gives_up_after_margin():
    server = ScriptedServer([_pending()])

    with _client(server) as client, pytest.raises(ImportStalledError, match="Import stalled, please retry"):
        client.drive("job-1", total_chunks=3)

    assert server.process_calls == 3 + STALL_MARGIN


def test_retryable_errors_use_up_an_iteration():
    server = ScriptedServer([(500, {"detail": "Failed to claim import chunk, please retry"}), _pending(0), DONE])

    with _client(server) as client:
        summary = client.drive("job-1", total_chunks=1)

    assert summary.imported == 4
    assert server.process_calls == 3


def test_persistent_retryable_errors_still_stall():
    server = ScriptedServer([(500, {"detail": "down"})])

    with _client(server) as client, pytest.raises(ImportStalledError):
        client.drive("job-1", total_chunks=0)

    assert server.process_calls == STALL_MARGIN


def test_immediate_result_skips_processing():
    server = ScriptedServer(
        [DONE],
        start={"success": True, "result": {"imported": 0, "skipped": 2, "failed": 0, "total": 2, "format": "pocket"}},
    )

    with _client(server) as client:
        summary = client.run_import("url,title\n", "export.csv")

    assert summary.skipped == 2
    assert server.process_calls == 0


def test_auth_errors_are_raised():
    server = ScriptedServer([(401, {"detail": "Session expired, please re-authenticate and try again"})])

    with _client(server) as client, pytest.raises(AuthenticationError, match="re-authenticate"):
        client.drive("job-1", total_chunks=1)


@pytest.mark.parametrize(
    ("script", "exit_code"),
    [([DONE], 0), ([_pending()], 4), ([(401, {"detail": "expired"})], 3), ([(409, {"detail": "failed"})], 1)],
)
def test_cli_exit_codes(tmp_path, monkeypatch, capsys, script, exit_code):
    export = tmp_path / "pinboard.json"
    export.write_text(json.dumps([{"href": "https://example.com"}]))
    server = ScriptedServer(script)
    monkeypatch.setattr(
        job_driver,
        "ImportClient",
        functools.partial(ImportClient, transport=server.transport, busy_delay=0),
    )

    code = job_driver.main([str(export), "--token", "t", "--did", "did:plc:alice"])

    assert code == exit_code
    if exit_code == 0:
        assert "imported 4" in capsys.readouterr().out


def test_cli_reports_unreadable_file(tmp_path):
    assert job_driver.main([str(tmp_path / "missing.html"), "--token", "t", "--did", "d"]) == 2
