"""Detect and parse bookmark export files.

Supported formats are Netscape bookmark HTML (browsers, Pinboard HTML,
Raindrop), Pinboard JSON, Pocket CSV and Instapaper CSV. Detection looks at
content only, never at the uploaded filename.
"""

from __future__ import annotations

import html
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from bookmark_importer.core.exceptions import FormatUnrecognizedError
from bookmark_importer.core.models import ImportedBookmark, ImportFormat, format_iso, utc_iso_now
from bookmark_importer.utils.csv_fields import csv_to_records, format_csv_row, header_columns
from bookmark_importer.utils.url_utils import is_valid_http_url

logger = logging.getLogger(__name__)

NETSCAPE_DOCTYPE = "<!DOCTYPE NETSCAPE-Bookmark-file"
NETSCAPE_LINK_MARKER = "<DT><A HREF"

_NETSCAPE_LINK = re.compile(
    r"<DT>\s*<A\s+([^>]*)>(.*?)</A>(?:\s*<DD>([^<]*))?",
    re.IGNORECASE | re.DOTALL,
)
_TAG_SPLIT = re.compile(r"[|,]")

INSTAPAPER_BUILTIN_FOLDERS = {"unread", "archive"}


@dataclass(frozen=True)
class ParseResult:
    format: ImportFormat
    bookmarks: list[ImportedBookmark]


def detect_format(content: str) -> ImportFormat | None:
    """Return the export format ``content`` is written in, or None.

    The checks run in a fixed order and each format is claimed by exactly
    one of them: Netscape markup first, then a Pinboard JSON array, then the
    CSV header row (Instapaper's extra columns win over the generic Pocket
    shape).
    """
    trimmed = content.strip().lstrip("\ufeff")
    if not trimmed:
        return None

    upper = trimmed.upper()
    if upper.startswith(NETSCAPE_DOCTYPE.upper()) or NETSCAPE_LINK_MARKER in upper:
        return ImportFormat.NETSCAPE

    if trimmed.startswith("["):
        try:
            parsed = json.loads(trimmed)
        except ValueError:
            parsed = None
        if isinstance(parsed, list) and parsed and isinstance(parsed[0], dict) and "href" in parsed[0]:
            return ImportFormat.PINBOARD

    columns = header_columns(trimmed)
    if ("title" in columns or "given_title" in columns) and ("url" in columns or "given_url" in columns):
        if "selection" in columns and "folder" in columns:
            return ImportFormat.INSTAPAPER
        return ImportFormat.POCKET

    return None


def parse_bookmark_file(content: str) -> ParseResult:
    """Detect the format of ``content`` and parse it.

    Raises:
        FormatUnrecognizedError: if no parser claims the content.
    """
    detected = detect_format(content)
    if detected is None:
        raise FormatUnrecognizedError()

    bookmarks = PARSERS[detected](content)
    logger.info(f"Parsed {len(bookmarks)} bookmarks from {detected.value} export")
    return ParseResult(format=detected, bookmarks=bookmarks)


def unix_to_iso(timestamp: str | int | None) -> str | None:
    """Convert seconds since the epoch to ISO-8601, None if unusable."""
    if timestamp is None:
        return None
    try:
        seconds = int(str(timestamp).strip())
    except ValueError:
        return None
    if seconds <= 0:
        return None
    try:
        return format_iso(datetime.fromtimestamp(seconds, tz=timezone.utc))
    except (OverflowError, OSError, ValueError):
        return None


def normalize_iso(value: str | None) -> str | None:
    """Re-render an ISO-8601 string in the canonical form, None if unparsable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return format_iso(datetime.fromisoformat(text))
    except ValueError:
        return None


def iso_to_unix(value: str) -> int:
    parsed = normalize_iso(value)
    if parsed is None:
        return int(datetime.now(timezone.utc).timestamp())
    return int(datetime.fromisoformat(parsed.replace("Z", "+00:00")).timestamp())


def split_tags(raw: str | None, separator: str | re.Pattern = ",") -> list[str]:
    if not raw:
        return []
    parts = separator.split(raw) if isinstance(separator, re.Pattern) else raw.split(separator)
    return [tag.strip() for tag in parts if tag.strip()]


def _bookmark(
    url: str,
    title: str | None,
    description: str | None,
    tags: list[str],
    created_at: str | None,
) -> ImportedBookmark:
    return ImportedBookmark(
        url=url.strip(),
        title=(title or "").strip() or None,
        description=(description or "").strip() or None,
        tags=tuple(tags),
        created_at=created_at or utc_iso_now(),
    )


def _attr(attrs: str, name: str) -> str | None:
    match = re.search(rf'\b{name}\s*=\s*"([^"]*)"', attrs, re.IGNORECASE)
    if match is None:
        match = re.search(rf"\b{name}\s*=\s*'([^']*)'", attrs, re.IGNORECASE)
    return html.unescape(match.group(1)) if match else None


def parse_netscape_html(content: str) -> list[ImportedBookmark]:
    bookmarks = []
    for match in _NETSCAPE_LINK.finditer(content):
        attrs, raw_title, raw_description = match.groups()
        url = _attr(attrs, "HREF")
        if not is_valid_http_url(url):
            continue

        title = html.unescape(re.sub(r"<[^>]+>", "", raw_title))
        description = html.unescape(raw_description) if raw_description else None
        bookmarks.append(
            _bookmark(
                url,
                title,
                description,
                split_tags(_attr(attrs, "TAGS"), ","),
                unix_to_iso(_attr(attrs, "ADD_DATE")),
            )
        )
    return bookmarks


def parse_pinboard_json(content: str) -> list[ImportedBookmark]:
    try:
        entries = json.loads(content.strip().lstrip("\ufeff"))
    except ValueError:
        return []
    if not isinstance(entries, list):
        return []

    bookmarks = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        url = entry.get("href")
        if not isinstance(url, str) or not is_valid_http_url(url):
            continue
        bookmarks.append(
            _bookmark(
                url,
                entry.get("description"),
                entry.get("extended"),
                split_tags(entry.get("tags"), " "),
                normalize_iso(entry.get("time")),
            )
        )
    return bookmarks


def parse_pocket_csv(content: str) -> list[ImportedBookmark]:
    bookmarks = []
    for record in csv_to_records(content):
        url = record.get("given_url") or record.get("url")
        if not is_valid_http_url(url):
            continue
        bookmarks.append(
            _bookmark(
                url,
                record.get("given_title") or record.get("title"),
                record.get("excerpt"),
                split_tags(record.get("tags"), _TAG_SPLIT),
                unix_to_iso(record.get("time_added")),
            )
        )
    return bookmarks


def _instapaper_tags(record: dict[str, str]) -> list[str]:
    tags: list[str] = []
    folder = (record.get("folder") or "").strip()
    if folder and folder.lower() not in INSTAPAPER_BUILTIN_FOLDERS:
        tags.append(folder)

    raw_tags = (record.get("tags") or "").strip()
    if raw_tags.startswith("["):
        try:
            listed = json.loads(raw_tags)
        except ValueError:
            listed = []
        tags.extend(str(tag).strip() for tag in listed if str(tag).strip())
    else:
        tags.extend(split_tags(raw_tags, ","))
    return tags


def parse_instapaper_csv(content: str) -> list[ImportedBookmark]:
    bookmarks = []
    for record in csv_to_records(content):
        url = record.get("url")
        if not is_valid_http_url(url):
            continue
        bookmarks.append(
            _bookmark(
                url,
                record.get("title"),
                record.get("selection"),
                _instapaper_tags(record),
                unix_to_iso(record.get("timestamp")),
            )
        )
    return bookmarks


PARSERS: dict[ImportFormat, Callable[[str], list[ImportedBookmark]]] = {
    ImportFormat.NETSCAPE: parse_netscape_html,
    ImportFormat.PINBOARD: parse_pinboard_json,
    ImportFormat.POCKET: parse_pocket_csv,
    ImportFormat.INSTAPAPER: parse_instapaper_csv,
}


# ---------------------------------------------------------------------------
# Serialization (canonical export form of each format)
# ---------------------------------------------------------------------------


def _serialize_netscape(bookmarks: list[ImportedBookmark]) -> str:
    lines = [
        "<!DOCTYPE NETSCAPE-Bookmark-file-1>",
        '<META HTTP-EQUIV="Content-Type" CONTENT="text/html; charset=UTF-8">',
        "<TITLE>Bookmarks</TITLE>",
        "<H1>Bookmarks</H1>",
        "<DL><p>",
    ]
    for bookmark in bookmarks:
        attrs = f'HREF="{html.escape(bookmark.url, quote=True)}" ADD_DATE="{iso_to_unix(bookmark.created_at)}"'
        if bookmark.tags:
            attrs += f' TAGS="{html.escape(",".join(bookmark.tags), quote=True)}"'
        lines.append(f"<DT><A {attrs}>{html.escape(bookmark.title or '', quote=False)}</A>")
        if bookmark.description:
            lines.append(f"<DD>{html.escape(bookmark.description, quote=False)}")
    lines.append("</DL><p>")
    return "\n".join(lines) + "\n"


def _serialize_pinboard(bookmarks: list[ImportedBookmark]) -> str:
    entries: list[dict[str, Any]] = [
        {
            "href": bookmark.url,
            "description": bookmark.title or "",
            "extended": bookmark.description or "",
            "tags": " ".join(bookmark.tags),
            "time": bookmark.created_at,
        }
        for bookmark in bookmarks
    ]
    return json.dumps(entries, indent=2)


def _serialize_pocket(bookmarks: list[ImportedBookmark]) -> str:
    lines = [format_csv_row(["title", "url", "time_added", "tags", "status"])]
    for bookmark in bookmarks:
        lines.append(
            format_csv_row(
                [
                    bookmark.title,
                    bookmark.url,
                    str(iso_to_unix(bookmark.created_at)),
                    "|".join(bookmark.tags),
                    "unread",
                ]
            )
        )
    return "\n".join(lines) + "\n"


def _serialize_instapaper(bookmarks: list[ImportedBookmark]) -> str:
    lines = [format_csv_row(["URL", "Title", "Selection", "Folder", "Timestamp"])]
    for bookmark in bookmarks:
        lines.append(
            format_csv_row(
                [
                    bookmark.url,
                    bookmark.title,
                    bookmark.description,
                    bookmark.tags[0] if bookmark.tags else "Unread",
                    str(iso_to_unix(bookmark.created_at)),
                ]
            )
        )
    return "\n".join(lines) + "\n"


SERIALIZERS: dict[ImportFormat, Callable[[list[ImportedBookmark]], str]] = {
    ImportFormat.NETSCAPE: _serialize_netscape,
    ImportFormat.PINBOARD: _serialize_pinboard,
    ImportFormat.POCKET: _serialize_pocket,
    ImportFormat.INSTAPAPER: _serialize_instapaper,
}


def serialize_bookmarks(bookmarks: list[ImportedBookmark], export_format: ImportFormat) -> str:
    """Render ``bookmarks`` as ``export_format``'s canonical export file."""
    return SERIALIZERS[ImportFormat(export_format)](bookmarks)
