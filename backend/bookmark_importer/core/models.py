"""Transient domain types passed between the import pipeline stages."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

BOOKMARK_COLLECTION = "community.lexicon.bookmarks.bookmark"
TAG_COLLECTION = "com.kipclip.tag"
ANNOTATION_COLLECTION = "com.kipclip.annotation"


class ImportFormat(str, enum.Enum):
    NETSCAPE = "netscape"
    PINBOARD = "pinboard"
    POCKET = "pocket"
    INSTAPAPER = "instapaper"


def utc_iso_now() -> str:
    """Current time as ISO-8601 with millisecond precision and a ``Z`` suffix."""
    return format_iso(datetime.now(timezone.utc))


def format_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class ImportedBookmark:
    """A bookmark parsed out of an export file, before it is written remotely."""

    url: str
    title: str | None = None
    description: str | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)
    created_at: str = field(default_factory=utc_iso_now)

    def with_tags(self, tags: list[str] | tuple[str, ...]) -> ImportedBookmark:
        return replace(self, tags=tuple(tags))

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "tags": list(self.tags),
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImportedBookmark:
        return cls(
            url=data["url"],
            title=data.get("title") or None,
            description=data.get("description") or None,
            tags=tuple(data.get("tags") or ()),
            created_at=data.get("createdAt") or utc_iso_now(),
        )
