"""Case-insensitive tag reconciliation.

Tags are compared with ``str.lower`` (ordinal, not locale aware). Whenever a
tag already exists remotely its stored casing wins over whatever casing the
import or the bulk edit supplied, so two tags that differ only by case never
end up as separate canonical tags.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass


def tags_equal(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def tag_includes(tags: Iterable[str], value: str) -> bool:
    """Case-insensitive ``value in tags``."""
    lowered = value.lower()
    return any(tag.lower() == lowered for tag in tags)


def find_existing_tag(existing: Iterable[str], candidate: str) -> str | None:
    """Return the existing casing of ``candidate`` if one matches."""
    lowered = candidate.lower()
    for value in existing:
        if value.lower() == lowered:
            return value
    return None


def deduplicate_tags_case_insensitive(tags: Iterable[str]) -> list[str]:
    """Drop case-insensitive repeats, keeping the first occurrence's casing."""
    seen: set[str] = set()
    result = []
    for tag in tags:
        lowered = tag.lower()
        if lowered not in seen:
            seen.add(lowered)
            result.append(tag)
    return result


def resolve_tag_casing(tags: Iterable[str], known: Iterable[str]) -> list[str]:
    """Map ``tags`` onto known casings and deduplicate the result."""
    lookup = _casing_lookup(known)
    return deduplicate_tags_case_insensitive(lookup.get(tag.lower(), tag) for tag in tags)


def _casing_lookup(known: Iterable[str]) -> dict[str, str]:
    lookup: dict[str, str] = {}
    for value in known:
        lookup.setdefault(value.lower(), value)
    return lookup


@dataclass(frozen=True)
class TagResolution:
    """Outcome of reconciling imported tags with the user's existing tags.

    ``new_tags`` are the tags to create, one per case-folded value.
    ``bookmark_tags`` holds each input tag list rewritten in canonical
    casing, in the same order as the input.
    """

    new_tags: list[str]
    bookmark_tags: list[list[str]]


def resolve_tags(bookmark_tags: Sequence[Sequence[str]], known_tags: Iterable[str]) -> TagResolution:
    """Resolve every bookmark's tags against ``known_tags``.

    The first casing seen for a brand new tag becomes canonical for the whole
    import, so ``["Go"]`` and ``["go"]`` on two bookmarks both resolve to
    ``"Go"``.
    """
    canonical = _casing_lookup(known_tags)
    known_keys = set(canonical)
    new_tags: list[str] = []

    resolved_lists = []
    for tags in bookmark_tags:
        resolved = []
        for tag in tags:
            tag = tag.strip()
            if not tag:
                continue
            key = tag.lower()
            if key not in canonical:
                canonical[key] = tag
            if key not in known_keys:
                known_keys.add(key)
                new_tags.append(canonical[key])
            resolved.append(canonical[key])
        resolved_lists.append(deduplicate_tags_case_insensitive(resolved))

    return TagResolution(new_tags=new_tags, bookmark_tags=resolved_lists)
