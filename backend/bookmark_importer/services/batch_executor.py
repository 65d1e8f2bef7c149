"""Submit many remote write operations through a size-limited atomic endpoint.

``applyWrites`` accepts a small, fixed number of operations per call and is
all-or-nothing per call. The executor packs operations greedily into groups
under that cap, never splitting one logical item (a bookmark and its
annotation, say) across two groups, then submits the groups one after the
other. A rejected or failed group fails only its own items.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from bookmark_importer.core.exceptions import RemoteAPIError

logger = logging.getLogger(__name__)

DEFAULT_MAX_OPERATIONS = 10

Submit = Callable[[list[dict[str, Any]]], httpx.Response]


@dataclass(frozen=True)
class WriteItem:
    """One logical unit of work and the operations that must land together."""

    key: Hashable
    operations: tuple[dict[str, Any], ...]

    @classmethod
    def of(cls, key: Hashable, *operations: dict[str, Any]) -> WriteItem:
        return cls(key=key, operations=tuple(operations))


@dataclass
class GroupOutcome:
    index: int
    keys: list[Hashable]
    operation_count: int
    success: bool
    error: str | None = None


@dataclass
class BatchReport:
    succeeded: list[Hashable] = field(default_factory=list)
    failed: list[Hashable] = field(default_factory=list)
    groups: list[GroupOutcome] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)


def pack_groups(items: Sequence[WriteItem], max_operations: int) -> tuple[list[list[WriteItem]], list[WriteItem]]:
    """Greedily pack ``items`` into groups of at most ``max_operations`` operations.

    Returns the groups and the items that can never fit (more operations
    than the cap on their own). Items without operations belong to neither.
    """
    groups: list[list[WriteItem]] = []
    oversized: list[WriteItem] = []
    current: list[WriteItem] = []
    current_ops = 0

    for item in items:
        size = len(item.operations)
        if size == 0:
            continue
        if size > max_operations:
            oversized.append(item)
            continue
        if current_ops + size > max_operations:
            groups.append(current)
            current, current_ops = [], 0
        current.append(item)
        current_ops += size

    if current:
        groups.append(current)
    return groups, oversized


class BatchExecutor:
    """Run write items through ``submit`` in operation-capped groups."""

    def __init__(self, submit: Submit, max_operations: int = DEFAULT_MAX_OPERATIONS, label: str = "batch"):
        if max_operations < 1:
            raise ValueError("max_operations must be positive")
        self.submit = submit
        self.max_operations = max_operations
        self.label = label

    def run(self, items: Sequence[WriteItem]) -> BatchReport:
        report = BatchReport()
        groups, oversized = pack_groups(items, self.max_operations)
        # Nothing to write, so nothing can fail.
        report.succeeded.extend(item.key for item in items if not item.operations)

        for item in oversized:
            message = (
                f"{self.label}: item {item.key!r} needs {len(item.operations)} operations, "
                f"limit is {self.max_operations}"
            )
            logger.error(message)
            report.failed.append(item.key)
            report.errors.append(message)

        for index, group in enumerate(groups):
            outcome = self._submit_group(index, group)
            report.groups.append(outcome)
            if outcome.success:
                report.succeeded.extend(outcome.keys)
            else:
                report.failed.extend(outcome.keys)
                report.errors.append(outcome.error or "unknown error")

        if report.failed:
            logger.warning(
                f"{self.label}: {report.failed_count} of {len(items)} items failed "
                f"across {len(groups)} groups"
            )
        return report

    def _submit_group(self, index: int, group: list[WriteItem]) -> GroupOutcome:
        operations = [operation for item in group for operation in item.operations]
        keys = [item.key for item in group]
        outcome = GroupOutcome(index=index, keys=keys, operation_count=len(operations), success=False)

        try:
            response = self.submit(operations)
        except httpx.HTTPError as exc:
            outcome.error = f"Group {index} error: {exc}"
            logger.error(f"{self.label}: group {index} transport error: {exc}")
            return outcome
        except RemoteAPIError as exc:
            outcome.error = f"Group {index} error: {exc}"
            logger.error(f"{self.label}: group {index} rejected: {exc}")
            return outcome

        if response.is_success:
            outcome.success = True
        else:
            outcome.error = f"Group {index} failed: HTTP {response.status_code}: {response.text[:200]}"
            logger.error(f"{self.label}: {outcome.error}")
        return outcome
