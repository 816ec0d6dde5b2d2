"""
Grouping and retry/drop accounting for batching cycles.

Everything here is pure: no I/O, no notifications. The engine applies the
outcome to its buffer and emits the drop notifications.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .types import FailureScope, GroupResult, QueueItem


@dataclass(frozen=True)
class RetryOutcome:
    """Result of applying the retry policy to a failed set of items.

    Attributes:
        requeue: Copies with retry_count + 1, to append to the buffer in order
        dropped: Items whose budget is exhausted, to report and discard
    """

    requeue: list[QueueItem] = field(default_factory=list)
    dropped: list[QueueItem] = field(default_factory=list)


def group_by_destination(items: Iterable[QueueItem]) -> dict[str, list[QueueItem]]:
    """Partition items by destination, keeping within-group order.

    Groups come out in order of first appearance.
    """
    groups: dict[str, list[QueueItem]] = {}
    for item in items:
        groups.setdefault(item.destination, []).append(item)
    return groups


def apply_retry_policy(items: Iterable[QueueItem], max_retries: int) -> RetryOutcome:
    """Split failed items into re-submissions and drops.

    An item is re-submitted while ``retry_count < max_retries``; otherwise
    its next retry would exceed the bound and it is dropped.
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0")

    outcome = RetryOutcome()
    for item in items:
        if item.retry_count < max_retries:
            outcome.requeue.append(item.retried())
        else:
            outcome.dropped.append(item)
    return outcome


def items_to_retry(
    batch: Sequence[QueueItem],
    results: Sequence[GroupResult],
    scope: FailureScope = "slice",
) -> list[QueueItem]:
    """Pick the items a failed cycle must account for.

    ``slice`` recycles the whole batch as soon as one group failed, including
    items of groups that were delivered. ``group`` recycles only the items of
    the failed groups.
    """
    if all(r.ok for r in results):
        return []
    if scope == "slice":
        return list(batch)
    if scope == "group":
        return [item for r in results if not r.ok for item in r.items]
    raise ValueError(f"unknown failure scope: {scope!r}")
