"""Dispatch - decide which idle targets get a build slot now.

A pure function of the worker records and the concurrency limit:

    free = concurrency - count(active)
    pick, in target order, the first ``free`` records that are ready,
    not active and not finished

Already-active records are never re-selected, so a target cannot be
assigned twice while its build is running.  Given the same records in the
same order the selection is always the same.
"""

from __future__ import annotations

from collections.abc import Iterable

from parbuild.models import WorkerRecord


def active_count(records: Iterable[WorkerRecord]) -> int:
    """Number of records with a build in flight."""
    return sum(1 for record in records if record.active)


def free_slots(records: Iterable[WorkerRecord], concurrency: int) -> int:
    """Slots left under the concurrency limit (never negative)."""
    return max(0, concurrency - active_count(records))


def select_targets(records: Iterable[WorkerRecord], concurrency: int) -> list[str]:
    """Targets to activate next, in priority (target) order.

    Args:
        records: Worker records in target order.
        concurrency: Maximum simultaneously active records.

    Returns:
        Up to ``free_slots`` targets; empty when nothing can be dispatched.
    """
    records = list(records)
    slots = free_slots(records, concurrency)
    if slots <= 0:
        return []
    return [record.target for record in records if record.eligible][:slots]


__all__ = ["active_count", "free_slots", "select_targets"]
