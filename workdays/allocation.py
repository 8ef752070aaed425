"""Default hour distribution for workday crews.

Nothing in here touches the database: the services feed it plain tuples and
decide what to do with the suggestions. A suggestion is only ever a starting
value; the supervisor can overwrite every one of them.
"""
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, NamedTuple

FULL_WORKDAY_HOURS = Decimal("9.5")
HOURS_STEP = Decimal("0.5")


class AllocationEntry(NamedTuple):
    task_id: int
    person_id: int
    hours: Decimal = Decimal("0")


def round_to_step(value: Decimal, step: Decimal = HOURS_STEP) -> Decimal:
    """Round ``value`` to the nearest multiple of ``step``, halves going up."""
    steps = (value / step).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return (steps * step).quantize(Decimal("0.1"))


def seed_hours(task_count: int) -> Decimal:
    """Hours suggested per task for a person working on ``task_count`` tasks today."""
    if task_count < 1:
        raise ValueError("task_count must be at least 1")
    return round_to_step(FULL_WORKDAY_HOURS / Decimal(task_count))


def suggest_allocation(entries: Iterable[AllocationEntry]) -> dict[tuple[int, int], Decimal]:
    """Map every (task_id, person_id) pair to its suggested hours.

    A person appearing on N distinct tasks gets ``seed_hours(N)`` on each of
    them, except where the entry already carries non-zero hours, which are
    kept as they are.
    """
    entries = list(entries)
    tasks_per_person: defaultdict[int, set[int]] = defaultdict(set)
    for entry in entries:
        tasks_per_person[entry.person_id].add(entry.task_id)

    suggestions = {}
    for entry in entries:
        if entry.hours and entry.hours > 0:
            suggestions[(entry.task_id, entry.person_id)] = Decimal(entry.hours)
        else:
            suggestions[(entry.task_id, entry.person_id)] = seed_hours(len(tasks_per_person[entry.person_id]))
    return suggestions


def overtime_persons(entries: Iterable[AllocationEntry],
                     limit: Decimal = FULL_WORKDAY_HOURS) -> dict[int, Decimal]:
    """People whose hours across all tasks of the day add up to more than ``limit``."""
    totals: defaultdict[int, Decimal] = defaultdict(Decimal)
    for entry in entries:
        totals[entry.person_id] += Decimal(entry.hours or 0)
    return {person_id: total for person_id, total in totals.items() if total > limit}
