from dataclasses import dataclass
from typing import Union

from .exceptions import InvalidTaskReference


@dataclass(frozen=True)
class ScheduledTask:
    """Work booked against a ScheduleTask of the project schedule."""
    schedule_task_id: int


@dataclass(frozen=True)
class AdHocTask:
    """Work that has no node in the project schedule."""
    name: str


TaskKind = Union[ScheduledTask, AdHocTask]


def task_kind_from_refs(schedule_task_id: int | None, ad_hoc_name: str | None) -> TaskKind:
    """Build a TaskKind from the two raw request fields; exactly one must be set."""
    name = (ad_hoc_name or "").strip()
    if schedule_task_id is not None and name:
        raise InvalidTaskReference(
            "A task references either a schedule task or an ad-hoc name, not both.",
            {"schedule_task_id": schedule_task_id, "ad_hoc_name": name},
        )
    if schedule_task_id is not None:
        return ScheduledTask(schedule_task_id)
    if name:
        return AdHocTask(name)
    raise InvalidTaskReference(
        "A task needs a schedule task reference or an ad-hoc name.",
        {"schedule_task_id": None, "ad_hoc_name": ad_hoc_name},
    )
