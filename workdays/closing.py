"""Closing a workday.

A close validates three things before touching the database: the hours of
every task member, the blockers being reported, and the closure notes with
one completion percentage per schedule task worked on. Only when all three
are clean does a single transaction flip the status, store blockers and
notes, write the percentages and recompute the affected schedule nodes.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from django.db import DatabaseError, transaction
from django.utils import timezone

from .aggregation import ProgressAggregator
from .allocation import FULL_WORKDAY_HOURS, AllocationEntry, overtime_persons
from .exceptions import (
    AggregationConflict, IncompleteHoursAllocation, InvalidProgressUpdate, MissingClosureSummary,
    PersistenceFailure, WorkdayError,
)
from .models import Blocker, ScheduleNode, ScheduleTask, TaskMember, Workday, WorkdayTask
from .services import BlockerDraft, WorkdayService, WorkdayStateMachine, lock_workday, validate_blocker_draft

logger = logging.getLogger(__name__)


@dataclass
class ProgressUpdate:
    schedule_task_id: int
    completion_pct: Decimal


@dataclass
class ClosingRequest:
    day_summary: str
    next_day_plan: str = ""
    blockers: list[BlockerDraft] = field(default_factory=list)
    progress_updates: list[ProgressUpdate] = field(default_factory=list)
    acting_user_id: int | None = None


@dataclass
class ClosingResult:
    workday: Workday
    nodes: list[ScheduleNode]
    warnings: list[dict] = field(default_factory=list)


class ClosingService:
    """Moves an active workday to closed_pending_approval, or reports why it cannot."""

    @staticmethod
    def validate_hours(tasks: list[WorkdayTask], members: list[TaskMember]) -> list[WorkdayError]:
        if not tasks:
            return [IncompleteHoursAllocation(
                "A workday needs at least one task before it can close.",
                {"members": [], "empty_task_ids": []},
            )]
        tasks_with_members = {m.task_id for m in members}
        empty_task_ids = [t.id for t in tasks if t.id not in tasks_with_members]
        zero_members = [
            {"member_id": m.id, "task_id": m.task_id, "person_id": m.person_id}
            for m in members if not m.hours or m.hours <= 0
        ]
        if not zero_members and not empty_task_ids:
            return []
        return [IncompleteHoursAllocation(
            "Every task member needs hours greater than 0 before closing.",
            {"members": zero_members, "empty_task_ids": empty_task_ids},
        )]

    @staticmethod
    def overtime_warnings(members: list[TaskMember]) -> list[dict]:
        names = {m.person_id: m.person.name for m in members}
        overtime = overtime_persons(AllocationEntry(m.task_id, m.person_id, m.hours) for m in members)
        return [
            {
                "person_id": person_id,
                "person_name": names[person_id],
                "total_hours": total,
                "message": f"{names[person_id]} has {total}h logged, more than a {FULL_WORKDAY_HOURS}h day",
            }
            for person_id, total in sorted(overtime.items())
        ]

    @staticmethod
    def validate_blockers(drafts: list[BlockerDraft]) -> list[WorkdayError]:
        errors = []
        for index, draft in enumerate(drafts):
            try:
                validate_blocker_draft(draft, index)
            except WorkdayError as exc:
                errors.append(exc)
        return errors

    @staticmethod
    def validate_closure(request: ClosingRequest, tasks: list[WorkdayTask]) -> list[WorkdayError]:
        errors: list[WorkdayError] = []
        if not (request.day_summary or "").strip():
            errors.append(MissingClosureSummary(
                "Closing needs a summary of the day's progress.", {"field": "day_summary"}
            ))

        linked_ids = {t.schedule_task_id for t in tasks if t.schedule_task_id is not None}
        seen: set[int] = set()
        for update in request.progress_updates:
            details = {"schedule_task_id": update.schedule_task_id}
            if update.schedule_task_id in seen:
                errors.append(InvalidProgressUpdate("Schedule task listed more than once.", details))
                continue
            seen.add(update.schedule_task_id)
            if update.schedule_task_id not in linked_ids:
                errors.append(InvalidProgressUpdate(
                    "Progress can only be reported for schedule tasks worked on in this workday.", details
                ))
                continue
            try:
                pct = Decimal(str(update.completion_pct))
            except (InvalidOperation, ValueError):
                pct = None
            if pct is None or not pct.is_finite() or pct < 0 or pct > 100:
                errors.append(InvalidProgressUpdate(
                    "Completion percentage must be between 0 and 100.",
                    {**details, "completion_pct": str(update.completion_pct)},
                ))

        missing = sorted(linked_ids - seen)
        if missing:
            errors.append(MissingClosureSummary(
                "Every schedule task worked on needs a completion percentage.",
                {"field": "progress_updates", "missing_schedule_task_ids": missing},
            ))
        return errors

    @classmethod
    def _write_blockers(cls, workday: Workday, drafts: list[BlockerDraft]):
        Blocker.objects.bulk_create([
            Blocker(
                workday=workday,
                blocker_type_id=draft.blocker_type_id,
                description=draft.description.strip(),
                impact=(draft.impact or "").strip(),
                action=(draft.action or "").strip(),
            )
            for draft in drafts
        ])

    @classmethod
    def _write_progress_updates(cls, updates: list[ProgressUpdate]):
        for update in updates:
            ScheduleTask.objects.filter(pk=update.schedule_task_id).update(
                completion_pct=Decimal(str(update.completion_pct)).quantize(Decimal("0.01"))
            )

    @classmethod
    def _commit(cls, workday: Workday, request: ClosingRequest) -> list[ScheduleNode]:
        WorkdayStateMachine.transition(workday, Workday.Status.CLOSED_PENDING_APPROVAL)
        workday.closed_at = timezone.now()
        workday.closed_by_id = request.acting_user_id
        workday.day_summary = request.day_summary.strip()
        workday.next_day_plan = (request.next_day_plan or "").strip()
        workday.save(update_fields=[
            "status", "closed_at", "closed_by", "day_summary", "next_day_plan", "updated_at",
        ])
        cls._write_blockers(workday, request.blockers)
        cls._write_progress_updates(request.progress_updates)
        return ProgressAggregator.recompute_for_workday(workday)

    @classmethod
    def _close_once(cls, workday_id: int, request: ClosingRequest) -> ClosingResult:
        try:
            with transaction.atomic():
                workday = lock_workday(workday_id)
                WorkdayStateMachine.ensure_transition(workday, Workday.Status.CLOSED_PENDING_APPROVAL)

                tasks = list(workday.tasks.order_by("id"))
                members = list(
                    TaskMember.objects.filter(task__workday=workday)
                    .select_related("person").order_by("task_id", "id")
                )
                errors = (
                    cls.validate_hours(tasks, members)
                    + cls.validate_blockers(request.blockers)
                    + cls.validate_closure(request, tasks)
                )
                if errors:
                    first = errors[0]
                    first.errors = errors
                    raise first

                warnings = cls.overtime_warnings(members)
                nodes = cls._commit(workday, request)
        except DatabaseError as exc:
            logger.exception("Closing workday %s failed in storage, rolled back", workday_id)
            raise PersistenceFailure(
                "The workday could not be closed because of a storage error; nothing was saved.",
                {"workday_id": workday_id},
            ) from exc

        logger.info(
            "Closed workday %s: %d tasks, %d blockers, %d schedule nodes recomputed",
            workday.id, len(tasks), len(request.blockers), len(nodes),
        )
        return ClosingResult(workday=WorkdayService.get_workday(workday.id), nodes=nodes, warnings=warnings)

    @classmethod
    def close_workday(cls, workday_id: int, request: ClosingRequest) -> ClosingResult:
        """Validate and commit a close; raise a WorkdayError and write nothing otherwise.

        Lock contention on a schedule node is retried once, every other
        failure goes straight back to the caller.
        """
        try:
            return cls._close_once(workday_id, request)
        except AggregationConflict:
            logger.warning("Closing workday %s hit a schedule node lock, retrying once", workday_id)
        return cls._close_once(workday_id, request)
