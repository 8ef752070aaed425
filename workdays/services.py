import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable

import numpy
from django.db import transaction
from django.db.models import Count, DecimalField, Prefetch, Sum, Value
from django.db.models.functions import Coalesce
from django.utils import timezone
from inequality import gini  # type: ignore

from .aggregation import ProgressAggregator
from .allocation import FULL_WORKDAY_HOURS, AllocationEntry, overtime_persons, seed_hours, suggest_allocation
from .conf import workday_setting
from .exceptions import (
    DuplicateActiveWorkday, InvalidBlocker, InvalidHours, InvalidReview, InvalidScheduleReference,
    InvalidTaskMembers, InvalidTransition, WorkdayNotActive, WorkdayNotFound,
)
from .models import (
    Blocker, BlockerType, CrewMember, Employee, Project, ScheduleNode, ScheduleTask, TaskMember,
    Workday, WorkdayTask,
)
from .task_kind import ScheduledTask, TaskKind

logger = logging.getLogger(__name__)

MAX_MEMBER_HOURS = Decimal("24")


@dataclass
class CrewDraft:
    person_id: int
    role: str = CrewMember.Role.WORKER


@dataclass
class MemberDraft:
    person_id: int
    hours: Decimal | None = None
    notes: str = ""


@dataclass
class BlockerDraft:
    blocker_type_id: int | None
    description: str
    impact: str = ""
    action: str = ""


def parse_hours(hours, allow_zero: bool = False) -> Decimal:
    """Validate a member hours value; zero is only acceptable as an unallocated default."""
    try:
        value = Decimal(str(hours))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidHours(f"'{hours}' is not a number of hours.", {"hours": str(hours)}) from exc
    if not value.is_finite():
        raise InvalidHours(f"'{hours}' is not a number of hours.", {"hours": str(hours)})
    lower_ok = value >= 0 if allow_zero else value > 0
    if not lower_ok or value > MAX_MEMBER_HOURS:
        raise InvalidHours(
            f"Hours must be {'between 0' if allow_zero else 'greater than 0'} and at most {MAX_MEMBER_HOURS}.",
            {"hours": str(value)},
        )
    return value


def lock_workday(workday_id: int) -> Workday:
    """Fetch a workday holding its row lock until the surrounding transaction ends."""
    try:
        return Workday.objects.select_for_update().get(pk=workday_id)
    except Workday.DoesNotExist as exc:
        raise WorkdayNotFound(f"Workday {workday_id} does not exist.", {"workday_id": workday_id}) from exc


def get_or_not_found(model, pk: int, label: str):
    try:
        return model.objects.get(pk=pk)
    except model.DoesNotExist as exc:
        raise WorkdayNotFound(f"{label} {pk} does not exist.", {f"{label.lower().replace(' ', '_')}_id": pk}) from exc


def validate_blocker_draft(draft: BlockerDraft, index: int | None = None) -> BlockerType:
    details = {"index": index, "blocker_type_id": draft.blocker_type_id}
    if not (draft.description or "").strip():
        raise InvalidBlocker("A blocker needs a description.", details)
    if draft.blocker_type_id is None:
        raise InvalidBlocker("A blocker needs a blocker type.", details)
    blocker_type = BlockerType.objects.filter(pk=draft.blocker_type_id, is_active=True).first()
    if blocker_type is None:
        raise InvalidBlocker(f"Blocker type {draft.blocker_type_id} does not exist or is inactive.", details)
    return blocker_type


class WorkdayStateMachine:
    """Legal status transitions of a workday.

    ``active`` is the only editable state. Approval and rejection end the
    lifecycle as far as this app is concerned.
    """

    TRANSITIONS = {
        Workday.Status.ACTIVE: {Workday.Status.CLOSED_PENDING_APPROVAL},
        Workday.Status.CLOSED_PENDING_APPROVAL: {Workday.Status.APPROVED, Workday.Status.REJECTED},
        Workday.Status.APPROVED: set(),
        Workday.Status.REJECTED: set(),
    }

    @staticmethod
    def ensure_active(workday: Workday):
        if not workday.is_active:
            raise WorkdayNotActive(
                f"Workday {workday.id} is {workday.status}; only active workdays can be edited.",
                {"workday_id": workday.id, "status": workday.status},
            )

    @classmethod
    def can_transition(cls, workday: Workday, target: str) -> bool:
        return target in cls.TRANSITIONS.get(workday.status, set())

    @classmethod
    def ensure_transition(cls, workday: Workday, target: str):
        if not cls.can_transition(workday, target):
            raise InvalidTransition(
                f"Workday {workday.id} cannot move from {workday.status} to {target}.",
                {"workday_id": workday.id, "status": workday.status, "target": target},
            )

    @classmethod
    def transition(cls, workday: Workday, target: str):
        """Set the new status in memory; the caller saves inside its transaction."""
        cls.ensure_transition(workday, target)
        logger.info("Workday %s: %s -> %s", workday.id, workday.status, target)
        workday.status = target


class WorkdayService:
    """Opening, reading, editing and deleting workdays."""

    @staticmethod
    def workday_queryset():
        return Workday.objects.select_related(
            "project", "supervisor", "schedule_node"
        ).prefetch_related(
            Prefetch("crew", queryset=CrewMember.objects.select_related("person").order_by("id")),
            Prefetch(
                "tasks",
                queryset=WorkdayTask.objects.select_related("schedule_task").prefetch_related(
                    Prefetch("members", queryset=TaskMember.objects.select_related("person").order_by("id"))
                ).order_by("id"),
            ),
            Prefetch("blockers", queryset=Blocker.objects.select_related("blocker_type").order_by("id")),
        )

    @classmethod
    def get_workday(cls, workday_id: int) -> Workday:
        try:
            return cls.workday_queryset().get(pk=workday_id)
        except Workday.DoesNotExist as exc:
            raise WorkdayNotFound(f"Workday {workday_id} does not exist.", {"workday_id": workday_id}) from exc

    @staticmethod
    def list_workdays(supervisor_id: int | None = None, project_id: int | None = None,
                      status: str | None = None, active: bool | None = None):
        """Workdays newest first, each annotated with task_count, member_count and total_hours.

        ``active=True`` keeps the open workdays, ``active=False`` the history.
        """
        workdays = Workday.objects.select_related("project", "supervisor")
        if supervisor_id is not None:
            workdays = workdays.filter(supervisor_id=supervisor_id)
        if project_id is not None:
            workdays = workdays.filter(project_id=project_id)
        if status is not None:
            workdays = workdays.filter(status=status)
        if active is True:
            workdays = workdays.filter(status=Workday.Status.ACTIVE)
        elif active is False:
            workdays = workdays.exclude(status=Workday.Status.ACTIVE)
        return workdays.annotate(
            task_count=Count("tasks", distinct=True),
            member_count=Count("tasks__members__person", distinct=True),
            total_hours=Coalesce(Sum("tasks__members__hours"), Value(0), output_field=DecimalField()),
        ).order_by("-work_date", "-id")

    @staticmethod
    def _resolve_crew(crew: Iterable[CrewDraft], acting_user_id: int) -> tuple[int, list[CrewDraft]]:
        """Deduplicate the crew and pick its supervisor (the acting user when none is named)."""
        by_person: dict[int, CrewDraft] = {}
        for draft in crew:
            by_person[draft.person_id] = draft
        supervisors = [d.person_id for d in by_person.values() if d.role == CrewMember.Role.SUPERVISOR]
        if len(supervisors) > 1:
            raise InvalidTaskMembers("A crew has a single supervisor.", {"supervisor_ids": supervisors})
        if supervisors:
            return supervisors[0], list(by_person.values())
        by_person[acting_user_id] = CrewDraft(acting_user_id, CrewMember.Role.SUPERVISOR)
        return acting_user_id, list(by_person.values())

    @staticmethod
    def _check_people_exist(person_ids: Iterable[int]):
        person_ids = set(person_ids)
        found = set(Employee.objects.filter(id__in=person_ids).values_list("id", flat=True))
        missing = sorted(person_ids - found)
        if missing:
            raise InvalidTaskMembers("Unknown people in the crew.", {"person_ids": missing})

    @staticmethod
    def _write_crew(workday: Workday, crew: list[CrewDraft]):
        CrewMember.objects.bulk_create([
            CrewMember(workday=workday, person_id=draft.person_id, role=draft.role)
            for draft in crew
        ])

    @classmethod
    def open_workday(cls, project_id: int, work_date: date, crew: Iterable[CrewDraft],
                     acting_user_id: int, schedule_node_id: int | None = None,
                     objectives: str = "", location: str = "",
                     allow_overlap: bool | None = None) -> Workday:
        project = get_or_not_found(Project, project_id, "Project")
        supervisor_id, crew = cls._resolve_crew(crew, acting_user_id)
        cls._check_people_exist(d.person_id for d in crew)

        if schedule_node_id is not None and not ScheduleNode.objects.filter(
            pk=schedule_node_id, project_id=project.id
        ).exists():
            raise InvalidScheduleReference(
                f"Schedule node {schedule_node_id} is not part of project {project.code}.",
                {"schedule_node_id": schedule_node_id, "project_id": project.id},
            )

        if allow_overlap is None:
            allow_overlap = workday_setting("ALLOW_OVERLAPPING_WORKDAYS")

        with transaction.atomic():
            if not allow_overlap:
                # serializes opens per supervisor
                Employee.objects.select_for_update().filter(pk=supervisor_id).first()
                existing = Workday.objects.filter(
                    project=project, supervisor_id=supervisor_id, work_date=work_date,
                    status=Workday.Status.ACTIVE,
                ).first()
                if existing is not None:
                    raise DuplicateActiveWorkday(
                        f"Supervisor already has active workday {existing.id} for this project on {work_date}.",
                        {"workday_id": existing.id},
                    )
            workday = Workday.objects.create(
                project=project,
                supervisor_id=supervisor_id,
                work_date=work_date,
                schedule_node_id=schedule_node_id,
                objectives=objectives.strip(),
                location=location.strip(),
            )
            cls._write_crew(workday, crew)

        logger.info("Opened workday %s for project %s on %s", workday.id, project.code, work_date)
        return cls.get_workday(workday.id)

    @classmethod
    def update_workday(cls, workday_id: int, objectives: str | None = None,
                       location: str | None = None, crew: Iterable[CrewDraft] | None = None,
                       acting_user_id: int | None = None) -> Workday:
        with transaction.atomic():
            workday = lock_workday(workday_id)
            WorkdayStateMachine.ensure_active(workday)
            if objectives is not None:
                workday.objectives = objectives.strip()
            if location is not None:
                workday.location = location.strip()
            if crew is not None:
                supervisor_id, crew = cls._resolve_crew(crew, acting_user_id or workday.supervisor_id)
                cls._check_people_exist(d.person_id for d in crew)
                workday.supervisor_id = supervisor_id
                workday.crew.all().delete()
                cls._write_crew(workday, crew)
            workday.save()
        return cls.get_workday(workday_id)

    @staticmethod
    def delete_workday(workday_id: int, acting_user_id: int | None = None):
        """Delete a workday and its rows; committed hours leave the schedule aggregates too."""
        with transaction.atomic():
            workday = lock_workday(workday_id)
            node_ids = ProgressAggregator.nodes_touched_by(workday) if workday.is_committed else set()
            workday.delete()
            ProgressAggregator.recompute_nodes(node_ids)
        logger.info("Deleted workday %s (acting user %s)", workday_id, acting_user_id)


class TaskRegistryService:
    """Tasks and member hours of an active workday."""

    @staticmethod
    def _resolve_schedule_task(workday: Workday, kind: TaskKind) -> ScheduleTask | None:
        if not isinstance(kind, ScheduledTask):
            return None
        schedule_task = ScheduleTask.objects.select_related("node").filter(pk=kind.schedule_task_id).first()
        if schedule_task is None or schedule_task.node.project_id != workday.project_id:
            raise InvalidScheduleReference(
                f"Schedule task {kind.schedule_task_id} is not part of this workday's project.",
                {"schedule_task_id": kind.schedule_task_id, "project_id": workday.project_id},
            )
        return schedule_task

    @staticmethod
    def _lock_task(task_id: int) -> tuple[WorkdayTask, Workday]:
        task = get_or_not_found(WorkdayTask, task_id, "Task")
        workday = lock_workday(task.workday_id)
        return task, workday

    @staticmethod
    def _lock_member(member_id: int) -> tuple[TaskMember, Workday]:
        try:
            member = TaskMember.objects.select_related("task").get(pk=member_id)
        except TaskMember.DoesNotExist as exc:
            raise WorkdayNotFound(f"Task member {member_id} does not exist.", {"member_id": member_id}) from exc
        workday = lock_workday(member.task.workday_id)
        return member, workday

    @staticmethod
    def _validate_members(members: list[MemberDraft]):
        if not members:
            raise InvalidTaskMembers("A task needs at least one member.", {"person_ids": []})
        person_ids = [m.person_id for m in members]
        duplicates = sorted({p for p in person_ids if person_ids.count(p) > 1})
        if duplicates:
            raise InvalidTaskMembers("A person can only be listed once per task.", {"person_ids": duplicates})
        found = set(Employee.objects.filter(id__in=person_ids).values_list("id", flat=True))
        missing = sorted(set(person_ids) - found)
        if missing:
            raise InvalidTaskMembers("Unknown people on the task.", {"person_ids": missing})

    @staticmethod
    def _reseed(workday: Workday, person_ids: Iterable[int]):
        """Spread the full day again over every still-seeded row of these people."""
        for person_id in set(person_ids):
            rows = TaskMember.objects.filter(task__workday=workday, person_id=person_id)
            task_count = rows.count()
            if task_count:
                rows.filter(seeded=True).update(hours=seed_hours(task_count))

    @staticmethod
    def _member_row(task: WorkdayTask, draft: MemberDraft) -> TaskMember:
        if draft.hours is None:
            return TaskMember(task=task, person_id=draft.person_id, seeded=True, notes=draft.notes.strip())
        return TaskMember(
            task=task,
            person_id=draft.person_id,
            hours=parse_hours(draft.hours, allow_zero=True),
            notes=draft.notes.strip(),
        )

    @classmethod
    def add_task(cls, workday_id: int, kind: TaskKind, members: list[MemberDraft],
                 description: str = "") -> WorkdayTask:
        members = list(members)
        with transaction.atomic():
            workday = lock_workday(workday_id)
            WorkdayStateMachine.ensure_active(workday)
            schedule_task = cls._resolve_schedule_task(workday, kind)
            cls._validate_members(members)

            task = WorkdayTask(workday=workday, schedule_task=schedule_task, description=description.strip())
            task.kind = kind
            rows = [cls._member_row(task, m) for m in members]
            task.save()
            TaskMember.objects.bulk_create(rows)
            cls._reseed(workday, (m.person_id for m in members))

        logger.info("Added task %s (%s) to workday %s", task.id, kind, workday_id)
        return task

    @classmethod
    def update_task(cls, task_id: int, kind: TaskKind | None = None,
                    description: str | None = None) -> WorkdayTask:
        with transaction.atomic():
            task, workday = cls._lock_task(task_id)
            WorkdayStateMachine.ensure_active(workday)
            if kind is not None:
                cls._resolve_schedule_task(workday, kind)
                task.kind = kind
            if description is not None:
                task.description = description.strip()
            task.save()
        return task

    @classmethod
    def remove_task(cls, task_id: int):
        with transaction.atomic():
            task, workday = cls._lock_task(task_id)
            WorkdayStateMachine.ensure_active(workday)
            person_ids = list(task.members.values_list("person_id", flat=True))
            task.delete()
            cls._reseed(workday, person_ids)
        logger.info("Removed task %s from workday %s", task_id, workday.id)

    @classmethod
    def add_member(cls, task_id: int, draft: MemberDraft) -> TaskMember:
        with transaction.atomic():
            task, workday = cls._lock_task(task_id)
            WorkdayStateMachine.ensure_active(workday)
            if task.members.filter(person_id=draft.person_id).exists():
                raise InvalidTaskMembers(
                    "A person can only be listed once per task.", {"person_ids": [draft.person_id]}
                )
            cls._validate_members([draft])
            member = cls._member_row(task, draft)
            member.save()
            cls._reseed(workday, [draft.person_id])
            member.refresh_from_db()
            return member

    @staticmethod
    def ensure_not_last_member(member: TaskMember):
        if member.task.members.count() <= 1:
            raise InvalidTaskMembers(
                "A task keeps at least one member; remove the task instead.",
                {"task_id": member.task_id},
            )

    @classmethod
    def remove_member(cls, member_id: int):
        with transaction.atomic():
            member, workday = cls._lock_member(member_id)
            WorkdayStateMachine.ensure_active(workday)
            cls.ensure_not_last_member(member)
            member.delete()
            cls._reseed(workday, [member.person_id])

    @classmethod
    def set_member_hours(cls, member_id: int, hours, notes: str | None = None) -> TaskMember:
        value = parse_hours(hours)
        with transaction.atomic():
            member, workday = cls._lock_member(member_id)
            WorkdayStateMachine.ensure_active(workday)
            member.hours = value
            member.seeded = False
            update_fields = ["hours", "seeded"]
            if notes is not None:
                member.notes = notes.strip()
                update_fields.append("notes")
            member.save(update_fields=update_fields)
        return member

    @staticmethod
    def allocation_entries(workday_id: int) -> list[AllocationEntry]:
        return [
            AllocationEntry(task_id, person_id, hours)
            for task_id, person_id, hours in TaskMember.objects.filter(
                task__workday_id=workday_id
            ).order_by("task_id", "id").values_list("task_id", "person_id", "hours")
        ]

    @classmethod
    def allocation_suggestions(cls, workday_id: int) -> list[dict]:
        """Suggested hours per member row, for pre-filling the closing form."""
        get_or_not_found(Workday, workday_id, "Workday")
        rows = list(TaskMember.objects.filter(task__workday_id=workday_id).order_by("task_id", "id"))
        suggestions = suggest_allocation(AllocationEntry(m.task_id, m.person_id, m.hours) for m in rows)
        return [
            {
                "member_id": m.id,
                "task_id": m.task_id,
                "person_id": m.person_id,
                "current_hours": m.hours,
                "suggested_hours": suggestions[(m.task_id, m.person_id)],
            }
            for m in rows
        ]


class BlockerService:
    """Impediments recorded on an active workday before it closes."""

    @staticmethod
    def add_blocker(workday_id: int, draft: BlockerDraft) -> Blocker:
        with transaction.atomic():
            workday = lock_workday(workday_id)
            WorkdayStateMachine.ensure_active(workday)
            blocker_type = validate_blocker_draft(draft)
            return Blocker.objects.create(
                workday=workday,
                blocker_type=blocker_type,
                description=draft.description.strip(),
                impact=(draft.impact or "").strip(),
                action=(draft.action or "").strip(),
            )

    @staticmethod
    def list_blockers(project_id: int | None = None, blocker_type_id: int | None = None,
                      supervisor_id: int | None = None, status: str | None = None,
                      date_from: date | None = None, date_to: date | None = None,
                      with_impact: bool = False, search: str | None = None):
        """Blockers across workdays, newest work date first."""
        blockers = Blocker.objects.select_related("blocker_type", "workday__project", "workday__supervisor")
        if project_id is not None:
            blockers = blockers.filter(workday__project_id=project_id)
        if blocker_type_id is not None:
            blockers = blockers.filter(blocker_type_id=blocker_type_id)
        if supervisor_id is not None:
            blockers = blockers.filter(workday__supervisor_id=supervisor_id)
        if status is not None:
            blockers = blockers.filter(workday__status=status)
        if date_from is not None:
            blockers = blockers.filter(workday__work_date__gte=date_from)
        if date_to is not None:
            blockers = blockers.filter(workday__work_date__lte=date_to)
        if with_impact:
            blockers = blockers.exclude(impact="")
        if search:
            blockers = blockers.filter(description__icontains=search.strip())
        return blockers.order_by("-workday__work_date", "-id")

    @staticmethod
    def remove_blocker(blocker_id: int):
        with transaction.atomic():
            blocker = get_or_not_found(Blocker, blocker_id, "Blocker")
            workday = lock_workday(blocker.workday_id)
            WorkdayStateMachine.ensure_active(workday)
            blocker.delete()


class ReviewService:
    """Approval step that follows a close."""

    @staticmethod
    def approve(workday_id: int, acting_user_id: int) -> Workday:
        with transaction.atomic():
            workday = lock_workday(workday_id)
            WorkdayStateMachine.transition(workday, Workday.Status.APPROVED)
            workday.reviewed_by_id = acting_user_id
            workday.reviewed_at = timezone.now()
            workday.save(update_fields=["status", "reviewed_by", "reviewed_at", "updated_at"])
        return WorkdayService.get_workday(workday_id)

    @staticmethod
    def reject(workday_id: int, acting_user_id: int, reason: str) -> Workday:
        reason = (reason or "").strip()
        min_length = workday_setting("MIN_REJECTION_REASON_LENGTH")
        if len(reason) < min_length:
            raise InvalidReview(
                f"A rejection needs a reason of at least {min_length} characters.",
                {"workday_id": workday_id, "min_length": min_length},
            )
        with transaction.atomic():
            workday = lock_workday(workday_id)
            WorkdayStateMachine.transition(workday, Workday.Status.REJECTED)
            workday.reviewed_by_id = acting_user_id
            workday.reviewed_at = timezone.now()
            workday.rejection_reason = reason
            workday.save(update_fields=["status", "reviewed_by", "reviewed_at", "rejection_reason", "updated_at"])
            # rejected hours are no longer part of the ledger
            ProgressAggregator.recompute_for_workday(workday)
        return WorkdayService.get_workday(workday_id)


class CorrectionService:
    """Administrative edits of committed workdays, each one a new commit cycle."""

    @staticmethod
    def _ensure_committed(workday: Workday):
        if not workday.is_committed:
            raise InvalidTransition(
                f"Workday {workday.id} is {workday.status}; corrections apply to closed workdays only.",
                {"workday_id": workday.id, "status": workday.status},
            )

    @classmethod
    def correct_member_hours(cls, member_id: int, hours, acting_user_id: int) -> TaskMember:
        value = parse_hours(hours)
        with transaction.atomic():
            member, workday = TaskRegistryService._lock_member(member_id)
            cls._ensure_committed(workday)
            previous = member.hours
            member.hours = value
            member.seeded = False
            member.save(update_fields=["hours", "seeded"])
            ProgressAggregator.recompute_for_workday(workday)
        logger.warning(
            "Corrected hours of member %s on workday %s from %s to %s (acting user %s)",
            member_id, workday.id, previous, value, acting_user_id,
        )
        return member

    @classmethod
    def remove_task(cls, task_id: int, acting_user_id: int):
        with transaction.atomic():
            task, workday = TaskRegistryService._lock_task(task_id)
            cls._ensure_committed(workday)
            node_ids = ProgressAggregator.nodes_touched_by(workday)
            task.delete()
            ProgressAggregator.recompute_nodes(node_ids)
        logger.warning("Removed task %s from closed workday %s (acting user %s)", task_id, workday.id, acting_user_id)

    @classmethod
    def remove_member(cls, member_id: int, acting_user_id: int):
        with transaction.atomic():
            member, workday = TaskRegistryService._lock_member(member_id)
            cls._ensure_committed(workday)
            TaskRegistryService.ensure_not_last_member(member)
            member.delete()
            ProgressAggregator.recompute_for_workday(workday)
        logger.warning(
            "Removed member %s (%sh) from closed workday %s (acting user %s)",
            member_id, member.hours, workday.id, acting_user_id,
        )


@dataclass
class WorkdaySummary:
    workday_id: int
    task_count: int
    member_count: int
    total_hours: Decimal
    max_person_hours: Decimal
    overtime: dict[int, Decimal] = field(default_factory=dict)
    hours_gini: float = 0.0


class WorkdaySummaryService:
    """Crew load figures for one workday."""

    @staticmethod
    def _calculate_gini_coefficient(values):
        """Gini coefficient of per-person hours; 0 means a perfectly even crew."""
        if not values or len(values) == 1 or sum(values) == 0:
            return 0.0
        return float(gini.Gini(numpy.asarray(values, dtype=float)).g)

    @classmethod
    def summarize(cls, workday_id: int) -> WorkdaySummary:
        get_or_not_found(Workday, workday_id, "Workday")
        entries = TaskRegistryService.allocation_entries(workday_id)

        per_person: defaultdict[int, Decimal] = defaultdict(Decimal)
        for entry in entries:
            per_person[entry.person_id] += entry.hours

        return WorkdaySummary(
            workday_id=workday_id,
            task_count=WorkdayTask.objects.filter(workday_id=workday_id).count(),
            member_count=len(per_person),
            total_hours=sum(per_person.values(), Decimal("0")),
            max_person_hours=max(per_person.values(), default=Decimal("0")),
            overtime=overtime_persons(entries, FULL_WORKDAY_HOURS),
            hours_gini=round(cls._calculate_gini_coefficient([float(h) for h in per_person.values()]), 3),
        )
