import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from django.db import DatabaseError, transaction
from django.db.models import Q, Sum
from django.utils import timezone

from .conf import workday_setting
from .exceptions import AggregationConflict
from .models import COMMITTED_STATUSES, ScheduleNode, TaskMember, Workday

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def weighted_completion(children: Iterable[tuple[Decimal, Decimal]]) -> Decimal:
    """Completion of a node from its (planned_hours, completion_pct) children.

    Children are weighted by planned hours. When no child has planned hours
    the plain mean is used; a node without children is at 0.
    """
    children = [(Decimal(planned or 0), Decimal(pct or 0)) for planned, pct in children]
    if not children:
        return Decimal("0.00")
    total_planned = sum(planned for planned, _ in children)
    if total_planned > 0:
        value = sum(planned * pct for planned, pct in children) / total_planned
    else:
        value = sum(pct for _, pct in children) / len(children)
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def committed_members():
    return TaskMember.objects.filter(task__workday__status__in=COMMITTED_STATUSES)


class ProgressAggregator:
    """Derives ScheduleNode aggregates from the committed hours ledger.

    Values are always recomputed from source rows, never incremented, so a
    recompute is idempotent and two writers touching the same node only need
    to be serialized, not merged.
    """

    @staticmethod
    def nodes_touched_by(workday: Workday) -> set[int]:
        node_ids = set(
            workday.tasks.filter(schedule_task__isnull=False)
            .values_list("schedule_task__node_id", flat=True)
        )
        if workday.schedule_node_id is not None:
            node_ids.add(workday.schedule_node_id)
        return node_ids

    @staticmethod
    def compute_actual_hours(node_id: int) -> Decimal:
        """Committed hours of scheduled tasks under the node plus ad-hoc tasks of workdays attached to it."""
        total = committed_members().filter(
            Q(task__schedule_task__node_id=node_id)
            | Q(task__schedule_task__isnull=True, task__workday__schedule_node_id=node_id)
        ).aggregate(total=Sum("hours"))["total"]
        return Decimal(total or 0).quantize(CENT)

    @staticmethod
    def compute_completion(node: ScheduleNode) -> Decimal:
        return weighted_completion(node.tasks.values_list("planned_hours", "completion_pct"))

    @staticmethod
    def lock_nodes(node_ids: Iterable[int]) -> list[ScheduleNode]:
        """Lock node rows in id order so concurrent closes queue up instead of deadlocking."""
        try:
            return list(
                ScheduleNode.objects.select_for_update(nowait=True)
                .filter(id__in=sorted(set(node_ids)))
                .order_by("id")
            )
        except DatabaseError as exc:
            logger.warning("Schedule nodes %s are locked by another transaction", sorted(set(node_ids)))
            raise AggregationConflict(
                "Schedule nodes are being updated by another workday; retry the operation.",
                {"node_ids": sorted(set(node_ids))},
            ) from exc

    @classmethod
    def recompute_nodes(cls, node_ids: Iterable[int]) -> list[ScheduleNode]:
        """Recompute and persist aggregates of the given nodes. Needs an open transaction."""
        node_ids = set(node_ids)
        if not node_ids:
            return []
        if not transaction.get_connection().in_atomic_block:
            raise RuntimeError("recompute_nodes must run inside transaction.atomic()")

        nodes = cls.lock_nodes(node_ids)
        now = timezone.now()
        for node in nodes:
            node.actual_hours = cls.compute_actual_hours(node.id)
            node.completion_pct = cls.compute_completion(node)
            node.recomputed_at = now
            node.save(update_fields=["actual_hours", "completion_pct", "recomputed_at"])
            logger.info(
                "Recomputed schedule node %s: actual_hours=%s completion_pct=%s",
                node.id, node.actual_hours, node.completion_pct,
            )
        return nodes

    @classmethod
    def recompute_for_workday(cls, workday: Workday) -> list[ScheduleNode]:
        return cls.recompute_nodes(cls.nodes_touched_by(workday))


@dataclass
class AuditFinding:
    kind: str
    object_id: int
    message: str
    expected: str | None = None
    actual: str | None = None


class LedgerAuditService:
    """Out-of-band consistency checks between the ledger and the schedule aggregates.

    Plain reads only: no locks are taken and nothing is corrected. Findings
    are advisory, a fix goes through the normal recompute path.
    """

    @staticmethod
    def check_node_aggregates(nodes) -> list[AuditFinding]:
        findings = []
        for node in nodes:
            expected_hours = ProgressAggregator.compute_actual_hours(node.id)
            if Decimal(node.actual_hours).quantize(CENT) != expected_hours:
                findings.append(AuditFinding(
                    kind="node_hours_drift",
                    object_id=node.id,
                    message=f"Schedule node '{node.name}' stores {node.actual_hours}h, ledger says {expected_hours}h",
                    expected=str(expected_hours),
                    actual=str(node.actual_hours),
                ))
            expected_pct = ProgressAggregator.compute_completion(node)
            if Decimal(node.completion_pct).quantize(CENT) != expected_pct:
                findings.append(AuditFinding(
                    kind="node_completion_drift",
                    object_id=node.id,
                    message=f"Schedule node '{node.name}' stores {node.completion_pct}%, children say {expected_pct}%",
                    expected=str(expected_pct),
                    actual=str(node.completion_pct),
                ))
        return findings

    @staticmethod
    def check_committed_hours(workdays) -> list[AuditFinding]:
        findings = []
        zero_members = (
            TaskMember.objects.filter(task__workday__in=workdays, hours__lte=0)
            .values_list("task__workday_id", "id")
        )
        for workday_id, member_id in zero_members:
            findings.append(AuditFinding(
                kind="zero_hours_in_committed_workday",
                object_id=workday_id,
                message=f"Task member {member_id} of closed workday {workday_id} has no hours",
            ))
        return findings

    @staticmethod
    def check_stale_active(workdays, today: date) -> list[AuditFinding]:
        cutoff = today - timedelta(days=workday_setting("STALE_ACTIVE_DAYS"))
        return [
            AuditFinding(
                kind="stale_active_workday",
                object_id=workday.id,
                message=f"Workday {workday.id} of {workday.work_date} is still active",
            )
            for workday in workdays.filter(work_date__lt=cutoff).order_by("work_date")
        ]

    @classmethod
    def audit(cls, project_id: int | None = None, today: date | None = None) -> list[AuditFinding]:
        today = today or timezone.localdate()
        nodes = ScheduleNode.objects.order_by("id")
        workdays = Workday.objects.all()
        if project_id is not None:
            nodes = nodes.filter(project_id=project_id)
            workdays = workdays.filter(project_id=project_id)

        findings = cls.check_node_aggregates(nodes)
        findings += cls.check_committed_hours(workdays.filter(status__in=COMMITTED_STATUSES))
        findings += cls.check_stale_active(workdays.filter(status=Workday.Status.ACTIVE), today)

        for finding in findings:
            logger.warning("Ledger audit: %s", finding.message)
        return findings
