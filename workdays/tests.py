import warnings
from datetime import date, timedelta
from decimal import Decimal
from io import StringIO
from pathlib import Path
from unittest.mock import patch

from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import DatabaseError, transaction
from django.test import SimpleTestCase, TestCase, override_settings
from django.test.client import Client
from django.utils import timezone

from .aggregation import LedgerAuditService, ProgressAggregator, weighted_completion
from .allocation import AllocationEntry, overtime_persons, seed_hours, suggest_allocation
from .closing import ClosingRequest, ClosingService, ProgressUpdate
from .exceptions import (
    AggregationConflict, DuplicateActiveWorkday, IncompleteHoursAllocation, InvalidBlocker, InvalidHours,
    InvalidProgressUpdate, InvalidReview, InvalidScheduleReference, InvalidTaskMembers, InvalidTaskReference,
    InvalidTransition, MissingClosureSummary, PersistenceFailure, WorkdayNotActive, WorkdayNotFound,
)
from .models import (
    Blocker, BlockerType, CrewMember, Employee, Project, ScheduleNode, ScheduleTask, TaskMember, Workday,
    WorkdayTask,
)
from .services import (
    BlockerDraft, BlockerService, CorrectionService, CrewDraft, MemberDraft, ReviewService,
    TaskRegistryService, WorkdayService, WorkdaySummaryService,
)
from .task_kind import AdHocTask, ScheduledTask, task_kind_from_refs


class AllocationHeuristicTest(SimpleTestCase):
    """Default hour seeding, no database involved."""

    def test_seed_hours_splits_full_day(self):
        self.assertEqual(seed_hours(1), Decimal("9.5"))
        self.assertEqual(seed_hours(2), Decimal("5.0"))  # 4.75 rounds half up
        self.assertEqual(seed_hours(3), Decimal("3.0"))
        self.assertEqual(seed_hours(4), Decimal("2.5"))

    def test_seed_hours_needs_at_least_one_task(self):
        with self.assertRaises(ValueError):
            seed_hours(0)

    def test_suggestion_keeps_existing_hours(self):
        entries = [
            AllocationEntry(task_id=1, person_id=10),
            AllocationEntry(task_id=2, person_id=10),
            AllocationEntry(task_id=3, person_id=10),
            AllocationEntry(task_id=1, person_id=20, hours=Decimal("4")),
            AllocationEntry(task_id=2, person_id=20),
        ]
        suggestions = suggest_allocation(entries)

        self.assertEqual(suggestions[(1, 10)], Decimal("3.0"))
        self.assertEqual(suggestions[(2, 10)], Decimal("3.0"))
        self.assertEqual(suggestions[(3, 10)], Decimal("3.0"))
        self.assertEqual(suggestions[(1, 20)], Decimal("4"))
        self.assertEqual(suggestions[(2, 20)], Decimal("5.0"))

    def test_overtime_persons(self):
        entries = [
            AllocationEntry(1, 10, Decimal("6")),
            AllocationEntry(2, 10, Decimal("4")),
            AllocationEntry(1, 20, Decimal("9.5")),
        ]
        self.assertEqual(overtime_persons(entries), {10: Decimal("10")})


class TaskKindTest(SimpleTestCase):

    def test_exactly_one_reference(self):
        self.assertEqual(task_kind_from_refs(7, None), ScheduledTask(7))
        self.assertEqual(task_kind_from_refs(None, "  cleanup "), AdHocTask("cleanup"))

    def test_both_or_neither_reference_is_rejected(self):
        with self.assertRaises(InvalidTaskReference):
            task_kind_from_refs(7, "cleanup")
        with self.assertRaises(InvalidTaskReference):
            task_kind_from_refs(None, None)
        with self.assertRaises(InvalidTaskReference):
            task_kind_from_refs(None, "   ")


class WeightedCompletionTest(SimpleTestCase):

    def test_weighted_by_planned_hours(self):
        children = [(Decimal("40"), Decimal("60")), (Decimal("10"), Decimal("20"))]
        self.assertEqual(weighted_completion(children), Decimal("52.00"))

    def test_plain_mean_without_planned_hours(self):
        children = [(Decimal("0"), Decimal("50")), (Decimal("0"), Decimal("25"))]
        self.assertEqual(weighted_completion(children), Decimal("37.50"))

    def test_no_children(self):
        self.assertEqual(weighted_completion([]), Decimal("0.00"))


class WorkdayTestBase(TestCase):
    """Base test class with a project schedule, a crew and helper methods."""

    def setUp(self):
        """Set up common test data"""
        self.client = Client()
        self.work_date = date(2025, 3, 10)

        self.project = Project.objects.create(code="P-001", name="Warehouse")
        self.other_project = Project.objects.create(code="P-002", name="Bridge")

        # Schedule: one EDT node with two tasks, a second node for cross-node cases
        self.node = ScheduleNode.objects.create(project=self.project, name="Civil works", planned_hours=100)
        self.foundation = ScheduleTask.objects.create(node=self.node, name="Foundation", planned_hours=40)
        self.walls = ScheduleTask.objects.create(node=self.node, name="Walls", planned_hours=60)
        self.electrical = ScheduleNode.objects.create(project=self.project, name="Electrical", planned_hours=20)
        self.wiring = ScheduleTask.objects.create(node=self.electrical, name="Wiring", planned_hours=20)
        other_node = ScheduleNode.objects.create(project=self.other_project, name="Deck")
        self.foreign_task = ScheduleTask.objects.create(node=other_node, name="Piles", planned_hours=10)

        # People
        self.supervisor = Employee.objects.create(name="Diego")
        self.ana = Employee.objects.create(name="Ana")
        self.bruno = Employee.objects.create(name="Bruno")
        self.carla = Employee.objects.create(name="Carla")

        self.weather = BlockerType.objects.create(name="Weather")
        self.retired_type = BlockerType.objects.create(name="Legacy", is_active=False)

    def open_workday(self, schedule_node=None, work_date=None, **kwargs):
        """Helper to open a workday for the default crew."""
        crew = [
            CrewDraft(self.supervisor.id, CrewMember.Role.SUPERVISOR),
            CrewDraft(self.ana.id),
            CrewDraft(self.bruno.id),
            CrewDraft(self.carla.id),
        ]
        return WorkdayService.open_workday(
            project_id=self.project.id,
            work_date=work_date or self.work_date,
            crew=crew,
            acting_user_id=self.supervisor.id,
            schedule_node_id=schedule_node.id if schedule_node else None,
            objectives="Pour foundation",
            **kwargs,
        )

    def build_standard_day(self, schedule_node=None):
        """Foundation task with Ana 4.0h and Bruno 4.5h, ad-hoc cleanup with Carla 1.0h."""
        workday = self.open_workday(schedule_node=schedule_node)
        scheduled = TaskRegistryService.add_task(
            workday.id,
            ScheduledTask(self.foundation.id),
            [MemberDraft(self.ana.id, Decimal("4.0")), MemberDraft(self.bruno.id, Decimal("4.5"))],
        )
        ad_hoc = TaskRegistryService.add_task(
            workday.id, AdHocTask("cleanup"), [MemberDraft(self.carla.id, Decimal("1.0"))]
        )
        return workday, scheduled, ad_hoc

    def closing_request(self, pct=Decimal("60"), **kwargs):
        defaults = {
            "day_summary": "foundation poured",
            "progress_updates": [ProgressUpdate(self.foundation.id, pct)],
            "acting_user_id": self.supervisor.id,
        }
        defaults.update(kwargs)
        return ClosingRequest(**defaults)

    def close(self, workday, **kwargs):
        return ClosingService.close_workday(workday.id, self.closing_request(**kwargs))

    def member(self, task, person):
        return TaskMember.objects.get(task=task, person=person)


class OpenWorkdayTest(WorkdayTestBase):

    def test_open_creates_active_workday_with_crew(self):
        workday = self.open_workday(schedule_node=self.node)

        self.assertEqual(workday.status, Workday.Status.ACTIVE)
        self.assertEqual(workday.supervisor_id, self.supervisor.id)
        self.assertEqual(workday.crew.count(), 4)
        self.assertEqual(workday.schedule_node_id, self.node.id)

    def test_acting_user_becomes_supervisor_when_none_named(self):
        workday = WorkdayService.open_workday(
            project_id=self.project.id,
            work_date=self.work_date,
            crew=[CrewDraft(self.ana.id)],
            acting_user_id=self.bruno.id,
        )
        self.assertEqual(workday.supervisor_id, self.bruno.id)
        self.assertEqual(
            workday.crew.get(person=self.bruno).role, CrewMember.Role.SUPERVISOR
        )

    def test_duplicate_active_workday(self):
        self.open_workday()
        with self.assertRaises(DuplicateActiveWorkday):
            self.open_workday()

    def test_overlap_allowed_by_caller_or_setting(self):
        self.open_workday()
        self.open_workday(allow_overlap=True)
        with override_settings(WORKDAYS={"ALLOW_OVERLAPPING_WORKDAYS": True}):
            self.open_workday()
        self.assertEqual(Workday.objects.count(), 3)

    def test_schedule_node_from_other_project(self):
        other_node = ScheduleNode.objects.get(project=self.other_project)
        with self.assertRaises(InvalidScheduleReference):
            self.open_workday(schedule_node=other_node)

    def test_update_workday_only_while_active(self):
        workday, _, _ = self.build_standard_day()
        WorkdayService.update_workday(workday.id, objectives="Pour and cure", location="Gate 3")
        workday.refresh_from_db()
        self.assertEqual(workday.location, "Gate 3")

        self.close(workday)
        with self.assertRaises(WorkdayNotActive):
            WorkdayService.update_workday(workday.id, location="Gate 4")

    def test_get_missing_workday(self):
        with self.assertRaises(WorkdayNotFound):
            WorkdayService.get_workday(9999)


class TaskRegistryTest(WorkdayTestBase):

    def test_add_scheduled_and_ad_hoc_tasks(self):
        workday, scheduled, ad_hoc = self.build_standard_day()

        self.assertEqual(scheduled.kind, ScheduledTask(self.foundation.id))
        self.assertEqual(ad_hoc.kind, AdHocTask("cleanup"))
        self.assertEqual(ad_hoc.schedule_task_id, None)
        self.assertEqual(WorkdayTask.objects.filter(workday=workday).count(), 2)
        self.assertEqual(self.member(scheduled, self.bruno).hours, Decimal("4.5"))

    def test_members_without_hours_get_seed(self):
        workday = self.open_workday()
        first = TaskRegistryService.add_task(
            workday.id, ScheduledTask(self.foundation.id), [MemberDraft(self.ana.id)]
        )
        second = TaskRegistryService.add_task(
            workday.id, AdHocTask("cleanup"), [MemberDraft(self.ana.id)]
        )

        # both rows hold the 9.5h day split in two
        self.assertEqual(self.member(first, self.ana).hours, Decimal("5.0"))
        self.assertEqual(self.member(second, self.ana).hours, Decimal("5.0"))
        self.assertTrue(self.member(first, self.ana).seeded)

        suggestions = TaskRegistryService.allocation_suggestions(workday.id)
        self.assertEqual([row["suggested_hours"] for row in suggestions], [Decimal("5.0"), Decimal("5.0")])

    def test_seeded_hours_follow_task_count(self):
        workday = self.open_workday()
        first = TaskRegistryService.add_task(workday.id, AdHocTask("a"), [MemberDraft(self.ana.id)])
        second = TaskRegistryService.add_task(workday.id, AdHocTask("b"), [MemberDraft(self.ana.id)])
        third = TaskRegistryService.add_task(workday.id, AdHocTask("c"), [MemberDraft(self.ana.id)])
        self.assertEqual(
            [self.member(t, self.ana).hours for t in (first, second, third)],
            [Decimal("3.0")] * 3,
        )

        TaskRegistryService.remove_task(third.id)
        self.assertEqual(self.member(first, self.ana).hours, Decimal("5.0"))
        self.assertEqual(self.member(second, self.ana).hours, Decimal("5.0"))

    def test_typed_hours_are_not_reseeded(self):
        workday = self.open_workday()
        first = TaskRegistryService.add_task(workday.id, AdHocTask("a"), [MemberDraft(self.ana.id)])
        typed = self.member(first, self.ana)
        TaskRegistryService.set_member_hours(typed.id, Decimal("7"))

        second = TaskRegistryService.add_task(workday.id, AdHocTask("b"), [MemberDraft(self.ana.id)])

        typed.refresh_from_db()
        self.assertEqual(typed.hours, Decimal("7"))
        self.assertFalse(typed.seeded)
        self.assertEqual(self.member(second, self.ana).hours, Decimal("5.0"))

    def test_explicit_hours_on_new_task_rebalance_seeded_rows(self):
        workday = self.open_workday()
        first = TaskRegistryService.add_task(workday.id, AdHocTask("a"), [MemberDraft(self.ana.id)])
        TaskRegistryService.add_task(workday.id, AdHocTask("b"), [MemberDraft(self.ana.id, Decimal("2"))])

        self.assertEqual(self.member(first, self.ana).hours, Decimal("5.0"))

    def test_schedule_task_of_other_project_rejected(self):
        workday = self.open_workday()
        with self.assertRaises(InvalidTaskReference):
            TaskRegistryService.add_task(
                workday.id, ScheduledTask(self.foreign_task.id), [MemberDraft(self.ana.id)]
            )

    def test_task_needs_distinct_members(self):
        workday = self.open_workday()
        with self.assertRaises(InvalidTaskMembers):
            TaskRegistryService.add_task(workday.id, AdHocTask("cleanup"), [])
        with self.assertRaises(InvalidTaskMembers):
            TaskRegistryService.add_task(
                workday.id, AdHocTask("cleanup"), [MemberDraft(self.ana.id), MemberDraft(self.ana.id)]
            )

    def test_update_task_switches_kind(self):
        workday, _, ad_hoc = self.build_standard_day()
        TaskRegistryService.update_task(ad_hoc.id, kind=ScheduledTask(self.walls.id), description="walls")

        ad_hoc.refresh_from_db()
        self.assertEqual(ad_hoc.kind, ScheduledTask(self.walls.id))
        self.assertEqual(ad_hoc.ad_hoc_name, "")
        self.assertEqual(ad_hoc.display_name, "Walls")

    def test_remove_task_cascades_members(self):
        workday, scheduled, _ = self.build_standard_day()
        TaskRegistryService.remove_task(scheduled.id)

        self.assertFalse(WorkdayTask.objects.filter(pk=scheduled.id).exists())
        self.assertFalse(TaskMember.objects.filter(task_id=scheduled.id).exists())

    def test_set_member_hours_boundaries(self):
        _, scheduled, _ = self.build_standard_day()
        member = self.member(scheduled, self.ana)

        for bad in (Decimal("0"), Decimal("25"), Decimal("-1")):
            with self.assertRaises(InvalidHours):
                TaskRegistryService.set_member_hours(member.id, bad)

        TaskRegistryService.set_member_hours(member.id, Decimal("24"))
        member.refresh_from_db()
        self.assertEqual(member.hours, Decimal("24"))

        TaskRegistryService.set_member_hours(member.id, Decimal("0.5"), notes="left early")
        member.refresh_from_db()
        self.assertEqual(member.hours, Decimal("0.5"))
        self.assertEqual(member.notes, "left early")

    def test_add_and_remove_member(self):
        _, scheduled, ad_hoc = self.build_standard_day()
        added = TaskRegistryService.add_member(ad_hoc.id, MemberDraft(self.ana.id))
        # Ana now works on two tasks today
        self.assertEqual(added.hours, Decimal("5.0"))

        TaskRegistryService.remove_member(added.id)
        with self.assertRaises(InvalidTaskMembers):
            TaskRegistryService.remove_member(self.member(ad_hoc, self.carla).id)

    def test_allocation_suggestions(self):
        workday = self.open_workday()
        for name in ("a", "b", "c"):
            TaskRegistryService.add_task(workday.id, AdHocTask(name), [MemberDraft(self.ana.id, Decimal("0"))])

        suggestions = TaskRegistryService.allocation_suggestions(workday.id)

        self.assertEqual(len(suggestions), 3)
        for row in suggestions:
            self.assertEqual(row["current_hours"], Decimal("0"))
            self.assertEqual(row["suggested_hours"], Decimal("3.0"))

    def test_mutations_rejected_once_closed(self):
        workday, scheduled, _ = self.build_standard_day()
        self.close(workday)

        with self.assertRaises(WorkdayNotActive):
            TaskRegistryService.add_task(workday.id, AdHocTask("late"), [MemberDraft(self.ana.id)])
        with self.assertRaises(WorkdayNotActive):
            TaskRegistryService.update_task(scheduled.id, description="changed")
        with self.assertRaises(WorkdayNotActive):
            TaskRegistryService.remove_task(scheduled.id)
        with self.assertRaises(WorkdayNotActive):
            TaskRegistryService.set_member_hours(self.member(scheduled, self.ana).id, Decimal("2"))
        with self.assertRaises(WorkdayNotActive):
            BlockerService.add_blocker(workday.id, BlockerDraft(self.weather.id, "rain"))


class BlockerServiceTest(WorkdayTestBase):

    def test_add_and_remove_blocker(self):
        workday = self.open_workday()
        blocker = BlockerService.add_blocker(
            workday.id, BlockerDraft(self.weather.id, "Heavy rain", impact="2h lost", action="Covered slab")
        )
        self.assertEqual(blocker.blocker_type, self.weather)
        self.assertEqual(blocker.impact, "2h lost")

        BlockerService.remove_blocker(blocker.id)
        self.assertEqual(Blocker.objects.filter(workday=workday).count(), 0)

    def test_invalid_blockers(self):
        workday = self.open_workday()
        with self.assertRaises(InvalidBlocker):
            BlockerService.add_blocker(workday.id, BlockerDraft(self.weather.id, "   "))
        with self.assertRaises(InvalidBlocker):
            BlockerService.add_blocker(workday.id, BlockerDraft(None, "rain"))
        with self.assertRaises(InvalidBlocker):
            BlockerService.add_blocker(workday.id, BlockerDraft(self.retired_type.id, "rain"))


class CloseWorkdayTest(WorkdayTestBase):

    def test_end_to_end_close(self):
        workday, _, _ = self.build_standard_day(schedule_node=self.node)

        result = self.close(workday)

        self.assertEqual(result.workday.status, Workday.Status.CLOSED_PENDING_APPROVAL)
        self.assertEqual(result.workday.day_summary, "foundation poured")
        self.foundation.refresh_from_db()
        self.assertEqual(self.foundation.completion_pct, Decimal("60"))

        self.node.refresh_from_db()
        self.assertEqual(self.node.actual_hours, Decimal("9.5"))
        # (40 * 60 + 60 * 0) / 100
        self.assertEqual(self.node.completion_pct, Decimal("24"))
        self.assertEqual([n.id for n in result.nodes], [self.node.id])
        self.assertEqual(result.warnings, [])

    def test_ad_hoc_hours_excluded_without_workday_node(self):
        workday, _, _ = self.build_standard_day()
        self.close(workday)

        self.node.refresh_from_db()
        self.assertEqual(self.node.actual_hours, Decimal("8.5"))

    def test_zero_hour_member_blocks_close(self):
        workday = self.open_workday(schedule_node=self.node)
        task = TaskRegistryService.add_task(
            workday.id,
            ScheduledTask(self.foundation.id),
            [MemberDraft(self.ana.id, Decimal("4")), MemberDraft(self.bruno.id, Decimal("0"))],
        )

        with self.assertRaises(IncompleteHoursAllocation) as ctx:
            self.close(workday, blockers=[BlockerDraft(self.weather.id, "rain")])

        self.assertEqual(
            ctx.exception.details["members"],
            [{"member_id": self.member(task, self.bruno).id, "task_id": task.id, "person_id": self.bruno.id}],
        )
        workday.refresh_from_db()
        self.assertEqual(workday.status, Workday.Status.ACTIVE)
        self.assertEqual(Blocker.objects.count(), 0)
        self.foundation.refresh_from_db()
        self.assertEqual(self.foundation.completion_pct, Decimal("0"))

    def test_workday_without_tasks_cannot_close(self):
        workday = self.open_workday()
        with self.assertRaises(IncompleteHoursAllocation):
            self.close(workday, progress_updates=[])

    def test_all_phase_errors_reported_together(self):
        workday = self.open_workday()
        TaskRegistryService.add_task(
            workday.id, ScheduledTask(self.foundation.id), [MemberDraft(self.ana.id, Decimal("0"))]
        )

        with self.assertRaises(IncompleteHoursAllocation) as ctx:
            self.close(
                workday,
                day_summary="  ",
                blockers=[BlockerDraft(self.weather.id, "")],
                progress_updates=[],
            )

        kinds = [type(error) for error in ctx.exception.errors]
        self.assertEqual(
            kinds,
            [IncompleteHoursAllocation, InvalidBlocker, MissingClosureSummary, MissingClosureSummary],
        )
        self.assertEqual(
            ctx.exception.errors[3].details["missing_schedule_task_ids"], [self.foundation.id]
        )

    def test_missing_summary(self):
        workday, _, _ = self.build_standard_day()
        with self.assertRaises(MissingClosureSummary):
            self.close(workday, day_summary="")

    def test_missing_progress_percentage(self):
        workday, _, _ = self.build_standard_day()
        with self.assertRaises(MissingClosureSummary) as ctx:
            self.close(workday, progress_updates=[])
        self.assertEqual(ctx.exception.details["missing_schedule_task_ids"], [self.foundation.id])

    def test_invalid_progress_updates(self):
        workday, _, _ = self.build_standard_day()
        with self.assertRaises(InvalidProgressUpdate):
            self.close(workday, pct=Decimal("120"))
        with self.assertRaises(InvalidProgressUpdate):
            self.close(workday, progress_updates=[
                ProgressUpdate(self.foundation.id, Decimal("60")),
                ProgressUpdate(self.walls.id, Decimal("10")),
            ])

    def test_blockers_persisted_on_close(self):
        workday, _, _ = self.build_standard_day()
        result = self.close(
            workday,
            blockers=[BlockerDraft(self.weather.id, "Rain after 15:00", impact="1h lost")],
            next_day_plan="Cure slab",
        )

        self.assertEqual(result.workday.next_day_plan, "Cure slab")
        descriptions = Blocker.objects.filter(workday=workday).values_list("description", flat=True)
        self.assertEqual(list(descriptions), ["Rain after 15:00"])

    def test_overtime_is_a_warning(self):
        workday, scheduled, ad_hoc = self.build_standard_day()
        TaskRegistryService.add_member(ad_hoc.id, MemberDraft(self.ana.id, Decimal("6")))

        result = self.close(workday)

        self.assertEqual(result.workday.status, Workday.Status.CLOSED_PENDING_APPROVAL)
        self.assertEqual(len(result.warnings), 1)
        self.assertEqual(result.warnings[0]["person_id"], self.ana.id)
        self.assertEqual(result.warnings[0]["total_hours"], Decimal("10"))

    def test_close_twice_is_invalid_transition(self):
        workday, _, _ = self.build_standard_day()
        self.close(workday)
        with self.assertRaises(InvalidTransition):
            self.close(workday)

    def test_storage_failure_rolls_back_everything(self):
        workday, _, _ = self.build_standard_day(schedule_node=self.node)

        with patch.object(
            ClosingService, "_write_progress_updates", side_effect=DatabaseError("disk I/O error")
        ):
            with self.assertRaises(PersistenceFailure):
                self.close(workday, blockers=[BlockerDraft(self.weather.id, "rain")])

        workday.refresh_from_db()
        self.assertEqual(workday.status, Workday.Status.ACTIVE)
        self.assertEqual(workday.day_summary, "")
        self.assertEqual(Blocker.objects.count(), 0)
        self.node.refresh_from_db()
        self.assertEqual(self.node.actual_hours, Decimal("0"))

    def test_node_lock_conflict_is_retried_once(self):
        workday, _, _ = self.build_standard_day(schedule_node=self.node)
        real_lock = ProgressAggregator.lock_nodes
        calls = []

        def flaky_lock(node_ids):
            calls.append(node_ids)
            if len(calls) == 1:
                raise AggregationConflict("locked")
            return real_lock(node_ids)

        with patch.object(ProgressAggregator, "lock_nodes", side_effect=flaky_lock):
            result = self.close(workday)

        self.assertEqual(len(calls), 2)
        self.assertEqual(result.workday.status, Workday.Status.CLOSED_PENDING_APPROVAL)

    def test_persistent_conflict_surfaces(self):
        workday, _, _ = self.build_standard_day(schedule_node=self.node)

        with patch.object(ProgressAggregator, "lock_nodes", side_effect=AggregationConflict("locked")) as lock:
            with self.assertRaises(AggregationConflict):
                self.close(workday)

        self.assertEqual(lock.call_count, 2)
        workday.refresh_from_db()
        self.assertEqual(workday.status, Workday.Status.ACTIVE)


class ProgressAggregatorTest(WorkdayTestBase):

    def test_recompute_is_idempotent(self):
        workday, _, _ = self.build_standard_day(schedule_node=self.node)
        self.close(workday)
        self.node.refresh_from_db()
        first = (self.node.actual_hours, self.node.completion_pct)

        for _ in range(2):
            with transaction.atomic():
                ProgressAggregator.recompute_nodes([self.node.id])
            self.node.refresh_from_db()
            self.assertEqual((self.node.actual_hours, self.node.completion_pct), first)

    def test_recompute_needs_transaction(self):
        with patch("workdays.aggregation.transaction.get_connection") as get_connection:
            get_connection.return_value.in_atomic_block = False
            with self.assertRaises(RuntimeError):
                ProgressAggregator.recompute_nodes([self.node.id])

    def test_hours_from_several_workdays_add_up(self):
        first, _, _ = self.build_standard_day(schedule_node=self.node)
        self.close(first)

        second = self.open_workday(schedule_node=self.node, work_date=self.work_date + timedelta(days=1))
        TaskRegistryService.add_task(
            second.id, ScheduledTask(self.walls.id), [MemberDraft(self.ana.id, Decimal("8"))]
        )
        ClosingService.close_workday(second.id, ClosingRequest(
            day_summary="walls started",
            progress_updates=[ProgressUpdate(self.walls.id, Decimal("10"))],
        ))

        self.node.refresh_from_db()
        self.assertEqual(self.node.actual_hours, Decimal("17.5"))
        # (40 * 60 + 60 * 10) / 100
        self.assertEqual(self.node.completion_pct, Decimal("30"))

    def test_active_workdays_do_not_count(self):
        self.build_standard_day(schedule_node=self.node)
        self.assertEqual(ProgressAggregator.compute_actual_hours(self.node.id), Decimal("0"))

    def test_tasks_on_other_nodes(self):
        workday, _, _ = self.build_standard_day(schedule_node=self.node)
        TaskRegistryService.add_task(
            workday.id, ScheduledTask(self.wiring.id), [MemberDraft(self.carla.id, Decimal("3"))]
        )
        result = self.close(workday, progress_updates=[
            ProgressUpdate(self.foundation.id, Decimal("60")),
            ProgressUpdate(self.wiring.id, Decimal("50")),
        ])

        self.assertEqual(sorted(n.id for n in result.nodes), sorted([self.node.id, self.electrical.id]))
        self.electrical.refresh_from_db()
        self.assertEqual(self.electrical.actual_hours, Decimal("3"))
        self.assertEqual(self.electrical.completion_pct, Decimal("50"))


class CorrectionAndDeletionTest(WorkdayTestBase):

    def test_correct_member_hours_recomputes(self):
        workday, scheduled, _ = self.build_standard_day(schedule_node=self.node)
        self.close(workday)

        CorrectionService.correct_member_hours(
            self.member(scheduled, self.ana).id, Decimal("6"), acting_user_id=self.supervisor.id
        )

        self.node.refresh_from_db()
        self.assertEqual(self.node.actual_hours, Decimal("11.5"))

    def test_corrections_need_closed_workday(self):
        _, scheduled, _ = self.build_standard_day()
        with self.assertRaises(InvalidTransition):
            CorrectionService.correct_member_hours(
                self.member(scheduled, self.ana).id, Decimal("6"), acting_user_id=self.supervisor.id
            )

    def test_correction_removes_task_hours(self):
        workday, _, ad_hoc = self.build_standard_day(schedule_node=self.node)
        self.close(workday)

        CorrectionService.remove_task(ad_hoc.id, acting_user_id=self.supervisor.id)

        self.node.refresh_from_db()
        self.assertEqual(self.node.actual_hours, Decimal("8.5"))

    def test_correction_removes_one_member(self):
        workday, scheduled, _ = self.build_standard_day(schedule_node=self.node)
        self.close(workday)

        CorrectionService.remove_member(self.member(scheduled, self.bruno).id, acting_user_id=self.supervisor.id)

        self.assertFalse(TaskMember.objects.filter(task=scheduled, person=self.bruno).exists())
        self.node.refresh_from_db()
        self.assertEqual(self.node.actual_hours, Decimal("5"))

    def test_correction_keeps_last_member_and_needs_closed_workday(self):
        workday, scheduled, ad_hoc = self.build_standard_day(schedule_node=self.node)
        with self.assertRaises(InvalidTransition):
            CorrectionService.remove_member(self.member(scheduled, self.ana).id, acting_user_id=self.supervisor.id)

        self.close(workday)
        with self.assertRaises(InvalidTaskMembers):
            CorrectionService.remove_member(self.member(ad_hoc, self.carla).id, acting_user_id=self.supervisor.id)

    def test_deleting_closed_workday_drops_its_hours(self):
        workday, _, _ = self.build_standard_day(schedule_node=self.node)
        self.close(workday)

        WorkdayService.delete_workday(workday.id)

        self.assertFalse(Workday.objects.filter(pk=workday.id).exists())
        self.assertEqual(TaskMember.objects.count(), 0)
        self.node.refresh_from_db()
        self.assertEqual(self.node.actual_hours, Decimal("0"))

    def test_deleting_active_workday(self):
        workday, _, _ = self.build_standard_day(schedule_node=self.node)
        WorkdayService.delete_workday(workday.id)
        self.assertEqual(WorkdayTask.objects.count(), 0)


class ListingTest(WorkdayTestBase):

    def test_list_workdays_with_counts(self):
        closed, _, _ = self.build_standard_day()
        self.close(closed)
        active = self.open_workday(work_date=self.work_date + timedelta(days=1))

        rows = list(WorkdayService.list_workdays(supervisor_id=self.supervisor.id))

        self.assertEqual([w.id for w in rows], [active.id, closed.id])
        self.assertEqual(rows[1].task_count, 2)
        self.assertEqual(rows[1].member_count, 3)
        self.assertEqual(rows[1].total_hours, Decimal("9.5"))
        self.assertEqual(rows[0].task_count, 0)
        self.assertEqual(rows[0].total_hours, Decimal("0"))

    def test_list_workdays_active_and_history(self):
        closed, _, _ = self.build_standard_day()
        self.close(closed)
        active = self.open_workday(work_date=self.work_date + timedelta(days=1))

        self.assertEqual([w.id for w in WorkdayService.list_workdays(active=True)], [active.id])
        self.assertEqual([w.id for w in WorkdayService.list_workdays(active=False)], [closed.id])
        self.assertEqual(list(WorkdayService.list_workdays(supervisor_id=self.ana.id)), [])

    def test_list_blockers_filters(self):
        first, _, _ = self.build_standard_day()
        material = BlockerType.objects.create(name="Material shortage")
        self.close(first, blockers=[
            BlockerDraft(self.weather.id, "Rain after 15:00", impact="1h lost"),
            BlockerDraft(material.id, "Rebar late"),
        ])
        later = self.open_workday(work_date=self.work_date + timedelta(days=3))
        BlockerService.add_blocker(later.id, BlockerDraft(self.weather.id, "Wind"))

        def descriptions(**filters):
            return [b.description for b in BlockerService.list_blockers(**filters)]

        self.assertEqual(descriptions(), ["Wind", "Rebar late", "Rain after 15:00"])
        self.assertEqual(descriptions(blocker_type_id=self.weather.id), ["Wind", "Rain after 15:00"])
        self.assertEqual(descriptions(with_impact=True), ["Rain after 15:00"])
        self.assertEqual(descriptions(date_to=self.work_date), ["Rebar late", "Rain after 15:00"])
        self.assertEqual(descriptions(date_from=self.work_date + timedelta(days=1)), ["Wind"])
        self.assertEqual(descriptions(status=Workday.Status.ACTIVE), ["Wind"])
        self.assertEqual(descriptions(search="rebar"), ["Rebar late"])
        self.assertEqual(descriptions(project_id=self.other_project.id), [])


class ReviewServiceTest(WorkdayTestBase):

    def test_approve(self):
        workday, _, _ = self.build_standard_day(schedule_node=self.node)
        self.close(workday)

        approved = ReviewService.approve(workday.id, acting_user_id=self.supervisor.id)

        self.assertEqual(approved.status, Workday.Status.APPROVED)
        self.node.refresh_from_db()
        self.assertEqual(self.node.actual_hours, Decimal("9.5"))

    def test_reject_needs_reason_and_drops_hours(self):
        workday, _, _ = self.build_standard_day(schedule_node=self.node)
        self.close(workday)

        with self.assertRaises(InvalidReview):
            ReviewService.reject(workday.id, acting_user_id=self.supervisor.id, reason="no")

        rejected = ReviewService.reject(
            workday.id, acting_user_id=self.supervisor.id, reason="Hours do not match the gate log"
        )
        self.assertEqual(rejected.status, Workday.Status.REJECTED)
        self.node.refresh_from_db()
        self.assertEqual(self.node.actual_hours, Decimal("0"))

    def test_review_needs_pending_workday(self):
        workday = self.open_workday()
        with self.assertRaises(InvalidTransition):
            ReviewService.approve(workday.id, acting_user_id=self.supervisor.id)


class WorkdaySummaryTest(WorkdayTestBase):

    def test_summary_figures(self):
        workday, _, _ = self.build_standard_day()
        summary = WorkdaySummaryService.summarize(workday.id)

        self.assertEqual(summary.task_count, 2)
        self.assertEqual(summary.member_count, 3)
        self.assertEqual(summary.total_hours, Decimal("9.5"))
        self.assertEqual(summary.max_person_hours, Decimal("4.5"))
        self.assertEqual(summary.overtime, {})
        self.assertGreater(summary.hours_gini, 0)

    def test_even_crew_has_zero_gini(self):
        workday = self.open_workday()
        TaskRegistryService.add_task(
            workday.id, AdHocTask("cleanup"),
            [MemberDraft(self.ana.id, Decimal("4")), MemberDraft(self.bruno.id, Decimal("4"))],
        )
        self.assertAlmostEqual(WorkdaySummaryService.summarize(workday.id).hours_gini, 0.0)


class LedgerAuditTest(WorkdayTestBase):

    def test_consistent_ledger_has_no_findings(self):
        workday, _, _ = self.build_standard_day(schedule_node=self.node)
        self.close(workday)
        self.assertEqual(LedgerAuditService.audit(today=self.work_date), [])

    def test_drift_is_reported_not_fixed(self):
        workday, _, _ = self.build_standard_day(schedule_node=self.node)
        self.close(workday)
        ScheduleNode.objects.filter(pk=self.node.id).update(actual_hours=Decimal("99"))

        findings = LedgerAuditService.audit(project_id=self.project.id, today=self.work_date)

        self.assertEqual([f.kind for f in findings], ["node_hours_drift"])
        self.assertEqual(findings[0].expected, "9.50")
        self.node.refresh_from_db()
        self.assertEqual(self.node.actual_hours, Decimal("99"))

    def test_stale_active_workday(self):
        workday = self.open_workday(work_date=timezone.localdate() - timedelta(days=10))
        findings = LedgerAuditService.audit()
        self.assertIn(("stale_active_workday", workday.id), [(f.kind, f.object_id) for f in findings])

    def test_command_output(self):
        out = StringIO()
        call_command("audit_schedule_ledger", stdout=out)
        self.assertIn("consistent", out.getvalue())

        ScheduleNode.objects.filter(pk=self.node.id).update(actual_hours=Decimal("5"))
        with self.assertRaises(CommandError):
            call_command("audit_schedule_ledger", "--fail-on-findings", stdout=StringIO())


class LoadSeedDataTest(TestCase):

    def test_loads_bundled_seed_files(self):
        seed_dir = Path(__file__).resolve().parent.parent / "seed_data"
        call_command("load_seed_data", "--dir", str(seed_dir), stdout=StringIO())

        self.assertEqual(Project.objects.get(pk=1).code, "WH-2025")
        self.assertEqual(ScheduleTask.objects.filter(node_id=1).count(), 2)
        self.assertFalse(BlockerType.objects.get(name="Permit pending").is_active)

        # loading twice skips existing rows
        call_command("load_seed_data", "--dir", str(seed_dir), stdout=StringIO())
        self.assertEqual(Employee.objects.count(), 4)

    def test_missing_directory(self):
        with self.assertRaises(CommandError):
            call_command("load_seed_data", "--dir", "/nonexistent/seed", stdout=StringIO())


class WorkdayAPITest(WorkdayTestBase):
    """HTTP surface of the workday operations."""

    def post_json(self, url, payload):
        return self.client.post(url, payload, content_type="application/json")

    def open_via_api(self):
        response = self.post_json("/api/workdays", {
            "project_id": self.project.id,
            "work_date": "2025-03-10",
            "acting_user_id": self.supervisor.id,
            "schedule_node_id": self.node.id,
            "crew": [
                {"person_id": self.supervisor.id, "role": "supervisor"},
                {"person_id": self.ana.id},
                {"person_id": self.bruno.id},
                {"person_id": self.carla.id},
            ],
        })
        self.assertEqual(response.status_code, 201)
        return response.json()

    def test_full_flow(self):
        workday = self.open_via_api()
        self.assertEqual(workday["status"], "active")
        self.assertEqual(len(workday["crew"]), 4)

        response = self.post_json(f"/api/workdays/{workday['id']}/tasks", {
            "schedule_task_id": self.foundation.id,
            "members": [
                {"person_id": self.ana.id, "hours": 4.0},
                {"person_id": self.bruno.id, "hours": 4.5},
            ],
        })
        self.assertEqual(response.status_code, 201)
        response = self.post_json(f"/api/workdays/{workday['id']}/tasks", {
            "ad_hoc_name": "cleanup",
            "members": [{"person_id": self.carla.id, "hours": 1.0}],
        })
        data = response.json()
        self.assertEqual([t["kind"] for t in data["tasks"]], ["scheduled", "ad_hoc"])
        self.assertEqual(data["total_hours"], 9.5)

        response = self.post_json(f"/api/workdays/{workday['id']}/close", {
            "day_summary": "foundation poured",
            "progress_updates": [{"schedule_task_id": self.foundation.id, "completion_pct": 60}],
        })
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data["workday"]["status"], "closed_pending_approval")
        self.assertEqual(data["schedule_nodes"][0]["actual_hours"], 9.5)
        self.assertEqual(data["warnings"], [])

        node = self.client.get(f"/api/schedule-nodes/{self.node.id}").json()
        self.assertEqual(node["actual_hours"], 9.5)
        self.assertEqual(node["completion_pct"], 24.0)

    def test_task_reference_must_be_exclusive(self):
        workday = self.open_via_api()
        for payload in (
            {"schedule_task_id": self.foundation.id, "ad_hoc_name": "cleanup"},
            {},
        ):
            payload["members"] = [{"person_id": self.ana.id}]
            response = self.post_json(f"/api/workdays/{workday['id']}/tasks", payload)
            self.assertEqual(response.status_code, 422)
            self.assertEqual(response.json()["code"], "invalid_task_reference")

    def test_close_validation_errors(self):
        workday = self.open_via_api()
        self.post_json(f"/api/workdays/{workday['id']}/tasks", {
            "schedule_task_id": self.foundation.id,
            "members": [{"person_id": self.ana.id, "hours": 0}],
        })

        response = self.post_json(f"/api/workdays/{workday['id']}/close", {"day_summary": ""})

        self.assertEqual(response.status_code, 422)
        data = response.json()
        self.assertEqual(data["code"], "incomplete_hours_allocation")
        self.assertEqual(
            [e["code"] for e in data["errors"]],
            ["incomplete_hours_allocation", "missing_closure_summary", "missing_closure_summary"],
        )
        self.assertEqual(self.client.get(f"/api/workdays/{workday['id']}").json()["status"], "active")

    def test_member_hours_endpoint(self):
        workday = self.open_via_api()
        data = self.post_json(f"/api/workdays/{workday['id']}/tasks", {
            "ad_hoc_name": "cleanup",
            "members": [{"person_id": self.ana.id}],
        }).json()
        member = data["tasks"][0]["members"][0]
        self.assertEqual(member["hours"], 9.5)

        url = f"/api/members/{member['id']}/hours"
        response = self.client.put(url, {"hours": 25}, content_type="application/json")
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "invalid_hours")

        response = self.client.put(url, {"hours": 24}, content_type="application/json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["hours"], 24.0)

    def test_allocation_and_summary_endpoints(self):
        workday = self.open_via_api()
        for name in ("a", "b", "c"):
            self.post_json(f"/api/workdays/{workday['id']}/tasks", {
                "ad_hoc_name": name,
                "members": [{"person_id": self.ana.id, "hours": 0}],
            })

        rows = self.client.get(f"/api/workdays/{workday['id']}/allocation").json()
        self.assertEqual([r["suggested_hours"] for r in rows], [3.0, 3.0, 3.0])

        summary = self.client.get(f"/api/workdays/{workday['id']}/summary").json()
        self.assertEqual(summary["task_count"], 3)
        self.assertEqual(summary["total_hours"], 0.0)

    def test_review_endpoints(self):
        workday = self.open_via_api()
        self.post_json(f"/api/workdays/{workday['id']}/tasks", {
            "ad_hoc_name": "cleanup",
            "members": [{"person_id": self.ana.id, "hours": 8}],
        })
        self.post_json(f"/api/workdays/{workday['id']}/close", {"day_summary": "site cleaned"})

        response = self.post_json(f"/api/workdays/{workday['id']}/reject", {
            "acting_user_id": self.supervisor.id, "reason": "short",
        })
        self.assertEqual(response.status_code, 422)

        response = self.post_json(f"/api/workdays/{workday['id']}/approve", {
            "acting_user_id": self.supervisor.id,
        })
        self.assertEqual(response.json()["status"], "approved")

        response = self.post_json(f"/api/workdays/{workday['id']}/approve", {
            "acting_user_id": self.supervisor.id,
        })
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "invalid_transition")

    def test_list_endpoints(self):
        workday = self.open_via_api()
        self.post_json(f"/api/workdays/{workday['id']}/tasks", {
            "ad_hoc_name": "cleanup",
            "members": [{"person_id": self.ana.id, "hours": 3}, {"person_id": self.bruno.id, "hours": 2.5}],
        })
        self.post_json(f"/api/workdays/{workday['id']}/blockers", {
            "blocker_type_id": self.weather.id, "description": "Rain", "impact": "2h",
        })

        rows = self.client.get(f"/api/workdays?supervisor_id={self.supervisor.id}&active=true").json()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["supervisor_name"], "Diego")
        self.assertEqual(
            (rows[0]["task_count"], rows[0]["member_count"], rows[0]["total_hours"]), (1, 2, 5.5)
        )
        self.assertEqual(self.client.get("/api/workdays?active=false").json(), [])

        blockers = self.client.get(f"/api/blockers?project_id={self.project.id}&with_impact=true").json()
        self.assertEqual(len(blockers), 1)
        self.assertEqual(blockers[0]["workday_id"], workday["id"])
        self.assertEqual(blockers[0]["blocker_type_name"], "Weather")
        self.assertEqual(blockers[0]["project_code"], "P-001")
        self.assertEqual(self.client.get(f"/api/blockers?blocker_type_id={self.retired_type.id}").json(), [])

    def test_created_responses_use_explicit_status(self):
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            self.open_via_api()
        self.assertEqual([w for w in caught if "tuple" in str(w.message)], [])

    def test_missing_workday(self):
        response = self.client.get("/api/workdays/9999")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "not_found")

    def test_blocker_endpoints(self):
        workday = self.open_via_api()
        response = self.post_json(f"/api/workdays/{workday['id']}/blockers", {
            "blocker_type_id": self.weather.id, "description": "Rain", "impact": "2h",
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["blocker_type_name"], "Weather")

        response = self.client.delete(f"/api/blockers/{response.json()['id']}")
        self.assertEqual(response.status_code, 204)

        response = self.post_json(f"/api/workdays/{workday['id']}/blockers", {
            "blocker_type_id": self.weather.id, "description": "",
        })
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "invalid_blocker")
