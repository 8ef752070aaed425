from decimal import Decimal

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from .task_kind import AdHocTask, ScheduledTask, TaskKind

PERCENT_VALIDATORS = [MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("100"))]
HOURS_VALIDATORS = [MinValueValidator(Decimal("0")), MaxValueValidator(Decimal("24"))]


class Project(models.Model):
    id   = models.BigAutoField(primary_key=True)
    code = models.CharField(max_length=50, unique=True)
    name = models.CharField(max_length=200)


class Employee(models.Model):
    id    = models.BigAutoField(primary_key=True)
    name  = models.CharField(max_length=100)
    email = models.EmailField(blank=True)


class ScheduleNode(models.Model):
    """EDT node of the project schedule; its aggregates belong to the ProgressAggregator."""
    id             = models.BigAutoField(primary_key=True)
    project        = models.ForeignKey(
        Project,
        on_delete=models.CASCADE,
        related_name="schedule_nodes"
    )
    name           = models.CharField(max_length=200)
    planned_hours  = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    actual_hours   = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0"))
    completion_pct = models.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("0"), validators=PERCENT_VALIDATORS
    )
    recomputed_at  = models.DateTimeField(null=True, blank=True)


class ScheduleTask(models.Model):
    id             = models.BigAutoField(primary_key=True)
    node           = models.ForeignKey(
        ScheduleNode,
        on_delete=models.CASCADE,
        related_name="tasks"
    )
    name           = models.CharField(max_length=200)
    planned_hours  = models.DecimalField(max_digits=8, decimal_places=2, default=Decimal("0"))
    completion_pct = models.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("0"), validators=PERCENT_VALIDATORS
    )

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=models.Q(completion_pct__gte=0, completion_pct__lte=100),
                name="schedule_task_pct_range",
            ),
        ]


class BlockerType(models.Model):
    id        = models.BigAutoField(primary_key=True)
    name      = models.CharField(max_length=100, unique=True)
    is_active = models.BooleanField(default=True)


class Workday(models.Model):
    class Status(models.TextChoices):
        ACTIVE = "active", "Active"
        CLOSED_PENDING_APPROVAL = "closed_pending_approval", "Closed, pending approval"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"

    id               = models.BigAutoField(primary_key=True)
    project          = models.ForeignKey(
        Project,
        on_delete=models.PROTECT,
        related_name="workdays"
    )
    supervisor       = models.ForeignKey(
        Employee,
        on_delete=models.PROTECT,
        related_name="supervised_workdays"
    )
    work_date        = models.DateField()
    schedule_node    = models.ForeignKey(
        ScheduleNode,
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name="workdays"
    )
    objectives       = models.TextField(blank=True)
    location         = models.CharField(max_length=200, blank=True)
    status           = models.CharField(max_length=32, choices=Status.choices, default=Status.ACTIVE)
    day_summary      = models.TextField(blank=True)
    next_day_plan    = models.TextField(blank=True)
    closed_at        = models.DateTimeField(null=True, blank=True)
    closed_by        = models.ForeignKey(
        Employee,
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name="closed_workdays"
    )
    reviewed_at      = models.DateTimeField(null=True, blank=True)
    reviewed_by      = models.ForeignKey(
        Employee,
        null=True, blank=True,
        on_delete=models.SET_NULL,
        related_name="reviewed_workdays"
    )
    rejection_reason = models.TextField(blank=True)
    created_at       = models.DateTimeField(auto_now_add=True)
    updated_at       = models.DateTimeField(auto_now=True)

    class Meta:
        indexes = [
            models.Index(fields=["project", "work_date"]),
            models.Index(fields=["supervisor", "work_date", "status"]),
            models.Index(fields=["status"]),
        ]

    @property
    def is_active(self) -> bool:
        return self.status == self.Status.ACTIVE

    @property
    def is_committed(self) -> bool:
        """Closed workdays whose hours belong to the schedule ledger."""
        return self.status in COMMITTED_STATUSES


COMMITTED_STATUSES = (Workday.Status.CLOSED_PENDING_APPROVAL, Workday.Status.APPROVED)


class CrewMember(models.Model):
    class Role(models.TextChoices):
        WORKER = "worker", "Worker"
        SUPERVISOR = "supervisor", "Supervisor"
        SAFETY = "safety", "Safety"

    id      = models.BigAutoField(primary_key=True)
    workday = models.ForeignKey(
        Workday,
        on_delete=models.CASCADE,
        related_name="crew"
    )
    person  = models.ForeignKey(
        Employee,
        on_delete=models.CASCADE,
        related_name="crew_memberships"
    )
    role    = models.CharField(max_length=16, choices=Role.choices, default=Role.WORKER)

    class Meta:
        unique_together = ("workday", "person")


class WorkdayTask(models.Model):
    id            = models.BigAutoField(primary_key=True)
    workday       = models.ForeignKey(
        Workday,
        on_delete=models.CASCADE,
        related_name="tasks"
    )
    schedule_task = models.ForeignKey(
        ScheduleTask,
        null=True, blank=True,
        on_delete=models.PROTECT,
        related_name="workday_tasks"
    )
    ad_hoc_name   = models.CharField(max_length=200, blank=True)
    description   = models.TextField(blank=True)
    created_at    = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            # storage mirror of TaskKind: exactly one reference is set
            models.CheckConstraint(
                condition=(
                    models.Q(schedule_task__isnull=False, ad_hoc_name="")
                    | (models.Q(schedule_task__isnull=True) & ~models.Q(ad_hoc_name=""))
                ),
                name="workday_task_single_reference",
            ),
        ]
        indexes = [
            models.Index(fields=["workday"]),
            models.Index(fields=["schedule_task"]),
        ]

    @property
    def kind(self) -> TaskKind:
        if self.schedule_task_id is not None:
            return ScheduledTask(self.schedule_task_id)
        return AdHocTask(self.ad_hoc_name)

    @kind.setter
    def kind(self, value: TaskKind):
        if isinstance(value, ScheduledTask):
            self.schedule_task_id = value.schedule_task_id
            self.ad_hoc_name = ""
        else:
            self.schedule_task = None
            self.ad_hoc_name = value.name

    @property
    def display_name(self) -> str:
        if self.schedule_task_id is not None:
            return self.schedule_task.name
        return self.ad_hoc_name


class TaskMember(models.Model):
    id     = models.BigAutoField(primary_key=True)
    task   = models.ForeignKey(
        WorkdayTask,
        on_delete=models.CASCADE,
        related_name="members"
    )
    person = models.ForeignKey(
        Employee,
        on_delete=models.CASCADE,
        related_name="task_hours"
    )
    hours  = models.DecimalField(
        max_digits=4, decimal_places=2, default=Decimal("0"), validators=HOURS_VALIDATORS
    )
    # True while hours still hold the default split, cleared once someone types a value
    seeded = models.BooleanField(default=False)
    notes  = models.TextField(blank=True)

    class Meta:
        unique_together = ("task", "person")
        constraints = [
            models.CheckConstraint(
                condition=models.Q(hours__gte=0, hours__lte=24),
                name="task_member_hours_range",
            ),
        ]
        indexes = [
            models.Index(fields=["person"]),
        ]


class Blocker(models.Model):
    id           = models.BigAutoField(primary_key=True)
    workday      = models.ForeignKey(
        Workday,
        on_delete=models.CASCADE,
        related_name="blockers"
    )
    blocker_type = models.ForeignKey(
        BlockerType,
        on_delete=models.PROTECT,
        related_name="blockers"
    )
    description  = models.TextField()
    impact       = models.TextField(blank=True)
    action       = models.TextField(blank=True)
    created_at   = models.DateTimeField(auto_now_add=True)
