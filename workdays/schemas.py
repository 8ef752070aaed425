from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from ninja import Schema


class CrewMemberIn(Schema):
    """Person planned for the workday and their role on site."""
    person_id: int
    role: Literal["worker", "supervisor", "safety"] = "worker"


class OpenWorkdayIn(Schema):
    project_id: int
    work_date: date
    acting_user_id: int
    crew: list[CrewMemberIn] = []
    schedule_node_id: int | None = None
    objectives: str = ""
    location: str = ""
    allow_overlap: bool | None = None  # None falls back to the WORKDAYS setting


class UpdateWorkdayIn(Schema):
    objectives: str | None = None
    location: str | None = None
    crew: list[CrewMemberIn] | None = None
    acting_user_id: int | None = None


class TaskMemberIn(Schema):
    person_id: int
    hours: Decimal | None = None  # omitted -> default allocation seed
    notes: str = ""


class AddTaskIn(Schema):
    """Either schedule_task_id or ad_hoc_name, never both."""
    schedule_task_id: int | None = None
    ad_hoc_name: str | None = None
    description: str = ""
    members: list[TaskMemberIn]


class UpdateTaskIn(Schema):
    schedule_task_id: int | None = None
    ad_hoc_name: str | None = None
    description: str | None = None


class MemberHoursIn(Schema):
    hours: Decimal
    notes: str | None = None


class BlockerIn(Schema):
    blocker_type_id: int | None = None
    description: str = ""
    impact: str = ""
    action: str = ""


class ProgressUpdateIn(Schema):
    schedule_task_id: int
    completion_pct: Decimal


class CloseWorkdayIn(Schema):
    """Everything the closing wizard collects, sent in one call."""
    day_summary: str = ""
    next_day_plan: str = ""
    blockers: list[BlockerIn] = []
    progress_updates: list[ProgressUpdateIn] = []
    acting_user_id: int | None = None


class ReviewIn(Schema):
    acting_user_id: int
    reason: str = ""


class CrewMemberOut(Schema):
    person_id: int
    person_name: str
    role: str


class TaskMemberOut(Schema):
    id: int
    person_id: int
    person_name: str
    hours: float
    seeded: bool  # still the default split, not typed by hand
    notes: str


class WorkdayTaskOut(Schema):
    id: int
    kind: str  # 'scheduled' or 'ad_hoc'
    schedule_task_id: int | None
    name: str
    description: str
    members: list[TaskMemberOut]
    total_hours: float


class BlockerOut(Schema):
    id: int
    blocker_type_id: int
    blocker_type_name: str
    description: str
    impact: str
    action: str


class BlockerListItemOut(BlockerOut):
    """Blocker with the workday context needed by the supervision overview."""
    workday_id: int
    work_date: date
    workday_status: str
    project_id: int
    project_code: str
    supervisor_id: int
    supervisor_name: str


class WorkdayListItemOut(Schema):
    id: int
    project_id: int
    project_code: str
    supervisor_id: int
    supervisor_name: str
    work_date: date
    schedule_node_id: int | None
    status: str
    task_count: int
    member_count: int
    total_hours: float


class WorkdayOut(Schema):
    id: int
    project_id: int
    project_code: str
    supervisor_id: int
    work_date: date
    schedule_node_id: int | None
    objectives: str
    location: str
    status: str
    day_summary: str
    next_day_plan: str
    closed_at: datetime | None
    rejection_reason: str
    crew: list[CrewMemberOut]
    tasks: list[WorkdayTaskOut]
    blockers: list[BlockerOut]
    total_hours: float


class ScheduleNodeOut(Schema):
    id: int
    name: str
    planned_hours: float
    actual_hours: float
    completion_pct: float


class OvertimeWarningOut(Schema):
    person_id: int
    person_name: str
    total_hours: float
    message: str


class CloseWorkdayOut(Schema):
    workday: WorkdayOut
    schedule_nodes: list[ScheduleNodeOut]
    warnings: list[OvertimeWarningOut]


class AllocationSuggestionOut(Schema):
    member_id: int
    task_id: int
    person_id: int
    current_hours: float
    suggested_hours: float


class PersonHoursOut(Schema):
    person_id: int
    total_hours: float


class WorkdaySummaryOut(Schema):
    """Crew load figures for a workday."""
    workday_id: int
    task_count: int
    member_count: int
    total_hours: float
    max_person_hours: float
    overtime: list[PersonHoursOut]
    hours_gini: float


class ErrorOut(Schema):
    code: str
    message: str
    details: dict
    errors: list[dict]
