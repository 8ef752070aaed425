from datetime import date

from django.http import HttpRequest
from ninja import NinjaAPI, Status, Swagger

from .closing import ClosingRequest, ClosingService, ProgressUpdate
from .exceptions import WorkdayError
from .models import Blocker, ScheduleNode, TaskMember, Workday
from .schemas import (
    AddTaskIn, AllocationSuggestionOut, BlockerIn, BlockerListItemOut, BlockerOut, CloseWorkdayIn,
    CloseWorkdayOut, CrewMemberOut, ErrorOut, MemberHoursIn, OpenWorkdayIn, OvertimeWarningOut,
    PersonHoursOut, ReviewIn, ScheduleNodeOut, TaskMemberIn, TaskMemberOut, UpdateTaskIn, UpdateWorkdayIn,
    WorkdayListItemOut, WorkdayOut, WorkdaySummaryOut, WorkdayTaskOut,
)
from .services import (
    BlockerDraft, BlockerService, CrewDraft, MemberDraft, ReviewService, TaskRegistryService,
    WorkdayService, WorkdaySummaryService, get_or_not_found,
)
from .task_kind import ScheduledTask, task_kind_from_refs

api = NinjaAPI(docs=Swagger(settings={"persistAuthorization": True}))

ERRORS = {400: ErrorOut, 404: ErrorOut, 409: ErrorOut, 422: ErrorOut, 503: ErrorOut}


@api.exception_handler(WorkdayError)
def workday_error(request: HttpRequest, exc: WorkdayError):
    body = exc.to_dict()
    body["errors"] = [error.to_dict() for error in exc.errors]
    return api.create_response(request, body, status=exc.status_code)


def member_to_schema(member: TaskMember) -> TaskMemberOut:
    return TaskMemberOut(
        id=member.id,
        person_id=member.person_id,
        person_name=member.person.name,
        hours=member.hours,
        seeded=member.seeded,
        notes=member.notes,
    )


def blocker_to_schema(blocker: Blocker) -> BlockerOut:
    return BlockerOut(
        id=blocker.id,
        blocker_type_id=blocker.blocker_type_id,
        blocker_type_name=blocker.blocker_type.name,
        description=blocker.description,
        impact=blocker.impact,
        action=blocker.action,
    )


def workday_to_schema(workday: Workday) -> WorkdayOut:
    tasks = []
    for task in workday.tasks.all():
        members = [member_to_schema(m) for m in task.members.all()]
        tasks.append(WorkdayTaskOut(
            id=task.id,
            kind="scheduled" if isinstance(task.kind, ScheduledTask) else "ad_hoc",
            schedule_task_id=task.schedule_task_id,
            name=task.display_name,
            description=task.description,
            members=members,
            total_hours=sum(m.hours for m in members),
        ))

    return WorkdayOut(
        id=workday.id,
        project_id=workday.project_id,
        project_code=workday.project.code,
        supervisor_id=workday.supervisor_id,
        work_date=workday.work_date,
        schedule_node_id=workday.schedule_node_id,
        objectives=workday.objectives,
        location=workday.location,
        status=workday.status,
        day_summary=workday.day_summary,
        next_day_plan=workday.next_day_plan,
        closed_at=workday.closed_at,
        rejection_reason=workday.rejection_reason,
        crew=[
            CrewMemberOut(person_id=c.person_id, person_name=c.person.name, role=c.role)
            for c in workday.crew.all()
        ],
        tasks=tasks,
        blockers=[blocker_to_schema(b) for b in workday.blockers.all()],
        total_hours=sum(t.total_hours for t in tasks),
    )


def node_to_schema(node: ScheduleNode) -> ScheduleNodeOut:
    return ScheduleNodeOut(
        id=node.id,
        name=node.name,
        planned_hours=node.planned_hours,
        actual_hours=node.actual_hours,
        completion_pct=node.completion_pct,
    )


def member_drafts(members: list[TaskMemberIn]) -> list[MemberDraft]:
    return [MemberDraft(person_id=m.person_id, hours=m.hours, notes=m.notes) for m in members]


def blocker_draft(blocker: BlockerIn) -> BlockerDraft:
    return BlockerDraft(
        blocker_type_id=blocker.blocker_type_id,
        description=blocker.description,
        impact=blocker.impact,
        action=blocker.action,
    )


@api.post("/workdays", response={201: WorkdayOut, **ERRORS})
def open_workday(request: HttpRequest, payload: OpenWorkdayIn):
    """Start a field workday for a project crew."""
    workday = WorkdayService.open_workday(
        project_id=payload.project_id,
        work_date=payload.work_date,
        crew=[CrewDraft(person_id=c.person_id, role=c.role) for c in payload.crew],
        acting_user_id=payload.acting_user_id,
        schedule_node_id=payload.schedule_node_id,
        objectives=payload.objectives,
        location=payload.location,
        allow_overlap=payload.allow_overlap,
    )
    return Status(201, workday_to_schema(workday))


@api.get("/workdays", response={200: list[WorkdayListItemOut], **ERRORS})
def list_workdays(request: HttpRequest, supervisor_id: int | None = None, project_id: int | None = None,
                  status: str | None = None, active: bool | None = None):
    """
    Workdays newest first with their task, member and hour counts.

    ``active=true`` lists the open workdays of a supervisor, ``active=false``
    their history.
    """
    workdays = WorkdayService.list_workdays(
        supervisor_id=supervisor_id, project_id=project_id, status=status, active=active
    )
    return [
        WorkdayListItemOut(
            id=w.id,
            project_id=w.project_id,
            project_code=w.project.code,
            supervisor_id=w.supervisor_id,
            supervisor_name=w.supervisor.name,
            work_date=w.work_date,
            schedule_node_id=w.schedule_node_id,
            status=w.status,
            task_count=w.task_count,
            member_count=w.member_count,
            total_hours=w.total_hours,
        )
        for w in workdays
    ]


@api.get("/workdays/{workday_id}", response={200: WorkdayOut, **ERRORS})
def get_workday(request: HttpRequest, workday_id: int):
    return workday_to_schema(WorkdayService.get_workday(workday_id))


@api.patch("/workdays/{workday_id}", response={200: WorkdayOut, **ERRORS})
def update_workday(request: HttpRequest, workday_id: int, payload: UpdateWorkdayIn):
    crew = None
    if payload.crew is not None:
        crew = [CrewDraft(person_id=c.person_id, role=c.role) for c in payload.crew]
    workday = WorkdayService.update_workday(
        workday_id,
        objectives=payload.objectives,
        location=payload.location,
        crew=crew,
        acting_user_id=payload.acting_user_id,
    )
    return workday_to_schema(workday)


@api.delete("/workdays/{workday_id}", response={204: None, **ERRORS})
def delete_workday(request: HttpRequest, workday_id: int):
    WorkdayService.delete_workday(workday_id)
    return Status(204, None)


@api.post("/workdays/{workday_id}/tasks", response={201: WorkdayOut, **ERRORS})
def add_task(request: HttpRequest, workday_id: int, payload: AddTaskIn):
    """
    Add a task to an active workday.

    The task is either linked to a schedule task (``schedule_task_id``) or
    ad-hoc (``ad_hoc_name``). Members sent without hours get the default
    allocation seed: 9.5h split over the tasks that person has today. Their
    other seeded rows are split again; hours typed by hand stay as they are.
    """
    TaskRegistryService.add_task(
        workday_id,
        task_kind_from_refs(payload.schedule_task_id, payload.ad_hoc_name),
        member_drafts(payload.members),
        description=payload.description,
    )
    return Status(201, workday_to_schema(WorkdayService.get_workday(workday_id)))


@api.patch("/tasks/{task_id}", response={200: WorkdayOut, **ERRORS})
def update_task(request: HttpRequest, task_id: int, payload: UpdateTaskIn):
    kind = None
    if payload.schedule_task_id is not None or payload.ad_hoc_name is not None:
        kind = task_kind_from_refs(payload.schedule_task_id, payload.ad_hoc_name)
    task = TaskRegistryService.update_task(task_id, kind=kind, description=payload.description)
    return workday_to_schema(WorkdayService.get_workday(task.workday_id))


@api.delete("/tasks/{task_id}", response={204: None, **ERRORS})
def remove_task(request: HttpRequest, task_id: int):
    TaskRegistryService.remove_task(task_id)
    return Status(204, None)


@api.post("/tasks/{task_id}/members", response={201: TaskMemberOut, **ERRORS})
def add_member(request: HttpRequest, task_id: int, payload: TaskMemberIn):
    member = TaskRegistryService.add_member(task_id, member_drafts([payload])[0])
    return Status(201, member_to_schema(member))


@api.delete("/members/{member_id}", response={204: None, **ERRORS})
def remove_member(request: HttpRequest, member_id: int):
    TaskRegistryService.remove_member(member_id)
    return Status(204, None)


@api.put("/members/{member_id}/hours", response={200: TaskMemberOut, **ERRORS})
def set_member_hours(request: HttpRequest, member_id: int, payload: MemberHoursIn):
    member = TaskRegistryService.set_member_hours(member_id, payload.hours, notes=payload.notes)
    return member_to_schema(member)


@api.post("/workdays/{workday_id}/blockers", response={201: BlockerOut, **ERRORS})
def add_blocker(request: HttpRequest, workday_id: int, payload: BlockerIn):
    blocker = BlockerService.add_blocker(workday_id, blocker_draft(payload))
    return Status(201, blocker_to_schema(blocker))


@api.get("/blockers", response={200: list[BlockerListItemOut], **ERRORS})
def list_blockers(request: HttpRequest, project_id: int | None = None, blocker_type_id: int | None = None,
                  supervisor_id: int | None = None, status: str | None = None,
                  date_from: date | None = None, date_to: date | None = None,
                  with_impact: bool = False, search: str | None = None):
    """Blockers reported across workdays, for the supervision overview."""
    blockers = BlockerService.list_blockers(
        project_id=project_id,
        blocker_type_id=blocker_type_id,
        supervisor_id=supervisor_id,
        status=status,
        date_from=date_from,
        date_to=date_to,
        with_impact=with_impact,
        search=search,
    )
    return [
        BlockerListItemOut(
            **blocker_to_schema(b).model_dump(),
            workday_id=b.workday_id,
            work_date=b.workday.work_date,
            workday_status=b.workday.status,
            project_id=b.workday.project_id,
            project_code=b.workday.project.code,
            supervisor_id=b.workday.supervisor_id,
            supervisor_name=b.workday.supervisor.name,
        )
        for b in blockers
    ]


@api.delete("/blockers/{blocker_id}", response={204: None, **ERRORS})
def remove_blocker(request: HttpRequest, blocker_id: int):
    BlockerService.remove_blocker(blocker_id)
    return Status(204, None)


@api.get("/workdays/{workday_id}/allocation", response={200: list[AllocationSuggestionOut], **ERRORS})
def allocation_suggestions(request: HttpRequest, workday_id: int):
    """Suggested hours per task member, used to pre-fill the closing form."""
    return [AllocationSuggestionOut(**row) for row in TaskRegistryService.allocation_suggestions(workday_id)]


@api.get("/workdays/{workday_id}/summary", response={200: WorkdaySummaryOut, **ERRORS})
def workday_summary(request: HttpRequest, workday_id: int):
    summary = WorkdaySummaryService.summarize(workday_id)
    return WorkdaySummaryOut(
        workday_id=summary.workday_id,
        task_count=summary.task_count,
        member_count=summary.member_count,
        total_hours=summary.total_hours,
        max_person_hours=summary.max_person_hours,
        overtime=[
            PersonHoursOut(person_id=person_id, total_hours=total)
            for person_id, total in sorted(summary.overtime.items())
        ],
        hours_gini=summary.hours_gini,
    )


@api.post("/workdays/{workday_id}/close", response={200: CloseWorkdayOut, **ERRORS})
def close_workday(request: HttpRequest, workday_id: int, payload: CloseWorkdayIn):
    """
    Close a workday in one call.

    Validates member hours, blockers and the closure notes (day summary plus a
    completion percentage for every schedule task worked on). Either the
    workday moves to ``closed_pending_approval`` with its schedule nodes
    recomputed, or the full list of validation errors comes back and nothing
    is saved.
    """
    result = ClosingService.close_workday(workday_id, ClosingRequest(
        day_summary=payload.day_summary,
        next_day_plan=payload.next_day_plan,
        blockers=[blocker_draft(b) for b in payload.blockers],
        progress_updates=[
            ProgressUpdate(schedule_task_id=u.schedule_task_id, completion_pct=u.completion_pct)
            for u in payload.progress_updates
        ],
        acting_user_id=payload.acting_user_id,
    ))
    return CloseWorkdayOut(
        workday=workday_to_schema(result.workday),
        schedule_nodes=[node_to_schema(node) for node in result.nodes],
        warnings=[OvertimeWarningOut(**warning) for warning in result.warnings],
    )


@api.post("/workdays/{workday_id}/approve", response={200: WorkdayOut, **ERRORS})
def approve_workday(request: HttpRequest, workday_id: int, payload: ReviewIn):
    return workday_to_schema(ReviewService.approve(workday_id, payload.acting_user_id))


@api.post("/workdays/{workday_id}/reject", response={200: WorkdayOut, **ERRORS})
def reject_workday(request: HttpRequest, workday_id: int, payload: ReviewIn):
    return workday_to_schema(ReviewService.reject(workday_id, payload.acting_user_id, payload.reason))


@api.get("/schedule-nodes/{node_id}", response={200: ScheduleNodeOut, **ERRORS})
def get_schedule_node(request: HttpRequest, node_id: int):
    return node_to_schema(get_or_not_found(ScheduleNode, node_id, "Schedule node"))
