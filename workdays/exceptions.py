class WorkdayError(Exception):
    """Base class for every failure the workday core reports to its caller.

    ``details`` carries the identifiers (task, member, blocker index...) a
    client needs to point at the offending input. ``errors`` is filled by the
    closing orchestrator with every violation found across its phases.
    """
    code = "workday_error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.errors: list["WorkdayError"] = [self]

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class InvalidTaskReference(WorkdayError):
    code = "invalid_task_reference"
    status_code = 422


class InvalidScheduleReference(InvalidTaskReference):
    """Schedule task or node missing, or owned by another project."""


class InvalidTaskMembers(WorkdayError):
    code = "invalid_task_members"
    status_code = 422


class InvalidHours(WorkdayError):
    code = "invalid_hours"
    status_code = 422


class WorkdayNotActive(WorkdayError):
    code = "workday_not_active"
    status_code = 409


class InvalidTransition(WorkdayError):
    code = "invalid_transition"
    status_code = 409


class IncompleteHoursAllocation(WorkdayError):
    code = "incomplete_hours_allocation"
    status_code = 422


class InvalidBlocker(WorkdayError):
    code = "invalid_blocker"
    status_code = 422


class MissingClosureSummary(WorkdayError):
    code = "missing_closure_summary"
    status_code = 422


class InvalidProgressUpdate(WorkdayError):
    code = "invalid_progress_update"
    status_code = 422


class InvalidReview(WorkdayError):
    code = "invalid_review"
    status_code = 422


class DuplicateActiveWorkday(WorkdayError):
    code = "duplicate_active_workday"
    status_code = 409


class WorkdayNotFound(WorkdayError):
    code = "not_found"
    status_code = 404


class AggregationConflict(WorkdayError):
    """Another transaction holds the lock on a schedule node being recomputed."""
    code = "aggregation_conflict"
    status_code = 409


class PersistenceFailure(WorkdayError):
    """Opaque storage failure; the surrounding transaction has been rolled back."""
    code = "persistence_failure"
    status_code = 503
