"""
Status state machines for budget allocations and budget cycles.

Allocation:
  draft → submitted → under_review → approved | rejected | revision_requested
  submitted → approved | rejected | revision_requested
  revision_requested → draft | submitted
  approved, rejected: terminal

Cycle:
  draft → open → closed → archived, closed → open (administrator reopen)
"""

from enum import Enum
from typing import Optional

from budgeting.errors import AuthorizationError, ValidationError
from budgeting.models.budget import AllocationStatus, CycleStatus

A = AllocationStatus

ALLOCATION_TRANSITIONS: dict[AllocationStatus, frozenset] = {
    A.DRAFT: frozenset({A.SUBMITTED}),
    A.SUBMITTED: frozenset({A.UNDER_REVIEW, A.APPROVED, A.REJECTED, A.REVISION_REQUESTED}),
    A.UNDER_REVIEW: frozenset({A.APPROVED, A.REJECTED, A.REVISION_REQUESTED}),
    A.REVISION_REQUESTED: frozenset({A.DRAFT, A.SUBMITTED}),
    A.APPROVED: frozenset(),
    A.REJECTED: frozenset(),
}

CYCLE_TRANSITIONS: dict[CycleStatus, frozenset] = {
    CycleStatus.DRAFT: frozenset({CycleStatus.OPEN}),
    CycleStatus.OPEN: frozenset({CycleStatus.CLOSED}),
    CycleStatus.CLOSED: frozenset({CycleStatus.ARCHIVED, CycleStatus.OPEN}),
    CycleStatus.ARCHIVED: frozenset(),
}

# Statuses a department manager may still edit
MANAGER_EDITABLE = frozenset({A.DRAFT, A.REVISION_REQUESTED})


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REVISION_REQUESTED = "revision_requested"

    @property
    def target_status(self) -> AllocationStatus:
        return _DECISION_STATUS[self]

    @property
    def requires_notes(self) -> bool:
        return self is not ReviewDecision.APPROVE


_DECISION_STATUS = {
    ReviewDecision.APPROVE: A.APPROVED,
    ReviewDecision.REJECT: A.REJECTED,
    ReviewDecision.REVISION_REQUESTED: A.REVISION_REQUESTED,
}


def can_transition(current: str, target: str) -> bool:
    return AllocationStatus(target) in ALLOCATION_TRANSITIONS[AllocationStatus(current)]


def is_manager_editable(status: Optional[str]) -> bool:
    # A cell that doesn't exist yet is editable
    return status is None or AllocationStatus(status) in MANAGER_EDITABLE


def validate_cycle_transition(current: str, target: str) -> CycleStatus:
    try:
        target_status = CycleStatus(target)
    except ValueError:
        raise ValidationError(f"Unknown cycle status '{target}'", code="CYCLE_STATUS_INVALID")
    if target_status not in CYCLE_TRANSITIONS[CycleStatus(current)]:
        raise ValidationError(
            f"Cycle cannot move from '{current}' to '{target}'",
            code="CYCLE_TRANSITION_INVALID",
        )
    return target_status


def check_manager_write(cycle, department_id, current_user: Optional[dict] = None) -> None:
    """
    Guard for manager writes: the cycle must be open, the department must be
    on the cycle's allow-list (None means all), and a manager may only write
    their own department.
    """
    if cycle.status != CycleStatus.OPEN.value:
        raise AuthorizationError(
            f"Budget cycle '{cycle.name}' is {cycle.status}; only open cycles accept submissions",
            code="CYCLE_NOT_OPEN",
        )
    allowed = cycle.allowed_department_ids
    if allowed is not None and str(department_id) not in {str(d) for d in allowed}:
        raise AuthorizationError(
            "Department is not included in this budget cycle",
            code="CYCLE_DEPARTMENT_NOT_ALLOWED",
        )
    if current_user and current_user.get("role") == "manager":
        if str(current_user.get("department_id")) != str(department_id):
            raise AuthorizationError(
                "You can only submit budgets for your own department",
                code="INSUFFICIENT_PERMISSIONS",
            )


def validate_period(cycle, period_number: int) -> None:
    count = cycle.period_count
    if not 1 <= period_number <= count:
        raise ValidationError(
            f"Period {period_number} is out of range for a {cycle.period_type} cycle (1..{count})",
            code="PERIOD_OUT_OF_RANGE",
        )
