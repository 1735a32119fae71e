"""
Cycle dashboard: how far each department has progressed through a cycle,
and budgeted vs approved totals by head type.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from budgeting.models.budget import AllocationStatus, HeadType
from budgeting.services.allocation_service import list_allocations
from budgeting.services.cycle_service import get_budget_cycle
from budgeting.services.grid_service import ZERO, to_amount

A = AllocationStatus


@dataclass
class DepartmentStatusSummary:
    draft: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    revision: int = 0

    @property
    def total(self) -> int:
        return self.draft + self.pending + self.approved + self.rejected + self.revision


@dataclass
class BudgetTotals:
    income: Decimal = ZERO
    expense: Decimal = ZERO
    approved_income: Decimal = ZERO
    approved_expense: Decimal = ZERO

    @property
    def approved_net(self) -> Decimal:
        return self.approved_income - self.approved_expense


@dataclass
class CycleDashboard:
    cycle_id: str
    cycle_name: str
    status: str
    departments: DepartmentStatusSummary = field(default_factory=DepartmentStatusSummary)
    totals: BudgetTotals = field(default_factory=BudgetTotals)


def primary_department_status(statuses: set[str]) -> str:
    """
    Collapse a department's row statuses into one bucket. Anything awaiting
    review wins; otherwise the most advanced outcome present.
    """
    if A.SUBMITTED.value in statuses or A.UNDER_REVIEW.value in statuses:
        return "pending"
    if A.DRAFT.value in statuses and A.APPROVED.value not in statuses:
        return "draft"
    if A.APPROVED.value in statuses:
        return "approved"
    if A.REJECTED.value in statuses:
        return "rejected"
    if A.REVISION_REQUESTED.value in statuses:
        return "revision"
    return "draft"


def summarize_department_statuses(allocations: Iterable[Any]) -> DepartmentStatusSummary:
    by_dept: dict[str, set[str]] = {}
    for a in allocations:
        by_dept.setdefault(str(a.department_id), set()).add(a.status)

    summary = DepartmentStatusSummary()
    for statuses in by_dept.values():
        bucket = primary_department_status(statuses)
        setattr(summary, bucket, getattr(summary, bucket) + 1)
    return summary


def compute_budget_totals(allocations: Iterable[Any]) -> BudgetTotals:
    """Requested amounts across all rows; approved amounts only from approved rows."""
    totals = BudgetTotals()
    for a in allocations:
        head = getattr(a, "head", None)
        if head is None:
            continue
        amount = to_amount(a.allocated_amount)
        approved = ZERO
        if a.status == A.APPROVED.value:
            approved = to_amount(a.approved_amount if a.approved_amount is not None else a.allocated_amount)

        head_type = HeadType(head.type)
        if head_type is HeadType.INCOME:
            totals.income += amount
            totals.approved_income += approved
        elif head_type is HeadType.EXPENDITURE:
            totals.expense += amount
            totals.approved_expense += approved
    return totals


async def get_cycle_dashboard(session: AsyncSession, cycle_id) -> CycleDashboard:
    cycle = await get_budget_cycle(session, cycle_id)
    allocations = await list_allocations(session, cycle_id=cycle.id)
    return CycleDashboard(
        cycle_id=str(cycle.id),
        cycle_name=cycle.name,
        status=cycle.status,
        departments=summarize_department_statuses(allocations),
        totals=compute_budget_totals(allocations),
    )
