from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from budgeting.database import get_db
from budgeting.middleware.auth import get_current_user
from budgeting.middleware.authorization import SUBMIT_ROLES, department_scope, require_roles
from budgeting.models.budget import BudgetAllocation
from budgeting.schemas.budget import AllocationResponse, DepartmentEntriesSave, SaveEntriesResponse
from budgeting.services import allocation_service

router = APIRouter()


def _iso(value):
    return value.isoformat() if value else None


def _to_response(a: BudgetAllocation) -> AllocationResponse:
    head = a.head
    return AllocationResponse(
        id=str(a.id),
        cycle_id=str(a.cycle_id),
        head_id=str(a.head_id),
        department_id=str(a.department_id),
        period_number=a.period_number,
        allocated_amount=a.allocated_amount,
        approved_amount=a.approved_amount,
        status=a.status,
        notes=a.notes,
        submitted_by=str(a.submitted_by) if a.submitted_by else None,
        submitted_at=_iso(a.submitted_at),
        reviewed_by=str(a.reviewed_by) if a.reviewed_by else None,
        reviewed_at=_iso(a.reviewed_at),
        head_code=head.code if head else None,
        head_name=head.name if head else None,
        head_type=head.type if head else None,
        department_name=a.department.name if a.department else None,
    )


@router.get("", response_model=list[AllocationResponse])
async def list_budget_allocations(
    cycle_id: str = Query(None),
    department_id: str = Query(None),
    status_filter: str = Query(None, alias="status"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    department_id = department_scope(current_user, department_id)

    allocations = await allocation_service.list_allocations(
        db, cycle_id=cycle_id, department_id=department_id, status=status_filter
    )
    return [_to_response(a) for a in allocations]


@router.put(
    "/cycles/{cycle_id}/departments/{department_id}",
    response_model=SaveEntriesResponse,
)
async def save_department_entries(
    cycle_id: str,
    department_id: str,
    body: DepartmentEntriesSave,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*SUBMIT_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    department_scope(current_user, department_id)
    result = await allocation_service.save_department_entries(
        db,
        cycle_id,
        department_id,
        [e.model_dump() for e in body.entries],
        current_user,
        submit=body.submit,
        notes=body.notes,
    )
    return SaveEntriesResponse(
        created=result.created,
        updated=result.updated,
        submitted=result.submitted,
        allocations=[_to_response(a) for a in result.allocations],
    )
