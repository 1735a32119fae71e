from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from budgeting.database import get_db
from budgeting.middleware.auth import get_current_user
from budgeting.middleware.authorization import ADMIN_ROLES, require_roles
from budgeting.models.budget import BudgetCycle
from budgeting.schemas.budget import (
    BudgetCycleCreate,
    BudgetCycleResponse,
    BudgetCycleTransition,
    BudgetCycleUpdate,
    BudgetTotalsResponse,
    CycleDashboardResponse,
    DepartmentStatusResponse,
)
from budgeting.services import cycle_service
from budgeting.services.dashboard_service import get_cycle_dashboard

router = APIRouter()


def _to_response(c: BudgetCycle) -> BudgetCycleResponse:
    return BudgetCycleResponse(
        id=str(c.id),
        name=c.name,
        fiscal_year=c.fiscal_year,
        period_type=c.period_type,
        period_count=c.period_count,
        start_date=c.start_date.isoformat(),
        end_date=c.end_date.isoformat(),
        status=c.status,
        allowed_department_ids=(
            [str(d) for d in c.allowed_department_ids]
            if c.allowed_department_ids is not None else None
        ),
        created_at=c.created_at.isoformat() if c.created_at else "",
    )


@router.get("", response_model=list[BudgetCycleResponse])
async def list_budget_cycles(
    status_filter: str = Query(None, alias="status"),
    fiscal_year: int = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    cycles = await cycle_service.list_budget_cycles(db, status=status_filter, fiscal_year=fiscal_year)
    return [_to_response(c) for c in cycles]


@router.get("/{cycle_id}", response_model=BudgetCycleResponse)
async def get_budget_cycle(
    cycle_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return _to_response(await cycle_service.get_budget_cycle(db, cycle_id))


@router.post("", response_model=BudgetCycleResponse, status_code=status.HTTP_201_CREATED)
async def create_budget_cycle(
    body: BudgetCycleCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    cycle = await cycle_service.create_budget_cycle(db, body.model_dump(), current_user)
    return _to_response(cycle)


@router.patch("/{cycle_id}", response_model=BudgetCycleResponse)
async def update_budget_cycle(
    cycle_id: str,
    body: BudgetCycleUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    cycle = await cycle_service.update_budget_cycle(
        db, cycle_id, body.model_dump(exclude_unset=True), current_user
    )
    return _to_response(cycle)


@router.post("/{cycle_id}/transition", response_model=BudgetCycleResponse)
async def transition_budget_cycle(
    cycle_id: str,
    body: BudgetCycleTransition,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    cycle = await cycle_service.transition_budget_cycle(db, cycle_id, body.status, current_user)
    return _to_response(cycle)


@router.get("/{cycle_id}/dashboard", response_model=CycleDashboardResponse)
async def cycle_dashboard(
    cycle_id: str,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    dash = await get_cycle_dashboard(db, cycle_id)
    d, t = dash.departments, dash.totals
    return CycleDashboardResponse(
        cycle_id=dash.cycle_id,
        cycle_name=dash.cycle_name,
        status=dash.status,
        departments=DepartmentStatusResponse(
            draft=d.draft, pending=d.pending, approved=d.approved,
            rejected=d.rejected, revision=d.revision, total=d.total,
        ),
        totals=BudgetTotalsResponse(
            income=t.income, expense=t.expense,
            approved_income=t.approved_income, approved_expense=t.approved_expense,
            approved_net=t.approved_net,
        ),
    )
