from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from budgeting.database import get_db
from budgeting.middleware.auth import get_current_user
from budgeting.middleware.authorization import REVIEW_ROLES, require_roles
from budgeting.models.budget import HeadType
from budgeting.schemas.budget import (
    DepartmentGridResponse,
    DepartmentReviewRequest,
    GridTotalsResponse,
    HeadReviewRequest,
    HeadRowResponse,
    MarkUnderReviewRequest,
    ReviewGridResponse,
    ReviewRequest,
    ReviewResultResponse,
    ReviewSummaryResponse,
)
from budgeting.services import review_service
from budgeting.services.grid_service import DepartmentGrid, HeadRow, period_labels, summarize_grids
from budgeting.services.review_service import ReviewResult, ReviewTarget

logger = structlog.get_logger()
router = APIRouter()


def _row_response(row: HeadRow) -> HeadRowResponse:
    return HeadRowResponse(
        head_id=row.head_id,
        code=row.code,
        name=row.name,
        type=row.head_type.value,
        is_active=row.is_active,
        cells=row.cells,
        total=row.total,
        subtotal=row.subtotal,
        allocation_ids=[str(i) for i in row.allocation_ids],
        children=[_row_response(c) for c in row.children],
    )


def _grid_response(grid: DepartmentGrid) -> DepartmentGridResponse:
    t = grid.totals
    return DepartmentGridResponse(
        department_id=grid.department_id,
        department_name=grid.department_name,
        cycle_id=grid.cycle_id,
        period_count=grid.period_count,
        period_labels=period_labels(grid.period_count),
        income=[_row_response(r) for r in grid.head_tree.get(HeadType.INCOME, [])],
        expenditure=[_row_response(r) for r in grid.head_tree.get(HeadType.EXPENDITURE, [])],
        totals=GridTotalsResponse(
            income_by_period=t.income_by_period,
            expense_by_period=t.expense_by_period,
            income_total=t.income_total,
            expense_total=t.expense_total,
            net_total=t.net_total,
        ),
    )


def _result_response(result: ReviewResult) -> ReviewResultResponse:
    return ReviewResultResponse(
        decision=result.decision,
        updated_count=result.updated_count,
        reviewed_at=result.reviewed_at.isoformat(),
        batch_id=str(result.batch_id),
        updated_ids=result.updated_ids,
        skipped_ids=result.skipped_ids,
    )


@router.get("/grid", response_model=ReviewGridResponse)
async def get_review_grid(
    cycle_id: str = Query(None),
    department_id: str = Query(None),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*REVIEW_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    grids = await review_service.load_review_grids(db, cycle_id=cycle_id, department_id=department_id)
    summary = summarize_grids(grids)
    logger.info(
        "budget_review_grid_loaded",
        departments=summary.total_departments,
        line_items=summary.total_allocations,
    )
    return ReviewGridResponse(
        summary=ReviewSummaryResponse(
            total_departments=summary.total_departments,
            total_allocations=summary.total_allocations,
            total_income=summary.total_income,
            total_expense=summary.total_expense,
            net_budget=summary.net_budget,
        ),
        departments=[_grid_response(g) for g in grids],
    )


@router.post("", response_model=ReviewResultResponse)
async def review_allocations(
    body: ReviewRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*REVIEW_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    result = await review_service.review_allocations(
        db,
        body.allocation_ids,
        body.decision,
        body.notes,
        current_user,
        approved_amounts=body.approved_amounts,
    )
    return _result_response(result)


@router.post("/head", response_model=ReviewResultResponse)
async def review_head(
    body: HeadReviewRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*REVIEW_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    target = ReviewTarget(department_id=body.department_id, head_id=body.head_id, cycle_id=body.cycle_id)
    result = await review_service.review_target(
        db, target, body.decision, body.notes, current_user,
        approved_amounts=body.approved_amounts,
    )
    return _result_response(result)


@router.post("/department", response_model=ReviewResultResponse)
async def review_department(
    body: DepartmentReviewRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*REVIEW_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    target = ReviewTarget(department_id=body.department_id, cycle_id=body.cycle_id)
    result = await review_service.review_target(db, target, body.decision, body.notes, current_user)
    return _result_response(result)


@router.post("/under-review", response_model=ReviewResultResponse)
async def mark_under_review(
    body: MarkUnderReviewRequest,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*REVIEW_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    result = await review_service.mark_under_review(db, body.allocation_ids, current_user)
    return _result_response(result)
