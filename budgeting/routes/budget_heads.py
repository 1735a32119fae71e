from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from budgeting.database import get_db
from budgeting.middleware.auth import get_current_user
from budgeting.middleware.authorization import ADMIN_ROLES, require_roles
from budgeting.models.budget import BudgetHead
from budgeting.schemas.budget import BudgetHeadCreate, BudgetHeadResponse, BudgetHeadUpdate
from budgeting.services import head_service

router = APIRouter()


def _to_response(h: BudgetHead) -> BudgetHeadResponse:
    return BudgetHeadResponse(
        id=str(h.id),
        name=h.name,
        code=h.code,
        description=h.description,
        type=h.type,
        parent_id=str(h.parent_id) if h.parent_id else None,
        display_order=h.display_order,
        is_active=bool(h.is_active),
        allow_department_subitems=bool(h.allow_department_subitems),
        created_at=h.created_at.isoformat() if h.created_at else "",
    )


@router.get("", response_model=list[BudgetHeadResponse])
async def list_budget_heads(
    active_only: bool = Query(False),
    type: str = Query(None, pattern="^(income|expenditure)$"),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if active_only:
        heads = await head_service.list_active_budget_heads(db)
        if type:
            heads = [h for h in heads if h.type == type]
    else:
        heads = await head_service.list_budget_heads(db, head_type=type)
    return [_to_response(h) for h in heads]


@router.post("", response_model=BudgetHeadResponse, status_code=status.HTTP_201_CREATED)
async def create_budget_head(
    body: BudgetHeadCreate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    head = await head_service.create_budget_head(db, body.model_dump(), current_user)
    return _to_response(head)


@router.patch("/{head_id}", response_model=BudgetHeadResponse)
async def update_budget_head(
    head_id: str,
    body: BudgetHeadUpdate,
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    head = await head_service.update_budget_head(
        db, head_id, body.model_dump(exclude_unset=True), current_user
    )
    return _to_response(head)
