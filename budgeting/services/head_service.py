"""
Budget head catalog: ordered income/expenditure categories, one level of
sub-heads.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from budgeting.errors import ConflictError, NotFoundError, ValidationError
from budgeting.models.budget import BudgetHead, HeadType
from budgeting.services.audit_service import create_audit_log

logger = structlog.get_logger()

HEAD_FIELDS = (
    "name", "code", "description", "type", "parent_id",
    "display_order", "is_active", "allow_department_subitems",
)


def head_snapshot(head: BudgetHead) -> dict:
    return {
        f: (str(getattr(head, f)) if getattr(head, f) is not None else None)
        for f in HEAD_FIELDS
    }


async def list_active_budget_heads(session: AsyncSession) -> list[BudgetHead]:
    """Catalog seed for grid reconstruction."""
    result = await session.execute(
        select(BudgetHead)
        .where(BudgetHead.is_active == True)  # noqa: E712
        .order_by(BudgetHead.display_order, BudgetHead.code)
    )
    return list(result.scalars().all())


async def list_budget_heads(
    session: AsyncSession, head_type: Optional[str] = None
) -> list[BudgetHead]:
    q = select(BudgetHead)
    if head_type:
        q = q.where(BudgetHead.type == head_type)
    result = await session.execute(
        q.order_by(BudgetHead.type.desc(), BudgetHead.display_order, BudgetHead.code)
    )
    return list(result.scalars().all())


async def get_budget_head(session: AsyncSession, head_id) -> BudgetHead:
    result = await session.execute(select(BudgetHead).where(BudgetHead.id == head_id))
    head = result.scalar_one_or_none()
    if not head:
        raise NotFoundError("Budget head not found", code="BUDGET_HEAD_NOT_FOUND")
    return head


async def _has_children(session: AsyncSession, head_id) -> bool:
    result = await session.execute(
        select(func.count(BudgetHead.id)).where(BudgetHead.parent_id == head_id)
    )
    return bool(result.scalar() or 0)


async def _validate_parent(
    session: AsyncSession, parent_id, head_type: str, head_id=None
) -> Optional[BudgetHead]:
    """Parent must exist, be top-level, share the type, and not be the head itself."""
    if parent_id is None:
        return None
    if head_id is not None and str(parent_id) == str(head_id):
        raise ValidationError("A budget head cannot be its own parent", code="HEAD_PARENT_INVALID")
    parent = await get_budget_head(session, parent_id)
    if parent.parent_id is not None:
        raise ValidationError(
            "Sub-heads cannot have children; choose a top-level head as parent",
            code="HEAD_DEPTH_EXCEEDED",
        )
    if parent.type != head_type:
        raise ValidationError(
            f"Parent head is {parent.type}; a sub-head must share its parent's type",
            code="HEAD_PARENT_TYPE_MISMATCH",
        )
    if head_id is not None and await _has_children(session, head_id):
        raise ValidationError(
            "A head with sub-heads cannot itself become a sub-head",
            code="HEAD_DEPTH_EXCEEDED",
        )
    return parent


async def _check_unique(
    session: AsyncSession, code: str, head_type: str, display_order, parent_id, head_id=None
) -> None:
    q = select(BudgetHead.id).where(BudgetHead.code == code)
    if head_id is not None:
        q = q.where(BudgetHead.id != head_id)
    if (await session.execute(q)).scalar_one_or_none():
        raise ConflictError(f"Budget head code '{code}' already exists", code="HEAD_CODE_TAKEN")

    if parent_id is None:
        q = select(BudgetHead.id).where(
            BudgetHead.type == head_type,
            BudgetHead.parent_id.is_(None),
            BudgetHead.display_order == display_order,
        )
        if head_id is not None:
            q = q.where(BudgetHead.id != head_id)
        if (await session.execute(q)).scalar_one_or_none():
            raise ConflictError(
                f"Display order {display_order} is already used for {head_type} type. "
                "Please choose a different order.",
                code="HEAD_ORDER_TAKEN",
            )


async def next_subhead_defaults(session: AsyncSession, parent: BudgetHead) -> tuple[str, Decimal]:
    """Code PARENT-NN and display order parent + NN/10 for the next sub-head."""
    result = await session.execute(
        select(func.count(BudgetHead.id)).where(BudgetHead.parent_id == parent.id)
    )
    n = int(result.scalar() or 0) + 1
    code = f"{parent.code}-{n:02d}"
    order = Decimal(int(parent.display_order)) + Decimal(n) / 10
    return code, order


async def create_budget_head(
    session: AsyncSession,
    data: dict,
    current_user: dict,
) -> BudgetHead:
    head_type = HeadType(data["type"]).value
    parent = await _validate_parent(session, data.get("parent_id"), head_type)

    code = data.get("code")
    display_order = data.get("display_order")
    if parent is not None and (not code or display_order is None):
        default_code, default_order = await next_subhead_defaults(session, parent)
        code = code or default_code
        display_order = default_order if display_order is None else display_order
    if not code:
        raise ValidationError("Budget head code is required", code="HEAD_CODE_REQUIRED")
    if display_order is None:
        display_order = Decimal(1)

    await _check_unique(session, code, head_type, display_order, data.get("parent_id"))

    head = BudgetHead(
        name=data["name"],
        code=code,
        description=data.get("description"),
        type=head_type,
        parent_id=data.get("parent_id"),
        display_order=display_order,
        is_active=data.get("is_active", True),
        allow_department_subitems=data.get("allow_department_subitems", False),
        created_by=current_user.get("user_id"),
    )
    session.add(head)
    await session.flush()

    await create_audit_log(
        session,
        actor_id=current_user.get("user_id"),
        action="head_created",
        entity_type="budget_head",
        entity_id=str(head.id),
        after_state=head_snapshot(head),
        actor_email=current_user.get("email"),
    )
    logger.info("budget_head_created", head_id=str(head.id), code=code, type=head_type)
    return head


async def update_budget_head(
    session: AsyncSession,
    head_id,
    changes: dict,
    current_user: dict,
) -> BudgetHead:
    """Edit a head. Deactivation goes through is_active; heads are never deleted."""
    head = await get_budget_head(session, head_id)
    before = head_snapshot(head)

    new_type = HeadType(changes.get("type", head.type)).value
    new_parent = changes.get("parent_id", head.parent_id)
    if new_type != head.type and await _has_children(session, head.id):
        raise ValidationError(
            "Cannot change the type of a head that has sub-heads",
            code="HEAD_TYPE_LOCKED",
        )
    if "parent_id" in changes or "type" in changes:
        await _validate_parent(session, new_parent, new_type, head_id=head.id)

    await _check_unique(
        session,
        changes.get("code", head.code),
        new_type,
        changes.get("display_order", head.display_order),
        new_parent,
        head_id=head.id,
    )

    for field_name, value in changes.items():
        if field_name in HEAD_FIELDS:
            setattr(head, field_name, value)
    head.type = new_type
    await session.flush()

    await create_audit_log(
        session,
        actor_id=current_user.get("user_id"),
        action="head_updated",
        entity_type="budget_head",
        entity_id=str(head.id),
        before_state=before,
        after_state=head_snapshot(head),
        actor_email=current_user.get("email"),
    )
    logger.info("budget_head_updated", head_id=str(head.id))
    return head
