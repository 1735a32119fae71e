from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from budgeting.database import get_db
from budgeting.middleware.auth import get_current_user
from budgeting.middleware.authorization import REVIEW_ROLES, require_roles
from budgeting.schemas.budget import AuditAllocationInfo, BudgetAuditLogResponse
from budgeting.services import audit_service
from budgeting.services.audit_service import AuditEntry

router = APIRouter()


def _allocation_info(a) -> Optional[AuditAllocationInfo]:
    if a is None:
        return None
    return AuditAllocationInfo(
        cycle_name=a.cycle.name if a.cycle else None,
        head_name=a.head.name if a.head else None,
        department_name=a.department.name if a.department else None,
        period_number=a.period_number,
        allocated_amount=a.allocated_amount,
        approved_amount=a.approved_amount,
        status=a.status,
    )


def _to_response(entry: AuditEntry) -> BudgetAuditLogResponse:
    log = entry.log
    return BudgetAuditLogResponse(
        id=str(log.id),
        actor_id=str(log.actor_id) if log.actor_id else None,
        actor_email=log.actor_email,
        action=log.action,
        entity_type=log.entity_type,
        entity_id=str(log.entity_id),
        batch_id=str(log.batch_id) if log.batch_id else None,
        before_state=log.before_state,
        after_state=log.after_state,
        changed_fields=log.changed_fields,
        details=log.details,
        created_at=log.created_at.isoformat() if log.created_at else "",
        allocation=_allocation_info(entry.allocation),
    )


@router.get("", response_model=list[BudgetAuditLogResponse])
async def list_budget_audit_logs(
    entity_type: Optional[str] = Query(None),
    batch_id: Optional[str] = Query(None),
    cycle_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    limit: Optional[int] = Query(None, ge=1, le=500),
    current_user: dict = Depends(get_current_user),
    _auth: None = Depends(require_roles(*REVIEW_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Newest first. batch_id regroups one bulk review; cycle_id covers the cycle and its cells."""
    entries = await audit_service.list_budget_audit_logs(
        db,
        entity_type=entity_type,
        batch_id=batch_id,
        cycle_id=cycle_id,
        action=action,
        limit=limit,
    )
    return [_to_response(e) for e in entries]
