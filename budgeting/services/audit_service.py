"""Audit logging service: records budget entity state changes and reads them back."""

from dataclasses import dataclass
from typing import Iterable, Optional
from datetime import datetime
import uuid

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
import structlog

from budgeting.config import settings
from budgeting.errors import ValidationError
from budgeting.models.audit_log import AuditLog
from budgeting.models.budget import BudgetAllocation

logger = structlog.get_logger()

# Activity names shown in the budget audit log
BUDGET_ACTIONS = frozenset({
    "budget_created",
    "budget_submitted",
    "budget_approved",
    "budget_rejected",
    "budget_revision_requested",
    "budget_under_review",
    "budget_updated",
    "cycle_created",
    "cycle_updated",
    "head_created",
    "head_updated",
})

BUDGET_ENTITY_TYPES = ("budget_allocation", "budget_cycle", "budget_head")


def _to_uuid(value, field_name: str, required: bool = False) -> Optional[uuid.UUID]:
    if value is None:
        if required:
            raise ValueError(f"{field_name} is required")
        return None
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        if required:
            raise ValueError(f"{field_name} must be a valid UUID")
        logger.warning("audit_invalid_uuid", field=field_name, value=str(value))
        return None


def _compute_changed_fields(
    before: Optional[dict], after: Optional[dict]
) -> Optional[list[str]]:
    """Diff two state dicts and return list of changed field names."""
    if not before or not after:
        return None
    changed = []
    for key in sorted(set(before.keys()) | set(after.keys())):
        if before.get(key) != after.get(key):
            changed.append(key)
    return changed or None


def _build_entry(
    actor_id,
    action: str,
    entity_type: str,
    entity_id,
    before_state: Optional[dict],
    after_state: Optional[dict],
    actor_email: Optional[str],
    details: Optional[dict],
    batch_id: Optional[uuid.UUID],
    created_at: datetime,
) -> AuditLog:
    if action not in BUDGET_ACTIONS:
        raise ValueError(f"Unknown audit action '{action}'")
    return AuditLog(
        actor_id=_to_uuid(actor_id, "actor_id"),
        actor_email=actor_email,
        action=action,
        entity_type=entity_type,
        entity_id=_to_uuid(entity_id, "entity_id", required=True),
        before_state=before_state,
        after_state=after_state,
        changed_fields=_compute_changed_fields(before_state, after_state),
        batch_id=batch_id,
        details=details,
        created_at=created_at,
    )


async def create_audit_log(
    session: AsyncSession,
    actor_id: Optional[str],
    action: str,
    entity_type: str,
    entity_id: str,
    before_state: Optional[dict] = None,
    after_state: Optional[dict] = None,
    actor_email: Optional[str] = None,
    details: Optional[dict] = None,
) -> AuditLog:
    """
    Create an audit log entry.

    Uses session.flush(); caller owns the transaction.
    """
    audit = _build_entry(
        actor_id, action, entity_type, entity_id, before_state, after_state,
        actor_email, details, None, datetime.utcnow(),
    )
    session.add(audit)
    await session.flush()

    logger.info(
        "audit_log_created",
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor_id=str(actor_id) if actor_id else None,
    )
    return audit


async def create_audit_logs_batch(
    session: AsyncSession,
    actor_id: Optional[str],
    action: str,
    entity_type: str,
    entries: Iterable[tuple],
    created_at: datetime,
    batch_id: uuid.UUID,
    actor_email: Optional[str] = None,
    details: Optional[dict] = None,
) -> list[AuditLog]:
    """
    One audit row per (entity_id, before_state, after_state) entry, all sharing
    created_at and batch_id so a bulk action can be regrouped later.
    """
    audits = [
        _build_entry(
            actor_id, action, entity_type, entity_id, before, after,
            actor_email, details, batch_id, created_at,
        )
        for entity_id, before, after in entries
    ]
    if not audits:
        return []
    session.add_all(audits)
    await session.flush()

    logger.info(
        "audit_log_batch_created",
        action=action,
        entity_type=entity_type,
        batch_id=str(batch_id),
        count=len(audits),
    )
    return audits


@dataclass
class AuditEntry:
    """An audit row plus the allocation it refers to, when it refers to one."""

    log: AuditLog
    allocation: Optional[BudgetAllocation] = None


def _filter_uuid(value, name: str) -> Optional[uuid.UUID]:
    if value is None:
        return None
    try:
        return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {name} {value!r}", code="AUDIT_FILTER_INVALID")


async def list_budget_audit_logs(
    session: AsyncSession,
    entity_type: Optional[str] = None,
    batch_id=None,
    cycle_id=None,
    action: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[AuditEntry]:
    """
    Budget audit trail, newest first.

    cycle_id matches the cycle's own rows and the rows of every allocation in
    it. Allocation rows come back with the allocation's cycle, head and
    department loaded so callers can label them.
    """
    if entity_type is not None and entity_type not in BUDGET_ENTITY_TYPES:
        raise ValidationError(
            f"Unknown audit entity type '{entity_type}'", code="AUDIT_FILTER_INVALID"
        )
    if action is not None and action not in BUDGET_ACTIONS:
        raise ValidationError(f"Unknown audit action '{action}'", code="AUDIT_FILTER_INVALID")
    batch = _filter_uuid(batch_id, "batch_id")
    cycle = _filter_uuid(cycle_id, "cycle_id")

    entity_types = [entity_type] if entity_type else list(BUDGET_ENTITY_TYPES)
    q = select(AuditLog).where(AuditLog.entity_type.in_(entity_types))
    if batch is not None:
        q = q.where(AuditLog.batch_id == batch)
    if action:
        q = q.where(AuditLog.action == action)
    if cycle is not None:
        in_cycle = select(BudgetAllocation.id).where(BudgetAllocation.cycle_id == cycle)
        q = q.where(or_(
            and_(AuditLog.entity_type == "budget_cycle", AuditLog.entity_id == cycle),
            and_(AuditLog.entity_type == "budget_allocation", AuditLog.entity_id.in_(in_cycle)),
        ))

    result = await session.execute(
        q.order_by(AuditLog.created_at.desc(), AuditLog.id)
        .limit(limit or settings.AUDIT_LOG_LIMIT)
    )
    logs = list(result.scalars().all())

    allocation_ids = {log.entity_id for log in logs if log.entity_type == "budget_allocation"}
    allocations = {}
    if allocation_ids:
        rows = await session.execute(
            select(BudgetAllocation)
            .where(BudgetAllocation.id.in_(list(allocation_ids)))
            .options(
                joinedload(BudgetAllocation.cycle),
                joinedload(BudgetAllocation.head),
                joinedload(BudgetAllocation.department),
            )
        )
        allocations = {str(a.id): a for a in rows.scalars().all()}

    return [
        AuditEntry(
            log=log,
            allocation=allocations.get(str(log.entity_id))
            if log.entity_type == "budget_allocation" else None,
        )
        for log in logs
    ]
