"""
Allocation store: department budget cells (cycle × head × department × period).

Managers save and submit their department's grid here; review outcomes are
written only by review_service.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload
import structlog

from budgeting.config import settings
from budgeting.errors import ConflictError, ValidationError
from budgeting.models.budget import (
    REVIEWABLE_STATUSES,
    AllocationStatus,
    BudgetAllocation,
    BudgetHead,
)
from budgeting.services.audit_service import create_audit_logs_batch
from budgeting.services.cycle_service import get_budget_cycle
from budgeting.services.transitions import (
    can_transition,
    check_manager_write,
    is_manager_editable,
    validate_period,
)

logger = structlog.get_logger()


@dataclass
class CellEntry:
    head_id: Any
    period_number: int
    amount: Decimal


@dataclass
class SaveResult:
    created: int = 0
    updated: int = 0
    submitted: int = 0
    allocations: list[BudgetAllocation] = field(default_factory=list)


def allocation_snapshot(a: BudgetAllocation) -> dict:
    return {
        "status": a.status,
        "allocated_amount": str(a.allocated_amount) if a.allocated_amount is not None else None,
        "approved_amount": str(a.approved_amount) if a.approved_amount is not None else None,
        "notes": a.notes,
    }


def _with_joins(q):
    return q.options(
        joinedload(BudgetAllocation.head),
        joinedload(BudgetAllocation.cycle),
        joinedload(BudgetAllocation.department),
    )


async def list_pending_allocations(
    session: AsyncSession,
    cycle_id=None,
    department_id=None,
    limit: Optional[int] = None,
) -> list[BudgetAllocation]:
    """Rows awaiting review (submitted / under_review), oldest submission first."""
    q = _with_joins(
        select(BudgetAllocation).where(BudgetAllocation.status.in_(REVIEWABLE_STATUSES))
    )
    if cycle_id:
        q = q.where(BudgetAllocation.cycle_id == cycle_id)
    if department_id:
        q = q.where(BudgetAllocation.department_id == department_id)
    result = await session.execute(
        q.order_by(BudgetAllocation.submitted_at.asc().nulls_last(), BudgetAllocation.id)
        .limit(limit or settings.PENDING_LIST_LIMIT)
    )
    return list(result.scalars().all())


async def list_allocations(
    session: AsyncSession,
    cycle_id=None,
    department_id=None,
    status: Optional[str] = None,
) -> list[BudgetAllocation]:
    q = _with_joins(select(BudgetAllocation))
    if cycle_id:
        q = q.where(BudgetAllocation.cycle_id == cycle_id)
    if department_id:
        q = q.where(BudgetAllocation.department_id == department_id)
    if status:
        q = q.where(BudgetAllocation.status == status)
    result = await session.execute(
        q.order_by(BudgetAllocation.department_id, BudgetAllocation.head_id, BudgetAllocation.period_number)
    )
    return list(result.scalars().all())


def parse_entries(raw_entries: list[dict], cycle) -> list[CellEntry]:
    """Validate shape, period range and amounts; reject duplicate cells."""
    entries = []
    seen = set()
    for raw in raw_entries:
        period = int(raw["period_number"])
        validate_period(cycle, period)
        try:
            amount = Decimal(str(raw.get("amount", 0) or 0))
        except InvalidOperation:
            raise ValidationError(f"Invalid amount {raw.get('amount')!r}", code="AMOUNT_INVALID")
        if amount < 0:
            raise ValidationError("Budget amounts cannot be negative", code="AMOUNT_NEGATIVE")
        key = (str(raw["head_id"]), period)
        if key in seen:
            raise ValidationError(
                f"Duplicate entry for head {key[0]} period {period}",
                code="DUPLICATE_CELL",
            )
        seen.add(key)
        entries.append(CellEntry(head_id=raw["head_id"], period_number=period, amount=amount))
    return entries


async def _load_heads(session: AsyncSession, head_ids) -> dict[str, BudgetHead]:
    if not head_ids:
        return {}
    result = await session.execute(select(BudgetHead).where(BudgetHead.id.in_(list(head_ids))))
    return {str(h.id): h for h in result.scalars().all()}


async def save_department_entries(
    session: AsyncSession,
    cycle_id,
    department_id,
    raw_entries: list[dict],
    current_user: dict,
    submit: bool = False,
    notes: Optional[str] = None,
) -> SaveResult:
    """
    Upsert a department's cells for a cycle and optionally submit them.

    New cells with a zero amount are skipped. Saving keeps each row's status;
    submitting moves every editable row of the department/cycle to submitted
    and clears any earlier review outcome.
    """
    cycle = await get_budget_cycle(session, cycle_id)
    check_manager_write(cycle, department_id, current_user)
    entries = parse_entries(raw_entries, cycle)

    heads = await _load_heads(session, {str(e.head_id) for e in entries})
    for e in entries:
        head = heads.get(str(e.head_id))
        if head is None or not head.is_active:
            raise ValidationError(
                f"Budget head {e.head_id} does not exist or is inactive",
                code="BUDGET_HEAD_INACTIVE",
            )

    result = await session.execute(
        select(BudgetAllocation)
        .where(
            BudgetAllocation.cycle_id == cycle.id,
            BudgetAllocation.department_id == department_id,
        )
        .with_for_update()
    )
    existing = {(str(a.head_id), a.period_number): a for a in result.scalars().all()}

    save = SaveResult()
    now = datetime.utcnow()
    user_id = current_user.get("user_id")
    created_rows, touched = [], []
    before_states = {}

    for e in entries:
        row = existing.get((str(e.head_id), e.period_number))
        if row is not None:
            if not is_manager_editable(row.status):
                raise ConflictError(
                    f"Cell for period {e.period_number} is {row.status} and can no longer be edited",
                    code="ALLOCATION_LOCKED",
                )
            before_states[str(row.id)] = allocation_snapshot(row)
            row.allocated_amount = e.amount
            touched.append(row)
            save.updated += 1
        elif e.amount > 0:
            row = BudgetAllocation(
                id=uuid.uuid4(),
                cycle_id=cycle.id,
                head_id=e.head_id,
                department_id=department_id,
                period_number=e.period_number,
                allocated_amount=e.amount,
                status=AllocationStatus.DRAFT.value,
                submitted_by=user_id,
            )
            session.add(row)
            existing[(str(e.head_id), e.period_number)] = row
            created_rows.append(row)
            save.created += 1

    if submit:
        to_submit = [a for a in existing.values() if is_manager_editable(a.status)]
        if not to_submit:
            raise ValidationError("No budget entries to submit", code="NOTHING_TO_SUBMIT")
        for row in to_submit:
            if not can_transition(row.status, AllocationStatus.SUBMITTED.value):
                continue
            before_states.setdefault(str(row.id), allocation_snapshot(row))
            row.status = AllocationStatus.SUBMITTED.value
            row.submitted_by = user_id
            row.submitted_at = now
            row.notes = notes
            row.reviewed_by = None
            row.reviewed_at = None
            row.approved_amount = None
            save.submitted += 1
        touched = to_submit
    elif not created_rows and not touched:
        raise ValidationError("No budget entries to save", code="NOTHING_TO_SAVE")

    await session.flush()

    batch_id = uuid.uuid4()
    details = {"cycle_id": str(cycle.id), "department_id": str(department_id)}
    if created_rows and not submit:
        await create_audit_logs_batch(
            session, user_id, "budget_created", "budget_allocation",
            [(r.id, None, allocation_snapshot(r)) for r in created_rows],
            created_at=now, batch_id=batch_id,
            actor_email=current_user.get("email"), details=details,
        )
    changed = touched
    if changed:
        await create_audit_logs_batch(
            session, user_id,
            "budget_submitted" if submit else "budget_updated",
            "budget_allocation",
            [(r.id, before_states.get(str(r.id)), allocation_snapshot(r)) for r in changed],
            created_at=now, batch_id=batch_id,
            actor_email=current_user.get("email"), details=details,
        )

    save.allocations = await list_allocations(session, cycle_id=cycle.id, department_id=department_id)
    logger.info(
        "budget_entries_saved",
        cycle_id=str(cycle.id),
        department_id=str(department_id),
        created=save.created,
        updated=save.updated,
        submitted=save.submitted,
    )
    return save
