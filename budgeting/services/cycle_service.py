"""
Budget cycle registry: named fiscal period series and their lifecycle.

All functions use the caller's session (no commit). get_db() auto-commits.
"""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from budgeting.errors import NotFoundError, ValidationError
from budgeting.models.budget import BudgetCycle, CycleStatus, PeriodType
from budgeting.services.audit_service import create_audit_log
from budgeting.services.transitions import validate_cycle_transition

logger = structlog.get_logger()

CYCLE_FIELDS = (
    "name", "fiscal_year", "period_type", "start_date", "end_date",
    "status", "allowed_department_ids",
)


def cycle_snapshot(cycle: BudgetCycle) -> dict:
    snap = {}
    for f in CYCLE_FIELDS:
        value = getattr(cycle, f)
        if f == "allowed_department_ids" and value is not None:
            snap[f] = sorted(str(d) for d in value)
        elif f in ("start_date", "end_date") and value is not None:
            snap[f] = value.isoformat()
        else:
            snap[f] = value
    return snap


def _department_ids(values) -> Optional[list[uuid.UUID]]:
    if values is None:
        return None
    try:
        return [uuid.UUID(str(v)) for v in values]
    except ValueError:
        raise ValidationError("allowed_department_ids must be UUIDs", code="CYCLE_DEPARTMENTS_INVALID")


def _validate_dates(start_date, end_date) -> None:
    if end_date < start_date:
        raise ValidationError("Cycle end date must not precede its start date", code="CYCLE_DATES_INVALID")


async def list_budget_cycles(
    session: AsyncSession,
    status: Optional[str] = None,
    fiscal_year: Optional[int] = None,
) -> list[BudgetCycle]:
    q = select(BudgetCycle)
    if status:
        q = q.where(BudgetCycle.status == status)
    if fiscal_year:
        q = q.where(BudgetCycle.fiscal_year == fiscal_year)
    result = await session.execute(
        q.order_by(BudgetCycle.fiscal_year.desc(), BudgetCycle.start_date.desc())
    )
    return list(result.scalars().all())


async def get_budget_cycle(session: AsyncSession, cycle_id, for_update: bool = False) -> BudgetCycle:
    q = select(BudgetCycle).where(BudgetCycle.id == cycle_id)
    if for_update:
        q = q.with_for_update()
    result = await session.execute(q)
    cycle = result.scalar_one_or_none()
    if not cycle:
        raise NotFoundError("Budget cycle not found", code="BUDGET_CYCLE_NOT_FOUND")
    return cycle


async def create_budget_cycle(
    session: AsyncSession, data: dict, current_user: dict
) -> BudgetCycle:
    """New cycles start in draft unless created directly as open."""
    _validate_dates(data["start_date"], data["end_date"])
    status = CycleStatus(data.get("status", CycleStatus.DRAFT.value))
    if status not in (CycleStatus.DRAFT, CycleStatus.OPEN):
        raise ValidationError("New cycles must start as draft or open", code="CYCLE_STATUS_INVALID")

    cycle = BudgetCycle(
        name=data["name"],
        fiscal_year=data["fiscal_year"],
        period_type=PeriodType(data["period_type"]).value,
        start_date=data["start_date"],
        end_date=data["end_date"],
        status=status.value,
        allowed_department_ids=_department_ids(data.get("allowed_department_ids")),
        created_by=current_user.get("user_id"),
    )
    session.add(cycle)
    await session.flush()

    await create_audit_log(
        session,
        actor_id=current_user.get("user_id"),
        action="cycle_created",
        entity_type="budget_cycle",
        entity_id=str(cycle.id),
        after_state=cycle_snapshot(cycle),
        actor_email=current_user.get("email"),
    )
    logger.info("budget_cycle_created", cycle_id=str(cycle.id), period_type=cycle.period_type)
    return cycle


async def update_budget_cycle(
    session: AsyncSession, cycle_id, changes: dict, current_user: dict
) -> BudgetCycle:
    """Edit cycle attributes. Status changes go through transition_budget_cycle."""
    cycle = await get_budget_cycle(session, cycle_id, for_update=True)
    before = cycle_snapshot(cycle)

    if "status" in changes:
        raise ValidationError("Use the transition endpoint to change cycle status", code="CYCLE_STATUS_READONLY")
    if "period_type" in changes and cycle.status != CycleStatus.DRAFT.value:
        raise ValidationError(
            "Period type can only change while the cycle is a draft",
            code="CYCLE_PERIOD_TYPE_LOCKED",
        )
    _validate_dates(
        changes.get("start_date", cycle.start_date),
        changes.get("end_date", cycle.end_date),
    )

    for field_name, value in changes.items():
        if field_name == "period_type":
            value = PeriodType(value).value
        elif field_name == "allowed_department_ids":
            value = _department_ids(value)
        setattr(cycle, field_name, value)
    await session.flush()

    await create_audit_log(
        session,
        actor_id=current_user.get("user_id"),
        action="cycle_updated",
        entity_type="budget_cycle",
        entity_id=str(cycle.id),
        before_state=before,
        after_state=cycle_snapshot(cycle),
        actor_email=current_user.get("email"),
    )
    return cycle


async def transition_budget_cycle(
    session: AsyncSession, cycle_id, target_status: str, current_user: dict
) -> BudgetCycle:
    cycle = await get_budget_cycle(session, cycle_id, for_update=True)
    previous = cycle.status
    new_status = validate_cycle_transition(previous, target_status)

    cycle.status = new_status.value
    await session.flush()

    await create_audit_log(
        session,
        actor_id=current_user.get("user_id"),
        action="cycle_updated",
        entity_type="budget_cycle",
        entity_id=str(cycle.id),
        before_state={"status": previous},
        after_state={"status": cycle.status},
        actor_email=current_user.get("email"),
    )
    logger.info(
        "budget_cycle_transitioned",
        cycle_id=str(cycle.id),
        from_status=previous,
        to_status=cycle.status,
    )
    return cycle
