"""
Bulk review: applies one reviewer decision to a batch of allocation rows.

A batch is resolved from a review target (one head row of a department grid,
or the whole grid) or given as explicit ids. The batch runs inside a
savepoint: rows are locked with SELECT ... FOR UPDATE, every eligible row gets
the same status, reviewer, notes and reviewed_at, audit rows are written with
a shared batch_id, and any store error rolls the whole batch back.

Rows that are no longer submitted/under_review (someone else already decided
them) are skipped and reported, not treated as a failure.
"""

import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from budgeting.config import settings
from budgeting.errors import AuthorizationError, StoreFailure, ValidationError
from budgeting.models.budget import (
    REVIEWABLE_STATUSES,
    AllocationStatus,
    BudgetAllocation,
    BudgetCycle,
)
from budgeting.services.allocation_service import allocation_snapshot, list_pending_allocations
from budgeting.services.audit_service import create_audit_logs_batch
from budgeting.services.grid_service import DepartmentGrid, build_review_grids
from budgeting.services.head_service import list_active_budget_heads
from budgeting.services.notification_service import ReviewSummaryMessage, notify_department
from budgeting.services.transitions import ReviewDecision

logger = structlog.get_logger()

REVIEWER_ROLES = frozenset({"admin", "cfo", "finance_head", "finance"})

AUDIT_ACTIONS = {
    ReviewDecision.APPROVE: "budget_approved",
    ReviewDecision.REJECT: "budget_rejected",
    ReviewDecision.REVISION_REQUESTED: "budget_revision_requested",
}


@dataclass
class ReviewTarget:
    """head_id=None targets every cell of the department's grid."""

    department_id: Any
    head_id: Any = None
    cycle_id: Any = None


@dataclass
class ReviewResult:
    decision: str
    updated_count: int
    reviewed_at: datetime
    batch_id: uuid.UUID
    updated_ids: list[str] = field(default_factory=list)
    skipped_ids: list[str] = field(default_factory=list)


def check_reviewer(reviewer: dict) -> None:
    if not reviewer or not reviewer.get("user_id"):
        raise AuthorizationError("Reviewer identity is required", code="REVIEWER_REQUIRED")
    if reviewer.get("role") not in REVIEWER_ROLES:
        raise AuthorizationError(
            f"Role '{reviewer.get('role')}' cannot review budgets",
            code="INSUFFICIENT_PERMISSIONS",
        )


def _parse_decision(decision) -> ReviewDecision:
    try:
        return ReviewDecision(decision)
    except ValueError:
        raise ValidationError(f"Unknown review decision '{decision}'", code="REVIEW_DECISION_INVALID")


def canonical_id(value) -> str:
    """Lowercase hyphenated form, so ids compare equal to str(row.id)."""
    try:
        return str(value if isinstance(value, uuid.UUID) else uuid.UUID(str(value)))
    except ValueError:
        raise ValidationError(f"Invalid allocation id {value!r}", code="ALLOCATION_ID_INVALID")


def _dedupe_ids(ids: Iterable[Any]) -> list[str]:
    seen, out = set(), []
    for i in ids:
        key = canonical_id(i)
        if key not in seen:
            seen.add(key)
            out.append(key)
    return out


def validate_review_request(
    ids: Iterable[Any],
    decision,
    notes: Optional[str],
    approved_amounts: Optional[dict] = None,
) -> tuple[ReviewDecision, list[str], Optional[str], dict[str, Decimal]]:
    """Everything checkable before touching the store."""
    parsed = _parse_decision(decision)
    notes = notes.strip() if notes else None
    if parsed.requires_notes and not notes:
        raise ValidationError(
            "Notes are required when rejecting or requesting a revision",
            code="REVIEW_NOTES_REQUIRED",
        )

    id_list = _dedupe_ids(ids)
    if not id_list:
        raise ValidationError("No allocations selected for review", code="REVIEW_EMPTY_SELECTION")
    if len(id_list) > settings.REVIEW_BATCH_LIMIT:
        raise ValidationError(
            f"A review batch is limited to {settings.REVIEW_BATCH_LIMIT} allocations",
            code="REVIEW_BATCH_TOO_LARGE",
        )

    overrides: dict[str, Decimal] = {}
    if approved_amounts:
        if parsed is not ReviewDecision.APPROVE:
            raise ValidationError(
                "Approved amounts can only be given when approving",
                code="REVIEW_OVERRIDE_NOT_ALLOWED",
            )
        allowed = set(id_list)
        for raw_key, value in approved_amounts.items():
            key = canonical_id(raw_key)
            if key not in allowed:
                raise ValidationError(
                    f"Approved amount given for allocation {key} outside the review batch",
                    code="REVIEW_OVERRIDE_UNKNOWN_ID",
                )
            try:
                amount = Decimal(str(value))
            except InvalidOperation:
                raise ValidationError(f"Invalid approved amount {value!r}", code="AMOUNT_INVALID")
            if amount < 0:
                raise ValidationError("Approved amounts cannot be negative", code="AMOUNT_NEGATIVE")
            overrides[key] = amount

    return parsed, id_list, notes, overrides


def resolve_review_target(grids: Iterable[DepartmentGrid], target: ReviewTarget) -> list:
    """Allocation ids under (department, head), or under the whole department grid."""
    dept = str(target.department_id)
    cycle = str(target.cycle_id) if target.cycle_id is not None else None
    ids = []
    for grid in grids:
        if grid.department_id != dept:
            continue
        if cycle is not None and grid.cycle_id != cycle:
            continue
        ids.extend(grid.allocation_ids(target.head_id))
    if not ids:
        raise ValidationError(
            "No pending allocations found for this review target",
            code="REVIEW_EMPTY_SELECTION",
        )
    return ids


async def _lock_rows(session: AsyncSession, ids: list[str]) -> list[BudgetAllocation]:
    result = await session.execute(
        select(BudgetAllocation)
        .where(BudgetAllocation.id.in_(ids))
        .order_by(BudgetAllocation.id)
        .with_for_update()
    )
    return list(result.scalars().all())


async def _cycle_names(session: AsyncSession, cycle_ids: set[str]) -> dict[str, str]:
    if not cycle_ids:
        return {}
    result = await session.execute(
        select(BudgetCycle).where(BudgetCycle.id.in_(list(cycle_ids)))
    )
    return {str(c.id): c.name for c in result.scalars().all()}


def _partition(rows: list[BudgetAllocation], ids: list[str]):
    found = {str(r.id): r for r in rows}
    eligible, skipped = [], []
    for i in ids:
        row = found.get(i)
        if row is None or row.status not in REVIEWABLE_STATUSES:
            skipped.append(i)
        else:
            eligible.append(row)
    return eligible, skipped


async def _notify_departments(
    session: AsyncSession,
    rows: list[BudgetAllocation],
    decision: ReviewDecision,
    notes: Optional[str],
) -> None:
    """One summary notification per department touched by the batch."""
    by_dept: dict[str, list[BudgetAllocation]] = defaultdict(list)
    for row in rows:
        by_dept[str(row.department_id)].append(row)
    names = await _cycle_names(session, {str(r.cycle_id) for r in rows})

    for dept_rows in by_dept.values():
        cycle_ids = sorted({str(r.cycle_id) for r in dept_rows})
        await notify_department(
            session,
            dept_rows[0].department_id,
            ReviewSummaryMessage(
                count=len(dept_rows),
                decision=decision.value,
                cycle_id=cycle_ids[0] if len(cycle_ids) == 1 else None,
                cycle_name=", ".join(names.get(c, c) for c in cycle_ids),
                notes=notes,
            ),
        )


async def review_allocations(
    session: AsyncSession,
    ids: Iterable[Any],
    decision,
    notes: Optional[str],
    reviewer: dict,
    approved_amounts: Optional[dict] = None,
) -> ReviewResult:
    """
    Apply one decision to every eligible row in ids as a single unit.

    approved_amount is the override for the row when given, otherwise the
    requested amount, on approve; it is cleared for reject/revision.
    Raises ValidationError / AuthorizationError before any write, and
    StoreFailure (nothing applied) if the store fails mid-batch.
    """
    check_reviewer(reviewer)
    parsed, id_list, notes, overrides = validate_review_request(
        ids, decision, notes, approved_amounts
    )
    target_status = parsed.target_status.value
    reviewed_at = datetime.utcnow()
    batch_id = uuid.uuid4()
    reviewer_id = reviewer["user_id"]

    try:
        async with session.begin_nested():
            rows = await _lock_rows(session, id_list)
            eligible, skipped = _partition(rows, id_list)

            entries = []
            for row in eligible:
                before = allocation_snapshot(row)
                row.status = target_status
                row.reviewed_by = reviewer_id
                row.reviewed_at = reviewed_at
                row.notes = notes
                if parsed is ReviewDecision.APPROVE:
                    row.approved_amount = overrides.get(str(row.id), row.allocated_amount)
                else:
                    row.approved_amount = None
                entries.append((row.id, before, allocation_snapshot(row)))

            if eligible:
                await session.flush()
                await create_audit_logs_batch(
                    session,
                    reviewer_id,
                    AUDIT_ACTIONS[parsed],
                    "budget_allocation",
                    entries,
                    created_at=reviewed_at,
                    batch_id=batch_id,
                    actor_email=reviewer.get("email"),
                    details={"decision": parsed.value, "notes": notes, "count": len(eligible)},
                )
    except SQLAlchemyError as e:
        logger.error(
            "budget_review_store_failure",
            batch_id=str(batch_id),
            decision=parsed.value,
            requested=len(id_list),
            error=str(e),
        )
        raise StoreFailure("Review not completed", applied_count=0) from e

    if skipped:
        logger.warning(
            "budget_review_rows_skipped",
            batch_id=str(batch_id),
            skipped=len(skipped),
        )
    logger.info(
        "budget_review_applied",
        batch_id=str(batch_id),
        decision=parsed.value,
        updated=len(eligible),
        reviewer_id=str(reviewer_id),
    )

    if eligible:
        await _notify_departments(session, eligible, parsed, notes)

    return ReviewResult(
        decision=parsed.value,
        updated_count=len(eligible),
        reviewed_at=reviewed_at,
        batch_id=batch_id,
        updated_ids=[str(r.id) for r in eligible],
        skipped_ids=skipped,
    )


async def load_review_grids(
    session: AsyncSession, cycle_id=None, department_id=None
) -> list[DepartmentGrid]:
    """
    Fetch pending rows and the active catalog and build the review grids.

    Grids are never built from a truncated row set: one row past
    REVIEW_BATCH_LIMIT is fetched and, if present, the request is refused so
    no department shows partial totals.
    """
    cap = settings.REVIEW_BATCH_LIMIT
    allocations = await list_pending_allocations(
        session, cycle_id=cycle_id, department_id=department_id, limit=cap + 1,
    )
    if len(allocations) > cap:
        logger.warning(
            "budget_review_grid_too_large",
            cycle_id=str(cycle_id) if cycle_id else None,
            department_id=str(department_id) if department_id else None,
            limit=cap,
        )
        raise ValidationError(
            f"More than {cap} pending allocations match; filter by cycle or department",
            code="REVIEW_GRID_TOO_LARGE",
            details={"limit": cap},
        )
    heads = await list_active_budget_heads(session)
    cycles = {str(a.cycle.id): a.cycle for a in allocations if a.cycle is not None}
    return build_review_grids(
        allocations, heads, cycles.values(), cycle_id=cycle_id, department_id=department_id
    )


async def review_target(
    session: AsyncSession,
    target: ReviewTarget,
    decision,
    notes: Optional[str],
    reviewer: dict,
    approved_amounts: Optional[dict] = None,
) -> ReviewResult:
    """Resolve a head or whole-department target against the current grid, then review it."""
    check_reviewer(reviewer)
    if approved_amounts and target.head_id is None:
        raise ValidationError(
            "Approved amount overrides are only accepted for a single head",
            code="REVIEW_OVERRIDE_NOT_ALLOWED",
        )
    grids = await load_review_grids(
        session, cycle_id=target.cycle_id, department_id=target.department_id
    )
    ids = resolve_review_target(grids, target)
    return await review_allocations(
        session, ids, decision, notes, reviewer, approved_amounts=approved_amounts
    )


async def mark_under_review(
    session: AsyncSession, ids: Iterable[Any], reviewer: dict
) -> ReviewResult:
    """Move submitted rows to under_review; rows in any other status are skipped."""
    check_reviewer(reviewer)
    id_list = _dedupe_ids(ids)
    if not id_list:
        raise ValidationError("No allocations selected", code="REVIEW_EMPTY_SELECTION")

    now = datetime.utcnow()
    batch_id = uuid.uuid4()
    try:
        async with session.begin_nested():
            rows = await _lock_rows(session, id_list)
            found = {str(r.id): r for r in rows}
            moved, skipped, entries = [], [], []
            for i in id_list:
                row = found.get(i)
                if row is None or row.status != AllocationStatus.SUBMITTED.value:
                    skipped.append(i)
                    continue
                before = allocation_snapshot(row)
                row.status = AllocationStatus.UNDER_REVIEW.value
                moved.append(row)
                entries.append((row.id, before, allocation_snapshot(row)))
            if moved:
                await session.flush()
                await create_audit_logs_batch(
                    session, reviewer["user_id"], "budget_under_review", "budget_allocation",
                    entries, created_at=now, batch_id=batch_id,
                    actor_email=reviewer.get("email"),
                )
    except SQLAlchemyError as e:
        logger.error("budget_under_review_store_failure", batch_id=str(batch_id), error=str(e))
        raise StoreFailure("Status change not completed", applied_count=0) from e

    logger.info("budget_marked_under_review", batch_id=str(batch_id), updated=len(moved))
    return ReviewResult(
        decision=AllocationStatus.UNDER_REVIEW.value,
        updated_count=len(moved),
        reviewed_at=now,
        batch_id=batch_id,
        updated_ids=[str(r.id) for r in moved],
        skipped_ids=skipped,
    )
