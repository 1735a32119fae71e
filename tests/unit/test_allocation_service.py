"""
Unit tests for budgeting/services/allocation_service.py

Uses AsyncMock to isolate from the database. get_budget_cycle, the final
reload and audit writes are patched.
"""

import uuid
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from budgeting.errors import AuthorizationError, ConflictError, ValidationError
from budgeting.services.allocation_service import parse_entries, save_department_entries

MODULE = "budgeting.services.allocation_service"
DEPT = str(uuid.uuid4())
MANAGER = {"user_id": str(uuid.uuid4()), "role": "manager", "email": "m@acme.com", "department_id": DEPT}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _cycle(status="open"):
    return SimpleNamespace(
        id=uuid.uuid4(), name="FY25-Q", status=status, allowed_department_ids=None,
        period_type="quarterly", period_count=4,
    )


def _head(is_active=True):
    return SimpleNamespace(id=uuid.uuid4(), code="OPEX", is_active=is_active)


def _existing(head, period, amount="100", status="draft"):
    return SimpleNamespace(
        id=uuid.uuid4(), head_id=head.id, period_number=period,
        allocated_amount=Decimal(amount), approved_amount=None, status=status,
        notes=None, submitted_by=None, submitted_at=None,
        reviewed_by=None, reviewed_at=None,
    )


def _scalars_result(items):
    result = MagicMock()
    result.scalars.return_value.all.return_value = list(items)
    return result


def _mock_session(heads, existing) -> AsyncMock:
    """execute(): heads lookup first when entries are given, then existing rows."""
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    results = ([_scalars_result(heads)] if heads is not None else []) + [_scalars_result(existing)]
    session.execute = AsyncMock(side_effect=results)
    return session


def _entry(head, period, amount):
    return {"head_id": str(head.id), "period_number": period, "amount": amount}


async def _save(session, cycle, entries, **kwargs):
    with patch(f"{MODULE}.get_budget_cycle", new=AsyncMock(return_value=cycle)), \
         patch(f"{MODULE}.list_allocations", new=AsyncMock(return_value=[])), \
         patch(f"{MODULE}.create_audit_logs_batch", new_callable=AsyncMock) as audit:
        result = await save_department_entries(session, cycle.id, DEPT, entries, MANAGER, **kwargs)
    return result, audit


# ---------------------------------------------------------------------------
# parse_entries
# ---------------------------------------------------------------------------


def test_parse_entries_rejects_out_of_range_period():
    head = _head()
    with pytest.raises(ValidationError) as exc:
        parse_entries([_entry(head, 5, "10")], _cycle())
    assert exc.value.code == "PERIOD_OUT_OF_RANGE"


def test_parse_entries_rejects_negative():
    head = _head()
    with pytest.raises(ValidationError) as exc:
        parse_entries([_entry(head, 1, "-10")], _cycle())
    assert exc.value.code == "AMOUNT_NEGATIVE"


def test_parse_entries_rejects_garbage_amount():
    head = _head()
    with pytest.raises(ValidationError) as exc:
        parse_entries([_entry(head, 1, "ten")], _cycle())
    assert exc.value.code == "AMOUNT_INVALID"


def test_parse_entries_rejects_duplicate_cell():
    head = _head()
    with pytest.raises(ValidationError) as exc:
        parse_entries([_entry(head, 1, "10"), _entry(head, 1, "20")], _cycle())
    assert exc.value.code == "DUPLICATE_CELL"


def test_parse_entries_blank_amount_is_zero():
    head = _head()
    entries = parse_entries([_entry(head, 2, None)], _cycle())
    assert entries[0].amount == Decimal("0")


# ---------------------------------------------------------------------------
# save_department_entries
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_save_creates_draft_rows_and_skips_new_zero_cells():
    head = _head()
    session = _mock_session([head], [])

    result, audit = await _save(
        session, _cycle(), [_entry(head, 1, "1000"), _entry(head, 2, "0")]
    )

    assert result.created == 1
    assert result.updated == 0
    session.add.assert_called_once()
    added = session.add.call_args.args[0]
    assert added.status == "draft"
    assert added.allocated_amount == Decimal("1000")
    assert audit.call_args.args[2] == "budget_created"


@pytest.mark.asyncio
async def test_save_updates_editable_row():
    head = _head()
    row = _existing(head, 1, "500", status="revision_requested")
    session = _mock_session([head], [row])

    result, audit = await _save(session, _cycle(), [_entry(head, 1, "450")])

    assert result.updated == 1
    assert row.allocated_amount == Decimal("450")
    assert row.status == "revision_requested"
    assert audit.call_args.args[2] == "budget_updated"


@pytest.mark.asyncio
async def test_save_refuses_submitted_row():
    head = _head()
    row = _existing(head, 1, "500", status="submitted")
    session = _mock_session([head], [row])

    with pytest.raises(ConflictError) as exc:
        await _save(session, _cycle(), [_entry(head, 1, "450")])

    assert exc.value.code == "ALLOCATION_LOCKED"
    assert row.allocated_amount == Decimal("500")


@pytest.mark.asyncio
async def test_submit_moves_editable_rows_and_clears_review():
    head = _head()
    draft = _existing(head, 1, "100")
    sent_back = _existing(head, 2, "200", status="revision_requested")
    sent_back.reviewed_by = uuid.uuid4()
    sent_back.approved_amount = Decimal("150")
    approved = _existing(head, 3, "300", status="approved")
    session = _mock_session(None, [draft, sent_back, approved])

    result, audit = await _save(session, _cycle(), [], submit=True, notes="Q1 plan")

    assert result.submitted == 2
    assert draft.status == "submitted"
    assert sent_back.status == "submitted"
    assert sent_back.reviewed_by is None
    assert sent_back.approved_amount is None
    assert draft.notes == "Q1 plan"
    assert draft.submitted_at is not None
    assert approved.status == "approved"
    assert audit.call_args.args[2] == "budget_submitted"


@pytest.mark.asyncio
async def test_submit_with_nothing_editable():
    head = _head()
    session = _mock_session(None, [_existing(head, 1, status="approved")])

    with pytest.raises(ValidationError) as exc:
        await _save(session, _cycle(), [], submit=True)
    assert exc.value.code == "NOTHING_TO_SUBMIT"


@pytest.mark.asyncio
async def test_save_with_nothing_to_do():
    session = _mock_session(None, [])

    with pytest.raises(ValidationError) as exc:
        await _save(session, _cycle(), [])
    assert exc.value.code == "NOTHING_TO_SAVE"


@pytest.mark.asyncio
async def test_save_rejects_inactive_head():
    head = _head(is_active=False)
    session = _mock_session([head], [])

    with pytest.raises(ValidationError) as exc:
        await _save(session, _cycle(), [_entry(head, 1, "10")])
    assert exc.value.code == "BUDGET_HEAD_INACTIVE"


@pytest.mark.asyncio
async def test_save_requires_open_cycle():
    head = _head()
    session = _mock_session([head], [])

    with pytest.raises(AuthorizationError) as exc:
        await _save(session, _cycle(status="closed"), [_entry(head, 1, "10")])

    assert exc.value.code == "CYCLE_NOT_OPEN"
    session.execute.assert_not_awaited()
