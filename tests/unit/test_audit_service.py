"""Unit tests for budgeting/services/audit_service.py"""

import uuid
from datetime import datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from budgeting.errors import ValidationError
from budgeting.services.audit_service import (
    _compute_changed_fields,
    create_audit_log,
    create_audit_logs_batch,
    list_budget_audit_logs,
)


def _mock_session() -> AsyncMock:
    session = AsyncMock()
    session.add = MagicMock()
    session.add_all = MagicMock()
    session.flush = AsyncMock()
    return session


def test_changed_fields():
    assert _compute_changed_fields({"status": "submitted", "notes": None},
                                   {"status": "approved", "notes": None}) == ["status"]
    assert _compute_changed_fields(None, {"status": "draft"}) is None
    assert _compute_changed_fields({"a": 1}, {"a": 1}) is None


@pytest.mark.asyncio
async def test_create_audit_log():
    session = _mock_session()
    entity = uuid.uuid4()

    audit = await create_audit_log(
        session, str(uuid.uuid4()), "head_updated", "budget_head", str(entity),
        before_state={"is_active": "True"}, after_state={"is_active": "False"},
    )

    session.add.assert_called_once_with(audit)
    assert audit.entity_id == entity
    assert audit.changed_fields == ["is_active"]
    assert audit.batch_id is None


@pytest.mark.asyncio
async def test_unknown_action_is_refused():
    with pytest.raises(ValueError):
        await create_audit_log(_mock_session(), None, "budget_deleted", "budget_allocation", str(uuid.uuid4()))


@pytest.mark.asyncio
async def test_batch_shares_timestamp_and_batch_id():
    session = _mock_session()
    batch_id = uuid.uuid4()
    at = datetime(2025, 3, 1, 12, 0, 0)
    entries = [
        (uuid.uuid4(), {"status": "submitted"}, {"status": "approved"}),
        (uuid.uuid4(), {"status": "under_review"}, {"status": "approved"}),
    ]

    audits = await create_audit_logs_batch(
        session, str(uuid.uuid4()), "budget_approved", "budget_allocation",
        entries, created_at=at, batch_id=batch_id,
    )

    assert len(audits) == 2
    assert {a.created_at for a in audits} == {at}
    assert {a.batch_id for a in audits} == {batch_id}
    session.add_all.assert_called_once()
    session.flush.assert_awaited_once()


@pytest.mark.asyncio
async def test_empty_batch_writes_nothing():
    session = _mock_session()
    audits = await create_audit_logs_batch(
        session, None, "budget_approved", "budget_allocation", [],
        created_at=datetime.utcnow(), batch_id=uuid.uuid4(),
    )
    assert audits == []
    session.add_all.assert_not_called()


# ---------------------------------------------------------------------------
# list_budget_audit_logs
# ---------------------------------------------------------------------------


def _scalars_result(items):
    result = MagicMock()
    result.scalars.return_value.all.return_value = list(items)
    return result


def _log(entity_type, entity_id=None, action="budget_approved", batch_id=None):
    return SimpleNamespace(
        id=uuid.uuid4(),
        entity_type=entity_type,
        entity_id=entity_id or uuid.uuid4(),
        action=action,
        batch_id=batch_id,
    )


@pytest.mark.asyncio
async def test_audit_list_attaches_allocation_context():
    alloc_id = uuid.uuid4()
    allocation = SimpleNamespace(id=alloc_id, period_number=3)
    logs = [_log("budget_allocation", alloc_id), _log("budget_cycle", action="cycle_updated")]
    session = _mock_session()
    session.execute = AsyncMock(side_effect=[_scalars_result(logs), _scalars_result([allocation])])

    entries = await list_budget_audit_logs(session)

    assert [e.log for e in entries] == logs
    assert entries[0].allocation is allocation
    assert entries[1].allocation is None
    assert session.execute.await_count == 2


@pytest.mark.asyncio
async def test_audit_list_filters_reach_the_query():
    batch = uuid.uuid4()
    cycle = uuid.uuid4()
    session = _mock_session()
    session.execute = AsyncMock(return_value=_scalars_result([]))

    entries = await list_budget_audit_logs(
        session, entity_type="budget_allocation", batch_id=str(batch).upper(), cycle_id=str(cycle),
        limit=25,
    )

    assert entries == []
    # no allocation lookup when nothing matched
    assert session.execute.await_count == 1
    query = session.execute.call_args.args[0]
    params = query.compile(dialect=postgresql.dialect()).params
    assert batch in params.values()
    assert cycle in params.values()
    assert 25 in params.values()


@pytest.mark.asyncio
async def test_audit_list_unknown_entity_type():
    with pytest.raises(ValidationError) as exc:
        await list_budget_audit_logs(_mock_session(), entity_type="purchase_order")
    assert exc.value.code == "AUDIT_FILTER_INVALID"


@pytest.mark.asyncio
async def test_audit_list_malformed_batch_id():
    session = _mock_session()
    with pytest.raises(ValidationError) as exc:
        await list_budget_audit_logs(session, batch_id="batch-7")
    assert exc.value.code == "AUDIT_FILTER_INVALID"
    session.execute.assert_not_awaited()
