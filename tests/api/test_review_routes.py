"""
HTTP tests for the review, allocation and audit routes.

Runs the FastAPI app in-process over httpx's ASGI transport. get_db yields
an AsyncMock session and get_current_user is overridden, so no database or
identity provider is needed.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from budgeting.database import get_db
from budgeting.errors import StoreFailure
from budgeting.main import app
from budgeting.middleware.auth import get_current_user
from budgeting.services.audit_service import AuditEntry
from budgeting.services.grid_service import build_review_grids
from budgeting.services.review_service import ReviewResult

CYCLE = str(uuid.uuid4())
OPS = str(uuid.uuid4())


def _override_user(user: dict):
    async def _current_user():
        return user
    return _current_user


@pytest_asyncio.fixture
async def client_for():
    session = AsyncMock()

    async def _db():
        yield session

    app.dependency_overrides[get_db] = _db
    clients = []

    async def _make(user: dict):
        app.dependency_overrides[get_current_user] = _override_user(user)
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.aclose()
    app.dependency_overrides.clear()


def _result(decision="approve", ids=None, skipped=None):
    ids = ids or [str(uuid.uuid4())]
    return ReviewResult(
        decision=decision,
        updated_count=len(ids),
        reviewed_at=datetime(2025, 3, 1, 9, 30),
        batch_id=uuid.uuid4(),
        updated_ids=ids,
        skipped_ids=skipped or [],
    )


@pytest.mark.asyncio
async def test_bulk_approve(client_for, finance_user):
    client = await client_for(finance_user)
    ids = [str(uuid.uuid4()), str(uuid.uuid4())]

    with patch(
        "budgeting.services.review_service.review_allocations",
        new=AsyncMock(return_value=_result(ids=ids)),
    ) as review:
        resp = await client.post(
            "/api/v1/budget-reviews",
            json={"allocation_ids": ids, "decision": "approve"},
        )

    assert resp.status_code == 200
    body = resp.json()
    assert body["updated_count"] == 2
    assert body["updated_ids"] == ids
    assert body["reviewed_at"] == "2025-03-01T09:30:00"
    assert review.call_args.args[1] == ids
    assert review.call_args.args[4] == finance_user


@pytest.mark.asyncio
async def test_reject_without_notes_is_400(client_for, finance_user):
    client = await client_for(finance_user)

    resp = await client.post(
        "/api/v1/budget-reviews",
        json={"allocation_ids": [str(uuid.uuid4())], "decision": "reject"},
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "REVIEW_NOTES_REQUIRED"


@pytest.mark.asyncio
async def test_empty_selection_is_400(client_for, finance_user):
    client = await client_for(finance_user)

    resp = await client.post("/api/v1/budget-reviews", json={"decision": "approve"})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "REVIEW_EMPTY_SELECTION"


@pytest.mark.asyncio
async def test_malformed_allocation_id_is_400(client_for, finance_user):
    client = await client_for(finance_user)

    resp = await client.post(
        "/api/v1/budget-reviews",
        json={"allocation_ids": ["not-a-uuid"], "decision": "approve"},
    )

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "ALLOCATION_ID_INVALID"


@pytest.mark.asyncio
async def test_unknown_decision_is_422(client_for, finance_user):
    client = await client_for(finance_user)

    resp = await client.post(
        "/api/v1/budget-reviews",
        json={"allocation_ids": [str(uuid.uuid4())], "decision": "escalate"},
    )

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_manager_cannot_review(client_for, manager_user):
    client = await client_for(manager_user)

    resp = await client.post(
        "/api/v1/budget-reviews",
        json={"allocation_ids": [str(uuid.uuid4())], "decision": "approve"},
    )

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"


@pytest.mark.asyncio
async def test_store_failure_is_500_with_applied_count(client_for, finance_user):
    client = await client_for(finance_user)

    with patch(
        "budgeting.services.review_service.review_allocations",
        new=AsyncMock(side_effect=StoreFailure("Review not completed", applied_count=0)),
    ):
        resp = await client.post(
            "/api/v1/budget-reviews",
            json={"allocation_ids": [str(uuid.uuid4())], "decision": "approve"},
        )

    assert resp.status_code == 500
    error = resp.json()["error"]
    assert error["code"] == "BUDGET_STORE_FAILURE"
    assert error["message"] == "Review not completed"
    assert error["applied_count"] == 0


@pytest.mark.asyncio
async def test_head_review_passes_target(client_for, finance_user):
    client = await client_for(finance_user)
    head_id = str(uuid.uuid4())

    with patch(
        "budgeting.services.review_service.review_target",
        new=AsyncMock(return_value=_result()),
    ) as review:
        resp = await client.post(
            "/api/v1/budget-reviews/head",
            json={
                "department_id": OPS,
                "head_id": head_id,
                "decision": "approve",
                "approved_amounts": {str(uuid.uuid4()): "800.00"},
            },
        )

    assert resp.status_code == 200
    target = review.call_args.args[1]
    assert target.department_id == OPS
    assert target.head_id == head_id
    assert list(review.call_args.kwargs["approved_amounts"].values()) == [Decimal("800.00")]


@pytest.mark.asyncio
async def test_department_review(client_for, finance_user):
    client = await client_for(finance_user)

    with patch(
        "budgeting.services.review_service.review_target",
        new=AsyncMock(return_value=_result(decision="revision_requested")),
    ) as review:
        resp = await client.post(
            "/api/v1/budget-reviews/department",
            json={"department_id": OPS, "decision": "revision_requested", "notes": "Split travel"},
        )

    assert resp.status_code == 200
    assert resp.json()["decision"] == "revision_requested"
    assert review.call_args.args[1].head_id is None


@pytest.mark.asyncio
async def test_review_grid(client_for, finance_user):
    client = await client_for(finance_user)
    opex = SimpleNamespace(
        id=str(uuid.uuid4()), code="OPEX", name="Operating Expenses", type="expenditure",
        display_order=Decimal("1"), parent_id=None, is_active=True,
    )
    rows = [
        SimpleNamespace(
            id=str(uuid.uuid4()), head_id=opex.id, department_id=OPS, cycle_id=CYCLE,
            period_number=p, allocated_amount=Decimal(a), status="submitted",
            department=SimpleNamespace(name="Operations"),
        )
        for p, a in ((1, "1000"), (2, "1500"))
    ]
    grids = build_review_grids(rows, [opex], [SimpleNamespace(id=CYCLE, period_count=4)])

    with patch(
        "budgeting.services.review_service.load_review_grids",
        new=AsyncMock(return_value=grids),
    ):
        resp = await client.get("/api/v1/budget-reviews/grid", params={"cycle_id": CYCLE})

    assert resp.status_code == 200
    body = resp.json()
    assert body["summary"]["total_departments"] == 1
    assert Decimal(body["summary"]["net_budget"]) == Decimal("-2500")
    dept = body["departments"][0]
    assert dept["period_labels"] == ["Q1", "Q2", "Q3", "Q4"]
    assert dept["income"] == []
    assert [Decimal(c) for c in dept["expenditure"][0]["cells"]] == [
        Decimal("1000"), Decimal("1500"), Decimal("0"), Decimal("0")
    ]


@pytest.mark.asyncio
async def test_manager_cannot_save_other_department(client_for, manager_user):
    client = await client_for(manager_user)

    resp = await client.put(
        f"/api/v1/budget-allocations/cycles/{CYCLE}/departments/{uuid.uuid4()}",
        json={"entries": [], "submit": True},
    )

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"


@pytest.mark.asyncio
async def test_manager_saves_own_department(client_for, manager_user):
    client = await client_for(manager_user)
    dept = manager_user["department_id"]

    saved = SimpleNamespace(created=1, updated=0, submitted=0, allocations=[])
    with patch(
        "budgeting.services.allocation_service.save_department_entries",
        new=AsyncMock(return_value=saved),
    ) as save:
        resp = await client.put(
            f"/api/v1/budget-allocations/cycles/{CYCLE}/departments/{dept}",
            json={"entries": [{"head_id": str(uuid.uuid4()), "period_number": 1, "amount": "250"}]},
        )

    assert resp.status_code == 200
    assert resp.json()["created"] == 1
    assert save.call_args.args[3][0]["amount"] == Decimal("250")
    assert save.call_args.kwargs["submit"] is False


@pytest.mark.asyncio
async def test_invalid_token_is_401():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        resp = await client.get(
            "/api/v1/budget-heads", headers={"Authorization": "Bearer not-a-token"}
        )

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_TOKEN_INVALID"


@pytest.mark.asyncio
async def test_audit_log_lists_bulk_review_with_allocation_context(client_for, finance_user):
    client = await client_for(finance_user)
    batch = uuid.uuid4()
    alloc_id = uuid.uuid4()
    log = SimpleNamespace(
        id=uuid.uuid4(), actor_id=uuid.UUID(finance_user["user_id"]),
        actor_email=finance_user["email"], action="budget_approved",
        entity_type="budget_allocation", entity_id=alloc_id, batch_id=batch,
        before_state={"status": "submitted"}, after_state={"status": "approved"},
        changed_fields=["status"], details={"count": 2},
        created_at=datetime(2025, 3, 1, 9, 30),
    )
    allocation = SimpleNamespace(
        cycle=SimpleNamespace(name="FY25"), head=SimpleNamespace(name="Travel"),
        department=SimpleNamespace(name="Operations"), period_number=2,
        allocated_amount=Decimal("900.00"), approved_amount=Decimal("750.00"),
        status="approved",
    )

    with patch(
        "budgeting.services.audit_service.list_budget_audit_logs",
        new=AsyncMock(return_value=[AuditEntry(log=log, allocation=allocation)]),
    ) as listing:
        resp = await client.get(
            "/api/v1/budget-audit-logs", params={"batch_id": str(batch), "cycle_id": CYCLE}
        )

    assert resp.status_code == 200
    [entry] = resp.json()
    assert entry["batch_id"] == str(batch)
    assert entry["entity_id"] == str(alloc_id)
    assert entry["created_at"] == "2025-03-01T09:30:00"
    assert entry["allocation"]["head_name"] == "Travel"
    assert entry["allocation"]["department_name"] == "Operations"
    assert Decimal(entry["allocation"]["approved_amount"]) == Decimal("750.00")
    assert listing.call_args.kwargs["batch_id"] == str(batch)
    assert listing.call_args.kwargs["cycle_id"] == CYCLE


@pytest.mark.asyncio
async def test_audit_log_hidden_from_managers(client_for, manager_user):
    client = await client_for(manager_user)

    resp = await client.get("/api/v1/budget-audit-logs")

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "INSUFFICIENT_PERMISSIONS"


@pytest.mark.asyncio
async def test_audit_log_rejects_unknown_entity_type(client_for, finance_user):
    client = await client_for(finance_user)

    resp = await client.get("/api/v1/budget-audit-logs", params={"entity_type": "invoice"})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "AUDIT_FILTER_INVALID"
