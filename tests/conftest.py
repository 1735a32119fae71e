import uuid

import pytest

from budgeting.services.auth_service import create_access_token

ADMIN_ID = "a0000000-0000-0000-0000-000000000001"
FINANCE_ID = "a0000000-0000-0000-0000-000000000002"
MANAGER_ID = "a0000000-0000-0000-0000-000000000003"
DEPT_ID = "d0000000-0000-0000-0000-000000000001"


@pytest.fixture
def admin_user():
    return {"user_id": ADMIN_ID, "role": "admin", "email": "admin@acme.com", "department_id": None}


@pytest.fixture
def finance_user():
    return {"user_id": FINANCE_ID, "role": "finance_head", "email": "finance@acme.com", "department_id": None}


@pytest.fixture
def manager_user():
    return {"user_id": MANAGER_ID, "role": "manager", "email": "ops.manager@acme.com", "department_id": DEPT_ID}


@pytest.fixture
def admin_token():
    return create_access_token(user_id=ADMIN_ID, role="admin", email="admin@acme.com")


@pytest.fixture
def finance_token():
    return create_access_token(user_id=FINANCE_ID, role="finance_head", email="finance@acme.com")


@pytest.fixture
def manager_token():
    return create_access_token(
        user_id=MANAGER_ID, role="manager", email="ops.manager@acme.com", department_id=DEPT_ID
    )


@pytest.fixture
def auth_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


@pytest.fixture
def new_id():
    return lambda: str(uuid.uuid4())
