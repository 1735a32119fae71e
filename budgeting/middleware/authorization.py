"""
Role and department checks for the budget routes.

Failures raise AuthorizationError so they render through the same handler
as the service-level permission errors.
"""

from typing import Optional

from fastapi import Depends

from budgeting.errors import AuthorizationError
from budgeting.middleware.auth import get_current_user

ADMIN_ROLES = ("admin",)
REVIEW_ROLES = ("admin", "cfo", "finance_head", "finance")
SUBMIT_ROLES = ("admin", "manager")


def require_roles(*allowed_roles: str):
    """
    Dependency factory gating a route to the given roles.

        @router.post("")
        async def review_allocations(
            current_user: dict = Depends(get_current_user),
            _auth: None = Depends(require_roles(*REVIEW_ROLES)),
        ):
    """
    async def check_role(current_user: dict = Depends(get_current_user)) -> None:
        if current_user["role"] not in allowed_roles:
            raise AuthorizationError(
                f"Role '{current_user['role']}' cannot perform this action",
                code="INSUFFICIENT_PERMISSIONS",
                details={"allowed_roles": list(allowed_roles)},
            )

    return check_role


def department_scope(current_user: dict, department_id=None) -> Optional[str]:
    """
    Department filter a request may use. Managers are pinned to their own
    department; other roles keep whatever they asked for (None = all).
    """
    if current_user["role"] != "manager":
        return department_id
    own = current_user.get("department_id")
    if not own or (department_id is not None and str(department_id) != str(own)):
        raise AuthorizationError(
            "You can only access your own department's budget",
            code="INSUFFICIENT_PERMISSIONS",
        )
    return own
