"""
Domain errors for the budgeting service.

Services raise these instead of HTTPException so they stay usable outside a
request. main.py renders them in the {"error": {"code", "message"}} envelope.
"""

from typing import Any, Optional


class BudgetError(Exception):
    status_code = 400
    code = "BUDGET_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details

    def to_dict(self) -> dict:
        body = {"code": self.code, "message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return {"error": body}


class ValidationError(BudgetError):
    status_code = 400
    code = "BUDGET_VALIDATION_ERROR"


class AuthorizationError(BudgetError):
    status_code = 403
    code = "BUDGET_FORBIDDEN"


class NotFoundError(BudgetError):
    status_code = 404
    code = "BUDGET_NOT_FOUND"


class ConflictError(BudgetError):
    status_code = 409
    code = "BUDGET_CONFLICT"


class StoreFailure(BudgetError):
    """Persistence failed mid-operation. applied_count is what was written before failure."""

    status_code = 500
    code = "BUDGET_STORE_FAILURE"

    def __init__(self, message: str = "Review not completed", applied_count: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.applied_count = applied_count

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["error"]["applied_count"] = self.applied_count
        return body
