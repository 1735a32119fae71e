"""Central model registry: import all models so Alembic autodiscover works."""

from budgeting.database import Base  # noqa: F401

from budgeting.models.user import User  # noqa: F401
from budgeting.models.department import Department  # noqa: F401
from budgeting.models.budget import BudgetHead, BudgetCycle, BudgetAllocation  # noqa: F401
from budgeting.models.audit_log import AuditLog  # noqa: F401
from budgeting.models.notification import AppNotification  # noqa: F401
