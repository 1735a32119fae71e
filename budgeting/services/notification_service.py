"""
Notification service: in-app notifications to department managers.

Notifications are a side channel: a failure is logged and reported as False,
never raised into the review that triggered it.
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from budgeting.models.department import Department
from budgeting.models.notification import AppNotification

logger = structlog.get_logger()

DECISION_LABELS = {
    "approve": "approved",
    "reject": "rejected",
    "revision_requested": "sent back for revision",
}

TEMPLATES = {
    "budget_review": {
        "title": "Budget {decision_label}: {cycle_name}",
        "body": (
            "{count} budget line item(s) for {department_name} in {cycle_name} "
            "were {decision_label}."
        ),
    },
    "budget_review_with_notes": {
        "title": "Budget {decision_label}: {cycle_name}",
        "body": (
            "{count} budget line item(s) for {department_name} in {cycle_name} "
            "were {decision_label}. Reviewer notes: {notes}"
        ),
    },
}


@dataclass
class ReviewSummaryMessage:
    count: int
    decision: str
    cycle_id: Optional[str]
    cycle_name: str
    notes: Optional[str] = None

    def context(self, department_name: str) -> dict:
        return {
            "count": self.count,
            "decision_label": DECISION_LABELS.get(self.decision, self.decision),
            "cycle_name": self.cycle_name,
            "department_name": department_name,
            "notes": self.notes or "",
        }


async def get_department(session: AsyncSession, department_id) -> Optional[Department]:
    result = await session.execute(
        select(Department).where(Department.id == department_id)
    )
    return result.scalar_one_or_none()


async def notify_department(
    session: AsyncSession,
    department_id,
    summary: ReviewSummaryMessage,
) -> bool:
    """
    Record one notification for the department's manager.

    The department lookup and the insert both run in a savepoint, so a
    failure in either does not poison the caller's transaction.
    """
    template_id = "budget_review_with_notes" if summary.notes else "budget_review"
    template = TEMPLATES[template_id]
    try:
        async with session.begin_nested():
            dept = await get_department(session, department_id)
            if not dept or not dept.manager_id:
                logger.warning("notification_no_manager", department_id=str(department_id))
                return False

            ctx = summary.context(dept.name)
            session.add(
                AppNotification(
                    user_id=dept.manager_id,
                    department_id=dept.id,
                    title=template["title"].format(**ctx),
                    body=template["body"].format(**ctx),
                    type="budget_review",
                    entity_id=summary.cycle_id,
                )
            )
    except SQLAlchemyError as e:
        logger.error(
            "notification_failed",
            department_id=str(department_id),
            error=str(e),
        )
        return False

    logger.info(
        "notification_sent",
        department_id=str(department_id),
        manager_id=str(dept.manager_id),
        decision=summary.decision,
        count=summary.count,
    )
    return True
