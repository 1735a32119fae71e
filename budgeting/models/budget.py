import enum
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    Integer,
    Boolean,
    Date,
    DateTime,
    Numeric,
    Text,
    ForeignKey,
    UniqueConstraint,
    CheckConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID, ARRAY
from sqlalchemy.orm import Mapped, mapped_column, relationship

from budgeting.database import Base


class HeadType(str, enum.Enum):
    INCOME = "income"
    EXPENDITURE = "expenditure"


class PeriodType(str, enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"

    @property
    def period_count(self) -> int:
        return 12 if self is PeriodType.MONTHLY else 4


class CycleStatus(str, enum.Enum):
    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    ARCHIVED = "archived"


class AllocationStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    REVISION_REQUESTED = "revision_requested"


# Rows a reviewer may act on
REVIEWABLE_STATUSES = (AllocationStatus.SUBMITTED.value, AllocationStatus.UNDER_REVIEW.value)


def _in_clause(enum_cls) -> str:
    return ", ".join(f"'{m.value}'" for m in enum_cls)


class BudgetHead(Base):
    __tablename__ = "budget_heads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("budget_heads.id")
    )
    display_order: Mapped[Decimal] = mapped_column(
        Numeric(8, 2), nullable=False, default=1
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    allow_department_subitems: Mapped[bool] = mapped_column(Boolean, default=False)
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint(f"type IN ({_in_clause(HeadType)})", name="chk_budget_head_type"),
        CheckConstraint("parent_id IS NULL OR parent_id <> id", name="chk_budget_head_not_self"),
        Index("idx_budget_heads_type_order", "type", "display_order"),
        Index("idx_budget_heads_parent", "parent_id"),
    )

    @property
    def head_type(self) -> HeadType:
        return HeadType(self.type)


class BudgetCycle(Base):
    __tablename__ = "budget_cycles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)
    period_type: Mapped[str] = mapped_column(String(20), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=CycleStatus.DRAFT.value)
    allowed_department_ids: Mapped[Optional[list[uuid.UUID]]] = mapped_column(
        ARRAY(UUID(as_uuid=True))
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        CheckConstraint(
            f"period_type IN ({_in_clause(PeriodType)})", name="chk_budget_cycle_period_type"
        ),
        CheckConstraint(f"status IN ({_in_clause(CycleStatus)})", name="chk_budget_cycle_status"),
        CheckConstraint("end_date >= start_date", name="chk_budget_cycle_dates"),
        Index("idx_budget_cycles_status", "status"),
    )

    @property
    def period_count(self) -> int:
        return PeriodType(self.period_type).period_count


class BudgetAllocation(Base):
    __tablename__ = "budget_allocations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    cycle_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("budget_cycles.id"), nullable=False
    )
    head_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("budget_heads.id"), nullable=False
    )
    department_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("departments.id"), nullable=False
    )
    cycle: Mapped["BudgetCycle"] = relationship("BudgetCycle")
    head: Mapped["BudgetHead"] = relationship("BudgetHead")
    department: Mapped["Department"] = relationship("Department")
    period_number: Mapped[int] = mapped_column(Integer, nullable=False)
    allocated_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=0
    )
    approved_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2))
    status: Mapped[str] = mapped_column(
        String(30), default=AllocationStatus.DRAFT.value
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)
    submitted_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id")
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "cycle_id",
            "head_id",
            "department_id",
            "period_number",
            name="uq_budget_alloc_cell",
        ),
        CheckConstraint(
            "period_number BETWEEN 1 AND 12", name="chk_budget_alloc_period"
        ),
        CheckConstraint(
            "allocated_amount >= 0", name="chk_budget_alloc_amount"
        ),
        CheckConstraint(
            "approved_amount IS NULL OR approved_amount >= 0",
            name="chk_budget_alloc_approved_amount",
        ),
        CheckConstraint(
            f"status IN ({_in_clause(AllocationStatus)})",
            name="chk_budget_alloc_status",
        ),
        Index("idx_budget_alloc_cycle_dept", "cycle_id", "department_id"),
        Index("idx_budget_alloc_status", "status"),
    )
