from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

HeadTypeLiteral = Literal["income", "expenditure"]
PeriodTypeLiteral = Literal["monthly", "quarterly"]
CycleStatusLiteral = Literal["draft", "open", "closed", "archived"]
DecisionLiteral = Literal["approve", "reject", "revision_requested"]


# ---------- budget heads ----------

class BudgetHeadCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    code: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None
    type: HeadTypeLiteral
    parent_id: Optional[str] = None
    display_order: Optional[Decimal] = Field(None, ge=0)
    is_active: bool = True
    allow_department_subitems: bool = False


class BudgetHeadUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    code: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = None
    type: Optional[HeadTypeLiteral] = None
    parent_id: Optional[str] = None
    display_order: Optional[Decimal] = Field(None, ge=0)
    is_active: Optional[bool] = None
    allow_department_subitems: Optional[bool] = None


class BudgetHeadResponse(BaseModel):
    id: str
    name: str
    code: str
    description: Optional[str] = None
    type: str
    parent_id: Optional[str] = None
    display_order: Decimal
    is_active: bool
    allow_department_subitems: bool
    created_at: str


# ---------- budget cycles ----------

class BudgetCycleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    fiscal_year: int = Field(..., ge=2000, le=2100)
    period_type: PeriodTypeLiteral
    start_date: date
    end_date: date
    status: Literal["draft", "open"] = "draft"
    allowed_department_ids: Optional[list[str]] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        return self


class BudgetCycleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    fiscal_year: Optional[int] = Field(None, ge=2000, le=2100)
    period_type: Optional[PeriodTypeLiteral] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    allowed_department_ids: Optional[list[str]] = None


class BudgetCycleTransition(BaseModel):
    status: CycleStatusLiteral


class BudgetCycleResponse(BaseModel):
    id: str
    name: str
    fiscal_year: int
    period_type: str
    period_count: int
    start_date: str
    end_date: str
    status: str
    allowed_department_ids: Optional[list[str]] = None
    created_at: str


# ---------- allocations ----------

class AllocationEntry(BaseModel):
    head_id: str
    period_number: int = Field(..., ge=1, le=12)
    amount: Decimal = Field(..., ge=0)


class DepartmentEntriesSave(BaseModel):
    entries: list[AllocationEntry] = Field(default_factory=list)
    submit: bool = False
    notes: Optional[str] = None


class AllocationResponse(BaseModel):
    id: str
    cycle_id: str
    head_id: str
    department_id: str
    period_number: int
    allocated_amount: Decimal
    approved_amount: Optional[Decimal] = None
    status: str
    notes: Optional[str] = None
    submitted_by: Optional[str] = None
    submitted_at: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    head_code: Optional[str] = None
    head_name: Optional[str] = None
    head_type: Optional[str] = None
    department_name: Optional[str] = None


class SaveEntriesResponse(BaseModel):
    created: int
    updated: int
    submitted: int
    allocations: list[AllocationResponse]


# ---------- review grid ----------

class HeadRowResponse(BaseModel):
    head_id: str
    code: str
    name: str
    type: str
    is_active: bool
    cells: list[Decimal]
    total: Decimal
    subtotal: Decimal
    allocation_ids: list[str]
    children: list["HeadRowResponse"] = Field(default_factory=list)


class GridTotalsResponse(BaseModel):
    income_by_period: dict[int, Decimal]
    expense_by_period: dict[int, Decimal]
    income_total: Decimal
    expense_total: Decimal
    net_total: Decimal


class DepartmentGridResponse(BaseModel):
    department_id: str
    department_name: Optional[str] = None
    cycle_id: str
    period_count: int
    period_labels: list[str]
    income: list[HeadRowResponse]
    expenditure: list[HeadRowResponse]
    totals: GridTotalsResponse


class ReviewSummaryResponse(BaseModel):
    total_departments: int
    total_allocations: int
    total_income: Decimal
    total_expense: Decimal
    net_budget: Decimal


class ReviewGridResponse(BaseModel):
    summary: ReviewSummaryResponse
    departments: list[DepartmentGridResponse]


# ---------- review actions ----------

class ReviewRequest(BaseModel):
    allocation_ids: list[str] = Field(default_factory=list)
    decision: DecisionLiteral
    notes: Optional[str] = None
    approved_amounts: Optional[dict[str, Decimal]] = None


class HeadReviewRequest(BaseModel):
    department_id: str
    head_id: str
    cycle_id: Optional[str] = None
    decision: DecisionLiteral
    notes: Optional[str] = None
    approved_amounts: Optional[dict[str, Decimal]] = None


class DepartmentReviewRequest(BaseModel):
    department_id: str
    cycle_id: Optional[str] = None
    decision: DecisionLiteral
    notes: Optional[str] = None


class MarkUnderReviewRequest(BaseModel):
    allocation_ids: list[str] = Field(default_factory=list)


class ReviewResultResponse(BaseModel):
    decision: str
    updated_count: int
    reviewed_at: str
    batch_id: str
    updated_ids: list[str]
    skipped_ids: list[str]


# ---------- dashboard ----------

class DepartmentStatusResponse(BaseModel):
    draft: int
    pending: int
    approved: int
    rejected: int
    revision: int
    total: int


class BudgetTotalsResponse(BaseModel):
    income: Decimal
    expense: Decimal
    approved_income: Decimal
    approved_expense: Decimal
    approved_net: Decimal


class CycleDashboardResponse(BaseModel):
    cycle_id: str
    cycle_name: str
    status: str
    departments: DepartmentStatusResponse
    totals: BudgetTotalsResponse


# ---------- audit trail ----------

class AuditAllocationInfo(BaseModel):
    cycle_name: Optional[str] = None
    head_name: Optional[str] = None
    department_name: Optional[str] = None
    period_number: int
    allocated_amount: Decimal
    approved_amount: Optional[Decimal] = None
    status: str


class BudgetAuditLogResponse(BaseModel):
    id: str
    actor_id: Optional[str] = None
    actor_email: Optional[str] = None
    action: str
    entity_type: str
    entity_id: str
    batch_id: Optional[str] = None
    before_state: Optional[dict] = None
    after_state: Optional[dict] = None
    changed_fields: Optional[list[str]] = None
    details: Optional[dict] = None
    created_at: str
    allocation: Optional[AuditAllocationInfo] = None
