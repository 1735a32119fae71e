"""
Grid reconstruction: builds the dense department × head × period review grid
from sparse allocation rows.

Pure functions of (allocations, head catalog, cycles, filters): nothing here
touches the database or keeps state between calls. Rows and heads are read by
attribute so ORM instances and plain objects both work. All ids are keyed as
strings.

Row order comes from the head catalog (display_order, then code), never from
which cells happen to have data, so a reviewer's grid does not reshuffle when
new submissions arrive.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Optional

import structlog

from budgeting.models.budget import REVIEWABLE_STATUSES, HeadType

logger = structlog.get_logger()

ZERO = Decimal("0")


def to_amount(value: Any) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


@dataclass
class GridTotals:
    period_count: int
    income_by_period: dict[int, Decimal] = field(default_factory=dict)
    expense_by_period: dict[int, Decimal] = field(default_factory=dict)
    income_total: Decimal = ZERO
    expense_total: Decimal = ZERO

    def __post_init__(self):
        for p in range(1, self.period_count + 1):
            self.income_by_period.setdefault(p, ZERO)
            self.expense_by_period.setdefault(p, ZERO)

    @property
    def net_total(self) -> Decimal:
        return self.income_total - self.expense_total

    def add(self, head_type: HeadType, period: int, amount: Decimal) -> None:
        if head_type is HeadType.INCOME:
            self.income_by_period[period] = self.income_by_period.get(period, ZERO) + amount
            self.income_total += amount
        elif head_type is HeadType.EXPENDITURE:
            self.expense_by_period[period] = self.expense_by_period.get(period, ZERO) + amount
            self.expense_total += amount
        else:
            raise ValueError(f"Unhandled head type: {head_type!r}")


@dataclass
class HeadRow:
    head_id: str
    code: str
    name: str
    head_type: HeadType
    display_order: Decimal
    parent_id: Optional[str]
    is_active: bool
    cells: list[Decimal]
    allocation_ids: list[Any] = field(default_factory=list)
    children: list["HeadRow"] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum(self.cells, ZERO)

    @property
    def subtotal(self) -> Decimal:
        """Row total plus every child row."""
        return self.total + sum((c.subtotal for c in self.children), ZERO)

    def period_subtotal(self, period: int) -> Decimal:
        return self.cells[period - 1] + sum(
            (c.period_subtotal(period) for c in self.children), ZERO
        )

    def walk(self):
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass
class DepartmentGrid:
    department_id: str
    cycle_id: str
    period_count: int
    department_name: Optional[str]
    allocations_by_head_and_period: dict[str, dict[int, Any]]
    head_tree: dict[HeadType, list[HeadRow]]
    totals: GridTotals

    @property
    def line_item_count(self) -> int:
        return sum(len(periods) for periods in self.allocations_by_head_and_period.values())

    def rows(self) -> list[HeadRow]:
        """Every row, depth first, income heads before expenditure heads."""
        out = []
        for head_type in HeadType:
            for top in self.head_tree.get(head_type, []):
                out.extend(top.walk())
        return out

    def row(self, head_id) -> Optional[HeadRow]:
        key = str(head_id)
        for r in self.rows():
            if r.head_id == key:
                return r
        return None

    def allocation_ids(self, head_id=None) -> list[Any]:
        """Ids of every cell in the grid, or only under one head when head_id is given."""
        if head_id is not None:
            periods = self.allocations_by_head_and_period.get(str(head_id), {})
            return [periods[p].id for p in sorted(periods)]
        return [
            periods[p].id
            for periods in self.allocations_by_head_and_period.values()
            for p in sorted(periods)
        ]


@dataclass
class ReviewSummary:
    total_departments: int
    total_allocations: int
    total_income: Decimal
    total_expense: Decimal

    @property
    def net_budget(self) -> Decimal:
        return self.total_income - self.total_expense


@dataclass
class _Bucket:
    department_id: str
    cycle_id: str
    department_name: Optional[str]
    cells: dict[str, dict[int, Any]] = field(default_factory=dict)
    # heads seen in the data that are not in the active catalog
    extra_heads: dict[str, Any] = field(default_factory=dict)
    max_period: int = 0


def _period_count_for(bucket: _Bucket, period_counts: dict[str, int], sample) -> int:
    count = period_counts.get(bucket.cycle_id)
    if count is None:
        cycle = getattr(sample, "cycle", None)
        count = getattr(cycle, "period_count", None)
    if count is None:
        count = 12 if bucket.max_period > 4 else 4
    return max(count, bucket.max_period)


def _make_row(head, period_count: int, periods: dict[int, Any]) -> HeadRow:
    cells = [ZERO] * period_count
    ids = []
    for p in sorted(periods):
        cells[p - 1] = to_amount(periods[p].allocated_amount)
        ids.append(periods[p].id)
    return HeadRow(
        head_id=str(head.id),
        code=head.code,
        name=head.name,
        head_type=HeadType(head.type),
        display_order=to_amount(head.display_order),
        parent_id=str(head.parent_id) if head.parent_id else None,
        is_active=bool(head.is_active),
        cells=cells,
        allocation_ids=ids,
    )


def _sort_key(row: HeadRow):
    return (row.display_order, row.code)


def build_head_tree(
    heads: Iterable[Any],
    period_count: int,
    cells: Optional[dict[str, dict[int, Any]]] = None,
) -> dict[HeadType, list[HeadRow]]:
    """
    Arrange heads into top-level rows with their children, per head type.

    A child whose parent is not among `heads` (missing or deactivated) is
    shown as a top-level row rather than dropped.
    """
    cells = cells or {}
    rows = {}
    for head in heads:
        rows[str(head.id)] = _make_row(head, period_count, cells.get(str(head.id), {}))

    tree: dict[HeadType, list[HeadRow]] = {t: [] for t in HeadType}
    for row in rows.values():
        parent = rows.get(row.parent_id) if row.parent_id else None
        if parent is not None and parent.parent_id is None and parent.head_type is row.head_type:
            parent.children.append(row)
        else:
            tree[row.head_type].append(row)

    for head_type in tree:
        tree[head_type].sort(key=_sort_key)
        for top in tree[head_type]:
            top.children.sort(key=_sort_key)
    return tree


def build_review_grids(
    allocations: Iterable[Any],
    heads: Iterable[Any],
    cycles: Iterable[Any] = (),
    cycle_id=None,
    department_id=None,
) -> list[DepartmentGrid]:
    """
    Build one DepartmentGrid per department present in the filtered rows.

    `heads` is the head catalog; only active heads seed empty rows, but a
    deactivated head with reviewable rows still gets its historical row. When
    the rows span several cycles a department gets one grid per cycle.
    Departments without reviewable rows are absent from the result.
    """
    catalog = {str(h.id): h for h in heads}
    active_heads = [h for h in catalog.values() if h.is_active]
    period_counts = {str(c.id): c.period_count for c in cycles}
    cycle_filter = str(cycle_id) if cycle_id is not None else None
    dept_filter = str(department_id) if department_id is not None else None

    buckets: dict[tuple[str, str], _Bucket] = {}
    samples: dict[tuple[str, str], Any] = {}
    head_types: dict[str, HeadType] = {}
    totals_rows: dict[tuple[str, str], list[tuple[HeadType, int, Decimal]]] = {}

    for alloc in allocations:
        if alloc.status not in REVIEWABLE_STATUSES:
            continue
        if cycle_filter is not None and str(alloc.cycle_id) != cycle_filter:
            continue
        if dept_filter is not None and str(alloc.department_id) != dept_filter:
            continue

        head_key = str(alloc.head_id)
        head = catalog.get(head_key) or getattr(alloc, "head", None)
        if head is None:
            logger.warning(
                "grid_allocation_head_missing",
                allocation_id=str(alloc.id),
                head_id=head_key,
            )
            continue

        # type is a head-level attribute: resolve once per head
        head_type = head_types.get(head_key)
        if head_type is None:
            head_type = head_types[head_key] = HeadType(head.type)

        key = (str(alloc.department_id), str(alloc.cycle_id))
        bucket = buckets.get(key)
        if bucket is None:
            department = getattr(alloc, "department", None)
            bucket = buckets[key] = _Bucket(
                department_id=key[0],
                cycle_id=key[1],
                department_name=getattr(department, "name", None),
            )
            samples[key] = alloc
            totals_rows[key] = []

        bucket.cells.setdefault(head_key, {})[alloc.period_number] = alloc
        bucket.max_period = max(bucket.max_period, alloc.period_number)
        if not head.is_active or head_key not in catalog:
            bucket.extra_heads[head_key] = head
        totals_rows[key].append((head_type, alloc.period_number, to_amount(alloc.allocated_amount)))

    grids = []
    for key in sorted(buckets, key=lambda k: ((buckets[k].department_name or ""), k)):
        bucket = buckets[key]
        period_count = _period_count_for(bucket, period_counts, samples[key])

        totals = GridTotals(period_count=period_count)
        for head_type, period, amount in totals_rows[key]:
            totals.add(head_type, period, amount)

        visible = {str(h.id): h for h in active_heads}
        visible.update(bucket.extra_heads)
        tree = build_head_tree(visible.values(), period_count, bucket.cells)

        grids.append(
            DepartmentGrid(
                department_id=bucket.department_id,
                cycle_id=bucket.cycle_id,
                period_count=period_count,
                department_name=bucket.department_name,
                allocations_by_head_and_period=bucket.cells,
                head_tree=tree,
                totals=totals,
            )
        )
    return grids


def summarize_grids(grids: Iterable[DepartmentGrid]) -> ReviewSummary:
    grids = list(grids)
    return ReviewSummary(
        total_departments=len({g.department_id for g in grids}),
        total_allocations=sum(g.line_item_count for g in grids),
        total_income=sum((g.totals.income_total for g in grids), ZERO),
        total_expense=sum((g.totals.expense_total for g in grids), ZERO),
    )


def period_labels(period_count: int) -> list[str]:
    if period_count == 12:
        return ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
                "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]
    return [f"Q{p}" for p in range(1, period_count + 1)]
