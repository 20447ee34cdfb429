"""
Declarative Grouping Pipeline

A GroupSpec describes one aggregation the way a database pipeline would:
- a filter (organization scope is applied by the store)
- a group key selector
- a set of named reducers
- an ordering and an optional limit

Every store evaluates specs through `fold_records`, a polars group-by over
the matching invoices (or their exploded line items), so grouping, ordering
and tie-break rules are identical whichever backend holds the records.

Example:
    spec = GroupSpec(
        key=GroupKey.STATUS,
        reducers={"count": Reducer.count(), "total_amount": Reducer.sum("total")},
    )
    rows = fold_records(invoices, spec)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import reduce
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import operator

import polars as pl
import structlog

from .buckets import MS_PER_DAY, OVERDUE_AGING, PAYMENT_DELAY, SEASONS
from .records import InvoiceRecord
from .window import Granularity

logger = structlog.get_logger(__name__)


INVOICE_SCHEMA = {
    "id": pl.Utf8,
    "customer_id": pl.Utf8,
    "invoice_no": pl.Utf8,
    "status": pl.Utf8,
    "total": pl.Float64,
    "issue_date": pl.Datetime("us"),
    "due_date": pl.Datetime("us"),
    "created_at": pl.Datetime("us"),
    "updated_at": pl.Datetime("us"),
    "paid_at": pl.Datetime("us"),
}

ITEM_SCHEMA = {
    **INVOICE_SCHEMA,
    "description": pl.Utf8,
    "quantity": pl.Float64,
    "rate": pl.Float64,
    "amount": pl.Float64,
    "service_charge": pl.Float64,
}


class GroupKey(str, Enum):
    """Group key selectors"""
    NONE = "none"
    STATUS = "status"
    CUSTOMER = "customer"
    YEAR_MONTH = "year_month"
    YEAR_MONTH_WEEK = "year_month_week"
    YEAR_MONTH_DAY = "year_month_day"
    SEASON = "season"
    OVERDUE_AGE = "overdue_age"
    PAYMENT_DELAY = "payment_delay"
    SERVICE = "service"


KEY_COLUMNS: Dict[GroupKey, Tuple[str, ...]] = {
    GroupKey.NONE: (),
    GroupKey.STATUS: ("status",),
    GroupKey.CUSTOMER: ("customer_id",),
    GroupKey.YEAR_MONTH: ("year", "month"),
    GroupKey.YEAR_MONTH_WEEK: ("year", "month", "week"),
    GroupKey.YEAR_MONTH_DAY: ("year", "month", "day"),
    GroupKey.SEASON: ("quarter",),
    GroupKey.OVERDUE_AGE: ("bucket",),
    GroupKey.PAYMENT_DELAY: ("bucket",),
    GroupKey.SERVICE: ("description",),
}

GRANULARITY_KEYS = {
    Granularity.MONTH: GroupKey.YEAR_MONTH,
    Granularity.WEEK: GroupKey.YEAR_MONTH_WEEK,
    Granularity.DAY: GroupKey.YEAR_MONTH_DAY,
}


class Op(str, Enum):
    """Reducer operations"""
    SUM = "sum"
    AVG = "avg"
    COUNT = "count"
    COUNT_DISTINCT = "count_distinct"
    MIN = "min"
    MAX = "max"


@dataclass(frozen=True)
class Reducer:
    """
    Named reduction over a group.

    `status` makes the reducer conditional: rows with another status
    contribute zero to a sum and nothing to a count.
    """
    op: Op
    field: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def sum(cls, field: str, status: Optional[str] = None) -> "Reducer":
        return cls(Op.SUM, field, status)

    @classmethod
    def avg(cls, field: str) -> "Reducer":
        return cls(Op.AVG, field)

    @classmethod
    def count(cls, status: Optional[str] = None) -> "Reducer":
        return cls(Op.COUNT, None, status)

    @classmethod
    def count_distinct(cls, field: str) -> "Reducer":
        return cls(Op.COUNT_DISTINCT, field)

    @classmethod
    def min(cls, field: str) -> "Reducer":
        return cls(Op.MIN, field)

    @classmethod
    def max(cls, field: str) -> "Reducer":
        return cls(Op.MAX, field)

    def expr(self) -> pl.Expr:
        matches = pl.col("status") == self.status if self.status else None

        if self.op == Op.COUNT:
            return matches.sum() if matches is not None else pl.len()

        column = pl.col(self.field)
        if self.op == Op.SUM:
            if matches is not None:
                return pl.when(matches).then(column).otherwise(0.0).sum()
            return column.sum()
        if self.op == Op.AVG:
            return column.mean()
        if self.op == Op.COUNT_DISTINCT:
            return column.n_unique()
        if self.op == Op.MIN:
            return column.min()
        return column.max()


@dataclass(frozen=True)
class InvoiceFilter:
    """Record filter; lower bounds inclusive, upper bounds exclusive"""
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    statuses: Optional[Tuple[str, ...]] = None
    exclude_statuses: Optional[Tuple[str, ...]] = None
    due_before: Optional[datetime] = None
    paid_from: Optional[datetime] = None
    paid_to: Optional[datetime] = None

    def conditions(self) -> List[pl.Expr]:
        conditions = []
        if self.created_from is not None:
            conditions.append(pl.col("created_at") >= self.created_from)
        if self.created_to is not None:
            conditions.append(pl.col("created_at") < self.created_to)
        if self.statuses:
            conditions.append(pl.col("status").is_in(list(self.statuses)))
        if self.exclude_statuses:
            conditions.append(~pl.col("status").is_in(list(self.exclude_statuses)))
        if self.due_before is not None:
            conditions.append(pl.col("due_date") < self.due_before)
        if self.paid_from is not None:
            conditions.append(paid_timestamp() >= self.paid_from)
        if self.paid_to is not None:
            conditions.append(paid_timestamp() < self.paid_to)
        return conditions


@dataclass(frozen=True)
class GroupSpec:
    """
    Declarative grouping specification.

    sort holds (column, descending) pairs; key columns not named there are
    appended ascending as tie-breakers. With no sort the key tuple is
    ordered ascending. `as_of` anchors the day-count columns used by the
    aging and payment-delay keys.
    """
    reducers: Mapping[str, Reducer]
    key: GroupKey = GroupKey.NONE
    filter: InvoiceFilter = field(default_factory=InvoiceFilter)
    sort: Tuple[Tuple[str, bool], ...] = ()
    limit: Optional[int] = None
    unwind_items: bool = False
    as_of: Optional[datetime] = None

    @property
    def key_columns(self) -> Tuple[str, ...]:
        return KEY_COLUMNS[self.key]


def paid_timestamp() -> pl.Expr:
    return pl.coalesce(pl.col("paid_at"), pl.col("updated_at"))


def _elapsed_days(later: pl.Expr, earlier: pl.Expr) -> pl.Expr:
    return (later - earlier).dt.total_milliseconds() / MS_PER_DAY


def invoices_frame(records: Sequence[InvoiceRecord]) -> pl.DataFrame:
    """One row per invoice"""
    rows = [
        {
            "id": r.id,
            "customer_id": r.customer_id,
            "invoice_no": r.invoice_no,
            "status": r.status,
            "total": float(r.total),
            "issue_date": r.issue_date,
            "due_date": r.due_date,
            "created_at": r.created_at,
            "updated_at": r.updated_at,
            "paid_at": r.paid_at,
        }
        for r in records
    ]
    if not rows:
        return pl.DataFrame(schema=INVOICE_SCHEMA)
    return pl.from_dicts(rows, schema=INVOICE_SCHEMA)


def items_frame(records: Sequence[InvoiceRecord]) -> pl.DataFrame:
    """One row per line item, carrying its invoice's columns"""
    rows = [
        {
            "id": r.id,
            "customer_id": r.customer_id,
            "invoice_no": r.invoice_no,
            "status": r.status,
            "total": float(r.total),
            "issue_date": r.issue_date,
            "due_date": r.due_date,
            "created_at": r.created_at,
            "updated_at": r.updated_at,
            "paid_at": r.paid_at,
            "description": item.description,
            "quantity": float(item.quantity),
            "rate": float(item.rate),
            "amount": float(item.amount),
            "service_charge": float(item.service_charge or 0),
        }
        for r in records
        for item in r.items
    ]
    if not rows:
        return pl.DataFrame(schema=ITEM_SCHEMA)
    return pl.from_dicts(rows, schema=ITEM_SCHEMA)


def _derive_columns(df: pl.DataFrame, spec: GroupSpec) -> pl.DataFrame:
    """Calendar parts, day counts and the bucket column for the key"""
    df = df.with_columns([
        pl.col("created_at").dt.year().alias("year"),
        pl.col("created_at").dt.month().alias("month"),
        pl.col("created_at").dt.day().alias("day"),
        pl.col("created_at").dt.week().alias("week"),
        _elapsed_days(paid_timestamp(), pl.col("due_date")).alias("payment_delay"),
        _elapsed_days(paid_timestamp(), pl.col("issue_date")).alias("payment_days"),
    ])

    if spec.as_of is not None:
        df = df.with_columns(
            _elapsed_days(pl.lit(spec.as_of), pl.col("due_date")).alias("days_overdue")
        )

    if spec.key == GroupKey.OVERDUE_AGE:
        if spec.as_of is None:
            raise ValueError("Overdue aging requires as_of")
        df = df.with_columns(OVERDUE_AGING.expr(pl.col("days_overdue")).alias("bucket"))
    elif spec.key == GroupKey.PAYMENT_DELAY:
        df = df.with_columns(PAYMENT_DELAY.expr(pl.col("payment_delay")).alias("bucket"))
    elif spec.key == GroupKey.SEASON:
        df = df.with_columns(SEASONS.expr(pl.col("month")).alias("quarter"))

    return df


def fold(frame: pl.DataFrame, spec: GroupSpec) -> List[Dict[str, Any]]:
    """
    Evaluate a spec over a frame built by `invoices_frame` or `items_frame`.

    Returns one dict per group with the key columns and reducer outputs.
    An empty match yields no rows, including for the ungrouped key.
    """
    conditions = spec.filter.conditions()
    if conditions:
        frame = frame.filter(reduce(operator.and_, conditions))

    if frame.is_empty():
        return []

    frame = _derive_columns(frame, spec)
    keys = list(spec.key_columns)
    aggregations = [reducer.expr().alias(name) for name, reducer in spec.reducers.items()]

    if keys:
        grouped = frame.group_by(keys).agg(aggregations)
    else:
        grouped = frame.select(aggregations)

    sort_columns = [column for column, _ in spec.sort]
    descending = [desc for _, desc in spec.sort]
    for column in keys:
        if column not in sort_columns:
            sort_columns.append(column)
            descending.append(False)
    if sort_columns:
        grouped = grouped.sort(by=sort_columns, descending=descending)

    if spec.limit is not None:
        grouped = grouped.head(spec.limit)

    return grouped.to_dicts()


def fold_records(records: Sequence[InvoiceRecord], spec: GroupSpec) -> List[Dict[str, Any]]:
    """Build the right frame for the spec and fold it"""
    frame = items_frame(records) if spec.unwind_items else invoices_frame(records)
    rows = fold(frame, spec)
    logger.debug(
        "Group spec folded",
        key=spec.key.value,
        input_records=len(records),
        groups=len(rows),
    )
    return rows
