"""
Bucketing tables and ratio guards shared by the aggregation engine.

Each BucketTable is evaluated in order and the first upper edge that the
value does not exceed wins, so every edge is inclusive.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import polars as pl

MS_PER_DAY = 1000 * 60 * 60 * 24


@dataclass(frozen=True)
class BucketTable:
    """Ordered (upper edge, label) pairs with a fallback label"""
    edges: Tuple[Tuple[float, str], ...]
    default: str

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(label for _, label in self.edges) + (self.default,)

    def assign(self, value: float) -> str:
        for upper, label in self.edges:
            if value <= upper:
                return label
        return self.default

    def rank(self, label: str) -> int:
        """Position of a label in table order, unknown labels sort last"""
        try:
            return self.labels.index(label)
        except ValueError:
            return len(self.labels)

    def expr(self, value: pl.Expr) -> pl.Expr:
        """Same assignment as a polars when/then chain"""
        (upper, label), *rest = self.edges
        chain = pl.when(value <= upper).then(pl.lit(label))
        for upper, label in rest:
            chain = chain.when(value <= upper).then(pl.lit(label))
        return chain.otherwise(pl.lit(self.default))


OVERDUE_AGING = BucketTable(
    edges=((30, "1-30 days"), (60, "31-60 days"), (90, "61-90 days")),
    default="90+ days",
)

PAYMENT_DELAY = BucketTable(
    edges=((0, "On Time"), (7, "1-7 days late"), (30, "8-30 days late")),
    default="30+ days late",
)

# Calendar month -> fiscal quarter
SEASONS = BucketTable(
    edges=((3, "Q1"), (6, "Q2"), (9, "Q3")),
    default="Q4",
)


def percentage(part: Optional[float], whole: Optional[float]) -> float:
    """part / whole * 100, or 0 when whole is zero or missing"""
    if not whole or whole <= 0:
        return 0.0
    return float(part or 0) / float(whole) * 100


def collection_rate(paid_revenue: Optional[float], total_revenue: Optional[float]) -> float:
    return percentage(paid_revenue, total_revenue)


def growth_rate(current: Optional[float], previous: Optional[float]) -> float:
    """Period-over-period change in percent; 0 when there is no previous period"""
    if not previous or previous <= 0:
        return 0.0
    return (float(current or 0) - float(previous)) / float(previous) * 100


def mean(total: Optional[float], count: Optional[int]) -> float:
    if not count:
        return 0.0
    return float(total or 0) / count
