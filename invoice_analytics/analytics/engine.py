"""
Aggregation Engine

Organization-scoped financial analytics over the record store:
- Overview with period-over-period growth
- Revenue trends per year, quarter, month or week
- Payment-delay patterns
- Dashboard headline stats

Independent rollups of one operation are issued concurrently and joined
before assembly. Any store failure aborts the whole operation with a single
StoreUnavailableError.
"""

import asyncio
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import structlog

from invoice_analytics.config.settings import AnalyticsSettings
from invoice_analytics.instrumentation import ANALYTICS_QUERY_TIME, STORE_FAILURES
from .buckets import OVERDUE_AGING, PAYMENT_DELAY, collection_rate, growth_rate, mean, percentage
from .errors import AnalyticsError, StoreUnavailableError, ValidationError
from .pipeline import GRANULARITY_KEYS, GroupKey, GroupSpec, InvoiceFilter, Reducer
from .records import CustomerRecord, InvoiceStatus, RecentInvoice
from .schemas import (
    AgingBucket,
    CustomerRevenue,
    DashboardStats,
    Distribution,
    MonthlyTrend,
    OverviewResult,
    OverviewSummary,
    OverviewTrends,
    PaymentPattern,
    PeriodInfo,
    RecentActivity,
    RevenueSummary,
    RevenueTrendsResult,
    SeasonalBucket,
    ServiceRevenue,
    StatusBucket,
    TopCustomer,
    TrendBucket,
)
from .store import InvoiceStore
from .window import AggregationWindow, Period, shift_months, utcnow, validate_window_days

logger = structlog.get_logger(__name__)

PAID = InvoiceStatus.PAID.value
SENT = InvoiceStatus.SENT.value
OVERDUE = InvoiceStatus.OVERDUE.value

REVENUE_REDUCERS = {
    "total_revenue": Reducer.sum("total"),
    "paid_revenue": Reducer.sum("total", status=PAID),
    "pending_revenue": Reducer.sum("total", status=SENT),
    "overdue_revenue": Reducer.sum("total", status=OVERDUE),
    "invoice_count": Reducer.count(),
    "paid_count": Reducer.count(status=PAID),
    "average_value": Reducer.avg("total"),
}

CUSTOMER_REDUCERS = {
    "total_revenue": Reducer.sum("total"),
    "paid_revenue": Reducer.sum("total", status=PAID),
    "invoice_count": Reducer.count(),
    "average_invoice_value": Reducer.avg("total"),
    "last_invoice_date": Reducer.max("created_at"),
}


def _recent_activity(invoice: RecentInvoice) -> RecentActivity:
    return RecentActivity(
        id=invoice.id,
        invoice_no=invoice.invoice_no,
        customer_name=invoice.customer_name,
        total=invoice.total,
        status=invoice.status,
        created_at=invoice.created_at,
    )


class AnalyticsEngine:
    """
    Computes analytics for one organization per call.

    The engine keeps no mutable state between calls; `clock` is injectable
    so windows can be pinned in tests.

    Example:
        engine = AnalyticsEngine(store)
        overview = await engine.compute_overview("org-1", window_days=30)
    """

    def __init__(
        self,
        store: InvoiceStore,
        settings: Optional[AnalyticsSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings or AnalyticsSettings()
        self._clock = clock

    async def _gather(self, operation: str, org_id: str, *queries: Awaitable[Any]) -> List[Any]:
        """Run independent queries concurrently; the first failure aborts the operation"""
        with ANALYTICS_QUERY_TIME.labels(operation=operation).time():
            results = await asyncio.gather(*queries, return_exceptions=True)
        for result in results:
            if isinstance(result, StoreUnavailableError):
                STORE_FAILURES.labels(operation=operation).inc()
                logger.error("Record store unavailable", operation=operation, org_id=org_id, error=result.message)
                raise result
            if isinstance(result, AnalyticsError):
                raise result
            if isinstance(result, Exception):
                STORE_FAILURES.labels(operation=operation).inc()
                logger.error(
                    "Analytics query failed",
                    operation=operation,
                    org_id=org_id,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                raise StoreUnavailableError(
                    f"{operation} failed: {result}", operation=operation, cause=result
                ) from result
            if isinstance(result, BaseException):
                raise result
        return results

    async def _ranked_customers(
        self,
        org_id: str,
        invoice_filter: InvoiceFilter,
        limit: int,
    ) -> List[Tuple[Dict[str, Any], CustomerRecord]]:
        """Customers by revenue descending, rows without a known customer dropped"""
        rows = await self.store.query_invoices(org_id, GroupSpec(
            key=GroupKey.CUSTOMER,
            reducers=CUSTOMER_REDUCERS,
            filter=invoice_filter,
            sort=(("total_revenue", True),),
            limit=limit,
        ))
        customers = await self.store.get_customers(org_id, [row["customer_id"] for row in rows])
        return [(row, customers[row["customer_id"]]) for row in rows if row["customer_id"] in customers]

    async def _payment_patterns(self, org_id: str, invoice_filter: InvoiceFilter) -> List[PaymentPattern]:
        rows = await self.store.query_invoices(org_id, GroupSpec(
            key=GroupKey.PAYMENT_DELAY,
            reducers={
                "count": Reducer.count(),
                "total_amount": Reducer.sum("total"),
                "average_delay": Reducer.avg("payment_delay"),
            },
            filter=replace(invoice_filter, statuses=(PAID,)),
        ))
        rows.sort(key=lambda row: PAYMENT_DELAY.rank(row["bucket"]))
        return [
            PaymentPattern(
                category=row["bucket"],
                count=row["count"],
                total_amount=row["total_amount"],
                average_delay=row["average_delay"] or 0.0,
            )
            for row in rows
        ]

    async def compute_overview(self, org_id: str, window_days: Optional[int] = None) -> OverviewResult:
        """
        Revenue overview for the trailing window with growth against the
        equal-length window immediately before it.

        Args:
            org_id: Organization identifier
            window_days: Window length in days, defaults to the configured value

        Returns:
            OverviewResult
        """
        if window_days is None:
            window_days = self.settings.default_window_days
        window_days = validate_window_days(window_days)

        now = self._clock()
        current = AggregationWindow.trailing(org_id, now, window_days)
        previous = current.previous()
        trend_start = shift_months(now, -(self.settings.trend_months - 1))

        logger.info("Computing overview", org_id=org_id, window_days=window_days)

        (
            revenue_rows,
            previous_rows,
            status_rows,
            customer_stats,
            monthly_rows,
            ranked_customers,
            aging_rows,
            recent,
        ) = await self._gather(
            "overview",
            org_id,
            self.store.query_invoices(org_id, GroupSpec(
                reducers=REVENUE_REDUCERS,
                filter=InvoiceFilter(created_from=current.start),
            )),
            self.store.query_invoices(org_id, GroupSpec(
                reducers={"total_revenue": Reducer.sum("total"), "invoice_count": Reducer.count()},
                filter=InvoiceFilter(created_from=previous.start, created_to=previous.end),
            )),
            self.store.query_invoices(org_id, GroupSpec(
                key=GroupKey.STATUS,
                reducers={"count": Reducer.count(), "total_amount": Reducer.sum("total")},
            )),
            self.store.query_customers(org_id),
            self.store.query_invoices(org_id, GroupSpec(
                key=GroupKey.YEAR_MONTH,
                reducers={
                    "revenue": Reducer.sum("total"),
                    "invoice_count": Reducer.count(),
                    "paid_revenue": Reducer.sum("total", status=PAID),
                },
                filter=InvoiceFilter(created_from=trend_start),
            )),
            self._ranked_customers(org_id, InvoiceFilter(), self.settings.top_customers_limit),
            self.store.query_invoices(org_id, GroupSpec(
                key=GroupKey.OVERDUE_AGE,
                reducers={"count": Reducer.count(), "total_amount": Reducer.sum("total")},
                filter=InvoiceFilter(statuses=(SENT, OVERDUE), due_before=now),
                as_of=now,
            )),
            self.store.find_recent_invoices(org_id, self.settings.recent_activity_limit),
        )

        current_stats = revenue_rows[0] if revenue_rows else {}
        previous_stats = previous_rows[0] if previous_rows else {}

        total_revenue = current_stats.get("total_revenue", 0.0)
        paid_revenue = current_stats.get("paid_revenue", 0.0)
        invoice_count = current_stats.get("invoice_count", 0)

        summary = OverviewSummary(
            total_revenue=total_revenue,
            revenue_growth=growth_rate(total_revenue, previous_stats.get("total_revenue", 0.0)),
            total_invoices=invoice_count,
            invoice_growth=growth_rate(invoice_count, previous_stats.get("invoice_count", 0)),
            paid_revenue=paid_revenue,
            pending_revenue=current_stats.get("pending_revenue", 0.0),
            overdue_revenue=current_stats.get("overdue_revenue", 0.0),
            average_invoice_value=current_stats.get("average_value") or 0.0,
            total_customers=customer_stats.total_customers,
            active_customers=customer_stats.active_customers,
            total_outstanding=customer_stats.total_outstanding,
            average_outstanding=customer_stats.average_outstanding,
            collection_rate=collection_rate(paid_revenue, total_revenue),
        )

        status_total = sum(row["count"] for row in status_rows)
        aging_rows.sort(key=lambda row: OVERDUE_AGING.rank(row["bucket"]))

        result = OverviewResult(
            overview=summary,
            period=PeriodInfo(
                window_days=window_days,
                start=current.start,
                end=current.end,
                previous_start=previous.start,
                previous_end=previous.end,
            ),
            trends=OverviewTrends(monthly=[
                MonthlyTrend(
                    month=f"{row['year']}-{row['month']:02d}",
                    year=row["year"],
                    month_number=row["month"],
                    revenue=row["revenue"],
                    invoice_count=row["invoice_count"],
                    paid_revenue=row["paid_revenue"],
                    collection_rate=collection_rate(row["paid_revenue"], row["revenue"]),
                )
                for row in monthly_rows
            ]),
            distribution=Distribution(
                by_status=[
                    StatusBucket(
                        status=row["status"],
                        count=row["count"],
                        total_amount=row["total_amount"],
                        percentage=percentage(row["count"], status_total),
                    )
                    for row in status_rows
                ],
                overdue=[
                    AgingBucket(bucket=row["bucket"], count=row["count"], total_amount=row["total_amount"])
                    for row in aging_rows
                ],
            ),
            top_customers=[
                TopCustomer(
                    id=customer.id,
                    name=customer.name,
                    email=customer.email,
                    total_revenue=row["total_revenue"],
                    invoice_count=row["invoice_count"],
                    last_invoice_date=row["last_invoice_date"],
                )
                for row, customer in ranked_customers
            ],
            recent_activity=[_recent_activity(invoice) for invoice in recent],
        )

        logger.info(
            "Overview computed",
            org_id=org_id,
            total_revenue=summary.total_revenue,
            invoices=summary.total_invoices,
            revenue_growth=round(summary.revenue_growth, 2),
        )
        return result

    async def compute_revenue_trends(
        self,
        org_id: str,
        period: Union[str, Period] = Period.YEAR,
        year: Optional[int] = None,
        quarter: Optional[int] = None,
        month: Optional[int] = None,
        week_start: Optional[Union[date, datetime]] = None,
    ) -> RevenueTrendsResult:
        """
        Revenue trends for a calendar period.

        The period selects both the range and the bucket size: a year is
        bucketed by month, a quarter by ISO week, a month or a week by day.
        The summary is summed from the trend buckets themselves.
        """
        now = self._clock()
        window = AggregationWindow.for_period(
            org_id,
            period,
            now,
            year=year,
            quarter=quarter,
            month=month,
            week_start=week_start,
        )
        period = Period(period)
        key = GRANULARITY_KEYS[window.granularity]
        range_filter = InvoiceFilter(created_from=window.start, created_to=window.end)

        logger.info(
            "Computing revenue trends",
            org_id=org_id,
            period=period.value,
            start=window.start.isoformat(),
            end=window.end.isoformat(),
        )

        queries = [
            self.store.query_invoices(org_id, GroupSpec(
                key=key,
                reducers=REVENUE_REDUCERS,
                filter=range_filter,
            )),
            self._ranked_customers(org_id, range_filter, self.settings.revenue_customers_limit),
            self.store.query_invoices(org_id, GroupSpec(
                key=GroupKey.SERVICE,
                reducers={
                    "total_revenue": Reducer.sum("amount"),
                    "total_quantity": Reducer.sum("quantity"),
                    "average_rate": Reducer.avg("rate"),
                    "invoice_count": Reducer.count_distinct("id"),
                },
                filter=range_filter,
                sort=(("total_revenue", True),),
                limit=self.settings.services_limit,
                unwind_items=True,
            )),
            self._payment_patterns(org_id, range_filter),
        ]
        if period == Period.YEAR:
            queries.append(self.store.query_invoices(org_id, GroupSpec(
                key=GroupKey.SEASON,
                reducers={
                    "total_revenue": Reducer.sum("total"),
                    "invoice_count": Reducer.count(),
                    "average_value": Reducer.avg("total"),
                },
                filter=range_filter,
            )))

        results = await self._gather("revenue_trends", org_id, *queries)
        trend_rows, ranked_customers, service_rows, payment_patterns = results[:4]
        seasonal_rows = results[4] if len(results) > 4 else []

        key_columns = GroupSpec(reducers={}, key=key).key_columns
        trends = [
            TrendBucket(
                period={column: row[column] for column in key_columns},
                total_revenue=row["total_revenue"],
                paid_revenue=row["paid_revenue"],
                pending_revenue=row["pending_revenue"],
                overdue_revenue=row["overdue_revenue"],
                invoice_count=row["invoice_count"],
                paid_count=row["paid_count"],
                average_value=row["average_value"] or 0.0,
                collection_rate=collection_rate(row["paid_revenue"], row["total_revenue"]),
            )
            for row in trend_rows
        ]

        total_revenue = sum(bucket.total_revenue for bucket in trends)
        total_paid = sum(bucket.paid_revenue for bucket in trends)
        total_invoices = sum(bucket.invoice_count for bucket in trends)
        summary = RevenueSummary(
            total_revenue=total_revenue,
            total_paid=total_paid,
            total_pending=sum(bucket.pending_revenue for bucket in trends),
            total_overdue=sum(bucket.overdue_revenue for bucket in trends),
            total_invoices=total_invoices,
            average_invoice_value=mean(total_revenue, total_invoices),
            collection_rate=collection_rate(total_paid, total_revenue),
        )

        return RevenueTrendsResult(
            period=period.value,
            range_start=window.start,
            range_end=window.end,
            granularity=window.granularity.value,
            summary=summary,
            trends=trends,
            by_customer=[
                CustomerRevenue(
                    customer_id=customer.id,
                    customer_name=customer.name,
                    customer_email=customer.email,
                    total_revenue=row["total_revenue"],
                    paid_revenue=row["paid_revenue"],
                    invoice_count=row["invoice_count"],
                    average_invoice_value=row["average_invoice_value"] or 0.0,
                    last_invoice_date=row["last_invoice_date"],
                    collection_rate=collection_rate(row["paid_revenue"], row["total_revenue"]),
                )
                for row, customer in ranked_customers
            ],
            by_service=[
                ServiceRevenue(
                    service=row["description"],
                    total_revenue=row["total_revenue"],
                    total_quantity=row["total_quantity"],
                    average_rate=row["average_rate"] or 0.0,
                    invoice_count=row["invoice_count"],
                )
                for row in service_rows
            ],
            payment_patterns=payment_patterns,
            seasonal=[
                SeasonalBucket(
                    quarter=row["quarter"],
                    total_revenue=row["total_revenue"],
                    invoice_count=row["invoice_count"],
                    average_value=row["average_value"] or 0.0,
                )
                for row in seasonal_rows
            ],
        )

    async def compute_payment_patterns(
        self,
        org_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[PaymentPattern]:
        """Paid invoices created in [start, end) bucketed by payment delay"""
        if start is not None and end is not None and start >= end:
            raise ValidationError("start_date must be before end_date")

        (patterns,) = await self._gather(
            "payment_patterns",
            org_id,
            self._payment_patterns(org_id, InvoiceFilter(created_from=start, created_to=end)),
        )
        return patterns

    async def compute_dashboard_stats(self, org_id: str) -> DashboardStats:
        """
        Dashboard headline numbers:
        - revenue paid during the current calendar month
        - open invoices past their due date
        - mean days from issue to payment
        - newest invoices
        """
        now = self._clock()
        month_start = shift_months(now, 0)

        revenue_rows, overdue_rows, payment_rows, recent = await self._gather(
            "dashboard_stats",
            org_id,
            self.store.query_invoices(org_id, GroupSpec(
                reducers={"total_revenue": Reducer.sum("total")},
                filter=InvoiceFilter(
                    statuses=(PAID,),
                    paid_from=month_start,
                    paid_to=shift_months(now, 1),
                ),
            )),
            self.store.query_invoices(org_id, GroupSpec(
                reducers={"count": Reducer.count()},
                filter=InvoiceFilter(
                    exclude_statuses=(PAID, InvoiceStatus.DRAFT.value, InvoiceStatus.CANCELLED.value),
                    due_before=now,
                ),
            )),
            self.store.query_invoices(org_id, GroupSpec(
                reducers={"avg_payment_time": Reducer.avg("payment_days")},
                filter=InvoiceFilter(statuses=(PAID,)),
            )),
            self.store.find_recent_invoices(org_id, self.settings.dashboard_recent_limit),
        )

        return DashboardStats(
            total_revenue=revenue_rows[0]["total_revenue"] if revenue_rows else 0.0,
            overdue_invoices=overdue_rows[0]["count"] if overdue_rows else 0,
            avg_payment_time=(payment_rows[0]["avg_payment_time"] or 0.0) if payment_rows else 0.0,
            recent_invoices=[_recent_activity(invoice) for invoice in recent],
        )
