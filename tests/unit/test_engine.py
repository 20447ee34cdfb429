"""
Unit Tests - Aggregation Engine
"""
from datetime import datetime, timedelta

import pytest

from invoice_analytics.analytics.buckets import collection_rate
from invoice_analytics.analytics.engine import AnalyticsEngine
from invoice_analytics.analytics.errors import StoreUnavailableError, ValidationError
from invoice_analytics.analytics.store import InMemoryInvoiceStore
from invoice_analytics.config.settings import AnalyticsSettings

NOW = datetime(2026, 6, 15, 12, 0, 0)
ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"


class FailingStore(InMemoryInvoiceStore):
    """Store whose customer lookup blows up"""

    def __init__(self, error: Exception, **kwargs):
        super().__init__(**kwargs)
        self.error = error

    async def query_customers(self, org_id):
        raise self.error


class TestOverview:
    """Tests for the overview operation"""

    async def test_summary_figures(self, engine):
        result = await engine.compute_overview(ORG_ID, window_days=30)
        summary = result.overview

        assert summary.total_revenue == 1750.0
        assert summary.paid_revenue == 1000.0
        assert summary.pending_revenue == 500.0
        assert summary.overdue_revenue == 250.0
        assert summary.total_invoices == 3
        assert summary.average_invoice_value == pytest.approx(583.333, rel=1e-4)
        assert summary.collection_rate == pytest.approx(57.142857, rel=1e-6)

    async def test_growth_against_previous_window(self, engine):
        result = await engine.compute_overview(ORG_ID, window_days=30)

        assert result.overview.revenue_growth == pytest.approx(118.75)
        assert result.overview.invoice_growth == pytest.approx(200.0)
        assert result.period.previous_end == result.period.start
        assert result.period.start == NOW - timedelta(days=30)

    async def test_growth_rate_of_twenty_five_percent(self, make_invoice, customers, clock):
        store = InMemoryInvoiceStore(
            invoices=[
                make_invoice("now", "cust-1", 3, "paid", 10000.0),
                make_invoice("before", "cust-1", 40, "paid", 8000.0),
            ],
            customers=customers,
        )
        engine = AnalyticsEngine(store, AnalyticsSettings(), clock=clock)

        result = await engine.compute_overview(ORG_ID, window_days=30)

        assert result.overview.revenue_growth == 25.0

    async def test_no_previous_revenue_means_zero_growth(self, make_invoice, clock):
        store = InMemoryInvoiceStore(invoices=[make_invoice("only", "cust-1", 3, "paid", 500.0)])
        engine = AnalyticsEngine(store, AnalyticsSettings(), clock=clock)

        result = await engine.compute_overview(ORG_ID, window_days=30)

        assert result.overview.revenue_growth == 0.0
        assert result.overview.invoice_growth == 0.0

    async def test_status_distribution_covers_all_invoices(self, engine):
        result = await engine.compute_overview(ORG_ID)

        by_status = [(b.status, b.count, b.total_amount, b.percentage) for b in result.distribution.by_status]
        assert by_status == [
            ("overdue", 1, 250.0, 20.0),
            ("paid", 2, 1800.0, 40.0),
            ("sent", 2, 800.0, 40.0),
        ]

    async def test_customer_stats(self, engine):
        summary = (await engine.compute_overview(ORG_ID)).overview

        assert summary.total_customers == 3
        assert summary.active_customers == 2
        assert summary.total_outstanding == 2000.0
        assert summary.average_outstanding == pytest.approx(666.6667, rel=1e-4)

    async def test_top_customers_ranked_by_lifetime_revenue(self, engine):
        result = await engine.compute_overview(ORG_ID)

        assert [(c.id, c.total_revenue, c.invoice_count) for c in result.top_customers] == [
            ("cust-1", 1500.0, 2),
            ("cust-2", 1050.0, 2),
            ("cust-3", 300.0, 1),
        ]
        assert result.top_customers[0].name == "Acme Printing"
        assert result.top_customers[0].last_invoice_date == NOW - timedelta(days=5)

    async def test_overdue_aging_buckets(self, engine):
        result = await engine.compute_overview(ORG_ID)

        assert [(b.bucket, b.count, b.total_amount) for b in result.distribution.overdue] == [
            ("1-30 days", 1, 250.0),
            ("31-60 days", 1, 300.0),
        ]

    async def test_monthly_trend(self, engine):
        result = await engine.compute_overview(ORG_ID)

        monthly = [(m.month, m.revenue, m.paid_revenue, m.invoice_count) for m in result.trends.monthly]
        assert monthly == [
            ("2026-03", 300.0, 0.0, 1),
            ("2026-05", 1050.0, 800.0, 2),
            ("2026-06", 1500.0, 1000.0, 2),
        ]
        june = result.trends.monthly[-1]
        assert june.collection_rate == pytest.approx(66.6667, rel=1e-4)

    async def test_recent_activity_newest_first(self, engine):
        result = await engine.compute_overview(ORG_ID)

        assert [a.id for a in result.recent_activity] == ["inv-1", "inv-2", "inv-3", "inv-4", "inv-5"]
        assert result.recent_activity[0].customer_name == "Acme Printing"

    async def test_empty_organization_is_all_zeroes(self, engine):
        result = await engine.compute_overview("org-without-data")
        summary = result.overview

        assert summary.total_revenue == 0.0
        assert summary.revenue_growth == 0.0
        assert summary.total_invoices == 0
        assert summary.average_invoice_value == 0.0
        assert summary.total_customers == 0
        assert summary.average_outstanding == 0.0
        assert summary.collection_rate == 0.0
        assert result.trends.monthly == []
        assert result.distribution.by_status == []
        assert result.top_customers == []
        assert result.recent_activity == []

    async def test_organizations_are_isolated(self, engine):
        result = await engine.compute_overview(OTHER_ORG_ID)

        assert result.overview.total_revenue == 9999.0
        assert [c.id for c in result.top_customers] == ["cust-x"]
        assert result.overview.total_customers == 1

    @pytest.mark.parametrize("days", [0, -1, 7.5, 400000, 10 ** 12])
    async def test_invalid_window_rejected_before_querying(self, days):
        store = FailingStore(RuntimeError("must not be called"))
        engine = AnalyticsEngine(store)

        with pytest.raises(ValidationError):
            await engine.compute_overview(ORG_ID, window_days=days)


class TestRevenueTrends:
    """Tests for the revenue trends operation"""

    async def test_year_summary(self, engine):
        result = await engine.compute_revenue_trends(ORG_ID, period="year", year=2026)
        summary = result.summary

        assert result.granularity == "month"
        assert summary.total_revenue == 2850.0
        assert summary.total_paid == 1800.0
        assert summary.total_pending == 800.0
        assert summary.total_overdue == 250.0
        assert summary.total_invoices == 5
        assert summary.average_invoice_value == pytest.approx(570.0)

    async def test_summary_matches_trend_buckets(self, engine):
        result = await engine.compute_revenue_trends(ORG_ID, period="year", year=2026)

        assert [b.period for b in result.trends] == [
            {"year": 2026, "month": 3},
            {"year": 2026, "month": 5},
            {"year": 2026, "month": 6},
        ]
        assert sum(b.total_revenue for b in result.trends) == result.summary.total_revenue
        assert result.summary.collection_rate == pytest.approx(
            collection_rate(sum(b.paid_revenue for b in result.trends), result.summary.total_revenue)
        )
        for bucket in result.trends:
            assert bucket.collection_rate == pytest.approx(collection_rate(bucket.paid_revenue, bucket.total_revenue))

    async def test_services_ranked_by_item_revenue(self, engine):
        result = await engine.compute_revenue_trends(ORG_ID, period="year", year=2026)

        assert [(s.service, s.total_revenue, s.invoice_count) for s in result.by_service] == [
            ("Printing", 1800.0, 3),
            ("Binding", 750.0, 2),
            ("Lamination", 300.0, 1),
        ]

    async def test_customers_and_seasons(self, engine):
        result = await engine.compute_revenue_trends(ORG_ID, period="year", year=2026)

        assert [(c.customer_id, c.total_revenue, c.paid_revenue) for c in result.by_customer] == [
            ("cust-1", 1500.0, 1000.0),
            ("cust-2", 1050.0, 800.0),
            ("cust-3", 300.0, 0.0),
        ]
        assert [(s.quarter, s.total_revenue, s.invoice_count) for s in result.seasonal] == [
            ("Q1", 300.0, 1),
            ("Q2", 2550.0, 4),
        ]

    async def test_quarter_grouped_by_week_without_seasons(self, engine):
        result = await engine.compute_revenue_trends(ORG_ID, period="quarter", year=2026, quarter=2)

        assert result.granularity == "week"
        assert result.range_start == datetime(2026, 4, 1)
        assert result.range_end == datetime(2026, 7, 1)
        assert result.seasonal == []
        assert set(result.trends[0].period) == {"year", "month", "week"}
        assert result.summary.total_revenue == 2550.0

    async def test_month_grouped_by_day(self, engine):
        result = await engine.compute_revenue_trends(ORG_ID, period="month", year=2026, month=6)

        assert [b.period["day"] for b in result.trends] == [5, 10]
        assert result.summary.total_revenue == 1500.0

    async def test_empty_year(self, engine):
        result = await engine.compute_revenue_trends(ORG_ID, period="year", year=2020)

        assert result.trends == []
        assert result.summary.total_revenue == 0.0
        assert result.summary.average_invoice_value == 0.0
        assert result.summary.collection_rate == 0.0

    async def test_unknown_period_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.compute_revenue_trends(ORG_ID, period="decade")


class TestPaymentPatterns:
    """Tests for payment-delay patterns"""

    async def test_paid_invoices_bucketed_in_table_order(self, engine):
        patterns = await engine.compute_payment_patterns(ORG_ID)

        assert [(p.category, p.count, p.total_amount) for p in patterns] == [
            ("On Time", 1, 1000.0),
            ("8-30 days late", 1, 800.0),
        ]
        assert patterns[0].average_delay == pytest.approx(-28.0)
        assert patterns[1].average_delay == pytest.approx(10.0)

    async def test_range_limits_invoices(self, engine):
        patterns = await engine.compute_payment_patterns(
            ORG_ID, start=NOW - timedelta(days=30), end=NOW
        )

        assert [p.category for p in patterns] == ["On Time"]

    async def test_inverted_range_rejected(self, engine):
        with pytest.raises(ValidationError):
            await engine.compute_payment_patterns(ORG_ID, start=NOW, end=NOW - timedelta(days=1))


class TestDashboardStats:
    """Tests for dashboard headline numbers"""

    async def test_dashboard_stats(self, engine):
        stats = await engine.compute_dashboard_stats(ORG_ID)

        assert stats.total_revenue == 1800.0
        assert stats.overdue_invoices == 2
        assert stats.avg_payment_time == pytest.approx(21.0)
        assert [i.id for i in stats.recent_invoices] == ["inv-1", "inv-2", "inv-3", "inv-4", "inv-5"]

    async def test_recent_invoices_limited(self, store, clock):
        engine = AnalyticsEngine(store, AnalyticsSettings(dashboard_recent_limit=2), clock=clock)

        stats = await engine.compute_dashboard_stats(ORG_ID)

        assert [i.id for i in stats.recent_invoices] == ["inv-1", "inv-2"]

    async def test_empty_organization(self, engine):
        stats = await engine.compute_dashboard_stats("org-without-data")

        assert stats.total_revenue == 0.0
        assert stats.overdue_invoices == 0
        assert stats.avg_payment_time == 0.0
        assert stats.recent_invoices == []


class TestStoreFailures:
    """Store errors abort the whole operation"""

    async def test_unexpected_error_wrapped(self, invoices, customers, clock):
        cause = RuntimeError("connection reset")
        engine = AnalyticsEngine(FailingStore(cause, invoices=invoices, customers=customers), clock=clock)

        with pytest.raises(StoreUnavailableError) as exc_info:
            await engine.compute_overview(ORG_ID)

        assert exc_info.value.cause is cause
        assert exc_info.value.operation == "overview"
        assert exc_info.value.status_code == 500

    async def test_store_unavailable_propagates_unchanged(self, invoices, customers, clock):
        error = StoreUnavailableError("query timed out", operation="query_customers")
        engine = AnalyticsEngine(FailingStore(error, invoices=invoices, customers=customers), clock=clock)

        with pytest.raises(StoreUnavailableError) as exc_info:
            await engine.compute_overview(ORG_ID)

        assert exc_info.value is error
