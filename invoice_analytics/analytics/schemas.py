"""
Analytics Response Models

Result contracts returned by the engine and serialized by the API.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel


class PeriodInfo(BaseModel):
    """Current and previous comparison windows"""
    window_days: int
    start: datetime
    end: datetime
    previous_start: datetime
    previous_end: datetime


class OverviewSummary(BaseModel):
    """Headline figures for the window"""
    total_revenue: float
    revenue_growth: float
    total_invoices: int
    invoice_growth: float
    paid_revenue: float
    pending_revenue: float
    overdue_revenue: float
    average_invoice_value: float
    total_customers: int
    active_customers: int
    total_outstanding: float
    average_outstanding: float
    collection_rate: float


class MonthlyTrend(BaseModel):
    """One calendar month of the trailing trend"""
    month: str
    year: int
    month_number: int
    revenue: float
    invoice_count: int
    paid_revenue: float
    collection_rate: float


class OverviewTrends(BaseModel):
    monthly: List[MonthlyTrend]


class StatusBucket(BaseModel):
    """Invoices per status"""
    status: str
    count: int
    total_amount: float
    percentage: float


class AgingBucket(BaseModel):
    """Overdue invoices per aging bucket"""
    bucket: str
    count: int
    total_amount: float


class Distribution(BaseModel):
    by_status: List[StatusBucket]
    overdue: List[AgingBucket]


class TopCustomer(BaseModel):
    """Customer ranked by lifetime revenue"""
    id: str
    name: str
    email: str
    total_revenue: float
    invoice_count: int
    last_invoice_date: datetime


class RecentActivity(BaseModel):
    """Recently created invoice"""
    id: str
    invoice_no: str
    customer_name: Optional[str]
    total: float
    status: str
    created_at: datetime


class OverviewResult(BaseModel):
    """Response of the overview operation"""
    overview: OverviewSummary
    period: PeriodInfo
    trends: OverviewTrends
    distribution: Distribution
    top_customers: List[TopCustomer]
    recent_activity: List[RecentActivity]


class RevenueSummary(BaseModel):
    """Totals derived from the trend buckets"""
    total_revenue: float
    total_paid: float
    total_pending: float
    total_overdue: float
    total_invoices: int
    average_invoice_value: float
    collection_rate: float


class TrendBucket(BaseModel):
    """Revenue for one group of the selected period"""
    period: Dict[str, int]
    total_revenue: float
    paid_revenue: float
    pending_revenue: float
    overdue_revenue: float
    invoice_count: int
    paid_count: int
    average_value: float
    collection_rate: float


class CustomerRevenue(BaseModel):
    """Customer revenue within the range"""
    customer_id: str
    customer_name: str
    customer_email: str
    total_revenue: float
    paid_revenue: float
    invoice_count: int
    average_invoice_value: float
    last_invoice_date: datetime
    collection_rate: float


class ServiceRevenue(BaseModel):
    """Line-item revenue per service description"""
    service: str
    total_revenue: float
    total_quantity: float
    average_rate: float
    invoice_count: int


class PaymentPattern(BaseModel):
    """Paid invoices per payment-delay bucket"""
    category: str
    count: int
    total_amount: float
    average_delay: float


class SeasonalBucket(BaseModel):
    """Revenue per fiscal quarter"""
    quarter: str
    total_revenue: float
    invoice_count: int
    average_value: float


class RevenueTrendsResult(BaseModel):
    """Response of the revenue trends operation"""
    period: str
    range_start: datetime
    range_end: datetime
    granularity: str
    summary: RevenueSummary
    trends: List[TrendBucket]
    by_customer: List[CustomerRevenue]
    by_service: List[ServiceRevenue]
    payment_patterns: List[PaymentPattern]
    seasonal: List[SeasonalBucket]


class DashboardStats(BaseModel):
    """Headline numbers for the dashboard landing page"""
    total_revenue: float
    overdue_invoices: int
    avg_payment_time: float
    recent_invoices: List[RecentActivity]
