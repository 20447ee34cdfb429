"""
Read-only record types consumed by the aggregation engine.

Timestamps are naive UTC datetimes, matching the DateTime columns of the
SQL store.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class InvoiceStatus(str, Enum):
    """Invoice status enumeration"""
    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


@dataclass
class LineItem:
    """Single invoice line"""
    description: str
    quantity: float
    rate: float
    amount: float
    service_charge: float = 0.0


@dataclass
class InvoiceRecord:
    """Invoice as seen by the engine"""
    id: str
    org_id: str
    customer_id: str
    invoice_no: str
    issue_date: datetime
    due_date: datetime
    created_at: datetime
    updated_at: datetime
    status: str
    items: List[LineItem] = field(default_factory=list)
    tax: float = 0.0
    discount: float = 0.0
    total: float = 0.0
    paid_at: Optional[datetime] = None

    def __post_init__(self):
        if isinstance(self.status, InvoiceStatus):
            self.status = self.status.value

    def computed_total(self) -> float:
        """Items plus service charges plus tax minus discount, floored at zero"""
        subtotal = sum(item.amount + item.service_charge for item in self.items)
        return max(subtotal + self.tax - self.discount, 0.0)

    @property
    def paid_timestamp(self) -> datetime:
        """Canonical paid timestamp; updated_at stands in when paid_at was never recorded"""
        return self.paid_at or self.updated_at


@dataclass
class CustomerRecord:
    """Customer as seen by the engine"""
    id: str
    org_id: str
    name: str
    email: str
    outstanding_balance: float = 0.0
    is_active: bool = True


@dataclass
class CustomerStats:
    """Org-wide customer counts and balances"""
    total_customers: int = 0
    active_customers: int = 0
    total_outstanding: float = 0.0
    average_outstanding: float = 0.0


@dataclass
class RecentInvoice:
    """Invoice summary with the customer resolved"""
    id: str
    invoice_no: str
    total: float
    status: str
    created_at: datetime
    customer_id: str
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
