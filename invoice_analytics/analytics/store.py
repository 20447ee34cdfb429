"""
Record Store Adapter

Read-only access to invoice and customer records scoped by organization.
The SQL implementation lives in `invoice_analytics.database.store`; the
in-memory one below backs tests and local demos.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .pipeline import GroupSpec, fold_records
from .records import CustomerRecord, CustomerStats, InvoiceRecord, RecentInvoice


class InvoiceStore(ABC):
    """Interface the aggregation engine reads through"""

    @abstractmethod
    async def query_invoices(self, org_id: str, spec: GroupSpec) -> List[Dict[str, Any]]:
        """Evaluate a grouping spec over the organization's invoices"""

    @abstractmethod
    async def find_recent_invoices(self, org_id: str, limit: int) -> List[RecentInvoice]:
        """Newest invoices first, customer name and email resolved"""

    @abstractmethod
    async def query_customers(self, org_id: str) -> CustomerStats:
        """Customer counts and outstanding balances"""

    @abstractmethod
    async def get_customers(self, org_id: str, customer_ids: Iterable[str]) -> Dict[str, CustomerRecord]:
        """Customers by id; unknown ids are absent from the result"""

    async def ping(self) -> None:
        """Raise if the store cannot serve queries"""


def summarize_customers(customers: Sequence[CustomerRecord]) -> CustomerStats:
    total = len(customers)
    outstanding = sum(c.outstanding_balance for c in customers)
    return CustomerStats(
        total_customers=total,
        active_customers=sum(1 for c in customers if c.is_active),
        total_outstanding=outstanding,
        average_outstanding=outstanding / total if total else 0.0,
    )


class InMemoryInvoiceStore(InvoiceStore):
    """
    Store over plain record lists.

    Example:
        store = InMemoryInvoiceStore(invoices=[...], customers=[...])
        rows = await store.query_invoices("org-1", spec)
    """

    def __init__(
        self,
        invoices: Optional[Iterable[InvoiceRecord]] = None,
        customers: Optional[Iterable[CustomerRecord]] = None,
    ):
        self._invoices: List[InvoiceRecord] = list(invoices or [])
        self._customers: Dict[str, CustomerRecord] = {c.id: c for c in customers or []}

    def add_invoice(self, invoice: InvoiceRecord) -> None:
        self._invoices.append(invoice)

    def add_customer(self, customer: CustomerRecord) -> None:
        self._customers[customer.id] = customer

    def _org_invoices(self, org_id: str) -> List[InvoiceRecord]:
        return [i for i in self._invoices if i.org_id == org_id]

    async def query_invoices(self, org_id: str, spec: GroupSpec) -> List[Dict[str, Any]]:
        return fold_records(self._org_invoices(org_id), spec)

    async def find_recent_invoices(self, org_id: str, limit: int) -> List[RecentInvoice]:
        invoices = sorted(self._org_invoices(org_id), key=lambda i: i.created_at, reverse=True)
        recent = []
        for invoice in invoices[:limit]:
            customer = self._customers.get(invoice.customer_id)
            recent.append(RecentInvoice(
                id=invoice.id,
                invoice_no=invoice.invoice_no,
                total=invoice.total,
                status=invoice.status,
                created_at=invoice.created_at,
                customer_id=invoice.customer_id,
                customer_name=customer.name if customer else None,
                customer_email=customer.email if customer else None,
            ))
        return recent

    async def query_customers(self, org_id: str) -> CustomerStats:
        return summarize_customers([c for c in self._customers.values() if c.org_id == org_id])

    async def get_customers(self, org_id: str, customer_ids: Iterable[str]) -> Dict[str, CustomerRecord]:
        found = {}
        for customer_id in customer_ids:
            customer = self._customers.get(customer_id)
            if customer is not None and customer.org_id == org_id:
                found[customer_id] = customer
        return found
