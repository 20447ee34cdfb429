"""
SQL Record Store

Record store over the SQLAlchemy models. Filters of a GroupSpec are pushed
into the WHERE clause; the matching rows are then folded by the same polars
pipeline the in-memory store uses, so grouping and ordering rules do not
depend on the SQL dialect.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, List, TypeVar

import structlog
from sqlalchemy import case, func, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from invoice_analytics.analytics.errors import StoreUnavailableError
from invoice_analytics.analytics.pipeline import GroupSpec, InvoiceFilter, fold_records
from invoice_analytics.analytics.records import CustomerRecord, CustomerStats, RecentInvoice
from invoice_analytics.analytics.store import InvoiceStore
from .models import Customer, Invoice

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def filter_clauses(invoice_filter: InvoiceFilter) -> List[Any]:
    """WHERE clauses equivalent to InvoiceFilter.conditions()"""
    clauses = []
    if invoice_filter.created_from is not None:
        clauses.append(Invoice.created_at >= invoice_filter.created_from)
    if invoice_filter.created_to is not None:
        clauses.append(Invoice.created_at < invoice_filter.created_to)
    if invoice_filter.statuses:
        clauses.append(Invoice.status.in_(invoice_filter.statuses))
    if invoice_filter.exclude_statuses:
        clauses.append(Invoice.status.not_in(invoice_filter.exclude_statuses))
    if invoice_filter.due_before is not None:
        clauses.append(Invoice.due_date < invoice_filter.due_before)

    paid_timestamp = func.coalesce(Invoice.paid_at, Invoice.updated_at)
    if invoice_filter.paid_from is not None:
        clauses.append(paid_timestamp >= invoice_filter.paid_from)
    if invoice_filter.paid_to is not None:
        clauses.append(paid_timestamp < invoice_filter.paid_to)
    return clauses


class SqlInvoiceStore(InvoiceStore):
    """
    Record store backed by an async SQLAlchemy session factory.

    Every call runs in its own session and is bounded by `query_timeout`;
    driver errors and timeouts surface as StoreUnavailableError.

    Example:
        store = SqlInvoiceStore(get_session_factory(), query_timeout=10.0)
        rows = await store.query_invoices("org-1", spec)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], query_timeout: float = 10.0):
        self._session_factory = session_factory
        self.query_timeout = query_timeout

    async def _run(self, operation: str, query: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async def in_session() -> T:
            async with self._session_factory() as session:
                return await query(session)

        try:
            return await asyncio.wait_for(in_session(), timeout=self.query_timeout)
        except asyncio.TimeoutError as e:
            logger.error("Record store query timed out", operation=operation, timeout=self.query_timeout)
            raise StoreUnavailableError(
                f"{operation} timed out after {self.query_timeout}s", operation=operation, cause=e
            ) from e
        except SQLAlchemyError as e:
            logger.error("Record store query failed", operation=operation, error=str(e))
            raise StoreUnavailableError(f"{operation} failed: {e}", operation=operation, cause=e) from e

    async def query_invoices(self, org_id: str, spec: GroupSpec) -> List[Dict[str, Any]]:
        async def load(session: AsyncSession):
            stmt = select(Invoice).where(Invoice.org_id == org_id, *filter_clauses(spec.filter))
            if spec.unwind_items:
                stmt = stmt.options(selectinload(Invoice.items))
            result = await session.execute(stmt)
            return [invoice.to_record(include_items=spec.unwind_items) for invoice in result.scalars()]

        records = await self._run("query_invoices", load)
        return fold_records(records, spec)

    async def find_recent_invoices(self, org_id: str, limit: int) -> List[RecentInvoice]:
        async def load(session: AsyncSession):
            stmt = (
                select(Invoice, Customer.name, Customer.email)
                .outerjoin(Customer, Customer.id == Invoice.customer_id)
                .where(Invoice.org_id == org_id)
                .order_by(Invoice.created_at.desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [
                RecentInvoice(
                    id=invoice.id,
                    invoice_no=invoice.invoice_no,
                    total=float(invoice.total or 0),
                    status=invoice.status,
                    created_at=invoice.created_at,
                    customer_id=invoice.customer_id,
                    customer_name=name,
                    customer_email=email,
                )
                for invoice, name, email in result.all()
            ]

        return await self._run("find_recent_invoices", load)

    async def query_customers(self, org_id: str) -> CustomerStats:
        async def load(session: AsyncSession):
            stmt = select(
                func.count(Customer.id),
                func.sum(case((Customer.is_active.is_(True), 1), else_=0)),
                func.sum(Customer.outstanding_balance),
            ).where(Customer.org_id == org_id)
            total, active, outstanding = (await session.execute(stmt)).one()
            total = int(total or 0)
            outstanding = float(outstanding or 0)
            return CustomerStats(
                total_customers=total,
                active_customers=int(active or 0),
                total_outstanding=outstanding,
                average_outstanding=outstanding / total if total else 0.0,
            )

        return await self._run("query_customers", load)

    async def get_customers(self, org_id: str, customer_ids: Iterable[str]) -> Dict[str, CustomerRecord]:
        customer_ids = list(customer_ids)
        if not customer_ids:
            return {}

        async def load(session: AsyncSession):
            stmt = select(Customer).where(Customer.org_id == org_id, Customer.id.in_(customer_ids))
            result = await session.execute(stmt)
            return {customer.id: customer.to_record() for customer in result.scalars()}

        return await self._run("get_customers", load)

    async def ping(self) -> None:
        async def probe(session: AsyncSession):
            await session.execute(text("SELECT 1"))

        await self._run("ping", probe)
