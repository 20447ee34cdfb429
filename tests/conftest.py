"""
Test Suite Configuration
"""
from datetime import datetime, timedelta
from typing import AsyncGenerator, Callable, List, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from invoice_analytics.analytics.engine import AnalyticsEngine
from invoice_analytics.analytics.records import CustomerRecord, InvoiceRecord, LineItem
from invoice_analytics.analytics.store import InMemoryInvoiceStore
from invoice_analytics.config.settings import AnalyticsSettings, CacheSettings, Settings
from invoice_analytics.database.models import Base, Customer, Invoice, InvoiceItem
from invoice_analytics.serving.cache import InMemoryCache

NOW = datetime(2026, 6, 15, 12, 0, 0)
ORG_ID = "org-1"
OTHER_ORG_ID = "org-2"


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def make_invoice() -> Callable[..., InvoiceRecord]:
    """
    Factory for invoice records relative to NOW.

    Dates are given in days: created `created_days_ago` before NOW, due
    `due_days` after creation, paid `paid_days` after creation.
    """

    def factory(
        id: str,
        customer_id: str,
        created_days_ago: float,
        status: str,
        total: float,
        due_days: float = 30,
        paid_days: Optional[float] = None,
        items: Optional[List[LineItem]] = None,
        org_id: str = ORG_ID,
    ) -> InvoiceRecord:
        created_at = NOW - timedelta(days=created_days_ago)
        paid_at = created_at + timedelta(days=paid_days) if paid_days is not None else None
        return InvoiceRecord(
            id=id,
            org_id=org_id,
            customer_id=customer_id,
            invoice_no=f"INV-{id}",
            issue_date=created_at,
            due_date=created_at + timedelta(days=due_days),
            created_at=created_at,
            updated_at=paid_at or created_at,
            status=status,
            items=items or [],
            total=total,
            paid_at=paid_at,
        )

    return factory


@pytest.fixture
def customers() -> List[CustomerRecord]:
    """Three customers of ORG_ID and one of another org"""
    return [
        CustomerRecord(id="cust-1", org_id=ORG_ID, name="Acme Printing", email="billing@acme.example",
                       outstanding_balance=500.0, is_active=True),
        CustomerRecord(id="cust-2", org_id=ORG_ID, name="Globex", email="ap@globex.example",
                       outstanding_balance=1500.0, is_active=True),
        CustomerRecord(id="cust-3", org_id=ORG_ID, name="Initech", email="finance@initech.example",
                       outstanding_balance=0.0, is_active=False),
        CustomerRecord(id="cust-x", org_id=OTHER_ORG_ID, name="Other Org Client", email="x@other.example",
                       outstanding_balance=9999.0, is_active=True),
    ]


@pytest.fixture
def invoices(make_invoice) -> List[InvoiceRecord]:
    """
    ORG_ID invoices around NOW (2026-06-15 12:00):

    inv-1  cust-1  5 days ago   paid     1000  paid 2 days after issue (on time)
    inv-2  cust-1  10 days ago  sent      500  due in 20 days
    inv-3  cust-2  20 days ago  overdue   250  5 days overdue
    inv-4  cust-2  45 days ago  paid      800  paid 10 days late
    inv-5  cust-3  90 days ago  sent      300  60 days overdue
    inv-x  other org, 1 day ago, paid 9999
    """
    return [
        make_invoice("inv-1", "cust-1", 5, "paid", 1000.0, paid_days=2, items=[
            LineItem(description="Printing", quantity=1000, rate=0.5, amount=500.0),
            LineItem(description="Binding", quantity=10, rate=50.0, amount=500.0),
        ]),
        make_invoice("inv-2", "cust-1", 10, "sent", 500.0, items=[
            LineItem(description="Printing", quantity=200, rate=2.5, amount=500.0),
        ]),
        make_invoice("inv-3", "cust-2", 20, "overdue", 250.0, due_days=15, items=[
            LineItem(description="Binding", quantity=5, rate=50.0, amount=250.0),
        ]),
        make_invoice("inv-4", "cust-2", 45, "paid", 800.0, paid_days=40, items=[
            LineItem(description="Printing", quantity=400, rate=2.0, amount=800.0),
        ]),
        make_invoice("inv-5", "cust-3", 90, "sent", 300.0, items=[
            LineItem(description="Lamination", quantity=100, rate=3.0, amount=300.0),
        ]),
        make_invoice("inv-x", "cust-x", 1, "paid", 9999.0, paid_days=1, org_id=OTHER_ORG_ID, items=[
            LineItem(description="Printing", quantity=1, rate=9999.0, amount=9999.0),
        ]),
    ]


@pytest.fixture
def store(invoices, customers) -> InMemoryInvoiceStore:
    return InMemoryInvoiceStore(invoices=invoices, customers=customers)


@pytest.fixture
def engine(store, clock) -> AnalyticsEngine:
    return AnalyticsEngine(store, AnalyticsSettings(), clock=clock)


@pytest.fixture
def cache() -> InMemoryCache:
    return InMemoryCache(default_ttl=300)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return Settings(
        app_env="testing",
        debug=True,
        cache=CacheSettings(backend="memory"),
    )


@pytest.fixture
async def sql_session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """SQLite database file with the record store schema"""
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'records.db'}", echo=False)

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)

    await db_engine.dispose()


@pytest.fixture
async def seeded_session_factory(sql_session_factory, invoices, customers):
    """SQL database holding the same records as the in-memory store"""
    async with sql_session_factory() as session:
        session.add_all([
            Customer(
                id=c.id,
                org_id=c.org_id,
                name=c.name,
                email=c.email,
                outstanding_balance=c.outstanding_balance,
                is_active=c.is_active,
                created_at=NOW,
                updated_at=NOW,
            )
            for c in customers
        ])
        await session.flush()
        session.add_all([
            Invoice(
                id=i.id,
                org_id=i.org_id,
                customer_id=i.customer_id,
                invoice_no=i.invoice_no,
                issue_date=i.issue_date,
                due_date=i.due_date,
                paid_at=i.paid_at,
                status=i.status,
                tax=i.tax,
                discount=i.discount,
                total=i.total,
                created_at=i.created_at,
                updated_at=i.updated_at,
                items=[
                    InvoiceItem(
                        description=item.description,
                        quantity=item.quantity,
                        rate=item.rate,
                        amount=item.amount,
                        service_charge=item.service_charge,
                    )
                    for item in i.items
                ],
            )
            for i in invoices
        ])
        await session.commit()

    return sql_session_factory
