"""
Database Models - Invoicing Record Store

Read-side schema of the invoicing application. The analytics service never
writes these tables outside the seed script.

Tables:
- customers: Billing customers per organization
- invoices: Invoice headers with status, dates and totals
- invoice_items: Line items of an invoice
"""

from datetime import datetime
from typing import List, Optional
import uuid

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from invoice_analytics.analytics.records import CustomerRecord, InvoiceRecord, InvoiceStatus, LineItem


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


def Money():
    return Numeric(12, 2, asdecimal=False)


class Customer(Base):
    """Customer Table"""
    __tablename__ = "customers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    outstanding_balance: Mapped[float] = mapped_column(Money(), default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    invoices: Mapped[List["Invoice"]] = relationship(back_populates="customer")

    __table_args__ = (
        Index("ix_customers_org", "org_id"),
        Index("ix_customers_org_active", "org_id", "is_active"),
    )

    def to_record(self) -> CustomerRecord:
        return CustomerRecord(
            id=self.id,
            org_id=self.org_id,
            name=self.name,
            email=self.email,
            outstanding_balance=float(self.outstanding_balance or 0),
            is_active=bool(self.is_active),
        )


class Invoice(Base):
    """
    Invoice Table

    `total` is stored as computed by the invoicing application:
    items plus service charges plus tax minus discount, floored at zero.
    """
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    customer_id: Mapped[str] = mapped_column(ForeignKey("customers.id"), nullable=False)
    invoice_no: Mapped[str] = mapped_column(String(50), nullable=False)

    # Dates
    issue_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    status: Mapped[str] = mapped_column(String(20), default=InvoiceStatus.DRAFT.value, nullable=False)

    # Amounts
    tax: Mapped[float] = mapped_column(Money(), default=0)
    discount: Mapped[float] = mapped_column(Money(), default=0)
    total: Mapped[float] = mapped_column(Money(), default=0)

    # Audit
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    customer: Mapped["Customer"] = relationship(back_populates="invoices")
    items: Mapped[List["InvoiceItem"]] = relationship(
        back_populates="invoice", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_invoices_org_created", "org_id", "created_at"),
        Index("ix_invoices_org_status", "org_id", "status"),
        Index("ix_invoices_org_due", "org_id", "due_date"),
        Index("ix_invoices_customer", "customer_id"),
    )

    def to_record(self, include_items: bool = False) -> InvoiceRecord:
        """Engine record; items are only read when they were eagerly loaded"""
        items = []
        if include_items:
            items = [item.to_line_item() for item in self.items]
        return InvoiceRecord(
            id=self.id,
            org_id=self.org_id,
            customer_id=self.customer_id,
            invoice_no=self.invoice_no,
            issue_date=self.issue_date,
            due_date=self.due_date,
            created_at=self.created_at,
            updated_at=self.updated_at,
            status=self.status,
            items=items,
            tax=float(self.tax or 0),
            discount=float(self.discount or 0),
            total=float(self.total or 0),
            paid_at=self.paid_at,
        )


class InvoiceItem(Base):
    """Invoice Line Item Table"""
    __tablename__ = "invoice_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[str] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[float] = mapped_column(Numeric(10, 2, asdecimal=False), default=1)
    rate: Mapped[float] = mapped_column(Money(), default=0)
    amount: Mapped[float] = mapped_column(Money(), default=0)
    service_charge: Mapped[float] = mapped_column(Money(), default=0)

    invoice: Mapped["Invoice"] = relationship(back_populates="items")

    __table_args__ = (
        Index("ix_invoice_items_invoice", "invoice_id"),
        Index("ix_invoice_items_description", "description"),
    )

    def to_line_item(self) -> LineItem:
        return LineItem(
            description=self.description,
            quantity=float(self.quantity or 0),
            rate=float(self.rate or 0),
            amount=float(self.amount or 0),
            service_charge=float(self.service_charge or 0),
        )
