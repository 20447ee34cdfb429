"""
Invoice Analytics Service
Database Module
"""
from .connection import close_database, create_tables, get_db, get_engine, get_session_factory, init_database
from .models import Base, Customer, Invoice, InvoiceItem
from .store import SqlInvoiceStore

__all__ = [
    "close_database",
    "create_tables",
    "get_db",
    "get_engine",
    "get_session_factory",
    "init_database",
    "Base",
    "Customer",
    "Invoice",
    "InvoiceItem",
    "SqlInvoiceStore",
]
