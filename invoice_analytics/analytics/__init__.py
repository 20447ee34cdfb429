"""
Invoice Analytics Service
Aggregation Engine Module
"""
from .engine import AnalyticsEngine
from .errors import AnalyticsError, StoreUnavailableError, ValidationError
from .pipeline import GroupKey, GroupSpec, InvoiceFilter, Reducer, fold_records
from .records import CustomerRecord, InvoiceRecord, InvoiceStatus, LineItem
from .store import InMemoryInvoiceStore, InvoiceStore
from .window import AggregationWindow, Granularity, Period

__all__ = [
    "AnalyticsEngine",
    "AnalyticsError",
    "StoreUnavailableError",
    "ValidationError",
    "GroupKey",
    "GroupSpec",
    "InvoiceFilter",
    "Reducer",
    "fold_records",
    "CustomerRecord",
    "InvoiceRecord",
    "InvoiceStatus",
    "LineItem",
    "InMemoryInvoiceStore",
    "InvoiceStore",
    "AggregationWindow",
    "Granularity",
    "Period",
]
