"""
Revenue report export.

A revenue trends result rendered as one CSV document with three sections:
the summary, the top customers by revenue and the revenue by service.
"""

import csv
import io
from typing import Optional

from .errors import ValidationError
from .schemas import RevenueTrendsResult

EXPORT_FORMATS = ("csv",)


def validate_export_format(export_format: str) -> str:
    export_format = (export_format or "").lower()
    if export_format not in EXPORT_FORMATS:
        raise ValidationError(f"Format must be one of: {list(EXPORT_FORMATS)}")
    return export_format


def report_filename(result: RevenueTrendsResult, year: Optional[int] = None) -> str:
    year = year if year is not None else result.range_start.year
    return f"revenue-report-{year}-{result.period}.csv"


def _money(value: float) -> str:
    return f"{value:.2f}"


def _rate(value: float) -> str:
    return f"{value:.1f}%"


def revenue_report_csv(result: RevenueTrendsResult) -> str:
    """Render the report sections; amounts carry two decimals, rates one"""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    summary = result.summary

    writer.writerow(["Revenue Report"])
    writer.writerow([])
    writer.writerow(["Summary"])
    writer.writerow(["Total Revenue", _money(summary.total_revenue)])
    writer.writerow(["Total Paid", _money(summary.total_paid)])
    writer.writerow(["Collection Rate", _rate(summary.collection_rate)])
    writer.writerow(["Average Invoice Value", _money(summary.average_invoice_value)])
    writer.writerow(["Total Invoices", summary.total_invoices])
    writer.writerow([])

    writer.writerow(["Top Customers by Revenue"])
    writer.writerow(["Customer", "Email", "Revenue", "Invoices", "Collection Rate"])
    for customer in result.by_customer:
        writer.writerow([
            customer.customer_name,
            customer.customer_email,
            _money(customer.total_revenue),
            customer.invoice_count,
            _rate(customer.collection_rate),
        ])
    writer.writerow([])

    writer.writerow(["Revenue by Service"])
    writer.writerow(["Service", "Revenue", "Quantity", "Average Rate"])
    for service in result.by_service:
        writer.writerow([
            service.service,
            _money(service.total_revenue),
            f"{service.total_quantity:g}",
            _money(service.average_rate),
        ])

    return buffer.getvalue()
