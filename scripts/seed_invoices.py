#!/usr/bin/env python
"""
Demo Data Seeder

Fills the record store with Faker-generated customers and invoices for one
organization, spread over the last ~13 months so every analytics view has
something to show.

Usage:
    python scripts/seed_invoices.py --org-id demo-org --customers 50 --invoices 2000
"""

import argparse
import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List

import numpy as np
from faker import Faker
from sqlalchemy import insert

from invoice_analytics.analytics.records import InvoiceStatus
from invoice_analytics.analytics.window import utcnow
from invoice_analytics.config.logging import configure_logging, get_logger
from invoice_analytics.database.connection import close_database, create_tables, get_db, init_database
from invoice_analytics.database.models import Customer, Invoice, InvoiceItem

logger = get_logger(__name__)

SERVICES = {
    "Printing": (0.05, 0.25),
    "Binding": (1.5, 6.0),
    "Lamination": (0.5, 2.0),
    "Scanning": (0.1, 0.4),
    "Large Format Printing": (8.0, 30.0),
    "Graphic Design": (25.0, 80.0),
}

STATUSES = [s.value for s in InvoiceStatus]
STATUS_WEIGHTS = [0.05, 0.15, 0.05, 0.05, 0.55, 0.12, 0.03]

CHUNK_SIZE = 1000


async def execute_batch_insert(model: Any, records: List[Dict[str, Any]]) -> None:
    """Insert records in chunks through a Core INSERT"""
    if not records:
        return

    async with get_db() as db:
        for i in range(0, len(records), CHUNK_SIZE):
            await db.execute(insert(model).values(records[i:i + CHUNK_SIZE]))
    logger.info("Inserted records", table=model.__tablename__, count=len(records))


def generate_customers(fake: Faker, rng: np.random.Generator, org_id: str, n: int) -> List[Dict[str, Any]]:
    return [
        {
            "id": str(uuid.uuid4()),
            "org_id": org_id,
            "name": fake.company(),
            "email": fake.company_email(),
            "outstanding_balance": round(float(rng.uniform(0, 5000)), 2),
            "is_active": bool(rng.random() < 0.85),
        }
        for _ in range(n)
    ]


def generate_invoices(
    rng: np.random.Generator,
    org_id: str,
    customer_ids: List[str],
    n: int,
    now: datetime,
) -> tuple:
    invoices: List[Dict[str, Any]] = []
    items: List[Dict[str, Any]] = []
    services = list(SERVICES)

    for i in range(n):
        invoice_id = str(uuid.uuid4())
        created_at = now - timedelta(days=float(rng.uniform(0, 400)))
        due_date = created_at + timedelta(days=int(rng.choice([7, 14, 30, 45])))
        status = str(rng.choice(STATUSES, p=STATUS_WEIGHTS))

        paid_at = None
        if status == InvoiceStatus.PAID.value:
            paid_at = min(due_date + timedelta(days=float(rng.uniform(-10, 45))), now)

        subtotal = 0.0
        for service in rng.choice(services, size=int(rng.integers(1, 5)), replace=False):
            low, high = SERVICES[str(service)]
            quantity = int(rng.integers(1, 500))
            rate = round(float(rng.uniform(low, high)), 2)
            amount = round(quantity * rate, 2)
            service_charge = round(float(rng.choice([0.0, 5.0, 10.0])), 2)
            subtotal += amount + service_charge
            items.append({
                "invoice_id": invoice_id,
                "description": str(service),
                "quantity": quantity,
                "rate": rate,
                "amount": amount,
                "service_charge": service_charge,
            })

        tax = round(subtotal * 0.08, 2)
        discount = round(float(rng.choice([0.0, 0.0, 0.0, 25.0])), 2)
        invoices.append({
            "id": invoice_id,
            "org_id": org_id,
            "customer_id": str(rng.choice(customer_ids)),
            "invoice_no": f"INV-{i + 1:06d}",
            "issue_date": created_at,
            "due_date": due_date,
            "paid_at": paid_at,
            "status": status,
            "tax": tax,
            "discount": discount,
            "total": round(max(subtotal + tax - discount, 0.0), 2),
            "created_at": created_at,
            "updated_at": paid_at or created_at,
        })

    return invoices, items


async def seed(org_id: str, n_customers: int, n_invoices: int, seed_value: int, database_url: str = None):
    fake = Faker()
    Faker.seed(seed_value)
    rng = np.random.default_rng(seed_value)

    await init_database(database_url)
    try:
        await create_tables()

        customers = generate_customers(fake, rng, org_id, n_customers)
        invoices, items = generate_invoices(rng, org_id, [c["id"] for c in customers], n_invoices, utcnow())

        await execute_batch_insert(Customer, customers)
        await execute_batch_insert(Invoice, invoices)
        await execute_batch_insert(InvoiceItem, items)

        logger.info(
            "Seeding complete",
            org_id=org_id,
            customers=len(customers),
            invoices=len(invoices),
            items=len(items),
        )
    finally:
        await close_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed demo invoicing data")
    parser.add_argument("--org-id", default="demo-org", help="Organization to seed")
    parser.add_argument("--customers", type=int, default=50)
    parser.add_argument("--invoices", type=int, default=2000)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--database-url", default=None, help="Override DATABASE_URL")
    args = parser.parse_args()

    configure_logging()
    asyncio.run(seed(args.org_id, args.customers, args.invoices, args.seed, args.database_url))
