from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models.customer import Customer
from utils.normalize import normalize_phone


def find_or_create_customer(
    db: Session,
    company_id: int,
    *,
    name: str,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    address: Optional[str] = None,
) -> Customer:
    """Match a customer on phone (then email) inside the tenant, creating one when missing."""
    phone = normalize_phone(phone)
    email = (email or "").strip() or None
    for column, value in ((Customer.phone, phone), (Customer.email, email)):
        if not value:
            continue
        customer = (
            db.query(Customer)
            .filter(Customer.company_id == company_id, column == value)
            .order_by(Customer.id.asc())
            .first()
        )
        if customer is not None:
            return customer

    customer = Customer(
        company_id=company_id,
        name=name,
        phone=phone,
        email=email,
        addresses=[{"address": address, "type": "delivery"}] if address else [],
        total_orders=0,
        total_spent=0,
    )
    db.add(customer)
    db.flush()
    return customer


def increment_customer_stats(db: Session, customer_id: int, order_total: Any) -> None:
    """Bump the order counter and spend in one UPDATE evaluated by the database."""
    amount = Decimal(str(order_total or 0))
    (
        db.query(Customer)
        .filter(Customer.id == customer_id)
        .update(
            {
                Customer.total_orders: Customer.total_orders + 1,
                Customer.total_spent: Customer.total_spent + amount,
            },
            synchronize_session=False,
        )
    )
