"""Customer import: creates a local customer the first time an order names one.

Guest checkouts (customer_id 0 or missing) have nothing to import.
Existing customers are left alone; the order keeps its own billing snapshot.

Usage:
    from ledgersync.services.customer_service import ensure_customer_from_order
"""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import Customer, Order

log = logging.getLogger(__name__)


def get_customer(db: Session, external_id: int, account_id: str) -> Customer | None:
    return (
        db.query(Customer)
        .filter(Customer.external_id == external_id, Customer.account_id == account_id)
        .first()
    )


def customer_from_order(order: Order) -> Customer:
    billing = order.billing or {}
    return Customer(
        external_id=order.customer_id,
        account_id=order.account_id,
        email=(billing.get("email") or "").strip().lower() or None,
        first_name=billing.get("first_name") or None,
        last_name=billing.get("last_name") or None,
        company=billing.get("company") or None,
        phone=billing.get("phone") or None,
        billing=dict(billing),
        shipping=dict(order.shipping or {}),
    )


def ensure_customer_from_order(db: Session, order: Order) -> Customer | None:
    """Return the order's customer, creating it from the billing snapshot if needed."""
    if not order.customer_id or order.customer_id <= 0:
        return None
    existing = get_customer(db, order.customer_id, order.account_id)
    if existing:
        return existing

    customer = customer_from_order(order)
    db.add(customer)
    try:
        db.commit()
    except IntegrityError:
        # A sibling order for the same customer got there first
        db.rollback()
        return get_customer(db, order.customer_id, order.account_id)
    log.info(f"Imported customer {order.customer_id} from order {order.external_id}")
    return customer


def count_customers(db: Session, account_id: str) -> int:
    return db.query(Customer).filter(Customer.account_id == account_id).count()
