"""Order mirror — point-in-time copies of the store's orders and customers."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    String,
)

from .base import Base

ORDER_STATUSES = (
    "pending",
    "processing",
    "on-hold",
    "completed",
    "cancelled",
    "refunded",
    "failed",
    "checkout-draft",
    "trash",
)


class Order(Base):
    """One store order, overwritten on every sync that sees it.

    line_items / tax_lines hold the normalized upstream payload; each line
    item carries a derived ``resolved_tax_rate`` next to its raw ``tax_class``.
    """

    __tablename__ = "orders"
    id = Column(Integer, primary_key=True)
    external_id = Column(BigInteger, nullable=False)
    account_id = Column(String(100), nullable=False, default="default")
    number = Column(String(50))
    status = Column(String(20), nullable=False, default="pending")
    currency = Column(String(10))

    # Store wall-clock time, as reported upstream
    date_created = Column(DateTime, nullable=False, index=True)
    date_modified = Column(DateTime)

    # Decimal-accurate strings, exactly as the store sends them
    total = Column(String(32), default="0")
    total_tax = Column(String(32), default="0")
    shipping_total = Column(String(32), default="0")
    shipping_tax = Column(String(32), default="0")

    customer_id = Column(BigInteger, index=True)
    billing = Column(JSON)
    shipping = Column(JSON)
    line_items = Column(JSON, nullable=False, default=list)
    tax_lines = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_orders_external_account", "external_id", "account_id", unique=True),
        Index("ix_orders_status", "status"),
    )

    def __repr__(self):
        return f"<Order {self.external_id}@{self.account_id} {self.status}>"


class Customer(Base):
    """Customer row created from an order's billing snapshot (customer import)."""

    __tablename__ = "customers"
    id = Column(Integer, primary_key=True)
    external_id = Column(BigInteger, nullable=False)
    account_id = Column(String(100), nullable=False, default="default")
    email = Column(String(255), index=True)
    first_name = Column(String(255))
    last_name = Column(String(255))
    company = Column(String(255))
    phone = Column(String(100))
    billing = Column(JSON)
    shipping = Column(JSON)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_customers_external_account", "external_id", "account_id", unique=True),
    )
