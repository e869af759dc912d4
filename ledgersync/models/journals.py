"""Sales journals — one ledger per calendar date."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, Date, DateTime, String, Text

from .base import Base

JOURNAL_STATUSES = ("draft", "validated")


class SalesJournal(Base):
    """Daily ledger derived from the order mirror.

    lines and totals are denormalized JSON: amounts are two-decimal strings
    so regenerating an unchanged day yields byte-identical totals.
    """

    __tablename__ = "sales_journals"
    id = Column(String(36), primary_key=True)
    number = Column(String(50), nullable=False, unique=True)
    date = Column(Date, nullable=False, unique=True)
    status = Column(String(20), nullable=False, default="draft")
    orders_included = Column(JSON, nullable=False, default=list)
    lines = Column(JSON, nullable=False, default=list)
    totals = Column(JSON, nullable=False, default=dict)
    notes = Column(Text)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<SalesJournal {self.number} {self.date} {self.status}>"
