"""Document numbers — one row per number ever issued."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, UniqueConstraint

from .base import Base

DOCUMENT_TYPES = (
    "INVOICE",
    "SALES_JOURNAL",
    "QUOTE",
    "DELIVERY",
    "RETURN",
    "PURCHASE_ORDER",
)


class DocumentNumber(Base):
    """A confirmed number bound to the entity that owns it.

    Released numbers keep their row (owner cleared, released_at set) so the
    (type, year, sequence) slot is never handed out twice.
    """

    __tablename__ = "document_numbers"
    id = Column(Integer, primary_key=True)
    document_type = Column(String(20), nullable=False)
    year = Column(Integer, nullable=False)
    sequence = Column(Integer, nullable=False)
    number = Column(String(50), nullable=False, unique=True)
    owner_entity_id = Column(String(64), unique=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    released_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint("document_type", "year", "sequence", name="uq_docnum_type_year_seq"),
        Index("ix_docnum_type_year", "document_type", "year"),
    )
