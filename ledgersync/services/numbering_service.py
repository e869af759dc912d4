"""
numbering_service.py — Sequential document numbers per (type, year).

A preview is a best guess for display. A confirmed number is a row in
document_numbers, bound to the entity that owns it.

Business Rules:
- Next sequence = max(start number, highest issued sequence + 1)
- Uniqueness is enforced by the table (type+year+sequence, number, owner),
  not by an in-process lock; concurrent writers may live in other processes
- A collision rolls back and re-derives the next sequence, bounded by
  settings.numbering_max_attempts, then ConflictError
- Asking again for an owner that already holds a number of that type
  returns the same number; an owner holding a number of another type is a
  ValidationError, never a retried collision
- Releasing a number clears its owner but keeps the row, so the slot is
  never issued twice
- Format: "{PREFIX}-{YEAR}-{SEQUENCE:04d}", e.g. "JV-2026-0007"

Called by: services/sales_journal_service.py, routers/numbers.py
Depends on: models.DocumentNumber, utils/retry.py
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError, ValidationError
from ..models import DocumentNumber
from ..models.numbering import DOCUMENT_TYPES
from ..utils.retry import RetryPolicy, call_with_retry

log = logging.getLogger(__name__)


def _check_type(doc_type: str) -> str:
    doc_type = (doc_type or "").upper()
    if doc_type not in DOCUMENT_TYPES:
        raise ValidationError(f"Unknown document type: {doc_type!r}")
    return doc_type


def _resolve_year(year) -> int:
    if year is None:
        return datetime.now(timezone.utc).year
    try:
        year = int(year)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid year: {year!r}")
    if year <= 0:
        raise ValidationError(f"Invalid year: {year}")
    return year


def format_number(doc_type: str, year: int, sequence: int) -> str:
    prefix = settings.numbering_prefixes.get(doc_type, doc_type[:3])
    return f"{prefix}-{year}-{sequence:04d}"


def _last_sequence(db: Session, doc_type: str, year: int) -> int:
    last = (
        db.query(func.max(DocumentNumber.sequence))
        .filter(DocumentNumber.document_type == doc_type, DocumentNumber.year == year)
        .scalar()
    )
    return last or 0


def _next_sequence(db: Session, doc_type: str, year: int) -> int:
    return max(settings.numbering_start_number, _last_sequence(db, doc_type, year) + 1)


def sequence_info(db: Session, doc_type: str, year=None) -> dict:
    """Current/next sequence for one (type, year), as shown in numbering settings."""
    doc_type = _check_type(doc_type)
    year = _resolve_year(year)
    last = _last_sequence(db, doc_type, year)
    nxt = _next_sequence(db, doc_type, year)
    return {
        "document_type": doc_type,
        "year": year,
        "last_sequence": last,
        "next_sequence": nxt,
        "last_number": format_number(doc_type, year, last) if last else None,
        "next_number": format_number(doc_type, year, nxt),
        "issued": db.query(DocumentNumber)
        .filter(DocumentNumber.document_type == doc_type, DocumentNumber.year == year)
        .count(),
    }


def generate_preview_number(db: Session, doc_type: str, year=None) -> str:
    """Non-binding next number. Nothing is written."""
    doc_type = _check_type(doc_type)
    year = _resolve_year(year)
    return format_number(doc_type, year, _next_sequence(db, doc_type, year))


def _owner_binding(db: Session, owner_entity_id: str) -> DocumentNumber | None:
    return (
        db.query(DocumentNumber)
        .filter(DocumentNumber.owner_entity_id == owner_entity_id)
        .first()
    )


def _existing_for_owner(db: Session, doc_type: str, owner_entity_id: str) -> str | None:
    """The owner's number of this type, if any. An owner holds one number overall."""
    row = _owner_binding(db, owner_entity_id)
    if row is None:
        return None
    if row.document_type != doc_type:
        raise ValidationError(
            f"Entity {owner_entity_id} already holds {row.number} ({row.document_type}), "
            f"cannot also take a {doc_type} number"
        )
    return row.number


def _allocate(db: Session, doc_type: str, year: int, owner_entity_id: str | None) -> str:
    sequence = _next_sequence(db, doc_type, year)
    number = format_number(doc_type, year, sequence)
    db.add(
        DocumentNumber(
            document_type=doc_type,
            year=year,
            sequence=sequence,
            number=number,
            owner_entity_id=owner_entity_id,
        )
    )
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        bound = _existing_for_owner(db, doc_type, owner_entity_id) if owner_entity_id else None
        if bound:
            # The owner got its number from a concurrent call
            return bound
        raise ConflictError(f"Number {number} already taken") from e
    return number


def generate_number(db: Session, doc_type: str, year=None, owner_entity_id: str | None = None) -> str:
    """Allocate and commit the next number, bound to owner_entity_id."""
    doc_type = _check_type(doc_type)
    year = _resolve_year(year)
    owner = str(owner_entity_id) if owner_entity_id is not None else None

    if owner:
        existing = _existing_for_owner(db, doc_type, owner)
        if existing:
            return existing

    policy = RetryPolicy(
        attempts=settings.numbering_max_attempts,
        base_delay=settings.numbering_retry_base_delay,
        max_delay=settings.numbering_retry_max_delay,
    )
    number = call_with_retry(
        lambda: _allocate(db, doc_type, year, owner),
        policy,
        label=f"number {doc_type}/{year}",
    )
    log.info(f"Issued {number} to {owner or 'unbound'}")
    return number


def validate_number(db: Session, number: str) -> bool:
    """True when the number was issued and is still bound."""
    return (
        db.query(DocumentNumber)
        .filter(DocumentNumber.number == number, DocumentNumber.released_at.is_(None))
        .first()
        is not None
    )


def get_number_by_entity_id(db: Session, owner_entity_id) -> str | None:
    row = _owner_binding(db, str(owner_entity_id))
    return row.number if row else None


def delete_number(db: Session, number: str) -> bool:
    """Release a number's binding. The slot stays reserved."""
    row = db.query(DocumentNumber).filter(DocumentNumber.number == number).first()
    if not row or row.released_at is not None:
        return False
    row.owner_entity_id = None
    row.released_at = datetime.now(timezone.utc)
    db.commit()
    log.info(f"Released {number}")
    return True
