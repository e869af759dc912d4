"""
sales_journal_service.py — Daily sales ledgers derived from the order mirror.

One journal per calendar date. Generating a date that already has a journal
regenerates it in place: same id, number, created_at and status, fresh lines
and totals.

Business Rules:
- No orders for the date → no journal (never an empty one)
- Line math in Decimal, half-up to cents, per line BEFORE summing:
    ttc = total + total_tax
    ht  = round2(ttc / (1 + rate/100))
    tax = round2(ht * rate/100)
  Journal totals are sums of the rounded line values
- Tax breakdown keeps rates with a positive base, sorted by rate
- A new journal takes a SALES_JOURNAL number bound to its id; a number
  already bound to that id is reused
- Build + save is retried as one unit on ConflictError (date collision
  with a concurrent generator), bounded by settings.journal_save_max_attempts
- draft → validated only; validation is refused for a non-draft journal
  (ValidationError) or when another journal claims the same date (ConflictError)

Called by: sync_engine.py, routers/journals.py
Depends on: services/order_service.py, services/numbering_service.py,
            services/tax_rates.py, utils/retry.py
"""

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Order, SalesJournal
from ..utils import money_str, parse_journal_date, round2, to_decimal
from ..utils.normalization import customer_display_name
from ..utils.retry import RetryPolicy, call_with_retry
from . import numbering_service, order_service

log = logging.getLogger(__name__)

_HUNDRED = Decimal(100)


def _cache(tax_cache):
    if tax_cache is not None:
        return tax_cache
    from .tax_rates import tax_cache as shared

    return shared


# ── Line math ──────────────────────────────────────────────────────────


def build_journal_line(order: Order, item: dict, rate: int) -> dict:
    quantity = int(item.get("quantity") or 0)
    divisor = quantity or 1
    ttc = round2(to_decimal(item.get("total")) + to_decimal(item.get("total_tax")))
    ht = round2(ttc / (1 + Decimal(rate) / _HUNDRED))
    tax = round2(ht * Decimal(rate) / _HUNDRED)
    billing = order.billing or {}
    product_id = item.get("product_id")
    return {
        "id": f"{order.external_id}-{item.get('id')}",
        "order_id": order.external_id,
        "order_number": order.number or str(order.external_id),
        "line_item_id": item.get("id"),
        "product_id": product_id,
        "sku": item.get("sku") or f"PROD-{product_id}",
        "product_name": item.get("name") or "",
        "quantity": quantity,
        "unit_price_ttc": money_str(ttc / divisor),
        "total_ttc": money_str(ttc),
        "unit_price_ht": money_str(ht / divisor),
        "total_ht": money_str(ht),
        "tax_rate": rate,
        "tax_amount": money_str(tax),
        "customer_name": customer_display_name(billing),
        "customer_email": billing.get("email") or None,
    }


def compute_totals(lines: list[dict]) -> dict:
    """Sum already-rounded line values; breakdown by rate with positive base."""
    total_ht = sum((to_decimal(li["total_ht"]) for li in lines), Decimal(0))
    total_ttc = sum((to_decimal(li["total_ttc"]) for li in lines), Decimal(0))
    total_tax = sum((to_decimal(li["tax_amount"]) for li in lines), Decimal(0))

    buckets: dict[int, list[Decimal]] = {}
    for li in lines:
        base_amount = buckets.setdefault(li["tax_rate"], [Decimal(0), Decimal(0)])
        base_amount[0] += to_decimal(li["total_ht"])
        base_amount[1] += to_decimal(li["tax_amount"])
    breakdown = [
        {"rate": rate, "base": money_str(base), "amount": money_str(amount)}
        for rate, (base, amount) in sorted(buckets.items())
        if base > 0
    ]
    return {
        "total_ht": money_str(total_ht),
        "total_ttc": money_str(total_ttc),
        "total_tax": money_str(total_tax),
        "tax_breakdown": breakdown,
    }


# ── Lookups ────────────────────────────────────────────────────────────


def get_journal(db: Session, journal_id: str) -> SalesJournal | None:
    return db.get(SalesJournal, journal_id)


def get_journal_by_date(db: Session, day) -> SalesJournal | None:
    return db.query(SalesJournal).filter(SalesJournal.date == parse_journal_date(day)).first()


def list_journals(
    db: Session, status: str | None = None, limit: int = 50, offset: int = 0
) -> tuple[list[SalesJournal], int]:
    query = db.query(SalesJournal)
    if status:
        query = query.filter(SalesJournal.status == status)
    total = query.count()
    rows = query.order_by(SalesJournal.date.desc()).offset(offset).limit(limit).all()
    return rows, total


def journals_for_range(db: Session, start, end) -> list[SalesJournal]:
    start, end = parse_journal_date(start), parse_journal_date(end)
    if end < start:
        raise ValidationError(f"Range end {end} is before start {start}")
    return (
        db.query(SalesJournal)
        .filter(SalesJournal.date >= start, SalesJournal.date <= end)
        .order_by(SalesJournal.date.asc())
        .all()
    )


def journals_containing_order(db: Session, order_id: int) -> list[SalesJournal]:
    # orders_included is a JSON list; membership is checked in Python so the
    # query stays portable between SQLite and PostgreSQL
    return [
        j
        for j in db.query(SalesJournal).order_by(SalesJournal.date.asc()).all()
        if order_id in (j.orders_included or [])
    ]


def preview_journal_number(db: Session, year=None) -> str:
    return numbering_service.generate_preview_number(db, "SALES_JOURNAL", year)


def journal_stats(db: Session) -> dict:
    counts = dict(
        db.query(SalesJournal.status, func.count(SalesJournal.id)).group_by(SalesJournal.status).all()
    )
    total_value = Decimal(0)
    total_lines = 0
    for totals, lines in db.query(SalesJournal.totals, SalesJournal.lines).all():
        total_value += to_decimal((totals or {}).get("total_ttc"))
        total_lines += len(lines or [])
    return {
        "total": sum(counts.values()),
        "draft": counts.get("draft", 0),
        "validated": counts.get("validated", 0),
        "total_value": money_str(total_value),
        "total_lines": total_lines,
    }


# ── Generation ─────────────────────────────────────────────────────────


def build_sales_journal(db: Session, day, tax_cache=None) -> tuple[SalesJournal | None, bool]:
    """Compute the journal for a date without saving it.

    Returns (journal, True), or (None, False) when no order was created that
    day. The returned object is transient; it carries the existing journal's
    identity when there is one, otherwise a fresh id and a bound number.
    """
    day = parse_journal_date(day)
    cache = _cache(tax_cache)
    existing = get_journal_by_date(db, day)
    orders = order_service.get_orders_for_date(db, day)
    if not orders:
        return None, False

    lines = []
    for order in orders:
        for item in order.line_items or []:
            lines.append(build_journal_line(order, item, cache.resolve_line_rate(item)))

    if existing:
        journal_id = existing.id
        number = existing.number
        status = existing.status
        created_at = existing.created_at
    else:
        journal_id = str(uuid.uuid4())
        number = numbering_service.get_number_by_entity_id(db, journal_id) or (
            numbering_service.generate_number(db, "SALES_JOURNAL", day.year, journal_id)
        )
        status = "draft"
        created_at = datetime.now(timezone.utc)

    journal = SalesJournal(
        id=journal_id,
        number=number,
        date=day,
        status=status,
        orders_included=[o.external_id for o in orders],
        lines=lines,
        totals=compute_totals(lines),
        notes=(
            f"Sales journal generated automatically for {day.strftime('%d/%m/%Y')}. "
            f"Includes {len(orders)} order(s) and {len(lines)} product line(s)."
        ),
        created_at=created_at,
    )
    return journal, True


_SAVED_FIELDS = ("number", "date", "status", "orders_included", "lines", "totals", "notes")


def save_journal(db: Session, journal: SalesJournal) -> SalesJournal:
    """Update the row with the journal's id, or insert it. IntegrityError → ConflictError."""
    existing = db.get(SalesJournal, journal.id)
    try:
        if existing is not None and existing is not journal:
            for field in _SAVED_FIELDS:
                setattr(existing, field, getattr(journal, field))
            journal = existing
        else:
            db.add(journal)
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"Journal for {journal.date} collided: {e.orig}") from e
    return journal


def _journal_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        attempts=settings.journal_save_max_attempts,
        base_delay=settings.journal_retry_base_delay,
        max_delay=settings.journal_retry_max_delay,
    )


def generate_journal(
    db: Session, day, tax_cache=None, policy: RetryPolicy | None = None
) -> tuple[SalesJournal | None, bool]:
    """Build and save the journal for a date, retrying the pair on conflict.

    policy overrides the journal retry budget; callers that already retry
    conflicts themselves pass RetryPolicy(attempts=1).
    """
    day = parse_journal_date(day)

    def attempt():
        journal, found = build_sales_journal(db, day, tax_cache)
        if not found:
            return None, False
        is_new = db.get(SalesJournal, journal.id) is None
        try:
            return save_journal(db, journal), True
        except ConflictError:
            if is_new:
                # The number was bound to an id that never got saved
                numbering_service.delete_number(db, journal.number)
            raise

    journal, found = call_with_retry(attempt, policy or _journal_retry_policy(), label=f"journal {day}")
    if journal:
        log.info(
            f"Journal {journal.number} for {day}: {len(journal.orders_included)} orders, "
            f"total TTC {journal.totals['total_ttc']}"
        )
    return journal, found


def update_journals_for_order(
    db: Session,
    order_id: int,
    tax_cache=None,
    order_date: date | None = None,
    policy: RetryPolicy | None = None,
) -> list[SalesJournal]:
    """Regenerate every journal that lists the order.

    With order_date, the journal for that date is generated too when it does
    not list the order yet (new order, or one whose date moved). Conflicts
    propagate so the caller can retry; other per-journal failures are logged.
    """
    refreshed = []
    touched_dates = set()
    for existing in journals_containing_order(db, order_id):
        touched_dates.add(existing.date)
        try:
            journal, found = generate_journal(db, existing.date, tax_cache, policy)
        except ConflictError:
            raise
        except Exception as e:
            db.rollback()
            log.error(f"Journal {existing.number} refresh for order {order_id} failed: {e}")
            continue
        if found:
            refreshed.append(journal)
        else:
            log.warning(f"Journal {existing.number} no longer has orders for {existing.date}")

    if order_date is not None and order_date not in touched_dates:
        journal, found = generate_journal(db, order_date, tax_cache, policy)
        if found:
            refreshed.append(journal)
    return refreshed


# ── Lifecycle ──────────────────────────────────────────────────────────


def validate_journal(db: Session, journal_id: str) -> SalesJournal:
    journal = get_journal(db, journal_id)
    if not journal:
        raise NotFoundError("journal", journal_id)
    if journal.status != "draft":
        raise ValidationError(f"Journal {journal.number} is already {journal.status}")
    other = get_journal_by_date(db, journal.date)
    if other is not None and other.id != journal.id:
        raise ConflictError(f"Journal {other.number} already covers {journal.date}")
    journal.status = "validated"
    db.commit()
    log.info(f"Journal {journal.number} validated")
    return journal


def delete_journal(db: Session, journal_id: str) -> bool:
    """Delete a journal and release its number (the slot stays reserved)."""
    journal = get_journal(db, journal_id)
    if not journal:
        return False
    number = journal.number
    db.delete(journal)
    db.commit()
    numbering_service.delete_number(db, number)
    log.info(f"Journal {number} deleted")
    return True
