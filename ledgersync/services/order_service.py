"""
order_service.py — Order mirror: normalization, upsert and lookups.

The store is the system of record. Every sync overwrites the local copy of
the orders it sees (last write wins); nothing else mutates an order.

Business Rules:
- Orders are keyed by (external_id, account_id), never external_id alone
- Currency defaults to settings.default_currency when the store omits it
- Each line item keeps its raw tax_class next to a derived resolved_tax_rate
- A line item with no tax_class key keeps tax_class=None so the resolver
  falls back to amount inference
- Tax lines carry rate_percent snapped to an allowed rate
- Orders for a date are matched on store wall-clock date_created

Called by: sync_engine.py, services/sales_journal_service.py, routers/orders.py
Depends on: models.Order, services/tax_rates.py
"""

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import String, cast, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import settings
from ..models import Order
from ..utils import money_str, parse_upstream_datetime, safe_int, to_decimal

log = logging.getLogger(__name__)

_LINE_ITEM_FIELDS = (
    "id",
    "product_id",
    "variation_id",
    "name",
    "sku",
    "quantity",
    "price",
    "subtotal",
    "subtotal_tax",
    "total",
    "total_tax",
)


# ── Normalization ──────────────────────────────────────────────────────


def normalize_line_item(item: dict, tax_cache) -> dict:
    """Copy the fields the mirror keeps and attach the resolved tax rate."""
    line = {k: item.get(k) for k in _LINE_ITEM_FIELDS}
    line["quantity"] = safe_int(item.get("quantity")) or 0
    # Missing key and empty string differ: "" is the store's standard class
    line["tax_class"] = item["tax_class"] if "tax_class" in item else None
    line["taxes"] = [
        {
            "id": t.get("id"),
            "rate_code": t.get("rate_code"),
            "total": t.get("total"),
            "subtotal": t.get("subtotal"),
        }
        for t in item.get("taxes") or []
        if isinstance(t, dict)
    ]
    line["resolved_tax_rate"] = tax_cache.resolve_line_rate(item)
    return line


def normalize_tax_line(tax_line: dict, tax_cache) -> dict:
    return {
        "id": tax_line.get("id"),
        "rate_code": tax_line.get("rate_code"),
        "rate_id": tax_line.get("rate_id"),
        "label": tax_line.get("label"),
        "compound": bool(tax_line.get("compound")),
        "tax_total": tax_line.get("tax_total"),
        "shipping_tax_total": tax_line.get("shipping_tax_total"),
        "rate_percent": tax_cache.resolve_tax_line_rate(tax_line),
    }


def normalize_order(raw: dict, tax_cache, account_id: str | None = None) -> dict:
    """Map one upstream order payload onto Order column values.

    Raises ValueError when the payload has no usable id or creation date;
    the sync engine logs and skips such orders.
    """
    external_id = safe_int(raw.get("id"))
    if not external_id:
        raise ValueError(f"Order payload without a numeric id: {raw.get('id')!r}")
    date_created = parse_upstream_datetime(raw.get("date_created"))
    if date_created is None:
        raise ValueError(f"Order {external_id} has no usable date_created")

    return {
        "external_id": external_id,
        "account_id": account_id or settings.wc_account_id,
        "number": str(raw.get("number") or external_id),
        "status": raw.get("status") or "pending",
        "currency": raw.get("currency") or settings.default_currency,
        "date_created": date_created,
        "date_modified": parse_upstream_datetime(raw.get("date_modified")),
        "total": money_str(raw.get("total")),
        "total_tax": money_str(raw.get("total_tax")),
        "shipping_total": money_str(raw.get("shipping_total")),
        "shipping_tax": money_str(raw.get("shipping_tax")),
        "customer_id": safe_int(raw.get("customer_id")) or None,
        "billing": dict(raw.get("billing") or {}),
        "shipping": dict(raw.get("shipping") or {}),
        "line_items": [normalize_line_item(li, tax_cache) for li in raw.get("line_items") or []],
        "tax_lines": [normalize_tax_line(tl, tax_cache) for tl in raw.get("tax_lines") or []],
    }


# ── Persistence ────────────────────────────────────────────────────────


def _apply(order: Order, values: dict) -> None:
    for key, value in values.items():
        setattr(order, key, value)


def upsert_order(db: Session, values: dict) -> tuple[Order, bool]:
    """Insert or overwrite one order. Returns (order, created)."""
    existing = (
        db.query(Order)
        .filter(Order.external_id == values["external_id"], Order.account_id == values["account_id"])
        .first()
    )
    if existing:
        _apply(existing, values)
        db.commit()
        return existing, False

    order = Order(**values)
    db.add(order)
    try:
        db.commit()
    except IntegrityError:
        # Another writer inserted the same key between our read and commit
        db.rollback()
        existing = (
            db.query(Order)
            .filter(
                Order.external_id == values["external_id"],
                Order.account_id == values["account_id"],
            )
            .one()
        )
        _apply(existing, values)
        db.commit()
        return existing, False
    return order, True


def upsert_orders(db: Session, normalized: list[dict]) -> tuple[list[Order], int]:
    """Upsert a page of normalized orders, one commit per order.

    A failing order is logged and skipped. Returns (persisted, created_count).
    """
    persisted: list[Order] = []
    created = 0
    for values in normalized:
        try:
            order, is_new = upsert_order(db, values)
        except Exception as e:
            db.rollback()
            log.error(f"Failed to persist order {values.get('external_id')}: {e}")
            continue
        persisted.append(order)
        created += int(is_new)
    return persisted, created


# ── Lookups ────────────────────────────────────────────────────────────


def _scoped(db: Session, account_id: str | None):
    return db.query(Order).filter(Order.account_id == (account_id or settings.wc_account_id))


def get_order(db: Session, external_id: int, account_id: str | None = None) -> Order | None:
    return _scoped(db, account_id).filter(Order.external_id == external_id).first()


def list_orders(
    db: Session,
    account_id: str | None = None,
    status: str | None = None,
    q: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    """Newest first. q matches the order number or billing email/name text."""
    query = _scoped(db, account_id)
    if status:
        query = query.filter(Order.status == status)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(or_(Order.number.ilike(like), cast(Order.billing, String).ilike(like)))
    total = query.count()
    rows = query.order_by(Order.date_created.desc()).offset(offset).limit(limit).all()
    return rows, total


def get_orders_for_date(db: Session, day: date, account_id: str | None = None) -> list[Order]:
    """Orders created on the given store calendar day, oldest first."""
    start = datetime.combine(day, time.min)
    end = start + timedelta(days=1)
    return (
        _scoped(db, account_id)
        .filter(Order.date_created >= start, Order.date_created < end)
        .order_by(Order.date_created.asc(), Order.external_id.asc())
        .all()
    )


def get_orders_by_date_range(
    db: Session, start: date, end: date, account_id: str | None = None
) -> list[Order]:
    """Orders created between start and end (both inclusive), newest first."""
    return (
        _scoped(db, account_id)
        .filter(
            Order.date_created >= datetime.combine(start, time.min),
            Order.date_created < datetime.combine(end + timedelta(days=1), time.min),
        )
        .order_by(Order.date_created.desc())
        .all()
    )


def all_orders(db: Session, account_id: str | None = None) -> list[Order]:
    return _scoped(db, account_id).order_by(Order.date_created.desc()).all()


def delete_order(db: Session, external_id: int, account_id: str | None = None) -> bool:
    """Operator action. Journals that summarize the order are left untouched."""
    order = get_order(db, external_id, account_id)
    if not order:
        return False
    db.delete(order)
    db.commit()
    log.info(f"Deleted order {external_id}")
    return True


def order_stats(db: Session, account_id: str | None = None) -> dict:
    """Count and revenue per status (revenue summed in Decimal, as strings)."""
    rows = (
        _scoped(db, account_id)
        .with_entities(Order.status, func.count(Order.id))
        .group_by(Order.status)
        .all()
    )
    by_status = {status: count for status, count in rows}
    revenue = sum(
        (to_decimal(t) for (t,) in _scoped(db, account_id).with_entities(Order.total).all()),
        to_decimal(0),
    )
    return {
        "total_orders": sum(by_status.values()),
        "by_status": by_status,
        "total_revenue": money_str(revenue),
    }


def recompute_line_rates(db: Session, tax_cache, account_id: str | None = None) -> int:
    """Re-derive resolved_tax_rate on every mirrored line item.

    Run after the tax cache improves. Returns the number of orders changed.
    """
    changed = 0
    for order in _scoped(db, account_id).all():
        lines = [dict(li) for li in order.line_items or []]
        dirty = False
        for line in lines:
            rate = tax_cache.resolve_line_rate(line)
            if line.get("resolved_tax_rate") != rate:
                line["resolved_tax_rate"] = rate
                dirty = True
        if dirty:
            # JSON columns only notice reassignment
            order.line_items = lines
            changed += 1
    if changed:
        db.commit()
        log.info(f"Recomputed tax rates on {changed} orders")
    return changed
