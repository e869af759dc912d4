"""Shared utility helpers used across connectors and services."""

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from ..errors import ValidationError

CENT = Decimal("0.01")


def safe_int(v):
    """Safely convert a value to int, returning None on failure."""
    if v is None:
        return None
    try:
        return int(v)
    except (ValueError, TypeError):
        return None


def to_decimal(v) -> Decimal:
    """Parse an upstream money value ("12.50", 12.5, None) into a Decimal.

    Blank and unparseable values count as zero, the way the store reports
    missing amounts.
    """
    if v is None or v == "":
        return Decimal("0")
    if isinstance(v, Decimal):
        return v
    try:
        return Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")


def round2(v) -> Decimal:
    """Round half-up to cents."""
    return to_decimal(v).quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(v) -> str:
    """Decimal-accurate string with exactly two decimals."""
    return str(round2(v))


_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_FR_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def parse_journal_date(value) -> date:
    """Accept a date, 'YYYY-MM-DD' or 'DD/MM/YYYY'. Anything else is invalid."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value or "").strip()
    try:
        if _ISO_DATE.match(s):
            return date.fromisoformat(s)
        m = _FR_DATE.match(s)
        if m:
            day, month, year = (int(g) for g in m.groups())
            return date(year, month, day)
    except ValueError as e:
        raise ValidationError(f"Invalid date: {s!r} ({e})")
    raise ValidationError(f"Invalid date format: {s!r}. Expected DD/MM/YYYY or YYYY-MM-DD")


def parse_upstream_datetime(value) -> datetime | None:
    """Parse the store's ISO timestamps ('2024-03-18T10:22:00').

    Returns naive store wall-clock time: journal dates follow the store's
    calendar, so an offset, when present, is dropped rather than applied.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    return dt.replace(tzinfo=None)
