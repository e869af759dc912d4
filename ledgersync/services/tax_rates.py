"""
tax_rates.py — Tax class → rate resolution for the order mirror and journals.

The store tags every line item with a free-text tax class and reports tax
amounts that do not always agree with it. This module turns either signal
into one of the allowed rates.

Business Rules:
- Every resolved or inferred rate is one of ALLOWED_RATES (0, 7, 10, 20)
- Built-in synonyms are seeded before anything else, so resolve() never fails
- A cache rebuild builds a fresh map and swaps it in whole
- Remote fetch failures leave the cache on built-in defaults (logged, not raised)
- Fetched rates that are not allowed snap to the nearest allowed value

Called by: sync_engine.py, services/order_service.py, services/sales_journal_service.py
Depends on: utils/normalization.py, connectors/woocommerce.py (at initialize time only)
"""

import logging
import re
from decimal import Decimal

from ..config import settings
from ..errors import LedgerSyncError
from ..utils import to_decimal
from ..utils.normalization import (
    extract_numeral,
    extract_percent,
    normalize_tax_class,
    strip_accents,
    tax_class_variations,
)

log = logging.getLogger(__name__)

ALLOWED_RATES = (0, 7, 10, 20)

# ── Built-in synonyms ─────────────────────────────────────────────────

_ZERO_RATE_CLASSES = (
    "zero-rate", "zero", "0", "exempt", "exempted", "exemption",
    "exonerer", "exonere", "exoneration", "tva-0", "taux-0",
    "sans-tva", "hors-tva", "free", "none", "no-tax",
)

_DEFAULT_CLASSES = {
    "standard": 20,
    "reduced-rate": 10,
    "super-reduced-rate": 7,
    "tva-20": 20, "taux-20": 20, "standard-fr": 20, "normal": 20,
    "tva-10": 10, "taux-10": 10, "reduit": 10, "intermediaire": 10,
    "tva-7": 7, "taux-7": 7, "super-reduit": 7,
}

# ── Pattern heuristics (run on normalized keys) ──────────────────────

_EXEMPT_PATTERN = re.compile(
    r"(^|-)(exoner\w*|exempt\w*|zero|sans-tva|hors-tva|free|none|no-tax|0)(-|$)"
)
_SUPER_REDUCED_PATTERN = re.compile(r"(^|-)super-?(reduit|reduced|reduite)")
_REDUCED_PATTERN = re.compile(r"(^|-)(reduit|reduite|reduced|intermediaire|intermediate)")
_STANDARD_PATTERN = re.compile(r"(^|-)(standard|normal|normale)(-|$)")
_EXEMPT_LABEL_PATTERN = re.compile(r"exoner|exempt|zero|(?<![\d.,])0\s*%|sans tva|hors tva")


def snap_rate(value) -> int:
    """Nearest allowed rate; ties go to the lower rate."""
    v = float(value)
    return min(ALLOWED_RATES, key=lambda r: (abs(r - v), r))


def infer_rate_from_amounts(base, tax) -> int | None:
    """Implied percentage tax/base, snapped. None when the amounts can't say."""
    base = to_decimal(base)
    tax = to_decimal(tax)
    if base <= 0 or tax < 0:
        return None
    if tax == 0:
        return 0
    implied = tax / base * Decimal(100)
    return snap_rate(implied)


def detect_rate_by_pattern(key: str) -> int | None:
    """Keyword / numeral heuristics on a normalized tax class key."""
    if not key:
        return None
    if _EXEMPT_PATTERN.search(key):
        return 0
    if _SUPER_REDUCED_PATTERN.search(key):
        return 7
    numeral = extract_numeral(key)
    if numeral is not None and numeral in ALLOWED_RATES:
        return int(numeral)
    if _REDUCED_PATTERN.search(key):
        return 10
    if _STANDARD_PATTERN.search(key):
        return 20
    return None


class TaxRateCache:
    """Normalized tax class key → allowed rate.

    Lifecycle: construct (defaults seeded) → initialize(client) → refresh(client)
    whenever the store's tax configuration may have changed. resolve() is a
    pure read and safe to call at any point.
    """

    def __init__(self, default_rate: int | None = None, country: str | None = None):
        self.default_rate = snap_rate(
            settings.default_tax_rate if default_rate is None else default_rate
        )
        self.country = (country or settings.wc_tax_country or "").upper()
        self.tax_classes: list[dict] = [{"slug": "", "name": "Standard"}]
        self.initialized = False
        self._rates: dict[str, int] = self._with_defaults({})

    # ── Building ─────────────────────────────────────────────────────

    def _with_defaults(self, rates: dict[str, int]) -> dict[str, int]:
        """Fill every built-in class/synonym the map does not already define."""
        rates.setdefault("", self.default_rate)
        for key, rate in _DEFAULT_CLASSES.items():
            rates.setdefault(key, rate)
        for key in _ZERO_RATE_CLASSES:
            rates[key] = 0
        return rates

    def seed_defaults(self) -> None:
        self._rates = self._with_defaults(dict(self._rates))

    def seed(self, mapping: dict[str, float]) -> None:
        """Register explicit class → rate entries (values snap to allowed rates)."""
        rates = dict(self._rates)
        for tax_class, rate in mapping.items():
            rates[normalize_tax_class(tax_class)] = snap_rate(rate)
        self._rates = rates

    def build(self, tax_classes: list[dict], tax_rates: list[dict]) -> None:
        """Rebuild from the store's tax class catalog and rate table."""
        by_class: dict[str, list[dict]] = {}
        for rate in tax_rates or []:
            key = normalize_tax_class(rate.get("class") or "standard")
            by_class.setdefault(key, []).append(rate)

        rates: dict[str, int] = {}
        for key, entries in by_class.items():
            best = next(
                (r for r in entries if (r.get("country") or "").upper() == self.country),
                entries[0],
            )
            try:
                value = float(best.get("rate") or 0)
            except (TypeError, ValueError):
                log.warning(f"Unparseable rate {best.get('rate')!r} for tax class {key!r}")
                continue
            snapped = snap_rate(value)
            if snapped != value:
                log.info(f"Tax class {key!r}: rate {value} snapped to {snapped}")
            rates[key] = snapped
        if "standard" in rates:
            rates[""] = rates["standard"]

        classes = [{"slug": "", "name": "Standard"}]
        for tc in tax_classes or []:
            slug = tc.get("slug") or ""
            if slug and slug != "standard":
                classes.append({"slug": slug, "name": tc.get("name") or slug})
            key = normalize_tax_class(slug)
            if key and key not in rates:
                guessed = detect_rate_by_pattern(key)
                if guessed is None:
                    guessed = detect_rate_by_pattern(normalize_tax_class(tc.get("name")))
                if guessed is not None:
                    rates[key] = guessed

        self._rates = self._with_defaults(rates)
        self.tax_classes = classes

    async def initialize(self, client) -> bool:
        """Fetch the tax catalog and rebuild. Returns False when defaults had to do."""
        try:
            tax_classes = await client.fetch_tax_classes()
            tax_rates = await client.fetch_tax_rates()
        except LedgerSyncError as e:
            log.warning(f"Tax data fetch failed, using built-in defaults: {e}")
            self.seed_defaults()
            return False
        self.build(tax_classes, tax_rates)
        self.initialized = True
        log.info(f"Tax rate cache built: {len(self._rates)} classes, country={self.country}")
        return True

    async def refresh(self, client) -> bool:
        return await self.initialize(client)

    # ── Reading ──────────────────────────────────────────────────────

    def resolve(self, tax_class) -> int:
        """Rate for a tax class string; never fails."""
        rates = self._rates
        key = normalize_tax_class(tax_class)
        if key in rates:
            return rates[key]
        if isinstance(tax_class, str) and tax_class in rates:
            return rates[tax_class]
        for variation in tax_class_variations(key):
            if variation in rates:
                return rates[variation]
        guessed = detect_rate_by_pattern(key)
        if guessed is not None:
            return guessed
        return rates.get("", self.default_rate)

    def resolve_line_rate(self, item: dict) -> int:
        """Rate for one line item: class first, amounts when the class is missing or contradicted."""
        base = to_decimal(item.get("total"))
        tax = to_decimal(item.get("total_tax"))
        if base <= 0:
            base = to_decimal(item.get("subtotal"))
            tax = to_decimal(item.get("subtotal_tax")) or tax

        tax_class = item.get("tax_class")
        if tax_class is None:
            inferred = infer_rate_from_amounts(base, tax)
            if inferred is not None:
                return inferred
            from_taxes = self._rate_from_taxes(item.get("taxes"))
            return self.default_rate if from_taxes is None else from_taxes

        rate = self.resolve(tax_class)
        if rate == 0 and base > 0 and tax > 0:
            # Class says exempt but the store charged tax: trust the amounts
            return infer_rate_from_amounts(base, tax)
        return rate

    def resolve_tax_line_rate(self, tax_line: dict) -> int:
        """Rate for an order-level tax line (rate_percent, else label/rate_code/name)."""
        label = strip_accents(str(tax_line.get("label") or "").lower())
        if re.search(r"exoner|exempt", label):
            return 0
        try:
            rate = float(tax_line.get("rate_percent") or 0)
        except (TypeError, ValueError):
            rate = 0.0
        if rate == 0:
            return self._rate_from_tax_line_text(tax_line, label)
        return snap_rate(rate)

    def _rate_from_tax_line_text(self, tax_line: dict, label: str) -> int:
        if label and _EXEMPT_LABEL_PATTERN.search(label):
            return 0
        for candidate in (
            extract_numeral(tax_line.get("rate_code")),
            extract_percent(tax_line.get("label")),
            extract_percent(tax_line.get("name")),
        ):
            if candidate is not None and candidate in ALLOWED_RATES:
                return int(candidate)
        return self.default_rate

    def _rate_from_taxes(self, taxes) -> int | None:
        for tax in taxes or []:
            numeral = extract_numeral(tax.get("rate_code")) if isinstance(tax, dict) else None
            if numeral is not None and numeral in ALLOWED_RATES:
                return int(numeral)
        return None

    def available_rates(self) -> list[int]:
        return list(ALLOWED_RATES)

    def as_dict(self) -> dict[str, int]:
        return dict(self._rates)

    def __len__(self):
        return len(self._rates)


# Process-wide instance for the app; tests build their own.
tax_cache = TaxRateCache()
