"""Deterministic normalization — pure Python, no lookups.

Normalizes the free-text tags the store attaches to products and tax lines:
  - Tax classes: "Taux Réduit " → "taux-reduit"
  - Rate numerals: "TVA 20%" → 20.0
  - Customer names: billing snapshot → "First Last"

Design: Prefer less data if it means better data. Return None for ambiguous values.
"""

import re
import unicodedata

_SEPARATORS = re.compile(r"[\s_]+")
_HYPHENS = re.compile(r"-+")
_NUMERAL = re.compile(r"(\d+(?:[.,]\d+)?)")
_PERCENT = re.compile(r"(\d+(?:[.,]\d+)?)\s*%")


def strip_accents(s: str) -> str:
    """Drop combining marks: 'exonéré' → 'exonere', 'ç' → 'c'."""
    decomposed = unicodedata.normalize("NFKD", s)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_tax_class(raw) -> str:
    """Canonical lookup key for a tax class string."""
    if raw is None:
        return ""
    s = strip_accents(str(raw).lower().strip())
    s = _SEPARATORS.sub("-", s)
    s = _HYPHENS.sub("-", s)
    return s.strip("-")


def tax_class_variations(key: str) -> list[str]:
    """Alternative spellings tried when the canonical key misses the cache."""
    variations = [
        key,
        key.replace("-", "_"),
        key.replace("_", "-"),
        re.sub(r"[-_]", "", key),
        re.sub(r"[-_]", " ", key),
        f"tva-{key}",
        f"taux-{key}",
    ]
    # dict.fromkeys keeps order while dropping duplicates
    return list(dict.fromkeys(variations))


def extract_numeral(s) -> float | None:
    """First number in the string, comma decimals accepted."""
    if not s:
        return None
    m = _NUMERAL.search(str(s))
    if not m:
        return None
    return float(m.group(1).replace(",", "."))


def extract_percent(s) -> float | None:
    """First 'N%' in the string."""
    if not s:
        return None
    m = _PERCENT.search(str(s))
    if not m:
        return None
    return float(m.group(1).replace(",", "."))


def customer_display_name(billing: dict | None) -> str:
    if not billing:
        return "Unknown Customer"
    name = f"{billing.get('first_name') or ''} {billing.get('last_name') or ''}".strip()
    return name or billing.get("company") or "Unknown Customer"
