"""
dependencies.py — Shared FastAPI Dependencies

Hands routers the process-wide collaborators (sync engine, tax cache,
store client). Tests swap them through app.dependency_overrides.

Called by: routers/sync.py, routers/tax.py, routers/journals.py
Depends on: sync_engine.py, services/tax_rates.py
"""

from .services.tax_rates import TaxRateCache
from .sync_engine import OrderSyncEngine, get_engine


def get_sync_engine() -> OrderSyncEngine:
    return get_engine()


def get_tax_cache() -> TaxRateCache:
    return get_engine().tax_cache


def get_store_client():
    return get_engine().client
