"""Tax rates API — inspect and rebuild the tax class cache."""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_store_client, get_tax_cache

log = logging.getLogger(__name__)

router = APIRouter(tags=["tax"])


@router.get("/api/tax/rates")
def tax_rates(tax_cache=Depends(get_tax_cache)):
    return {
        "initialized": tax_cache.initialized,
        "default_rate": tax_cache.default_rate,
        "country": tax_cache.country,
        "allowed_rates": tax_cache.available_rates(),
        "tax_classes": tax_cache.tax_classes,
        "rates": tax_cache.as_dict(),
    }


@router.get("/api/tax/resolve")
def resolve_tax_class(tax_class: str = Query(""), tax_cache=Depends(get_tax_cache)):
    return {"tax_class": tax_class, "rate": tax_cache.resolve(tax_class)}


@router.post("/api/tax/refresh")
async def refresh_tax_rates(
    db: Session = Depends(get_db),
    tax_cache=Depends(get_tax_cache),
    client=Depends(get_store_client),
):
    """Rebuild from the store, then re-derive line item rates on the mirror."""
    from ..services.order_service import recompute_line_rates

    fetched = await tax_cache.refresh(client)
    updated = recompute_line_rates(db, tax_cache)
    log.info(f"Tax cache refreshed (remote={fetched}), {updated} orders re-rated")
    return {"ok": True, "fetched_from_store": fetched, "orders_updated": updated}
