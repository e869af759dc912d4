"""WooCommerce REST API connector — orders, taxes and product stock.

Every call goes through _request(), which owns retries and error mapping:
  - transport errors and 5xx: retried with 2**attempt backoff, then NetworkError
  - 401/403: AuthError, never retried (bad credentials don't heal)
  - any other non-2xx: NetworkError with the status attached
"""

import asyncio
import logging

import httpx

from ..config import settings
from ..errors import AuthError, NetworkError
from ..http_client import http
from ..utils import safe_int

log = logging.getLogger(__name__)


class WooCommerceClient:
    """Basic-auth client for one store (consumer key/secret pair)."""

    def __init__(
        self,
        api_url: str | None = None,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        self.api_url = (api_url if api_url is not None else settings.wc_api_url).rstrip("/")
        self.consumer_key = consumer_key if consumer_key is not None else settings.wc_consumer_key
        self.consumer_secret = (
            consumer_secret if consumer_secret is not None else settings.wc_consumer_secret
        )
        self.timeout = timeout if timeout is not None else settings.wc_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.wc_max_retries
        self._product_tax_classes: dict[int, str] = {}

    @property
    def configured(self) -> bool:
        return bool(self.api_url and self.consumer_key and self.consumer_secret)

    async def _request(self, method: str, path: str, params: dict | None = None, json=None):
        if not self.configured:
            raise AuthError("WooCommerce credentials not configured")

        url = f"{self.api_url}{path}"
        last_err: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                r = await http.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    auth=(self.consumer_key, self.consumer_secret),
                    timeout=self.timeout,
                )
            except httpx.HTTPError as e:
                last_err = NetworkError(f"{method} {path} failed: {e}")
            else:
                if r.status_code in (401, 403):
                    raise AuthError(
                        f"{method} {path} rejected credentials ({r.status_code})",
                        status=r.status_code,
                    )
                if r.status_code >= 500:
                    last_err = NetworkError(
                        f"{method} {path} returned {r.status_code}", status=r.status_code
                    )
                elif r.status_code >= 400:
                    raise NetworkError(
                        f"{method} {path} returned {r.status_code}: {r.text[:200]}",
                        status=r.status_code,
                    )
                else:
                    try:
                        return r.json()
                    except ValueError as e:
                        raise NetworkError(f"{method} {path} returned invalid JSON: {e}")

            if attempt < self.max_retries:
                await asyncio.sleep(2**attempt)
        log.warning(f"WooCommerce {method} {path} failed after {self.max_retries + 1} attempts")
        raise last_err

    # ── Orders ───────────────────────────────────────────────────────

    async def fetch_orders(
        self,
        status: str | None = None,
        per_page: int = 100,
        page: int = 1,
        after: str | None = None,
        before: str | None = None,
        modified_after: str | None = None,
        orderby: str | None = None,
        order: str | None = None,
        dates_are_gmt: bool = False,
    ) -> list[dict]:
        """One page of raw orders (context=edit so tax classes are included)."""
        params = {"per_page": per_page, "page": page, "context": "edit"}
        optional = {
            "status": status,
            "after": after,
            "before": before,
            "modified_after": modified_after,
            "orderby": orderby,
            "order": order,
        }
        params.update({k: v for k, v in optional.items() if v})
        if dates_are_gmt:
            params["dates_are_gmt"] = "true"
        data = await self._request("GET", "/orders", params=params)
        return data if isinstance(data, list) else []

    async def fetch_order(self, order_id: int) -> dict:
        return await self._request("GET", f"/orders/{order_id}", params={"context": "edit"})

    async def update_order_status(self, order_id: int, status: str) -> dict:
        return await self._request("PUT", f"/orders/{order_id}", json={"status": status})

    async def add_order_note(self, order_id: int, note: str, customer_note: bool = False) -> dict:
        return await self._request(
            "POST",
            f"/orders/{order_id}/notes",
            json={"note": note, "customer_note": customer_note},
        )

    async def create_refund(
        self, order_id: int, amount, reason: str, line_items: list[dict] | None = None
    ) -> dict:
        payload = {"amount": str(amount), "reason": reason}
        if line_items:
            payload["line_items"] = line_items
        return await self._request("POST", f"/orders/{order_id}/refunds", json=payload)

    # ── Taxes ────────────────────────────────────────────────────────

    async def fetch_tax_classes(self) -> list[dict]:
        data = await self._request("GET", "/taxes/classes")
        return data if isinstance(data, list) else []

    async def fetch_tax_rates(self) -> list[dict]:
        data = await self._request("GET", "/taxes", params={"per_page": 100})
        return data if isinstance(data, list) else []

    # ── Products ─────────────────────────────────────────────────────

    async def get_product(self, product_id: int) -> dict:
        return await self._request("GET", f"/products/{product_id}")

    async def fetch_product_tax_class(self, product_id: int) -> str | None:
        """Product's tax class, memoized per client. None when the lookup fails."""
        if product_id in self._product_tax_classes:
            return self._product_tax_classes[product_id]
        try:
            product = await self.get_product(product_id)
        except NetworkError as e:
            log.warning(f"Could not fetch tax class for product {product_id}: {e}")
            return None
        tax_class = product.get("tax_class") or ""
        self._product_tax_classes[product_id] = tax_class
        return tax_class

    async def update_product_stock(self, product_id: int, quantity: int) -> dict:
        return await self._request(
            "PUT",
            f"/products/{product_id}",
            json={
                "stock_quantity": quantity,
                "manage_stock": True,
                "stock_status": "instock" if quantity > 0 else "outofstock",
            },
        )

    async def adjust_product_stock(self, product_id: int, delta: int) -> dict:
        """Add (delta > 0) or remove stock; never goes below zero."""
        product = await self.get_product(product_id)
        current = safe_int(product.get("stock_quantity")) or 0
        return await self.update_product_stock(product_id, max(0, current + delta))
