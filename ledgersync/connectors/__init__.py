"""Upstream connectors. Only the WooCommerce store for now."""

from .woocommerce import WooCommerceClient  # noqa: F401
