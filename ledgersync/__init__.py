"""ledgersync — WooCommerce order mirror, tax resolution, sales journals and document numbering."""

__version__ = "1.0.0"
