"""Change-data-capture fan-out for multi-tenant product and purchase records."""

__version__ = "0.1.0"
