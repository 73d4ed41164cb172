"""Catalog migration engine: copy items missing on one marketplace from another."""

__version__ = "1.0.0"
