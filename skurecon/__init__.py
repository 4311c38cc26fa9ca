"""Supplier vs ledger line-item reconciliation with SKU mapping support."""

__version__ = "0.1.0"
