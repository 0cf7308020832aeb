"""Vendor registry."""

from marketplace.vendors.registry import VendorRegistry, normalize_rate

__all__ = ["VendorRegistry", "normalize_rate"]
