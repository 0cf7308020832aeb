"""Marketplace ledger — order splitting, vendor commissions and earnings."""

__version__ = "0.1.0"
