"""Domain models for the marketplace ledger."""

from marketplace.models.compensation import (
    Commission,
    CommissionStatus,
    EarningsSummary,
    Settlement,
    SettlementStatus,
    WalletEntry,
    WalletEntryKind,
)
from marketplace.models.order import (
    AddressSnapshot,
    CartItem,
    CustomerSnapshot,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    VendorSubOrder,
)
from marketplace.models.vendor import Vendor, VendorStatus

__all__ = [
    "AddressSnapshot",
    "CartItem",
    "Commission",
    "CommissionStatus",
    "CustomerSnapshot",
    "EarningsSummary",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "Settlement",
    "SettlementStatus",
    "Vendor",
    "VendorStatus",
    "VendorSubOrder",
    "WalletEntry",
    "WalletEntryKind",
]
