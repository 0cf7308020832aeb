"""Compensation models — commissions, earnings summaries, settlements.

All monetary values use Decimal for exact arithmetic. No floats in finance.

Commission and EarningsSummary are derived views: they are computed on
every read from the order ledger and the vendor registry and are never
persisted. A commission's status is read off its order's status rather
than stored, so delivery flips it to PAID without any write.

Settlement is the only stored record here. It is append-only and is not
linked to individual commissions: recording a payout does not reduce
pending earnings.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


class CommissionStatus(str, enum.Enum):
    """Derived status: PAID iff the parent order is delivered."""
    PENDING = "pending"
    PAID = "paid"


class SettlementStatus(str, enum.Enum):
    COMPLETED = "completed"


class WalletEntryKind(str, enum.Enum):
    EARNING = "earning"
    SETTLEMENT = "settlement"


@dataclass(frozen=True)
class Commission:
    """Commission and vendor earnings for one vendor sub-order.

    Invariant: commission_amount + vendor_earnings == subtotal
    """
    commission_id: str
    order_id: str
    vendor_id: int
    created_utc: datetime
    subtotal: Decimal
    rate: Decimal
    commission_amount: Decimal
    vendor_earnings: Decimal
    status: CommissionStatus


@dataclass(frozen=True)
class EarningsSummary:
    """Per-vendor earnings, bucketed by derived commission status.

    Invariant: total_earnings + pending_earnings == sum(vendor_earnings)
    over all of the vendor's commissions.
    """
    vendor_id: int
    total_earnings: Decimal
    pending_earnings: Decimal
    total_commission: Decimal
    commission_count: int


@dataclass(frozen=True)
class Settlement:
    """A payout issued to a vendor by an admin."""
    settlement_id: str
    vendor_id: int
    amount: Decimal
    payment_method: str
    created_utc: datetime
    transaction_id: Optional[str] = None
    status: SettlementStatus = SettlementStatus.COMPLETED


@dataclass(frozen=True)
class WalletEntry:
    """One line of a vendor's wallet history."""
    entry_id: str
    kind: WalletEntryKind
    vendor_id: int
    amount: Decimal
    occurred_utc: datetime
    description: str
    status: str
    commission: Decimal = Decimal("0")
    order_id: Optional[str] = None
    payment_method: Optional[str] = None
    transaction_id: Optional[str] = None
