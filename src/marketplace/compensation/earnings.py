"""Earnings aggregator — per-vendor commission lists and earnings summaries.

Everything here is recomputed on every call from the order ledger and the
vendor registry. Nothing is cached, so a delivery or a rate change is
visible on the next read.

Lookups go through the ledger's vendor index, so the cost of a query is
proportional to the vendor's own orders, not to the whole ledger.

Settlements are reported alongside earnings in the wallet history but
never netted against them: pending_earnings is not reduced by payouts.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from marketplace.compensation.engine import CommissionCalculator
from marketplace.models.compensation import (
    Commission,
    CommissionStatus,
    EarningsSummary,
    Settlement,
    WalletEntry,
    WalletEntryKind,
)
from marketplace.orders.ledger import OrderLedger
from marketplace.vendors.registry import VendorRegistry


class EarningsAggregator:
    """Read-side projection of vendor commissions and earnings.

    Usage:
        aggregator = EarningsAggregator(ledger, registry, calculator)
        summary = aggregator.vendor_summary(vendor_id)
    """

    def __init__(
        self,
        ledger: OrderLedger,
        registry: VendorRegistry,
        calculator: CommissionCalculator,
    ) -> None:
        self._ledger = ledger
        self._registry = registry
        self._calculator = calculator

    def vendor_commissions(
        self,
        vendor_id: int,
        status: Optional[CommissionStatus] = None,
    ) -> list[Commission]:
        """One commission per order containing the vendor, newest first.

        Raises VendorNotFoundError for an unknown vendor.
        """
        vendor = self._registry.get(vendor_id)
        commissions: list[Commission] = []
        for order in self._ledger.orders_for_vendor(vendor_id):
            sub_order = order.sub_order_for(vendor_id)
            if sub_order is None:
                continue
            commission = self._calculator.compute_commission(order, sub_order, vendor)
            if status is not None and commission.status != status:
                continue
            commissions.append(commission)
        return commissions

    def vendor_summary(self, vendor_id: int) -> EarningsSummary:
        """Bucket a vendor's earnings into paid and pending in one pass."""
        paid = Decimal("0")
        pending = Decimal("0")
        commission_total = Decimal("0")
        count = 0
        for commission in self.vendor_commissions(vendor_id):
            if commission.status == CommissionStatus.PAID:
                paid += commission.vendor_earnings
            else:
                pending += commission.vendor_earnings
            commission_total += commission.commission_amount
            count += 1
        return EarningsSummary(
            vendor_id=vendor_id,
            total_earnings=paid,
            pending_earnings=pending,
            total_commission=commission_total,
            commission_count=count,
        )

    def wallet_history(
        self,
        vendor_id: int,
        settlements: Iterable[Settlement],
    ) -> list[WalletEntry]:
        """Merge earnings and settlement payouts into one feed, newest first."""
        entries = [
            WalletEntry(
                entry_id=c.commission_id,
                kind=WalletEntryKind.EARNING,
                vendor_id=vendor_id,
                amount=c.vendor_earnings,
                occurred_utc=c.created_utc,
                description=f"Earning from Order {c.order_id}",
                status=c.status.value,
                commission=c.commission_amount,
                order_id=c.order_id,
            )
            for c in self.vendor_commissions(vendor_id)
        ]
        entries.extend(
            WalletEntry(
                entry_id=s.settlement_id,
                kind=WalletEntryKind.SETTLEMENT,
                vendor_id=vendor_id,
                amount=s.amount,
                occurred_utc=s.created_utc,
                description="Settlement Payment",
                status=CommissionStatus.PAID.value,
                payment_method=s.payment_method,
                transaction_id=s.transaction_id,
            )
            for s in settlements
            if s.vendor_id == vendor_id
        )
        entries.sort(key=lambda e: e.occurred_utc, reverse=True)
        return entries
