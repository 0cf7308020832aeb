"""Commission calculator — derives commission and vendor earnings per sub-order.

The formula is fully deterministic:

    commission = round(subtotal × vendor.commission_rate, quantum)
    vendor_earnings = subtotal − commission
    status = PAID if order.status == DELIVERED else PENDING

Rounding is applied once, to the commission, using the policy quantum
(0.01) and rounding mode (ROUND_HALF_UP). Earnings are the exact
remainder, so commission + earnings == subtotal holds by construction
with no rounding leakage.

The rate is read from the vendor at call time. Nothing here is stored:
a commission is a pure view over an order and a vendor.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from marketplace.models.compensation import Commission, CommissionStatus
from marketplace.models.order import Order, OrderStatus, VendorSubOrder
from marketplace.models.vendor import Vendor
from marketplace.policy.resolver import PolicyResolver


class CommissionCalculator:
    """Computes the commission breakdown for a vendor sub-order.

    Usage:
        calculator = CommissionCalculator(resolver)
        commission = calculator.compute_commission(order, sub_order, vendor)
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        params = resolver.commission_params()
        self._quantum: Decimal = params["currency_quantum"]
        self._rounding: str = params["rounding"] or ROUND_HALF_UP

    def compute_commission(
        self,
        order: Order,
        sub_order: VendorSubOrder,
        vendor: Vendor,
    ) -> Commission:
        """Compute the commission for one vendor's slice of an order.

        Args:
            order: The parent order; its status decides paid vs pending.
            sub_order: The vendor's sub-order inside that order.
            vendor: The vendor, carrying the current commission rate.

        Returns:
            A frozen Commission. Invariant:
            commission_amount + vendor_earnings == sub_order.subtotal
        """
        if sub_order.vendor_id != vendor.vendor_id:
            raise ValueError(
                f"Sub-order belongs to vendor {sub_order.vendor_id}, "
                f"not {vendor.vendor_id}"
            )
        subtotal = sub_order.subtotal
        commission_amount = self.commission_amount(subtotal, vendor.commission_rate)

        return Commission(
            commission_id=f"COMM-{order.order_id}-{vendor.vendor_id}",
            order_id=order.order_id,
            vendor_id=vendor.vendor_id,
            created_utc=order.created_utc,
            subtotal=subtotal,
            rate=vendor.commission_rate,
            commission_amount=commission_amount,
            vendor_earnings=subtotal - commission_amount,
            status=self.derive_status(order),
        )

    def commission_amount(self, subtotal: Decimal, rate: Decimal) -> Decimal:
        """Round subtotal × rate to the currency quantum, capped at subtotal."""
        amount = (subtotal * rate).quantize(self._quantum, rounding=self._rounding)
        return min(amount, subtotal)

    @staticmethod
    def derive_status(order: Order) -> CommissionStatus:
        # Cancelled orders read as pending; cancellation has no reversal entry
        if order.status == OrderStatus.DELIVERED:
            return CommissionStatus.PAID
        return CommissionStatus.PENDING
