"""Checkout — splits a multi-vendor cart into one order with vendor sub-orders.

Cart items are grouped by vendor in the order the vendors first appear
in the cart. Each group becomes a VendorSubOrder whose subtotal is the
exact sum of its line totals. Order-level fees come from policy:

    shipping = 0 if items_subtotal > free_shipping_threshold else shipping_fee
    total_amount = items_subtotal + platform_fee + shipping

The shipping fee is also shown per vendor (shipping_share): split evenly,
rounded down to the currency quantum, with the leftover on the first
vendor so the shares add back up to the shipping fee.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Iterable, Optional
from uuid import uuid4

from marketplace.errors import ValidationError
from marketplace.models.order import (
    CASH_ON_DELIVERY,
    AddressSnapshot,
    CartItem,
    CustomerSnapshot,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    VendorSubOrder,
)
from marketplace.policy.resolver import PolicyResolver
from marketplace.vendors.registry import VendorRegistry


def _price(value: object, product_id: str) -> Decimal:
    try:
        price = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid unit price for {product_id}: {value!r}") from e
    if not price.is_finite() or price < Decimal("0"):
        raise ValidationError(f"Unit price for {product_id} must be non-negative")
    return price


def _carried(amount: Decimal, quantum: Decimal, what: str) -> Decimal:
    """Return amount if it can be held at the currency quantum.

    Past the decimal context precision, quantize() fails, and so would
    every commission later derived from the amount.
    """
    try:
        amount.quantize(quantum)
    except InvalidOperation as e:
        raise ValidationError(f"{what} {amount} is too large") from e
    return amount


class CheckoutBuilder:
    """Builds Order objects from carts.

    Usage:
        builder = CheckoutBuilder(resolver, registry)
        order = builder.build(customer, address, cart_items, "card")
    """

    def __init__(self, resolver: PolicyResolver, registry: VendorRegistry) -> None:
        self._resolver = resolver
        self._registry = registry

    def build(
        self,
        customer: CustomerSnapshot,
        address: AddressSnapshot,
        cart_items: Iterable[CartItem],
        payment_method: str,
        order_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Order:
        """Validate the cart and produce a PENDING order.

        Raises ValidationError for an empty cart, a bad quantity or price,
        an amount too large to hold at the currency quantum, a blank
        payment method, or a vendor that is not approved.
        Raises VendorNotFoundError for an unknown vendor.
        """
        items = list(cart_items)
        if not items:
            raise ValidationError("Cannot place an order with an empty cart")
        payment_method = (payment_method or "").strip()
        if not payment_method:
            raise ValidationError("Payment method is required")
        if now is None:
            now = datetime.now(timezone.utc)
        if order_id is None:
            order_id = f"ORD-{uuid4().hex[:12].upper()}"

        params = self._resolver.checkout_params()
        quantum = self._resolver.commission_params()["currency_quantum"]
        sub_orders = self._split_by_vendor(items, quantum)

        items_subtotal = sum((s.subtotal for s in sub_orders), Decimal("0"))
        if items_subtotal > params["free_shipping_threshold"]:
            shipping_fee = Decimal("0")
        else:
            shipping_fee = params["shipping_fee"]
        platform_fee = params["platform_fee"]

        sub_orders = self._allocate_shipping(sub_orders, shipping_fee, quantum)

        payment_status = (
            PaymentStatus.PENDING if payment_method == CASH_ON_DELIVERY
            else PaymentStatus.PAID
        )
        return Order(
            order_id=order_id,
            created_utc=now,
            customer=customer,
            shipping_address=address,
            payment_method=payment_method,
            sub_orders=tuple(sub_orders),
            platform_fee=platform_fee,
            shipping_fee=shipping_fee,
            total_amount=_carried(
                items_subtotal + platform_fee + shipping_fee, quantum, "Order total",
            ),
            status=OrderStatus.PENDING,
            payment_status=payment_status,
        )

    def _split_by_vendor(
        self, items: list[CartItem], quantum: Decimal,
    ) -> list[VendorSubOrder]:
        groups: dict[int, list[OrderItem]] = {}
        for item in items:
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int):
                raise ValidationError(f"Quantity for {item.product_id} must be an integer")
            if item.quantity < 1:
                raise ValidationError(
                    f"Quantity for {item.product_id} must be at least 1, got {item.quantity}"
                )
            vendor = self._registry.get(item.vendor_id)
            if not vendor.is_approved:
                raise ValidationError(
                    f"Vendor {vendor.vendor_id} is not approved ({vendor.status.value})"
                )
            line = OrderItem(
                product_id=item.product_id,
                name=item.name,
                unit_price=_price(item.unit_price, item.product_id),
                quantity=item.quantity,
                variant=item.variant,
            )
            _carried(line.line_total, quantum, f"Line total for {item.product_id}")
            groups.setdefault(vendor.vendor_id, []).append(line)

        return [
            VendorSubOrder(
                vendor_id=vendor_id,
                subtotal=_carried(
                    sum((i.line_total for i in order_items), Decimal("0")),
                    quantum, f"Subtotal for vendor {vendor_id}",
                ),
                items=tuple(order_items),
            )
            for vendor_id, order_items in groups.items()
        ]

    @staticmethod
    def _allocate_shipping(
        sub_orders: list[VendorSubOrder],
        shipping_fee: Decimal,
        quantum: Decimal,
    ) -> list[VendorSubOrder]:
        share = (shipping_fee / len(sub_orders)).quantize(quantum, rounding=ROUND_DOWN)
        leftover = shipping_fee - share * len(sub_orders)
        allocated = []
        for i, sub in enumerate(sub_orders):
            allocated.append(VendorSubOrder(
                vendor_id=sub.vendor_id,
                subtotal=sub.subtotal,
                items=sub.items,
                shipping_share=share + leftover if i == 0 else share,
            ))
        return allocated
