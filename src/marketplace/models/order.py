"""Order models — customer orders split into per-vendor sub-orders.

An order is created once at checkout. Its customer and address snapshots
and its sub-order list are immutable from then on; only the status,
payment status and courier assignment change.

Order lifecycle:
    PENDING → PROCESSING → READY_FOR_PICKUP → SHIPPED → DELIVERED
    Any non-terminal state → CANCELLED

Invariants:
- sub_order.subtotal == sum(item.unit_price × item.quantity)
- sum(sub_order.subtotal) + platform_fee + shipping_fee == total_amount
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional


class OrderStatus(str, enum.Enum):
    """Lifecycle state of an order.

    READY_FOR_PICKUP is the state couriers watch: orders in it are
    waiting to be claimed for delivery.
    """
    PENDING = "pending"
    PROCESSING = "processing"
    READY_FOR_PICKUP = "ready_for_pickup"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"


CASH_ON_DELIVERY = "cod"


@dataclass(frozen=True)
class CustomerSnapshot:
    """Customer contact details as they were at checkout."""
    name: str
    email: str
    phone: str = ""


@dataclass(frozen=True)
class AddressSnapshot:
    """Shipping address as it was at checkout."""
    recipient: str
    line1: str
    city: str
    state: str
    postal_code: str
    phone: str = ""
    locality: str = ""
    label: str = "Home"


@dataclass(frozen=True)
class CartItem:
    """A line in the customer's cart, submitted at checkout."""
    product_id: str
    vendor_id: int
    name: str
    unit_price: Decimal
    quantity: int
    variant: Optional[str] = None


@dataclass(frozen=True)
class OrderItem:
    """A purchased line inside a vendor sub-order."""
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    variant: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class VendorSubOrder:
    """The slice of an order fulfilled by a single vendor.

    shipping_share is informational: the order-level shipping fee split
    evenly across vendors. It is not part of subtotal and does not enter
    commission computation.
    """
    vendor_id: int
    subtotal: Decimal
    items: tuple[OrderItem, ...]
    shipping_share: Decimal = Decimal("0")


@dataclass
class Order:
    """A customer order spanning one or more vendors.

    Mutable only through the order ledger: status transitions and
    courier assignment are applied under the order's lock.
    """
    order_id: str
    created_utc: datetime
    customer: CustomerSnapshot
    shipping_address: AddressSnapshot
    payment_method: str
    sub_orders: tuple[VendorSubOrder, ...]
    platform_fee: Decimal
    shipping_fee: Decimal
    total_amount: Decimal
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    assigned_courier: Optional[str] = None
    assigned_utc: Optional[datetime] = None
    delivered_utc: Optional[datetime] = None
    status_history: list[tuple[str, datetime]] = field(default_factory=list)

    @property
    def vendor_ids(self) -> list[int]:
        return [s.vendor_id for s in self.sub_orders]

    def sub_order_for(self, vendor_id: int) -> Optional[VendorSubOrder]:
        """Return this order's sub-order for a vendor, if any."""
        for sub in self.sub_orders:
            if sub.vendor_id == vendor_id:
                return sub
        return None
