"""Order ledger — the single source of truth for order status.

The ledger stores every order with its embedded vendor sub-orders and
drives the status state machine. Three actors touch an order: the
admin or customer side, the vendor, and the delivery courier. They may
race, so:

- Each order has its own lock. Status, payment status and courier
  assignment are only written while holding it.
- The courier claim is a compare-and-set: it succeeds only if the order
  is still unassigned, and it writes SHIPPED and the courier together.
- Sub-orders are immutable tuples stored before the order becomes
  visible, so readers never observe a half-written sub-order list.
- A secondary index (vendor_id → order ids) keeps vendor-scoped reads
  proportional to the vendor's own orders.

Mutators accept an ``on_commit`` callback. It receives the order as it
will look once the change lands, while the stored order is still
untouched. Only when the callback returns is the change installed; if it
raises, nothing was ever visible and the error propagates. The service
layer uses this to make audit recording fail-closed.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from marketplace.errors import (
    AlreadyAssignedError,
    InvalidTransitionError,
    OrderNotFoundError,
    ValidationError,
)
from marketplace.models.order import (
    CASH_ON_DELIVERY,
    Order,
    OrderStatus,
    PaymentStatus,
)
from marketplace.orders.state_machine import OrderStateMachine


CommitHook = Callable[[Order], None]


def _install(order: Order, updated: Order) -> None:
    """Copy the mutable fields of a committed draft onto the stored order."""
    order.status = updated.status
    order.payment_status = updated.payment_status
    order.assigned_courier = updated.assigned_courier
    order.assigned_utc = updated.assigned_utc
    order.delivered_utc = updated.delivered_utc
    order.status_history.append(updated.status_history[-1])


class OrderLedger:
    """In-memory order store with per-order locking and a vendor index.

    Usage:
        ledger = OrderLedger()
        ledger.add(order)
        ledger.update_status(order.order_id, OrderStatus.PROCESSING)
        ledger.update_status(order.order_id, OrderStatus.READY_FOR_PICKUP)
        ledger.claim(order.order_id, "courier-1")
        ledger.complete_delivery(order.order_id, "courier-1")
    """

    def __init__(self) -> None:
        self._orders: dict[str, Order] = {}
        self._locks: dict[str, threading.RLock] = {}
        self._vendor_index: dict[int, list[str]] = {}
        # Re-entrant: a commit hook may read the ledger on the same thread
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def add(self, order: Order, on_commit: Optional[CommitHook] = None) -> Order:
        """Store a fully built order and index it by vendor.

        The order becomes visible only after on_commit returns.
        Raises ValidationError if the order id is already taken.
        """
        with self._lock:
            if order.order_id in self._orders:
                raise ValidationError(f"Order ID already exists: {order.order_id}")
            if not order.status_history:
                order.status_history.append((order.status.value, order.created_utc))
            if on_commit is not None:
                on_commit(order)
            self._insert(order)
        return order

    def update_status(
        self,
        order_id: str,
        target: OrderStatus,
        now: Optional[datetime] = None,
        on_commit: Optional[CommitHook] = None,
    ) -> Order:
        """Apply a plain status write.

        Raises OrderNotFoundError or InvalidTransitionError. SHIPPED is
        rejected here: it is only reachable through claim().
        """
        order = self.get(order_id)
        try:
            target = OrderStatus(target)
        except ValueError as e:
            raise InvalidTransitionError(
                order_id, order.status.value, str(target), "unknown status",
            ) from e
        with self._locks[order_id]:
            errors = OrderStateMachine.validate_transition(order, target)
            if errors:
                raise InvalidTransitionError(
                    order_id, order.status.value, target.value, errors[0],
                )
            self._apply(order, target, now, on_commit)
        return order

    def claim(
        self,
        order_id: str,
        courier_id: str,
        now: Optional[datetime] = None,
        on_commit: Optional[CommitHook] = None,
    ) -> Order:
        """Claim an order for delivery: READY_FOR_PICKUP → SHIPPED.

        Compare-and-set under the order lock. Exactly one of several
        concurrent claimants succeeds; the rest get AlreadyAssignedError.
        """
        courier_id = courier_id.strip()
        if not courier_id:
            raise ValidationError("Courier ID is required")
        order = self.get(order_id)
        with self._locks[order_id]:
            if order.assigned_courier is not None:
                raise AlreadyAssignedError(order_id, order.assigned_courier)
            errors = OrderStateMachine.validate_transition(
                order, OrderStatus.SHIPPED, via_claim=True,
            )
            if errors:
                raise InvalidTransitionError(
                    order_id, order.status.value, OrderStatus.SHIPPED.value, errors[0],
                )
            ts = now or datetime.now(timezone.utc)

            def _assign(o: Order) -> None:
                o.assigned_courier = courier_id
                o.assigned_utc = ts

            self._apply(order, OrderStatus.SHIPPED, ts, on_commit, extra=_assign)
        return order

    def complete_delivery(
        self,
        order_id: str,
        courier_id: str,
        now: Optional[datetime] = None,
        on_commit: Optional[CommitHook] = None,
    ) -> Order:
        """Courier marks a shipped order delivered.

        Only the courier who claimed the order may complete it.
        """
        order = self.get(order_id)
        with self._locks[order_id]:
            if order.assigned_courier != courier_id.strip():
                raise ValidationError(
                    f"Order {order_id} is not assigned to courier {courier_id}"
                )
            errors = OrderStateMachine.validate_transition(order, OrderStatus.DELIVERED)
            if errors:
                raise InvalidTransitionError(
                    order_id, order.status.value, OrderStatus.DELIVERED.value, errors[0],
                )
            self._apply(order, OrderStatus.DELIVERED, now, on_commit)
        return order

    def restore(self, order: Order) -> None:
        """Re-insert an order loaded from storage, without validation."""
        with self._lock:
            self._insert(order)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, order_id: str) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def find(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    def orders_for_vendor(self, vendor_id: int) -> list[Order]:
        """Orders containing a sub-order for the vendor, newest first."""
        with self._lock:
            order_ids = list(self._vendor_index.get(vendor_id, []))
        return [self._orders[oid] for oid in reversed(order_ids)]

    def available_for_pickup(self) -> list[Order]:
        """Orders waiting in the courier queue."""
        return [
            o for o in self.all_orders()
            if o.status == OrderStatus.READY_FOR_PICKUP and o.assigned_courier is None
        ]

    def orders_for_courier(self, courier_id: str) -> list[Order]:
        return [o for o in self.all_orders() if o.assigned_courier == courier_id]

    def all_orders(self) -> list[Order]:
        """All orders, newest first."""
        with self._lock:
            orders = list(self._orders.values())
        return list(reversed(orders))

    def snapshot(self) -> list[Order]:
        """Copies of all orders, oldest first, for persistence.

        Each copy is taken under its order lock, so it holds either all
        or none of a transition (a claimed order always carries its
        courier).
        """
        with self._lock:
            entries = [(o, self._locks[o.order_id]) for o in self._orders.values()]
        copies = []
        for order, lock in entries:
            with lock:
                copies.append(replace(order, status_history=list(order.status_history)))
        return copies

    @property
    def count(self) -> int:
        return len(self._orders)

    def count_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for o in self.all_orders():
            counts[o.status.value] = counts.get(o.status.value, 0) + 1
        return counts

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _apply(
        self,
        order: Order,
        target: OrderStatus,
        now: Optional[datetime],
        on_commit: Optional[CommitHook],
        extra: Optional[Callable[[Order], None]] = None,
    ) -> None:
        """Apply a validated transition. Caller holds the order lock.

        The transition is built on a draft copy. The stored order only
        changes after on_commit returns.
        """
        ts = now or datetime.now(timezone.utc)
        draft = replace(
            order,
            status=target,
            status_history=[*order.status_history, (target.value, ts)],
        )
        if extra is not None:
            extra(draft)
        if target == OrderStatus.DELIVERED:
            draft.delivered_utc = ts
            # Cash on delivery is collected by the courier
            if order.payment_method == CASH_ON_DELIVERY:
                draft.payment_status = PaymentStatus.PAID
        if on_commit is not None:
            on_commit(draft)
        _install(order, draft)

    def _insert(self, order: Order) -> None:
        """Caller holds the ledger lock."""
        self._orders[order.order_id] = order
        self._locks[order.order_id] = threading.RLock()
        for vendor_id in dict.fromkeys(order.vendor_ids):
            self._vendor_index.setdefault(vendor_id, []).append(order.order_id)
