"""Marketplace service — unified facade for the order and earnings ledger.

This is the primary interface for programmatic access to the ledger.
It orchestrates all subsystems:
- Vendor registry (registration, approval status, commission rates)
- Checkout (vendor split, fees, totals)
- Order lifecycle (status transitions, courier claim, delivery)
- Earnings (commission lists, pending/paid summaries, wallet history)
- Settlements (append-only payout records)
- Persistence (audit event log, state snapshots)

Mutating operations return a ServiceResult. Lookups return values.
Every mutation records an audit event before it is stored: components
build the change off to the side and install it only once the event is
written. If the event cannot be written nothing changes and the call
fails. After the audit record exists, a failed snapshot write is
reported as a warning and the in-memory state is kept.

The service owns its components; callers receive it explicitly rather
than reaching for global state. ``close()`` (or leaving a ``with``
block) writes a final snapshot and refuses further writes.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterable, Optional, TypeVar

from marketplace import __version__
from marketplace.compensation.earnings import EarningsAggregator
from marketplace.compensation.engine import CommissionCalculator
from marketplace.compensation.settlement import SettlementBook
from marketplace.errors import AuditTrailError, MarketplaceError
from marketplace.models.compensation import (
    Commission,
    CommissionStatus,
    EarningsSummary,
    Settlement,
    WalletEntry,
)
from marketplace.models.order import (
    AddressSnapshot,
    CartItem,
    CustomerSnapshot,
    Order,
    OrderStatus,
)
from marketplace.models.vendor import Vendor, VendorStatus
from marketplace.orders.checkout import CheckoutBuilder
from marketplace.orders.ledger import OrderLedger
from marketplace.persistence.event_log import EventKind, EventLog
from marketplace.persistence.state_store import StateStore
from marketplace.policy.resolver import PolicyResolver
from marketplace.vendors.registry import VendorRegistry


T = TypeVar("T")


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


def _failure(error: MarketplaceError) -> ServiceResult:
    return ServiceResult(success=False, errors=[str(error)], data={"error": error.kind})


def _last_event_number(event_log: Optional[EventLog]) -> int:
    if event_log is None or event_log.last_event is None:
        return 0
    prefix, _, number = event_log.last_event.event_id.partition("-")
    if prefix == "EVT" and number.isdigit():
        return int(number)
    return event_log.count


def _previous_status(order: Order) -> str:
    """Status the order held before its latest transition."""
    return order.status_history[-2][0]


def order_view(order: Order) -> dict[str, Any]:
    """Plain-dict rendering of an order for results and the CLI."""
    return {
        "order_id": order.order_id,
        "created_utc": order.created_utc.isoformat(),
        "status": order.status.value,
        "payment_method": order.payment_method,
        "payment_status": order.payment_status.value,
        "customer": order.customer.name,
        "platform_fee": order.platform_fee,
        "shipping_fee": order.shipping_fee,
        "total_amount": order.total_amount,
        "assigned_courier": order.assigned_courier,
        "sub_orders": [
            {
                "vendor_id": s.vendor_id,
                "subtotal": s.subtotal,
                "shipping_share": s.shipping_share,
                "items": [
                    {
                        "product_id": i.product_id,
                        "name": i.name,
                        "unit_price": i.unit_price,
                        "quantity": i.quantity,
                        "variant": i.variant,
                    }
                    for i in s.items
                ],
            }
            for s in order.sub_orders
        ],
    }


class MarketplaceService:
    """Unified marketplace ledger facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = MarketplaceService(resolver)

        # Vendors
        result = service.register_vendor("John Smith", "Fashion Hub", "j@fh.com")
        service.set_vendor_status(result.data["vendor_id"], VendorStatus.APPROVED)

        # Orders
        result = service.create_order(customer, address, cart_items, "card")
        order_id = result.data["order_id"]
        service.update_order_status(order_id, OrderStatus.PROCESSING)
        service.update_order_status(order_id, OrderStatus.READY_FOR_PICKUP)
        service.claim_for_delivery(order_id, "courier-1")
        service.complete_delivery(order_id, "courier-1")

        # Earnings and payouts
        summary = service.get_vendor_earnings_summary(vendor_id)
        service.record_settlement(vendor_id, Decimal("1000"), "bank_transfer")

    Persistence (optional):
        service = MarketplaceService(resolver, event_log=log, state_store=store)
        # State is persisted on each mutation and loaded on construction.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._resolver = resolver
        self._registry = VendorRegistry(
            default_rate=resolver.commission_params()["default_rate"],
        )
        self._ledger = OrderLedger()
        self._settlements = SettlementBook()
        self._checkout = CheckoutBuilder(resolver, self._registry)
        self._calculator = CommissionCalculator(resolver)
        self._earnings = EarningsAggregator(self._ledger, self._registry, self._calculator)

        # Persistence layer (optional, in-memory if not provided)
        self._event_log = event_log
        self._state_store = state_store

        if state_store is not None:
            stored = state_store.load()
            for vendor in stored.vendors:
                self._registry.restore(vendor)
            for order in stored.orders:
                self._ledger.restore(order)
            for settlement in stored.settlements:
                self._settlements.append(settlement)

        # Continue numbering after the last persisted id. Failed audit writes
        # leave gaps, so the event count can be lower than the last id.
        self._event_counter = _last_event_number(event_log)
        self._event_lock = threading.Lock()
        self._persist_lock = threading.Lock()
        self._settlement_locks: dict[int, threading.Lock] = {}
        self._settlement_locks_guard = threading.Lock()

        # Set when a snapshot write fails after the audit event was committed.
        # In-memory state stays aligned with the audit trail; the snapshot is stale.
        self._persistence_degraded: bool = False
        self._closed: bool = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def __enter__(self) -> MarketplaceService:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def close(self) -> Optional[str]:
        """Write a final snapshot and stop accepting writes.

        Returns a warning string if the final snapshot could not be written.
        """
        if self._closed:
            return None
        self._closed = True
        return self._safe_persist_post_audit()

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Vendor registry
    # ------------------------------------------------------------------

    def register_vendor(
        self,
        name: str,
        store_name: str,
        email: str,
        commission_rate: object = None,
        status: VendorStatus = VendorStatus.PENDING,
        actor_id: str = "admin",
    ) -> ServiceResult:
        """Register a new vendor. New vendors start as pending by default."""
        if self._closed:
            return self._closed_result()
        try:
            vendor = self._registry.register(
                name, store_name, email,
                commission_rate=commission_rate, status=status,
                on_commit=self._audit_hook(
                    EventKind.VENDOR_REGISTERED, actor_id,
                    lambda v: {
                        "vendor_id": v.vendor_id,
                        "store_name": v.store_name,
                        "commission_rate": str(v.commission_rate),
                        "status": v.status.value,
                    },
                ),
            )
        except MarketplaceError as e:
            return _failure(e)
        return self._committed({
            "vendor_id": vendor.vendor_id,
            "status": vendor.status.value,
            "commission_rate": vendor.commission_rate,
        })

    def get_vendor(self, vendor_id: int) -> Optional[Vendor]:
        """Look up a vendor."""
        return self._registry.find(vendor_id)

    def list_vendors(self, status: Optional[VendorStatus] = None) -> list[Vendor]:
        return self._registry.all_vendors(status)

    def set_commission_rate(
        self, vendor_id: int, rate: object, actor_id: str = "admin",
    ) -> ServiceResult:
        """Change a vendor's commission rate.

        The new rate applies to every commission read from now on,
        including those of orders placed and delivered before the change.
        """
        if self._closed:
            return self._closed_result()
        try:
            vendor = self._registry.set_commission_rate(
                vendor_id, rate,
                on_commit=self._audit_hook(
                    EventKind.COMMISSION_RATE_CHANGED, actor_id,
                    # The stored vendor still holds the old rate here
                    lambda v: {
                        "vendor_id": v.vendor_id,
                        "previous_rate": str(self._registry.get(v.vendor_id).commission_rate),
                        "rate": str(v.commission_rate),
                    },
                ),
            )
        except MarketplaceError as e:
            return _failure(e)
        return self._committed({
            "vendor_id": vendor_id,
            "commission_rate": vendor.commission_rate,
        })

    def set_vendor_status(
        self, vendor_id: int, status: VendorStatus, actor_id: str = "admin",
    ) -> ServiceResult:
        """Approve, suspend or reset a vendor. Any status → any status."""
        if self._closed:
            return self._closed_result()
        try:
            vendor = self._registry.set_status(
                vendor_id, status,
                on_commit=self._audit_hook(
                    EventKind.VENDOR_STATUS_CHANGED, actor_id,
                    lambda v: {
                        "vendor_id": v.vendor_id,
                        "previous_status": self._registry.get(v.vendor_id).status.value,
                        "status": v.status.value,
                    },
                ),
            )
        except MarketplaceError as e:
            return _failure(e)
        return self._committed({"vendor_id": vendor_id, "status": vendor.status.value})

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_order(
        self,
        customer: CustomerSnapshot,
        address: AddressSnapshot,
        cart_items: Iterable[CartItem],
        payment_method: str,
    ) -> ServiceResult:
        """Check out a cart: split it by vendor and store the order."""
        if self._closed:
            return self._closed_result()
        try:
            order = self._checkout.build(customer, address, cart_items, payment_method)
            self._ledger.add(order, on_commit=self._audit_hook(
                EventKind.ORDER_CREATED, customer.email or customer.name,
                lambda o: {
                    "order_id": o.order_id,
                    "vendor_ids": o.vendor_ids,
                    "total_amount": str(o.total_amount),
                    "payment_method": o.payment_method,
                },
            ))
        except MarketplaceError as e:
            return _failure(e)
        return self._committed(order_view(order))

    def update_order_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        actor_id: str = "system",
    ) -> ServiceResult:
        """Plain status write (admin, vendor or courier side).

        SHIPPED is rejected here; use claim_for_delivery().
        """
        if self._closed:
            return self._closed_result()
        try:
            order = self._ledger.update_status(
                order_id, new_status,
                on_commit=self._audit_hook(
                    EventKind.ORDER_TRANSITION, actor_id,
                    lambda o: {
                        "order_id": o.order_id,
                        "from": _previous_status(o),
                        "to": o.status.value,
                    },
                ),
            )
        except MarketplaceError as e:
            return _failure(e)
        return self._committed({"order_id": order_id, "status": order.status.value})

    def claim_for_delivery(self, order_id: str, courier_id: str) -> ServiceResult:
        """A courier claims a ready order. Exactly one concurrent claim wins."""
        if self._closed:
            return self._closed_result()
        try:
            order = self._ledger.claim(
                order_id, courier_id,
                on_commit=self._audit_hook(
                    EventKind.COURIER_ASSIGNED, courier_id,
                    lambda o: {
                        "order_id": o.order_id,
                        "courier_id": o.assigned_courier,
                        "to": o.status.value,
                    },
                ),
            )
        except MarketplaceError as e:
            return _failure(e)
        return self._committed({
            "order_id": order_id,
            "status": order.status.value,
            "assigned_courier": order.assigned_courier,
        })

    def complete_delivery(self, order_id: str, courier_id: str) -> ServiceResult:
        """The assigned courier marks the order delivered."""
        if self._closed:
            return self._closed_result()
        try:
            order = self._ledger.complete_delivery(
                order_id, courier_id,
                on_commit=self._audit_hook(
                    EventKind.ORDER_TRANSITION, courier_id,
                    lambda o: {
                        "order_id": o.order_id,
                        "from": _previous_status(o),
                        "to": o.status.value,
                    },
                ),
            )
        except MarketplaceError as e:
            return _failure(e)
        return self._committed({
            "order_id": order_id,
            "status": order.status.value,
            "payment_status": order.payment_status.value,
        })

    def get_order(self, order_id: str) -> Optional[Order]:
        """Retrieve an order by ID."""
        return self._ledger.find(order_id)

    def get_vendor_orders(self, vendor_id: int) -> list[Order]:
        """Orders containing a sub-order for the vendor, newest first."""
        return self._ledger.orders_for_vendor(vendor_id)

    def get_available_delivery_orders(self) -> list[Order]:
        """Orders waiting for a courier."""
        return self._ledger.available_for_pickup()

    def get_courier_orders(self, courier_id: str) -> list[Order]:
        return self._ledger.orders_for_courier(courier_id)

    # ------------------------------------------------------------------
    # Commissions and earnings
    # ------------------------------------------------------------------

    def get_vendor_commissions(
        self,
        vendor_id: int,
        status: Optional[CommissionStatus] = None,
    ) -> list[Commission]:
        """Commissions derived from the vendor's orders. Empty for unknown vendors."""
        if self._registry.find(vendor_id) is None:
            return []
        return self._earnings.vendor_commissions(vendor_id, status)

    def get_vendor_earnings_summary(self, vendor_id: int) -> Optional[EarningsSummary]:
        """Paid vs pending earnings, recomputed now. None for unknown vendors."""
        if self._registry.find(vendor_id) is None:
            return None
        return self._earnings.vendor_summary(vendor_id)

    def get_wallet_history(self, vendor_id: int) -> list[WalletEntry]:
        if self._registry.find(vendor_id) is None:
            return []
        return self._earnings.wallet_history(
            vendor_id, self._settlements.for_vendor(vendor_id),
        )

    # ------------------------------------------------------------------
    # Settlements
    # ------------------------------------------------------------------

    def record_settlement(
        self,
        vendor_id: int,
        amount: object,
        payment_method: str,
        transaction_id: Optional[str] = None,
        actor_id: str = "admin",
    ) -> ServiceResult:
        """Record a payout to a vendor.

        Does not touch the vendor's pending earnings. When the policy
        enables the pending cap, a payout above the vendor's pending
        earnings fails. The cap bounds each payout on its own, and the
        read of pending earnings and the append happen under one
        per-vendor lock.
        """
        if self._closed:
            return self._closed_result()
        try:
            self._registry.get(vendor_id)
            with self._settlement_lock(vendor_id):
                cap: Optional[Decimal] = None
                if self._resolver.settlement_params()["enforce_pending_cap"]:
                    cap = self._earnings.vendor_summary(vendor_id).pending_earnings
                settlement = self._settlements.record(
                    vendor_id, amount, payment_method,
                    transaction_id=transaction_id, pending_cap=cap,
                    on_commit=self._audit_hook(
                        EventKind.SETTLEMENT_RECORDED, actor_id,
                        lambda s: {
                            "settlement_id": s.settlement_id,
                            "vendor_id": s.vendor_id,
                            "amount": str(s.amount),
                            "payment_method": s.payment_method,
                            "transaction_id": s.transaction_id,
                        },
                    ),
                )
        except MarketplaceError as e:
            return _failure(e)
        return self._committed({
            "settlement_id": settlement.settlement_id,
            "vendor_id": vendor_id,
            "amount": settlement.amount,
            "payment_method": settlement.payment_method,
            "transaction_id": settlement.transaction_id,
        })

    def list_settlements(self, vendor_id: int) -> list[Settlement]:
        return self._settlements.for_vendor(vendor_id)

    # ------------------------------------------------------------------
    # Status and queries
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        return {
            "version": __version__,
            "vendors": {
                "total": self._registry.count,
                "approved": self._registry.approved_count,
            },
            "orders": {
                "total": self._ledger.count,
                "by_status": self._ledger.count_by_status(),
                "awaiting_pickup": len(self._ledger.available_for_pickup()),
            },
            "settlements": {
                "total": self._settlements.count,
                "amount": str(sum(
                    (s.amount for s in self._settlements.all()), Decimal("0"),
                )),
            },
            "audit_events": self._event_log.count if self._event_log is not None else 0,
            "audit_head": self._event_log.head_hash if self._event_log is not None else None,
            "persistence_degraded": self._persistence_degraded,
            "closed": self._closed,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _closed_result(self) -> ServiceResult:
        return ServiceResult(
            success=False, errors=["Service is closed"], data={"error": "closed"},
        )

    def _committed(self, data: dict[str, Any]) -> ServiceResult:
        """Persist after the audit record and build the success result."""
        warning = self._safe_persist_post_audit()
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        with self._event_lock:
            self._event_counter += 1
            return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
    ) -> Optional[str]:
        """Append an audit event. Returns error string or None.

        Without an event log there is nothing to write and the call
        always succeeds.
        """
        if self._event_log is None:
            return None
        try:
            self._event_log.record(
                event_id=self._next_event_id(),
                event_kind=kind,
                actor_id=actor_id or "system",
                payload=payload,
                timestamp_utc=datetime.now(timezone.utc),
            )
        except (ValueError, OSError) as e:
            return f"Event log failure: {e}"
        return None

    def _audit_hook(
        self,
        kind: EventKind,
        actor_id: str,
        payload: Callable[[T], dict[str, Any]],
    ) -> Callable[[T], None]:
        """Commit hook for the registry, ledger and settlement book.

        Raising keeps the pending change from being stored.
        """
        def _hook(draft: T) -> None:
            err = self._record_event(kind, actor_id, payload(draft))
            if err:
                raise AuditTrailError(err)
        return _hook

    def _settlement_lock(self, vendor_id: int) -> threading.Lock:
        with self._settlement_locks_guard:
            return self._settlement_locks.setdefault(vendor_id, threading.Lock())

    def _persist_state(self) -> None:
        """Persist current state to the state store (if wired).

        Orders are copied under their own locks, so a transition still
        waiting on its audit record never reaches the snapshot.

        NOTE: This method can raise OSError.
        """
        if self._state_store is None:
            return
        with self._persist_lock:
            self._state_store.save(
                self._registry.all_vendors(),
                self._ledger.snapshot(),
                self._settlements.all(),
            )

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after audit events have been committed.

        MUST NOT rollback in-memory state: the audit trail is already
        durable. If persist fails, in-memory state remains correct
        (aligned with audit events), but the snapshot is stale.

        Sets _persistence_degraded flag for operator awareness and
        returns a warning string (not a hard error).
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            return f"Persistence degraded: {e} — state committed in audit trail but snapshot is stale"
