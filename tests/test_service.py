"""Tests for the service facade — end-to-end ledger flows through one interface."""

import shutil
import threading

import pytest
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from marketplace.models.compensation import CommissionStatus, WalletEntryKind
from marketplace.models.order import (
    AddressSnapshot,
    CartItem,
    CustomerSnapshot,
    OrderStatus,
    PaymentStatus,
)
from marketplace.models.vendor import VendorStatus
from marketplace.persistence.event_log import EventKind, EventLog, EventRecord
from marketplace.persistence.state_store import StateStore
from marketplace.policy.resolver import PolicyResolver
from marketplace.service import MarketplaceService


CUSTOMER = CustomerSnapshot(name="Asha", email="asha@example.com")
ADDRESS = AddressSnapshot(
    recipient="Asha", line1="12 MG Road", city="Pune", state="MH", postal_code="411001",
)


def _make_service(
    data_dir: Path | None = None,
    resolver: PolicyResolver | None = None,
) -> MarketplaceService:
    resolver = resolver or PolicyResolver.defaults()
    if data_dir is None:
        return MarketplaceService(resolver, event_log=EventLog())
    data_dir.mkdir(parents=True, exist_ok=True)
    return MarketplaceService(
        resolver,
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        state_store=StateStore(storage_path=data_dir / "state.json"),
    )


def _approved_vendor(service: MarketplaceService, store: str, rate: str) -> int:
    result = service.register_vendor(store, store, f"{store}@example.com", commission_rate=rate)
    assert result.success
    vendor_id = result.data["vendor_id"]
    assert service.set_vendor_status(vendor_id, VendorStatus.APPROVED).success
    return vendor_id


def _cart(lines: dict[int, str]) -> list[CartItem]:
    return [
        CartItem(product_id=f"P{v}", vendor_id=v, name="Item",
                 unit_price=Decimal(price), quantity=1)
        for v, price in lines.items()
    ]


def _place(service: MarketplaceService, lines: dict[int, str], method: str = "card") -> str:
    result = service.create_order(CUSTOMER, ADDRESS, _cart(lines), method)
    assert result.success, result.errors
    return result.data["order_id"]


def _to_ready(service: MarketplaceService, order_id: str) -> None:
    assert service.update_order_status(order_id, OrderStatus.PROCESSING).success
    assert service.update_order_status(order_id, OrderStatus.READY_FOR_PICKUP).success


class _InterleavingLog(EventLog):
    """Event log that lets another write commit, then fails one kind of event."""

    def __init__(self, storage_path: Path, fail_kind: EventKind) -> None:
        super().__init__(storage_path=storage_path)
        self.fail_kind = fail_kind
        self.service: MarketplaceService | None = None

    def record(
        self,
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict,
        timestamp_utc: datetime | None = None,
    ) -> EventRecord:
        if event_kind == self.fail_kind and self.service is not None:
            service, self.service = self.service, None
            assert service.register_vendor("Other", "Other", "o@example.com").success
            raise OSError("disk full")
        return super().record(event_id, event_kind, actor_id, payload, timestamp_utc)


def _interleaving_service(
    data_dir: Path, fail_kind: EventKind,
) -> tuple[MarketplaceService, _InterleavingLog]:
    data_dir.mkdir(parents=True, exist_ok=True)
    log = _InterleavingLog(data_dir / "events.jsonl", fail_kind)
    service = MarketplaceService(
        PolicyResolver.defaults(),
        event_log=log,
        state_store=StateStore(storage_path=data_dir / "state.json"),
    )
    return service, log


class TestVendors:
    def test_register_defaults(self) -> None:
        service = _make_service()
        result = service.register_vendor("John Smith", "Fashion Hub", "j@fh.com")
        assert result.success
        assert result.data["status"] == "pending"
        assert result.data["commission_rate"] == Decimal("0.10")

    def test_invalid_rate(self) -> None:
        service = _make_service()
        vendor_id = _approved_vendor(service, "Fashion Hub", "0.10")
        result = service.set_commission_rate(vendor_id, "1.2")
        assert not result.success
        assert result.data["error"] == "invalid_rate"
        assert service.get_vendor(vendor_id).commission_rate == Decimal("0.10")

    def test_unknown_vendor_not_found(self) -> None:
        service = _make_service()
        result = service.set_vendor_status(42, VendorStatus.APPROVED)
        assert result.data["error"] == "not_found"
        assert service.get_vendor_earnings_summary(42) is None
        assert service.get_vendor_commissions(42) == []

    def test_vendor_events_recorded(self) -> None:
        log = EventLog()
        service = MarketplaceService(PolicyResolver.defaults(), event_log=log)
        _approved_vendor(service, "Fashion Hub", "0.10")
        kinds = [e.event_kind for e in log.events()]
        assert kinds == [EventKind.VENDOR_REGISTERED, EventKind.VENDOR_STATUS_CHANGED]
        assert [e.event_id for e in log.events()] == ["EVT-00000001", "EVT-00000002"]


class TestOrderLifecycle:
    def test_delivery_flips_every_vendor_to_paid(self) -> None:
        service = _make_service()
        fashion = _approved_vendor(service, "Fashion Hub", "0.10")
        tech = _approved_vendor(service, "Tech World", "0.12")
        order_id = _place(service, {fashion: "5000", tech: "7500"})

        assert service.get_vendor_earnings_summary(fashion).pending_earnings == Decimal("4500.00")
        assert service.get_vendor_earnings_summary(tech).pending_earnings == Decimal("6600.00")

        _to_ready(service, order_id)
        assert service.claim_for_delivery(order_id, "courier-1").success
        assert service.complete_delivery(order_id, "courier-1").success

        for vendor_id, earned in ((fashion, "4500.00"), (tech, "6600.00")):
            summary = service.get_vendor_earnings_summary(vendor_id)
            assert summary.total_earnings == Decimal(earned)
            assert summary.pending_earnings == Decimal("0")
            commissions = service.get_vendor_commissions(vendor_id)
            assert [c.status for c in commissions] == [CommissionStatus.PAID]

    def test_created_order_visible_to_each_vendor(self) -> None:
        service = _make_service()
        fashion = _approved_vendor(service, "Fashion Hub", "0.10")
        tech = _approved_vendor(service, "Tech World", "0.12")
        cart = [
            CartItem("SHIRT", fashion, "Shirt", Decimal("40.50"), 2, variant="M"),
            CartItem("MOUSE", tech, "Mouse", Decimal("200"), 1),
            CartItem("CAP", fashion, "Cap", Decimal("19"), 1),
        ]
        result = service.create_order(CUSTOMER, ADDRESS, cart, "card")
        assert result.success, result.errors
        order_id = result.data["order_id"]

        submitted = {
            fashion: [("SHIRT", Decimal("40.50"), 2), ("CAP", Decimal("19"), 1)],
            tech: [("MOUSE", Decimal("200"), 1)],
        }
        for vendor_id, lines in submitted.items():
            orders = service.get_vendor_orders(vendor_id)
            assert [o.order_id for o in orders] == [order_id]
            sub = orders[0].sub_order_for(vendor_id)
            assert [(i.product_id, i.unit_price, i.quantity) for i in sub.items] == lines
            assert sub.subtotal == sum(price * qty for _, price, qty in lines)
        assert orders[0].sub_order_for(fashion).items[0].variant == "M"

    def test_result_carries_totals(self) -> None:
        service = _make_service()
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        result = service.create_order(CUSTOMER, ADDRESS, _cart({vendor: "100"}), "cod")
        assert result.data["total_amount"] == Decimal("160")
        assert result.data["status"] == "pending"
        assert result.data["payment_status"] == "pending"

    def test_terminal_orders_reject_writes(self) -> None:
        service = _make_service()
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        order_id = _place(service, {vendor: "100"})
        assert service.update_order_status(order_id, OrderStatus.CANCELLED).success
        result = service.update_order_status(order_id, OrderStatus.PROCESSING)
        assert not result.success
        assert result.data["error"] == "invalid_transition"

    def test_shipped_only_via_claim(self) -> None:
        service = _make_service()
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        order_id = _place(service, {vendor: "100"})
        _to_ready(service, order_id)
        result = service.update_order_status(order_id, OrderStatus.SHIPPED)
        assert result.data["error"] == "invalid_transition"

    def test_second_claim_already_assigned(self) -> None:
        service = _make_service()
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        order_id = _place(service, {vendor: "100"})
        _to_ready(service, order_id)
        assert [o.order_id for o in service.get_available_delivery_orders()] == [order_id]
        assert service.claim_for_delivery(order_id, "courier-1").success
        result = service.claim_for_delivery(order_id, "courier-2")
        assert result.data["error"] == "already_assigned"
        assert service.get_available_delivery_orders() == []
        assert [o.order_id for o in service.get_courier_orders("courier-1")] == [order_id]

    def test_cod_paid_on_delivery(self) -> None:
        service = _make_service()
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        order_id = _place(service, {vendor: "100"}, method="cod")
        _to_ready(service, order_id)
        service.claim_for_delivery(order_id, "courier-1")
        result = service.complete_delivery(order_id, "courier-1")
        assert result.data["payment_status"] == "paid"
        assert service.get_order(order_id).payment_status == PaymentStatus.PAID

    def test_unknown_order(self) -> None:
        service = _make_service()
        result = service.update_order_status("ORD-NOPE", OrderStatus.PROCESSING)
        assert result.data["error"] == "not_found"
        assert service.get_order("ORD-NOPE") is None

    def test_empty_cart_validation_error(self) -> None:
        service = _make_service()
        result = service.create_order(CUSTOMER, ADDRESS, [], "card")
        assert result.data["error"] == "validation_error"

    def test_amount_beyond_currency_precision_is_validation_error(self) -> None:
        service = _make_service()
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        result = service.create_order(CUSTOMER, ADDRESS, _cart({vendor: "1e27"}), "card")
        assert result.data["error"] == "validation_error"
        assert service.get_vendor_orders(vendor) == []
        summary = service.get_vendor_earnings_summary(vendor)
        assert summary.pending_earnings == Decimal("0")
        assert service.get_vendor_commissions(vendor) == []

    def test_transition_events_name_both_states(self) -> None:
        log = EventLog()
        service = MarketplaceService(PolicyResolver.defaults(), event_log=log)
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        order_id = _place(service, {vendor: "100"})
        _to_ready(service, order_id)
        service.claim_for_delivery(order_id, "courier-1")
        service.complete_delivery(order_id, "courier-1")
        transitions = [
            (e.payload["from"], e.payload["to"])
            for e in log.events(EventKind.ORDER_TRANSITION)
        ]
        assert transitions == [
            ("pending", "processing"),
            ("processing", "ready_for_pickup"),
            ("shipped", "delivered"),
        ]
        assert len(log.events(EventKind.COURIER_ASSIGNED)) == 1


class TestEarningsAndSettlements:
    def test_settlement_leaves_pending_unchanged(self) -> None:
        service = _make_service()
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        _place(service, {vendor: "5000"})
        before = service.get_vendor_earnings_summary(vendor)
        result = service.record_settlement(vendor, Decimal("1000"), "bank_transfer", "TXN-1")
        assert result.success
        after = service.get_vendor_earnings_summary(vendor)
        assert after == before
        assert [s.settlement_id for s in service.list_settlements(vendor)] == [
            result.data["settlement_id"],
        ]

    def test_rate_change_applies_retroactively(self) -> None:
        service = _make_service()
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        order_id = _place(service, {vendor: "1000"})
        _to_ready(service, order_id)
        service.claim_for_delivery(order_id, "courier-1")
        service.complete_delivery(order_id, "courier-1")
        assert service.set_commission_rate(vendor, "0.25").success
        assert service.get_vendor_earnings_summary(vendor).total_earnings == Decimal("750.00")

    def test_settlement_for_unknown_vendor(self) -> None:
        service = _make_service()
        result = service.record_settlement(9, Decimal("10"), "upi")
        assert result.data["error"] == "not_found"

    def test_pending_cap_from_policy(self) -> None:
        policy = PolicyResolver.defaults().as_dict()
        policy["settlement"]["enforce_pending_cap"] = True
        service = _make_service(resolver=PolicyResolver(policy))
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        _place(service, {vendor: "100"})
        assert not service.record_settlement(vendor, Decimal("90.01"), "upi").success
        assert service.record_settlement(vendor, Decimal("90"), "upi").success

    def test_concurrent_capped_settlements_each_checked_alone(self) -> None:
        policy = PolicyResolver.defaults().as_dict()
        policy["settlement"]["enforce_pending_cap"] = True
        log = EventLog()
        service = MarketplaceService(PolicyResolver(policy), event_log=log)
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        _place(service, {vendor: "100"})
        barrier = threading.Barrier(8)
        results: list = []

        def _settle() -> None:
            barrier.wait()
            results.append(service.record_settlement(vendor, Decimal("90"), "upi"))

        threads = [threading.Thread(target=_settle) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # The cap bounds each payout; payouts never reduce pending earnings
        assert all(r.success for r in results)
        stored = [s.settlement_id for s in service.list_settlements(vendor)]
        audited = [
            e.payload["settlement_id"] for e in log.events(EventKind.SETTLEMENT_RECORDED)
        ]
        assert len(stored) == 8
        assert audited == stored
        assert service.get_vendor_earnings_summary(vendor).pending_earnings == Decimal("90.00")

    def test_wallet_history(self) -> None:
        service = _make_service()
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        _place(service, {vendor: "100"})
        service.record_settlement(vendor, Decimal("50"), "upi")
        kinds = {e.kind for e in service.get_wallet_history(vendor)}
        assert kinds == {WalletEntryKind.EARNING, WalletEntryKind.SETTLEMENT}
        assert service.get_wallet_history(99) == []


class TestAuditAndPersistence:
    def test_audit_failure_rolls_back_transition(self, tmp_path: Path) -> None:
        service = _make_service(tmp_path / "data")
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        order_id = _place(service, {vendor: "100"})
        shutil.rmtree(tmp_path / "data")

        result = service.update_order_status(order_id, OrderStatus.PROCESSING)
        assert not result.success
        assert result.data["error"] == "audit_failure"
        assert service.get_order(order_id).status == OrderStatus.PENDING

    def test_audit_failure_rolls_back_settlement_and_order(self, tmp_path: Path) -> None:
        service = _make_service(tmp_path / "data")
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        shutil.rmtree(tmp_path / "data")

        assert not service.record_settlement(vendor, Decimal("10"), "upi").success
        assert service.list_settlements(vendor) == []
        assert not service.create_order(CUSTOMER, ADDRESS, _cart({vendor: "10"}), "card").success
        assert service.get_vendor_orders(vendor) == []
        assert not service.set_commission_rate(vendor, "0.3").success
        assert service.get_vendor(vendor).commission_rate == Decimal("0.10")

    def test_unaudited_transition_never_reaches_snapshot(self, tmp_path: Path) -> None:
        data_dir = tmp_path / "data"
        service, log = _interleaving_service(data_dir, EventKind.ORDER_TRANSITION)
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        order_id = _place(service, {vendor: "100"})
        log.service = service

        result = service.update_order_status(order_id, OrderStatus.PROCESSING)
        assert result.data["error"] == "audit_failure"
        assert service.get_order(order_id).status == OrderStatus.PENDING

        # The other write did persist, without the failed transition
        stored = StateStore(data_dir / "state.json").load()
        assert len(stored.vendors) == 2
        assert [(o.order_id, o.status) for o in stored.orders] == [
            (order_id, OrderStatus.PENDING),
        ]
        assert len(stored.orders[0].status_history) == 1

    def test_unaudited_claim_never_reaches_snapshot(self, tmp_path: Path) -> None:
        data_dir = tmp_path / "data"
        service, log = _interleaving_service(data_dir, EventKind.COURIER_ASSIGNED)
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        order_id = _place(service, {vendor: "100"})
        _to_ready(service, order_id)
        log.service = service

        assert service.claim_for_delivery(order_id, "courier-1").data["error"] == "audit_failure"
        service.close()

        reloaded = _make_service(data_dir)
        order = reloaded.get_order(order_id)
        assert order.status == OrderStatus.READY_FOR_PICKUP
        assert order.assigned_courier is None
        assert reloaded.claim_for_delivery(order_id, "courier-2").success

    def test_unaudited_rate_change_never_reaches_snapshot(self, tmp_path: Path) -> None:
        data_dir = tmp_path / "data"
        service, log = _interleaving_service(data_dir, EventKind.COMMISSION_RATE_CHANGED)
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        log.service = service

        assert service.set_commission_rate(vendor, "0.30").data["error"] == "audit_failure"
        stored = StateStore(data_dir / "state.json").load()
        assert [v.commission_rate for v in stored.vendors] == [Decimal("0.10"), Decimal("0.10")]

    def test_state_reloads(self, tmp_path: Path) -> None:
        data_dir = tmp_path / "data"
        service = _make_service(data_dir)
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        order_id = _place(service, {vendor: "5000"})
        _to_ready(service, order_id)
        service.claim_for_delivery(order_id, "courier-1")
        service.record_settlement(vendor, Decimal("100"), "upi")
        service.close()

        reloaded = _make_service(data_dir)
        order = reloaded.get_order(order_id)
        assert order.status == OrderStatus.SHIPPED
        assert order.assigned_courier == "courier-1"
        assert len(reloaded.list_settlements(vendor)) == 1
        assert reloaded.complete_delivery(order_id, "courier-1").success
        summary = reloaded.get_vendor_earnings_summary(vendor)
        assert summary.total_earnings == Decimal("4500.00")
        # Event ids continue from the persisted log
        assert reloaded.register_vendor("B", "B", "b@x.com").success

    def test_snapshot_failure_is_a_warning(self, tmp_path: Path) -> None:
        data_dir = tmp_path / "data"
        service = _make_service(data_dir)
        (data_dir / "state.json").mkdir()
        result = service.register_vendor("A", "Store A", "a@x.com")
        assert result.success
        assert "Persistence degraded" in result.data["warning"]
        assert service.status()["persistence_degraded"] is True

    def test_closed_service_rejects_writes(self) -> None:
        with _make_service() as service:
            vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        assert service.closed
        result = service.set_vendor_status(vendor, VendorStatus.SUSPENDED)
        assert not result.success
        assert result.data["error"] == "closed"

    def test_status_summary(self) -> None:
        service = _make_service()
        vendor = _approved_vendor(service, "Fashion Hub", "0.10")
        order_id = _place(service, {vendor: "100"})
        _to_ready(service, order_id)
        status = service.status()
        assert status["vendors"] == {"total": 1, "approved": 1}
        assert status["orders"]["awaiting_pickup"] == 1
        assert status["audit_head"].startswith("sha256:")
        assert status["orders"]["by_status"] == {"ready_for_pickup": 1}
