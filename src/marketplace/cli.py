"""Marketplace CLI — command-line interface for the order and earnings ledger.

Usage:
    python -m marketplace.cli status
    python -m marketplace.cli register-vendor --name "John Smith" --store "Fashion Hub" --email j@fh.com
    python -m marketplace.cli set-vendor-status --vendor-id 1 --status approved
    python -m marketplace.cli create-order --cart cart.json
    python -m marketplace.cli update-status --order-id ORD-1 --status processing
    python -m marketplace.cli claim --order-id ORD-1 --courier courier-7
    python -m marketplace.cli deliver --order-id ORD-1 --courier courier-7
    python -m marketplace.cli earnings --vendor-id 1
    python -m marketplace.cli settle --vendor-id 1 --amount 1000 --method bank_transfer
    python -m marketplace.cli check-invariants

Defaults for --config and --data can be set with MARKETPLACE_CONFIG_DIR and
MARKETPLACE_DATA_DIR, in the environment or in a .env file at the repo root.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from marketplace.models.compensation import CommissionStatus
from marketplace.models.order import AddressSnapshot, CartItem, CustomerSnapshot, OrderStatus
from marketplace.models.vendor import VendorStatus
from marketplace.persistence.event_log import EventLog
from marketplace.persistence.state_store import StateStore
from marketplace.policy.resolver import PolicyResolver
from marketplace.service import MarketplaceService, ServiceResult, order_view


ROOT = Path(__file__).resolve().parents[2]

load_dotenv(ROOT / ".env")


def _env_path(name: str, default: Path) -> Path:
    value = os.environ.get(name)
    if not value:
        return default
    path = Path(value)
    return path if path.is_absolute() else ROOT / path


def _make_service(config_dir: Path, data_dir: Path) -> MarketplaceService:
    """Create a MarketplaceService with durable persistence."""
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(config_dir)
    event_log = EventLog(storage_path=data_dir / "events.jsonl")
    state_store = StateStore(storage_path=data_dir / "state.json")
    return MarketplaceService(
        resolver,
        event_log=event_log,
        state_store=state_store,
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _report(result: ServiceResult, message: str) -> int:
    if result.success:
        print(message)
        if "warning" in result.data:
            print(f"Warning: {result.data['warning']}", file=sys.stderr)
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def _load_cart(path: Path) -> tuple[CustomerSnapshot, AddressSnapshot, list[CartItem], str]:
    """Read a checkout request from a JSON file.

    Expected shape:
        {"customer": {...}, "address": {...}, "payment_method": "cod",
         "items": [{"product_id": "P1", "vendor_id": 1, "name": "Shirt",
                    "unit_price": "499.00", "quantity": 2}]}
    """
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    customer = CustomerSnapshot(**data["customer"])
    address = AddressSnapshot(**data["address"])
    items = [
        CartItem(
            product_id=str(item["product_id"]),
            vendor_id=int(item["vendor_id"]),
            name=item["name"],
            unit_price=item["unit_price"],
            quantity=item["quantity"],
            variant=item.get("variant"),
        )
        for item in data["items"]
    ]
    return customer, address, items, data.get("payment_method", "")


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    _print_json(service.status())
    return 0


def cmd_register_vendor(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.register_vendor(
        name=args.name,
        store_name=args.store,
        email=args.email,
        commission_rate=args.rate,
        status=VendorStatus(args.status),
    )
    return _report(
        result,
        f"Registered vendor: {result.data.get('vendor_id')} "
        f"(rate: {result.data.get('commission_rate')})",
    )


def cmd_set_vendor_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.set_vendor_status(args.vendor_id, VendorStatus(args.status))
    return _report(result, f"Vendor {args.vendor_id} is now {args.status}")


def cmd_set_commission_rate(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.set_commission_rate(args.vendor_id, args.rate)
    return _report(
        result, f"Vendor {args.vendor_id} commission rate: {result.data.get('commission_rate')}",
    )


def cmd_create_order(args: argparse.Namespace) -> int:
    try:
        customer, address, items, payment_method = _load_cart(args.cart)
    except (OSError, KeyError, TypeError, ValueError) as e:
        print(f"Failed: cannot read cart {args.cart}: {e}", file=sys.stderr)
        return 1
    service = _make_service(args.config, args.data)
    result = service.create_order(customer, address, items, payment_method)
    if result.success:
        _print_json(result.data)
        return 0
    print(f"Failed: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_update_status(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.update_order_status(args.order_id, OrderStatus(args.status))
    return _report(result, f"Order {args.order_id} is now {args.status}")


def cmd_claim(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.claim_for_delivery(args.order_id, args.courier)
    return _report(result, f"Order {args.order_id} claimed by {args.courier}")


def cmd_deliver(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.complete_delivery(args.order_id, args.courier)
    return _report(result, f"Order {args.order_id} delivered")


def cmd_vendor_orders(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    _print_json([order_view(o) for o in service.get_vendor_orders(args.vendor_id)])
    return 0


def cmd_earnings(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    summary = service.get_vendor_earnings_summary(args.vendor_id)
    if summary is None:
        print(f"Failed: Vendor not found: {args.vendor_id}", file=sys.stderr)
        return 1
    data: dict[str, Any] = {
        "vendor_id": summary.vendor_id,
        "total_earnings": summary.total_earnings,
        "pending_earnings": summary.pending_earnings,
        "total_commission": summary.total_commission,
        "commission_count": summary.commission_count,
    }
    if args.commissions:
        status = CommissionStatus(args.status) if args.status else None
        data["commissions"] = [
            {
                "order_id": c.order_id,
                "subtotal": c.subtotal,
                "rate": c.rate,
                "commission_amount": c.commission_amount,
                "vendor_earnings": c.vendor_earnings,
                "status": c.status.value,
            }
            for c in service.get_vendor_commissions(args.vendor_id, status)
        ]
    _print_json(data)
    return 0


def cmd_settle(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    result = service.record_settlement(
        args.vendor_id, args.amount, args.method, transaction_id=args.transaction_id,
    )
    return _report(
        result,
        f"Recorded settlement {result.data.get('settlement_id')} "
        f"of {result.data.get('amount')} to vendor {args.vendor_id}",
    )


def cmd_settlements(args: argparse.Namespace) -> int:
    service = _make_service(args.config, args.data)
    if args.wallet:
        _print_json([
            {
                "entry_id": e.entry_id,
                "kind": e.kind.value,
                "amount": e.amount,
                "description": e.description,
                "status": e.status,
                "occurred_utc": e.occurred_utc.isoformat(),
            }
            for e in service.get_wallet_history(args.vendor_id)
        ])
        return 0
    _print_json([
        {
            "settlement_id": s.settlement_id,
            "amount": s.amount,
            "payment_method": s.payment_method,
            "transaction_id": s.transaction_id,
            "created_utc": s.created_utc.isoformat(),
        }
        for s in service.list_settlements(args.vendor_id)
    ])
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Run marketplace policy invariant checks."""
    # Import and run the existing check_invariants tool
    tools_dir = ROOT / "tools"
    sys.path.insert(0, str(tools_dir))
    from check_invariants import check
    return check(args.config)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="marketplace",
        description="Multi-vendor marketplace — order and earnings ledger CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=_env_path("MARKETPLACE_CONFIG_DIR", ROOT / "config"),
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=_env_path("MARKETPLACE_DATA_DIR", ROOT / "data"),
        help="Path to data directory for events and state (default: data/)",
    )
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show system status")

    # register-vendor
    p_reg = sub.add_parser("register-vendor", help="Register a vendor")
    p_reg.add_argument("--name", required=True, help="Vendor contact name")
    p_reg.add_argument("--store", required=True, help="Store name")
    p_reg.add_argument("--email", required=True, help="Contact email")
    p_reg.add_argument("--rate", help="Commission rate in [0, 1] (default: policy default)")
    p_reg.add_argument(
        "--status", default=VendorStatus.PENDING.value,
        choices=[s.value for s in VendorStatus],
        help="Initial status (default: pending)",
    )

    # set-vendor-status
    p_vs = sub.add_parser("set-vendor-status", help="Approve or suspend a vendor")
    p_vs.add_argument("--vendor-id", type=int, required=True)
    p_vs.add_argument("--status", required=True, choices=[s.value for s in VendorStatus])

    # set-commission-rate
    p_rate = sub.add_parser("set-commission-rate", help="Change a vendor's commission rate")
    p_rate.add_argument("--vendor-id", type=int, required=True)
    p_rate.add_argument("--rate", required=True, help="Commission rate in [0, 1]")

    # create-order
    p_order = sub.add_parser("create-order", help="Check out a cart from a JSON file")
    p_order.add_argument("--cart", type=Path, required=True, help="Cart JSON file")

    # update-status
    p_up = sub.add_parser("update-status", help="Move an order to a new status")
    p_up.add_argument("--order-id", required=True)
    p_up.add_argument("--status", required=True, choices=[s.value for s in OrderStatus])

    # claim
    p_claim = sub.add_parser("claim", help="Claim a ready order for delivery")
    p_claim.add_argument("--order-id", required=True)
    p_claim.add_argument("--courier", required=True, help="Courier ID")

    # deliver
    p_del = sub.add_parser("deliver", help="Mark a claimed order delivered")
    p_del.add_argument("--order-id", required=True)
    p_del.add_argument("--courier", required=True, help="Courier ID")

    # vendor-orders
    p_vo = sub.add_parser("vendor-orders", help="List a vendor's orders, newest first")
    p_vo.add_argument("--vendor-id", type=int, required=True)

    # earnings
    p_earn = sub.add_parser("earnings", help="Show a vendor's earnings summary")
    p_earn.add_argument("--vendor-id", type=int, required=True)
    p_earn.add_argument("--commissions", action="store_true", help="Include commission list")
    p_earn.add_argument(
        "--status", choices=[s.value for s in CommissionStatus],
        help="Filter the commission list by status",
    )

    # settle
    p_set = sub.add_parser("settle", help="Record a payout to a vendor")
    p_set.add_argument("--vendor-id", type=int, required=True)
    p_set.add_argument("--amount", required=True, help="Payout amount (Decimal)")
    p_set.add_argument("--method", required=True, help="Payment method")
    p_set.add_argument("--transaction-id", help="External transaction reference")

    # settlements
    p_sl = sub.add_parser("settlements", help="List a vendor's settlements")
    p_sl.add_argument("--vendor-id", type=int, required=True)
    p_sl.add_argument("--wallet", action="store_true", help="Show merged wallet history")

    # check-invariants
    sub.add_parser("check-invariants", help="Run policy invariant checks")

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "register-vendor": cmd_register_vendor,
        "set-vendor-status": cmd_set_vendor_status,
        "set-commission-rate": cmd_set_commission_rate,
        "create-order": cmd_create_order,
        "update-status": cmd_update_status,
        "claim": cmd_claim,
        "deliver": cmd_deliver,
        "vendor-orders": cmd_vendor_orders,
        "earnings": cmd_earnings,
        "settle": cmd_settle,
        "settlements": cmd_settlements,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except (OSError, ValueError) as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
