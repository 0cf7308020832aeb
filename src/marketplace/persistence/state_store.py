"""State store — JSON snapshot of vendors, orders and settlements.

Layout of the snapshot file:

    {
      "version": 1,
      "vendors":     {"<vendor_id>": {...}},          # keyed by vendor id
      "orders":      {"<order_id>": {..., "sub_orders": [...]}},
      "settlements": [{...}, ...]                     # append order
    }

Decimals are written as strings and datetimes as ISO-8601 so a reload
reproduces amounts exactly. Writes go to a temporary file that replaces
the snapshot in one step, so a crash never leaves a half-written file.
Commissions and earnings are derived and never stored.
"""

from __future__ import annotations

import json
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional

from marketplace.models.compensation import Settlement, SettlementStatus
from marketplace.models.order import (
    AddressSnapshot,
    CustomerSnapshot,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    VendorSubOrder,
)
from marketplace.models.vendor import Vendor, VendorStatus


SCHEMA_VERSION = 1


def _dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class StoredState:
    vendors: list[Vendor] = field(default_factory=list)
    orders: list[Order] = field(default_factory=list)
    settlements: list[Settlement] = field(default_factory=list)


class StateStore:
    """File-backed snapshot store for the service layer."""

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = Path(storage_path)
        self._lock = threading.Lock()

    def save(
        self,
        vendors: Iterable[Vendor],
        orders: Iterable[Order],
        settlements: Iterable[Settlement],
    ) -> None:
        """Write a full snapshot. Raises OSError on I/O failure."""
        data = {
            "version": SCHEMA_VERSION,
            "vendors": {str(v.vendor_id): self._vendor_to_dict(v) for v in vendors},
            "orders": {o.order_id: self._order_to_dict(o) for o in orders},
            "settlements": [self._settlement_to_dict(s) for s in settlements],
        }
        with self._lock:
            self._storage_path.parent.mkdir(parents=True, exist_ok=True)
            # Unique temp name per write: several processes may share a data dir
            fd, temp_path = tempfile.mkstemp(
                dir=self._storage_path.parent,
                prefix=f".{self._storage_path.stem}_",
                suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, sort_keys=True, ensure_ascii=False)
                    f.write("\n")
                os.replace(temp_path, self._storage_path)
            except Exception:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise

    def load(self) -> StoredState:
        """Read the snapshot. A missing file is an empty state."""
        if not self._storage_path.exists():
            return StoredState()
        with self._storage_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
        version = data.get("version")
        if version != SCHEMA_VERSION:
            raise ValueError(
                f"Unsupported state schema version {version}; expected {SCHEMA_VERSION}"
            )
        orders = [self._order_from_dict(o) for o in data.get("orders", {}).values()]
        orders.sort(key=lambda o: o.created_utc)
        return StoredState(
            vendors=[self._vendor_from_dict(v) for v in data.get("vendors", {}).values()],
            orders=orders,
            settlements=[
                self._settlement_from_dict(s) for s in data.get("settlements", [])
            ],
        )

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    @staticmethod
    def _vendor_to_dict(v: Vendor) -> dict[str, Any]:
        return {
            "vendor_id": v.vendor_id,
            "name": v.name,
            "store_name": v.store_name,
            "email": v.email,
            "commission_rate": str(v.commission_rate),
            "status": v.status.value,
            "joined_utc": _dt(v.joined_utc),
        }

    @staticmethod
    def _vendor_from_dict(d: dict[str, Any]) -> Vendor:
        return Vendor(
            vendor_id=int(d["vendor_id"]),
            name=d["name"],
            store_name=d["store_name"],
            email=d["email"],
            commission_rate=Decimal(d["commission_rate"]),
            status=VendorStatus(d["status"]),
            joined_utc=_parse_dt(d.get("joined_utc")),
        )

    @staticmethod
    def _order_to_dict(o: Order) -> dict[str, Any]:
        return {
            "order_id": o.order_id,
            "created_utc": _dt(o.created_utc),
            "status": o.status.value,
            "payment_method": o.payment_method,
            "payment_status": o.payment_status.value,
            "customer": {
                "name": o.customer.name,
                "email": o.customer.email,
                "phone": o.customer.phone,
            },
            "shipping_address": {
                "recipient": o.shipping_address.recipient,
                "line1": o.shipping_address.line1,
                "city": o.shipping_address.city,
                "state": o.shipping_address.state,
                "postal_code": o.shipping_address.postal_code,
                "phone": o.shipping_address.phone,
                "locality": o.shipping_address.locality,
                "label": o.shipping_address.label,
            },
            "platform_fee": str(o.platform_fee),
            "shipping_fee": str(o.shipping_fee),
            "total_amount": str(o.total_amount),
            "assigned_courier": o.assigned_courier,
            "assigned_utc": _dt(o.assigned_utc),
            "delivered_utc": _dt(o.delivered_utc),
            "status_history": [[s, _dt(ts)] for s, ts in o.status_history],
            "sub_orders": [
                {
                    "vendor_id": s.vendor_id,
                    "subtotal": str(s.subtotal),
                    "shipping_share": str(s.shipping_share),
                    "items": [
                        {
                            "product_id": i.product_id,
                            "name": i.name,
                            "unit_price": str(i.unit_price),
                            "quantity": i.quantity,
                            "variant": i.variant,
                        }
                        for i in s.items
                    ],
                }
                for s in o.sub_orders
            ],
        }

    @staticmethod
    def _order_from_dict(d: dict[str, Any]) -> Order:
        sub_orders = tuple(
            VendorSubOrder(
                vendor_id=int(s["vendor_id"]),
                subtotal=Decimal(s["subtotal"]),
                shipping_share=Decimal(s.get("shipping_share", "0")),
                items=tuple(
                    OrderItem(
                        product_id=i["product_id"],
                        name=i["name"],
                        unit_price=Decimal(i["unit_price"]),
                        quantity=int(i["quantity"]),
                        variant=i.get("variant"),
                    )
                    for i in s["items"]
                ),
            )
            for s in d["sub_orders"]
        )
        return Order(
            order_id=d["order_id"],
            created_utc=_parse_dt(d["created_utc"]),
            customer=CustomerSnapshot(**d["customer"]),
            shipping_address=AddressSnapshot(**d["shipping_address"]),
            payment_method=d["payment_method"],
            sub_orders=sub_orders,
            platform_fee=Decimal(d["platform_fee"]),
            shipping_fee=Decimal(d["shipping_fee"]),
            total_amount=Decimal(d["total_amount"]),
            status=OrderStatus(d["status"]),
            payment_status=PaymentStatus(d["payment_status"]),
            assigned_courier=d.get("assigned_courier"),
            assigned_utc=_parse_dt(d.get("assigned_utc")),
            delivered_utc=_parse_dt(d.get("delivered_utc")),
            status_history=[
                (s, _parse_dt(ts)) for s, ts in d.get("status_history", [])
            ],
        )

    @staticmethod
    def _settlement_to_dict(s: Settlement) -> dict[str, Any]:
        return {
            "settlement_id": s.settlement_id,
            "vendor_id": s.vendor_id,
            "amount": str(s.amount),
            "payment_method": s.payment_method,
            "transaction_id": s.transaction_id,
            "created_utc": _dt(s.created_utc),
            "status": s.status.value,
        }

    @staticmethod
    def _settlement_from_dict(d: dict[str, Any]) -> Settlement:
        return Settlement(
            settlement_id=d["settlement_id"],
            vendor_id=int(d["vendor_id"]),
            amount=Decimal(d["amount"]),
            payment_method=d["payment_method"],
            created_utc=_parse_dt(d["created_utc"]),
            transaction_id=d.get("transaction_id"),
            status=SettlementStatus(d.get("status", SettlementStatus.COMPLETED.value)),
        )
