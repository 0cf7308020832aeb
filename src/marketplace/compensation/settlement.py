"""Settlement book — append-only history of vendor payouts.

A settlement records money an admin paid out to a vendor. It is kept
separately from earnings accounting:
- It is not linked to specific commissions.
- It does not reduce the vendor's pending earnings.
- Over- and under-settlement are allowed unless the optional pending cap
  is switched on in policy.

Records are never modified or deleted.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional
from uuid import uuid4

from marketplace.errors import ValidationError
from marketplace.models.compensation import Settlement


class SettlementBook:
    """Append-only settlement records with a vendor index.

    Usage:
        book = SettlementBook()
        settlement = book.record(1, Decimal("1000"), "bank_transfer")
        book.for_vendor(1)
    """

    def __init__(self) -> None:
        self._settlements: list[Settlement] = []
        self._by_vendor: dict[int, list[Settlement]] = {}
        self._ids: set[str] = set()
        self._lock = threading.Lock()

    def record(
        self,
        vendor_id: int,
        amount: object,
        payment_method: str,
        transaction_id: Optional[str] = None,
        settlement_id: Optional[str] = None,
        now: Optional[datetime] = None,
        pending_cap: Optional[Decimal] = None,
        on_commit: Optional[Callable[[Settlement], None]] = None,
    ) -> Settlement:
        """Append a payout record.

        Args:
            vendor_id: The vendor being paid. Existence is checked by the caller.
            amount: Positive payout amount.
            payment_method: e.g. "bank_transfer", "upi".
            transaction_id: External reference, if any.
            settlement_id: Optional explicit ID (auto-generated if absent).
            now: Current time (defaults to UTC now).
            pending_cap: When given, amounts above it are rejected. The cap
                bounds each payout on its own; it is not a running total.
            on_commit: Called with the new record before it is stored.
                If it raises, nothing is stored.

        Raises ValidationError for a non-positive amount, a blank payment
        method, a duplicate id, or an amount over pending_cap.
        """
        try:
            value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except (InvalidOperation, ValueError) as e:
            raise ValidationError(f"Invalid settlement amount: {amount!r}") from e
        if not value.is_finite() or value <= Decimal("0"):
            raise ValidationError("Settlement amount must be positive")
        payment_method = (payment_method or "").strip()
        if not payment_method:
            raise ValidationError("Settlement payment method is required")
        if pending_cap is not None and value > pending_cap:
            raise ValidationError(
                f"Settlement amount {value} exceeds pending earnings {pending_cap}"
            )
        if now is None:
            now = datetime.now(timezone.utc)
        if settlement_id is None:
            settlement_id = f"SET-{uuid4().hex[:12].upper()}"

        settlement = Settlement(
            settlement_id=settlement_id,
            vendor_id=vendor_id,
            amount=value,
            payment_method=payment_method,
            created_utc=now,
            transaction_id=(transaction_id or None),
        )
        self.append(settlement, on_commit=on_commit)
        return settlement

    def append(
        self,
        settlement: Settlement,
        on_commit: Optional[Callable[[Settlement], None]] = None,
    ) -> None:
        """Append a record (also used when loading from storage).

        The record is stored only after on_commit returns.
        """
        with self._lock:
            if settlement.settlement_id in self._ids:
                raise ValidationError(
                    f"Settlement ID already exists: {settlement.settlement_id}"
                )
            if on_commit is not None:
                on_commit(settlement)
            self._settlements.append(settlement)
            self._by_vendor.setdefault(settlement.vendor_id, []).append(settlement)
            self._ids.add(settlement.settlement_id)

    def for_vendor(self, vendor_id: int) -> list[Settlement]:
        """A vendor's settlements, oldest first."""
        return list(self._by_vendor.get(vendor_id, []))

    def all(self) -> list[Settlement]:
        return list(self._settlements)

    def total_settled(self, vendor_id: int) -> Decimal:
        return sum((s.amount for s in self.for_vendor(vendor_id)), Decimal("0"))

    @property
    def count(self) -> int:
        return len(self._settlements)
