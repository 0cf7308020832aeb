"""Vendor registry — identity, approval status and commission rates.

The registry is the source of truth for commission rate lookups. It tracks:
- Approval status (pending / approved / suspended), changed by admins
  with no ordering restriction.
- Commission rate as a fraction in [0, 1].

Rate changes are not versioned. Commissions are derived at read time, so
a rate change applies retroactively to every order of that vendor,
delivered or not.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from marketplace.errors import InvalidRateError, ValidationError, VendorNotFoundError
from marketplace.models.vendor import Vendor, VendorStatus


VendorHook = Callable[[Vendor], None]


def normalize_rate(rate: object) -> Decimal:
    """Convert a rate to Decimal and check it lies in [0, 1].

    Floats go through str() so 0.1 becomes Decimal("0.1"), not its
    binary expansion.
    """
    if isinstance(rate, bool):
        raise InvalidRateError(rate)
    try:
        value = rate if isinstance(rate, Decimal) else Decimal(str(rate))
    except (InvalidOperation, ValueError) as e:
        raise InvalidRateError(rate) from e
    if not value.is_finite() or not (Decimal("0") <= value <= Decimal("1")):
        raise InvalidRateError(rate)
    return value


def _coerce_status(status: object) -> VendorStatus:
    try:
        return VendorStatus(status)
    except ValueError as e:
        raise ValidationError(f"Unknown vendor status: {status}") from e


class VendorRegistry:
    """Registry of all marketplace vendors.

    Usage:
        registry = VendorRegistry(default_rate=Decimal("0.10"))
        vendor = registry.register("John Smith", "Fashion Hub", "john@fh.com")
        registry.set_status(vendor.vendor_id, VendorStatus.APPROVED)
        registry.set_commission_rate(vendor.vendor_id, Decimal("0.12"))

    Writers take an optional ``on_commit`` callback. It sees the vendor as
    it will be after the write, while the stored vendor is unchanged; the
    write lands only if the callback returns.
    """

    def __init__(self, default_rate: Decimal = Decimal("0.10")) -> None:
        self._default_rate = normalize_rate(default_rate)
        self._vendors: dict[int, Vendor] = {}
        # Re-entrant: a commit hook may write to the registry on the same thread
        self._lock = threading.RLock()

    def register(
        self,
        name: str,
        store_name: str,
        email: str,
        commission_rate: object = None,
        status: VendorStatus = VendorStatus.PENDING,
        now: Optional[datetime] = None,
        on_commit: Optional[VendorHook] = None,
    ) -> Vendor:
        """Register a new vendor with the next sequential id.

        Raises ValidationError for a blank name or store name, and
        InvalidRateError for a rate outside [0, 1].
        """
        if not name.strip() or not store_name.strip():
            raise ValidationError("Vendor name and store name are required")
        rate = (
            self._default_rate if commission_rate is None
            else normalize_rate(commission_rate)
        )
        with self._lock:
            vendor = Vendor(
                vendor_id=max(self._vendors, default=0) + 1,
                name=name.strip(),
                store_name=store_name.strip(),
                email=email.strip(),
                commission_rate=rate,
                status=_coerce_status(status),
                joined_utc=now or datetime.now(timezone.utc),
            )
            if on_commit is not None:
                on_commit(vendor)
            self._vendors[vendor.vendor_id] = vendor
        return vendor

    def restore(self, vendor: Vendor) -> None:
        """Re-insert a vendor loaded from storage, keeping its id."""
        with self._lock:
            self._vendors[vendor.vendor_id] = vendor

    def get(self, vendor_id: int) -> Vendor:
        vendor = self._vendors.get(vendor_id)
        if vendor is None:
            raise VendorNotFoundError(vendor_id)
        return vendor

    def find(self, vendor_id: int) -> Optional[Vendor]:
        return self._vendors.get(vendor_id)

    def set_commission_rate(
        self, vendor_id: int, rate: object, on_commit: Optional[VendorHook] = None,
    ) -> Vendor:
        """Change a vendor's commission rate. Applies to all reads from now on."""
        value = normalize_rate(rate)
        with self._lock:
            vendor = self.get(vendor_id)
            if on_commit is not None:
                on_commit(replace(vendor, commission_rate=value))
            vendor.commission_rate = value
        return vendor

    def set_status(
        self, vendor_id: int, status: VendorStatus, on_commit: Optional[VendorHook] = None,
    ) -> Vendor:
        """Set a vendor's status. Every status is reachable from every other."""
        value = _coerce_status(status)
        with self._lock:
            vendor = self.get(vendor_id)
            if on_commit is not None:
                on_commit(replace(vendor, status=value))
            vendor.status = value
        return vendor

    def is_approved(self, vendor_id: int) -> bool:
        vendor = self._vendors.get(vendor_id)
        return vendor is not None and vendor.is_approved

    def all_vendors(self, status: Optional[VendorStatus] = None) -> list[Vendor]:
        """Return vendors ordered by id, optionally filtered by status."""
        vendors = sorted(self._vendors.values(), key=lambda v: v.vendor_id)
        if status is None:
            return vendors
        return [v for v in vendors if v.status == status]

    @property
    def count(self) -> int:
        return len(self._vendors)

    @property
    def approved_count(self) -> int:
        return sum(1 for v in self._vendors.values() if v.is_approved)
