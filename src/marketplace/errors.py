"""Exceptions raised by the ledger components.

Every error is local and recoverable: components raise, the service layer
converts the error into a failed ServiceResult carrying ``kind``. All of
them subclass ValueError so callers that only care about "bad input"
can catch one type.
"""

from __future__ import annotations


class MarketplaceError(ValueError):
    """Base exception for all ledger errors."""

    kind = "marketplace_error"


class NotFoundError(MarketplaceError):
    """Raised when an order or vendor id is unknown."""

    kind = "not_found"


class OrderNotFoundError(NotFoundError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class VendorNotFoundError(NotFoundError):
    def __init__(self, vendor_id: int):
        self.vendor_id = vendor_id
        super().__init__(f"Vendor not found: {vendor_id}")


class InvalidTransitionError(MarketplaceError):
    """Raised when an order status change is not permitted."""

    kind = "invalid_transition"

    def __init__(self, order_id: str, current: str, target: str, reason: str | None = None):
        self.order_id = order_id
        self.current = current
        self.target = target
        msg = f"Invalid order transition for {order_id}: {current} → {target}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class AlreadyAssignedError(MarketplaceError):
    """Raised when a courier loses the race to claim an order."""

    kind = "already_assigned"

    def __init__(self, order_id: str, courier_id: str):
        self.order_id = order_id
        self.courier_id = courier_id
        super().__init__(
            f"Order {order_id} is already assigned to courier {courier_id}"
        )


class InvalidRateError(MarketplaceError):
    """Raised when a commission rate falls outside [0, 1]."""

    kind = "invalid_rate"

    def __init__(self, rate: object):
        self.rate = rate
        super().__init__(f"Commission rate must be in [0, 1], got {rate}")


class ValidationError(MarketplaceError):
    """Raised for malformed input: empty carts, bad quantities, bad amounts."""

    kind = "validation_error"


class AuditTrailError(MarketplaceError):
    """Raised when an audit event cannot be recorded; the write is undone."""

    kind = "audit_failure"
