"""Vendor model — identity, approval status and commission rate.

The commission rate is a live value. It is not versioned, so every
commission derived from a vendor's orders uses whatever rate is current
at read time.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional


class VendorStatus(str, enum.Enum):
    """Admin-controlled approval status.

    Any status is reachable from any other (admin override model).
    """
    PENDING = "pending"
    APPROVED = "approved"
    SUSPENDED = "suspended"


@dataclass
class Vendor:
    """A marketplace vendor.

    Mutable — admin actions change status and commission_rate in place.
    """
    vendor_id: int
    name: str
    store_name: str
    email: str
    commission_rate: Decimal
    status: VendorStatus = VendorStatus.PENDING
    joined_utc: Optional[datetime] = None

    @property
    def is_approved(self) -> bool:
        return self.status == VendorStatus.APPROVED
