"""Compensation subsystem — commission calculator, earnings aggregator, settlements.

Commissions and earnings summaries are derived on read from the order
ledger and vendor registry. Settlements are an independent append-only
record.
"""

from marketplace.compensation.earnings import EarningsAggregator
from marketplace.compensation.engine import CommissionCalculator
from marketplace.compensation.settlement import SettlementBook

__all__ = [
    "CommissionCalculator",
    "EarningsAggregator",
    "SettlementBook",
]
