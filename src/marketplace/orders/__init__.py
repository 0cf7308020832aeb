"""Order subsystem — checkout split, status state machine, order ledger."""

from marketplace.orders.checkout import CheckoutBuilder
from marketplace.orders.ledger import OrderLedger
from marketplace.orders.state_machine import OrderStateMachine

__all__ = [
    "CheckoutBuilder",
    "OrderLedger",
    "OrderStateMachine",
]
