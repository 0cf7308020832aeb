"""Order state machine — enforces valid lifecycle transitions.

Order lifecycle:
    PENDING → PROCESSING → READY_FOR_PICKUP → SHIPPED → DELIVERED
    Any non-terminal state → CANCELLED

State semantics:
- PENDING: placed at checkout, not yet accepted.
- PROCESSING: accepted by admin or vendor, being packed.
- READY_FOR_PICKUP: vendor marked ready; visible in the courier queue.
- SHIPPED: claimed by a courier. Only reachable through a courier claim,
  which writes status and courier together.
- DELIVERED: terminal — commissions for every vendor read as paid.
- CANCELLED: terminal — manual override, no compensating entries.

Fail-closed: any transition not listed is rejected. There are no
implicit transitions.
"""

from __future__ import annotations

from marketplace.models.order import Order, OrderStatus


# Valid transitions: {from_state: {allowed_to_states}}
_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {
        OrderStatus.READY_FOR_PICKUP,
        OrderStatus.CANCELLED,
    },
    OrderStatus.READY_FOR_PICKUP: {
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    # Terminal states: no outgoing transitions
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

# Transitions that must go through a dedicated ledger operation
_CLAIM_ONLY: set[OrderStatus] = {OrderStatus.SHIPPED}


class OrderStateMachine:
    """Validates order status transitions.

    Pure computation: validates transitions only. Locking, audit events
    and persistence are handled by the ledger and the service layer.
    """

    @staticmethod
    def validate_transition(
        order: Order,
        target: OrderStatus,
        via_claim: bool = False,
    ) -> list[str]:
        """Check if a transition is valid. Returns errors (empty = OK).

        SHIPPED is only valid when via_claim is set: a plain status write
        cannot move an order into SHIPPED without a courier.
        """
        current = order.status
        allowed = _TRANSITIONS.get(current, set())

        if target not in allowed:
            allowed_str = ", ".join(s.value for s in sorted(allowed, key=lambda x: x.value))
            return [
                f"Invalid order transition: {current.value} → {target.value}. "
                f"Allowed from {current.value}: [{allowed_str}]"
            ]
        if target in _CLAIM_ONLY and not via_claim:
            return [
                f"Order {order.order_id} can only move to {target.value} "
                f"through a courier claim"
            ]
        return []

    @staticmethod
    def is_terminal(status: OrderStatus) -> bool:
        """Check if a status is terminal (no further transitions)."""
        return status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)

    @staticmethod
    def valid_transitions(status: OrderStatus) -> set[OrderStatus]:
        """Return the set of valid target statuses from the given status."""
        return set(_TRANSITIONS.get(status, set()))
