"""
Order status state machine.

PENDING -> CONFIRMED -> PREPARING -> READY -> (SERVING ->) DELIVERED -> COMPLETED,
CANCELLED reachable from every non-terminal state. COMPLETED and CANCELLED
are terminal.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY = "READY"
    SERVING = "SERVING"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


VALID_TRANSITIONS: Dict[OrderStatus, List[OrderStatus]] = {
    OrderStatus.PENDING: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
    OrderStatus.CONFIRMED: [OrderStatus.PREPARING, OrderStatus.CANCELLED],
    OrderStatus.PREPARING: [OrderStatus.READY, OrderStatus.CANCELLED],
    OrderStatus.READY: [OrderStatus.SERVING, OrderStatus.DELIVERED, OrderStatus.CANCELLED],
    OrderStatus.SERVING: [OrderStatus.DELIVERED, OrderStatus.CANCELLED],
    OrderStatus.DELIVERED: [OrderStatus.COMPLETED, OrderStatus.CANCELLED],
    OrderStatus.COMPLETED: [],
    OrderStatus.CANCELLED: [],
}

TERMINAL_STATUSES: Set[OrderStatus] = {OrderStatus.COMPLETED, OrderStatus.CANCELLED}

# Orders whose items may still be removed
DELETABLE_STATUSES: Set[OrderStatus] = {
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.SERVING,
    OrderStatus.DELIVERED,
}

# Orders a fulfillment department still has to work on
DEPARTMENT_PENDING_STATUSES: Set[OrderStatus] = {
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
}

# Lower rank = more urgent. Shared by the kitchen and the billing views.
STATUS_PRIORITY: Dict[OrderStatus, int] = {
    OrderStatus.PENDING: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.PREPARING: 2,
    OrderStatus.READY: 3,
    OrderStatus.SERVING: 4,
    OrderStatus.DELIVERED: 5,
    OrderStatus.COMPLETED: 6,
    OrderStatus.CANCELLED: 7,
}

# Timestamp column stamped when an order enters a status
STATUS_TIMESTAMPS: Dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PREPARING: "preparing_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.SERVING: "served_at",
    OrderStatus.DELIVERED: "served_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def is_terminal(status) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def can_transition(current, new) -> bool:
    return OrderStatus(new) in VALID_TRANSITIONS[OrderStatus(current)]


def allowed_transitions(current) -> List[OrderStatus]:
    return list(VALID_TRANSITIONS[OrderStatus(current)])


def apply_timestamp(order, new_status, now: Optional[datetime] = None) -> None:
    """Stamp the timestamp matching ``new_status`` unless it is already set"""
    attr = STATUS_TIMESTAMPS.get(OrderStatus(new_status))
    if attr and getattr(order, attr, None) is None:
        setattr(order, attr, now or datetime.utcnow())


def most_urgent_status(statuses: Iterable) -> Optional[OrderStatus]:
    """Min-reduce over STATUS_PRIORITY; None for an empty group"""
    ranked = [OrderStatus(s) for s in statuses]
    if not ranked:
        return None
    return min(ranked, key=STATUS_PRIORITY.__getitem__)
