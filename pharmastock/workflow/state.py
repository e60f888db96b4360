from enum import Enum
from typing import Dict, Optional, Tuple

from pharmastock.errors import InvalidStateTransition
from pharmastock.models.purchase_order import OrderStatus


class OrderOperation(str, Enum):
    ADD_ITEM = "add_item"
    APPROVE = "approve"
    PROCESS = "process"
    CANCEL = "cancel"
    RECORD_PAYMENT = "record_payment"


# (current status, operation) -> resulting status. Anything absent is refused.
TRANSITIONS: Dict[Tuple[OrderStatus, OrderOperation], OrderStatus] = {
    (OrderStatus.PENDING, OrderOperation.ADD_ITEM): OrderStatus.PENDING,
    (OrderStatus.PENDING, OrderOperation.APPROVE): OrderStatus.APPROVED,
    (OrderStatus.PENDING, OrderOperation.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.PENDING, OrderOperation.RECORD_PAYMENT): OrderStatus.PENDING,
    (OrderStatus.APPROVED, OrderOperation.PROCESS): OrderStatus.PROCESSED,
    (OrderStatus.APPROVED, OrderOperation.CANCEL): OrderStatus.CANCELLED,
    (OrderStatus.APPROVED, OrderOperation.RECORD_PAYMENT): OrderStatus.APPROVED,
    (OrderStatus.PROCESSED, OrderOperation.RECORD_PAYMENT): OrderStatus.PROCESSED,
}

TERMINAL_STATUSES = frozenset({OrderStatus.PROCESSED, OrderStatus.CANCELLED})


def next_status(current: OrderStatus, operation: OrderOperation) -> Optional[OrderStatus]:
    """Resulting status, or None when `operation` is not allowed from `current`."""
    return TRANSITIONS.get((current, operation))


def is_allowed(current: OrderStatus, operation: OrderOperation) -> bool:
    return (current, operation) in TRANSITIONS


def require_transition(current: OrderStatus, operation: OrderOperation) -> OrderStatus:
    target = next_status(current, operation)
    if target is None:
        raise InvalidStateTransition(
            f"Cannot {operation.value.replace('_', ' ')} an order in status {current.value}"
        )
    return target
