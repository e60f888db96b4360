import pytest

from pharmastock.errors import InvalidStateTransition
from pharmastock.models.purchase_order import OrderStatus
from pharmastock.workflow.state import (
    TERMINAL_STATUSES,
    OrderOperation,
    is_allowed,
    next_status,
    require_transition,
)


@pytest.mark.parametrize("current, operation, expected", [
    (OrderStatus.PENDING, OrderOperation.APPROVE, OrderStatus.APPROVED),
    (OrderStatus.PENDING, OrderOperation.CANCEL, OrderStatus.CANCELLED),
    (OrderStatus.PENDING, OrderOperation.ADD_ITEM, OrderStatus.PENDING),
    (OrderStatus.APPROVED, OrderOperation.PROCESS, OrderStatus.PROCESSED),
    (OrderStatus.APPROVED, OrderOperation.CANCEL, OrderStatus.CANCELLED),
    (OrderStatus.PENDING, OrderOperation.PROCESS, None),
    (OrderStatus.APPROVED, OrderOperation.APPROVE, None),
    (OrderStatus.APPROVED, OrderOperation.ADD_ITEM, None),
    (OrderStatus.PROCESSED, OrderOperation.CANCEL, None),
])
def test_transition_table(current, operation, expected):
    assert next_status(current, operation) == expected
    assert is_allowed(current, operation) == (expected is not None)

@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES))
def test_terminal_statuses_have_no_status_changes(status):
    for operation in OrderOperation:
        assert next_status(status, operation) in (None, status)

def test_payment_allowed_until_cancelled():
    assert is_allowed(OrderStatus.PROCESSED, OrderOperation.RECORD_PAYMENT)
    assert not is_allowed(OrderStatus.CANCELLED, OrderOperation.RECORD_PAYMENT)

def test_require_transition_raises():
    assert require_transition(OrderStatus.PENDING, OrderOperation.APPROVE) == OrderStatus.APPROVED
    with pytest.raises(InvalidStateTransition, match="Cannot approve an order in status Cancelled"):
        require_transition(OrderStatus.CANCELLED, OrderOperation.APPROVE)
