"""
Typed failures raised by the purchasing and stock core.

Every failure carries a short machine-readable ``code`` so the API layer can
map it to a response without inspecting messages.
"""


class InventoryError(Exception):
    """Base class for all purchasing/stock failures."""

    code = "inventory_error"

    def __init__(self, message: str, code: str = None):
        self.message = message
        if code:
            self.code = code
        super().__init__(message)


class ValidationError(InventoryError):
    """Malformed input. The caller must correct it; never retried."""

    code = "validation_error"


class InvalidArgument(ValidationError):
    """A ledger argument (usually a quantity) is out of range."""

    code = "invalid_argument"


class ReferenceNotFound(InventoryError):
    """A referenced order, product, supplier or batch does not exist."""

    code = "reference_not_found"


class InvalidStateTransition(InventoryError):
    """The operation is not allowed from the order's current status."""

    code = "invalid_state_transition"


class InsufficientStock(InventoryError):
    """A decrease exceeds the available on-hand quantity."""

    code = "insufficient_stock"

    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_id}: requested {requested}, available {available}"
        )


class PersistenceFailure(InventoryError):
    """The backing store is unavailable or rejected a write. Safe to retry."""

    code = "persistence_failure"
