"""
Narrow capability interfaces the workflow engine and stock ledger depend on.

The Mongo repositories in this package implement them; any storage engine
that honours the same conditional-update semantics can be swapped in.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from pharmastock.models.audit import EventKind
from pharmastock.models.batch import ProductBatch
from pharmastock.models.purchase_order import OrderStatus, PurchaseOrder


class OrderStore(Protocol):
    async def save(self, order: PurchaseOrder) -> PurchaseOrder: ...

    async def find_by_id(self, order_id: str) -> Optional[PurchaseOrder]: ...

    async def find_by_supplier(self, supplier_id: str) -> List[PurchaseOrder]: ...

    async def find_by_date_range(self, start: datetime, end: datetime) -> List[PurchaseOrder]: ...

    async def find_by_status(self, status: OrderStatus) -> List[PurchaseOrder]: ...

    async def find_all(self) -> List[PurchaseOrder]: ...

    async def update_if_status(self,
                               order_id: str,
                               expected_status: OrderStatus,
                               updates: Dict[str, Any],
                               expected_version: Optional[int] = None) -> Optional[PurchaseOrder]:
        """
        Apply `updates` only if the order is still in `expected_status` (and at
        `expected_version` when given). Returns the updated order, or None when
        the guard did not match.
        """
        ...

    async def set_item_batch(self,
                             order_id: str,
                             item_id: str,
                             batch_id: Optional[str]) -> bool:
        """Record (or clear, with None) the batch an Approved order's item was stocked into."""
        ...


class BatchStore(Protocol):
    async def insert(self, batch: ProductBatch) -> ProductBatch: ...

    async def find_by_id(self, batch_id: str) -> Optional[ProductBatch]: ...

    async def find_by_product(self, product_id: str) -> List[ProductBatch]:
        """All batches of a product, earliest expiry first, then oldest receipt."""
        ...

    async def find_open_batch(self,
                              product_id: str,
                              batch_number: Optional[str],
                              now: datetime,
                              expiry_date: Optional[datetime] = None) -> Optional[ProductBatch]:
        """Unexpired batch with this batch number, and with this exact expiry when one is given."""
        ...

    async def find_by_receipt(self, reference: str) -> Optional[ProductBatch]: ...

    async def apply_receipt(self, batch_id: str, reference: str, quantity: int) -> bool:
        """Atomically add `quantity` and record `reference`; False if already recorded."""
        ...

    async def revert_receipt(self, batch_id: str, reference: str, quantity: int) -> bool:
        """Atomically remove a recorded receipt and its quantity; False if impossible."""
        ...

    async def increment(self, batch_id: str, quantity: int) -> bool: ...

    async def decrement(self, batch_id: str, quantity: int) -> bool:
        """Atomically subtract `quantity` only if the batch holds at least that much."""
        ...

    async def set_quantity(self, batch_id: str, expected: int, quantity: int) -> bool: ...

    async def total_quantity(self, product_id: str) -> int: ...

    async def find_expiring(self, cutoff: datetime) -> List[ProductBatch]:
        """In-stock batches expiring on or before `cutoff`, soonest first."""
        ...

    async def find_low_stock(self, threshold: int) -> List[ProductBatch]: ...


class CatalogLookup(Protocol):
    async def product_exists(self, product_id: str) -> bool: ...

    async def supplier_exists(self, supplier_id: str) -> bool: ...


class AuditSink(Protocol):
    async def emit(self,
                   event_kind: EventKind,
                   order_id: Optional[str],
                   actor_id: str,
                   timestamp: datetime,
                   details: str = "",
                   metadata: Optional[Dict[str, Any]] = None) -> None: ...
