import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from pharmastock.errors import PersistenceFailure
from pharmastock.models.audit import AuditEvent
from pharmastock.models.batch import ProductBatch, StockReceipt
from pharmastock.models.purchase_order import OrderItemRequest, OrderStatus, PurchaseOrder
from pharmastock.services.stock_ledger import StockLedger
from pharmastock.workflow.engine import PurchaseOrderWorkflow


class InMemoryOrderStore:
    """OrderStore with the same conditional-update semantics as the Mongo repository."""

    def __init__(self):
        self.docs: Dict[str, PurchaseOrder] = {}
        self.fail_saves = False

    async def save(self, order):
        if self.fail_saves:
            raise PersistenceFailure("store unavailable")
        self.docs[order.order_id] = order.model_copy(deep=True)
        return order

    async def find_by_id(self, order_id):
        # Yield so concurrent callers interleave between read and write
        await asyncio.sleep(0)
        order = self.docs.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def find_by_supplier(self, supplier_id):
        return self._sorted(o for o in self.docs.values() if o.supplier_id == supplier_id)

    async def find_by_date_range(self, start, end):
        return self._sorted(o for o in self.docs.values() if start <= o.created_date <= end)

    async def find_by_status(self, status):
        return self._sorted(o for o in self.docs.values() if o.status == status)

    async def find_all(self):
        return self._sorted(self.docs.values())

    async def update_if_status(self, order_id, expected_status, updates, expected_version=None):
        order = self.docs.get(order_id)
        if not order or order.status != expected_status:
            return None
        if expected_version is not None and order.version != expected_version:
            return None
        data = order.model_dump(exclude={"id"})
        data.update(updates)
        data["version"] = order.version + 1
        self.docs[order_id] = PurchaseOrder.model_validate(data)
        return self.docs[order_id].model_copy(deep=True)

    async def set_item_batch(self, order_id, item_id, batch_id):
        order = self.docs.get(order_id)
        if not order or order.status != OrderStatus.APPROVED:
            return False
        item = order.get_item(item_id)
        if not item:
            return False
        item.stocked_batch_id = batch_id
        order.version += 1
        return True

    @staticmethod
    def _sorted(orders):
        return [o.model_copy(deep=True) for o in sorted(orders, key=lambda o: o.created_date)]


class InMemoryBatchStore:
    """BatchStore backed by a dict. Each method is one atomic step, like a single Mongo update."""

    def __init__(self):
        self.docs: Dict[str, ProductBatch] = {}
        # Products whose increases fail with PersistenceFailure
        self.fail_increases_for = set()
        self.fail_reverts = False

    async def insert(self, batch):
        if batch.product_id in self.fail_increases_for:
            raise PersistenceFailure(f"insert failed for {batch.product_id}")
        self.docs[batch.batch_id] = batch.model_copy(deep=True)
        return batch

    async def find_by_id(self, batch_id):
        batch = self.docs.get(batch_id)
        return batch.model_copy(deep=True) if batch else None

    async def find_by_product(self, product_id):
        return self._fifo(b for b in self.docs.values() if b.product_id == product_id)

    async def find_open_batch(self, product_id, batch_number, now, expiry_date=None):
        candidates = [
            b for b in self.docs.values()
            if b.product_id == product_id and b.batch_number == batch_number and b.expiry_date > now
            and (expiry_date is None or b.expiry_date == expiry_date)
        ]
        candidates.sort(key=lambda b: b.received_date)
        return candidates[0].model_copy(deep=True) if candidates else None

    async def find_by_receipt(self, reference):
        for batch in self.docs.values():
            if batch.receipt_for(reference):
                return batch.model_copy(deep=True)
        return None

    async def apply_receipt(self, batch_id, reference, quantity):
        batch = self.docs.get(batch_id)
        if batch and batch.product_id in self.fail_increases_for:
            raise PersistenceFailure(f"update failed for {batch.product_id}")
        if not batch or batch.receipt_for(reference):
            return False
        batch.quantity += quantity
        batch.receipts.append(StockReceipt(reference=reference, quantity=quantity))
        return True

    async def revert_receipt(self, batch_id, reference, quantity):
        if self.fail_reverts:
            raise PersistenceFailure("revert failed")
        batch = self.docs.get(batch_id)
        if not batch or not batch.receipt_for(reference) or batch.quantity < quantity:
            return False
        batch.quantity -= quantity
        batch.receipts = [r for r in batch.receipts if r.reference != reference]
        return True

    async def increment(self, batch_id, quantity):
        batch = self.docs.get(batch_id)
        if not batch:
            return False
        batch.quantity += quantity
        return True

    async def decrement(self, batch_id, quantity):
        batch = self.docs.get(batch_id)
        if not batch or batch.quantity < quantity:
            return False
        batch.quantity -= quantity
        return True

    async def set_quantity(self, batch_id, expected, quantity):
        batch = self.docs.get(batch_id)
        if not batch or batch.quantity != expected:
            return False
        batch.quantity = quantity
        return True

    async def total_quantity(self, product_id):
        return sum(b.quantity for b in self.docs.values() if b.product_id == product_id)

    async def find_expiring(self, cutoff):
        return self._fifo(b for b in self.docs.values() if b.expiry_date <= cutoff and b.quantity > 0)

    async def find_low_stock(self, threshold):
        low = [b for b in self.docs.values() if 0 < b.quantity <= threshold]
        return [b.model_copy(deep=True) for b in sorted(low, key=lambda b: b.quantity)]

    def add(self, batch: ProductBatch):
        self.docs[batch.batch_id] = batch

    @staticmethod
    def _fifo(batches):
        ordered = sorted(batches, key=lambda b: (b.expiry_date, b.received_date))
        return [b.model_copy(deep=True) for b in ordered]


class FakeCatalog:
    def __init__(self, products=(), suppliers=()):
        self.products = set(products)
        self.suppliers = set(suppliers)

    async def product_exists(self, product_id):
        return product_id in self.products

    async def supplier_exists(self, supplier_id):
        return supplier_id in self.suppliers


class RecordingAuditSink:
    def __init__(self):
        self.events: List[dict] = []
        self.fail = False

    async def emit(self, event_kind, order_id, actor_id, timestamp, details="", metadata=None):
        if self.fail:
            raise RuntimeError("audit sink down")
        self.events.append({
            "event_kind": event_kind,
            "order_id": order_id,
            "actor_id": actor_id,
            "timestamp": timestamp,
            "details": details,
            "metadata": metadata
        })

    async def get_for_order(self, order_id):
        return [
            AuditEvent(event_id=f"EVT-{n}", **{**e, "metadata": e["metadata"] or {}})
            for n, e in enumerate(self.events) if e["order_id"] == order_id
        ]

    def kinds(self, order_id: Optional[str] = None):
        return [e["event_kind"] for e in self.events if order_id is None or e["order_id"] == order_id]


@pytest.fixture
def order_store():
    return InMemoryOrderStore()

@pytest.fixture
def batch_store():
    return InMemoryBatchStore()

@pytest.fixture
def catalog():
    return FakeCatalog(products={"PROD-A", "PROD-B", "PROD-C"}, suppliers={"SUP-1", "SUP-2"})

@pytest.fixture
def audit_sink():
    return RecordingAuditSink()

@pytest.fixture
def ledger(batch_store, audit_sink):
    return StockLedger(batch_store, audit=audit_sink)

@pytest.fixture
def workflow(order_store, ledger, catalog, audit_sink):
    return PurchaseOrderWorkflow(order_store, ledger, catalog, audit=audit_sink)

@pytest.fixture
def sample_items():
    return [
        OrderItemRequest(product_id="PROD-A", quantity=5, unit_price=Decimal("2.50")),
        OrderItemRequest(product_id="PROD-B", quantity=3, unit_price=Decimal("10.00")),
    ]

@pytest.fixture
def make_batch():
    def _make(batch_id, product_id="PROD-A", quantity=10, expiry_date=None, received_date=None, batch_number=None):
        return ProductBatch(
            batch_id=batch_id,
            product_id=product_id,
            batch_number=batch_number,
            quantity=quantity,
            expiry_date=expiry_date or datetime(2099, 1, 1),
            received_date=received_date or datetime(2024, 1, 1)
        )
    return _make
