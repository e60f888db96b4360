from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import Decimal128, ObjectId
from pymongo.errors import ServerSelectionTimeoutError

from pharmastock.errors import PersistenceFailure
from pharmastock.models.audit import AuditEvent, EventKind
from pharmastock.models.batch import ProductBatch
from pharmastock.models.catalog import Product, Supplier
from pharmastock.models.purchase_order import OrderStatus, PurchaseOrder, PurchaseOrderItem
from pharmastock.repositories.audit import AuditLogger
from pharmastock.repositories.batch import FIFO_ORDER, ProductBatchRepository
from pharmastock.repositories.catalog import CatalogRepository, ProductRepository, SupplierRepository
from pharmastock.repositories.purchase_order import PurchaseOrderRepository


def _order_doc(**overrides):
    order = PurchaseOrder(
        order_id="ord-1",
        order_number="PO-20250101-ABC123",
        supplier_id="SUP-1",
        created_by="clerk-1",
        items=[PurchaseOrderItem(item_id="i1", product_id="PROD-A", ordered_quantity=2, unit_price=Decimal("3"))]
    ).recalculate_totals()
    doc = order.to_mongo()
    doc["_id"] = ObjectId()
    doc.update(overrides)
    return doc

def _cursor(docs):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs)
    return cursor


@pytest.mark.asyncio
async def test_update_if_status_guards_on_status_and_version():
    collection = MagicMock()
    collection.find_one_and_update = AsyncMock(return_value=_order_doc(status="Approved", version=1))
    repo = PurchaseOrderRepository(collection, PurchaseOrder)

    updated = await repo.update_if_status(
        "ord-1", OrderStatus.PENDING, {"status": OrderStatus.APPROVED, "paid_amount": Decimal("1")},
        expected_version=0
    )

    assert updated.status == OrderStatus.APPROVED
    filter, update = collection.find_one_and_update.call_args[0]
    assert filter == {"order_id": "ord-1", "status": "Pending", "version": 0}
    assert update["$set"] == {"status": "Approved", "paid_amount": Decimal128("1")}
    assert update["$inc"] == {"version": 1}

@pytest.mark.asyncio
async def test_update_if_status_returns_none_when_guard_misses():
    collection = MagicMock()
    collection.find_one_and_update = AsyncMock(return_value=None)
    repo = PurchaseOrderRepository(collection, PurchaseOrder)

    assert await repo.update_if_status("ord-1", OrderStatus.PENDING, {"status": OrderStatus.APPROVED}) is None
    filter = collection.find_one_and_update.call_args[0][0]
    assert "version" not in filter

@pytest.mark.asyncio
async def test_set_item_batch_only_on_approved_orders():
    collection = MagicMock()
    collection.update_one = AsyncMock(return_value=MagicMock(matched_count=0))
    repo = PurchaseOrderRepository(collection, PurchaseOrder)

    assert await repo.set_item_batch("ord-1", "i1", "BAT-1") is False
    filter, update = collection.update_one.call_args[0]
    assert filter == {"order_id": "ord-1", "status": "Approved", "items.item_id": "i1"}
    assert update["$set"] == {"items.$.stocked_batch_id": "BAT-1"}

@pytest.mark.asyncio
async def test_save_upserts_by_order_id():
    collection = MagicMock()
    collection.replace_one = AsyncMock()
    repo = PurchaseOrderRepository(collection, PurchaseOrder)
    order = PurchaseOrder.from_mongo(_order_doc())
    order.id = None

    await repo.save(order)

    filter, doc = collection.replace_one.call_args[0]
    assert filter == {"order_id": "ord-1"}
    assert doc["total_amount"] == Decimal128("6")
    assert collection.replace_one.call_args[1] == {"upsert": True}

@pytest.mark.asyncio
async def test_find_by_status_converts_documents():
    collection = MagicMock()
    collection.find.return_value = _cursor([_order_doc(), _order_doc(order_id="ord-2")])
    repo = PurchaseOrderRepository(collection, PurchaseOrder)

    orders = await repo.find_by_status(OrderStatus.PENDING)

    assert [o.order_id for o in orders] == ["ord-1", "ord-2"]
    assert orders[0].total_amount == Decimal("6")
    collection.find.assert_called_once_with({"status": "Pending"})

@pytest.mark.asyncio
async def test_find_all_lists_every_status_oldest_first():
    collection = MagicMock()
    collection.find.return_value = _cursor([_order_doc(), _order_doc(order_id="ord-2", status="Cancelled")])
    repo = PurchaseOrderRepository(collection, PurchaseOrder)

    orders = await repo.find_all()

    assert [o.status for o in orders] == [OrderStatus.PENDING, OrderStatus.CANCELLED]
    collection.find.assert_called_once_with({})
    collection.find.return_value.sort.assert_called_once_with([("created_date", 1)])

@pytest.mark.asyncio
async def test_driver_errors_become_persistence_failures():
    collection = MagicMock()
    collection.find_one = AsyncMock(side_effect=ServerSelectionTimeoutError("no servers"))
    repo = PurchaseOrderRepository(collection, PurchaseOrder)

    with pytest.raises(PersistenceFailure):
        await repo.find_by_id("ord-1")

@pytest.mark.asyncio
async def test_batches_listed_fifo():
    collection = MagicMock()
    collection.find.return_value = _cursor([])
    repo = ProductBatchRepository(collection, ProductBatch)

    await repo.find_by_product("PROD-A")

    collection.find.return_value.sort.assert_called_once_with(FIFO_ORDER)

@pytest.mark.asyncio
async def test_find_open_batch_matches_expiry_when_given():
    collection = MagicMock()
    collection.find_one = AsyncMock(return_value=None)
    repo = ProductBatchRepository(collection, ProductBatch)
    now = datetime(2025, 1, 1)
    expiry = datetime(2025, 1, 4)

    assert await repo.find_open_batch("PROD-A", None, now, expiry) is None
    assert collection.find_one.call_args[0][0] == {
        "product_id": "PROD-A",
        "batch_number": None,
        "expiry_date": {"$gt": now, "$eq": expiry}
    }

    await repo.find_open_batch("PROD-A", "LOT-1", now)
    assert collection.find_one.call_args[0][0]["expiry_date"] == {"$gt": now}

@pytest.mark.asyncio
async def test_apply_receipt_is_conditional_on_reference():
    collection = MagicMock()
    collection.update_one = AsyncMock(return_value=MagicMock(modified_count=1))
    repo = ProductBatchRepository(collection, ProductBatch)

    assert await repo.apply_receipt("BAT-1", "ord-1:i1", 5) is True
    filter, update = collection.update_one.call_args[0]
    assert filter == {"batch_id": "BAT-1", "receipts.reference": {"$ne": "ord-1:i1"}}
    assert update["$inc"] == {"quantity": 5}
    assert update["$push"]["receipts"]["reference"] == "ord-1:i1"

@pytest.mark.asyncio
async def test_decrement_never_goes_below_zero():
    collection = MagicMock()
    collection.update_one = AsyncMock(return_value=MagicMock(modified_count=0))
    repo = ProductBatchRepository(collection, ProductBatch)

    assert await repo.decrement("BAT-1", 4) is False
    filter, update = collection.update_one.call_args[0]
    assert filter == {"batch_id": "BAT-1", "quantity": {"$gte": 4}}
    assert update == {"$inc": {"quantity": -4}}

@pytest.mark.asyncio
async def test_total_quantity_aggregates():
    collection = MagicMock()
    collection.aggregate.return_value.to_list = AsyncMock(return_value=[{"_id": None, "total": 7}])
    repo = ProductBatchRepository(collection, ProductBatch)

    assert await repo.total_quantity("PROD-A") == 7

    collection.aggregate.return_value.to_list = AsyncMock(return_value=[])
    assert await repo.total_quantity("PROD-B") == 0

@pytest.mark.asyncio
async def test_catalog_lookups():
    products = MagicMock()
    products.count_documents = AsyncMock(return_value=1)
    suppliers = MagicMock()
    suppliers.count_documents = AsyncMock(return_value=0)
    catalog = CatalogRepository(ProductRepository(products, Product), SupplierRepository(suppliers, Supplier))

    assert await catalog.product_exists("PROD-A") is True
    assert await catalog.supplier_exists("SUP-404") is False
    products.count_documents.assert_called_once_with({"product_id": "PROD-A"}, limit=1)

@pytest.mark.asyncio
async def test_audit_logger_history_for_order():
    collection = MagicMock()
    when = datetime(2025, 1, 1, 12, 0)
    collection.find.return_value = _cursor([
        {"_id": ObjectId(), "event_id": "EVT-1", "event_kind": "ORDER_CREATED", "order_id": "ord-1",
         "actor_id": "clerk-1", "timestamp": when},
    ])
    audit = AuditLogger(collection, AuditEvent)

    events = await audit.get_for_order("ord-1")

    assert [e.event_kind for e in events] == [EventKind.ORDER_CREATED]
    collection.find.assert_called_once_with({"order_id": "ord-1"})
    collection.find.return_value.sort.assert_called_once_with([("timestamp", 1)])

@pytest.mark.asyncio
async def test_audit_logger_emit_writes_event():
    collection = MagicMock()
    collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=ObjectId()))
    audit = AuditLogger(collection, AuditEvent)
    when = datetime(2025, 1, 1, 12, 0)

    await audit.emit(EventKind.ORDER_APPROVED, "ord-1", "manager-1", when, "approved", {"k": "v"})

    doc = collection.insert_one.call_args[0][0]
    assert doc["event_kind"] == "ORDER_APPROVED"
    assert doc["order_id"] == "ord-1"
    assert doc["actor_id"] == "manager-1"
    assert doc["timestamp"] == when
    assert doc["event_id"].startswith("EVT-")
