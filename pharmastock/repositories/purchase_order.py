from datetime import datetime
from typing import Any, Dict, List, Optional
from pymongo import ASCENDING, ReturnDocument
from pharmastock.repositories.base import BaseRepository, persistence_guard
from pharmastock.models.base import to_bson
from pharmastock.models.purchase_order import PurchaseOrder, OrderStatus

class PurchaseOrderRepository(BaseRepository[PurchaseOrder]):
    """Purchase order documents. Status guards are enforced in the update filters."""

    @persistence_guard
    async def save(self, order: PurchaseOrder) -> PurchaseOrder:
        """Insert or fully replace an order document."""
        await self.collection.replace_one(
            {"order_id": order.order_id},
            order.to_mongo(),
            upsert=True
        )
        return order

    async def find_by_id(self, order_id: str) -> Optional[PurchaseOrder]:
        return await self.get_by_field("order_id", order_id)

    async def find_by_supplier(self, supplier_id: str) -> List[PurchaseOrder]:
        return await self.list({"supplier_id": supplier_id}, sort=[("created_date", ASCENDING)])

    async def find_by_date_range(self, start: datetime, end: datetime) -> List[PurchaseOrder]:
        return await self.list(
            {"created_date": {"$gte": start, "$lte": end}},
            sort=[("created_date", ASCENDING)]
        )

    async def find_by_status(self, status: OrderStatus) -> List[PurchaseOrder]:
        return await self.list({"status": status}, sort=[("created_date", ASCENDING)])

    async def find_all(self) -> List[PurchaseOrder]:
        return await self.list({}, sort=[("created_date", ASCENDING)])

    @persistence_guard
    async def update_if_status(self,
                               order_id: str,
                               expected_status: OrderStatus,
                               updates: Dict[str, Any],
                               expected_version: Optional[int] = None) -> Optional[PurchaseOrder]:
        """Conditional update: only matches while the order is still in `expected_status`."""
        filter = {"order_id": order_id, "status": expected_status}
        if expected_version is not None:
            filter["version"] = expected_version

        doc = await self.collection.find_one_and_update(
            to_bson(filter),
            {"$set": to_bson(updates), "$inc": {"version": 1}},
            return_document=ReturnDocument.AFTER
        )
        return self.model_cls.from_mongo(doc) if doc else None

    @persistence_guard
    async def set_item_batch(self, order_id: str, item_id: str, batch_id: Optional[str]) -> bool:
        result = await self.collection.update_one(
            {
                "order_id": order_id,
                "status": OrderStatus.APPROVED.value,
                "items.item_id": item_id
            },
            {"$set": {"items.$.stocked_batch_id": batch_id}, "$inc": {"version": 1}}
        )
        return result.matched_count > 0
