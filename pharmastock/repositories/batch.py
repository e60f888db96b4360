from datetime import datetime
from typing import List, Optional
from pymongo import ASCENDING
from pharmastock.repositories.base import BaseRepository, persistence_guard
from pharmastock.models.batch import ProductBatch, StockReceipt

# Oldest stock leaves first: soonest expiry, then earliest receipt
FIFO_ORDER = [("expiry_date", ASCENDING), ("received_date", ASCENDING)]

class ProductBatchRepository(BaseRepository[ProductBatch]):
    """
    Batch documents backing the stock ledger. Every quantity write is a
    single conditional update so concurrent writers cannot go negative.
    """

    async def insert(self, batch: ProductBatch) -> ProductBatch:
        return await self.create(batch)

    async def find_by_id(self, batch_id: str) -> Optional[ProductBatch]:
        return await self.get_by_field("batch_id", batch_id)

    async def find_by_product(self, product_id: str) -> List[ProductBatch]:
        return await self.list({"product_id": product_id}, sort=FIFO_ORDER)

    @persistence_guard
    async def find_open_batch(self,
                              product_id: str,
                              batch_number: Optional[str],
                              now: datetime,
                              expiry_date: Optional[datetime] = None) -> Optional[ProductBatch]:
        expiry = {"$gt": now}
        if expiry_date is not None:
            # A delivery with its own expiry only joins a batch with that expiry
            expiry["$eq"] = expiry_date
        doc = await self.collection.find_one(
            {
                "product_id": product_id,
                "batch_number": batch_number,
                "expiry_date": expiry
            },
            sort=[("received_date", ASCENDING)]
        )
        return self.model_cls.from_mongo(doc) if doc else None

    async def find_by_receipt(self, reference: str) -> Optional[ProductBatch]:
        return await self.get_by_field("receipts.reference", reference)

    @persistence_guard
    async def apply_receipt(self, batch_id: str, reference: str, quantity: int) -> bool:
        receipt = StockReceipt(reference=reference, quantity=quantity)
        result = await self.collection.update_one(
            {"batch_id": batch_id, "receipts.reference": {"$ne": reference}},
            {"$inc": {"quantity": quantity}, "$push": {"receipts": receipt.model_dump()}}
        )
        return result.modified_count > 0

    @persistence_guard
    async def revert_receipt(self, batch_id: str, reference: str, quantity: int) -> bool:
        result = await self.collection.update_one(
            {"batch_id": batch_id, "receipts.reference": reference, "quantity": {"$gte": quantity}},
            {"$inc": {"quantity": -quantity}, "$pull": {"receipts": {"reference": reference}}}
        )
        return result.modified_count > 0

    @persistence_guard
    async def increment(self, batch_id: str, quantity: int) -> bool:
        result = await self.collection.update_one(
            {"batch_id": batch_id},
            {"$inc": {"quantity": quantity}}
        )
        return result.modified_count > 0

    @persistence_guard
    async def decrement(self, batch_id: str, quantity: int) -> bool:
        result = await self.collection.update_one(
            {"batch_id": batch_id, "quantity": {"$gte": quantity}},
            {"$inc": {"quantity": -quantity}}
        )
        return result.modified_count > 0

    @persistence_guard
    async def set_quantity(self, batch_id: str, expected: int, quantity: int) -> bool:
        result = await self.collection.update_one(
            {"batch_id": batch_id, "quantity": expected},
            {"$set": {"quantity": quantity}}
        )
        return result.matched_count > 0

    @persistence_guard
    async def total_quantity(self, product_id: str) -> int:
        pipeline = [
            {"$match": {"product_id": product_id}},
            {"$group": {"_id": None, "total": {"$sum": "$quantity"}}}
        ]
        results = await self.collection.aggregate(pipeline).to_list(length=None)
        return int(results[0]["total"]) if results else 0

    async def find_expiring(self, cutoff: datetime) -> List[ProductBatch]:
        return await self.list(
            {"expiry_date": {"$lte": cutoff}, "quantity": {"$gt": 0}},
            sort=FIFO_ORDER
        )

    async def find_low_stock(self, threshold: int) -> List[ProductBatch]:
        return await self.list(
            {"quantity": {"$gt": 0, "$lte": threshold}},
            sort=[("quantity", ASCENDING)]
        )
