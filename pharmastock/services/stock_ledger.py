"""
Stock ledger: the only writer of batch quantities.

Increases and decreases for one product run inside that product's lock, and
every batch write is a conditional update in the store, so on-hand stock can
never go negative and one source reference is never credited twice.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from pharmastock.config import settings
from pharmastock.errors import (
    InsufficientStock,
    InvalidArgument,
    InventoryError,
    PersistenceFailure,
    ReferenceNotFound,
    ValidationError,
)
from pharmastock.models.audit import EventKind
from pharmastock.models.batch import (
    AdjustmentType,
    AlertLevel,
    ExpiryAlert,
    ProductBatch,
    StockAdjustment,
    StockReceipt,
)
from pharmastock.repositories.contracts import AuditSink, BatchStore
from pharmastock.services.audit import emit_best_effort
from pharmastock.services.locks import KeyedLocks

logger = logging.getLogger(__name__)


class StockLedger:
    def __init__(self,
                 batches: BatchStore,
                 audit: Optional[AuditSink] = None,
                 shelf_life_days: int = settings.DEFAULT_SHELF_LIFE_DAYS):
        self.batches = batches
        self.audit = audit
        self.shelf_life_days = shelf_life_days
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Quantity mutation
    # ------------------------------------------------------------------

    async def increase_stock(self,
                             product_id: str,
                             quantity: int,
                             source_reference: Optional[str] = None,
                             *,
                             batch_number: Optional[str] = None,
                             expiry_date: Optional[datetime] = None,
                             supplier_id: Optional[str] = None) -> str:
        """
        Add `quantity` units of a product and return the batch credited.

        An open batch with the same batch number (and the same expiry, when
        `expiry_date` is given) is topped up; otherwise a new batch is
        created. A `source_reference` that was already applied is a no-op
        returning the batch it went into.
        """
        self._require_product(product_id)
        self._require_quantity(quantity)

        async with self._locks.hold(product_id):
            if source_reference:
                applied = await self.batches.find_by_receipt(source_reference)
                if applied:
                    logger.info(f"Receipt {source_reference} already in batch {applied.batch_id}, skipping")
                    return applied.batch_id

            now = datetime.utcnow()
            try:
                batch = await self.batches.find_open_batch(product_id, batch_number, now, expiry_date)
                if batch:
                    return await self._top_up(batch, quantity, source_reference)
                return await self._open_batch(
                    product_id, quantity, source_reference, now,
                    batch_number=batch_number,
                    expiry_date=expiry_date,
                    supplier_id=supplier_id
                )
            except PersistenceFailure:
                # Another writer may have recorded the same reference first
                if source_reference:
                    applied = await self.batches.find_by_receipt(source_reference)
                    if applied:
                        return applied.batch_id
                raise

    async def _top_up(self, batch: ProductBatch, quantity: int, source_reference: Optional[str]) -> str:
        if source_reference:
            ok = await self.batches.apply_receipt(batch.batch_id, source_reference, quantity)
        else:
            ok = await self.batches.increment(batch.batch_id, quantity)
        if not ok:
            raise PersistenceFailure(f"Batch {batch.batch_id} rejected increase of {quantity}")
        logger.info(f"Stock +{quantity} for {batch.product_id} into batch {batch.batch_id}")
        return batch.batch_id

    async def _open_batch(self,
                          product_id: str,
                          quantity: int,
                          source_reference: Optional[str],
                          now: datetime,
                          batch_number: Optional[str] = None,
                          expiry_date: Optional[datetime] = None,
                          supplier_id: Optional[str] = None) -> str:
        receipts = []
        if source_reference:
            receipts.append(StockReceipt(reference=source_reference, quantity=quantity, received_at=now))

        batch = ProductBatch(
            batch_id=f"BAT-{uuid.uuid4().hex[:12].upper()}",
            product_id=product_id,
            supplier_id=supplier_id,
            batch_number=batch_number,
            expiry_date=expiry_date or now + timedelta(days=self.shelf_life_days),
            quantity=quantity,
            received_date=now,
            receipts=receipts
        )
        await self.batches.insert(batch)
        logger.info(f"Stock +{quantity} for {product_id} into new batch {batch.batch_id}")
        return batch.batch_id

    async def decrease_stock(self, product_id: str, quantity: int) -> None:
        """
        Remove `quantity` units, oldest stock first. Either the whole amount
        is taken or nothing is.
        """
        self._require_product(product_id)
        self._require_quantity(quantity)

        async with self._locks.hold(product_id):
            batches = [b for b in await self.batches.find_by_product(product_id) if b.quantity > 0]
            available = sum(b.quantity for b in batches)
            if available < quantity:
                raise InsufficientStock(product_id, quantity, available)

            taken: List[Tuple[str, int]] = []
            remaining = quantity
            try:
                for batch in batches:
                    if remaining == 0:
                        break
                    take = min(batch.quantity, remaining)
                    if not await self.batches.decrement(batch.batch_id, take):
                        raise InsufficientStock(product_id, quantity, available - batch.quantity)
                    taken.append((batch.batch_id, take))
                    remaining -= take
            except InventoryError:
                await self._restore(taken)
                raise

            logger.info(f"Stock -{quantity} for {product_id} from {len(taken)} batch(es)")

    async def _restore(self, taken: List[Tuple[str, int]]):
        for batch_id, quantity in reversed(taken):
            try:
                await self.batches.increment(batch_id, quantity)
            except PersistenceFailure as e:
                logger.error(f"Could not restore {quantity} to batch {batch_id}: {e}")

    async def revert_receipt(self, product_id: str, source_reference: str) -> bool:
        """Undo one referenced increase. False if it was never applied or the stock is gone."""
        async with self._locks.hold(product_id):
            batch = await self.batches.find_by_receipt(source_reference)
            if not batch:
                return False
            receipt = batch.receipt_for(source_reference)
            reverted = await self.batches.revert_receipt(batch.batch_id, source_reference, receipt.quantity)
            if reverted:
                logger.info(f"Reverted receipt {source_reference} (-{receipt.quantity}) on batch {batch.batch_id}")
            else:
                logger.warning(f"Receipt {source_reference} could not be reverted on batch {batch.batch_id}")
            return reverted

    async def adjust_batch(self,
                           batch_id: str,
                           adjustment_type: AdjustmentType,
                           quantity: int,
                           reason: str,
                           actor_id: str) -> StockAdjustment:
        """Manual correction of one batch (damage, recount, found stock)."""
        if not reason or not reason.strip():
            raise ValidationError("Adjustment reason is required")
        if not actor_id or not actor_id.strip():
            raise ValidationError("Adjusting user is required")
        if adjustment_type == AdjustmentType.CORRECTION:
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 0:
                raise InvalidArgument("Corrected quantity cannot be negative")
        else:
            self._require_quantity(quantity)

        batch = await self.batches.find_by_id(batch_id)
        if not batch:
            raise ReferenceNotFound(f"Batch {batch_id} not found")
        if batch.is_expired():
            raise ValidationError(f"Batch {batch_id} is expired")

        async with self._locks.hold(batch.product_id):
            batch = await self.batches.find_by_id(batch_id)
            previous = batch.quantity

            if adjustment_type == AdjustmentType.INCREASE:
                new_quantity = previous + quantity
                ok = await self.batches.increment(batch_id, quantity)
            elif adjustment_type == AdjustmentType.DECREASE:
                new_quantity = previous - quantity
                if new_quantity < 0:
                    raise InsufficientStock(batch.product_id, quantity, previous)
                ok = await self.batches.decrement(batch_id, quantity)
            else:
                new_quantity = quantity
                ok = await self.batches.set_quantity(batch_id, previous, quantity)

            if not ok:
                raise PersistenceFailure(f"Batch {batch_id} changed during adjustment, retry")

        adjustment = StockAdjustment(
            adjustment_id=f"ADJ-{uuid.uuid4().hex[:8].upper()}",
            batch_id=batch_id,
            adjustment_type=adjustment_type,
            adjusted_quantity=quantity,
            previous_quantity=previous,
            new_quantity=new_quantity,
            reason=reason,
            actor_id=actor_id
        )
        logger.info(f"Batch {batch_id} adjusted from {previous} to {new_quantity}. Reason: {reason}")
        await emit_best_effort(
            self.audit, EventKind.STOCK_ADJUSTED, None, actor_id,
            details=f"Batch {batch_id} adjusted from {previous} to {new_quantity}. Reason: {reason}",
            metadata={"batch_id": batch_id, "product_id": batch.product_id}
        )
        return adjustment

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_on_hand(self, product_id: str) -> int:
        return max(0, await self.batches.total_quantity(product_id))

    async def get_batches(self, product_id: str) -> List[ProductBatch]:
        return await self.batches.find_by_product(product_id)

    async def get_expiring_batches(self,
                                   days_ahead: int = settings.EXPIRY_ALERT_DAYS,
                                   now: Optional[datetime] = None) -> List[ProductBatch]:
        """In-stock batches expiring within `days_ahead` days (already expired included)."""
        now = now or datetime.utcnow()
        return await self.batches.find_expiring(now + timedelta(days=days_ahead))

    async def get_expired_batches(self, now: Optional[datetime] = None) -> List[ProductBatch]:
        return await self.batches.find_expiring(now or datetime.utcnow())

    async def get_expiry_alerts(self, now: Optional[datetime] = None) -> List[ExpiryAlert]:
        now = now or datetime.utcnow()
        alerts = []
        for batch in await self.get_expiring_batches(now=now):
            days = (batch.expiry_date - now).days
            if batch.is_expired(now):
                level = AlertLevel.CRITICAL
            elif days <= settings.EXPIRY_WARNING_DAYS:
                level = AlertLevel.WARNING
            else:
                level = AlertLevel.INFO
            alerts.append(ExpiryAlert(
                batch_id=batch.batch_id,
                product_id=batch.product_id,
                batch_number=batch.batch_number,
                expiry_date=batch.expiry_date,
                quantity=batch.quantity,
                days_until_expiry=days,
                alert_level=level
            ))
        return sorted(alerts, key=lambda a: a.expiry_date)

    async def get_low_stock_batches(self, threshold: int = settings.LOW_STOCK_THRESHOLD) -> List[ProductBatch]:
        return await self.batches.find_low_stock(threshold)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _require_quantity(quantity: int):
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise InvalidArgument(f"Quantity must be a positive integer, got {quantity!r}")

    @staticmethod
    def _require_product(product_id: str):
        if not product_id:
            raise InvalidArgument("Product ID is required")
