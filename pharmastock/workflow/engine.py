"""
Purchase order workflow engine.

Pending -> Approved -> Processed, with Pending/Approved -> Cancelled. Allowed
moves come from the transition table in ``pharmastock.workflow.state``; every
status write is a conditional update on the expected prior status, and calls
for one order are serialized in-process by a per-order lock.

Processing credits stock through the StockLedger one item at a time. Each
credit carries the reference ``<order_id>:<item_id>`` and the item is marked
with the batch it went into, so a retried run never credits an item twice.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from pharmastock.config import settings
from pharmastock.errors import (
    InvalidStateTransition,
    PersistenceFailure,
    ReferenceNotFound,
    ValidationError,
)
from pharmastock.models.audit import EventKind
from pharmastock.models.base import fits_decimal128
from pharmastock.models.purchase_order import (
    OrderItemRequest,
    OrderStatus,
    PurchaseOrder,
    PurchaseOrderItem,
)
from pharmastock.repositories.contracts import AuditSink, CatalogLookup, OrderStore
from pharmastock.services.audit import emit_best_effort
from pharmastock.services.locks import KeyedLocks
from pharmastock.services.stock_ledger import StockLedger
from pharmastock.workflow.state import OrderOperation, next_status, require_transition

logger = logging.getLogger(__name__)

ItemInput = Union[OrderItemRequest, Dict[str, Any]]


class PurchaseOrderWorkflow:
    def __init__(self,
                 orders: OrderStore,
                 ledger: StockLedger,
                 catalog: CatalogLookup,
                 audit: Optional[AuditSink] = None,
                 update_retries: int = settings.ORDER_UPDATE_RETRIES):
        self.orders = orders
        self.ledger = ledger
        self.catalog = catalog
        self.audit = audit
        self.update_retries = max(1, update_retries)
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Creation and editing
    # ------------------------------------------------------------------

    async def create_order(self,
                           supplier_id: str,
                           items: Iterable[ItemInput],
                           created_by: str,
                           paid_amount: Any = Decimal("0"),
                           expected_delivery_date: Optional[datetime] = None,
                           notes: Optional[str] = None) -> PurchaseOrder:
        """Validate, price and persist a new Pending order."""
        if not supplier_id or not str(supplier_id).strip():
            raise ValidationError("Supplier ID is required")
        self._require_actor(created_by, "Created by user ID")

        requests = [self._coerce_item(i) for i in (items or [])]
        if not requests:
            raise ValidationError("Purchase order must have at least one item")
        for request in requests:
            self._validate_item(request)

        paid = self._money(paid_amount, "Paid amount")
        if paid < 0:
            raise ValidationError("Paid amount cannot be negative")

        order = PurchaseOrder(
            order_id=str(uuid.uuid4()),
            order_number=self.generate_order_number(),
            supplier_id=supplier_id,
            items=[self._build_item(r) for r in requests],
            paid_amount=paid,
            expected_delivery_date=expected_delivery_date,
            notes=notes,
            created_by=created_by
        ).recalculate_totals()
        self._require_storable(order)
        if order.due_amount < 0:
            raise ValidationError("Paid amount cannot exceed total amount")

        if not await self.catalog.supplier_exists(supplier_id):
            raise ReferenceNotFound(f"Supplier {supplier_id} not found")
        for product_id in {r.product_id for r in requests}:
            await self._require_product(product_id)

        await self.orders.save(order)
        logger.info(f"Purchase order {order.order_number} created for supplier {supplier_id}, total {order.total_amount}")
        await emit_best_effort(
            self.audit, EventKind.ORDER_CREATED, order.order_id, created_by,
            details=f"Purchase order created: {order.order_number}, Supplier: {supplier_id}, Total: {order.total_amount}",
            timestamp=order.created_date
        )
        return order

    async def add_item(self,
                       order_id: str,
                       product_id: str,
                       quantity: int,
                       unit_price: Any,
                       batch_number: Optional[str] = None,
                       expiry_date: Optional[datetime] = None,
                       actor_id: Optional[str] = None) -> PurchaseOrder:
        """Append a line to a Pending order and reprice it."""
        request = self._coerce_item({
            "product_id": product_id,
            "quantity": quantity,
            "unit_price": unit_price,
            "batch_number": batch_number,
            "expiry_date": expiry_date
        })
        self._validate_item(request)

        async with self._locks.hold(order_id):
            order = await self._load(order_id)
            require_transition(order.status, OrderOperation.ADD_ITEM)
            await self._require_product(request.product_id)

            item = self._build_item(request)
            for _ in range(self.update_retries):
                order.items.append(item)
                order.recalculate_totals()
                self._require_storable(order)
                updated = await self.orders.update_if_status(
                    order_id,
                    OrderStatus.PENDING,
                    {"items": [i.model_dump() for i in order.items], **self._totals(order)},
                    expected_version=order.version
                )
                if updated:
                    break
                # Someone else wrote the order in between; reload and re-check
                order = await self._load(order_id)
                require_transition(order.status, OrderOperation.ADD_ITEM)
            else:
                raise PersistenceFailure(f"Order {order_id} kept changing while adding an item, retry")

        logger.info(f"Item {item.item_id} ({item.product_id} x{item.ordered_quantity}) added to {updated.order_number}")
        await emit_best_effort(
            self.audit, EventKind.ITEM_ADDED, order_id, actor_id or updated.created_by,
            details=f"Added {item.ordered_quantity} x {item.product_id} at {item.unit_price}",
            metadata={"item_id": item.item_id}
        )
        return updated

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def approve_order(self, order_id: str, approver_id: str) -> bool:
        self._require_actor(approver_id, "Approver ID")
        async with self._locks.hold(order_id):
            order = await self._load(order_id)
            target = next_status(order.status, OrderOperation.APPROVE)
            if target is None:
                logger.warning(f"Approve refused for {order.order_number}: status is {order.status.value}")
                return False

            now = datetime.utcnow()
            updated = await self.orders.update_if_status(
                order_id, order.status,
                {"status": target, "approved_by": approver_id, "approved_date": now}
            )
            if not updated:
                logger.warning(f"Approve lost race on {order.order_number}")
                return False

        logger.info(f"Purchase order {order.order_number} approved by {approver_id}")
        await emit_best_effort(
            self.audit, EventKind.ORDER_APPROVED, order_id, approver_id,
            details=f"Purchase order {order.order_number} approved", timestamp=now
        )
        return True

    async def process_order(self, order_id: str, processor_id: str) -> bool:
        """
        Receive an Approved order into stock and mark it Processed.

        Returns False when the order is not Approved. Any failure while
        crediting stock is re-raised after this run's credits are taken back;
        the order stays Approved so the call can simply be retried.
        """
        self._require_actor(processor_id, "Processor ID")
        async with self._locks.hold(order_id):
            order = await self._load(order_id)
            target = next_status(order.status, OrderOperation.PROCESS)
            if target is None:
                logger.warning(f"Process refused for {order.order_number}: status is {order.status.value}")
                return False
            if not order.items:
                raise ValidationError(f"Order {order.order_number} has no items to process")

            try:
                await self._receive_items(order)
            except InvalidStateTransition as e:
                logger.warning(f"Process aborted for {order.order_number}: {e}")
                return False

            now = datetime.utcnow()
            updated = await self.orders.update_if_status(
                order_id, OrderStatus.APPROVED,
                {"status": target, "processed_by": processor_id, "processed_date": now}
            )
            if not updated:
                current = await self.orders.find_by_id(order_id)
                if current and current.status == OrderStatus.CANCELLED:
                    # Cancelled elsewhere while receiving; the cancellation wins
                    await self._release_items(current, current.items)
                logger.warning(f"Process lost race on {order.order_number}")
                return False

        logger.info(f"Purchase order {order.order_number} processed by {processor_id}")
        await emit_best_effort(
            self.audit, EventKind.ORDER_PROCESSED, order_id, processor_id,
            details=f"Purchase order {order.order_number} received into stock ({len(order.items)} items)",
            timestamp=now
        )
        return True

    async def cancel_order(self, order_id: str, reason: str, actor_id: Optional[str] = None) -> bool:
        if not reason or not reason.strip():
            logger.warning(f"Cancel refused for {order_id}: no reason given")
            return False

        async with self._locks.hold(order_id):
            order = await self._load(order_id)
            target = next_status(order.status, OrderOperation.CANCEL)
            if target is None:
                logger.warning(f"Cancel refused for {order.order_number}: status is {order.status.value}")
                return False

            now = datetime.utcnow()
            updates = {
                "status": target,
                "cancel_reason": reason.strip(),
                "cancelled_by": actor_id,
                "cancelled_date": now
            }
            if order.status == OrderStatus.APPROVED:
                # Batch markers go in the same write, a Cancelled order keeps none
                for item in order.items:
                    item.stocked_batch_id = None
                updates["items"] = [i.model_dump() for i in order.items]
            updated = await self.orders.update_if_status(
                order_id, order.status, updates, expected_version=order.version
            )
            if not updated:
                logger.warning(f"Cancel lost race on {order.order_number}")
                return False

            if order.status == OrderStatus.APPROVED:
                # Leftovers of an interrupted processing run, if any
                await self._release_items(updated, updated.items)

        logger.info(f"Purchase order {order.order_number} cancelled: {reason.strip()}")
        await emit_best_effort(
            self.audit, EventKind.ORDER_CANCELLED, order_id, actor_id or "system",
            details=f"Purchase order cancelled: {reason.strip()}", timestamp=now
        )
        return True

    async def record_payment(self, order_id: str, amount: Any, actor_id: str) -> PurchaseOrder:
        """Register a supplier payment against the order's due amount."""
        amount = self._money(amount, "Payment amount")
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than zero")
        self._require_actor(actor_id, "Actor ID")

        async with self._locks.hold(order_id):
            for _ in range(self.update_retries):
                order = await self._load(order_id)
                require_transition(order.status, OrderOperation.RECORD_PAYMENT)
                if amount > order.due_amount:
                    raise ValidationError(
                        f"Payment {amount} exceeds due amount {order.due_amount} on {order.order_number}"
                    )
                order.paid_amount += amount
                order.recalculate_totals()
                self._require_storable(order)
                updated = await self.orders.update_if_status(
                    order_id, order.status,
                    {"paid_amount": order.paid_amount, **self._totals(order)},
                    expected_version=order.version
                )
                if updated:
                    break
            else:
                raise PersistenceFailure(f"Order {order_id} kept changing while recording payment, retry")

        logger.info(f"Payment {amount} recorded on {updated.order_number}, due {updated.due_amount}")
        await emit_best_effort(
            self.audit, EventKind.PAYMENT_RECORDED, order_id, actor_id,
            details=f"Payment of {amount} recorded, due {updated.due_amount}"
        )
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_order(self, order_id: str) -> PurchaseOrder:
        return await self._load(order_id)

    async def get_orders_by_supplier(self, supplier_id: str) -> List[PurchaseOrder]:
        return await self.orders.find_by_supplier(supplier_id)

    async def get_orders_by_status(self, status: Union[OrderStatus, str]) -> List[PurchaseOrder]:
        if not status:
            raise ValidationError("Status cannot be empty")
        try:
            status = OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid status {status!r}")
        return await self.orders.find_by_status(status)

    async def get_pending_orders(self) -> List[PurchaseOrder]:
        return await self.orders.find_by_status(OrderStatus.PENDING)

    async def get_all_orders(self) -> List[PurchaseOrder]:
        """Every order in any status, oldest first."""
        return await self.orders.find_all()

    async def get_orders_by_date_range(self, start: datetime, end: datetime) -> List[PurchaseOrder]:
        if start > end:
            raise ValidationError("Start date must not be after end date")
        return await self.orders.find_by_date_range(start, end)

    async def get_overdue_orders(self, now: Optional[datetime] = None) -> List[PurchaseOrder]:
        """Open orders whose expected delivery date has passed."""
        now = now or datetime.utcnow()
        overdue = []
        for status in (OrderStatus.PENDING, OrderStatus.APPROVED):
            for order in await self.orders.find_by_status(status):
                if order.expected_delivery_date and order.expected_delivery_date < now:
                    overdue.append(order)
        return sorted(overdue, key=lambda o: o.expected_delivery_date)

    async def get_total_order_value(self,
                                    start: Optional[datetime] = None,
                                    end: Optional[datetime] = None) -> Decimal:
        """Sum of non-cancelled order totals created within [start, end]."""
        if start and end and start > end:
            raise ValidationError("Start date must not be after end date")
        total = Decimal("0")
        for status in (OrderStatus.PENDING, OrderStatus.APPROVED, OrderStatus.PROCESSED):
            for order in await self.orders.find_by_status(status):
                if start and order.created_date < start:
                    continue
                if end and order.created_date > end:
                    continue
                total += order.total_amount
        return total

    def generate_order_number(self) -> str:
        """PO-YYYYMMDD-XXXXXX"""
        date = datetime.utcnow().strftime("%Y%m%d")
        return f"{settings.ORDER_NUMBER_PREFIX}-{date}-{uuid.uuid4().hex[:6].upper()}"

    # ------------------------------------------------------------------
    # Stock materialization
    # ------------------------------------------------------------------

    async def _receive_items(self, order: PurchaseOrder):
        credited: List[PurchaseOrderItem] = []
        try:
            for item in order.unstocked_items:
                batch_id = await self.ledger.increase_stock(
                    item.product_id,
                    item.ordered_quantity,
                    order.receipt_reference(item),
                    batch_number=item.batch_number,
                    expiry_date=item.expiry_date,
                    supplier_id=order.supplier_id
                )
                credited.append(item)
                if not await self.orders.set_item_batch(order.order_id, item.item_id, batch_id):
                    raise InvalidStateTransition(f"Order {order.order_number} left Approved during processing")
                item.stocked_batch_id = batch_id
        except Exception as e:
            logger.error(f"Receiving {order.order_number} failed after {len(credited)} item(s): {e}")
            await self._release_items(order, credited)
            raise

    async def _release_items(self, order: PurchaseOrder, items: List[PurchaseOrderItem]):
        """
        Take back stock credited for `items`. The item marker is cleared
        before the receipt is reverted; if either step fails the ledger
        still holds the receipt, so a later retry will not credit it again.
        """
        for item in reversed(items):
            reference = order.receipt_reference(item)
            try:
                if order.status == OrderStatus.APPROVED:
                    await self.orders.set_item_batch(order.order_id, item.item_id, None)
                await self.ledger.revert_receipt(item.product_id, reference)
                item.stocked_batch_id = None
            except PersistenceFailure as e:
                logger.error(f"Could not release stock for {reference}: {e}")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load(self, order_id: str) -> PurchaseOrder:
        if not order_id:
            raise ValidationError("Order ID is required")
        order = await self.orders.find_by_id(order_id)
        if not order:
            raise ReferenceNotFound(f"Purchase order {order_id} not found")
        return order

    async def _require_product(self, product_id: str):
        if not await self.catalog.product_exists(product_id):
            raise ReferenceNotFound(f"Product {product_id} not found")

    @staticmethod
    def _require_actor(actor_id: str, label: str):
        if not actor_id or not str(actor_id).strip():
            raise ValidationError(f"{label} is required")

    @staticmethod
    def _coerce_item(item: ItemInput) -> OrderItemRequest:
        if isinstance(item, OrderItemRequest):
            return item
        try:
            return OrderItemRequest.model_validate(item)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid order item: {e.errors()[0]['msg']}")

    @staticmethod
    def _validate_item(item: OrderItemRequest):
        if not item.product_id or not item.product_id.strip():
            raise ValidationError("Product ID is required for all items")
        if item.quantity <= 0:
            raise ValidationError("Ordered quantity must be greater than zero")
        if item.unit_price <= 0:
            raise ValidationError("Unit price must be greater than zero")
        if not fits_decimal128(item.unit_price):
            raise ValidationError(f"Unit price {item.unit_price} has too many digits to store")

    @staticmethod
    def _build_item(item: OrderItemRequest) -> PurchaseOrderItem:
        return PurchaseOrderItem(
            item_id=uuid.uuid4().hex[:12],
            product_id=item.product_id,
            ordered_quantity=item.quantity,
            unit_price=item.unit_price,
            batch_number=item.batch_number,
            expiry_date=item.expiry_date
        ).recalculate()

    @staticmethod
    def _money(value: Any, label: str) -> Decimal:
        try:
            amount = value if isinstance(value, Decimal) else Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{label} is not a valid amount: {value!r}")
        if not amount.is_finite():
            raise ValidationError(f"{label} is not a valid amount: {value!r}")
        if not fits_decimal128(amount):
            raise ValidationError(f"{label} {amount} has too many digits to store")
        return amount

    @staticmethod
    def _require_storable(order: PurchaseOrder):
        amounts = [i.total_price for i in order.items]
        amounts += [order.total_amount, order.paid_amount, order.due_amount]
        if not all(fits_decimal128(a) for a in amounts):
            raise ValidationError(f"Order {order.order_number} totals have too many digits to store")

    @staticmethod
    def _totals(order: PurchaseOrder) -> Dict[str, Any]:
        return {
            "total_amount": order.total_amount,
            "due_amount": order.due_amount,
            "payment_status": order.payment_status
        }
