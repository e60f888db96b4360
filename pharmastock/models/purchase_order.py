from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field
from pharmastock.models.base import MongoModel, Money

class OrderStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    PROCESSED = "Processed"
    CANCELLED = "Cancelled"

class PaymentStatus(str, Enum):
    PENDING = "Pending"
    PARTIAL = "Partial"
    PAID = "Paid"

class OrderItemRequest(BaseModel):
    """Caller-supplied line item, validated by the workflow engine."""
    product_id: str = ""
    quantity: int = 0
    unit_price: Decimal = Decimal("0")
    batch_number: Optional[str] = None
    expiry_date: Optional[datetime] = None

class PurchaseOrderItem(BaseModel):
    """A single product line on a purchase order."""
    item_id: str
    product_id: str
    ordered_quantity: int
    unit_price: Money
    total_price: Money = Decimal("0")

    batch_number: Optional[str] = None
    expiry_date: Optional[datetime] = None

    # Batch credited when the order was processed
    stocked_batch_id: Optional[str] = None

    def recalculate(self) -> "PurchaseOrderItem":
        self.total_price = self.unit_price * self.ordered_quantity
        return self

    @property
    def is_stocked(self) -> bool:
        return self.stocked_batch_id is not None

class PurchaseOrder(MongoModel):
    """
    Purchase order document. Status changes only through the workflow engine.
    """
    order_id: str = Field(..., description="Unique order ID")
    order_number: str = Field(..., description="Human readable PO number")
    supplier_id: str

    status: OrderStatus = Field(default=OrderStatus.PENDING)

    items: List[PurchaseOrderItem] = Field(default_factory=list)

    total_amount: Money = Decimal("0")
    paid_amount: Money = Decimal("0")
    due_amount: Money = Decimal("0")
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING)

    expected_delivery_date: Optional[datetime] = None
    notes: Optional[str] = None

    # Audit trail
    created_by: str
    created_date: datetime = Field(default_factory=datetime.utcnow)
    approved_by: Optional[str] = None
    approved_date: Optional[datetime] = None
    processed_by: Optional[str] = None
    processed_date: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancelled_date: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    # Optimistic lock counter, bumped by every store write
    version: int = 0

    def recalculate_totals(self) -> "PurchaseOrder":
        """Recompute item totals, order total, due amount and payment status."""
        for item in self.items:
            item.recalculate()
        self.total_amount = sum((item.total_price for item in self.items), Decimal("0"))
        self.due_amount = self.total_amount - self.paid_amount
        if self.paid_amount <= 0:
            self.payment_status = PaymentStatus.PENDING
        elif self.due_amount > 0:
            self.payment_status = PaymentStatus.PARTIAL
        else:
            self.payment_status = PaymentStatus.PAID
        return self

    def get_item(self, item_id: str) -> Optional[PurchaseOrderItem]:
        return next((i for i in self.items if i.item_id == item_id), None)

    def receipt_reference(self, item: PurchaseOrderItem) -> str:
        """Ledger source reference for one item of this order."""
        return f"{self.order_id}:{item.item_id}"

    @property
    def unstocked_items(self) -> List[PurchaseOrderItem]:
        return [i for i in self.items if not i.is_stocked]
