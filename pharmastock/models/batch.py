from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field
from pharmastock.models.base import MongoModel

class StockReceipt(BaseModel):
    """One referenced stock increase applied to a batch."""
    reference: str
    quantity: int
    received_at: datetime = Field(default_factory=datetime.utcnow)

class ProductBatch(MongoModel):
    """
    On-hand stock of one product lot. Only the stock ledger writes quantity.
    """
    batch_id: str = Field(..., description="Unique batch ID")
    product_id: str
    supplier_id: Optional[str] = None
    batch_number: Optional[str] = None

    expiry_date: datetime
    quantity: int = Field(0, ge=0)
    received_date: datetime = Field(default_factory=datetime.utcnow)

    receipts: List[StockReceipt] = Field(default_factory=list)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expiry_date <= (now or datetime.utcnow())

    def receipt_for(self, reference: str) -> Optional[StockReceipt]:
        return next((r for r in self.receipts if r.reference == reference), None)

class AdjustmentType(str, Enum):
    INCREASE = "Increase"
    DECREASE = "Decrease"
    CORRECTION = "Correction"

class StockAdjustment(BaseModel):
    """Result of a manual correction to a single batch."""
    adjustment_id: str
    batch_id: str
    adjustment_type: AdjustmentType
    adjusted_quantity: int
    previous_quantity: int
    new_quantity: int
    reason: str
    actor_id: str
    adjustment_date: datetime = Field(default_factory=datetime.utcnow)

    @property
    def quantity_difference(self) -> int:
        return self.new_quantity - self.previous_quantity

class AlertLevel(str, Enum):
    CRITICAL = "Critical"
    WARNING = "Warning"
    INFO = "Info"

class ExpiryAlert(BaseModel):
    batch_id: str
    product_id: str
    batch_number: Optional[str] = None
    expiry_date: datetime
    quantity: int
    days_until_expiry: int
    alert_level: AlertLevel
