from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import ConfigDict, Field
from pharmastock.models.base import MongoModel

class EventKind(str, Enum):
    ORDER_CREATED = "ORDER_CREATED"
    ITEM_ADDED = "ITEM_ADDED"
    ORDER_APPROVED = "ORDER_APPROVED"
    ORDER_PROCESSED = "ORDER_PROCESSED"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    PAYMENT_RECORDED = "PAYMENT_RECORDED"
    STOCK_ADJUSTED = "STOCK_ADJUSTED"

class AuditEvent(MongoModel):
    """
    Complete audit log entry.
    """
    event_id: str = Field(..., description="Unique event ID")
    event_kind: EventKind
    order_id: Optional[str] = None
    actor_id: str

    timestamp: datetime = Field(default_factory=datetime.utcnow)

    details: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict, description="e.g. {'batch_id': 'B-123'}")

    model_config = ConfigDict(json_schema_extra={
            "example": {
                "event_id": "EVT-123",
                "event_kind": "ORDER_APPROVED",
                "order_id": "ord_456",
                "actor_id": "pharmacist_1",
                "details": "Purchase order PO-20240101-A1B2C3 approved"
            }
        }
    )
