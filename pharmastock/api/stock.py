from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from pharmastock.config import settings
from pharmastock.database import db
from pharmastock.models.batch import AdjustmentType, ExpiryAlert, ProductBatch, StockAdjustment

router = APIRouter(prefix="/api/stock", tags=["Stock"])

class OnHandResponse(BaseModel):
    product_id: str
    on_hand: int

class DecreaseRequest(BaseModel):
    quantity: int

class AdjustRequest(BaseModel):
    adjustment_type: AdjustmentType
    quantity: int
    reason: str
    actor_id: str


@router.get("/alerts/expiry", response_model=List[ExpiryAlert])
async def expiry_alerts():
    return await db.ledger.get_expiry_alerts()

@router.get("/alerts/low-stock", response_model=List[ProductBatch])
async def low_stock(threshold: Optional[int] = Query(None, ge=0)):
    return await db.ledger.get_low_stock_batches(
        settings.LOW_STOCK_THRESHOLD if threshold is None else threshold
    )

@router.post("/batches/{batch_id}/adjust", response_model=StockAdjustment)
async def adjust_batch(batch_id: str, request: AdjustRequest):
    return await db.ledger.adjust_batch(
        batch_id,
        request.adjustment_type,
        request.quantity,
        request.reason,
        request.actor_id
    )

@router.get("/{product_id}", response_model=OnHandResponse)
async def on_hand(product_id: str):
    return OnHandResponse(product_id=product_id, on_hand=await db.ledger.get_on_hand(product_id))

@router.get("/{product_id}/batches", response_model=List[ProductBatch])
async def list_batches(product_id: str):
    return await db.ledger.get_batches(product_id)

@router.post("/{product_id}/decrease", response_model=OnHandResponse)
async def decrease_stock(product_id: str, request: DecreaseRequest):
    await db.ledger.decrease_stock(product_id, request.quantity)
    return OnHandResponse(product_id=product_id, on_hand=await db.ledger.get_on_hand(product_id))
