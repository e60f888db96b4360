from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from pharmastock.database import db
from pharmastock.models.audit import AuditEvent
from pharmastock.models.purchase_order import OrderItemRequest, OrderStatus, PurchaseOrder

router = APIRouter(prefix="/api/purchase-orders", tags=["Purchase Orders"])

# Request Models
class CreateOrderRequest(BaseModel):
    supplier_id: str
    created_by: str
    items: List[OrderItemRequest] = Field(default_factory=list)
    paid_amount: Decimal = Decimal("0")
    expected_delivery_date: Optional[datetime] = None
    notes: Optional[str] = None

class AddItemRequest(OrderItemRequest):
    actor_id: Optional[str] = None

class ActorRequest(BaseModel):
    actor_id: str

class CancelRequest(BaseModel):
    reason: str
    actor_id: Optional[str] = None

class PaymentRequest(BaseModel):
    amount: Decimal
    actor_id: str

class OrderValueResponse(BaseModel):
    total_value: Decimal
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@router.post("", response_model=PurchaseOrder, status_code=201)
async def create_order(request: CreateOrderRequest):
    return await db.workflow.create_order(
        request.supplier_id,
        request.items,
        request.created_by,
        paid_amount=request.paid_amount,
        expected_delivery_date=request.expected_delivery_date,
        notes=request.notes
    )

@router.get("", response_model=List[PurchaseOrder])
async def list_orders(
    supplier_id: Optional[str] = None,
    status: Optional[OrderStatus] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None
):
    """Orders matching every filter given; all orders when none is."""
    if supplier_id:
        orders = await db.workflow.get_orders_by_supplier(supplier_id)
    elif status:
        orders = await db.workflow.get_orders_by_status(status)
    elif start and end:
        orders = await db.workflow.get_orders_by_date_range(start, end)
    else:
        orders = await db.workflow.get_all_orders()

    # Remaining filters narrow the first one
    if status:
        orders = [o for o in orders if o.status == status]
    if start:
        orders = [o for o in orders if o.created_date >= start]
    if end:
        orders = [o for o in orders if o.created_date <= end]
    return orders

@router.get("/overdue", response_model=List[PurchaseOrder])
async def list_overdue_orders():
    return await db.workflow.get_overdue_orders()

@router.get("/total-value", response_model=OrderValueResponse)
async def total_order_value(start: Optional[datetime] = Query(None), end: Optional[datetime] = Query(None)):
    total = await db.workflow.get_total_order_value(start, end)
    return OrderValueResponse(total_value=total, start=start, end=end)

@router.get("/{order_id}", response_model=PurchaseOrder)
async def get_order(order_id: str):
    return await db.workflow.get_order(order_id)

@router.get("/{order_id}/history", response_model=List[AuditEvent])
async def get_order_history(order_id: str):
    """Audit trail of one order, oldest event first."""
    await db.workflow.get_order(order_id)
    return await db.audit.get_for_order(order_id)

@router.post("/{order_id}/items", response_model=PurchaseOrder)
async def add_item(order_id: str, request: AddItemRequest):
    return await db.workflow.add_item(
        order_id,
        request.product_id,
        request.quantity,
        request.unit_price,
        batch_number=request.batch_number,
        expiry_date=request.expiry_date,
        actor_id=request.actor_id
    )

@router.post("/{order_id}/approve", response_model=PurchaseOrder)
async def approve_order(order_id: str, request: ActorRequest):
    if not await db.workflow.approve_order(order_id, request.actor_id):
        raise HTTPException(status_code=409, detail="Order cannot be approved in its current status")
    return await db.workflow.get_order(order_id)

@router.post("/{order_id}/process", response_model=PurchaseOrder)
async def process_order(order_id: str, request: ActorRequest):
    if not await db.workflow.process_order(order_id, request.actor_id):
        raise HTTPException(status_code=409, detail="Order cannot be processed in its current status")
    return await db.workflow.get_order(order_id)

@router.post("/{order_id}/cancel", response_model=PurchaseOrder)
async def cancel_order(order_id: str, request: CancelRequest):
    if not request.reason.strip():
        raise HTTPException(status_code=400, detail="Cancellation reason is required")
    if not await db.workflow.cancel_order(order_id, request.reason, request.actor_id):
        raise HTTPException(status_code=409, detail="Order cannot be cancelled in its current status")
    return await db.workflow.get_order(order_id)

@router.post("/{order_id}/payments", response_model=PurchaseOrder)
async def record_payment(order_id: str, request: PaymentRequest):
    return await db.workflow.record_payment(order_id, request.amount, request.actor_id)
