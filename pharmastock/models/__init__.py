from pharmastock.models.base import MongoModel, Money
from pharmastock.models.purchase_order import PurchaseOrder, PurchaseOrderItem, OrderItemRequest, OrderStatus, PaymentStatus
from pharmastock.models.batch import ProductBatch, StockReceipt, StockAdjustment, AdjustmentType, ExpiryAlert, AlertLevel
from pharmastock.models.audit import AuditEvent, EventKind
from pharmastock.models.catalog import Product, Supplier
