import logging
from motor.motor_asyncio import AsyncIOMotorClient
from pharmastock.config import settings
from pharmastock.repositories.purchase_order import PurchaseOrderRepository
from pharmastock.repositories.batch import ProductBatchRepository
from pharmastock.repositories.catalog import CatalogRepository, ProductRepository, SupplierRepository
from pharmastock.repositories.audit import AuditLogger
from pharmastock.models.purchase_order import PurchaseOrder
from pharmastock.models.batch import ProductBatch
from pharmastock.models.catalog import Product, Supplier
from pharmastock.models.audit import AuditEvent
from pharmastock.services.stock_ledger import StockLedger
from pharmastock.workflow.engine import PurchaseOrderWorkflow

logger = logging.getLogger(__name__)

class Database:
    client: AsyncIOMotorClient = None

    # Repositories
    orders: PurchaseOrderRepository = None
    batches: ProductBatchRepository = None
    products: ProductRepository = None
    suppliers: SupplierRepository = None
    catalog: CatalogRepository = None
    audit: AuditLogger = None

    # Services wired over the repositories
    ledger: StockLedger = None
    workflow: PurchaseOrderWorkflow = None

    def connect(self):
        """Initialize database connection, repositories and services."""
        self.client = AsyncIOMotorClient(settings.MONGODB_URL)
        db = self.client[settings.DB_NAME]

        self.orders = PurchaseOrderRepository(db.purchase_orders, PurchaseOrder)
        self.batches = ProductBatchRepository(db.product_batches, ProductBatch)
        self.products = ProductRepository(db.products, Product)
        self.suppliers = SupplierRepository(db.suppliers, Supplier)
        self.catalog = CatalogRepository(self.products, self.suppliers)
        self.audit = AuditLogger(db.audit_log, AuditEvent)

        self.ledger = StockLedger(self.batches, audit=self.audit)
        self.workflow = PurchaseOrderWorkflow(self.orders, self.ledger, self.catalog, audit=self.audit)

        logger.info(f"Connected to MongoDB database {settings.DB_NAME}")

    def close(self):
        """Close database connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

db = Database()

async def get_db() -> Database:
    """Dependency for FastAPI."""
    return db
