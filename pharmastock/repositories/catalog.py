from pharmastock.repositories.base import BaseRepository, persistence_guard
from pharmastock.models.catalog import Product, Supplier

class SupplierRepository(BaseRepository[Supplier]):
    @persistence_guard
    async def supplier_exists(self, supplier_id: str) -> bool:
        return await self.collection.count_documents({"supplier_id": supplier_id}, limit=1) > 0

class ProductRepository(BaseRepository[Product]):
    @persistence_guard
    async def product_exists(self, product_id: str) -> bool:
        return await self.collection.count_documents({"product_id": product_id}, limit=1) > 0

class CatalogRepository:
    """Read-only product/supplier lookups used to validate order references."""

    def __init__(self, products: ProductRepository, suppliers: SupplierRepository):
        self.products = products
        self.suppliers = suppliers

    async def product_exists(self, product_id: str) -> bool:
        return await self.products.product_exists(product_id)

    async def supplier_exists(self, supplier_id: str) -> bool:
        return await self.suppliers.supplier_exists(supplier_id)
