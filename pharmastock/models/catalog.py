from datetime import datetime
from typing import Optional
from pydantic import Field
from pharmastock.models.base import MongoModel

class Supplier(MongoModel):
    supplier_id: str = Field(..., description="Unique supplier ID")
    name: str
    contact_person: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

class Product(MongoModel):
    product_id: str = Field(..., description="Unique product ID")
    name: str
    generic_name: Optional[str] = None
    category: Optional[str] = None
    requires_prescription: bool = False
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
