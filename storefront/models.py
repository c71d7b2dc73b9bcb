from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel, Field
from bson import ObjectId


def new_line_id() -> str:
    return str(ObjectId())

class ProductDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    description: str = ""
    price: Decimal
    category: str = ""
    image_url: Optional[str] = None
    stock: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

class CartLineDB(BaseModel):
    id: str = Field(default_factory=new_line_id, alias="_id")
    product_id: str
    quantity: int = Field(..., ge=1)

    class Config:
        populate_by_name = True

class CartDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    items: List[CartLineDB] = []
    total_amount: Decimal = Decimal("0.00") # Derived, always recomputed
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

class OrderLineDB(BaseModel):
    product_id: str
    name: str
    price: Decimal # Unit price at checkout
    quantity: int
    image: Optional[str] = None

class ShippingAddressDB(BaseModel):
    full_name: str
    address: str
    city: str
    state: str
    postal_code: str
    country: str

class PaymentResultDB(BaseModel):
    gateway_payment_id: str
    status: str # completed, failed
    update_time: datetime
    email_address: Optional[str] = None
    session_id: Optional[str] = None
    signature: Optional[str] = None

class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    items: List[OrderLineDB]
    shipping_address: ShippingAddressDB
    total_price: Decimal
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    payment_result: Optional[PaymentResultDB] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True
