from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from shared.security_config import sanitize_input

# Catalog
class ProductResponse(BaseModel):
    id: str
    name: str
    description: str = ""
    price: Decimal
    category: str = ""
    image_url: Optional[str] = None
    stock: int
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

class ProductListResponse(BaseModel):
    products: List[ProductResponse]
    total: int
    page: int
    limit: int

# Cart
class CartItemAdd(BaseModel):
    product_id: str
    quantity: int # Range is enforced by the cart engine

class CartItemUpdate(BaseModel):
    quantity: int

class CartItemResponse(BaseModel):
    id: str
    product_id: str
    quantity: int
    name: str
    price: Decimal # Current catalog price
    image_url: Optional[str] = None
    stock: int

class CartResponse(BaseModel):
    user_id: str
    items: List[CartItemResponse]
    total_amount: Decimal
    updated_at: datetime

# Orders
class OrderItemIn(BaseModel):
    product_id: str
    name: str
    price: Decimal
    quantity: int
    image: Optional[str] = None

    @field_validator('name')
    def sanitize_name(cls, v):
        return sanitize_input(v)

class ShippingAddressIn(BaseModel):
    full_name: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None

    @field_validator('full_name', 'address', 'city', 'state', 'postal_code', 'country')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

class OrderCreate(BaseModel):
    order_items: List[OrderItemIn] = []
    shipping_address: ShippingAddressIn = Field(default_factory=ShippingAddressIn)
    total_price: Decimal = Decimal("0.00") # Claimed by the client

class OrderItemResponse(BaseModel):
    product_id: str
    name: str
    price: Decimal
    quantity: int
    image: Optional[str] = None

class ShippingAddressResponse(BaseModel):
    full_name: str
    address: str
    city: str
    state: str
    postal_code: str
    country: str

class PaymentResultResponse(BaseModel):
    gateway_payment_id: str
    status: str
    update_time: datetime
    email_address: Optional[str] = None
    session_id: Optional[str] = None

class OrderResponse(BaseModel):
    id: str
    user_id: str
    items: List[OrderItemResponse]
    shipping_address: ShippingAddressResponse
    total_price: Decimal
    is_paid: bool
    paid_at: Optional[datetime] = None
    payment_result: Optional[PaymentResultResponse] = None
    is_delivered: bool
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

class SalesSummaryResponse(BaseModel):
    total_orders: int
    paid_orders: int
    delivered_orders: int
    total_revenue: Decimal

# Payments
class PaymentIntentCreate(BaseModel):
    amount: Optional[Decimal] = None
    receipt: Optional[str] = None

class PaymentIntentResponse(BaseModel):
    id: str
    amount: int # Minor units
    currency: str

class PaymentVerify(BaseModel):
    order_id: str
    gateway_order_id: str = ""
    gateway_payment_id: str = ""
    gateway_signature: str = ""

class PaymentKeyResponse(BaseModel):
    key: str
