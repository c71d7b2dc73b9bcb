from fastapi import FastAPI, Depends, HTTPException, status, Query, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import uvicorn

from shared.utils import (
    get_db_client, settings, get_identity, Identity, SuccessResponse, ErrorResponse,
    AppException, NotFoundException, HealthResponse
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from storefront.schemas import (
    ProductResponse, ProductListResponse,
    CartItemAdd, CartItemUpdate, CartResponse,
    OrderCreate, OrderResponse, SalesSummaryResponse,
    PaymentIntentCreate, PaymentIntentResponse, PaymentVerify, PaymentKeyResponse
)
from storefront.repositories import ProductRepository, CartRepository, OrderRepository
from storefront.cart import CartService
from storefront.orders import OrderService
from storefront.payments import PaymentService
from storefront.gateway import RazorpayGateway

SERVICE_NAME = "storefront"

# Setup Logging
logger = setup_logging(SERVICE_NAME, settings.LOG_LEVEL)

app = FastAPI(title="Storefront Service")

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name=SERVICE_NAME)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup_db_client():
    app.mongodb_client = get_db_client()
    app.mongodb = app.mongodb_client[settings.MONGO_DB]
    # Indexes
    await app.mongodb.carts.create_index("user_id", unique=True)
    await app.mongodb.orders.create_index("user_id")
    await app.mongodb.orders.create_index("payment_result.gateway_payment_id")
    await app.mongodb.products.create_index("category")

@app.on_event("shutdown")
async def shutdown_db_client():
    app.mongodb_client.close()

@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.detail).dict(),
        headers=exc.headers,
    )

# --- Dependencies ---
async def current_user(request: Request, identity: Identity = Depends(get_identity)) -> Identity:
    request.state.user_id = identity.user_id
    return identity

def get_product_repository(request: Request) -> ProductRepository:
    return ProductRepository(request.app.mongodb)

def get_cart_service(request: Request) -> CartService:
    return CartService(CartRepository(request.app.mongodb), ProductRepository(request.app.mongodb))

def get_order_service(request: Request) -> OrderService:
    return OrderService(OrderRepository(request.app.mongodb))

def get_payment_service(request: Request) -> PaymentService:
    gateway = RazorpayGateway(
        key_id=settings.PAYMENT_KEY_ID,
        key_secret=settings.PAYMENT_KEY_SECRET,
        base_url=settings.PAYMENT_API_URL,
        timeout=settings.PAYMENT_TIMEOUT_SECONDS,
    )
    return PaymentService(
        orders=OrderRepository(request.app.mongodb),
        gateway=gateway,
        key_id=settings.PAYMENT_KEY_ID,
        key_secret=settings.PAYMENT_KEY_SECRET,
        webhook_secret=settings.PAYMENT_WEBHOOK_SECRET,
        currency=settings.PAYMENT_CURRENCY,
    )

def to_order_response(order) -> OrderResponse:
    return OrderResponse(**order.dict())

# --- Endpoints ---

# Catalog
@app.get("/products", response_model=SuccessResponse[ProductListResponse])
@limiter.limit("60/minute")
async def list_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    search: Optional[str] = None,
    products: ProductRepository = Depends(get_product_repository),
):
    skip = (page - 1) * limit
    docs, total = await products.list_products(skip, limit, category, min_price, max_price, search)
    return SuccessResponse(data=ProductListResponse(
        products=[ProductResponse(**p.dict()) for p in docs],
        total=total,
        page=page,
        limit=limit
    ))

@app.get("/products/{product_id}", response_model=SuccessResponse[ProductResponse])
@limiter.limit("60/minute")
async def get_product(product_id: str, request: Request, products: ProductRepository = Depends(get_product_repository)):
    product = await products.find_product(product_id)
    if not product:
        raise NotFoundException("Product not found")
    return SuccessResponse(data=ProductResponse(**product.dict()))

# Cart
@app.get("/cart", response_model=SuccessResponse[CartResponse])
@limiter.limit("60/minute")
async def get_cart(
    request: Request,
    user: Identity = Depends(current_user),
    carts: CartService = Depends(get_cart_service),
):
    return SuccessResponse(data=await carts.get_or_create_cart(user))

@app.post("/cart/items", response_model=SuccessResponse[CartResponse])
@limiter.limit("60/minute")
async def add_to_cart(
    item: CartItemAdd,
    request: Request,
    user: Identity = Depends(current_user),
    carts: CartService = Depends(get_cart_service),
):
    cart = await carts.add_item(user, item.product_id, item.quantity)
    return SuccessResponse(data=cart, message="Item added to cart")

@app.put("/cart/items/{line_id}", response_model=SuccessResponse[CartResponse])
async def update_cart_item(
    line_id: str,
    update: CartItemUpdate,
    user: Identity = Depends(current_user),
    carts: CartService = Depends(get_cart_service),
):
    return SuccessResponse(data=await carts.update_item_quantity(user, line_id, update.quantity))

@app.delete("/cart/items/{line_id}", response_model=SuccessResponse[CartResponse])
async def remove_cart_item(
    line_id: str,
    user: Identity = Depends(current_user),
    carts: CartService = Depends(get_cart_service),
):
    return SuccessResponse(data=await carts.remove_item(user, line_id))

# Orders
@app.post("/orders", response_model=SuccessResponse[OrderResponse], status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    user: Identity = Depends(current_user),
    orders: OrderService = Depends(get_order_service),
):
    order = await orders.create_order(user, payload.order_items, payload.shipping_address, payload.total_price)
    return SuccessResponse(data=to_order_response(order), message="Order created successfully")

@app.get("/orders/mine", response_model=SuccessResponse[List[OrderResponse]])
async def list_my_orders(user: Identity = Depends(current_user), orders: OrderService = Depends(get_order_service)):
    return SuccessResponse(data=[to_order_response(o) for o in await orders.list_my_orders(user)])

@app.get("/orders", response_model=SuccessResponse[List[OrderResponse]])
async def list_orders(user: Identity = Depends(current_user), orders: OrderService = Depends(get_order_service)):
    return SuccessResponse(data=[to_order_response(o) for o in await orders.list_orders(user)])

@app.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(order_id: str, user: Identity = Depends(current_user), orders: OrderService = Depends(get_order_service)):
    return SuccessResponse(data=to_order_response(await orders.get_order(user, order_id)))

@app.delete("/orders/{order_id}", response_model=SuccessResponse[dict])
async def delete_order(order_id: str, user: Identity = Depends(current_user), orders: OrderService = Depends(get_order_service)):
    await orders.delete_order(user, order_id)
    return SuccessResponse(data={"id": order_id}, message="Order removed")

@app.put("/orders/{order_id}/deliver", response_model=SuccessResponse[OrderResponse])
async def mark_order_delivered(order_id: str, user: Identity = Depends(current_user), orders: OrderService = Depends(get_order_service)):
    order = await orders.mark_delivered(user, order_id)
    return SuccessResponse(data=to_order_response(order), message="Order marked as delivered")

@app.get("/admin/summary", response_model=SuccessResponse[SalesSummaryResponse])
async def sales_summary(user: Identity = Depends(current_user), orders: OrderService = Depends(get_order_service)):
    return SuccessResponse(data=await orders.sales_summary(user))

# Payments
@app.post("/payment/create-order", response_model=SuccessResponse[PaymentIntentResponse])
@limiter.limit("10/minute")
async def create_payment_order(
    payload: PaymentIntentCreate,
    request: Request,
    user: Identity = Depends(current_user),
    payments: PaymentService = Depends(get_payment_service),
):
    intent = await payments.create_payment_intent(payload.amount, payload.receipt)
    return SuccessResponse(data=intent)

@app.post("/payment/verify", response_model=SuccessResponse[OrderResponse])
@limiter.limit("10/minute")
async def verify_payment(
    payload: PaymentVerify,
    request: Request,
    user: Identity = Depends(current_user),
    payments: PaymentService = Depends(get_payment_service),
):
    order = await payments.verify_payment(
        user,
        payload.order_id,
        payload.gateway_order_id,
        payload.gateway_payment_id,
        payload.gateway_signature,
    )
    return SuccessResponse(data=to_order_response(order), message="Payment verified")

@app.post("/payment/webhook")
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    payments: PaymentService = Depends(get_payment_service),
):
    raw_body = await request.body()
    return await payments.handle_webhook(raw_body, x_razorpay_signature)

@app.get("/payment/key", response_model=SuccessResponse[PaymentKeyResponse])
async def get_payment_key(user: Identity = Depends(current_user), payments: PaymentService = Depends(get_payment_service)):
    return SuccessResponse(data=PaymentKeyResponse(key=payments.get_key()))

@app.get("/health", response_model=HealthResponse)
async def health_check():
    db_status = "unhealthy"
    try:
        await app.mongodb_client.admin.command('ping')
        db_status = "connected"
    except Exception:
        db_status = "disconnected"

    if db_status != "connected":
        logger.error(f"Health Check Failed: DB={db_status}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service=SERVICE_NAME,
        status="healthy",
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status,
        dependencies={"payment-gateway": "configured" if settings.PAYMENT_KEY_ID else "unconfigured"}
    )

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
