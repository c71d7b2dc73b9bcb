from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import pytest
from bson import ObjectId
from pydantic import SecretStr

from shared.security_config import limiter
from shared.utils import Identity
from storefront.cart import CartService
from storefront.gateway import PaymentGateway, PaymentSession
from storefront.models import CartDB, OrderDB, ProductDB
from storefront.orders import OrderService
from storefront.payments import PaymentService

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"

# Rate limits are keyed on the client address, which is shared by every TestClient request
limiter.enabled = False


class InMemoryProductRepository:
    def __init__(self):
        self.products: Dict[str, ProductDB] = {}

    def add(self, name: str, price: str, stock: int, **fields) -> ProductDB:
        product = ProductDB(_id=str(ObjectId()), name=name, price=Decimal(price), stock=stock, **fields)
        self.products[product.id] = product
        return product

    def set_price(self, product_id: str, price: str):
        self.products[product_id].price = Decimal(price)

    def set_stock(self, product_id: str, stock: int):
        self.products[product_id].stock = stock

    def remove(self, product_id: str):
        del self.products[product_id]

    async def find_product(self, product_id: str) -> Optional[ProductDB]:
        product = self.products.get(product_id)
        if product is None or not product.is_active:
            return None
        return product.copy(deep=True)

    async def list_products(self, skip, limit, category=None, min_price=None, max_price=None, search=None):
        matches = [p for p in self.products.values() if p.is_active]
        if category:
            matches = [p for p in matches if p.category == category]
        if min_price is not None:
            matches = [p for p in matches if p.price >= min_price]
        if max_price is not None:
            matches = [p for p in matches if p.price <= max_price]
        if search:
            matches = [p for p in matches if search.lower() in p.name.lower()]
        return matches[skip:skip + limit], len(matches)


class InMemoryCartRepository:
    """Stores whole cart documents, like the Mongo collection does."""

    def __init__(self):
        self.documents: Dict[str, dict] = {}
        self.saves = 0

    async def get_by_owner(self, user_id: str) -> Optional[CartDB]:
        doc = self.documents.get(user_id)
        return CartDB(**doc) if doc else None

    async def save(self, cart: CartDB) -> CartDB:
        cart.updated_at = datetime.utcnow()
        self.documents[cart.user_id] = cart.dict(by_alias=True)
        self.saves += 1
        return cart


class InMemoryOrderRepository:
    def __init__(self):
        self.documents: Dict[str, dict] = {}
        self._clock = datetime(2024, 1, 1)

    async def create(self, order: OrderDB) -> OrderDB:
        order.id = str(ObjectId())
        # Strictly increasing creation times keep "newest first" deterministic
        self._clock += timedelta(seconds=1)
        order.created_at = self._clock
        self.documents[order.id] = order.dict(by_alias=True)
        return order

    async def get(self, order_id: str) -> Optional[OrderDB]:
        doc = self.documents.get(order_id)
        return OrderDB(**doc) if doc else None

    async def find_by_payment_id(self, gateway_payment_id: str) -> Optional[OrderDB]:
        for doc in self.documents.values():
            result = doc.get("payment_result") or {}
            if result.get("gateway_payment_id") == gateway_payment_id:
                return OrderDB(**doc)
        return None

    async def list_by_owner(self, user_id: str) -> List[OrderDB]:
        return [o for o in await self.list_all() if o.user_id == user_id]

    async def list_all(self) -> List[OrderDB]:
        orders = [OrderDB(**doc) for doc in self.documents.values()]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def save(self, order: OrderDB) -> OrderDB:
        order.updated_at = datetime.utcnow()
        self.documents[order.id] = order.dict(by_alias=True)
        return order

    async def delete(self, order_id: str) -> bool:
        return self.documents.pop(order_id, None) is not None


class StubGateway(PaymentGateway):
    def __init__(self):
        self.calls = []

    async def create_session(self, amount_minor_units: int, currency: str, receipt: str) -> PaymentSession:
        self.calls.append({"amount": amount_minor_units, "currency": currency, "receipt": receipt})
        return PaymentSession(session_id=f"order_{len(self.calls)}", amount=amount_minor_units, currency=currency)


@pytest.fixture
def alice():
    return Identity(user_id="user-alice", email="alice@example.com")

@pytest.fixture
def bob():
    return Identity(user_id="user-bob", email="bob@example.com")

@pytest.fixture
def admin():
    return Identity(user_id="user-admin", is_admin=True, email="admin@example.com")

@pytest.fixture
def catalog():
    return InMemoryProductRepository()

@pytest.fixture
def cart_repo():
    return InMemoryCartRepository()

@pytest.fixture
def order_repo():
    return InMemoryOrderRepository()

@pytest.fixture
def gateway():
    return StubGateway()

@pytest.fixture
def cart_service(cart_repo, catalog):
    return CartService(cart_repo, catalog)

@pytest.fixture
def order_service(order_repo):
    return OrderService(order_repo)

@pytest.fixture
def payment_service(order_repo, gateway):
    return PaymentService(
        orders=order_repo,
        gateway=gateway,
        key_id="rzp_test_key",
        key_secret=SecretStr(KEY_SECRET),
        webhook_secret=SecretStr(WEBHOOK_SECRET),
        currency="INR",
    )

@pytest.fixture
def shipping_address():
    return {
        "full_name": "Alice Doe",
        "address": "12 Market Road",
        "city": "Pune",
        "state": "MH",
        "postal_code": "411001",
        "country": "India",
    }
