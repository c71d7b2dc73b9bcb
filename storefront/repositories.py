"""Motor-backed persistence for the catalog, carts and orders.

Carts and orders are read and written as whole documents; there is no
field-level atomic update, so concurrent writers to the same document are
last-writer-wins.
"""
import re
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Tuple
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel

from storefront.models import ProductDB, CartDB, OrderDB


def str_to_oid(id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(id)
    except (InvalidId, TypeError):
        return None

def to_document(model: BaseModel, exclude: Optional[set] = None) -> dict:
    """Dump a model for Mongo, converting Decimals to float recursively."""
    return _floatify(model.dict(by_alias=True, exclude=exclude))

def _floatify(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _floatify(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_floatify(v) for v in value]
    return value

def _with_str_id(doc: dict) -> dict:
    doc["_id"] = str(doc["_id"])
    return doc


class ProductRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.products

    async def find_product(self, product_id: str) -> Optional[ProductDB]:
        oid = str_to_oid(product_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid, "is_active": True})
        if not doc:
            return None
        return ProductDB(**_with_str_id(doc))

    async def list_products(
        self,
        skip: int,
        limit: int,
        category: Optional[str] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        search: Optional[str] = None,
    ) -> Tuple[List[ProductDB], int]:
        query = {"is_active": True}
        if category:
            query["category"] = category

        price_query = {}
        if min_price is not None:
            price_query["$gte"] = float(min_price)
        if max_price is not None:
            price_query["$lte"] = float(max_price)
        if price_query:
            query["price"] = price_query

        if search:
            pattern = re.escape(search)
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
            ]

        total = await self.collection.count_documents(query)
        cursor = self.collection.find(query).sort("created_at", -1).skip(skip).limit(limit)
        docs = await cursor.to_list(length=limit)
        return [ProductDB(**_with_str_id(doc)) for doc in docs], total

    async def insert_many(self, products: List[ProductDB]) -> int:
        if not products:
            return 0
        res = await self.collection.insert_many(
            [to_document(p, exclude={"id"}) for p in products]
        )
        return len(res.inserted_ids)


class CartRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.carts

    async def get_by_owner(self, user_id: str) -> Optional[CartDB]:
        doc = await self.collection.find_one({"user_id": user_id})
        if not doc:
            return None
        return CartDB(**_with_str_id(doc))

    async def save(self, cart: CartDB) -> CartDB:
        cart.updated_at = datetime.utcnow()
        await self.collection.replace_one(
            {"user_id": cart.user_id},
            to_document(cart, exclude={"id"}),
            upsert=True,
        )
        return cart


class OrderRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.orders

    async def create(self, order: OrderDB) -> OrderDB:
        res = await self.collection.insert_one(to_document(order, exclude={"id"}))
        order.id = str(res.inserted_id)
        return order

    async def get(self, order_id: str) -> Optional[OrderDB]:
        oid = str_to_oid(order_id)
        if oid is None:
            return None
        doc = await self.collection.find_one({"_id": oid})
        if not doc:
            return None
        return OrderDB(**_with_str_id(doc))

    async def find_by_payment_id(self, gateway_payment_id: str) -> Optional[OrderDB]:
        doc = await self.collection.find_one(
            {"payment_result.gateway_payment_id": gateway_payment_id}
        )
        if not doc:
            return None
        return OrderDB(**_with_str_id(doc))

    async def list_by_owner(self, user_id: str) -> List[OrderDB]:
        cursor = self.collection.find({"user_id": user_id}).sort("created_at", -1)
        return [OrderDB(**_with_str_id(doc)) async for doc in cursor]

    async def list_all(self) -> List[OrderDB]:
        cursor = self.collection.find({}).sort("created_at", -1)
        return [OrderDB(**_with_str_id(doc)) async for doc in cursor]

    async def save(self, order: OrderDB) -> OrderDB:
        order.updated_at = datetime.utcnow()
        await self.collection.replace_one(
            {"_id": ObjectId(order.id)},
            to_document(order, exclude={"id"}),
        )
        return order

    async def delete(self, order_id: str) -> bool:
        oid = str_to_oid(order_id)
        if oid is None:
            return False
        res = await self.collection.delete_one({"_id": oid})
        return res.deleted_count == 1
