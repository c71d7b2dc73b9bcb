"""Cart engine: one live cart per user, always priced against the catalog.

The cart total is derived state. Every mutation re-reads the current price of
each line's product and recomputes the total with compute_total; nothing is
patched incrementally and no price is frozen at add-time.

Mutations are read-then-write on the whole cart document with no locking, so
two concurrent mutations by the same user are last-writer-wins. Stock checks
are check-then-act without reservation.
"""
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from shared.utils import Identity, NotFoundException, OutOfStockException, ValidationException
from storefront.models import CartDB, CartLineDB, ProductDB
from storefront.repositories import CartRepository, ProductRepository
from storefront.schemas import CartItemResponse, CartResponse

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def compute_total(lines: Iterable[CartLineDB], prices: Mapping[str, Decimal]) -> Decimal:
    total = Decimal("0")
    for line in lines:
        total += Decimal(str(prices[line.product_id])) * line.quantity
    return total.quantize(CENT)


class CartService:
    def __init__(self, carts: CartRepository, catalog: ProductRepository):
        self.carts = carts
        self.catalog = catalog

    async def _resolve(self, lines: List[CartLineDB]) -> Tuple[List[CartLineDB], Dict[str, ProductDB]]:
        """Look up each line's product; drop lines whose product is gone."""
        products: Dict[str, ProductDB] = {}
        kept = []
        for line in lines:
            product = products.get(line.product_id) or await self.catalog.find_product(line.product_id)
            if product is None:
                logger.info("Dropping cart line for missing product", extra={"line_id": line.id, "product_id": line.product_id})
                continue
            products[line.product_id] = product
            kept.append(line)
        return kept, products

    async def _reprice_and_save(self, cart: CartDB) -> CartResponse:
        cart.items, products = await self._resolve(cart.items)
        cart.total_amount = compute_total(cart.items, {pid: p.price for pid, p in products.items()})
        await self.carts.save(cart)
        return self._view(cart, products)

    def _view(self, cart: CartDB, products: Mapping[str, ProductDB]) -> CartResponse:
        items = []
        for line in cart.items:
            product = products[line.product_id]
            items.append(CartItemResponse(
                id=line.id,
                product_id=line.product_id,
                quantity=line.quantity,
                name=product.name,
                price=product.price,
                image_url=product.image_url,
                stock=product.stock,
            ))
        return CartResponse(
            user_id=cart.user_id,
            items=items,
            total_amount=cart.total_amount,
            updated_at=cart.updated_at,
        )

    async def _load(self, user: Identity) -> Optional[CartDB]:
        return await self.carts.get_by_owner(user.user_id)

    async def get_or_create_cart(self, user: Identity) -> CartResponse:
        cart = await self._load(user)
        if cart is None:
            cart = CartDB(user_id=user.user_id, items=[], total_amount=Decimal("0.00"))
            await self.carts.save(cart)
            logger.info("Created empty cart", extra={"user_id": user.user_id})
            return self._view(cart, {})

        kept, products = await self._resolve(cart.items)
        total = compute_total(kept, {pid: p.price for pid, p in products.items()})
        if len(kept) != len(cart.items) or total != cart.total_amount:
            cart.items = kept
            cart.total_amount = total
            await self.carts.save(cart)
        return self._view(cart, products)

    async def add_item(self, user: Identity, product_id: str, quantity: int) -> CartResponse:
        if quantity is None or quantity < 1:
            raise ValidationException("Quantity must be at least 1")
        if not product_id:
            raise ValidationException("Product ID is required")

        product = await self.catalog.find_product(product_id)
        if product is None:
            raise ValidationException(f"Product {product_id} does not exist")

        cart = await self._load(user)
        if cart is None:
            cart = CartDB(user_id=user.user_id, items=[])

        existing = next((line for line in cart.items if line.product_id == product_id), None)
        requested = quantity + (existing.quantity if existing else 0)
        if requested > product.stock:
            raise OutOfStockException(
                f"Requested {requested} of {product.name} but only {product.stock} in stock"
            )

        if existing:
            existing.quantity = requested
        else:
            cart.items.append(CartLineDB(product_id=product_id, quantity=quantity))

        logger.info("Added item to cart", extra={"user_id": user.user_id, "product_id": product_id})
        return await self._reprice_and_save(cart)

    async def update_item_quantity(self, user: Identity, line_id: str, quantity: int) -> CartResponse:
        if quantity is None or quantity < 1:
            raise ValidationException("Quantity must be at least 1")

        cart = await self._load(user)
        if cart is None:
            raise NotFoundException("Cart not found")

        line = next((item for item in cart.items if item.id == line_id), None)
        if line is None:
            raise NotFoundException("Item not found in cart")

        product = await self.catalog.find_product(line.product_id)
        stock = product.stock if product else 0
        if quantity > stock:
            raise OutOfStockException(f"Only {stock} in stock")

        line.quantity = quantity
        logger.info("Updated cart line", extra={"user_id": user.user_id, "line_id": line_id})
        return await self._reprice_and_save(cart)

    async def remove_item(self, user: Identity, line_id: str) -> CartResponse:
        cart = await self._load(user)
        if cart is None:
            raise NotFoundException("Cart not found")

        # Removing an absent line is a no-op
        cart.items = [item for item in cart.items if item.id != line_id]
        return await self._reprice_and_save(cart)
