"""Order reconciliation: cart checkout into frozen order snapshots."""
import logging
from datetime import datetime
from decimal import Decimal
from typing import List

from shared.utils import (
    Identity, ValidationException, NotFoundException, ForbiddenException, ConflictException
)
from storefront.models import OrderDB, OrderLineDB, ShippingAddressDB
from storefront.repositories import OrderRepository
from storefront.schemas import OrderItemIn, ShippingAddressIn, SalesSummaryResponse

logger = logging.getLogger(__name__)

REQUIRED_ADDRESS_FIELDS = ("full_name", "address", "city", "state", "postal_code", "country")


class OrderService:
    def __init__(self, orders: OrderRepository):
        self.orders = orders

    async def create_order(
        self,
        user: Identity,
        order_items: List[OrderItemIn],
        shipping_address: ShippingAddressIn,
        total_price: Decimal,
    ) -> OrderDB:
        """
        Persist an unpaid order from the caller's own cart view.

        Line names and prices are taken as supplied; they are not re-read from
        the catalog, and the claimed total is not reconciled against them.
        """
        if not order_items:
            raise ValidationException("No order items")

        for item in order_items:
            if item.quantity < 1:
                raise ValidationException(f"Invalid quantity for {item.name}")
            if item.price < 0:
                raise ValidationException(f"Invalid price for {item.name}")

        if shipping_address is None:
            raise ValidationException("Shipping address is required")
        missing = [f for f in REQUIRED_ADDRESS_FIELDS if not (getattr(shipping_address, f) or "").strip()]
        if missing:
            raise ValidationException(f"Shipping address is missing: {', '.join(missing)}")

        order = OrderDB(
            user_id=user.user_id,
            items=[OrderLineDB(**item.dict()) for item in order_items],
            shipping_address=ShippingAddressDB(**shipping_address.dict()),
            total_price=total_price if total_price is not None else Decimal("0.00"),
        )
        created = await self.orders.create(order)
        logger.info("Order created", extra={"user_id": user.user_id, "order_id": created.id})
        return created

    async def _get_existing(self, order_id: str) -> OrderDB:
        order = await self.orders.get(order_id)
        if order is None:
            raise NotFoundException("Order not found")
        return order

    async def get_order(self, user: Identity, order_id: str) -> OrderDB:
        order = await self._get_existing(order_id)
        if order.user_id != user.user_id and not user.is_admin:
            raise ForbiddenException("Not authorized to view this order")
        return order

    async def list_my_orders(self, user: Identity) -> List[OrderDB]:
        return await self.orders.list_by_owner(user.user_id)

    async def list_orders(self, requester: Identity) -> List[OrderDB]:
        if not requester.is_admin:
            raise ForbiddenException("Admin access required")
        return await self.orders.list_all()

    async def sales_summary(self, requester: Identity) -> SalesSummaryResponse:
        if not requester.is_admin:
            raise ForbiddenException("Admin access required")
        orders = await self.orders.list_all()
        paid = [o for o in orders if o.is_paid]
        return SalesSummaryResponse(
            total_orders=len(orders),
            paid_orders=len(paid),
            delivered_orders=sum(1 for o in orders if o.is_delivered),
            total_revenue=sum((Decimal(str(o.total_price)) for o in paid), Decimal("0.00")),
        )

    async def mark_delivered(self, requester: Identity, order_id: str) -> OrderDB:
        if not requester.is_admin:
            raise ForbiddenException("Admin access required")
        order = await self._get_existing(order_id)
        if order.is_delivered:
            raise ConflictException("Order is already delivered")

        order.is_delivered = True
        order.delivered_at = datetime.utcnow()
        await self.orders.save(order)
        logger.info("Order delivered", extra={"order_id": order_id})
        return order

    async def delete_order(self, requester: Identity, order_id: str) -> None:
        order = await self._get_existing(order_id)
        if order.user_id != requester.user_id and not requester.is_admin:
            raise ForbiddenException("Not authorized to delete this order")
        if order.is_paid:
            raise ConflictException("Paid orders cannot be deleted")

        await self.orders.delete(order_id)
        logger.info("Order deleted", extra={"order_id": order_id, "user_id": requester.user_id})
