"""Payment verification.

Two independent signature checks live here and must stay separate:

* checkout_signature: client-initiated verify call, HMAC-SHA256 over
  "<session_id>|<payment_id>" keyed with the gateway key secret.
* webhook_signature: gateway-initiated webhook, HMAC-SHA256 over the raw
  request body keyed with the webhook secret.
"""
import hashlib
import hmac
import json
import logging
import time
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from pydantic import SecretStr

from shared.utils import (
    AppException, Identity, NotFoundException, SignatureMismatchException, ValidationException
)
from storefront.gateway import PaymentGateway
from storefront.models import OrderDB, PaymentResultDB
from storefront.repositories import OrderRepository
from storefront.schemas import PaymentIntentResponse

logger = logging.getLogger(__name__)


def checkout_signature(session_id: str, payment_id: str, key_secret: str) -> str:
    message = f"{session_id}|{payment_id}".encode()
    return hmac.new(key_secret.encode(), message, hashlib.sha256).hexdigest()


def webhook_signature(raw_body: bytes, webhook_secret: str) -> str:
    return hmac.new(webhook_secret.encode(), raw_body, hashlib.sha256).hexdigest()


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentService:
    def __init__(
        self,
        orders: OrderRepository,
        gateway: PaymentGateway,
        key_id: str,
        key_secret: SecretStr,
        webhook_secret: SecretStr,
        currency: str = "INR",
    ):
        self.orders = orders
        self.gateway = gateway
        self.key_id = key_id
        self.key_secret = key_secret
        self.webhook_secret = webhook_secret
        self.currency = currency

    def get_key(self) -> str:
        if not self.key_id:
            raise AppException(500, "Payment key not configured")
        return self.key_id

    async def create_payment_intent(self, amount: Optional[Decimal], receipt: Optional[str] = None) -> PaymentIntentResponse:
        if amount is None or amount <= 0:
            raise ValidationException("Amount is required")

        receipt = receipt or f"receipt_{int(time.time() * 1000)}"
        session = await self.gateway.create_session(to_minor_units(amount), self.currency, receipt)
        logger.info(f"Payment session {session.session_id} created for receipt {receipt}")
        return PaymentIntentResponse(id=session.session_id, amount=session.amount, currency=session.currency)

    async def verify_payment(
        self,
        user: Identity,
        order_id: str,
        session_id: str,
        payment_id: str,
        signature: str,
    ) -> OrderDB:
        if not session_id or not payment_id or not signature:
            raise ValidationException("Missing required payment verification parameters")

        key_secret = self.key_secret.get_secret_value()
        if not key_secret:
            raise AppException(500, "Payment key secret not configured")

        expected = checkout_signature(session_id, payment_id, key_secret)
        if not hmac.compare_digest(expected.encode(), signature.encode()):
            logger.warning("Payment signature mismatch", extra={"order_id": order_id, "user_id": user.user_id})
            raise SignatureMismatchException("Invalid payment signature")

        order = await self.orders.get(order_id)
        if order is None:
            raise NotFoundException("Order not found")

        now = datetime.utcnow()
        order.is_paid = True
        order.paid_at = now
        order.payment_result = PaymentResultDB(
            gateway_payment_id=payment_id,
            status="completed",
            update_time=now,
            email_address=user.email,
            session_id=session_id,
            signature=signature,
        )
        await self.orders.save(order)
        logger.info("Order paid", extra={"order_id": order_id, "user_id": user.user_id})
        return order

    async def handle_webhook(self, raw_body: bytes, header_signature: Optional[str]) -> dict:
        webhook_secret = self.webhook_secret.get_secret_value()
        if not webhook_secret:
            raise AppException(500, "Webhook secret not configured")

        expected = webhook_signature(raw_body, webhook_secret)
        if not header_signature or not hmac.compare_digest(expected.encode(), header_signature.encode()):
            logger.warning("Webhook signature mismatch")
            raise SignatureMismatchException("Invalid webhook signature")

        # From here on every failure is acknowledged, or the gateway keeps retrying
        try:
            await self._apply_webhook_event(json.loads(raw_body))
        except Exception:
            logger.exception("Webhook processing error")

        return {"status": "ok"}

    async def _apply_webhook_event(self, body: dict) -> None:
        entity = ((body.get("payload") or {}).get("payment") or {}).get("entity")
        if not entity or not entity.get("id"):
            logger.warning("Webhook without payment entity", extra={"event": body.get("event")})
            return

        payment_id = entity["id"]
        order = await self.orders.find_by_payment_id(payment_id)
        if order is None:
            logger.warning(f"Webhook for unknown payment {payment_id}", extra={"event": body.get("event")})
            return

        status = entity.get("status")
        if status == "captured":
            order.is_paid = True
            if order.paid_at is None:
                order.paid_at = datetime.utcnow()
            order.payment_result.status = "completed"
            order.payment_result.update_time = datetime.utcnow()
        elif status == "failed":
            order.is_paid = False
            order.paid_at = None
            order.payment_result.status = "failed"
            order.payment_result.update_time = datetime.utcnow()
        else:
            logger.info(f"Ignoring webhook status {status}", extra={"order_id": order.id})
            return

        await self.orders.save(order)
        logger.info(f"Webhook applied: payment {status}", extra={"order_id": order.id})
