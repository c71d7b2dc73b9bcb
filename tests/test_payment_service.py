import json
from decimal import Decimal

import pytest
from pydantic import SecretStr

from shared.utils import AppException, NotFoundException, SignatureMismatchException, ValidationException
from storefront.payments import PaymentService, checkout_signature, to_minor_units, webhook_signature
from storefront.schemas import OrderItemIn, ShippingAddressIn
from tests.conftest import KEY_SECRET, WEBHOOK_SECRET


async def place_order(order_service, user, shipping_address):
    items = [OrderItemIn(product_id="p-1", name="Keyboard", price=Decimal("199.99"), quantity=1)]
    return await order_service.create_order(user, items, ShippingAddressIn(**shipping_address), Decimal("199.99"))


async def pay(payment_service, user, order, session_id="order_1", payment_id="pay_1"):
    signature = checkout_signature(session_id, payment_id, KEY_SECRET)
    return await payment_service.verify_payment(user, order.id, session_id, payment_id, signature)


def webhook_body(payment_id, status, event="payment.captured"):
    return json.dumps({
        "event": event,
        "payload": {"payment": {"entity": {"id": payment_id, "status": status}}},
    }).encode()


def test_checkout_signature_is_hmac_sha256_hex():
    signature = checkout_signature("order_1", "pay_1", "secret")

    assert len(signature) == 64
    assert signature == checkout_signature("order_1", "pay_1", "secret")
    assert signature != checkout_signature("order_1", "pay_2", "secret")
    assert signature != checkout_signature("order_1", "pay_1", "other")

def test_webhook_signature_is_keyed_by_webhook_secret():
    body = b"order_1|pay_1"

    assert webhook_signature(body, "secret") == checkout_signature("order_1", "pay_1", "secret")
    assert webhook_signature(body, WEBHOOK_SECRET) != checkout_signature("order_1", "pay_1", KEY_SECRET)

@pytest.mark.parametrize("amount, expected", [
    (Decimal("499"), 49900),
    (Decimal("10.50"), 1050),
    (Decimal("0.015"), 2),
    (Decimal("19.99"), 1999),
])
def test_to_minor_units(amount, expected):
    assert to_minor_units(amount) == expected


def test_get_key(payment_service):
    assert payment_service.get_key() == "rzp_test_key"

def test_get_key_unconfigured(order_repo, gateway):
    service = PaymentService(order_repo, gateway, "", SecretStr("x"), SecretStr("y"))

    with pytest.raises(AppException) as exc_info:
        service.get_key()
    assert exc_info.value.status_code == 500

@pytest.mark.asyncio
async def test_create_payment_intent(payment_service, gateway):
    intent = await payment_service.create_payment_intent(Decimal("499.99"), "receipt_abc")

    assert intent.id == "order_1"
    assert intent.amount == 49999
    assert intent.currency == "INR"
    assert gateway.calls == [{"amount": 49999, "currency": "INR", "receipt": "receipt_abc"}]

@pytest.mark.asyncio
async def test_create_payment_intent_generates_receipt(payment_service, gateway):
    await payment_service.create_payment_intent(Decimal("1"))

    assert gateway.calls[0]["receipt"].startswith("receipt_")

@pytest.mark.asyncio
@pytest.mark.parametrize("amount", [None, Decimal("0"), Decimal("-5")])
async def test_create_payment_intent_requires_amount(payment_service, gateway, amount):
    with pytest.raises(ValidationException):
        await payment_service.create_payment_intent(amount)
    assert gateway.calls == []

@pytest.mark.asyncio
async def test_verify_payment_marks_order_paid(payment_service, order_service, order_repo, alice, shipping_address):
    order = await place_order(order_service, alice, shipping_address)

    paid = await pay(payment_service, alice, order)

    assert paid.is_paid is True
    assert paid.paid_at is not None
    assert paid.payment_result.gateway_payment_id == "pay_1"
    assert paid.payment_result.session_id == "order_1"
    assert paid.payment_result.status == "completed"
    assert paid.payment_result.email_address == alice.email
    stored = await order_repo.get(order.id)
    assert stored.is_paid is True

@pytest.mark.asyncio
async def test_verify_payment_rejects_tampered_signature(payment_service, order_service, order_repo, alice, shipping_address):
    order = await place_order(order_service, alice, shipping_address)
    signature = checkout_signature("order_1", "pay_1", KEY_SECRET)
    tampered = ("0" if signature[0] != "0" else "1") + signature[1:]

    with pytest.raises(SignatureMismatchException):
        await payment_service.verify_payment(alice, order.id, "order_1", "pay_1", tampered)

    stored = await order_repo.get(order.id)
    assert stored.is_paid is False
    assert stored.payment_result is None

@pytest.mark.asyncio
async def test_verify_payment_rejects_signature_for_other_payment(payment_service, order_service, alice, shipping_address):
    order = await place_order(order_service, alice, shipping_address)
    signature = checkout_signature("order_1", "pay_1", KEY_SECRET)

    with pytest.raises(SignatureMismatchException):
        await payment_service.verify_payment(alice, order.id, "order_1", "pay_2", signature)

@pytest.mark.asyncio
async def test_verify_payment_rejects_webhook_secret(payment_service, order_service, alice, shipping_address):
    order = await place_order(order_service, alice, shipping_address)
    signature = checkout_signature("order_1", "pay_1", WEBHOOK_SECRET)

    with pytest.raises(SignatureMismatchException):
        await payment_service.verify_payment(alice, order.id, "order_1", "pay_1", signature)

@pytest.mark.asyncio
@pytest.mark.parametrize("session_id, payment_id, signature", [
    ("", "pay_1", "sig"),
    ("order_1", "", "sig"),
    ("order_1", "pay_1", ""),
])
async def test_verify_payment_requires_all_fields(payment_service, alice, session_id, payment_id, signature):
    with pytest.raises(ValidationException):
        await payment_service.verify_payment(alice, "any", session_id, payment_id, signature)

@pytest.mark.asyncio
async def test_verify_payment_unknown_order(payment_service, alice):
    signature = checkout_signature("order_1", "pay_1", KEY_SECRET)

    with pytest.raises(NotFoundException):
        await payment_service.verify_payment(alice, "5f0000000000000000000000", "order_1", "pay_1", signature)

@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(payment_service):
    body = webhook_body("pay_1", "captured")

    with pytest.raises(SignatureMismatchException):
        await payment_service.handle_webhook(body, "deadbeef")
    with pytest.raises(SignatureMismatchException):
        await payment_service.handle_webhook(body, None)

@pytest.mark.asyncio
async def test_webhook_rejects_checkout_secret(payment_service):
    body = webhook_body("pay_1", "captured")

    with pytest.raises(SignatureMismatchException):
        await payment_service.handle_webhook(body, webhook_signature(body, KEY_SECRET))

@pytest.mark.asyncio
async def test_webhook_captured_marks_paid(payment_service, order_service, order_repo, alice, shipping_address):
    order = await place_order(order_service, alice, shipping_address)
    await pay(payment_service, alice, order)
    stored = await order_repo.get(order.id)
    stored.is_paid = False
    await order_repo.save(stored)
    body = webhook_body("pay_1", "captured")

    result = await payment_service.handle_webhook(body, webhook_signature(body, WEBHOOK_SECRET))

    assert result == {"status": "ok"}
    assert (await order_repo.get(order.id)).is_paid is True

@pytest.mark.asyncio
async def test_webhook_failed_marks_unpaid(payment_service, order_service, order_repo, alice, shipping_address):
    order = await place_order(order_service, alice, shipping_address)
    await pay(payment_service, alice, order)
    body = webhook_body("pay_1", "failed", event="payment.failed")

    result = await payment_service.handle_webhook(body, webhook_signature(body, WEBHOOK_SECRET))

    assert result == {"status": "ok"}
    stored = await order_repo.get(order.id)
    assert stored.is_paid is False
    assert stored.payment_result.status == "failed"

@pytest.mark.asyncio
async def test_webhook_ignores_other_statuses(payment_service, order_service, order_repo, alice, shipping_address):
    order = await place_order(order_service, alice, shipping_address)
    await pay(payment_service, alice, order)
    body = webhook_body("pay_1", "authorized", event="payment.authorized")

    result = await payment_service.handle_webhook(body, webhook_signature(body, WEBHOOK_SECRET))

    assert result == {"status": "ok"}
    stored = await order_repo.get(order.id)
    assert stored.is_paid is True
    assert stored.payment_result.status == "completed"

@pytest.mark.asyncio
async def test_webhook_unknown_payment_is_acknowledged(payment_service):
    body = webhook_body("pay_unknown", "captured")

    assert await payment_service.handle_webhook(body, webhook_signature(body, WEBHOOK_SECRET)) == {"status": "ok"}

@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"not json", b"[]", b'{"event": "payment.captured"}'])
async def test_webhook_malformed_body_is_acknowledged(payment_service, body):
    assert await payment_service.handle_webhook(body, webhook_signature(body, WEBHOOK_SECRET)) == {"status": "ok"}

@pytest.mark.asyncio
async def test_verify_payment_fails_closed_without_key_secret(order_repo, gateway, order_service, alice, shipping_address):
    service = PaymentService(order_repo, gateway, "rzp_test_key", SecretStr(""), SecretStr(WEBHOOK_SECRET))
    order = await place_order(order_service, alice, shipping_address)
    signature = checkout_signature("order_1", "pay_1", "")

    with pytest.raises(AppException) as exc_info:
        await service.verify_payment(alice, order.id, "order_1", "pay_1", signature)

    assert exc_info.value.status_code == 500
    assert (await order_repo.get(order.id)).is_paid is False

@pytest.mark.asyncio
async def test_webhook_fails_closed_without_webhook_secret(order_repo, gateway, payment_service, order_service, alice, shipping_address):
    order = await place_order(order_service, alice, shipping_address)
    await pay(payment_service, alice, order)
    stored = await order_repo.get(order.id)
    stored.is_paid = False
    await order_repo.save(stored)
    service = PaymentService(order_repo, gateway, "rzp_test_key", SecretStr(KEY_SECRET), SecretStr(""))
    body = webhook_body("pay_1", "captured")

    with pytest.raises(AppException) as exc_info:
        await service.handle_webhook(body, webhook_signature(body, ""))

    assert exc_info.value.status_code == 500
    assert (await order_repo.get(order.id)).is_paid is False

@pytest.mark.asyncio
async def test_webhook_captured_after_failed_restores_completed(payment_service, order_service, order_repo, alice, shipping_address):
    order = await place_order(order_service, alice, shipping_address)
    await pay(payment_service, alice, order)
    failed = webhook_body("pay_1", "failed", event="payment.failed")
    await payment_service.handle_webhook(failed, webhook_signature(failed, WEBHOOK_SECRET))
    captured = webhook_body("pay_1", "captured")

    await payment_service.handle_webhook(captured, webhook_signature(captured, WEBHOOK_SECRET))

    stored = await order_repo.get(order.id)
    assert stored.is_paid is True
    assert stored.paid_at is not None
    assert stored.payment_result.status == "completed"

@pytest.mark.asyncio
async def test_webhook_captured_keeps_original_paid_at(payment_service, order_service, order_repo, alice, shipping_address):
    order = await place_order(order_service, alice, shipping_address)
    paid = await pay(payment_service, alice, order)
    body = webhook_body("pay_1", "captured")

    await payment_service.handle_webhook(body, webhook_signature(body, WEBHOOK_SECRET))

    assert (await order_repo.get(order.id)).paid_at == paid.paid_at
