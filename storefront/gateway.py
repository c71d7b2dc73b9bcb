"""Payment gateway port and its Razorpay-style HTTP adapter.

The gateway owns payment session state; creating a session changes nothing
locally.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
from pydantic import SecretStr

from shared.utils import UpstreamException

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaymentSession:
    """A gateway-side payment session ("order" in Razorpay terms)."""

    session_id: str
    amount: int
    currency: str


class PaymentGateway(ABC):
    @abstractmethod
    async def create_session(self, amount_minor_units: int, currency: str, receipt: str) -> PaymentSession:
        """Create a payment session for the given amount in minor units."""
        ...


class RazorpayGateway(PaymentGateway):
    def __init__(
        self,
        key_id: str,
        key_secret: SecretStr,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def create_session(self, amount_minor_units: int, currency: str, receipt: str) -> PaymentSession:
        payload = {
            "amount": amount_minor_units,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
        }
        async with httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.key_id, self.key_secret.get_secret_value()),
            timeout=self.timeout,
            transport=self.transport,
        ) as client:
            try:
                response = await client.post("/orders", json=payload)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as e:
                logger.error(f"Gateway rejected session for receipt {receipt}: HTTP {e.response.status_code}")
                raise UpstreamException("Error creating payment order")
            except (httpx.RequestError, ValueError) as e:
                logger.error(f"Gateway unreachable for receipt {receipt}: {type(e).__name__}")
                raise UpstreamException("Payment gateway unavailable")

        if not data.get("id"):
            raise UpstreamException("Error creating payment order")

        return PaymentSession(
            session_id=data["id"],
            amount=int(data.get("amount", amount_minor_units)),
            currency=data.get("currency", currency),
        )
