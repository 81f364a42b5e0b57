"""Payment provider client (Stripe REST API)

Only payment intent creation is needed: the browser confirms the intent
with the returned client secret. No idempotency key is sent, so a retried
request creates a second intent.
"""

import logging
from typing import Any, Dict, Optional

import httpx

import config
from errors import UpstreamError

logger = logging.getLogger("hostel.payments")


class PaymentClient:
    def __init__(
        self,
        secret_key: str,
        base_url: Optional[str] = None,
        currency: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._secret_key = secret_key
        self._base_url = base_url or config.STRIPE_API_BASE
        self._currency = currency or config.PAYMENT_CURRENCY
        self._timeout = timeout if timeout is not None else config.PAYMENT_TIMEOUT_S
        self._transport = transport

    def create_payment_intent(self, amount: int) -> Dict[str, Any]:
        """Create a payment intent for ``amount`` (smallest currency unit).

        Raises UpstreamError carrying the provider's message on any failure.
        """
        if not self._secret_key:
            raise UpstreamError("Payment provider secret key is not configured")
        try:
            with httpx.Client(
                base_url=self._base_url,
                auth=(self._secret_key, ""),
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                resp = client.post(
                    "/v1/payment_intents",
                    data={
                        "amount": amount,
                        "currency": self._currency,
                        "automatic_payment_methods[enabled]": "true",
                    },
                )
        except httpx.HTTPError as e:
            logger.error("Payment provider unreachable: %s", e)
            raise UpstreamError(str(e)) from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.status_code >= 400:
            message = (body.get("error") or {}).get("message") or f"Payment provider error {resp.status_code}"
            logger.error("Payment intent rejected (%d): %s", resp.status_code, message)
            raise UpstreamError(message)
        return body


def get_payment_client() -> PaymentClient:
    return PaymentClient(
        config.STRIPE_PAYMENT_SECRET_KEY,
        base_url=config.STRIPE_API_BASE,
        currency=config.PAYMENT_CURRENCY,
        timeout=config.PAYMENT_TIMEOUT_S,
    )
