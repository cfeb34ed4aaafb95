# storefront/services/stripe_gateway.py

import stripe
from fastapi.concurrency import run_in_threadpool

from storefront.config import settings


class StripeGateway:
    """
    The few Stripe calls the checkout needs.
    The SDK is blocking, so every call runs in the threadpool.
    """

    def __init__(self, api_key: str = None, api_version: str = None, webhook_secret: str = None):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.api_version = api_version or settings.STRIPE_API_VERSION
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET

    def _options(self) -> dict:
        return {"api_key": self.api_key, "stripe_version": self.api_version}

    async def create_payment_intent(self, amount: int, metadata: dict, currency: str = "usd"):
        return await run_in_threadpool(
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            automatic_payment_methods={"enabled": True},
            metadata=metadata,
            **self._options(),
        )

    async def retrieve_payment_intent(self, payment_intent_id: str):
        return await run_in_threadpool(stripe.PaymentIntent.retrieve, payment_intent_id, **self._options())

    async def update_payment_intent_metadata(self, payment_intent_id: str, metadata: dict):
        return await run_in_threadpool(
            stripe.PaymentIntent.modify, payment_intent_id, metadata=metadata, **self._options()
        )

    async def retrieve_charge(self, charge_id: str):
        return await run_in_threadpool(stripe.Charge.retrieve, charge_id, **self._options())

    async def latest_charge_for(self, payment_intent_id: str):
        charges = await run_in_threadpool(
            stripe.Charge.list, payment_intent=payment_intent_id, limit=1, **self._options()
        )
        return charges.data[0] if charges.data else None

    def construct_event(self, payload: bytes, signature: str):
        """Verify a webhook payload; raises ValueError or stripe.SignatureVerificationError."""
        return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
