# storefront/services/payment_intent.py

import time
from collections import Counter
from datetime import timedelta
from typing import Optional

import stripe
from fastapi import Request
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from storefront.config import settings
from storefront.models.order import Order, DRAFT, PENDING_PAYMENT, ERROR
from storefront.schemas.checkout import PaymentIntentRequest
from storefront.utils.database import utcnow
from storefront.utils.errors import CheckoutError

RECOVERY_WINDOW = timedelta(hours=1)
METADATA_VALUE_LIMIT = 100
REQUIRED_ADDRESS_FIELDS = ("address", "city", "country")

# an order that failed at Stripe may ask for a new intent
RETRYABLE_STATUSES = (DRAFT, PENDING_PAYMENT, ERROR)


def stripe_metadata(values: dict) -> dict:
    """Stripe metadata: flat string values, at most 100 characters each."""
    flat = {}
    for key, value in values.items():
        if value is None:
            continue
        flat[key] = str(value)[:METADATA_VALUE_LIMIT]
    return flat


def customer_name(contact_info: Optional[dict]) -> str:
    contact = contact_info or {}
    full = " ".join(part for part in (contact.get("firstName"), contact.get("lastName")) if part)
    return full or contact.get("value") or "anonymous"


def amount_in_cents(total: float) -> int:
    return int(round(max(float(total), settings.MIN_STRIPE_AMOUNT_USD) * 100))


async def _recent_draft(db, wallet_address: str) -> Optional[Order]:
    result = await db.execute(
        select(Order)
        .where(
            Order.wallet_address == wallet_address,
            Order.status == DRAFT,
            Order.created_at > utcnow() - RECOVERY_WINDOW,
        )
        .order_by(Order.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()


async def _load_orders(db, order_id: Optional[str], batch_order_id: Optional[str]) -> list:
    if batch_order_id:
        result = await db.execute(
            select(Order).where(Order.batch_order_id == batch_order_id).order_by(Order.item_index)
        )
        orders = list(result.scalars().all())
        if not orders:
            raise CheckoutError(404, "Batch order not found", {"batchOrderId": batch_order_id})
        return orders

    order = await db.get(Order, order_id)
    if order is None:
        raise CheckoutError(404, "Order not found", {"orderId": order_id})
    return [order]


async def _mark_error(db, orders: list, log):
    """Best effort: flag the unpaid orders so the dashboard shows the failed attempt."""
    try:
        await db.execute(
            update(Order)
            .where(Order.id.in_([o.id for o in orders]), Order.status.in_(RETRYABLE_STATUSES))
            .values(status=ERROR, transaction_signature=f"error_{int(time.time() * 1000)}", updated_at=utcnow())
        )
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        await log.log_error("payment_intent", f"Could not mark orders as error: {e}")


# ────────────── create-payment-intent ──────────────
async def create_payment_intent_service(body: PaymentIntentRequest, request: Request) -> dict:
    """
    Creates a Stripe PaymentIntent for an order or a whole batch and moves
    the orders to pending_payment with the intent id as their signature.
    """
    db = request.state.db
    log = request.app.state.log
    gateway = request.app.state.stripe

    order_id = body.order_id
    batch_order_id = body.batch_order_id

    if not order_id and not batch_order_id and body.wallet_address:
        recovered = await _recent_draft(db, body.wallet_address)
        if recovered is not None:
            order_id = recovered.id
            batch_order_id = recovered.batch_order_id
            await log.log_warning("payment_intent", "Recovered draft order for wallet", {
                "orderId": order_id,
                "walletAddress": body.wallet_address,
            })

    if not order_id and not batch_order_id:
        raise CheckoutError(400, "Missing required order ID", "Provide orderId or batchOrderId")

    loaded = await _load_orders(db, order_id, batch_order_id)
    orders = [order for order in loaded if order.status in RETRYABLE_STATUSES]
    if not orders:
        raise CheckoutError(400, "No orders awaiting payment", {
            "orderId": order_id,
            "batchOrderId": batch_order_id,
            "statusCounts": dict(Counter(order.status for order in loaded)),
        })
    primary = orders[0]

    if not isinstance(primary.payment_metadata, dict):
        raise CheckoutError(400, "Invalid payment metadata", {"orderId": primary.id})

    total = primary.total_amount_paid_for_batch if primary.total_amount_paid_for_batch is not None else primary.amount
    if isinstance(total, bool) or not isinstance(total, (int, float)) or total <= 0:
        raise CheckoutError(400, "Invalid order amount", {"orderId": primary.id, "amount": total})

    shipping_info = body.shipping_info or {}
    address = shipping_info.get("shipping_address") or primary.shipping_address or {}
    missing = [field for field in REQUIRED_ADDRESS_FIELDS if not address.get(field)]
    if missing:
        raise CheckoutError(400, "Invalid shipping address", {"missing": missing})

    amount_cents = amount_in_cents(total)
    contact_info = shipping_info.get("contact_info") or primary.contact_info
    metadata = stripe_metadata({
        "orderIdStr": primary.id,
        "batchOrderIdStr": primary.batch_order_id or "",
        "productNameStr": body.product_name or "",
        "customerName": customer_name(contact_info),
        "walletStr": body.wallet_address or primary.wallet_address or "stripe",
        "amountStr": f"{total:.2f}",
        "couponCode": body.coupon_code,
    })

    await log.log_info("payment_intent", "Creating payment intent", {
        "orderId": primary.id,
        "batchOrderId": primary.batch_order_id,
        "orders": len(orders),
        "amountInCents": amount_cents,
    })

    try:
        intent = await gateway.create_payment_intent(amount_cents, metadata)
        retrieved = await gateway.retrieve_payment_intent(intent.id)
        if not retrieved.metadata:
            await log.log_warning("payment_intent", "Metadata missing on new intent, re-attaching", {
                "paymentIntentId": intent.id,
            })
            await gateway.update_payment_intent_metadata(intent.id, metadata)
    except stripe.StripeError as e:
        await log.log_error("payment_intent", f"Stripe error: {e}", {"orderId": primary.id})
        await _mark_error(db, orders, log)
        raise CheckoutError(500, "Failed to create payment intent", getattr(e, "user_message", None) or str(e))

    # the discount stays what checkout priced; client amounts are not stored
    coupon = {"couponCode": body.coupon_code} if body.coupon_code else {}

    try:
        for order in orders:
            order.transaction_signature = intent.id
            order.status = PENDING_PAYMENT
            order.payment_metadata = {
                **(order.payment_metadata or {}),
                **coupon,
                "paymentIntentId": intent.id,
                "paymentMethod": "stripe",
                "amountInCents": amount_cents,
            }
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        await log.log_error("payment_intent", f"Could not attach intent to orders: {e}", {
            "paymentIntentId": intent.id,
        })

    await log.log_info("payment_intent", "Payment intent created", {
        "paymentIntentId": log.short_signature(intent.id),
        "orderId": primary.id,
    })

    return {
        "clientSecret": intent.client_secret,
        "orderId": primary.id,
        "batchOrderId": primary.batch_order_id,
        "paymentIntentId": intent.id,
        "success": True,
    }
