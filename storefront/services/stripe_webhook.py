# storefront/services/stripe_webhook.py

from datetime import datetime, timezone
from typing import Optional

import stripe
from fastapi import Request
from sqlalchemy import update, or_
from sqlalchemy.future import select

from storefront.models.order import Order, DRAFT, PENDING_PAYMENT, CONFIRMED, ERROR
from storefront.services import rpc
from storefront.utils.database import utcnow
from storefront.utils.errors import CheckoutError

RETRYABLE_ERROR_CODES = ("authentication_required", "insufficient_funds", "card_declined")


def dashboard_url(payment_intent_id: str) -> str:
    return f"https://dashboard.stripe.com/payments/{payment_intent_id}"


async def find_order_by_payment_intent(db, payment_intent_id: str) -> Optional[Order]:
    result = await db.execute(
        select(Order).where(Order.transaction_signature == payment_intent_id).order_by(Order.item_index).limit(1)
    )
    order = result.scalars().first()
    if order is not None or payment_intent_id.startswith("free_"):
        return order

    result = await db.execute(
        select(Order)
        .where(or_(
            Order.payment_metadata["paymentIntentId"].as_string() == payment_intent_id,
            Order.payment_metadata["stripePaymentIntentId"].as_string() == payment_intent_id,
        ))
        .limit(1)
    )
    return result.scalars().first()


async def _batch_of(db, order: Order) -> list:
    if not order.batch_order_id:
        return [order]
    result = await db.execute(select(Order).where(Order.batch_order_id == order.batch_order_id))
    return list(result.scalars().all())


async def charge_details(gateway, intent: dict) -> tuple:
    """(chargeId, receiptUrl) for a succeeded intent, dashboard link as fallback."""
    charge_id = receipt_url = None
    latest = intent.get("latest_charge")

    if isinstance(latest, str) and latest.startswith("ch_"):
        charge = await gateway.retrieve_charge(latest)
        if charge:
            charge_id, receipt_url = charge["id"], charge.get("receipt_url")
    elif isinstance(latest, str) and latest.startswith("py_"):
        charge_id, receipt_url = latest, dashboard_url(intent["id"])
    elif not latest:
        charge = await gateway.latest_charge_for(intent["id"])
        if charge:
            charge_id, receipt_url = charge["id"], charge.get("receipt_url")

    if not charge_id and not receipt_url:
        charge_id, receipt_url = intent["id"], dashboard_url(intent["id"])
    return charge_id, receipt_url


# ────────────── event handlers ──────────────
async def _payment_created(db, log, intent: dict):
    result = await db.execute(
        update(Order)
        .where(Order.transaction_signature == intent["id"], Order.status == DRAFT)
        .values(status=PENDING_PAYMENT, updated_at=utcnow())
    )
    await db.commit()
    await log.log_info("webhook", "Payment intent created", {
        "paymentIntentId": log.short_signature(intent["id"]),
        "ordersUpdated": result.rowcount,
    })


async def _payment_succeeded(db, log, gateway, intent: dict):
    intent_id = intent["id"]
    order = await find_order_by_payment_intent(db, intent_id)
    if order is None:
        await log.log_error("webhook", "Order not found for successful payment", {"paymentIntentId": intent_id})
        return

    if intent_id.startswith("free_"):
        if order.status != CONFIRMED:
            confirmed = await rpc.confirm_order_transaction(db, order.id)
            await log.log_info("webhook", "Free order confirmation", confirmed)
        return

    confirmed = await rpc.confirm_order_payment(db, intent_id, "confirmed")
    if not confirmed["success"]:
        await log.log_warning("webhook", "confirm_order_payment did not confirm", confirmed)

    try:
        charge_id, receipt_url = await charge_details(gateway, intent)
    except stripe.StripeError as e:
        await log.log_error("webhook", f"Could not fetch charge details: {e}", {"paymentIntentId": intent_id})
        charge_id, receipt_url = intent_id, dashboard_url(intent_id)

    orders = await _batch_of(db, order)
    for row in orders:
        row.status = CONFIRMED
        row.payment_metadata = {
            **(row.payment_metadata or {}),
            "paymentIntentId": intent_id,
            "chargeId": charge_id,
            "receiptUrl": receipt_url,
        }
    await db.commit()

    await log.log_info("webhook", "Payment confirmed", {
        "paymentIntentId": log.short_signature(intent_id),
        "orderId": order.id,
        "orders": len(orders),
        "receiptUrl": receipt_url,
    })


async def _payment_failed(db, log, intent: dict):
    intent_id = intent["id"]
    if intent_id.startswith("free_"):
        await log.log_warning("webhook", "Failure event for a free order ignored", {"paymentIntentId": intent_id})
        return

    last_error = intent.get("last_payment_error") or {}
    code = last_error.get("code") or "unknown_error"
    payment_error = {
        "code": code,
        "message": last_error.get("message") or "Unknown payment error",
        "payment_method_type": (last_error.get("payment_method") or {}).get("type"),
        "decline_code": last_error.get("decline_code"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    order = await find_order_by_payment_intent(db, intent_id)
    if order is None:
        await log.log_error("webhook", "Order not found for failed payment", {"paymentIntentId": intent_id})
        return

    for row in await _batch_of(db, order):
        if row.id != order.id and row.transaction_signature != intent_id:
            continue
        row.status = ERROR
        row.payment_metadata = {
            **(row.payment_metadata or {}),
            "payment_error": payment_error,
            "retry_eligible": code in RETRYABLE_ERROR_CODES,
        }
    await db.commit()

    await log.log_info("webhook", "Payment failure recorded", {
        "paymentIntentId": log.short_signature(intent_id),
        "orderId": order.id,
        "code": code,
    })


# ────────────── stripe-webhook ──────────────
async def stripe_webhook_service(payload: bytes, signature: Optional[str], request: Request) -> dict:
    """
    Verifies and dispatches a Stripe event.
    Once the event is verified the response is always {"received": true}.
    """
    db = request.state.db
    log = request.app.state.log
    gateway = request.app.state.stripe

    if not signature:
        await log.log_error("webhook", "No Stripe signature found")
        raise CheckoutError(400, "No signature provided")

    try:
        event = gateway.construct_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        await log.log_error("webhook", f"Webhook signature verification failed: {e}")
        raise CheckoutError(400, "Invalid signature")

    event_type = event["type"]
    intent = event["data"]["object"]
    await log.log_info("webhook", f"Event {event_type}", {"id": intent.get("id")})

    try:
        if event_type == "payment_intent.created":
            await _payment_created(db, log, intent)
        elif event_type == "payment_intent.succeeded":
            await _payment_succeeded(db, log, gateway, intent)
        elif event_type == "payment_intent.payment_failed":
            await _payment_failed(db, log, intent)
        else:
            await log.log_info("webhook", f"Unhandled event type: {event_type}")
    except Exception as e:
        await db.rollback()
        await log.log_error("webhook", f"Webhook processing failed: {e}", {"type": event_type})
        return {
            "received": True,
            "error": "Webhook processing failed, but event was received",
            "details": str(e),
        }

    return {"received": True}
