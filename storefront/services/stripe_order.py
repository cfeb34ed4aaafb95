# storefront/services/stripe_order.py

import stripe
from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from storefront.models.order import Order, DRAFT, PENDING_PAYMENT, CONFIRMED, PAYABLE_STATUSES
from storefront.schemas.checkout import UpdateStripeOrderRequest
from storefront.services import rpc
from storefront.utils.errors import CheckoutError


def intent_belongs_to(intent, order: Order) -> bool:
    """The intent metadata written by /create-payment-intent names the order or its batch."""
    metadata = getattr(intent, "metadata", None) or {}
    if metadata.get("orderIdStr") == order.id:
        return True
    return bool(order.batch_order_id) and metadata.get("batchOrderIdStr") == order.batch_order_id


async def _retrieve_intent(gateway, log, payment_intent_id: str):
    try:
        intent = await gateway.retrieve_payment_intent(payment_intent_id)
    except stripe.InvalidRequestError:
        intent = None
    except stripe.StripeError as e:
        await log.log_error("stripe_order", f"Stripe error: {e}", {"paymentIntentId": payment_intent_id})
        raise CheckoutError(502, "Could not retrieve payment intent", getattr(e, "user_message", None) or str(e))

    if intent is None:
        raise CheckoutError(404, "Payment intent not found", {"paymentIntentId": payment_intent_id})
    return intent


# ────────────── update-stripe-order ──────────────
async def update_stripe_order_service(body: UpdateStripeOrderRequest, request: Request) -> dict:
    """
    Client-side follow-up after Stripe confirmed a card payment.
    Attaches the intent to the order (or its batch) and confirms only when
    Stripe reports the intent as succeeded; otherwise the webhook finishes it.
    """
    db = request.state.db
    log = request.app.state.log
    gateway = request.app.state.stripe

    if not body.order_id or not body.payment_intent_id:
        raise CheckoutError(400, "Missing required parameters", "orderId and paymentIntentId are required")

    order = await db.get(Order, body.order_id)
    if order is None:
        raise CheckoutError(404, "Order not found", {"orderId": body.order_id})

    if order.status not in PAYABLE_STATUSES:
        return {
            "success": True,
            "message": "Order already processed",
            "orderId": order.id,
            "orderNumber": order.order_number,
            "status": order.status,
        }

    intent = await _retrieve_intent(gateway, log, body.payment_intent_id)
    if not intent_belongs_to(intent, order):
        await log.log_warning("stripe_order", "Payment intent does not match order", {
            "orderId": order.id,
            "paymentIntentId": log.short_signature(body.payment_intent_id),
        })
        raise CheckoutError(400, "Payment intent does not belong to this order", {
            "orderId": order.id,
            "paymentIntentId": body.payment_intent_id,
        })

    if order.batch_order_id:
        result = await db.execute(
            select(Order).where(Order.batch_order_id == order.batch_order_id).order_by(Order.item_index)
        )
        orders = [row for row in result.scalars().all() if row.status in PAYABLE_STATUSES]
    else:
        orders = [order]

    try:
        for row in orders:
            row.transaction_signature = intent.id
            if row.status == DRAFT:
                row.status = PENDING_PAYMENT
            row.payment_metadata = {
                **(row.payment_metadata or {}),
                "paymentIntentId": intent.id,
                "paymentMethod": "stripe",
            }
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        await log.log_error("stripe_order", f"Could not attach intent: {e}", {"orderId": order.id})
        raise CheckoutError(500, "Failed to update order", str(e))

    status = PENDING_PAYMENT
    message = "Payment not settled yet, waiting for Stripe"
    if getattr(intent, "status", None) == "succeeded":
        confirmed = await rpc.confirm_order_payment(db, intent.id, "confirmed")
        if confirmed["success"]:
            status, message = CONFIRMED, "Order confirmed"
        else:
            await log.log_warning("stripe_order", "confirm_order_payment did not confirm", confirmed)

    await log.log_info("stripe_order", message, {
        "orderId": order.id,
        "paymentIntentId": log.short_signature(intent.id),
        "orders": len(orders),
    })

    response = {
        "success": True,
        "message": message,
        "orderId": order.id,
        "orderNumber": order.order_number,
        "status": status,
    }
    if order.batch_order_id:
        response["batchOrderId"] = order.batch_order_id
        response["orders"] = [row.id for row in orders]
    return response
