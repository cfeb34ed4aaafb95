# storefront/services/order_lookup.py

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from storefront.models.order import Order, DRAFT, PENDING_PAYMENT, CONFIRMED, PAYABLE_STATUSES
from storefront.schemas.checkout import FindOrderByPaymentRequest
from storefront.schemas.order import Order as OrderSchema
from storefront.utils.database import utcnow
from storefront.utils.errors import CheckoutError

RECOVERY_WINDOW = timedelta(hours=1)


def order_to_dict(order: Order) -> dict:
    return OrderSchema.model_validate(order).model_dump(mode="json")


# ────────────── find-order-by-payment ──────────────
async def find_order_by_payment_service(body: FindOrderByPaymentRequest, request: Request) -> dict:
    """
    Order behind a Stripe PaymentIntent.
    When nothing carries the intent id yet, the most recent unpaid order of
    the last hour adopts it.
    """
    db = request.state.db
    log = request.app.state.log
    payment_intent_id = body.payment_intent_id

    if not payment_intent_id:
        raise CheckoutError(400, "Missing payment intent ID")

    result = await db.execute(
        select(Order).where(Order.transaction_signature == payment_intent_id).order_by(Order.item_index).limit(1)
    )
    order = result.scalars().first()
    if order is not None:
        return {"success": True, "orderId": order.id, "orderNumber": order.order_number, "status": order.status}

    result = await db.execute(
        select(Order)
        .where(Order.status.in_(PAYABLE_STATUSES), Order.created_at > utcnow() - RECOVERY_WINDOW)
        .order_by(Order.created_at.desc())
        .limit(1)
    )
    recent = result.scalars().first()
    if recent is None:
        await log.log_warning("lookup", "No order found for payment", {
            "paymentIntentId": log.short_signature(payment_intent_id),
        })
        raise CheckoutError(404, "No matching order found for this payment")

    recent.transaction_signature = payment_intent_id
    recent.payment_metadata = {
        "paymentIntentId": payment_intent_id,
        "paymentMethod": "stripe",
        "recoveredAt": datetime.now(timezone.utc).isoformat(),
    }
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        await log.log_error("lookup", f"Could not attach payment to recovered order: {e}", {"orderId": recent.id})

    await log.log_warning("lookup", "Recovered most recent order for payment", {
        "orderId": recent.id,
        "paymentIntentId": log.short_signature(payment_intent_id),
    })

    return {
        "success": True,
        "orderId": recent.id,
        "orderNumber": recent.order_number,
        "status": recent.status,
        "note": "Used most recent order as recovery mechanism",
    }


# ────────────── get-order ──────────────
async def get_order_service(order_id: Optional[str], request: Request) -> dict:
    db = request.state.db

    if not order_id:
        raise CheckoutError(400, "Order ID is required")

    order = await db.get(Order, order_id)
    if order is None:
        raise CheckoutError(404, "Order not found", {"orderId": order_id})
    return order_to_dict(order)


# ────────────── get-batch-orders ──────────────
async def get_batch_orders_service(batch_order_id: Optional[str], request: Request) -> dict:
    db = request.state.db

    if not batch_order_id:
        raise CheckoutError(400, "Missing batchOrderId parameter")

    result = await db.execute(
        select(Order).where(Order.batch_order_id == batch_order_id).order_by(Order.item_index, Order.created_at)
    )
    orders = list(result.scalars().all())
    if not orders:
        raise CheckoutError(404, "No orders found for this batch ID", {"batchOrderId": batch_order_id})

    counts = Counter(order.status for order in orders)
    signature = next((order.transaction_signature for order in orders if order.transaction_signature), None)

    return {
        "success": True,
        "batchOrderId": batch_order_id,
        "transactionSignature": signature,
        "orders": [order_to_dict(order) for order in orders],
        "summary": {
            "total": len(orders),
            "draft": counts[DRAFT],
            "pending": counts[PENDING_PAYMENT],
            "confirmed": counts[CONFIRMED],
        },
    }
