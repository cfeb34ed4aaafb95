# storefront/services/receipts.py

import stripe
from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from storefront.models.order import Order, CONFIRMED, SHIPPED, DELIVERED
from storefront.services.stripe_webhook import charge_details


async def _orders_without_receipt(db, limit: int) -> dict:
    """Paid card orders grouped by intent id, skipping those that already have a receipt."""
    result = await db.execute(
        select(Order)
        .where(
            Order.transaction_signature.like("pi_%"),
            Order.status.in_((CONFIRMED, SHIPPED, DELIVERED)),
        )
        .order_by(Order.created_at.desc())
    )
    grouped = {}
    for order in result.scalars().all():
        if (order.payment_metadata or {}).get("receiptUrl"):
            continue
        if order.transaction_signature not in grouped and len(grouped) == limit:
            continue
        grouped.setdefault(order.transaction_signature, []).append(order)
    return grouped


# ────────────── /merchant/orders/receipts ──────────────
async def backfill_receipts_service(request: Request, limit: int = 50) -> dict:
    """
    Stores chargeId and receiptUrl on paid Stripe orders the webhook never
    completed. One failing intent does not stop the others.
    """
    db = request.state.db
    log = request.app.state.log
    gateway = request.app.state.stripe

    grouped = await _orders_without_receipt(db, limit)
    results = []
    for intent_id, orders in grouped.items():
        try:
            intent = await gateway.retrieve_payment_intent(intent_id)
            if intent is None:
                raise stripe.InvalidRequestError(f"No such payment_intent: {intent_id}", "id")
            charge_id, receipt_url = await charge_details(gateway, {
                "id": intent.id,
                "latest_charge": getattr(intent, "latest_charge", None),
            })
        except stripe.StripeError as e:
            await log.log_warning("receipts", f"Receipt lookup failed: {e}", {"paymentIntentId": intent_id})
            results.extend({"orderId": o.id, "success": False, "error": str(e)} for o in orders)
            continue

        try:
            for order in orders:
                order.payment_metadata = {
                    **(order.payment_metadata or {}),
                    "paymentIntentId": intent_id,
                    "chargeId": charge_id,
                    "receiptUrl": receipt_url,
                }
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            await log.log_error("receipts", f"Could not store receipt: {e}", {"paymentIntentId": intent_id})
            results.extend({"orderId": o.id, "success": False, "error": str(e)} for o in orders)
            continue

        results.extend({"orderId": o.id, "success": True, "receiptUrl": receipt_url} for o in orders)

    await log.log_info("receipts", f"Receipt backfill processed {len(results)} orders", {
        "intents": len(grouped),
        "failed": sum(1 for r in results if not r["success"]),
    })
    return {"success": True, "processed": len(results), "results": results}
