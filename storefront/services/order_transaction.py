# storefront/services/order_transaction.py

from collections import Counter
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from storefront.models.order import Order, PENDING_PAYMENT, CONFIRMED, PAYABLE_STATUSES
from storefront.models.transaction import PENDING
from storefront.schemas.checkout import UpdateOrderTransactionRequest
from storefront.services import rpc
from storefront.services.checkout import is_free_order
from storefront.utils.errors import CheckoutError


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def settles_for_free(order: Order) -> bool:
    """Only an order stored as free, or owing nothing, skips pending_payment."""
    if is_free_order(order.payment_metadata):
        return True
    owed = order.total_amount_paid_for_batch if order.total_amount_paid_for_batch is not None else order.amount
    return owed is not None and float(owed) == 0


def order_amount_sol(order: Order, amount_sol: float, total_orders: int) -> float:
    """Variant price from the order metadata when present, otherwise an equal share."""
    metadata = order.payment_metadata or {}
    variant_key = metadata.get("variantKey")
    variant_prices = metadata.get("variantPrices") or {}
    if variant_key and variant_prices.get(variant_key):
        return float(variant_prices[variant_key])
    return amount_sol / total_orders


async def _log_transaction(db, log, signature: Optional[str], details: dict):
    """Transaction log write; failures only show up in the log."""
    if not signature:
        return
    try:
        result = await rpc.update_transaction_status(db, signature, PENDING, details)
        if not result["success"]:
            await log.log_warning("order_tx", "Transaction log not updated", result)
    except SQLAlchemyError as e:
        await db.rollback()
        await log.log_warning("order_tx", f"Transaction log write failed: {e}")


# ────────────── update-order-transaction ──────────────
async def update_order_transaction_service(body: UpdateOrderTransactionRequest, request: Request) -> dict:
    db = request.state.db
    log = request.app.state.log

    if not body.order_id and not body.batch_order_id:
        raise CheckoutError(400, "Missing required parameter: orderId or batchOrderId")

    amount_sol = float(body.amount_sol or 0)

    await log.log_info("order_tx", "Update order transaction", {
        "orderId": body.order_id or "none",
        "batchOrderId": body.batch_order_id or "none",
        "transactionSignature": log.short_signature(body.transaction_signature),
        "isFreeOrder": body.is_free_order,
    })

    if body.batch_order_id:
        return await _update_batch(db, log, body, amount_sol)
    return await _update_single(db, log, body, amount_sol)


async def _update_single(db, log, body: UpdateOrderTransactionRequest, amount_sol: float) -> dict:
    order = await db.get(Order, body.order_id)
    if order is None:
        raise CheckoutError(404, "Order not found", {"orderId": body.order_id})
    if order.status not in PAYABLE_STATUSES:
        raise CheckoutError(400, "Order is not awaiting payment", {"orderId": order.id, "status": order.status})

    free = settles_for_free(order)
    if body.is_free_order and not free:
        await log.log_warning("order_tx", "Free settlement requested for a paid order", {"orderId": order.id})

    order.transaction_signature = body.transaction_signature
    order.amount_sol = amount_sol
    order.status = CONFIRMED if free else PENDING_PAYMENT
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        await log.log_error("order_tx", f"Order update failed: {e}", {"orderId": body.order_id})
        raise CheckoutError(500, "Failed to update order", str(e))

    await _log_transaction(db, log, body.transaction_signature, {
        "orderId": body.order_id,
        "amountSol": amount_sol,
        "timestamp": _timestamp(),
    })

    return {
        "success": True,
        "data": {
            "orderId": body.order_id,
            "transactionSignature": body.transaction_signature,
            "amountSol": amount_sol,
            "isFreeOrder": free,
        },
    }


async def _update_batch(db, log, body: UpdateOrderTransactionRequest, amount_sol: float) -> dict:
    batch_order_id = body.batch_order_id
    result = await db.execute(
        select(Order).where(Order.batch_order_id == batch_order_id).order_by(Order.item_index)
    )
    batch_orders = list(result.scalars().all())
    if not batch_orders:
        raise CheckoutError(404, "No orders found for this batch", {"batchOrderId": batch_order_id})

    to_update = [order for order in batch_orders if order.status in PAYABLE_STATUSES]
    if not to_update:
        raise CheckoutError(400, "No orders in draft or pending_payment status to update", {
            "batchOrderId": batch_order_id,
            "statusCounts": dict(Counter(order.status for order in batch_orders)),
        })

    free = all(settles_for_free(order) for order in to_update)
    if body.is_free_order and not free:
        await log.log_warning("order_tx", "Free settlement requested for a paid batch", {"batchOrderId": batch_order_id})

    update_results = []
    for order in to_update:
        amount = order_amount_sol(order, amount_sol, len(to_update))
        try:
            order.transaction_signature = body.transaction_signature
            order.amount_sol = amount
            order.status = CONFIRMED if free else PENDING_PAYMENT
            await db.commit()
            update_results.append({"orderId": order.id, "success": True, "amount": amount})
        except SQLAlchemyError as e:
            await db.rollback()
            await log.log_error("order_tx", f"Order update failed: {e}", {"orderId": order.id})
            update_results.append({"orderId": order.id, "success": False, "error": str(e)})

    updated = sum(1 for r in update_results if r["success"])

    await _log_transaction(db, log, body.transaction_signature, {
        "batchOrderId": batch_order_id,
        "orderCount": len(batch_orders),
        "updatedOrders": updated,
        "amountSol": amount_sol,
        "isFreeOrder": free,
        "timestamp": _timestamp(),
    })

    await log.log_info("order_tx", f"Batch transaction update: {updated}/{len(to_update)} orders updated", {
        "batchOrderId": batch_order_id,
    })

    return {
        "success": True,
        "data": {
            "batchOrderId": batch_order_id,
            "transactionSignature": body.transaction_signature,
            "amountSol": amount_sol,
            "isBatchOrder": True,
            "totalOrders": len(batch_orders),
            "ordersUpdated": updated,
            "updateDetails": update_results,
            "isFreeOrder": free,
        },
    }
