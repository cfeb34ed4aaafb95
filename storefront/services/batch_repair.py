# storefront/services/batch_repair.py

"""
Dashboard repair of batch orders written by older checkouts: rows that only
carry the batch id in their metadata, mixed order numbers, missing item
indexes, or a payment signature that never reached every row.
"""

from typing import Optional

from fastapi import HTTPException, Request
from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.future import select

from storefront.models.order import Order, PAYABLE_STATUSES
from storefront.schemas.order import BatchRepair
from storefront.services.order_number import dated_order_number
from storefront.utils.database import utcnow

RECENT_BATCHES = 100


async def find_batch_orders(db, batch_order_id: str) -> list:
    """Rows of a batch, including rows that only name it in payment_metadata."""
    result = await db.execute(
        select(Order)
        .where(or_(
            Order.batch_order_id == batch_order_id,
            and_(
                Order.batch_order_id.is_(None),
                Order.payment_metadata["batchOrderId"].as_string() == batch_order_id,
            ),
        ))
        .order_by(Order.item_index, Order.created_at)
    )
    return list(result.scalars().all())


async def _recent_batch_ids(db, limit: int = RECENT_BATCHES) -> list:
    metadata_batch_id = Order.payment_metadata["batchOrderId"].as_string()
    result = await db.execute(
        select(Order.batch_order_id, metadata_batch_id)
        .where(or_(Order.batch_order_id.is_not(None), metadata_batch_id.is_not(None)))
        .order_by(Order.created_at.desc())
    )
    batch_ids = []
    for column_id, metadata_id in result.all():
        batch_id = column_id or metadata_id
        if batch_id and batch_id not in batch_ids:
            batch_ids.append(batch_id)
            if len(batch_ids) == limit:
                break
    return batch_ids


async def _apply(db, results: dict, counter: str, order: Order, **values):
    try:
        for key, value in values.items():
            setattr(order, key, value)
        order.updated_at = utcnow()
        await db.commit()
        results[counter] += 1
    except SQLAlchemyError as e:
        await db.rollback()
        results["errors"].append({"orderId": order.id, "fix": counter, "error": str(e)})
        return False
    return True


async def repair_batch(db, log, batch_order_id: str, transaction_signature: Optional[str] = None) -> Optional[dict]:
    """
    Repair one batch. Returns None when no row belongs to it.
    Signatures only go to rows that can still take a payment or have none.
    """
    orders = await find_batch_orders(db, batch_order_id)
    if not orders:
        return None

    results = {
        "batchOrderId": batch_order_id,
        "orderCount": len(orders),
        "batchOrderIdFixed": 0,
        "orderNumberFixed": 0,
        "itemIndexFixed": 0,
        "transactionSignatureFixed": 0,
        "transactionSignatureFailed": 0,
        "errors": [],
    }

    for order in orders:
        if order.batch_order_id != batch_order_id:
            await _apply(db, results, "batchOrderIdFixed", order, batch_order_id=batch_order_id)

    order_number = next(
        (o.order_number for o in orders if o.order_number and o.order_number.startswith("SF-")),
        None,
    ) or dated_order_number()
    for order in orders:
        if order.order_number != order_number:
            await _apply(db, results, "orderNumberFixed", order, order_number=order_number)

    total = len(orders)
    for index, order in enumerate(orders, start=1):
        if order.item_index != index or order.total_items_in_batch != total:
            await _apply(db, results, "itemIndexFixed", order, item_index=index, total_items_in_batch=total)

    if transaction_signature:
        for order in orders:
            if order.transaction_signature == transaction_signature:
                continue
            if order.transaction_signature and order.status not in PAYABLE_STATUSES:
                continue
            if not await _apply(db, results, "transactionSignatureFixed", order, transaction_signature=transaction_signature):
                results["transactionSignatureFailed"] += 1

    await log.log_info("batch_repair", "Batch repaired", {
        key: value for key, value in results.items() if key != "errors"
    })
    return results


# ────────────── /merchant/batches/repair ──────────────
async def repair_batches_service(body: BatchRepair, request: Request) -> dict:
    db = request.state.db
    log = request.app.state.log

    if body.fix_all:
        batches = []
        for batch_order_id in await _recent_batch_ids(db):
            result = await repair_batch(db, log, batch_order_id)
            if result is not None:
                batches.append(result)
        await log.log_info("batch_repair", f"{len(batches)} batches checked")
        return {"success": True, "batchCount": len(batches), "batches": batches}

    if not body.batch_order_id:
        raise HTTPException(
            status_code=400,
            detail="Missing required parameters. Provide batch_order_id or set fix_all=true",
        )

    result = await repair_batch(db, log, body.batch_order_id, body.transaction_signature)
    if result is None:
        await log.log_warning("batch_repair", "No orders for batch", {"batchOrderId": body.batch_order_id})
        raise HTTPException(status_code=404, detail="No orders found for this batch")
    return {"success": True, "results": result}
