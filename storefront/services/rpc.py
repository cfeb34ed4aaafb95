# storefront/services/rpc.py

"""
Order procedures shared by the checkout handlers.

Each one runs inside the caller's AsyncSession and commits its own change.
Status changes use UPDATE ... WHERE status = <expected> so that a concurrent
handler that already moved the row turns the second update into a no-op.
"""

from typing import Any, Optional
from sqlalchemy import update
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models.order import (
    Order,
    DRAFT,
    PENDING_PAYMENT,
    CONFIRMED,
    SHIPPED,
    DELIVERED,
    CANCELLED,
)
from storefront.models.catalog import Product, Collection
from storefront.models.transaction import TransactionLog, TRANSACTION_STATUSES
from storefront.utils.database import utcnow
from storefront.utils.errors import RpcError

# transitions allowed for system handlers
SYSTEM_TRANSITIONS = {
    DRAFT: {PENDING_PAYMENT, CANCELLED},
    PENDING_PAYMENT: {CONFIRMED, CANCELLED},
}

# transitions allowed from the merchant dashboard
MERCHANT_TRANSITIONS = {
    DRAFT: {CANCELLED},
    PENDING_PAYMENT: {CANCELLED},
    CONFIRMED: {SHIPPED, CANCELLED},
    SHIPPED: {DELIVERED},
}


def _result(success: bool, message: str, order_id: Any = None, **extra) -> dict:
    result = {"success": success, "message": message}
    if order_id is not None:
        result["order_id"] = order_id
    result.update(extra)
    return result


async def _current_status(db: AsyncSession, order_id: str) -> Optional[str]:
    result = await db.execute(select(Order.status).where(Order.id == order_id))
    return result.scalar_one_or_none()


# ────────────── create_order ──────────────
async def create_order(
    db: AsyncSession,
    product_id: str,
    variants: list,
    shipping_info: dict,
    wallet_address: Optional[str],
    payment_metadata: Optional[dict] = None,
) -> str:
    """
    Insert a draft order for a product of a visible collection.

    :raises RpcError: product missing, or its collection is hidden
    :return: id of the new order
    """
    product = await db.get(Product, product_id)
    if product is None or not product.collection_id:
        raise RpcError(f"Product not found or has no collection: {product_id}")

    collection = await db.get(Collection, product.collection_id)
    if collection is None or not collection.visible:
        raise RpcError("Product is not available for purchase")

    shipping_info = shipping_info or {}
    order = Order(
        product_id=product.id,
        collection_id=product.collection_id,
        variant_selections=variants or [],
        shipping_address=shipping_info.get("shipping_address"),
        contact_info=shipping_info.get("contact_info"),
        wallet_address=wallet_address,
        status=DRAFT,
        amount=product.price,
        payment_metadata=payment_metadata or {},
    )
    db.add(order)
    await db.commit()
    await db.refresh(order)
    return order.id


# ────────────── update_order_transaction ──────────────
async def update_order_transaction(db: AsyncSession, order_id: str, transaction_signature: Optional[str], amount_sol: float) -> dict:
    """draft -> pending_payment with the payment signature attached."""
    old_status = await _current_status(db, order_id)
    if old_status is None:
        return _result(False, "Order not found", order_id)
    if old_status != DRAFT:
        return _result(False, f"Order is not in draft status, current status is {old_status}", order_id)

    signature = None if transaction_signature == "rejected" else transaction_signature
    await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == DRAFT)
        .values(
            transaction_signature=signature,
            amount_sol=amount_sol,
            status=PENDING_PAYMENT,
            updated_at=utcnow(),
        )
    )
    await db.commit()
    return _result(True, "Order updated to pending_payment status", order_id)


# ────────────── confirm_order_transaction ──────────────
async def confirm_order_transaction(db: AsyncSession, order_id: str) -> dict:
    """pending_payment -> confirmed."""
    old_status = await _current_status(db, order_id)
    if old_status is None:
        return _result(False, "Order not found", order_id)
    if old_status != PENDING_PAYMENT:
        return _result(False, f"Order is not in pending_payment status, current status is {old_status}", order_id)

    await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == PENDING_PAYMENT)
        .values(status=CONFIRMED, updated_at=utcnow())
    )
    await db.commit()
    return _result(True, "Order confirmed successfully", order_id)


# ────────────── confirm_order_payment ──────────────
async def confirm_order_payment(db: AsyncSession, transaction_signature: str, status: str) -> dict:
    """
    Settle every pending_payment order paid with this signature.
    "confirmed" confirms them, "failed" cancels them.
    """
    if status not in ("confirmed", "failed"):
        return _result(False, f"Invalid transaction status: {status}")

    result = await db.execute(
        select(Order.id, Order.status).where(Order.transaction_signature == transaction_signature)
    )
    rows = result.all()
    if not rows:
        return _result(False, "No order found with the provided transaction signature")

    pending_ids = [row.id for row in rows if row.status == PENDING_PAYMENT]
    if not pending_ids:
        return _result(
            False,
            f"Order is not in pending_payment status, current status is {rows[0].status}",
            rows[0].id,
        )

    new_status = CONFIRMED if status == "confirmed" else CANCELLED
    await db.execute(
        update(Order)
        .where(Order.transaction_signature == transaction_signature, Order.status == PENDING_PAYMENT)
        .values(status=new_status, updated_at=utcnow())
    )
    await db.commit()
    return _result(
        True,
        f"Order payment {status}",
        pending_ids[0],
        order_ids=pending_ids,
        new_status=new_status,
    )


# ────────────── update_transaction_status ──────────────
async def update_transaction_status(db: AsyncSession, signature: str, status: str, details: Optional[dict] = None) -> dict:
    """Upsert the transaction log row for a signature; details are merged."""
    if not signature:
        return _result(False, "Missing transaction signature")
    if status not in TRANSACTION_STATUSES:
        return _result(False, f"Invalid transaction status: {status}")

    details = details or {}
    result = await db.execute(select(TransactionLog).where(TransactionLog.signature == signature))
    entry = result.scalar_one_or_none()

    if entry is None:
        entry = TransactionLog(signature=signature, status=status, details=details)
        db.add(entry)
    else:
        entry.status = status
        entry.details = {**(entry.details or {}), **details}

    if details.get("orderId"):
        entry.order_id = details["orderId"]
    if details.get("amountSol") is not None:
        entry.amount_sol = details["amountSol"]
    if details.get("buyer"):
        entry.buyer_address = details["buyer"]
    entry.error_message = details.get("error") if status == "failed" else None

    await db.commit()
    return _result(True, f"Transaction status set to {status}", signature=signature)


# ────────────── status transitions ──────────────
async def _transition(db: AsyncSession, order_id: str, new_status: str, allowed: dict) -> dict:
    old_status = await _current_status(db, order_id)
    if old_status is None:
        return _result(False, "Order not found", order_id)

    if new_status not in allowed.get(old_status, set()):
        return _result(False, f"Invalid status transition from {old_status} to {new_status}", order_id)

    await db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == old_status)
        .values(status=new_status, updated_at=utcnow())
    )
    await db.commit()
    return _result(
        True,
        f"Order status updated from {old_status} to {new_status}",
        order_id,
        old_status=old_status,
        new_status=new_status,
    )


async def system_update_order_status(db: AsyncSession, order_id: str, new_status: str) -> dict:
    return await _transition(db, order_id, new_status, SYSTEM_TRANSITIONS)


async def merchant_update_order_status(db: AsyncSession, order_id: str, new_status: str) -> dict:
    return await _transition(db, order_id, new_status, MERCHANT_TRANSITIONS)
