# storefront/services/checkout.py

import time
import uuid
from datetime import timedelta
from typing import Any, Optional

from fastapi import Request
from sqlalchemy import update
from sqlalchemy.future import select

from storefront.models.catalog import Product
from storefront.models.order import Order, DRAFT, CONFIRMED
from storefront.schemas.checkout import CreateOrderRequest, CreateBatchOrderRequest
from storefront.services import rpc
from storefront.services.coupons import apply_coupon, coupon_exhausted, find_active_coupon, redeem_coupon, verify_eligibility
from storefront.services.order_number import generate_order_number
from storefront.utils.database import utcnow
from storefront.utils.errors import CheckoutError, RpcError

DUPLICATE_WINDOW = timedelta(minutes=5)


# ────────────── free orders ──────────────
def is_free_order(payment_metadata: Optional[dict]) -> bool:
    """
    A checkout is free when it says so, when it was paid with a free_* method,
    or when the coupon discount covers the whole original price.
    """
    metadata = payment_metadata or {}
    if metadata.get("isFreeOrder") is True:
        return True

    method = metadata.get("paymentMethod")
    if isinstance(method, str) and method.startswith("free_"):
        return True

    discount = metadata.get("couponDiscount")
    original = metadata.get("originalPrice")
    if discount and original:
        try:
            return float(discount) >= float(original)
        except (TypeError, ValueError):
            return False
    return False


def payment_source(payment_method: Optional[str], transaction_id: Optional[str] = None) -> str:
    """Source tag of a free order; free_order ids carry theirs as _stripe_, _token_ or _solana_."""
    method = (payment_method or "").lower()
    if "stripe" in method or method == "coupon":
        return "stripe"
    if "token" in method:
        return "token"
    if "solana" in method:
        return "solana"
    if method == "free_order":
        tagged = transaction_id if isinstance(transaction_id, str) else ""
        for source in ("stripe", "token", "solana"):
            if f"_{source}_" in tagged:
                return source
        return "order"
    return "unknown"


def free_transaction_id(product_id: str, payment_metadata: dict, wallet_address: Optional[str]) -> str:
    """Reuse a free_* id sent by the client, otherwise build one that names the source."""
    existing = payment_metadata.get("transactionId")
    if isinstance(existing, str) and existing.startswith("free_"):
        return existing

    source = payment_source(payment_metadata.get("paymentMethod"), existing)
    coupon = payment_metadata.get("couponCode") or "nocoupon"
    return f"free_{source}_{product_id}_{coupon}_{wallet_address or source}_{int(time.time() * 1000)}"


def format_variants(variants: Any, product: Optional[Product]) -> list:
    """
    Normalise variant selections to [{"name", "value"}].
    A {variantId: value} map is translated with the product's variant names.
    """
    if isinstance(variants, list):
        return variants
    if not isinstance(variants, dict):
        return []

    names = {}
    for variant in (product.variants if product and product.variants else []):
        if isinstance(variant, dict) and variant.get("id"):
            names[variant["id"]] = variant.get("name") or variant["id"]

    return [{"name": names.get(key, key), "value": value} for key, value in variants.items()]


def unit_price(product: Product, payment_metadata: dict) -> float:
    """Variant price when the selected variant has one, otherwise the product price."""
    variant_key = payment_metadata.get("variantKey")
    prices = payment_metadata.get("variantPrices") or product.variant_prices or {}
    if variant_key and prices.get(variant_key) is not None:
        return float(prices[variant_key])
    return float(product.price or 0)


def discounted(total: float, payment_metadata: dict) -> float:
    discount = payment_metadata.get("couponDiscount") or 0
    try:
        discount = float(discount)
    except (TypeError, ValueError):
        discount = 0.0
    return round(max(total - max(discount, 0.0), 0.0), 2)


async def price_coupon(request: Request, payment_metadata: dict, price: float, collection_ids: list, wallet_address: Optional[str]) -> tuple:
    """
    Replace client coupon amounts with the discount the stored coupon gives.
    Without a couponCode no discount applies.
    """
    metadata = {key: value for key, value in payment_metadata.items() if key not in ("couponDiscount", "originalPrice")}
    code = metadata.get("couponCode")
    if not code:
        return metadata, None

    coupon = await find_active_coupon(request.state.db, str(code))
    if coupon is None:
        raise CheckoutError(400, "Coupon not found or inactive", {"couponCode": code})

    eligibility = await verify_eligibility(request.app.state.solana, coupon, wallet_address, collection_ids)
    if not eligibility["isValid"]:
        raise CheckoutError(403, "Coupon is not eligible", eligibility.get("error"))

    metadata.update(couponCode=coupon.code, couponDiscount=apply_coupon(price, coupon), originalPrice=round(price, 2))
    return metadata, coupon


def ensure_uses_left(coupon) -> None:
    if coupon is not None and coupon_exhausted(coupon):
        raise CheckoutError(400, "Coupon usage limit reached", {"couponCode": coupon.code, "maxUses": coupon.max_uses})


async def _redeem(db, log, coupon):
    if coupon is not None and not await redeem_coupon(db, coupon):
        await log.log_warning("checkout", "Coupon use not counted, limit reached meanwhile", {"code": coupon.code})


async def _find_duplicate(db, transaction_id: str, product_id: str, wallet_address: Optional[str]) -> Optional[Order]:
    result = await db.execute(
        select(Order).where(Order.payment_metadata["transactionId"].as_string() == transaction_id).limit(1)
    )
    existing = result.scalars().first()
    if existing is not None:
        return existing

    result = await db.execute(
        select(Order)
        .where(
            Order.product_id == product_id,
            Order.wallet_address == wallet_address,
            Order.created_at > utcnow() - DUPLICATE_WINDOW,
        )
        .order_by(Order.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()


# ────────────── create-order ──────────────
async def create_order_service(body: CreateOrderRequest, request: Request) -> dict:
    """
    Single-product checkout: creates a draft order.
    Free orders are pushed through pending_payment to confirmed right away.
    """
    db = request.state.db
    log = request.app.state.log

    if not body.product_id or not body.shipping_info:
        raise CheckoutError(400, "Missing required parameters", "productId and shippingInfo are required")

    payment_metadata = dict(body.payment_metadata or {})
    product = await db.get(Product, body.product_id)
    coupon = None
    if product is not None:
        payment_metadata, coupon = await price_coupon(
            request, payment_metadata, unit_price(product, payment_metadata), [product.collection_id], body.wallet_address
        )
    variants = format_variants(body.variants, product)
    free = is_free_order(payment_metadata)

    if free:
        transaction_id = free_transaction_id(body.product_id, payment_metadata, body.wallet_address)
        transaction_signature = transaction_id
    else:
        transaction_id = payment_metadata.get("transactionId") or f"order_{int(time.time() * 1000)}_{uuid.uuid4().hex[:13]}"
        transaction_signature = None

    await log.log_info("checkout", "Create order request", {
        "productId": body.product_id,
        "walletAddress": body.wallet_address,
        "variants": len(variants),
        "isFreeOrder": free,
        "paymentMethod": payment_metadata.get("paymentMethod", "unknown"),
    })

    if free:
        duplicate = await _find_duplicate(db, transaction_id, body.product_id, body.wallet_address)
        if duplicate is not None:
            await log.log_info("checkout", "Returning existing free order", {
                "orderId": duplicate.id,
                "status": duplicate.status,
            })
            return {
                "success": True,
                "orderId": duplicate.id,
                "orderNumber": duplicate.order_number,
                "status": duplicate.status,
                "isDuplicate": True,
            }

    ensure_uses_left(coupon)
    order_number = await generate_order_number(db, log)
    batch_order_id = str(uuid.uuid4()) if payment_metadata.get("isBatchOrder") else None

    final_metadata = {
        **payment_metadata,
        "transactionId": transaction_id,
        "batchOrderId": batch_order_id,
        "isBatchOrder": bool(payment_metadata.get("isBatchOrder")),
        "isSingleItemOrder": True,
    }

    try:
        order_id = await rpc.create_order(
            db,
            body.product_id,
            variants,
            body.shipping_info,
            body.wallet_address,
            final_metadata,
        )
    except RpcError as e:
        await log.log_error("checkout", f"create_order rejected: {e}", {"productId": body.product_id})
        raise CheckoutError(400, str(e), {"productId": body.product_id})

    amount = 0.0 if free else discounted(unit_price(product, payment_metadata), payment_metadata)
    await db.execute(
        update(Order)
        .where(Order.id == order_id)
        .values(
            order_number=order_number,
            batch_order_id=batch_order_id,
            item_index=1,
            total_items_in_batch=1,
            amount=amount,
            total_amount_paid_for_batch=amount,
        )
    )
    await db.commit()
    await _redeem(db, log, coupon)

    if free:
        attached = await rpc.update_order_transaction(db, order_id, transaction_signature, 0)
        if not attached["success"]:
            await log.log_error("checkout", "Could not attach free order signature", attached)
        confirmed = await rpc.confirm_order_transaction(db, order_id)
        if not confirmed["success"]:
            await log.log_error("checkout", "Could not confirm free order", confirmed)

    order = (
        await db.execute(select(Order).where(Order.id == order_id).execution_options(populate_existing=True))
    ).scalar_one()

    await log.log_info("checkout", "Order created", {
        "orderId": order.id,
        "orderNumber": order.order_number,
        "status": order.status,
        "transactionId": transaction_id,
    })

    response = {
        "success": True,
        "orderId": order.id,
        "orderNumber": order.order_number or order_number,
        "batchOrderId": batch_order_id,
        "isFreeOrder": free,
        "transactionId": transaction_id,
        "orders": [{
            "orderId": order.id,
            "orderNumber": order.order_number or order_number,
            "status": order.status,
            "itemIndex": 1,
            "totalItems": 1,
        }],
    }
    if free:
        response["transactionSignature"] = transaction_signature
        response["paymentIntentId"] = transaction_signature
    return response


# ────────────── create-batch-order ──────────────
async def create_batch_order_service(body: CreateBatchOrderRequest, request: Request) -> dict:
    """
    Cart checkout: one order row per item, all sharing a batch id and an
    order number. Free carts are confirmed with a shared signature.
    """
    db = request.state.db
    log = request.app.state.log

    if not body.items:
        raise CheckoutError(400, "Invalid or empty items array", "At least one cart item is required")

    payment_metadata = dict(body.payment_metadata or {})
    batch_order_id = str(uuid.uuid4())
    order_number = await generate_order_number(db, log)

    lines = []
    for item in body.items:
        product_ref = item.product or {}
        product_id = product_ref.get("id")
        if not product_id:
            await log.log_warning("checkout", "Skipping cart item without product", {"product": product_ref})
            continue

        product = await db.get(Product, product_id)
        if product is None:
            await log.log_warning("checkout", "Skipping unknown product", {"productId": product_id})
            continue

        quantity = item.quantity or 1
        lines.append((item, product, round(unit_price(product, payment_metadata) * quantity, 2)))

    if not lines:
        raise CheckoutError(400, "No orders could be created", {"batchOrderId": batch_order_id})

    subtotal = round(sum(line[2] for line in lines), 2)
    payment_metadata, coupon = await price_coupon(
        request, payment_metadata, subtotal, sorted({line[1].collection_id for line in lines}), body.wallet_address
    )
    ensure_uses_left(coupon)
    free = is_free_order(payment_metadata)
    transaction_signature = (
        payment_metadata.get("transactionId") or f"free_order_batch_{batch_order_id}_{int(time.time() * 1000)}"
        if free else None
    )
    total_items = len(body.items)
    batch_total = 0.0 if free else discounted(subtotal, payment_metadata)

    orders = []
    for index, (item, product, line_amount) in enumerate(lines, start=1):
        order = Order(
            product_id=product.id,
            collection_id=product.collection_id,
            wallet_address=body.wallet_address or "anonymous",
            status=CONFIRMED if free else DRAFT,
            quantity=item.quantity or 1,
            variant_selections=format_variants(item.selected_options or {}, product),
            shipping_address=(body.shipping_info or {}).get("shipping_address"),
            contact_info=(body.shipping_info or {}).get("contact_info"),
            order_number=order_number,
            batch_order_id=batch_order_id,
            item_index=index,
            total_items_in_batch=total_items,
            amount=line_amount,
            total_amount_paid_for_batch=batch_total,
            payment_metadata={
                **payment_metadata,
                "batchOrderId": batch_order_id,
                "isBatchOrder": True,
            },
            transaction_signature=transaction_signature,
        )
        db.add(order)
        orders.append((order, product))

    await db.commit()
    await _redeem(db, log, coupon)

    created = []
    for order, product in orders:
        created.append({
            "orderId": order.id,
            "orderNumber": order.order_number,
            "productId": product.id,
            "productName": product.name,
            "status": order.status,
            "itemIndex": order.item_index,
            "totalItems": total_items,
        })

    await log.log_info("checkout", "Batch order created", {
        "batchOrderId": batch_order_id,
        "orderNumber": order_number,
        "orders": len(created),
        "isFreeOrder": free,
        "total": batch_total,
    })

    response = {
        "success": True,
        "batchOrderId": batch_order_id,
        "orderNumber": order_number,
        "orderId": created[0]["orderId"],
        "orders": created,
        "isFreeOrder": free,
    }
    if free:
        response["transactionSignature"] = transaction_signature
    return response
