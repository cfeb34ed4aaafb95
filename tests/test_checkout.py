# tests/test_checkout.py

from sqlalchemy.future import select

from storefront.models.catalog import Coupon
from storefront.models.order import Order
from storefront.services.checkout import is_free_order, payment_source, format_variants, discounted

from conftest import SHIPPING_INFO


# ────────────── helpers ──────────────
def test_free_order_detection():
    assert is_free_order({"isFreeOrder": True})
    assert is_free_order({"paymentMethod": "free_stripe"})
    assert is_free_order({"couponDiscount": 40, "originalPrice": 40})
    assert not is_free_order({"couponDiscount": 10, "originalPrice": 40})
    assert not is_free_order({"paymentMethod": "solana"})
    assert not is_free_order(None)


def test_payment_source():
    assert payment_source("stripe") == "stripe"
    assert payment_source("coupon") == "stripe"
    assert payment_source("spl-token") == "token"
    assert payment_source("solana") == "solana"
    assert payment_source("free_order") == "order"
    assert payment_source("free_order", "free_token_abc_123") == "token"
    assert payment_source("free_order", "free_order_solana_99") == "solana"
    assert payment_source("free_order", "free_order_abc") == "order"
    assert payment_source(None) == "unknown"


def test_variant_map_uses_product_variant_names(product):
    assert format_variants({"size": "L"}, product) == [{"name": "Size", "value": "L"}]
    assert format_variants({"color": "red"}, product) == [{"name": "color", "value": "red"}]
    assert format_variants([{"name": "Size", "value": "S"}], product) == [{"name": "Size", "value": "S"}]


def test_discount_never_goes_below_zero():
    assert discounted(40.0, {"couponDiscount": 10}) == 30.0
    assert discounted(40.0, {"couponDiscount": 100}) == 0.0
    assert discounted(40.0, {}) == 40.0


# ────────────── create-order ──────────────
async def test_create_order_makes_a_draft(client, db, product):
    resp = await client.post("/create-order", json={
        "productId": product.id,
        "variants": {"size": "M"},
        "shippingInfo": SHIPPING_INFO,
        "walletAddress": "Buyer111",
        "paymentMetadata": {"paymentMethod": "solana"},
    })

    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["isFreeOrder"] is False
    assert data["orderNumber"] == "SF-1001"
    assert "transactionSignature" not in data
    assert data["orders"][0]["status"] == "draft"

    order = await db.get(Order, data["orderId"])
    assert order.status == "draft"
    assert order.amount == 40.0
    assert order.variant_selections == [{"name": "Size", "value": "M"}]
    assert order.payment_metadata["isSingleItemOrder"] is True


async def _coupon(db, code, discount_type="fixed", value=5, **extra):
    coupon = Coupon(code=code, discount_type=discount_type, discount_value=value, **extra)
    db.add(coupon)
    await db.commit()
    return coupon


async def test_create_order_uses_variant_price_and_coupon(client, db, product):
    coupon = await _coupon(db, "FIVEOFF")
    resp = await client.post("/create-order", json={
        "productId": product.id,
        "variants": {"size": "L"},
        "shippingInfo": SHIPPING_INFO,
        "walletAddress": "Buyer111",
        "paymentMetadata": {"paymentMethod": "stripe", "variantKey": "size:L", "couponCode": "fiveoff"},
    })

    order = await db.get(Order, resp.json()["orderId"])
    assert order.amount == 40.0
    assert order.total_amount_paid_for_batch == 40.0
    assert order.payment_metadata["couponCode"] == "FIVEOFF"
    assert order.payment_metadata["couponDiscount"] == 5.0
    assert order.payment_metadata["originalPrice"] == 45.0
    assert (await db.get(Coupon, coupon.id, populate_existing=True)).current_uses == 1


async def test_client_discount_without_coupon_is_ignored(client, db, product):
    resp = await client.post("/create-order", json={
        "productId": product.id,
        "shippingInfo": SHIPPING_INFO,
        "walletAddress": "Buyer111",
        "paymentMetadata": {"paymentMethod": "stripe", "couponDiscount": 40, "originalPrice": 40},
    })

    data = resp.json()
    assert data["isFreeOrder"] is False
    order = await db.get(Order, data["orderId"])
    assert order.status == "draft"
    assert order.amount == 40.0
    assert "couponDiscount" not in order.payment_metadata


async def test_unknown_coupon_is_rejected(client, product):
    resp = await client.post("/create-order", json={
        "productId": product.id,
        "shippingInfo": SHIPPING_INFO,
        "walletAddress": "Buyer111",
        "paymentMetadata": {"paymentMethod": "stripe", "couponCode": "NOPE"},
    })

    assert resp.status_code == 400
    assert resp.json()["error"] == "Coupon not found or inactive"


async def test_used_up_coupon_is_rejected(client, db, product):
    await _coupon(db, "ONCE", max_uses=1, current_uses=1)

    resp = await client.post("/create-order", json={
        "productId": product.id,
        "shippingInfo": SHIPPING_INFO,
        "walletAddress": "Buyer111",
        "paymentMetadata": {"paymentMethod": "stripe", "couponCode": "ONCE"},
    })

    assert resp.status_code == 400
    assert resp.json()["error"] == "Coupon usage limit reached"


async def test_free_order_is_confirmed_immediately(client, db, product):
    await _coupon(db, "FREE100", discount_type="percentage", value=100)
    resp = await client.post("/create-order", json={
        "productId": product.id,
        "shippingInfo": SHIPPING_INFO,
        "walletAddress": "Buyer111",
        "paymentMetadata": {"paymentMethod": "stripe", "couponCode": "FREE100"},
    })

    assert resp.status_code == 200
    data = resp.json()
    assert data["isFreeOrder"] is True
    assert data["orders"][0]["status"] == "confirmed"
    assert data["transactionSignature"].startswith(f"free_stripe_{product.id}_FREE100_Buyer111_")
    assert data["paymentIntentId"] == data["transactionSignature"]

    order = await db.get(Order, data["orderId"])
    assert order.status == "confirmed"
    assert order.amount == 0.0
    assert order.amount_sol == 0


async def test_free_order_duplicate_returns_existing(client, product):
    body = {
        "productId": product.id,
        "shippingInfo": SHIPPING_INFO,
        "walletAddress": "Buyer111",
        "paymentMetadata": {"isFreeOrder": True, "transactionId": "free_order_abc"},
    }
    first = (await client.post("/create-order", json=body)).json()
    second = (await client.post("/create-order", json=body)).json()

    assert second["success"] is True
    assert second["isDuplicate"] is True
    assert second["orderId"] == first["orderId"]
    assert second["status"] == "confirmed"


async def test_create_order_requires_product_and_shipping(client):
    resp = await client.post("/create-order", json={"walletAddress": "Buyer111"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Missing required parameters"


async def test_create_order_unknown_product(client):
    resp = await client.post("/create-order", json={"productId": "nope", "shippingInfo": SHIPPING_INFO})
    assert resp.status_code == 400
    assert "Product not found" in resp.json()["error"]


async def test_unparsable_body_is_a_400(client):
    resp = await client.post("/create-order", content=b"{not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid request body"


# ────────────── create-batch-order ──────────────
async def test_batch_order_shares_batch_id_and_number(client, db, product, second_product):
    coupon = await _coupon(db, "TENOFF", value=10, max_uses=5)
    resp = await client.post("/create-batch-order", json={
        "items": [
            {"product": {"id": product.id}, "selectedOptions": {"size": "S"}, "quantity": 1},
            {"product": {"name": "no id"}},
            {"product": {"id": second_product.id}, "quantity": 2},
        ],
        "shippingInfo": SHIPPING_INFO,
        "walletAddress": "Buyer111",
        "paymentMetadata": {"paymentMethod": "stripe", "couponCode": "TENOFF"},
    })

    assert resp.status_code == 200
    data = resp.json()
    assert data["isFreeOrder"] is False
    assert len(data["orders"]) == 2
    assert data["orderId"] == data["orders"][0]["orderId"]

    rows = (await db.execute(
        select(Order).where(Order.batch_order_id == data["batchOrderId"]).order_by(Order.item_index)
    )).scalars().all()
    assert [r.item_index for r in rows] == [1, 2]
    assert {r.order_number for r in rows} == {data["orderNumber"]}
    assert {r.status for r in rows} == {"draft"}
    assert [r.amount for r in rows] == [40.0, 30.0]
    assert {r.total_amount_paid_for_batch for r in rows} == {60.0}
    assert rows[0].variant_selections == [{"name": "Size", "value": "S"}]
    assert rows[0].payment_metadata["couponDiscount"] == 10.0
    assert (await db.get(Coupon, coupon.id, populate_existing=True)).current_uses == 1


async def test_free_batch_is_confirmed_with_shared_signature(client, db, product, second_product):
    resp = await client.post("/create-batch-order", json={
        "items": [{"product": {"id": product.id}}, {"product": {"id": second_product.id}}],
        "shippingInfo": SHIPPING_INFO,
        "walletAddress": "Buyer111",
        "paymentMetadata": {"isFreeOrder": True},
    })

    data = resp.json()
    assert data["isFreeOrder"] is True
    assert data["transactionSignature"].startswith(f"free_order_batch_{data['batchOrderId']}_")

    rows = (await db.execute(select(Order).where(Order.batch_order_id == data["batchOrderId"]))).scalars().all()
    assert {r.status for r in rows} == {"confirmed"}
    assert {r.transaction_signature for r in rows} == {data["transactionSignature"]}


async def test_empty_batch_is_rejected(client):
    resp = await client.post("/create-batch-order", json={"items": [], "shippingInfo": SHIPPING_INFO})
    assert resp.status_code == 400


async def test_batch_without_valid_items_is_rejected(client):
    resp = await client.post("/create-batch-order", json={"items": [{"product": {"id": "nope"}}]})
    assert resp.status_code == 400
    assert resp.json()["error"] == "No orders could be created"
