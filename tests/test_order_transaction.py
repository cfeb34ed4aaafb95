# tests/test_order_transaction.py

from sqlalchemy.future import select

from storefront.models.order import Order
from storefront.models.transaction import TransactionLog

from conftest import SHIPPING_INFO


async def _draft(client, product):
    resp = await client.post("/create-order", json={
        "productId": product.id,
        "shippingInfo": SHIPPING_INFO,
        "walletAddress": "Buyer111",
        "paymentMetadata": {"paymentMethod": "solana"},
    })
    return resp.json()["orderId"]


async def _batch(client, *products, metadata=None):
    resp = await client.post("/create-batch-order", json={
        "items": [{"product": {"id": p.id}} for p in products],
        "shippingInfo": SHIPPING_INFO,
        "walletAddress": "Buyer111",
        "paymentMetadata": metadata or {"paymentMethod": "solana"},
    })
    return resp.json()["batchOrderId"]


async def test_single_order_goes_pending_and_is_logged(client, db, product):
    order_id = await _draft(client, product)

    resp = await client.post("/update-order-transaction", json={
        "orderId": order_id,
        "transactionSignature": "5igSig",
        "amountSol": 0.3,
    })

    assert resp.status_code == 200
    assert resp.json() == {
        "success": True,
        "data": {"orderId": order_id, "transactionSignature": "5igSig", "amountSol": 0.3, "isFreeOrder": False},
    }

    order = await db.get(Order, order_id)
    assert order.status == "pending_payment"
    assert order.amount_sol == 0.3

    entry = (await db.execute(select(TransactionLog).where(TransactionLog.signature == "5igSig"))).scalar_one()
    assert entry.status == "pending"
    assert entry.order_id == order_id


async def test_free_flag_does_not_confirm_a_paid_order(client, db, product):
    order_id = await _draft(client, product)

    resp = await client.post("/update-order-transaction", json={
        "orderId": order_id,
        "transactionSignature": "free_manual",
        "amountSol": 0,
        "isFreeOrder": True,
    })

    assert resp.status_code == 200
    assert resp.json()["data"]["isFreeOrder"] is False
    assert (await db.get(Order, order_id, populate_existing=True)).status == "pending_payment"


async def test_order_owing_nothing_is_confirmed(client, db, product):
    order_id = await _draft(client, product)
    row = await db.get(Order, order_id)
    row.amount = 0
    row.total_amount_paid_for_batch = 0
    await db.commit()

    resp = await client.post("/update-order-transaction", json={
        "orderId": order_id,
        "transactionSignature": "free_manual",
        "amountSol": 0,
    })

    assert resp.status_code == 200
    assert resp.json()["data"]["isFreeOrder"] is True
    assert (await db.get(Order, order_id, populate_existing=True)).status == "confirmed"


async def test_shipped_order_is_not_reopened(client, db, product):
    order_id = await _draft(client, product)
    row = await db.get(Order, order_id)
    row.status = "shipped"
    row.transaction_signature = "paidSig"
    await db.commit()

    resp = await client.post("/update-order-transaction", json={
        "orderId": order_id,
        "transactionSignature": "otherSig",
        "amountSol": 0.1,
    })

    assert resp.status_code == 400
    assert resp.json()["details"] == {"orderId": order_id, "status": "shipped"}

    row = await db.get(Order, order_id, populate_existing=True)
    assert row.status == "shipped"
    assert row.transaction_signature == "paidSig"


async def test_free_flag_does_not_confirm_a_paid_batch(client, db, product, second_product):
    batch_id = await _batch(client, product, second_product)

    resp = await client.post("/update-order-transaction", json={
        "batchOrderId": batch_id,
        "transactionSignature": "free_batch_claim",
        "amountSol": 0,
        "isFreeOrder": True,
    })

    assert resp.status_code == 200
    rows = (await db.execute(
        select(Order).where(Order.batch_order_id == batch_id).execution_options(populate_existing=True)
    )).scalars().all()
    assert {r.status for r in rows} == {"pending_payment"}


async def test_missing_ids(client):
    resp = await client.post("/update-order-transaction", json={"transactionSignature": "x"})
    assert resp.status_code == 400


async def test_unknown_order(client):
    resp = await client.post("/update-order-transaction", json={"orderId": "nope", "transactionSignature": "x"})
    assert resp.status_code == 404


async def test_batch_splits_amount_evenly(client, db, product, second_product):
    batch_id = await _batch(client, product, second_product)

    resp = await client.post("/update-order-transaction", json={
        "batchOrderId": batch_id,
        "transactionSignature": "batchSig",
        "amountSol": 1.0,
    })

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["isBatchOrder"] is True
    assert data["ordersUpdated"] == 2
    assert [d["amount"] for d in data["updateDetails"]] == [0.5, 0.5]

    rows = (await db.execute(select(Order).where(Order.batch_order_id == batch_id))).scalars().all()
    assert {r.status for r in rows} == {"pending_payment"}
    assert {r.transaction_signature for r in rows} == {"batchSig"}

    entry = (await db.execute(select(TransactionLog).where(TransactionLog.signature == "batchSig"))).scalar_one()
    assert entry.details["orderCount"] == 2
    assert entry.details["updatedOrders"] == 2


async def test_batch_uses_variant_price_when_present(client, product, second_product):
    batch_id = await _batch(client, product, second_product, metadata={
        "paymentMethod": "solana",
        "variantKey": "size:L",
        "variantPrices": {"size:L": 0.2},
    })

    resp = await client.post("/update-order-transaction", json={
        "batchOrderId": batch_id,
        "transactionSignature": "variantSig",
        "amountSol": 1.0,
    })

    assert [d["amount"] for d in resp.json()["data"]["updateDetails"]] == [0.2, 0.2]


async def test_batch_with_nothing_payable_reports_status_counts(client, product, second_product):
    resp = await client.post("/create-batch-order", json={
        "items": [{"product": {"id": product.id}}, {"product": {"id": second_product.id}}],
        "shippingInfo": SHIPPING_INFO,
        "paymentMetadata": {"isFreeOrder": True},
    })
    batch_id = resp.json()["batchOrderId"]

    resp = await client.post("/update-order-transaction", json={
        "batchOrderId": batch_id,
        "transactionSignature": "late",
        "amountSol": 1.0,
    })

    assert resp.status_code == 400
    assert resp.json()["details"]["statusCounts"] == {"confirmed": 2}


async def test_unknown_batch(client):
    resp = await client.post("/update-order-transaction", json={"batchOrderId": "nope", "transactionSignature": "x"})
    assert resp.status_code == 404
